"""Conversation and message persistence service."""

import json
import math
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from booklib.exceptions import AuthError, ErrorCode, RetrievalError
from booklib.models.chatbot import (
    ConversationDetail,
    ConversationPage,
    ConversationSummary,
    Pagination,
)
from booklib.models.conversation import (
    CitedBook,
    Conversation,
    Message,
    MessageRole,
    derive_title,
)

logger = structlog.get_logger(__name__)

PREVIEW_MAX_CHARS = 100


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _decode_citations(value) -> list[CitedBook]:
    """asyncpg hands jsonb back as text unless a codec is registered."""
    if value is None:
        return []
    items = json.loads(value) if isinstance(value, str) else value
    return [CitedBook.model_validate(item) for item in items]


def _preview(content: Optional[str]) -> Optional[str]:
    if content is None or len(content) <= PREVIEW_MAX_CHARS:
        return content
    return content[:PREVIEW_MAX_CHARS] + "..."


class ConversationService:
    """Service for conversation and message CRUD operations.

    Every read and write is scoped to active conversations; soft-deleted
    rows behave as if they did not exist.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_owned(self, user_id: UUID, conversation_id: UUID) -> Conversation:
        """Load an active conversation and check that the user owns it.

        Raises:
            RetrievalError: NOT_FOUND if missing or soft-deleted
            AuthError: FORBIDDEN if it belongs to another user
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, user_id, title, is_active, created_at, updated_at
                FROM conversations
                WHERE id = $1 AND is_active
                """,
                conversation_id,
            )

        if row is None:
            raise RetrievalError("Conversation not found", ErrorCode.NOT_FOUND)

        if row["user_id"] != user_id:
            logger.warning(
                "conversation_access_denied",
                conversation_id=str(conversation_id),
                user_id=str(user_id),
            )
            raise AuthError(
                "You do not have access to this conversation", ErrorCode.FORBIDDEN
            )

        return _row_to_conversation(row)

    async def create_or_continue(
        self,
        user_id: UUID,
        conversation_id: Optional[UUID] = None,
    ) -> Conversation:
        """Get an existing owned conversation or create a new one.

        Args:
            user_id: Owner of the conversation
            conversation_id: Optional existing conversation ID

        Returns:
            Conversation object

        Raises:
            RetrievalError: NOT_FOUND for an unknown or deleted conversation
            AuthError: FORBIDDEN for a conversation owned by someone else
        """
        if conversation_id is not None:
            return await self.get_owned(user_id, conversation_id)

        new_id = uuid4()
        now = datetime.now(timezone.utc)

        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO conversations (id, user_id, is_active, created_at, updated_at)
                VALUES ($1, $2, TRUE, $3, $4)
                """,
                new_id,
                user_id,
                now,
                now,
            )

        logger.info(
            "conversation_created",
            conversation_id=str(new_id),
            user_id=str(user_id),
        )

        return Conversation(
            id=new_id,
            user_id=user_id,
            title=None,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    async def _write_exchange(
        self,
        conn,
        conversation_id: UUID,
        question: str,
        answer: str,
        cited_books: list[CitedBook],
        now: datetime,
    ) -> int:
        citations = json.dumps([c.model_dump(mode="json") for c in cited_books])

        await conn.execute(
            """
            INSERT INTO messages (id, conversation_id, role, content, cited_books, created_at)
            VALUES ($1, $2, $3, $4, '[]'::jsonb, $5)
            """,
            uuid4(),
            conversation_id,
            MessageRole.USER.value,
            question,
            now,
        )
        await conn.execute(
            """
            INSERT INTO messages (id, conversation_id, role, content, cited_books, created_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """,
            uuid4(),
            conversation_id,
            MessageRole.ASSISTANT.value,
            answer,
            citations,
            now,
        )
        await conn.execute(
            """
            UPDATE conversations
            SET title = COALESCE(title, $2), updated_at = $3
            WHERE id = $1
            """,
            conversation_id,
            derive_title(question),
            now,
        )
        message_count = await conn.fetchval(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = $1",
            conversation_id,
        )
        return int(message_count)

    async def append_exchange(
        self,
        conversation_id: UUID,
        question: str,
        answer: str,
        cited_books: list[CitedBook],
    ) -> int:
        """Store a question and its answer as two consecutive messages.

        Runs in one transaction holding the conversation row lock, so
        exchanges on the same conversation never interleave. The title is
        set from the question only if the conversation has none yet.

        Returns:
            Number of messages in the conversation after the append

        Raises:
            RetrievalError: NOT_FOUND if the conversation was deleted meanwhile
        """
        now = datetime.now(timezone.utc)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                locked = await conn.fetchval(
                    """
                    SELECT id FROM conversations
                    WHERE id = $1 AND is_active
                    FOR UPDATE
                    """,
                    conversation_id,
                )
                if locked is None:
                    raise RetrievalError("Conversation not found", ErrorCode.NOT_FOUND)

                message_count = await self._write_exchange(
                    conn, conversation_id, question, answer, cited_books, now
                )

        logger.debug(
            "exchange_appended",
            conversation_id=str(conversation_id),
            message_count=message_count,
            cited_count=len(cited_books),
        )
        return message_count

    async def start_with_exchange(
        self,
        user_id: UUID,
        question: str,
        answer: str,
        cited_books: list[CitedBook],
    ) -> tuple[Conversation, int]:
        """Create a conversation together with its first exchange.

        Both happen in one transaction, so a failed write never leaves an
        empty conversation behind.

        Returns:
            Tuple of (new Conversation, message count)
        """
        new_id = uuid4()
        now = datetime.now(timezone.utc)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO conversations (id, user_id, is_active, created_at, updated_at)
                    VALUES ($1, $2, TRUE, $3, $4)
                    """,
                    new_id,
                    user_id,
                    now,
                    now,
                )
                message_count = await self._write_exchange(
                    conn, new_id, question, answer, cited_books, now
                )

        logger.info(
            "conversation_created",
            conversation_id=str(new_id),
            user_id=str(user_id),
            message_count=message_count,
        )

        conversation = Conversation(
            id=new_id,
            user_id=user_id,
            title=derive_title(question),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        return conversation, message_count

    async def get_history(self, conversation_id: UUID, limit: int = 10) -> list[dict]:
        """Get the most recent messages of a conversation.

        Args:
            conversation_id: Conversation ID
            limit: Maximum messages to return

        Returns:
            {role, content} dicts in chronological order
        """
        if limit <= 0:
            return []

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT role, content
                FROM messages
                WHERE conversation_id = $1
                ORDER BY seq DESC
                LIMIT $2
                """,
                conversation_id,
                limit,
            )

        # Return in chronological order (reverse the DESC order)
        return [{"role": row["role"], "content": row["content"]} for row in reversed(rows)]

    async def list_conversations(
        self, user_id: UUID, page: int = 1, limit: int = 10
    ) -> ConversationPage:
        """List a user's active conversations, most recently updated first."""
        offset = (page - 1) * limit

        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM conversations WHERE user_id = $1 AND is_active",
                user_id,
            )
            rows = await conn.fetch(
                """
                SELECT
                    c.id, c.title, c.created_at, c.updated_at,
                    (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count,
                    (
                        SELECT m.content FROM messages m
                        WHERE m.conversation_id = c.id
                        ORDER BY m.seq DESC
                        LIMIT 1
                    ) AS last_message
                FROM conversations c
                WHERE c.user_id = $1 AND c.is_active
                ORDER BY c.updated_at DESC
                LIMIT $2 OFFSET $3
                """,
                user_id,
                limit,
                offset,
            )

        conversations = [
            ConversationSummary(
                id=row["id"],
                title=row["title"],
                message_count=row["message_count"],
                last_message=_preview(row["last_message"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]
        total = int(total or 0)
        return ConversationPage(
            conversations=conversations,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    async def get_conversation_detail(
        self, user_id: UUID, conversation_id: UUID
    ) -> ConversationDetail:
        """Full conversation with every message and its citations."""
        conversation = await self.get_owned(user_id, conversation_id)

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, conversation_id, role, content, cited_books, created_at
                FROM messages
                WHERE conversation_id = $1
                ORDER BY seq
                """,
                conversation_id,
            )

        messages = [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=MessageRole(row["role"]),
                content=row["content"],
                cited_books=_decode_citations(row["cited_books"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]
        return ConversationDetail(
            id=conversation.id,
            title=conversation.title,
            messages=messages,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )

    async def soft_delete(self, user_id: UUID, conversation_id: UUID) -> None:
        """Hide a conversation from every later read; messages are kept."""
        await self.get_owned(user_id, conversation_id)

        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE conversations
                SET is_active = FALSE, updated_at = $2
                WHERE id = $1
                """,
                conversation_id,
                datetime.now(timezone.utc),
            )

        logger.info(
            "conversation_deleted",
            conversation_id=str(conversation_id),
            user_id=str(user_id),
        )
