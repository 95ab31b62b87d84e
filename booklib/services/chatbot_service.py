"""RAG chatbot orchestration: retrieve, assemble context, generate, persist."""

from typing import Optional
from uuid import UUID

import structlog

from booklib.config import Settings
from booklib.models.book import RetrievedDocument
from booklib.models.chatbot import AskResult, ChatResult, RecommendResult
from booklib.models.conversation import CitedBook
from booklib.models.user import User
from booklib.services.context_builder import ContextBuilder
from booklib.services.conversation_service import ConversationService
from booklib.services.generation_service import GenerationClient, GenerationStream
from booklib.services.logging_service import text_fingerprint
from booklib.services.prompt_service import PromptBuilder
from booklib.services.retrieval_service import RetrievalService

logger = structlog.get_logger(__name__)


class ChatbotService:
    """Answers questions about the catalog from retrieved books."""

    def __init__(
        self,
        settings: Settings,
        retrieval: RetrievalService,
        context_builder: ContextBuilder,
        prompts: PromptBuilder,
        generation: GenerationClient,
        conversations: ConversationService,
    ):
        self.settings = settings
        self.retrieval = retrieval
        self.context_builder = context_builder
        self.prompts = prompts
        self.generation = generation
        self.conversations = conversations

    def resolve_top_k(self, requested: Optional[int], default: int) -> int:
        """Client-supplied result count capped at max_top_k.

        Missing, zero or negative counts fall back to ``default``.
        """
        k = requested if requested is not None and requested > 0 else default
        return max(1, min(k, self.settings.max_top_k))

    async def _retrieve(self, question: str, k: int) -> list[RetrievedDocument]:
        documents = await self.retrieval.search_text(question, k)
        logger.info(
            "chatbot_retrieval",
            question_hash=text_fingerprint(question),
            k=k,
            result_count=len(documents),
        )
        return documents

    async def ask(self, question: str, top_k: Optional[int] = None) -> AskResult:
        """Single-turn question answered from retrieved books.

        Raises:
            RetrievalError: EMBEDDING_SERVICE_ERROR
            GenerationError: MODEL_UNAVAILABLE
        """
        k = self.resolve_top_k(top_k, self.settings.rag_top_k)
        documents = await self._retrieve(question, k)
        context = self.context_builder.build_context(documents)
        answer = await self.generation.complete(self.prompts.single_turn(question, context))
        return AskResult(answer=answer, books=documents, question=question)

    async def ask_stream(
        self, question: str, top_k: Optional[int] = None
    ) -> tuple[list[RetrievedDocument], GenerationStream]:
        """Retrieve first, then open the answer stream.

        Retrieval errors surface here, before any fragment is produced.
        """
        k = self.resolve_top_k(top_k, self.settings.rag_top_k)
        documents = await self._retrieve(question, k)
        context = self.context_builder.build_context(documents)
        stream = self.generation.stream(self.prompts.single_turn(question, context))
        return documents, stream

    async def chat(
        self,
        user: User,
        question: str,
        conversation_id: Optional[UUID] = None,
    ) -> ChatResult:
        """Multi-turn question within a conversation.

        The exchange is persisted only after a successful answer; a new
        conversation is created at that point too. Any earlier failure
        leaves the store untouched.

        Raises:
            RetrievalError: NOT_FOUND for an unknown conversation, or
                EMBEDDING_SERVICE_ERROR
            AuthError: FORBIDDEN for another user's conversation
            GenerationError: MODEL_UNAVAILABLE
        """
        conversation = None
        history: list[dict] = []
        if conversation_id is not None:
            conversation = await self.conversations.get_owned(user.id, conversation_id)
            history = await self.conversations.get_history(
                conversation.id, self.settings.history_limit
            )

        documents = await self._retrieve(question, self.resolve_top_k(None, self.settings.rag_top_k))
        context = self.context_builder.build_context(documents)
        messages = self.prompts.multi_turn(question, context, history)
        answer = await self.generation.complete(messages)

        citations = [CitedBook.from_document(d) for d in documents]
        if conversation is None:
            conversation, message_count = await self.conversations.start_with_exchange(
                user.id, question, answer, citations
            )
        else:
            message_count = await self.conversations.append_exchange(
                conversation.id, question, answer, citations
            )

        logger.info(
            "chat_exchange_completed",
            conversation_id=str(conversation.id),
            user_id=str(user.id),
            history_length=len(history),
            message_count=message_count,
        )
        return ChatResult(
            conversation_id=conversation.id,
            answer=answer,
            books=documents,
            message_count=message_count,
        )

    async def recommend(
        self, preference: str, limit: Optional[int] = None
    ) -> RecommendResult:
        """Books closest to a free-text reading preference (no generation)."""
        k = self.resolve_top_k(limit, self.settings.recommend_limit)
        documents = await self._retrieve(preference, k)
        return RecommendResult(recommendations=documents, preference=preference)
