"""Conversation and message models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from booklib.models.base import ApiModel
from booklib.models.book import RetrievedDocument

TITLE_MAX_CHARS = 50


class MessageRole(str, Enum):
    """Roles stored in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


class CitedBook(ApiModel):
    """Citation attached to an assistant message (weak reference to a book)."""

    book_id: UUID
    title: str
    author: str
    score: Optional[float] = None

    @classmethod
    def from_document(cls, doc: RetrievedDocument) -> "CitedBook":
        return cls(book_id=doc.id, title=doc.title, author=doc.author, score=doc.score)


class Message(ApiModel):
    """A single turn in a conversation."""

    id: UUID
    conversation_id: UUID
    role: MessageRole
    content: str
    cited_books: list[CitedBook] = []
    created_at: datetime


class Conversation(ApiModel):
    """A user's chatbot conversation."""

    id: UUID
    user_id: UUID
    title: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


def derive_title(first_message: str) -> str:
    """Title from the first message: 50 characters plus an ellipsis when longer."""
    if len(first_message) > TITLE_MAX_CHARS:
        return first_message[:TITLE_MAX_CHARS] + "..."
    return first_message
