"""Chatbot request and result models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field, field_validator

from booklib.models.base import ApiModel
from booklib.models.book import RetrievedDocument
from booklib.models.conversation import Message


def _strip_required(v: str, what: str) -> str:
    stripped = v.strip()
    if not stripped:
        raise ValueError(f"{what} cannot be empty")
    return stripped


class AskRequest(ApiModel):
    """Single-turn question.

    Attributes:
        question: User's question (required, max 2000 chars)
        top_k: Number of books to retrieve (optional; non-positive values fall
            back to the default, larger ones are capped at the server max)
    """

    question: str = Field(..., max_length=2000)
    top_k: Optional[int] = None

    @field_validator("question")
    @classmethod
    def question_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Question")


class ChatRequest(ApiModel):
    """Multi-turn question, optionally continuing a conversation."""

    question: str = Field(..., max_length=2000)
    conversation_id: Optional[UUID] = None

    @field_validator("question")
    @classmethod
    def question_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Question")


class RecommendRequest(ApiModel):
    """Free-text reading preference."""

    preference: str = Field(..., max_length=2000)
    limit: Optional[int] = None

    @field_validator("preference")
    @classmethod
    def preference_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Preference")


class VectorSearchRequest(ApiModel):
    """Direct vector search over the catalog."""

    query: str = Field(..., max_length=2000)
    limit: int = Field(default=3, ge=1)

    @field_validator("query")
    @classmethod
    def query_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Query")


class AskResult(ApiModel):
    answer: str
    books: list[RetrievedDocument]
    question: str


class ChatResult(ApiModel):
    conversation_id: UUID
    answer: str
    books: list[RetrievedDocument]
    message_count: int


class RecommendResult(ApiModel):
    recommendations: list[RetrievedDocument]
    preference: str


class ConversationSummary(ApiModel):
    """Row in the conversation list."""

    id: UUID
    title: Optional[str] = None
    message_count: int = 0
    last_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    pages: int


class ConversationPage(ApiModel):
    conversations: list[ConversationSummary]
    pagination: Pagination


class ConversationDetail(ApiModel):
    id: UUID
    title: Optional[str] = None
    messages: list[Message]
    created_at: datetime
    updated_at: datetime
