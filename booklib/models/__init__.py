"""Models package exports."""

from booklib.models.auth import AuthResponse, LoginRequest, MeResponse, RegisterRequest, UserSummary
from booklib.models.book import BackfillReport, BookSource, RetrievedDocument
from booklib.models.chatbot import (
    AskRequest,
    AskResult,
    ChatRequest,
    ChatResult,
    ConversationDetail,
    ConversationPage,
    ConversationSummary,
    Pagination,
    RecommendRequest,
    RecommendResult,
    VectorSearchRequest,
)
from booklib.models.conversation import CitedBook, Conversation, Message, MessageRole
from booklib.models.user import RefreshToken, User, UserRole

__all__ = [
    "AskRequest",
    "AskResult",
    "AuthResponse",
    "BackfillReport",
    "BookSource",
    "ChatRequest",
    "ChatResult",
    "CitedBook",
    "Conversation",
    "ConversationDetail",
    "ConversationPage",
    "ConversationSummary",
    "LoginRequest",
    "MeResponse",
    "Message",
    "MessageRole",
    "Pagination",
    "RecommendRequest",
    "RecommendResult",
    "RefreshToken",
    "RegisterRequest",
    "RetrievedDocument",
    "User",
    "UserRole",
    "UserSummary",
    "VectorSearchRequest",
]
