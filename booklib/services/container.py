"""Wiring of long-lived clients and services.

Built once in the application lifespan and stored on ``app.state``.
"""

from dataclasses import dataclass
from typing import Optional

import asyncpg
import redis.asyncio as redis
from openai import AsyncOpenAI

from booklib.config import Settings
from booklib.services.auth_service import AuthService
from booklib.services.chatbot_service import ChatbotService
from booklib.services.context_builder import ContextBuilder
from booklib.services.conversation_service import ConversationService
from booklib.services.embedding_service import EmbeddingService
from booklib.services.generation_service import GenerationClient
from booklib.services.prompt_service import PromptBuilder
from booklib.services.redis_service import RedisService
from booklib.services.retrieval_service import RetrievalService
from booklib.services.token_repository import RefreshTokenRepository
from booklib.services.user_service import UserService


@dataclass
class Services:
    settings: Settings
    pool: asyncpg.Pool
    cache: RedisService
    users: UserService
    auth: AuthService
    embeddings: EmbeddingService
    retrieval: RetrievalService
    conversations: ConversationService
    chatbot: ChatbotService


def build_openai_client(settings: Settings) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.timeout_seconds,
    )


def build_services(
    settings: Settings,
    pool: asyncpg.Pool,
    redis_client: Optional[redis.Redis],
    openai_client: AsyncOpenAI,
) -> Services:
    """Construct every service from the shared clients."""
    cache = RedisService(redis_client, settings)
    users = UserService(pool)
    auth = AuthService(settings, RefreshTokenRepository(pool), users)
    embeddings = EmbeddingService(settings, openai_client, cache, pool)
    retrieval = RetrievalService(settings, pool, embeddings)
    conversations = ConversationService(pool)
    chatbot = ChatbotService(
        settings=settings,
        retrieval=retrieval,
        context_builder=ContextBuilder(settings.context_token_budget),
        prompts=PromptBuilder(settings.response_language, settings.history_limit),
        generation=GenerationClient(settings, openai_client),
        conversations=conversations,
    )
    return Services(
        settings=settings,
        pool=pool,
        cache=cache,
        users=users,
        auth=auth,
        embeddings=embeddings,
        retrieval=retrieval,
        conversations=conversations,
        chatbot=chatbot,
    )
