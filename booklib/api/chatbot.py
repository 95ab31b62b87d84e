"""Chatbot API endpoints: answers, streaming answers, conversations, recommendations."""

import asyncio
import json
import time
from typing import AsyncGenerator
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from booklib.api.dependencies import (
    get_app_settings,
    get_chatbot_service,
    get_conversation_service,
    get_current_user,
)
from booklib.config import Settings
from booklib.exceptions import GenerationError
from booklib.models.book import RetrievedDocument
from booklib.models.chatbot import AskRequest, ChatRequest, RecommendRequest
from booklib.models.user import User
from booklib.services.chatbot_service import ChatbotService
from booklib.services.conversation_service import ConversationService
from booklib.services.generation_service import GenerationStream

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/chatbot", tags=["Chatbot"])


def sse_event(payload: dict) -> str:
    """Format one Server-Sent Events data frame."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def generate_answer_events(
    request: Request,
    books: list[RetrievedDocument],
    stream: GenerationStream,
    timeout_seconds: int,
) -> AsyncGenerator[str, None]:
    """Emit books, then text fragments, then exactly one done or error event.

    Forwarding stops when the client disconnects; the generation stream is
    closed on every exit path.
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield sse_event(
            {
                "type": "books",
                "books": [b.model_dump(by_alias=True, mode="json") for b in books],
            }
        )

        async with asyncio.timeout(timeout_seconds):
            async for fragment in stream:
                if await request.is_disconnected():
                    status = "disconnected"
                    break
                yield sse_event({"type": "text", "content": fragment})

        if status == "success":
            yield sse_event({"type": "done"})
    except asyncio.TimeoutError:
        status = "timeout"
        logger.error("stream_timeout", timeout_seconds=timeout_seconds)
        yield sse_event(
            {
                "type": "error",
                "code": "STREAM_INTERRUPTED",
                "message": "The answer took too long. Please try again.",
            }
        )
    except GenerationError as e:
        status = "error"
        yield sse_event({"type": "error", "code": e.code.value, "message": e.message})
    except Exception as e:
        status = "error"
        logger.error(
            "stream_error",
            error_type=type(e).__name__,
            error_message=str(e),
        )
        yield sse_event(
            {
                "type": "error",
                "code": "INTERNAL_ERROR",
                "message": "An error occurred while generating the answer. Please try again.",
            }
        )
    finally:
        await stream.aclose()
        logger.info(
            "response_complete",
            duration_ms=int((time.perf_counter() - start_time) * 1000),
            chunk_count=stream.fragment_count,
            book_count=len(books),
            status=status,
        )


@router.post("/ask")
async def ask(
    body: AskRequest,
    chatbot: ChatbotService = Depends(get_chatbot_service),
) -> dict:
    """Answer a single question from the catalog."""
    result = await chatbot.ask(body.question, body.top_k)
    return {"success": True, "data": result.model_dump(by_alias=True, mode="json")}


@router.post("/ask-stream")
async def ask_stream(
    body: AskRequest,
    request: Request,
    chatbot: ChatbotService = Depends(get_chatbot_service),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """Answer a single question as a Server-Sent Events stream.

    Retrieval runs before the stream opens, so its failures are ordinary
    JSON error responses.
    """
    books, stream = await chatbot.ask_stream(body.question, body.top_k)

    return StreamingResponse(
        generate_answer_events(request, books, stream, settings.timeout_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/chat")
async def chat(
    body: ChatRequest,
    current_user: User = Depends(get_current_user),
    chatbot: ChatbotService = Depends(get_chatbot_service),
) -> dict:
    """Ask within a conversation; starts a new one when no id is given."""
    result = await chatbot.chat(current_user, body.question, body.conversation_id)
    return {"success": True, "data": result.model_dump(by_alias=True, mode="json")}


@router.get("/conversations")
async def list_conversations(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict:
    """List the current user's conversations, most recent first."""
    result = await conversations.list_conversations(current_user.id, page, limit)
    return {"success": True, "data": result.model_dump(by_alias=True, mode="json")}


@router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict:
    """Get a conversation with all of its messages."""
    detail = await conversations.get_conversation_detail(current_user.id, conversation_id)
    return {"success": True, "data": detail.model_dump(by_alias=True, mode="json")}


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
) -> dict:
    """Soft-delete a conversation."""
    await conversations.soft_delete(current_user.id, conversation_id)
    return {"success": True, "message": "Conversation deleted"}


@router.post("/recommend")
async def recommend(
    body: RecommendRequest,
    chatbot: ChatbotService = Depends(get_chatbot_service),
) -> dict:
    """Recommend books matching a reading preference."""
    result = await chatbot.recommend(body.preference, body.limit)
    return {"success": True, "data": result.model_dump(by_alias=True, mode="json")}
