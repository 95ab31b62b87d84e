"""Unit tests for chatbot, search and health endpoints with mocked services."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from booklib.api.chatbot import generate_answer_events
from booklib.api.dependencies import (
    get_app_settings,
    get_auth_service,
    get_chatbot_service,
    get_conversation_service,
    get_retrieval_service,
)
from booklib.exceptions import ErrorCode, GenerationError, RetrievalError
from booklib.models.chatbot import (
    AskResult,
    ChatResult,
    ConversationPage,
    Pagination,
    RecommendResult,
)
from booklib.services.generation_service import GenerationStream


async def _fragments(*items, error=None):
    for item in items:
        yield item
    if error is not None:
        raise error


async def _stalled(*items):
    for item in items:
        yield item
    await asyncio.sleep(3600)
    yield "never"


def _sse_events(text: str) -> list[dict]:
    events = []
    for frame in text.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events


@pytest.fixture
def chatbot():
    service = MagicMock()
    service.ask = AsyncMock()
    service.ask_stream = AsyncMock()
    service.chat = AsyncMock()
    service.recommend = AsyncMock()
    return service


@pytest.fixture
def retrieval():
    service = MagicMock()
    service.search_text = AsyncMock(return_value=[])
    service.find_similar = AsyncMock(return_value=[])
    return service


@pytest.fixture
def conversations():
    return MagicMock()


@pytest.fixture
def client(settings, auth_service, chatbot, retrieval, conversations):
    from booklib.main import app

    app.dependency_overrides[get_auth_service] = lambda: auth_service
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_chatbot_service] = lambda: chatbot
    app.dependency_overrides[get_retrieval_service] = lambda: retrieval
    app.dependency_overrides[get_conversation_service] = lambda: conversations
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(auth_service, user_store, user_factory):
    user = user_store.add(user_factory())
    return {"Authorization": f"Bearer {auth_service.create_access_token(user)}"}


# ---------------------------------------------------------------------------
# POST /chatbot/ask
# ---------------------------------------------------------------------------

class TestAsk:
    def test_success_envelope(self, client, chatbot, document_factory):
        docs = [document_factory(title="Dune", score=0.9), document_factory(title="Emma", score=0.7)]
        chatbot.ask.return_value = AskResult(answer="Read Dune.", books=docs, question="sci-fi?")

        response = client.post("/chatbot/ask", json={"question": "sci-fi?", "topK": 3})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["answer"] == "Read Dune."
        assert [b["title"] for b in body["data"]["books"]] == ["Dune", "Emma"]
        assert "publishYear" in body["data"]["books"][0]
        chatbot.ask.assert_awaited_once_with("sci-fi?", 3)

    @pytest.mark.parametrize("top_k", [0, 100])
    def test_out_of_range_top_k_reaches_service(self, client, chatbot, top_k):
        chatbot.ask.return_value = AskResult(answer="ok", books=[], question="q")

        response = client.post("/chatbot/ask", json={"question": "q", "topK": top_k})

        assert response.status_code == 200
        chatbot.ask.assert_awaited_once_with("q", top_k)

    @pytest.mark.parametrize("question", ["", "   "])
    def test_empty_question_rejected_before_any_call(self, client, chatbot, question):
        response = client.post("/chatbot/ask", json={"question": question})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        chatbot.ask.assert_not_awaited()

    def test_embedding_failure(self, client, chatbot):
        chatbot.ask.side_effect = RetrievalError(
            "Embedding service is unavailable", ErrorCode.EMBEDDING_SERVICE_ERROR
        )

        response = client.post("/chatbot/ask", json={"question": "q"})

        assert response.status_code == 502
        assert response.json()["code"] == "EMBEDDING_SERVICE_ERROR"

    def test_model_failure(self, client, chatbot):
        chatbot.ask.side_effect = GenerationError("down", ErrorCode.MODEL_UNAVAILABLE)

        response = client.post("/chatbot/ask", json={"question": "q"})

        assert response.status_code == 502
        assert response.json()["code"] == "MODEL_UNAVAILABLE"

    def test_unexpected_error_is_generic_500(self, client, chatbot):
        chatbot.ask.side_effect = RuntimeError("boom")

        response = client.post("/chatbot/ask", json={"question": "q"})

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "INTERNAL_ERROR"
        assert "X-Correlation-Id" in response.headers


# ---------------------------------------------------------------------------
# POST /chatbot/ask-stream
# ---------------------------------------------------------------------------

class TestAskStream:
    def test_event_sequence(self, client, chatbot, document_factory):
        docs = [document_factory(title="Dune")]
        chatbot.ask_stream.return_value = (docs, GenerationStream(_fragments("Read ", "Dune.")))

        response = client.post("/chatbot/ask-stream", json={"question": "sci-fi?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(response.text)
        assert [e["type"] for e in events] == ["books", "text", "text", "done"]
        assert events[0]["books"][0]["title"] == "Dune"
        assert "".join(e["content"] for e in events if e["type"] == "text") == "Read Dune."

    def test_error_event_after_partial_text(self, client, chatbot):
        stream = GenerationStream(_fragments("Read ", error=ConnectionError("reset")))
        chatbot.ask_stream.return_value = ([], stream)

        response = client.post("/chatbot/ask-stream", json={"question": "q"})

        events = _sse_events(response.text)
        assert [e["type"] for e in events] == ["books", "text", "error"]
        assert events[-1]["code"] == "STREAM_INTERRUPTED"
        assert stream.closed

    def test_model_unavailable_before_first_fragment(self, client, chatbot):
        stream = GenerationStream(_fragments(error=ConnectionError("refused")))
        chatbot.ask_stream.return_value = ([], stream)

        response = client.post("/chatbot/ask-stream", json={"question": "q"})

        events = _sse_events(response.text)
        assert [e["type"] for e in events] == ["books", "error"]
        assert events[-1]["code"] == "MODEL_UNAVAILABLE"

    def test_retrieval_failure_is_plain_json(self, client, chatbot):
        chatbot.ask_stream.side_effect = RetrievalError(
            "down", ErrorCode.EMBEDDING_SERVICE_ERROR
        )

        response = client.post("/chatbot/ask-stream", json={"question": "q"})

        assert response.status_code == 502
        assert response.json()["code"] == "EMBEDDING_SERVICE_ERROR"


class TestAnswerEvents:
    """generate_answer_events driven directly, without an HTTP client."""

    @staticmethod
    def _request(disconnected: bool = False):
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=disconnected)
        return request

    @staticmethod
    async def _collect(events) -> list[dict]:
        return _sse_events("".join([frame async for frame in events]))

    async def test_client_disconnect_stops_forwarding(self, document_factory):
        stream = GenerationStream(_fragments("Read ", "Dune.", "More."))

        events = await self._collect(
            generate_answer_events(
                self._request(disconnected=True), [document_factory()], stream, timeout_seconds=5
            )
        )

        assert [e["type"] for e in events] == ["books"]
        assert stream.closed

    async def test_timeout_ends_with_interrupted_error(self):
        stream = GenerationStream(_stalled())

        events = await self._collect(
            generate_answer_events(self._request(), [], stream, timeout_seconds=0.05)
        )

        assert [e["type"] for e in events] == ["books", "error"]
        assert events[-1]["code"] == "STREAM_INTERRUPTED"
        assert stream.closed

    async def test_timeout_after_partial_text(self):
        stream = GenerationStream(_stalled("Read "))

        events = await self._collect(
            generate_answer_events(self._request(), [], stream, timeout_seconds=0.05)
        )

        assert [e["type"] for e in events] == ["books", "text", "error"]
        assert events[-1] == {
            "type": "error",
            "code": "STREAM_INTERRUPTED",
            "message": "The answer took too long. Please try again.",
        }


# ---------------------------------------------------------------------------
# POST /chatbot/chat and conversations
# ---------------------------------------------------------------------------

class TestChat:
    def test_requires_authentication(self, client, chatbot):
        response = client.post("/chatbot/chat", json={"question": "q"})

        assert response.status_code == 401
        assert response.json()["code"] == "NO_TOKEN"
        chatbot.chat.assert_not_awaited()

    def test_returns_conversation_id(self, client, chatbot, auth_headers):
        conversation_id = uuid4()
        chatbot.chat.return_value = ChatResult(
            conversation_id=conversation_id, answer="Hi", books=[], message_count=2
        )

        response = client.post("/chatbot/chat", json={"question": "q"}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["conversationId"] == str(conversation_id)
        assert data["messageCount"] == 2

    def test_forwards_conversation_id(self, client, chatbot, auth_headers):
        conversation_id = uuid4()
        chatbot.chat.return_value = ChatResult(
            conversation_id=conversation_id, answer="Hi", books=[], message_count=4
        )

        client.post(
            "/chatbot/chat",
            json={"question": "q", "conversationId": str(conversation_id)},
            headers=auth_headers,
        )

        assert chatbot.chat.call_args.args[2] == conversation_id

    def test_unknown_conversation(self, client, chatbot, auth_headers):
        chatbot.chat.side_effect = RetrievalError("Conversation not found", ErrorCode.NOT_FOUND)

        response = client.post(
            "/chatbot/chat",
            json={"question": "q", "conversationId": str(uuid4())},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_list_conversations_defaults_to_ten_per_page(
        self, client, conversations, auth_headers, user_store
    ):
        conversations.list_conversations = AsyncMock(
            return_value=ConversationPage(
                conversations=[],
                pagination=Pagination(page=1, limit=10, total=0, pages=0),
            )
        )

        response = client.get("/chatbot/conversations", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["limit"] == 10
        (user,) = user_store.users.values()
        conversations.list_conversations.assert_awaited_once_with(user.id, 1, 10)

    def test_delete_conversation(self, client, conversations, auth_headers):
        conversations.soft_delete = AsyncMock()
        conversation_id = uuid4()

        response = client.delete(f"/chatbot/conversations/{conversation_id}", headers=auth_headers)

        assert response.status_code == 200
        assert conversations.soft_delete.call_args.args[1] == conversation_id


# ---------------------------------------------------------------------------
# Recommendations, search, health
# ---------------------------------------------------------------------------

class TestRecommendAndSearch:
    def test_recommend(self, client, chatbot, document_factory):
        chatbot.recommend.return_value = RecommendResult(
            recommendations=[document_factory()], preference="space"
        )

        response = client.post("/chatbot/recommend", json={"preference": "space"})

        assert response.status_code == 200
        assert len(response.json()["data"]["recommendations"]) == 1
        chatbot.recommend.assert_awaited_once_with("space", None)

    def test_vector_search_limit_is_capped(self, client, retrieval, settings):
        response = client.post("/search/vector", json={"query": "dragons", "limit": 50})

        assert response.status_code == 200
        assert response.json() == {"success": True, "count": 0, "query": "dragons", "data": []}
        retrieval.search_text.assert_awaited_once_with("dragons", settings.max_top_k)

    def test_similar_unknown_book(self, client, retrieval):
        retrieval.find_similar.side_effect = RetrievalError("missing", ErrorCode.NOT_FOUND)

        response = client.get(f"/search/similar/{uuid4()}")

        assert response.status_code == 404

    def test_health_without_services(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "unavailable"
