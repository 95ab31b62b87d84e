"""Chat completion client: blocking answers and queue-backed streaming."""

import asyncio
import contextlib
import time
from typing import AsyncIterator, Optional, Union

import structlog
from openai import AsyncOpenAI

from booklib.config import Settings
from booklib.exceptions import ErrorCode, GenerationError

logger = structlog.get_logger(__name__)

# Queue item marking a normal end of stream
_END_OF_STREAM = object()

STREAM_BUFFER_SIZE = 256


class GenerationStream:
    """A one-shot stream of answer fragments.

    A producer task drains the upstream source into a bounded queue and the
    consumer iterates with ``async for``. The queue ends with an explicit
    end marker, or with the error that stopped the producer, delivered after
    every fragment that was produced before it. ``aclose()`` cancels the
    producer, which closes the upstream request.
    """

    def __init__(self, source: AsyncIterator[str]):
        self._source = source
        self._queue: asyncio.Queue[Union[str, GenerationError, object]] = asyncio.Queue(
            maxsize=STREAM_BUFFER_SIZE
        )
        self._task: Optional[asyncio.Task] = None
        self._started = False
        self._closed = False
        self.fragment_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started or self._closed:
            raise RuntimeError("GenerationStream can only be iterated once")
        self._started = True
        self._task = asyncio.create_task(self._produce())
        return self._consume()

    async def _produce(self) -> None:
        produced = 0
        start_time = time.perf_counter()
        try:
            async for fragment in self._source:
                if not fragment:
                    continue
                produced += 1
                await self._queue.put(fragment)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            code = ErrorCode.STREAM_INTERRUPTED if produced else ErrorCode.MODEL_UNAVAILABLE
            logger.error(
                "generation_stream_failed",
                code=code.value,
                fragments=produced,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._queue.put(GenerationError("Answer generation failed", code))
            return

        logger.info(
            "generation_stream_completed",
            fragments=produced,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
        await self._queue.put(_END_OF_STREAM)

    async def _consume(self) -> AsyncIterator[str]:
        try:
            while True:
                item = await self._queue.get()
                if item is _END_OF_STREAM:
                    return
                if isinstance(item, GenerationError):
                    raise item
                self.fragment_count += 1
                yield item
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Stop the producer. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("generation_stream_cancelled", fragments=self.fragment_count)
        elif task is None:
            # Never iterated; release the upstream source directly
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()


class GenerationClient:
    """Calls the chat completion model."""

    def __init__(self, settings: Settings, client: AsyncOpenAI):
        self.settings = settings
        self.client = client

    async def complete(self, messages: list[dict]) -> str:
        """Generate a full answer.

        Args:
            messages: Chat messages in OpenAI format

        Returns:
            Non-empty answer text

        Raises:
            GenerationError: MODEL_UNAVAILABLE on transport or model failure,
                or if the model returned no text
        """
        start_time = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.chat_model,
                messages=messages,
                max_tokens=self.settings.max_tokens,
            )
            answer = response.choices[0].message.content if response.choices else None
        except Exception as e:
            logger.error(
                "generation_failed",
                model=self.settings.chat_model,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise GenerationError(
                "The answer service is unavailable", ErrorCode.MODEL_UNAVAILABLE
            ) from e

        if not answer or not answer.strip():
            logger.error("generation_empty_answer", model=self.settings.chat_model)
            raise GenerationError(
                "The answer service returned no answer", ErrorCode.MODEL_UNAVAILABLE
            )

        logger.info(
            "generation_completed",
            model=self.settings.chat_model,
            answer_length=len(answer),
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return answer.strip()

    async def _fragments(self, messages: list[dict]) -> AsyncIterator[str]:
        stream = await self.client.chat.completions.create(
            model=self.settings.chat_model,
            messages=messages,
            max_tokens=self.settings.max_tokens,
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            await stream.close()

    def stream(self, messages: list[dict]) -> GenerationStream:
        """Open a fragment stream; nothing is requested until it is iterated."""
        logger.info(
            "generation_stream_started",
            model=self.settings.chat_model,
            message_count=len(messages),
        )
        return GenerationStream(self._fragments(messages))
