"""
Server-Sent Events transport.

Frames gateway stream tokens as SSE events, manages a stream's
lifecycle (idle -> open -> closed), and parses SSE streams coming back
from upstream providers.

Wire events: ``token``, ``tool_call``, ``usage`` (terminal, success),
``error`` (terminal, failure) and ``ping``.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Iterable

from .errors import StreamStateError
from .models import StreamToken, StreamTokenType

logger = logging.getLogger(__name__)


@dataclass
class SSEMessage:
    data: str
    event: str | None = None
    id: str | None = None
    retry: int | None = None

    def json(self):
        return json.loads(self.data)


def format_sse_message(message: SSEMessage) -> str:
    """Render one event as a field block terminated by a blank line."""
    output = ""
    if message.event:
        output += f"event: {message.event}\n"
    if message.id:
        output += f"id: {message.id}\n"
    if message.retry is not None:
        output += f"retry: {message.retry}\n"
    for line in message.data.split("\n"):
        output += f"data: {line}\n"
    return output + "\n"


def _dumps(data) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def format_stream_token(token: StreamToken) -> SSEMessage:
    if token.type is StreamTokenType.TOKEN:
        return SSEMessage(event="token", data=_dumps({"content": token.content}))
    if token.type is StreamTokenType.TOOL_CALL:
        return SSEMessage(event="tool_call", data=_dumps(token.tool_call.to_dict()))
    if token.type is StreamTokenType.DONE:
        return SSEMessage(
            event="usage",
            data=_dumps({
                "finishReason": token.finish_reason,
                "model": token.model,
                "usage": token.usage.to_dict() if token.usage else None,
                "record": token.record.to_dict() if token.record else None,
            }),
        )
    payload = {"error": token.error}
    if token.record is not None:
        payload["record"] = token.record.to_dict()
    return SSEMessage(event="error", data=_dumps(payload))


def format_error(error: BaseException | str) -> SSEMessage:
    message = error if isinstance(error, str) else (str(error) or type(error).__name__)
    return SSEMessage(event="error", data=_dumps({"error": message}))


def format_ping() -> SSEMessage:
    return SSEMessage(event="ping", data=_dumps({"timestamp": int(time.time() * 1000)}))


def get_sse_headers() -> dict[str, str]:
    """Response headers for an event stream."""
    return {
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


class SSEState(str, Enum):
    IDLE = "idle"
    OPEN = "open"
    CLOSED = "closed"


_CLOSE = object()


class SSEWriter:
    """
    Push-protocol writer feeding one client.

    Producers ``write()`` events; the HTTP layer iterates ``iter_bytes()``.
    A bounded queue sits between them, so a slow client slows the
    producer down.

    Lifecycle rules:
    - ``write()`` before ``open()`` raises StreamStateError.
    - ``write()`` after ``close()`` is silently dropped and returns False.
      Writes already waiting when close() is called are still delivered.
    - ``close()`` is idempotent.
    - After a terminal event (usage or error) nothing else is queued,
      keep-alive pings included.
    - When the consumer goes away the writer closes itself, so the
      producer's next write returns False and it can stop pulling upstream.
    """

    def __init__(self, max_pending: int = 64):
        self._state = SSEState.IDLE
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._keepalive: asyncio.Task | None = None
        self._terminated = False

    @property
    def state(self) -> SSEState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is SSEState.CLOSED

    def open(self, ping_interval: float | None = None) -> "SSEWriter":
        """
        Open the stream. With ``ping_interval`` a keep-alive ping is sent
        periodically while open (requires a running event loop).
        """
        if self._state is not SSEState.IDLE:
            raise StreamStateError(f"cannot open a writer in state '{self._state.value}'")
        self._state = SSEState.OPEN
        if ping_interval:
            self._keepalive = asyncio.get_running_loop().create_task(
                self._ping_loop(ping_interval)
            )
        return self

    async def write(self, message: SSEMessage, terminal: bool = False) -> bool:
        """
        Queue one event. A ``terminal`` event (usage or error) is the last
        one the client sees: keep-alive stops and later writes are dropped.
        """
        if self._state is SSEState.IDLE:
            raise StreamStateError("write() called before open()")
        if self._state is SSEState.CLOSED or self._terminated:
            logger.debug("Dropping %s event written after termination", message.event)
            return False

        if terminal:
            self._terminated = True
            self._stop_keepalive()
        await self._queue.put(format_sse_message(message).encode("utf-8"))
        return self._state is SSEState.OPEN

    async def write_token(self, token: StreamToken) -> bool:
        return await self.write(format_stream_token(token), terminal=token.is_terminal)

    async def write_error(self, error: BaseException | str) -> bool:
        return await self.write(format_error(error), terminal=True)

    async def ping(self) -> bool:
        return await self.write(format_ping())

    async def fail(self, error: BaseException | str) -> None:
        """Emit a terminal error event, then close."""
        if self._state is SSEState.OPEN:
            await self.write_error(error)
        await self.close()

    async def close(self) -> None:
        if self._state is SSEState.CLOSED:
            return
        self._state = SSEState.CLOSED
        self._stop_keepalive()
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            # consumer drains the backlog and then sees CLOSED
            pass

    async def iter_bytes(self, producer: asyncio.Task | None = None) -> AsyncIterator[bytes]:
        """
        Yield framed events until the stream is closed.

        If iteration stops early (client disconnect), the writer closes
        and ``producer`` is cancelled.
        """
        try:
            while True:
                if self._state is SSEState.CLOSED and self._queue.empty():
                    break
                chunk = await self._queue.get()
                if chunk is _CLOSE:
                    break
                yield chunk
        finally:
            self._consumer_gone(producer)

    def _consumer_gone(self, producer: asyncio.Task | None) -> None:
        if self._state is not SSEState.CLOSED:
            logger.info("SSE consumer disconnected, closing stream")
        self._state = SSEState.CLOSED
        self._stop_keepalive()
        # unblock producers waiting on a full queue
        while not self._queue.empty():
            self._queue.get_nowait()
        if producer is not None and not producer.done():
            producer.cancel()

    def _stop_keepalive(self) -> None:
        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None

    async def _ping_loop(self, interval: float) -> None:
        while self._state is SSEState.OPEN:
            await asyncio.sleep(interval)
            if not await self.ping():
                break


async def pipe_stream(writer: SSEWriter, tokens: AsyncIterator[StreamToken]) -> None:
    """
    Drive a gateway token stream into an open writer.

    Stops pulling tokens as soon as a write is refused (client gone) and
    closes the token stream so the upstream connection is released. Any
    failure that escapes the stream becomes a terminal ``error`` event;
    the writer is always closed on exit.
    """
    terminated = False
    try:
        async for token in tokens:
            if not await writer.write_token(token):
                break
            if token.is_terminal:
                terminated = True
                break
        else:
            if not writer.is_closed:
                await writer.write_error("stream ended without a terminal event")
                terminated = True
    except Exception as e:
        logger.error("Stream failed: %s", e, exc_info=e)
        if not terminated and not writer.is_closed:
            await writer.write_error(e)
    finally:
        aclose = getattr(tokens, "aclose", None)
        if aclose is not None:
            await aclose()
        await writer.close()


class _SSEParser:
    def __init__(self):
        self._reset()

    def _reset(self):
        self._event = None
        self._id = None
        self._retry = None
        self._data: list[str] = []
        self._seen = False

    def feed(self, line: str) -> SSEMessage | None:
        line = line.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        self._seen = True
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        elif name == "retry":
            try:
                self._retry = int(value)
            except ValueError:
                pass
        return None

    def flush(self) -> SSEMessage | None:
        if not self._seen:
            return None
        message = SSEMessage(
            data="\n".join(self._data),
            event=self._event,
            id=self._id,
            retry=self._retry,
        )
        self._reset()
        return message


async def iter_sse_messages(lines: AsyncIterator[str]) -> AsyncIterator[SSEMessage]:
    """Parse an async stream of lines (e.g. httpx ``aiter_lines()``) into events."""
    parser = _SSEParser()
    async for line in lines:
        message = parser.feed(line)
        if message is not None:
            yield message
    message = parser.flush()
    if message is not None:
        yield message


def parse_sse_text(text: str | Iterable[str]) -> list[SSEMessage]:
    """Parse a complete SSE body into events."""
    lines = text.split("\n") if isinstance(text, str) else text
    parser = _SSEParser()
    messages = []
    for line in lines:
        message = parser.feed(line)
        if message is not None:
            messages.append(message)
    message = parser.flush()
    if message is not None:
        messages.append(message)
    return messages
