from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import WebSocket
from starlette.websockets import WebSocketState

CONNECTION_CONFIRMED = "CONNECTION_CONFIRMED"
SCAN_RESULTS = "SCAN_RESULTS"

_STREAM_END = object()


def format_sse_event(event: str, payload: dict[str, Any]) -> bytes:
    data = json.dumps(payload, ensure_ascii=False)
    return f"event: {event}\ndata: {data}\n\n".encode("utf-8")


def format_sse_comment(text: str) -> bytes:
    # Comment lines keep the connection alive through proxies.
    return f": {text}\n\n".encode("utf-8")


class WebSocketChannel:
    """Push-socket channel: messages are `{"type": event, "payload": ...}` JSON frames."""

    kind = "websocket"

    def __init__(self, websocket: WebSocket, token: str) -> None:
        self._websocket = websocket
        self.token = token
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        await self._websocket.send_json({"type": event, "payload": payload})

    async def confirm(self) -> None:
        await self.send(CONNECTION_CONFIRMED, {"token": self.token})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._websocket.application_state == WebSocketState.CONNECTED:
            await self._websocket.close(code=1000)

    def mark_disconnected(self) -> None:
        self._closed = True


class EventStreamChannel:
    """Push-stream channel backed by a queue that a streaming response drains."""

    kind = "sse"

    def __init__(self, token: str, keepalive_seconds: float = 15.0) -> None:
        self.token = token
        self._keepalive_seconds = keepalive_seconds
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError("Event stream already ended.")
        await self._queue.put(format_sse_event(event, payload))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_STREAM_END)

    async def events(
        self,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[bytes]:
        yield b"retry: 3000\n\n"
        yield format_sse_event(CONNECTION_CONFIRMED, {"token": self.token})
        try:
            while True:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=self._keepalive_seconds)
                except asyncio.TimeoutError:
                    if is_disconnected is not None and await is_disconnected():
                        break
                    yield format_sse_comment("keepalive")
                    continue

                if item is _STREAM_END:
                    break
                yield item
        finally:
            self._closed = True
