from __future__ import annotations

from typing import Any

import pytest

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeChannel:
    """In-memory push channel recording what it was sent."""

    kind = "fake"

    def __init__(self, *, open_: bool = True, fail_send: bool = False, fail_close: bool = False):
        self._open = open_
        self.fail_send = fail_send
        self.fail_close = fail_close
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.close_calls = 0

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail_send:
            raise RuntimeError("socket gone")
        self.sent.append((event, payload))

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False
        if self.fail_close:
            raise RuntimeError("already closed")


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def fake_channel_cls() -> type[FakeChannel]:
    return FakeChannel
