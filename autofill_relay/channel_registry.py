from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PushChannel(Protocol):
    """A long-lived connection that can receive one asynchronous push."""

    kind: str

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


class ChannelRegistry:
    """Maps a token to at most one live push channel.

    Attaching a second channel for a token silently replaces the first; the
    displaced channel is not notified and is expected to clean up through its
    own disconnect handler via `detach_if_current`.
    """

    def __init__(self) -> None:
        self._channels: dict[str, PushChannel] = {}

    def attach(self, token: str, channel: PushChannel) -> None:
        previous = self._channels.get(token)
        self._channels[token] = channel
        if previous is not None and previous is not channel:
            logger.info("Push channel replaced token=%s kind=%s", token, channel.kind)
        else:
            logger.info("Push channel attached token=%s kind=%s", token, channel.kind)

    def lookup(self, token: str) -> PushChannel | None:
        return self._channels.get(token)

    def detach(self, token: str) -> None:
        self._channels.pop(token, None)

    def detach_if_current(self, token: str, channel: PushChannel) -> bool:
        # A late disconnect from a replaced channel must not drop its successor.
        if self._channels.get(token) is not channel:
            return False
        del self._channels[token]
        logger.info("Push channel detached token=%s kind=%s", token, channel.kind)
        return True

    @staticmethod
    def is_open(channel: PushChannel | None) -> bool:
        return channel is not None and bool(channel.is_open)

    def count(self) -> int:
        return len(self._channels)
