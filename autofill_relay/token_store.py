from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from autofill_relay.errors import InvalidInputError

logger = logging.getLogger(__name__)

TOKEN_VALID = "valid"
TOKEN_NOT_FOUND = "not_found"
TOKEN_EXPIRED = "expired"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadToken:
    token_id: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class TokenStore:
    """In-memory map of upload tokens to their expiry.

    Tokens are single-use: the dispatcher consumes a token once its upload
    completes. Expired entries are evicted lazily by `validate`.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._tokens: dict[str, UploadToken] = {}

    def register(self, token_id: str | None, expires_at: datetime | None) -> UploadToken:
        if not token_id or expires_at is None:
            raise InvalidInputError("Token ID and expiration are required")
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        token = UploadToken(token_id=token_id, expires_at=expires_at)
        replaced = token_id in self._tokens
        self._tokens[token_id] = token
        logger.info(
            "Token registered token=%s expires_at=%s replaced=%s",
            token_id,
            expires_at.isoformat(),
            replaced,
        )
        return token

    def validate(self, token_id: str | None) -> str:
        token = self._tokens.get(token_id or "")
        if token is None:
            return TOKEN_NOT_FOUND

        if token.is_expired(self._clock()):
            del self._tokens[token.token_id]
            logger.info("Token expired and evicted token=%s", token.token_id)
            return TOKEN_EXPIRED

        return TOKEN_VALID

    def consume(self, token_id: str | None) -> None:
        if self._tokens.pop(token_id or "", None) is not None:
            logger.debug("Token consumed token=%s", token_id)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
