from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RegisterTokenRequest(BaseModel):
    """Body of `POST /register-token`.

    `expires` is either epoch milliseconds, as produced by `Date.now()` in the
    extension, or an ISO-8601 timestamp.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    token_id: str | None = Field(default=None, alias="id")
    expires: datetime | None = None

    @field_validator("token_id", mode="before")
    @classmethod
    def _strip_token_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("expires", mode="before")
    @classmethod
    def _epoch_millis_to_datetime(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("expires must be a timestamp")
        if isinstance(value, (int, float)):
            try:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
            except (OverflowError, OSError) as exc:
                raise ValueError("expires is out of range") from exc
        return value


class HealthResponse(BaseModel):
    status: str = "ok"
    connections: int = 0
