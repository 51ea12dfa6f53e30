from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from autofill_relay.channel_registry import ChannelRegistry
from autofill_relay.errors import RelayError
from autofill_relay.ingestion import remove_upload
from autofill_relay.push_channels import SCAN_RESULTS
from autofill_relay.token_store import TokenStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one analysis: extracted fields or a failure."""

    success: bool
    results: dict[str, Any] | None = None
    message: str | None = None
    error: str | None = None
    status_code: int = 200

    @classmethod
    def succeeded(cls, results: dict[str, Any]) -> "UploadResult":
        return cls(success=True, results=results)

    @classmethod
    def failed(cls, exc: RelayError) -> "UploadResult":
        return cls(
            success=False,
            message=exc.message,
            error=exc.code,
            status_code=exc.status_code,
        )

    def to_payload(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "results": self.results or {}}
        return {"success": False, "error": self.error, "message": self.message}


@dataclass
class DispatchOutcome:
    status_code: int
    body: dict[str, Any]
    pushed: bool = False
    channel_kind: str | None = None
    warnings: list[str] = field(default_factory=list)


class ResultDispatcher:
    """Routes a finished result to every reachable target and releases the token.

    The HTTP body is always produced. Pushing to a registered channel is best
    effort: failures are logged and recorded on the outcome, never raised.
    """

    def __init__(self, token_store: TokenStore, registry: ChannelRegistry) -> None:
        self.token_store = token_store
        self.registry = registry

    async def dispatch(
        self,
        token: str,
        result: UploadResult,
        artifacts: Iterable[Path | None] = (),
    ) -> DispatchOutcome:
        body = result.to_payload()
        outcome = DispatchOutcome(status_code=result.status_code, body=body)

        try:
            channel = self.registry.lookup(token)
            self.registry.detach(token)

            if channel is not None:
                outcome.channel_kind = channel.kind
                if self.registry.is_open(channel):
                    try:
                        await channel.send(SCAN_RESULTS, body)
                        outcome.pushed = True
                    except Exception as exc:
                        logger.warning("Push delivery failed token=%s kind=%s: %s", token, channel.kind, exc)
                        outcome.warnings.append(f"Push delivery failed: {exc}")
                else:
                    logger.info("Push channel no longer open token=%s kind=%s", token, channel.kind)

                try:
                    await channel.close()
                except Exception as exc:
                    logger.warning("Closing push channel failed token=%s kind=%s: %s", token, channel.kind, exc)
        finally:
            self.token_store.consume(token)
            for artifact in artifacts:
                remove_upload(artifact)

        logger.info(
            "Result dispatched token=%s success=%s pushed=%s",
            token,
            result.success,
            outcome.pushed,
        )
        return outcome
