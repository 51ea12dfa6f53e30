from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CORS_ORIGINS = "https://autofill-server.zeabur.app"
DEFAULT_CORS_ORIGIN_REGEX = r"chrome-extension://.*"
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_ANALYSIS_TIMEOUT_SECONDS = 30.0
DEFAULT_SSE_KEEPALIVE_SECONDS = 15.0
DEFAULT_VISION_PROVIDER = "gemini"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
STATIC_DIR = Path(__file__).parent / "static"


@dataclass
class RelaySettings:
    cors_allowed_origins: list[str] = field(default_factory=lambda: [DEFAULT_CORS_ORIGINS])
    cors_origin_regex: str | None = DEFAULT_CORS_ORIGIN_REGEX
    upload_dir: Path = Path("data/uploads")
    static_dir: Path = STATIC_DIR
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    analysis_timeout_seconds: float = DEFAULT_ANALYSIS_TIMEOUT_SECONDS
    sse_keepalive_seconds: float = DEFAULT_SSE_KEEPALIVE_SECONDS
    vision_provider: str = DEFAULT_VISION_PROVIDER
    gemini_model: str = DEFAULT_GEMINI_MODEL
    openai_model: str = DEFAULT_OPENAI_MODEL
    gemini_api_key: str | None = None
    openai_api_key: str | None = None
    log_level: str = "INFO"

    def default_api_key(self) -> str | None:
        """Server-side vision credential used when the client sends none."""
        if self.vision_provider in {"openai", "chatgpt"}:
            return self.openai_api_key
        return self.gemini_api_key

    def vision_model(self) -> str:
        if self.vision_provider in {"openai", "chatgpt"}:
            return self.openai_model
        return self.gemini_model


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> RelaySettings:
    origin_regex = os.getenv("RELAY_CORS_ORIGIN_REGEX", DEFAULT_CORS_ORIGIN_REGEX).strip()
    return RelaySettings(
        cors_allowed_origins=_split_csv(os.getenv("RELAY_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)),
        cors_origin_regex=origin_regex or None,
        upload_dir=Path(os.getenv("RELAY_UPLOAD_DIR", "data/uploads")),
        max_upload_bytes=_env_int("RELAY_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        analysis_timeout_seconds=_env_float("RELAY_ANALYSIS_TIMEOUT_SECONDS", DEFAULT_ANALYSIS_TIMEOUT_SECONDS),
        sse_keepalive_seconds=_env_float("RELAY_SSE_KEEPALIVE_SECONDS", DEFAULT_SSE_KEEPALIVE_SECONDS),
        vision_provider=(os.getenv("RELAY_VISION_PROVIDER") or DEFAULT_VISION_PROVIDER).strip().lower(),
        gemini_model=(os.getenv("RELAY_GEMINI_MODEL") or DEFAULT_GEMINI_MODEL).strip(),
        openai_model=(os.getenv("RELAY_OPENAI_MODEL") or DEFAULT_OPENAI_MODEL).strip(),
        gemini_api_key=(os.getenv("GEMINI_API_KEY") or "").strip() or None,
        openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
        log_level=(os.getenv("RELAY_LOG_LEVEL") or "INFO").strip().upper(),
    )
