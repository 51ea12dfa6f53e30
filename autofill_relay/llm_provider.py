from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_ENDPOINT = "https://api.openai.com/v1/responses"
REQUEST_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class ProviderReply:
    """Text a vision provider returned, or the reasons it returned none."""

    text: str | None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.text) and not self.warnings


def _joined(texts: list[str]) -> str | None:
    cleaned = [text.strip() for text in texts if isinstance(text, str) and text.strip()]
    return "\n".join(cleaned) or None


def gemini_reply_text(body: dict[str, Any]) -> str | None:
    """First candidate's text parts, joined."""
    candidates = body.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return _joined([part.get("text") for part in parts if isinstance(part, dict)])


def openai_reply_text(body: dict[str, Any]) -> str | None:
    """`output_text` when the Responses API provides it, else the `output_text` parts of each message."""
    shortcut = body.get("output_text")
    if isinstance(shortcut, str) and shortcut.strip():
        return shortcut.strip()

    texts: list[str] = []
    for item in body.get("output") or []:
        if not isinstance(item, dict) or not isinstance(item.get("content"), list):
            continue
        texts.extend(part.get("text") for part in item["content"] if isinstance(part, dict))
    return _joined(texts)


def _upstream_error_message(provider: str, exc: httpx.HTTPStatusError) -> str:
    status = exc.response.status_code
    detail = ""
    try:
        error_body = exc.response.json().get("error")
    except (ValueError, AttributeError):
        detail = exc.response.text.strip()[:200]
    else:
        if isinstance(error_body, dict) and isinstance(error_body.get("message"), str):
            detail = error_body["message"].strip()

    if detail:
        return f"{provider} request failed with HTTP {status}: {detail}"
    return f"{provider} request failed with HTTP {status}."


async def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        return response.json()


async def _request_text(
    provider: str,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    read_text: Callable[[dict[str, Any]], str | None],
) -> ProviderReply:
    try:
        body = await _post_json(url, payload, headers)
    except httpx.HTTPStatusError as exc:
        return ProviderReply(None, [_upstream_error_message(provider, exc)])
    except httpx.HTTPError as exc:
        return ProviderReply(None, [f"{provider} request failed before receiving a response: {exc}"])
    except ValueError:
        return ProviderReply(None, [f"{provider} response was not valid JSON."])

    text = read_text(body)
    if text is None:
        return ProviderReply(None, [f"{provider} response did not contain text content."])
    return ProviderReply(text)


async def extract_fields_with_gemini(
    api_key: str,
    model: str,
    image_bytes: bytes,
    prompt: str,
    mime_type: str,
) -> ProviderReply:
    image_part = {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}}
    payload = {
        "contents": [{"parts": [{"text": prompt}, image_part]}],
        "generationConfig": {"responseMimeType": "application/json"},
    }
    return await _request_text(
        "Gemini",
        GEMINI_ENDPOINT.format(model=model),
        payload,
        {"Content-Type": "application/json", "x-goog-api-key": api_key},
        gemini_reply_text,
    )


async def extract_fields_with_openai(
    api_key: str,
    model: str,
    image_bytes: bytes,
    prompt: str,
    mime_type: str,
) -> ProviderReply:
    data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
    payload = {
        "model": model,
        "input": [
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": prompt},
                    {"type": "input_image", "image_url": data_url},
                ],
            }
        ],
        "text": {"format": {"type": "json_object"}},
    }
    return await _request_text(
        "OpenAI",
        OPENAI_ENDPOINT,
        payload,
        {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"},
        openai_reply_text,
    )
