from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any

from autofill_relay.config import DEFAULT_GEMINI_MODEL, DEFAULT_OPENAI_MODEL, load_settings
from autofill_relay.errors import AnalysisError
from autofill_relay.llm_provider import extract_fields_with_gemini, extract_fields_with_openai

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = (
    "Analyze this document and extract all text fields in JSON format. "
    "Include field names and their values. "
    "Return a single JSON object mapping each field name to its value."
)

FREE_TEXT_FIELD = "text"

_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def parse_extracted_fields(raw_text: str) -> dict[str, Any]:
    """Parse model output into a field mapping.

    Only a JSON object counts as structured output. Prose, arrays or broken
    JSON are kept under a single free-text field instead of failing.
    """
    text = raw_text.strip()
    fenced = _CODE_FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {FREE_TEXT_FIELD: raw_text.strip()}

    if isinstance(parsed, dict):
        return parsed
    return {FREE_TEXT_FIELD: raw_text.strip()}


async def analyze_document(
    image_bytes: bytes,
    mime_type: str,
    *,
    api_key: str,
    provider: str = "gemini",
    model: str | None = None,
) -> dict[str, Any]:
    selected_provider = (provider or "gemini").strip().lower()

    if selected_provider == "gemini":
        response = await extract_fields_with_gemini(
            api_key=api_key,
            model=model or DEFAULT_GEMINI_MODEL,
            image_bytes=image_bytes,
            prompt=EXTRACTION_PROMPT,
            mime_type=mime_type,
        )
    elif selected_provider in {"openai", "chatgpt"}:
        response = await extract_fields_with_openai(
            api_key=api_key,
            model=model or DEFAULT_OPENAI_MODEL,
            image_bytes=image_bytes,
            prompt=EXTRACTION_PROMPT,
            mime_type=mime_type,
        )
    else:
        raise AnalysisError(f"Unsupported vision provider '{selected_provider}'.")

    if not response.ok:
        message = "; ".join(response.warnings) or "Invalid response from API"
        logger.warning("Vision provider failed provider=%s: %s", selected_provider, message)
        raise AnalysisError(message)

    raw_text = (response.text or "").strip()
    if not raw_text:
        raise AnalysisError("Invalid response from API")

    return parse_extracted_fields(raw_text)


def main() -> None:
    parser = argparse.ArgumentParser(description="Extract document fields from an image.")
    parser.add_argument("--provider", choices=["gemini", "openai"], default=None)
    parser.add_argument("--image", required=True, help="Path to the image file")
    args = parser.parse_args()

    settings = load_settings()
    if args.provider:
        settings.vision_provider = args.provider
    api_key = settings.default_api_key()
    if not api_key:
        parser.error("Set GEMINI_API_KEY or OPENAI_API_KEY first.")

    image_path = Path(args.image)
    mime_type, _ = mimetypes.guess_type(str(image_path))
    try:
        fields = asyncio.run(
            analyze_document(
                image_path.read_bytes(),
                mime_type or "image/jpeg",
                api_key=api_key,
                provider=settings.vision_provider,
                model=settings.vision_model(),
            )
        )
    except AnalysisError as exc:
        print(f"Error: {exc.message}")
        raise SystemExit(1)

    print(json.dumps(fields, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
