from __future__ import annotations

import logging

from fastapi import Header, Query, Request

from autofill_relay.errors import UnauthorizedError
from autofill_relay.token_store import TOKEN_EXPIRED, TOKEN_VALID, TokenStore

logger = logging.getLogger(__name__)


def check_token(token_store: TokenStore, token: str | None) -> str:
    """Return the token if it may be used, else raise `UnauthorizedError`."""
    if not token:
        raise UnauthorizedError("Missing upload token.")

    status = token_store.validate(token)
    if status == TOKEN_VALID:
        return token

    if status == TOKEN_EXPIRED:
        logger.info("Rejected expired token=%s", token)
        raise UnauthorizedError("Upload token has expired.")

    logger.info("Rejected unknown token=%s", token)
    raise UnauthorizedError("Invalid or already used upload token.")


def require_upload_token(request: Request, token: str | None = Query(None)) -> str:
    """Gate for upload routes; runs before the request body is read."""
    resolved = check_token(request.app.state.token_store, token)
    request.state.upload_token = resolved
    return resolved


def require_api_credential(
    request: Request,
    x_api_key: str | None = Header(None),
    authorization: str | None = Header(None),
) -> str:
    credential = (x_api_key or "").strip()
    if not credential and authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer":
            credential = value.strip()

    if not credential:
        credential = request.app.state.settings.default_api_key() or ""

    if not credential:
        raise UnauthorizedError("API key not found.")
    return credential
