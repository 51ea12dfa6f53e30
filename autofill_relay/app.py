from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Any, Awaitable, Callable

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import ClientDisconnect
from starlette.types import ASGIApp, Receive, Scope, Send

from autofill_relay.channel_registry import ChannelRegistry
from autofill_relay.config import RelaySettings, load_settings
from autofill_relay.dispatcher import ResultDispatcher, UploadResult
from autofill_relay.errors import (
    AnalysisError,
    AnalysisTimeoutError,
    InternalError,
    InvalidInputError,
    PayloadTooLargeError,
    RelayError,
    UnauthorizedError,
    UnsupportedMediaError,
)
from autofill_relay.ingestion import remove_upload, store_upload, validate_upload
from autofill_relay.push_channels import EventStreamChannel, WebSocketChannel
from autofill_relay.schema_models import HealthResponse, RegisterTokenRequest
from autofill_relay.token_store import TokenStore
from autofill_relay.upload_gate import check_token, require_api_credential, require_upload_token
from autofill_relay.vision_analyze import analyze_document

logger = logging.getLogger(__name__)

Analyzer = Callable[..., Awaitable[dict[str, Any]]]

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ApiPrefixAlias:
    """Accept both `/path` and `/api/path` for frontend compatibility, sockets included."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path", "")
        if scope["type"] in ("http", "websocket") and (path == "/api" or path.startswith("/api/")):
            scope = dict(scope, path=path[4:] or "/")
        await self.app(scope, receive, send)


def create_app(
    settings: RelaySettings | None = None,
    *,
    token_store: TokenStore | None = None,
    registry: ChannelRegistry | None = None,
    analyzer: Analyzer | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="Autofill Relay")

    app.state.settings = settings
    app.state.token_store = token_store or TokenStore()
    app.state.registry = registry or ChannelRegistry()
    app.state.analyzer = analyzer or analyze_document
    app.state.dispatcher = ResultDispatcher(app.state.token_store, app.state.registry)

    app.add_middleware(ApiPrefixAlias)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(part) for part in error.get("loc", ())[1:]) for error in exc.errors()})
        message = "Invalid request."
        if fields:
            message = f"Invalid request fields: {', '.join(item for item in fields if item) or 'body'}."
        return JSONResponse(status_code=400, content=InvalidInputError(message).to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        remove_upload(getattr(request.state, "stored_upload", None))
        return JSONResponse(status_code=500, content=InternalError().to_dict())

    @app.get("/health")
    async def health_check(request: Request):
        return HealthResponse(connections=request.app.state.registry.count()).model_dump()

    @app.get("/")
    def index():
        return FileResponse(settings.static_dir / "upload.html")

    @app.post("/register-token")
    async def register_token(payload: RegisterTokenRequest, request: Request):
        token = request.app.state.token_store.register(payload.token_id, payload.expires)
        return {
            "message": "Token registered successfully",
            "expires_at": token.expires_at.isoformat(),
        }

    @app.get("/upload")
    async def upload_page(token: str = Depends(require_upload_token)):
        return FileResponse(settings.static_dir / "upload.html")

    @app.post("/upload")
    async def upload_document(
        request: Request,
        token: str = Depends(require_upload_token),
        api_key: str = Depends(require_api_credential),
    ):
        state = request.app.state
        request.state.stored_upload = None

        async def receive_and_analyze() -> dict[str, Any]:
            try:
                async with request.form() as form:
                    upload = form.get("file")
                    if not isinstance(upload, UploadFile):
                        raise InvalidInputError("No file uploaded")
                    filename = upload.filename or ""
                    content_type = upload.content_type
                    content = await upload.read()
            except (MultiPartException, StarletteHTTPException, ClientDisconnect) as exc:
                logger.info("Rejected unreadable upload body token=%s: %s", token, exc)
                raise InvalidInputError("Malformed multipart body") from exc

            mime_type = validate_upload(filename, content_type, content, max_bytes=settings.max_upload_bytes)
            request.state.stored_upload = store_upload(settings.upload_dir, filename, content)
            return await state.analyzer(
                content,
                mime_type,
                api_key=api_key,
                provider=settings.vision_provider,
                model=settings.vision_model(),
            )

        try:
            fields = await asyncio.wait_for(receive_and_analyze(), timeout=settings.analysis_timeout_seconds)
            result = UploadResult.succeeded(fields)
        except asyncio.TimeoutError:
            logger.warning("Analysis timed out token=%s after %.1fs", token, settings.analysis_timeout_seconds)
            result = UploadResult.failed(
                AnalysisTimeoutError(f"Document analysis timed out after {settings.analysis_timeout_seconds:g} seconds.")
            )
        except (InvalidInputError, PayloadTooLargeError, UnsupportedMediaError):
            raise
        except AnalysisError as exc:
            logger.warning("Analysis failed token=%s: %s", token, exc.message)
            result = UploadResult.failed(exc)
        except Exception:
            logger.exception("Unexpected error while processing upload token=%s", token)
            result = UploadResult.failed(InternalError())

        outcome = await state.dispatcher.dispatch(token, result, artifacts=[request.state.stored_upload])
        request.state.stored_upload = None
        return JSONResponse(status_code=outcome.status_code, content=outcome.body)

    @app.get("/push/{token}")
    async def push_stream(token: str, request: Request):
        state = request.app.state
        check_token(state.token_store, token)
        channel = EventStreamChannel(token, keepalive_seconds=settings.sse_keepalive_seconds)
        state.registry.attach(token, channel)

        async def stream():
            try:
                async for chunk in channel.events(request.is_disconnected):
                    yield chunk
            finally:
                state.registry.detach_if_current(token, channel)

        return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.websocket("/ws")
    async def push_socket(websocket: WebSocket, token: str | None = None):
        state = websocket.app.state
        try:
            check_token(state.token_store, token)
        except UnauthorizedError as exc:
            await websocket.close(code=4401, reason=exc.message)
            return

        await websocket.accept()
        channel = WebSocketChannel(websocket, token)
        state.registry.attach(token, channel)
        try:
            await channel.confirm()
            while True:
                message = await websocket.receive_text()
                if message.strip().lower() == "ping":
                    await websocket.send_json({"type": "PONG"})
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected by client token=%s", token)
        finally:
            channel.mark_disconnected()
            state.registry.detach_if_current(token, channel)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="Run the autofill relay server.")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")))
    args = parser.parse_args()

    settings = app.state.settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Server is running on port %s", args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
