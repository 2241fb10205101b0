import time

from fastapi import FastAPI, Request
from pydantic import BaseModel

from toolchat.conversation_routes import router as conversation_router
from toolchat.deps import close_http_clients
from toolchat.log_sanitizer import sanitize_headers_for_log
from toolchat.logging_config import logger
from toolchat.session_routes import router as session_router
from toolchat.sessions.transport_registry import default_registry


class HealthResponse(BaseModel):
    status: str = "ok"


def create_app() -> FastAPI:
    app = FastAPI(title="Toolchat Gateway", version="0.1.0")
    # Conversation turns and connection checks.
    app.include_router(conversation_router)
    # Tool-session inspection and teardown.
    app.include_router(session_router)

    @app.on_event("shutdown")
    async def _close_transports() -> None:
        await default_registry.close_all()
        await close_http_clients()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        path = request.url.path
        logger.debug(
            "HTTP %s %s from %s, headers=%s",
            request.method,
            path,
            request.client.host if request.client else "-",
            sanitize_headers_for_log(request.headers),
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error while processing %s %s", request.method, path)
            raise
        # For streaming routes this measures time to first byte only.
        logger.info(
            "HTTP %s %s -> %s (%.1fms)",
            request.method,
            path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    return app


__all__ = ["HealthResponse", "create_app"]
