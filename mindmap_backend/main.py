"""
Mindmap Backend
===============
FastAPI entry point.
  • GET  /                         health + configuration summary
  • POST /generate-mindmap         topic → markdown + usage + sources
  • POST /generate-mindmap/stream  same, delivered as Server-Sent Events
  • Every error returns the {error, message} JSON envelope
"""

import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from mindmap_backend import __version__
from mindmap_backend.api.endpoints.mindmap import router as mindmap_router
from mindmap_backend.core.config import settings
from mindmap_backend.core.errors import MindmapError, RateLimitExceeded
from mindmap_backend.schemas.api import ErrorResponse, HealthResponse

# ── Logging ──────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
)
logger = logging.getLogger(__name__)

# ── App ──────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Mindmap Backend",
    description=(
        "Turns a topic into Markmap-ready markdown.\n"
        "Outline → coverage → examples → render, optionally grounded in reference sources."
    ),
    version=__version__,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)


def _error_response(
    status_code: int,
    error: str,
    message: str,
    exc: Optional[BaseException] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    detail = None
    if exc is not None and not settings.is_production:
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    body = ErrorResponse(error=error, message=message, detail=detail)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


# ── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Invalid bodies are a 400, not FastAPI's default 422."""
    errors = exc.errors()
    parts = []
    for err in errors:
        field = ".".join(str(p) for p in err.get("loc", ())[1:]) or "body"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    topic_problem = any(err.get("loc", ())[-1:] == ("topic",) for err in errors)
    logger.info(f"[VALIDATION] {request.url.path}: {'; '.join(parts)}")
    return _error_response(
        400,
        "Topic is required" if topic_problem else "Invalid request",
        "; ".join(parts) or "Invalid request body",
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    return _error_response(
        429, exc.error, str(exc), headers={"Retry-After": str(exc.retry_after)}
    )


@app.exception_handler(MindmapError)
async def mindmap_exception_handler(request: Request, exc: MindmapError):
    logger.error(f"Mindmap generation failed on {request.url.path}: {exc}")
    return _error_response(exc.status_code, exc.error, str(exc), exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all: every unhandled exception returns a clean JSON envelope."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return _error_response(500, "Internal server error", "An internal server error occurred.", exc)


# ── CORS ─────────────────────────────────────────────────────────────────────
class MindmapCORSMiddleware(CORSMiddleware):
    """Starlette's CORS handling, with 204 preflights and logged rejections."""

    def preflight_response(self, request_headers):
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            logger.warning(
                f"[CORS] Rejected preflight from origin {request_headers.get('origin')!r}: "
                f"{bytes(response.body).decode(errors='replace')}"
            )
            return response
        headers = {
            k: v for k, v in response.headers.items()
            if k not in ("content-length", "content-type")
        }
        return Response(status_code=204, headers=headers)

    async def simple_response(self, scope, receive, send, request_headers):
        origin = request_headers.get("origin")
        if origin and not self.is_allowed_origin(origin):
            logger.warning(f"[CORS] Rejected request from origin {origin!r}")
            response = _error_response(403, "Origin not allowed", f"Origin {origin} is not allowed")
            await response(scope, receive, send)
            return
        await super().simple_response(scope, receive, send, request_headers)


app.add_middleware(
    MindmapCORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ── Routes ───────────────────────────────────────────────────────────────────
@app.get("/", tags=["System"], response_model=HealthResponse, response_model_by_alias=True)
async def health_check():
    return HealthResponse(
        status="ok",
        message="Mindmap Backend API is running",
        apiKeyConfigured=settings.api_key_configured,
        model=settings.default_model,
        environment=settings.ENVIRONMENT,
    )


@app.options("/{path:path}", include_in_schema=False)
async def options_handler(path: str):
    return Response(status_code=204)


app.include_router(mindmap_router)
