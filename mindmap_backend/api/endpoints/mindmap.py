import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from mindmap_backend.core.config import settings
from mindmap_backend.core.errors import RateLimitExceeded
from mindmap_backend.schemas.api import MindmapRequest, MindmapResponse
from mindmap_backend.services.enrichment import EnrichmentFetcher
from mindmap_backend.services.llm_client import ModelClient, get_model_client
from mindmap_backend.services.pipeline import MindmapPipeline
from mindmap_backend.services.rate_limiter import InMemoryRateLimiter, RateLimiter
from mindmap_backend.services.streaming import relay_events

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Dependencies ──────────────────────────────────────────────────────────────

@lru_cache
def get_rate_limiter() -> RateLimiter:
    return InMemoryRateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        capacity=settings.RATE_LIMIT_CACHE_SIZE,
    )


def get_enrichment_fetcher() -> EnrichmentFetcher:
    return EnrichmentFetcher()


def get_pipeline(
    client: ModelClient = Depends(get_model_client),
    fetcher: EnrichmentFetcher = Depends(get_enrichment_fetcher),
) -> MindmapPipeline:
    return MindmapPipeline(client, fetcher)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
    key = client_key(request)
    if not limiter.check(key):
        retry_after = getattr(limiter, "retry_after", lambda _: settings.RATE_LIMIT_WINDOW_SECONDS)(key)
        raise RateLimitExceeded(retry_after, settings.RATE_LIMIT_WINDOW_SECONDS)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# MIND MAP
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@router.post(
    "/generate-mindmap",
    response_model=MindmapResponse,
    dependencies=[Depends(enforce_rate_limit)],
    tags=["Mindmap"],
)
async def generate_mindmap(body: MindmapRequest, pipeline: MindmapPipeline = Depends(get_pipeline)):
    """Run the full pipeline and return Markmap-ready markdown."""
    options = body.to_options(settings.DEFAULT_MAX_TOKENS, settings.DEFAULT_TEMPERATURE)
    return await pipeline.run(options)


@router.post(
    "/generate-mindmap/stream",
    dependencies=[Depends(enforce_rate_limit)],
    tags=["Mindmap"],
)
async def generate_mindmap_stream(
    body: MindmapRequest,
    request: Request,
    pipeline: MindmapPipeline = Depends(get_pipeline),
):
    """Same pipeline; the markdown is streamed via Server-Sent Events."""
    options = body.to_options(settings.DEFAULT_MAX_TOKENS, settings.DEFAULT_TEMPERATURE)
    logger.info(f"[STREAM] Streaming mindmap for topic: {options.topic}")
    return StreamingResponse(
        relay_events(
            lambda channel: pipeline.produce(options, channel),
            request.is_disconnected,
            settings.STREAM_KEEPALIVE_SECONDS,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
