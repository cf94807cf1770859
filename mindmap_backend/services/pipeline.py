"""
Mindmap Pipeline
================
Topic → [reference enrichment] → outline → coverage → leaf examples → markdown.

Stages run strictly one after another. An outline stage whose output does not
parse is skipped and its input carried forward; the markdown stage has no
fallback. Provider errors are never swallowed: they abort the request.
"""

import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from mindmap_backend.core.errors import MindmapError, StageError
from mindmap_backend.schemas.api import MindmapResponse, PipelineOptions
from mindmap_backend.schemas.outline import EnrichmentSnippet, Outline, PipelineUsage
from mindmap_backend.services.enrichment import EnrichmentFetcher, EnrichmentResult
from mindmap_backend.services.llm_client import ModelClient
from mindmap_backend.services.stages import (
    Stage,
    build_outline_stages,
    format_sources,
    render_markdown,
    seed_outline,
    stream_markdown,
)
from mindmap_backend.services.streaming import EventChannel, event

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, str], Awaitable[None]]
SourcesCallback = Callable[[List[EnrichmentSnippet]], Awaitable[None]]

ENRICHMENT_WARNING = "Reference sources were partly unavailable; the mindmap may be less grounded."


async def _no_status(stage: str, message: str) -> None:
    return None


async def _no_sources(snippets: List[EnrichmentSnippet]) -> None:
    return None


async def apply_stages(
    stages: List[Stage],
    outline: Outline,
    options: PipelineOptions,
    on_status: StatusCallback = _no_status,
) -> Tuple[Outline, List[str]]:
    """
    Run outline stages in order with last-good-value semantics.
    Returns the final outline and one warning per stage that fell back.
    """
    warnings: List[str] = []
    for stage in stages:
        await on_status(stage.name, stage.status)
        try:
            outline = await stage.run(outline, options)
            logger.info(
                f"[PIPELINE] ✓ {stage.name}: {len(outline.branches)} branches, "
                f"{len(outline.leaves())} leaves"
            )
        except StageError as e:
            logger.warning(f"[PIPELINE] {stage.name} fell back to previous outline: {e.reason}")
            warnings.append(f"The {stage.name} step was skipped ({e.reason}).")
    return outline, warnings


class MindmapPipeline:
    """One instance per request; holds no state between calls."""

    def __init__(self, client: ModelClient, fetcher: Optional[EnrichmentFetcher] = None):
        self.client = client
        self.fetcher = fetcher or EnrichmentFetcher()

    async def _prepare(
        self,
        options: PipelineOptions,
        usage: PipelineUsage,
        on_status: StatusCallback = _no_status,
        on_sources: SourcesCallback = _no_sources,
    ) -> Tuple[Outline, EnrichmentResult, List[str]]:
        warnings: List[str] = []
        enrichment = EnrichmentResult()
        if options.web_enrichment:
            await on_status("enrichment", "Fetching sources")
            enrichment = await self.fetcher.fetch(options.topic)
            await on_sources(enrichment.snippets)
            if enrichment.degraded:
                warnings.append(ENRICHMENT_WARNING)

        stages = build_outline_stages(self.client, usage, enrichment.context)
        outline, stage_warnings = await apply_stages(stages, seed_outline(options), options, on_status)
        warnings.extend(stage_warnings)
        return outline, enrichment, warnings

    async def run(self, options: PipelineOptions) -> MindmapResponse:
        start = time.perf_counter()
        logger.info(f"[PIPELINE] Generating mindmap for topic: {options.topic}")

        usage = PipelineUsage()
        outline, enrichment, warnings = await self._prepare(options, usage)
        markdown = await render_markdown(self.client, outline, options, usage)

        sources = format_sources(enrichment.snippets)
        if sources:
            markdown = f"{markdown}\n\n{sources}"

        logger.info(
            f"[PIPELINE] ✓ '{options.topic}' — {len(markdown.splitlines())} lines, "
            f"{usage.total.total_tokens} tokens, {time.perf_counter() - start:.1f}s"
        )
        return MindmapResponse(
            markdown=markdown,
            usage=usage,
            sources=enrichment.snippets,
            warnings=warnings,
        )

    async def produce(self, options: PipelineOptions, channel: EventChannel) -> None:
        """Streaming producer: status events, then markdown text chunks, then done/error."""

        async def on_status(stage: str, message: str) -> None:
            await channel.send(event("status", stage=stage, message=message))

        async def on_sources(snippets: List[EnrichmentSnippet]) -> None:
            await channel.send(event("sources", sources=[s.model_dump() for s in snippets]))

        usage = PipelineUsage()
        try:
            outline, enrichment, warnings = await self._prepare(options, usage, on_status, on_sources)
            sources = [s.model_dump() for s in enrichment.snippets]

            await on_status("render", "Rendering markdown")
            async for text in stream_markdown(self.client, outline, options, usage):
                if not await channel.send(event("text", text=text)):
                    return

            appendix = format_sources(enrichment.snippets)
            if appendix:
                await channel.send(event("text", text=f"\n{appendix}\n"))

            await channel.send(event(
                "done",
                usage=usage.model_dump(by_alias=True),
                sources=sources,
                warnings=warnings,
            ))
        except MindmapError as e:
            logger.error(f"[PIPELINE] Stream failed: {e}")
            await channel.send(event("error", error=e.error, message=str(e)))
        except Exception as e:
            logger.exception(f"[PIPELINE] Unexpected stream failure: {e}")
            await channel.send(event("error", error="Failed to generate mindmap", message=str(e)))
        finally:
            channel.close()
