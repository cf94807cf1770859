"""
Pipeline Stages
===============
Each outline stage is an async callable ``(Outline, PipelineOptions) -> Outline``
that raises ``StageError`` when the model output cannot be used; the driver in
``pipeline.py`` then keeps the stage's input. The render stage has no fallback
and raises ``RenderError`` instead.
"""

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional

from pydantic import ValidationError

from mindmap_backend.core.errors import RenderError, StageError
from mindmap_backend.schemas.api import PipelineOptions
from mindmap_backend.schemas.outline import (
    MAX_HEADING_LEVEL,
    EnrichmentSnippet,
    Outline,
    PipelineUsage,
    TokenUsage,
)
from mindmap_backend.services import prompts
from mindmap_backend.services.json_extract import extract_json_object
from mindmap_backend.services.llm_client import ModelClient

logger = logging.getLogger(__name__)

SOURCE_EXCERPT_CHARS = 160

StageFn = Callable[[Outline, PipelineOptions], Awaitable[Outline]]


@dataclass(frozen=True)
class Stage:
    name: str
    status: str
    run: StageFn


# ── Outline validation ───────────────────────────────────────────────────────

def parse_outline(raw_text: str, *, depth: int, stage: str, fallback_title: str) -> Outline:
    """Model text → pruned Outline, or ``StageError``."""
    data = extract_json_object(raw_text)
    if data is None:
        raise StageError(stage, "model output is not a JSON object")

    data = dict(data)
    data["depth"] = depth
    if not isinstance(data.get("title"), str) or not data["title"].strip():
        data["title"] = fallback_title

    try:
        outline = Outline.model_validate(data)
    except ValidationError as e:
        raise StageError(stage, f"outline schema mismatch ({e.error_count()} error(s))") from e

    if not outline.branches:
        raise StageError(stage, "outline has no branches")
    return outline.pruned()


def seed_outline(options: PipelineOptions) -> Outline:
    """Starting point before the first model call: title only."""
    return Outline(title=options.topic, depth=options.depth, branches=[])


# ── Outline stages ───────────────────────────────────────────────────────────

def build_outline_stages(
    client: ModelClient,
    usage: PipelineUsage,
    context: str = "",
) -> List[Stage]:
    """Outline → coverage → leaves, bound to one request's client and usage."""

    async def _json_call(stage: str, system_prompt: str, user_prompt: str,
                         outline: Outline, options: PipelineOptions) -> Outline:
        completion = await client.complete(
            system_prompt,
            user_prompt,
            model=options.model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            json_mode=True,
        )
        usage.record(stage, completion.usage)
        return parse_outline(
            completion.text, depth=options.depth, stage=stage, fallback_title=outline.title
        )

    async def generate_outline(outline: Outline, options: PipelineOptions) -> Outline:
        return await _json_call(
            "outline", prompts.OUTLINE_SYSTEM_PROMPT, prompts.outline_prompt(options), outline, options
        )

    async def improve_coverage(outline: Outline, options: PipelineOptions) -> Outline:
        return await _json_call(
            "coverage",
            prompts.COVERAGE_SYSTEM_PROMPT,
            prompts.coverage_prompt(outline, options, context),
            outline,
            options,
        )

    async def enrich_leaves(outline: Outline, options: PipelineOptions) -> Outline:
        enriched = await _json_call(
            "leaves", prompts.LEAVES_SYSTEM_PROMPT, prompts.leaves_prompt(outline, options), outline, options
        )
        if any(not leaf.summary.strip() for leaf in enriched.leaves()):
            raise StageError("leaves", "some leaves came back without a summary")
        return enriched

    return [
        Stage("outline", "Drafting outline", generate_outline),
        Stage("coverage", "Improving coverage", improve_coverage),
        Stage("leaves", "Adding examples", enrich_leaves),
    ]


# ── Markdown post-processing ─────────────────────────────────────────────────

_HEADING_RE = re.compile(r"^(#+)\s+(.*?)(?:\s+#+)?\s*$")
_FAQ_RE = re.compile(r"^\W*(faqs?|frequently asked questions)\b", re.IGNORECASE)
_GLOSSARY_RE = re.compile(r"^\W*glossary\b", re.IGNORECASE)


class MarkdownFilter:
    """
    Line-by-line cleanup of rendered markdown, usable on a stream:
      - drops code fences and any preamble before the first ``# `` title
      - demotes further ``# `` lines to ``##`` and drops anything below ``####``
      - removes FAQ / Glossary sections that were not requested
      - collapses runs of blank lines
    """

    def __init__(self, include_faq: bool = False, include_glossary: bool = False):
        self.include_faq = include_faq
        self.include_glossary = include_glossary
        self.seen_title = False
        self._skipping = False
        self._last_blank = False

    def _excluded(self, heading: str) -> bool:
        if not self.include_faq and _FAQ_RE.match(heading):
            return True
        if not self.include_glossary and _GLOSSARY_RE.match(heading):
            return True
        return False

    def feed(self, line: str) -> Optional[str]:
        """Return the cleaned line, or ``None`` to drop it."""
        line = line.rstrip()
        if line.lstrip().startswith("```"):
            return None

        match = _HEADING_RE.match(line)
        if line.startswith("#") and not match:
            return None  # bare "#" or "##Heading" without text separation

        if not self.seen_title:
            if match and len(match.group(1)) == 1 and match.group(2):
                self.seen_title = True
                self._last_blank = False
                return f"# {match.group(2)}"
            return None

        if match:
            level, text = len(match.group(1)), match.group(2)
            if not text or level > MAX_HEADING_LEVEL:
                return None
            level = max(level, 2)
            if level == 2:
                self._skipping = self._excluded(text)
            if self._skipping:
                return None
            self._last_blank = False
            return f"{'#' * level} {text}"

        if self._skipping:
            return None
        if not line.strip():
            if self._last_blank:
                return None
            self._last_blank = True
            return ""
        self._last_blank = False
        return line


def clean_markdown(text: str, options: PipelineOptions) -> str:
    md_filter = MarkdownFilter(options.include_faq, options.include_glossary)
    lines = [out for out in (md_filter.feed(line) for line in text.splitlines()) if out is not None]
    if not md_filter.seen_title:
        raise RenderError("Rendered markdown has no top-level heading")
    return "\n".join(lines).strip()


def format_sources(snippets: Iterable[EnrichmentSnippet]) -> str:
    """Citation appendix built from fetched snippets, never from model output."""
    lines = []
    for s in snippets:
        excerpt = s.excerpt
        if len(excerpt) > SOURCE_EXCERPT_CHARS:
            excerpt = excerpt[:SOURCE_EXCERPT_CHARS - 1].rstrip() + "…"
        lines.append(f"### [{s.title}]({s.url}){prompts.SUMMARY_SEPARATOR}{excerpt}")
    if not lines:
        return ""
    return "## Sources\n" + "\n".join(lines)


# ── Render stage ─────────────────────────────────────────────────────────────

async def render_markdown(
    client: ModelClient,
    outline: Outline,
    options: PipelineOptions,
    usage: PipelineUsage,
) -> str:
    completion = await client.complete(
        prompts.RENDER_SYSTEM_PROMPT,
        prompts.render_prompt(outline, options),
        model=options.model,
        max_tokens=options.max_tokens,
        temperature=options.temperature,
    )
    usage.record("render", completion.usage)
    if not completion.text.strip():
        raise RenderError("Failed to generate mindmap content")
    return clean_markdown(completion.text, options)


async def stream_markdown(
    client: ModelClient,
    outline: Outline,
    options: PipelineOptions,
    usage: PipelineUsage,
) -> AsyncIterator[str]:
    """Rendered markdown, cleaned and released one complete line at a time."""
    md_filter = MarkdownFilter(options.include_faq, options.include_glossary)
    stage_usage = TokenUsage()
    buffer = ""

    async for chunk in client.stream(
        prompts.RENDER_SYSTEM_PROMPT,
        prompts.render_prompt(outline, options),
        usage=stage_usage,
        model=options.model,
        max_tokens=options.max_tokens,
        temperature=options.temperature,
    ):
        buffer += chunk
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            out = md_filter.feed(line)
            if out is not None:
                yield out + "\n"

    if buffer:
        out = md_filter.feed(buffer)
        if out is not None:
            yield out + "\n"

    usage.record("render", stage_usage)
    if not md_filter.seen_title:
        raise RenderError("Rendered markdown has no top-level heading")
