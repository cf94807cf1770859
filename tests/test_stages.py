"""Tests for outline validation, stage fallback and markdown post-processing."""

from __future__ import annotations

import asyncio

import pytest

from conftest import OUTLINE, RENDERED, as_json, make_options

from mindmap_backend.core.errors import RenderError, StageError
from mindmap_backend.schemas.outline import EnrichmentSnippet, Outline
from mindmap_backend.services.pipeline import apply_stages
from mindmap_backend.services.stages import (
    MarkdownFilter,
    Stage,
    clean_markdown,
    format_sources,
    parse_outline,
)


# ── parse_outline ────────────────────────────────────────────────────────────

def test_parse_outline_from_prose() -> None:
    outline = parse_outline(
        "Sure, here you go: " + as_json(OUTLINE) + " Hope it helps!",
        depth=3, stage="outline", fallback_title="Photosynthesis",
    )
    assert outline.title == "Photosynthesis"
    assert [b.name for b in outline.branches] == ["Light Reactions", "Calvin Cycle"]


def test_parse_outline_forces_requested_depth_and_prunes() -> None:
    outline = parse_outline(as_json(OUTLINE), depth=2, stage="outline", fallback_title="x")
    assert outline.depth == 2
    assert all(b.sub == [] for b in outline.branches)


def test_parse_outline_fills_missing_title() -> None:
    data = {k: v for k, v in OUTLINE.items() if k != "title"}
    outline = parse_outline(as_json(data), depth=3, stage="coverage", fallback_title="Photosynthesis")
    assert outline.title == "Photosynthesis"


@pytest.mark.parametrize("raw", [
    "garbage",
    as_json({"title": "X", "branches": []}),
    as_json({"title": "X", "branches": [{"name": ""}]}),
    as_json({"title": "X", "branches": "not a list"}),
])
def test_parse_outline_rejects_unusable_output(raw: str) -> None:
    with pytest.raises(StageError):
        parse_outline(raw, depth=3, stage="outline", fallback_title="X")


# ── apply_stages ─────────────────────────────────────────────────────────────

def test_failed_stage_keeps_previous_outline() -> None:
    first = Outline.model_validate(OUTLINE)
    seen: list[Outline] = []

    async def produce(outline, options):
        return first

    async def broken(outline, options):
        raise StageError("coverage", "model output is not a JSON object")

    async def record(outline, options):
        seen.append(outline)
        return outline

    stages = [Stage("outline", "", produce), Stage("coverage", "", broken), Stage("leaves", "", record)]
    seed = Outline(title="Photosynthesis", depth=3)

    final, warnings = asyncio.run(apply_stages(stages, seed, make_options()))

    assert seen == [first]
    assert final == first
    assert len(warnings) == 1
    assert "coverage" in warnings[0]


def test_status_callback_runs_before_each_stage() -> None:
    statuses: list[str] = []

    async def identity(outline, options):
        return outline

    async def on_status(stage: str, message: str) -> None:
        statuses.append(stage)

    stages = [Stage("outline", "Drafting", identity), Stage("leaves", "Adding", identity)]
    asyncio.run(apply_stages(stages, Outline(title="T"), make_options(), on_status))

    assert statuses == ["outline", "leaves"]


# ── Markdown post-processing ─────────────────────────────────────────────────

def test_clean_markdown_enforces_format() -> None:
    markdown = clean_markdown(RENDERED, make_options())
    lines = markdown.splitlines()

    assert lines[0] == "# Photosynthesis"
    assert sum(1 for line in lines if line.startswith("# ")) == 1
    assert not any(line.startswith("#####") for line in lines)
    assert "## Applications" in lines
    assert not any("FAQ" in line or "Glossary" in line for line in lines)
    assert "```" not in markdown
    assert "Here is" not in markdown


def test_clean_markdown_keeps_requested_sections() -> None:
    markdown = clean_markdown(RENDERED, make_options(include_faq=True, include_glossary=True))
    assert "## FAQ" in markdown
    assert "#### Chlorophyll reflects green light" in markdown
    assert "## Glossary" in markdown


def test_clean_markdown_without_title_fails() -> None:
    with pytest.raises(RenderError):
        clean_markdown("## Only a branch\n### and a leaf", make_options())


def test_filter_collapses_blank_runs() -> None:
    md_filter = MarkdownFilter()
    out = [md_filter.feed(line) for line in ["# T", "", "", "", "## B"]]
    assert [line for line in out if line is not None] == ["# T", "", "## B"]


def test_format_sources_truncates_excerpts() -> None:
    snippets = [
        EnrichmentSnippet(title="Wikipedia: Photosynthesis", url="https://en.wikipedia.org/wiki/Photosynthesis",
                          excerpt="y" * 500),
    ]
    appendix = format_sources(snippets)
    lines = appendix.splitlines()

    assert lines[0] == "## Sources"
    assert lines[1].startswith("### [Wikipedia: Photosynthesis](https://en.wikipedia.org/wiki/Photosynthesis)")
    assert lines[1].endswith("…")
    assert format_sources([]) == ""


def test_trailing_hash_kept_in_heading_text() -> None:
    markdown = clean_markdown("# C#\n## F# basics\n## Why C#\n### Closing sequence ###", make_options())
    assert markdown.splitlines() == ["# C#", "## F# basics", "## Why C#", "### Closing sequence"]
