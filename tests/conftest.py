"""Shared fakes and fixtures.

The fake model client replays scripted replies so pipeline behaviour can be
tested without any provider SDK or network access.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient  # noqa: E402

from mindmap_backend.api.endpoints.mindmap import (
    get_enrichment_fetcher,
    get_rate_limiter,
)
from mindmap_backend.main import app
from mindmap_backend.schemas.api import PipelineOptions
from mindmap_backend.schemas.outline import TokenUsage
from mindmap_backend.services.enrichment import EnrichmentResult
from mindmap_backend.services.llm_client import Completion, get_model_client
from mindmap_backend.services.rate_limiter import InMemoryRateLimiter

OUTLINE = {
    "title": "Photosynthesis",
    "depth": 3,
    "branches": [
        {
            "name": "Light Reactions",
            "summary": "Capture light energy",
            "sub": [{"name": "Photosystem II", "summary": "Splits water", "sub": []}],
        },
        {
            "name": "Calvin Cycle",
            "summary": "Fixes carbon dioxide",
            "sub": [{"name": "RuBisCO", "summary": "Key enzyme", "sub": []}],
        },
    ],
}

COVERED_OUTLINE = {
    **OUTLINE,
    "branches": OUTLINE["branches"]
    + [{"name": "Applications", "summary": "Why it matters", "sub": [{"name": "Agriculture", "summary": "Crop yield"}]}],
}

LEAVES_OUTLINE = {
    **COVERED_OUTLINE,
    "branches": [
        {**b, "sub": [{**s, "summary": s["summary"] + "; e.g. spinach leaves"} for s in b["sub"]]}
        for b in COVERED_OUTLINE["branches"]
    ],
}

RENDERED = "\n".join([
    "Here is a detailed mindmap on Photosynthesis:",
    "```markdown",
    "# Photosynthesis",
    "## Light Reactions — Capture light energy",
    "### Photosystem II — Splits water; e.g. spinach leaves",
    "##### Way too deep",
    "## Calvin Cycle — Fixes carbon dioxide",
    "### RuBisCO — Key enzyme; e.g. spinach leaves",
    "# Applications",
    "### Agriculture — Crop yield; e.g. spinach leaves",
    "## FAQ",
    "### Why are leaves green?",
    "#### Chlorophyll reflects green light",
    "## Glossary",
    "### Chlorophyll — green pigment",
    "```",
])

USAGE = TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)


def as_json(data: Any) -> str:
    return json.dumps(data)


class FakeModelClient:
    """Scripted stand-in for ``ModelClient``.

    ``replies`` feed ``complete`` in order; an Exception instance is raised
    instead of returned. ``stream_chunks`` feed ``stream``.
    """

    def __init__(self, replies: list[Any] | None = None, stream_chunks: list[Any] | None = None) -> None:
        self.replies = list(replies or [])
        self.stream_chunks = list(stream_chunks or [])
        self.calls: list[dict[str, Any]] = []

    async def complete(self, system_prompt, user_prompt, *, model=None, max_tokens=4000,
                       temperature=0.7, json_mode=False) -> Completion:
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "model": model,
            "json_mode": json_mode,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return Completion(text=reply, usage=USAGE.model_copy(), provider="fake", model=model or "fake-model")

    async def stream(self, system_prompt, user_prompt, *, usage, model=None, max_tokens=4000, temperature=0.7):
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt, "stream": True})
        for chunk in self.stream_chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk
        usage.add(USAGE)


class StubFetcher:
    def __init__(self, result: EnrichmentResult | None = None) -> None:
        self.result = result or EnrichmentResult()
        self.topics: list[str] = []

    async def fetch(self, topic: str, budget: int | None = None) -> EnrichmentResult:
        self.topics.append(topic)
        return self.result


def happy_replies() -> list[str]:
    return [as_json(OUTLINE), as_json(COVERED_OUTLINE), as_json(LEAVES_OUTLINE), RENDERED]


def make_options(**overrides: Any) -> PipelineOptions:
    values = {"topic": "Photosynthesis", "depth": 3}
    values.update(overrides)
    return PipelineOptions(**values)


@pytest.fixture
def fake_client() -> FakeModelClient:
    return FakeModelClient(happy_replies(), stream_chunks=["# Photo", "synthesis\n## Light", " Reactions\n"])


@pytest.fixture
def stub_fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_requests=30, window_seconds=900)


@pytest.fixture
def api(fake_client, stub_fetcher, limiter):
    app.dependency_overrides[get_model_client] = lambda: fake_client
    app.dependency_overrides[get_enrichment_fetcher] = lambda: stub_fetcher
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
