"""
HTTP contract
=============
Request body, success envelope and error envelope for the mindmap endpoints.
Wire names are camelCase (``examplesPerLeaf``, ``includeFAQ`` ...) except
``web_enrichment``, which the frontend has always sent in snake case.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mindmap_backend.schemas.outline import EnrichmentSnippet, PipelineUsage


class DetailLevel(str, Enum):
    normal = "normal"
    detailed = "detailed"
    ultra = "ultra"


# (max_tokens, examples_per_leaf) used when the request leaves them unset
DETAIL_LEVEL_DEFAULTS = {
    DetailLevel.normal: (1500, 1),
    DetailLevel.detailed: (3000, 2),
    DetailLevel.ultra: (4000, 4),
}


# ── Request ──────────────────────────────────────────────────────────────────

class PipelineOptions(BaseModel):
    """Fully resolved generation options handed to the pipeline."""
    model_config = ConfigDict(frozen=True)

    topic: str
    model: Optional[str] = None
    depth: int = 3
    examples_per_leaf: int = 2
    include_faq: bool = False
    include_glossary: bool = False
    audience: str = "general learners"
    tone: str = "clear and practical"
    max_tokens: int = 4000
    temperature: float = 0.7
    web_enrichment: bool = False


class MindmapRequest(BaseModel):
    """Request body for ``/generate-mindmap`` and its streaming twin."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    topic: str = Field(..., max_length=200, description="Topic to map")
    model: Optional[str] = Field(default=None, max_length=100)
    depth: int = Field(default=3, ge=2, le=4)
    examples_per_leaf: Optional[int] = Field(default=None, ge=1, le=5, alias="examplesPerLeaf")
    include_faq: bool = Field(default=False, alias="includeFAQ")
    include_glossary: bool = Field(default=False, alias="includeGlossary")
    audience: str = Field(default="general learners", max_length=80)
    tone: str = Field(default="clear and practical", max_length=80)
    max_tokens: Optional[int] = Field(default=None, ge=256, le=8000, alias="maxTokens")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    web_enrichment: bool = False
    detail_level: DetailLevel = Field(default=DetailLevel.detailed, alias="detailLevel")

    @field_validator("topic")
    @classmethod
    def topic_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Topic is required")
        return v

    @field_validator("model", "audience", "tone")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if isinstance(v, str) else v

    def to_options(self, default_max_tokens: int, default_temperature: float) -> PipelineOptions:
        level_tokens, level_examples = DETAIL_LEVEL_DEFAULTS[self.detail_level]
        return PipelineOptions(
            topic=self.topic,
            model=self.model or None,
            depth=self.depth,
            examples_per_leaf=self.examples_per_leaf or level_examples,
            include_faq=self.include_faq,
            include_glossary=self.include_glossary,
            audience=self.audience or "general learners",
            tone=self.tone or "clear and practical",
            max_tokens=self.max_tokens or min(level_tokens, default_max_tokens),
            temperature=default_temperature if self.temperature is None else self.temperature,
            web_enrichment=self.web_enrichment,
        )


# ── Response ─────────────────────────────────────────────────────────────────

class MindmapResponse(BaseModel):
    """Success envelope returned by ``/generate-mindmap``."""
    markdown: str
    usage: PipelineUsage
    sources: List[EnrichmentSnippet] = []
    warnings: List[str] = []


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "ok"
    message: str = "Mindmap Backend API is running"
    api_key_configured: bool = Field(..., alias="apiKeyConfigured")
    model: str
    environment: str


class ErrorResponse(BaseModel):
    """
    Standard error envelope.
    ``detail`` carries the traceback outside production only.
    """
    error: str
    message: str
    detail: Optional[str] = None
