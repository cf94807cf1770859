"""
Outline schema
==============
The hierarchical JSON representation of a mind map before markdown rendering.
Heading levels: the title is ``#``, top-level branches ``##``, their children
``###`` and so on, never deeper than ``####``.
"""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_HEADING_LEVEL = 4


# ── Outline Tree ─────────────────────────────────────────────────────────────

class Node(BaseModel):
    """A branch, sub-branch or leaf (recursive)."""
    name: str
    summary: str = ""
    sub: List[Node] = []

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("node name must not be empty")
        return v

    @field_validator("summary", mode="before")
    @classmethod
    def summary_default(cls, v):
        return "" if v is None else v

    @field_validator("sub", mode="before")
    @classmethod
    def sub_default(cls, v):
        return [] if v is None else v

    def height(self) -> int:
        """Number of node levels from this node down to its deepest leaf."""
        if not self.sub:
            return 1
        return 1 + max(child.height() for child in self.sub)

    def leaves(self) -> List[Node]:
        if not self.sub:
            return [self]
        found: List[Node] = []
        for child in self.sub:
            found.extend(child.leaves())
        return found

    def _trim(self, levels_left: int) -> Node:
        if levels_left <= 1:
            return self.model_copy(update={"sub": []})
        return self.model_copy(update={"sub": [c._trim(levels_left - 1) for c in self.sub]})


class Outline(BaseModel):
    """Title, permitted heading depth, and ordered top-level branches."""
    title: str
    depth: int = Field(default=3, ge=2, le=MAX_HEADING_LEVEL)
    branches: List[Node] = []

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("outline title must not be empty")
        return v

    @field_validator("branches", mode="before")
    @classmethod
    def branches_default(cls, v):
        return [] if v is None else v

    @property
    def node_levels(self) -> int:
        """Node levels allowed below the title (branches are level 1)."""
        return self.depth - 1

    def height(self) -> int:
        return max((b.height() for b in self.branches), default=0)

    def leaves(self) -> List[Node]:
        found: List[Node] = []
        for branch in self.branches:
            found.extend(branch.leaves())
        return found

    def pruned(self) -> Outline:
        """Copy with every node deeper than ``depth`` allows removed."""
        if self.height() <= self.node_levels:
            return self
        return self.model_copy(
            update={"branches": [b._trim(self.node_levels) for b in self.branches]}
        )


Node.model_rebuild()


# ── Enrichment ───────────────────────────────────────────────────────────────

class EnrichmentSnippet(BaseModel):
    """A short excerpt from an allow-listed reference source."""
    title: str
    url: str
    excerpt: str


# ── Usage Accounting ─────────────────────────────────────────────────────────

class TokenUsage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: TokenUsage) -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens


class PipelineUsage(BaseModel):
    """Per-stage token usage plus the running total."""
    stages: Dict[str, TokenUsage] = {}
    total: TokenUsage = Field(default_factory=TokenUsage)

    def record(self, stage: str, usage: TokenUsage) -> None:
        current = self.stages.setdefault(stage, TokenUsage())
        current.add(usage)
        self.total.add(usage)
