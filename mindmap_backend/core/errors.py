"""
Exception taxonomy
==================
Recoverable failures (``StageError``) are handled inside the pipeline.
Everything else propagates to the HTTP layer, which maps it to a status code.
"""

from typing import Optional


class MindmapError(Exception):
    """Base class for every error raised by this service."""

    status_code: int = 500
    error: str = "Failed to generate mindmap"


class StageError(MindmapError):
    """A model stage returned output that does not parse into an Outline."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason


class RenderError(MindmapError):
    """The markdown stage produced nothing usable. Fatal: there is no fallback."""

    status_code = 502


class ProviderError(MindmapError):
    """Transport or vendor failure while calling a model provider."""

    def __init__(self, message: str, status_code: Optional[int] = None, provider: str = ""):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.upstream_status = status_code
        # Surface the vendor's status only when it is already a server error.
        self.status_code = status_code if status_code and status_code >= 500 else 502


class RateLimitExceeded(MindmapError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, retry_after: int, window_seconds: int = 900):
        minutes = max(1, window_seconds // 60)
        super().__init__(f"Too many requests, please try again after {minutes} minutes")
        self.retry_after = retry_after
