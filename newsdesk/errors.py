"""Exception taxonomy for the analysis pipeline.

Per-item errors (``StageError`` and friends) are caught at the item boundary
in the worker and turned into counters. Only ``FatalDriverError`` is meant to
escape a run.
"""

from __future__ import annotations


class NewsdeskError(Exception):
    """Base class for every error raised by newsdesk."""


# ── Upstream data ─────────────────────────────────────────────────────

class UpstreamError(NewsdeskError):
    """A market-data provider returned an unusable response."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Rate-limited (429) or temporarily unavailable (5xx) provider."""


# ── Analysis stages ───────────────────────────────────────────────────

class StageError(NewsdeskError):
    """A pipeline stage failed for a single item."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"stage {stage}: {message}")
        self.stage = stage


class StageParseError(StageError):
    """Structured model output could not be decoded or validated."""


class StageTimeoutError(StageError):
    """A stage exceeded its time budget."""


# ── Persistence / driver ──────────────────────────────────────────────

class PersistenceConflict(NewsdeskError):
    """Another worker already stored a complete analysis for this id."""

    def __init__(self, news_id: str) -> None:
        super().__init__(f"analysis already persisted for {news_id}")
        self.news_id = news_id


class FatalDriverError(NewsdeskError):
    """The whole invocation cannot proceed (feed unreachable, auth failure)."""
