from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict

from app.api.v1.schemas import JobStatus
from app.models.ads import AdaptationResult, AnalysisResult


def utcnow() -> datetime:
    """Return an explicit, timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Job:
    """
    Internal representation of an ad adaptation job.

    This is intentionally separate from API schemas so we can evolve internal
    fields (e.g. storage details, analysis metadata) without breaking the API.
    """

    id: str
    status: JobStatus
    source_path: str
    source_width: int = 0
    source_height: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    # Content analysis of the source (set once, never mutated).
    analysis: AnalysisResult | None = None
    # Latest progress per format display name (0 or 100).
    progress: Dict[str, int] = field(default_factory=dict)
    # Per-format outcomes keyed by FormatSpec.key, e.g. "format728x90".
    results: Dict[str, AdaptationResult] = field(default_factory=dict)
    # Paths of the persisted PNG outputs, same keys as `results`.
    output_paths: Dict[str, str] = field(default_factory=dict)
    renderer: str = "compositing"
    error: str | None = None

    def touch(self) -> None:
        self.updated_at = utcnow()
