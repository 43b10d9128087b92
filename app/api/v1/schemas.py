from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class JobStatus(str, Enum):
    """High-level lifecycle states for an adaptation job."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETED = "completed"
    # Some formats succeeded, some failed.
    PARTIAL = "partial"
    FAILED = "failed"


class FormatInfo(BaseModel):
    """One entry of the output format catalog."""

    key: str = Field(..., description="Stable identifier, e.g. 'format728x90'.")
    name: str = Field(..., description="Human-readable format name.")
    width: PositiveInt = Field(..., description="Target width in pixels.")
    height: PositiveInt = Field(..., description="Target height in pixels.")
    ratio: str = Field(..., description="Aspect ratio label, e.g. '8.09:1'.")


class DetectedObjectInfo(BaseModel):
    label: str
    confidence: float
    box: List[float] = Field(..., description="[xmin, ymin, xmax, ymax] in source pixels.")


class AnalysisInfo(BaseModel):
    """Content analysis of the uploaded source image."""

    objects: List[DetectedObjectInfo] = Field(default_factory=list)
    colors: List[str] = Field(
        default_factory=list,
        description="Dominant colors, most frequent first, as 'rgb(r, g, b)'.",
    )
    style: str = Field(..., description="One of modern, classic, minimal, bold.")
    text_lines: List[str] = Field(default_factory=list)
    degraded: bool = Field(
        default=False,
        description="True when the detector was unavailable and defaults were used.",
    )


class JobCreateResponse(BaseModel):
    """Response returned when a new job is created."""

    job_id: str = Field(..., description="Server-generated unique job identifier.")
    status: JobStatus = Field(..., description="Status after the adaptation run.")
    outputs: List[str] = Field(
        default_factory=list,
        description="Keys of the successfully generated formats.",
    )


class JobSummary(BaseModel):
    """Lightweight view of a job suitable for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique job identifier.")
    status: JobStatus = Field(..., description="Current lifecycle status for the job.")


class JobDetail(BaseModel):
    """Detailed view of a single job."""

    id: str = Field(..., description="Unique job identifier.")
    status: JobStatus = Field(..., description="Current lifecycle status for the job.")
    source_width: int = Field(..., description="Source image width in pixels.")
    source_height: int = Field(..., description="Source image height in pixels.")
    renderer: str = Field(..., description="Renderer used: compositing or generative.")
    analysis: AnalysisInfo | None = None
    progress: Dict[str, int] = Field(
        default_factory=dict,
        description="Latest progress percent per format name.",
    )
    error: str | None = None
    created_at: str = Field(
        ...,
        description="Job creation timestamp in ISO 8601 format (UTC).",
    )
    updated_at: str = Field(
        ...,
        description="Last modification timestamp in ISO 8601 format (UTC).",
    )


class OutputInfo(BaseModel):
    """Outcome for a specific target format."""

    key: str = Field(..., description="Format key, e.g. 'format640x200'.")
    name: str = Field(..., description="Format display name.")
    width: int = Field(..., description="Target width in pixels.")
    height: int = Field(..., description="Target height in pixels.")
    ok: bool = Field(..., description="Whether this format was generated.")
    strategy: str | None = Field(
        default=None,
        description="Placement strategy used by the compositing renderer.",
    )
    error_kind: str | None = None
    message: str | None = None
    url: str | None = Field(default=None, description="Download URL for the PNG.")


class JobOutputsResponse(BaseModel):
    """Per-format outcomes for a job."""

    job_id: str = Field(..., description="Job identifier.")
    status: JobStatus = Field(..., description="Current job status.")
    outputs: List[OutputInfo] = Field(default_factory=list)
