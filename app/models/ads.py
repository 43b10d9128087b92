from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, NamedTuple, Sequence, Tuple


# Cap on how many detected objects an analysis keeps (highest confidence first).
MAX_OBJECTS = 10
DEFAULT_MAX_COLORS = 5


class Style(str, Enum):
    """Visual style tag assigned to the source advertisement."""

    MODERN = "modern"
    CLASSIC = "classic"
    MINIMAL = "minimal"
    BOLD = "bold"


class Color(NamedTuple):
    """Opaque RGB color with channels in [0, 255]."""

    r: int
    g: int
    b: int

    def css(self) -> str:
        return f"rgb({self.r}, {self.g}, {self.b})"


WHITE = Color(255, 255, 255)


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned box in source-image pixel coordinates."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self) -> None:
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(
                f"Invalid bounding box ({self.xmin}, {self.ymin}, {self.xmax}, {self.ymax})"
            )

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin


@dataclass(frozen=True, slots=True)
class DetectedObject:
    """
    A single labeled detection produced by the external detector.

    Consumed read-only by the adaptation engine.
    """

    label: str
    confidence: float
    box: BoundingBox

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """
    Content analysis of one source advertisement.

    Created once per source image and never mutated afterwards; every
    collection is a tuple so the instance can be shared across concurrent
    format tasks. A new adaptation run requires a new AnalysisResult.
    """

    objects: Tuple[DetectedObject, ...] = ()
    colors: Tuple[Color, ...] = ()
    style: Style = Style.MODERN
    text_lines: Tuple[str, ...] = ()
    # True when produced by the fallback path because the detector failed.
    degraded: bool = False

    @classmethod
    def build(
        cls,
        objects: Iterable[DetectedObject] = (),
        colors: Iterable[Color] = (),
        style: Style = Style.MODERN,
        text_lines: Iterable[str] = (),
        max_colors: int = DEFAULT_MAX_COLORS,
        degraded: bool = False,
    ) -> "AnalysisResult":
        """Normalize raw inputs: objects confidence-descending and capped, colors capped."""
        ranked = sorted(objects, key=lambda obj: obj.confidence, reverse=True)
        return cls(
            objects=tuple(ranked[:MAX_OBJECTS]),
            colors=tuple(Color(*c) for c in colors)[: max(0, max_colors)],
            style=Style(style),
            text_lines=tuple(text_lines),
            degraded=degraded,
        )

    @property
    def background(self) -> Color:
        """Dominant color, or white when no colors were sampled."""
        return self.colors[0] if self.colors else WHITE


@dataclass(frozen=True, slots=True)
class FormatSpec:
    """Target output format from the catalog."""

    width: int
    height: int
    name: str

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def key(self) -> str:
        """Stable identifier used to key adaptation results, e.g. ``format728x90``."""
        return f"format{self.width}x{self.height}"

    @property
    def ratio_label(self) -> str:
        return f"{self.aspect_ratio:.2f}:1"


@dataclass(frozen=True, slots=True)
class Rect:
    """Integer rectangle; ``x``/``y`` is the top-left corner."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contained_in(self, width: int, height: int) -> bool:
        return (
            self.x >= 0
            and self.y >= 0
            and self.width > 0
            and self.height > 0
            and self.right <= width
            and self.bottom <= height
        )


class PlacementStrategy(str, Enum):
    """Composition strategy chosen for a (source, format) pair."""

    # Letterbox where the fitted source spans the full canvas width.
    FIT_WIDE = "fit_wide"
    # Letterbox where the fitted source spans the full canvas height.
    FIT_TALL = "fit_tall"
    CENTER_SCALE = "center_scale"
    # Horizontal band of the source (top/bottom cut away), fills the canvas.
    CROP_HORIZONTAL = "crop_horizontal"
    # Vertical band of the source (left/right cut away), fills the canvas.
    CROP_VERTICAL = "crop_vertical"


@dataclass(frozen=True, slots=True)
class PlacementPlan:
    """
    Geometric decision for one (source, format) pair.

    ``source_rect`` is the crop region in source pixels and ``dest_rect`` is
    where that region lands on the destination canvas.
    """

    strategy: PlacementStrategy
    source_rect: Rect
    dest_rect: Rect
    canvas_width: int
    canvas_height: int

    @property
    def fills_canvas(self) -> bool:
        return self.dest_rect == Rect(0, 0, self.canvas_width, self.canvas_height)


@dataclass(slots=True)
class AdaptationResult:
    """
    Outcome of adapting the source to a single format.

    Exactly one of ``image`` (PNG bytes) or ``error_kind`` is set.
    """

    format: FormatSpec
    image: bytes | None = None
    error_kind: str | None = None
    message: str | None = None
    plan: PlacementPlan | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.image is not None

    @classmethod
    def success(
        cls, fmt: FormatSpec, data: bytes, plan: PlacementPlan | None = None
    ) -> "AdaptationResult":
        return cls(format=fmt, image=data, plan=plan)

    @classmethod
    def failure(cls, fmt: FormatSpec, kind: str, message: str) -> "AdaptationResult":
        return cls(format=fmt, error_kind=kind, message=message)


def top_labels(objects: Sequence[DetectedObject], limit: int = 3) -> list[str]:
    """Distinct object labels in rank order, at most ``limit`` of them."""
    labels: list[str] = []
    for obj in objects:
        if obj.label not in labels:
            labels.append(obj.label)
        if len(labels) >= limit:
            break
    return labels
