from __future__ import annotations

import logging
from typing import Callable, Tuple

from app.models.ads import FormatSpec, PlacementPlan, PlacementStrategy, Rect
from app.services.errors import InvalidDimensions


logger = logging.getLogger(__name__)


# Targets at or beyond this ratio are treated as leaderboard-style banners.
VERY_WIDE_MIN_RATIO = 4.0
# Targets at or below this ratio are display blocks that keep the full source.
NEAR_SQUARE_MAX_RATIO = 1.5
# Sources wider than this are letterboxed into very wide targets instead of cropped.
WIDE_SOURCE_MIN_RATIO = 4.0

VERY_WIDE = "very_wide"
NEAR_SQUARE = "near_square"
MODERATE = "moderate"

# Ordered (name, predicate) pairs; the first predicate that accepts the target
# aspect ratio decides the class.
RATIO_CLASSES: Tuple[Tuple[str, Callable[[float], bool]], ...] = (
    (VERY_WIDE, lambda ratio: ratio >= VERY_WIDE_MIN_RATIO),
    (NEAR_SQUARE, lambda ratio: ratio <= NEAR_SQUARE_MAX_RATIO),
    (MODERATE, lambda ratio: True),
)


def classify_ratio(ratio: float) -> str:
    """Bucket a target aspect ratio into very_wide, near_square or moderate."""
    for name, predicate in RATIO_CLASSES:
        if predicate(ratio):
            return name
    return MODERATE


def _clamp_size(value: int, limit: int) -> int:
    """Keep a floored size within [1, limit]."""
    return max(1, min(limit, value))


def _center(container: int, content: int) -> int:
    return max(0, (container - content) // 2)


def _plan_letterbox(
    source_width: int,
    source_height: int,
    fmt: FormatSpec,
    strategy: PlacementStrategy | None,
) -> PlacementPlan:
    """
    Uniformly scale the whole source into the target and center it.

    No cropping; margins on the shorter axis show the background color.
    When `strategy` is None the fit direction decides between FIT_WIDE and
    FIT_TALL.
    """
    # scale = min(W / sw, H / sh), evaluated with integer cross-multiplication
    # so the bound axis lands exactly on the canvas edge.
    width_bound = fmt.width * source_height <= fmt.height * source_width
    if width_bound:
        scaled_w = fmt.width
        scaled_h = _clamp_size(source_height * fmt.width // source_width, fmt.height)
    else:
        scaled_w = _clamp_size(source_width * fmt.height // source_height, fmt.width)
        scaled_h = fmt.height

    if strategy is None:
        strategy = PlacementStrategy.FIT_WIDE if width_bound else PlacementStrategy.FIT_TALL

    return PlacementPlan(
        strategy=strategy,
        source_rect=Rect(0, 0, source_width, source_height),
        dest_rect=Rect(
            _center(fmt.width, scaled_w),
            _center(fmt.height, scaled_h),
            scaled_w,
            scaled_h,
        ),
        canvas_width=fmt.width,
        canvas_height=fmt.height,
    )


def _plan_horizontal_band(source_width: int, source_height: int, fmt: FormatSpec) -> PlacementPlan:
    """
    Crop a full-width band of the target's aspect ratio, vertically centered.

    The band is scaled to cover the whole canvas, trading vertical content for
    a full-bleed result.
    """
    crop_h = _clamp_size(source_width * fmt.height // fmt.width, source_height)
    return PlacementPlan(
        strategy=PlacementStrategy.CROP_HORIZONTAL,
        source_rect=Rect(0, _center(source_height, crop_h), source_width, crop_h),
        dest_rect=Rect(0, 0, fmt.width, fmt.height),
        canvas_width=fmt.width,
        canvas_height=fmt.height,
    )


def _plan_vertical_band(source_width: int, source_height: int, fmt: FormatSpec) -> PlacementPlan:
    """Crop a full-height band of the target's aspect ratio, horizontally centered."""
    crop_w = _clamp_size(source_height * fmt.width // fmt.height, source_width)
    return PlacementPlan(
        strategy=PlacementStrategy.CROP_VERTICAL,
        source_rect=Rect(_center(source_width, crop_w), 0, crop_w, source_height),
        dest_rect=Rect(0, 0, fmt.width, fmt.height),
        canvas_width=fmt.width,
        canvas_height=fmt.height,
    )


def _plan_very_wide(source_width: int, source_height: int, fmt: FormatSpec) -> PlacementPlan:
    if source_width / source_height > WIDE_SOURCE_MIN_RATIO:
        # Source is already banner-shaped; keep all of it.
        return _plan_letterbox(source_width, source_height, fmt, strategy=None)
    return _plan_horizontal_band(source_width, source_height, fmt)


def _plan_near_square(source_width: int, source_height: int, fmt: FormatSpec) -> PlacementPlan:
    return _plan_letterbox(
        source_width, source_height, fmt, strategy=PlacementStrategy.CENTER_SCALE
    )


def _plan_moderate(source_width: int, source_height: int, fmt: FormatSpec) -> PlacementPlan:
    if source_width * fmt.height > fmt.width * source_height:
        # Source is relatively wider: cut equal margins off left and right.
        return _plan_vertical_band(source_width, source_height, fmt)
    return _plan_horizontal_band(source_width, source_height, fmt)


_PLANNERS = {
    VERY_WIDE: _plan_very_wide,
    NEAR_SQUARE: _plan_near_square,
    MODERATE: _plan_moderate,
}


def plan_placement(source_width: int, source_height: int, fmt: FormatSpec) -> PlacementPlan:
    """
    Decide how to scale, crop and center a source image for a target format.

    The strategy is selected by the target's aspect-ratio class:
    - very_wide (>= 4:1): letterbox sources that are themselves wider than
      4:1, otherwise crop a centered horizontal band and fill the canvas.
    - near_square (<= 1.5:1): uniform scale, centered, full source kept.
    - moderate (in between): full-bleed center crop along whichever axis the
      source has in excess.

    Pure and deterministic: sizes are floored, offsets use
    (container - content) // 2. Raises InvalidDimensions when any source or
    target dimension is not positive.
    """
    if source_width <= 0 or source_height <= 0:
        raise InvalidDimensions(
            f"Source dimensions must be positive, got {source_width}x{source_height}"
        )
    if fmt.width <= 0 or fmt.height <= 0:
        raise InvalidDimensions(
            f"Target dimensions must be positive, got {fmt.width}x{fmt.height}"
        )

    ratio_class = classify_ratio(fmt.aspect_ratio)
    plan = _PLANNERS[ratio_class](source_width, source_height, fmt)
    logger.debug(
        "Planned %s for %dx%d -> %s (%s): src=%s dst=%s",
        plan.strategy.value,
        source_width,
        source_height,
        fmt.key,
        ratio_class,
        plan.source_rect,
        plan.dest_rect,
    )
    return plan
