from __future__ import annotations

import logging

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from app.models.ads import AnalysisResult, FormatSpec, PlacementPlan
from app.services.errors import RenderError
from app.services.images import encode_png


logger = logging.getLogger(__name__)

# Refuse canvases beyond 50 megapixels (same guard as decompression-bomb limits).
MAX_CANVAS_PIXELS = 50_000_000

# Text overlay is only attempted on canvases taller than this.
TEXT_MIN_CANVAS_HEIGHT = 100
TEXT_MAX_FONT_SIZE = 24
# Rendered text may use at most this fraction of the canvas width.
TEXT_MAX_WIDTH_RATIO = 0.8
# Distance from the bottom edge to the text baseline.
TEXT_BOTTOM_MARGIN = 20
# Black at ~70% opacity.
TEXT_FILL = (0, 0, 0, 178)
TEXT_FONT_NAME = "DejaVuSans.ttf"


def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    try:
        return ImageFont.truetype(TEXT_FONT_NAME, size)
    except OSError:
        # Pillow's bundled font, scalable when FreeType is available.
        return ImageFont.load_default(size=size)


def _allocate_canvas(fmt: FormatSpec, analysis: AnalysisResult) -> np.ndarray:
    """Allocate the destination raster filled with the dominant color (white if none)."""
    if fmt.width <= 0 or fmt.height <= 0:
        raise RenderError(f"Cannot allocate a {fmt.width}x{fmt.height} canvas")
    if fmt.width * fmt.height > MAX_CANVAS_PIXELS:
        raise RenderError(
            f"Canvas {fmt.width}x{fmt.height} exceeds {MAX_CANVAS_PIXELS} pixels"
        )
    try:
        canvas = np.empty((fmt.height, fmt.width, 3), dtype=np.uint8)
    except MemoryError as exc:
        raise RenderError(f"Out of memory allocating {fmt.width}x{fmt.height} canvas") from exc
    canvas[:, :] = analysis.background
    return canvas


def _blit(canvas: np.ndarray, source: np.ndarray, plan: PlacementPlan) -> None:
    """Resample plan.source_rect of the source into plan.dest_rect of the canvas."""
    src_h, src_w = source.shape[:2]
    canvas_h, canvas_w = canvas.shape[:2]
    src, dst = plan.source_rect, plan.dest_rect

    if not src.contained_in(src_w, src_h):
        raise RenderError(f"Source rect {src} outside {src_w}x{src_h} source")
    if not dst.contained_in(canvas_w, canvas_h):
        raise RenderError(f"Destination rect {dst} outside {canvas_w}x{canvas_h} canvas")

    region = np.ascontiguousarray(source[src.y : src.bottom, src.x : src.right])
    if (region.shape[1], region.shape[0]) == (dst.width, dst.height):
        resized = region
    else:
        shrinking = dst.width * dst.height < src.width * src.height
        resized = cv2.resize(
            region,
            (dst.width, dst.height),
            interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_LANCZOS4,
        )
    canvas[dst.y : dst.bottom, dst.x : dst.right] = resized


def _overlay_text(image: Image.Image, analysis: AnalysisResult, fmt: FormatSpec) -> Image.Image:
    """
    Draw the first detected text line bottom-centered over the canvas.

    Skipped silently when there is no text, the canvas is too short, or the
    line would be wider than 80% of the canvas. Text is never wrapped.
    """
    if not analysis.text_lines or fmt.height <= TEXT_MIN_CANVAS_HEIGHT:
        return image

    text = analysis.text_lines[0]
    font_size = max(1, int(min(fmt.height / 10, TEXT_MAX_FONT_SIZE)))
    font = _load_font(font_size)

    overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    text_width = draw.textlength(text, font=font)
    if text_width > fmt.width * TEXT_MAX_WIDTH_RATIO:
        logger.debug(
            "Skipping text overlay for %s: %.0fpx wider than %.0fpx",
            fmt.key,
            text_width,
            fmt.width * TEXT_MAX_WIDTH_RATIO,
        )
        return image

    # "ms" anchors horizontally centered on the baseline.
    draw.text(
        (fmt.width / 2, fmt.height - TEXT_BOTTOM_MARGIN),
        text,
        font=font,
        fill=TEXT_FILL,
        anchor="ms",
    )
    return Image.alpha_composite(image.convert("RGBA"), overlay).convert("RGB")


def render(
    source: np.ndarray,
    plan: PlacementPlan,
    analysis: AnalysisResult,
    fmt: FormatSpec,
) -> bytes:
    """
    Render one adapted advertisement and return it PNG-encoded.

    Steps, in order:
    1. Allocate a canvas of exactly fmt.width x fmt.height.
    2. Fill it with the dominant color (white when no colors are known).
    3. Resample the plan's source region into its destination region.
    4. Optionally overlay the first text line.
    5. Encode losslessly as PNG.

    The source array is only read. Raises RenderError when the canvas cannot
    be allocated or the PNG cannot be encoded.
    """
    canvas = _allocate_canvas(fmt, analysis)
    _blit(canvas, source, plan)

    image = _overlay_text(Image.fromarray(canvas), analysis, fmt)
    try:
        return encode_png(image)
    except (OSError, ValueError) as exc:
        raise RenderError(f"PNG encoding failed for {fmt.key}: {exc}") from exc
