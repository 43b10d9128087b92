from __future__ import annotations

import logging
from typing import Dict, List

import cv2
import numpy as np

from app.models.ads import DEFAULT_MAX_COLORS, Color


logger = logging.getLogger(__name__)

# Fixed sampling canvas; bounds the cost independently of the source size.
SAMPLE_SIZE = 100
# Read one pixel, skip the next nine.
SAMPLE_STRIDE = 10


def sample_colors(image: np.ndarray, max_colors: int = DEFAULT_MAX_COLORS) -> List[Color]:
    """
    Return the dominant colors of an RGB image, most frequent first.

    Strategy:
    - Downsample to a 100x100 canvas (area interpolation).
    - Read every 10th pixel in raster order.
    - Count exact RGB triplets; ties keep first-seen order.

    Never fails: a zero-area image yields an empty list and callers fall back
    to a white background.
    """
    if max_colors <= 0 or image is None or image.size == 0:
        return []
    if image.ndim != 3 or image.shape[2] < 3:
        # Grayscale input: replicate into three channels.
        image = np.dstack([image.reshape(image.shape[:2])] * 3)

    small = cv2.resize(
        np.ascontiguousarray(image[:, :, :3]),
        (SAMPLE_SIZE, SAMPLE_SIZE),
        interpolation=cv2.INTER_AREA,
    )
    pixels = small.reshape(-1, 3)[::SAMPLE_STRIDE]

    # dict preserves insertion order, so equal counts stay in first-seen order
    # under the stable sort below.
    counts: Dict[Color, int] = {}
    for r, g, b in pixels.tolist():
        color = Color(r, g, b)
        counts[color] = counts.get(color, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    colors = [color for color, _ in ranked[:max_colors]]
    logger.debug("Sampled %d distinct colors, returning %d", len(counts), len(colors))
    return colors
