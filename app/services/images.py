from __future__ import annotations

from io import BytesIO

import numpy as np
from PIL import Image, UnidentifiedImageError


def to_rgb_array(image: np.ndarray | Image.Image) -> np.ndarray:
    """
    Normalize a decoded raster to a contiguous (H, W, 3) uint8 RGB array.

    Accepts Pillow images (any mode) or numpy arrays that are grayscale,
    RGB or RGBA. Alpha is dropped rather than composited.
    """
    if isinstance(image, Image.Image):
        return np.asarray(image.convert("RGB"), dtype=np.uint8).copy()

    array = np.asarray(image)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    if array.ndim == 2:
        array = np.dstack([array] * 3)
    elif array.ndim == 3 and array.shape[2] == 1:
        array = np.repeat(array, 3, axis=2)
    elif array.ndim == 3 and array.shape[2] >= 3:
        array = array[:, :, :3]
    else:
        raise ValueError(f"Unsupported image shape {array.shape}")
    return np.ascontiguousarray(array)


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (PNG, JPEG, WEBP, ...) into an RGB array.

    Raises ValueError when the bytes are not a readable image.
    """
    try:
        with Image.open(BytesIO(data)) as pil_image:
            return to_rgb_array(pil_image)
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Uploaded file is not a readable image.") from exc


def encode_png(image: np.ndarray | Image.Image) -> bytes:
    """Losslessly encode an RGB(A) raster as PNG bytes."""
    pil_image = image if isinstance(image, Image.Image) else Image.fromarray(image)
    buffer = BytesIO()
    pil_image.save(buffer, format="PNG")
    return buffer.getvalue()
