from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Tuple

from app.config import get_settings
from app.models.ads import FormatSpec
from app.services.errors import CatalogError


logger = logging.getLogger(__name__)


# Built-in catalog used when no AD_FORMATS_PATH override is configured. Kept as
# plain records so it has the same shape as the JSON override file.
DEFAULT_FORMATS: Tuple[dict, ...] = (
    {"width": 600, "height": 500, "name": "Banner Cuadrado"},
    {"width": 728, "height": 90, "name": "Leaderboard"},
    {"width": 640, "height": 200, "name": "Banner Rectangular"},
)


def parse_formats(records: Iterable[Any]) -> Tuple[FormatSpec, ...]:
    """
    Validate raw catalog records and turn them into FormatSpec instances.

    Each record needs a positive integer `width` and `height`; `name` is
    optional and defaults to "<W>x<H>". Duplicate sizes are rejected because
    results are keyed by size.
    """
    formats: List[FormatSpec] = []
    seen: set[str] = set()
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise CatalogError(f"Catalog entry {index} must be an object, got {type(record).__name__}")
        try:
            width = record["width"]
            height = record["height"]
        except KeyError as exc:
            raise CatalogError(f"Catalog entry {index} is missing {exc.args[0]!r}") from exc
        if not isinstance(width, int) or not isinstance(height, int) or isinstance(width, bool):
            raise CatalogError(f"Catalog entry {index} must use integer width/height")
        if width <= 0 or height <= 0:
            raise CatalogError(f"Catalog entry {index} must have positive dimensions, got {width}x{height}")
        fmt = FormatSpec(
            width=width,
            height=height,
            name=str(record.get("name") or f"{width}x{height}"),
        )
        if fmt.key in seen:
            raise CatalogError(f"Duplicate catalog size {width}x{height}")
        seen.add(fmt.key)
        formats.append(fmt)

    if not formats:
        raise CatalogError("Format catalog is empty.")
    return tuple(formats)


def load_catalog(path: str | Path | None = None) -> Tuple[FormatSpec, ...]:
    """
    Load the format catalog.

    With no path the built-in catalog is returned. A JSON file may contain
    either a list of records or an object with a "formats" list.
    """
    if path is None:
        return parse_formats(DEFAULT_FORMATS)

    catalog_path = Path(path)
    try:
        payload = json.loads(catalog_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CatalogError(f"Cannot read format catalog at {catalog_path}") from exc
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Format catalog at {catalog_path} is not valid JSON") from exc

    if isinstance(payload, dict):
        payload = payload.get("formats")
    if not isinstance(payload, list):
        raise CatalogError("Format catalog must be a JSON list of formats.")

    formats = parse_formats(payload)
    logger.info("Loaded %d formats from %s", len(formats), catalog_path)
    return formats


_catalog: Tuple[FormatSpec, ...] | None = None


def get_catalog() -> Tuple[FormatSpec, ...]:
    """Return the process-wide, read-only format catalog."""
    global _catalog
    if _catalog is None:
        _catalog = load_catalog(get_settings().formats_path)
    return _catalog
