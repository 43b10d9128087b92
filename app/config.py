from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache


logger = logging.getLogger(__name__)


def _env_int(name: str, default: int | None) -> int | None:
    """Read a positive integer from the environment, falling back on bad input."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Runtime configuration for the adaptation service.

    Everything is read from environment variables (optionally populated from
    a `.env` file by `app.main`), so deployments can switch renderer or
    detector backends without code changes.
    """

    # Optional JSON file overriding the built-in format catalog.
    formats_path: str | None = None
    # "compositing" (local placement + compositor) or "generative".
    renderer: str = "compositing"
    # Worker pool size for per-format tasks; None means sized to the host.
    max_workers: int | None = None
    max_colors: int = 5
    # "opencv" (Haar cascades) or "transformers" (DETR + ViT pipelines).
    analyzer_backend: str = "opencv"
    # "cpu" or "gpu"; gpu falls back to cpu when unavailable.
    analyzer_device: str = "cpu"
    storage_dir: str = "storage/jobs"
    replicate_api_token: str | None = None
    replicate_image_model: str = "black-forest-labs/flux-schnell"


def load_settings() -> Settings:
    """Build a fresh Settings instance from the current environment."""
    return Settings(
        formats_path=os.environ.get("AD_FORMATS_PATH") or None,
        renderer=os.environ.get("ADAPTER_RENDERER", "compositing").strip().lower(),
        max_workers=_env_int("ADAPTER_MAX_WORKERS", None),
        max_colors=_env_int("ADAPTER_MAX_COLORS", 5) or 5,
        analyzer_backend=os.environ.get("ANALYZER_BACKEND", "opencv").strip().lower(),
        analyzer_device=os.environ.get("ANALYZER_DEVICE", "cpu").strip().lower(),
        storage_dir=os.environ.get("AD_STORAGE_DIR", "storage/jobs"),
        replicate_api_token=os.environ.get("REPLICATE_API_TOKEN") or None,
        replicate_image_model=os.environ.get(
            "REPLICATE_IMAGE_MODEL", "black-forest-labs/flux-schnell"
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the process-wide settings.

    Cached so every component sees the same configuration; tests that tweak
    the environment should call `get_settings.cache_clear()`.
    """
    return load_settings()
