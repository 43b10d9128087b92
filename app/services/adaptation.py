from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from app.models.ads import AdaptationResult, AnalysisResult, FormatSpec
from app.services.images import to_rgb_array
from app.services.renderers import CompositingRenderer, Renderer


logger = logging.getLogger(__name__)

# on_progress(format display name, percent); percent is 0 or 100.
ProgressCallback = Callable[[str, int], None]


def _report(on_progress: Optional[ProgressCallback], fmt: FormatSpec, percent: int) -> None:
    if on_progress is None:
        return
    try:
        on_progress(fmt.name, percent)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Progress callback failed for %s at %d%%: %s", fmt.name, percent, exc)


def _adapt_one(
    source: np.ndarray,
    analysis: AnalysisResult,
    fmt: FormatSpec,
    renderer: Renderer,
    on_progress: Optional[ProgressCallback],
) -> AdaptationResult:
    """
    Run a single format task.

    Every failure is captured as a failure record so sibling formats are
    unaffected. Progress is reported as exactly 0 then 100.
    """
    _report(on_progress, fmt, 0)
    try:
        rendered = renderer.render(source, analysis, fmt)
        result = AdaptationResult.success(fmt, rendered.data, rendered.plan)
        logger.info("Generated %s (%s, %d bytes)", fmt.key, fmt.name, len(rendered.data))
    except Exception as exc:  # noqa: BLE001
        logger.error("Failed to generate %s (%s): %s", fmt.key, fmt.name, exc)
        result = AdaptationResult.failure(fmt, type(exc).__name__, str(exc))
    _report(on_progress, fmt, 100)
    return result


def _default_workers(format_count: int) -> int:
    return max(1, min(format_count, os.cpu_count() or 1))


def adapt_all(
    source: np.ndarray,
    analysis: AnalysisResult,
    catalog: Sequence[FormatSpec],
    on_progress: Optional[ProgressCallback] = None,
    renderer: Optional[Renderer] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, AdaptationResult]:
    """
    Adapt one source image to every format in the catalog.

    Formats are independent tasks run on a thread pool (sequentially when
    max_workers is 1). The source is normalized to RGB and shared read-only
    with the analysis through a non-writeable view. Returns only once every
    format has succeeded or failed, keyed by `FormatSpec.key` in catalog
    order. Failures never propagate: they appear as AdaptationResult failure
    records.
    """
    renderer = renderer or CompositingRenderer()
    if not catalog:
        return {}

    # Grayscale, RGBA and non-uint8 rasters become (H, W, 3) uint8 once here.
    # Each run reads through its own non-writeable view; the caller's flags
    # are never touched.
    shared = to_rgb_array(source).view()
    shared.flags.writeable = False

    workers = max_workers or _default_workers(len(catalog))
    if workers == 1:
        outcomes = [_adapt_one(shared, analysis, fmt, renderer, on_progress) for fmt in catalog]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(_adapt_one, shared, analysis, fmt, renderer, on_progress)
                for fmt in catalog
            ]
            outcomes = [future.result() for future in futures]

    results = {result.format.key: result for result in outcomes}
    succeeded = sum(1 for result in outcomes if result.ok)
    logger.info(
        "Adapted %d/%d formats with %s renderer", succeeded, len(outcomes), renderer.name
    )
    return results
