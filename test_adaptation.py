import threading
from collections import defaultdict
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from app.models.ads import AnalysisResult, Color, FormatSpec
from app.services.adaptation import adapt_all
from app.services.catalog import load_catalog
from app.services.errors import RenderError
from app.services.renderers import CompositingRenderer


def _source():
    image = np.zeros((1200, 1600, 3), dtype=np.uint8)
    image[:, :800] = (220, 30, 30)
    image[:, 800:] = (30, 30, 220)
    return image


class ProgressRecorder:
    def __init__(self):
        self.events = defaultdict(list)
        self._lock = threading.Lock()

    def __call__(self, name, percent):
        with self._lock:
            self.events[name].append(percent)


class FailingOnWidthRenderer(CompositingRenderer):
    """Compositing renderer that fails for one specific format width."""

    name = "failing"

    def __init__(self, width):
        self.width = width

    def render(self, source, analysis, fmt):
        if fmt.width == self.width:
            raise RenderError(f"boom for {fmt.key}")
        return super().render(source, analysis, fmt)


def test_every_format_is_generated_in_catalog_order():
    catalog = load_catalog()

    results = adapt_all(_source(), AnalysisResult(), catalog)

    assert list(results) == ["format600x500", "format728x90", "format640x200"]
    for fmt in catalog:
        result = results[fmt.key]
        assert result.ok
        assert result.error_kind is None
        with Image.open(BytesIO(result.image)) as image:
            assert image.size == (fmt.width, fmt.height)


def test_progress_goes_from_zero_to_hundred_per_format():
    recorder = ProgressRecorder()

    adapt_all(_source(), AnalysisResult(), load_catalog(), on_progress=recorder)

    assert dict(recorder.events) == {
        "Banner Cuadrado": [0, 100],
        "Leaderboard": [0, 100],
        "Banner Rectangular": [0, 100],
    }


def test_invalid_format_fails_alone():
    catalog = list(load_catalog()) + [FormatSpec(0, 90, "Broken")]
    recorder = ProgressRecorder()

    results = adapt_all(_source(), AnalysisResult(), catalog, on_progress=recorder)

    broken = results["format0x90"]
    assert not broken.ok
    assert broken.error_kind == "InvalidDimensions"
    assert broken.message
    assert recorder.events["Broken"] == [0, 100]
    assert all(results[fmt.key].ok for fmt in load_catalog())


def test_renderer_failure_is_isolated():
    results = adapt_all(
        _source(), AnalysisResult(), load_catalog(), renderer=FailingOnWidthRenderer(728)
    )

    assert results["format728x90"].error_kind == "RenderError"
    assert results["format728x90"].image is None
    assert results["format600x500"].ok
    assert results["format640x200"].ok


def test_sequential_and_parallel_runs_match():
    analysis = AnalysisResult(colors=(Color(10, 200, 10),), text_lines=("SALE",))
    catalog = load_catalog()

    sequential = adapt_all(_source(), analysis, catalog, max_workers=1)
    parallel = adapt_all(_source(), analysis, catalog, max_workers=3)

    assert list(sequential) == list(parallel)
    for key in sequential:
        assert sequential[key].image == parallel[key].image
        assert sequential[key].plan == parallel[key].plan


def test_source_is_read_only_during_run_and_restored_after():
    source = _source()
    seen_flags = []

    class FlagProbe(CompositingRenderer):
        def render(self, image, analysis, fmt):
            seen_flags.append(image.flags.writeable)
            return super().render(image, analysis, fmt)

    adapt_all(source, AnalysisResult(), load_catalog(), renderer=FlagProbe())

    assert seen_flags == [False, False, False]
    assert source.flags.writeable


@pytest.mark.parametrize(
    "source",
    [
        np.full((1200, 1600), 128, dtype=np.uint8),
        np.full((1200, 1600, 1), 128, dtype=np.uint8),
        np.full((1200, 1600, 4), 128, dtype=np.uint8),
        np.full((1200, 1600, 3), 128.0, dtype=np.float32),
    ],
    ids=["gray", "gray-1ch", "rgba", "float"],
)
def test_non_rgb_sources_are_normalized(source):
    results = adapt_all(source, AnalysisResult(), load_catalog())

    for fmt in load_catalog():
        result = results[fmt.key]
        assert result.ok, result.message
        with Image.open(BytesIO(result.image)) as image:
            assert image.mode == "RGB"
            assert image.size == (fmt.width, fmt.height)
            assert image.getpixel((fmt.width // 2, fmt.height // 2)) == (128, 128, 128)


def test_read_only_source_is_accepted_and_left_read_only():
    source = _source()
    source.flags.writeable = False

    results = adapt_all(source, AnalysisResult(), load_catalog())

    assert all(result.ok for result in results.values())
    assert not source.flags.writeable


def test_overlapping_runs_on_one_array_stay_read_only():
    source = _source()
    inner_results = {}
    outer_flags = []

    class NestedRun(CompositingRenderer):
        def render(self, image, analysis, fmt):
            if not inner_results:
                # A second run on the same array starts and finishes first.
                inner_results.update(adapt_all(source, analysis, [fmt], max_workers=1))
            outer_flags.append(image.flags.writeable)
            return super().render(image, analysis, fmt)

    results = adapt_all(source, AnalysisResult(), load_catalog(), renderer=NestedRun(), max_workers=1)

    assert outer_flags == [False, False, False]
    assert all(result.ok for result in results.values())
    assert all(result.ok for result in inner_results.values())
    assert source.flags.writeable


def test_raising_progress_callback_does_not_abort_run():
    def explode(name, percent):
        raise RuntimeError("listener went away")

    results = adapt_all(_source(), AnalysisResult(), load_catalog(), on_progress=explode)

    assert all(result.ok for result in results.values())


def test_empty_catalog_returns_empty_mapping():
    assert adapt_all(_source(), AnalysisResult(), []) == {}
