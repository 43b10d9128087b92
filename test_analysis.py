import dataclasses

import cv2
import numpy as np
import pytest

from app.config import Settings
from app.models.ads import WHITE, AnalysisResult, BoundingBox, Color, DetectedObject, Style
from app.services.analysis import (
    ContentAnalyzer,
    HaarFaceDetector,
    TransformersDetector,
    build_detector,
    determine_style,
    extract_text_lines,
)
from app.services.errors import UpstreamAnalysisUnavailable


def _obj(label, confidence):
    return DetectedObject(label=label, confidence=confidence, box=BoundingBox(0, 0, 10, 10))


class FakeDetector:
    def __init__(self, objects=(), classifications=(), error=None):
        self.objects = list(objects)
        self.classifications = list(classifications)
        self.error = error
        self.init_calls = 0

    def initialize(self):
        self.init_calls += 1

    def detect(self, image):
        if self.error is not None:
            raise self.error
        return list(self.objects)

    def classify(self, image):
        return list(self.classifications)


def _image():
    image = np.zeros((120, 160, 3), dtype=np.uint8)
    image[:, :] = (250, 200, 10)
    return image


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Minimalist poster", Style.MINIMAL),
        ("simple logo", Style.MINIMAL),
        ("vintage car", Style.CLASSIC),
        ("Classic typewriter", Style.CLASSIC),
        ("bold lettering", Style.BOLD),
        ("bright lamp", Style.BOLD),
        ("golden retriever", Style.MODERN),
    ],
)
def test_style_from_top_label(label, expected):
    assert determine_style([(label, 0.9), ("vintage", 0.1)]) is expected


def test_style_defaults_to_modern_without_labels():
    assert determine_style([]) is Style.MODERN


def test_text_lines_come_from_text_like_labels():
    objects = [_obj("person", 0.9), _obj("street sign", 0.8), _obj("Text block", 0.7)]

    assert extract_text_lines(objects) == ["Detected text: street sign", "Detected text: Text block"]


def test_analyze_ranks_and_caps_objects():
    objects = [_obj(f"thing{i}", i / 20) for i in range(12)]
    analyzer = ContentAnalyzer(FakeDetector(objects, [("vintage poster", 0.8)]))

    analysis = analyzer.analyze(_image())

    confidences = [obj.confidence for obj in analysis.objects]
    assert len(confidences) == 10
    assert confidences == sorted(confidences, reverse=True)
    assert confidences[0] == pytest.approx(11 / 20)
    assert analysis.style is Style.CLASSIC
    assert analysis.colors == (Color(250, 200, 10),)
    assert not analysis.degraded


def test_analyze_derives_text_from_detections():
    analyzer = ContentAnalyzer(FakeDetector([_obj("stop sign", 0.95)]))

    analysis = analyzer.analyze(_image())

    assert analysis.text_lines == ("Detected text: stop sign",)


def test_detector_failure_degrades_to_defaults():
    analyzer = ContentAnalyzer(FakeDetector(error=RuntimeError("model offline")))

    analysis = analyzer.analyze(_image())

    assert analysis.degraded
    assert analysis.colors == ()
    assert analysis.style is Style.MODERN
    assert analysis.background == WHITE


def test_detector_returning_nothing_degrades():
    detector = FakeDetector()
    detector.detect = lambda image: None
    detector.classify = lambda image: None

    assert ContentAnalyzer(detector).analyze(_image()).degraded


def test_detector_is_initialized_once():
    detector = FakeDetector([_obj("person", 0.9)])
    analyzer = ContentAnalyzer(detector)

    analyzer.initialize()
    analyzer.analyze(_image())
    analyzer.analyze(_image())

    assert detector.init_calls == 1
    assert analyzer.initialized


def test_initialization_failure_degrades():
    class BrokenInit(FakeDetector):
        def initialize(self):
            raise UpstreamAnalysisUnavailable("weights missing")

    analyzer = ContentAnalyzer(BrokenInit())

    assert analyzer.analyze(_image()).degraded
    assert not analyzer.initialized


def test_analysis_result_is_immutable():
    analysis = AnalysisResult.build(colors=[(1, 2, 3)])

    with pytest.raises(dataclasses.FrozenInstanceError):
        analysis.style = Style.BOLD
    assert analysis.colors == (Color(1, 2, 3),)


def test_build_caps_colors():
    analysis = AnalysisResult.build(colors=[(i, i, i) for i in range(8)], max_colors=5)

    assert len(analysis.colors) == 5


def test_invalid_detections_are_rejected():
    with pytest.raises(ValueError):
        BoundingBox(10, 0, 5, 10)
    with pytest.raises(ValueError):
        _obj("person", 1.5)


def test_haar_detector_finds_nothing_on_flat_image():
    detector = HaarFaceDetector()
    detector.initialize()

    assert detector.detect(_image()) == []
    assert detector.classify(_image()) == []


def test_default_backend_produces_full_analysis():
    # Haar cascades are gone from OpenCV 5.
    assert hasattr(cv2, "CascadeClassifier")
    analyzer = ContentAnalyzer(build_detector(Settings()))

    analysis = analyzer.analyze(_image())

    assert not analysis.degraded
    assert analysis.colors == (Color(250, 200, 10),)


def test_build_detector_follows_settings():
    assert isinstance(build_detector(Settings(analyzer_backend="opencv")), HaarFaceDetector)

    detector = build_detector(Settings(analyzer_backend="transformers", analyzer_device="gpu"))
    assert isinstance(detector, TransformersDetector)
    assert detector.device == "gpu"

    with pytest.raises(ValueError):
        build_detector(Settings(analyzer_backend="tesseract"))
