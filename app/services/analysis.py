from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Protocol, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from app.config import Settings, get_settings
from app.models.ads import (
    DEFAULT_MAX_COLORS,
    MAX_OBJECTS,
    AnalysisResult,
    BoundingBox,
    DetectedObject,
    Style,
)
from app.services.colors import sample_colors
from app.services.errors import UpstreamAnalysisUnavailable


logger = logging.getLogger(__name__)

# Substring rules applied to the top-1 classifier label, first match wins.
STYLE_KEYWORDS: Tuple[Tuple[Style, Tuple[str, ...]], ...] = (
    (Style.MINIMAL, ("minimal", "simple")),
    (Style.CLASSIC, ("vintage", "classic")),
    (Style.BOLD, ("bold", "bright")),
)

# Object labels that stand in for extracted text until real OCR exists.
TEXT_LABEL_HINTS = ("text", "sign")
MAX_TEXT_LINES = 3

DETR_MODEL = "facebook/detr-resnet-50"
VIT_MODEL = "google/vit-base-patch16-224"


class Detector(Protocol):
    """
    External detection/classification capability.

    Implementations must be safe to call from several threads once
    `initialize()` has returned.
    """

    def initialize(self) -> None: ...

    def detect(self, image: np.ndarray) -> List[DetectedObject]: ...

    def classify(self, image: np.ndarray) -> List[Tuple[str, float]]: ...


class HaarFaceDetector:
    """
    Face detector built on OpenCV's Haar cascades.

    This is a classical but well-understood detector with no model download.
    It does not classify style, so analyses built from it use the default
    "modern" style.
    """

    def __init__(self, scale_factor: float = 1.1, min_neighbors: int = 5) -> None:
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self._cascade: cv2.CascadeClassifier | None = None

    def initialize(self) -> None:
        if self._cascade is not None:
            return
        cascade_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        cascade = cv2.CascadeClassifier(cascade_path)
        if cascade.empty():
            raise UpstreamAnalysisUnavailable(f"Face cascade could not be loaded from {cascade_path}")
        self._cascade = cascade

    def detect(self, image: np.ndarray) -> List[DetectedObject]:
        if self._cascade is None:
            self.initialize()
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        faces = self._cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(30, 30),
        )
        return [
            DetectedObject(
                label="face",
                confidence=1.0,
                box=BoundingBox(float(x), float(y), float(x + w), float(y + h)),
            )
            for (x, y, w, h) in faces
        ]

    def classify(self, image: np.ndarray) -> List[Tuple[str, float]]:
        return []


class TransformersDetector:
    """
    Hugging Face pipelines: DETR object detection and ViT classification.

    `transformers` and `torch` are imported lazily so the default OpenCV
    backend works without them (install the `ml` extra). With device="gpu"
    CUDA is used when present, otherwise the pipelines run on CPU.
    """

    def __init__(
        self,
        device: str = "cpu",
        detection_model: str = DETR_MODEL,
        classification_model: str = VIT_MODEL,
    ) -> None:
        self.device = device
        self.detection_model = detection_model
        self.classification_model = classification_model
        self._detector = None
        self._classifier = None

    def _resolve_device(self) -> int:
        if self.device != "gpu":
            return -1
        import torch

        if torch.cuda.is_available():
            return 0
        logger.warning("GPU requested for analysis but CUDA is unavailable; using CPU")
        return -1

    def initialize(self) -> None:
        if self._detector is not None and self._classifier is not None:
            return
        from transformers import pipeline

        device = self._resolve_device()
        logger.info(
            "Loading analysis models %s and %s on %s",
            self.detection_model,
            self.classification_model,
            "cuda:0" if device >= 0 else "cpu",
        )
        self._detector = pipeline("object-detection", model=self.detection_model, device=device)
        self._classifier = pipeline(
            "image-classification", model=self.classification_model, device=device
        )

    def detect(self, image: np.ndarray) -> List[DetectedObject]:
        if self._detector is None:
            self.initialize()
        predictions = self._detector(Image.fromarray(image))
        return [
            DetectedObject(
                label=str(p["label"]),
                confidence=float(p["score"]),
                box=BoundingBox(
                    float(p["box"]["xmin"]),
                    float(p["box"]["ymin"]),
                    float(p["box"]["xmax"]),
                    float(p["box"]["ymax"]),
                ),
            )
            for p in predictions
        ]

    def classify(self, image: np.ndarray) -> List[Tuple[str, float]]:
        if self._classifier is None:
            self.initialize()
        predictions = self._classifier(Image.fromarray(image))
        return [(str(p["label"]), float(p["score"])) for p in predictions]


def determine_style(classifications: Sequence[Tuple[str, float]]) -> Style:
    """
    Map the top-1 classifier label onto one of the four ad styles.

    The label is lower-cased and substring-matched; anything unmatched, or no
    label at all, is "modern".
    """
    if not classifications:
        return Style.MODERN
    top_label = str(classifications[0][0]).lower()
    for style, keywords in STYLE_KEYWORDS:
        if any(keyword in top_label for keyword in keywords):
            return style
    return Style.MODERN


def extract_text_lines(objects: Iterable[DetectedObject]) -> List[str]:
    """Derive placeholder text lines from text-like detections (no OCR)."""
    lines = [
        f"Detected text: {obj.label}"
        for obj in objects
        if any(hint in obj.label.lower() for hint in TEXT_LABEL_HINTS)
    ]
    return lines[:MAX_TEXT_LINES]


def fallback_analysis() -> AnalysisResult:
    """
    Analysis used when the detector is unavailable.

    No colors (the compositor then fills white), style "modern", no text,
    so the pipeline degrades instead of halting.
    """
    return AnalysisResult(style=Style.MODERN, degraded=True)


class ContentAnalyzer:
    """
    Turns a decoded source image into an AnalysisResult.

    The detector is injected and initialized once (thread-safe, idempotent);
    the analyzer can then be reused across any number of images.
    """

    def __init__(self, detector: Detector, max_colors: int = DEFAULT_MAX_COLORS) -> None:
        self.detector = detector
        self.max_colors = max_colors
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        with self._lock:
            if self._initialized:
                return
            self.detector.initialize()
            self._initialized = True
            logger.info("Content analyzer ready (%s)", type(self.detector).__name__)

    def _run_detector(self, image: np.ndarray) -> Tuple[List[DetectedObject], List[Tuple[str, float]]]:
        try:
            self.initialize()
            objects = self.detector.detect(image)
            classifications = self.detector.classify(image)
        except UpstreamAnalysisUnavailable:
            raise
        except Exception as exc:  # noqa: BLE001
            raise UpstreamAnalysisUnavailable(f"Detector failed: {exc}") from exc
        if objects is None and classifications is None:
            raise UpstreamAnalysisUnavailable("Detector returned no results")
        return list(objects or []), list(classifications or [])

    def analyze(self, image: np.ndarray) -> AnalysisResult:
        """
        Analyze a source image.

        Never raises for detector problems: an UpstreamAnalysisUnavailable is
        logged and answered with `fallback_analysis()`.
        """
        try:
            objects, classifications = self._run_detector(image)
        except UpstreamAnalysisUnavailable as exc:
            logger.warning("Content analysis unavailable, using defaults: %s", exc)
            return fallback_analysis()

        ranked = sorted(objects, key=lambda obj: obj.confidence, reverse=True)[:MAX_OBJECTS]
        analysis = AnalysisResult.build(
            objects=ranked,
            colors=sample_colors(image, self.max_colors),
            style=determine_style(classifications),
            text_lines=extract_text_lines(ranked),
            max_colors=self.max_colors,
        )
        logger.info(
            "Analyzed %dx%d image: %d objects, %d colors, style=%s",
            image.shape[1],
            image.shape[0],
            len(analysis.objects),
            len(analysis.colors),
            analysis.style.value,
        )
        return analysis


def build_detector(settings: Settings) -> Detector:
    """Construct the detector backend named in the settings."""
    if settings.analyzer_backend == "opencv":
        return HaarFaceDetector()
    if settings.analyzer_backend == "transformers":
        return TransformersDetector(device=settings.analyzer_device)
    raise ValueError(f"Unknown analyzer backend: {settings.analyzer_backend!r}")


_content_analyzer: ContentAnalyzer | None = None


def get_content_analyzer() -> ContentAnalyzer:
    """Get or create the process-wide content analyzer."""
    global _content_analyzer
    if _content_analyzer is None:
        settings = get_settings()
        _content_analyzer = ContentAnalyzer(build_detector(settings), max_colors=settings.max_colors)
    return _content_analyzer
