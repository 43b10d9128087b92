from __future__ import annotations

import logging
from typing import NamedTuple, Protocol

import cv2
import numpy as np

from app.config import Settings
from app.models.ads import AnalysisResult, FormatSpec, PlacementPlan, top_labels
from app.services import compositor
from app.services.errors import GenerationError, RenderError
from app.services.images import encode_png
from app.services.placement import plan_placement
from app.services.replicate_http_client import ReplicateHTTPClient


logger = logging.getLogger(__name__)


class Rendered(NamedTuple):
    """PNG bytes for one format, plus the placement used (if any)."""

    data: bytes
    plan: PlacementPlan | None = None


class Renderer(Protocol):
    """Produces the final raster of the source advertisement for one format."""

    name: str

    def render(self, source: np.ndarray, analysis: AnalysisResult, fmt: FormatSpec) -> Rendered: ...


class CompositingRenderer:
    """Local pipeline: placement strategy followed by the compositor."""

    name = "compositing"

    def render(self, source: np.ndarray, analysis: AnalysisResult, fmt: FormatSpec) -> Rendered:
        height, width = source.shape[:2]
        plan = plan_placement(width, height, fmt)
        return Rendered(compositor.render(source, plan, analysis, fmt), plan)


def build_prompt(analysis: AnalysisResult, fmt: FormatSpec) -> str:
    """
    Describe the advertisement for a text-to-image model.

    Uses style, the top detected objects, dominant colors and the first
    text line, plus the target size so the layout suits the format.
    """
    parts = [
        f"A {analysis.style.value} style advertisement banner, "
        f"{fmt.width}x{fmt.height} pixels ({fmt.ratio_label}, {fmt.name})"
    ]
    labels = top_labels(analysis.objects)
    if labels:
        parts.append("featuring " + ", ".join(labels))
    if analysis.colors:
        parts.append("color palette " + ", ".join(c.css() for c in analysis.colors[:3]))
    if analysis.text_lines:
        parts.append(f'with the text "{analysis.text_lines[0]}"')
    parts.append("clean composition, professional advertising layout")
    return "; ".join(parts)


class GenerativeRenderer:
    """
    Delegates image creation to an external text-to-image backend.

    The source image only contributes through its analysis. The generated
    image is resized to exactly the format size and re-encoded as PNG.
    """

    name = "generative"

    def __init__(self, client: ReplicateHTTPClient) -> None:
        self.client = client

    def render(self, source: np.ndarray, analysis: AnalysisResult, fmt: FormatSpec) -> Rendered:
        prompt = build_prompt(analysis, fmt)
        logger.info("Generating %s from prompt: %s", fmt.key, prompt)
        generated = self.client.generate_image(prompt, fmt.width, fmt.height)
        if generated is None:
            raise GenerationError(f"Image generation backend returned no image for {fmt.key}")

        if generated.shape[:2] != (fmt.height, fmt.width):
            generated = cv2.resize(generated, (fmt.width, fmt.height), interpolation=cv2.INTER_LANCZOS4)
        try:
            return Rendered(encode_png(generated))
        except (OSError, ValueError) as exc:
            raise RenderError(f"PNG encoding failed for {fmt.key}: {exc}") from exc


def build_renderer(settings: Settings) -> Renderer:
    """Select the renderer implementation named in the settings."""
    if settings.renderer == "compositing":
        return CompositingRenderer()
    if settings.renderer == "generative":
        client = ReplicateHTTPClient(
            api_token=settings.replicate_api_token,
            model=settings.replicate_image_model,
        )
        return GenerativeRenderer(client)
    raise ValueError(f"Unknown renderer: {settings.renderer!r}")
