"""
Direct HTTP client for Replicate image generation.

Used by the generative renderer to produce an advertisement for a target
format from a text prompt. Talks to the Replicate HTTP API via requests,
retrying only transient server errors (5xx); rate limiting (429), auth and
other client errors fail fast. Every failure raises GenerationError with its
cause, which the orchestrator records as the format's failure message.
"""

import logging
import time
from io import BytesIO
from typing import Optional

import numpy as np
import requests
from PIL import Image

from app.services.errors import GenerationError
from app.services.images import to_rgb_array

logger = logging.getLogger(__name__)

# Retry configuration (server errors only)
MAX_RETRIES = 2
RETRY_DELAY = 2  # seconds
RETRY_BACKOFF = 2  # exponential backoff multiplier


class ReplicateHTTPClient:
    """
    Minimal Replicate predictions client for text-to-image models.

    A client without a token is constructed fine but reports itself as
    unavailable and never touches the network.
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        model: str = "black-forest-labs/flux-schnell",
        base_url: str = "https://api.replicate.com/v1",
        session: Optional[requests.Session] = None,
        max_wait: int = 120,
        poll_interval: float = 2.0,
    ):
        self.api_token = api_token
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.max_wait = max_wait
        self.poll_interval = poll_interval

        if not self.api_token:
            logger.warning("REPLICATE_API_TOKEN not set. Generative rendering is unavailable.")
        elif not self.api_token.startswith("r8_"):
            logger.warning("Replicate token doesn't start with 'r8_'; it might be invalid")

    def is_available(self) -> bool:
        """Check if the client is configured with a token."""
        return bool(self.api_token)

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    def generate_image(self, prompt: str, width: int, height: int) -> np.ndarray:
        """
        Generate an RGB image for a prompt.

        Raises GenerationError carrying the reason (missing token, rate limit,
        client error, exhausted retries, failed or timed-out prediction,
        undecodable output) so it ends up in the per-format failure message.
        """
        if not self.is_available():
            raise GenerationError("REPLICATE_API_TOKEN not set; generation unavailable")

        for attempt in range(MAX_RETRIES + 1):
            try:
                return self._attempt_generation(prompt, width, height, attempt)
            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 0

                if status_code == 429:
                    logger.error("Replicate API rate limited (429); not retrying")
                    raise GenerationError("Replicate rate limited the request (HTTP 429)") from e
                if 400 <= status_code < 500:
                    logger.error("Replicate client error (%s): %s", status_code, e)
                    raise GenerationError(f"Replicate rejected the request (HTTP {status_code})") from e

                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAY * (RETRY_BACKOFF ** attempt)
                    logger.warning(
                        "Replicate server error (%s); retrying in %ss (attempt %d/%d)",
                        status_code,
                        delay,
                        attempt + 1,
                        MAX_RETRIES,
                    )
                    time.sleep(delay)
                else:
                    logger.error("Replicate failed after %d attempts: %s", MAX_RETRIES + 1, e)
                    raise GenerationError(
                        f"Replicate server error (HTTP {status_code}) after {MAX_RETRIES + 1} attempts"
                    ) from e
            except requests.exceptions.RequestException as e:
                logger.error("Replicate request error: %s", e)
                raise GenerationError(f"Replicate request failed: {e}") from e

        raise GenerationError("Replicate generation did not run")

    def _attempt_generation(
        self, prompt: str, width: int, height: int, attempt: int
    ) -> np.ndarray:
        """Single attempt at generation (used by retry logic)."""
        attempt_suffix = f" (attempt {attempt + 1})" if attempt > 0 else ""
        logger.info(
            "Calling Replicate model %s for %dx%d%s", self.model, width, height, attempt_suffix
        )

        response = self.session.post(
            f"{self.base_url}/models/{self.model}/predictions",
            headers=self._headers,
            json={
                "input": {
                    "prompt": prompt,
                    "width": width,
                    "height": height,
                    "output_format": "png",
                }
            },
            timeout=60,
        )
        response.raise_for_status()
        prediction = response.json()

        output_url = self._extract_output(prediction)
        if output_url is None and prediction.get("status") in ("starting", "processing"):
            output_url = self._wait_for_prediction(prediction["urls"]["get"])

        if output_url is None:
            logger.error("Replicate generation produced no output")
            raise GenerationError(
                f"Replicate prediction ended with status {prediction.get('status')!r} and no output"
            )
        return self._download_image(output_url)

    @staticmethod
    def _extract_output(prediction: dict) -> Optional[str]:
        if prediction.get("status") != "succeeded":
            return None
        output = prediction.get("output")
        if isinstance(output, str):
            return output
        if isinstance(output, list) and output:
            return output[0]
        return None

    def _wait_for_prediction(self, prediction_url: str) -> Optional[str]:
        """Poll prediction until completion."""
        start_time = time.time()

        while time.time() - start_time < self.max_wait:
            response = self.session.get(prediction_url, headers=self._headers, timeout=10)
            response.raise_for_status()
            prediction = response.json()
            status = prediction.get("status")

            if status == "succeeded":
                return self._extract_output(prediction)
            if status in ("failed", "canceled"):
                error = prediction.get("error", "unknown error")
                logger.error("Prediction %s: %s", status, error)
                raise GenerationError(f"Replicate prediction {status}: {error}")
            if status in ("starting", "processing"):
                time.sleep(self.poll_interval)
                continue

            logger.warning("Unknown prediction status: %s", status)
            raise GenerationError(f"Replicate prediction returned unknown status {status!r}")

        logger.error("Prediction timed out after %ss", self.max_wait)
        raise GenerationError(f"Replicate prediction timed out after {self.max_wait}s")

    def _download_image(self, url: str) -> np.ndarray:
        """Download image from URL and convert to an RGB array."""
        response = self.session.get(url, timeout=30)
        response.raise_for_status()
        try:
            with Image.open(BytesIO(response.content)) as pil_image:
                return to_rgb_array(pil_image)
        except OSError as e:
            logger.error("Failed to decode generated image from %s: %s", url, e)
            raise GenerationError(f"Generated image at {url} could not be decoded") from e
