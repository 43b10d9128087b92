class AdaptationError(RuntimeError):
    """Base class for failures raised by the ad format adaptation engine."""


class InvalidDimensions(AdaptationError):
    """Raised when a source or target dimension is not strictly positive."""


class RenderError(AdaptationError):
    """Raised when the destination canvas cannot be allocated or encoded."""


class UpstreamAnalysisUnavailable(AdaptationError):
    """Raised when the detector/classifier fails or returns nothing usable."""


class GenerationError(AdaptationError):
    """Raised when the generative image backend does not produce an image."""


class CatalogError(AdaptationError):
    """Raised when a format catalog file cannot be loaded or is malformed."""
