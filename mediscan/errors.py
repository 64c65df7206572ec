class MediScanError(Exception):
    """Base class for every error raised by mediscan."""


class ImageDecodeError(MediScanError):
    """The input could not be decoded into a non-empty image."""


class RenderError(MediScanError):
    """The heatmap canvas could not be composited."""


class RemoteAnalysisError(MediScanError):
    """The remote model call failed or returned something unusable."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRetryableError(RemoteAnalysisError):
    """Transient remote failure (rate limit, overload)."""


class RemoteNotFoundError(RemoteAnalysisError):
    """Model or endpoint not found. Never retried."""
