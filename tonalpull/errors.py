from __future__ import annotations


class TonalPullError(Exception):
    """Base error for the tonalpull library."""


class InvalidConfigError(TonalPullError):
    """Raised when a config or key cannot be parsed or validated."""


class InvalidDegreeError(TonalPullError, ValueError):
    """Raised when a scale degree outside 1-7 reaches the harmonic core."""


class ModelNotAvailableError(TonalPullError):
    """Raised when the learned chord model or its weights are missing."""


class CaptureError(TonalPullError):
    """Raised when an audio capture device cannot be used."""
