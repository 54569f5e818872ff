"""Error kinds surfaced to the presentation layer.

Every orchestrator and adapter raises one of these instead of a raw
transport exception, so callers can branch on the type rather than on
message text.
"""
from typing import Optional


class KisanMitraError(Exception):
    """Base error carrying a farmer-facing message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(KisanMitraError, ValueError):
    """A required input (query, location, image) was empty or missing."""


class CapabilityUnavailable(KisanMitraError):
    """Speech, camera or credential support is missing on this deployment."""


class UpstreamFailure(KisanMitraError):
    """The Gemini call failed or returned something unusable."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail
