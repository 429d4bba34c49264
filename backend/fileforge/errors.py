"""Error taxonomy shared by the dispatcher, job tracker, packager and API."""
from typing import Optional


class FileForgeError(Exception):
    """Base error. ``message`` is safe to show to the client verbatim."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FileForgeError):
    """Malformed or incomplete request; the caller can fix it."""

    code = "validation_error"


class UnsupportedConversionError(FileForgeError):
    """Conversion type unknown to the registry, or disabled in this deployment.

    Always permanent: clients must not retry.
    """

    code = "unsupported_conversion"
    permanent = True

    def __init__(self, conversion_type: str, reason: Optional[str] = None):
        self.conversion_type = conversion_type
        self.reason = reason
        message = f"Unsupported conversion type: {conversion_type}"
        if reason:
            message = f"{message}. {reason}"
        super().__init__(message)


class ConversionError(FileForgeError):
    """A converter failed while executing (corrupt source, codec failure)."""

    code = "conversion_failed"

    def __init__(self, conversion_type: str, detail: str):
        self.conversion_type = conversion_type
        self.detail = detail
        super().__init__(f"{conversion_type} failed: {detail}")


class ConversionTimeoutError(FileForgeError, TimeoutError):
    code = "timeout"

    def __init__(self, conversion_type: str, seconds: float):
        self.conversion_type = conversion_type
        self.seconds = seconds
        super().__init__(f"{conversion_type} exceeded the {seconds:g}s time limit")


class NotFoundError(FileForgeError):
    """Unknown or expired jobId / fileId."""

    code = "not_found"


class ArtifactUnavailableError(FileForgeError, OSError):
    """A result file could not be read while serving or zipping it."""

    code = "artifact_unavailable"


class RateLimitError(FileForgeError):
    code = "rate_limited"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded. Please try again later.")
