"""
Exception hierarchy for the decomposition pipeline.

Only ``SchemaError`` escapes the core pipeline: extraction failures degrade to
an empty partial decomposition, schema problems are recovered field by field,
and referential problems are repaired silently.

Usage:
    from workflow_xray.core.exceptions import ExtractionError, SchemaError

    raise ExtractionError("Could not extract JSON from model response")
"""


class XRayError(Exception):
    """Base class for all workflow_xray errors."""


class ExtractionError(XRayError):
    """Raised when no JSON object can be found anywhere in a model response.

    Args:
        message: Human-readable explanation. Always starts with "Could not extract".
        attempts: Names of the extraction strategies that were tried.
    """

    def __init__(self, message: str, attempts: list[str] | None = None) -> None:
        self.attempts = attempts or []
        super().__init__(message)


class SchemaError(XRayError):
    """Raised when the extracted payload is not a JSON object at all.

    Args:
        message: Human-readable explanation.
        received_type: Python type name of the offending payload.
    """

    def __init__(self, message: str, received_type: str | None = None) -> None:
        self.received_type = received_type
        super().__init__(message)


class GatewayError(XRayError):
    """Raised when the model call fails after all retries."""

    def __init__(self, message: str, provider: str | None = None, model: str | None = None) -> None:
        self.provider = provider
        self.model = model
        super().__init__(message)


class CacheBackendError(XRayError):
    """Raised for analysis cache misconfiguration (unknown backend name)."""
