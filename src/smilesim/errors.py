"""Error taxonomy and user-facing failure descriptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    MISSING_CREDENTIAL = "missing_credential"
    SERVICE_UNAVAILABLE = "service_unavailable"
    RATE_LIMITED = "rate_limited"
    EMPTY_RESULT = "empty_result"
    UNKNOWN = "unknown"


class NextStep(StrEnum):
    RETRY = "retry"
    RETAKE = "retake"
    UPLOAD = "upload"


@dataclass(frozen=True)
class ErrorDescription:
    """What the user sees for a failure, and what they can do about it."""

    message: str
    next_steps: tuple[NextStep, ...]


_DESCRIPTIONS: dict[ErrorKind, ErrorDescription] = {
    ErrorKind.PERMISSION_DENIED: ErrorDescription(
        "Camera access was denied. Allow camera access or upload a photo instead.",
        (NextStep.UPLOAD, NextStep.RETAKE),
    ),
    ErrorKind.DEVICE_UNAVAILABLE: ErrorDescription(
        "No camera is available. Upload a photo instead.",
        (NextStep.UPLOAD, NextStep.RETAKE),
    ),
    ErrorKind.MISSING_CREDENTIAL: ErrorDescription(
        "The simulation service is not configured. Please contact the clinic.",
        (NextStep.RETAKE, NextStep.UPLOAD),
    ),
    ErrorKind.SERVICE_UNAVAILABLE: ErrorDescription(
        "The simulation service is busy right now. Please try again in a moment.",
        (NextStep.RETRY, NextStep.RETAKE),
    ),
    ErrorKind.RATE_LIMITED: ErrorDescription(
        "Too many simulations were requested. Please wait a little and try again.",
        (NextStep.RETRY, NextStep.RETAKE),
    ),
    ErrorKind.EMPTY_RESULT: ErrorDescription(
        "We could not generate the image. Try taking a clearer photo of your face.",
        (NextStep.RETAKE, NextStep.RETRY),
    ),
    ErrorKind.UNKNOWN: ErrorDescription(
        "Something went wrong while processing the image. Please try again.",
        (NextStep.RETRY, NextStep.RETAKE),
    ),
}


def describe_error(kind: ErrorKind) -> ErrorDescription:
    """Return the user-visible message and next steps for a failure kind."""
    return _DESCRIPTIONS[kind]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SmileSimError(Exception):
    """Base class for all SmileSim errors."""


class AcquisitionError(SmileSimError):
    """Camera could not be acquired. Non-fatal: the caller offers file upload."""

    kind: ErrorKind = ErrorKind.DEVICE_UNAVAILABLE


class CameraPermissionDenied(AcquisitionError):
    kind = ErrorKind.PERMISSION_DENIED


class CameraUnavailable(AcquisitionError):
    kind = ErrorKind.DEVICE_UNAVAILABLE


class ImageDecodeError(SmileSimError, ValueError):
    """Raised when an uploaded file cannot be decoded as an image."""


class InferenceError(SmileSimError):
    """A classified failure from the inference transport."""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)


class MissingCredentialError(InferenceError):
    def __init__(self, detail: str = "Inference API key not configured") -> None:
        super().__init__(ErrorKind.MISSING_CREDENTIAL, detail)


class InvalidTransitionError(SmileSimError):
    """Raised when an operation is not allowed from the current capture state."""

    def __init__(self, state: str, operation: str) -> None:
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} while {state}")


class GenerationInProgressError(SmileSimError):
    """Raised when a generate call overlaps an unresolved attempt."""
