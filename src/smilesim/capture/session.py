"""CaptureSession value and its pure transitions.

Every transition takes a session and returns a new one, or raises
InvalidTransitionError. A session never holds a live stream and a captured
image at the same time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from smilesim.capture.models import CameraPermissionState, CaptureState, new_session_id
from smilesim.errors import ErrorKind, InvalidTransitionError

if TYPE_CHECKING:
    from smilesim.capture.models import EncodedImage, GenerationAttempt, GenerationResult, StreamHandle

_CAMERA_KINDS = frozenset({ErrorKind.PERMISSION_DENIED, ErrorKind.DEVICE_UNAVAILABLE})


@dataclass(frozen=True)
class CaptureSession:
    session_id: str
    state: CaptureState = CaptureState.AWAITING_DEVICE_CHOICE
    permission: CameraPermissionState = CameraPermissionState.NOT_REQUESTED
    stream_id: int | None = None
    captured: EncodedImage | None = None
    attempt: GenerationAttempt | None = None
    result: GenerationResult | None = None
    error_kind: ErrorKind | None = None

    def __post_init__(self) -> None:
        if self.stream_id is not None and self.captured is not None:
            raise ValueError("A session cannot hold a live stream and a captured image")

    @classmethod
    def new(cls) -> CaptureSession:
        return cls(session_id=new_session_id())

    @property
    def streaming(self) -> bool:
        return self.stream_id is not None

    @property
    def can_upload(self) -> bool:
        return self.state in (CaptureState.AWAITING_DEVICE_CHOICE, CaptureState.STREAMING, CaptureState.ERROR)

    @property
    def can_generate(self) -> bool:
        return self.captured is not None and self.state in (CaptureState.CAPTURED, CaptureState.ERROR)


def _require(session: CaptureSession, operation: str, *states: CaptureState) -> None:
    if session.state not in states:
        raise InvalidTransitionError(session.state, operation)


def reset(session: CaptureSession) -> CaptureSession:
    """Discard everything; the result is a fresh session with a new identity."""
    return CaptureSession(session_id=new_session_id(), permission=session.permission)


def camera_requested(session: CaptureSession) -> CaptureSession:
    _require(session, "request the camera", CaptureState.AWAITING_DEVICE_CHOICE, CaptureState.ERROR)
    if session.captured is not None:
        raise InvalidTransitionError(session.state, "request the camera while holding a photo")
    return replace(
        session,
        state=CaptureState.AWAITING_DEVICE_CHOICE,
        permission=CameraPermissionState.REQUESTING,
        error_kind=None,
    )


def camera_granted(session: CaptureSession, handle: StreamHandle) -> CaptureSession:
    _require(session, "start streaming", CaptureState.AWAITING_DEVICE_CHOICE)
    return replace(
        session,
        state=CaptureState.STREAMING,
        permission=CameraPermissionState.GRANTED,
        stream_id=handle.stream_id,
    )


def camera_failed(session: CaptureSession, kind: ErrorKind, permission: CameraPermissionState) -> CaptureSession:
    if kind not in _CAMERA_KINDS:
        raise ValueError(f"Not a camera failure: {kind}")
    return replace(
        session,
        state=CaptureState.ERROR,
        permission=permission,
        stream_id=None,
        error_kind=kind,
    )


def image_captured(session: CaptureSession, image: EncodedImage) -> CaptureSession:
    _require(
        session,
        "accept a photo",
        CaptureState.AWAITING_DEVICE_CHOICE,
        CaptureState.STREAMING,
        CaptureState.ERROR,
    )
    return replace(
        session,
        state=CaptureState.CAPTURED,
        stream_id=None,
        captured=image,
        attempt=None,
        result=None,
        error_kind=None,
    )


def generation_started(session: CaptureSession, attempt: GenerationAttempt) -> CaptureSession:
    if not session.can_generate:
        raise InvalidTransitionError(session.state, "generate")
    return replace(session, state=CaptureState.GENERATING, attempt=attempt, result=None, error_kind=None)


def generation_retried(session: CaptureSession, attempt: GenerationAttempt) -> CaptureSession:
    _require(session, "retry generating", CaptureState.GENERATING)
    return replace(session, attempt=attempt)


def generation_finished(session: CaptureSession, result: GenerationResult) -> CaptureSession:
    _require(session, "finish generating", CaptureState.GENERATING)
    if result.ok:
        return replace(session, state=CaptureState.COMPLETE, attempt=None, result=result)
    return replace(session, state=CaptureState.ERROR, attempt=None, result=result, error_kind=result.error_kind)
