"""Pydantic request/response schemas for the SmileSim API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from smilesim.capture.models import CameraPermissionState, CaptureState
from smilesim.comparison.view import PointerPhase
from smilesim.errors import ErrorKind, NextStep


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    camera_permission: CameraPermissionState
    streaming: bool
    device_calls_active: int
    device_calls_queued: int


class SessionResponse(BaseModel):
    """Snapshot of the current capture session."""

    session_id: str
    state: CaptureState
    camera_permission: CameraPermissionState
    streaming: bool
    has_captured_image: bool
    captured_width: int | None = None
    captured_height: int | None = None
    attempt_number: int | None = Field(default=None, description="Retry number of the in-flight request (0 = first)")
    attempts_used: int | None = Field(default=None, description="Network calls made by the last finished request")
    error_kind: ErrorKind | None = None
    message: str | None = Field(default=None, description="User-visible failure message")
    next_steps: list[NextStep] = Field(default_factory=list)
    can_upload: bool
    can_generate: bool


class PointerEventRequest(BaseModel):
    """A mouse or touch event on the comparison container."""

    phase: PointerPhase
    client_x: float = 0.0
    container_left: float | None = None
    container_width: float | None = Field(default=None, ge=0.0)


class SliderResponse(BaseModel):
    """Reveal boundary position and drag status."""

    position: float = Field(ge=0.0, le=100.0)
    dragging: bool


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
