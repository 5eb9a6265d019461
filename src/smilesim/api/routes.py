"""API route definitions."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status
from fastapi.responses import Response

from smilesim.api.middleware import verify_api_key
from smilesim.api.schemas import (
    ErrorResponse,
    HealthResponse,
    PointerEventRequest,
    SessionResponse,
    SliderResponse,
)
from smilesim.capture.models import CaptureState
from smilesim.comparison.view import ContainerBounds, PointerEvent
from smilesim.errors import describe_error

if TYPE_CHECKING:
    from smilesim.capture.device_runner import DeviceRunner
    from smilesim.capture.session import CaptureSession
    from smilesim.capture.state_machine import CaptureStateMachine
    from smilesim.comparison.view import ComparisonView
    from smilesim.config import Settings

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

DOWNLOAD_FILENAME = "my-new-smile-veneers.jpg"

_CONFLICT = {status.HTTP_409_CONFLICT: {"model": ErrorResponse}}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_machine(request: Request) -> CaptureStateMachine:
    machine: CaptureStateMachine = request.app.state.capture
    return machine


def _get_runner(request: Request) -> DeviceRunner:
    runner: DeviceRunner = request.app.state.device_runner
    return runner


def _get_comparison(request: Request) -> ComparisonView:
    view: ComparisonView | None = getattr(request.app.state, "comparison", None)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No comparison available yet")
    return view


def _session_response(session: CaptureSession) -> SessionResponse:
    description = describe_error(session.error_kind) if session.error_kind else None
    return SessionResponse(
        session_id=session.session_id,
        state=session.state,
        camera_permission=session.permission,
        streaming=session.streaming,
        has_captured_image=session.captured is not None,
        captured_width=session.captured.width if session.captured else None,
        captured_height=session.captured.height if session.captured else None,
        attempt_number=session.attempt.attempt_number if session.attempt else None,
        attempts_used=session.result.attempts if session.result else None,
        error_kind=session.error_kind,
        message=description.message if description else None,
        next_steps=list(description.next_steps) if description else [],
        can_upload=session.can_upload,
        can_generate=session.can_generate,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    machine = _get_machine(request)
    runner = _get_runner(request)
    return HealthResponse(
        status="ok",
        camera_permission=machine.media.permission,
        streaming=machine.media.streaming,
        device_calls_active=runner.active_count,
        device_calls_queued=runner.queue_depth,
    )


# ---------------------------------------------------------------------------
# Capture session
# ---------------------------------------------------------------------------


@router.get("/session", response_model=SessionResponse, summary="Current capture session")
async def get_session(request: Request) -> SessionResponse:
    return _session_response(_get_machine(request).session)


@router.delete("/session", response_model=SessionResponse, summary="Release the camera and start over")
async def teardown_session(request: Request) -> SessionResponse:
    request.app.state.comparison = None
    return _session_response(await _get_machine(request).teardown())


@router.post("/session/camera", response_model=SessionResponse, responses=_CONFLICT, summary="Request the camera")
async def request_camera(request: Request) -> SessionResponse:
    """Open the camera. Denial or absence is reported in the session, with upload offered."""
    return _session_response(await _get_machine(request).request_camera())


@router.get("/session/preview", responses=_CONFLICT, summary="Current live preview frame (mirrored)")
async def preview(request: Request) -> Response:
    machine = _get_machine(request)
    handle = machine.media.handle
    if machine.session.state != CaptureState.STREAMING or handle is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Camera is not streaming")
    frame = await machine.media.preview_frame(handle)
    encoded = await asyncio.to_thread(machine.preprocessor.resize, frame)
    return Response(content=encoded.data, media_type=encoded.mime_type, headers={"Cache-Control": "no-store"})


@router.post("/session/capture", response_model=SessionResponse, responses=_CONFLICT, summary="Take the photo")
async def capture(request: Request) -> SessionResponse:
    return _session_response(await _get_machine(request).capture())


@router.post(
    "/session/upload",
    response_model=SessionResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Use an uploaded photo",
)
async def upload(request: Request, file: UploadFile) -> SessionResponse:
    settings = _get_settings(request)
    data = await file.read(settings.max_upload_size + 1)
    if len(data) > settings.max_upload_size:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Image file is too large")
    return _session_response(await _get_machine(request).load_from_file(data))


@router.get("/session/captured", summary="The captured photo")
async def captured_image(request: Request) -> Response:
    image = _get_machine(request).session.captured
    if image is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No photo captured")
    return Response(content=image.data, media_type=image.mime_type)


@router.post(
    "/session/generate",
    response_model=SessionResponse,
    responses=_CONFLICT,
    summary="Simulate the treatment on the captured photo",
)
async def generate(request: Request) -> SessionResponse:
    """Run the inference request, including retries, and return the resulting session."""
    return _session_response(await _get_machine(request).generate())


@router.post("/session/retake", response_model=SessionResponse, summary="Discard the photo and restart the camera")
async def retake(request: Request) -> SessionResponse:
    request.app.state.comparison = None
    return _session_response(await _get_machine(request).retake())


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


@router.get("/comparison", response_model=SliderResponse, summary="Current slider state")
async def get_slider(request: Request) -> SliderResponse:
    view = _get_comparison(request)
    return SliderResponse(position=view.state.position, dragging=view.state.dragging)


@router.post("/comparison/pointer", response_model=SliderResponse, summary="Feed a pointer or touch event")
async def pointer(request: Request, event: PointerEventRequest) -> SliderResponse:
    view = _get_comparison(request)
    if event.container_width is not None:
        view.resize_container(ContainerBounds(left=event.container_left or 0.0, width=event.container_width))
    state = view.handle(PointerEvent(phase=event.phase, x=event.client_x))
    return SliderResponse(position=state.position, dragging=state.dragging)


@router.get("/comparison/render", summary="Composited before/after image")
async def render(request: Request, position: float | None = None) -> Response:
    view = _get_comparison(request)
    return Response(content=view.render(position), media_type="image/png", headers={"Cache-Control": "no-store"})


@router.get("/comparison/download", summary="Download the simulated result")
async def download(request: Request) -> Response:
    after = _get_comparison(request).after
    return Response(
        content=after.data,
        media_type=after.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"'},
    )


@router.delete("/comparison", response_model=SessionResponse, summary="Start a new simulation")
async def new_simulation(request: Request) -> SessionResponse:
    request.app.state.comparison = None
    return _session_response(await _get_machine(request).retake())
