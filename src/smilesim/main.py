"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from smilesim.capture.media import CameraDevice
    from smilesim.inference.client import InferenceTransport

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smilesim.api.routes import router
from smilesim.capture.device_runner import DeviceRunner
from smilesim.capture.media import MediaAcquisition, OpenCVCamera
from smilesim.capture.preprocessing import ImagePreprocessor
from smilesim.capture.state_machine import CaptureStateMachine
from smilesim.comparison.view import ComparisonView
from smilesim.config import Settings, get_settings
from smilesim.errors import AcquisitionError, GenerationInProgressError, ImageDecodeError, InvalidTransitionError
from smilesim.inference.client import InferenceClient, RetryPolicy
from smilesim.inference.gemini import GeminiTransport

logger = logging.getLogger(__name__)


def build_capture_machine(
    settings: Settings,
    runner: DeviceRunner,
    camera: CameraDevice | None = None,
    transport: InferenceTransport | None = None,
) -> CaptureStateMachine:
    """Wire MediaAcquisition, ImagePreprocessor and InferenceClient into a state machine."""
    media = MediaAcquisition(
        camera or OpenCVCamera(settings.camera_index), runner, max_image_pixels=settings.max_image_pixels
    )
    preprocessor = ImagePreprocessor(max_dim=settings.max_dimension, quality=settings.jpeg_quality)

    def transport_factory() -> InferenceTransport:
        if transport is not None:
            return transport
        return GeminiTransport(settings.gemini_api_key, model=settings.model, timeout=settings.request_timeout)

    client = InferenceClient(
        transport_factory,
        policy=RetryPolicy(max_retries=settings.max_retries, base_delay=settings.retry_base_delay),
    )
    return CaptureStateMachine(media, preprocessor, client)


def init_app_state(
    app: FastAPI,
    settings: Settings,
    camera: CameraDevice | None = None,
    transport: InferenceTransport | None = None,
) -> None:
    """Attach settings and the capture pipeline to the application state."""
    runner = DeviceRunner(timeout=settings.device_timeout)
    machine = build_capture_machine(settings, runner, camera=camera, transport=transport)
    app.state.settings = settings
    app.state.device_runner = runner
    app.state.capture = machine
    app.state.comparison = None


async def consume_completions(app: FastAPI) -> None:
    """Show a fresh comparison for every completed session."""
    machine: CaptureStateMachine = app.state.capture
    while True:
        pair = await machine.wait_for_completion()
        if pair.session_id != machine.session.session_id:
            logger.info("Ignoring completion for replaced session %s", pair.session_id)
            continue
        app.state.comparison = ComparisonView(pair.before, pair.after)
        logger.info("Comparison ready for session %s", pair.session_id)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting SmileSim (model=%s, camera=%s, max_dimension=%s, max_retries=%s)",
        settings.model,
        settings.camera_index,
        settings.max_dimension,
        settings.max_retries,
    )
    if not settings.gemini_api_key:
        logger.warning("No inference API key configured; generation will fail with missing_credential")

    init_app_state(app, settings)
    consumer = asyncio.create_task(consume_completions(app), name="completion-consumer")

    logger.info("SmileSim ready")
    yield

    logger.info("Shutting down SmileSim")
    consumer.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await consumer
    await app.state.capture.teardown()
    app.state.device_runner.shutdown()
    logger.info("SmileSim shutdown complete")


async def _conflict_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


async def _bad_image_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="SmileSim",
        description="Capture a face photo and preview porcelain veneers with an image-editing model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(InvalidTransitionError, _conflict_handler)
    application.add_exception_handler(GenerationInProgressError, _conflict_handler)
    application.add_exception_handler(AcquisitionError, _conflict_handler)
    application.add_exception_handler(ImageDecodeError, _bad_image_handler)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("smilesim.main:app", host=settings.host, port=settings.port)
