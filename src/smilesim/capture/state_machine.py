"""Capture state machine: camera or file -> preprocessing -> inference.

States::

    AwaitingDeviceChoice -> Streaming -> Captured -> Generating -> Complete | Error

File uploads go straight from AwaitingDeviceChoice (or Error) to Captured.
The current CaptureSession is replaced wholesale on every transition. A retake
or teardown gives the session a new identity, so results that arrive for an
older identity are dropped instead of overwriting the newer session. Camera
operations additionally require the exact snapshot they started from, so an
upload that lands while the camera opens is never overwritten.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from smilesim.capture import session as transitions
from smilesim.capture.models import CaptureState, ComparisonPair, GenerationAttempt, GenerationResult
from smilesim.capture.session import CaptureSession
from smilesim.errors import AcquisitionError, ErrorKind, GenerationInProgressError, InvalidTransitionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from smilesim.capture.media import MediaAcquisition
    from smilesim.capture.models import EncodedImage, StreamHandle
    from smilesim.capture.preprocessing import ImagePreprocessor
    from smilesim.inference.client import InferenceClient

logger = logging.getLogger(__name__)


class CaptureStateMachine:
    """Coordinates MediaAcquisition, ImagePreprocessor and InferenceClient for one session."""

    def __init__(
        self,
        media: MediaAcquisition,
        preprocessor: ImagePreprocessor,
        client: InferenceClient,
    ) -> None:
        self._media = media
        self._preprocessor = preprocessor
        self._client = client
        self._session = CaptureSession.new()
        # Serializes network calls, including a stale call still finishing after a retake.
        self._generation_lock = asyncio.Lock()
        self.completions: asyncio.Queue[ComparisonPair] = asyncio.Queue()

    @property
    def session(self) -> CaptureSession:
        return self._session

    @property
    def media(self) -> MediaAcquisition:
        return self._media

    @property
    def preprocessor(self) -> ImagePreprocessor:
        return self._preprocessor

    # -- Operations ---------------------------------------------------------

    async def request_camera(self) -> CaptureSession:
        """Ask for the camera. Refusal or absence lands in Error with upload offered."""
        return await self._start_camera(self._media.request_camera)

    async def capture(self) -> CaptureSession:
        """Take a still from the live stream."""
        origin = self._session
        handle = self._media.handle
        if origin.state != CaptureState.STREAMING or handle is None or handle.stream_id != origin.stream_id:
            raise InvalidTransitionError(origin.state, "capture")

        try:
            raw = await self._media.capture_frame(handle)
        except AcquisitionError as e:
            if self._session is origin:
                self._commit(transitions.camera_failed(origin, e.kind, self._media.permission))
            return self._session

        if self._session is not origin:
            logger.info("Session changed during capture; dropping frame from stream %d", handle.stream_id)
            return self._session
        self._commit(transitions.image_captured(origin, self._preprocessor.resize(raw)))
        return self._session

    async def load_from_file(self, image_bytes: bytes) -> CaptureSession:
        """Use an uploaded image instead of the camera.

        Raises:
            ImageDecodeError: If the file is not an image. The session is unchanged.
        """
        origin = self._session
        if not origin.can_upload:
            raise InvalidTransitionError(origin.state, "upload a photo")

        raw = await self._media.load_from_file(image_bytes)
        if not self._is_current(origin):
            return self._session
        self._commit(transitions.image_captured(self._session, self._preprocessor.resize(raw)))
        return self._session

    async def generate(self) -> CaptureSession:
        """Send the captured image for editing; retries happen inside the client.

        Raises:
            InvalidTransitionError: If there is no captured image to send.
            GenerationInProgressError: If this session is already generating.
        """
        origin = self._session
        if origin.state == CaptureState.GENERATING:
            raise GenerationInProgressError("A generation is already in progress for this session")
        attempt = GenerationAttempt(payload=_require_image(origin), max_retries=self._client.policy.max_retries)
        generating = transitions.generation_started(origin, attempt)
        self._commit(generating)

        try:
            async with self._generation_lock:
                if not self._is_current(generating):
                    return self._session
                result = await self._client.generate(attempt.payload, on_retry=self._on_retry(generating))
        except asyncio.CancelledError:
            if self._is_current(generating):
                cancelled = GenerationResult.failure(ErrorKind.UNKNOWN)
                self._commit(transitions.generation_finished(self._session, cancelled))
            raise

        if not self._is_current(generating):
            logger.info("Discarding result for reset session %s", generating.session_id)
            return self._session

        finished = transitions.generation_finished(self._session, result)
        self._commit(finished)
        if finished.state == CaptureState.COMPLETE and result.after_image is not None:
            self.completions.put_nowait(
                ComparisonPair(session_id=finished.session_id, before=attempt.payload, after=result.after_image)
            )
        return self._session

    async def retake(self) -> CaptureSession:
        """Discard the photo and any result, then restart the camera."""
        await self._media.stop()
        self._commit(transitions.reset(self._session))
        return await self._start_camera(self._media.retake)

    async def teardown(self) -> CaptureSession:
        """Release the camera and start over with an empty session."""
        await self._media.stop()
        self._commit(transitions.reset(self._session))
        return self._session

    async def wait_for_completion(self) -> ComparisonPair:
        """Wait for the next session to reach Complete."""
        return await self.completions.get()

    # -- Internal -----------------------------------------------------------

    async def _start_camera(self, open_stream: Callable[[], Awaitable[StreamHandle]]) -> CaptureSession:
        origin = transitions.camera_requested(self._session)
        self._commit(origin)
        try:
            handle = await open_stream()
        except AcquisitionError as e:
            if self._session is origin:
                self._commit(transitions.camera_failed(origin, e.kind, self._media.permission))
            return self._session

        if self._session is not origin:
            logger.info("Session changed while waiting for the camera; releasing stream %d", handle.stream_id)
            await self._media.release(handle)
            return self._session

        self._commit(transitions.camera_granted(origin, handle))
        return self._session

    def _is_current(self, session: CaptureSession) -> bool:
        return self._session.session_id == session.session_id

    def _on_retry(self, generating: CaptureSession) -> Callable[[GenerationAttempt], None]:
        def record(attempt: GenerationAttempt) -> None:
            if self._is_current(generating):
                self._commit(transitions.generation_retried(self._session, attempt))

        return record

    def _commit(self, session: CaptureSession) -> None:
        previous = self._session
        if session.streaming and session.stream_id != getattr(self._media.handle, "stream_id", None):
            raise RuntimeError("Session refers to a stream MediaAcquisition does not own")
        self._session = session
        if previous.state != session.state or previous.session_id != session.session_id:
            logger.info(
                "Session %s: %s -> %s%s",
                session.session_id[:8],
                previous.state,
                session.state,
                f" ({session.error_kind})" if session.error_kind else "",
            )


def _require_image(session: CaptureSession) -> EncodedImage:
    if session.captured is None or not session.can_generate:
        raise InvalidTransitionError(session.state, "generate")
    return session.captured
