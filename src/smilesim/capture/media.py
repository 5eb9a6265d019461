"""Camera stream lifecycle and file-based image loading.

MediaAcquisition is the only component allowed to open or stop the camera.
At most one StreamHandle is live at any time.
"""

from __future__ import annotations

import io
import logging
import os
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from smilesim.capture.models import CameraPermissionState, RawImage, StreamHandle
from smilesim.errors import AcquisitionError, CameraPermissionDenied, CameraUnavailable, ImageDecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from smilesim.capture.device_runner import DeviceRunner

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Device protocols
# ---------------------------------------------------------------------------


class CameraSource(Protocol):
    """An open camera stream."""

    def read_frame(self) -> NDArray[np.uint8]:
        """Return the current frame as an HxWx3 RGB uint8 array in sensor orientation."""
        ...

    def release(self) -> None:
        """Stop the stream and free the device."""
        ...


class CameraDevice(Protocol):
    """Something that can be asked for a camera stream."""

    def open(self) -> CameraSource:
        """Open the camera.

        Raises:
            CameraPermissionDenied: If access to the device is refused.
            CameraUnavailable: If there is no usable camera.
        """
        ...


# ---------------------------------------------------------------------------
# OpenCV implementation
# ---------------------------------------------------------------------------


class _OpenCVSource:
    def __init__(self, capture: cv2.VideoCapture) -> None:
        self._capture = capture

    def read_frame(self) -> NDArray[np.uint8]:
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CameraUnavailable("Camera returned no frame")
        rgb: NDArray[np.uint8] = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return rgb

    def release(self) -> None:
        self._capture.release()


class OpenCVCamera:
    """Local webcam accessed through OpenCV."""

    def __init__(self, index: int = 0) -> None:
        self._index = index

    def open(self) -> CameraSource:
        node = f"/dev/video{self._index}"
        if os.path.exists(node) and not os.access(node, os.R_OK | os.W_OK):
            raise CameraPermissionDenied(f"No access to {node}")

        capture = cv2.VideoCapture(self._index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailable(f"Could not open camera {self._index}")

        source = _OpenCVSource(capture)
        # Some drivers open fine but never deliver frames.
        try:
            source.read_frame()
        except CameraUnavailable:
            source.release()
            raise
        return source


# ---------------------------------------------------------------------------
# MediaAcquisition
# ---------------------------------------------------------------------------


DEFAULT_MAX_IMAGE_PIXELS: int = 16_777_216


def decode_image(image_bytes: bytes, max_pixels: int = DEFAULT_MAX_IMAGE_PIXELS) -> RawImage:
    """Decode image file bytes into an upright RGB RawImage.

    Raises:
        ImageDecodeError: If the bytes are not a readable image, or it has more than max_pixels pixels.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image: {e}") from e

    with img:
        # Checked from the header, before any pixel data is decoded.
        if img.width * img.height > max_pixels:
            raise ImageDecodeError(f"Image is {img.width}x{img.height}, more than {max_pixels} pixels")
        try:
            upright = ImageOps.exif_transpose(img)
            pixels = np.asarray(upright.convert("RGB"), dtype=np.uint8)
        except (Image.DecompressionBombError, OSError, ValueError) as e:
            raise ImageDecodeError(f"Could not decode image: {e}") from e
    return RawImage.from_array(pixels)


class MediaAcquisition:
    """Owns the camera permission state and the single live stream."""

    def __init__(
        self, device: CameraDevice, runner: DeviceRunner, max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS
    ) -> None:
        self._device = device
        self._runner = runner
        self._max_image_pixels = max_image_pixels
        self._handle: StreamHandle | None = None
        self.permission: CameraPermissionState = CameraPermissionState.NOT_REQUESTED

    @property
    def handle(self) -> StreamHandle | None:
        """The live stream handle, if any."""
        if self._handle is not None and self._handle.live:
            return self._handle
        return None

    @property
    def streaming(self) -> bool:
        return self.handle is not None

    async def request_camera(self) -> StreamHandle:
        """Open the camera and return the live stream handle.

        Raises:
            CameraPermissionDenied: The user or OS refused access.
            CameraUnavailable: No camera, or it failed to start.
        """
        await self.stop()
        self.permission = CameraPermissionState.REQUESTING
        try:
            source = await self._runner.run(self._device.open)
        except CameraPermissionDenied:
            self.permission = CameraPermissionState.DENIED
            logger.info("Camera permission denied")
            raise
        except CameraUnavailable:
            self.permission = CameraPermissionState.UNAVAILABLE
            logger.info("Camera unavailable")
            raise
        except Exception as e:
            self.permission = CameraPermissionState.UNAVAILABLE
            logger.exception("Camera failed to start")
            raise CameraUnavailable(str(e)) from e

        if self._handle is not None:
            # A concurrent request got here first; keep only the newest stream.
            await self.release(self._handle)
        self._handle = StreamHandle(source=source)
        self.permission = CameraPermissionState.GRANTED
        logger.info("Camera stream %d started", self._handle.stream_id)
        return self._handle

    async def preview_frame(self, handle: StreamHandle) -> RawImage:
        """Return the current frame mirrored, as shown in the live preview."""
        frame = await self._read(handle)
        return RawImage.from_array(np.ascontiguousarray(frame[:, ::-1]))

    async def capture_frame(self, handle: StreamHandle) -> RawImage:
        """Take a still from the stream and release the camera.

        The still is flipped horizontally, matching the mirrored preview the user
        framed their face in. Any device failure is raised as CameraUnavailable,
        and the stream is released either way.
        """
        try:
            frame = await self._read(handle)
        finally:
            await self.release(handle)
        return RawImage.from_array(np.ascontiguousarray(frame[:, ::-1]))

    async def load_from_file(self, image_bytes: bytes) -> RawImage:
        """Decode a user-chosen image file and stop any live stream.

        A file that fails to decode leaves the stream running.
        """
        raw = decode_image(image_bytes, self._max_image_pixels)
        await self.stop()
        logger.info("Loaded %dx%d image from file", raw.width, raw.height)
        return raw

    async def retake(self) -> StreamHandle:
        """Stop any live stream and restart the camera from Requesting."""
        await self.stop()
        return await self.request_camera()

    async def stop(self) -> None:
        """Release the live stream, if any."""
        if self._handle is not None:
            await self.release(self._handle)

    async def _read(self, handle: StreamHandle) -> NDArray[np.uint8]:
        if handle is not self._handle or not handle.live:
            raise CameraUnavailable("Stream is no longer active")
        source: CameraSource = handle.source  # type: ignore[assignment]
        try:
            return await self._runner.run(source.read_frame)
        except AcquisitionError:
            raise
        except Exception as e:
            logger.exception("Camera stream %d failed to deliver a frame", handle.stream_id)
            raise CameraUnavailable(str(e) or type(e).__name__) from e

    async def release(self, handle: StreamHandle) -> None:
        """Stop a stream handle. Releasing twice is a no-op."""
        if handle.released:
            return
        handle.released = True
        if handle is self._handle:
            self._handle = None
        source: CameraSource = handle.source  # type: ignore[assignment]
        try:
            await self._runner.run(source.release)
        except Exception as e:
            logger.exception("Camera stream %d failed to stop cleanly", handle.stream_id)
            raise CameraUnavailable(str(e) or type(e).__name__) from e
        finally:
            logger.info("Camera stream %d released", handle.stream_id)
