"""Tests for camera lifecycle and file loading."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from conftest import FakeCamera, image_bytes

from smilesim.capture.device_runner import DeviceRunner
from smilesim.capture.media import MediaAcquisition, OpenCVCamera, decode_image
from smilesim.capture.models import CameraPermissionState
from smilesim.errors import CameraPermissionDenied, CameraUnavailable, ErrorKind, ImageDecodeError


class TestRequestCamera:
    async def test_grants_and_exposes_handle(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        assert media.permission == CameraPermissionState.NOT_REQUESTED

        handle = await media.request_camera()

        assert media.permission == CameraPermissionState.GRANTED
        assert media.handle is handle
        assert handle.live
        assert len(camera.live_sources) == 1

    async def test_denied(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        camera.error = CameraPermissionDenied("user said no")

        with pytest.raises(CameraPermissionDenied) as info:
            await media.request_camera()

        assert info.value.kind == ErrorKind.PERMISSION_DENIED
        assert media.permission == CameraPermissionState.DENIED
        assert media.handle is None

    async def test_unavailable(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        camera.error = CameraUnavailable("no camera")

        with pytest.raises(CameraUnavailable):
            await media.request_camera()

        assert media.permission == CameraPermissionState.UNAVAILABLE

    async def test_unexpected_failure_is_unavailable(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        camera.error = OSError("driver crashed")

        with pytest.raises(CameraUnavailable):
            await media.request_camera()

        assert media.permission == CameraPermissionState.UNAVAILABLE

    async def test_second_request_replaces_first_stream(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        first = await media.request_camera()
        second = await media.retake()

        assert not first.live
        assert second.live
        assert media.handle is second
        assert len(camera.live_sources) == 1


class TestCaptureFrame:
    async def test_flips_horizontally_and_releases(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        handle = await media.request_camera()

        raw = await media.capture_frame(handle)

        assert (raw.width, raw.height) == (640, 480)
        # Sensor frame is red on the left; the still is mirrored.
        assert tuple(raw.pixels[0, 0]) == (0, 0, 255)
        assert tuple(raw.pixels[0, -1]) == (255, 0, 0)
        np.testing.assert_array_equal(raw.pixels, camera.frame[:, ::-1])
        assert not handle.live
        assert media.handle is None
        assert camera.live_sources == []

    async def test_released_handle_cannot_capture(self, media: MediaAcquisition) -> None:
        handle = await media.request_camera()
        await media.stop()

        with pytest.raises(CameraUnavailable):
            await media.capture_frame(handle)

    async def test_read_failure_is_unavailable_and_releases(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        camera.read_error = RuntimeError("cv2.error: read failed")
        handle = await media.request_camera()

        with pytest.raises(CameraUnavailable) as info:
            await media.capture_frame(handle)

        assert isinstance(info.value.__cause__, RuntimeError)
        assert not handle.live
        assert media.handle is None
        assert camera.live_sources == []

    async def test_preview_read_failure_is_unavailable(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        camera.read_error = TimeoutError()
        handle = await media.request_camera()

        with pytest.raises(CameraUnavailable):
            await media.preview_frame(handle)

    async def test_preview_keeps_stream(self, media: MediaAcquisition) -> None:
        handle = await media.request_camera()

        preview = await media.preview_frame(handle)

        assert tuple(preview.pixels[0, 0]) == (0, 0, 255)
        assert handle.live


class TestLoadFromFile:
    async def test_decodes_and_stops_stream(self, media: MediaAcquisition, camera: FakeCamera) -> None:
        handle = await media.request_camera()

        raw = await media.load_from_file(image_bytes(320, 200, fmt="PNG"))

        assert (raw.width, raw.height) == (320, 200)
        assert raw.pixels.shape == (200, 320, 3)
        assert not handle.live
        assert camera.live_sources == []

    async def test_bad_file_keeps_stream(self, media: MediaAcquisition) -> None:
        handle = await media.request_camera()

        with pytest.raises(ImageDecodeError):
            await media.load_from_file(b"definitely not an image")

        assert handle.live

    def test_decode_converts_to_rgb(self) -> None:
        raw = decode_image(image_bytes(10, 10, color=(1, 2, 3), fmt="PNG"))
        assert tuple(raw.pixels[5, 5]) == (1, 2, 3)

    def test_decode_rejects_too_many_pixels(self) -> None:
        with pytest.raises(ImageDecodeError, match="pixels"):
            decode_image(image_bytes(200, 100, fmt="PNG"), max_pixels=19_999)

    async def test_pixel_bound_keeps_stream(self, camera: FakeCamera, runner: DeviceRunner) -> None:
        media = MediaAcquisition(camera, runner, max_image_pixels=100)
        handle = await media.request_camera()

        with pytest.raises(ImageDecodeError):
            await media.load_from_file(image_bytes(20, 20))

        assert handle.live


class TestOpenCVCamera:
    @patch("smilesim.capture.media.os.path.exists", return_value=False)
    @patch("smilesim.capture.media.cv2.VideoCapture")
    def test_converts_bgr_to_rgb(self, mock_capture_cls: MagicMock, _exists: MagicMock) -> None:
        bgr = np.zeros((4, 6, 3), dtype=np.uint8)
        bgr[..., 0] = 255
        mock_capture = MagicMock()
        mock_capture.isOpened.return_value = True
        mock_capture.read.return_value = (True, bgr)
        mock_capture_cls.return_value = mock_capture

        source = OpenCVCamera(2).open()
        frame = source.read_frame()

        mock_capture_cls.assert_called_once_with(2)
        assert tuple(frame[0, 0]) == (0, 0, 255)
        source.release()
        mock_capture.release.assert_called_once()

    @patch("smilesim.capture.media.os.path.exists", return_value=False)
    @patch("smilesim.capture.media.cv2.VideoCapture")
    def test_unopened_device_is_unavailable(self, mock_capture_cls: MagicMock, _exists: MagicMock) -> None:
        mock_capture_cls.return_value.isOpened.return_value = False
        with pytest.raises(CameraUnavailable):
            OpenCVCamera().open()

    @patch("smilesim.capture.media.os.path.exists", return_value=False)
    @patch("smilesim.capture.media.cv2.VideoCapture")
    def test_no_frames_is_unavailable(self, mock_capture_cls: MagicMock, _exists: MagicMock) -> None:
        mock_capture = mock_capture_cls.return_value
        mock_capture.isOpened.return_value = True
        mock_capture.read.return_value = (False, None)
        with pytest.raises(CameraUnavailable):
            OpenCVCamera().open()
        mock_capture.release.assert_called_once()

    @patch("smilesim.capture.media.os.access", return_value=False)
    @patch("smilesim.capture.media.os.path.exists", return_value=True)
    @patch("smilesim.capture.media.cv2.VideoCapture")
    def test_inaccessible_node_is_denied(
        self, mock_capture_cls: MagicMock, _exists: MagicMock, _access: MagicMock
    ) -> None:
        with pytest.raises(CameraPermissionDenied):
            OpenCVCamera().open()
        mock_capture_cls.assert_not_called()
