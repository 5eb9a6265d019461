"""Shared fakes and fixtures: a scripted camera and a scripted inference service."""

from __future__ import annotations

import asyncio
import io
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import numpy as np
import pytest
from numpy.typing import NDArray
from PIL import Image

from smilesim.capture.device_runner import DeviceRunner
from smilesim.capture.media import MediaAcquisition
from smilesim.capture.models import EncodedImage
from smilesim.capture.preprocessing import ImagePreprocessor
from smilesim.capture.state_machine import CaptureStateMachine
from smilesim.inference.client import InferenceClient, RetryPolicy

# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------


def make_frame(width: int = 640, height: int = 480) -> NDArray[np.uint8]:
    """Left half red, right half blue."""
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, : width // 2] = (255, 0, 0)
    frame[:, width // 2 :] = (0, 0, 255)
    return frame


def image_bytes(width: int, height: int, color: tuple[int, int, int] = (200, 120, 90), fmt: str = "JPEG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


def encoded(width: int = 64, height: int = 48, color: tuple[int, int, int] = (10, 200, 10)) -> EncodedImage:
    return EncodedImage(data=image_bytes(width, height, color), mime_type="image/jpeg", width=width, height=height)


# ---------------------------------------------------------------------------
# Fake camera
# ---------------------------------------------------------------------------


class FakeSource:
    def __init__(self, frame: NDArray[np.uint8], read_error: Exception | None = None) -> None:
        self.frame = frame
        self.read_error = read_error
        self.released = False
        self.reads = 0

    def read_frame(self) -> NDArray[np.uint8]:
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        return self.frame

    def release(self) -> None:
        self.released = True


@dataclass
class FakeCamera:
    frame: NDArray[np.uint8] = field(default_factory=make_frame)
    error: Exception | None = None
    read_error: Exception | None = None
    # When set, open() blocks on the camera thread until the event is set.
    open_gate: threading.Event | None = None
    opened: list[FakeSource] = field(default_factory=list)

    def open(self) -> FakeSource:
        if self.open_gate is not None and not self.open_gate.wait(timeout=5):
            raise TimeoutError("open_gate was never set")
        if self.error is not None:
            raise self.error
        source = FakeSource(self.frame, self.read_error)
        self.opened.append(source)
        return source

    @property
    def live_sources(self) -> list[FakeSource]:
        return [s for s in self.opened if not s.released]


# ---------------------------------------------------------------------------
# Fake inference service
# ---------------------------------------------------------------------------


@dataclass
class ScriptedTransport:
    """Replays a script of results: an EncodedImage, None (no image), or an exception."""

    script: list[EncodedImage | Exception | None] = field(default_factory=list)
    calls: int = 0
    gate: asyncio.Event | None = None
    prompts: list[str] = field(default_factory=list)

    async def edit_image(self, image: EncodedImage, prompt: str) -> EncodedImage | None:
        self.calls += 1
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.script.pop(0) if self.script else encoded(color=(250, 250, 250))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass
class SleepRecorder:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture()
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture()
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
async def runner() -> AsyncIterator[DeviceRunner]:
    device_runner = DeviceRunner(timeout=2.0)
    yield device_runner
    device_runner.shutdown()


@pytest.fixture()
def media(camera: FakeCamera, runner: DeviceRunner) -> MediaAcquisition:
    return MediaAcquisition(camera, runner)


@pytest.fixture()
def client_factory(transport: ScriptedTransport, sleeps: SleepRecorder) -> Callable[..., InferenceClient]:
    def factory(**policy: object) -> InferenceClient:
        return InferenceClient(lambda: transport, policy=RetryPolicy(**policy), sleep=sleeps)  # type: ignore[arg-type]

    return factory


@pytest.fixture()
def machine(media: MediaAcquisition, client_factory: Callable[..., InferenceClient]) -> CaptureStateMachine:
    return CaptureStateMachine(media, ImagePreprocessor(), client_factory())
