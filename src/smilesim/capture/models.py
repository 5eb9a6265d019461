"""Value types shared by the capture pipeline."""

from __future__ import annotations

import base64
import itertools
import uuid
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from smilesim.errors import ErrorKind


class CameraPermissionState(StrEnum):
    NOT_REQUESTED = "not_requested"
    REQUESTING = "requesting"
    GRANTED = "granted"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"


class CaptureState(StrEnum):
    AWAITING_DEVICE_CHOICE = "awaiting_device_choice"
    STREAMING = "streaming"
    CAPTURED = "captured"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, eq=False)
class RawImage:
    """Unprocessed RGB pixels from a camera frame or a decoded file."""

    pixels: NDArray[np.uint8]
    width: int
    height: int

    @classmethod
    def from_array(cls, pixels: NDArray[np.uint8]) -> RawImage:
        height, width = pixels.shape[:2]
        return cls(pixels=pixels, width=int(width), height=int(height))


@dataclass(frozen=True)
class EncodedImage:
    """Compressed, size-bounded image ready for transmission or display."""

    data: bytes
    mime_type: str
    width: int
    height: int

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


_stream_ids = itertools.count(1)


@dataclass
class StreamHandle:
    """Exclusive ownership of an active camera stream."""

    source: object
    stream_id: int = field(default_factory=lambda: next(_stream_ids))
    released: bool = False

    @property
    def live(self) -> bool:
        return not self.released


@dataclass(frozen=True)
class GenerationAttempt:
    """One logical inference request; retries share the same payload."""

    payload: EncodedImage
    attempt_number: int = 0
    max_retries: int = 2

    def next(self) -> GenerationAttempt:
        return replace(self, attempt_number=self.attempt_number + 1)


@dataclass(frozen=True)
class GenerationResult:
    """Success carries the edited image; Failure carries the error kind."""

    after_image: EncodedImage | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.after_image is not None

    @classmethod
    def success(cls, after_image: EncodedImage, attempts: int = 1) -> GenerationResult:
        return cls(after_image=after_image, attempts=attempts)

    @classmethod
    def failure(cls, kind: ErrorKind, attempts: int = 1) -> GenerationResult:
        return cls(error_kind=kind, attempts=attempts)


@dataclass(frozen=True)
class ComparisonPair:
    """The (before, after) pair emitted when a session completes."""

    session_id: str
    before: EncodedImage
    after: EncodedImage


def new_session_id() -> str:
    return uuid.uuid4().hex
