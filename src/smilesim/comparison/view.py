"""Before/after comparison with a draggable reveal boundary.

Mouse and touch input arrive as one kind of PointerEvent with down/move/up
phases. The before image is clipped to the left of the slider position; the
after image shows through on the right.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from PIL import Image

if TYPE_CHECKING:
    from smilesim.capture.models import EncodedImage

logger = logging.getLogger(__name__)

INITIAL_POSITION: float = 50.0


class PointerPhase(StrEnum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"


@dataclass(frozen=True)
class PointerEvent:
    """A mouse or touch contact, in the same coordinate space as the container."""

    phase: PointerPhase
    x: float = 0.0


@dataclass(frozen=True)
class ContainerBounds:
    left: float
    width: float


@dataclass
class SliderState:
    position: float = INITIAL_POSITION
    dragging: bool = False


def position_for(x: float, bounds: ContainerBounds) -> float:
    """Slider position (0-100) for a contact at x."""
    if bounds.width <= 0:
        return 0.0
    offset = max(0.0, min(x - bounds.left, bounds.width))
    return max(0.0, min(offset / bounds.width * 100.0, 100.0))


class ComparisonView:
    """Holds the slider state for one before/after pair."""

    def __init__(self, before: EncodedImage, after: EncodedImage, bounds: ContainerBounds | None = None) -> None:
        self.before = before
        self.after = after
        self.bounds = bounds or ContainerBounds(left=0.0, width=float(before.width))
        self.state = SliderState()

    def handle(self, event: PointerEvent) -> SliderState:
        """Apply one pointer event and return the resulting state."""
        if event.phase is PointerPhase.DOWN:
            self.state.dragging = True
            self._move_to(event.x)
        elif event.phase is PointerPhase.MOVE:
            if self.state.dragging:
                self._move_to(event.x)
        else:
            self.state.dragging = False
        return self.state

    def pointer_down(self, x: float) -> SliderState:
        return self.handle(PointerEvent(PointerPhase.DOWN, x))

    def pointer_move(self, x: float) -> SliderState:
        return self.handle(PointerEvent(PointerPhase.MOVE, x))

    def pointer_up(self) -> SliderState:
        return self.handle(PointerEvent(PointerPhase.UP))

    def resize_container(self, bounds: ContainerBounds) -> None:
        self.bounds = bounds

    def render(self, position: float | None = None) -> bytes:
        """Composite the pair at the given (or current) position and return PNG bytes."""
        pos = self.state.position if position is None else max(0.0, min(position, 100.0))
        with Image.open(io.BytesIO(self.before.data)) as img:
            before = img.convert("RGB")
        with Image.open(io.BytesIO(self.after.data)) as img:
            canvas = img.convert("RGB")
        if canvas.size != before.size:
            canvas = canvas.resize(before.size, Image.Resampling.LANCZOS)

        cut = round(before.width * pos / 100.0)
        if cut > 0:
            canvas.paste(before.crop((0, 0, cut, before.height)), (0, 0))

        buf = io.BytesIO()
        canvas.save(buf, format="PNG")
        return buf.getvalue()

    def _move_to(self, x: float) -> None:
        self.state.position = position_for(x, self.bounds)
