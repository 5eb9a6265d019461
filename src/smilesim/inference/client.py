"""Inference client: one logical request, with retries for transient failures.

The retry policy is independent of the transport. Only ServiceUnavailable is
retried; every other failure is terminal.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from smilesim.capture.models import GenerationAttempt, GenerationResult
from smilesim.errors import ErrorKind, GenerationInProgressError, InferenceError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tenacity import RetryCallState

    from smilesim.capture.models import EncodedImage

logger = logging.getLogger(__name__)

VENEERS_PROMPT = (
    "Enhance the photo quality. Analyze the image, find the person's face, and fix their teeth "
    "naturally, making them straight, white, and perfect like high-end dental veneers. "
    "Keep the rest of the image exactly the same."
)


class InferenceTransport(Protocol):
    """Protocol for a single network call to the image-editing service."""

    async def edit_image(self, image: EncodedImage, prompt: str) -> EncodedImage | None:
        """Send the image and instruction; return the edited image, or None if none came back.

        Raises:
            InferenceError: With the failure already classified.
        """
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, and after how long, a transient failure is retried.

    Retry n (n >= 1) waits base_delay * n.
    """

    max_retries: int = 2
    base_delay: float = 2.0
    retryable: frozenset[ErrorKind] = frozenset({ErrorKind.SERVICE_UNAVAILABLE})

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, InferenceError) and exc.kind in self.retryable

    def retrying(
        self,
        sleep: Callable[[float], Awaitable[None]],
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(self.is_retryable),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )


class InferenceClient:
    """Sends payloads to the inference service, retrying transient failures."""

    def __init__(
        self,
        transport_factory: Callable[[], InferenceTransport],
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport_factory = transport_factory
        self._transport: InferenceTransport | None = None
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._in_flight: GenerationAttempt | None = None

    @property
    def in_flight(self) -> GenerationAttempt | None:
        """The unresolved attempt, if a generate call is running."""
        return self._in_flight

    async def generate(
        self,
        image: EncodedImage,
        prompt: str = VENEERS_PROMPT,
        on_retry: Callable[[GenerationAttempt], None] | None = None,
    ) -> GenerationResult:
        """Run one logical generation, retrying ServiceUnavailable per the policy.

        Args:
            image: The payload; every retry sends the same one.
            prompt: Editing instruction.
            on_retry: Called with the advanced attempt before each retry wait.

        Raises:
            GenerationInProgressError: If a previous call has not resolved yet.
        """
        if self._in_flight is not None:
            raise GenerationInProgressError("A generation is already in progress")

        self._in_flight = GenerationAttempt(payload=image, max_retries=self.policy.max_retries)

        def before_sleep(state: RetryCallState) -> None:
            attempt = self._advance()
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "Service unavailable, retry %d/%d in %.1fs",
                attempt.attempt_number,
                attempt.max_retries,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt)

        try:
            async for call in self.policy.retrying(self._sleep, before_sleep):
                with call:
                    after = await self._call(prompt)
        except InferenceError as e:
            attempts = self._attempts_used()
            logger.warning("Generation failed (%s) after %d attempt(s): %s", e.kind, attempts, e.detail)
            return GenerationResult.failure(e.kind, attempts=attempts)
        else:
            attempts = self._attempts_used()
            if after is None:
                logger.warning("Service response contained no image")
                return GenerationResult.failure(ErrorKind.EMPTY_RESULT, attempts=attempts)
            logger.info("Generated %dx%d image", after.width, after.height)
            return GenerationResult.success(after, attempts=attempts)
        finally:
            self._in_flight = None

    async def _call(self, prompt: str) -> EncodedImage | None:
        attempt = self._current()
        transport = self._get_transport()
        logger.info("Inference attempt %d for %d-byte payload", attempt.attempt_number, len(attempt.payload.data))
        try:
            return await transport.edit_image(attempt.payload, prompt)
        except InferenceError:
            raise
        except Exception as e:
            logger.exception("Unclassified inference failure")
            raise InferenceError(ErrorKind.UNKNOWN, str(e)) from e

    def _current(self) -> GenerationAttempt:
        if self._in_flight is None:
            raise RuntimeError("No generation in flight")
        return self._in_flight

    def _advance(self) -> GenerationAttempt:
        self._in_flight = self._current().next()
        return self._in_flight

    def _attempts_used(self) -> int:
        return self._current().attempt_number + 1

    def _get_transport(self) -> InferenceTransport:
        # Built lazily so a missing credential surfaces on generate, not at startup.
        if self._transport is None:
            self._transport = self._transport_factory()
        return self._transport
