"""Gemini image-editing transport."""

from __future__ import annotations

import asyncio
import io
import logging

from google import genai
from google.genai import errors, types
from PIL import Image, UnidentifiedImageError

from smilesim.capture.models import EncodedImage
from smilesim.errors import ErrorKind, InferenceError, MissingCredentialError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image"


def classify_failure(exc: BaseException) -> ErrorKind:
    """Map a transport exception onto the failure taxonomy."""
    if isinstance(exc, InferenceError):
        return exc.kind

    code = getattr(exc, "code", None) if isinstance(exc, errors.APIError) else None
    status = (getattr(exc, "status", None) or "") if isinstance(exc, errors.APIError) else ""
    message = str(exc).lower()

    if code == 503 or status == "UNAVAILABLE" or "overloaded" in message:
        return ErrorKind.SERVICE_UNAVAILABLE
    if code == 429 or status == "RESOURCE_EXHAUSTED" or "quota" in message or "rate limit" in message:
        return ErrorKind.RATE_LIMITED
    if "api key" in message and ("missing" in message or "not configured" in message):
        return ErrorKind.MISSING_CREDENTIAL
    return ErrorKind.UNKNOWN


def extract_image(response: types.GenerateContentResponse) -> EncodedImage | None:
    """Return the first inline image of the first candidate, or None."""
    if not response.candidates:
        return None
    content = response.candidates[0].content
    if content is None or not content.parts:
        return None

    for part in content.parts:
        if part.inline_data and part.inline_data.data:
            data = part.inline_data.data
            mime_type = part.inline_data.mime_type or "image/png"
            try:
                with Image.open(io.BytesIO(data)) as img:
                    width, height = img.size
            except (UnidentifiedImageError, OSError) as e:
                raise InferenceError(ErrorKind.UNKNOWN, f"Service returned an unreadable image: {e}") from e
            return EncodedImage(data=data, mime_type=mime_type, width=width, height=height)
    return None


class GeminiTransport:
    """Sends an image plus an editing instruction to a Gemini image model."""

    def __init__(self, api_key: str | None, model: str = DEFAULT_MODEL, timeout: float = 60.0) -> None:
        """Initialize the transport.

        Args:
            api_key: Google API key.
            model: Image-capable model identifier.
            timeout: Seconds to wait for one response.

        Raises:
            MissingCredentialError: If no API key is configured.
        """
        if not api_key:
            raise MissingCredentialError()
        self._client = genai.Client(api_key=api_key)
        self._model = model
        self._timeout = timeout

    async def edit_image(self, image: EncodedImage, prompt: str) -> EncodedImage | None:
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model,
                    contents=[
                        types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
                        prompt,
                    ],
                    config=types.GenerateContentConfig(
                        response_modalities=["IMAGE", "TEXT"],
                    ),
                ),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise InferenceError(ErrorKind.UNKNOWN, f"No response within {self._timeout:.0f}s") from e
        except Exception as e:
            kind = classify_failure(e)
            logger.debug("Gemini call failed (%s): %s", kind, e)
            raise InferenceError(kind, str(e)) from e

        return extract_image(response)
