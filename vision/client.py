# =============================================================================
# Pasture Biomass Estimator - Remote Vision HTTP Client
# =============================================================================
# Provides the RemoteVisionClient class responsible for validating the image,
# embedding it as a base64 data URI and sending one chat-completions request
# per call to the remote vision-language endpoint. The reply envelope is
# normalized to plain text immediately and Markdown fences are trimmed;
# the text is otherwise returned untouched.
#
# Network faults are classified so the orchestrator can pick a retry policy:
#   timeout / cancellation    → RemoteTimeoutError (transient)
#   connection-level fault    → RemoteTransportError
#   HTTP status / bad payload → RemoteServiceError
#   no usable text            → RemoteEmptyResponseError (transient)
# =============================================================================

import base64
import logging
import random
from typing import Optional, Sequence

import requests
from pydantic import TypeAdapter, ValidationError

from shared.errors import (
    CorruptImageError,
    EmptyImageError,
    RemoteEmptyResponseError,
    RemoteServiceError,
    RemoteTimeoutError,
    RemoteTransportError,
)
from shared.schemas import RemoteReplyEnvelope
from vision.parsing import strip_code_fences
from vision.prompt import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

# Smallest byte length accepted as a plausible encoded image
MIN_IMAGE_BYTES = 100

_DEFAULT_MIME_TYPE = "image/jpeg"

# (prefix, MIME type) pairs checked in order
_MAGIC_NUMBERS = (
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF", "image/gif"),
)

_envelope_adapter = TypeAdapter(RemoteReplyEnvelope)


def validate_image_bytes(image_bytes: bytes) -> None:
    """
    Reject obviously unusable image input before any network call.

    Raises:
        EmptyImageError:   If the byte sequence is empty.
        CorruptImageError: If it is shorter than MIN_IMAGE_BYTES.
    """
    if not image_bytes:
        raise EmptyImageError("Image is empty (0 bytes)")
    if len(image_bytes) < MIN_IMAGE_BYTES:
        raise CorruptImageError(
            f"Image is too small ({len(image_bytes)} bytes), likely corrupt"
        )


def detect_mime_type(image_bytes: bytes) -> str:
    """
    Detect the image MIME type from its magic number.

    Recognizes PNG, JPEG and GIF; anything else defaults to image/jpeg.
    """
    for prefix, mime_type in _MAGIC_NUMBERS:
        if image_bytes.startswith(prefix):
            return mime_type
    return _DEFAULT_MIME_TYPE


def to_data_uri(image_bytes: bytes) -> str:
    """Encode image bytes as a ``data:<mime>;base64,...`` URI."""
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{detect_mime_type(image_bytes)};base64,{encoded}"


def extract_reply_text(payload) -> Optional[str]:
    """
    Normalize the reply envelope into its text content.

    Accepts the OpenAI-style ``choices[0].message.content`` shape or a flat
    ``content`` string.

    Raises:
        RemoteServiceError: If the payload matches neither shape.
    """
    try:
        envelope = _envelope_adapter.validate_python(payload)
    except ValidationError as exc:
        raise RemoteServiceError(f"Unrecognized reply shape from vision endpoint: {exc}") from exc
    return envelope.text()


class RemoteVisionClient:
    """
    HTTP client for the remote vision-language model.

    Sends one OpenAI-compatible chat-completions request per analyze() call
    with a system turn and a user turn carrying the prompt text plus the
    image as a data URI.

    Args:
        endpoint:        Base URL of the chat-completions API.
        api_keys:        One or more API keys; one is picked at random per call.
        model:           Remote model identifier.
        timeout_seconds: Per-call timeout; expiry raises RemoteTimeoutError.
        temperature:     Sampling temperature (low for determinism).
        max_tokens:      Upper bound on the reply length.
        session:         Optional pre-built requests.Session.
    """

    def __init__(
        self,
        endpoint: str,
        api_keys: Sequence[str],
        model: str = "gpt-4o",
        timeout_seconds: float = 60.0,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        session: Optional[requests.Session] = None,
    ):
        self._url = f"{endpoint.rstrip('/')}/chat/completions"
        self._api_keys = tuple(api_keys)
        self._model = model
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    @property
    def is_configured(self) -> bool:
        """Whether at least one API key is available."""
        return bool(self._api_keys)

    def build_request(self, image_bytes: bytes, prompt: str) -> dict:
        """Build the chat-completions request body for one attempt."""
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": to_data_uri(image_bytes)},
                        },
                    ],
                },
            ],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

    def analyze(self, image_bytes: bytes, prompt: str) -> str:
        """
        Send the image and prompt to the remote model and return its JSON text.

        Args:
            image_bytes: Raw encoded image (PNG, JPEG or GIF).
            prompt:      Prompt text from VisionPromptBuilder.

        Returns:
            The reply text with Markdown code fences trimmed.

        Raises:
            EmptyImageError, CorruptImageError: Before any network call.
            RemoteTimeoutError:       The call timed out.
            RemoteTransportError:     Connection-level network failure.
            RemoteServiceError:       HTTP error status or malformed reply.
            RemoteEmptyResponseError: No usable text in the reply.
        """
        validate_image_bytes(image_bytes)

        logger.debug(
            "Image bytes length: %d, first 10 bytes (hex): %s, type: %s",
            len(image_bytes),
            image_bytes[:10].hex(" ").upper(),
            detect_mime_type(image_bytes),
        )

        if not self._api_keys:
            raise RemoteServiceError("No API key configured for the vision endpoint")

        headers = {"Authorization": f"Bearer {random.choice(self._api_keys)}"}
        body = self.build_request(image_bytes, prompt)

        logger.info("Sending request to vision endpoint (model=%s)", self._model)
        try:
            response = self._session.post(
                self._url, json=body, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as exc:
            raise RemoteTimeoutError(
                f"Vision endpoint did not respond within {self._timeout}s"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise RemoteTransportError(f"Could not reach vision endpoint: {exc}") from exc
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise RemoteServiceError(
                f"Vision endpoint returned HTTP {status}", status_code=status
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise RemoteTransportError(f"Vision request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteServiceError(
                "Vision endpoint returned a non-JSON body",
                status_code=response.status_code,
            ) from exc

        text = extract_reply_text(payload)
        cleaned = strip_code_fences(text or "")
        if not cleaned:
            raise RemoteEmptyResponseError("Empty reply from vision endpoint")

        logger.info(
            "Vision endpoint replied (%d chars): %s...",
            len(cleaned), cleaned[:200],
        )
        return cleaned
