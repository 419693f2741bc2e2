# =============================================================================
# Pasture Biomass Estimator - Remote Reply Parsing
# =============================================================================
# Turns the free-form text of the remote vision model into a typed
# RemoteVisionResponse: Markdown code fences are trimmed away, the remainder
# must be a single JSON object matching the reply contract.
# =============================================================================

import json
import logging

from pydantic import ValidationError

from shared.errors import ResponseParseError
from shared.schemas import RemoteVisionResponse

logger = logging.getLogger(__name__)

_FENCE = "```"
_JSON_TAG = "json"


def strip_code_fences(text: str) -> str:
    """
    Remove a surrounding Markdown code fence and an optional ``json`` tag.

    Idempotent: already-clean JSON is returned unchanged (apart from
    surrounding whitespace).

        >>> strip_code_fences('```json\\n{"a": 1}\\n```')
        '{"a": 1}'
    """
    cleaned = text.strip()
    if cleaned.startswith(_FENCE):
        cleaned = cleaned[len(_FENCE):]
        if cleaned[: len(_JSON_TAG)].lower() == _JSON_TAG:
            cleaned = cleaned[len(_JSON_TAG):]
    if cleaned.endswith(_FENCE):
        cleaned = cleaned[: -len(_FENCE)]
    return cleaned.strip()


def parse_vision_response(text: str) -> RemoteVisionResponse:
    """
    Deserialize the remote model's JSON text into a RemoteVisionResponse.

    Keys are matched case-insensitively. Fences are stripped first, so raw
    model output may be passed directly.

    Raises:
        ResponseParseError: If the text is not JSON, not an object, or
                            misses / violates a required field.
    """
    cleaned = strip_code_fences(text)

    try:
        payload = json.loads(cleaned)
    except ValueError as exc:
        raise ResponseParseError(f"Remote reply is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ResponseParseError(
            f"Remote reply must be a JSON object, got {type(payload).__name__}"
        )

    try:
        response = RemoteVisionResponse.model_validate(payload)
    except ValidationError as exc:
        raise ResponseParseError(f"Remote reply violates the response contract: {exc}") from exc

    logger.debug(
        "Parsed remote reply: DryTotal=%sg, Confidence=%s",
        response.dry_total, response.confidence,
    )
    return response
