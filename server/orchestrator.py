# =============================================================================
# Pasture Biomass Estimator - Analysis Orchestrator
# =============================================================================
# Drives one end-to-end analysis through the hybrid pipeline:
#
#   1. Validate the image input (no network call on obviously bad bytes)
#   2. Local inference (optional; failures only drop the hint)
#   3. Build the prompt, call the remote vision model
#   4. Retry with linear-in-attempt backoff on transient failures
#   5. Parse the JSON reply and assemble the AnalysisResult
#
# Transient failures (timeouts, empty replies) are retried up to max_retries
# times; everything else, including parse failures, surfaces immediately.
# All retry state is local to a single run() call.
# =============================================================================

import base64
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List

from local_model.predictor import BiomassPredictor, create_predictor
from shared.errors import (
    TRANSIENT_ERRORS,
    AnalysisFailure,
    AnalysisTimeout,
    BiomassAnalysisError,
    RemoteTimeoutError,
)
from shared.schemas import (
    AnalysisResult,
    BiomassComponents,
    LocalPrediction,
    RemoteVisionResponse,
)
from vision.client import RemoteVisionClient, validate_image_bytes
from vision.parsing import parse_vision_response
from vision.prompt import PROMPT_VERSION, VisionPromptBuilder

logger = logging.getLogger(__name__)

GDM_GREEN_RATIO = 0.85
# Relative tolerance before an advisory relation is reported
CONSISTENCY_TOLERANCE = 0.15


def check_consistency(components: BiomassComponents) -> List[str]:
    """
    Report violations of the advisory biomass relations.

    Checks total ≈ green + clover + dead and gdm ≈ 0.85 × green within
    CONSISTENCY_TOLERANCE. Values are never modified.

    Returns:
        Human-readable descriptions of each violated relation (may be empty).
    """
    warnings = []

    parts = components.dry_green_g + components.dry_clover_g + components.dry_dead_g
    if abs(components.dry_total_g - parts) > CONSISTENCY_TOLERANCE * max(parts, 1.0):
        warnings.append(
            f"DryTotal {components.dry_total_g:.2f}g differs from the sum of parts {parts:.2f}g"
        )

    expected_gdm = GDM_GREEN_RATIO * components.dry_green_g
    if abs(components.gdm_g - expected_gdm) > CONSISTENCY_TOLERANCE * max(expected_gdm, 1.0):
        warnings.append(
            f"Gdm {components.gdm_g:.2f}g is far from 85% of DryGreen ({expected_gdm:.2f}g)"
        )

    return warnings


def build_analysis_result(
    response: RemoteVisionResponse,
    image_bytes: bytes,
    attempts: int = 1,
    local_hint_used: bool = False,
) -> AnalysisResult:
    """
    Map a parsed remote reply onto the final AnalysisResult.

    Numeric fields are copied verbatim; a fresh UUID4 is generated only when
    the reply carries no identifier.
    """
    return AnalysisResult(
        id=response.id or str(uuid.uuid4()),
        title=response.title or "",
        description=response.description or "",
        analysis_date=datetime.now(timezone.utc),
        components=BiomassComponents(
            dry_green_g=response.dry_green,
            dry_clover_g=response.dry_clover,
            dry_dead_g=response.dry_dead,
            dry_total_g=response.dry_total,
            gdm_g=response.gdm,
        ),
        image_base64=base64.b64encode(image_bytes).decode("ascii"),
        recommendations=response.recommendations or "",
        confidence_score=response.confidence,
        attempts=attempts,
        local_hint_used=local_hint_used,
    )


class AnalysisOrchestrator:
    """
    End-to-end coordinator of local inference and the remote vision model.

    Holds no per-request state, so one instance can serve concurrent
    requests.

    Args:
        predictor:      Local predictor (real or unavailable variant).
        prompt_builder: Builder of the remote prompt.
        client:         Remote vision client.
        max_retries:    Retries after the first attempt on transient failures.
        backoff_seconds: Base delay; retry n waits n × backoff_seconds.
        sleep:          Sleep function, injectable for tests.
    """

    def __init__(
        self,
        predictor: BiomassPredictor,
        prompt_builder: VisionPromptBuilder,
        client: RemoteVisionClient,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._predictor = predictor
        self._prompt_builder = prompt_builder
        self._client = client
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_config(cls, config) -> "AnalysisOrchestrator":
        """
        Wire the pipeline from a Config, loading the local model once.

        A missing or unloadable model yields an orchestrator in remote-only mode.
        """
        predictor = create_predictor(config.model_path, device=config.device)
        client = RemoteVisionClient(
            endpoint=config.vision_endpoint,
            api_keys=config.api_keys,
            model=config.vision_model,
            timeout_seconds=config.vision_timeout_seconds,
            temperature=config.vision_temperature,
            max_tokens=config.vision_max_tokens,
        )
        return cls(
            predictor=predictor,
            prompt_builder=VisionPromptBuilder(response_language=config.response_language),
            client=client,
            max_retries=config.max_retries,
            backoff_seconds=config.retry_backoff_seconds,
        )

    @property
    def predictor(self) -> BiomassPredictor:
        return self._predictor

    @property
    def client(self) -> RemoteVisionClient:
        return self._client

    def _local_hint(self, image_bytes: bytes) -> LocalPrediction:
        if not self._predictor.is_available:
            logger.info("Local model not available, using remote vision only")
            return LocalPrediction.failed("Local model not available")

        prediction = self._predictor.predict(image_bytes)
        if prediction.success:
            logger.info(
                "Local hint: DryTotal=%.2fg, GDM=%.2fg",
                prediction.dry_total, prediction.gdm,
            )
        else:
            logger.warning("Local prediction failed: %s", prediction.error_message)
        return prediction

    def run(self, image_bytes: bytes) -> AnalysisResult:
        """
        Analyze one image and return the merged result.

        Args:
            image_bytes: Raw encoded image.

        Returns:
            AnalysisResult built from the remote reply.

        Raises:
            EmptyImageError, CorruptImageError: Invalid input, no attempt made.
            RemoteTransportError, RemoteServiceError: Surfaced on first occurrence.
            ResponseParseError: Malformed reply; never retried.
            AnalysisTimeout: Every attempt timed out.
            AnalysisFailure: Retry budget exhausted on other transient failures.
        """
        validate_image_bytes(image_bytes)

        total_attempts = self._max_retries + 1
        hint = self._local_hint(image_bytes)

        attempt = 0
        while True:
            attempt += 1
            prompt = self._prompt_builder.build(hint)
            logger.info(
                "Analyzing image (%d bytes), prompt v%s, attempt %d/%d",
                len(image_bytes), PROMPT_VERSION, attempt, total_attempts,
            )

            try:
                raw_json = self._client.analyze(image_bytes, prompt)
                response = parse_vision_response(raw_json)
            except TRANSIENT_ERRORS as exc:
                if attempt < total_attempts:
                    delay = attempt * self._backoff_seconds
                    logger.warning(
                        "Transient failure on attempt %d (%s), retrying in %.1fs",
                        attempt, exc, delay,
                    )
                    self._sleep(delay)
                    continue

                logger.error("Remote analysis failed after %d attempts: %s", attempt, exc)
                if isinstance(exc, RemoteTimeoutError):
                    raise AnalysisTimeout(
                        f"Vision endpoint did not respond after {attempt} attempts",
                        attempts=attempt,
                        cause=exc,
                    ) from exc
                raise AnalysisFailure(
                    f"Vision endpoint returned no usable reply after {attempt} attempts",
                    attempts=attempt,
                    cause=exc,
                ) from exc
            except BiomassAnalysisError as exc:
                exc.attempts = attempt
                logger.error(
                    "Remote analysis failed on attempt %d (%s): %s",
                    attempt, type(exc).__name__, exc,
                )
                raise

            result = build_analysis_result(
                response,
                image_bytes,
                attempts=attempt,
                local_hint_used=hint.success,
            )
            for warning in check_consistency(result.components):
                logger.warning("Advisory check on %s: %s", result.id, warning)

            logger.info(
                "Analysis complete: DryTotal=%sg, GDM=%sg, Confidence=%s (attempts=%d)",
                result.components.dry_total_g,
                result.components.gdm_g,
                result.confidence_score,
                attempt,
            )
            return result
