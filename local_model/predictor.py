# =============================================================================
# Pasture Biomass Estimator - Local Biomass Predictor
# =============================================================================
# Provides the BiomassPredictor interface and its two implementations:
#
#   TorchBiomassPredictor       — runs the loaded PyTorch model
#   UnavailableBiomassPredictor — stands in when no model could be loaded
#
# create_predictor() chooses one of them once at startup. Callers treat both
# polymorphically: predict() never raises, and availability is queried via
# the is_available property rather than by inspecting the type.
# =============================================================================

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np
import torch

from local_model.architecture import OUTPUT_NAMES, ModelHandle, load_model_handle
from local_model.preprocessing import preprocess
from shared.errors import ModelLoadError
from shared.schemas import LocalPrediction

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.10
CONFIDENCE_CEILING = 0.95
# Reported when the model returns an empty vector
CONFIDENCE_UNDEFINED = 0.5


def estimate_confidence(raw_predictions: Sequence[float]) -> float:
    """
    Heuristic confidence for a raw output vector: 1 / (1 + variance).

    Near-uniform outputs score higher. This is a crude signal, not a
    calibrated probability. The variance is the mean squared deviation
    from the mean of the vector.

    Returns:
        A value clamped to [0.10, 0.95]; 0.5 for an empty vector.
    """
    if len(raw_predictions) == 0:
        return CONFIDENCE_UNDEFINED

    values = np.asarray(raw_predictions, dtype=np.float64)
    variance = float(np.var(values))
    if not np.isfinite(variance):
        return CONFIDENCE_FLOOR

    confidence = 1.0 / (1.0 + variance)
    return float(min(max(confidence, CONFIDENCE_FLOOR), CONFIDENCE_CEILING))


def prediction_from_outputs(raw_predictions: Sequence[float]) -> LocalPrediction:
    """
    Map a flat output vector positionally onto the five biomass quantities.

    Positions missing from a short vector are reported as zero and every
    reported value is floored at zero. The unclamped vector is kept on
    ``raw_predictions``.
    """
    raw = [float(value) for value in raw_predictions]
    values = {
        name: max(0.0, raw[index]) if index < len(raw) else 0.0
        for index, name in enumerate(OUTPUT_NAMES)
    }
    return LocalPrediction(
        **values,
        confidence=estimate_confidence(raw),
        raw_predictions=raw,
        success=True,
    )


class BiomassPredictor(ABC):
    """Local biomass inference seam; predict() never raises."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        ...

    @property
    def device(self) -> Optional[str]:
        """Device the model runs on, or None when no model is loaded."""
        return None

    @abstractmethod
    def predict(self, image_bytes: bytes) -> LocalPrediction:
        """Return a LocalPrediction; failures are reported via success=False."""
        ...


class UnavailableBiomassPredictor(BiomassPredictor):
    """
    Null predictor used when the model artifact could not be loaded.

    Every call returns the same failed prediction at zero cost, so the
    process never retries the expensive load per request.
    """

    def __init__(self, reason: str = "Local model not loaded"):
        self._reason = reason

    @property
    def is_available(self) -> bool:
        return False

    @property
    def unavailable_reason(self) -> str:
        return self._reason

    def predict(self, image_bytes: bytes) -> LocalPrediction:
        return LocalPrediction.failed(self._reason)


class TorchBiomassPredictor(BiomassPredictor):
    """
    Predictor backed by a loaded PyTorch model.

    The handle is shared read-only between requests; the module is never
    mutated after loading, so concurrent predict() calls are safe.

    Args:
        handle: The load-once ModelHandle produced at startup.
    """

    def __init__(self, handle: ModelHandle):
        self._handle = handle

    @property
    def is_available(self) -> bool:
        return True

    @property
    def device(self) -> str:
        return self._handle.device

    @torch.inference_mode()
    def _forward(self, tensor: torch.Tensor) -> list:
        output = self._handle.module(tensor.to(self._handle.device))
        return output.detach().cpu().reshape(-1).tolist()

    def predict(self, image_bytes: bytes) -> LocalPrediction:
        """
        Run the local model on raw image bytes.

        Pipeline:
            1. Preprocess → (1, 3, 224, 224) tensor
            2. Forward pass without gradient tracking
            3. Flatten the output and map it onto the five quantities
            4. Attach the variance-based confidence heuristic

        Any decode or inference fault is converted into a failed prediction.

        Args:
            image_bytes: Raw encoded image.

        Returns:
            LocalPrediction with success=True, or success=False and a message.
        """
        try:
            logger.info("Running local model on image (%d bytes)", len(image_bytes))
            tensor = preprocess(image_bytes)
            raw = self._forward(tensor)
        except Exception as exc:
            logger.error("Local model prediction failed: %s", exc, exc_info=True)
            return LocalPrediction.failed(str(exc) or type(exc).__name__)

        prediction = prediction_from_outputs(raw)
        logger.info(
            "Local predictions: [%s] (confidence=%.2f)",
            ", ".join(f"{value:.2f}" for value in raw),
            prediction.confidence,
        )
        return prediction


def create_predictor(model_path: Optional[str], device: str = "cpu") -> BiomassPredictor:
    """
    Load the local model once and return the matching predictor.

    Load failures are absorbed: the process continues in remote-only mode
    with an UnavailableBiomassPredictor.

    Args:
        model_path: Path to the model artifact, or None to skip local inference.
        device:     Compute device for the model.
    """
    if not model_path:
        logger.info("No local model configured — using remote vision only")
        return UnavailableBiomassPredictor("Local model not configured")

    try:
        handle = load_model_handle(model_path, device=device)
    except ModelLoadError as exc:
        logger.warning("Local model unavailable, continuing without it: %s", exc)
        return UnavailableBiomassPredictor(str(exc))

    return TorchBiomassPredictor(handle)
