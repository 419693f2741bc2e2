# =============================================================================
# Pasture Biomass Estimator - Local Model Architecture & Loading
# =============================================================================
# Defines the fixed convolutional regressor used when the model artifact is a
# plain state dict, and load_model_handle(), which produces the immutable
# ModelHandle shared by every request for the lifetime of the process.
#
# Load order:
#   1. TorchScript whole-model artifact (torch.jit.load)
#   2. Fixed architecture + state dict (torch.load, weights_only=True)
# If both fail a ModelLoadError is raised and the caller degrades to
# remote-only mode.
#
# Architecture (input 3x224x224, output 5 regression values):
#   Conv(3→64, 7x7, s2)  → ReLU → MaxPool(3, s2)  → 64x56x56
#   Conv(64→128, 3x3)    → ReLU → MaxPool(2, s2)  → 128x28x28
#   Flatten → Linear(100352→512) → ReLU → Linear(512→5)
# =============================================================================

import logging
import os
from collections import OrderedDict
from dataclasses import dataclass

import torch
import torch.nn as nn

from shared.errors import ModelLoadError

logger = logging.getLogger(__name__)

# Output order of the regression head
OUTPUT_NAMES = ("dry_green", "dry_clover", "dry_dead", "dry_total", "gdm")

# Spatial size reaching the classifier head for a 224x224 input
_HEAD_SPATIAL = 28
_HEAD_CHANNELS = 128
_HIDDEN_UNITS = 512


def build_biomass_regressor() -> nn.Sequential:
    """
    Build the fixed fallback architecture with randomly initialized weights.

    Layer names match the keys of the training checkpoints, so a state dict
    saved from this module loads without key remapping.

    Returns:
        nn.Sequential mapping (N, 3, 224, 224) → (N, 5).
    """
    return nn.Sequential(
        OrderedDict(
            [
                ("conv1", nn.Conv2d(3, 64, kernel_size=7, stride=2, padding=3)),
                ("relu1", nn.ReLU()),
                ("pool1", nn.MaxPool2d(kernel_size=3, stride=2, padding=1)),
                ("conv2", nn.Conv2d(64, _HEAD_CHANNELS, kernel_size=3, stride=1, padding=1)),
                ("relu2", nn.ReLU()),
                ("pool2", nn.MaxPool2d(kernel_size=2, stride=2)),
                ("flatten", nn.Flatten()),
                ("fc1", nn.Linear(_HEAD_CHANNELS * _HEAD_SPATIAL * _HEAD_SPATIAL, _HIDDEN_UNITS)),
                ("relu3", nn.ReLU()),
                ("fc2", nn.Linear(_HIDDEN_UNITS, len(OUTPUT_NAMES))),
            ]
        )
    )


@dataclass(frozen=True)
class ModelHandle:
    """
    Immutable, load-once reference to the local model.

    Produced during application start and passed by reference into the
    predictor. The module is in eval mode and is never mutated afterwards,
    so concurrent forward passes need no locking.

    Attributes:
        module: The loaded model (TorchScript or nn.Module) in eval mode.
        device: Device string the module lives on.
        source: "torchscript" or "state_dict", describing how it was loaded.
        path:   Filesystem path of the artifact.
    """

    module: torch.nn.Module
    device: str
    source: str
    path: str


def _extract_state_dict(checkpoint):
    """Unwrap the common {"state_dict": ...} / {"model_state_dict": ...} layouts."""
    if isinstance(checkpoint, dict):
        for key in ("state_dict", "model_state_dict"):
            if isinstance(checkpoint.get(key), dict):
                return checkpoint[key]
    return checkpoint


def _strip_prefix(state_dict, prefix: str = "module."):
    """Drop the DataParallel prefix from checkpoint keys when present."""
    if all(key.startswith(prefix) for key in state_dict):
        return {key[len(prefix):]: value for key, value in state_dict.items()}
    return state_dict


def load_model_handle(model_path: str, device: str = "cpu") -> ModelHandle:
    """
    Load the local biomass model, preferring a whole-model artifact.

    Args:
        model_path: Path to the serialized model (.pt/.pth).
        device:     Compute device ("cuda", "mps", "cpu").

    Returns:
        A ModelHandle wrapping the eval-mode module.

    Raises:
        ModelLoadError: If the file is missing or neither load strategy works.
    """
    if not os.path.exists(model_path):
        raise ModelLoadError(f"Model file not found: {model_path}")

    logger.info("Loading local model from %s (device=%s)", model_path, device)

    try:
        module = torch.jit.load(model_path, map_location=device)
        module.eval()
        logger.info("Local model loaded as TorchScript artifact")
        return ModelHandle(module=module, device=device, source="torchscript", path=model_path)
    except Exception as exc:
        logger.warning("TorchScript load failed (%s), trying state dict", exc)

    try:
        checkpoint = torch.load(model_path, map_location="cpu", weights_only=True)
        state_dict = _strip_prefix(_extract_state_dict(checkpoint))
        module = build_biomass_regressor()
        module.load_state_dict(state_dict)
        module.to(device)
        module.eval()
    except Exception as exc:
        raise ModelLoadError(f"Could not load model from {model_path}: {exc}") from exc

    total_params = sum(p.numel() for p in module.parameters())
    logger.info(
        "Local model loaded from state dict: %d params on %s",
        total_params, device,
    )
    return ModelHandle(module=module, device=device, source="state_dict", path=model_path)
