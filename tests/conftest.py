"""Shared fixtures: synthetic images, remote replies and pipeline fakes."""
import io
import json
from unittest.mock import MagicMock

import pytest
import torch.nn as nn
from PIL import Image

from local_model.predictor import BiomassPredictor
from shared.schemas import LocalPrediction


def make_image_bytes(size=(320, 240), color=(40, 160, 60), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_tiny_regressor() -> nn.Sequential:
    """Small stand-in for the biomass regressor: (N, 3, H, W) -> (N, 5)."""
    return nn.Sequential(nn.AdaptiveAvgPool2d(1), nn.Flatten(), nn.Linear(3, 5))


REPLY = {
    "Id": "c0ffee00-0000-4000-8000-000000000001",
    "Title": "Pasture Biomass Analysis",
    "Description": "Dense perennial ryegrass sward with some white clover.",
    "DryGreen": 1250.5,
    "DryClover": 310.25,
    "DryDead": 180.0,
    "DryTotal": 1740.75,
    "Gdm": 1062.9,
    "Recommendations": "Graze within the next week to keep quality high.",
    "Confidence": 0.78,
}


@pytest.fixture
def png_bytes():
    return make_image_bytes()


@pytest.fixture
def jpeg_bytes():
    return make_image_bytes(size=(640, 480), fmt="JPEG")


@pytest.fixture
def reply_json():
    return json.dumps(REPLY)


class FakePredictor(BiomassPredictor):
    """Predictor returning a fixed LocalPrediction and counting calls."""

    def __init__(self, prediction: LocalPrediction, available: bool = True, device: str = "cpu"):
        self._prediction = prediction
        self._available = available
        self._device = device
        self.calls = 0

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def device(self) -> str:
        return self._device

    def predict(self, image_bytes: bytes) -> LocalPrediction:
        self.calls += 1
        return self._prediction


@pytest.fixture
def local_prediction():
    return LocalPrediction(
        dry_green=1200.123,
        dry_clover=300.0,
        dry_dead=150.5,
        dry_total=1650.0,
        gdm=1020.0,
        confidence=0.62,
        raw_predictions=[1200.123, 300.0, 150.5, 1650.0, 1020.0],
        success=True,
    )


@pytest.fixture
def fake_client():
    client = MagicMock()
    client.is_configured = True
    return client
