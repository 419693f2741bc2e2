# =============================================================================
# Pasture Biomass Estimator - Image Preprocessing
# =============================================================================
# Decodes raw image bytes with Pillow, stretches them to the fixed 224x224
# input resolution of the local model and applies ImageNet per-channel
# normalization, producing a (1, 3, 224, 224) float32 tensor in
# [channel][row][column] order.
# =============================================================================

import io
import logging

import numpy as np
import torch
from PIL import Image

from shared.errors import DecodeError

logger = logging.getLogger(__name__)

INPUT_SIZE = 224

# ImageNet statistics, RGB order
CHANNEL_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
CHANNEL_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


def decode_image(image_bytes: bytes) -> Image.Image:
    """
    Decode raw bytes into an RGB PIL image.

    Raises:
        DecodeError: If the bytes are empty, truncated or not a supported format.
    """
    if not image_bytes:
        raise DecodeError("Cannot decode an empty image")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            # convert() forces the full decode, surfacing truncated data here
            return image.convert("RGB")
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Unsupported or malformed image data: {exc}") from exc


def preprocess(image_bytes: bytes) -> torch.Tensor:
    """
    Turn raw image bytes into the local model's input tensor.

    Pipeline:
        1. Decode → RGB PIL image
        2. Resize to 224x224, ignoring aspect ratio (stretch, not crop)
        3. Scale 0–255 intensities to [0, 1]
        4. Normalize each channel: (value - mean) / std
        5. HWC → CHW, add batch dim → (1, 3, 224, 224)

    Stateless; safe to call concurrently for independent images.

    Args:
        image_bytes: Encoded PNG/JPEG/GIF (or any Pillow-supported) image.

    Returns:
        torch.Tensor of shape (1, 3, 224, 224) with dtype float32 on the CPU.

    Raises:
        DecodeError: If the bytes cannot be decoded.
    """
    image = decode_image(image_bytes)
    original_size = image.size

    resized = image.resize((INPUT_SIZE, INPUT_SIZE), Image.BILINEAR)
    pixels = np.asarray(resized, dtype=np.float32) / 255.0  # (224, 224, 3)

    normalized = (pixels - CHANNEL_MEAN) / CHANNEL_STD
    chw = np.ascontiguousarray(normalized.transpose(2, 0, 1))  # (3, 224, 224)

    tensor = torch.from_numpy(chw).unsqueeze(0)

    logger.debug(
        "Preprocessed image %s -> tensor shape=%s",
        original_size, tuple(tensor.shape),
    )
    return tensor
