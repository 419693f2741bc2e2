"""ImagePreprocessor: decode, stretch to 224x224, ImageNet normalization."""
import io

import pytest
import torch
from PIL import Image

from local_model.preprocessing import CHANNEL_MEAN, CHANNEL_STD, decode_image, preprocess
from shared.errors import DecodeError
from tests.conftest import make_image_bytes


@pytest.mark.parametrize(
    "size, fmt",
    [
        ((320, 240), "PNG"),
        ((640, 480), "JPEG"),
        ((10, 300), "PNG"),
        ((1, 1), "PNG"),
        ((500, 500), "GIF"),
    ],
)
def test_preprocess_always_returns_batch_of_one_224_square(size, fmt):
    tensor = preprocess(make_image_bytes(size=size, fmt=fmt))

    assert tuple(tensor.shape) == (1, 3, 224, 224)
    assert tensor.dtype == torch.float32


def test_preprocess_normalizes_each_channel_with_imagenet_stats():
    tensor = preprocess(make_image_bytes(color=(255, 0, 128)))

    expected = [
        (1.0 - CHANNEL_MEAN[0]) / CHANNEL_STD[0],
        (0.0 - CHANNEL_MEAN[1]) / CHANNEL_STD[1],
        (128 / 255.0 - CHANNEL_MEAN[2]) / CHANNEL_STD[2],
    ]
    for channel, value in enumerate(expected):
        assert torch.allclose(tensor[0, channel], torch.full((224, 224), float(value)), atol=1e-5)


def test_preprocess_layout_is_channel_then_row_then_column():
    image = Image.new("RGB", (224, 224), (255, 255, 255))
    image.paste((0, 0, 0), (0, 112, 224, 224))  # bottom half black
    buf = io.BytesIO()
    image.save(buf, format="PNG")

    tensor = preprocess(buf.getvalue())

    white_red = (1.0 - CHANNEL_MEAN[0]) / CHANNEL_STD[0]
    black_red = (0.0 - CHANNEL_MEAN[0]) / CHANNEL_STD[0]
    assert tensor[0, 0, 10, 5].item() == pytest.approx(white_red, abs=1e-5)
    assert tensor[0, 0, 200, 5].item() == pytest.approx(black_red, abs=1e-5)


def test_preprocess_does_not_share_state_between_calls():
    first = preprocess(make_image_bytes(color=(0, 0, 0)))
    second = preprocess(make_image_bytes(color=(255, 255, 255)))

    assert not torch.equal(first, second)
    assert torch.equal(first, preprocess(make_image_bytes(color=(0, 0, 0))))


def test_decode_image_converts_to_rgb():
    buf = io.BytesIO()
    Image.new("L", (50, 50), 128).save(buf, format="PNG")

    assert decode_image(buf.getvalue()).mode == "RGB"


@pytest.mark.parametrize("data", [b"", b"not an image at all" * 20, b"\x89PNG\r\n\x1a\n" + b"\x00" * 200])
def test_preprocess_raises_decode_error_on_malformed_bytes(data):
    with pytest.raises(DecodeError):
        preprocess(data)


def test_preprocess_raises_decode_error_on_truncated_jpeg():
    buf = io.BytesIO()
    Image.effect_noise((400, 400), 64).convert("RGB").save(buf, format="JPEG")
    data = buf.getvalue()

    with pytest.raises(DecodeError):
        preprocess(data[: len(data) // 3])
