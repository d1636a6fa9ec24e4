import cv2
import numpy as np
import pytest

from DROWSY_INFERENCE.config import NormalizationMode, NormalizerConfig
from DROWSY_INFERENCE.errors import FrameDecodeError
from DROWSY_INFERENCE.frame_normalizer_rt import (
    FrameNormalizer,
    PixelFormat,
    RawFrame,
    decode_to_rgb,
)


def _rgb_image(size=2):
    r = np.arange(size * size, dtype=np.uint8).reshape(size, size) * 10
    g = r + 1
    b = r + 2
    return np.stack([r, g, b], axis=-1)


def test_unit_mode_is_channel_major_and_in_range():
    img = _rgb_image(2)
    frame = RawFrame(img.reshape(-1), 2, 2, PixelFormat.RGB)
    out = FrameNormalizer(NormalizerConfig(target_size=2)).normalize(frame)

    assert out.dtype == np.float32
    assert out.size == 3 * 2 * 2
    np.testing.assert_allclose(out[0:4], img[..., 0].reshape(-1) / 255.0, rtol=1e-6)
    np.testing.assert_allclose(out[4:8], img[..., 1].reshape(-1) / 255.0, rtol=1e-6)
    np.testing.assert_allclose(out[8:12], img[..., 2].reshape(-1) / 255.0, rtol=1e-6)
    assert out.min() >= 0.0 and out.max() <= 1.0


def test_mean_std_mode_matches_formula():
    img = _rgb_image(2)
    cfg = NormalizerConfig(target_size=2, mode=NormalizationMode.MEAN_STD)
    out = FrameNormalizer(cfg).normalize(RawFrame(img.reshape(-1), 2, 2, PixelFormat.RGB))

    for c in range(3):
        expected = (img[..., c].reshape(-1) / 255.0 - cfg.mean[c]) / cfg.std[c]
        np.testing.assert_allclose(out[c * 4:(c + 1) * 4], expected, rtol=1e-5, atol=1e-6)


def test_bgr_frame_is_converted_to_rgb():
    bgr = np.zeros((2, 2, 3), dtype=np.uint8)
    bgr[..., 0] = 10   # B
    bgr[..., 1] = 20   # G
    bgr[..., 2] = 30   # R
    out = FrameNormalizer(NormalizerConfig(target_size=2)).normalize(RawFrame.from_bgr(bgr))

    np.testing.assert_allclose(out[0:4], 30 / 255.0, rtol=1e-6)
    np.testing.assert_allclose(out[8:12], 10 / 255.0, rtol=1e-6)


@pytest.mark.parametrize("fmt", [PixelFormat.NV21, PixelFormat.I420])
def test_yuv_frames_resize_to_target(fmt):
    w, h = 64, 48
    rng = np.random.default_rng(0)
    data = rng.integers(0, 256, size=w * h * 3 // 2, dtype=np.uint8)
    out = FrameNormalizer(NormalizerConfig(target_size=8)).normalize(RawFrame(data, w, h, fmt))

    assert out.size == 3 * 8 * 8
    assert out.min() >= 0.0 and out.max() <= 1.0


def test_gray_bytes_frame():
    data = bytes([255] * 16)
    out = FrameNormalizer(NormalizerConfig(target_size=2)).normalize(
        RawFrame(data, 4, 4, PixelFormat.GRAY)
    )
    np.testing.assert_allclose(out, 1.0)


def test_rotation_is_clockwise():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[..., 0] = np.array([[1, 2], [3, 4]], dtype=np.uint8)
    rgb = decode_to_rgb(RawFrame(img.reshape(-1), 2, 2, PixelFormat.RGB, rotation=90))

    np.testing.assert_array_equal(rgb[..., 0], cv2.rotate(img, cv2.ROTATE_90_CLOCKWISE)[..., 0])
    np.testing.assert_array_equal(rgb[..., 0], [[3, 1], [4, 2]])


def test_source_frame_is_not_modified():
    img = _rgb_image(4)
    original = img.copy()
    FrameNormalizer(NormalizerConfig(target_size=2)).normalize(
        RawFrame(img.reshape(-1), 4, 4, PixelFormat.RGB)
    )
    np.testing.assert_array_equal(img, original)


@pytest.mark.parametrize(
    "frame",
    [
        RawFrame(b"", 0, 0, PixelFormat.RGB),
        RawFrame(bytes(10), 2, 2, PixelFormat.RGB),
        RawFrame(bytes(3 * 3 * 3 // 2), 3, 3, PixelFormat.NV21),
        RawFrame(bytes(12), 2, 2, PixelFormat.RGB, rotation=45),
        RawFrame(np.zeros(12, dtype=np.float32), 2, 2, PixelFormat.RGB),
    ],
)
def test_malformed_frames_raise_decode_error(frame):
    with pytest.raises(FrameDecodeError):
        FrameNormalizer(NormalizerConfig(target_size=2)).normalize(frame)


def test_from_bgr_rejects_non_color_image():
    with pytest.raises(FrameDecodeError):
        RawFrame.from_bgr(np.zeros((4, 4), dtype=np.uint8))
