"""
Normalização de frames de câmera para o modelo de sequência.

Cada RawFrame (YUV NV21/I420, RGB, BGR ou GRAY) vira um NormalizedSlice:
vetor float32 de comprimento 3*S*S, layout channel-major (todos os R em
ordem row-major, depois G, depois B).

Pipeline por frame:
1. Decodifica o formato nativo para RGB (OpenCV cvtColor)
2. Aplica a rotação do sensor (0/90/180/270, sentido horário)
3. Resize bilinear (cv2.INTER_LINEAR) para S×S
4. v / 255 → [0, 1], depois (v - mean[c]) / std[c]
   (modo UNIT usa mean=0, std=1: mesma fórmula, sem branch)

Dependências: OpenCV, numpy
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import cv2
import numpy as np

from .config import NormalizerConfig
from .errors import FrameDecodeError

logger = logging.getLogger(__name__)


class PixelFormat(str, Enum):
    NV21 = "nv21"  # Y plano + VU intercalado (Android camera default)
    I420 = "i420"  # Y, U, V planares
    RGB = "rgb"
    BGR = "bgr"    # cv2.VideoCapture
    GRAY = "gray"


_ROTATIONS = {
    0: None,
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


@dataclass(frozen=True, eq=False)
class RawFrame:
    """
    Buffer de pixels emprestado da fonte de captura.

    O pipeline nunca retém `data` além da chamada de normalize().
    """

    data: Union[bytes, bytearray, memoryview, np.ndarray]
    width: int
    height: int
    format: PixelFormat = PixelFormat.NV21
    rotation: int = 0

    @classmethod
    def from_bgr(cls, image: np.ndarray, rotation: int = 0) -> "RawFrame":
        """Embrulha um frame BGR do OpenCV (H, W, 3) uint8."""
        if image is None or image.ndim != 3 or image.shape[2] != 3:
            raise FrameDecodeError(
                f"Esperado frame BGR (H, W, 3), recebido "
                f"{None if image is None else image.shape}"
            )
        h, w = image.shape[:2]
        return cls(data=image, width=w, height=h, format=PixelFormat.BGR, rotation=rotation)

    def __repr__(self) -> str:
        return (
            f"RawFrame(width={self.width}, height={self.height}, "
            f"format={self.format.value}, rotation={self.rotation})"
        )


def _expected_size(fmt: PixelFormat, width: int, height: int) -> int:
    if fmt in (PixelFormat.NV21, PixelFormat.I420):
        return width * height * 3 // 2
    if fmt in (PixelFormat.RGB, PixelFormat.BGR):
        return width * height * 3
    return width * height


def _as_uint8(data: Union[bytes, bytearray, memoryview, np.ndarray]) -> np.ndarray:
    if isinstance(data, np.ndarray):
        if data.dtype != np.uint8:
            raise FrameDecodeError(f"Buffer deve ser uint8, recebido {data.dtype}")
        return data.reshape(-1)
    return np.frombuffer(data, dtype=np.uint8)


def decode_to_rgb(frame: RawFrame) -> np.ndarray:
    """
    Converte um RawFrame para RGB (H, W, 3) uint8, já rotacionado.

    Levanta FrameDecodeError para dimensões zero, buffer com tamanho
    incompatível, formato desconhecido ou rotação inválida.
    """
    w, h = int(frame.width), int(frame.height)
    if w <= 0 or h <= 0:
        raise FrameDecodeError(f"Dimensões inválidas: {w}x{h}")
    if frame.rotation not in _ROTATIONS:
        raise FrameDecodeError(f"Rotação não suportada: {frame.rotation}")

    try:
        fmt = PixelFormat(frame.format)
    except ValueError as e:
        raise FrameDecodeError(f"Formato de pixel desconhecido: {frame.format!r}") from e

    if fmt in (PixelFormat.NV21, PixelFormat.I420) and (w % 2 or h % 2):
        raise FrameDecodeError(f"YUV 4:2:0 exige dimensões pares: {w}x{h}")

    buf = _as_uint8(frame.data)
    expected = _expected_size(fmt, w, h)
    if buf.size != expected:
        raise FrameDecodeError(
            f"Buffer {fmt.value} {w}x{h} deveria ter {expected} bytes, "
            f"mas tem {buf.size}"
        )

    try:
        if fmt is PixelFormat.NV21:
            rgb = cv2.cvtColor(buf.reshape(h * 3 // 2, w), cv2.COLOR_YUV2RGB_NV21)
        elif fmt is PixelFormat.I420:
            rgb = cv2.cvtColor(buf.reshape(h * 3 // 2, w), cv2.COLOR_YUV2RGB_I420)
        elif fmt is PixelFormat.BGR:
            rgb = cv2.cvtColor(buf.reshape(h, w, 3), cv2.COLOR_BGR2RGB)
        elif fmt is PixelFormat.GRAY:
            rgb = cv2.cvtColor(buf.reshape(h, w), cv2.COLOR_GRAY2RGB)
        else:
            rgb = buf.reshape(h, w, 3)
    except cv2.error as e:
        raise FrameDecodeError(f"Falha ao converter {fmt.value} para RGB: {e}") from e

    rotate_code = _ROTATIONS[frame.rotation]
    if rotate_code is not None:
        rgb = cv2.rotate(rgb, rotate_code)
    return rgb


class FrameNormalizer:
    """
    RawFrame → NormalizedSlice (float32, 3*S*S, channel-major).

    Puro em relação ao frame de entrada: o buffer de origem não é
    modificado e pode ser liberado logo após a chamada.
    """

    def __init__(self, config: Optional[NormalizerConfig] = None) -> None:
        self.cfg = config or NormalizerConfig()
        self.cfg.validate()
        mean, std = self.cfg.channel_stats()
        self._mean = np.asarray(mean, dtype=np.float32)
        self._std = np.asarray(std, dtype=np.float32)

    @property
    def target_size(self) -> int:
        return self.cfg.target_size

    @property
    def slice_length(self) -> int:
        return 3 * self.cfg.target_size * self.cfg.target_size

    def normalize(self, frame: RawFrame) -> np.ndarray:
        rgb = decode_to_rgb(frame)

        size = self.cfg.target_size
        if rgb.shape[0] != size or rgb.shape[1] != size:
            rgb = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_LINEAR)

        scaled = rgb.astype(np.float32) / 255.0
        scaled = (scaled - self._mean) / self._std

        # HWC → CHW: todos os R, depois G, depois B
        out = np.ascontiguousarray(scaled.transpose(2, 0, 1)).reshape(-1)
        logger.debug("[normalizer] %r -> slice(%d)", frame, out.size)
        return out
