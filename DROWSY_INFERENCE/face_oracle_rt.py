"""
Oráculo opcional de presença de face, por frame.

Quando ligado ao PipelineController, um `False` faz o frame ser ignorado
(sem normalização, sem tocar no buffer nem nos contadores) e o controller
sinaliza "no subject" junto com a última decisão estável.

ONNXFaceOracle roda BlazeFace ONNX (128x128) sobre o frame decodificado
em RGB e aceita a face se o score e o tamanho relativo do bbox passam
nos limiares configurados.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Tuple, Union

import cv2
import numpy as np

try:
    import onnxruntime as ort

    HAS_ONNX = True
except ImportError:
    ort = None  # type: ignore[assignment]
    HAS_ONNX = False

from .config import FaceOracleConfig
from .errors import ModelLoadError
from .frame_normalizer_rt import RawFrame, decode_to_rgb

logger = logging.getLogger(__name__)


class FaceOracle(Protocol):
    """Interface mínima: `detect(frame) -> bool`."""

    def detect(self, frame: RawFrame) -> bool:
        ...


class StaticFaceOracle:
    """Oráculo fixo, para fontes sem detector ou testes de integração."""

    def __init__(self, present: bool = True) -> None:
        self.present = present

    def detect(self, frame: RawFrame) -> bool:
        _ = frame
        return self.present


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -20, 20)))


class ONNXFaceOracle:
    """
    Detector de presença via BlazeFace ONNX (sem mediapipe).

    Saídas esperadas do modelo: `reg` [1, N, 16] em pixel space 128x128
    (x_center, y_center, width, height, keypoints...) e `cls` [1, N, 1].
    """

    BLAZEFACE_INPUT_SIZE = 128

    def __init__(
        self,
        detector_path: Union[Path, str] = "models/blazeface_detector.onnx",
        config: Optional[FaceOracleConfig] = None,
        *,
        session: Any = None,
    ) -> None:
        self.cfg = config or FaceOracleConfig()
        self.cfg.validate()

        if session is not None:
            # sessão já criada (ou qualquer objeto com get_inputs/run)
            self._detector = session
            self._input_name = session.get_inputs()[0].name
            return

        if not HAS_ONNX:
            raise ModelLoadError(
                "onnxruntime não está instalado. "
                "Instale com `pip install onnxruntime` para ONNXFaceOracle."
            )

        path = Path(detector_path).resolve()
        if not path.exists():
            raise ModelLoadError(f"Detector de face não encontrado em {path}")

        try:
            self._detector = ort.InferenceSession(str(path))
        except Exception as e:  # tipos próprios do onnxruntime
            raise ModelLoadError(f"Falha ao criar sessão do detector {path}: {e}") from e
        self._input_name = self._detector.get_inputs()[0].name
        logger.info("[face] Loaded BlazeFace: %s", path)

    def detect(self, frame: RawFrame) -> bool:
        rgb = decode_to_rgb(frame)
        bbox = self._detect_face(rgb)
        if bbox is None:
            logger.debug("[face] No face detected")
            return False

        h, w = rgb.shape[:2]
        x1, y1, x2, y2 = bbox
        rel_size = max((x2 - x1) / w, (y2 - y1) / h)
        if rel_size < self.cfg.min_face_size:
            logger.debug("[face] Face too small (%.2f < %.2f)", rel_size, self.cfg.min_face_size)
            return False
        return True

    def _detect_face(self, rgb: np.ndarray) -> Optional[Tuple[float, float, float, float]]:
        """Roda BlazeFace e retorna bbox (x1,y1,x2,y2) em coords de frame, ou None."""
        h, w = rgb.shape[:2]
        size = self.BLAZEFACE_INPUT_SIZE
        inp = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_LINEAR)
        inp = (inp.astype(np.float32) / 255.0).reshape(1, size, size, 3)

        reg, cls = self._detector.run(None, {self._input_name: inp})
        scores = _sigmoid(cls[0, :, 0])
        best_idx = int(np.argmax(scores))
        if scores[best_idx] < self.cfg.min_face_score:
            return None

        r = reg[0, best_idx, :]
        xc, yc = float(r[0]), float(r[1])
        bw = max(float(r[2]), 8.0)
        bh = max(float(r[3]), 8.0)
        x1 = max(0.0, xc - bw / 2) * w / size
        y1 = max(0.0, yc - bh / 2) * h / size
        x2 = min(float(size), xc + bw / 2) * w / size
        y2 = min(float(size), yc + bh / 2) * h / size

        if x2 - x1 < 10 or y2 - y1 < 10:
            return None
        return (x1, y1, x2, y2)
