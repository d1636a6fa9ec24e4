"""
Loop principal de inferência em tempo real.

Pipeline: picamera2/cv2 -> RawFrame (BGR) -> [BlazeFace gate] -> FrameNormalizer
-> WindowBuffer (W frames) -> modelo ONNX -> TemporalSmoother -> ACTIVE/DROWSY.

Os frames são entregues ao PipelineController na thread de captura; com
--async-infer a inferência da janela roda num worker único e os frames que
chegam nesse intervalo recebem a última decisão.
"""

from __future__ import annotations

import argparse
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

try:
    from picamera2 import Picamera2

    HAS_PICAMERA2 = True
except ImportError:
    Picamera2 = None
    HAS_PICAMERA2 = False

from .config import PipelineConfig, SmoothingPolicy, load_pipeline_config
from .errors import FrameDecodeError, ModelLoadError
from .face_oracle_rt import FaceOracle, ONNXFaceOracle
from .frame_normalizer_rt import RawFrame
from .pipeline_rt import PipelineController, PipelineResult
from .temporal_smoother_rt import DrowsinessState

logger = logging.getLogger(__name__)

WINDOW_TITLE = "Drowsiness Realtime Demo"


# ── PiCamera2 capture wrapper ───────────────────────────────────────────────


class PiCamera2Capture:
    """Wrapper picamera2 com interface compatível com cv2.VideoCapture."""

    def __init__(
        self,
        resolution: tuple[int, int] = (640, 480),
        fps: int = 30,
    ) -> None:
        if not HAS_PICAMERA2:
            raise RuntimeError(
                "picamera2 não está instalado. "
                "Instale com `sudo apt install python3-picamera2` "
                "ou use --camera-index para webcam USB."
            )
        self.cam = Picamera2()
        config = self.cam.create_video_configuration(
            main={"size": resolution, "format": "RGB888"},
            controls={"FrameRate": fps},
        )
        self.cam.configure(config)
        self.cam.start()
        self._opened = True

    def isOpened(self) -> bool:
        return self._opened

    def read(self) -> tuple[bool, np.ndarray]:
        if not self._opened:
            return False, np.empty(0)
        frame_rgb = self.cam.capture_array()
        frame_bgr = cv2.cvtColor(frame_rgb, cv2.COLOR_RGB2BGR)
        return True, frame_bgr

    def release(self) -> None:
        if self._opened:
            self.cam.stop()
            self._opened = False


# ── Main realtime loop ───────────────────────────────────────────────────────


def run_realtime(
    model_path: Union[Path, str],
    config: PipelineConfig,
    *,
    face_model_path: Union[Path, str, None] = None,
    camera_index: int = 0,
    use_picamera: bool = False,
    fps: int = 30,
    headless: bool = False,
    async_infer: bool = False,
    max_frames: Optional[int] = None,
) -> None:
    """Loop câmera → PipelineController → overlay, até 'q' ou fim do stream."""
    face_oracle: Optional[FaceOracle] = None
    if face_model_path is not None:
        try:
            face_oracle = ONNXFaceOracle(face_model_path, config.face)
            print("[init] Face gate: ONNXFaceOracle (BlazeFace ONNX)")
        except ModelLoadError as e:
            print(f"[init] Face gate disabled ({e})")

    executor = ThreadPoolExecutor(max_workers=1) if async_infer else None
    controller = PipelineController.from_config(
        config, model_path, face_oracle=face_oracle, executor=executor,
    )

    print(f"[init] Model available: {controller.available}")
    print(f"[init] Tensor shape: {config.tensor_shape}")
    print(
        f"[init] Smoothing: {config.smoother.policy.value} "
        f"(history={config.smoother.history_size}, "
        f"K={config.smoother.required_consistent})"
    )
    print(f"[init] Temperature: {config.inference.temperature}")

    if use_picamera:
        cap = PiCamera2Capture(fps=fps)
        print("[init] Camera: picamera2")
    else:
        cap = cv2.VideoCapture(camera_index)
        print(f"[init] Camera: cv2.VideoCapture({camera_index})")

    if not cap.isOpened():
        raise RuntimeError("Não foi possível abrir a câmera")

    print(f"[init] Headless: {headless} (press 'q' to quit)")

    frame_interval = 1.0 / max(fps, 1)
    windows_seen = 0
    n_frames = 0

    try:
        while max_frames is None or n_frames < max_frames:
            ret, frame = cap.read()
            if not ret:
                break
            n_frames += 1

            try:
                raw = RawFrame.from_bgr(frame)
            except FrameDecodeError as e:
                logger.warning("[camera] Bad frame: %s", e)
                continue

            result = controller.on_frame(raw)

            if controller.windows_processed != windows_seen:
                windows_seen = controller.windows_processed
                print(
                    f"[window] #{windows_seen} state={result.state.label} "
                    f"prob={result.raw_probability:.3f} "
                    f"avg={result.probability:.3f}"
                )

            if not headless:
                _draw_overlay(frame, result)
                cv2.imshow(WINDOW_TITLE, frame)
                key = cv2.waitKey(1) & 0xFF
            else:
                key = 0
                time.sleep(frame_interval)

            if key == ord("q"):
                break

    finally:
        cap.release()
        if executor is not None:
            executor.shutdown(wait=True)
        controller.close()
        if not headless:
            cv2.destroyAllWindows()


# ── Overlay drawing helpers ──────────────────────────────────────────────────


def _status_text(result: PipelineResult) -> tuple[str, tuple[int, int, int]]:
    if not result.subject_present:
        return "NO FACE DETECTED", (0, 255, 255)
    if result.state is DrowsinessState.UNAVAILABLE:
        return "MODEL UNAVAILABLE", (160, 160, 160)
    if result.state is DrowsinessState.DROWSY:
        return "DROWSY", (0, 0, 255)
    return "ACTIVE", (0, 255, 0)


def _draw_overlay(frame: np.ndarray, result: PipelineResult) -> None:
    status, color = _status_text(result)
    cv2.putText(
        frame, status, (16, 32),
        cv2.FONT_HERSHEY_SIMPLEX, 1.0, color, 2, cv2.LINE_AA,
    )
    cv2.putText(
        frame,
        f"Raw: {result.raw_probability:.4f}  Smoothed: {result.probability:.4f}",
        (16, 64),
        cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1, cv2.LINE_AA,
    )

    y = 92
    for line in result.trace.splitlines()[-6:]:
        if not line:
            continue
        cv2.putText(
            frame, line[:80], (16, y),
            cv2.FONT_HERSHEY_SIMPLEX, 0.45, (200, 200, 200), 1, cv2.LINE_AA,
        )
        y += 20


# ── CLI entry point ──────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Realtime drowsiness detection (video window classifier)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--model-dir", default="models",
        help="Directory containing model.onnx, pipeline_config.json, "
             "blazeface_detector.onnx",
    )
    parser.add_argument(
        "--model", default=None,
        help="Path to the sequence model (default: {model-dir}/model.onnx)",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to pipeline_config.json (default: {model-dir}/pipeline_config.json "
             "if present, else built-in defaults)",
    )
    parser.add_argument(
        "--face-model", default=None,
        help="Path to blazeface_detector.onnx (omit to run without face gate)",
    )
    parser.add_argument(
        "--temperature", type=float, default=None,
        help="Override logit temperature (1 = no scaling)",
    )
    parser.add_argument(
        "--policy", choices=[p.value for p in SmoothingPolicy], default=None,
        help="Override smoothing policy",
    )
    parser.add_argument(
        "--picamera", action="store_true",
        help="Use picamera2 (CSI camera)",
    )
    parser.add_argument(
        "--camera-index", type=int, default=0,
        help="USB webcam index (ignored with --picamera)",
    )
    parser.add_argument(
        "--fps", type=int, default=30,
        help="Target FPS",
    )
    parser.add_argument(
        "--headless", action="store_true",
        help="No display output (for SSH / no X11)",
    )
    parser.add_argument(
        "--async-infer", action="store_true",
        help="Run window inference on a single worker thread",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    model_dir = Path(args.model_dir)
    model_path = Path(args.model) if args.model else model_dir / "model.onnx"
    config_path = Path(args.config) if args.config else model_dir / "pipeline_config.json"

    if args.config or config_path.exists():
        config = load_pipeline_config(config_path)
        print(f"[init] Config: {config_path}")
    else:
        config = PipelineConfig()
        print("[init] Config: built-in defaults")

    if args.temperature is not None:
        config.inference.temperature = args.temperature
    if args.policy is not None:
        config.smoother.policy = SmoothingPolicy(args.policy)
    config.validate()

    run_realtime(
        model_path,
        config,
        face_model_path=args.face_model,
        camera_index=args.camera_index,
        use_picamera=args.picamera,
        fps=args.fps,
        headless=args.headless,
        async_infer=args.async_infer,
    )


if __name__ == "__main__":
    main()
