"""
Orquestração por frame: face gate → normalize → buffer → (janela cheia)
assemble + infer + smooth → decisão.

Contrato do PipelineController: sempre devolver uma decisão. Qualquer falha
interna (frame malformado, backend de inferência, modelo ausente) degrada
para a última decisão estável e aparece só no trace.

Estado mutável da sessão (slices do buffer, flag de processamento,
histórico e estado do smoother) pertence exclusivamente a uma instância
do controller, criada no início e fechada no fim da sessão.

Modo assíncrono: com um `executor` (ex.: ThreadPoolExecutor(max_workers=1))
a inferência da janela roda no worker; frames que chegam enquanto ela
roda recebem o último resultado conhecido, sem fila e sem bloqueio. Ao
terminar, o resultado da janela é entregue ao observer a partir da thread
do worker.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

import numpy as np

from .config import PipelineConfig
from .errors import FrameDecodeError, InferenceError, ModelLoadError
from .face_oracle_rt import FaceOracle
from .frame_normalizer_rt import FrameNormalizer, RawFrame
from .model_loader import InferenceInvoker, ModelFn
from .temporal_smoother_rt import DrowsinessState, TemporalSmoother
from .window_buffer_rt import TensorAssembler, WindowBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    state: DrowsinessState
    probability: float          # média suavizada (o que a UI exibe)
    raw_probability: float      # sigmoide da última janela
    trace: str
    subject_present: bool = True
    window_completed: bool = False
    frame_idx: int = 0

    @property
    def is_drowsy(self) -> bool:
        return self.state is DrowsinessState.DROWSY


Observer = Callable[[PipelineResult], None]


class PipelineController:
    def __init__(
        self,
        normalizer: FrameNormalizer,
        buffer: WindowBuffer,
        assembler: TensorAssembler,
        invoker: Optional[InferenceInvoker],
        smoother: TemporalSmoother,
        *,
        face_oracle: Optional[FaceOracle] = None,
        observer: Optional[Observer] = None,
        executor: Optional[Executor] = None,
        unavailable_reason: Optional[str] = None,
    ) -> None:
        if assembler.window_size != buffer.capacity:
            raise ValueError(
                f"Assembler espera janelas de {assembler.window_size} frames, "
                f"buffer tem capacidade {buffer.capacity}"
            )
        if assembler.target_size != normalizer.target_size:
            raise ValueError(
                f"Assembler espera S={assembler.target_size}, "
                f"normalizer produz S={normalizer.target_size}"
            )

        self.normalizer = normalizer
        self.buffer = buffer
        self.assembler = assembler
        self.invoker = invoker
        self.smoother = smoother
        self.face_oracle = face_oracle
        self.observer = observer
        self.executor = executor

        self.frames_seen = 0
        self.windows_processed = 0
        self._unavailable_reason = unavailable_reason
        if invoker is None or not invoker.available:
            self._unavailable_reason = unavailable_reason or "model not loaded"
            self._last = PipelineResult(
                state=DrowsinessState.UNAVAILABLE,
                probability=0.0,
                raw_probability=0.0,
                trace=f"Model unavailable: {self._unavailable_reason}",
            )
        else:
            self._last = PipelineResult(
                state=DrowsinessState.ACTIVE,
                probability=0.0,
                raw_probability=0.0,
                trace="Waiting for frames...",
            )

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        model: Union[Path, str, ModelFn, None],
        *,
        face_oracle: Optional[FaceOracle] = None,
        observer: Optional[Observer] = None,
        executor: Optional[Executor] = None,
    ) -> "PipelineController":
        """
        Monta o pipeline completo a partir do config.

        `model` pode ser o caminho do .onnx ou qualquer callable numpy → numpy.
        ModelLoadError não propaga: o controller fica permanentemente
        UNAVAILABLE, mas continua aceitando frames.
        """
        config.validate()
        normalizer = FrameNormalizer(config.normalizer)
        buffer = WindowBuffer(config.window, slice_length=normalizer.slice_length)
        assembler = TensorAssembler(config.window.window_size, config.normalizer.target_size)
        smoother = TemporalSmoother(config.smoother)

        invoker: Optional[InferenceInvoker] = None
        reason: Optional[str] = None
        try:
            if model is None:
                raise ModelLoadError("nenhum modelo configurado")
            if callable(model):
                invoker = InferenceInvoker(model, config.inference)
            else:
                invoker = InferenceInvoker.from_path(model, config.inference)
        except ModelLoadError as e:
            logger.error("[pipeline] Model load failed, decisions unavailable: %s", e)
            reason = str(e)

        return cls(
            normalizer,
            buffer,
            assembler,
            invoker,
            smoother,
            face_oracle=face_oracle,
            observer=observer,
            executor=executor,
            unavailable_reason=reason,
        )

    # ── estado ─────────────────────────────────────────────────────────────

    @property
    def available(self) -> bool:
        return self._unavailable_reason is None

    @property
    def is_processing(self) -> bool:
        return self.buffer.is_processing

    @property
    def last_result(self) -> PipelineResult:
        return self._last

    # ── entrada por frame ──────────────────────────────────────────────────

    def on_frame(
        self,
        frame: RawFrame,
        face_present: Optional[bool] = None,
    ) -> PipelineResult:
        self.frames_seen += 1
        idx = self.frames_seen

        if not self._subject_present(frame, face_present):
            return self._emit(
                replace(self._last, subject_present=False, window_completed=False, frame_idx=idx)
            )

        if not self.available or self.buffer.is_processing:
            return self._emit(self._cached(idx))

        try:
            slice_ = self.normalizer.normalize(frame)
        except FrameDecodeError as e:
            logger.warning("[pipeline] Frame %d skipped: %s", idx, e)
            return self._emit(
                replace(self._cached(idx), trace=f"{self._last.trace}\nFrame skipped: {e}")
            )

        status = self.buffer.push(slice_)
        if not status.is_full or status.window is None:
            return self._emit(self._cached(idx))

        if self.executor is not None:
            future = self.executor.submit(self._process_window, status.window, idx)
            future.add_done_callback(self._on_window_done)
            return self._emit(self._cached(idx))

        return self._emit(self._process_window(status.window, idx))

    def __call__(self, frame: RawFrame, face_present: Optional[bool] = None) -> PipelineResult:
        return self.on_frame(frame, face_present)

    # ── internos ───────────────────────────────────────────────────────────

    def _cached(self, idx: int) -> PipelineResult:
        return replace(self._last, subject_present=True, window_completed=False, frame_idx=idx)

    def _emit(self, result: PipelineResult) -> PipelineResult:
        if self.observer is not None:
            self.observer(result)
        return result

    def _subject_present(self, frame: RawFrame, face_present: Optional[bool]) -> bool:
        if face_present is not None:
            return bool(face_present)
        if self.face_oracle is None:
            return True
        try:
            return bool(self.face_oracle.detect(frame))
        except Exception as e:  # falha do detector conta como "sem face"
            logger.warning("[face] Face detection failed: %s", e)
            return False

    def _process_window(self, window: Sequence[np.ndarray], idx: int) -> PipelineResult:
        lines = [f"Frame buffer size: {len(window)}/{self.buffer.capacity}"]
        try:
            try:
                tensor = self.assembler.assemble(window)
            except ValueError as e:
                raise InferenceError(f"Tensor malformado: {e}") from e

            if self.invoker is None:
                raise InferenceError("Modelo não carregado")
            lines.append("Running inference...")
            logit, prob = self.invoker.predict(tensor)
            temperature = self.invoker.cfg.temperature
            lines.append(f"Raw model output (logit): {logit:.4f}")
            if temperature != 1.0:
                lines.append(f"Temperature scaled logit: {logit / temperature:.4f}")
                lines.append(f"Temperature: {temperature}")
            lines.append(f"Sigmoid prediction: {prob:.4f}")

            smoothed = self.smoother.update(prob)
            lines.append("")
            lines.append("Temporal Smoothing:")
            lines.append(smoothed.trace)

            self.windows_processed += 1
            self._last = PipelineResult(
                state=smoothed.state,
                probability=smoothed.average,
                raw_probability=prob,
                trace="\n".join(lines),
                subject_present=True,
                window_completed=True,
                frame_idx=idx,
            )
            logger.info(
                "[window] #%d state=%s prob=%.3f avg=%.3f counter=%d",
                self.windows_processed, smoothed.state.value,
                prob, smoothed.average, smoothed.counter,
            )
        except InferenceError as e:
            logger.warning("[pipeline] Inference failed, keeping last decision: %s", e)
            lines.append(f"Error: {e}")
            self._last = replace(
                self._last,
                trace="\n".join(lines),
                subject_present=True,
                window_completed=True,
                frame_idx=idx,
            )
        finally:
            self.buffer.release()
        return self._last

    def _on_window_done(self, future: "Future[PipelineResult]") -> None:
        """Callback do worker: a janela concluída também chega ao observer."""
        exc = future.exception()
        if exc is not None:
            logger.error("[pipeline] Window worker crashed: %r", exc)
            return
        self._emit(future.result())

    # ── ciclo de vida ──────────────────────────────────────────────────────

    def close(self) -> None:
        """Libera o backend e limpa todo o estado da sessão."""
        if self.invoker is not None:
            self.invoker.close()
        self.buffer.clear()
        self.smoother.reset()
        self._unavailable_reason = self._unavailable_reason or "session closed"
        self._last = PipelineResult(
            state=DrowsinessState.UNAVAILABLE,
            probability=0.0,
            raw_probability=0.0,
            trace=f"Model unavailable: {self._unavailable_reason}",
            frame_idx=self.frames_seen,
        )
        logger.info(
            "[pipeline] Session closed (%d frames, %d windows)",
            self.frames_seen, self.windows_processed,
        )

    def __enter__(self) -> "PipelineController":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
