"""
Suavização temporal das probabilidades por janela → estado estável.

Estado: histórico FIFO das últimas H probabilidades + estado atual
(ACTIVE/DROWSY) + contador de confirmações em [0, K].

Políticas (tag escolhida na construção, mesmo contrato update(p)):

- NONE:       DROWSY sse p (bruto) >= threshold
- THRESHOLD:  DROWSY sse média do histórico >= threshold (inclusivo)
- HYSTERESIS: entrar em DROWSY exige K janelas consecutivas com
              média >= HIGH; qualquer janela com média < HIGH volta
              imediatamente para ACTIVE e zera o contador.

A assimetria da HYSTERESIS (entrada lenta, saída imediata) favorece
falsos negativos sobre falsos positivos e é mantida assim.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Tuple

from .config import SmootherConfig, SmoothingPolicy

logger = logging.getLogger(__name__)


class DrowsinessState(str, Enum):
    ACTIVE = "active"
    DROWSY = "drowsy"
    # Só emitido pelo controller quando o modelo nunca carregou
    UNAVAILABLE = "unavailable"

    @property
    def label(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class SmoothingResult:
    state: DrowsinessState
    average: float
    probability: float
    counter: int
    trace: str


class TemporalSmoother:
    def __init__(self, config: Optional[SmootherConfig] = None) -> None:
        self.cfg = config or SmootherConfig()
        self.cfg.validate()
        self._history: Deque[float] = deque(maxlen=self.cfg.history_size)
        self._state = DrowsinessState.ACTIVE
        self._counter = 0
        self._policies: Dict[
            SmoothingPolicy, Callable[[float, float, List[str]], DrowsinessState]
        ] = {
            SmoothingPolicy.NONE: self._apply_none,
            SmoothingPolicy.THRESHOLD: self._apply_threshold,
            SmoothingPolicy.HYSTERESIS: self._apply_hysteresis,
        }

    @property
    def policy(self) -> SmoothingPolicy:
        return self.cfg.policy

    @property
    def state(self) -> DrowsinessState:
        return self._state

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def history(self) -> Tuple[float, ...]:
        return tuple(self._history)

    @property
    def average(self) -> float:
        if not self._history:
            return 0.0
        return math.fsum(self._history) / len(self._history)

    def reset(self) -> None:
        self._history.clear()
        self._state = DrowsinessState.ACTIVE
        self._counter = 0

    def update(self, probability: float) -> SmoothingResult:
        p = float(probability)
        if not (math.isfinite(p) and 0.0 <= p <= 1.0):
            raise ValueError(f"Probabilidade deve estar em [0, 1], recebido {probability}")

        self._history.append(p)
        avg = self.average

        lines = [
            f"Average prediction over last {len(self._history)} windows: {avg:.4f}"
        ]
        self._state = self._policies[self.cfg.policy](p, avg, lines)

        result = SmoothingResult(
            state=self._state,
            average=avg,
            probability=p,
            counter=self._counter,
            trace="\n".join(lines),
        )
        logger.debug(
            "[smoother] p=%.4f avg=%.4f state=%s counter=%d",
            p, avg, self._state.value, self._counter,
        )
        return result

    # ── políticas ──────────────────────────────────────────────────────────

    def _apply_none(self, p: float, avg: float, lines: List[str]) -> DrowsinessState:
        self._counter = 0
        thr = self.cfg.threshold
        if p >= thr:
            lines.append(f"Raw prediction {p:.4f} >= {thr:.2f}: DROWSY")
            return DrowsinessState.DROWSY
        lines.append(f"Raw prediction {p:.4f} < {thr:.2f}: ACTIVE")
        return DrowsinessState.ACTIVE

    def _apply_threshold(self, p: float, avg: float, lines: List[str]) -> DrowsinessState:
        self._counter = 0
        thr = self.cfg.threshold
        if avg >= thr:
            lines.append(f"Average >= {thr:.2f}: DROWSY")
            return DrowsinessState.DROWSY
        lines.append(f"Average < {thr:.2f}: ACTIVE")
        return DrowsinessState.ACTIVE

    def _apply_hysteresis(self, p: float, avg: float, lines: List[str]) -> DrowsinessState:
        high = self.cfg.high_threshold
        low = self.cfg.low_threshold
        k = self.cfg.required_consistent

        if avg >= high:
            if self._state is DrowsinessState.DROWSY:
                self._counter = 0
                lines.append(f"Maintaining DROWSY state (>= {high:.2f})")
                return DrowsinessState.DROWSY

            self._counter += 1
            if self._counter >= k:
                self._counter = 0
                lines.append(
                    f"Changed to DROWSY after {k} consistent predictions >= {high:.2f}"
                )
                return DrowsinessState.DROWSY
            lines.append(f"Building confidence for DROWSY state: {self._counter}/{k}")
            return DrowsinessState.ACTIVE

        self._counter = 0
        if avg > low:
            lines.append(
                f"In uncertainty margin ({low:.2f}-{high:.2f}), defaulting to ACTIVE state"
            )
        else:
            lines.append(f"Below {low:.2f}, maintaining ACTIVE state")
        return DrowsinessState.ACTIVE
