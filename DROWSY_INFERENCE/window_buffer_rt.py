"""
Janelamento online de NormalizedSlices + montagem do tensor do modelo.

WindowBuffer acumula exatamente W slices e, ao completar, entrega a janela
e zera o buffer na mesma chamada (sem double-buffering). A partir daí o
flag `is_processing` fica ligado até `release()`: enquanto houver uma
janela em inferência, `push` não altera o estado (BUSY).

TensorAssembler concatena a janela em ordem de chegada num vetor contíguo
com shape declarado (1, W, 3, S, S). Nenhum resize/reordenação acontece
aqui: o layout por frame já vem do FrameNormalizer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import WindowConfig

logger = logging.getLogger(__name__)


class WindowStatusKind(str, Enum):
    ACCUMULATING = "accumulating"
    FULL = "full"
    BUSY = "busy"


@dataclass(frozen=True)
class WindowStatus:
    kind: WindowStatusKind
    count: int
    capacity: int
    window: Optional[Tuple[np.ndarray, ...]] = None

    @property
    def is_full(self) -> bool:
        return self.kind is WindowStatusKind.FULL

    def __str__(self) -> str:
        return f"{self.kind.value}({self.count}/{self.capacity})"


class WindowBuffer:
    """
    Buffer de capacidade fixa W com guarda de "uma janela em voo".

    O guarda é um bool simples: só existe um produtor (fonte de frames)
    e um consumidor (controller) por sessão.
    """

    def __init__(
        self,
        config: Optional[WindowConfig] = None,
        slice_length: Optional[int] = None,
    ) -> None:
        self.cfg = config or WindowConfig()
        self.cfg.validate()
        self.slice_length = slice_length
        self._slices: List[np.ndarray] = []
        self._processing = False

    @property
    def capacity(self) -> int:
        return self.cfg.window_size

    @property
    def is_processing(self) -> bool:
        return self._processing

    def __len__(self) -> int:
        return len(self._slices)

    def push(self, slice_: np.ndarray) -> WindowStatus:
        """
        Adiciona um slice.

        Retorna:
        - BUSY sem mutação se uma janela está em inferência
        - ACCUMULATING(n/W) enquanto n < W
        - FULL(janela) no W-ésimo slice; o buffer volta a vazio e o flag
          de processamento é ligado
        """
        if self._processing:
            return WindowStatus(WindowStatusKind.BUSY, len(self._slices), self.capacity)

        if self.slice_length is not None and slice_.size != self.slice_length:
            raise ValueError(
                f"Slice deve ter {self.slice_length} valores, mas veio {slice_.size}"
            )

        self._slices.append(slice_)
        if len(self._slices) < self.capacity:
            return WindowStatus(
                WindowStatusKind.ACCUMULATING, len(self._slices), self.capacity
            )

        window = tuple(self._slices)
        self._slices = []
        self._processing = True
        logger.debug("[window] Full (%d slices), processing started", len(window))
        return WindowStatus(WindowStatusKind.FULL, len(window), self.capacity, window)

    def release(self) -> None:
        """Fim da inferência da janela em voo: volta a aceitar slices."""
        self._processing = False

    def clear(self) -> None:
        self._slices = []
        self._processing = False


@dataclass
class FlattenedTensor:
    data: np.ndarray                      # float32 contíguo, W*3*S*S
    shape: Tuple[int, int, int, int, int]  # (1, W, 3, S, S)

    def as_model_input(self) -> np.ndarray:
        return self.data.reshape(self.shape)

    def split(self) -> List[np.ndarray]:
        """Fatia de volta nos W slices por frame (ordem temporal)."""
        _, w, c, h, wd = self.shape
        return [chunk.copy() for chunk in self.data.reshape(w, c * h * wd)]


class TensorAssembler:
    def __init__(self, window_size: int, target_size: int, channels: int = 3) -> None:
        self.window_size = window_size
        self.target_size = target_size
        self.channels = channels

    @property
    def shape(self) -> Tuple[int, int, int, int, int]:
        s = self.target_size
        return (1, self.window_size, self.channels, s, s)

    @property
    def slice_length(self) -> int:
        return self.channels * self.target_size * self.target_size

    def assemble(self, window: Sequence[np.ndarray]) -> FlattenedTensor:
        if len(window) != self.window_size:
            raise ValueError(
                f"Janela deve ter {self.window_size} frames, mas veio {len(window)}"
            )
        for i, s in enumerate(window):
            if s.size != self.slice_length:
                raise ValueError(
                    f"Frame {i} da janela tem {s.size} valores, "
                    f"esperado {self.slice_length}"
                )

        flat = np.concatenate([np.asarray(s, dtype=np.float32).reshape(-1) for s in window])
        return FlattenedTensor(data=flat, shape=self.shape)
