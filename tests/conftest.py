from concurrent.futures import Executor, Future

import numpy as np
import pytest

from DROWSY_INFERENCE.config import (
    NormalizerConfig,
    PipelineConfig,
    SmootherConfig,
    WindowConfig,
)
from DROWSY_INFERENCE.frame_normalizer_rt import PixelFormat, RawFrame


def rgb_frame(size: int = 2, value: int = 128) -> RawFrame:
    data = np.full(size * size * 3, value, dtype=np.uint8)
    return RawFrame(data=data, width=size, height=size, format=PixelFormat.RGB)


class ConstantLogitModel:
    """Modelo fake: sempre devolve o mesmo logit, opcionalmente falhando em chamadas."""

    def __init__(self, logit: float = 10.0, fail_on=()):
        self.logit = logit
        self.fail_on = set(fail_on)
        self.calls = 0
        self.shapes = []

    def __call__(self, x: np.ndarray) -> np.ndarray:
        self.calls += 1
        self.shapes.append(x.shape)
        if self.calls in self.fail_on:
            raise RuntimeError(f"backend exploded on call {self.calls}")
        return np.array([[self.logit]], dtype=np.float32)


class ManualExecutor(Executor):
    """Executor que só roda os jobs quando o teste pede."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self):
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)


@pytest.fixture
def toy_config() -> PipelineConfig:
    return PipelineConfig(
        normalizer=NormalizerConfig(target_size=2),
        window=WindowConfig(window_size=30),
        smoother=SmootherConfig(
            high_threshold=0.9, low_threshold=0.7, required_consistent=3
        ),
    )
