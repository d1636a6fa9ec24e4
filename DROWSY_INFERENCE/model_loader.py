"""
Carregamento do modelo de sequência ONNX e fronteira de inferência.

O modelo é opaco: tensor float32 (1, W, 3, S, S) entra, tensor com pelo
menos um logit sai. Nomes de entrada/saída são configuração.

InferenceInvoker é o único ponto de contato do pipeline com o backend:
qualquer falha vira InferenceError, e o logit bruto vira probabilidade via
temperature scaling + sigmoide.

Ciclo de vida do handle: adquirido em load_model()/from_path() na
inicialização, liberado em close() no fim da sessão.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

import numpy as np

try:
    import onnxruntime as ort

    HAS_ONNX = True
except ImportError:
    ort = None  # type: ignore[assignment]
    HAS_ONNX = False

from .config import InferenceConfig
from .errors import InferenceError, ModelLoadError
from .window_buffer_rt import FlattenedTensor

logger = logging.getLogger(__name__)

ModelFn = Callable[[np.ndarray], np.ndarray]


# ── ONNX Runtime wrapper ────────────────────────────────────────────────────


class ONNXModelWrapper:
    """Wrapper for onnxruntime.InferenceSession with a numpy-only interface."""

    def __init__(self, session: Any, input_name: Optional[str] = None) -> None:
        self.session = session
        names = [i.name for i in session.get_inputs()]
        if input_name is not None and input_name in names:
            self.input_name = input_name
        else:
            if input_name is not None:
                logger.warning(
                    "[model] Input '%s' not in session inputs %s; using '%s'",
                    input_name, names, names[0],
                )
            self.input_name = names[0]

    def __call__(self, x: np.ndarray) -> np.ndarray:
        if x.dtype != np.float32:
            x = x.astype(np.float32)
        return self.session.run(None, {self.input_name: x})[0]


def load_model(
    model_path: Union[Path, str],
    input_name: Optional[str] = None,
) -> ONNXModelWrapper:
    """
    Carrega um modelo .onnx e devolve o wrapper numpy.

    Levanta ModelLoadError se onnxruntime não está instalado, o arquivo não
    existe, a extensão não é .onnx ou a sessão não pôde ser criada.
    """
    if not HAS_ONNX:
        raise ModelLoadError(
            "onnxruntime não está instalado. "
            "Instale com `pip install onnxruntime`."
        )

    path = Path(model_path)
    if not path.exists():
        raise ModelLoadError(f"Modelo não encontrado em {path}")
    if path.suffix != ".onnx":
        raise ModelLoadError(f"Formato esperado: .onnx. Recebido: {path.suffix}")

    data_file = path.parent / (path.name + ".data")
    if data_file.exists():
        logger.info(
            "[model] External data: %s (%d bytes)",
            data_file.name, data_file.stat().st_size,
        )

    try:
        session = ort.InferenceSession(str(path))
    except Exception as e:  # onnxruntime levanta tipos próprios (Fail, InvalidGraph, ...)
        raise ModelLoadError(f"Falha ao criar sessão ONNX para {path}: {e}") from e

    wrapper = ONNXModelWrapper(session, input_name=input_name)
    logger.info("[model] Loaded ONNX: %s (input=%s)", path, wrapper.input_name)
    return wrapper


# ── Logit → probabilidade ───────────────────────────────────────────────────


def logit_to_probability(logit: float, temperature: float = 1.0) -> float:
    """p = 1 / (1 + e^(-logit / T)), estável para |logit| grande."""
    z = float(logit) / float(temperature)
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


# ── Fronteira de inferência ─────────────────────────────────────────────────


class InferenceInvoker:
    """
    Chamada opaca ao modelo externo.

    Sem timeout: a chamada é síncrona e roda até completar ou falhar.
    """

    def __init__(
        self,
        model: Optional[ModelFn],
        config: Optional[InferenceConfig] = None,
    ) -> None:
        self.cfg = config or InferenceConfig()
        self.cfg.validate()
        self._model = model

    @classmethod
    def from_path(
        cls,
        model_path: Union[Path, str],
        config: Optional[InferenceConfig] = None,
    ) -> "InferenceInvoker":
        cfg = config or InferenceConfig()
        return cls(load_model(model_path, input_name=cfg.input_name), cfg)

    @property
    def available(self) -> bool:
        return self._model is not None

    def infer(self, tensor: FlattenedTensor) -> float:
        """Roda o modelo e devolve o logit bruto em `output_index`."""
        if self._model is None:
            raise InferenceError("Modelo não carregado (sessão fechada ou ausente)")

        x = tensor.as_model_input()
        try:
            out = self._model(x)
        except Exception as e:  # backend opaco: qualquer falha é InferenceError
            raise InferenceError(f"Falha no backend de inferência: {e}") from e

        try:
            flat = np.asarray(out, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InferenceError(f"Saída do modelo não numérica: {e}") from e
        idx = self.cfg.output_index
        if flat.size <= idx:
            raise InferenceError(
                f"Saída do modelo tem {flat.size} valores; "
                f"output_index={idx} fora do intervalo"
            )
        logit = float(flat[idx])
        if not math.isfinite(logit):
            raise InferenceError(f"Logit não finito: {logit}")
        return logit

    def to_probability(self, logit: float) -> float:
        return logit_to_probability(logit, self.cfg.temperature)

    def predict(self, tensor: FlattenedTensor) -> Tuple[float, float]:
        """(logit, probabilidade) para uma janela."""
        logit = self.infer(tensor)
        return logit, self.to_probability(logit)

    def close(self) -> None:
        if self._model is not None:
            logger.info("[model] Inference backend released")
        self._model = None

    def __enter__(self) -> "InferenceInvoker":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
