"""
Configuração do pipeline realtime (dataclasses + pipeline_config.json).

Cada componente tem sua própria dataclass com defaults. Em deploy, um único
JSON é a fonte de verdade; seções ausentes mantêm os defaults.

Exemplo de pipeline_config.json:

    {
      "normalizer": {"target_size": 256, "mode": "unit"},
      "window": {"window_size": 30},
      "inference": {"input_name": "input_frames", "temperature": 30.0},
      "smoother": {"policy": "hysteresis", "high_threshold": 0.9,
                   "low_threshold": 0.7, "required_consistent": 3},
      "face": {"min_face_score": 0.5, "min_face_size": 0.3}
    }
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Tuple, Union


# Estatísticas ImageNet (RGB), usadas no modo MEAN_STD
IMAGENET_MEAN: Tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: Tuple[float, float, float] = (0.229, 0.224, 0.225)


class NormalizationMode(str, Enum):
    UNIT = "unit"          # v / 255
    MEAN_STD = "mean_std"  # (v / 255 - mean[c]) / std[c]


class SmoothingPolicy(str, Enum):
    NONE = "none"
    THRESHOLD = "threshold"
    HYSTERESIS = "hysteresis"


@dataclass
class NormalizerConfig:
    target_size: int = 256
    mode: NormalizationMode = NormalizationMode.UNIT
    mean: Tuple[float, float, float] = IMAGENET_MEAN
    std: Tuple[float, float, float] = IMAGENET_STD

    def validate(self) -> None:
        if self.target_size < 1:
            raise ValueError(f"target_size deve ser >= 1, recebido {self.target_size}")
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ValueError("mean/std devem ter exatamente 3 valores (R, G, B)")
        if any(s == 0 for s in self.std):
            raise ValueError(f"std não pode conter zero: {self.std}")

    def channel_stats(self) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
        """(mean, std) efetivos: UNIT equivale a mean=0, std=1."""
        if NormalizationMode(self.mode) is NormalizationMode.UNIT:
            return (0.0, 0.0, 0.0), (1.0, 1.0, 1.0)
        return tuple(self.mean), tuple(self.std)


@dataclass
class WindowConfig:
    window_size: int = 30

    def validate(self) -> None:
        if self.window_size < 1:
            raise ValueError(f"window_size deve ser >= 1, recebido {self.window_size}")


@dataclass
class InferenceConfig:
    input_name: str = "input_frames"
    output_index: int = 0
    # T=1 desliga o temperature scaling
    temperature: float = 1.0

    def validate(self) -> None:
        if not (self.temperature > 0 and math.isfinite(self.temperature)):
            raise ValueError(f"temperature deve ser > 0, recebido {self.temperature}")
        if self.output_index < 0:
            raise ValueError(f"output_index deve ser >= 0, recebido {self.output_index}")


@dataclass
class SmootherConfig:
    policy: SmoothingPolicy = SmoothingPolicy.HYSTERESIS
    history_size: int = 10
    threshold: float = 0.5          # NONE / THRESHOLD
    high_threshold: float = 0.90    # HYSTERESIS: entrada em DROWSY
    low_threshold: float = 0.70     # HYSTERESIS: só informativo (trace)
    required_consistent: int = 3    # K

    def validate(self) -> None:
        if self.history_size < 1:
            raise ValueError(f"history_size deve ser >= 1, recebido {self.history_size}")
        if self.required_consistent < 1:
            raise ValueError(
                f"required_consistent deve ser >= 1, recebido {self.required_consistent}"
            )
        for name in ("threshold", "high_threshold", "low_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} deve estar em [0, 1], recebido {value}")
        if self.high_threshold <= self.low_threshold:
            raise ValueError(
                f"high_threshold ({self.high_threshold}) deve ser maior que "
                f"low_threshold ({self.low_threshold})"
            )


@dataclass
class FaceOracleConfig:
    min_face_score: float = 0.5
    # Lado mínimo do bbox relativo ao frame
    min_face_size: float = 0.3

    def validate(self) -> None:
        if not 0.0 <= self.min_face_score <= 1.0:
            raise ValueError(f"min_face_score deve estar em [0, 1], recebido {self.min_face_score}")
        if not 0.0 <= self.min_face_size <= 1.0:
            raise ValueError(f"min_face_size deve estar em [0, 1], recebido {self.min_face_size}")


@dataclass
class PipelineConfig:
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    window: WindowConfig = field(default_factory=WindowConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    smoother: SmootherConfig = field(default_factory=SmootherConfig)
    face: FaceOracleConfig = field(default_factory=FaceOracleConfig)

    def validate(self) -> None:
        self.normalizer.validate()
        self.window.validate()
        self.inference.validate()
        self.smoother.validate()
        self.face.validate()

    @property
    def tensor_shape(self) -> Tuple[int, int, int, int, int]:
        s = self.normalizer.target_size
        return (1, self.window.window_size, 3, s, s)


# ── JSON loading (single source of truth) ────────────────────────────────────


def _build_section(cls: type, raw: Dict[str, Any], section: str) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Chaves desconhecidas em '{section}': {sorted(unknown)}")

    kwargs = dict(raw)
    try:
        if "mode" in kwargs:
            kwargs["mode"] = NormalizationMode(kwargs["mode"])
        if "policy" in kwargs:
            kwargs["policy"] = SmoothingPolicy(kwargs["policy"])
    except ValueError as e:
        raise ValueError(f"Valor inválido em '{section}': {e}") from e
    for key in ("mean", "std"):
        if key in kwargs:
            kwargs[key] = tuple(float(v) for v in kwargs[key])
    return cls(**kwargs)


def pipeline_config_from_dict(raw: Dict[str, Any]) -> PipelineConfig:
    sections = {
        "normalizer": NormalizerConfig,
        "window": WindowConfig,
        "inference": InferenceConfig,
        "smoother": SmootherConfig,
        "face": FaceOracleConfig,
    }
    unknown = set(raw) - set(sections)
    if unknown:
        raise ValueError(f"Seções desconhecidas no config: {sorted(unknown)}")

    built = {
        name: _build_section(cls, raw.get(name) or {}, name)
        for name, cls in sections.items()
    }
    config = PipelineConfig(**built)
    config.validate()
    return config


def load_pipeline_config(
    config_path: Union[Path, str] = "models/pipeline_config.json",
) -> PipelineConfig:
    """
    Carrega pipeline_config.json e devolve um PipelineConfig validado.

    Levanta FileNotFoundError se o arquivo não existe e ValueError para
    valores inválidos.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"pipeline_config não encontrado em {path}")

    with path.open("r", encoding="utf-8") as fh:
        raw = json.load(fh)

    if not isinstance(raw, dict):
        raise ValueError(f"pipeline_config deve ser um objeto JSON: {path}")
    return pipeline_config_from_dict(raw)
