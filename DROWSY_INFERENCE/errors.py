"""
Taxonomia de erros do pipeline frame → decisão.

Nenhum destes erros atravessa a fronteira PipelineController → UI:
o controller os captura e degrada para a última decisão estável.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base de todos os erros do pipeline."""


class FrameDecodeError(PipelineError):
    """Frame malformado (buffer inválido, dimensões zero, formato desconhecido)."""


class InferenceError(PipelineError):
    """Falha no backend de inferência, shape incompatível ou modelo ausente."""


class ModelLoadError(PipelineError):
    """Falha ao carregar o modelo na inicialização (fatal só para novas decisões)."""
