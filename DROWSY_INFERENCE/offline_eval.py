"""
Ferramentas para validar a suavização temporal offline.

Replays de logits por janela (gravados de uma sessão ou de um conjunto de
validação) passam pela mesma sigmoide com temperatura e pelo mesmo
TemporalSmoother do pipeline realtime, permitindo comparar políticas e
limiares sem câmera.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

try:
    from sklearn.metrics import f1_score, recall_score, roc_auc_score
except ImportError as e:
    raise ImportError(
        "offline_eval requer scikit-learn. "
        "Instale com `pip install scikit-learn` (dev-only, não necessário no device)."
    ) from e

from .config import InferenceConfig, SmootherConfig, SmoothingPolicy
from .model_loader import logit_to_probability
from .temporal_smoother_rt import DrowsinessState, TemporalSmoother

ACTIVE_LABEL = 0
DROWSY_LABEL = 1


def _binary_metrics(y_true: np.ndarray, preds: np.ndarray, scores: np.ndarray) -> dict:
    active_recall = recall_score(y_true, preds, pos_label=ACTIVE_LABEL, zero_division=0)
    drowsy_recall = recall_score(y_true, preds, pos_label=DROWSY_LABEL, zero_division=0)
    f1_drowsy = f1_score(y_true, preds, pos_label=DROWSY_LABEL, zero_division=0)
    try:
        auc = roc_auc_score(y_true, scores)
    except ValueError:
        # só uma classe presente em y_true
        auc = 0.5

    return {
        "balanced_accuracy": float((active_recall + drowsy_recall) / 2.0),
        "f1_drowsy": float(f1_drowsy),
        "active_recall": float(active_recall),
        "drowsy_recall": float(drowsy_recall),
        "auc_roc": float(auc),
    }


def run_offline_eval(
    df_windows: pd.DataFrame,
    smoother_config: Optional[SmootherConfig] = None,
    inference_config: Optional[InferenceConfig] = None,
    *,
    logit_column: str = "logit",
    label_column: str = "label",
) -> Tuple[pd.DataFrame, dict]:
    """
    Reproduz uma sequência de janelas pelo TemporalSmoother.

    Parâmetros
    ----------
    df_windows:
        Uma linha por janela, em ordem temporal. Deve conter logit_column e
        label_column (0=Active, 1=Drowsy).
    smoother_config / inference_config:
        Mesmos configs do pipeline realtime (política, limiares, temperatura).

    Retornos
    --------
    df_result:
        Cópia do DataFrame com `probability`, `average`, `counter`,
        `pred_state` e `pred_label`.
    metrics:
        balanced_accuracy, f1_drowsy, active_recall, drowsy_recall, auc_roc
        (AUC sobre a média suavizada).
    """
    smoother_config = smoother_config or SmootherConfig()
    inference_config = inference_config or InferenceConfig()
    inference_config.validate()

    for col in (logit_column, label_column):
        if col not in df_windows.columns:
            raise KeyError(f"Coluna '{col}' não encontrada em df_windows.")

    smoother = TemporalSmoother(smoother_config)
    probs, avgs, counters, states = [], [], [], []
    for logit in df_windows[logit_column].astype("float64"):
        p = logit_to_probability(logit, inference_config.temperature)
        res = smoother.update(p)
        probs.append(p)
        avgs.append(res.average)
        counters.append(res.counter)
        states.append(res.state.value)

    y_true = df_windows[label_column].astype(int).to_numpy()
    preds = np.array(
        [DROWSY_LABEL if s == DrowsinessState.DROWSY.value else ACTIVE_LABEL for s in states],
        dtype=int,
    )

    df_out = df_windows.copy()
    df_out["probability"] = probs
    df_out["average"] = avgs
    df_out["counter"] = counters
    df_out["pred_state"] = states
    df_out["pred_label"] = preds
    return df_out, _binary_metrics(y_true, preds, np.asarray(avgs))


def compare_policies(
    df_windows: pd.DataFrame,
    configs: Mapping[str, SmootherConfig],
    inference_config: Optional[InferenceConfig] = None,
    **kwargs,
) -> pd.DataFrame:
    """Uma linha de métricas por configuração de suavização."""
    rows = []
    for name, cfg in configs.items():
        _, metrics = run_offline_eval(df_windows, cfg, inference_config, **kwargs)
        rows.append({"name": name, "policy": cfg.policy.value, **metrics})
    return pd.DataFrame(rows)


def default_policy_grid(base: Optional[SmootherConfig] = None) -> Dict[str, SmootherConfig]:
    """As três políticas com os limiares de `base`."""
    base = base or SmootherConfig()
    return {p.value: replace(base, policy=p) for p in SmoothingPolicy}
