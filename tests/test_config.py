import json

import pytest

from DROWSY_INFERENCE.config import (
    NormalizationMode,
    NormalizerConfig,
    PipelineConfig,
    SmoothingPolicy,
    load_pipeline_config,
    pipeline_config_from_dict,
)


def test_default_config():
    cfg = PipelineConfig()
    cfg.validate()
    assert cfg.tensor_shape == (1, 30, 3, 256, 256)
    assert cfg.smoother.policy is SmoothingPolicy.HYSTERESIS
    assert cfg.smoother.history_size == 10
    assert cfg.inference.input_name == "input_frames"


def test_load_from_json(tmp_path):
    path = tmp_path / "pipeline_config.json"
    path.write_text(
        json.dumps(
            {
                "normalizer": {"target_size": 192, "mode": "mean_std"},
                "inference": {"temperature": 30.0},
                "smoother": {"policy": "threshold", "threshold": 0.6},
            }
        ),
        encoding="utf-8",
    )
    cfg = load_pipeline_config(path)

    assert cfg.normalizer.target_size == 192
    assert cfg.normalizer.mode is NormalizationMode.MEAN_STD
    assert cfg.inference.temperature == 30.0
    assert cfg.smoother.policy is SmoothingPolicy.THRESHOLD
    assert cfg.window.window_size == 30


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_pipeline_config(tmp_path / "nope.json")


@pytest.mark.parametrize(
    "raw",
    [
        {"smoother": {"high_threshold": 0.6, "low_threshold": 0.7}},
        {"smoother": {"policy": "bogus"}},
        {"normalizer": {"mode": "bogus"}},
        {"normalizer": {"std": [0.2, 0.0, 0.2]}},
        {"window": {"window_size": 0}},
        {"inference": {"temperature": 0}},
        {"inference": {"unknown_key": 1}},
        {"camera": {}},
    ],
)
def test_invalid_values_raise(raw):
    with pytest.raises(ValueError):
        pipeline_config_from_dict(raw)


def test_unit_mode_ignores_mean_std():
    mean, std = NormalizerConfig(mode=NormalizationMode.UNIT).channel_stats()
    assert mean == (0.0, 0.0, 0.0)
    assert std == (1.0, 1.0, 1.0)
