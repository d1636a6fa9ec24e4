import math

import numpy as np
import pytest

from DROWSY_INFERENCE.config import InferenceConfig
from DROWSY_INFERENCE.errors import InferenceError, ModelLoadError
from DROWSY_INFERENCE.model_loader import (
    InferenceInvoker,
    ONNXModelWrapper,
    load_model,
    logit_to_probability,
)
from DROWSY_INFERENCE.window_buffer_rt import TensorAssembler
from tests.conftest import ConstantLogitModel


def _tensor(w=2, s=2):
    return TensorAssembler(w, s).assemble([np.zeros(3 * s * s, dtype=np.float32)] * w)


def test_logit_to_probability():
    assert logit_to_probability(0.0) == 0.5
    assert logit_to_probability(10.0) == pytest.approx(0.9999546, rel=1e-6)
    assert logit_to_probability(30.0, temperature=30.0) == pytest.approx(1 / (1 + math.e ** -1))
    assert logit_to_probability(1000.0) == 1.0
    assert logit_to_probability(-1000.0) == 0.0


def test_predict_returns_logit_and_probability():
    model = ConstantLogitModel(logit=2.0)
    invoker = InferenceInvoker(model)

    logit, prob = invoker.predict(_tensor())
    assert logit == pytest.approx(2.0)
    assert prob == pytest.approx(1 / (1 + math.exp(-2.0)))
    assert model.shapes == [(1, 2, 3, 2, 2)]


def test_temperature_softens_probability():
    invoker = InferenceInvoker(ConstantLogitModel(logit=3.0), InferenceConfig(temperature=30.0))
    _, prob = invoker.predict(_tensor())
    assert prob == pytest.approx(1 / (1 + math.exp(-0.1)))


def test_output_index_selects_logit():
    invoker = InferenceInvoker(
        lambda x: np.array([[0.5, -4.0]], dtype=np.float32),
        InferenceConfig(output_index=1),
    )
    assert invoker.infer(_tensor()) == pytest.approx(-4.0)


@pytest.mark.parametrize(
    "model",
    [
        ConstantLogitModel(fail_on={1}),
        lambda x: np.array([], dtype=np.float32),
        lambda x: np.array([[np.nan]], dtype=np.float32),
        lambda x: "garbage",
        lambda x: {"logit": 1.0},
    ],
)
def test_backend_failures_become_inference_error(model):
    with pytest.raises(InferenceError):
        InferenceInvoker(model).infer(_tensor())


def test_closed_invoker_raises_inference_error():
    with InferenceInvoker(ConstantLogitModel()) as invoker:
        assert invoker.available
    assert not invoker.available
    with pytest.raises(InferenceError):
        invoker.infer(_tensor())


def test_load_model_missing_file(tmp_path):
    with pytest.raises(ModelLoadError):
        load_model(tmp_path / "missing.onnx")


def test_load_model_wrong_suffix(tmp_path):
    path = tmp_path / "model.pt"
    path.write_bytes(b"not a model")
    with pytest.raises(ModelLoadError):
        load_model(path)


def test_load_model_corrupt_onnx(tmp_path):
    path = tmp_path / "model.onnx"
    path.write_bytes(b"not a model")
    with pytest.raises(ModelLoadError):
        InferenceInvoker.from_path(path)


class _Input:
    def __init__(self, name):
        self.name = name


class _FakeSession:
    def __init__(self):
        self.feeds = []

    def get_inputs(self):
        return [_Input("input_frames")]

    def run(self, output_names, feed):
        self.feeds.append(feed)
        return [np.array([[1.5]], dtype=np.float32)]


def test_onnx_wrapper_feeds_named_input_as_float32():
    session = _FakeSession()
    wrapper = ONNXModelWrapper(session, input_name="input_frames")

    out = wrapper(np.zeros((1, 2, 3, 2, 2), dtype=np.float64))
    assert out[0, 0] == pytest.approx(1.5)
    assert session.feeds[0]["input_frames"].dtype == np.float32


def test_onnx_wrapper_falls_back_to_first_input():
    wrapper = ONNXModelWrapper(_FakeSession(), input_name="frames")
    assert wrapper.input_name == "input_frames"
