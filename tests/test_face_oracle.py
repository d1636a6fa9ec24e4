import numpy as np
import pytest

from DROWSY_INFERENCE.config import FaceOracleConfig
from DROWSY_INFERENCE.errors import ModelLoadError
from DROWSY_INFERENCE.face_oracle_rt import ONNXFaceOracle, StaticFaceOracle
from tests.conftest import rgb_frame


class _Input:
    def __init__(self, name):
        self.name = name


class _FakeDetector:
    """Sessão BlazeFace fake: âncora 0 sempre fraca, âncora 1 configurável."""

    def __init__(self, score_logit, box):
        self.score_logit = score_logit
        self.box = box
        self.feeds = []

    def get_inputs(self):
        return [_Input("input")]

    def run(self, output_names, feed):
        self.feeds.append(feed)
        reg = np.zeros((1, 2, 16), dtype=np.float32)
        reg[0, 0, :4] = (64.0, 64.0, 128.0, 128.0)
        reg[0, 1, :4] = self.box
        cls = np.array([[[-10.0], [self.score_logit]]], dtype=np.float32)
        return [reg, cls]


def _oracle(score_logit, box, **cfg):
    session = _FakeDetector(score_logit, box)
    return ONNXFaceOracle(config=FaceOracleConfig(**cfg), session=session), session


def test_static_oracle():
    assert StaticFaceOracle().detect(rgb_frame())
    assert not StaticFaceOracle(present=False).detect(rgb_frame())


def test_missing_detector_raises_model_load_error(tmp_path):
    with pytest.raises(ModelLoadError):
        ONNXFaceOracle(tmp_path / "blazeface_detector.onnx")


def test_face_accepted_when_score_and_size_pass():
    oracle, session = _oracle(5.0, (64.0, 64.0, 100.0, 100.0))
    assert oracle.detect(rgb_frame(size=64))

    inp = session.feeds[0]["input"]
    assert inp.shape == (1, 128, 128, 3)
    assert inp.dtype == np.float32
    assert inp.max() <= 1.0


def test_low_score_is_rejected():
    oracle, _ = _oracle(-5.0, (64.0, 64.0, 100.0, 100.0))
    assert not oracle.detect(rgb_frame(size=64))


def test_score_threshold_is_configurable():
    # sigmoid(-1) ~ 0.27
    oracle, _ = _oracle(-1.0, (64.0, 64.0, 100.0, 100.0), min_face_score=0.2)
    assert oracle.detect(rgb_frame(size=64))


def test_small_face_is_rejected():
    # 30px de 128 -> 15px num frame de 64 (0.23 < 0.3)
    oracle, _ = _oracle(5.0, (64.0, 64.0, 30.0, 30.0))
    assert not oracle.detect(rgb_frame(size=64))

    relaxed, _ = _oracle(5.0, (64.0, 64.0, 30.0, 30.0), min_face_size=0.2)
    assert relaxed.detect(rgb_frame(size=64))


def test_tiny_box_is_rejected_even_without_size_gate():
    oracle, _ = _oracle(5.0, (64.0, 64.0, 8.0, 8.0), min_face_size=0.0)
    assert not oracle.detect(rgb_frame(size=64))


def test_bbox_is_scaled_to_frame_coordinates():
    oracle, _ = _oracle(5.0, (64.0, 32.0, 64.0, 32.0))
    x1, y1, x2, y2 = oracle._detect_face(np.zeros((256, 512, 3), dtype=np.uint8))
    assert (x1, y1, x2, y2) == pytest.approx((128.0, 32.0, 384.0, 96.0))
