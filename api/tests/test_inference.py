import numpy as np
import pytest

from recommender.services import inference
from recommender.services.inference import InferenceModel, load_inference_model


class _ProbaEstimator:
    def __init__(self):
        self.rows = []

    def predict_proba(self, row):
        self.rows.append(row)
        return np.array([[0.25, 0.75]])


class _RegressionEstimator:
    def predict(self, row):
        return np.array([float(row.sum()) / row.shape[1]])


def test_from_estimator_uses_positive_class_probability():
    estimator = _ProbaEstimator()
    model = InferenceModel.from_estimator(estimator, version="v3")

    assert model([0.1, 0.2, 0.3]) == 0.75
    assert model.version == "v3"
    assert estimator.rows[0].shape == (1, 3)


def test_from_estimator_falls_back_to_predict():
    model = InferenceModel.from_estimator(_RegressionEstimator(), version="reg")
    assert model([0.5, 1.0]) == pytest.approx(0.75)


def test_load_artifact_dict(monkeypatch, tmp_path):
    path = tmp_path / "compat.joblib"
    monkeypatch.setattr(inference.joblib, "load", lambda p: {"model": _ProbaEstimator(), "version": "2026-10-01"})

    model = load_inference_model(path)

    assert model.version == "2026-10-01"
    assert model([0.5] * 6) == 0.75


def test_load_bare_estimator_uses_file_stem_as_version(monkeypatch, tmp_path):
    path = tmp_path / "compat_v2.joblib"
    monkeypatch.setattr(inference.joblib, "load", lambda p: _RegressionEstimator())

    model = load_inference_model(str(path))

    assert model.version == "compat_v2"
