"""
Adapters for the frozen, versioned compatibility model.

Training happens elsewhere and ships a joblib artifact shaped like
``{"model": estimator, "version": "2026-10-01", "feature_names": [...]}``.
The scoring core only depends on ``InferenceModel.predict(features) -> float``,
so the model can be swapped, stubbed in tests, or left out entirely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

import joblib
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceModel:
    version: str
    predict: Callable[[Sequence[float]], float]

    def __call__(self, features: Sequence[float]) -> float:
        return float(self.predict(features))

    @classmethod
    def from_estimator(cls, estimator: Any, version: str) -> InferenceModel:
        """Wrap a scikit-learn style estimator; prefers the positive-class probability."""

        def _predict(features: Sequence[float]) -> float:
            row = np.asarray([list(features)], dtype=float)
            if hasattr(estimator, "predict_proba"):
                proba = np.asarray(estimator.predict_proba(row))
                return float(proba[0, -1])
            return float(np.asarray(estimator.predict(row)).ravel()[0])

        return cls(version=version, predict=_predict)


def load_inference_model(path: str | Path) -> InferenceModel:
    path = Path(path)
    artifact = joblib.load(path)
    if isinstance(artifact, dict):
        estimator = artifact["model"]
        version = str(artifact.get("version") or path.stem)
    else:
        estimator = artifact
        version = path.stem
    logger.info("[SCORING] Loaded compatibility model version=%s from %s", version, path)
    return InferenceModel.from_estimator(estimator, version=version)
