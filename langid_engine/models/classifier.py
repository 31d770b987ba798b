"""
scikit-learn view of a precomputed model, for scoring many texts at once.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.pipeline import Pipeline

from langid_engine.features.tokenizer import FeatureCountTransformer
from langid_engine.models.model import LanguageModel


class NaiveBayesScorer(BaseEstimator, ClassifierMixin):
    """
    Linear scorer over feature counts: ``X @ likelihood + prior``.

    The parameters are fixed by the model, so :meth:`fit` only records the
    class labels.
    """

    def __init__(self, model: LanguageModel):
        self.model = model

    def fit(self, X=None, y=None):
        self.classes_ = np.asarray(self.model.classes, dtype=object)
        return self

    def decision_function(self, X) -> np.ndarray:
        if X.shape[1] != self.model.num_feats:
            raise ValueError(
                f"Expected {self.model.num_feats} feature columns, got {X.shape[1]}."
            )
        scores = np.asarray(X @ self.model.likelihood, dtype=np.float64)
        return scores + self.model.prior

    def predict_log_proba(self, X) -> np.ndarray:
        """Scores renormalized with log-sum-exp, so each row sums to one in probability space."""
        scores = self.decision_function(X)
        peak = scores.max(axis=1, keepdims=True)
        log_norm = peak + np.log(np.exp(scores - peak).sum(axis=1, keepdims=True))
        return scores - log_norm

    def predict_proba(self, X) -> np.ndarray:
        return np.exp(self.predict_log_proba(X))

    def predict(self, X) -> np.ndarray:
        classes = np.asarray(self.model.classes, dtype=object)
        return classes[np.argmax(self.decision_function(X), axis=1)]


def build_pipeline(model: LanguageModel, show_progress: bool = False) -> Pipeline:
    """
    Construct an sklearn Pipeline of feature counting + Naive Bayes scoring.
    """
    classifier = NaiveBayesScorer(model).fit()
    return Pipeline(
        [
            ("vectorizer", FeatureCountTransformer(model, show_progress=show_progress)),
            ("classifier", classifier),
        ]
    )


def load_dataset(
    csv_path: Path,
    languages: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """
    Load a CSV file containing `text` and `language` columns.
    """
    df = pd.read_csv(csv_path, keep_default_na=False)
    required_cols = {"text", "language"}
    if not required_cols.issubset(df.columns):
        raise ValueError(f"Dataset must include columns: {required_cols}")

    if languages:
        df = df[df["language"].isin(list(languages))]

    if df.empty:
        raise ValueError("Dataset is empty after filtering; check language list.")
    return df.assign(text=df["text"].astype(str))


__all__ = ["NaiveBayesScorer", "build_pipeline", "load_dataset"]
