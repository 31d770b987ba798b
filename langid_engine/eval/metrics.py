"""
Evaluation helpers for scoring a model against labelled text.
"""
from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, classification_report, confusion_matrix
from sklearn.pipeline import Pipeline


def classification_summary(y_true, y_pred) -> dict:
    payload = classification_report(
        y_true, y_pred, output_dict=True, zero_division=0
    )
    payload["accuracy"] = accuracy_score(y_true, y_pred)
    return payload


def decision_scores(pipeline: Pipeline, texts: Iterable) -> np.ndarray:
    """Per-language log-probabilities, one row per text."""
    X = pipeline.named_steps["vectorizer"].transform(texts)
    return pipeline.named_steps["classifier"].decision_function(X)


def top_k_accuracy(
    scores: np.ndarray,
    classes: Sequence[str],
    labels: Sequence[str],
    k: int = 3,
) -> float:
    """Share of texts whose true label is among the ``k`` best-scored classes."""
    # stable sort on negated scores keeps the lowest index first among ties
    order = np.argsort(-scores, axis=1, kind="stable")[:, :k]
    predicted = np.asarray(classes, dtype=object)[order]
    total = len(labels)
    hits = sum(true in row for true, row in zip(labels, predicted))
    return hits / total if total else 0.0


def score_margins(scores: np.ndarray) -> np.ndarray:
    """Gap between the best and runner-up score of every row."""
    if scores.shape[1] < 2:
        return np.zeros(len(scores))
    top_two = -np.sort(-scores, axis=1)[:, :2]
    return top_two[:, 0] - top_two[:, 1]


def margin_summary(scores: np.ndarray) -> dict:
    """
    Distribution of the gap between the best and runner-up scores.
    """
    if scores.shape[1] < 2 or not len(scores):
        return {"mean": None, "median": None, "min": None}
    gaps = score_margins(scores)
    return {
        "mean": float(gaps.mean()),
        "median": float(np.median(gaps)),
        "min": float(gaps.min()),
    }


def compute_confusion(y_true, y_pred, labels) -> np.ndarray:
    return confusion_matrix(y_true, y_pred, labels=labels)


__all__ = [
    "classification_summary",
    "decision_scores",
    "top_k_accuracy",
    "score_margins",
    "margin_summary",
    "compute_confusion",
]
