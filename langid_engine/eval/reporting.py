"""
Write evaluation artifacts for a scored dataset: metrics JSON, per-text
predictions, the confusion heatmap and the score-margin histogram.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402

from langid_engine.eval.metrics import score_margins  # noqa: E402


def _json_default(value):
    # numpy scalars and arrays from sklearn reports
    if hasattr(value, "tolist"):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def save_metrics_json(path: Path, payload: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=_json_default), encoding="utf-8")
    return path


def save_predictions_csv(
    path: Path,
    texts: Sequence[str],
    y_true: Sequence[str],
    scores: np.ndarray,
    classes: Sequence[str],
) -> Path:
    """
    One row per text with its label, the winning language and the gap to the
    runner-up, sorted so the least confident mistakes come first.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    order = np.argsort(-scores, axis=1, kind="stable")
    best = scores[np.arange(len(scores)), order[:, 0]]
    frame = pd.DataFrame(
        {
            "text": list(texts),
            "language": list(y_true),
            "predicted": np.asarray(classes, dtype=object)[order[:, 0]],
            "logprob": best,
            "margin": score_margins(scores),
        }
    )
    frame["correct"] = frame["language"] == frame["predicted"]
    frame.sort_values(["correct", "margin"], inplace=True, kind="stable")
    frame.to_csv(path, index=False)
    return path


def save_confusion_plot(
    matrix,
    labels: List[str],
    path: Path,
) -> Path:
    """Heatmap of the confusion matrix, each row scaled to the label's recall."""
    path.parent.mkdir(parents=True, exist_ok=True)
    matrix = np.asarray(matrix, dtype=np.float64)
    totals = matrix.sum(axis=1, keepdims=True)
    share = np.divide(matrix, totals, out=np.zeros_like(matrix), where=totals > 0)
    size = max(6, 0.6 * len(labels))
    plt.figure(figsize=(size + 2, size))
    sns.heatmap(
        share,
        annot=len(labels) <= 20,
        fmt=".2f",
        vmin=0.0,
        vmax=1.0,
        cmap="Purples",
        xticklabels=labels,
        yticklabels=labels,
    )
    plt.xlabel("Identified as")
    plt.ylabel("Labelled")
    plt.title("Language identification (row-normalized)")
    plt.tight_layout()
    plt.savefig(path)
    plt.close()
    return path


def save_margin_histogram(path: Path, margins: Dict[str, np.ndarray]) -> Path:
    """
    Overlaid histograms of best-minus-runner-up log-probability gaps, keyed by
    outcome (for example correct and wrong predictions).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    plt.figure(figsize=(8, 5))
    for name, values in margins.items():
        if len(values):
            sns.histplot(np.asarray(values), bins=30, label=name, alpha=0.5)
    plt.xlabel("Log-probability margin over the runner-up")
    plt.ylabel("Texts")
    plt.legend()
    plt.tight_layout()
    plt.savefig(path)
    plt.close()
    return path


__all__ = [
    "save_metrics_json",
    "save_predictions_csv",
    "save_confusion_plot",
    "save_margin_histogram",
]
