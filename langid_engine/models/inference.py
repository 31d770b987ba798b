"""
Naive Bayes scoring and decision helpers for the language identifier.
"""
from __future__ import annotations

from pathlib import Path
from typing import NamedTuple, Optional

import numpy as np

from langid_engine.features.sparse_set import SparseSet
from langid_engine.features.tokenizer import extract
from langid_engine.models.model import LanguageModel, default, load

# Returned by lookup_index for unknown class names; never a valid index.
NOT_FOUND = None


class LikelyLanguage(NamedTuple):
    lang: str
    index: int
    logprob: float


def score(
    model: LanguageModel,
    feature_set: SparseSet,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Unnormalized log-posterior of every language: the prior plus the
    count-weighted per-feature log-likelihoods.
    """
    if feature_set.capacity != model.num_feats:
        raise ValueError(
            f"Feature set capacity {feature_set.capacity} does not match "
            f"{model.num_feats} model features."
        )
    if out is None:
        out = np.empty(model.num_langs, dtype=np.float64)
    elif out.shape != (model.num_langs,):
        raise ValueError(f"Log-probability buffer must have shape ({model.num_langs},).")
    np.copyto(out, model.prior)
    if len(feature_set):
        out += feature_set.values() @ model.likelihood[feature_set.indices()]
    return out


def decide_argmax(logprob: np.ndarray) -> int:
    """Index of the best score; the lowest index wins ties."""
    return int(np.argmax(logprob))


def normalize(logprob: np.ndarray) -> np.ndarray:
    """
    Shift scores in place so the best is 0 and the rest are log-ratios to it.
    """
    logprob -= logprob.max()
    return logprob


def lang_name(model: LanguageModel, index: int) -> str:
    if not 0 <= index < model.num_langs:
        raise IndexError(f"language index {index} outside [0, {model.num_langs})")
    return model.classes[index]


def lookup_index(model: LanguageModel, name: str) -> Optional[int]:
    """
    Index of the class called ``name`` (exact match), or ``NOT_FOUND``.
    """
    for i, candidate in enumerate(model.classes):
        if candidate == name:
            return i
    return NOT_FOUND


def identify_logprobs(
    model: LanguageModel,
    text,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    return score(model, extract(model, text), out=out)


def identify_logprob(model: LanguageModel, index: int, text) -> float:
    """Raw log-probability of one language for ``text``."""
    lang_name(model, index)
    return float(identify_logprobs(model, text)[index])


def identify_index(model: LanguageModel, text) -> int:
    return decide_argmax(identify_logprobs(model, text))


def identify(model: LanguageModel, text) -> str:
    """
    Name of the most likely language of ``text`` (bytes or str).
    """
    return model.classes[identify_index(model, text)]


def likeliest(model: LanguageModel, logprob: np.ndarray) -> LikelyLanguage:
    index = decide_argmax(logprob)
    return LikelyLanguage(model.classes[index], index, float(logprob[index]))


def identify_with_margin(
    model: LanguageModel,
    text,
    out: Optional[np.ndarray] = None,
) -> LikelyLanguage:
    """
    Best language together with its raw log-probability.

    Pass ``out`` to keep the full score vector for margin checks afterwards.
    """
    return likeliest(model, identify_logprobs(model, text, out=out))


def predict_language(
    text,
    model: LanguageModel | None = None,
    model_path: Path | None = None,
) -> dict:
    """
    Score ``text`` against every language and return a ranked summary.
    """
    owned = model is None
    if owned:
        model = load(model_path) if model_path is not None else default()
    try:
        scores = identify_logprobs(model, text)
        classes = model.classes
    finally:
        if owned:
            model.close()

    probs = np.exp(scores - np.max(scores))
    probs = probs / probs.sum()
    ranked = sorted(
        [
            {"language": lang, "score": float(s), "probability": float(p)}
            for lang, s, p in zip(classes, scores, probs)
        ],
        key=lambda item: item["score"],
        reverse=True,
    )
    return {
        "top_language": ranked[0]["language"],
        "top_score": ranked[0]["score"],
        "top_probability": ranked[0]["probability"],
        "ranked": ranked,
    }


__all__ = [
    "NOT_FOUND",
    "LikelyLanguage",
    "score",
    "decide_argmax",
    "normalize",
    "lang_name",
    "lookup_index",
    "identify_logprobs",
    "identify_logprob",
    "identify_index",
    "identify",
    "likeliest",
    "identify_with_margin",
    "predict_language",
]
