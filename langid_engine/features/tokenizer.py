"""
Turn raw bytes into feature counts by walking the model's automaton.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import numpy as np
from scipy import sparse
from sklearn.base import BaseEstimator, TransformerMixin
from tqdm import tqdm

from langid_engine.features.sparse_set import SparseSet


def as_byte_view(text) -> memoryview:
    """
    Return a flat unsigned-byte view of ``text``; ``str`` is encoded as UTF-8.
    """
    if isinstance(text, str):
        text = text.encode("utf-8")
    elif isinstance(text, np.ndarray):
        text = np.ascontiguousarray(text, dtype=np.uint8)
    return memoryview(text).cast("B")


def extract(
    model,
    text,
    state_set: Optional[SparseSet] = None,
    feature_set: Optional[SparseSet] = None,
) -> SparseSet:
    """
    Count every dictionary n-gram occurring in ``text``.

    The automaton is walked from state 0, each visited state is counted, and
    the state counts are then spread over the features each state emits.
    Results land in the model's scratch sets unless ``state_set`` and
    ``feature_set`` are given; the returned feature set is overwritten by the
    next call that uses the same sets.
    """
    own_states, own_feats = model.scratch()
    state_set = own_states if state_set is None else state_set
    feature_set = own_feats if feature_set is None else feature_set
    if state_set.capacity != model.num_states:
        raise ValueError(
            f"State set capacity {state_set.capacity} does not match "
            f"{model.num_states} model states."
        )
    if feature_set.capacity != model.num_feats:
        raise ValueError(
            f"Feature set capacity {feature_set.capacity} does not match "
            f"{model.num_feats} model features."
        )

    state_set.clear()
    feature_set.clear()

    nextmove, output_c, output_s, output = model.automaton_views()
    add_state = state_set.add
    state = 0
    for byte in as_byte_view(text):
        state = nextmove[(state << 8) | byte]
        add_state(state, 1)

    add_feature = feature_set.add
    for state, count in state_set.items():
        start = output_s[state]
        for pos in range(start, start + output_c[state]):
            add_feature(output[pos], count)
    return feature_set


class FeatureCountTransformer(BaseEstimator, TransformerMixin):
    """
    Sparse document-by-feature count matrix for a batch of texts.

    Holds its own scratch sets so it never disturbs the model's.
    """

    def __init__(self, model, show_progress: bool = False):
        self.model = model
        self.show_progress = show_progress

    def fit(self, X: Iterable, y=None):
        return self

    def transform(self, X: Iterable) -> sparse.csr_matrix:
        model = self.model
        state_set = SparseSet(model.num_states)
        feature_set = SparseSet(model.num_feats)
        indptr: List[int] = [0]
        indices: List[np.ndarray] = []
        data: List[np.ndarray] = []

        for text in tqdm(X, desc="Extracting features", disable=not self.show_progress):
            fv = extract(model, b"" if text is None else text, state_set, feature_set)
            indices.append(fv.indices().copy())
            data.append(fv.values().copy())
            indptr.append(indptr[-1] + len(fv))

        shape: Tuple[int, int] = (len(indptr) - 1, model.num_feats)
        if not indices:
            return sparse.csr_matrix(shape, dtype=np.float64)
        matrix = sparse.csr_matrix(
            (
                np.concatenate(data).astype(np.float64),
                np.concatenate(indices),
                np.asarray(indptr, dtype=np.int64),
            ),
            shape=shape,
        )
        matrix.sort_indices()
        return matrix


__all__ = ["as_byte_view", "extract", "FeatureCountTransformer"]
