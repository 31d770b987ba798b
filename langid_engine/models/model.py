"""
Language identifier models: the built-in default, loading from disk, and the
per-instance scratch space reused by every classification call.
"""
from __future__ import annotations

import enum
import logging
import pickle
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

import joblib
import numpy as np

from langid_engine.config.settings import (
    DEFAULT_MODEL_SPEC_PATH,
    language_codes,
    load_model_spec,
)
from langid_engine.features.automaton import build_automaton
from langid_engine.features.sparse_set import SparseSet
from langid_engine.models.protobuf_format import parse_model
from langid_engine.models.tables import ModelFormatError, ModelTables

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".joblib"


class Provenance(enum.Enum):
    BUILTIN = "built-in"
    LOADED = "loaded"


class ModelClosedError(RuntimeError):
    """Raised when a model is used after :meth:`LanguageModel.close`."""


class LanguageModel:
    """
    Read-only model tables plus the scratch sets used while classifying.

    The tables may be shared between instances (see :meth:`fork`); the
    scratch sets are not, so a single instance must not classify from two
    threads at once.
    """

    def __init__(self, tables: ModelTables, provenance: Provenance, backing=None):
        if provenance is Provenance.BUILTIN and backing is not None:
            raise ValueError("Built-in models have no backing buffer.")
        self.provenance = provenance
        self._tables: Optional[ModelTables] = tables
        self._backing = backing
        self._state_set: Optional[SparseSet] = SparseSet(tables.num_states)
        self._feature_set: Optional[SparseSet] = SparseSet(tables.num_feats)
        # Flat memoryviews give the tokenizer plain-int scalar reads.
        self._nextmove = memoryview(np.ascontiguousarray(tables.nextmove).reshape(-1))
        self._output_c = memoryview(np.ascontiguousarray(tables.output_c))
        self._output_s = memoryview(np.ascontiguousarray(tables.output_s))
        self._output = memoryview(np.ascontiguousarray(tables.output))

    @property
    def tables(self) -> ModelTables:
        if self._tables is None:
            raise ModelClosedError("Model has been closed.")
        return self._tables

    @property
    def closed(self) -> bool:
        return self._tables is None

    @property
    def num_feats(self) -> int:
        return self.tables.num_feats

    @property
    def num_langs(self) -> int:
        return self.tables.num_langs

    @property
    def num_states(self) -> int:
        return self.tables.num_states

    @property
    def prior(self) -> np.ndarray:
        return self.tables.prior

    @property
    def likelihood(self) -> np.ndarray:
        return self.tables.likelihood

    @property
    def classes(self) -> Tuple[str, ...]:
        return self.tables.classes

    def scratch(self) -> Tuple[SparseSet, SparseSet]:
        """The (state, feature) sets owned by this instance."""
        if self._state_set is None or self._feature_set is None:
            raise ModelClosedError("Model has been closed.")
        return self._state_set, self._feature_set

    def automaton_views(self) -> Tuple[memoryview, memoryview, memoryview, memoryview]:
        """Flat (nextmove, output_c, output_s, output) views for the tokenizer."""
        if self._nextmove is None:
            raise ModelClosedError("Model has been closed.")
        return self._nextmove, self._output_c, self._output_s, self._output

    def fork(self) -> "LanguageModel":
        """
        Return a new instance sharing these tables with its own scratch sets.
        """
        return LanguageModel(self.tables, self.provenance, backing=self._backing)

    def close(self) -> None:
        """
        Drop the scratch sets and, for loaded models, this instance's hold on
        the backing buffer. Calling it again does nothing.
        """
        if self._tables is None:
            return
        if self.provenance is Provenance.LOADED:
            logger.debug("Releasing model backing buffer")
            self._backing = None
        self._state_set = None
        self._feature_set = None
        self._nextmove = self._output_c = self._output_s = self._output = None
        self._tables = None

    def __enter__(self) -> "LanguageModel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        if self.closed:
            return f"LanguageModel({self.provenance.value}, closed)"
        return (
            f"LanguageModel({self.provenance.value}, states={self.num_states}, "
            f"feats={self.num_feats}, langs={self.num_langs})"
        )


def compile_model_spec(spec: dict) -> ModelTables:
    """
    Turn a model description (n-gram dictionary plus per-language
    log-likelihoods) into tables.
    """
    codes = language_codes(spec)
    column = {code: i for i, code in enumerate(codes)}
    floor = float(spec["floor_logprob"])
    features = spec["features"]
    if not features:
        raise ValueError("Model spec declares no features.")

    automaton = build_automaton([entry["ngram"] for entry in features])
    likelihood = np.full((len(features), len(codes)), floor, dtype=np.float64)
    for row, entry in enumerate(features):
        for code, value in (entry.get("logprob") or {}).items():
            if code not in column:
                raise ValueError(f"Feature {entry['ngram']!r} scores unknown language {code!r}.")
            likelihood[row, column[code]] = float(value)
    prior = np.array([float(entry["prior"]) for entry in spec["languages"]], dtype=np.float64)

    return ModelTables.from_flat(
        num_feats=len(features),
        num_langs=len(codes),
        num_states=automaton.num_states,
        nextmove=automaton.nextmove,
        output_c=automaton.output_c,
        output_s=automaton.output_s,
        output=automaton.output,
        prior=prior,
        likelihood=likelihood,
        classes=codes,
    )


@lru_cache(maxsize=1)
def _builtin_tables() -> ModelTables:
    tables = compile_model_spec(load_model_spec(DEFAULT_MODEL_SPEC_PATH))
    for array in (
        tables.nextmove,
        tables.output_c,
        tables.output_s,
        tables.output,
        tables.prior,
        tables.likelihood,
    ):
        array.flags.writeable = False
    return tables


def default() -> LanguageModel:
    """
    Return a model over the built-in tables.
    """
    return LanguageModel(_builtin_tables(), Provenance.BUILTIN)


def _map_file(path: Path) -> np.memmap:
    try:
        return np.memmap(path, dtype=np.uint8, mode="r")
    except ValueError as exc:
        # numpy refuses to map empty files
        raise ModelFormatError(f"Cannot map model file {path}: {exc}") from exc


def _load_snapshot(path: Path) -> ModelTables:
    try:
        payload = joblib.load(path, mmap_mode="r")
    except (EOFError, ValueError, pickle.UnpicklingError) as exc:
        raise ModelFormatError(f"Cannot read model snapshot {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ModelFormatError(f"Model snapshot {path} does not hold a table mapping.")
    try:
        return ModelTables.from_flat(
            num_feats=payload["num_feats"],
            num_langs=payload["num_langs"],
            num_states=payload["num_states"],
            nextmove=payload["tk_nextmove"],
            output_c=payload["tk_output_c"],
            output_s=payload["tk_output_s"],
            output=payload["tk_output"],
            prior=payload["nb_pc"],
            likelihood=payload["nb_ptc"],
            classes=payload["nb_classes"],
        )
    except KeyError as exc:
        raise ModelFormatError(f"Model snapshot {path} is missing {exc}.") from exc


def load(path) -> LanguageModel:
    """
    Load a model file, keeping its large tables as views into the mapped file.

    ``*.joblib`` files are table snapshots written by :func:`save_snapshot`;
    anything else is read as a serialized ``langid.LanguageIdentifier``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model not found at {path}.")
    if path.is_dir():
        raise ModelFormatError(f"Model path {path} is a directory.")
    logger.debug("Loading a model from %s", path)

    if path.suffix == SNAPSHOT_SUFFIX:
        tables = _load_snapshot(path)
        backing = tables
    else:
        buffer = _map_file(path)
        tables = parse_model(buffer)
        backing = buffer

    logger.debug(
        "num_feats: %d num_langs: %d num_states: %d",
        tables.num_feats,
        tables.num_langs,
        tables.num_states,
    )
    for name, prior in zip(tables.classes, tables.prior):
        logger.debug("  lang: %s prior: %f", name, prior)
    return LanguageModel(tables, Provenance.LOADED, backing=backing)


def save_snapshot(model: LanguageModel, path) -> Path:
    """
    Write the model's tables uncompressed, so :func:`load` can memory-map them.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        key: (np.ascontiguousarray(value) if isinstance(value, np.ndarray) else value)
        for key, value in model.tables.arrays().items()
    }
    joblib.dump(payload, path)
    logger.debug("Wrote model snapshot to %s", path)
    return path


__all__ = [
    "LanguageModel",
    "ModelClosedError",
    "ModelFormatError",
    "Provenance",
    "compile_model_spec",
    "default",
    "load",
    "save_snapshot",
]
