"""
Parameter tables shared by every model source (built-in, protobuf, snapshot).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


class ModelFormatError(ValueError):
    """Raised when model data is malformed or internally inconsistent."""


@dataclass(frozen=True)
class ModelTables:
    """
    Automaton and Naive Bayes parameters of one model.

    Array fields may be views into a memory-mapped file; they are never
    written to.
    """

    num_feats: int
    num_langs: int
    num_states: int
    nextmove: np.ndarray  # (num_states, 256)
    output_c: np.ndarray  # (num_states,)
    output_s: np.ndarray  # (num_states,)
    output: np.ndarray
    prior: np.ndarray  # (num_langs,)
    likelihood: np.ndarray  # (num_feats, num_langs)
    classes: Tuple[str, ...]

    @classmethod
    def from_flat(
        cls,
        num_feats: int,
        num_langs: int,
        num_states: int,
        nextmove: np.ndarray,
        output_c: np.ndarray,
        output_s: np.ndarray,
        output: np.ndarray,
        prior: np.ndarray,
        likelihood: np.ndarray,
        classes,
    ) -> "ModelTables":
        """
        Shape flat arrays (as stored on disk) into tables and validate them.
        """
        num_feats, num_langs, num_states = int(num_feats), int(num_langs), int(num_states)
        for name, value in (
            ("num_feats", num_feats),
            ("num_langs", num_langs),
            ("num_states", num_states),
        ):
            if value <= 0:
                raise ModelFormatError(f"{name} must be positive, got {value}.")
        _check_length("tk_nextmove", nextmove, num_states * 256)
        _check_length("nb_ptc", likelihood, num_feats * num_langs)
        tables = cls(
            num_feats=num_feats,
            num_langs=num_langs,
            num_states=num_states,
            nextmove=np.asarray(nextmove).reshape(num_states, 256),
            output_c=np.asarray(output_c),
            output_s=np.asarray(output_s),
            output=np.asarray(output),
            prior=np.asarray(prior),
            likelihood=np.asarray(likelihood).reshape(num_feats, num_langs),
            classes=tuple(classes),
        )
        tables.validate()
        return tables

    def validate(self) -> None:
        """
        Check every invariant the tokenizer and scorer rely on.
        """
        if self.nextmove.shape != (self.num_states, 256):
            raise ModelFormatError(
                f"Transition table has shape {self.nextmove.shape}, "
                f"expected ({self.num_states}, 256)."
            )
        _check_length("tk_output_c", self.output_c, self.num_states)
        _check_length("tk_output_s", self.output_s, self.num_states)
        _check_length("nb_pc", self.prior, self.num_langs)
        if self.likelihood.shape != (self.num_feats, self.num_langs):
            raise ModelFormatError(
                f"Likelihood table has shape {self.likelihood.shape}, "
                f"expected ({self.num_feats}, {self.num_langs})."
            )
        if len(self.classes) != self.num_langs:
            raise ModelFormatError(
                f"Model declares {self.num_langs} languages but names {len(self.classes)}."
            )
        if len(set(self.classes)) != len(self.classes):
            raise ModelFormatError("Class names must be unique.")
        for name, array in (
            ("tk_nextmove", self.nextmove),
            ("tk_output_c", self.output_c),
            ("tk_output_s", self.output_s),
            ("tk_output", self.output),
        ):
            _check_index_array(name, array)
        for name, array in (("nb_pc", self.prior), ("nb_ptc", self.likelihood)):
            if array.dtype.kind != "f":
                raise ModelFormatError(f"{name} must hold floats, got {array.dtype}.")
        if self.nextmove.size and int(self.nextmove.max()) >= self.num_states:
            raise ModelFormatError("Transition table targets a state beyond num_states.")
        ends = self.output_s.astype(np.int64) + self.output_c.astype(np.int64)
        if ends.size and int(ends.max()) > self.output.size:
            raise ModelFormatError("Emission range runs past the end of tk_output.")
        if self.output.size and int(self.output.max()) >= self.num_feats:
            raise ModelFormatError("Emission list names a feature beyond num_feats.")

    def arrays(self) -> dict:
        """Flat, on-disk layout of the tables."""
        return {
            "num_feats": self.num_feats,
            "num_langs": self.num_langs,
            "num_states": self.num_states,
            "tk_nextmove": self.nextmove.reshape(-1),
            "tk_output_c": self.output_c,
            "tk_output_s": self.output_s,
            "tk_output": self.output,
            "nb_pc": self.prior,
            "nb_ptc": self.likelihood.reshape(-1),
            "nb_classes": list(self.classes),
        }


def _check_length(name: str, array, expected: int) -> None:
    size = np.asarray(array).size
    if size != expected:
        raise ModelFormatError(f"{name} has {size} entries, expected {expected}.")


def _check_index_array(name: str, array: np.ndarray) -> None:
    # the tokenizer reads these through memoryviews as plain non-negative ints
    if array.dtype.kind not in "iu" or not array.dtype.isnative:
        raise ModelFormatError(f"{name} must hold native-order integers, got {array.dtype}.")
    if array.dtype.kind == "i" and array.size and int(array.min()) < 0:
        raise ModelFormatError(f"{name} holds negative entries.")


__all__ = ["ModelFormatError", "ModelTables"]
