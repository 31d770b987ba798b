"""
Compile a byte n-gram dictionary into the transition and emission tables the
tokenizer walks.

The result is an Aho-Corasick automaton expanded into a full DFA: every
``(state, byte)`` pair has a next state, and each state lists every dictionary
entry that ends at it, so overlapping matches are all reported by one pass.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Sequence, Union

import numpy as np

Ngram = Union[str, bytes]


@dataclass(frozen=True)
class Automaton:
    nextmove: np.ndarray
    output_c: np.ndarray
    output_s: np.ndarray
    output: np.ndarray

    @property
    def num_states(self) -> int:
        return self.nextmove.shape[0]


def _as_bytes(ngram: Ngram) -> bytes:
    return ngram.encode("utf-8") if isinstance(ngram, str) else bytes(ngram)


def build_automaton(ngrams: Sequence[Ngram]) -> Automaton:
    """
    Build the DFA for ``ngrams``; feature ``i`` is ``ngrams[i]``.
    """
    goto: List[Dict[int, int]] = [{}]
    emits: List[List[int]] = [[]]
    seen = set()
    for feat, ngram in enumerate(ngrams):
        pattern = _as_bytes(ngram)
        if not pattern:
            raise ValueError(f"Feature {feat} is an empty n-gram.")
        if pattern in seen:
            raise ValueError(f"Duplicate n-gram {pattern!r} at feature {feat}.")
        seen.add(pattern)
        state = 0
        for byte in pattern:
            child = goto[state].get(byte)
            if child is None:
                child = len(goto)
                goto.append({})
                emits.append([])
                goto[state][byte] = child
            state = child
        emits[state].append(feat)

    num_states = len(goto)
    nextmove = np.zeros((num_states, 256), dtype=np.uint32)
    fail = [0] * num_states
    queue = deque()
    for byte, child in goto[0].items():
        nextmove[0, byte] = child
        queue.append(child)

    # Breadth-first, so a state's failure target is complete before the state.
    while queue:
        state = queue.popleft()
        emits[state].extend(emits[fail[state]])
        nextmove[state] = nextmove[fail[state]]
        for byte, child in goto[state].items():
            fail[child] = int(nextmove[fail[state], byte])
            nextmove[state, byte] = child
            queue.append(child)

    output_c = np.zeros(num_states, dtype=np.uint32)
    output_s = np.zeros(num_states, dtype=np.uint32)
    flat: List[int] = []
    for state, feats in enumerate(emits):
        output_s[state] = len(flat)
        output_c[state] = len(feats)
        flat.extend(sorted(feats))

    return Automaton(
        nextmove=nextmove,
        output_c=output_c,
        output_s=output_s,
        output=np.asarray(flat, dtype=np.uint32),
    )


__all__ = ["Automaton", "build_automaton"]
