from collections import Counter

import pytest

from langid_engine.features.automaton import build_automaton


def _matches(automaton, text: bytes) -> Counter:
    found = Counter()
    state = 0
    for byte in text:
        state = int(automaton.nextmove[state, byte])
        start = int(automaton.output_s[state])
        for pos in range(start, start + int(automaton.output_c[state])):
            found[int(automaton.output[pos])] += 1
    return found


def test_overlapping_ngrams_are_all_reported():
    ngrams = ["he", "she", "his", "hers"]
    automaton = build_automaton(ngrams)
    found = _matches(automaton, b"ushers")
    assert found == Counter({0: 1, 1: 1, 3: 1})


def test_repeated_ngram_is_counted_each_time():
    automaton = build_automaton(["aa"])
    assert _matches(automaton, b"aaaa") == Counter({0: 3})


def test_transitions_are_total_and_in_range():
    automaton = build_automaton(["ab", "b", "é"])
    assert automaton.nextmove.shape == (automaton.num_states, 256)
    assert int(automaton.nextmove.max()) < automaton.num_states
    assert _matches(automaton, "café".encode("utf-8")) == Counter({2: 1})


def test_emission_ranges_fit_the_output_list():
    automaton = build_automaton(["abc", "bc", "c"])
    ends = automaton.output_s.astype(int) + automaton.output_c.astype(int)
    assert ends.max() <= automaton.output.size
    assert _matches(automaton, b"abc") == Counter({0: 1, 1: 1, 2: 1})


def test_duplicate_ngrams_are_rejected():
    with pytest.raises(ValueError):
        build_automaton(["ab", b"ab"])


def test_empty_ngram_is_rejected():
    with pytest.raises(ValueError):
        build_automaton(["ok", ""])
