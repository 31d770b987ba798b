import numpy as np
import pytest

from langid_engine.features.sparse_set import SparseSet
from langid_engine.features.tokenizer import FeatureCountTransformer, extract


def test_walk_counts_features_of_visited_states(toy_model):
    fv = extract(toy_model, b"aa")
    assert list(fv.items()) == [(0, 2)]


def test_states_without_emissions_give_no_features(toy_model):
    fv = extract(toy_model, b"bb")
    assert len(fv) == 0


def test_empty_text_gives_empty_feature_vector(small_model):
    assert len(extract(small_model, b"")) == 0
    assert len(extract(small_model, "")) == 0


def test_overlapping_ngrams_counted_in_one_pass(small_model):
    fv = extract(small_model, "the theme")
    # "the" twice, "he" twice (inside each "the")
    assert fv.count(0) == 2
    assert fv.count(1) == 2
    assert 2 not in fv


def test_str_is_encoded_as_utf8(small_model):
    from_str = dict(extract(small_model, "café le").items())
    from_bytes = dict(extract(small_model, "café le".encode("utf-8")).items())
    assert from_str == from_bytes
    assert from_str[3] == 1


def test_every_byte_value_is_walked(toy_model):
    text = bytes(range(256))
    fv = extract(toy_model, text)
    assert list(fv.items()) == [(0, 1)]
    states, _ = toy_model.scratch()
    assert states.count(0) == 255
    assert states.count(1) == 1

    as_array = np.frombuffer(text * 2, dtype=np.uint8)
    assert list(extract(toy_model, as_array).items()) == [(0, 2)]


def test_scratch_sets_are_cleared_between_calls(toy_model):
    extract(toy_model, b"aaaa")
    fv = extract(toy_model, b"a")
    assert list(fv.items()) == [(0, 1)]


def test_caller_supplied_sets_leave_scratch_untouched(toy_model):
    extract(toy_model, b"aa")
    states, feats = SparseSet(toy_model.num_states), SparseSet(toy_model.num_feats)
    fv = extract(toy_model, b"aaa", states, feats)
    assert fv is feats
    assert fv.count(0) == 3
    _, scratch_feats = toy_model.scratch()
    assert scratch_feats.count(0) == 2


def test_mismatched_sets_are_rejected(toy_model):
    with pytest.raises(ValueError):
        extract(toy_model, b"a", SparseSet(5), SparseSet(toy_model.num_feats))
    with pytest.raises(ValueError):
        extract(toy_model, b"a", SparseSet(toy_model.num_states), SparseSet(3))


def test_memory_mapped_input(tmp_path, small_model):
    path = tmp_path / "doc.txt"
    path.write_bytes("the le thé".encode("utf-8"))
    mapped = np.memmap(path, dtype=np.uint8, mode="r")
    expected = dict(extract(small_model, path.read_bytes()).items())
    assert dict(extract(small_model, mapped).items()) == expected


def test_transformer_matches_extract(small_model):
    texts = ["the theme", "", "le café", b"\xff\xfe"]
    X = FeatureCountTransformer(small_model).fit_transform(texts)
    assert X.shape == (4, small_model.num_feats)
    for row, text in enumerate(texts):
        expected = np.zeros(small_model.num_feats)
        for feat, count in extract(small_model, text).items():
            expected[feat] = count
        np.testing.assert_array_equal(X[row].toarray().ravel(), expected)


def test_transformer_does_not_disturb_model_scratch(toy_model):
    extract(toy_model, b"aa")
    FeatureCountTransformer(toy_model).transform([b"aaaa", b"b"])
    _, scratch_feats = toy_model.scratch()
    assert scratch_feats.count(0) == 2


def test_transformer_on_no_texts(small_model):
    X = FeatureCountTransformer(small_model).transform([])
    assert X.shape == (0, small_model.num_feats)
