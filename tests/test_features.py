import numpy as np
import pandas as pd
import pytest

from langid_engine.eval.metrics import (
    decision_scores,
    margin_summary,
    score_margins,
    top_k_accuracy,
)
from langid_engine.eval.reporting import save_predictions_csv
from langid_engine.models.classifier import NaiveBayesScorer, build_pipeline
from langid_engine.models.inference import identify, identify_logprobs
from langid_engine.models.model import default

TEXTS = [
    "The cat sat on the mat and the dog was with you.",
    "Der Hund und die Katze, das ist nicht schön.",
    "Le chat est sur la table et les enfants.",
    "",
]


def test_pipeline_scores_match_single_text_scoring():
    with default() as model:
        pipeline = build_pipeline(model)
        scores = decision_scores(pipeline, TEXTS)
        assert scores.shape == (len(TEXTS), model.num_langs)
        for row, text in enumerate(TEXTS):
            np.testing.assert_allclose(scores[row], identify_logprobs(model, text))


def test_pipeline_predicts_like_identify():
    with default() as model:
        pipeline = build_pipeline(model)
        predicted = pipeline.predict(TEXTS)
        assert list(predicted) == [identify(model, text) for text in TEXTS]


def test_predict_proba_rows_sum_to_one():
    with default() as model:
        pipeline = build_pipeline(model)
        X = pipeline.named_steps["vectorizer"].transform(TEXTS)
        proba = pipeline.named_steps["classifier"].predict_proba(X)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        assert list(pipeline.named_steps["classifier"].classes_) == list(model.classes)


def test_scorer_rejects_wrong_feature_width(small_model):
    scorer = NaiveBayesScorer(small_model).fit()
    with pytest.raises(ValueError):
        scorer.decision_function(np.zeros((1, small_model.num_feats + 1)))


def test_top_k_accuracy_counts_runner_up_hits():
    scores = np.array([[0.0, -1.0, -2.0], [-3.0, -1.0, 0.0]])
    classes = ["a", "b", "c"]
    assert top_k_accuracy(scores, classes, ["a", "b"], k=1) == 0.5
    assert top_k_accuracy(scores, classes, ["a", "b"], k=2) == 1.0


def test_margin_summary():
    scores = np.array([[0.0, -1.0, -2.0], [-3.0, -1.0, 0.0]])
    summary = margin_summary(scores)
    assert summary["min"] == pytest.approx(1.0)
    assert summary["mean"] == pytest.approx(1.0)


def test_score_margins_single_language_is_zero():
    np.testing.assert_array_equal(score_margins(np.array([[1.0], [2.0]])), [0.0, 0.0])


def test_predictions_csv_lists_mistakes_first(tmp_path):
    scores = np.array([[0.0, -5.0], [-1.0, -1.5], [-4.0, 0.0]])
    path = save_predictions_csv(
        tmp_path / "predictions.csv",
        ["first", "second", "third"],
        ["a", "b", "b"],
        scores,
        ["a", "b"],
    )
    frame = pd.read_csv(path)
    assert frame["text"].tolist() == ["second", "third", "first"]
    assert frame["correct"].tolist() == [False, True, True]
    assert frame["margin"].tolist() == pytest.approx([0.5, 4.0, 5.0])
