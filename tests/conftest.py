import numpy as np
import pytest

from langid_engine.models.model import LanguageModel, Provenance, compile_model_spec
from langid_engine.models.tables import ModelTables


def two_state_tables() -> ModelTables:
    """
    Every byte goes to state 0 except 'a', which goes to state 1; state 1
    emits feature 0, scored +1 for the first language and -1 for the second.
    """
    nextmove = np.zeros((2, 256), dtype=np.uint32)
    nextmove[:, ord("a")] = 1
    return ModelTables.from_flat(
        num_feats=1,
        num_langs=2,
        num_states=2,
        nextmove=nextmove,
        output_c=np.array([0, 1], dtype=np.uint32),
        output_s=np.array([0, 0], dtype=np.uint32),
        output=np.array([0], dtype=np.uint32),
        prior=np.array([0.0, 0.0]),
        likelihood=np.array([[1.0, -1.0]]),
        classes=["xx", "yy"],
    )


SMALL_SPEC = {
    "floor_logprob": -5.0,
    "languages": [
        {"code": "en", "prior": -1.0},
        {"code": "fr", "prior": -0.5},
    ],
    "features": [
        {"ngram": "the", "logprob": {"en": -1.0}},
        {"ngram": "he", "logprob": {"en": -2.0}},
        {"ngram": "le", "logprob": {"fr": -1.0}},
        {"ngram": "é", "logprob": {"fr": -1.5}},
    ],
}


@pytest.fixture
def toy_model():
    model = LanguageModel(two_state_tables(), Provenance.BUILTIN)
    yield model
    model.close()


@pytest.fixture
def small_model():
    model = LanguageModel(compile_model_spec(SMALL_SPEC), Provenance.BUILTIN)
    yield model
    model.close()
