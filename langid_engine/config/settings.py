"""
Global configuration for the byte-level language identifier.
"""
from pathlib import Path
from typing import Dict, List

import yaml

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = PACKAGE_ROOT / "config"
ARTIFACTS_DIR = Path("artifacts")

# Byte n-gram dictionary and Naive Bayes parameters of the built-in model.
DEFAULT_MODEL_SPEC_PATH = CONFIG_DIR / "default_model.yaml"

# Environment variable the CLI consults when --model is not given.
MODEL_PATH_ENVVAR = "LANGID_MODEL"


class FilterConfig:
    """Defaults for the line filter (grep mode)."""

    target_language = "en"
    min_logprob = -0.1
    detok_marker = "__LW_AT__"
    no_file = "NOSUCHFILE"
    not_file = "NOTAFILE"


class EvaluationConfig:
    """Settings used when scoring a labelled dataset."""

    top_k = 3
    show_progress = True


def load_model_spec(path: Path = DEFAULT_MODEL_SPEC_PATH) -> dict:
    """
    Read a model description YAML and check its top-level layout.
    """
    with Path(path).open("r", encoding="utf-8") as f:
        payload = yaml.safe_load(f) or {}
    missing = {"languages", "floor_logprob", "features"} - set(payload)
    if missing:
        raise ValueError(f"Model spec {path} is missing keys: {sorted(missing)}")
    if not payload["languages"]:
        raise ValueError(f"Model spec {path} declares no languages.")
    return payload


def language_names(spec: dict) -> Dict[str, str]:
    return {entry["code"]: entry.get("name", entry["code"]) for entry in spec["languages"]}


def language_codes(spec: dict) -> List[str]:
    return [entry["code"] for entry in spec["languages"]]


__all__ = [
    "PACKAGE_ROOT",
    "CONFIG_DIR",
    "ARTIFACTS_DIR",
    "DEFAULT_MODEL_SPEC_PATH",
    "MODEL_PATH_ENVVAR",
    "FilterConfig",
    "EvaluationConfig",
    "load_model_spec",
    "language_names",
    "language_codes",
]
