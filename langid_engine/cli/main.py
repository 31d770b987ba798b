"""
Command-line driver for the language identifier.
"""
from __future__ import annotations

import logging
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from langid_engine.cli.filtering import LineFilter
from langid_engine.config.settings import (
    ARTIFACTS_DIR,
    DEFAULT_MODEL_SPEC_PATH,
    MODEL_PATH_ENVVAR,
    EvaluationConfig,
    FilterConfig,
    language_names,
    load_model_spec,
)
from langid_engine.eval.metrics import (
    classification_summary,
    compute_confusion,
    decision_scores,
    margin_summary,
    score_margins,
    top_k_accuracy,
)
from langid_engine.eval.reporting import (
    save_confusion_plot,
    save_margin_histogram,
    save_metrics_json,
    save_predictions_csv,
)
from langid_engine.models.classifier import build_pipeline, load_dataset
from langid_engine.models.inference import NOT_FOUND, identify, lookup_index
from langid_engine.models.model import (
    SNAPSHOT_SUFFIX,
    LanguageModel,
    ModelFormatError,
    Provenance,
    default,
    load,
    save_snapshot,
)
from langid_engine.models.protobuf_format import serialize_model

logger = logging.getLogger(__name__)

app = typer.Typer(help="Identify the language of text with a byte n-gram Naive Bayes model.")
err_console = Console(stderr=True)


@dataclass
class RunContext:
    """Per-invocation settings and the lazily loaded model."""

    model_path: Optional[Path]
    verbose: int = 0
    _model: Optional[LanguageModel] = None

    def model(self) -> LanguageModel:
        if self._model is None:
            try:
                self._model = load(self.model_path) if self.model_path else default()
            except (ModelFormatError, OSError) as exc:
                err_console.print(f"[bold red]Unable to load model: {exc}")
                raise typer.Exit(code=1) from exc
        return self._model

    def close(self) -> None:
        if self._model is not None:
            self._model.close()
            self._model = None


def _configure_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _run_detect(run: RunContext, source, sink) -> None:
    text = source.read()
    sink.write(f"{identify(run.model(), text)},{len(text)}\n")


def _run_interactive(run: RunContext) -> None:
    console = Console()
    model = run.model()
    console.print("langid interactive mode.")
    while True:
        try:
            line = console.input(">>> ")
        except EOFError:
            break
        if not line:
            break
        text = (line + "\n").encode("utf-8")
        console.print(f"{identify(model, text)},{len(text)}", markup=False, highlight=False)
    console.print("Bye!")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    model_path: Optional[Path] = typer.Option(
        None,
        "--model",
        "-m",
        envvar=MODEL_PATH_ENVVAR,
        help="Model file to load (protobuf or .joblib snapshot); built-in model if omitted.",
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Repeat for more log output."
    ),
) -> None:
    """
    Without a command, read stdin as one document (or prompt when stdin is a terminal).
    """
    _configure_logging(verbose)
    run = RunContext(model_path=model_path, verbose=verbose)
    ctx.obj = run
    ctx.call_on_close(run.close)
    if ctx.invoked_subcommand is None:
        if sys.stdin.isatty():
            _run_interactive(run)
        else:
            _run_detect(run, sys.stdin.buffer, sys.stdout)


@app.command()
def detect(
    ctx: typer.Context,
    source: typer.FileBinaryRead = typer.Option("-", "--input", "-f", help="Input file."),
    sink: typer.FileTextWrite = typer.Option("-", "--output", "-F", help="Output file."),
) -> None:
    """
    Classify the whole input as a single document.
    """
    _run_detect(ctx.obj, source, sink)


@app.command()
def lines(
    ctx: typer.Context,
    source: typer.FileBinaryRead = typer.Option("-", "--input", "-f", help="Input file."),
    sink: typer.FileTextWrite = typer.Option("-", "--output", "-F", help="Output file."),
) -> None:
    """
    Classify every input line separately.
    """
    model = ctx.obj.model()
    for line in source:
        sink.write(f"{identify(model, line)},{len(line)}\n")


def _classify_path(model: LanguageModel, path: Path) -> Tuple[str, int]:
    if not path.exists():
        return FilterConfig.no_file, 0
    if not path.is_file():
        return FilterConfig.not_file, 0
    try:
        size = path.stat().st_size
        data = np.memmap(path, dtype=np.uint8, mode="r") if size else b""
    except OSError as exc:
        logger.info("Cannot read %s: %s", path, exc)
        return FilterConfig.no_file, 0
    return identify(model, data), size


@app.command()
def batch(
    ctx: typer.Context,
    source: typer.FileBinaryRead = typer.Option(
        "-", "--input", "-f", help="File listing one path per line."
    ),
    sink: typer.FileTextWrite = typer.Option("-", "--output", "-F", help="Output file."),
) -> None:
    """
    Treat each input line as a path and classify that file's contents.
    """
    model = ctx.obj.model()
    for raw in source:
        name = raw.rstrip(b"\r\n")
        if not name:
            continue
        path = Path(name.decode(sys.getfilesystemencoding(), "surrogateescape"))
        lang, size = _classify_path(model, path)
        sink.write(f"{path},{size},{lang}\n")


@app.command()
def interactive(ctx: typer.Context) -> None:
    """
    Prompt for lines and classify each one; an empty line exits.
    """
    _run_interactive(ctx.obj)


@app.command("filter")
def filter_lines(
    ctx: typer.Context,
    source: typer.FileBinaryRead = typer.Option("-", "--input", "-f", help="Input file."),
    sink: typer.FileBinaryWrite = typer.Option(
        "-", "--output", "-F", help="Where kept lines go."
    ),
    lang: str = typer.Option(
        FilterConfig.target_language, "--lang", "-e", help="Language to keep."
    ),
    min_logprob: Optional[float] = typer.Option(
        None,
        "--min-logprob",
        "-L",
        help="Also keep lines whose per-byte log-probability gap to the best "
        "language is at least this (implies --tolerate).",
    ),
    tolerate: bool = typer.Option(
        False, "--tolerate", "-p", help="Keep near misses within --min-logprob."
    ),
    detok: bool = typer.Option(
        False, "--detok", "-d", help="Strip detokenization markers before classifying."
    ),
    detok_marker: Optional[str] = typer.Option(
        None, "--detok-marker", "-D", help="Marker string to strip (implies --detok)."
    ),
    bitext_in: Optional[Path] = typer.Option(
        None,
        "--bitext-in",
        "-i",
        exists=True,
        dir_okay=False,
        help="Parallel file filtered line by line with the input.",
    ),
    bitext_out: Optional[Path] = typer.Option(
        None, "--bitext-out", "-o", help="Where kept parallel lines go."
    ),
    bitext_lang: Optional[str] = typer.Option(
        None, "--bitext-lang", "-I", help="Language the parallel lines must also match."
    ),
    reject: Optional[Path] = typer.Option(
        None, "--reject", "-j", help="Where rejected lines go."
    ),
) -> None:
    """
    Keep only the lines identified as --lang (grep mode).
    """
    if (bitext_in is None) != (bitext_out is None):
        raise typer.BadParameter("--bitext-in and --bitext-out must be given together.")
    if bitext_lang and bitext_in is None:
        raise typer.BadParameter("--bitext-lang requires --bitext-in.")

    run: RunContext = ctx.obj
    model = run.model()
    target_index = lookup_index(model, lang)
    if target_index is NOT_FOUND:
        logger.warning("Language %s is not in the model; keeping every line.", lang)
    bitext_index = lookup_index(model, bitext_lang) if bitext_lang else NOT_FOUND

    marker = None
    if detok or detok_marker is not None:
        marker = (detok_marker or FilterConfig.detok_marker).encode("utf-8")

    with ExitStack() as stack:
        bitext = stack.enter_context(bitext_in.open("rb")) if bitext_in else None
        bitext_sink = stack.enter_context(bitext_out.open("wb")) if bitext_out else None
        reject_sink = stack.enter_context(reject.open("wb")) if reject else None
        line_filter = LineFilter(
            model,
            tolerate=tolerate or min_logprob is not None,
            min_logprob=FilterConfig.min_logprob if min_logprob is None else min_logprob,
            detok_marker=marker,
            reject=reject_sink,
            verbose=run.verbose,
            console=err_console,
        )
        for line in source:
            line_filter.next_line()
            if line_filter.likely_enough(line, lang, target_index):
                sink.write(line)
                if bitext is None:
                    continue
                other = bitext.readline()
                if not other:
                    err_console.print("[bold red]--bitext-in file had too few lines")
                    raise typer.Exit(code=1)
                if line_filter.likely_enough(other, bitext_lang, bitext_index):
                    bitext_sink.write(other)
            elif bitext is not None:
                bitext.readline()

    logger.info("Rejected %d of %d lines", line_filter.filtered, line_filter.total)


@app.command("inspect")
def inspect_model(ctx: typer.Context) -> None:
    """
    Show model dimensions and languages.
    """
    model = ctx.obj.model()
    names = {}
    if model.provenance is Provenance.BUILTIN:
        names = language_names(load_model_spec(DEFAULT_MODEL_SPEC_PATH))
    rprint(
        f"[bold]{model.provenance.value}[/bold] model: {model.num_states} states, "
        f"{model.num_feats} features, {model.num_langs} languages"
    )
    table = Table("index", "language", "name", "prior")
    for i, (code, prior) in enumerate(zip(model.classes, model.prior)):
        table.add_row(str(i), code, names.get(code, ""), f"{prior:.4f}")
    rprint(table)


@app.command()
def export(
    ctx: typer.Context,
    output_path: Path = typer.Argument(
        ..., help="Destination; .joblib writes a snapshot, anything else protobuf."
    ),
) -> None:
    """
    Write the current model to disk.
    """
    model = ctx.obj.model()
    if output_path.suffix == SNAPSHOT_SUFFIX:
        save_snapshot(model, output_path)
    else:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(serialize_model(model.tables))
    rprint(f"[bold green]Saved model to {output_path}")


@app.command()
def evaluate(
    ctx: typer.Context,
    dataset_path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="CSV with text/language columns."
    ),
    output_path: Path = typer.Option(
        ARTIFACTS_DIR / "evaluation", help="Prefix for the metrics and plot files."
    ),
    languages: Optional[List[str]] = typer.Option(
        None, help="Subset of language codes to keep."
    ),
    top_k: int = typer.Option(EvaluationConfig.top_k, "--top-k", "-k"),
) -> None:
    """
    Score a labelled dataset; write metrics, per-text predictions and plots.
    """
    model = ctx.obj.model()
    df = load_dataset(dataset_path, languages)
    pipeline = build_pipeline(model, show_progress=EvaluationConfig.show_progress)
    scores = decision_scores(pipeline, df["text"])
    classes = list(model.classes)
    y_true = df["language"].astype(str).to_numpy()
    y_pred = np.asarray(classes, dtype=object)[np.argmax(scores, axis=1)]

    metrics = {
        "summary": classification_summary(y_true, y_pred),
        "top_k": {"k": top_k, "accuracy": top_k_accuracy(scores, classes, y_true, k=top_k)},
        "margin": margin_summary(scores),
    }
    labels = sorted(set(y_true) | set(y_pred))
    metrics_path = save_metrics_json(output_path.with_suffix(".metrics.json"), metrics)
    conf_path = save_confusion_plot(
        compute_confusion(y_true, y_pred, labels=labels),
        labels=labels,
        path=output_path.with_suffix(".confusion.png"),
    )
    predictions_path = save_predictions_csv(
        output_path.with_suffix(".predictions.csv"), df["text"], y_true, scores, classes
    )
    correct = y_true == y_pred
    margins = score_margins(scores)
    save_margin_histogram(
        output_path.with_suffix(".margins.png"),
        {"correct": margins[correct], "wrong": margins[~correct]},
    )
    rprint(f"[bold green]Accuracy: {metrics['summary']['accuracy']:.4f}")
    rprint(f"[cyan]Metrics JSON → {metrics_path}")
    rprint(f"[cyan]Confusion matrix → {conf_path}")
    rprint(f"[cyan]Predictions → {predictions_path}")
    rprint("Top-k accuracy:", metrics["top_k"])


if __name__ == "__main__":
    app()
