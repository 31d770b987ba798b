import json

from typer.testing import CliRunner

from langid_engine.cli.main import app
from langid_engine.models.protobuf_format import serialize_model

from conftest import two_state_tables

runner = CliRunner()

EN = "the cat and the dog were with you\n"
DE = "der Hund und die Katze sind nicht da\n"
FR = "le chat est sur la table et les enfants\n"


def test_detect_reads_whole_input_as_one_document():
    text = EN + "and the house was with the garden\n"
    result = runner.invoke(app, ["detect"], input=text)
    assert result.exit_code == 0, result.output
    assert result.stdout == f"en,{len(text)}\n"


def test_default_command_reads_stdin_when_not_a_terminal():
    result = runner.invoke(app, [], input=DE)
    assert result.exit_code == 0, result.output
    assert result.stdout == f"de,{len(DE)}\n"


def test_lines_classifies_each_line():
    result = runner.invoke(app, ["lines"], input=EN + DE + FR)
    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == [
        f"en,{len(EN)}",
        f"de,{len(DE)}",
        f"fr,{len(FR)}",
    ]


def test_batch_classifies_listed_files(tmp_path):
    english = tmp_path / "english.txt"
    english.write_text(EN * 3, encoding="utf-8")
    empty = tmp_path / "empty.txt"
    empty.write_bytes(b"")
    missing = tmp_path / "missing.txt"
    listing = "\n".join(str(p) for p in (english, empty, missing, tmp_path)) + "\n"

    result = runner.invoke(app, ["batch"], input=listing)
    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == [
        f"{english},{len(EN) * 3},en",
        f"{empty},0,en",
        f"{missing},0,NOSUCHFILE",
        f"{tmp_path},0,NOTAFILE",
    ]


def test_interactive_prompts_until_empty_line():
    result = runner.invoke(app, ["interactive"], input="der Hund und die Katze\n\n")
    assert result.exit_code == 0, result.output
    assert "de,23" in result.stdout
    assert result.stdout.rstrip().endswith("Bye!")


def test_filter_keeps_target_language_lines(tmp_path):
    reject = tmp_path / "rejected.txt"
    result = runner.invoke(
        app, ["filter", "--lang", "en", "--reject", str(reject)], input=EN + DE + EN + FR
    )
    assert result.exit_code == 0, result.output
    assert result.stdout == EN + EN
    rejected = reject.read_text(encoding="utf-8").splitlines()
    assert [line.split(" ")[0] for line in rejected] == ["de!=en", "fr!=en"]


def test_min_logprob_turns_on_tolerance(tmp_path):
    model_path = tmp_path / "toy.pb"
    model_path.write_bytes(serialize_model(two_state_tables()))
    # per byte, yy trails by 4/3 on "aa" and ties (then loses on index) on "b"
    text = "aa\n" + "b\n"
    base = ["--model", str(model_path), "filter", "--lang", "yy"]

    strict = runner.invoke(app, base, input=text)
    assert strict.exit_code == 0, strict.output
    assert strict.stdout == ""

    loose = runner.invoke(app, base + ["--min-logprob=-1.4"], input=text)
    assert loose.exit_code == 0, loose.output
    assert loose.stdout == "aa\n" + "b\n"

    tight = runner.invoke(app, base + ["--min-logprob=-1.3"], input=text)
    assert tight.exit_code == 0, tight.output
    assert tight.stdout == "b\n"


def test_filter_with_unknown_language_keeps_everything():
    result = runner.invoke(app, ["filter", "--lang", "zz"], input=EN + DE)
    assert result.exit_code == 0, result.output
    assert result.stdout == EN + DE


def test_filter_bitext_follows_kept_lines(tmp_path):
    parallel = tmp_path / "parallel.de"
    parallel.write_text(DE + "la maison\n" + DE, encoding="utf-8")
    kept = tmp_path / "kept.de"
    result = runner.invoke(
        app,
        ["filter", "-e", "en", "-i", str(parallel), "-o", str(kept), "-I", "de"],
        input=EN + FR + EN,
    )
    assert result.exit_code == 0, result.output
    assert result.stdout == EN + EN
    assert kept.read_text(encoding="utf-8") == DE + DE


def test_filter_bitext_too_short_fails(tmp_path):
    parallel = tmp_path / "parallel.de"
    parallel.write_text(DE, encoding="utf-8")
    result = runner.invoke(
        app,
        ["filter", "-i", str(parallel), "-o", str(tmp_path / "out.de")],
        input=EN + EN,
    )
    assert result.exit_code == 1


def test_filter_requires_bitext_pair(tmp_path):
    parallel = tmp_path / "parallel.de"
    parallel.write_text(DE, encoding="utf-8")
    result = runner.invoke(app, ["filter", "-i", str(parallel)], input=EN)
    assert result.exit_code != 0


def test_missing_model_file_exits_with_error(tmp_path):
    result = runner.invoke(app, ["--model", str(tmp_path / "absent.pb"), "lines"], input=EN)
    assert result.exit_code == 1


def test_export_then_load_each_format(tmp_path):
    for name in ("model.pb", "model.joblib"):
        target = tmp_path / name
        result = runner.invoke(app, ["export", str(target)])
        assert result.exit_code == 0, result.output
        assert target.exists()
        result = runner.invoke(app, ["--model", str(target), "lines"], input=EN + DE)
        assert result.exit_code == 0, result.output
        assert [line.split(",")[0] for line in result.stdout.splitlines()] == ["en", "de"]


def test_inspect_lists_languages():
    result = runner.invoke(app, ["inspect"])
    assert result.exit_code == 0, result.output
    for code in ("en", "de", "fr", "es", "it", "nl"):
        assert code in result.stdout
    assert "English" in result.stdout


def test_evaluate_writes_metrics(tmp_path):
    dataset = tmp_path / "sample.csv"
    dataset.write_text(
        "text,language\n"
        '"the cat and the dog were with you",en\n'
        '"der Hund und die Katze sind nicht da",de\n'
        '"le chat est sur la table et les enfants",fr\n',
        encoding="utf-8",
    )
    prefix = tmp_path / "out" / "sample"
    result = runner.invoke(app, ["evaluate", str(dataset), "--output-path", str(prefix)])
    assert result.exit_code == 0, result.output
    metrics = json.loads(prefix.with_suffix(".metrics.json").read_text(encoding="utf-8"))
    assert metrics["summary"]["accuracy"] == 1.0
    assert metrics["top_k"]["accuracy"] == 1.0
    assert prefix.with_suffix(".confusion.png").exists()
    assert prefix.with_suffix(".margins.png").exists()
    predictions = prefix.with_suffix(".predictions.csv").read_text(encoding="utf-8")
    assert predictions.splitlines()[0] == "text,language,predicted,logprob,margin,correct"
