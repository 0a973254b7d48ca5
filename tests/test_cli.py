import json

from indy import INDY_VERSION, run_cli


def test_runs_script_file(tmp_path, capsys):
    path = tmp_path / "hello.indy"
    path.write_text('start\nNAME="file"\nsay "hello {NAME}"\nend\n', encoding="utf-8")
    assert run_cli([str(path)]) == 0
    out = capsys.readouterr().out
    assert out.splitlines() == [f"--- Indy-lang Interpreter v{INDY_VERSION} ---", "hello file"]


def test_source_mode_without_banner(capsys):
    assert run_cli(["--no-banner", "-source", 'start\nsay "inline"\nend']) == 0
    assert capsys.readouterr().out == "inline\n"


def test_verbose_flag(capsys):
    assert run_cli(["--no-banner", "--verbose", "--source", "start\nend"]) == 0
    assert capsys.readouterr().out.splitlines() == [
        "[Indy Engine] Script started.",
        "[Indy Engine] Script finished.",
    ]


def test_missing_input_file_argument(capsys):
    assert run_cli([]) == 1
    err = capsys.readouterr().err
    assert "Error: Missing input file." in err
    assert "Usage: indy <filepath.indy> [--verbose]" in err


def test_unreadable_file(tmp_path, capsys):
    missing = tmp_path / "missing.indy"
    assert run_cli(["--no-banner", str(missing)]) == 1
    err = capsys.readouterr().err
    assert err.startswith(f"[Error] Could not read file {missing}:")


def test_incomplete_script_reports_traceback(capsys):
    assert run_cli(["--no-banner", "-source", 'start\nsay "partial"']) == 1
    captured = capsys.readouterr()
    assert captured.out == "partial\n"
    lines = captured.err.splitlines()
    assert lines[0] == "Traceback (most recent call last):"
    assert '  File "<string>", line 2, in <script>' in lines
    assert lines[-1] == (
        "IndyTerminationError: Script ended unexpectedly "
        "(missing 'end' keyword or 'start' was never called). (rule: END)"
    )


def test_traceback_json(capsys):
    assert run_cli(["--no-banner", "--traceback-json", "-source", "say \"never\""]) == 1
    err = capsys.readouterr().err
    payload = json.loads(err[err.index("{"):])
    assert payload["error"]["type"] == "IndyTerminationError"
    assert payload["traceback"][0]["name"] == "<script>"


def test_recoverable_errors_keep_success_status(capsys):
    assert run_cli(["--no-banner", "-source", "start\nbogus\nend"]) == 0
    assert capsys.readouterr().err == "[Error] Unknown command or bad syntax: 'bogus'\n"
