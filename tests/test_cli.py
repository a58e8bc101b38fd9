from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from clue_lsp import cli
from clue_lsp.scope import path_to_uri

from tests.process_helpers import FakeCompiler, missing_binary


def _invoke(args: list[str], runner_obj) -> object:
    return CliRunner().invoke(cli.app, args, obj={"process_runner": runner_obj})


def test_check_clean_file_prints_clear(write_source) -> None:
    source = write_source("a.clue", "let x = 1\n")
    compiler = FakeCompiler(stdout='Compiled file "a.clue" in 3ms!\n')
    result = _invoke(["check", str(source)], compiler)
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload == [{"uri": path_to_uri(source.resolve()), "diagnostics": []}]
    assert compiler.cwds[-1] == str(source.resolve().parent)


def test_check_reports_errors(write_source) -> None:
    source = write_source("a.clue", "local broken = nil\n")
    compiler = FakeCompiler(
        stderr='Error in a.clue:1:7!\nError: "bad name"\n',
        returncode=1,
    )
    result = _invoke(["check", str(source), "--env", "FOO=bar"], compiler)
    assert result.exit_code == 1
    (event,) = json.loads(result.stdout)
    (diagnostic,) = event["diagnostics"]
    assert diagnostic["message"] == "bad name"
    assert diagnostic["range"]["start"] == {"line": 0, "character": 6}
    assert diagnostic["range"]["end"] == {"line": 0, "character": 12}
    assert compiler.envs[-1]["FOO"] == "bar"
    assert compiler.calls[-1][:2] == ["clue", "-D"]


def test_check_uses_clue_path_override(write_source) -> None:
    source = write_source("a.clue", "x\n")
    compiler = FakeCompiler()
    result = _invoke(["check", str(source), "--clue-path", "/opt/clue/bin/clue"], compiler)
    assert result.exit_code == 0
    assert {call[0] for call in compiler.calls} == {"/opt/clue/bin/clue"}


def test_check_unsupported_compiler_exits_2(write_source) -> None:
    source = write_source("a.clue", "x\n")
    compiler = FakeCompiler(version_output="clue 2.9.0\n")
    result = _invoke(["check", str(source)], compiler)
    assert result.exit_code == 2
    assert all("-V" in call for call in compiler.calls)


def test_check_unrecognized_failure_exits_2(write_source) -> None:
    source = write_source("a.clue", "x\n")
    compiler = FakeCompiler(stderr="segmentation fault\n", returncode=139)
    result = _invoke(["check", str(source)], compiler)
    assert result.exit_code == 2


def test_check_rejects_malformed_env(write_source) -> None:
    source = write_source("a.clue", "x\n")
    result = _invoke(["check", str(source), "--env", "NOEQUALS"], FakeCompiler())
    assert result.exit_code == 2


def test_check_rejects_missing_path(tmp_path: Path) -> None:
    result = _invoke(["check", str(tmp_path / "absent.clue")], FakeCompiler())
    assert result.exit_code == 2


def test_version_reports_probe() -> None:
    result = _invoke(["version"], FakeCompiler(version_output="clue 3.5.1\n"))
    assert result.exit_code == 0
    assert "clue 3.5.1" in result.stdout


def test_version_missing_binary_exits_2() -> None:
    result = _invoke(["version", "--clue-path", "/nonexistent/clue"], missing_binary)
    assert result.exit_code == 2
