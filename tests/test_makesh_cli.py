import os

import pytest
from makesh.__main__ import main, parse_bindings
from makesh.makesh_datatypes import Expr, Literal, VarRef

from conftest import ROT13_CMD


def test_cli_rot13(capsys):
    assert main([ROT13_CMD, "1=Hello"]) == 0
    assert capsys.readouterr().out == "Uryyb\n"


def test_cli_date_flag(capsys):
    assert main(["date +%Y-%m-%d", "--date", "2024-03-05T00:00:00"]) == 0
    assert capsys.readouterr().out == "2024-03-05\n"


def test_cli_date_from_environment(capsys, monkeypatch):
    monkeypatch.setenv("MAKESH_SHELL_DATE", "1999-12-31")
    assert main(['date "+%d/%m/%Y"']) == 0
    assert capsys.readouterr().out == "31/12/1999\n"


def test_cli_explain(capsys):
    assert main([ROT13_CMD, "--explain"]) == 0
    assert capsys.readouterr().out == "android:rot13 -> Rot13\n"


def test_cli_explain_unmatched(capsys):
    assert main(["ls -la", "--explain"]) == 0
    assert capsys.readouterr().out == "<none> -> ShellCommand\n"


@pytest.mark.skipif(not os.path.exists("/bin/sh"), reason="needs /bin/sh")
def test_cli_unmatched_command_runs_in_shell(capsys):
    assert main(["echo $(X)", "X=hi"]) == 0
    assert capsys.readouterr().out == "hi\n"


def test_cli_unresolved_variable(capsys):
    assert main([ROT13_CMD]) == 1
    assert "unresolved variable 1" in capsys.readouterr().err


@pytest.mark.parametrize("argv", [
    [ROT13_CMD, "novalue"],
    [ROT13_CMD, "--date", "someday"],
    ["echo $(X"],
])
def test_cli_bad_input(capsys, argv):
    assert main(argv) == 1
    assert capsys.readouterr().err.startswith("Error: ")


def test_cli_config_file(tmp_path, capsys):
    path = tmp_path / "makesh.yaml"
    path.write_text("shell_date_timestamp: 2010-06-07\n")
    assert main(["date +%m", "--config", str(path)]) == 0
    assert capsys.readouterr().out == "06\n"


def test_parse_bindings_keeps_references():
    assert parse_bindings(["A=x", "B=$(A)/y", "C="]) == {
        "A": Expr([Literal("x")]),
        "B": Expr([VarRef("A"), Literal("/y")]),
        "C": Expr([]),
    }


def test_package_exposes_only_version():
    import makesh
    assert makesh.__version__ == "0.1.0"
    assert not hasattr(makesh, "ShellOptimizer")
