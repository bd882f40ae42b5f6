import shutil

import pytest
from makesh.makesh_datatypes import (
    Context, Expr, Literal, VarRef, UnresolvedVariable,
    parse_command, make_shell_output,
)

# --- parse_command ---

@pytest.mark.parametrize("text,expected", [
    ("echo $(1) | tr x y", [Literal("echo "), VarRef("1"), Literal(" | tr x y")]),
    ("cd ${LOCAL_PATH} ; ls", [Literal("cd "), VarRef("LOCAL_PATH"), Literal(" ; ls")]),
    ("$1x", [VarRef("1"), Literal("x")]),
    ("echo $$HOME", [Literal("echo $HOME")]),
    ("$(A)$(B)/$(C)", [VarRef("A"), VarRef("B"), Literal("/"), VarRef("C")]),
    ("$(call f,$(x))", [VarRef("call f,$(x)")]),
    ("date +%Y", [Literal("date +%Y")]),
    ("trailing $", [Literal("trailing $")]),
    ("", []),
])
def test_parse_command(text, expected):
    assert list(parse_command(text)) == expected


def test_parse_command_unterminated_reference():
    with pytest.raises(ValueError):
        parse_command("echo $(FOO")


def test_expr_str_round_trips_references():
    e = parse_command("cd $(LOCAL_PATH) ; find -L $1")
    assert str(e) == "cd $(LOCAL_PATH) ; find -L $1"


# --- Segment equality ---

def test_varref_equality_is_by_name():
    assert VarRef("X") == VarRef("X")
    assert VarRef("X") != VarRef("Y")
    assert VarRef("X") != Literal("X")
    assert hash(VarRef("X")) == hash(VarRef("X"))


def test_varref_requires_name():
    with pytest.raises(ValueError):
        VarRef("")


def test_expr_is_hashable_and_sliceable():
    e = Expr([Literal("a"), VarRef("B")])
    assert {e: 1}[Expr([Literal("a"), VarRef("B")])] == 1
    assert isinstance(e[1:], Expr)
    assert list(e[1:]) == [VarRef("B")]


# --- Context ---

def test_resolve_plain_and_nested_values():
    ctx = Context({"A": "x", "B": parse_command("$(A)-y"), "C": Literal("lit")})
    assert ctx.resolve(VarRef("A")) == "x"
    assert ctx.resolve(VarRef("B")) == "x-y"
    assert ctx.resolve(VarRef("C")) == "lit"
    assert ctx.resolve(parse_command("[$(B)]")) == "[x-y]"
    assert ctx.args(VarRef("A"), Literal("z")) == ["x", "z"]


def test_resolve_falls_through_to_parent():
    parent = Context({"TOP": "/src"})
    child = Context({"LOCAL": "pkg"}, parent=parent)
    assert child.resolve(parse_command("$(TOP)/$(LOCAL)")) == "/src/pkg"
    assert "TOP" in child
    assert "NOPE" not in child


def test_resolve_unknown_variable_raises():
    ctx = Context()
    with pytest.raises(UnresolvedVariable) as ei:
        ctx.resolve(parse_command("echo $(MISSING)"))
    assert ei.value.name == "MISSING"


def test_resolve_self_reference_raises():
    ctx = Context({"A": parse_command("x$(A)")})
    with pytest.raises(ValueError):
        ctx.resolve(VarRef("A"))


def test_resolve_rejects_unknown_types():
    with pytest.raises(TypeError):
        Context().resolve(42)


# --- Shell execution ---

@pytest.mark.parametrize("raw,expected", [
    ("a\nb\n", "a b"),
    ("a\r\nb\n\n", "a b"),
    ("", ""),
    ("one", "one"),
])
def test_make_shell_output(raw, expected):
    assert make_shell_output(raw) == expected


def test_run_shell_uses_injected_runner():
    seen = []
    ctx = Context(shell_runner=lambda cmd: seen.append(cmd) or "out")
    child = Context(parent=ctx)
    assert child.run_shell("echo hi") == "out"
    assert seen == ["echo hi"]


def test_run_shell_finds_runner_on_any_ancestor():
    seen = []
    root = Context(shell_runner=lambda cmd: seen.append(cmd) or "from root")
    grandchild = Context(parent=Context(parent=root))
    assert grandchild.run_shell("ls") == "from root"
    assert seen == ["ls"]


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
def test_run_shell_runs_command_literally():
    ctx = Context(shell=shutil.which("sh"))
    assert ctx.run_shell("printf 'a\\nb\\n'; exit 3") == "a b"
