"""
Defines the segment model shared by live shell commands and templates,
and the evaluation context used to resolve variable references.

A command handed to the optimizer is an `Expr`: an ordered sequence of
`Literal` and `VarRef` segments. Variable references stay unresolved
until a `Context` is asked for their value.
"""

from __future__ import annotations

import logging
import re
import subprocess
import collections.abc
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)


class UnresolvedVariable(Exception):
    def __init__(self, name: str):
        super().__init__(name)
        self.name = name


# =================================================================
# Segments
# =================================================================

class Segment:
    """Base class for every element of a segment sequence."""
    pass


class Literal(Segment):
    """An exact, fixed text fragment."""
    __slots__ = ("text",)

    def __init__(self, text: str):
        self.text = text

    def __repr__(self) -> str:
        return f"Literal({self.text!r})"

    def __str__(self) -> str:
        return self.text

    def __eq__(self, other):
        if not isinstance(other, Literal):
            return NotImplemented
        return self.text == other.text

    def __hash__(self):
        return hash(("literal", self.text))


class VarRef(Segment):
    """An unresolved variable reference such as `$(LOCAL_PATH)`.

    Equality is structural: two references are equal when they name the
    same variable. That says nothing about their resolved values.
    """
    __slots__ = ("name",)

    def __init__(self, name: str):
        if not name:
            raise ValueError("VarRef must name a variable.")
        self.name = name

    def __repr__(self) -> str:
        return f"VarRef({self.name!r})"

    def __str__(self) -> str:
        return f"$({self.name})" if len(self.name) > 1 else f"${self.name}"

    def __eq__(self, other):
        if not isinstance(other, VarRef):
            return NotImplemented
        return self.name == other.name

    def __hash__(self):
        return hash(("varref", self.name))


Value = Union[Literal, VarRef, "Expr", str]


class Expr(collections.abc.Sequence):
    """An ordered, immutable sequence of segments.

    Resolving an `Expr` concatenates the resolved text of its segments.
    """
    __slots__ = ("segments",)

    def __init__(self, segments: Iterable[Segment] = ()):
        self.segments = tuple(segments)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Expr(self.segments[index])
        return self.segments[index]

    def __len__(self) -> int:
        return len(self.segments)

    def __repr__(self) -> str:
        return f"Expr({list(self.segments)!r})"

    def __str__(self) -> str:
        return "".join(str(s) for s in self.segments)

    def __eq__(self, other):
        if not isinstance(other, Expr):
            return NotImplemented
        return self.segments == other.segments

    def __hash__(self):
        return hash(self.segments)


# =================================================================
# Command text -> segments
# =================================================================

_SINGLE_CHAR_REF = re.compile(r"[A-Za-z0-9_@<^+?*%]")
_CLOSERS = {"(": ")", "{": "}"}


def parse_command(text: str) -> Expr:
    """Split Makefile-style command text into literal and variable segments.

    Recognizes `$(NAME)`, `${NAME}`, single-character references like `$1`,
    and `$$` as an escaped dollar. Adjacent literal text is merged.
    """
    segments: List[Segment] = []
    buf: List[str] = []
    i = 0
    n = len(text)

    def flush():
        if buf:
            segments.append(Literal("".join(buf)))
            buf.clear()

    while i < n:
        ch = text[i]
        if ch != "$" or i + 1 >= n:
            buf.append(ch)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "$":
            buf.append("$")
            i += 2
            continue
        if nxt in _CLOSERS:
            opener, closer = nxt, _CLOSERS[nxt]
            depth = 1
            j = i + 2
            while j < n and depth:
                if text[j] == opener:
                    depth += 1
                elif text[j] == closer:
                    depth -= 1
                j += 1
            if depth:
                raise ValueError(f"Unterminated variable reference in {text!r}")
            flush()
            segments.append(VarRef(text[i + 2:j - 1]))
            i = j
            continue
        if _SINGLE_CHAR_REF.match(nxt):
            flush()
            segments.append(VarRef(nxt))
            i += 2
            continue
        buf.append(ch)
        i += 1
    flush()
    return Expr(segments)


# =================================================================
# Evaluation context
# =================================================================

def make_shell_output(raw: str) -> str:
    """Post-process command stdout the way `$(shell ...)` does."""
    out = raw.rstrip("\n")
    return out.replace("\r\n", " ").replace("\n", " ")


class Context:
    """Variable bindings plus the literal shell execution path.

    Bindings hold either plain strings or unevaluated values (`Expr`,
    `Literal`, `VarRef`), which are resolved recursively. Lookups fall
    through to the parent context when a name is not bound locally.
    """
    def __init__(self,
                 variables: Optional[Dict[str, Any]] = None,
                 parent: Optional['Context'] = None,
                 shell: str = "/bin/sh",
                 shell_runner: Optional[Callable[[str], str]] = None):
        self.variables: Dict[str, Any] = dict(variables or {})
        self.parent = parent
        self.shell = shell
        self._shell_runner = shell_runner

    def __setitem__(self, name: str, value: Any):
        self.variables[name] = value

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None

    def lookup(self, name: str) -> Optional[Any]:
        ctx: Optional[Context] = self
        while ctx is not None:
            if name in ctx.variables:
                return ctx.variables[name]
            ctx = ctx.parent
        return None

    def resolve(self, value: Value, _active: Optional[frozenset] = None) -> str:
        """Turn an unresolved value into concrete text."""
        active = _active or frozenset()
        if isinstance(value, str):
            return value
        if isinstance(value, Literal):
            return value.text
        if isinstance(value, VarRef):
            if value.name in active:
                raise ValueError(f"Recursive variable '{value.name}' references itself")
            bound = self.lookup(value.name)
            if bound is None:
                raise UnresolvedVariable(value.name)
            return self.resolve(bound, active | {value.name})
        if isinstance(value, Expr):
            return "".join(self.resolve(seg, active) for seg in value)
        raise TypeError(f"Cannot resolve value of type {type(value).__name__}")

    def args(self, *values: Value) -> List[str]:
        return [self.resolve(v) for v in values]

    def run_shell(self, command: str) -> str:
        """Run a command literally and return its make-style output."""
        ctx: Optional[Context] = self
        while ctx is not None:
            if ctx._shell_runner is not None:
                return ctx._shell_runner(command)
            ctx = ctx.parent
        logger.debug(f"[shell] {self.shell} -c {command!r}")
        proc = subprocess.run(
            [self.shell, "-c", command],
            stdout=subprocess.PIPE,
            text=True,
            check=False,
        )
        return make_shell_output(proc.stdout)
