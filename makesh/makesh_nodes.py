"""
Evaluation nodes produced by the optimizer.

Every node is an immutable dataclass. `ShellCommand` runs the command
literally; every other variant replaces one recognized shell idiom with
native logic and keeps the original `ShellCommand` to fall back on when
a precondition does not hold at evaluation time. `ShellEvaluator.eval`
dispatches over the closed set of variants in one place.
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, TextIO, Tuple

from makesh.makesh_datatypes import Context, Expr, Value
from makesh.makesh_index import FindIndex
from makesh.makesh_text import SsvWriter, WordCollector, WordScanner, split_words, trim_space

logger = logging.getLogger(__name__)


# =================================================================
# Node variants
# =================================================================

class ShellNode:
    """Common protocol: write output for a context."""

    def write(self, out: TextIO, ctx: Context) -> None:
        EVALUATOR.eval(self, ctx, out)

    def evaluate(self, ctx: Context) -> str:
        buf = io.StringIO()
        self.write(buf, ctx)
        return buf.getvalue()


@dataclass(frozen=True)
class ShellCommand(ShellNode):
    """The unmodified `$(shell ...)` call."""
    command: Expr

    def __str__(self) -> str:
        return str(self.command)


@dataclass(frozen=True)
class Rot13(ShellNode):
    original: ShellCommand
    text: Value


@dataclass(frozen=True)
class FindFileInDir(ShellNode):
    original: ShellCommand
    dir: Value
    # The same directory as named by the `cd` half of the idiom.
    cd_dir: Value
    index: FindIndex = field(compare=False, repr=False)


@dataclass(frozen=True)
class FindExtFilesUnder(ShellNode):
    original: ShellCommand
    chdir: Value
    roots: Value
    ext: str
    index: FindIndex = field(compare=False, repr=False)


@dataclass(frozen=True)
class FindJavaResourceFileGroup(ShellNode):
    original: ShellCommand
    dir: Expr
    index: FindIndex = field(compare=False, repr=False)


@dataclass(frozen=True)
class FindLeaves(ShellNode):
    original: ShellCommand
    dirlist: Value
    name: Value
    prunes: Tuple[Value, ...]
    mindepth: int
    index: FindIndex = field(compare=False, repr=False)


@dataclass(frozen=True)
class ShellDate(ShellNode):
    original: ShellCommand
    # A str.format template over the timestamp, built by translate_date_format.
    format: str
    timestamp: datetime


# =================================================================
# Native helpers
# =================================================================

# tr 'a-zA-Z' 'n-za-mN-ZA-M'
_ROT13 = str.maketrans(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "nopqrstuvwxyzabcdefghijklmNOPQRSTUVWXYZABCDEFGHIJKLM",
)


def rot13(text: str) -> str:
    return text.translate(_ROT13)


SHELL_DATE_FORMATS = {
    "%Y": "{0:%Y}",
    "%m": "{0:%m}",
    "%d": "{0:%d}",
    "%H": "{0:%H}",
    "%M": "{0:%M}",
    "%S": "{0:%S}",
    "%b": "{0:%b}",
    "%k": "{0.hour:2d}",
}

_DATE_TOKEN = re.compile(r"%.|[{}]")


def _escape_braces(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


def translate_date_format(fmt: str) -> str:
    """Rewrite a `date +FORMAT` string into a str.format template.

    Unrecognized directives are kept as written.
    """
    def repl(m: re.Match) -> str:
        tok = m.group(0)
        if tok in SHELL_DATE_FORMATS:
            return SHELL_DATE_FORMATS[tok]
        return _escape_braces(tok)
    return _DATE_TOKEN.sub(repl, fmt)


def _has_dotdot(path: str) -> bool:
    return ".." in path


def _single_word(text: str) -> Optional[str]:
    words = split_words(text)
    return words[0] if len(words) == 1 else None


# =================================================================
# Evaluation
# =================================================================

class ShellEvaluator:
    """Produces the output of any node for a context."""

    def eval(self, node: ShellNode, ctx: Context, out: TextIO) -> None:
        match node:
            case ShellCommand():
                out.write(ctx.run_shell(ctx.resolve(node.command)))
            case Rot13():
                out.write(rot13(ctx.resolve(node.text)))
            case FindFileInDir():
                self._find_file_in_dir(node, ctx, out)
            case FindExtFilesUnder():
                self._find_ext_files_under(node, ctx, out)
            case FindJavaResourceFileGroup():
                self._find_java_resource_file_group(node, ctx, out)
            case FindLeaves():
                self._find_leaves(node, ctx, out)
            case ShellDate():
                out.write(node.format.format(node.timestamp))
            case _:
                raise TypeError(f"Unknown shell node: {type(node).__name__}")

    def _fallback(self, node, ctx: Context, out: TextIO, reason: str) -> None:
        logger.debug(f"[{type(node).__name__}] {reason}: call original shell")
        self.eval(node.original, ctx, out)

    def _find_file_in_dir(self, node: FindFileInDir, ctx: Context, out: TextIO) -> None:
        dir = trim_space(ctx.resolve(node.dir))
        cd_dir = dir if node.cd_dir == node.dir else trim_space(ctx.resolve(node.cd_dir))
        logger.debug(f"[FindFileInDir] {node.dir} => {dir}")
        if cd_dir != dir:
            return self._fallback(node, ctx, out, f"test and cd directories differ ({dir!r} vs {cd_dir!r})")
        if _single_word(dir) is None:
            return self._fallback(node, ctx, out, f"directory {dir!r} is not a single word")
        if _has_dotdot(dir):
            return self._fallback(node, ctx, out, "contains ..")
        if not node.index.ready():
            return self._fallback(node, ctx, out, "index is not ready")
        buf = io.StringIO()
        if not node.index.list_directory(SsvWriter(buf), dir):
            return self._fallback(node, ctx, out, f"index couldn't handle {dir!r}")
        out.write(buf.getvalue())

    def _find_ext_files_under(self, node: FindExtFilesUnder, ctx: Context, out: TextIO) -> None:
        chdir_text, roots_text = ctx.args(node.chdir, node.roots)
        chdir = trim_space(chdir_text)
        roots = list(WordScanner(roots_text))
        logger.debug(f"[FindExtFilesUnder] {node.chdir},{node.roots} => {chdir},{roots}")
        if _single_word(chdir) is None or not roots:
            return self._fallback(node, ctx, out, "directory or roots are empty")
        if _has_dotdot(chdir) or any(_has_dotdot(r) for r in roots):
            return self._fallback(node, ctx, out, "contains ..")
        if not node.index.ready():
            return self._fallback(node, ctx, out, "index is not ready")
        buf = io.StringIO()
        sw = SsvWriter(buf)
        for root in roots:
            if not node.index.list_extension_files_under(sw, chdir, root, node.ext):
                return self._fallback(node, ctx, out, f"index couldn't handle {root!r}")
        out.write(buf.getvalue())

    def _find_java_resource_file_group(self, node: FindJavaResourceFileGroup, ctx: Context, out: TextIO) -> None:
        dir = trim_space(ctx.resolve(node.dir))
        logger.debug(f"[FindJavaResourceFileGroup] {node.dir} => {dir}")
        if _single_word(dir) is None:
            return self._fallback(node, ctx, out, f"directory {dir!r} is not a single word")
        if _has_dotdot(dir):
            return self._fallback(node, ctx, out, "contains ..")
        if not node.index.ready():
            return self._fallback(node, ctx, out, "index is not ready")
        buf = io.StringIO()
        if not node.index.list_java_resource_group(SsvWriter(buf), dir):
            return self._fallback(node, ctx, out, f"index couldn't handle {dir!r}")
        out.write(buf.getvalue())

    def _find_leaves(self, node: FindLeaves, ctx: Context, out: TextIO) -> None:
        if not node.index.leaves_ready():
            return self._fallback(node, ctx, out, "index is not ready")
        fargs = ctx.args(node.name, node.dirlist, *node.prunes)
        name = trim_space(fargs[0])
        dirs = []
        for dir in WordScanner(fargs[1]):
            if _has_dotdot(dir):
                return self._fallback(node, ctx, out, f"contains .. in {dir}")
            dirs.append(dir)
        prunes = [trim_space(p) for p in fargs[2:]]
        found = WordCollector()
        for dir in dirs:
            if not node.index.find_leaves(found, dir, name, prunes, node.mindepth):
                return self._fallback(node, ctx, out, f"index couldn't handle {dir!r}")
        # findleaves.py prints the whole dirlist's results sorted and unique.
        SsvWriter(out).write_words(sorted(set(found.words)))


EVALUATOR = ShellEvaluator()
