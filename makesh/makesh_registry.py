"""
The pattern registry and the compaction step.

`load_registry` turns the declarative template table
(`shell_patterns.yaml`) into an immutable, ordered tuple of
`PatternEntry`. `ShellOptimizer.compact` tries the entries in order and
lets the first matching entry's compactor decide which node replaces the
command.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from types import MappingProxyType
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import yaml

from makesh.makesh_config import OptimizerConfig
from makesh.makesh_datatypes import Expr, Literal, Value, parse_command
from makesh.makesh_index import FindIndex, FsIndex
from makesh.makesh_matcher import LiteralRE, MatchVarRef, Template
from makesh.makesh_nodes import (
    ShellNode, ShellCommand, Rot13, FindFileInDir, FindExtFilesUnder,
    FindJavaResourceFileGroup, FindLeaves, ShellDate, translate_date_format,
)

logger = logging.getLogger(__name__)

PATTERNS_PATH = Path(__file__).parent / "shell_patterns.yaml"

Compactor = Callable[[ShellCommand, Dict[str, Value], Mapping[str, Any], 'ShellOptimizer'], ShellNode]

COMPACTORS: Dict[str, Compactor] = {}


def compactor(key: str):
    """Registers a compactor under the key used by the template table."""
    def register(func: Compactor) -> Compactor:
        COMPACTORS[key] = func
        return func
    return register


class PatternEntry(NamedTuple):
    name: str
    template: Template
    compactor: Compactor
    options: Mapping[str, Any]


# =================================================================
# Template table loading
# =================================================================

def _transform_segment(node: Any, entry_name: str):
    if not isinstance(node, dict) or len(node) != 1:
        raise ValueError(f"{entry_name}: template segment must be a single-key mapping, got {node!r}")
    (tag, value), = node.items()
    if not isinstance(value, str):
        raise ValueError(f"{entry_name}: {tag} segment needs a string, got {value!r}")
    match tag:
        case 'literal':
            return Literal(value)
        case 'var':
            return MatchVarRef(value)
        case 'pattern':
            return LiteralRE(value)
        case _:
            raise ValueError(f"{entry_name}: unknown template segment kind {tag!r}")


def _transform_entry(node: Any) -> PatternEntry:
    if not isinstance(node, dict) or "name" not in node:
        raise ValueError(f"Pattern entry must be a mapping with a name, got {node!r}")
    name = node["name"]
    key = node.get("compactor")
    if key not in COMPACTORS:
        raise KeyError(f"{name}: unknown compactor {key!r}")
    segments = node.get("template") or []
    try:
        template = Template([_transform_segment(s, name) for s in segments])
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name}: {e}") from e
    options = MappingProxyType(dict(node.get("options") or {}))
    return PatternEntry(name, template, COMPACTORS[key], options)


def load_registry(source: Union[str, Path, Sequence[Mapping[str, Any]], Mapping[str, Any]] = PATTERNS_PATH) -> Tuple[PatternEntry, ...]:
    """Builds the ordered registry from a YAML file or already-parsed data."""
    if isinstance(source, (str, Path)):
        with open(source, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    else:
        data = source
    if isinstance(data, Mapping):
        data = data.get("patterns")
    if not isinstance(data, (list, tuple)):
        raise ValueError("Pattern table must be a list of entries under 'patterns'")
    entries = tuple(_transform_entry(node) for node in data)
    names = [e.name for e in entries]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"Duplicate pattern names: {', '.join(dupes)}")
    logger.info(f"[registry] loaded {len(entries)} shell patterns")
    return entries


@lru_cache(maxsize=None)
def default_registry() -> Tuple[PatternEntry, ...]:
    return load_registry(PATTERNS_PATH)


# =================================================================
# Compactors
# =================================================================

@compactor("rot13")
def _compact_rot13(original, slots, options, optimizer):
    return Rot13(original, slots["text"])


@compactor("find-file-in-dir")
def _compact_find_file_in_dir(original, slots, options, optimizer):
    # Whether both names denote the same directory is decided on resolved text.
    if not optimizer.index_ready():
        return original
    return FindFileInDir(original, slots["dir"], slots["cd_dir"], optimizer.index)


@compactor("find-ext-files-under")
def _compact_find_ext_files_under(original, slots, options, optimizer):
    if not optimizer.index_ready():
        return original
    return FindExtFilesUnder(original, slots["chdir"], slots["roots"], options["ext"], optimizer.index)


@compactor("find-java-resource-file-group")
def _compact_find_java_resource_file_group(original, slots, options, optimizer):
    if not optimizer.index_ready():
        return original
    dir = Expr(slots[name] for name in ("top_dir", "local_path", "sep", "dir"))
    return FindJavaResourceFileGroup(original, dir, optimizer.index)


@compactor("find-leaves")
def _compact_find_leaves(original, slots, options, optimizer):
    leaf = options["leaf"]
    if leaf not in optimizer.config.leaf_names:
        logger.debug(f"[optimizer] {leaf} is not an indexed leaf name")
        return original
    if not optimizer.index_ready(leaves=True):
        return original
    prunes = (slots["out_dir"],) + tuple(Literal(p) for p in options.get("prunes", ()))
    dirlist = slots.get("dirlist") or Literal(options.get("dirlist", "."))
    return FindLeaves(
        original,
        dirlist=dirlist,
        name=Literal(leaf),
        prunes=prunes,
        mindepth=int(options.get("mindepth", -1)),
        index=optimizer.index,
    )


@compactor("shell-date")
def _compact_shell_date(original, slots, options, optimizer):
    timestamp = optimizer.config.shell_date_timestamp
    if timestamp is None:
        return original
    fmt = slots["format"]
    if not isinstance(fmt, Literal):
        return original
    return ShellDate(original, translate_date_format(fmt.text), timestamp)


# =================================================================
# Optimizer
# =================================================================

class ShellOptimizer:
    """Replaces recognized `$(shell ...)` commands with native nodes.

    The config, index and registry are fixed at construction and shared
    read-only by every `compact` call.
    """
    def __init__(self,
                 config: Optional[OptimizerConfig] = None,
                 index: Optional[FindIndex] = None,
                 registry: Optional[Sequence[PatternEntry]] = None):
        self.config = config or OptimizerConfig()
        self.index = index if index is not None else FsIndex()
        self.registry: Tuple[PatternEntry, ...] = tuple(registry) if registry is not None else default_registry()

    def __repr__(self) -> str:
        return f"<ShellOptimizer patterns={len(self.registry)} index={self.index!r}>"

    def index_ready(self, leaves: bool = False) -> bool:
        """Initializes the index on first use and reports whether it can serve queries."""
        self.index.initialize(self.config.index_options())
        ready = self.index.leaves_ready() if leaves else self.index.ready()
        if not ready:
            logger.debug("[optimizer] find index is not ready: keep original shell")
        return ready

    def find_entry(self, command: Expr) -> Optional[Tuple[PatternEntry, Dict[str, Value]]]:
        """Returns the first entry whose template matches, with its named captures."""
        for entry in self.registry:
            captures = entry.template.match(command)
            if captures is not None:
                return entry, entry.template.bind(captures)
        return None

    def compact(self, command: Union[Expr, str]) -> ShellNode:
        if isinstance(command, str):
            command = parse_command(command)
        original = ShellCommand(command)
        found = self.find_entry(command)
        if found is None:
            return original
        entry, slots = found
        node = entry.compactor(original, slots, entry.options, self)
        if node is original:
            logger.debug(f"[optimizer] {entry.name} matched but kept original shell")
        else:
            logger.debug(f"[optimizer] {entry.name} => {type(node).__name__}")
        return node
