"""
Structural matching of live command segments against templates.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from makesh.makesh_datatypes import Segment, Literal, VarRef


class MatchVarRef(Segment):
    """Template slot matching exactly one unresolved variable reference."""
    __slots__ = ("slot",)

    def __init__(self, slot: str):
        self.slot = slot

    def __repr__(self) -> str:
        return f"MatchVarRef({self.slot!r})"

    def __eq__(self, other):
        return isinstance(other, MatchVarRef) and self.slot == other.slot

    def __hash__(self):
        return hash(("matchvarref", self.slot))


class LiteralRE(Segment):
    """Template literal governed by a regular expression.

    Every capturing group must be named; the names become capture slots
    in group order.
    """
    __slots__ = ("pattern", "regex")

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.regex = re.compile(pattern)
        if self.regex.groups != len(self.regex.groupindex):
            raise ValueError(f"All capturing groups must be named in {pattern!r}")

    @property
    def slots(self) -> List[str]:
        by_index = sorted(self.regex.groupindex.items(), key=lambda kv: kv[1])
        return [name for name, _ in by_index]

    def __repr__(self) -> str:
        return f"LiteralRE({self.pattern!r})"

    def __eq__(self, other):
        return isinstance(other, LiteralRE) and self.pattern == other.pattern

    def __hash__(self):
        return hash(("literalre", self.pattern))


class Template:
    """A fixed segment sequence with named capture slots."""
    __slots__ = ("segments", "slots")

    def __init__(self, segments: Sequence[Segment]):
        if not segments:
            raise ValueError("Template must have at least one segment.")
        self.segments: Tuple[Segment, ...] = tuple(segments)
        slots: List[str] = []
        for seg in self.segments:
            if isinstance(seg, MatchVarRef):
                slots.append(seg.slot)
            elif isinstance(seg, LiteralRE):
                slots.extend(seg.slots)
            elif not isinstance(seg, Literal):
                raise TypeError(f"Unsupported template segment: {seg!r}")
        if len(set(slots)) != len(slots):
            raise ValueError(f"Duplicate capture slot in template: {slots!r}")
        self.slots: Tuple[str, ...] = tuple(slots)

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def __repr__(self) -> str:
        return f"Template({list(self.segments)!r})"

    def match(self, live: Sequence[Segment]) -> Optional[List[Any]]:
        return match(live, self.segments)

    def bind(self, captures: Sequence[Any]) -> Dict[str, Any]:
        """Name the positional captures produced by `match`."""
        if len(captures) != len(self.slots):
            raise ValueError(f"Expected {len(self.slots)} captures, got {len(captures)}")
        return dict(zip(self.slots, captures))


def match(live: Sequence[Segment], template: Sequence[Segment]) -> Optional[List[Any]]:
    """Align `live` against `template` segment by segment.

    Returns the captured values in order, or None when the sequences do
    not line up in count and kind.
    """
    if len(live) != len(template):
        return None
    captures: List[Any] = []
    for got, want in zip(live, template):
        match want:
            case Literal():
                if not isinstance(got, Literal) or got.text != want.text:
                    return None
            case MatchVarRef():
                if not isinstance(got, VarRef):
                    return None
                captures.append(got)
            case LiteralRE():
                if not isinstance(got, Literal):
                    return None
                m = want.regex.fullmatch(got.text)
                if m is None:
                    return None
                captures.extend(Literal(g if g is not None else "") for g in m.groups())
            case _:
                return None
    return captures
