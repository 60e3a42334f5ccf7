# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from .errors import StatusError


class Attribute(Enum):
    """Rule attributes, keyed by the letter used in the rule header."""
    VIRTUAL = "V"
    QUIET = "Q"
    DELETE_ON_FAILURE = "D"
    CONTINUE_ON_ERROR = "E"
    FORCE_UPDATE = "N"
    CUSTOM_COMPARATOR = "P"


class Status(Enum):
    UNVISITED = "unvisited"
    PENDING = "pending"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (Status.SUCCEEDED, Status.FAILED, Status.SKIPPED)


# ----------------------------------------------------------------------
# Rules (tagged variant: explicit | stem pattern | regex pattern)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class ExplicitRule:
    """`targets : prereqs` with an optional recipe."""
    targets: Tuple[str, ...]
    prereqs: Tuple[str, ...] = ()
    recipe: Optional[str] = None
    attrs: FrozenSet[Attribute] = frozenset()
    comparator: Optional[str] = None
    location: str = ""


@dataclass(frozen=True)
class StemRule:
    """
    Meta-rule whose target carries one stem marker.

    `%` matches any stem; `&` matches a stem without '/' or '.'.
    """
    target: str
    prefix: str
    suffix: str
    marker: str = "%"
    prereqs: Tuple[str, ...] = ()
    recipe: Optional[str] = None
    attrs: FrozenSet[Attribute] = frozenset()
    comparator: Optional[str] = None
    allow_empty_stem: bool = False
    all_targets: Tuple[str, ...] = ()
    location: str = ""


@dataclass(frozen=True)
class RegexRule:
    """Meta-rule whose target is a regular expression anchored on both ends."""
    target: str
    regex: "re.Pattern[str]"
    prereqs: Tuple[str, ...] = ()
    recipe: Optional[str] = None
    attrs: FrozenSet[Attribute] = frozenset()
    comparator: Optional[str] = None
    all_targets: Tuple[str, ...] = ()
    location: str = ""


PatternRule = Union[StemRule, RegexRule]
Rule = Union[ExplicitRule, StemRule, RegexRule]


# ----------------------------------------------------------------------
# Graph nodes
# ----------------------------------------------------------------------

@dataclass(eq=False)
class Node:
    """
    One concrete build unit bound to a target name.

    Prerequisites are shared references: the graph owns every node and
    several targets may point at the same prerequisite.
    """
    name: str
    prereqs: List["Node"] = field(default_factory=list)
    recipe: Optional[str] = None
    attrs: FrozenSet[Attribute] = frozenset()
    comparator: Optional[str] = None
    stem: str = ""
    groups: Tuple[str, ...] = ()
    all_targets: Tuple[str, ...] = ()
    location: str = ""
    source: bool = False          # existing file with no rule
    intermediate: bool = False    # produced by a meta-rule, never asked for directly
    status: Status = Status.UNVISITED

    # staleness annotations (filled in by staleness.evaluate)
    time: Optional[int] = None
    must_build: bool = False
    deferred: bool = False
    reasons: List[str] = field(default_factory=list)
    newer: List[str] = field(default_factory=list)

    @property
    def virtual(self) -> bool:
        return Attribute.VIRTUAL in self.attrs

    def has(self, attr: Attribute) -> bool:
        return attr in self.attrs

    def transition(self, status: Status) -> None:
        if self.status.terminal:
            raise StatusError(self.name, self.status.value, status.value)
        self.status = status

    def __repr__(self) -> str:
        return f"<Node {self.name} {self.status.value}>"


@dataclass
class DependencyGraph:
    """name -> Node for every node reachable from the roots, in resolution order."""
    nodes: Dict[str, Node]
    roots: List[str]

    def __getitem__(self, name: str) -> Node:
        return self.nodes[name]

    def __contains__(self, name: str) -> bool:
        return name in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def dependents(self) -> Dict[str, List[str]]:
        """Reverse edges: prerequisite name -> names of nodes that need it."""
        out: Dict[str, List[str]] = {name: [] for name in self.nodes}
        for node in self.nodes.values():
            for p in unique_prereqs(node):
                out[p.name].append(node.name)
        return out


def unique_prereqs(node: Node) -> List[Node]:
    seen = set()
    out: List[Node] = []
    for p in node.prereqs:
        if p.name not in seen:
            seen.add(p.name)
            out.append(p)
    return out


# ----------------------------------------------------------------------
# Scheduling units
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Job:
    node: Node
    slot: int = 0


@dataclass(frozen=True)
class JobResult:
    name: str
    status: Status
    exit_code: int = 0
    output: str = ""
    time: Optional[int] = None
