# staleness.py
from __future__ import annotations

import os
import shlex
from typing import Callable, List, Optional, Sequence

from .executor import CommandRunner, RecipeContext, ShellRunner, artifact_time
from .model import Attribute, DependencyGraph, Node, unique_prereqs
from .ui.console import Console, get_console


class StalenessEvaluator:
    """
    Decide which nodes must be rebuilt. Never runs recipes.

    A node builds if its artifact is missing, it is forced (-a or N), it is
    virtual, or a prerequisite is newer or will itself be rebuilt. A node
    with a P comparator asks that command instead of comparing times.
    """

    def __init__(
        self,
        *,
        force_all: bool = False,
        ignore_missing: bool = False,
        runner: Optional[CommandRunner] = None,
        shell: Sequence[str] = ("sh",),
        stat: Callable[[str], Optional[int]] = artifact_time,
        console: Optional[Console] = None,
    ):
        self.force_all = force_all
        self.ignore_missing = ignore_missing
        self.runner = runner or ShellRunner()
        self.shell = list(shell)
        self.stat = stat
        self.console = console or get_console()

    def evaluate(self, graph: DependencyGraph) -> List[Node]:
        """Annotate every node; returns the ones that must build, in dependency order."""
        # graph order already lists prerequisites before their dependents
        for node in graph.nodes.values():
            self._evaluate(node)

        stale = [n for n in graph.nodes.values() if n.must_build]
        for n in stale:
            self.console.print_explain(n.name, n.reasons)
            self.console.print_debug(f"{n.name}: must build ({'; '.join(n.reasons)})")
        return stale

    def _evaluate(self, node: Node) -> None:
        if node.source:
            node.time = self.stat(node.name)
            return

        prereqs = unique_prereqs(node)
        node.time = None if node.virtual else self.stat(node.name)
        reasons: List[str] = []

        if self.force_all:
            reasons.append("forced by -a")
        if node.virtual:
            reasons.append("virtual target")
        if node.has(Attribute.FORCE_UPDATE):
            reasons.append("always updated (N)")
        missing = node.time is None and not node.virtual
        if missing:
            reasons.append("does not exist")

        newer: List[str] = []
        for p in prereqs:
            if p.must_build:
                newer.append(p.name)
                reasons.append(f"prerequisite '{p.name}' will be rebuilt")
            elif node.time is None:
                newer.append(p.name)
            elif node.comparator:
                if self._differs(node, p):
                    newer.append(p.name)
                    reasons.append(f"'{node.comparator}' reports '{p.name}' differs")
            elif p.time is not None and p.time > node.time:
                newer.append(p.name)
                reasons.append(f"'{p.name}' is newer")

        node.newer = newer
        node.reasons = reasons
        node.must_build = bool(reasons)

        if missing and len(reasons) == 1 and self.ignore_missing and node.intermediate:
            # missing intermediate: stand in with the newest input's time
            # until some dependent actually needs the file
            node.must_build = False
            node.deferred = True
            times = [p.time for p in prereqs if p.time is not None]
            node.time = max(times) if times else None
            self.console.print_debug(f"{node.name}: missing intermediate deferred")
            return

        if node.must_build:
            for p in prereqs:
                if p.deferred:
                    self._activate(p, node)
                    if p.name not in node.newer:
                        node.newer.append(p.name)

    def _activate(self, node: Node, needed_by: Node) -> None:
        node.deferred = False
        node.must_build = True
        node.time = None
        node.reasons = [f"does not exist (needed by '{needed_by.name}')"]
        node.newer = [p.name for p in unique_prereqs(node)]
        for p in unique_prereqs(node):
            if p.deferred:
                self._activate(p, node)

    def _differs(self, node: Node, prereq: Node) -> bool:
        cmd = f"{node.comparator} {shlex.quote(node.name)} {shlex.quote(prereq.name)}"
        code, _ = self.runner.run([*self.shell, "-c", cmd], RecipeContext(env=dict(os.environ)))
        self.console.print_debug(f"{node.name}: comparator '{cmd}' exited {code}")
        return code != 0


def evaluate(graph: DependencyGraph, **kwargs) -> List[Node]:
    return StalenessEvaluator(**kwargs).evaluate(graph)
