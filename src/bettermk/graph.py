# graph.py
from __future__ import annotations

import os
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from .errors import CycleError, MkError, NoRuleError
from .model import Attribute, DependencyGraph, ExplicitRule, Node, PatternRule, Status
from .parser import RuleSet
from .patterns import candidates
from .ui.console import Console, get_console


class GraphBuilder:
    """
    Resolve requested targets into a DependencyGraph.

    Resolution is a recursive search that returns a Node or None. A meta-rule
    candidate whose prerequisites cannot all be resolved is abandoned and the
    next candidate (in file order) is tried, and so is one whose prerequisites
    lead back into the target being resolved. Only two things raise: a cycle
    made of explicit rules and, at the top, a target nothing can make.
    """

    def __init__(
        self,
        rules: RuleSet,
        *,
        console: Optional[Console] = None,
        exists: Callable[[str], bool] = os.path.exists,
    ):
        self.rules = rules
        self.console = console or get_console()
        self._exists = exists
        self._nodes: Dict[str, Node] = {}
        self._failure: Optional[MkError] = None

    # ---- public ----

    def build(self, targets: Sequence[str] | None = None) -> DependencyGraph:
        roots = list(targets or self.rules.default_targets)
        if not roots:
            raise NoRuleError("<default>", None)

        for name in roots:
            self._failure = None
            node = self._resolve(name, [], [])
            if node is None:
                raise self._failure or NoRuleError(name)
            node.intermediate = False

        reachable = set()
        todo = [self._nodes[r] for r in roots]
        while todo:
            n = todo.pop()
            if n.name in reachable:
                continue
            reachable.add(n.name)
            todo.extend(n.prereqs)

        # insertion order is completion order: prerequisites come first
        nodes = {name: n for name, n in self._nodes.items() if name in reachable}
        self._trace(f"graph: {len(nodes)} node(s) for {roots}")
        return DependencyGraph(nodes=nodes, roots=roots)

    # ---- resolution ----

    def _trace(self, msg: str) -> None:
        self.console.print_debug(msg)

    def _resolve(self, name: str, stack: List[str], chain: List[PatternRule]) -> Optional[Node]:
        node = self._nodes.get(name)
        if node is not None:
            return node
        if name in stack:
            cycle = CycleError(stack[stack.index(name):] + [name])
            if not chain:
                raise cycle
            # only a meta-rule candidate leads back here: reject that candidate
            self._trace(f"{name}: {cycle}, candidate rejected")
            self._failure = cycle
            return None

        stack.append(name)
        self._failure = None
        try:
            explicit = self.rules.explicit.get(name)
            if explicit:
                node = self._explicit(name, explicit, stack, chain)
            else:
                node = self._from_patterns(name, stack, chain)
                if node is None and self._exists(name):
                    self._trace(f"{name}: source file")
                    node = Node(name=name, source=True)
                    node.transition(Status.SUCCEEDED)
            if node is None and self._failure is None:
                # nothing deeper failed: this name itself has no rule
                needed_by = stack[-2] if len(stack) > 1 else None
                self._trace(f"{name}: no rule (needed by {needed_by})")
                self._failure = NoRuleError(name, needed_by)
        finally:
            stack.pop()

        if node is not None:
            self._nodes[name] = node
        return node

    def _prereqs(
        self, names: Iterable[str], stack: List[str], chain: List[PatternRule]
    ) -> Optional[List[Node]]:
        out: List[Node] = []
        for p in names:
            n = self._resolve(p, stack, chain)
            if n is None:
                return None
            out.append(n)
        return out

    def _explicit(
        self, name: str, rules: List[ExplicitRule], stack: List[str], chain: List[PatternRule]
    ) -> Optional[Node]:
        prereqs: List[str] = []
        attrs = set()
        recipe_rule: Optional[ExplicitRule] = None
        comparator = None
        for r in rules:
            prereqs.extend(p for p in r.prereqs if p not in prereqs)
            attrs |= r.attrs
            comparator = r.comparator or comparator
            if r.recipe is not None:
                recipe_rule = r

        if recipe_rule is None and Attribute.VIRTUAL not in attrs:
            node = self._from_patterns(name, stack, chain, extra=prereqs, extra_attrs=frozenset(attrs))
            if node is not None:
                node.intermediate = False
                return node

        resolved = self._prereqs(prereqs, stack, chain)
        if resolved is None:
            return None
        rule = recipe_rule or rules[0]
        self._trace(f"{name}: explicit rule at {rule.location}")
        return Node(
            name=name,
            prereqs=resolved,
            recipe=recipe_rule.recipe if recipe_rule else None,
            attrs=frozenset(attrs),
            comparator=comparator,
            all_targets=rule.targets,
            location=rule.location,
        )

    def _from_patterns(
        self,
        name: str,
        stack: List[str],
        chain: List[PatternRule],
        extra: Sequence[str] = (),
        extra_attrs: FrozenSet[Attribute] = frozenset(),
    ) -> Optional[Node]:
        for pm in candidates(self.rules.patterns, name, skip=chain):
            rule = pm.rule
            names = list(extra) + [p for p in pm.prereqs if p not in extra]
            self._trace(f"{name}: trying meta-rule {rule.target} at {rule.location} -> {names}")
            resolved = self._prereqs(names, stack, chain + [rule])
            if resolved is None:
                self._trace(f"{name}: meta-rule {rule.target} rejected")
                continue
            self._trace(f"{name}: using meta-rule {rule.target} (stem {pm.stem!r})")
            return Node(
                name=name,
                prereqs=resolved,
                recipe=pm.recipe,
                attrs=rule.attrs | extra_attrs,
                comparator=rule.comparator,
                stem=pm.stem,
                groups=pm.groups,
                all_targets=pm.all_targets,
                location=rule.location,
                intermediate=name not in self.rules.explicit,
            )
        return None


def build_graph(
    rules: RuleSet,
    targets: Sequence[str] | None = None,
    *,
    console: Optional[Console] = None,
    exists: Callable[[str], bool] = os.path.exists,
) -> DependencyGraph:
    return GraphBuilder(rules, console=console, exists=exists).build(targets)
