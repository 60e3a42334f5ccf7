# patterns.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Collection, Dict, Iterable, Iterator, Optional, Tuple

from .expand import bind
from .model import Attribute, PatternRule, RegexRule, StemRule

BACKREF = re.compile(r"\\([1-9])")
NARROW_FORBIDDEN = "/."


@dataclass(frozen=True)
class PatternMatch:
    """A meta-rule instantiated for one concrete target name."""
    rule: PatternRule
    target: str
    stem: str
    groups: Tuple[str, ...]
    prereqs: Tuple[str, ...]
    all_targets: Tuple[str, ...]
    recipe: Optional[str] = None    # \1..\9 and $stem* already bound


def match_stem(rule: StemRule, name: str) -> Optional[str]:
    """
    Returns the stem if `name` fits `prefix<stem>suffix`, else None.

    The stem must be non-empty unless the rule allows empty stems; with the
    `&` marker it may not contain '/' or '.'.
    """
    lp, ls = len(rule.prefix), len(rule.suffix)
    if len(name) < lp + ls:
        return None
    if not (name.startswith(rule.prefix) and name.endswith(rule.suffix)):
        return None
    stem = name[lp:len(name) - ls]
    if not stem and not rule.allow_empty_stem:
        return None
    if rule.marker == "&" and any(c in stem for c in NARROW_FORBIDDEN):
        return None
    return stem


def match_regex(rule: RegexRule, name: str) -> Optional["re.Match[str]"]:
    return rule.regex.fullmatch(name)


def _backrefs(template: str, m: "re.Match[str]") -> str:
    def repl(ref: "re.Match[str]") -> str:
        idx = int(ref.group(1))
        if idx > m.re.groups:
            return ""
        return m.group(idx) or ""
    return BACKREF.sub(repl, template)


def stem_values(stem: str, groups: Tuple[str, ...]) -> Dict[str, str]:
    values = {"stem": stem}
    for i in range(1, 10):
        values[f"stem{i}"] = groups[i - 1] if i <= len(groups) else ""
    return values


def instantiate(rule: PatternRule, name: str) -> Optional[PatternMatch]:
    if isinstance(rule, StemRule):
        stem = match_stem(rule, name)
        if stem is None:
            return None
        values = stem_values(stem, (stem,))
        return PatternMatch(
            rule=rule,
            target=name,
            stem=stem,
            groups=(stem,),
            prereqs=tuple(bind(p.replace(rule.marker, stem), values) for p in rule.prereqs),
            all_targets=tuple(t.replace(rule.marker, stem) for t in rule.all_targets) or (name,),
            recipe=None if rule.recipe is None else bind(rule.recipe, values),
        )

    m = match_regex(rule, name)
    if m is None:
        return None
    groups = tuple(g or "" for g in m.groups())
    stem = groups[0] if groups else m.group(0)
    values = stem_values(stem, groups)
    return PatternMatch(
        rule=rule,
        target=name,
        stem=stem,
        groups=groups,
        prereqs=tuple(bind(_backrefs(p, m), values) for p in rule.prereqs),
        all_targets=(name,),
        recipe=None if rule.recipe is None else bind(_backrefs(rule.recipe, m), values),
    )


def candidates(
    rules: Iterable[PatternRule],
    name: str,
    skip: Collection[PatternRule] = (),
) -> Iterator[PatternMatch]:
    """
    Every meta-rule that textually matches `name`, in source order.

    Rules in `skip` (those already applied further up the current chain)
    are passed over so a meta-rule never feeds itself.
    """
    for rule in rules:
        if rule.recipe is None and Attribute.FORCE_UPDATE not in rule.attrs:
            continue
        if any(rule is s for s in skip):
            continue
        pm = instantiate(rule, name)
        if pm is not None:
            yield pm
