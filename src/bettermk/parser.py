# parser.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .errors import ParseError
from .expand import (
    STEM_VARIABLES,
    ExpansionError,
    Expander,
    Variables,
    VariableTable,
    command_output,
    split_unquoted,
    strip_comment,
)
from .model import Attribute, ExplicitRule, PatternRule, RegexRule, Rule, StemRule

ASSIGNMENT = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=(.*)$", re.S)
ATTRIBUTE_LETTERS = {a.value: a for a in Attribute if a is not Attribute.CUSTOM_COMPARATOR}
STEM_MARKERS = "%&"
REGEX_FLAG = "R"
EMPTY_STEM_FLAG = "Z"


@dataclass
class RuleSet:
    """Everything a rule file declares, in source order."""
    explicit: Dict[str, List[ExplicitRule]]
    patterns: List[PatternRule]
    default_targets: List[str]
    variables: VariableTable
    rules: List[Rule] = field(default_factory=list)


@dataclass
class _Header:
    targets: List[str]
    prereqs: List[str]
    attrs: frozenset
    comparator: Optional[str]
    regex: bool
    allow_empty: bool
    file: str
    line: int
    recipe: List[str] = field(default_factory=list)

    @property
    def location(self) -> str:
        return f"{self.file}:{self.line}"


class Parser:
    """
    Line-oriented reader for rule files.

    Assignments are applied as they are read, so later lines see earlier
    values (`X=$X more` accumulates). Recipe lines are kept verbatim apart
    from their indentation. `$stem` and friends in a meta-rule's
    prerequisites are left in place until the rule is matched.
    """

    def __init__(
        self,
        variables: Optional[Variables] = None,
        *,
        shell: Sequence[str] = ("sh",),
        run_command: Optional[Callable[[str], str]] = None,
    ):
        self.variables = variables if variables is not None else Variables()
        self.shell = list(shell)
        self.expander = Expander(self.variables, self.shell, run_command)
        self._run_command = run_command
        self.rules: List[Rule] = []
        self._open: Optional[_Header] = None
        self._including: List[str] = []

    # ---- input ----

    def parse_file(self, path: str | Path) -> "Parser":
        p = Path(path)
        key = str(p.resolve())
        if key in self._including:
            chain = " -> ".join(self._including + [key])
            raise ParseError(f"recursive include: {chain}", file=str(p))
        try:
            text = p.read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(f"cannot read rule file: {e.strerror or e}", file=str(p))
        self._including.append(key)
        try:
            self.parse_text(text, filename=str(p))
        finally:
            self._including.pop()
        return self

    def parse_text(self, text: str, filename: str = "<mkfile>") -> "Parser":
        lines = text.splitlines()
        i = 0
        while i < len(lines):
            raw = lines[i]
            lineno = i + 1
            i += 1

            if not raw.strip():
                self._close()
                continue

            if raw[0] in " \t":
                if self._open is None:
                    raise ParseError("recipe line before any rule header", filename, lineno)
                self._open.recipe.append(raw.lstrip(" \t"))
                continue

            line = raw
            while line.endswith("\\") and i < len(lines):
                line = line[:-1] + " " + lines[i]
                i += 1

            body = self._guard(strip_comment, line, filename, lineno).strip()
            if not body:
                # comment-only line
                continue

            self._close()
            if body.startswith("<"):
                self._include(body[1:], filename, lineno)
                continue

            m = ASSIGNMENT.match(body)
            if m:
                words = self._guard(self.expander.words, m.group(2), filename, lineno)
                self.variables.set(m.group(1), words)
                continue

            self._open = self._header(body, filename, lineno)

        self._close()
        return self

    def finish(self) -> RuleSet:
        self._close()
        explicit: Dict[str, List[ExplicitRule]] = {}
        patterns: List[PatternRule] = []
        defaults: List[str] = []
        for rule in self.rules:
            if isinstance(rule, ExplicitRule):
                for t in rule.targets:
                    explicit.setdefault(t, []).append(rule)
                if not defaults:
                    defaults = [rule.targets[0]]
            else:
                patterns.append(rule)
        return RuleSet(
            explicit=explicit,
            patterns=patterns,
            default_targets=defaults,
            variables=self.variables.freeze(),
            rules=list(self.rules),
        )

    # ---- helpers ----

    @staticmethod
    def _guard(fn, text: str, filename: str, lineno: int):
        try:
            return fn(text)
        except ExpansionError as e:
            raise ParseError(str(e), filename, lineno)

    def _include(self, rest: str, filename: str, lineno: int) -> None:
        if rest.startswith("|"):
            cmd = self._guard(self.expander.text, rest[1:], filename, lineno)
            if self._run_command is not None:
                text = self._run_command(cmd)
            else:
                env = self.variables.freeze().as_environment()
                text = command_output(cmd, self.shell, env)
            self.parse_text(text, filename=f"<|{cmd}")
        else:
            path = self._guard(self.expander.text, rest, filename, lineno)
            if not path:
                raise ParseError("include directive without a file name", filename, lineno)
            try:
                self.parse_file(path)
            except ParseError as e:
                if e.file == path and not e.line:
                    raise ParseError(e.message, filename, lineno)
                raise
        self._close()

    def _attributes(self, text: str, filename: str, lineno: int):
        attrs = set()
        comparator = None
        regex = False
        allow_empty = False
        text = text.strip()
        for idx, c in enumerate(text):
            if c == "P":
                comparator = text[idx + 1:].strip()
                if not comparator:
                    raise ParseError("attribute P needs a comparator command", filename, lineno)
                attrs.add(Attribute.CUSTOM_COMPARATOR)
                break
            if c == REGEX_FLAG:
                regex = True
            elif c == EMPTY_STEM_FLAG:
                allow_empty = True
            elif c in ATTRIBUTE_LETTERS:
                attrs.add(ATTRIBUTE_LETTERS[c])
            else:
                raise ParseError(f"unknown attribute {c!r}", filename, lineno)
        return frozenset(attrs), comparator, regex, allow_empty

    def _header(self, body: str, filename: str, lineno: int) -> _Header:
        parts = self._guard(lambda t: split_unquoted(t, ":"), body, filename, lineno)
        if len(parts) == 1:
            raise ParseError(
                f"expected an assignment, rule header or include: {body!r}", filename, lineno
            )
        if len(parts) > 3:
            raise ParseError("malformed rule header: too many ':'", filename, lineno)

        targets = self._guard(self.expander.words, parts[0], filename, lineno)
        if not targets:
            raise ParseError("rule header has no targets", filename, lineno)
        attr_text = parts[1] if len(parts) == 3 else ""
        attrs, comparator, regex, allow_empty = self._attributes(attr_text, filename, lineno)
        meta = regex or any(m in t for t in targets for m in STEM_MARKERS)
        keep = STEM_VARIABLES if meta else ()
        prereqs = self._guard(lambda t: self.expander.words(t, keep), parts[-1], filename, lineno)
        return _Header(
            targets=targets,
            prereqs=prereqs,
            attrs=attrs,
            comparator=comparator,
            regex=regex,
            allow_empty=allow_empty,
            file=filename,
            line=lineno,
        )

    def _close(self) -> None:
        h = self._open
        if h is None:
            return
        self._open = None
        recipe = "\n".join(h.recipe) if h.recipe else None
        common = dict(
            prereqs=tuple(h.prereqs),
            recipe=recipe,
            attrs=h.attrs,
            comparator=h.comparator,
            location=h.location,
        )

        if h.regex:
            for t in h.targets:
                try:
                    compiled = re.compile(t)
                except re.error as e:
                    raise ParseError(f"bad regular expression {t!r}: {e}", h.file, h.line)
                self.rules.append(RegexRule(target=t, regex=compiled, all_targets=tuple(h.targets), **common))
            return

        marked = [t for t in h.targets if any(m in t for m in STEM_MARKERS)]
        if marked and len(marked) != len(h.targets):
            raise ParseError("cannot mix meta-rule and plain targets in one header", h.file, h.line)
        if marked:
            for t in h.targets:
                pos = min(t.find(m) for m in STEM_MARKERS if m in t)
                self.rules.append(
                    StemRule(
                        target=t,
                        prefix=t[:pos],
                        suffix=t[pos + 1:],
                        marker=t[pos],
                        allow_empty_stem=h.allow_empty,
                        all_targets=tuple(h.targets),
                        **common,
                    )
                )
            return

        self.rules.append(ExplicitRule(targets=tuple(h.targets), **common))


def parse_text(
    text: str,
    *,
    environ=None,
    overrides=None,
    shell: Sequence[str] = ("sh",),
    filename: str = "<mkfile>",
    run_command: Optional[Callable[[str], str]] = None,
) -> RuleSet:
    variables = Variables(environ, overrides)
    return Parser(variables, shell=shell, run_command=run_command).parse_text(text, filename).finish()


def parse_file(
    path: str | Path,
    *,
    environ=None,
    overrides=None,
    shell: Sequence[str] = ("sh",),
) -> RuleSet:
    variables = Variables(environ, overrides)
    return Parser(variables, shell=shell).parse_file(path).finish()
