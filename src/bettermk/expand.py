# expand.py
from __future__ import annotations

import os
import re
import subprocess
from types import MappingProxyType
from typing import Callable, Collection, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

NAME_CHARS = re.compile(r"[A-Za-z0-9_]+")
REFERENCE = re.compile(r"\$(?:\{([A-Za-z0-9_]+)\}|([A-Za-z0-9_]+))")

# bound per meta-rule match, so left alone while the rule file is read
STEM_VARIABLES = frozenset(["stem"] + [f"stem{i}" for i in range(1, 10)])

Tokens = Tuple[str, ...]


class ExpansionError(ValueError):
    """Unterminated quote, `${` or command substitution."""


# ----------------------------------------------------------------------
# Variable tables
# ----------------------------------------------------------------------

class VariableTable(Mapping[str, Tokens]):
    """
    Read-only snapshot of the variables once parsing is over.

    Graph building and recipe execution only ever see this object.
    """

    def __init__(self, values: Mapping[str, Sequence[str]]):
        self._values = MappingProxyType({k: tuple(v) for k, v in values.items()})

    def __getitem__(self, name: str) -> Tokens:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def lookup(self, name: str) -> Tokens:
        return self._values.get(name, ())

    def as_environment(self) -> Dict[str, str]:
        return {k: " ".join(v) for k, v in self._values.items()}


class Variables:
    """
    Mutable table used while a rule file is being read.

    Seeded from the environment; `overrides` (command-line NAME=value)
    win over both the environment and later assignments in the file.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ):
        environ = os.environ if environ is None else environ
        self._values: Dict[str, Tokens] = {k: tuple(v.split()) for k, v in environ.items()}
        self._locked = set()
        for k, v in (overrides or {}).items():
            self._values[k] = tuple(v.split())
            self._locked.add(k)

    def lookup(self, name: str) -> Tokens:
        return self._values.get(name, ())

    def set(self, name: str, tokens: Iterable[str]) -> bool:
        """Assign `name`; returns False when a command-line override shadows it."""
        if name in self._locked:
            return False
        self._values[name] = tuple(tokens)
        return True

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def freeze(self) -> VariableTable:
        return VariableTable(self._values)


# ----------------------------------------------------------------------
# Scanning helpers (shared with the parser)
# ----------------------------------------------------------------------

def _closing(text: str, start: int, close: str) -> int:
    end = text.find(close, start)
    if end < 0:
        raise ExpansionError(f"unterminated {text[start - 2:start]!r}")
    return end


def _scan(text: str) -> Iterator[Tuple[int, str, bool]]:
    """
    Yield (index, char, top_level) for every character in `text`.

    Characters inside quotes, `${...}` and `` `{...} `` are not top level.
    """
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c == "'":
            j = i + 1
            while True:
                j = text.find("'", j)
                if j < 0:
                    raise ExpansionError("unterminated quote")
                if j + 1 < n and text[j + 1] == "'":
                    j += 2
                    continue
                break
            for k in range(i, j + 1):
                yield k, text[k], False
            i = j + 1
            continue
        if c in "$`" and i + 1 < n and text[i + 1] == "{":
            end = _closing(text, i + 2, "}")
            for k in range(i, end + 1):
                yield k, text[k], False
            i = end + 1
            continue
        yield i, c, True
        i += 1


def split_unquoted(text: str, sep: str) -> List[str]:
    """Split on `sep` wherever it appears outside quotes and braces."""
    parts: List[str] = []
    last = 0
    for i, c, top in _scan(text):
        if top and c == sep:
            parts.append(text[last:i])
            last = i + 1
    parts.append(text[last:])
    return parts


def strip_comment(text: str) -> str:
    for i, c, top in _scan(text):
        if top and c == "#":
            return text[:i]
    return text


# ----------------------------------------------------------------------
# Expansion
# ----------------------------------------------------------------------

def command_output(cmd: str, shell: Sequence[str], env: Optional[Mapping[str, str]] = None) -> str:
    proc = subprocess.run(
        [*shell, "-c", cmd],
        env=dict(env) if env is not None else None,
        stdout=subprocess.PIPE,
        text=True,
    )
    return proc.stdout


def bind(text: str, values: Mapping[str, str]) -> str:
    """
    Replace `$name` and `${name}` for the names in `values`; every other
    reference is left for the shell.
    """
    def repl(m: "re.Match[str]") -> str:
        name = m.group(1) or m.group(2)
        return values[name] if name in values else m.group(0)
    return REFERENCE.sub(repl, text)


def substitute(tokens: Sequence[str], old: str, new: str) -> List[str]:
    """`${name:old=new}` where `old`/`new` may carry a single `%`."""
    if "%" not in old:
        return [new if t == old else t for t in tokens]
    o_pre, o_suf = old.split("%", 1)
    out = []
    for t in tokens:
        if (
            len(t) >= len(o_pre) + len(o_suf)
            and t.startswith(o_pre)
            and t.endswith(o_suf)
        ):
            stem = t[len(o_pre):len(t) - len(o_suf)]
            out.append(new.replace("%", stem, 1))
        else:
            out.append(t)
    return out


class _Words:
    def __init__(self) -> None:
        self.words: List[str] = []
        self.cur: List[str] = []
        self.started = False

    def add(self, s: str) -> None:
        self.cur.append(s)
        self.started = True

    def flush(self) -> None:
        if self.started:
            self.words.append("".join(self.cur))
        self.cur = []
        self.started = False

    def splice(self, tokens: Sequence[str]) -> None:
        # prefix sticks to the first token, suffix to the last
        if not tokens:
            return
        self.add(tokens[0])
        for t in tokens[1:]:
            self.flush()
            self.add(t)


class Expander:
    """
    Expand `$name`, `${name}`, `${name:a%b=c%d}` and `` `{cmd} `` in one
    line of rule-file text, left to right, against the current table.
    """

    def __init__(
        self,
        variables: Variables | VariableTable,
        shell: Sequence[str] = ("sh",),
        run_command: Optional[Callable[[str], str]] = None,
    ):
        self.variables = variables
        self.shell = list(shell)
        self._run_command = run_command

    def _command(self, cmd: str) -> List[str]:
        if self._run_command is not None:
            return self._run_command(cmd).split()
        env = dict(os.environ)
        env.update(self._snapshot_env())
        return command_output(cmd, self.shell, env).split()

    def _snapshot_env(self) -> Dict[str, str]:
        vars_ = self.variables
        if isinstance(vars_, Variables):
            vars_ = vars_.freeze()
        return vars_.as_environment()

    def _reference(self, body: str) -> List[str]:
        if ":" in body:
            name, sub = body.split(":", 1)
            if "=" not in sub:
                raise ExpansionError(f"bad substitution ${{{body}}}")
            old, new = sub.split("=", 1)
            return substitute(self.variables.lookup(name.strip()), old, new)
        return list(self.variables.lookup(body.strip()))

    def words(self, text: str, keep: Collection[str] = ()) -> List[str]:
        """Expand `text` into words; references to names in `keep` stay as written."""
        out = _Words()
        i = 0
        n = len(text)
        while i < n:
            c = text[i]
            if c.isspace():
                out.flush()
                i += 1
            elif c == "'":
                j = i + 1
                buf = []
                while True:
                    if j >= n:
                        raise ExpansionError("unterminated quote")
                    if text[j] == "'":
                        if j + 1 < n and text[j + 1] == "'":
                            buf.append("'")
                            j += 2
                            continue
                        break
                    buf.append(text[j])
                    j += 1
                out.add("".join(buf))
                i = j + 1
            elif c == "$" and i + 1 < n and text[i + 1] == "{":
                end = _closing(text, i + 2, "}")
                body = text[i + 2:end]
                if body.strip() in keep:
                    out.add(text[i:end + 1])
                else:
                    out.splice(self._reference(body))
                i = end + 1
            elif c == "$":
                m = NAME_CHARS.match(text, i + 1)
                if m is None:
                    out.add("$")
                    i += 1
                elif m.group(0) in keep:
                    out.add(text[i:m.end()])
                    i = m.end()
                else:
                    out.splice(self.variables.lookup(m.group(0)))
                    i = m.end()
            elif c == "`" and i + 1 < n and text[i + 1] == "{":
                end = _closing(text, i + 2, "}")
                out.splice(self._command(text[i + 2:end]))
                i = end + 1
            else:
                out.add(c)
                i += 1
        out.flush()
        return out.words

    def text(self, text: str) -> str:
        return " ".join(self.words(text))
