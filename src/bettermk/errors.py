# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class MkError(Exception):
    """Base class for every error the build engine reports to the user."""


@dataclass
class ParseError(MkError):
    """
    Malformed rule file. Raised before any graph is built, so a build whose
    rule file is broken never starts.
    """
    message: str
    file: str = "<mkfile>"
    line: int = 0

    def __str__(self) -> str:
        if self.line:
            return f"{self.file}:{self.line}: {self.message}"
        return f"{self.file}: {self.message}"


@dataclass
class NoRuleError(MkError):
    target: str
    needed_by: Optional[str] = None

    def __str__(self) -> str:
        if self.needed_by:
            return f"don't know how to make '{self.target}' (needed by '{self.needed_by}')"
        return f"don't know how to make '{self.target}'"


@dataclass
class CycleError(MkError):
    cycle: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return "circular dependency: " + " -> ".join(self.cycle)


@dataclass
class RecipeFailure(MkError):
    target: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"recipe for '{self.target}' failed (exit={self.exit_code})"


@dataclass
class ConfigError(MkError):
    name: str
    message: str

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


@dataclass
class StatusError(MkError):
    """A node whose status is already terminal was asked to change again."""
    target: str
    current: str
    requested: str

    def __str__(self) -> str:
        return f"node '{self.target}' is already {self.current}; cannot become {self.requested}"
