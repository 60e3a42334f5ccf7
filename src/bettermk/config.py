# config.py
from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .errors import ConfigError

DEFAULT_RULE_FILE = "mkfile"
DEFAULT_SHELL = "sh"
NPROC_VAR = "NPROC"
SHELL_VAR = "MKSHELL"


def workers_from_env(env: Mapping[str, str] | None = None) -> int:
    env = os.environ if env is None else env
    raw = env.get(NPROC_VAR, "1").strip() or "1"
    try:
        n = int(raw)
    except ValueError:
        raise ConfigError(NPROC_VAR, f"must be a positive integer, got {raw!r}")
    if n < 1:
        raise ConfigError(NPROC_VAR, f"must be a positive integer, got {raw!r}")
    return n


def shell_from_env(env: Mapping[str, str] | None = None) -> List[str]:
    env = os.environ if env is None else env
    argv = shlex.split(env.get(SHELL_VAR, "") or DEFAULT_SHELL)
    return argv or [DEFAULT_SHELL]


@dataclass
class BuildOptions:
    """Everything one invocation needs, gathered from the CLI and environment."""
    rule_file: str = DEFAULT_RULE_FILE
    targets: List[str] = field(default_factory=list)
    assignments: Dict[str, str] = field(default_factory=dict)

    dry_run: bool = False           # -n
    force_all: bool = False         # -a
    touch: bool = False             # -t
    keep_going: bool = False        # -k
    ignore_missing: bool = False    # -i
    explain: bool = False           # -e
    debug: bool = False             # -d

    workers: int = 1
    shell: List[str] = field(default_factory=lambda: [DEFAULT_SHELL])

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> "BuildOptions":
        opts = cls(workers=workers_from_env(env), shell=shell_from_env(env))
        for k, v in overrides.items():
            if not hasattr(opts, k):
                raise ConfigError(k, "unknown build option")
            setattr(opts, k, v)
        return opts
