# executor.py
from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .expand import VariableTable, bind
from .model import Attribute, Job, JobResult, Node, Status, unique_prereqs
from .patterns import stem_values


@dataclass(frozen=True)
class RecipeContext:
    """Where and with which environment a command runs."""
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None


class CommandRunner(Protocol):
    def run(self, argv: Sequence[str], context: RecipeContext) -> Tuple[int, str]:
        """Run argv; return (exit_code, combined stdout+stderr)."""
        ...


class ShellRunner:
    """CommandRunner backed by subprocess."""

    def run(self, argv: Sequence[str], context: RecipeContext) -> Tuple[int, str]:
        try:
            proc = subprocess.run(
                list(argv),
                cwd=context.cwd,
                env=dict(context.env) if context.env else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError:
            return 127, f"{argv[0]}: command not found\n"
        return proc.returncode, proc.stdout or ""


def artifact_time(name: str) -> Optional[int]:
    try:
        return os.stat(name).st_mtime_ns
    except OSError:
        return None


def touch(name: str) -> int:
    Path(name).touch()
    return artifact_time(name) or time.time_ns()


# ----------------------------------------------------------------------
# Recipe execution
# ----------------------------------------------------------------------

class RecipeExecutor:
    """
    Runs one node's recipe. Called from worker threads: it only reads the
    node and the variable snapshot and hands back a JobResult.

    `$target`, `$prereq`, `$newprereq`, `$alltarget` and `$stem*` are bound
    into the recipe text before it is echoed or run, so what `-n` prints is
    what a real build would hand to the shell. They are exported to the
    environment as well.
    """

    def __init__(
        self,
        variables: VariableTable,
        *,
        runner: Optional[CommandRunner] = None,
        shell: Sequence[str] = ("sh",),
        dry_run: bool = False,
        touch_only: bool = False,
    ):
        self.variables = variables
        self.runner = runner or ShellRunner()
        self.shell = list(shell)
        self.dry_run = dry_run
        self.touch_only = touch_only

    def target_values(self, node: Node) -> Dict[str, str]:
        values = {
            "target": node.name,
            "prereq": " ".join(p.name for p in unique_prereqs(node)),
            "newprereq": " ".join(node.newer),
            "alltarget": " ".join(node.all_targets or (node.name,)),
        }
        values.update(stem_values(node.stem, node.groups))
        return values

    def context(self, node: Node, slot: int = 0) -> RecipeContext:
        env: Dict[str, str] = dict(os.environ)
        env.update(self.variables.as_environment())
        env.update(self.target_values(node))
        env["nproc"] = str(slot)
        return RecipeContext(env=env)

    def command(self, node: Node) -> Optional[str]:
        """The recipe with this node's target variables filled in."""
        if node.recipe is None:
            return None
        return bind(node.recipe, self.target_values(node))

    def argv(self, recipe: str) -> List[str]:
        return [*self.shell, "-e", "-c", recipe]

    def describe(self, node: Node) -> Optional[str]:
        """What gets echoed when the node is dispatched, or None."""
        if self.touch_only and not self.dry_run:
            return None if node.virtual else f"touch({node.name})"
        if node.recipe is None:
            return None
        if node.has(Attribute.QUIET) and not self.dry_run:
            return None
        return self.command(node)

    def execute(self, job: Job) -> JobResult:
        node = job.node

        if self.dry_run:
            return JobResult(node.name, Status.SUCCEEDED)

        if self.touch_only:
            new_time = None if node.virtual else touch(node.name)
            return JobResult(node.name, Status.SUCCEEDED, time=new_time)

        if node.recipe is None:
            # nothing to run; N records the build time only
            new_time = artifact_time(node.name)
            if node.has(Attribute.FORCE_UPDATE) or new_time is None:
                new_time = time.time_ns()
            return JobResult(node.name, Status.SUCCEEDED, time=new_time)

        code, output = self.runner.run(self.argv(self.command(node)), self.context(node, job.slot))
        if code != 0:
            if node.has(Attribute.DELETE_ON_FAILURE) and not node.virtual:
                self._remove(node.name)
            return JobResult(node.name, Status.FAILED, exit_code=code, output=output)

        new_time = None if node.virtual else artifact_time(node.name)
        return JobResult(node.name, Status.SUCCEEDED, output=output, time=new_time or time.time_ns())

    def share(self, result: JobResult, node: Node) -> JobResult:
        """
        Result for a sibling target made by the same recipe run as
        `result`. The recipe is not run again.
        """
        if result.status is not Status.SUCCEEDED:
            if node.has(Attribute.DELETE_ON_FAILURE) and not node.virtual:
                self._remove(node.name)
            return replace(result, name=node.name, output="")
        if self.dry_run or node.virtual:
            return replace(result, name=node.name, output="")
        new_time = touch(node.name) if self.touch_only else artifact_time(node.name)
        return replace(result, name=node.name, output="", time=new_time or result.time)

    @staticmethod
    def _remove(name: str) -> None:
        try:
            os.unlink(name)
        except FileNotFoundError:
            pass
