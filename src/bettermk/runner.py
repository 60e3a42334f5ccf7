# runner.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .config import BuildOptions
from .executor import CommandRunner, RecipeExecutor
from .graph import build_graph
from .model import DependencyGraph
from .parser import ASSIGNMENT, RuleSet, parse_file
from .scheduler import BuildReport, Scheduler
from .staleness import StalenessEvaluator
from .ui.console import Console, get_console


# ----------------------------------------------------------------------
# Rule loading
# ----------------------------------------------------------------------

def split_arguments(args: Iterable[str]) -> Tuple[List[str], Dict[str, str]]:
    """
    Positional arguments are either targets or NAME=value assignments.

    Returns:
      (targets, assignments)
    """
    targets: List[str] = []
    assignments: Dict[str, str] = {}
    for arg in args:
        m = ASSIGNMENT.match(arg)
        if m:
            assignments[m.group(1)] = m.group(2)
        else:
            targets.append(arg)
    return targets, assignments


def load_rules(options: BuildOptions, environ: Optional[Mapping[str, str]] = None) -> RuleSet:
    """
    Parse the rule file named by the options.

    The whole file (and everything it includes) is read before anything
    else happens, so a malformed file stops the build before it starts.
    """
    return parse_file(
        Path(options.rule_file),
        environ=environ,
        overrides=options.assignments,
        shell=options.shell,
    )


# ----------------------------------------------------------------------
# Plan + run
# ----------------------------------------------------------------------

def plan(
    rules: RuleSet,
    options: BuildOptions,
    *,
    runner: Optional[CommandRunner] = None,
    console: Optional[Console] = None,
) -> DependencyGraph:
    """Build the graph for the requested targets and mark what must be rebuilt."""
    console = console or get_console()
    graph = build_graph(rules, options.targets or None, console=console)
    StalenessEvaluator(
        force_all=options.force_all,
        ignore_missing=options.ignore_missing,
        runner=runner,
        shell=options.shell,
        console=console,
    ).evaluate(graph)
    return graph


def run_build(
    options: BuildOptions,
    *,
    runner: Optional[CommandRunner] = None,
    console: Optional[Console] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BuildReport:
    console = console or get_console()
    rules = load_rules(options, environ=environ)
    graph = plan(rules, options, runner=runner, console=console)

    for root in graph.roots:
        if not graph[root].must_build:
            console.print_up_to_date(root)

    executor = RecipeExecutor(
        rules.variables,
        runner=runner,
        shell=options.shell,
        dry_run=options.dry_run,
        touch_only=options.touch,
    )
    scheduler = Scheduler(
        graph,
        executor,
        workers=options.workers,
        keep_going=options.keep_going,
        console=console,
    )
    return scheduler.run()
