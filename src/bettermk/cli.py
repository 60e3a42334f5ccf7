# cli.py
from __future__ import annotations

import sys
from typing import List, Optional, Tuple

import click

from bettermk.config import DEFAULT_RULE_FILE, BuildOptions
from bettermk.errors import ConfigError, CycleError, MkError, NoRuleError, ParseError
from bettermk.model import Status
from bettermk.runner import run_build, split_arguments
from bettermk.ui.console import Console, set_console

ERROR_TITLES = {
    ParseError: "Malformed rule file",
    NoRuleError: "No rule to make target",
    CycleError: "Circular dependency",
    ConfigError: "Invalid configuration",
}


def _title(exc: MkError) -> str:
    for kind, title in ERROR_TITLES.items():
        if isinstance(exc, kind):
            return title
    return "Build failed"


def _details(exc: MkError) -> Tuple[List[str], Optional[str]]:
    """Extra lines and a hint for the structured error printer."""
    if isinstance(exc, CycleError):
        steps = [f"{a} needs {b}" for a, b in zip(exc.cycle, exc.cycle[1:])]
        return steps, "Remove one of these prerequisites to break the cycle."
    if isinstance(exc, NoRuleError):
        details = [f"needed by: {exc.needed_by}"] if exc.needed_by else []
        return details, f"Create '{exc.target}' or add a rule that makes it."
    if isinstance(exc, ConfigError):
        return [], f"Check the {exc.name} environment variable."
    return [], None


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-f", "rule_file", default=DEFAULT_RULE_FILE, show_default=True, help="Rule file to read")
@click.option("-n", "dry_run", is_flag=True, default=False, help="Print recipes without executing them")
@click.option("-a", "force_all", is_flag=True, default=False, help="Treat every target as out of date")
@click.option("-t", "touch", is_flag=True, default=False, help="Mark targets up to date without running recipes")
@click.option("-k", "keep_going", is_flag=True, default=False, help="Keep building branches independent of a failure")
@click.option("-i", "ignore_missing", is_flag=True, default=False, help="Ignore missing intermediate targets")
@click.option("-e", "explain", is_flag=True, default=False, help="Explain why each target is rebuilt")
@click.option("-d", "debug", is_flag=True, default=False, help="Trace graph construction and dispatch decisions")
@click.argument("args", nargs=-1)
def cli(rule_file, dry_run, force_all, touch, keep_going, ignore_missing, explain, debug, args):
    """bettermk: build TARGETS (or the first target in the rule file).

    Arguments of the form NAME=value set variables and override the rule file.
    Parallelism comes from $NPROC, the shell from $MKSHELL.
    """
    console = Console(debug=debug, explain=explain)
    set_console(console)

    try:
        targets, assignments = split_arguments(args)
        options = BuildOptions.from_environment(
            rule_file=rule_file,
            targets=targets,
            assignments=assignments,
            dry_run=dry_run,
            force_all=force_all,
            touch=touch,
            keep_going=keep_going,
            ignore_missing=ignore_missing,
            explain=explain,
            debug=debug,
        )
        report = run_build(options, console=console)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except MkError as e:
        details, suggestion = _details(e)
        console.print_error(_title(e), str(e), details=details, suggestion=suggestion)
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if debug:
        console.print_results({name: s.value for name, s in report.statuses.items()})
    elif not report.ok:
        console.print_results(
            {name: s.value for name, s in report.statuses.items() if s is not Status.SUCCEEDED}
        )

    sys.exit(report.exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
