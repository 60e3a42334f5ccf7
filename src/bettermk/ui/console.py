"""Console output formatting utilities for bettermk."""

from __future__ import annotations

import sys
from typing import Dict, List, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, explain: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, trace graph construction and dispatch decisions
                   and show stack traces
            explain: If True, print why each target is rebuilt
        """
        self.debug = debug
        self.explain = explain

    def print_recipe(self, recipe: str) -> None:
        """Echo a recipe before it runs."""
        print(recipe)

    def print_output(self, output: str) -> None:
        """Print captured recipe output."""
        if output:
            sys.stdout.write(output if output.endswith("\n") else output + "\n")

    def print_up_to_date(self, name: str) -> None:
        print(f"bettermk: '{name}' is up to date")

    def print_explain(self, name: str, reasons: List[str]) -> None:
        """Print rebuild reasons (only if explain mode enabled)."""
        if not self.explain:
            return
        for reason in reasons:
            print(f"{name}: {reason}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: str = "",
    ) -> None:
        """
        Print a recipe failure.

        Args:
            name: Target whose recipe failed
            reason: Failure reason/error message
            exit_code: Optional exit code
            output: Captured recipe output, shown before the failure line
        """
        self.print_output(output)
        msg = f"bettermk: {reason}"
        if exit_code is not None and f"exit={exit_code}" not in reason:
            msg += f" (exit={exit_code})"
        print(msg, file=sys.stderr)

    def print_skipped(self, name: str, reason: str) -> None:
        print(f"bettermk: '{name}' skipped ({reason})", file=sys.stderr)

    def print_results(self, results: Dict[str, str]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for target, status in results.items():
            print(f"  {target}: {status.upper()}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
