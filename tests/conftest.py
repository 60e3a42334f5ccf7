import threading
import time
from pathlib import Path

import pytest

from bettermk.graph import build_graph
from bettermk.parser import parse_text
from bettermk.staleness import StalenessEvaluator
from bettermk.ui.console import Console, set_console


class FakeRunner:
    """CommandRunner that records calls instead of spawning processes."""

    def __init__(self, fail=(), create=False, delay=0.0, code=None):
        self.fail = set(fail)
        self.create = create
        self.delay = delay
        self.code = code
        self.calls = []
        self.events = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self, argv, context):
        target = context.env.get("target", "")
        with self._lock:
            self.calls.append((target, list(argv), dict(context.env)))
            self.events.append(("start", target))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.create and target:
                Path(target).write_text("built\n", encoding="utf-8")
            if self.code is not None:
                code = self.code
            else:
                code = 1 if target in self.fail else 0
        finally:
            with self._lock:
                self.active -= 1
                self.events.append(("end", target))
        return code, f"ran {target}\n"

    @property
    def targets(self):
        return [c[0] for c in self.calls]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("NPROC", raising=False)
    monkeypatch.delenv("MKSHELL", raising=False)
    set_console(Console())


@pytest.fixture
def graph_of():
    """graph_of(text, exists=..., targets=...) -> (rules, graph)"""

    def _make(text, exists=(), targets=None):
        rules = parse_text(text, environ={})
        present = set(exists)
        graph = build_graph(rules, targets, exists=lambda name: name in present)
        return rules, graph

    return _make


@pytest.fixture
def planned(graph_of):
    """planned(text, times, ...) -> (rules, graph) with staleness evaluated."""

    def _make(text, times=None, targets=None, runner=None, **kwargs):
        times = dict(times or {})
        rules, graph = graph_of(text, exists=times.keys(), targets=targets)
        StalenessEvaluator(stat=times.get, runner=runner or FakeRunner(), **kwargs).evaluate(graph)
        return rules, graph

    return _make


@pytest.fixture
def fake_runner():
    return FakeRunner
