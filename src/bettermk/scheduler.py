# scheduler.py
from __future__ import annotations

import queue
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from .errors import RecipeFailure
from .executor import RecipeExecutor
from .model import Attribute, DependencyGraph, Job, JobResult, Node, Status, unique_prereqs
from .ui.console import Console, get_console

BLOCKING = (Status.FAILED, Status.SKIPPED)


@dataclass
class BuildReport:
    statuses: Dict[str, Status]
    roots: List[str]
    dispatched: List[str] = field(default_factory=list)
    failures: Dict[str, JobResult] = field(default_factory=dict)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and all(self.statuses.get(r) is Status.SUCCEEDED for r in self.roots)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def with_status(self, status: Status) -> List[str]:
        return [name for name, s in self.statuses.items() if s is status]


def recipe_group(node: Node) -> Optional[Tuple[str, Tuple[str, ...]]]:
    """
    Nodes made by one run of a multi-target rule share a group key; a node
    with a single target has none.
    """
    if node.recipe is None or len(node.all_targets) < 2:
        return None
    return node.location, node.all_targets


class Scheduler:
    """
    Bottom-up walk of the graph with a bounded worker pool.

    Only this loop changes node status. Workers run the executor and put
    their JobResult on a completion queue; the loop takes one result at a
    time, releases dependents whose prerequisites are now all terminal and
    dispatches whatever became ready, up to the free capacity.

    Targets of one multi-target rule run their recipe once: the first one
    ready is dispatched, the others wait on that job and take its result.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        executor: RecipeExecutor,
        *,
        workers: int = 1,
        keep_going: bool = False,
        console: Optional[Console] = None,
    ):
        self.graph = graph
        self.executor = executor
        self.workers = max(1, workers)
        self.keep_going = keep_going
        self.console = console or get_console()

    def run(self) -> BuildReport:
        graph = self.graph
        dependents = graph.dependents()
        report = BuildReport(statuses={}, roots=list(graph.roots))

        for node in graph.nodes.values():
            if not node.must_build and not node.status.terminal:
                node.transition(Status.SUCCEEDED)

        waiting: Dict[str, int] = {}
        ready: Deque[Node] = deque()
        for node in graph.nodes.values():
            if node.status.terminal:
                continue
            node.transition(Status.PENDING)
            waiting[node.name] = sum(1 for p in unique_prereqs(node) if not p.status.terminal)
            if waiting[node.name] == 0:
                ready.append(node)

        def release(node: Node) -> None:
            for name in dependents[node.name]:
                dep = graph[name]
                if dep.status is not Status.PENDING:
                    continue
                waiting[name] -= 1
                if waiting[name] == 0:
                    ready.append(dep)

        completions: "queue.Queue[JobResult]" = queue.Queue()
        in_flight: Dict[str, Job] = {}
        free_slots = list(range(self.workers))
        # group key -> siblings waiting on the running job / finished result
        riding: Dict[Tuple, List[Node]] = {}
        finished: Dict[Tuple, JobResult] = {}

        def settle(node: Node, result: JobResult) -> None:
            self._complete(node, result, report)
            if result.status is Status.FAILED:
                tolerated = self.keep_going or node.has(Attribute.CONTINUE_ON_ERROR)
                if not tolerated and not report.aborted:
                    report.aborted = True
                    self.console.print_debug("abort: no new jobs will be dispatched")
            release(node)

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            while ready or in_flight:
                # schedule all currently ready, up to free capacity
                while ready and not report.aborted:
                    node = ready[0]
                    blocked = [p.name for p in unique_prereqs(node) if p.status in BLOCKING]
                    if blocked:
                        ready.popleft()
                        node.transition(Status.SKIPPED)
                        self.console.print_skipped(node.name, f"prerequisite {blocked[0]!r} not built")
                        release(node)
                        continue
                    key = recipe_group(node)
                    if key in finished:
                        ready.popleft()
                        node.transition(Status.BUILDING)
                        settle(node, self.executor.share(finished[key], node))
                        continue
                    if key in riding:
                        ready.popleft()
                        node.transition(Status.BUILDING)
                        riding[key].append(node)
                        self.console.print_debug(f"{node.name}: built by the job for {key[1]}")
                        continue
                    if not free_slots:
                        break
                    ready.popleft()
                    job = Job(node=node, slot=free_slots.pop(0))
                    self._dispatch(job, pool, completions)
                    in_flight[node.name] = job
                    report.dispatched.append(node.name)
                    if key is not None:
                        riding[key] = []

                if not in_flight:
                    break

                # wait for one completion, then loop to schedule newly-ready nodes
                result = completions.get()
                job = in_flight.pop(result.name)
                free_slots.append(job.slot)
                settle(job.node, result)

                key = recipe_group(job.node)
                if key is not None:
                    finished[key] = result
                    for sibling in riding.pop(key, []):
                        settle(sibling, self.executor.share(result, sibling))

        report.statuses = {name: n.status for name, n in graph.nodes.items()}
        return report

    # ---- helpers ----

    def _dispatch(self, job: Job, pool: ThreadPoolExecutor, completions: "queue.Queue[JobResult]") -> None:
        node = job.node
        node.transition(Status.BUILDING)
        echo = self.executor.describe(node)
        if echo:
            self.console.print_recipe(echo)
        self.console.print_debug(f"dispatch {node.name} (slot {job.slot})")
        pool.submit(self._work, job, completions)

    def _work(self, job: Job, completions: "queue.Queue[JobResult]") -> None:
        try:
            result = self.executor.execute(job)
        except Exception as e:
            result = JobResult(job.node.name, Status.FAILED, exit_code=-1, output=f"{type(e).__name__}: {e}\n")
        completions.put(result)

    def _complete(self, node: Node, result: JobResult, report: BuildReport) -> None:
        if result.time is not None:
            node.time = result.time
        node.transition(result.status)
        self.console.print_debug(f"done {node.name}: {result.status.value}")
        if result.status is Status.FAILED:
            report.failures[node.name] = result
            failure = RecipeFailure(node.name, result.exit_code, result.output)
            self.console.print_failure(node.name, str(failure), result.exit_code, result.output)
        else:
            self.console.print_output(result.output)


def schedule(graph: DependencyGraph, executor: RecipeExecutor, **kwargs) -> BuildReport:
    return Scheduler(graph, executor, **kwargs).run()
