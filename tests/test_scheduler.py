import pytest

from bettermk.errors import StatusError
from bettermk.executor import RecipeExecutor
from bettermk.model import Node, Status
from bettermk.scheduler import Scheduler

DIAMOND = (
    "all: left right\n\techo all\n\n"
    "left: base\n\techo left\n\n"
    "right: base\n\techo right\n\n"
    "base:\n\techo base\n"
)


def _run(planned, text, runner, times=None, workers=1, keep_going=False, targets=None, **executor_kwargs):
    rules, graph = planned(text, times, targets=targets)
    executor = RecipeExecutor(rules.variables, runner=runner, **executor_kwargs)
    report = Scheduler(graph, executor, workers=workers, keep_going=keep_going).run()
    return graph, report


def test_diamond_builds_each_node_once(planned, fake_runner):
    runner = fake_runner()
    graph, report = _run(planned, DIAMOND, runner)
    assert report.ok and report.exit_code == 0
    assert sorted(runner.targets) == ["all", "base", "left", "right"]
    assert runner.targets[0] == "base"
    assert runner.targets[-1] == "all"
    assert all(s is Status.SUCCEEDED for s in report.statuses.values())


def test_no_node_starts_before_its_prerequisites_finish(planned, fake_runner):
    text = DIAMOND + "\nextra: base\n\techo extra\n"
    runner = fake_runner(delay=0.02)
    rules, graph = planned(text + "\ntop: all extra\n\techo top\n", targets=["top"])
    executor = RecipeExecutor(rules.variables, runner=runner)
    report = Scheduler(graph, executor, workers=4).run()
    assert report.ok

    position = {ev: i for i, ev in enumerate(runner.events)}
    for node in graph.nodes.values():
        for p in node.prereqs:
            assert position[("end", p.name)] < position[("start", node.name)]


def test_pool_size_bounds_concurrency(planned, fake_runner):
    names = [f"t{i}" for i in range(6)]
    text = "all: " + " ".join(names) + "\n\techo all\n\n" + "".join(f"{n}:\n\techo {n}\n\n" for n in names)
    runner = fake_runner(delay=0.02)
    _, report = _run(planned, text, runner, workers=2)
    assert report.ok
    assert runner.max_active <= 2


def test_failure_aborts_new_dispatch(planned, fake_runner):
    text = "all: a b\n\techo all\n\na:\n\tfalse\n\nb:\n\techo b\n"
    runner = fake_runner(fail={"a"})
    _, report = _run(planned, text, runner)
    assert report.aborted
    assert report.exit_code == 1
    assert runner.targets == ["a"]
    assert report.statuses["a"] is Status.FAILED
    assert report.statuses["b"] is Status.PENDING
    assert report.statuses["all"] is Status.PENDING
    assert "all" not in report.dispatched


KEEP_GOING = (
    "all: c b\n\techo all\n\n"
    "c: a\n\techo c\n\n"
    "a:\n\tfalse\n\n"
    "b:\n\techo b\n"
)


def test_keep_going_skips_dependents_and_builds_siblings(planned, fake_runner):
    runner = fake_runner(fail={"a"})
    _, report = _run(planned, KEEP_GOING, runner, keep_going=True)
    assert not report.aborted
    assert report.statuses["b"] is Status.SUCCEEDED
    assert report.statuses["a"] is Status.FAILED
    assert report.statuses["c"] is Status.SKIPPED
    assert report.statuses["all"] is Status.SKIPPED
    assert "c" not in runner.targets and "all" not in runner.targets
    assert report.exit_code == 1


def test_continue_on_error_attribute_acts_locally(planned, fake_runner):
    text = KEEP_GOING.replace("a:\n\tfalse", "a:E:\n\tfalse")
    runner = fake_runner(fail={"a"})
    _, report = _run(planned, text, runner)
    assert not report.aborted
    assert report.statuses["b"] is Status.SUCCEEDED
    assert report.statuses["c"] is Status.SKIPPED
    assert report.statuses["all"] is Status.SKIPPED


def test_up_to_date_nodes_are_not_dispatched(planned, fake_runner):
    text = "all: x\n\techo all\n\nx: y\n\tcp y x\n"
    runner = fake_runner()
    _, report = _run(planned, text, runner, times={"y": 10, "x": 20, "all": 30})
    assert report.dispatched == []
    assert runner.calls == []
    assert report.ok


def test_dry_run_runs_nothing_and_echoes_quiet_recipes(planned, fake_runner, capsys):
    text = "all:Q: x\n\techo quiet all\n\nx:\n\techo x\n"
    runner = fake_runner()
    _, report = _run(planned, text, runner, dry_run=True)
    assert runner.calls == []
    assert report.dispatched == ["x", "all"]
    out = capsys.readouterr().out
    assert "echo x" in out and "echo quiet all" in out


def test_dry_run_echoes_commands_with_target_variables_bound(planned, fake_runner, capsys):
    text = "all:V: a.o b.o\n\n%.o: %.c\n\tcc -c $stem.c -o $target\n"
    runner = fake_runner()
    _run(planned, text, runner, times={"a.c": 1, "b.c": 1}, dry_run=True)
    out = capsys.readouterr().out.splitlines()
    assert "cc -c a.c -o a.o" in out
    assert "cc -c b.c -o b.o" in out
    assert not any("$" in line for line in out)


MULTI = "all:V: g.tab.c g.tab.h\n\n%.tab.c %.tab.h: %.y\n\tyacc -d $stem.y\n"


@pytest.mark.parametrize("workers", [1, 2])
def test_multi_target_rule_runs_once(planned, fake_runner, workers):
    runner = fake_runner(delay=0.02)
    _, report = _run(planned, MULTI, runner, times={"g.y": 10}, workers=workers)
    assert report.ok
    assert len(runner.calls) == 1
    assert report.statuses["g.tab.c"] is Status.SUCCEEDED
    assert report.statuses["g.tab.h"] is Status.SUCCEEDED
    assert report.dispatched == ["g.tab.c", "all"]


def test_multi_target_failure_fails_every_target(planned, fake_runner):
    runner = fake_runner(fail={"g.tab.c"})
    _, report = _run(planned, MULTI, runner, times={"g.y": 10}, keep_going=True)
    assert runner.targets == ["g.tab.c"]
    assert report.statuses["g.tab.c"] is Status.FAILED
    assert report.statuses["g.tab.h"] is Status.FAILED
    assert report.statuses["all"] is Status.SKIPPED


def test_quiet_recipe_not_echoed(planned, fake_runner, capsys):
    runner = fake_runner()
    _run(planned, "all:Q:\n\techo secret\n", runner)
    assert "echo secret" not in capsys.readouterr().out


def test_recipe_environment(planned, fake_runner):
    text = "%.tab.c %.tab.h: %.y\n\tyacc $stem.y\n"
    rules, graph = planned(text, {"gram.y": 10}, targets=["gram.tab.c"])
    runner = fake_runner()
    Scheduler(graph, RecipeExecutor(rules.variables, runner=runner)).run()

    ((target, argv, env),) = runner.calls
    assert target == "gram.tab.c"
    assert argv == ["sh", "-e", "-c", "yacc gram.y"]
    assert env["stem"] == "gram"
    assert env["stem1"] == "gram"
    assert env["stem2"] == ""
    assert env["prereq"] == "gram.y"
    assert env["newprereq"] == "gram.y"
    assert env["alltarget"] == "gram.tab.c gram.tab.h"
    assert env["nproc"] == "0"


def test_force_update_without_recipe_records_time(planned, fake_runner):
    runner = fake_runner()
    graph, report = _run(planned, "stamp:N: y\n", runner, times={"y": 10, "stamp": 20})
    assert report.ok
    assert report.dispatched == ["stamp"]
    assert runner.calls == []
    assert graph["stamp"].time > 20


def test_worker_exception_becomes_failure(planned):
    class Exploding:
        def run(self, argv, context):
            raise RuntimeError("boom")

    _, report = _run(planned, "a:\n\techo a\n", Exploding())
    assert report.statuses["a"] is Status.FAILED
    assert "boom" in report.failures["a"].output


def test_terminal_status_cannot_change():
    node = Node(name="x")
    node.transition(Status.PENDING)
    node.transition(Status.BUILDING)
    node.transition(Status.SUCCEEDED)
    with pytest.raises(StatusError):
        node.transition(Status.BUILDING)
