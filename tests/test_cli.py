import pytest
from click.testing import CliRunner

from bettermk.cli import cli


@pytest.fixture
def mk(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    def _invoke(text, *args, env=None):
        (tmp_path / "mkfile").write_text(text)
        return runner.invoke(cli, list(args), env=env)

    return _invoke


def test_builds_default_target(mk, tmp_path):
    result = mk("hello:\n\techo hi > hello\n\techo done\n")
    assert result.exit_code == 0, result.output
    assert "echo hi > hello" in result.output
    assert "done" in result.output
    assert (tmp_path / "hello").read_text() == "hi\n"


def test_reports_up_to_date(mk, tmp_path):
    (tmp_path / "hello").write_text("")
    result = mk("hello:\n\techo hi > hello\n")
    assert result.exit_code == 0
    assert "'hello' is up to date" in result.output


def test_dry_run_creates_nothing(mk, tmp_path):
    result = mk("hello:\n\techo hi > hello\n", "-n")
    assert result.exit_code == 0
    assert "echo hi > hello" in result.output
    assert not (tmp_path / "hello").exists()


def test_command_line_assignment(mk):
    result = mk("MSG=file\nsay:V:\n\techo $MSG\n", "MSG=cli", "say")
    assert result.exit_code == 0
    assert "cli" in result.output.splitlines()


def test_alternate_rule_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "build.mk").write_text("x:V:\n\techo alternate\n")
    result = CliRunner().invoke(cli, ["-f", "build.mk"])
    assert result.exit_code == 0
    assert "alternate" in result.output


def test_cycle_is_reported(mk):
    result = mk("a: b\n\techo a\nb: a\n\techo b\n")
    assert result.exit_code == 1
    assert "Circular dependency" in result.output
    assert "a -> b -> a" in result.output


def test_malformed_rule_file(mk):
    result = mk("a:\n\techo a\n\nwhat is this\n")
    assert result.exit_code == 1
    assert "Malformed rule file" in result.output
    assert "mkfile:4" in result.output


def test_missing_rule_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, [])
    assert result.exit_code == 1
    assert "Malformed rule file" in result.output


def test_no_rule_for_target(mk):
    result = mk("a:\n\techo a\n", "nothing")
    assert result.exit_code == 1
    assert "No rule to make target" in result.output
    assert "'nothing'" in result.output


def test_recipe_failure_exit_status(mk):
    result = mk("all:V: bad\n\nbad:\n\texit 2\n")
    assert result.exit_code == 1
    assert "recipe for 'bad' failed (exit=2)" in result.output
    assert "bad: FAILED" in result.output


def test_keep_going_builds_independent_branch(mk, tmp_path):
    text = "all:V: bad good\n\nbad:\n\tfalse\n\ngood:\n\ttouch good\n"
    result = mk(text, "-k")
    assert result.exit_code == 1
    assert (tmp_path / "good").exists()
    assert "all: SKIPPED" in result.output


def test_explain_prints_reasons(mk):
    result = mk("out:\n\ttouch out\n", "-e")
    assert result.exit_code == 0
    assert "out: does not exist" in result.output


def test_bad_nproc(mk):
    result = mk("out:\n\ttouch out\n", env={"NPROC": "zero"})
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_debug_traces_and_summarises(mk):
    result = mk("out:V:\n\techo x\n", "-d")
    assert result.exit_code == 0
    assert "[DEBUG]" in result.output
    assert "RESULTS" in result.output


def test_cycle_error_lists_each_step(mk):
    result = mk("a: b\n\techo a\nb: a\n\techo b\n")
    assert "  a needs b" in result.output
    assert "  b needs a" in result.output
    assert "break the cycle" in result.output


def test_missing_prerequisite_names_its_dependent(mk):
    result = mk("a: ghost\n\techo a\n")
    assert result.exit_code == 1
    assert "needed by: a" in result.output
    assert "Create 'ghost' or add a rule that makes it." in result.output


def test_dry_run_prints_bound_commands(mk, tmp_path):
    (tmp_path / "a.c").write_text("")
    (tmp_path / "b.c").write_text("")
    result = mk("all:V: a.o b.o\n\n%.o: %.c\n\tcp $stem.c $target\n", "-n")
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert "cp a.c a.o" in lines and "cp b.c b.o" in lines
