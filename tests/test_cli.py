import io
import json

import pytest

from matviews import cli
from matviews.jobs.adapter import JobAdapter
from matviews.models.mat_views import MatViewDefinition


class RecordingAdapter(JobAdapter):
    name = "recording"

    def __init__(self):
        self.enqueued = []
        self.drained = False

    def enqueue(self, job_class, queue, args=(), kwargs=None):
        self.enqueued.append((job_class.__name__, list(args), dict(kwargs or {})))
        return {"status": "queued"}

    def drain(self):
        self.drained = True


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda: None)
    for name in ("YES", "FORCE", "CASCADE", "ROW_COUNT_STRATEGY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def adapter():
    return RecordingAdapter()


@pytest.fixture
def run_cli(session_factory, adapter):
    def run(argv, answer=""):
        stdout = io.StringIO()
        code = cli.main(argv, session_factory=session_factory, adapter=adapter, stdin=io.StringIO(answer), stdout=stdout)
        return code, stdout.getvalue()
    return run


@pytest.mark.parametrize("value", ["1", "true", "YES", " y ", "--yes"])
def test_booleanish_true(value):
    assert cli.booleanish_true(value)


@pytest.mark.parametrize("value", [None, "", "0", "no", "false", "sure"])
def test_booleanish_false(value):
    assert not cli.booleanish_true(value)


def test_create_by_id_with_yes(run_cli, adapter, stored_definition):
    code, out = run_cli(["create", "--id", str(stored_definition.id), "--yes"])

    assert code == 0
    assert adapter.enqueued == [("CreateViewJob", [stored_definition.id], {"force": False})]
    assert adapter.drained
    assert json.loads(out.strip()) == {"definition": "mv_users", "result": {"status": "queued"}}


def test_env_fallbacks(monkeypatch, run_cli, adapter, stored_definition):
    monkeypatch.setenv("YES", "1")
    monkeypatch.setenv("FORCE", "true")

    code, _ = run_cli(["create", "--name", "mv_users"])

    assert code == 0
    assert adapter.enqueued[0][2] == {"force": True}


def test_refresh_row_count_strategy(monkeypatch, run_cli, adapter, stored_definition):
    monkeypatch.setenv("ROW_COUNT_STRATEGY", "exact")

    run_cli(["refresh", "--id", str(stored_definition.id), "--yes"])
    run_cli(["refresh", "--id", str(stored_definition.id), "--yes", "--row-count-strategy", "none"])

    assert [call[2] for call in adapter.enqueued] == [
        {"row_count_strategy": "exact"},
        {"row_count_strategy": "none"},
    ]


def test_delete_cascade(run_cli, adapter, stored_definition):
    run_cli(["delete", "--id", str(stored_definition.id), "--cascade", "--yes"])

    assert adapter.enqueued == [("DeleteViewJob", [stored_definition.id], {"cascade": True, "if_exists": True})]


def test_delete_no_if_exists(run_cli, adapter, stored_definition):
    run_cli(["delete", "--id", str(stored_definition.id), "--no-if-exists", "--yes"])

    assert adapter.enqueued == [("DeleteViewJob", [stored_definition.id], {"cascade": False, "if_exists": False})]


def test_prompt_accepts_yes(run_cli, adapter, stored_definition):
    code, out = run_cli(["refresh", "--id", str(stored_definition.id)], answer="Yes\n")

    assert code == 0
    assert out.startswith("Proceed? [y/N]: ")
    assert len(adapter.enqueued) == 1


@pytest.mark.parametrize("answer", ["n\n", "\n", ""])
def test_prompt_aborts(run_cli, adapter, stored_definition, capsys, answer):
    code, _ = run_cli(["delete", "--id", str(stored_definition.id)], answer=answer)

    assert code == 1
    assert adapter.enqueued == []
    assert "Aborted." in capsys.readouterr().err


def test_all_definitions(run_cli, adapter, db_session, stored_definition):
    db_session.add(MatViewDefinition(name="mv_orders", sql="SELECT 1 AS id"))
    db_session.commit()

    code, _ = run_cli(["refresh", "--all", "--yes"])

    assert code == 0
    assert [call[1] for call in adapter.enqueued] == [[stored_definition.id], [stored_definition.id + 1]]


def test_unknown_name(run_cli, adapter, capsys):
    code, _ = run_cli(["refresh", "--name", "mv_nope", "--yes"])

    assert code == 1
    assert "No MatViewDefinition found for 'mv_nope'" in capsys.readouterr().err


def test_view_without_definition(monkeypatch, run_cli, adapter, capsys):
    monkeypatch.setattr(cli, "matview_exists", lambda db, rel, schema="public": True)

    code, _ = run_cli(["refresh", "--name", "reporting.mv_legacy", "--yes"])

    assert code == 1
    err = capsys.readouterr().err
    assert "reporting.mv_legacy exists, but no MatViewDefinition" in err


def test_target_is_required():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["create"])
