from datetime import timedelta

import pytest

from cornerstone_core.core.plugin_api import PluginNotFoundError, PluginPersistenceError
from cornerstone_core.db import utc_now
from cornerstone_core.services.execution_ledger import clamp_limit

from .conftest import OTHER_USER, OWNER


@pytest.mark.parametrize(
    "limit,expected",
    [(None, 50), (0, 50), (-5, 50), (1, 1), (120, 120), (200, 200), (201, 50), ("bad", 50)],
)
def test_clamp_limit(limit, expected):
    assert clamp_limit(limit) == expected


def test_start_then_finish_once(ledger, make_plugin, table):
    plugin = make_plugin()
    execution = ledger.start(plugin.id, table["id"], "rec_1", "create", OWNER)

    assert execution.status == "running"
    assert execution.finished_at is None
    assert ledger.get(execution.id).status == "running"

    finished_at = execution.started_at + timedelta(milliseconds=120)
    done = ledger.finish(execution, "success", "out", "", 120, finished_at)
    assert done.status == "success"
    assert done.is_terminal

    stored = ledger.get(execution.id)
    assert stored.status == "success"
    assert stored.output == "out"
    assert stored.duration_ms == 120
    assert stored.finished_at == finished_at


def test_second_finish_is_rejected(ledger, make_plugin, table):
    plugin = make_plugin()
    execution = ledger.start(plugin.id, table["id"], None, "manual", OWNER)
    ledger.finish(execution, "failed", "", "exit status 1", 5, utc_now())

    with pytest.raises(PluginPersistenceError):
        ledger.finish(execution, "success", "late", "", 10, utc_now())

    stored = ledger.get(execution.id)
    assert stored.status == "failed"
    assert stored.error == "exit status 1"


def test_finished_copy_cannot_be_finished_again(ledger, make_plugin, table):
    plugin = make_plugin()
    execution = ledger.start(plugin.id, table["id"], None, "manual", OWNER)
    done = ledger.finish(execution, "timeout", "", "execution timeout", 5, utc_now())
    assert done.is_terminal
    assert not execution.is_terminal

    with pytest.raises(PluginPersistenceError, match="already finished"):
        ledger.finish(done, "success", "late", "", 10, utc_now())
    assert ledger.get(execution.id).status == "timeout"


def test_finish_requires_terminal_status(ledger, make_plugin, table):
    plugin = make_plugin()
    execution = ledger.start(plugin.id, table["id"], None, "manual", OWNER)
    with pytest.raises(ValueError):
        ledger.finish(execution, "running", "", "", 0, utc_now())


def test_list_executions_checks_ownership_and_orders_recent_first(ledger, make_plugin, table):
    plugin = make_plugin()
    base = utc_now()
    ids = [
        ledger.start(plugin.id, table["id"], f"rec_{i}", "create", OWNER, started_at=base + timedelta(seconds=i)).id
        for i in range(3)
    ]

    listed = ledger.list_executions(plugin.id, OWNER)
    assert [e.id for e in listed] == list(reversed(ids))

    with pytest.raises(PluginNotFoundError):
        ledger.list_executions(plugin.id, OTHER_USER)


def test_list_executions_clamps_limit(ledger, make_plugin, table):
    plugin = make_plugin()
    for i in range(55):
        ledger.start(plugin.id, table["id"], f"rec_{i}", "create", OWNER)

    assert len(ledger.list_executions(plugin.id, OWNER, limit=0)) == 50
    assert len(ledger.list_executions(plugin.id, OWNER, limit=500)) == 50
    assert len(ledger.list_executions(plugin.id, OWNER, limit=10)) == 10
    assert len(ledger.list_executions(plugin.id, OWNER, limit=200)) == 55


def test_deleting_plugin_removes_history(ledger, plugins, make_plugin, table):
    plugin = make_plugin()
    ledger.start(plugin.id, table["id"], None, "manual", OWNER)
    plugins.delete_plugin(plugin.id, OWNER)
    assert ledger.count_for_plugin(plugin.id) == 0
