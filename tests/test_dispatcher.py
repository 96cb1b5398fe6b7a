import asyncio
import json
import time

import pytest

from cornerstone_core.core.dispatcher import PluginDispatcher
from cornerstone_core.core.events import EventBus
from cornerstone_core.core.plugin_api import BindingNotFoundError, MutationEvent, PluginNotFoundError
from cornerstone_core.models.plugin import ExecutePluginRequest
from cornerstone_core.services.record_service import RecordService

from .conftest import OTHER_USER, OWNER


class _StaticBindings:
    def __init__(self, plugin_ids):
        self.plugin_ids = plugin_ids

    def lookup(self, table_id, trigger):
        return list(self.plugin_ids)


@pytest.fixture
def dispatcher(bindings, plugins, runner):
    return PluginDispatcher(bindings, plugins, runner, workers=4, queue_size=100, per_plugin_limit=2)


def test_manual_execution_requires_exact_binding(dispatcher, bindings, make_plugin, table, ledger):
    plugin = make_plugin()
    bindings.bind(plugin.id, table["id"], "create")
    request = ExecutePluginRequest(table_id=table["id"], trigger="manual")

    with pytest.raises(BindingNotFoundError):
        asyncio.run(dispatcher.execute_manual(plugin.id, OWNER, request))
    assert ledger.count_for_plugin(plugin.id) == 0


def test_manual_execution_requires_ownership(dispatcher, bindings, make_plugin, table, ledger):
    plugin = make_plugin()
    bindings.bind(plugin.id, table["id"], "manual")
    request = ExecutePluginRequest(table_id=table["id"], trigger="manual")

    with pytest.raises(PluginNotFoundError):
        asyncio.run(dispatcher.execute_manual(plugin.id, OTHER_USER, request))
    assert ledger.count_for_plugin(plugin.id) == 0


def test_manual_execution_returns_terminal_record(dispatcher, bindings, make_plugin, table):
    plugin = make_plugin()
    bindings.bind(plugin.id, table["id"], "manual")
    request = ExecutePluginRequest(table_id=table["id"], record_id="rec_9", trigger="manual", payload={"force": True})

    execution = asyncio.run(dispatcher.execute_manual(plugin.id, OWNER, request))

    assert execution.status == "success"
    assert execution.trigger == "manual"
    assert execution.record_id == "rec_9"
    assert json.loads(execution.output)["envelope"]["payload"] == {"force": True}


def test_triggered_execution_runs_once_per_binding(dispatcher, bindings, make_plugin, table, ledger):
    plugin = make_plugin()
    bindings.bind(plugin.id, table["id"], "create")
    bindings.bind(plugin.id, table["id"], "update")
    payload = {"record_id": "rec_1", "data": {"name": "Ada"}, "user_id": OWNER}

    async def scenario():
        dispatcher.start()
        dispatcher.trigger_by_table(table["id"], "create", "rec_1", OWNER, payload)
        # the dispatcher works on its own copy
        payload["data"]["name"] = "changed"
        await dispatcher.drain()
        await dispatcher.stop()

    asyncio.run(scenario())

    (execution,) = ledger.list_executions(plugin.id, OWNER)
    assert execution.status == "success"
    assert execution.trigger == "create"
    assert json.loads(execution.output)["envelope"]["payload"]["data"] == {"name": "Ada"}
    assert dispatcher.stats()["executed"] == 1


def test_trigger_returns_before_plugins_finish(dispatcher, bindings, make_plugin, table, ledger):
    slow = [
        make_plugin(
            """
            import time
            time.sleep(0.5)
            print("done")
            """
        )
        for _ in range(5)
    ]
    for plugin in slow:
        bindings.bind(plugin.id, table["id"], "delete")

    async def scenario():
        dispatcher.start()
        started = time.monotonic()
        dispatcher.trigger_by_table(table["id"], "delete", "rec_1", OWNER, {"record_id": "rec_1"})
        elapsed = time.monotonic() - started
        await dispatcher.drain()
        await dispatcher.stop()
        return elapsed

    elapsed = asyncio.run(scenario())

    assert elapsed < 0.1
    for plugin in slow:
        (execution,) = ledger.list_executions(plugin.id, OWNER)
        assert execution.status == "success"


def test_missing_plugin_is_logged_not_raised(plugins, runner, table, ledger):
    dispatcher = PluginDispatcher(_StaticBindings(["plg_missing"]), plugins, runner, workers=1)

    async def scenario():
        dispatcher.start()
        dispatcher.trigger_by_table(table["id"], "create", "rec_1", OWNER, {})
        await dispatcher.drain()
        await dispatcher.stop()

    asyncio.run(scenario())

    stats = dispatcher.stats()
    assert stats["failed"] == 1
    assert stats["executed"] == 0
    assert ledger.count_for_plugin("plg_missing") == 0


def test_full_queue_drops_instead_of_blocking(bindings, plugins, runner, table):
    dispatcher = PluginDispatcher(bindings, plugins, runner, workers=1, queue_size=1)

    async def scenario():
        dispatcher.start()
        # no await between the two calls, so the worker has not taken the first job yet
        dispatcher.trigger_by_table(table["id"], "create", "rec_1", OWNER, {})
        dispatcher.trigger_by_table(table["id"], "create", "rec_2", OWNER, {})
        await dispatcher.drain()
        await dispatcher.stop()

    asyncio.run(scenario())
    assert dispatcher.stats()["dropped"] == 1
    assert dispatcher.stats()["accepted"] == 1


def test_trigger_before_start_is_dropped(dispatcher, table):
    dispatcher.trigger_by_table(table["id"], "create", "rec_1", OWNER, {})
    assert dispatcher.stats()["dropped"] == 1
    assert dispatcher.stats()["running"] is False


def test_record_mutations_reach_bound_plugins(db_path, dispatcher, bindings, make_plugin, table, ledger):
    plugin = make_plugin()
    bindings.bind(plugin.id, table["id"], "create")
    bindings.bind(plugin.id, table["id"], "delete")
    bus = EventBus()
    bus.subscribe("record.create", dispatcher.on_record_mutation)
    bus.subscribe("record.delete", dispatcher.on_record_mutation)
    records = RecordService(db_path, event_bus=bus)

    async def scenario():
        dispatcher.start()
        record = await records.create_record(table["id"], {"email": "ada@example.com"}, OWNER)
        await records.update_record(record.id, {"email": "ada@example.org"}, OWNER)
        await records.delete_record(record.id, OWNER)
        await dispatcher.drain()
        await dispatcher.stop()
        return record

    record = asyncio.run(scenario())

    executions = ledger.list_executions(plugin.id, OWNER)
    assert sorted(e.trigger for e in executions) == ["create", "delete"]
    payloads = {e.trigger: json.loads(e.output)["envelope"]["payload"] for e in executions}
    assert payloads["create"] == {"record_id": record.id, "data": {"email": "ada@example.com"}, "user_id": OWNER}
    assert payloads["delete"] == {"record_id": record.id, "user_id": OWNER, "data": {"email": "ada@example.org"}}


def test_on_record_mutation_adapts_event(dispatcher, bindings, make_plugin, table, ledger):
    plugin = make_plugin()
    bindings.bind(plugin.id, table["id"], "update")
    event = MutationEvent(table_id=table["id"], record_id="rec_5", trigger="update", actor_id=OWNER, payload={"k": 1})
    assert event.event_name == "record.update"

    async def scenario():
        dispatcher.start()
        await dispatcher.on_record_mutation(event)
        await dispatcher.drain()
        await dispatcher.stop()

    asyncio.run(scenario())
    (execution,) = ledger.list_executions(plugin.id, OWNER)
    assert execution.record_id == "rec_5"


def test_per_plugin_limit_caps_concurrent_runs(dispatcher, bindings, make_plugin, table, ledger, work_dir):
    plugin = make_plugin(
        """
        import time
        start = time.time()
        time.sleep(0.5)
        end = time.time()
        with open("spans.log", "a") as fh:
            fh.write(f"{start} {end}\\n")
        """
    )
    bindings.bind(plugin.id, table["id"], "create")

    async def scenario():
        dispatcher.start()
        for idx in range(5):
            dispatcher.trigger_by_table(table["id"], "create", f"rec_{idx}", OWNER, {})
        await dispatcher.drain()
        await dispatcher.stop()

    asyncio.run(scenario())

    spans = [tuple(map(float, line.split())) for line in (work_dir / "spans.log").read_text().splitlines()]
    assert len(spans) == 5
    peak = max(sum(1 for s, e in spans if s <= point < e) for point, _ in spans)
    assert peak == dispatcher.per_plugin_limit == 2

    assert all(e.status == "success" for e in ledger.list_executions(plugin.id, OWNER))
    stats = dispatcher.stats()
    assert stats["executed"] == 5
    assert stats["active_plugins"] == 0
