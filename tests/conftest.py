import os
import tempfile
import textwrap

# keep file logging out of the working tree; must run before cornerstone_core is imported
os.environ.setdefault("CORNERSTONE_LOG_DIR", tempfile.mkdtemp(prefix="cornerstone-logs-"))

import pytest

from cornerstone_core.core.plugin_runner import ExecutionRunner
from cornerstone_core.db import init_schema
from cornerstone_core.models.plugin import PluginCreate
from cornerstone_core.services.binding_service import BindingRegistry
from cornerstone_core.services.catalog_service import CatalogService
from cornerstone_core.services.execution_ledger import ExecutionLedger
from cornerstone_core.services.plugin_service import PluginService
from cornerstone_core.services.settings_service import SettingsService

OWNER = "usr_owner"
OTHER_USER = "usr_other"

ECHO_ENVELOPE = """
import json
import os
import sys

envelope = json.load(sys.stdin)
print(json.dumps({
    "envelope": envelope,
    "plugin_id": os.environ.get("PLUGIN_ID"),
    "trigger": os.environ.get("PLUGIN_TRIGGER"),
    "config": os.environ.get("PLUGIN_CONFIG"),
    "cwd": os.getcwd(),
}))
"""


def write_script(work_dir, name: str, body: str) -> str:
    target = work_dir / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return name


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "cornerstone.db")
    init_schema(path)
    return path


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def settings_service(db_path, work_dir):
    service = SettingsService(db_path)
    service.update_plugin_runtime_defaults(30, str(work_dir), "test")
    return service


@pytest.fixture
def catalog(db_path):
    return CatalogService(db_path)


@pytest.fixture
def plugins(db_path):
    return PluginService(db_path)


@pytest.fixture
def bindings(db_path):
    return BindingRegistry(db_path)


@pytest.fixture
def ledger(db_path):
    return ExecutionLedger(db_path)


@pytest.fixture
def table(catalog):
    database = catalog.create_database("crm", OWNER)
    return catalog.create_table(database["id"], "contacts", OWNER)


@pytest.fixture
def runner(ledger, settings_service):
    return ExecutionRunner(ledger, settings_service)


@pytest.fixture
def make_plugin(plugins, work_dir):
    counter = {"n": 0}

    def _make(body: str = ECHO_ENVELOPE, *, entry_file: str = None, timeout: int = 0, config_values: str = "", owner: str = OWNER):
        counter["n"] += 1
        entry = entry_file or f"plugin_{counter['n']}.py"
        if ".." not in entry:
            write_script(work_dir, entry, body)
        return plugins.create_plugin(
            PluginCreate(
                name=f"plugin-{counter['n']}",
                language="python",
                entry_file=entry,
                timeout=timeout,
                config_values=config_values,
            ),
            owner,
        )

    return _make
