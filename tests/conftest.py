import asyncio
import inspect
import os
import sys
from pathlib import Path

# Force the in-memory runtime before any import that might build it
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK", "true")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from mockchain.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


class ProjectFixture:
    """A workspace/project/folder trio in a MemoryStore with helpers to add stateful endpoints."""

    def __init__(self, store, workspace="ws1", project="pj1", *, is_public=True):
        self.store = store
        self.workspace = store.create_workspace(workspace)
        self.project = store.create_project(self.workspace.id, project)
        self.folder = store.create_folder(self.project.id, "default", is_public=is_public)

    def stateful(self, method, path, *, items=None, schema=None, advanced_config=None, notify=False):
        origin = self.store.create_endpoint(
            self.folder.id, f"{method} {path}", method, path, send_notification=notify
        )
        stateful = self.store.make_stateful(
            origin.id, schema=schema, advanced_config=advanced_config
        )
        if items is not None:
            from mockchain.storage.models import collection_name

            self.store.seed_items(
                collection_name(path, self.workspace.name, self.project.name), items
            )
        return stateful

    def items(self, path):
        from mockchain.storage.models import collection_name

        coll = self.store.get_item_collection(
            collection_name(path, self.workspace.name, self.project.name)
        )
        return coll.data_current if coll else None


@pytest.fixture
def memory_store():
    from mockchain.storage.memory import MemoryStore

    return MemoryStore()


@pytest.fixture
def runtime_project():
    """Project factory backed by the store of the live runtime used by the app."""
    from mockchain.service.runtime import get_runtime

    store = get_runtime().store

    def _make(workspace="ws1", project="pj1", **kwargs):
        return ProjectFixture(store, workspace, project, **kwargs)

    return _make


@pytest.fixture
def make_project(memory_store):
    def _make(workspace="ws1", project="pj1", **kwargs):
        return ProjectFixture(memory_store, workspace, project, **kwargs)

    return _make
