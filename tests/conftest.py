"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from archonflow.config import Settings
from archonflow.database import DatabaseManager
from archonflow.history import VersionController, WorkflowSpec
from archonflow.identity import CurrentUser, StaticIdentityProvider
from archonflow.store import InMemoryEntityStore, SQLEntityStore


@pytest.fixture
def test_settings():
    """Settings isolated from the developer's environment."""
    return Settings(
        _env_file=None,
        environment="testing",
        store_backend="memory",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def identity():
    """Identity provider returning a fixed user."""
    return StaticIdentityProvider(
        CurrentUser(email="alice@example.com", organization_id="org-1", role="admin")
    )


@pytest.fixture
def memory_store():
    """Fresh in-memory entity store."""
    return InMemoryEntityStore()


@pytest_asyncio.fixture
async def sql_store(test_settings):
    """SQL entity store on an in-memory SQLite database."""
    store = SQLEntityStore(DatabaseManager(test_settings))
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def entity_store(request, test_settings):
    """Every entity store backend."""
    if request.param == "memory":
        yield InMemoryEntityStore()
        return

    store = SQLEntityStore(DatabaseManager(test_settings))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def controller(memory_store, identity, test_settings):
    """Version controller on the in-memory store."""
    return VersionController(memory_store, identity=identity, app_settings=test_settings)


def make_spec(*node_ids, edges=(), labels=None, types=None):
    """Build a spec from node ids; every node is an agent unless told otherwise."""
    labels = labels or {}
    types = types or {}
    return WorkflowSpec.model_validate({
        "nodes": [
            {
                "id": node_id,
                "type": types.get(node_id, "agent"),
                "label": labels.get(node_id, node_id.replace("_", " ").title()),
                "config": {},
            }
            for node_id in node_ids
        ],
        "edges": [{"source": source, "target": target} for source, target in edges],
    })


@pytest.fixture
def spec_factory():
    """Provide the spec factory."""
    return make_spec


@pytest.fixture
def sample_spec_data():
    """Create sample workflow spec data for testing."""
    return {
        "nodes": [
            {
                "id": "trigger_1",
                "type": "trigger",
                "label": "Manual trigger",
                "config": {},
                "position": {"x": 100, "y": 100},
            },
            {
                "id": "agent_1",
                "type": "agent",
                "label": "Research agent",
                "config": {"model": "gpt-4o", "temperature": 0.2},
                "position": {"x": 300, "y": 100},
            },
            {
                "id": "email_1",
                "type": "email",
                "label": "Send report",
                "config": {"to": "team@example.com"},
                "position": {"x": 500, "y": 100},
            },
        ],
        "edges": [
            {"source": "trigger_1", "target": "agent_1"},
            {"source": "agent_1", "target": "email_1", "label": "report"},
        ],
        "collaboration_strategy": "sequential",
    }
