"""Shared fixtures.

Each test gets its own SQLite file so that the thread-pool workers used by
``Database.run`` open independent connections.
"""

import pytest

from shared.config import AuthSettings, DatabaseSettings, LLMSettings, Settings
from shared.models import ToolContext, UserContext


@pytest.fixture
def db(tmp_path):
    from storage import Database

    database = Database(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def conversations(db):
    from storage import ConversationStore

    return ConversationStore(db)


@pytest.fixture
def visualizations(db):
    from storage import VisualizationStore

    return VisualizationStore(db)


@pytest.fixture
def registry(visualizations):
    from domains import load_all_domains
    from tools import ToolRegistry

    registry = ToolRegistry()
    load_all_domains(registry, visualizations)
    return registry


@pytest.fixture
def user():
    return UserContext(user_id="user1", username="alice", email="alice@example.com")


@pytest.fixture
def make_context(user):
    """Build a ToolContext; pass ``user=None`` for an anonymous caller."""
    def factory(conversation_id=None, visualization_id=None, **overrides):
        overrides.setdefault("user", user)
        return ToolContext(
            request_id="req-1",
            conversation_id=conversation_id,
            visualization_id=visualization_id,
            **overrides,
        )

    return factory


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        llm=LLMSettings(backend="mock", max_duration_seconds=5),
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'app.db'}"),
        auth=AuthSettings(secret_key="test-secret"),
    )
