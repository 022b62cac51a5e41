"""Shared fixtures: in-memory stores, a fake clock and a test application."""

import pytest

from sketchdb.web_app.app import create_app
from sketchdb.web_app.app_config import TestingConfig
from sketchdb.web_app.session_registry import SessionRegistry
from sketchdb.web_app.token_service import TokenService


class FakeClock:
    """Manually advanced clock used by the registry and token service."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeUserManager:
    def __init__(self):
        self.users = {}

    def add(self, user_id, username, is_verified=True):
        self.users[str(user_id)] = {
            'id': user_id,
            'username': username,
            'email': f"{username}@example.com",
            'is_verified': is_verified,
        }

    def get_user(self, user_id):
        return self.users.get(str(user_id))


class FakeDiagramStore:
    def __init__(self):
        self.diagrams = {}

    def add(self, diagram_id, owner_id, owner_username='owner', name='Shop schema',
            is_public=False, collaborators=None, slug=None):
        self.diagrams[str(diagram_id)] = {
            'id': diagram_id,
            'owner_id': owner_id,
            'owner_username': owner_username,
            'name': name,
            'slug': slug,
            'is_public': is_public,
            'content': {'nodes': [], 'edges': [], 'viewport': {'x': 0, 'y': 0, 'zoom': 1}},
            'collaborators': {str(k): v for k, v in (collaborators or {}).items()},
        }

    def get_diagram(self, diagram_id):
        return self.diagrams.get(str(diagram_id))

    def get_diagram_by_slug(self, slug):
        for diagram in self.diagrams.values():
            if diagram['slug'] and diagram['slug'] == slug:
                return diagram
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    manager = FakeUserManager()
    manager.add(1, 'alice')
    manager.add(2, 'bob')
    manager.add(3, 'carol')
    manager.add(4, 'dave', is_verified=False)
    return manager


@pytest.fixture
def diagrams():
    store = FakeDiagramStore()
    # alice owns d1; bob may edit it, carol may only view
    store.add('d1', owner_id=1, owner_username='alice', collaborators={2: 'edit', 3: 'view'})
    store.add('d2', owner_id=1, owner_username='alice', name='Public', is_public=True, slug='pub-slug')
    store.add('d3', owner_id=2, owner_username='bob', name='Private')
    return store


@pytest.fixture
def registry(clock):
    return SessionRegistry(
        max_users_per_diagram=10,
        max_total_connections=150,
        cursor_throttle_ms=50,
        event_rate_limit=30,
        event_rate_window_ms=1000,
        rate_state_ttl_seconds=60,
        clock=clock,
    )


@pytest.fixture
def tokens(clock):
    return TokenService('testing-secret-key', ttl_seconds=3600, clock=clock)


@pytest.fixture
def app(users, diagrams, registry, tokens):
    return create_app(TestingConfig, user_manager=users, diagram_store=diagrams,
                      registry=registry, token_service=tokens)


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def connect(app, tokens):
    """Open a Socket.IO test client authenticated as the given user id."""
    clients = []

    def _connect(user_id=None, token=None):
        if token is None and user_id is not None:
            token = tokens.issue(user_id)
        auth = {'token': token} if token is not None else None
        client = app.socketio.test_client(app, auth=auth)
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        if client.is_connected():
            client.disconnect()
