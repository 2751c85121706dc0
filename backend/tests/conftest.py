import os
import random
import sys

import pytest

# Ensure the backend root (containing the `letterduel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from letterduel.game.session import SessionController, SessionSettings
from letterduel.game.validation import ValidationService
from letterduel.server import create_app
from letterduel.store.memory import MemoryStore
from letterduel.store.rooms import RoomStore


TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'SOCKETIO_ASYNC_MODE': 'threading',
    'JUDGE_URL': '',
    'TICK_INTERVAL_SEC': 0.05,
    'ANSWER_DEBOUNCE_MS': 0,
}


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture()
def rooms(store):
    return RoomStore(store)


@pytest.fixture()
def validation():
    return ValidationService()


@pytest.fixture()
def make_session(rooms, validation, clock):
    created = []

    def _make(player_id, seed=0, validation_service=None, **kwargs):
        kwargs.setdefault('settings', SessionSettings(answer_debounce_ms=0))
        ctrl = SessionController(
            rooms,
            validation_service or validation,
            connection_id=f'conn-{player_id}',
            player_id=player_id,
            clock=clock,
            rng=random.Random(seed),
            **kwargs,
        )
        created.append(ctrl)
        return ctrl

    yield _make
    for ctrl in created:
        ctrl.close()


@pytest.fixture()
def flask_app():
    application, _ = create_app(TEST_CONFIG)
    yield application


@pytest.fixture()
def app_and_socketio():
    return create_app(TEST_CONFIG)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()
