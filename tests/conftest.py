"""
Pytest fixtures for the cooperative session tests.
"""

import pytest
from fastapi.testclient import TestClient

from models import Cell, Difficulty, Direction, Grid, PlacedWord, PlayerProfile, Position
from routes.auth_routes import create_jwt
from services import coordinator
from services.grid import get_grid_provider
from services.session_store import InMemorySessionStore, get_store


def fixed_grid_provider(words, config):
    """Places every word on its own row, left to right."""
    size = config.grid_size
    cells = [[Cell(row=r, col=c, letter="X") for c in range(size)] for r in range(size)]
    placed = []
    for r, word in enumerate(words):
        word_id = f"w{r}"
        for c, letter in enumerate(word):
            cells[r][c] = Cell(row=r, col=c, letter=letter, wordId=word_id)
        placed.append(PlacedWord(
            id=word_id,
            text=word,
            start_pos=Position(row=r, col=0),
            end_pos=Position(row=r, col=len(word) - 1),
            direction=Direction.horizontal,
        ))
    return Grid(cells=cells, size=size, words=placed)


class FakeTimer:
    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


class ManualTimers:
    """Timer factory whose timers only fire when the test says so."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, fn):
        timer = FakeTimer(interval, fn)
        self.timers.append(timer)
        return timer


class FlakyStore(InMemorySessionStore):
    """In-memory store whose subscriptions can be broken or kept silent."""

    def __init__(self):
        super().__init__(supports_nested_arrays=False)
        self.offline = False
        self.listeners = []

    def subscribe(self, doc_id, on_change, on_error):
        self.listeners.append((on_change, on_error))
        if self.offline:
            return lambda: None
        return super().subscribe(doc_id, on_change, on_error)

    def break_connection(self, exc=None):
        _, on_error = self.listeners[-1]
        on_error(exc or ConnectionError("stream dropped"))


@pytest.fixture
def store():
    # как Firestore: без вложенных массивов, сетка хранится плоско
    return InMemorySessionStore(supports_nested_arrays=False)

@pytest.fixture
def flaky_store():
    return FlakyStore()

@pytest.fixture
def timers():
    return ManualTimers()

@pytest.fixture
def listener_timers():
    """Separate timers for the Firestore listener checks."""
    return ManualTimers()

@pytest.fixture
def grid_provider():
    return fixed_grid_provider


@pytest.fixture
def alice():
    return PlayerProfile(id="alice", name="Alice", photoURL="https://img.example/alice.png")

@pytest.fixture
def bob():
    return PlayerProfile(id="bob", name="Bob")

@pytest.fixture
def carol():
    return PlayerProfile(id="carol", name="Carol", photoURL="")


@pytest.fixture
def make_session(alice):
    """Factory: create a waiting session hosted by Alice."""
    def _make(target_store, words=("CHAT", "CHIEN"), max_players=4):
        return coordinator.create_session(
            target_store,
            alice,
            Difficulty.easy,
            "animals",
            list(words),
            max_players=max_players,
            grid_provider=fixed_grid_provider,
        )
    return _make

@pytest.fixture
def playing_session(store, make_session, bob):
    """Alice and Bob in a started game with words CHAT and CHIEN."""
    sid = make_session(store)
    room_code = store.get(sid)["roomCode"]
    coordinator.join_by_code(store, room_code, bob)
    coordinator.set_ready(store, sid, "bob", True)
    coordinator.start_game(store, sid, "alice")
    return sid


@pytest.fixture
def client(store):
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_grid_provider] = lambda: fixed_grid_provider
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def auth():
    def _headers(player_id):
        return {"Authorization": f"Bearer {create_jwt(player_id)}"}
    return _headers
