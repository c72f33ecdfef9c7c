"""
Client reconciliation layer.

A ``SessionSubscription`` follows one session document through the store's
push subscription, rebuilds the logical session (2D grid included) from every
pushed document and hands it to the caller.

Connection loss is handled by resubscribing inside fixed backoff windows. When
``max_attempts`` windows pass without a push the subscription moves to
``failed`` and the caller is asked to decide: ``retry()`` or ``leave()``.
"""

import threading
from enum import Enum
from typing import Any, Callable, List, Optional

from models import CooperativeSession, PlayerCursor
from services.coordinator import leave_session, player_color
from services.session_store import SessionStore, Unsubscribe
from utils.config import RECONNECT_BACKOFF_SEC, RECONNECT_MAX_ATTEMPTS
from utils.logger import logger


class ConnectionState(str, Enum):
    connecting = "connecting"
    live = "live"
    reconnecting = "reconnecting"
    failed = "failed"
    closed = "closed"


# Returns an object with start() and cancel(), like threading.Timer
TimerFactory = Callable[[float, Callable[[], None]], Any]


class SessionSubscription:
    def __init__(
        self,
        store: SessionStore,
        session_id: str,
        on_update: Callable[[CooperativeSession], None],
        on_connection_lost: Callable[["SessionSubscription"], None],
        on_removed: Optional[Callable[[], None]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        backoff_sec: float = RECONNECT_BACKOFF_SEC,
        max_attempts: int = RECONNECT_MAX_ATTEMPTS,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.session_id = session_id
        self.state = ConnectionState.connecting
        self.attempts = 0
        self.last_session: Optional[CooperativeSession] = None

        self._store = store
        self._on_update = on_update
        self._on_connection_lost = on_connection_lost
        self._on_removed = on_removed
        self._on_state_change = on_state_change
        self._backoff_sec = backoff_sec
        self._max_attempts = max(1, max_attempts)
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._generation = 0
        self._unsubscribe: Optional[Unsubscribe] = None
        self._timer = None

    # ─── public ───────────────────────────────────────────────────────────────
    def start(self) -> None:
        self._subscribe()

    def retry(self) -> None:
        """Resubscribe after a connection loss was reported."""
        with self._lock:
            if self.state == ConnectionState.closed:
                return
            self._cancel_timer()
            self.attempts = 0
        self._set_state(ConnectionState.connecting)
        logger.info(f"Retrying subscription to session {self.session_id}")
        self._subscribe()

    def leave(self, player_id: str) -> None:
        self.close()
        leave_session(self._store, self.session_id, player_id)

    def close(self) -> None:
        with self._lock:
            if self.state == ConnectionState.closed:
                return
            self._cancel_timer()
            listener = self._detach()
        if listener:
            listener()
        self._set_state(ConnectionState.closed)

    # ─── subscription plumbing ────────────────────────────────────────────────
    def _detach(self) -> Optional[Unsubscribe]:
        self._generation += 1
        listener, self._unsubscribe = self._unsubscribe, None
        return listener

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _subscribe(self) -> None:
        with self._lock:
            stale = self._detach()
            generation = self._generation
        if stale:
            stale()

        unsubscribe = self._store.subscribe(
            self.session_id,
            lambda data: self._handle_change(generation, data),
            lambda exc: self._handle_error(generation, exc),
        )
        with self._lock:
            if generation == self._generation:
                self._unsubscribe = unsubscribe
                return
        # superseded while subscribing (error, close or removal)
        unsubscribe()

    def _swap_state(self, state: ConnectionState) -> bool:
        # caller holds the lock
        changed = self.state != state
        self.state = state
        return changed

    def _announce(self, changed: bool, state: ConnectionState) -> None:
        if changed and self._on_state_change:
            self._on_state_change(state)

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            changed = self._swap_state(state)
        self._announce(changed, state)

    def _handle_change(self, generation: int, data) -> None:
        with self._lock:
            if generation != self._generation or self.state in (ConnectionState.closed, ConnectionState.failed):
                return

        if data is None:
            logger.info(f"Session {self.session_id} no longer exists")
            self.close()
            if self._on_removed:
                self._on_removed()
            return

        session = CooperativeSession.from_document(data)
        with self._lock:
            if generation != self._generation:
                return
            self._cancel_timer()
            self.attempts = 0
            self.last_session = session
            changed = self._swap_state(ConnectionState.live)
        self._announce(changed, ConnectionState.live)
        self._on_update(session)

    def _handle_error(self, generation: int, exc: Exception) -> None:
        with self._lock:
            if generation != self._generation or self.state in (ConnectionState.closed, ConnectionState.failed):
                return
            logger.warning(f"Subscription to session {self.session_id} failed: {exc}")
            listener = self._detach()
            window_running = self._timer is not None
            changed = self._swap_state(ConnectionState.reconnecting)
        if listener:
            listener()
        self._announce(changed, ConnectionState.reconnecting)
        if not window_running:
            self._open_window()

    def _open_window(self) -> None:
        with self._lock:
            self.attempts += 1
            window = self.attempts
            self._timer = self._timer_factory(self._backoff_sec, lambda: self._window_elapsed(window))
            self._timer.daemon = True
            self._timer.start()
        self._subscribe()

    def _window_elapsed(self, window: int) -> None:
        with self._lock:
            if window != self.attempts:
                return
            # this window's timer has fired, whatever happens next
            self._timer = None
            if self.state != ConnectionState.reconnecting:
                return
            give_up = self.attempts >= self._max_attempts
            listener = self._detach() if give_up else None
            changed = self._swap_state(ConnectionState.failed) if give_up else False
        if listener:
            listener()

        if not give_up:
            self._open_window()
            return

        logger.warning(f"Lost connection to session {self.session_id} after {window} attempt(s)")
        self._announce(changed, ConnectionState.failed)
        self._on_connection_lost(self)


def player_cursors(session: CooperativeSession, viewer_id: Optional[str] = None) -> List[PlayerCursor]:
    """Live cursors of every player except ``viewer_id``, with their display colour."""
    cursors = []
    for player in session.players:
        if player.id == viewer_id or player.cursor_position is None:
            continue
        avatar = player.profile.photo_url or (player.profile.avatar.value if player.profile.avatar else None)
        cursors.append(PlayerCursor(
            player_id   = player.id,
            player_name = player.profile.name,
            position    = player.cursor_position,
            color       = player_color(player.id, session.players),
            avatar      = avatar,
            timestamp   = session.updated_at,
        ))
    return cursors
