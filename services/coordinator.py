"""
Cooperative word-search session coordinator.

Stateless service functions over a ``SessionStore``. Each call reads the
latest session document, validates against it and writes a delta back; the
store's transactions are the only serialization point between players.
Validation failures raise ``CoordinatorError`` and are never retried here.
"""

import random
import unicodedata
from typing import Any, Dict, List, Optional, Sequence

from firebase_admin import firestore  # ArrayUnion, DELETE_FIELD
from google.api_core.exceptions import GoogleAPICallError

from models import (
    Cell,
    CooperativePlayer,
    CooperativeSession,
    Difficulty,
    PlayerProfile,
    Position,
    SessionStatus,
    Selection,
    WordFoundEvent,
    gen_uuid,
    now_ms,
)
from services.errors import CoordinatorError, ErrorCode
from services.grid import GridProvider, difficulty_config, generate_grid
from services.session_store import DELETE_DOCUMENT, SessionStore, field_path
from utils.config import DEFAULT_MAX_PLAYERS, ROOM_CODE_MAX_ATTEMPTS
from utils.grid_shape import flatten_grid
from utils.logger import logger

# без 0/O и 1/I
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH   = 6

MIN_PLAYERS       = 2
MAX_PLAYERS_LIMIT = 8
POINTS_PER_LETTER = 10

PLAYER_COLORS = [
    "#FF6B6B",  # red
    "#4ECDC4",  # cyan
    "#45B7D1",  # blue
    "#FFA07A",  # orange
    "#98D8C8",  # green
    "#F7DC6F",  # yellow
    "#BB8FCE",  # violet
    "#F8B739",  # gold
]


# ─── Helpers ───────────────────────────────────────────────────────────────────
def generate_room_code(rng: random.Random = random) -> str:
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))

def normalize_word(word: str) -> str:
    """Case-fold and strip diacritics: ``"Éléphant"`` -> ``"elephant"``."""
    decomposed = unicodedata.normalize("NFD", word.strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()

def match_word(word: str, words: Sequence[str]) -> Optional[str]:
    """Return the canonical target word matching ``word``, if any."""
    wanted = normalize_word(word)
    for candidate in words:
        if normalize_word(candidate) == wanted:
            return candidate
    return None

def player_color(player_id: str, players: Sequence[CooperativePlayer]) -> Optional[str]:
    for i, player in enumerate(players):
        if player.id == player_id:
            return PLAYER_COLORS[i % len(PLAYER_COLORS)]
    return None

def _same_human(existing: PlayerProfile, candidate: PlayerProfile) -> bool:
    if existing.photo_url and candidate.photo_url and existing.photo_url == candidate.photo_url:
        return True
    return bool(existing.name and candidate.name and existing.name == candidate.name)

def _dump_players(players: List[CooperativePlayer]) -> List[Dict[str, Any]]:
    return [p.to_document() for p in players]

def _require_session(data: Optional[Dict[str, Any]]) -> CooperativeSession:
    if data is None:
        raise CoordinatorError(ErrorCode.SESSION_NOT_FOUND)
    return CooperativeSession.from_document(data)

def _require_player(session: CooperativeSession, player_id: str) -> int:
    idx = session.player_index(player_id)
    if idx is None:
        raise CoordinatorError(ErrorCode.NOT_IN_SESSION)
    return idx

def _allocate_room_code(store: SessionStore) -> str:
    for _ in range(ROOM_CODE_MAX_ATTEMPTS):
        code = generate_room_code()
        if store.find_one({"roomCode": code, "status": SessionStatus.waiting.value}) is None:
            return code
    logger.warning(f"No free room code after {ROOM_CODE_MAX_ATTEMPTS} attempts")
    raise CoordinatorError(ErrorCode.ROOM_CODE_EXHAUSTED)


# ─── Lifecycle ─────────────────────────────────────────────────────────────────
def get_session(store: SessionStore, session_id: str) -> CooperativeSession:
    return _require_session(store.get(session_id))

def create_session(
    store: SessionStore,
    host_profile: PlayerProfile,
    difficulty: Difficulty,
    theme_id: str,
    words: List[str],
    max_players: int = DEFAULT_MAX_PLAYERS,
    level_id: Optional[int] = None,
    grid_provider: GridProvider = generate_grid,
) -> str:
    """
    Create a session in ``waiting`` status with the host as its only (ready)
    player. The grid is generated exactly once, here.
    """
    if not MIN_PLAYERS <= max_players <= MAX_PLAYERS_LIMIT:
        raise ValueError(f"max_players must be between {MIN_PLAYERS} and {MAX_PLAYERS_LIMIT}")

    difficulty = Difficulty(difficulty)
    config = difficulty_config(difficulty)
    room_code = _allocate_room_code(store)

    grid = grid_provider(words, config)
    target_words = list(dict.fromkeys(w.text for w in grid.words))
    if not target_words:
        raise ValueError("None of the words could be placed in the grid")

    now = now_ms()
    host = CooperativePlayer(id=host_profile.id, profile=host_profile, is_ready=True)
    session = CooperativeSession(
        id             = gen_uuid(),
        room_code      = room_code,
        host_id        = host.id,
        players        = [host],
        max_players    = max_players,
        status         = SessionStatus.waiting,
        grid           = grid,
        words          = target_words,
        difficulty     = difficulty,
        theme_id       = theme_id,
        level_id       = level_id,
        time_limit     = config.time_limit,
        time_remaining = config.time_limit,
        created_at     = now,
        updated_at     = now,
    )

    data = session.to_document()
    if not store.supports_nested_arrays:
        data["grid"] = flatten_grid(data["grid"])
    store.create(session.id, data)

    logger.info(f"Created session {session.id} room={room_code} host={host.id} words={len(target_words)}")
    return session.id

def join_by_code(store: SessionStore, room_code: str, profile: PlayerProfile) -> str:
    """
    Join the waiting session with ``room_code``. Joining again with the same
    player id returns the same session id without touching it.
    """
    code = room_code.strip().upper()
    found = store.find_one({"roomCode": code, "status": SessionStatus.waiting.value})
    if found is None:
        raise CoordinatorError(ErrorCode.SESSION_NOT_FOUND)
    session_id, _ = found
    new_player = CooperativePlayer(id=profile.id, profile=profile, is_ready=False)

    def _join(data):
        session = _require_session(data)
        if session.status != SessionStatus.waiting:
            raise CoordinatorError(ErrorCode.SESSION_NOT_FOUND)
        if session.get_player(profile.id) is not None:
            return None, False
        if len(session.players) >= session.max_players:
            raise CoordinatorError(ErrorCode.SESSION_FULL)
        if any(_same_human(p.profile, profile) for p in session.players):
            raise CoordinatorError(ErrorCode.DUPLICATE_IDENTITY)
        return {
            "players":   firestore.ArrayUnion([new_player.to_document()]),
            "updatedAt": now_ms(),
        }, True

    if store.transact(session_id, _join):
        logger.info(f"Player {profile.id} joined session {session_id}")
    else:
        logger.debug(f"Player {profile.id} already in session {session_id}")
    return session_id

def set_ready(store: SessionStore, session_id: str, player_id: str, is_ready: bool) -> None:
    def _ready(data):
        session = _require_session(data)
        idx = _require_player(session, player_id)
        players = list(session.players)
        players[idx] = players[idx].model_copy(update={"is_ready": is_ready})
        return {"players": _dump_players(players), "updatedAt": now_ms()}, None

    store.transact(session_id, _ready)

def start_game(store: SessionStore, session_id: str, host_id: str) -> None:
    def _start(data):
        session = _require_session(data)
        if session.host_id != host_id:
            raise CoordinatorError(ErrorCode.NOT_HOST)
        if session.status != SessionStatus.waiting:
            raise CoordinatorError(ErrorCode.INVALID_STATUS)
        if not all(p.is_ready for p in session.players):
            raise CoordinatorError(ErrorCode.PLAYERS_NOT_READY)
        if len(session.players) < MIN_PLAYERS:
            raise CoordinatorError(ErrorCode.INSUFFICIENT_PLAYERS)
        now = now_ms()
        return {
            "status":        SessionStatus.playing.value,
            "startedAt":     now,
            "timeRemaining": session.time_limit,
            "updatedAt":     now,
        }, None

    store.transact(session_id, _start)
    logger.info(f"Session {session_id} started by {host_id}")


# ─── Ephemeral broadcast ───────────────────────────────────────────────────────
def update_cursor_position(
    store: SessionStore,
    session_id: str,
    player_id: str,
    position: Optional[Position],
) -> None:
    """Fire-and-forget: a vanished session or player silently drops the update."""
    def _move(data):
        if data is None:
            return None, False
        players = data.get("players") or []
        for player in players:
            if player.get("id") == player_id:
                player["cursorPosition"] = position.to_document() if position else None
                return {"players": players, "updatedAt": now_ms()}, True
        return None, False

    try:
        applied = store.transact(session_id, _move)
    except (GoogleAPICallError, ValueError) as exc:
        # Firestore gives up on a contended transaction with ValueError
        logger.debug(f"Dropped cursor update from {player_id} for session {session_id}: {exc}")
        return
    if not applied:
        logger.debug(f"Dropped cursor update from {player_id} for session {session_id}")

def update_player_selection(
    store: SessionStore,
    session_id: str,
    player_id: str,
    cells: List[Cell],
) -> None:
    """
    Broadcast the cells a player is dragging over. Only
    ``activeSelections.<player_id>`` is written; an empty selection removes it.
    """
    def _select(data):
        if data is None or not any(p.get("id") == player_id for p in data.get("players") or []):
            return None, False
        now = now_ms()
        path = field_path("activeSelections", player_id)
        if not cells:
            return {path: firestore.DELETE_FIELD, "updatedAt": now}, True
        return {path: Selection(cells=cells, timestamp=now).to_document(), "updatedAt": now}, True

    try:
        applied = store.transact(session_id, _select)
    except (GoogleAPICallError, ValueError) as exc:
        logger.debug(f"Dropped selection update from {player_id} for session {session_id}: {exc}")
        return
    if not applied:
        logger.debug(f"Dropped selection update from {player_id} for session {session_id}")


# ─── Word submission ───────────────────────────────────────────────────────────
def submit_word(
    store: SessionStore,
    session_id: str,
    player_id: str,
    word: str,
    cells: Optional[List[Cell]] = None,
) -> bool:
    """
    Claim ``word`` for ``player_id``. Returns False for a word that is not a
    target, is already claimed, or a session that is not being played.

    The check and the write run in one store transaction, so of several racing
    submissions of the same word exactly one is credited.
    """
    cells = list(cells or [])

    def _arbitrate(data):
        session = _require_session(data)
        idx = _require_player(session, player_id)
        if session.status != SessionStatus.playing:
            return None, None

        canonical = match_word(word, session.words)
        if canonical is None or canonical in session.words_found:
            return None, None

        points = len(canonical) * POINTS_PER_LETTER
        player = session.players[idx]
        players = list(session.players)
        players[idx] = player.model_copy(update={
            "words_found": player.words_found + [canonical],
            "score":       player.score + points,
        })
        words_found = session.words_found + [canonical]
        now = now_ms()
        event = WordFoundEvent(
            player_id=player_id, player_name=player.profile.name,
            word=canonical, cells=cells, score=points, timestamp=now,
        )

        updates = {
            "players":       _dump_players(players),
            "wordsFound":    words_found,
            "lastWordFound": event.to_document(),
            field_path("activeSelections", player_id): firestore.DELETE_FIELD,
            "updatedAt":     now,
        }
        completed = set(words_found) >= set(session.words)
        if completed:
            updates["status"] = SessionStatus.completed.value
            updates["completedAt"] = now
        return updates, (canonical, completed)

    outcome = store.transact(session_id, _arbitrate)
    if outcome is None:
        logger.debug(f"Rejected word {word!r} from {player_id} in session {session_id}")
        return False

    canonical, completed = outcome
    logger.info(f"Player {player_id} found {canonical} in session {session_id}")
    if completed:
        logger.info(f"Session {session_id} completed")
    return True


# ─── Departure ─────────────────────────────────────────────────────────────────
def leave_session(store: SessionStore, session_id: str, player_id: str) -> None:
    """
    Remove a player. The last player out deletes the session; a departing host
    hands over to the earliest remaining joiner.
    """
    def _leave(data):
        if data is None:
            return None, None
        players = data.get("players") or []
        remaining = [p for p in players if p.get("id") != player_id]
        if len(remaining) == len(players):
            return None, None
        if not remaining:
            return DELETE_DOCUMENT, "deleted"

        host_id = data.get("hostId")
        new_host = remaining[0]["id"] if host_id == player_id else host_id
        return {
            "players":   remaining,
            "hostId":    new_host,
            field_path("activeSelections", player_id): firestore.DELETE_FIELD,
            "updatedAt": now_ms(),
        }, ("host_changed" if new_host != host_id else "left")

    outcome = store.transact(session_id, _leave)
    if outcome == "deleted":
        logger.info(f"Last player {player_id} left, session {session_id} deleted")
    elif outcome == "host_changed":
        logger.info(f"Host {player_id} left session {session_id}, host reassigned")
    elif outcome == "left":
        logger.info(f"Player {player_id} left session {session_id}")
