import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from models import Cell, CooperativeSession, Difficulty, PlayerCursor, PlayerProfile, Position
from routes.auth_routes import decode_player_id, get_current_player_id
from services import coordinator
from services.grid import GridProvider, get_grid_provider
from services.reconciliation import ConnectionState, SessionSubscription, player_cursors
from services.session_store import SessionStore, get_store
from utils.config import DEFAULT_MAX_PLAYERS
from utils.logger import logger

router = APIRouter()


# ─── Pydantic schemas ────────────────────────────────────────────────────────────
class CreateSessionRequest(BaseModel):
    profile:     PlayerProfile
    difficulty:  Difficulty    = Difficulty.medium
    theme_id:    str
    words:       List[str]     = Field(..., min_length=1)
    max_players: int           = Field(DEFAULT_MAX_PLAYERS, ge=2, le=8)
    level_id:    Optional[int] = None

class JoinRequest(BaseModel):
    room_code: str = Field(..., min_length=1)
    profile:   PlayerProfile

class ReadyRequest(BaseModel):
    is_ready: bool

class CursorUpdate(BaseModel):
    position: Optional[Position] = None

class SelectionUpdate(BaseModel):
    cells: List[Cell] = Field(default_factory=list)

class WordSubmission(BaseModel):
    word:  str        = Field(..., min_length=1)
    cells: List[Cell] = Field(default_factory=list)

class WordSubmissionResult(BaseModel):
    accepted: bool


def _own_profile(profile: PlayerProfile, player_id: str) -> PlayerProfile:
    # игрок может действовать только от своего имени
    if profile.id != player_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Profile does not belong to you")
    return profile


# ─── Lobby ───────────────────────────────────────────────────────────────────────
@router.post("/", response_model=CooperativeSession, status_code=status.HTTP_201_CREATED)
async def create_session(
    req: CreateSessionRequest,
    player_id:     str           = Depends(get_current_player_id),
    store:         SessionStore  = Depends(get_store),
    grid_provider: GridProvider  = Depends(get_grid_provider),
):
    try:
        sid = coordinator.create_session(
            store,
            _own_profile(req.profile, player_id),
            req.difficulty,
            req.theme_id,
            req.words,
            max_players=req.max_players,
            level_id=req.level_id,
            grid_provider=grid_provider,
        )
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return coordinator.get_session(store, sid)

@router.post("/join", response_model=CooperativeSession)
async def join_session(
    req: JoinRequest,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    sid = coordinator.join_by_code(store, req.room_code, _own_profile(req.profile, player_id))
    return coordinator.get_session(store, sid)

@router.get("/{sid}", response_model=CooperativeSession)
async def get_session_state(
    sid: str,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    session = coordinator.get_session(store, sid)
    if session.get_player(player_id) is None:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Access denied")
    return session

@router.post("/{sid}/ready", status_code=status.HTTP_204_NO_CONTENT)
async def set_ready(
    sid: str,
    req: ReadyRequest,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    coordinator.set_ready(store, sid, player_id, req.is_ready)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.post("/{sid}/start", status_code=status.HTTP_204_NO_CONTENT)
async def start_game(
    sid: str,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    coordinator.start_game(store, sid, player_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.post("/{sid}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_session(
    sid: str,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    coordinator.leave_session(store, sid, player_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ─── Game ────────────────────────────────────────────────────────────────────────
@router.put("/{sid}/cursor", status_code=status.HTTP_202_ACCEPTED)
async def update_cursor(
    sid: str,
    req: CursorUpdate,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    coordinator.update_cursor_position(store, sid, player_id, req.position)
    return Response(status_code=status.HTTP_202_ACCEPTED)

@router.put("/{sid}/selection", status_code=status.HTTP_202_ACCEPTED)
async def update_selection(
    sid: str,
    req: SelectionUpdate,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    coordinator.update_player_selection(store, sid, player_id, req.cells)
    return Response(status_code=status.HTTP_202_ACCEPTED)

@router.post("/{sid}/words", response_model=WordSubmissionResult)
async def submit_word(
    sid: str,
    req: WordSubmission,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    # неверное слово - это обычный ход, а не ошибка
    accepted = coordinator.submit_word(store, sid, player_id, req.word, req.cells)
    return WordSubmissionResult(accepted=accepted)

@router.get("/{sid}/cursors", response_model=List[PlayerCursor])
async def list_cursors(
    sid: str,
    player_id: str          = Depends(get_current_player_id),
    store:     SessionStore = Depends(get_store),
):
    session = coordinator.get_session(store, sid)
    if session.get_player(player_id) is None:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Access denied")
    return player_cursors(session, viewer_id=player_id)


# ─── Live stream ─────────────────────────────────────────────────────────────────
@router.websocket("/{sid}/stream")
async def stream_session(
    websocket: WebSocket,
    sid: str,
    token: str          = Query(...),
    store: SessionStore = Depends(get_store),
):
    """
    Pushes every session update to the client. After a lost connection the
    client answers ``retry`` (resubscribe) or ``leave`` (quit the game).
    """
    try:
        player_id = decode_player_id(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    data = store.get(sid)
    if data is None or not any(p.get("id") == player_id for p in data.get("players") or []):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(message: dict) -> None:
        # store callbacks may arrive on a listener thread
        loop.call_soon_threadsafe(queue.put_nowait, message)

    def on_state_change(state: ConnectionState) -> None:
        if state == ConnectionState.reconnecting:
            push({"type": "reconnecting"})

    subscription = SessionSubscription(
        store,
        sid,
        on_update=lambda session: push({"type": "session", "session": session.to_document()}),
        on_connection_lost=lambda _sub: push({"type": "connection_lost", "choices": ["leave", "retry"]}),
        on_removed=lambda: push({"type": "removed"}),
        on_state_change=on_state_change,
    )

    async def _send():
        while True:
            message = await queue.get()
            await websocket.send_json(message)
            if message["type"] == "removed":
                return

    async def _receive():
        while True:
            command = (await websocket.receive_text()).strip().lower()
            if command == "retry":
                subscription.retry()
            elif command == "leave":
                subscription.leave(player_id)
                return

    subscription.start()
    tasks = {asyncio.create_task(_send()), asyncio.create_task(_receive())}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            task.result()
        await websocket.close()
    except WebSocketDisconnect:
        logger.debug(f"Player {player_id} disconnected from session {sid} stream")
    finally:
        subscription.close()
