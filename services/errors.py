from enum import Enum
from typing import Optional

from fastapi import status


class ErrorCode(str, Enum):
    SESSION_NOT_FOUND    = "SESSION_NOT_FOUND"
    SESSION_FULL         = "SESSION_FULL"
    DUPLICATE_IDENTITY   = "DUPLICATE_IDENTITY"
    NOT_HOST             = "NOT_HOST"
    INSUFFICIENT_PLAYERS = "INSUFFICIENT_PLAYERS"
    PLAYERS_NOT_READY    = "PLAYERS_NOT_READY"
    ROOM_CODE_EXHAUSTED  = "ROOM_CODE_EXHAUSTED"
    NOT_IN_SESSION       = "NOT_IN_SESSION"
    INVALID_STATUS       = "INVALID_STATUS"


# Сообщения для пользователя: ошибки лобби должны быть понятными и с подсказкой
_MESSAGES = {
    ErrorCode.SESSION_NOT_FOUND:    "Game not found or already started",
    ErrorCode.SESSION_FULL:         "This game is full",
    ErrorCode.DUPLICATE_IDENTITY:   "You are already in this game from another device or account",
    ErrorCode.NOT_HOST:             "Only the host can start the game",
    ErrorCode.INSUFFICIENT_PLAYERS: "At least 2 players are needed to start",
    ErrorCode.PLAYERS_NOT_READY:    "All players must be ready",
    ErrorCode.ROOM_CODE_EXHAUSTED:  "Could not allocate a room code, please try again",
    ErrorCode.NOT_IN_SESSION:       "You are not a player in this game",
    ErrorCode.INVALID_STATUS:       "The game has already started or is finished",
}

_HTTP_STATUS = {
    ErrorCode.SESSION_NOT_FOUND:    status.HTTP_404_NOT_FOUND,
    ErrorCode.SESSION_FULL:         status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_IDENTITY:   status.HTTP_409_CONFLICT,
    ErrorCode.NOT_HOST:             status.HTTP_403_FORBIDDEN,
    ErrorCode.INSUFFICIENT_PLAYERS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PLAYERS_NOT_READY:    status.HTTP_400_BAD_REQUEST,
    ErrorCode.ROOM_CODE_EXHAUSTED:  status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.NOT_IN_SESSION:       status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_STATUS:       status.HTTP_409_CONFLICT,
}


class CoordinatorError(Exception):
    """
    A validation failure of a session operation. Never retried automatically:
    the caller has to change conditions and call again.
    """

    def __init__(self, code: ErrorCode, message: Optional[str] = None):
        self.code = code
        self.message = message or _MESSAGES[code]
        super().__init__(f"{code.value}: {self.message}")

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.code]
