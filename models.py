from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional, Tuple
from enum import Enum
import time
import uuid

from utils.grid_shape import restore_grid_shape

def gen_uuid() -> str:
    return str(uuid.uuid4())

def now_ms() -> int:
    """Текущий момент в миллисекундах (epoch), как хранится в документе."""
    return int(time.time() * 1000)

class Difficulty(str, Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"
    expert = "expert"

class SessionStatus(str, Enum):
    waiting = "waiting"
    playing = "playing"
    completed = "completed"

class Direction(str, Enum):
    horizontal = "horizontal"
    vertical = "vertical"
    diagonal = "diagonal"
    diagonal_reverse = "diagonalReverse"


class DocumentModel(BaseModel):
    """Base for everything stored in a session document; camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ─── Grid ──────────────────────────────────────────────────────────────────────
class Position(DocumentModel):
    row: int
    col: int

class Cell(DocumentModel):
    model_config = ConfigDict(extra="allow")   # метаданные размещения от генератора

    row:    int
    col:    int
    letter: str

class PlacedWord(DocumentModel):
    model_config = ConfigDict(extra="allow")

    id:        str
    text:      str
    start_pos: Position
    end_pos:   Position
    direction: Direction

class Grid(DocumentModel):
    cells: List[List[Cell]]
    size:  int
    words: List[PlacedWord] = Field(default_factory=list)

class DifficultyConfig(DocumentModel):
    grid_size:         int
    word_count:        int
    word_length_range: Tuple[int, int] = (3, 10)
    time_limit:        int
    directions:        List[Direction] = Field(default_factory=lambda: [
        Direction.horizontal, Direction.vertical, Direction.diagonal,
    ])


# ─── Players ───────────────────────────────────────────────────────────────────
class Avatar(DocumentModel):
    type:  Literal["photo", "emoji", "preset"]
    value: str                                  # URI фото, emoji или id пресета

class PlayerProfile(DocumentModel):
    model_config = ConfigDict(extra="allow")

    id:        str
    name:      str
    photo_url: Optional[str]    = Field(default=None, alias="photoURL")
    avatar:    Optional[Avatar] = None
    level:     int              = 1

    @field_validator("photo_url", mode="before")
    @classmethod
    def _blank_photo_is_none(cls, value):
        # the store rejects undefined values, so an absent photo is always null
        return value or None

class CooperativePlayer(DocumentModel):
    id:              str
    profile:         PlayerProfile
    is_ready:        bool               = False
    cursor_position: Optional[Position] = None
    words_found:     List[str]          = Field(default_factory=list)
    score:           int                = 0

class Selection(DocumentModel):
    cells:     List[Cell] = Field(default_factory=list)
    timestamp: int

class WordFoundEvent(DocumentModel):
    player_id:   str
    player_name: str
    word:        str
    cells:       List[Cell] = Field(default_factory=list)
    score:       int
    timestamp:   int

class PlayerCursor(DocumentModel):
    player_id:   str
    player_name: str
    position:    Position
    color:       str
    avatar:      Optional[str] = None
    timestamp:   int


# ─── Session document ──────────────────────────────────────────────────────────
class CooperativeSession(DocumentModel):
    id:                str
    room_code:         str
    host_id:           str
    players:           List[CooperativePlayer] = Field(default_factory=list)
    max_players:       int
    status:            SessionStatus           = SessionStatus.waiting

    grid:              Grid
    words:             List[str]               = Field(default_factory=list)
    words_found:       List[str]               = Field(default_factory=list)
    active_selections: Dict[str, Selection]    = Field(default_factory=dict)
    last_word_found:   Optional[WordFoundEvent] = None

    difficulty:        Difficulty
    theme_id:          str
    level_id:          Optional[int]           = None

    time_limit:        int
    time_remaining:    int

    created_at:        int                     = Field(default_factory=now_ms)
    started_at:        Optional[int]           = None
    completed_at:      Optional[int]           = None
    updated_at:        int                     = Field(default_factory=now_ms)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "CooperativeSession":
        return cls.model_validate(restore_grid_shape(data))

    def player_index(self, player_id: str) -> Optional[int]:
        for i, player in enumerate(self.players):
            if player.id == player_id:
                return i
        return None

    def get_player(self, player_id: str) -> Optional[CooperativePlayer]:
        idx = self.player_index(player_id)
        return None if idx is None else self.players[idx]
