import random
import string
from typing import Callable, Dict, List, Optional, Tuple

from models import Cell, Difficulty, DifficultyConfig, Direction, Grid, PlacedWord, Position, gen_uuid

GridProvider = Callable[[List[str], DifficultyConfig], Grid]

DIFFICULTY_CONFIGS: Dict[Difficulty, DifficultyConfig] = {
    Difficulty.easy:   DifficultyConfig(grid_size=10, word_count=8,  time_limit=600),
    Difficulty.medium: DifficultyConfig(grid_size=12, word_count=10, time_limit=480),
    Difficulty.hard:   DifficultyConfig(grid_size=15, word_count=12, time_limit=420),
    Difficulty.expert: DifficultyConfig(grid_size=18, word_count=15, time_limit=360),
}

_STEPS = {
    Direction.horizontal:       (0, 1),
    Direction.vertical:         (1, 0),
    Direction.diagonal:         (1, 1),
    Direction.diagonal_reverse: (1, -1),
}

MAX_PLACEMENT_TRIES = 100


def difficulty_config(difficulty: Difficulty) -> DifficultyConfig:
    return DIFFICULTY_CONFIGS[Difficulty(difficulty)]


def _try_place(
    board: List[List[Optional[str]]],
    word: str,
    direction: Direction,
    rng: random.Random,
) -> Optional[Tuple[Position, Position]]:
    size = len(board)
    d_row, d_col = _STEPS[direction]
    span = len(word) - 1
    rows = range(0, size - d_row * span)
    cols = range(max(0, -d_col * span), size - max(0, d_col * span))
    if not rows or not cols:
        return None

    row, col = rng.choice(rows), rng.choice(cols)
    for i, letter in enumerate(word):
        existing = board[row + i * d_row][col + i * d_col]
        if existing is not None and existing != letter:
            return None
    for i, letter in enumerate(word):
        board[row + i * d_row][col + i * d_col] = letter
    return Position(row=row, col=col), Position(row=row + span * d_row, col=col + span * d_col)


def generate_grid(words: List[str], config: DifficultyConfig, rng: Optional[random.Random] = None) -> Grid:
    """
    Basic word-search provider: places up to ``config.word_count`` words along
    the allowed directions and fills the remaining cells with random letters.
    Words that do not fit are skipped.
    """
    rng = rng or random.Random()
    size = config.grid_size
    min_len, max_len = config.word_length_range
    board: List[List[Optional[str]]] = [[None] * size for _ in range(size)]
    placed: List[PlacedWord] = []
    owner: Dict[Tuple[int, int], str] = {}

    for raw in words:
        if len(placed) >= config.word_count:
            break
        word = raw.strip().upper()
        if not (min_len <= len(word) <= min(max_len, size)):
            continue
        if any(w.text == word for w in placed):
            continue
        for _ in range(MAX_PLACEMENT_TRIES):
            direction = rng.choice(config.directions)
            span = _try_place(board, word, direction, rng)
            if span is None:
                continue
            word_id = gen_uuid()
            d_row, d_col = _STEPS[direction]
            for i in range(len(word)):
                owner[(span[0].row + i * d_row, span[0].col + i * d_col)] = word_id
            placed.append(PlacedWord(
                id=word_id, text=word, start_pos=span[0], end_pos=span[1], direction=direction,
            ))
            break

    cells = []
    for r in range(size):
        row = []
        for c in range(size):
            letter = board[r][c] or rng.choice(string.ascii_uppercase)
            extra = {"wordId": owner[(r, c)]} if (r, c) in owner else {}
            row.append(Cell(row=r, col=c, letter=letter, isSelected=False, isFound=False, **extra))
        cells.append(row)

    return Grid(cells=cells, size=size, words=placed)


def get_grid_provider() -> GridProvider:
    return generate_grid
