from typing import Any, Dict, List

# Firestore не хранит вложенные массивы, поэтому сетка лежит в документе плоским списком


def flatten_grid(grid: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of a grid mapping whose ``cells`` are a flat row-major list.
    Already-flat grids are returned unchanged.
    """
    cells = grid.get("cells") or []
    if cells and not isinstance(cells[0], list):
        return grid
    flat = [cell for row in cells for cell in row]
    return {**grid, "cells": flat}


def unflatten_cells(cells: List[Any], size: int) -> List[List[Any]]:
    if size <= 0:
        return []
    if len(cells) != size * size:
        raise ValueError(f"Flat grid has {len(cells)} cells, expected {size * size}")
    return [cells[i * size:(i + 1) * size] for i in range(size)]


def restore_grid_shape(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rebuild the logical 2D grid of a session document read from the store.

    Documents whose grid is already nested (stores with native nested-array
    support) pass through untouched.
    """
    grid = document.get("grid")
    if not isinstance(grid, dict):
        return document
    cells = grid.get("cells")
    if not isinstance(cells, list) or not cells or isinstance(cells[0], list):
        return document
    rows = unflatten_cells(cells, int(grid.get("size", 0)))
    return {**document, "grid": {**grid, "cells": rows}}
