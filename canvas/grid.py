from __future__ import annotations

from typing import Iterable, Iterator, Set, Tuple

import numpy as np

from common.types import TILE_SIZE, Pattern, PixelOffset, TileCoordinate


def validate_tile_size(tile_size: int) -> int:
    if int(tile_size) <= 0:
        raise ValueError(f"tile size must be > 0, got {tile_size}")
    return int(tile_size)


def global_pixel(
    pattern: Pattern, x: int, y: int, tile_size: int = TILE_SIZE
) -> Tuple[TileCoordinate, PixelOffset]:
    """
    Map pattern-local pixel (x, y) onto the canvas grid.

    Returns (tile, pixel-in-tile). Python's divmod floors, so the result stays
    correct for any x, y that lands left of or above the anchor tile.
    """
    t = validate_tile_size(tile_size)
    qx, rx = divmod(pattern.anchor_offset.x + x, t)
    qy, ry = divmod(pattern.anchor_offset.y + y, t)
    tile = TileCoordinate(pattern.anchor_tile.x + qx, pattern.anchor_tile.y + qy)
    return tile, PixelOffset(rx, ry)


def tile_span(pattern: Pattern, tile_size: int = TILE_SIZE) -> Tuple[TileCoordinate, TileCoordinate]:
    """
    Inclusive (min_tile, max_tile) range overlapped by the pattern's bounding box.

    A zero-area image still reports its anchor tile.
    """
    t = validate_tile_size(tile_size)
    last_x = pattern.anchor_offset.x + max(pattern.width, 1) - 1
    last_y = pattern.anchor_offset.y + max(pattern.height, 1) - 1
    min_tile = pattern.anchor_tile
    max_tile = TileCoordinate(
        pattern.anchor_tile.x + last_x // t,
        pattern.anchor_tile.y + last_y // t,
    )
    return min_tile, max_tile


def iter_span(min_tile: TileCoordinate, max_tile: TileCoordinate) -> Iterator[TileCoordinate]:
    for tx in range(min_tile.x, max_tile.x + 1):
        for ty in range(min_tile.y, max_tile.y + 1):
            yield TileCoordinate(tx, ty)


def tile_window(
    pattern: Pattern, tile: TileCoordinate, tile_size: int = TILE_SIZE
) -> Tuple[slice, slice, slice, slice]:
    """
    Overlap of `pattern` with one tile, as numpy slices.

    Returns (pat_rows, pat_cols, tile_rows, tile_cols) so that
    pattern.image[pat_rows, pat_cols] and pixels[tile_rows, tile_cols] cover the
    same canvas pixels. Empty slices when the tile is outside the span.
    """
    t = validate_tile_size(tile_size)
    # pattern origin in the tile's own pixel frame
    origin_x = (pattern.anchor_tile.x - tile.x) * t + pattern.anchor_offset.x
    origin_y = (pattern.anchor_tile.y - tile.y) * t + pattern.anchor_offset.y

    x0 = max(origin_x, 0)
    y0 = max(origin_y, 0)
    x1 = min(origin_x + pattern.width, t)
    y1 = min(origin_y + pattern.height, t)
    if x1 <= x0 or y1 <= y0:
        empty = slice(0, 0)
        return empty, empty, empty, empty
    return (
        slice(y0 - origin_y, y1 - origin_y),
        slice(x0 - origin_x, x1 - origin_x),
        slice(y0, y1),
        slice(x0, x1),
    )


def required_tiles(
    patterns: Iterable[Pattern],
    tile_size: int = TILE_SIZE,
    *,
    skip_transparent: bool = False,
) -> Set[TileCoordinate]:
    """
    Distinct tiles that must be fetched to check every pattern.

    With skip_transparent=True a tile is only requested for a pattern if the
    pattern has at least one opaque pixel on it.
    """
    out: Set[TileCoordinate] = set()
    for pattern in patterns:
        lo, hi = tile_span(pattern, tile_size)
        for tile in iter_span(lo, hi):
            if skip_transparent:
                pr, pc, _, _ = tile_window(pattern, tile, tile_size)
                if not np.any(pattern.image[pr, pc, 3]):
                    continue
            out.add(tile)
    return out
