from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Set

import numpy as np

from canvas.grid import iter_span, tile_span, tile_window
from common.types import (
    TILE_SIZE,
    ComparisonResult,
    FetchedTile,
    Pattern,
    PatternComparison,
    TileCoordinate,
)


log = logging.getLogger(__name__)


def _tile_pixels(fetched: Mapping[TileCoordinate, FetchedTile], tile: TileCoordinate) -> Optional[np.ndarray]:
    ft = fetched.get(tile)
    return None if ft is None else ft.pixels


def compare_pattern(
    pattern: Pattern,
    fetched: Mapping[TileCoordinate, FetchedTile],
    tile_size: int = TILE_SIZE,
    missing: Optional[Set[TileCoordinate]] = None,
) -> PatternComparison:
    """
    Count mismatching opaque pixels of one pattern.

    Works tile by tile on the overlapping slices only; no tile-sized mask is
    built. Pixels over a missing tile go to `unverified`, never to `errors`.
    """
    out = PatternComparison()
    lo, hi = tile_span(pattern, tile_size)
    for tile in iter_span(lo, hi):
        pr, pc, tr, tc = tile_window(pattern, tile, tile_size)
        expected = pattern.image[pr, pc]
        opaque = expected[..., 3] != 0
        n_opaque = int(np.count_nonzero(opaque))
        if n_opaque == 0:
            continue

        pixels = _tile_pixels(fetched, tile)
        if pixels is None:
            out.unverified += n_opaque
            if missing is not None:
                missing.add(tile)
            continue

        observed = pixels[tr, tc]
        # any channel differs, alpha included
        differs = np.any(expected != observed, axis=-1)
        out.errors += int(np.count_nonzero(differs & opaque))
    return out


def compare(
    patterns: Iterable[Pattern],
    fetched: Mapping[TileCoordinate, FetchedTile],
    tile_size: int = TILE_SIZE,
) -> ComparisonResult:
    """
    Compare every pattern against the fetched canvas.

    Every input pattern is in the result, including clean ones (count 0), so
    the tracker can see a pattern going back to zero.
    """
    result: ComparisonResult = {}
    missing: Set[TileCoordinate] = set()
    for pattern in patterns:
        result[pattern.identity] = compare_pattern(pattern, fetched, tile_size, missing)

    for tile in sorted(missing, key=lambda t: (t.x, t.y)):
        log.warning("Missing tile, pixels on it were not verified", extra={"extra": {"tile": [tile.x, tile.y]}})
    return result
