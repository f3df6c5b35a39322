"""
Unit tests for pixel reconciliation
"""

import logging
import os
import sys

import numpy as np

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from canvas.grid import global_pixel, iter_span, tile_span
from common.types import TILE_SIZE, FetchedTile, Pattern, PixelOffset, TileCoordinate
from watcher.compare import compare, compare_pattern


RED = (237, 28, 36, 255)
BLUE = (64, 147, 228, 255)


def flag_pattern(size=(40, 40)):
    w, h = size
    img = np.zeros((h, w, 4), dtype=np.uint8)
    img[...] = RED
    return Pattern("flag", img, TileCoordinate(5, 5), PixelOffset(980, 980))


def matching_tiles(*patterns):
    """Blank tiles with every pattern painted on them exactly."""
    tiles = {}
    for p in patterns:
        for coord in iter_span(*tile_span(p)):
            tiles.setdefault(coord, np.zeros((TILE_SIZE, TILE_SIZE, 4), dtype=np.uint8))
        for y in range(p.height):
            for x in range(p.width):
                if p.image[y, x, 3] == 0:
                    continue
                coord, local = global_pixel(p, x, y)
                tiles[coord][local.y, local.x] = p.image[y, x]
    return {c: FetchedTile(c, px) for c, px in tiles.items()}


def deface(fetched, pattern, points, color=BLUE):
    for x, y in points:
        coord, local = global_pixel(pattern, x, y)
        fetched[coord].pixels[local.y, local.x] = color


class TestCompare:
    def test_exact_match_has_no_errors(self):
        """Flag across four tiles, all pixels painted as expected"""
        p = flag_pattern()
        fetched = matching_tiles(p)
        assert set(fetched) == {TileCoordinate(5, 5), TileCoordinate(6, 5), TileCoordinate(5, 6), TileCoordinate(6, 6)}
        result = compare([p], fetched)
        assert result[p.identity].errors == 0
        assert result[p.identity].verified

    def test_counts_each_mismatched_pixel(self):
        p = flag_pattern()
        fetched = matching_tiles(p)
        # one pixel on three different tiles
        deface(fetched, p, [(0, 0), (25, 0), (30, 30)])
        assert compare([p], fetched)[p.identity].errors == 3

    def test_alpha_difference_is_a_mismatch(self):
        p = flag_pattern()
        fetched = matching_tiles(p)
        deface(fetched, p, [(1, 1)], color=(237, 28, 36, 254))
        assert compare([p], fetched)[p.identity].errors == 1

    def test_transparent_pixels_are_ignored(self):
        """Expected alpha 0 never counts, whatever is on the canvas"""
        p = flag_pattern()
        p.image[:10, :10, 3] = 0
        fetched = matching_tiles(p)
        deface(fetched, p, [(x, y) for x in range(10) for y in range(10)])
        cmp = compare([p], fetched)[p.identity]
        assert cmp.errors == 0
        assert cmp.verified

    def test_fully_transparent_pattern(self):
        p = flag_pattern()
        p.image[..., 3] = 0
        cmp = compare([p], {})[p.identity]
        assert cmp.errors == 0
        assert cmp.unverified == 0

    def test_missing_tile_is_not_an_error(self, caplog):
        """Dropping a tile keeps the error count but marks the pattern unverified"""
        p = flag_pattern()
        fetched = matching_tiles(p)
        deface(fetched, p, [(0, 0), (30, 30)])  # tiles (5,5) and (6,6)
        full = compare([p], fetched)[p.identity]

        del fetched[TileCoordinate(6, 5)]
        with caplog.at_level(logging.WARNING, logger="watcher.compare"):
            partial = compare([p], fetched)[p.identity]

        assert full.errors == partial.errors == 2
        assert full.verified
        assert not partial.verified
        assert partial.unverified == 20 * 20
        assert any("Missing tile" in r.getMessage() for r in caplog.records)

    def test_failed_fetch_counts_as_missing(self):
        p = flag_pattern()
        fetched = matching_tiles(p)
        fetched[TileCoordinate(5, 5)] = FetchedTile(TileCoordinate(5, 5), None)
        cmp = compare([p], fetched)[p.identity]
        assert cmp.errors == 0
        assert cmp.unverified == 20 * 20

    def test_fetched_transparent_tile_is_checked(self):
        """A blank tile is real data, not a missing one"""
        p = flag_pattern(size=(5, 5))
        blank = np.zeros((TILE_SIZE, TILE_SIZE, 4), dtype=np.uint8)
        fetched = {TileCoordinate(5, 5): FetchedTile(TileCoordinate(5, 5), blank)}
        cmp = compare([p], fetched)[p.identity]
        assert cmp.errors == 25
        assert cmp.verified

    def test_every_pattern_reported(self):
        clean = flag_pattern()
        other_img = np.zeros((3, 3, 4), dtype=np.uint8)
        other_img[...] = BLUE
        other = Pattern("other", other_img, TileCoordinate(0, 0), PixelOffset(0, 0))
        fetched = matching_tiles(clean)
        result = compare([clean, other], fetched)
        assert set(result) == {clean.identity, other.identity}
        assert result[clean.identity].errors == 0
        assert result[other.identity].errors == 0
        assert result[other.identity].unverified == 9

    def test_overlapping_patterns_counted_independently(self):
        a = flag_pattern(size=(10, 10))
        img = np.zeros((10, 10, 4), dtype=np.uint8)
        img[...] = BLUE
        b = Pattern("b", img, TileCoordinate(5, 5), PixelOffset(985, 985))
        fetched = matching_tiles(a)
        result = compare([a, b], fetched)
        assert result[a.identity].errors == 0
        assert result[b.identity].errors == 100

    def test_compare_pattern_direct(self):
        p = flag_pattern(size=(2, 2))
        fetched = matching_tiles(p)
        deface(fetched, p, [(1, 1)])
        missing = set()
        cmp = compare_pattern(p, fetched, missing=missing)
        assert cmp.errors == 1
        assert missing == set()
