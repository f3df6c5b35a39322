from __future__ import annotations

"""
Tile server adapter.

Usage:
    fetcher = TileFetcher()  # wplace public tile server by default
    pixels = fetcher.fetch(TileCoordinate(5, 5))
    if pixels is not None:
        # pixels -> np.ndarray (1000, 1000, 4) uint8 RGBA
        pass

    tiles = fetch_all(fetcher, required_tiles(patterns), max_workers=8)
"""

import io
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from common.types import TILE_SIZE, FetchedTile, TileCoordinate


log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://backend.wplace.live/files/s0/tiles"


def decode_rgba(data: bytes) -> np.ndarray:
    """PNG (or any Pillow-readable) bytes -> (H, W, 4) uint8 RGBA."""
    with Image.open(io.BytesIO(data)) as img:
        return np.asarray(img.convert("RGBA"), dtype=np.uint8).copy()


def blank_tile(tile_size: int = TILE_SIZE) -> np.ndarray:
    return np.zeros((tile_size, tile_size, 4), dtype=np.uint8)


class TileFetcher:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        tile_size: int = TILE_SIZE,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            base_url: tile root; tiles are read from {base_url}/{x}/{y}.png
            timeout: per-request timeout (seconds)
            tile_size: expected tile side in pixels
            session: optional requests.Session for connection reuse
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.tile_size = int(tile_size)
        self.session = session or requests.Session()

    def url_for(self, coord: TileCoordinate) -> str:
        return f"{self.base_url}/{coord.x}/{coord.y}.png"

    def fetch(self, coord: TileCoordinate) -> Optional[np.ndarray]:
        """
        Fetch one tile as RGBA pixels.

        The server answers 404 for tiles nobody has painted yet; those come back
        as a fully transparent tile. Any other failure returns None.
        """
        url = self.url_for(coord)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("Tile request failed: %s %s", coord, e)
            return None

        if r.status_code == 404:
            return blank_tile(self.tile_size)
        if r.status_code != 200 or not r.content:
            log.warning("Tile server error for %s: %s %s", coord, r.status_code, r.text[:200])
            return None

        try:
            pixels = decode_rgba(r.content)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            log.warning("Unable to decode tile %s: %s", coord, e)
            return None

        if pixels.shape[:2] != (self.tile_size, self.tile_size):
            log.warning(
                "Tile %s has unexpected size %sx%s",
                coord, pixels.shape[1], pixels.shape[0],
            )
            return None
        return pixels


def fetch_all(
    fetcher: TileFetcher,
    coords: Iterable[TileCoordinate],
    max_workers: int = 8,
) -> Dict[TileCoordinate, FetchedTile]:
    """
    Fetch every tile in parallel and return only once all of them finished.

    Failed tiles are present with pixels=None so the caller can tell
    "could not check" from "checked".
    """
    coords = list(coords)
    if not coords:
        return {}
    out: Dict[TileCoordinate, FetchedTile] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(coords)))) as pool:
        futures = {c: pool.submit(fetcher.fetch, c) for c in coords}
        for c, fut in futures.items():
            try:
                px = fut.result()
            except Exception as e:
                log.warning("Tile fetch crashed for %s: %s", c, e)
                px = None
            out[c] = FetchedTile(c, px)
    return out
