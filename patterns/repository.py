from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from common.types import InvalidPatternError, Pattern, PatternInfo, PixelOffset, TileCoordinate


log = logging.getLogger(__name__)


class PatternRepositoryError(RuntimeError):
    """The pattern directory could not be read; the previous pattern set stays active."""


def parse_pattern_filename(filename: str) -> Optional[Tuple[str, TileCoordinate, PixelOffset]]:
    """
    "{name}.{Tx}.{Ty}.{x}.{y}.png" -> (name, anchor tile, anchor offset).
    None if the name does not follow the scheme.
    """
    bits = filename.split(".")
    if len(bits) != 6 or bits[-1].lower() != "png" or not bits[0]:
        return None
    try:
        tx, ty, x, y = (int(b) for b in bits[1:5])
    except ValueError:
        return None
    return bits[0], TileCoordinate(tx, ty), PixelOffset(x, y)


def _load_info(png_path: Path) -> PatternInfo:
    js = png_path.with_suffix(".json")
    if not js.exists():
        return PatternInfo()
    try:
        raw = json.loads(js.read_text())
    except (OSError, ValueError) as e:
        log.warning("Ignoring unreadable pattern metadata %s: %s", js.name, e)
        return PatternInfo()
    if not isinstance(raw, dict):
        log.warning("Ignoring pattern metadata %s: expected a JSON object", js.name)
        return PatternInfo()
    return PatternInfo.from_dict(raw)


def load_pattern(path: Path) -> Pattern:
    """Decode one pattern file. Raises InvalidPatternError on any problem."""
    parsed = parse_pattern_filename(path.name)
    if parsed is None:
        raise InvalidPatternError(f"malformed pattern name {path.name}")
    name, tile, offset = parsed
    try:
        with Image.open(path) as img:
            image = np.asarray(img.convert("RGBA"), dtype=np.uint8).copy()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise InvalidPatternError(f"unable to decode pattern file {path.name}: {e}") from e
    return Pattern(name=name, image=image, anchor_tile=tile, anchor_offset=offset, info=_load_info(path))


class PatternRepository:
    """
    Reads the pattern directory:

        directory/
          ├─ flag.5.5.980.980.png    (artwork, anchored at tile (5,5) pixel (980,980))
          └─ flag.5.5.980.980.json   (optional metadata, see PatternInfo)

    Each refresh() re-reads everything and returns a fresh name -> Pattern map.
    Bad entries are logged and skipped; only an unreadable directory fails.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def refresh(self) -> Dict[str, Pattern]:
        if not self.directory.is_dir():
            raise PatternRepositoryError(f"pattern directory not found: {self.directory}")
        try:
            entries = sorted(p for p in self.directory.iterdir() if p.suffix.lower() == ".png")
        except OSError as e:
            raise PatternRepositoryError(f"unable to list {self.directory}: {e}") from e

        out: Dict[str, Pattern] = {}
        for path in entries:
            try:
                pattern = load_pattern(path)
            except InvalidPatternError as e:
                log.warning("Skipping pattern: %s", e)
                continue
            if pattern.name in out:
                log.warning("Duplicate pattern name %s, keeping %s", pattern.name, path.name)
            out[pattern.name] = pattern
        return out
