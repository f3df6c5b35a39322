from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import numpy as np


TILE_SIZE = 1000

METADATA_VERSION = 1


class InvalidPatternError(ValueError):
    """Raised when a pattern cannot be placed on the tile grid."""


@dataclass(frozen=True)
class TileCoordinate:
    """One T x T tile of the canvas grid."""
    x: int
    y: int

    def __str__(self) -> str:
        return f"({self.x},{self.y})"


@dataclass(frozen=True)
class PixelOffset:
    x: int
    y: int


@dataclass(frozen=True)
class PatternInfo:
    """
    Per-pattern metadata read from the sidecar JSON.

    Recognized keys (schema version 1):
      - webhook_url: overrides the configured webhook target for this pattern
      - version: schema version of the sidecar, defaults to METADATA_VERSION

    Anything else lands in `extra` and is offered to the webhook template as `$info_<key>`.
    """
    webhook_url: Optional[str] = None
    version: int = METADATA_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "PatternInfo":
        raw = dict(raw or {})
        url = raw.pop("webhook_url", None)
        if not isinstance(url, str) or not url:
            url = None
        try:
            version = int(raw.pop("version", METADATA_VERSION))
        except (TypeError, ValueError):
            version = METADATA_VERSION
        return cls(webhook_url=url, version=version, extra=raw)


@dataclass(frozen=True)
class PatternIdentity:
    """A pattern is "the same" only while its name and placement are unchanged."""
    name: str
    anchor_tile: TileCoordinate
    anchor_offset: PixelOffset


@dataclass(frozen=True)
class Pattern:
    """
    Expected artwork anchored on the canvas.

    Attributes:
        name: unique key within the active pattern set.
        image: np.ndarray (H, W, 4) uint8 RGBA; alpha 0 means "no expectation".
        anchor_tile: tile holding the pattern's local (0, 0).
        anchor_offset: pixel offset of local (0, 0) inside anchor_tile, in [0, T).
        info: structured metadata, passed through to notifications.
    """
    name: str
    image: np.ndarray = field(repr=False, compare=False)
    anchor_tile: TileCoordinate
    anchor_offset: PixelOffset
    info: PatternInfo = field(default_factory=PatternInfo, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.image, np.ndarray):
            raise InvalidPatternError(f"{self.name}: image must be a numpy ndarray")
        if self.image.ndim != 3 or self.image.shape[2] != 4:
            raise InvalidPatternError(f"{self.name}: image must be (H, W, 4) RGBA")
        if self.image.dtype != np.uint8:
            object.__setattr__(self, "image", self.image.astype(np.uint8))
        ox, oy = self.anchor_offset.x, self.anchor_offset.y
        if not (0 <= ox < TILE_SIZE and 0 <= oy < TILE_SIZE):
            raise InvalidPatternError(
                f"{self.name}: anchor offset ({ox},{oy}) outside [0, {TILE_SIZE})"
            )

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def identity(self) -> PatternIdentity:
        return PatternIdentity(self.name, self.anchor_tile, self.anchor_offset)


@dataclass
class PatternState:
    """Tracker-owned state for one pattern identity."""
    last_error_count: int
    last_defaced_at: datetime


@dataclass(frozen=True)
class FetchedTile:
    """Result of one tile fetch. `pixels is None` means the fetch failed."""
    coordinate: TileCoordinate
    pixels: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.pixels is not None


@dataclass
class PatternComparison:
    """
    Per-pattern comparison outcome.

    errors: opaque pixels whose observed RGBA differs from the expected one.
    unverified: opaque pixels that could not be checked (tile missing).
    """
    errors: int = 0
    unverified: int = 0

    @property
    def verified(self) -> bool:
        return self.unverified == 0


ComparisonResult = Dict[PatternIdentity, PatternComparison]


@dataclass(frozen=True)
class NotifyDecision:
    identity: PatternIdentity
    errors_before: int
    errors_now: int
    defaced_since: datetime
    reason: str  # escalation | restored | reminder
