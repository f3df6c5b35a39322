"""
Patterns - expected artwork read from disk

Scans a directory of `{name}.{Tx}.{Ty}.{x}.{y}.png` files (plus optional
`.json` metadata sidecars) into Pattern records.
"""
from .repository import PatternRepository, PatternRepositoryError

__all__ = ["PatternRepository", "PatternRepositoryError"]
