"""
Canvas - tile grid geometry and tile server access

- grid: pattern-local pixel -> (tile, pixel-in-tile), tile spans, required tiles
- tiles: fetch tile PNGs from the tile server as RGBA arrays
"""
