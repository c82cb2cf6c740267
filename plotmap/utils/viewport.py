"""Web Mercator screen projection used when no browser map surface is present."""

import math
from dataclasses import dataclass, field
from typing import Tuple

from pyproj import Transformer

MERCATOR_LAT_BOUND = 85.05112878
# Half the circumference of the EPSG:3857 world square, in metres.
ORIGIN_SHIFT = 2 * math.pi * 6378137 / 2.0

_TO_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
_FROM_MERCATOR = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)


@dataclass(frozen=True)
class WebMercatorViewport:
    """
    Camera of a north-up, unpitched slippy map.

    ``project`` maps (lng, lat) to widget pixels with the origin at the top-left
    corner and y growing downward; ``unproject`` is its inverse.
    """

    center: Tuple[float, float] = (0.0, 0.0)
    zoom: float = 15.0
    width: int = 1024
    height: int = 768
    tile_size: int = 512
    _origin: Tuple[float, float] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_origin", self._world_pixel(self.center))

    @property
    def world_size(self) -> float:
        return self.tile_size * (2 ** self.zoom)

    def _world_pixel(self, lnglat: Tuple[float, float]) -> Tuple[float, float]:
        lng, lat = lnglat
        lat = max(-MERCATOR_LAT_BOUND, min(MERCATOR_LAT_BOUND, lat))
        mx, my = _TO_MERCATOR.transform(lng, lat)
        px = (mx + ORIGIN_SHIFT) / (2 * ORIGIN_SHIFT) * self.world_size
        py = (ORIGIN_SHIFT - my) / (2 * ORIGIN_SHIFT) * self.world_size
        return px, py

    def project(self, lnglat: Tuple[float, float]) -> Tuple[float, float]:
        px, py = self._world_pixel(lnglat)
        ox, oy = self._origin
        return px - ox + self.width / 2.0, py - oy + self.height / 2.0

    def unproject(self, point: Tuple[float, float]) -> Tuple[float, float]:
        x, y = point
        ox, oy = self._origin
        px = x - self.width / 2.0 + ox
        py = y - self.height / 2.0 + oy
        mx = px / self.world_size * (2 * ORIGIN_SHIFT) - ORIGIN_SHIFT
        my = ORIGIN_SHIFT - py / self.world_size * (2 * ORIGIN_SHIFT)
        lng, lat = _FROM_MERCATOR.transform(mx, my)
        return float(lng), float(lat)
