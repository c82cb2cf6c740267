"""
Corner role helpers for image overlays.

A corner set is a (4, 2) array of (lng, lat) points in role order
TL, TR, BR, BL. Roles are assigned once by ``canonicalize`` and then only
permuted by ``flip``; the points themselves are never moved here.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import MultiPoint

from plotmap.errors import ConfigurationError


TL, TR, BR, BL = 0, 1, 2, 3
ROLE_NAMES = ("TL", "TR", "BR", "BL")

_FLIP_H = [1, 0, 3, 2]
_FLIP_V = [3, 2, 1, 0]


def as_corner_array(points) -> np.ndarray:
    """Coerce ``points`` to a float (4, 2) array or raise ConfigurationError."""
    try:
        arr = np.array(points, dtype=float)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"must have exactly 4 corners: {e}") from e
    if arr.shape != (4, 2):
        raise ConfigurationError(f"must have exactly 4 corners, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError("corner coordinates must be finite numbers")
    return arr


def _last_argmax(values: np.ndarray) -> int:
    # np.argmax keeps the first of equal values; ties go to the later point.
    return len(values) - 1 - int(np.argmax(values[::-1]))


def _last_argmin(values: np.ndarray) -> int:
    return len(values) - 1 - int(np.argmin(values[::-1]))


def canonicalize(points) -> np.ndarray:
    """
    Assign TL/TR/BR/BL roles to 4 points given in any order.

    Args:
        points: 4 (lng, lat) pairs, any order

    Returns:
        (4, 2) array in role order TL, TR, BR, BL. Every row is one of the
        input points:
        TL = max(lat - lng), BR = min(lat - lng),
        TR = max(lng + lat), BL = min(lng + lat)
    """
    pts = as_corner_array(points)
    sums = pts[:, 0] + pts[:, 1]
    diffs = pts[:, 1] - pts[:, 0]

    tl = _last_argmax(diffs)
    br = _last_argmin(diffs)
    tr = _last_argmax(sums)
    bl = _last_argmin(sums)

    return pts[[tl, tr, br, bl]].copy()


def flip(corners, horizontal: bool, vertical: bool) -> np.ndarray:
    """
    Mirror an overlay by swapping corner roles (coordinates are untouched).

    Horizontal swaps TL<->TR and BL<->BR, vertical (applied after) swaps
    TL<->BL and TR<->BR. Each combination is its own inverse.
    """
    out = as_corner_array(corners)
    if horizontal:
        out = out[_FLIP_H]
    if vertical:
        out = out[_FLIP_V]
    return out.copy()


def detect_flip(corners) -> Optional[Tuple[bool, bool]]:
    """
    Recover the flip flags that produced a role-ordered corner set.

    Returns the first (horizontal, vertical) pair for which
    ``flip(canonicalize(corners), h, v)`` equals ``corners``, or None when the
    role order is not a flip of the canonical one.
    """
    pts = as_corner_array(corners)
    base = canonicalize(pts)
    for flags in ((False, False), (True, False), (False, True), (True, True)):
        if np.array_equal(flip(base, *flags), pts):
            return flags
    return None


def corner_bounds(corners) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """Bounding box ((min_lng, min_lat), (max_lng, max_lat)) to fit the map to."""
    pts = as_corner_array(corners)
    min_lng, min_lat, max_lng, max_lat = MultiPoint(pts).bounds
    return (min_lng, min_lat), (max_lng, max_lat)


def corners_to_list(corners: Sequence) -> list:
    """Plain ``[[lng, lat], ...]`` lists for JSON."""
    return [[float(x), float(y)] for x, y in corners]
