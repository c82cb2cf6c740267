"""
Uniform scale + rotation of an overlay around its centroid.

The math happens in screen space of the map surface: corners are projected
with the surface's ``project``, transformed, and mapped back with
``unproject``. This module has no notion of geography of its own.
"""

from typing import Callable, Sequence, Tuple

import numpy as np
from affine import Affine

from plotmap.utils.corners import as_corner_array


ScreenPoint = Tuple[float, float]
Project = Callable[[Tuple[float, float]], ScreenPoint]
Unproject = Callable[[ScreenPoint], Tuple[float, float]]


def is_identity(scale: float, rotation: float) -> bool:
    return scale == 1 and rotation == 0


def centroid(points: Sequence[ScreenPoint]) -> ScreenPoint:
    """Arithmetic mean of the points."""
    arr = np.asarray(points, dtype=float)
    cx, cy = arr.mean(axis=0)
    return float(cx), float(cy)


def screen_transform(center: ScreenPoint, scale: float, rotation: float) -> Affine:
    """
    Affine that scales by ``scale`` then rotates by ``rotation`` degrees,
    both about ``center``.
    """
    cx, cy = center
    return (
        Affine.translation(cx, cy)
        @ Affine.rotation(rotation)
        @ Affine.scale(scale)
        @ Affine.translation(-cx, -cy)
    )


def adjust(
    corners,
    scale: float,
    rotation: float,
    project: Project,
    unproject: Unproject,
) -> np.ndarray:
    """
    Apply uniform scale and rotation to an ordered corner set.

    Args:
        corners: (4, 2) array of (lng, lat) in role order
        scale: uniform scale factor around the centroid
        rotation: rotation in degrees around the centroid
        project: (lng, lat) -> screen (x, y)
        unproject: screen (x, y) -> (lng, lat)

    Returns:
        (4, 2) array of (lng, lat), same role order. With scale 1 and
        rotation 0 the input is returned as-is and neither ``project`` nor
        ``unproject`` is called.
    """
    pts = as_corner_array(corners)
    if is_identity(scale, rotation):
        return pts

    screen = [project((lng, lat)) for lng, lat in pts]
    transform = screen_transform(centroid(screen), scale, rotation)

    out = [unproject(transform @ (x, y)) for x, y in screen]
    return np.array(out, dtype=float)
