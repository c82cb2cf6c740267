"""
Overlay alignment controller.

Owns the transient editing state of one project's overlay and recomputes the
final quadrilateral on every change:

    final = adjust(flip(canonicalize(raw), flip_h, flip_v), scale, rotation)

Marker drags and numeric corner edits write back into the raw corners and
drop any pending scale/rotation; ``commit`` bakes the current transform into
a new raw baseline and returns the MapConfig to persist.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

import numpy as np

from plotmap.config import DEFAULT_IMAGE_URL, DEFAULT_LAND_CORNERS
from plotmap.errors import ConfigurationError
from plotmap.schemas.map_config import MapConfig
from plotmap.utils.affine_adjust import adjust
from plotmap.utils.corners import (
    ROLE_NAMES,
    as_corner_array,
    canonicalize,
    corner_bounds,
    corners_to_list,
    detect_flip,
    flip,
)
from plotmap.utils.viewport import WebMercatorViewport


LOGGER = logging.getLogger(__name__)

MIN_SCALE = 0.5
MAX_SCALE = 4.0
_COORD_INDEX = {"lng": 0, "lat": 1}


@dataclass(frozen=True)
class AlignmentState:
    raw_corners: np.ndarray
    image_url: str = DEFAULT_IMAGE_URL
    scale: float = 1.0
    rotation: float = 0.0
    flip_h: bool = False
    flip_v: bool = False
    opacity: float = 1.0


def _finite(value, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(number):
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    return number


def wrap_degrees(degrees: float) -> float:
    """Fold an angle into [-180, 180]."""
    if -180.0 <= degrees <= 180.0:
        return degrees
    return (degrees + 180.0) % 360.0 - 180.0


class OverlayAlignmentController:
    """Single mutator of an overlay's transient alignment state."""

    def __init__(
        self,
        state: AlignmentState,
        project: Optional[Callable] = None,
        unproject: Optional[Callable] = None,
    ):
        state = replace(state, raw_corners=as_corner_array(state.raw_corners))
        if project is None or unproject is None:
            viewport = default_viewport(state.raw_corners)
            project, unproject = viewport.project, viewport.unproject
        self._project = project
        self._unproject = unproject
        self._state = state
        self.final = self._pipeline(state)
        self.reoriented = False

    # ---------- construction ----------

    @classmethod
    def from_config(cls, config: MapConfig, project=None, unproject=None):
        """
        Resume editing a saved overlay.

        Configs that carry explicit flip flags keep them. Configs whose flip
        was folded into the corner order get the flags recovered, so the
        pipeline reproduces the saved corners exactly.
        """
        corners = as_corner_array(config.corners)
        if config.flip_h or config.flip_v:
            flip_h, flip_v = config.flip_h, config.flip_v
        else:
            flip_h, flip_v = detect_flip(corners) or (False, False)

        state = AlignmentState(
            raw_corners=canonicalize(corners),
            image_url=config.image_url,
            flip_h=flip_h,
            flip_v=flip_v,
            opacity=config.opacity,
        )
        return cls(state, project, unproject)

    @classmethod
    def from_default(cls, image_url: Optional[str] = None, project=None, unproject=None):
        state = AlignmentState(
            raw_corners=canonicalize(DEFAULT_LAND_CORNERS),
            image_url=image_url or DEFAULT_IMAGE_URL,
        )
        return cls(state, project, unproject)

    # ---------- pipeline ----------

    @property
    def state(self) -> AlignmentState:
        return self._state

    def final_corners(self) -> np.ndarray:
        """Corners to draw, in TL, TR, BR, BL order."""
        return self.final.copy()

    def _pipeline(self, state: AlignmentState) -> np.ndarray:
        ordered = canonicalize(state.raw_corners)
        flipped = flip(ordered, state.flip_h, state.flip_v)
        return adjust(flipped, state.scale, state.rotation, self._project, self._unproject)

    def _apply(self, **changes) -> np.ndarray:
        # Compute first so a failure leaves state and final untouched.
        candidate = replace(self._state, **changes)
        final = self._pipeline(candidate)
        self._state = candidate
        self.final = final
        LOGGER.debug("Alignment updated: %s", ", ".join(sorted(changes)))
        return final

    def use_surface(self, project: Callable, unproject: Callable) -> np.ndarray:
        """Switch to another map surface's projection and recompute."""
        previous = self._project, self._unproject
        self._project, self._unproject = project, unproject
        try:
            self.final = self._pipeline(self._state)
        except Exception:
            self._project, self._unproject = previous
            raise
        return self.final

    # ---------- direct manipulation ----------

    def set_raw_corner(self, index: int, key: str, value) -> np.ndarray:
        """Numeric edit of one raw corner; drops any pending scale/rotation."""
        if not isinstance(index, int) or not 0 <= index < 4:
            raise ConfigurationError(f"corner index must be 0-3, got {index!r}")
        if key not in _COORD_INDEX:
            raise ConfigurationError(f"corner key must be 'lng' or 'lat', got {key!r}")
        number = _finite(value, key)

        raw = self._state.raw_corners.copy()
        raw[index, _COORD_INDEX[key]] = number
        return self._apply(raw_corners=raw, scale=1.0, rotation=0.0)

    def set_raw_corners(self, points) -> np.ndarray:
        raw = as_corner_array(points)
        return self._apply(raw_corners=raw, scale=1.0, rotation=0.0)

    def drag_markers(self, positions) -> np.ndarray:
        """
        Drag end: ``positions`` are the 4 marker locations in final role order.

        Flip is a self-inverse permutation, so flipping the positions again
        recovers raw corners. Scale and rotation are reset, not inverted.
        """
        moved = as_corner_array(positions)
        raw = flip(moved, self._state.flip_h, self._state.flip_v)
        return self._apply(raw_corners=raw, scale=1.0, rotation=0.0)

    def drag_marker(self, index: int, position) -> np.ndarray:
        if not isinstance(index, int) or not 0 <= index < 4:
            raise ConfigurationError(f"marker index must be 0-3, got {index!r}")
        lng = _finite(position[0], "lng")
        lat = _finite(position[1], "lat")
        positions = self.final.copy()
        positions[index] = (lng, lat)
        return self.drag_markers(positions)

    # ---------- sliders and toggles ----------

    def set_scale(self, value) -> np.ndarray:
        scale = min(MAX_SCALE, max(MIN_SCALE, _finite(value, "scale")))
        return self._apply(scale=scale)

    def set_rotation(self, degrees) -> np.ndarray:
        return self._apply(rotation=wrap_degrees(_finite(degrees, "rotation")))

    def set_flip_horizontal(self, enabled: bool) -> np.ndarray:
        return self._apply(flip_h=bool(enabled))

    def set_flip_vertical(self, enabled: bool) -> np.ndarray:
        return self._apply(flip_v=bool(enabled))

    def toggle_flip_horizontal(self) -> np.ndarray:
        return self.set_flip_horizontal(not self._state.flip_h)

    def toggle_flip_vertical(self) -> np.ndarray:
        return self.set_flip_vertical(not self._state.flip_v)

    def set_opacity(self, value) -> np.ndarray:
        opacity = min(1.0, max(0.0, _finite(value, "opacity")))
        return self._apply(opacity=opacity)

    def set_image(self, image_url: str) -> np.ndarray:
        return self._apply(image_url=image_url)

    # ---------- save ----------

    def commit(self) -> MapConfig:
        """
        Bake scale and rotation into the raw corners and build the MapConfig.

        The saved corners are the final corners with the flip folded into
        their order, so the config is stored with both flip flags off.

        Rotations of 45 degrees or more move which point reads as TL, so the
        new baseline draws the image a quarter turn off from what is saved.
        ``reoriented`` is set when that happens.
        """
        final = self.final.copy()
        state = self._state
        raw = flip(final, state.flip_h, state.flip_v)
        self._apply(raw_corners=raw, scale=1.0, rotation=0.0)
        self.reoriented = not np.allclose(self.final, final)
        if self.reoriented:
            LOGGER.warning(
                "Committed corners were re-canonicalized; rotation %s shifted the corner roles",
                state.rotation,
            )

        return MapConfig(
            image_url=state.image_url,
            corners=corners_to_list(final),
            opacity=state.opacity,
            flip_h=False,
            flip_v=False,
        )

    # ---------- views ----------

    def flyto_bounds(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        return corner_bounds(self.final)

    def snapshot(self) -> dict:
        state = self._state
        return {
            "imageUrl": state.image_url,
            "rawCorners": corners_to_list(state.raw_corners),
            "finalCorners": corners_to_list(self.final),
            "roles": list(ROLE_NAMES),
            "scale": state.scale,
            "rotation": state.rotation,
            "flipH": state.flip_h,
            "flipV": state.flip_v,
            "opacity": state.opacity,
            "bounds": [list(p) for p in self.flyto_bounds()],
        }


def default_viewport(corners) -> WebMercatorViewport:
    """A zoomed-in camera over ``corners`` for when no map surface is attached."""
    pts = as_corner_array(corners)
    lng, lat = pts.mean(axis=0)
    return WebMercatorViewport(center=(float(lng), float(lat)), zoom=17.0)
