"""
Desired-state reducer for the map surface.

Instead of poking layers, sources and markers directly whenever something
changes, callers compute the render state they want and diff it against what
was applied last; only the resulting operations are sent to the surface.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from plotmap.utils.corners import as_corner_array


SOURCE_ID = "project-image"
LAYER_ID = "project-image-layer"
MARKER_COLORS = ("#ff3b30", "#34c759", "#007aff", "#ffcc00")

Corners = Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class RenderState:
    image_url: str
    corners: Corners
    opacity: float
    markers_enabled: bool = True


@dataclass(frozen=True)
class RenderOp:
    action: str
    payload: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {"action": self.action, **self.payload}


def desired_render_state(
    final_corners,
    image_url: Optional[str],
    opacity: float,
    markers_enabled: bool = True,
) -> Optional[RenderState]:
    """Nothing is drawn (``None``) while there is no resolved image."""
    if not image_url:
        return None
    pts = as_corner_array(final_corners)
    corners = tuple((float(x), float(y)) for x, y in pts)
    return RenderState(image_url, corners, float(opacity), markers_enabled)


def _coords(state: RenderState) -> List[List[float]]:
    return [list(c) for c in state.corners]


def _markers(state: RenderState) -> List[Dict]:
    return [
        {"index": i, "color": color, "position": list(pos)}
        for i, (color, pos) in enumerate(zip(MARKER_COLORS, state.corners))
    ]


def plan_render_ops(
    previous: Optional[RenderState],
    desired: Optional[RenderState],
) -> List[RenderOp]:
    """Operations that take the surface from ``previous`` to ``desired``."""
    ops: List[RenderOp] = []

    if desired is None:
        if previous is None:
            return ops
        ops.append(RenderOp("remove_layer", {"id": LAYER_ID}))
        ops.append(RenderOp("remove_source", {"id": SOURCE_ID}))
        if previous.markers_enabled:
            ops.append(RenderOp("remove_markers"))
        return ops

    if previous is None:
        ops.append(RenderOp("add_source", {
            "id": SOURCE_ID,
            "url": desired.image_url,
            "coordinates": _coords(desired),
        }))
        ops.append(RenderOp("add_layer", {
            "id": LAYER_ID,
            "source": SOURCE_ID,
            "opacity": desired.opacity,
        }))
        if desired.markers_enabled:
            ops.append(RenderOp("add_markers", {"markers": _markers(desired)}))
        return ops

    moved = previous.corners != desired.corners
    if moved or previous.image_url != desired.image_url:
        ops.append(RenderOp("update_source", {
            "id": SOURCE_ID,
            "url": desired.image_url,
            "coordinates": _coords(desired),
        }))
    if previous.opacity != desired.opacity:
        ops.append(RenderOp("set_opacity", {"id": LAYER_ID, "opacity": desired.opacity}))

    if desired.markers_enabled and not previous.markers_enabled:
        ops.append(RenderOp("add_markers", {"markers": _markers(desired)}))
    elif previous.markers_enabled and not desired.markers_enabled:
        ops.append(RenderOp("remove_markers"))
    elif desired.markers_enabled and moved:
        ops.append(RenderOp("move_markers", {"markers": _markers(desired)}))

    return ops
