import numpy as np
import pytest

from plotmap.config import DEFAULT_IMAGE_URL, DEFAULT_LAND_CORNERS
from plotmap.errors import ConfigurationError
from plotmap.schemas.map_config import MapConfig
from plotmap.services.alignment import (
    MAX_SCALE,
    MIN_SCALE,
    AlignmentState,
    OverlayAlignmentController,
    wrap_degrees,
)
from plotmap.utils.corners import canonicalize, flip

from conftest import SQUARE, SQUARE_ROLES, linear_project, linear_unproject


@pytest.fixture
def controller():
    state = AlignmentState(raw_corners=np.array(SQUARE), image_url="/plan.png")
    return OverlayAlignmentController(state, linear_project, linear_unproject)


def test_final_is_canonical_order(controller):
    np.testing.assert_array_equal(controller.final, SQUARE_ROLES)


def test_default_overlay():
    ctrl = OverlayAlignmentController.from_default()
    np.testing.assert_array_equal(ctrl.final, canonicalize(DEFAULT_LAND_CORNERS))
    assert ctrl.state.image_url == DEFAULT_IMAGE_URL
    assert ctrl.state.scale == 1.0


def test_raw_corners_in_any_order(controller):
    controller.set_raw_corners(list(reversed(SQUARE)))
    np.testing.assert_array_equal(controller.final, SQUARE_ROLES)


def test_flip_changes_final_not_raw(controller):
    raw = controller.state.raw_corners.copy()
    controller.set_flip_horizontal(True)
    np.testing.assert_array_equal(controller.final, flip(SQUARE_ROLES, True, False))
    np.testing.assert_array_equal(controller.state.raw_corners, raw)

    controller.toggle_flip_vertical()
    np.testing.assert_array_equal(controller.final, flip(SQUARE_ROLES, True, True))
    controller.toggle_flip_horizontal()
    controller.toggle_flip_vertical()
    np.testing.assert_array_equal(controller.final, SQUARE_ROLES)


def test_opacity_and_image_leave_corners_alone(controller):
    before = controller.final.copy()
    controller.set_opacity(0.4)
    controller.set_image("s3:maps/other.png")
    np.testing.assert_array_equal(controller.final, before)
    assert controller.state.opacity == 0.4
    assert controller.state.image_url == "s3:maps/other.png"


def test_corner_edit_resets_scale_and_rotation(controller):
    controller.set_scale(2.0)
    controller.set_rotation(30.0)
    controller.set_raw_corner(0, "lng", 9.5)

    assert controller.state.scale == 1.0
    assert controller.state.rotation == 0.0
    assert controller.state.raw_corners[0].tolist() == [9.5, 20.0]
    assert controller.final[0].tolist() == [9.5, 20.0]


def test_drag_with_flip_lands_markers_where_dropped(controller):
    controller.set_flip_horizontal(True)
    controller.set_scale(1.5)
    dropped = controller.final + np.array([1.0, 0.5])

    controller.drag_markers(dropped)

    np.testing.assert_allclose(controller.final, dropped)
    np.testing.assert_allclose(controller.state.raw_corners, flip(dropped, True, False))
    assert controller.state.scale == 1.0
    assert controller.state.flip_h is True


def test_drag_single_marker(controller):
    controller.set_scale(1.5)
    before = controller.final.copy()
    moved = before[0] + np.array([-0.5, 0.5])

    controller.drag_marker(0, moved)

    np.testing.assert_allclose(controller.final[0], moved)
    np.testing.assert_allclose(controller.final[1:], before[1:])
    assert controller.state.scale == 1.0


@pytest.mark.parametrize("action", [
    lambda c: c.drag_markers([[0, 0], [1, 1], [2, 2]]),
    lambda c: c.set_raw_corners([[0, 0], [1, 1]]),
    lambda c: c.set_raw_corner(4, "lng", 1.0),
    lambda c: c.set_raw_corner(0, "alt", 1.0),
    lambda c: c.set_raw_corner(0, "lat", float("nan")),
    lambda c: c.set_raw_corner(0, "lat", "north"),
    lambda c: c.drag_marker(0, (float("inf"), 0.0)),
    lambda c: c.set_scale(float("nan")),
    lambda c: c.set_rotation(None),
])
def test_rejected_edits_leave_state_unchanged(controller, action):
    controller.set_scale(1.2)
    state, final = controller.state, controller.final.copy()

    with pytest.raises(ConfigurationError):
        action(controller)

    assert controller.state is state
    np.testing.assert_array_equal(controller.final, final)


def test_projection_failure_leaves_state_unchanged(controller):
    controller.set_scale(1.5)
    before = controller.final.copy()

    def broken(_point):
        raise RuntimeError("map not ready")

    with pytest.raises(RuntimeError):
        controller.use_surface(broken, linear_unproject)
    np.testing.assert_array_equal(controller.final, before)
    controller.set_scale(2.0)
    assert controller.state.scale == 2.0


def test_slider_limits(controller):
    controller.set_scale(10)
    assert controller.state.scale == MAX_SCALE
    controller.set_scale(0.01)
    assert controller.state.scale == MIN_SCALE
    controller.set_rotation(190)
    assert controller.state.rotation == pytest.approx(-170.0)
    controller.set_opacity(1.5)
    assert controller.state.opacity == 1.0
    controller.set_opacity(-1)
    assert controller.state.opacity == 0.0


@pytest.mark.parametrize("degrees, wrapped", [
    (0, 0), (180, 180), (-180, -180), (190, -170), (-190, 170), (720, 0),
])
def test_wrap_degrees(degrees, wrapped):
    assert wrap_degrees(degrees) == pytest.approx(wrapped)


def test_commit_bakes_transform(controller):
    controller.set_flip_horizontal(True)
    controller.set_scale(1.5)
    controller.set_rotation(20.0)
    before = controller.final.copy()

    config = controller.commit()

    assert controller.state.scale == 1.0
    assert controller.state.rotation == 0.0
    assert controller.state.flip_h is True
    np.testing.assert_allclose(controller.final, before)
    np.testing.assert_allclose(config.corners, before)
    assert config.flip_h is False and config.flip_v is False
    assert config.image_url == "/plan.png"


def test_committed_config_reopens_with_flip_recovered(controller):
    controller.set_flip_horizontal(True)
    controller.set_rotation(20.0)
    config = controller.commit()

    reopened = OverlayAlignmentController.from_config(
        config, linear_project, linear_unproject
    )

    assert reopened.state.flip_h is True
    assert reopened.state.flip_v is False
    np.testing.assert_allclose(reopened.final, config.corners)


def test_explicit_flip_flags_are_honored():
    config = MapConfig(imageUrl="/plan.png", corners=SQUARE_ROLES, flipV=True)
    ctrl = OverlayAlignmentController.from_config(config, linear_project, linear_unproject)
    assert ctrl.state.flip_v is True
    np.testing.assert_array_equal(ctrl.final, flip(SQUARE_ROLES, False, True))


def test_default_surface_scales_around_centroid():
    ctrl = OverlayAlignmentController.from_default()
    before = ctrl.final.copy()
    ctrl.set_scale(2.0)

    span_before = before.max(axis=0) - before.min(axis=0)
    span_after = ctrl.final.max(axis=0) - ctrl.final.min(axis=0)
    np.testing.assert_allclose(span_after, 2 * span_before, rtol=1e-3)
    np.testing.assert_allclose(ctrl.final.mean(axis=0), before.mean(axis=0), atol=1e-6)


def test_snapshot(controller):
    snap = controller.snapshot()
    assert snap["roles"] == ["TL", "TR", "BR", "BL"]
    assert snap["finalCorners"] == SQUARE_ROLES
    assert snap["rawCorners"] == SQUARE
    assert snap["bounds"] == [[10.0, 10.0], [20.0, 20.0]]
    assert snap["flipH"] is False


def test_final_corners_returns_a_copy(controller):
    corners = controller.final_corners()
    corners[0] = (0.0, 0.0)
    np.testing.assert_array_equal(controller.final, SQUARE_ROLES)


def test_commit_after_quarter_turn_shifts_roles(controller):
    controller.set_rotation(90.0)
    before = controller.final.copy()

    config = controller.commit()

    assert controller.reoriented is True
    np.testing.assert_allclose(config.corners, before, atol=1e-9)
    # Same four points, but the baseline is re-read in canonical order.
    np.testing.assert_allclose(controller.final, SQUARE_ROLES, atol=1e-9)
    assert not np.allclose(controller.final, before)


def test_commit_below_45_degrees_keeps_roles(controller):
    controller.set_rotation(20.0)
    controller.commit()
    assert controller.reoriented is False
