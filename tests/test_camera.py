"""Tests for the navigable camera and quaternion helpers."""
import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from quadsplat.rendering.camera_utils import (
    IDENTITY_QUATERNION,
    Camera,
    get_projection_matrix,
    matrix_to_quaternion,
    normalize_quaternion,
    quaternion_from_euler,
    quaternion_multiply,
    quaternion_to_matrix,
    rotation_from_pointer,
    translation_from_keys,
)


@pytest.fixture
def camera():
    return Camera(fov=30.0, aspect_ratio=1.0, near=0.5, far=10.0, position=(0.0, 0.0, 6.0))


def test_identity_rotation_keeps_view_projection(camera):
    before = camera.get_view_projection()
    camera.rotate(IDENTITY_QUATERNION)

    np.testing.assert_allclose(camera.get_view_projection(), before, atol=1e-12)


def test_zero_move_keeps_position(camera):
    camera.move(0.0, 0.0, 0.0)
    np.testing.assert_array_equal(camera.position, [0.0, 0.0, 6.0])


def test_view_inverts_model_after_navigation(camera):
    camera.move(0.3, -0.2, 1.0)
    camera.rotate(rotation_from_pointer(40, -25))
    camera.move(0.0, 0.0, -2.0)
    camera.rotate(quaternion_from_euler(0.1, 0.7, -0.3))

    np.testing.assert_allclose(camera.get_view() @ camera.get_model(), np.eye(4), atol=1e-10)


def test_move_is_in_local_frame(camera):
    camera.rotate(quaternion_from_euler(0.0, math.pi / 2, 0.0))
    camera.move(0.0, 0.0, -1.0)

    np.testing.assert_allclose(camera.position, [-1.0, 0.0, 6.0], atol=1e-12)


def test_matrices_are_derived_fresh(camera):
    view = camera.get_view()
    camera.move(1.0, 0.0, 0.0)

    assert camera.get_view() is not view
    assert not np.allclose(camera.get_view(), view)


def test_snapshot_is_unaffected_by_later_moves(camera):
    snapshot = camera.snapshot()
    view = snapshot.get_view()
    camera.move(0.0, 0.0, -1.0)
    camera.rotate(rotation_from_pointer(5, 5))

    np.testing.assert_array_equal(snapshot.get_view(), view)
    np.testing.assert_allclose(snapshot.get_view_projection(), snapshot.get_projection() @ view)


def test_projection_maps_clip_planes_to_ndc():
    P = get_projection_matrix(30.0, 1.5, 0.5, 10.0)

    near = P @ np.array([0.0, 0.0, -0.5, 1.0])
    far = P @ np.array([0.0, 0.0, -10.0, 1.0])
    assert near[2] / near[3] == pytest.approx(-1.0)
    assert far[2] / far[3] == pytest.approx(1.0)
    assert P[0, 0] == pytest.approx(P[1, 1] / 1.5)


def test_euler_matches_scipy():
    angles = (0.2, -0.5, 1.1)
    expected = Rotation.from_euler("XYZ", angles).as_matrix()

    np.testing.assert_allclose(quaternion_to_matrix(quaternion_from_euler(*angles)), expected, atol=1e-12)


def test_hamilton_product():
    i = np.array([0.0, 1.0, 0.0, 0.0])
    j = np.array([0.0, 0.0, 1.0, 0.0])

    np.testing.assert_array_equal(quaternion_multiply(i, j), [0.0, 0.0, 0.0, 1.0])
    np.testing.assert_array_equal(quaternion_multiply(IDENTITY_QUATERNION, j), j)


def test_matrix_quaternion_roundtrip():
    q = normalize_quaternion([0.9, 0.1, -0.3, 0.2])
    np.testing.assert_allclose(matrix_to_quaternion(quaternion_to_matrix(q)), q, atol=1e-12)


def test_zero_quaternion_normalizes_to_identity():
    np.testing.assert_array_equal(normalize_quaternion([0, 0, 0, 0]), IDENTITY_QUATERNION)


def test_periodic_renormalization():
    camera = Camera(30.0, 1.0, 0.5, 10.0, renormalize_every=4)
    drift = np.array([1.01, 0.0, 0.0, 0.0])

    for _ in range(3):
        camera.rotate(drift)
    assert np.linalg.norm(camera.orientation) == pytest.approx(1.01 ** 3)

    camera.rotate(drift)
    assert np.linalg.norm(camera.orientation) == pytest.approx(1.0)


def test_manual_renormalization():
    camera = Camera(30.0, 1.0, 0.5, 10.0, renormalize_every=0)
    for _ in range(100):
        camera.rotate([1.001, 0.0, 0.0, 0.0])
    assert np.linalg.norm(camera.orientation) > 1.05

    camera.renormalize()
    assert np.linalg.norm(camera.orientation) == pytest.approx(1.0)


def test_look_at_centers_target():
    camera = Camera(30.0, 1.0, 0.5, 10.0, position=(5.0, 1.0, 2.0))
    camera.look_at((0.0, 1.0, 2.0))

    target_view = camera.get_view() @ np.array([0.0, 1.0, 2.0, 1.0])
    np.testing.assert_allclose(target_view[:3], [0.0, 0.0, -5.0], atol=1e-10)


def test_look_at_rejects_degenerate_targets(camera):
    with pytest.raises(ValueError):
        camera.look_at(camera.position)
    with pytest.raises(ValueError):
        camera.look_at((0.0, 5.0, 6.0), up=(0.0, 1.0, 0.0))


def test_aspect_ratio_must_be_positive(camera):
    with pytest.raises(ValueError):
        camera.set_aspect_ratio(0.0)
    with pytest.raises(ValueError):
        Camera(30.0, -1.0, 0.5, 10.0)


def test_translation_from_keys():
    assert translation_from_keys(["w"]) == pytest.approx((0.0, 0.0, -0.03))
    assert translation_from_keys(["w", "s"]) == pytest.approx((0.0, 0.0, 0.0))
    assert translation_from_keys(["a", "ArrowUp", "x"]) == pytest.approx((-0.03, 0.03, 0.0))
    assert translation_from_keys(["d"], step=0.5) == pytest.approx((0.5, 0.0, 0.0))


def test_pointer_drag_yaws_about_camera_y():
    q = rotation_from_pointer(10, 0)

    np.testing.assert_allclose(q, [math.cos(0.015), 0.0, -math.sin(0.015), 0.0], atol=1e-12)
    np.testing.assert_allclose(rotation_from_pointer(0, 0), IDENTITY_QUATERNION, atol=1e-12)
