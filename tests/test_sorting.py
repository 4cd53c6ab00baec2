"""Tests for back-to-front splat ordering."""
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from quadsplat.rendering.camera_utils import Camera
from quadsplat.rendering.sorting import (
    VisibilityOrderer,
    expand_to_triangles,
    sort_by_depth,
    sort_splats,
    view_depths,
)


def test_farthest_first_along_negative_z():
    positions = np.array([[0.0, 0.0, -5.0], [0.0, 0.0, -1.0], [0.0, 0.0, -10.0]])

    np.testing.assert_array_equal(sort_splats(positions, np.eye(4)), [2, 0, 1])


def test_ties_keep_original_order():
    np.testing.assert_array_equal(sort_by_depth([-3.0, -1.0, -3.0, -3.0]), [0, 2, 3, 1])


def test_depths_use_view_transform():
    camera = Camera(30.0, 1.0, 0.5, 10.0, position=(0.0, 0.0, 6.0))
    positions = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 3.0], [1.0, 1.0, -3.0]])

    np.testing.assert_allclose(view_depths(positions, camera.get_view()), [-6.0, -3.0, -9.0])
    np.testing.assert_array_equal(sort_splats(positions, camera.get_view()), [2, 0, 1])


def test_expand_to_triangles():
    indices = expand_to_triangles(np.array([1, 0]))

    assert indices.dtype == np.uint32
    np.testing.assert_array_equal(indices, [4, 5, 6, 4, 6, 7, 0, 1, 2, 0, 2, 3])


def test_first_update_sorts():
    orderer = VisibilityOrderer(np.zeros((3, 3)))
    assert orderer.current is None

    buffer = orderer.update(np.eye(4))
    assert buffer.generation == 1
    assert buffer.index_count == 18
    assert orderer.current is buffer


def test_update_without_request_reuses_order():
    orderer = VisibilityOrderer(np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -2.0]]))
    first = orderer.update(np.eye(4))

    flipped = np.diag([1.0, 1.0, -1.0, 1.0])
    assert orderer.update(flipped) is first
    np.testing.assert_array_equal(first.order, [1, 0])


def test_request_resort():
    orderer = VisibilityOrderer(np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -2.0]]))
    orderer.update(np.eye(4))

    orderer.request_resort()
    assert orderer.resort_pending
    buffer = orderer.update(np.diag([1.0, 1.0, -1.0, 1.0]))

    assert not orderer.resort_pending
    assert buffer.generation == 2
    np.testing.assert_array_equal(buffer.order, [0, 1])


def test_published_buffers_are_immutable():
    buffer = VisibilityOrderer(np.zeros((2, 3))).update(np.eye(4))

    with pytest.raises(ValueError):
        buffer.indices[0] = 7
    with pytest.raises(ValueError):
        buffer.order[0] = 1


def test_max_splats_limits_order():
    orderer = VisibilityOrderer(np.zeros((5, 3)), max_splats=2)

    assert orderer.num_splats == 2
    assert orderer.update(np.eye(4)).index_count == 12


def test_resort_async_publishes():
    orderer = VisibilityOrderer(np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -2.0]]))

    with ThreadPoolExecutor(max_workers=1) as executor:
        future = orderer.resort_async(np.eye(4), executor)
        result = future.result()

    assert orderer.current is not None
    assert orderer.current.generation == result.generation
    np.testing.assert_array_equal(orderer.current.order, [1, 0])


def test_stale_async_result_is_discarded(manual_executor):
    orderer = VisibilityOrderer(np.array([[0.0, 0.0, -1.0], [0.0, 0.0, -2.0]]))
    orderer.resort_async(np.eye(4), manual_executor)
    orderer.resort_async(np.diag([1.0, 1.0, -1.0, 1.0]), manual_executor)

    manual_executor.run(1)
    assert orderer.current.generation == 2
    np.testing.assert_array_equal(orderer.current.order, [0, 1])

    manual_executor.run(0)
    assert orderer.current.generation == 2
    np.testing.assert_array_equal(orderer.current.order, [0, 1])
