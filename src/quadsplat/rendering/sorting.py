"""Back-to-front ordering of splats for order-dependent blending.

Splats are drawn without a depth test, so the draw order alone decides how
overlapping quads composite. Each splat center is transformed into view space
and splats are sorted by view-space z. With the camera looking down -Z,
ascending z is farthest first.

Sorting is done on request, not every frame. The published index buffer is
immutable; a new one is built completely and then swapped in under a lock, so
readers always see either the old or the new order.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..utils.logging import get_logger
from .footprint import QUAD_TRIANGLES, VERTICES_PER_SPLAT

logger = get_logger("rendering.sorting")


def view_depths(positions: np.ndarray, view: np.ndarray) -> np.ndarray:
    """View-space z of each position.

    Args:
        positions: World-space points (N, 3)
        view: 4x4 world-to-camera matrix

    Returns:
        Depths (N,)
    """
    positions = np.asarray(positions, dtype=np.float64)
    view = np.asarray(view, dtype=np.float64)
    return positions @ view[2, :3] + view[2, 3]


def sort_by_depth(depths: np.ndarray) -> np.ndarray:
    """Stable ascending argsort; equal depths keep their original order."""
    return np.argsort(np.asarray(depths), kind="stable")


def sort_splats(positions: np.ndarray, view: np.ndarray) -> np.ndarray:
    """Splat indices ordered farthest to nearest for the given view."""
    return sort_by_depth(view_depths(positions, view))


def expand_to_triangles(order: np.ndarray) -> np.ndarray:
    """Expand a splat order into a triangle-list index buffer.

    Splat ``i`` contributes ``4i, 4i+1, 4i+2, 4i, 4i+2, 4i+3``.

    Returns:
        uint32 indices (6 * len(order),)
    """
    order = np.asarray(order, dtype=np.int64)
    base = order[:, None] * VERTICES_PER_SPLAT
    return (base + np.asarray(QUAD_TRIANGLES, dtype=np.int64)).ravel().astype(np.uint32)


@dataclass(frozen=True)
class IndexBuffer:
    """A published draw order.

    Attributes:
        order: Splat indices, farthest first (N,)
        indices: Triangle-list vertex indices (6N,)
        generation: Monotonic id of the sort request that produced it
    """
    order: np.ndarray
    indices: np.ndarray
    generation: int

    @property
    def index_count(self) -> int:
        return int(self.indices.shape[0])


class VisibilityOrderer:
    """Owns the current draw order and rebuilds it on request.

    Example:
        orderer = VisibilityOrderer(cloud.positions)
        orderer.update(camera.get_view())      # first call always sorts
        orderer.request_resort()
        orderer.update(camera.get_view())      # sorts again
        indices = orderer.current.indices
    """

    def __init__(self, positions: np.ndarray, max_splats: Optional[int] = None):
        """Initialize orderer.

        Args:
            positions: Splat centers (N, 3)
            max_splats: Only order the first ``max_splats`` splats
        """
        positions = np.asarray(positions, dtype=np.float64)
        if max_splats is not None:
            positions = positions[:max_splats]
        self._positions = positions
        self._lock = threading.Lock()
        self._current: Optional[IndexBuffer] = None
        self._resort_requested = False
        self._generation = 0

    @property
    def num_splats(self) -> int:
        return self._positions.shape[0]

    @property
    def current(self) -> Optional[IndexBuffer]:
        """The last published buffer, or None before the first sort."""
        with self._lock:
            return self._current

    @property
    def resort_pending(self) -> bool:
        with self._lock:
            return self._resort_requested

    def request_resort(self) -> None:
        """Mark the current order stale; the next ``update`` re-sorts."""
        with self._lock:
            self._resort_requested = True

    def update(self, view: np.ndarray) -> IndexBuffer:
        """Re-sort if requested (or never sorted), then return the current buffer."""
        with self._lock:
            needed = self._resort_requested or self._current is None
            self._resort_requested = False
        if needed:
            return self.resort(view)
        return self.current

    def resort(self, view: np.ndarray) -> IndexBuffer:
        """Sort synchronously and publish the result."""
        buffer = self._build(view, self._next_generation())
        self._publish(buffer)
        return self.current

    def resort_async(self, view: np.ndarray, executor: Executor) -> "Future[IndexBuffer]":
        """Sort on ``executor``; the result is published when it completes.

        A result that finishes after a newer one has been published is
        discarded.
        """
        with self._lock:
            self._resort_requested = False
        view = np.array(view, dtype=np.float64)
        future = executor.submit(self._build, view, self._next_generation())
        future.add_done_callback(self._publish_future)
        return future

    def _next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _build(self, view: np.ndarray, generation: int) -> IndexBuffer:
        order = sort_splats(self._positions, view)
        indices = expand_to_triangles(order)
        order.flags.writeable = False
        indices.flags.writeable = False
        return IndexBuffer(order=order, indices=indices, generation=generation)

    def _publish(self, buffer: IndexBuffer) -> bool:
        with self._lock:
            if self._current is not None and buffer.generation <= self._current.generation:
                logger.debug(
                    "Discarding stale sort generation=%d current=%d",
                    buffer.generation,
                    self._current.generation,
                )
                return False
            self._current = buffer
        logger.debug("Published sort generation=%d splats=%d", buffer.generation, len(buffer.order))
        return True

    def _publish_future(self, future: "Future[IndexBuffer]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Background sort failed: %s", error)
            return
        self._publish(future.result())
