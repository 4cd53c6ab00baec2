"""Splat viewer session.

This module provides the SplatViewer class, the primary interface for driving
a splat scene frame by frame. It handles:

- Loading point clouds from a path or URL, with a placeholder scene on failure
- Building quad vertices and the initial draw order
- Applying navigation deltas to the camera each tick
- Re-sorting on request and assembling per-frame buffers

Usage:
    viewer = SplatViewer(ViewerConfig(max_splats=100_000))
    if not viewer.load("scene.ply"):
        print(f"Showing placeholder: {viewer.last_error}")

    frame = viewer.tick(translation=(0.0, 0.0, -0.03), resort=True)
    backend.upload(frame.uniforms, frame.vertices, frame.indices)
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from ..models import ViewerConfig, load_config
from ..utils.io import SplatLoadError, fetch_bytes
from ..utils.logging import ProgressTracker, get_logger
from .camera_utils import Camera, VectorLike, rotation_from_pointer, translation_from_keys
from .footprint import VERTICES_PER_SPLAT, QuadVertexBuffers, build_footprints
from .frame_state import FrameState, FrameStateAssembler
from .ply import SPLAT_FIELDS, PlyFormatError, PlyHeader, PointCloud, parse_point_cloud
from .sorting import VisibilityOrderer

logger = get_logger("rendering.viewer")

PLACEHOLDER_SOURCE = "<placeholder>"


def placeholder_cloud() -> PointCloud:
    """Eight small splats on the corners of a unit cube.

    Corner colors follow the corner coordinates so orientation is visible.
    """
    corners = np.array(
        [[x, y, z] for x in (-1.0, 1.0) for y in (-1.0, 1.0) for z in (-1.0, 1.0)]
    )
    n = corners.shape[0]
    columns = {
        "x": corners[:, 0],
        "y": corners[:, 1],
        "z": corners[:, 2],
        "rot_0": np.ones(n),
        "rot_1": np.zeros(n),
        "rot_2": np.zeros(n),
        "rot_3": np.zeros(n),
        "scale_0": np.full(n, np.log(0.1)),
        "scale_1": np.full(n, np.log(0.1)),
        "scale_2": np.full(n, np.log(0.1)),
        # DC such that 0.5 + C0 * f_dc lands on 0.25 / 0.75
        "f_dc_0": corners[:, 0] * 0.25 / 0.28209479177387814,
        "f_dc_1": corners[:, 1] * 0.25 / 0.28209479177387814,
        "f_dc_2": corners[:, 2] * 0.25 / 0.28209479177387814,
        "opacity": np.full(n, 2.0),
    }
    data = np.stack([columns[name] for name in SPLAT_FIELDS], axis=1).astype(np.float32)
    header = PlyHeader(vertex_count=n, properties=SPLAT_FIELDS, data_offset=0)
    return PointCloud(header, data)


@dataclass
class SplatScene:
    """A loaded scene: records plus everything derived from them."""
    source: str
    cloud: PointCloud
    buffers: QuadVertexBuffers
    orderer: VisibilityOrderer
    assembler: FrameStateAssembler
    is_placeholder: bool = False

    @property
    def num_splats(self) -> int:
        return len(self.cloud)

    @property
    def centers(self) -> np.ndarray:
        """Sanitized splat centers (N, 3), as used by the quads and the sort."""
        return self.buffers.positions[::VERTICES_PER_SPLAT].astype(np.float64)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned (min, max) of the splat centers."""
        centers = self.centers
        return centers.min(axis=0), centers.max(axis=0)


def build_scene(
    cloud: PointCloud,
    config: ViewerConfig,
    source: str,
    is_placeholder: bool = False,
) -> SplatScene:
    """Derive quad buffers and an orderer from a parsed cloud.

    The cloud is capped to ``config.max_splats`` records first.
    """
    cloud = cloud.head(config.max_splats)
    buffers = build_footprints(
        cloud,
        half_extent=config.half_extent,
        mode=config.footprint_mode,
        sh_normalization=config.sh_normalization,
        nonfinite=config.nonfinite,
    )
    # Sort on the sanitized centers the quads were built from
    orderer = VisibilityOrderer(buffers.positions[::VERTICES_PER_SPLAT])
    return SplatScene(
        source=source,
        cloud=cloud,
        buffers=buffers,
        orderer=orderer,
        assembler=FrameStateAssembler(buffers, orderer),
        is_placeholder=is_placeholder,
    )


class SplatViewer:
    """Frame-driven splat viewer.

    The camera is owned by the thread calling ``tick``. Loads may run on
    another thread; a finished load replaces the scene with a single reference
    swap, and a load superseded by a newer one is dropped.

    Attributes:
        config: Session settings
        camera: Navigable camera
        scene: Current scene (placeholder until a load succeeds)
        last_error: Exception from the most recent failed load
    """

    def __init__(self, config: Optional[ViewerConfig] = None):
        self.config = config or ViewerConfig()
        self.camera = Camera(
            fov=self.config.fov,
            aspect_ratio=self.config.aspect_ratio,
            near=self.config.near,
            far=self.config.far,
            position=self.config.initial_position,
            renormalize_every=self.config.renormalize_every,
        )
        self._lock = threading.Lock()
        self._load_generation = 0
        self.last_error: Optional[Exception] = None

        self.scene = build_scene(
            placeholder_cloud(), self.config, PLACEHOLDER_SOURCE, is_placeholder=True
        )
        self.scene.orderer.update(self._sort_view(self.scene))

    @classmethod
    def from_config(cls, config: Union[ViewerConfig, str, Path]) -> "SplatViewer":
        """Create a viewer from a config or a YAML/JSON config file."""
        if not isinstance(config, ViewerConfig):
            config = load_config(config)
        return cls(config)

    def load(self, source: Union[str, Path]) -> bool:
        """Load a point cloud and make it the current scene.

        Args:
            source: Path or URL of a binary point cloud

        Returns:
            True if the scene was replaced. On retrieval or format failure the
            previous scene is kept, ``last_error`` is set and False is returned.
        """
        return self._load(str(source), self._next_generation())

    def load_async(self, source: Union[str, Path], executor: Executor) -> "Future[bool]":
        """Load on ``executor``; a later ``load``/``load_async`` supersedes this one."""
        return executor.submit(self._load, str(source), self._next_generation())

    def _next_generation(self) -> int:
        with self._lock:
            self._load_generation += 1
            return self._load_generation

    def _load(self, source: str, generation: int) -> bool:
        tracker = ProgressTracker("load", logger=logger)
        try:
            with tracker.stage("fetch") as stage:
                data = fetch_bytes(source)
                stage.metadata["bytes"] = len(data)

            with tracker.stage("parse") as stage:
                cloud = parse_point_cloud(data, scan_bytes=self.config.header_scan_bytes)
                stage.items_processed = len(cloud)

            with tracker.stage("build", total_items=len(cloud)) as stage:
                scene = build_scene(cloud, self.config, source)
                stage.items_processed = scene.num_splats

            with tracker.stage("sort", total_items=scene.num_splats) as stage:
                scene.orderer.update(self._sort_view(scene))
                stage.items_processed = scene.num_splats
        except (SplatLoadError, PlyFormatError) as e:
            with self._lock:
                if generation != self._load_generation:
                    logger.info("Ignoring failure of superseded load of %s: %s", source, e)
                    return False
                self.last_error = e
            logger.error("Failed to load %s: %s (keeping %s)", source, e, self.scene.source)
            return False

        with self._lock:
            if generation != self._load_generation:
                logger.info("Discarding superseded load of %s", source)
                return False
            self.scene = scene
            self.last_error = None

        logger.info("Loaded %s: %d splats", source, scene.num_splats)
        return True

    def _sort_view(self, scene: SplatScene) -> np.ndarray:
        return self.camera.get_view() @ scene.assembler.model_matrix

    def request_resort(self) -> None:
        """Re-sort on the next tick."""
        self.scene.orderer.request_resort()

    def resize(self, width: int, height: int) -> None:
        """Update the camera aspect ratio for a new viewport size."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid viewport size: {width}x{height}")
        self.camera.set_aspect_ratio(width / height)

    def recenter(self) -> None:
        """Move the camera back from the scene center and look at it."""
        scene = self.scene
        if scene.num_splats == 0:
            return
        bounds_min, bounds_max = scene.bounds()
        center = (bounds_min + bounds_max) / 2
        extent = max(float(np.max(bounds_max - bounds_min)), 1e-3)
        self.camera.position = center + np.array([0.0, 0.0, 2.0 * extent])
        self.camera.look_at(center)
        self.request_resort()

    def tick(
        self,
        translation: Sequence[float] = (0.0, 0.0, 0.0),
        rotation: Optional[VectorLike] = None,
        resort: bool = False,
    ) -> FrameState:
        """Advance one frame.

        Args:
            translation: Local-frame (dx, dy, dz) for this frame
            rotation: Incremental rotation quaternion (w, x, y, z), or None
            resort: Re-sort draw order for the new camera state

        Returns:
            FrameState for the backend to upload
        """
        self.camera.move(*translation)
        if rotation is not None:
            self.camera.rotate(rotation)

        snapshot = self.camera.snapshot()
        scene = self.scene
        if resort:
            scene.orderer.request_resort()
        scene.orderer.update(snapshot.get_view() @ scene.assembler.model_matrix)
        return scene.assembler.assemble(snapshot)

    def tick_from_input(
        self,
        pressed: Iterable[str] = (),
        pointer_delta: Optional[Sequence[float]] = None,
        resort: bool = False,
    ) -> FrameState:
        """Advance one frame from held keys and a pointer drag in pixels."""
        translation = translation_from_keys(pressed, step=self.config.move_step)
        rotation = None
        if pointer_delta is not None:
            dx, dy = pointer_delta
            rotation = rotation_from_pointer(dx, dy, sensitivity=self.config.rotate_sensitivity)
        return self.tick(translation=translation, rotation=rotation, resort=resort)

    def scene_info(self) -> Dict[str, Any]:
        """Summary of the current scene."""
        scene = self.scene
        info: Dict[str, Any] = {
            "source": scene.source,
            "is_placeholder": scene.is_placeholder,
            "num_splats": scene.num_splats,
            "properties": list(scene.cloud.properties),
            "footprint_mode": scene.buffers.mode.value,
            "vertex_stride": scene.buffers.stride,
        }
        current = scene.orderer.current
        info["sort_generation"] = current.generation if current is not None else 0

        if scene.num_splats > 0:
            bounds_min, bounds_max = scene.bounds()
            info.update({
                "bounds_min": bounds_min.tolist(),
                "bounds_max": bounds_max.tolist(),
                "center": ((bounds_min + bounds_max) / 2).tolist(),
                "extent": float(np.max(bounds_max - bounds_min)),
            })
        return info

    def __repr__(self) -> str:
        return f"SplatViewer({self.scene.num_splats:,} splats from {self.scene.source})"
