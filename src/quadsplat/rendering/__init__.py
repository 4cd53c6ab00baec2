"""Quad-based Gaussian splat rendering module.

This module turns a binary splat point cloud into the buffers a GPU backend
needs to draw each splat as a screen-aligned quad with order-dependent
blending.

Main components:
- PointCloud: Parse binary PLY records with a runtime schema
- Camera: Navigable perspective camera with quaternion orientation
- build_footprints: Expand splats into quad vertices
- VisibilityOrderer: Back-to-front draw order, re-sorted on request
- FrameStateAssembler: Per-frame uniforms, vertices and indices
- SplatViewer: Frame-driven session tying the above together

Usage:
    from quadsplat.rendering import SplatViewer

    viewer = SplatViewer()
    viewer.load("scene.ply")
    frame = viewer.tick(resort=True)
"""

from .camera_utils import (
    Camera,
    CameraSnapshot,
    get_model_matrix,
    get_projection_matrix,
    get_view_matrix,
    quaternion_from_euler,
    quaternion_multiply,
    quaternion_to_matrix,
    rotation_from_pointer,
    translation_from_keys,
)
from .footprint import (
    QuadVertex,
    QuadVertexBuffers,
    build_footprints,
    build_splat_quad,
    sigmoid,
)
from .frame_state import FrameState, FrameStateAssembler
from .ply import (
    PlyFormatError,
    PlyHeader,
    PointCloud,
    parse_header,
    parse_point_cloud,
    save_point_cloud,
    write_point_cloud,
)
from .sorting import IndexBuffer, VisibilityOrderer, sort_splats
from .viewer import SplatViewer

__all__ = [
    # Camera utilities
    "Camera",
    "CameraSnapshot",
    "get_model_matrix",
    "get_projection_matrix",
    "get_view_matrix",
    "quaternion_from_euler",
    "quaternion_multiply",
    "quaternion_to_matrix",
    "rotation_from_pointer",
    "translation_from_keys",
    # Point cloud
    "PlyFormatError",
    "PlyHeader",
    "PointCloud",
    "parse_header",
    "parse_point_cloud",
    "save_point_cloud",
    "write_point_cloud",
    # Footprints
    "QuadVertex",
    "QuadVertexBuffers",
    "build_footprints",
    "build_splat_quad",
    "sigmoid",
    # Ordering
    "IndexBuffer",
    "VisibilityOrderer",
    "sort_splats",
    # Frame assembly
    "FrameState",
    "FrameStateAssembler",
    # Viewer
    "SplatViewer",
]
