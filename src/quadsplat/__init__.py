"""quadsplat - Gaussian splat quad renderer core.

Loads 3D Gaussian splat point clouds and prepares everything a GPU backend
needs to draw them as camera-facing quads:

    1. Parse - Binary PLY header and float32 records
    2. Build - Per-splat quad vertices (shape, color, opacity)
    3. Order - Back-to-front index buffer for the current view
    4. Assemble - Uniform block + vertices + indices per frame

The backend itself (window, GPU device, shaders) is not part of this package.
"""

from .models import FootprintMode, NonFinitePolicy, ViewerConfig, load_config
from .rendering import (
    Camera,
    FrameState,
    PlyFormatError,
    PointCloud,
    SplatViewer,
    VisibilityOrderer,
    build_footprints,
    parse_point_cloud,
)
from .utils.io import SplatLoadError


__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Config
    "FootprintMode",
    "NonFinitePolicy",
    "ViewerConfig",
    "load_config",
    # Rendering
    "Camera",
    "FrameState",
    "PointCloud",
    "SplatViewer",
    "VisibilityOrderer",
    "build_footprints",
    "parse_point_cloud",
    # Errors
    "PlyFormatError",
    "SplatLoadError",
]
