"""Configuration models for quadsplat.

A viewer session is described by a single ``ViewerConfig``. It can be built in
code or loaded from a YAML/JSON file:

    fov: 30.0
    near: 0.5
    far: 10.0
    initial_position: [0.0, 0.0, 6.0]
    footprint_mode: covariance
    max_splats: 200000
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .utils.io import load_json


class FootprintMode(Enum):
    """Shape encoding written into each quad vertex."""
    COVARIANCE = "covariance"            # cov0/cov1/cov2 columns of R*S
    ROTATION_SCALE = "rotation_scale"    # normalized quaternion + effective scale


class NonFinitePolicy(Enum):
    """Handling of NaN/inf in scale, rotation or position fields."""
    CLAMP = "clamp"
    REJECT = "reject"


@dataclass
class ViewerConfig:
    """Settings for a splat viewer session.

    Attributes:
        fov: Vertical field of view in degrees
        aspect_ratio: Viewport width / height
        near, far: Clipping planes
        initial_position: Camera start position in world space
        move_step: Translation per tick for a held navigation key
        rotate_sensitivity: Radians per pixel of pointer drag
        half_extent: Quad corner bound in sigma units
        footprint_mode: Shape encoding for quad vertices
        sh_normalization: Map SH DC to RGB with 0.5 + C0 * f_dc
        nonfinite: Policy for non-finite splat parameters
        max_splats: Working-set cap (first N records), None for all
        header_scan_bytes: Bytes decoded when searching for the header
        renormalize_every: Rotations between automatic quaternion renormalization
    """
    fov: float = 30.0
    aspect_ratio: float = 1.0
    near: float = 0.5
    far: float = 10.0
    initial_position: Tuple[float, float, float] = (0.0, 0.0, 6.0)
    move_step: float = 0.03
    rotate_sensitivity: float = 0.003
    half_extent: float = 4.0
    footprint_mode: FootprintMode = FootprintMode.COVARIANCE
    sh_normalization: bool = True
    nonfinite: NonFinitePolicy = NonFinitePolicy.CLAMP
    max_splats: Optional[int] = None
    header_scan_bytes: int = 10000
    renormalize_every: int = 64

    def __post_init__(self):
        """Coerce enum and tuple fields coming from plain config files."""
        self.footprint_mode = FootprintMode(self.footprint_mode)
        self.nonfinite = NonFinitePolicy(self.nonfinite)
        self.initial_position = tuple(float(v) for v in self.initial_position)
        if len(self.initial_position) != 3:
            raise ValueError(f"initial_position needs 3 values, got {self.initial_position}")
        if self.aspect_ratio <= 0:
            raise ValueError(f"aspect_ratio must be positive, got {self.aspect_ratio}")
        if not 0 < self.near < self.far:
            raise ValueError(f"Expected 0 < near < far, got near={self.near} far={self.far}")
        if self.half_extent <= 0:
            raise ValueError(f"half_extent must be positive, got {self.half_extent}")
        if self.max_splats is not None and self.max_splats < 0:
            raise ValueError(f"max_splats must be >= 0, got {self.max_splats}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        data = asdict(self)
        data["footprint_mode"] = self.footprint_mode.value
        data["nonfinite"] = self.nonfinite.value
        data["initial_position"] = list(self.initial_position)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViewerConfig":
        """Build a config, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**data)


def load_config(config_path: Union[str, Path]) -> ViewerConfig:
    """Load a viewer config from file.

    Supports JSON and YAML formats.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path.suffix in (".yaml", ".yml"):
        import yaml
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    else:
        data = load_json(config_path)

    if not isinstance(data, dict):
        raise ValueError(f"Config must be a mapping: {config_path}")

    return ViewerConfig.from_dict(data)
