"""Per-splat quad synthesis.

Each splat becomes four vertices that share its center, shape transform and
color, and differ only in their corner ``uv``. The vertex stage later offsets
each corner by ``(R*S) @ (right * u + up * v)`` using the camera's right/up
axes, and the fragment stage weights it by ``exp(-(u^2 + v^2) / 2)``, so the
rendered footprint follows the projected covariance ellipsoid.

Vertex layout (interleaved float32):
    covariance:      position(3) cov0(3) cov1(3) cov2(3) uv(2) color(4) = 18
    rotation_scale:  position(3) rotation(4) scale(3) uv(2) color(4)   = 16
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple, Union

import numpy as np

from ..models import FootprintMode, NonFinitePolicy
from ..utils.logging import get_logger
from .ply import (
    COLOR_DC_FIELDS,
    OPACITY_FIELD,
    POSITION_FIELDS,
    ROTATION_FIELDS,
    SCALE_FIELDS,
    SPLAT_FIELDS,
    MissingPropertyError,
    NumericDegeneracyError,
    PointCloud,
)

logger = get_logger("rendering.footprint")

# C0 constant for SH
SH_C0 = 0.28209479177387814

DEFAULT_HALF_EXTENT = 4.0

# Corner order defines triangles 0-1-2 and 0-2-3
QUAD_CORNERS = np.array([
    [-1.0, -1.0],
    [1.0, -1.0],
    [1.0, 1.0],
    [-1.0, 1.0],
], dtype=np.float32)
QUAD_TRIANGLES = (0, 1, 2, 0, 2, 3)
VERTICES_PER_SPLAT = 4

LOG_SCALE_LIMIT = 20.0
POSITION_LIMIT = 1e6
COLOR_LIMIT = 1e6


def sigmoid(x: Union[float, np.ndarray]) -> np.ndarray:
    """Numerically stable sigmoid function."""
    x = np.asarray(x, dtype=np.float64)
    flat = np.atleast_1d(x)
    out = np.empty_like(flat)
    pos = flat >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-flat[pos]))
    ex = np.exp(flat[~pos])
    out[~pos] = ex / (1.0 + ex)
    return out.reshape(x.shape)


def quaternions_to_matrices(q: np.ndarray) -> np.ndarray:
    """Convert quaternions to rotation matrices.

    Args:
        q: Quaternions (N, 4) in (w, x, y, z) format, normalized internally

    Returns:
        Rotation matrices (N, 3, 3)
    """
    q = np.asarray(q, dtype=np.float64)
    norms = np.linalg.norm(q, axis=1, keepdims=True)
    q = q / np.maximum(norms, 1e-12)
    w, x, y, z = q[:, 0], q[:, 1], q[:, 2], q[:, 3]

    R = np.zeros((q.shape[0], 3, 3), dtype=np.float64)

    R[:, 0, 0] = 1 - 2 * (y ** 2 + z ** 2)
    R[:, 0, 1] = 2 * (x * y - w * z)
    R[:, 0, 2] = 2 * (x * z + w * y)
    R[:, 1, 0] = 2 * (x * y + w * z)
    R[:, 1, 1] = 1 - 2 * (x ** 2 + z ** 2)
    R[:, 1, 2] = 2 * (y * z - w * x)
    R[:, 2, 0] = 2 * (x * z - w * y)
    R[:, 2, 1] = 2 * (y * z + w * x)
    R[:, 2, 2] = 1 - 2 * (x ** 2 + y ** 2)

    return R


def shape_transforms(log_scales: np.ndarray, rotations: np.ndarray) -> np.ndarray:
    """Compute the per-splat shape transform R * S.

    Args:
        log_scales: Log-encoded scales (N, 3)
        rotations: Quaternions (N, 4) in (w, x, y, z) format

    Returns:
        Transforms (N, 3, 3); column k is rotation axis k scaled by exp(scale_k)
    """
    R = quaternions_to_matrices(rotations)
    s = np.exp(np.asarray(log_scales, dtype=np.float64))
    # S is diagonal, so R @ S scales the columns of R
    return R * s[:, None, :]


def splat_colors(
    colors_dc: np.ndarray,
    opacity_logits: np.ndarray,
    sh_normalization: bool = True,
) -> np.ndarray:
    """Derive per-splat RGBA.

    Args:
        colors_dc: SH DC coefficients (N, 3)
        opacity_logits: Opacity logits (N,)
        sh_normalization: Map DC to RGB as 0.5 + C0 * f_dc, clipped to [0, 1];
            otherwise pass the coefficients through

    Returns:
        RGBA (N, 4)
    """
    colors_dc = np.asarray(colors_dc, dtype=np.float64)
    if sh_normalization:
        rgb = np.clip(colors_dc * SH_C0 + 0.5, 0.0, 1.0)
    else:
        rgb = colors_dc
    alpha = sigmoid(opacity_logits)
    return np.concatenate([rgb, alpha[:, None]], axis=1)


def _sanitize(
    positions: np.ndarray,
    log_scales: np.ndarray,
    rotations: np.ndarray,
    colors_dc: np.ndarray,
    opacity_logits: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Clamp non-finite and degenerate splat parameters to usable values."""
    positions = np.nan_to_num(positions, nan=0.0, posinf=POSITION_LIMIT, neginf=-POSITION_LIMIT)
    log_scales = np.clip(
        np.nan_to_num(log_scales, nan=0.0, posinf=LOG_SCALE_LIMIT, neginf=-LOG_SCALE_LIMIT),
        -LOG_SCALE_LIMIT,
        LOG_SCALE_LIMIT,
    )
    rotations = np.nan_to_num(rotations, nan=0.0, posinf=0.0, neginf=0.0)
    norms = np.linalg.norm(rotations, axis=1)
    degenerate = norms < 1e-12
    if np.any(degenerate):
        rotations = rotations.copy()
        rotations[degenerate] = (1.0, 0.0, 0.0, 0.0)
        norms[degenerate] = 1.0
    rotations = rotations / norms[:, None]
    colors_dc = np.nan_to_num(colors_dc, nan=0.0, posinf=COLOR_LIMIT, neginf=-COLOR_LIMIT)
    opacity_logits = np.nan_to_num(opacity_logits, nan=0.0)
    return positions, log_scales, rotations, colors_dc, opacity_logits


@dataclass(frozen=True)
class QuadVertex:
    """One corner of a splat quad.

    ``cov`` is set in covariance mode, ``rotation``/``scale`` in
    rotation_scale mode.
    """
    position: Tuple[float, float, float]
    uv: Tuple[float, float]
    color: Tuple[float, float, float, float]
    cov: Optional[Tuple[Tuple[float, float, float], ...]] = None
    rotation: Optional[Tuple[float, float, float, float]] = None
    scale: Optional[Tuple[float, float, float]] = None


@dataclass
class QuadVertexBuffers:
    """Per-vertex attribute arrays for every splat, four vertices each.

    Attributes:
        mode: Shape encoding
        positions: Splat centers (4N, 3)
        uvs: Corner coordinates (4N, 2)
        colors: RGBA (4N, 4)
        cov0, cov1, cov2: Columns of R*S (4N, 3), covariance mode only
        rotations: Unit quaternions (4N, 4), rotation_scale mode only
        scales: Effective scales (4N, 3), rotation_scale mode only
    """
    mode: FootprintMode
    positions: np.ndarray
    uvs: np.ndarray
    colors: np.ndarray
    cov0: Optional[np.ndarray] = None
    cov1: Optional[np.ndarray] = None
    cov2: Optional[np.ndarray] = None
    rotations: Optional[np.ndarray] = None
    scales: Optional[np.ndarray] = None

    @property
    def num_vertices(self) -> int:
        return self.positions.shape[0]

    @property
    def num_splats(self) -> int:
        return self.num_vertices // VERTICES_PER_SPLAT

    @property
    def stride(self) -> int:
        """Floats per interleaved vertex."""
        return 18 if self.mode is FootprintMode.COVARIANCE else 16

    def interleaved(self) -> np.ndarray:
        """Pack all attributes into one float32 array (4N, stride)."""
        if self.mode is FootprintMode.COVARIANCE:
            parts = [self.positions, self.cov0, self.cov1, self.cov2, self.uvs, self.colors]
        else:
            parts = [self.positions, self.rotations, self.scales, self.uvs, self.colors]
        return np.ascontiguousarray(np.concatenate(parts, axis=1), dtype=np.float32)

    def vertex(self, index: int) -> QuadVertex:
        """Materialize a single vertex."""
        def as_tuple(arr: Optional[np.ndarray]):
            return None if arr is None else tuple(float(v) for v in arr[index])

        cov = None
        if self.mode is FootprintMode.COVARIANCE:
            cov = (as_tuple(self.cov0), as_tuple(self.cov1), as_tuple(self.cov2))
        return QuadVertex(
            position=as_tuple(self.positions),
            uv=as_tuple(self.uvs),
            color=as_tuple(self.colors),
            cov=cov,
            rotation=as_tuple(self.rotations),
            scale=as_tuple(self.scales),
        )

    def __repr__(self) -> str:
        return f"QuadVertexBuffers(num_splats={self.num_splats:,}, mode={self.mode.value})"


def _build(
    positions: np.ndarray,
    log_scales: np.ndarray,
    rotations: np.ndarray,
    colors_dc: np.ndarray,
    opacity_logits: np.ndarray,
    half_extent: float,
    mode: FootprintMode,
    sh_normalization: bool,
) -> QuadVertexBuffers:
    if half_extent <= 0:
        raise ValueError(f"half_extent must be positive, got {half_extent}")
    mode = FootprintMode(mode)

    positions, log_scales, rotations, colors_dc, opacity_logits = _sanitize(
        positions, log_scales, rotations, colors_dc, opacity_logits
    )

    n = positions.shape[0]

    def per_vertex(arr: np.ndarray) -> np.ndarray:
        return np.repeat(arr, VERTICES_PER_SPLAT, axis=0).astype(np.float32)

    uvs = np.tile(QUAD_CORNERS * np.float32(half_extent), (n, 1))
    colors = splat_colors(colors_dc, opacity_logits, sh_normalization)

    buffers = QuadVertexBuffers(
        mode=mode,
        positions=per_vertex(positions),
        uvs=uvs.astype(np.float32),
        colors=per_vertex(colors),
    )

    if mode is FootprintMode.COVARIANCE:
        M = shape_transforms(log_scales, rotations)
        buffers.cov0 = per_vertex(M[:, :, 0])
        buffers.cov1 = per_vertex(M[:, :, 1])
        buffers.cov2 = per_vertex(M[:, :, 2])
    else:
        buffers.rotations = per_vertex(rotations)
        buffers.scales = per_vertex(np.exp(log_scales))

    return buffers


def build_footprints(
    cloud: PointCloud,
    half_extent: float = DEFAULT_HALF_EXTENT,
    mode: FootprintMode = FootprintMode.COVARIANCE,
    sh_normalization: bool = True,
    nonfinite: NonFinitePolicy = NonFinitePolicy.CLAMP,
) -> QuadVertexBuffers:
    """Build quad vertices for every splat in a point cloud.

    Args:
        cloud: Parsed point cloud with the standard splat fields
        half_extent: Corner bound in sigma units
        mode: Shape encoding
        sh_normalization: Apply the SH DC normalization to colors
        nonfinite: Clamp or reject non-finite parameters

    Returns:
        QuadVertexBuffers with 4 * len(cloud) vertices in record order

    Raises:
        MissingPropertyError: If a splat field is absent
        NumericDegeneracyError: If ``nonfinite`` is reject and bad values exist
    """
    cloud.require(SPLAT_FIELDS)
    if NonFinitePolicy(nonfinite) is NonFinitePolicy.REJECT:
        cloud.check_finite(SPLAT_FIELDS)
    buffers = _build(
        cloud.positions.astype(np.float64),
        cloud.log_scales.astype(np.float64),
        cloud.rotations.astype(np.float64),
        cloud.colors_dc.astype(np.float64),
        cloud.opacity_logits.astype(np.float64),
        half_extent,
        mode,
        sh_normalization,
    )
    logger.debug("Built %d quads (%s)", buffers.num_splats, buffers.mode.value)
    return buffers


def build_splat_quad(
    record: Mapping[str, float],
    half_extent: float = DEFAULT_HALF_EXTENT,
    mode: FootprintMode = FootprintMode.COVARIANCE,
    sh_normalization: bool = True,
    nonfinite: NonFinitePolicy = NonFinitePolicy.CLAMP,
) -> List[QuadVertex]:
    """Build the four vertices of a single splat record.

    Produces the same values as the corresponding block of ``build_footprints``.
    """
    missing = [name for name in SPLAT_FIELDS if name not in record]
    if missing:
        raise MissingPropertyError(f"Record is missing properties: {missing}")
    if NonFinitePolicy(nonfinite) is NonFinitePolicy.REJECT:
        bad = [name for name in SPLAT_FIELDS if not np.isfinite(record[name])]
        if bad:
            raise NumericDegeneracyError(f"Non-finite values in properties: {bad}")

    def row(names) -> np.ndarray:
        return np.array([[record[name] for name in names]], dtype=np.float64)

    buffers = _build(
        row(POSITION_FIELDS),
        row(SCALE_FIELDS),
        row(ROTATION_FIELDS),
        row(COLOR_DC_FIELDS),
        np.array([record[OPACITY_FIELD]], dtype=np.float64),
        half_extent,
        mode,
        sh_normalization,
    )
    return [buffers.vertex(i) for i in range(VERTICES_PER_SPLAT)]
