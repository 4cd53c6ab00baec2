"""Camera model and quaternion utilities for splat rendering.

Coordinate Conventions:
    - Right-handed world and camera space
    - Camera looks down its local -Z axis, +Y up, +X right (OpenGL)
    - Quaternions: (w, x, y, z) format
    - Matrices are 4x4 float64, applied to column vectors
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple, Union

import numpy as np
from scipy.spatial.transform import Rotation

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])

VectorLike = Union[Sequence[float], np.ndarray]


def normalize_quaternion(q: VectorLike) -> np.ndarray:
    """Scale a quaternion to unit length.

    A zero quaternion has no orientation and is mapped to the identity.
    """
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm < 1e-12:
        return IDENTITY_QUATERNION.copy()
    return q / norm


def quaternion_multiply(q1: VectorLike, q2: VectorLike) -> np.ndarray:
    """Hamilton product q1 * q2 (apply q2 first, then q1)."""
    w1, x1, y1, z1 = np.asarray(q1, dtype=np.float64)
    w2, x2, y2, z2 = np.asarray(q2, dtype=np.float64)
    return np.array([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
    ])


def quaternion_to_matrix(q: VectorLike) -> np.ndarray:
    """Convert quaternion (w, x, y, z) to 3x3 rotation matrix.

    Args:
        q: Quaternion in (w, x, y, z) format, normalized internally

    Returns:
        3x3 rotation matrix
    """
    w, x, y, z = normalize_quaternion(q)

    return np.array([
        [1 - 2*(y**2 + z**2), 2*(x*y - w*z), 2*(x*z + w*y)],
        [2*(x*y + w*z), 1 - 2*(x**2 + z**2), 2*(y*z - w*x)],
        [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x**2 + y**2)]
    ], dtype=np.float64)


def matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion (w, x, y, z).

    Uses Shepperd's method for numerical stability.
    """
    R = np.asarray(R, dtype=np.float64)
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    q = np.array([w, x, y, z], dtype=np.float64)

    # Ensure positive w (canonical form)
    if w < 0:
        q = -q

    return q / np.linalg.norm(q)


def quaternion_from_euler(x: float, y: float, z: float) -> np.ndarray:
    """Quaternion (w, x, y, z) from intrinsic XYZ Euler angles in radians."""
    qx, qy, qz, qw = Rotation.from_euler("XYZ", [x, y, z]).as_quat()
    return np.array([qw, qx, qy, qz])


def rotate_vector(v: VectorLike, q: VectorLike) -> np.ndarray:
    """Rotate a 3-vector by a quaternion."""
    return quaternion_to_matrix(q) @ np.asarray(v, dtype=np.float64)


def translation_matrix(t: VectorLike) -> np.ndarray:
    """4x4 homogeneous translation."""
    T = np.eye(4)
    T[:3, 3] = np.asarray(t, dtype=np.float64)
    return T


def rotation_matrix(q: VectorLike) -> np.ndarray:
    """4x4 homogeneous rotation from a quaternion."""
    M = np.eye(4)
    M[:3, :3] = quaternion_to_matrix(q)
    return M


def get_projection_matrix(
    fov: float,
    aspect_ratio: float,
    z_near: float,
    z_far: float,
) -> np.ndarray:
    """Compute OpenGL-style perspective projection matrix.

    Args:
        fov: Vertical field of view in degrees
        aspect_ratio: Width / height
        z_near: Near clipping plane
        z_far: Far clipping plane

    Returns:
        4x4 projection matrix mapping the view frustum to [-1, 1] clip space
    """
    tan_half_fov_y = math.tan(math.radians(fov) / 2.0)

    top = tan_half_fov_y * z_near
    bottom = -top
    right = top * aspect_ratio
    left = -right

    P = np.zeros((4, 4), dtype=np.float64)

    P[0, 0] = 2.0 * z_near / (right - left)
    P[1, 1] = 2.0 * z_near / (top - bottom)
    P[0, 2] = (right + left) / (right - left)
    P[1, 2] = (top + bottom) / (top - bottom)
    P[2, 2] = -(z_far + z_near) / (z_far - z_near)
    P[2, 3] = -2.0 * z_far * z_near / (z_far - z_near)
    P[3, 2] = -1.0

    return P


def get_model_matrix(position: VectorLike, orientation: VectorLike) -> np.ndarray:
    """Camera-to-world transform: translation(position) * rotation(orientation)."""
    return translation_matrix(position) @ rotation_matrix(orientation)


def get_view_matrix(position: VectorLike, orientation: VectorLike) -> np.ndarray:
    """World-to-camera transform, the exact inverse of ``get_model_matrix``.

    Built in closed form as [R^T | -R^T p].
    """
    R = quaternion_to_matrix(orientation)
    V = np.eye(4)
    V[:3, :3] = R.T
    V[:3, 3] = -R.T @ np.asarray(position, dtype=np.float64)
    return V


@dataclass(frozen=True)
class CameraSnapshot:
    """Immutable copy of camera state taken at the start of a frame.

    Every derivation is recomputed from the stored values on each call.
    """
    position: Tuple[float, float, float]
    orientation: Tuple[float, float, float, float]
    fov: float
    aspect_ratio: float
    near: float
    far: float

    def get_model(self) -> np.ndarray:
        return get_model_matrix(self.position, self.orientation)

    def get_view(self) -> np.ndarray:
        return get_view_matrix(self.position, self.orientation)

    def get_projection(self) -> np.ndarray:
        return get_projection_matrix(self.fov, self.aspect_ratio, self.near, self.far)

    def get_view_projection(self) -> np.ndarray:
        return self.get_projection() @ self.get_view()


class Camera:
    """First-person camera with incremental navigation.

    Position and orientation are the only mutable state. Matrices are derived
    on demand and never cached, so two calls separated by a ``move`` or
    ``rotate`` return different objects with different values.

    Attributes:
        position: World-space position (3,)
        orientation: Quaternion (w, x, y, z), camera-to-world rotation
        fov: Vertical field of view in degrees
        aspect_ratio: Width / height
        near, far: Clipping planes
    """

    def __init__(
        self,
        fov: float,
        aspect_ratio: float,
        near: float,
        far: float,
        position: VectorLike = (0.0, 0.0, 0.0),
        orientation: VectorLike = (1.0, 0.0, 0.0, 0.0),
        renormalize_every: int = 64,
    ):
        """Initialize camera.

        Args:
            fov: Vertical field of view in degrees
            aspect_ratio: Width / height
            near: Near clipping plane
            far: Far clipping plane
            position: Initial world-space position
            orientation: Initial orientation quaternion (w, x, y, z)
            renormalize_every: Renormalize the orientation after this many
                ``rotate`` calls (0 disables)
        """
        if aspect_ratio <= 0:
            raise ValueError(f"aspect_ratio must be positive, got {aspect_ratio}")
        self.fov = fov
        self.aspect_ratio = aspect_ratio
        self.near = near
        self.far = far
        self.position = np.asarray(position, dtype=np.float64).copy()
        self.orientation = np.asarray(orientation, dtype=np.float64).copy()
        self.renormalize_every = renormalize_every
        self._rotations_since_normalize = 0

    def move(self, dx: float, dy: float, dz: float) -> None:
        """Translate by a delta expressed in the camera's local frame."""
        local = np.array([dx, dy, dz], dtype=np.float64)
        self.position = self.position + rotate_vector(local, self.orientation)

    def rotate(self, delta: VectorLike) -> None:
        """Compose an incremental rotation: orientation = orientation * delta."""
        self.orientation = quaternion_multiply(self.orientation, delta)
        self._rotations_since_normalize += 1
        if self.renormalize_every and self._rotations_since_normalize >= self.renormalize_every:
            self.renormalize()

    def renormalize(self) -> None:
        """Rescale the orientation to unit length to remove accumulated drift."""
        self.orientation = normalize_quaternion(self.orientation)
        self._rotations_since_normalize = 0

    def look_at(self, target: VectorLike, up: VectorLike = (0.0, 1.0, 0.0)) -> None:
        """Orient the camera so its -Z axis points at ``target``."""
        forward = np.asarray(target, dtype=np.float64) - self.position
        norm = np.linalg.norm(forward)
        if norm < 1e-12:
            raise ValueError("look_at target coincides with camera position")
        forward = forward / norm

        right = np.cross(forward, np.asarray(up, dtype=np.float64))
        if np.linalg.norm(right) < 1e-12:
            raise ValueError("look_at direction is parallel to the up vector")
        right = right / np.linalg.norm(right)
        true_up = np.cross(right, forward)

        R = np.stack([right, true_up, -forward], axis=1)
        self.orientation = matrix_to_quaternion(R)
        self._rotations_since_normalize = 0

    def set_aspect_ratio(self, aspect_ratio: float) -> None:
        """Update the aspect ratio after a viewport resize."""
        if aspect_ratio <= 0:
            raise ValueError(f"aspect_ratio must be positive, got {aspect_ratio}")
        self.aspect_ratio = aspect_ratio

    def snapshot(self) -> CameraSnapshot:
        """Copy the current state for use by a single frame."""
        return CameraSnapshot(
            position=tuple(float(v) for v in self.position),
            orientation=tuple(float(v) for v in self.orientation),
            fov=self.fov,
            aspect_ratio=self.aspect_ratio,
            near=self.near,
            far=self.far,
        )

    def get_model(self) -> np.ndarray:
        """Camera-to-world matrix."""
        return get_model_matrix(self.position, self.orientation)

    def get_view(self) -> np.ndarray:
        """World-to-camera matrix."""
        return get_view_matrix(self.position, self.orientation)

    def get_projection(self) -> np.ndarray:
        """Perspective projection matrix."""
        return get_projection_matrix(self.fov, self.aspect_ratio, self.near, self.far)

    def get_view_projection(self) -> np.ndarray:
        """Projection * view."""
        return self.get_projection() @ self.get_view()

    def __repr__(self) -> str:
        return (
            f"Camera(position={self.position.tolist()}, "
            f"orientation={self.orientation.tolist()}, fov={self.fov})"
        )


NAVIGATION_KEYS = {
    "w": (0, 0, -1),
    "s": (0, 0, 1),
    "a": (-1, 0, 0),
    "d": (1, 0, 0),
    "ArrowUp": (0, 1, 0),
    "ArrowDown": (0, -1, 0),
}


def translation_from_keys(pressed: Iterable[str], step: float = 0.03) -> Tuple[float, float, float]:
    """Map held navigation keys to a local-frame translation delta.

    Args:
        pressed: Names of currently held keys
        step: Distance per tick

    Returns:
        (dx, dy, dz) for ``Camera.move``
    """
    delta = np.zeros(3)
    for key in set(pressed):
        if key in NAVIGATION_KEYS:
            delta += NAVIGATION_KEYS[key]
    return tuple(float(v) for v in delta * step)


def rotation_from_pointer(dx: float, dy: float, sensitivity: float = 0.003) -> np.ndarray:
    """Map a pointer drag in pixels to an incremental rotation quaternion.

    Horizontal drag yaws about the camera Y axis, vertical drag pitches about X.
    """
    return quaternion_from_euler(-dy * sensitivity, -dx * sensitivity, 0.0)
