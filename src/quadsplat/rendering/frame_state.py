"""Per-frame buffer assembly for the rendering backend.

Uniform block consumed by the quad vertex stage (column-major mat4 each):

    modelView   view * model
    projection  perspective projection
    camera      camera-to-model transform; its first two columns are the
                camera right and up axes used to orient each quad

Backends must draw with the depth test set to always-pass and source-over
blending of premultiplied color, otherwise the draw order is meaningless.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from .camera_utils import CameraSnapshot
from .footprint import QuadVertexBuffers
from .sorting import VisibilityOrderer

UNIFORM_LAYOUT = ("model_view", "projection", "camera")
FLOATS_PER_MATRIX = 16


def pack_matrices(*matrices: np.ndarray) -> np.ndarray:
    """Concatenate 4x4 matrices column-major into one float32 array."""
    packed = [np.asarray(m, dtype=np.float64).reshape(4, 4).ravel(order="F") for m in matrices]
    return np.concatenate(packed).astype(np.float32)


@dataclass(frozen=True)
class FrameState:
    """Everything a backend uploads for one frame.

    Attributes:
        uniforms: Matrix block, float32 (48,) in UNIFORM_LAYOUT order
        vertices: Interleaved vertex data, float32 (4N, stride)
        indices: Triangle-list indices, uint32 (6N,)
        generation: Sort generation of ``indices`` (0 if never sorted)
    """
    uniforms: np.ndarray
    vertices: np.ndarray
    indices: np.ndarray
    generation: int

    @property
    def index_count(self) -> int:
        return int(self.indices.shape[0])

    @property
    def vertex_stride(self) -> int:
        return int(self.vertices.shape[1]) if self.vertices.ndim == 2 else 0

    def matrix(self, name: str) -> np.ndarray:
        """Unpack one named uniform matrix back to 4x4."""
        i = UNIFORM_LAYOUT.index(name)
        block = self.uniforms[i * FLOATS_PER_MATRIX:(i + 1) * FLOATS_PER_MATRIX]
        return block.reshape(4, 4, order="F")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "num_vertices": int(self.vertices.shape[0]),
            "vertex_stride": self.vertex_stride,
            "index_count": self.index_count,
            "uniforms": {name: self.matrix(name) for name in UNIFORM_LAYOUT},
        }


class FrameStateAssembler:
    """Combines camera matrices, vertex data and the published draw order."""

    def __init__(
        self,
        buffers: QuadVertexBuffers,
        orderer: VisibilityOrderer,
        model_matrix: Optional[np.ndarray] = None,
    ):
        """Initialize assembler.

        Args:
            buffers: Quad vertices built once per load
            orderer: Source of the current draw order
            model_matrix: Scene model transform (identity if None)
        """
        vertices = buffers.interleaved()
        vertices.flags.writeable = False
        self._vertices = vertices
        self._orderer = orderer
        self.model_matrix = np.eye(4) if model_matrix is None else np.asarray(model_matrix, dtype=np.float64)

    @property
    def vertices(self) -> np.ndarray:
        return self._vertices

    def uniforms(self, snapshot: CameraSnapshot) -> np.ndarray:
        """Pack the uniform block for one camera state."""
        model_view = snapshot.get_view() @ self.model_matrix
        camera = np.linalg.inv(self.model_matrix) @ snapshot.get_model()
        return pack_matrices(model_view, snapshot.get_projection(), camera)

    def assemble(self, snapshot: CameraSnapshot) -> FrameState:
        """Produce the frame buffers; does not trigger a sort."""
        current = self._orderer.current
        if current is None:
            indices = np.zeros(0, dtype=np.uint32)
            generation = 0
        else:
            indices = current.indices
            generation = current.generation
        return FrameState(
            uniforms=self.uniforms(snapshot),
            vertices=self._vertices,
            indices=indices,
            generation=generation,
        )
