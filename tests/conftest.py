"""Shared fixtures: synthetic binary point clouds and a manual executor."""
from concurrent.futures import Executor, Future

import numpy as np
import pytest

from quadsplat.rendering.ply import SPLAT_FIELDS


def encode_ply(properties, values, vertex_count=None, fmt="binary_little_endian", property_type="float"):
    """Hand-encode a point cloud: ASCII header followed by little-endian float32s."""
    values = np.asarray(values, dtype="<f4").ravel()
    if vertex_count is None:
        vertex_count = values.size // max(len(properties), 1)
    lines = [
        "ply",
        f"format {fmt} 1.0",
        f"element vertex {vertex_count}",
    ]
    lines += [f"property {property_type} {name}" for name in properties]
    lines.append("end_header")
    return ("\n".join(lines) + "\n").encode("ascii") + values.tobytes()


def make_splats(positions, log_scales=None, rotations=None, colors_dc=None, opacity=None):
    """Build a (N, 14) record matrix in SPLAT_FIELDS order."""
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    n = positions.shape[0]
    if log_scales is None:
        log_scales = np.full((n, 3), np.log(0.1))
    if rotations is None:
        rotations = np.tile([1.0, 0.0, 0.0, 0.0], (n, 1))
    if colors_dc is None:
        colors_dc = np.zeros((n, 3))
    if opacity is None:
        opacity = np.zeros(n)
    data = np.concatenate([
        positions,
        np.asarray(rotations, dtype=np.float64).reshape(n, 4),
        np.asarray(log_scales, dtype=np.float64).reshape(n, 3),
        np.asarray(colors_dc, dtype=np.float64).reshape(n, 3),
        np.asarray(opacity, dtype=np.float64).reshape(n, 1),
    ], axis=1)
    return data.astype(np.float32)


class ManualExecutor(Executor):
    """Executor that runs submitted work only when told to, in any order."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, index):
        future, fn, args, kwargs = self.pending[index]
        future.set_result(fn(*args, **kwargs))
        return future.result()


@pytest.fixture
def ply_bytes():
    return encode_ply


@pytest.fixture
def splat_records():
    return make_splats


@pytest.fixture
def splat_ply(tmp_path):
    """Write splats at the given positions to a .ply file and return its path."""
    counter = {"n": 0}

    def write(positions, name=None, **kwargs):
        counter["n"] += 1
        path = tmp_path / (name or f"scene_{counter['n']}.ply")
        data = make_splats(positions, **kwargs)
        path.write_bytes(encode_ply(SPLAT_FIELDS, data))
        return path

    return write


@pytest.fixture
def manual_executor():
    return ManualExecutor()
