"""Binary point-cloud (PLY) parsing for Gaussian splat scenes.

The header is scanned for the vertex count and the ordered list of
``property float`` names; the payload is then read as record-major
little-endian float32 values. The schema is discovered at parse time, so any
producer's extra fields are carried through unchanged.

PLY Format (3DGS Standard):
    - x, y, z: 3D position
    - opacity: Gaussian opacity, stored as logit
    - scale_0/1/2: Log-scale values
    - rot_0/1/2/3: Rotation quaternion (w, x, y, z)
    - f_dc_0/1/2: DC spherical harmonics coefficients (RGB)
    - f_rest_*: Higher-order SH coefficients (optional, carried generically)
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from plyfile import PlyData, PlyElement

from ..utils.logging import get_logger

logger = get_logger("rendering.ply")

HEADER_TERMINATOR = b"end_header"
DEFAULT_HEADER_SCAN_BYTES = 10000
FLOAT_TYPES = ("float", "float32")

POSITION_FIELDS = ("x", "y", "z")
ROTATION_FIELDS = ("rot_0", "rot_1", "rot_2", "rot_3")
SCALE_FIELDS = ("scale_0", "scale_1", "scale_2")
COLOR_DC_FIELDS = ("f_dc_0", "f_dc_1", "f_dc_2")
OPACITY_FIELD = "opacity"
SPLAT_FIELDS = POSITION_FIELDS + ROTATION_FIELDS + SCALE_FIELDS + COLOR_DC_FIELDS + (OPACITY_FIELD,)

BufferLike = Union[bytes, bytearray, memoryview]


class PlyFormatError(ValueError):
    """The buffer is not a well-formed binary point cloud."""


class MissingHeaderTerminatorError(PlyFormatError):
    """No ``end_header`` token inside the header scan window."""


class InvalidVertexCountError(PlyFormatError):
    """The ``element vertex`` line is absent or its count is not a valid integer."""


class TruncatedPayloadError(PlyFormatError):
    """The payload is shorter than the header declares."""


class UnsupportedPropertyError(PlyFormatError):
    """A vertex property is not a 32-bit float, or the encoding is not little-endian binary."""


class MissingPropertyError(PlyFormatError):
    """A field required by a consumer is absent from the discovered schema."""


class NumericDegeneracyError(PlyFormatError):
    """Non-finite values were found where finite ones are required."""


@dataclass(frozen=True)
class PlyHeader:
    """Parsed header of a binary point cloud.

    Attributes:
        vertex_count: Number of records declared by ``element vertex``
        properties: Property names in payload order
        data_offset: Byte offset of the first payload float
    """
    vertex_count: int
    properties: Tuple[str, ...]
    data_offset: int

    @property
    def payload_size(self) -> int:
        """Bytes of float32 payload implied by the header."""
        return 4 * self.vertex_count * len(self.properties)


def parse_header(buffer: BufferLike, scan_bytes: int = DEFAULT_HEADER_SCAN_BYTES) -> PlyHeader:
    """Parse the ASCII header at the start of a point-cloud buffer.

    Args:
        buffer: Raw file contents
        scan_bytes: Size of the prefix searched for the header terminator

    Returns:
        PlyHeader with the vertex count, ordered property names and payload offset

    Raises:
        MissingHeaderTerminatorError: ``end_header`` not found in the prefix
        InvalidVertexCountError: Vertex count missing, non-numeric or negative
        UnsupportedPropertyError: Non-float vertex property or non little-endian format
    """
    prefix = bytes(buffer[:scan_bytes])
    end = prefix.find(HEADER_TERMINATOR)
    if end < 0:
        raise MissingHeaderTerminatorError(
            f"'end_header' not found in the first {scan_bytes} bytes"
        )

    # Header runs through the terminator line, "\n" or "\r\n"
    newline = prefix.find(b"\n", end + len(HEADER_TERMINATOR))
    if newline < 0:
        raise MissingHeaderTerminatorError(
            f"'end_header' line is not terminated within the first {scan_bytes} bytes"
        )
    data_offset = newline + 1
    header_text = prefix[:end].decode("utf-8", errors="replace")

    vertex_count: Optional[int] = None
    properties: List[str] = []
    current_element: Optional[str] = None

    for line in header_text.splitlines():
        parts = line.split()
        if not parts:
            continue

        if parts[0] == "format" and len(parts) >= 2 and parts[1] != "binary_little_endian":
            raise UnsupportedPropertyError(f"Unsupported PLY encoding: {parts[1]}")

        if parts[0] == "element" and len(parts) >= 2:
            current_element = parts[1]
            if current_element == "vertex":
                if len(parts) < 3:
                    raise InvalidVertexCountError(f"Malformed vertex line: {line!r}")
                try:
                    vertex_count = int(parts[2])
                except ValueError:
                    raise InvalidVertexCountError(
                        f"Vertex count is not an integer: {parts[2]!r}"
                    ) from None
                if vertex_count < 0:
                    raise InvalidVertexCountError(f"Negative vertex count: {vertex_count}")
            continue

        if parts[0] == "property" and current_element == "vertex":
            if len(parts) < 3 or parts[1] not in FLOAT_TYPES:
                raise UnsupportedPropertyError(f"Only float vertex properties are supported: {line!r}")
            name = parts[2]
            if name in properties:
                raise PlyFormatError(f"Duplicate property: {name}")
            properties.append(name)

    if vertex_count is None:
        raise InvalidVertexCountError("Header has no 'element vertex' line")

    return PlyHeader(
        vertex_count=vertex_count,
        properties=tuple(properties),
        data_offset=data_offset,
    )


class PointCloud:
    """Decoded point cloud: one float32 row per record, one column per property.

    Records are read-only. Column offsets are resolved once from the header,
    so typed accessors index straight into the matrix.

    Attributes:
        header: Parsed header
        data: Float matrix (N, P), read-only
        schema: Property name to column offset
    """

    def __init__(self, header: PlyHeader, data: np.ndarray):
        expected = (header.vertex_count, len(header.properties))
        if data.shape != expected:
            raise ValueError(f"Data shape {data.shape} does not match header {expected}")
        self.header = header
        self.data = data
        self.data.flags.writeable = False
        self.schema: Dict[str, int] = {name: i for i, name in enumerate(header.properties)}

    @property
    def properties(self) -> Tuple[str, ...]:
        return self.header.properties

    def __len__(self) -> int:
        return self.header.vertex_count

    def __getitem__(self, index: int) -> Dict[str, float]:
        row = self.data[index]
        return {name: float(row[offset]) for name, offset in self.schema.items()}

    def records(self) -> Iterator[Dict[str, float]]:
        """Iterate over records as ``{property: value}`` mappings."""
        for i in range(len(self)):
            yield self[i]

    def has(self, *names: str) -> bool:
        return all(name in self.schema for name in names)

    def require(self, names: Sequence[str]) -> None:
        """Validate that all ``names`` are present in the schema.

        Raises:
            MissingPropertyError: Listing every missing name
        """
        missing = [name for name in names if name not in self.schema]
        if missing:
            raise MissingPropertyError(f"Point cloud is missing properties: {missing}")

    def column(self, name: str) -> np.ndarray:
        """Values of one property for all records (N,)."""
        self.require((name,))
        return self.data[:, self.schema[name]]

    def columns(self, names: Sequence[str]) -> np.ndarray:
        """Values of several properties stacked as (N, len(names))."""
        self.require(names)
        return self.data[:, [self.schema[name] for name in names]]

    @property
    def positions(self) -> np.ndarray:
        """Splat centers (N, 3)."""
        return self.columns(POSITION_FIELDS)

    @property
    def rotations(self) -> np.ndarray:
        """Raw quaternions (N, 4) in (w, x, y, z) order."""
        return self.columns(ROTATION_FIELDS)

    @property
    def log_scales(self) -> np.ndarray:
        """Log-encoded axis scales (N, 3)."""
        return self.columns(SCALE_FIELDS)

    @property
    def colors_dc(self) -> np.ndarray:
        """SH DC coefficients (N, 3)."""
        return self.columns(COLOR_DC_FIELDS)

    @property
    def opacity_logits(self) -> np.ndarray:
        """Opacity logits (N,)."""
        return self.column(OPACITY_FIELD)

    def head(self, count: Optional[int]) -> "PointCloud":
        """Return a cloud restricted to the first ``count`` records."""
        if count is None or count >= len(self):
            return self
        header = PlyHeader(
            vertex_count=max(count, 0),
            properties=self.header.properties,
            data_offset=self.header.data_offset,
        )
        return PointCloud(header, self.data[: max(count, 0)].copy())

    def check_finite(self, names: Sequence[str]) -> None:
        """Raise if any of the given columns holds NaN or inf.

        Raises:
            NumericDegeneracyError: Naming the offending properties
        """
        values = self.columns(names)
        bad = [name for name, ok in zip(names, np.isfinite(values).all(axis=0)) if not ok]
        if bad:
            raise NumericDegeneracyError(f"Non-finite values in properties: {bad}")

    def __repr__(self) -> str:
        return f"PointCloud(num_records={len(self):,}, properties={len(self.properties)})"


def parse_point_cloud(buffer: BufferLike, scan_bytes: int = DEFAULT_HEADER_SCAN_BYTES) -> PointCloud:
    """Decode a binary point cloud.

    Args:
        buffer: Raw file contents
        scan_bytes: Size of the prefix searched for the header terminator

    Returns:
        PointCloud holding every record

    Raises:
        PlyFormatError: On any header or payload inconsistency; no partial
            record set is ever returned
    """
    if isinstance(buffer, memoryview):
        buffer = buffer.tobytes()

    header = parse_header(buffer, scan_bytes)
    num_props = len(header.properties)
    available = len(buffer) - header.data_offset

    if available < header.payload_size:
        raise TruncatedPayloadError(
            f"Header declares {header.vertex_count} x {num_props} floats "
            f"({header.payload_size} bytes) but only {max(available, 0)} bytes follow"
        )

    count = header.vertex_count * num_props
    if count == 0:
        data = np.zeros((header.vertex_count, num_props), dtype=np.float32)
    else:
        data = np.frombuffer(
            buffer, dtype="<f4", count=count, offset=header.data_offset
        ).astype(np.float32).reshape(header.vertex_count, num_props)

    logger.debug(
        "Parsed point cloud: %d records, properties=%s",
        header.vertex_count,
        list(header.properties),
    )
    return PointCloud(header, data)


def write_point_cloud(properties: Sequence[str], data: np.ndarray) -> bytes:
    """Encode records as a binary little-endian point cloud.

    Args:
        properties: Property names in payload order
        data: Values (N, len(properties))

    Returns:
        File contents
    """
    data = np.asarray(data, dtype=np.float32)
    if data.ndim != 2 or data.shape[1] != len(properties):
        raise ValueError(f"Expected data of shape (N, {len(properties)}), got {data.shape}")

    vertex_data = np.zeros(data.shape[0], dtype=[(name, "<f4") for name in properties])
    for i, name in enumerate(properties):
        vertex_data[name] = data[:, i]

    vertex_element = PlyElement.describe(vertex_data, "vertex")
    stream = io.BytesIO()
    PlyData([vertex_element], text=False, byte_order="<").write(stream)
    return stream.getvalue()


def save_point_cloud(path: Union[str, Path], cloud: PointCloud) -> Path:
    """Write a PointCloud to disk."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(write_point_cloud(cloud.properties, cloud.data))
    logger.info("Saved %d records to %s", len(cloud), path)
    return path
