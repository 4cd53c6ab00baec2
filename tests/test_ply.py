"""Tests for binary point-cloud parsing and writing."""
import io

import numpy as np
import pytest
from plyfile import PlyData

from quadsplat.rendering.ply import (
    SPLAT_FIELDS,
    InvalidVertexCountError,
    MissingHeaderTerminatorError,
    MissingPropertyError,
    NumericDegeneracyError,
    PlyFormatError,
    TruncatedPayloadError,
    UnsupportedPropertyError,
    parse_header,
    parse_point_cloud,
    save_point_cloud,
    write_point_cloud,
)
from quadsplat.utils.io import fetch_bytes


def test_two_xyz_records(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], [1, 2, 3, 4, 5, 6]))

    assert len(cloud) == 2
    assert cloud[0] == {"x": 1.0, "y": 2.0, "z": 3.0}
    assert cloud[1] == {"x": 4.0, "y": 5.0, "z": 6.0}
    assert list(cloud.records()) == [cloud[0], cloud[1]]


def test_header_offset_points_past_terminator_newline(ply_bytes):
    data = ply_bytes(["x", "y", "z"], [1, 2, 3])
    header = parse_header(data)

    assert data[header.data_offset - 11:header.data_offset] == b"end_header\n"
    assert header.vertex_count == 1
    assert header.properties == ("x", "y", "z")
    assert header.payload_size == 12


def test_property_order_defines_field_mapping(ply_bytes):
    payload = [1, 2, 3, 4, 5, 6]
    forward = parse_point_cloud(ply_bytes(["x", "y", "z"], payload))
    reversed_ = parse_point_cloud(ply_bytes(["z", "y", "x"], payload))

    assert forward[0]["x"] == 1.0
    assert reversed_[0]["z"] == 1.0
    assert reversed_[0]["x"] == 3.0
    np.testing.assert_array_equal(reversed_.positions, [[3, 2, 1], [6, 5, 4]])


def test_truncated_payload_is_rejected(ply_bytes):
    data = ply_bytes(["x", "y", "z"], [1, 2, 3, 4, 5, 6], vertex_count=3)

    with pytest.raises(TruncatedPayloadError):
        parse_point_cloud(data)


def test_format_errors_are_value_errors(ply_bytes):
    data = ply_bytes(["x"], [1.0], vertex_count=2)

    with pytest.raises(PlyFormatError):
        parse_point_cloud(data)
    with pytest.raises(ValueError):
        parse_point_cloud(data)


def test_trailing_bytes_are_ignored(ply_bytes):
    data = ply_bytes(["x", "y", "z"], [1, 2, 3]) + b"\x00" * 7
    cloud = parse_point_cloud(data)

    assert len(cloud) == 1
    assert cloud[0]["z"] == 3.0


def test_missing_terminator():
    data = b"ply\nformat binary_little_endian 1.0\nelement vertex 1\nproperty float x\n"

    with pytest.raises(MissingHeaderTerminatorError):
        parse_point_cloud(data + b"\x00" * 4)


def test_crlf_header(ply_bytes):
    header, payload = ply_bytes(["x", "y", "z"], [1, 2, 3, 4, 5, 6]).split(b"end_header\n")
    data = header.replace(b"\n", b"\r\n") + b"end_header\r\n" + payload

    cloud = parse_point_cloud(data)
    assert cloud.properties == ("x", "y", "z")
    np.testing.assert_array_equal(cloud.positions, [[1, 2, 3], [4, 5, 6]])


def test_terminator_outside_scan_window(ply_bytes):
    data = ply_bytes(["x", "y", "z"], [1, 2, 3])

    with pytest.raises(MissingHeaderTerminatorError):
        parse_point_cloud(data, scan_bytes=20)


@pytest.mark.parametrize("count_line", [b"element vertex abc", b"element vertex -1", b"element vertex"])
def test_invalid_vertex_count(count_line):
    data = (
        b"ply\nformat binary_little_endian 1.0\n"
        + count_line
        + b"\nproperty float x\nend_header\n"
    )

    with pytest.raises(InvalidVertexCountError):
        parse_point_cloud(data)


def test_missing_vertex_element():
    data = b"ply\nformat binary_little_endian 1.0\nend_header\n"

    with pytest.raises(InvalidVertexCountError):
        parse_point_cloud(data)


def test_non_float_property_is_unsupported(ply_bytes):
    data = ply_bytes(["red"], [], vertex_count=0, property_type="uchar")

    with pytest.raises(UnsupportedPropertyError):
        parse_point_cloud(data)


def test_ascii_format_is_unsupported(ply_bytes):
    with pytest.raises(UnsupportedPropertyError):
        parse_point_cloud(ply_bytes(["x"], [1.0], fmt="ascii"))


def test_duplicate_property(ply_bytes):
    with pytest.raises(PlyFormatError):
        parse_point_cloud(ply_bytes(["x", "x"], [1.0, 2.0]))


def test_zero_vertices(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], [], vertex_count=0))

    assert len(cloud) == 0
    assert cloud.positions.shape == (0, 3)


def test_memoryview_input(ply_bytes):
    cloud = parse_point_cloud(memoryview(ply_bytes(["x", "y", "z"], [1, 2, 3])))
    assert cloud[0]["y"] == 2.0


def test_records_are_read_only(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], [1, 2, 3]))

    with pytest.raises(ValueError):
        cloud.data[0, 0] = 10.0


def test_unknown_properties_are_carried_through(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z", "f_rest_0"], [1, 2, 3, 0.25]))

    assert cloud.has("f_rest_0")
    np.testing.assert_array_equal(cloud.column("f_rest_0"), [0.25])


def test_require_lists_every_missing_name(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], [1, 2, 3]))

    with pytest.raises(MissingPropertyError, match="opacity"):
        cloud.require(["x", "opacity", "scale_0"])
    with pytest.raises(MissingPropertyError):
        cloud.rotations


def test_head_caps_records(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], np.arange(9)))

    assert len(cloud.head(2)) == 2
    assert cloud.head(None) is cloud
    assert cloud.head(10) is cloud
    np.testing.assert_array_equal(cloud.head(1).positions, [[0, 1, 2]])


def test_check_finite(ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], [1, np.nan, 3]))

    cloud.check_finite(["x", "z"])
    with pytest.raises(NumericDegeneracyError, match="y"):
        cloud.check_finite(["x", "y", "z"])


def test_written_file_is_readable_by_plyfile(splat_records):
    data = splat_records([[0, 0, 0], [1, 2, 3]])
    encoded = write_point_cloud(SPLAT_FIELDS, data)

    ply = PlyData.read(io.BytesIO(encoded))
    vertices = ply["vertex"]
    assert vertices.count == 2
    np.testing.assert_array_equal(vertices["y"], [0, 2])


def test_written_file_parses_back(splat_records):
    data = splat_records([[0, 0, 0], [1, 2, 3]], opacity=[0.5, -0.5])
    cloud = parse_point_cloud(write_point_cloud(SPLAT_FIELDS, data))

    assert cloud.properties == SPLAT_FIELDS
    np.testing.assert_array_equal(cloud.data, data)


def test_write_rejects_mismatched_shape():
    with pytest.raises(ValueError):
        write_point_cloud(["x", "y"], np.zeros((2, 3)))


def test_save_point_cloud(tmp_path, ply_bytes):
    cloud = parse_point_cloud(ply_bytes(["x", "y", "z"], [1, 2, 3]))
    path = save_point_cloud(tmp_path / "out" / "cloud.ply", cloud)

    restored = parse_point_cloud(fetch_bytes(path))
    assert restored[0] == cloud[0]
