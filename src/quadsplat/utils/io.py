"""File I/O utilities: byte retrieval and frame export."""
from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, List, Union
from urllib.parse import urlparse

import numpy as np


class SplatLoadError(IOError):
    """The point-cloud resource could not be retrieved."""


def fetch_bytes(source: Union[str, Path], timeout: float = 30.0) -> bytes:
    """Retrieve a raw byte buffer from a local path or URL.

    Args:
        source: Filesystem path, ``file://`` URI, or ``http(s)://`` URL.
        timeout: Network timeout in seconds.

    Returns:
        The resource contents.

    Raises:
        SplatLoadError: If the resource is missing or unreachable.
    """
    source = str(source)
    parsed = urlparse(source)

    if parsed.scheme in ("http", "https"):
        # Malformed URLs surface as InvalidURL or ValueError rather than URLError
        try:
            with urllib.request.urlopen(source, timeout=timeout) as response:
                return response.read()
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
            raise SplatLoadError(f"Failed to fetch {source}: {e}") from e

    path = Path(parsed.path) if parsed.scheme == "file" else Path(source)
    if not path.exists():
        raise SplatLoadError(f"Point cloud not found: {path}")
    try:
        return path.read_bytes()
    except OSError as e:
        raise SplatLoadError(f"Failed to read {path}: {e}") from e


def save_json(data: Union[Dict, List], path: Path, indent: int = 2) -> Path:
    """Save data as JSON file.

    Args:
        data: Data to serialize.
        path: Output path.
        indent: JSON indentation (0 for compact).

    Returns:
        Path to saved file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent if indent > 0 else None, default=_json_serializer)
    return path


def load_json(path: Path) -> Union[Dict, List]:
    """Load data from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for special types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def save_arrays(path: Path, compressed: bool = True, **arrays: np.ndarray) -> Path:
    """Save named arrays to an .npz archive.

    Args:
        path: Output path (.npz).
        compressed: Use compression.
        **arrays: Arrays to store, keyed by name.

    Returns:
        Path to saved file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if compressed:
        np.savez_compressed(path, **arrays)
    else:
        np.savez(path, **arrays)
    return path
