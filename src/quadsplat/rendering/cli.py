"""Command-line interface for quadsplat.

This module provides the CLI entry point for the quadsplat command. It loads a
point cloud, drives one frame and either prints scene info or exports the frame
buffers for an external backend.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from ..models import FootprintMode, ViewerConfig, load_config
from ..utils.io import save_arrays, save_json
from ..utils.logging import setup_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Build quad splat frame buffers from a binary point cloud",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "source",
        type=str,
        help="Path or URL of the point cloud (.ply)",
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Viewer config (YAML or JSON)",
    )

    # Output options
    parser.add_argument(
        "-o", "--export",
        type=Path,
        help="Write uniforms, vertices and indices to an .npz file",
    )

    parser.add_argument(
        "--summary",
        type=Path,
        help="Write a JSON summary of the scene and frame",
    )

    # Scene options
    parser.add_argument(
        "--max-splats",
        type=int,
        default=None,
        help="Only use the first N splats",
    )

    parser.add_argument(
        "--mode",
        type=str,
        default=None,
        choices=[m.value for m in FootprintMode],
        help="Footprint encoding (default: from config)",
    )

    parser.add_argument(
        "--position",
        type=float,
        nargs=3,
        default=None,
        metavar=("X", "Y", "Z"),
        help="Camera position (default: from config)",
    )

    parser.add_argument(
        "--recenter",
        action="store_true",
        help="Point the camera at the scene center before exporting",
    )

    # Info options
    parser.add_argument(
        "--info",
        action="store_true",
        help="Print scene info and exit",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ViewerConfig:
    """Config file values overridden by command line flags."""
    config = load_config(args.config) if args.config else ViewerConfig()

    overrides = {}
    if args.max_splats is not None:
        overrides["max_splats"] = args.max_splats
    if args.mode is not None:
        overrides["footprint_mode"] = args.mode
    if args.position is not None:
        overrides["initial_position"] = tuple(args.position)

    return dataclasses.replace(config, **overrides) if overrides else config


def print_scene_info(info: dict) -> None:
    """Print a scene summary."""
    print(f"\nScene: {info['source']}")
    print("=" * 60)
    print(f"  Splats: {info['num_splats']:,}")
    print(f"  Properties: {', '.join(info['properties'])}")
    print(f"  Footprint mode: {info['footprint_mode']} (stride {info['vertex_stride']})")
    if "center" in info:
        center = ", ".join(f"{v:.3f}" for v in info["center"])
        print(f"  Center: ({center})")
        print(f"  Extent: {info['extent']:.3f}")


def export(args: argparse.Namespace) -> int:
    """Load the scene and export one frame."""
    from .viewer import SplatViewer

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        print(f"Error in config: {e}")
        return 1

    viewer = SplatViewer(config)

    print(f"\nLoading {args.source}...")
    start_time = time.time()
    if not viewer.load(args.source):
        print(f"Error loading scene: {viewer.last_error}")
        return 1
    print(f"Loaded in {time.time() - start_time:.1f}s")

    info = viewer.scene_info()
    if args.info:
        print_scene_info(info)
        return 0

    if args.verbose:
        print(f"\nScene info: {json.dumps(info, indent=2)}")

    if args.recenter:
        viewer.recenter()

    frame = viewer.tick(resort=True)
    print(f"Frame: {frame.vertices.shape[0]:,} vertices, {frame.index_count:,} indices")

    try:
        if args.export:
            path = save_arrays(
                args.export,
                uniforms=frame.uniforms,
                vertices=frame.vertices,
                indices=frame.indices,
            )
            print(f"Saved buffers to {path}")
        if args.summary:
            summary = {
                "scene": info,
                "frame": frame.to_dict(),
                "config": viewer.config.to_dict(),
            }
            path = save_json(summary, args.summary)
            print(f"Saved summary to {path}")
    except OSError as e:
        print(f"Error saving output: {e}")
        return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING, scene=args.source)
    return export(args)


if __name__ == "__main__":
    sys.exit(main())
