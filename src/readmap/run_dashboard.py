#!/usr/bin/env python3
"""
Headless reading-map dashboard.

Polls the telemetry API, keeps an in-memory map in sync and writes map
snapshots (GeoJSON sources, paint properties, avatar sprites) to disk.

Usage:
    readmap-dashboard --anchors country_centroids.json --once
    readmap-dashboard --anchors countries.geojson --snapshot-dir ./out --verbose
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config.settings import ReadMapSettings
from .mapping.geometry_utils import load_anchors
from .mapping.renderer import SnapshotRenderer
from .orchestrator.dashboard import DashboardOrchestrator

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Headless reading-map dashboard")
    parser.add_argument("--anchors", help="Country anchors JSON or country polygons GeoJSON")
    parser.add_argument("--snapshot-dir", help="Where to write map snapshots")
    parser.add_argument("--once", action="store_true", help="Poll once, write a snapshot and exit")
    parser.add_argument(
        "--snapshot-every",
        type=float,
        default=60.0,
        help="Seconds between snapshots when running continuously",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    # re-read so a .env in the working directory (loaded in main) applies
    settings = ReadMapSettings()

    anchors_path = args.anchors or settings.ANCHORS_PATH
    if not anchors_path:
        logger.error("No anchors file given (--anchors or ANCHORS_PATH)")
        return 2
    anchors, names = load_anchors(anchors_path)

    renderer = SnapshotRenderer(args.snapshot_dir or settings.SNAPSHOT_DIR)
    dashboard = DashboardOrchestrator(renderer, anchors, country_names=names, settings=settings)

    try:
        if args.once:
            await dashboard.poll_once()
            renderer.save()
            if dashboard.controller.banner:
                logger.warning(dashboard.controller.banner)
                return 1
            return 0

        dashboard.start()
        while True:
            await asyncio.sleep(args.snapshot_every)
            renderer.save()
            progress = dashboard.controller.image_progress()
            logger.info(f"🖼️  Avatars {progress.loaded}/{progress.total} ({progress.active} loading)")
    finally:
        await dashboard.stop()


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n⏹️  Stopped")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
