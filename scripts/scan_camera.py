#!/usr/bin/env python3
"""
Scan a card from a live camera (or a video file) until the number is confirmed.

Frames are sampled on the configured interval, read with EasyOCR, and a
number is only accepted once it was read identically on consecutive
samples. Prints the prefill values handed to the card editor.

Usage:
    python scripts/scan_camera.py
    python scripts/scan_camera.py --source 1 --timeout 60
    python scripts/scan_camera.py --source clip.mp4 --interval 0.5
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Add src to path for local imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from cardscan.capture import EasyOCRRecognizer, OpenCVFrameSource
from cardscan.config import ScanConfig
from cardscan.handoff import build_prefill, prefill_query
from cardscan.scheduler import CaptureScheduler, ScanStatus


async def run(config: ScanConfig, timeout: float, return_to: str) -> int:
    source = OpenCVFrameSource(config.camera_device, snapshot_dir=config.snapshot_dir)
    recognizer = EasyOCRRecognizer(
        languages=config.ocr_languages,
        gpu=config.ocr_gpu,
        enhance=config.ocr_enhance,
    )

    async with CaptureScheduler(source, recognizer, config) as scheduler:
        if scheduler.status is ScanStatus.ERROR:
            print(f"ERROR: {scheduler.snapshot().message}")
            return 2

        print(f"Scanning camera {config.camera_device!r} every {config.scan_interval:.1f}s...")
        detection = await scheduler.wait_for_detection(timeout=timeout)
        snapshot = scheduler.snapshot()

    if detection is None:
        print(f"No card confirmed within {timeout:.0f}s ({snapshot.message})")
        return 1

    prefill = build_prefill(detection)
    print(f"Number:  {prefill.number} [{prefill.brand.value}]")
    print(f"Expiry:  {prefill.expiry or '-'}")
    print(f"Prefill: ?{prefill_query(detection, return_to=return_to)}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Scan a payment card from a camera")
    parser.add_argument(
        "--source",
        type=str,
        default=None,
        help="Camera index or video path (overrides settings)",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default=None,
        help="JSON settings file (default: $CARDSCAN_SETTINGS or ./cardscan.json)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between samples (overrides settings)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Give up after this many seconds",
    )
    parser.add_argument(
        "--return-to",
        type=str,
        default="/camera",
        help="returnTo value for the prefill query",
    )
    args = parser.parse_args()

    overrides = {}
    if args.source is not None:
        overrides["camera_device"] = int(args.source) if args.source.isdigit() else args.source
    if args.interval is not None:
        overrides["scan_interval"] = args.interval
    config = replace(ScanConfig.load(args.settings), **overrides)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(config, args.timeout, args.return_to))


if __name__ == "__main__":
    sys.exit(main())
