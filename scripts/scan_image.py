#!/usr/bin/env python3
"""
Extract card numbers and expiry dates from still images.

Runs EasyOCR on each image (optionally contrast-enhanced) and prints the
card number and expiry found by the extraction step. No multi-frame
stabilization is applied; use scan_camera.py for that.

Usage:
    python scripts/scan_image.py card.jpg
    python scripts/scan_image.py photos/ --no-enhance
    python scripts/scan_image.py photos/ --show-text
"""

import argparse
import logging
import sys
from pathlib import Path

import cv2

# Add src to path for local imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from cardscan.capture import CapturedFrame, EasyOCRRecognizer
from cardscan.cardnumber import detect_brand, format_grouped
from cardscan.config import ScanConfig
from cardscan.errors import DependencyUnavailable
from cardscan.extraction import extract_card_data


def main():
    parser = argparse.ArgumentParser(description="Extract card numbers from images")
    parser.add_argument(
        "source",
        type=str,
        help="Image file or directory of images",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default=None,
        help="JSON settings file (default: $CARDSCAN_SETTINGS or ./cardscan.json)",
    )
    parser.add_argument(
        "--no-enhance",
        action="store_true",
        help="Skip grayscale + CLAHE preprocessing",
    )
    parser.add_argument(
        "--show-text",
        action="store_true",
        help="Print the recognized text for each image",
    )
    args = parser.parse_args()

    config = ScanConfig.load(args.settings)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    source_path = Path(args.source)
    if source_path.is_file():
        images = [source_path]
    else:
        images = sorted(source_path.glob("*.jpg")) + sorted(source_path.glob("*.png"))
    if not images:
        print(f"No images found in {source_path}")
        return 1

    recognizer = EasyOCRRecognizer(
        languages=config.ocr_languages,
        gpu=config.ocr_gpu,
        enhance=config.ocr_enhance and not args.no_enhance,
    )
    if not recognizer.available:
        print("ERROR: easyocr is not installed")
        return 2

    found = 0
    for image_path in images:
        image = cv2.imread(str(image_path))
        if image is None:
            print(f"Failed to load: {image_path}")
            continue

        try:
            recognized = recognizer.recognize_sync(CapturedFrame(image=image, path=str(image_path)))
        except DependencyUnavailable as e:
            print(f"ERROR: {e}")
            return 2

        if args.show_text:
            print(f"--- {image_path.name} ---")
            print(recognized.text)

        data = extract_card_data(recognized)
        if data.number:
            found += 1
            brand = detect_brand(data.number)
            print(
                f"{image_path.name}: {format_grouped(data.number, brand)} "
                f"[{brand.value}] expiry={data.expiry or '-'}"
            )
        else:
            print(f"{image_path.name}: no card number (expiry={data.expiry or '-'})")

    print(f"\n{found}/{len(images)} images with a valid card number")
    return 0


if __name__ == "__main__":
    sys.exit(main())
