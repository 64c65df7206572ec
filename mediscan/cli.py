#!/usr/bin/env python3
"""
Command-line heatmap analysis.

Usage:
  mediscan --image ./scan.png --pretty
  mediscan --image ./scan.png --out ./heatmap.png --seed 7
"""
import argparse
import json
import logging
import os
import random
import sys

from mediscan import config
from mediscan.analyzer import analyze
from mediscan.errors import MediScanError
from mediscan.utils import decode_data_url, encode_image, load_image

logger = logging.getLogger("mediscan")


def read_image_arg(path_or_base64: str) -> bytes:
    """Raw image bytes from a file path, a base64 string or a data URL."""
    if os.path.exists(path_or_base64):
        with open(path_or_base64, "rb") as f:
            return f.read()
    return decode_data_url(path_or_base64)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Scan a medical image and render an anomaly heatmap.")
    parser.add_argument("--image", required=True, help="Path, base64 string or data URL of the input image")
    parser.add_argument("--out", help="Where to write the heatmap (format taken from the input)")
    parser.add_argument("--cell-size", type=int, default=config.CELL_SIZE, help="Scan cell side in pixels")
    parser.add_argument("--seed", type=int, help="Seed for reproducible findings and risk score")
    parser.add_argument("--pretty", action="store_true", help="Pretty print JSON")
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    try:
        image = load_image(read_image_arg(args.image))
        rng = random.Random(args.seed) if args.seed is not None else None
        heatmap, report = analyze(image, roi_cell_size_px=args.cell_size, rng=rng)

        if args.out:
            fmt = image.format or os.path.splitext(args.out)[1].lstrip(".") or "PNG"
            with open(args.out, "wb") as f:
                f.write(encode_image(heatmap, fmt))
            logger.info("Heatmap written to %s", args.out)
    except (OSError, ValueError, MediScanError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(json.dumps(report.model_dump(mode="json"), indent=2 if args.pretty else None, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
