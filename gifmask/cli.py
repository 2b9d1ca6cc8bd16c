"""Command-line entrypoint for gifmask."""
from __future__ import annotations

import argparse
import sys

from . import BACKGROUND_THRESHOLD
from .encoder import PipelineError, mask_gif
from .version import get_version_string


def _threshold(value: str) -> int:
    threshold = int(value)
    if not 0 <= threshold <= 255:
        raise argparse.ArgumentTypeError("threshold must be between 0 and 255")
    return threshold


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gifmask",
        description="Mask the corner-connected background of an indexed GIF animation",
    )
    parser.add_argument("input", help="Input .gif path")
    parser.add_argument("output", help="Output .gif path")
    parser.add_argument(
        "--threshold",
        type=_threshold,
        default=BACKGROUND_THRESHOLD,
        help="Palette entries whose first channel is above this count as background",
    )
    parser.add_argument("--max-frames", type=int, default=None, help="Limit number of frames processed")
    parser.add_argument("--version", action="version", version=get_version_string())
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        mask_gif(args.input, args.output, threshold=args.threshold, max_frames=args.max_frames)
    except PipelineError as exc:
        print(f"gifmask: error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
