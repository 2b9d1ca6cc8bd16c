"""Build a small animated ring GIF and mask it."""
from __future__ import annotations

import argparse

import numpy as np

from gifmask import GifWriter, mask_gif
from gifmask.format import FrameRecord

PALETTE = bytes([0, 0, 0, 96, 96, 96, 240, 240, 240])


def build_demo(path: str, size: int = 64, frames: int = 12) -> None:
    yy, xx = np.mgrid[0:size, 0:size]
    dist = np.hypot(yy - size / 2, xx - size / 2)
    with GifWriter(path, size, size, PALETTE) as writer:
        for t in range(frames):
            radius = 6 + t * (size // 2 - 10) / max(1, frames - 1)
            buffer = np.full((size, size), 2, dtype=np.uint8)
            buffer[np.abs(dist - radius) < 2] = 0
            buffer[dist < radius / 3] = 1
            writer.write_frame(
                FrameRecord(left=0, top=0, width=size, height=size, buffer=buffer, delay=8)
            )


def main():
    parser = argparse.ArgumentParser(description="Generate a ring animation and its mask")
    parser.add_argument("demo", help="Output path for the generated input .gif")
    parser.add_argument("mask", help="Output path for the mask .gif")
    parser.add_argument("--size", type=int, default=64, help="Canvas side in pixels")
    args = parser.parse_args()

    build_demo(args.demo, size=args.size)
    mask_gif(args.demo, args.mask)


if __name__ == "__main__":
    main()
