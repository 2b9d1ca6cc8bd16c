"""Per-frame masking steps: palette classification, canvas, flood erase, crop."""
from __future__ import annotations

from dataclasses import replace

import numpy as np

from .constants import BACKGROUND_THRESHOLD, MASK_WHITE, MAX_PALETTE_ENTRIES
from .format import FrameRecord


class PaletteError(ValueError):
    """Palette cannot be classified."""


def classify_palette(palette: bytes, threshold: int = BACKGROUND_THRESHOLD) -> np.ndarray:
    """
    Return the palette indices whose first channel is strictly above ``threshold``.

    Palettes are assumed grayscale, so only the first byte of each triplet is
    inspected. Trailing bytes that do not form a full triplet are ignored.
    """
    arr = np.frombuffer(bytes(palette), dtype=np.uint8)
    entries = (arr.size + 2) // 3
    if entries > MAX_PALETTE_ENTRIES:
        raise PaletteError(f"Palette has {entries} entries; indices must fit in a byte")
    first = arr[::3]
    return np.nonzero(first > threshold)[0].astype(np.uint8)


def background_lookup(indices: np.ndarray) -> np.ndarray:
    """Expand background indices into a 256-entry membership table."""
    table = np.zeros((MAX_PALETTE_ENTRIES,), dtype=bool)
    table[np.asarray(indices, dtype=np.intp)] = True
    return table


def apply_frame(canvas: np.ndarray, frame: FrameRecord) -> None:
    """Paint ``frame`` onto ``canvas`` in place, keeping transparent cells."""
    H, W = canvas.shape
    if frame.left + frame.width > W or frame.top + frame.height > H:
        raise ValueError(
            f"Frame {frame.width}x{frame.height}+{frame.left}+{frame.top} "
            f"outside canvas {W}x{H}"
        )
    if frame.buffer.shape != (frame.height, frame.width):
        raise ValueError("frame buffer must have shape (height, width)")

    region = canvas[frame.top : frame.top + frame.height, frame.left : frame.left + frame.width]
    if frame.transparent is None:
        region[...] = frame.buffer
    else:
        opaque = frame.buffer != frame.transparent
        region[opaque] = frame.buffer[opaque]


def corner_seeds(width: int, height: int) -> tuple[int, int, int, int]:
    """Flat positions of the top-left, top-right, bottom-left and bottom-right cells."""
    N = width * height
    return (0, width - 1, N - width, N - 1)


def flood_erase(
    canvas: np.ndarray,
    lookup: np.ndarray,
    mask: np.ndarray,
    visited: np.ndarray,
    seeds,
) -> int:
    """
    Whiten every cell 4-connected to a seed through background cells.

    ``visited`` is shared by all seeds so later seeds stop on cells the
    earlier ones already explored. A non-background cell is marked visited
    but neither erased nor expanded. Returns the number of erased cells.
    """
    if canvas.shape != mask.shape or canvas.shape != visited.shape:
        raise ValueError("canvas, mask and visited must share one shape")
    if not (mask.flags.c_contiguous and visited.flags.c_contiguous):
        raise ValueError("mask and visited must be C-contiguous")

    H, W = canvas.shape
    N = H * W
    eligible = lookup[canvas].ravel().tolist()
    seen = visited.reshape(-1)
    out = mask.reshape(-1)
    erased = 0

    stack = list(seeds)
    while stack:
        pos = stack.pop()
        if pos < 0 or pos >= N or seen[pos]:
            continue
        seen[pos] = True
        if not eligible[pos]:
            continue
        out[pos] = MASK_WHITE
        erased += 1

        row, column = divmod(pos, W)
        if column > 0:
            stack.append(pos - 1)
        if column < W - 1:
            stack.append(pos + 1)
        if row > 0:
            stack.append(pos - W)
        if row < H - 1:
            stack.append(pos + W)

    return erased


def crop_mask(mask: np.ndarray, frame: FrameRecord) -> np.ndarray:
    """Copy of ``mask`` over the rectangle ``frame`` covers, row-major."""
    return mask[frame.top : frame.top + frame.height, frame.left : frame.left + frame.width].copy()


def composite_frame(mask: np.ndarray, frame: FrameRecord) -> FrameRecord:
    """
    Build the output frame for ``frame`` from the current mask.

    Rectangle, delay, disposal, user-input flag and transparent index are
    copied as-is; the output uses the global two-color palette, so any local
    palette and the interlace flag are dropped.
    """
    return replace(
        frame,
        buffer=crop_mask(mask, frame),
        interlaced=False,
        local_palette=None,
    )
