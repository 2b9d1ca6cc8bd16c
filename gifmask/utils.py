"""Helpers for reading masks back and summarizing them."""
from __future__ import annotations

import numpy as np
import imageio.v2 as imageio


def _to_grayscale(frame: np.ndarray) -> np.ndarray:
    arr = np.asarray(frame)
    if arr.ndim == 2:
        return arr.astype(np.uint8)
    if arr.ndim == 3 and arr.shape[2] >= 3:
        rgb = arr[..., :3].astype(np.float32)
        gray = rgb @ np.array([0.299, 0.587, 0.114], dtype=np.float32)
        return np.rint(gray).astype(np.uint8)
    raise ValueError("Unsupported frame shape for grayscale conversion: %s" % (arr.shape,))


def load_gif_frames(path: str, max_frames: int | None = None) -> np.ndarray:
    """
    Load a GIF through imageio and return composited frames as (T, H, W) uint8, grayscale.
    """
    reader = imageio.get_reader(path)
    frames = []
    try:
        for idx, frame in enumerate(reader):
            if max_frames is not None and idx >= max_frames:
                break
            frames.append(_to_grayscale(frame))
    finally:
        reader.close()
    if not frames:
        raise ValueError("No frames read from GIF: %s" % path)
    return np.stack(frames, axis=0)


def mask_coverage(frames: np.ndarray, level: int = 128) -> np.ndarray:
    """
    Fraction of white pixels per frame for (T, H, W) grayscale frames.
    """
    if frames.ndim != 3:
        raise ValueError("frames must have shape (T, H, W)")
    return (frames >= level).reshape(frames.shape[0], -1).mean(axis=1)
