"""Mask pipeline: decode frames, rebuild the canvas, flood erase, encode."""

from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np

from .constants import BACKGROUND_THRESHOLD, LOOP_INFINITE, MASK_BLACK, MASK_PALETTE
from .format import FrameRecord, GifEncodeError, GifFormatError, GifReader, GifWriter
from .models import (
    PaletteError,
    apply_frame,
    background_lookup,
    classify_palette,
    composite_frame,
    corner_seeds,
    flood_erase,
)


class PipelineError(RuntimeError):
    """Fatal pipeline failure tagged with the stage that failed."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


@dataclass
class MaskSummary:
    width: int
    height: int
    frames_read: int = 0
    frames_written: int = 0
    frames_skipped: int = 0


class MaskRenderer:
    """
    Holds the persistent canvas and the per-frame scratch buffers.

    ``render`` updates the canvas with one input frame and returns the
    matching output frame cropped from a fresh mask.
    """

    def __init__(self, width: int, height: int, background: np.ndarray):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas must have positive area, got {width}x{height}")
        self.width = width
        self.height = height
        self.lookup = background_lookup(background)
        self.canvas = np.zeros((height, width), dtype=np.uint8)
        self.mask = np.full((height, width), MASK_BLACK, dtype=np.uint8)
        self.visited = np.zeros((height, width), dtype=bool)
        self.seeds = corner_seeds(width, height)

    def render(self, frame: FrameRecord) -> FrameRecord:
        apply_frame(self.canvas, frame)
        self.mask.fill(MASK_BLACK)
        self.visited.fill(False)
        flood_erase(self.canvas, self.lookup, self.mask, self.visited, self.seeds)
        return composite_frame(self.mask, frame)


def mask_gif(
    input_path: str,
    output_path: str,
    threshold: int = BACKGROUND_THRESHOLD,
    max_frames: int | None = None,
) -> MaskSummary:
    """
    Write a two-color mask animation of ``input_path`` to ``output_path``.

    Background (white) is the region reachable from the four corners through
    palette entries brighter than ``threshold``. A frame the encoder rejects
    is skipped with a warning; every other failure is raised as
    ``PipelineError``.
    """
    try:
        reader = GifReader(input_path)
    except (OSError, GifFormatError) as exc:
        raise PipelineError("open", f"Failed to open input file {input_path}: {exc}") from exc

    with reader:
        if reader.palette is None:
            raise PipelineError("decode", f"{input_path} has no global color table")
        try:
            background = classify_palette(reader.palette, threshold)
        except PaletteError as exc:
            raise PipelineError("classify", str(exc)) from exc

        W, H = reader.width, reader.height
        summary = MaskSummary(width=W, height=H)
        try:
            writer = GifWriter(output_path, W, H, MASK_PALETTE, loop=LOOP_INFINITE)
        except (OSError, GifEncodeError) as exc:
            raise PipelineError("encode", f"Failed to create output file {output_path}: {exc}") from exc

        with writer:
            renderer = MaskRenderer(W, H, background)
            frames = reader.frames()
            warned_local = False
            while max_frames is None or summary.frames_read < max_frames:
                try:
                    frame = next(frames, None)
                except (OSError, GifFormatError) as exc:
                    raise PipelineError(
                        "decode", f"Failed to decode frame {summary.frames_read}: {exc}"
                    ) from exc
                if frame is None:
                    break
                summary.frames_read += 1
                if frame.local_palette is not None and not warned_local:
                    warnings.warn("Local color tables are ignored; classifying with the global palette")
                    warned_local = True

                out_frame = renderer.render(frame)
                try:
                    writer.write_frame(out_frame)
                except GifEncodeError as exc:
                    warnings.warn(f"Frame {summary.frames_read - 1} was skipped as it could not be written: {exc}")
                    summary.frames_skipped += 1
                    continue
                except OSError as exc:
                    raise PipelineError(
                        "encode", f"Failed to write frame {summary.frames_read - 1}: {exc}"
                    ) from exc
                summary.frames_written += 1

    print(
        f"Masked {input_path} -> {output_path}. Frames={summary.frames_written}, "
        f"Skipped={summary.frames_skipped}, Size={H}x{W}"
    )
    return summary
