from __future__ import annotations

import numpy as np
import pytest

from gifmask.format import FrameRecord, GifWriter

GRAY_PALETTE = bytes([0, 0, 0, 255, 255, 255])


@pytest.fixture()
def make_frame():
    def _make(rows, left: int = 0, top: int = 0, **meta) -> FrameRecord:
        buffer = np.asarray(rows, dtype=np.uint8)
        h, w = buffer.shape
        return FrameRecord(left=left, top=top, width=w, height=h, buffer=buffer, **meta)

    return _make


@pytest.fixture()
def write_gif(tmp_path):
    def _write(name, width, height, frames, palette=GRAY_PALETTE, loop=0):
        path = tmp_path / name
        with GifWriter(path, width, height, palette, loop=loop) as writer:
            for frame in frames:
                writer.write_frame(frame)
        return path

    return _write
