from __future__ import annotations

import struct

import numpy as np
import pytest
from PIL import Image

from gifmask import MASK_PALETTE, mask_gif
from gifmask.constants import DISPOSE_BACKGROUND, DISPOSE_KEEP, DISPOSE_PREVIOUS
from gifmask.encoder import MaskRenderer, PipelineError
from gifmask.format import GifEncodeError, GifReader, GifWriter
from gifmask.models import classify_palette
from gifmask.utils import load_gif_frames, mask_coverage


def read_output(path):
    with GifReader(path) as reader:
        frames = list(reader)
        return reader, frames


def test_full_background_frame_is_all_white(write_gif, make_frame, tmp_path):
    src = write_gif("s1.gif", 4, 4, [make_frame(np.ones((4, 4)))])
    out = tmp_path / "s1_mask.gif"

    summary = mask_gif(str(src), str(out))

    assert (summary.frames_read, summary.frames_written, summary.frames_skipped) == (1, 1, 0)
    reader, frames = read_output(out)
    assert reader.palette == MASK_PALETTE
    assert reader.loop_count == 0
    assert (reader.width, reader.height) == (4, 4)
    assert frames[0].buffer.ravel().tolist() == [0] * 16


def test_dark_center_stays_black(write_gif, make_frame, tmp_path):
    rows = [[1, 1, 1, 1], [1, 0, 0, 1], [1, 0, 0, 1], [1, 1, 1, 1]]
    src = write_gif("s2.gif", 4, 4, [make_frame(rows)])
    out = tmp_path / "s2_mask.gif"

    mask_gif(str(src), str(out))

    _, frames = read_output(out)
    assert frames[0].buffer.tolist() == [[0, 0, 0, 0], [0, 1, 1, 0], [0, 1, 1, 0], [0, 0, 0, 0]]


def test_isolated_corners(write_gif, make_frame, tmp_path):
    src = write_gif("s3.gif", 3, 3, [make_frame([[1, 0, 1], [0, 1, 0], [1, 0, 1]])])
    out = tmp_path / "s3_mask.gif"

    mask_gif(str(src), str(out))

    _, frames = read_output(out)
    assert frames[0].buffer.ravel().tolist() == [0, 1, 0, 1, 1, 1, 0, 1, 0]


def test_transparent_frame_keeps_canvas(write_gif, make_frame, tmp_path):
    frames_in = [
        make_frame([[1, 1], [1, 1]]),
        make_frame([[1, 1], [1, 1]], transparent=1, delay=5),
    ]
    src = write_gif("s4.gif", 2, 2, frames_in)
    out = tmp_path / "s4_mask.gif"

    summary = mask_gif(str(src), str(out))

    assert summary.frames_written == 2
    _, frames = read_output(out)
    assert [f.buffer.tolist() for f in frames] == [[[0, 0], [0, 0]]] * 2
    assert frames[1].transparent == 1


def test_partial_frames_keep_geometry_and_timing(write_gif, make_frame, tmp_path):
    palette = bytes([0, 0, 0, 230, 230, 230, 100, 100, 100])
    frames_in = [
        make_frame(np.ones((6, 8)), delay=10, dispose=DISPOSE_KEEP),
        # closed dark box traps the bright cell inside it
        make_frame([[0, 0, 0], [0, 1, 0], [0, 0, 0]], left=2, top=1, delay=20, dispose=DISPOSE_KEEP),
        make_frame([[2, 2]], left=6, top=5, delay=30, dispose=DISPOSE_BACKGROUND, transparent=2),
    ]
    src = write_gif("partial.gif", 8, 6, frames_in, palette=palette)
    out = tmp_path / "partial_mask.gif"

    mask_gif(str(src), str(out))

    _, frames = read_output(out)
    assert len(frames) == 3
    for src_frame, out_frame in zip(frames_in, frames):
        assert (out_frame.left, out_frame.top, out_frame.width, out_frame.height) == (
            src_frame.left,
            src_frame.top,
            src_frame.width,
            src_frame.height,
        )
        assert (out_frame.delay, out_frame.dispose) == (src_frame.delay, src_frame.dispose)
    assert frames[1].buffer.tolist() == [[1, 1, 1], [1, 1, 1], [1, 1, 1]]
    # fully transparent update: canvas unchanged, corner region still background
    assert frames[2].buffer.tolist() == [[0, 0]]


def test_renderer_matches_mask_crop(make_frame):
    renderer = MaskRenderer(5, 4, classify_palette(bytes([0, 0, 0, 255, 255, 255])))
    renderer.render(make_frame(np.ones((4, 5))))
    out = renderer.render(make_frame([[0, 0], [0, 1]], left=2, top=1))
    assert np.array_equal(out.buffer, renderer.mask[1:3, 2:4])
    assert out.buffer.tolist() == [[1, 1], [1, 0]]


def test_encode_failure_skips_frame(write_gif, make_frame, tmp_path, monkeypatch):
    src = write_gif("three.gif", 2, 2, [make_frame(np.ones((2, 2)), delay=d) for d in (1, 2, 3)])
    out = tmp_path / "three_mask.gif"
    original = GifWriter.write_frame
    calls = []

    def flaky_write(self, frame):
        calls.append(frame.delay)
        if len(calls) == 2:
            raise GifEncodeError("simulated failure")
        return original(self, frame)

    monkeypatch.setattr(GifWriter, "write_frame", flaky_write)
    with pytest.warns(UserWarning, match="skipped"):
        summary = mask_gif(str(src), str(out))

    assert (summary.frames_read, summary.frames_written, summary.frames_skipped) == (3, 2, 1)
    monkeypatch.undo()
    _, frames = read_output(out)
    assert [f.delay for f in frames] == [1, 3]


def test_max_frames_limits_output(write_gif, make_frame, tmp_path):
    src = write_gif("many.gif", 2, 2, [make_frame(np.ones((2, 2)))] * 4)
    out = tmp_path / "many_mask.gif"
    summary = mask_gif(str(src), str(out), max_frames=2)
    assert summary.frames_written == 2
    assert len(read_output(out)[1]) == 2


def test_threshold_override(write_gif, make_frame, tmp_path):
    palette = bytes([0, 0, 0, 150, 150, 150])
    src = write_gif("mid.gif", 3, 3, [make_frame(np.ones((3, 3)))], palette=palette)
    out = tmp_path / "mid_mask.gif"

    mask_gif(str(src), str(out))
    assert (read_output(out)[1][0].buffer == 1).all()

    mask_gif(str(src), str(out), threshold=149)
    assert (read_output(out)[1][0].buffer == 0).all()


def test_missing_input_fails_at_open(tmp_path):
    with pytest.raises(PipelineError) as info:
        mask_gif(str(tmp_path / "nope.gif"), str(tmp_path / "out.gif"))
    assert info.value.stage == "open"


def test_missing_global_palette_fails(tmp_path):
    src = tmp_path / "nopal.gif"
    src.write_bytes(b"GIF89a" + struct.pack("<HHBBB", 2, 2, 0, 0, 0) + b"\x3b")
    with pytest.raises(PipelineError) as info:
        mask_gif(str(src), str(tmp_path / "out.gif"))
    assert info.value.stage == "decode"


def test_corrupt_frame_fails_at_decode(write_gif, make_frame, tmp_path):
    rng = np.random.default_rng(2)
    src = write_gif("bad.gif", 16, 16, [make_frame(rng.integers(0, 2, size=(16, 16)))])
    src.write_bytes(src.read_bytes()[:-20])
    with pytest.raises(PipelineError) as info:
        mask_gif(str(src), str(tmp_path / "out.gif"))
    assert info.value.stage == "decode"


def test_output_readable_by_imageio(write_gif, make_frame, tmp_path):
    rows = np.ones((9, 9), dtype=np.uint8)
    rows[2:7, 2:7] = 0
    rows[3:6, 3:6] = 1
    src = write_gif("ring.gif", 9, 9, [make_frame(rows)])
    out = tmp_path / "ring_mask.gif"

    mask_gif(str(src), str(out))

    frames = load_gif_frames(str(out))
    assert frames.shape == (1, 9, 9)
    expected = np.full((9, 9), 255, dtype=np.uint8)
    expected[2:7, 2:7] = 0
    assert np.array_equal(frames[0], expected)
    assert mask_coverage(frames)[0] == pytest.approx(56 / 81)


def test_masks_pillow_animation_with_local_palettes(tmp_path):
    gray = [0, 0, 0, 90, 90, 90, 180, 180, 180, 255, 255, 255]
    images = []
    for step in range(3):
        img = Image.new("P", (40, 30), 3)
        img.putpalette(gray)
        img.paste(0, (4 + 10 * step, 8, 14 + 10 * step, 20))
        images.append(img)
    src = tmp_path / "pillow_anim.gif"
    images[0].save(
        src,
        save_all=True,
        append_images=images[1:],
        duration=[80, 120, 160],
        disposal=[DISPOSE_KEEP, DISPOSE_BACKGROUND, DISPOSE_PREVIOUS],
        loop=0,
        optimize=False,
    )
    _, frames_in = read_output(src)
    assert any(f.local_palette is not None for f in frames_in)
    out = tmp_path / "pillow_anim_mask.gif"

    with pytest.warns(UserWarning) as record:
        summary = mask_gif(str(src), str(out))

    assert sum("Local color tables" in str(w.message) for w in record) == 1
    assert summary.frames_written == len(frames_in) == 3
    _, frames_out = read_output(out)
    for src_frame, out_frame in zip(frames_in, frames_out):
        assert (out_frame.left, out_frame.top, out_frame.width, out_frame.height) == (
            src_frame.left,
            src_frame.top,
            src_frame.width,
            src_frame.height,
        )
        assert out_frame.local_palette is None
    assert [f.delay for f in frames_out] == [8, 12, 16]
    assert [f.dispose for f in frames_out] == [DISPOSE_KEEP, DISPOSE_BACKGROUND, DISPOSE_PREVIOUS]
    expected = np.zeros((30, 40), dtype=np.uint8)
    expected[8:20, 4:14] = 1
    assert np.array_equal(frames_out[0].buffer, expected)


def test_read_os_error_fails_at_decode(write_gif, make_frame, tmp_path, monkeypatch):
    src = write_gif("io.gif", 2, 2, [make_frame(np.ones((2, 2)))])

    def broken_read(self, f, control):
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(GifReader, "_read_image", broken_read)
    with pytest.raises(PipelineError) as info:
        mask_gif(str(src), str(tmp_path / "out.gif"))
    assert info.value.stage == "decode"


def test_write_os_error_fails_at_encode(write_gif, make_frame, tmp_path, monkeypatch):
    src = write_gif("full.gif", 2, 2, [make_frame(np.ones((2, 2)))])

    def full_disk(self, frame):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(GifWriter, "write_frame", full_disk)
    with pytest.raises(PipelineError) as info:
        mask_gif(str(src), str(tmp_path / "out.gif"))
    assert info.value.stage == "encode"
    assert "No space left" in str(info.value)
