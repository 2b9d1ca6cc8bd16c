"""GIF container helpers: header, frame blocks and LZW for gifmask."""

from __future__ import annotations

import io
import os
import struct
import warnings
from dataclasses import dataclass
from typing import BinaryIO, Iterator

import numpy as np

from .constants import (
    DISPOSE_ANY,
    LOOP_INFINITE,
    LZW_MAX_BITS,
    LZW_MAX_CODES,
    MAX_PALETTE_ENTRIES,
)

MAGIC_87A = b"GIF87a"
MAGIC_89A = b"GIF89a"

BLOCK_EXTENSION = 0x21
BLOCK_IMAGE = 0x2C
BLOCK_TRAILER = 0x3B

EXT_GRAPHIC_CONTROL = 0xF9
EXT_APPLICATION = 0xFF

LOOP_APPLICATIONS = (b"NETSCAPE2.0", b"ANIMEXTS1.0")

# (first row, row step) for the four interlace passes
INTERLACE_PASSES = ((0, 8), (4, 8), (2, 4), (1, 2))


class GifFormatError(ValueError):
    """Input stream is not a decodable GIF."""


class GifEncodeError(ValueError):
    """A frame or stream parameter cannot be written as GIF."""


@dataclass
class FrameRecord:
    """One image block together with its graphic control metadata.

    ``buffer`` holds palette indices with shape ``(height, width)``.
    """

    left: int
    top: int
    width: int
    height: int
    buffer: np.ndarray
    transparent: int | None = None
    delay: int = 0
    dispose: int = DISPOSE_ANY
    user_input: bool = False
    interlaced: bool = False
    local_palette: bytes | None = None


class _BitPacker:
    def __init__(self) -> None:
        self.out = bytearray()
        self._acc = 0
        self._nbits = 0

    def write(self, code: int, size: int) -> None:
        self._acc |= code << self._nbits
        self._nbits += size
        while self._nbits >= 8:
            self.out.append(self._acc & 0xFF)
            self._acc >>= 8
            self._nbits -= 8

    def getvalue(self) -> bytes:
        if self._nbits:
            return bytes(self.out) + bytes([self._acc & 0xFF])
        return bytes(self.out)


def lzw_encode(indices: bytes, min_code_size: int) -> bytes:
    """Compress palette indices into a GIF LZW code stream (no sub-blocks)."""
    clear_code = 1 << min_code_size
    end_code = clear_code + 1
    code_size = min_code_size + 1
    next_code = end_code + 1
    table: dict[tuple[int, int], int] = {}
    packer = _BitPacker()

    packer.write(clear_code, code_size)
    prefix = -1
    for k in indices:
        if prefix < 0:
            prefix = k
            continue
        code = table.get((prefix, k))
        if code is not None:
            prefix = code
            continue
        packer.write(prefix, code_size)
        table[(prefix, k)] = next_code
        next_code += 1
        if next_code == LZW_MAX_CODES:
            packer.write(clear_code, code_size)
            table.clear()
            next_code = end_code + 1
            code_size = min_code_size + 1
        elif next_code > (1 << code_size):
            code_size += 1
        prefix = k

    if prefix >= 0:
        packer.write(prefix, code_size)
        # the decoder adds one more entry after this code before reading EOI
        if next_code == (1 << code_size) and code_size < LZW_MAX_BITS:
            code_size += 1
    packer.write(end_code, code_size)
    return packer.getvalue()


def lzw_decode(data: bytes, min_code_size: int) -> bytes:
    """Expand a GIF LZW code stream into palette indices.

    Decoding stops at the end-of-information code or when the data runs out.
    """
    clear_code = 1 << min_code_size
    end_code = clear_code + 1
    table = [bytes([i]) for i in range(clear_code)] + [b"", b""]
    code_size = min_code_size + 1
    out = bytearray()
    prev: bytes | None = None

    acc = 0
    nbits = 0
    pos = 0
    n = len(data)
    while True:
        if nbits < code_size:
            if pos >= n:
                break
            acc |= data[pos] << nbits
            pos += 1
            nbits += 8
            continue
        code = acc & ((1 << code_size) - 1)
        acc >>= code_size
        nbits -= code_size

        if code == clear_code:
            del table[end_code + 1 :]
            code_size = min_code_size + 1
            prev = None
            continue
        if code == end_code:
            break

        if prev is None:
            if code >= clear_code:
                raise GifFormatError(f"Invalid LZW code {code} after clear")
            entry = table[code]
        elif code < len(table):
            entry = table[code]
            if len(table) < LZW_MAX_CODES:
                table.append(prev + entry[:1])
        elif code == len(table):
            entry = prev + prev[:1]
            if len(table) < LZW_MAX_CODES:
                table.append(entry)
        else:
            raise GifFormatError(f"Invalid LZW code {code} (table size {len(table)})")

        out += entry
        if len(table) == (1 << code_size) and code_size < LZW_MAX_BITS:
            code_size += 1
        prev = entry

    return bytes(out)


def deinterlace(rows: np.ndarray) -> np.ndarray:
    """Reorder rows stored in GIF interlace order into top-to-bottom order."""
    height = rows.shape[0]
    order = np.concatenate(
        [np.arange(start, height, step) for start, step in INTERLACE_PASSES]
    )
    out = np.empty_like(rows)
    out[order] = rows
    return out


def _read_exact(f, n: int, what: str) -> bytes:
    data = f.read(n)
    if len(data) != n:
        raise GifFormatError(f"Incomplete {what}")
    return data


def _read_sub_blocks(f) -> bytes:
    chunks = []
    while True:
        size = _read_exact(f, 1, "sub-block size")[0]
        if size == 0:
            break
        chunks.append(_read_exact(f, size, "sub-block data"))
    return b"".join(chunks)


def _write_sub_blocks(f, data: bytes) -> None:
    for i in range(0, len(data), 255):
        chunk = data[i : i + 255]
        f.write(struct.pack("<B", len(chunk)))
        f.write(chunk)
    f.write(b"\x00")


def read_header(f) -> dict:
    """Read the signature, logical screen descriptor and global color table."""
    magic = f.read(6)
    if magic not in (MAGIC_87A, MAGIC_89A):
        raise GifFormatError("Invalid magic")
    raw = _read_exact(f, 7, "logical screen descriptor")
    width, height, packed, background_index, _aspect = struct.unpack("<HHBBB", raw)
    if width == 0 or height == 0:
        raise GifFormatError(f"Logical screen has zero area ({width}x{height})")
    palette = None
    if packed & 0x80:
        entries = 2 << (packed & 0x07)
        palette = _read_exact(f, 3 * entries, "global color table")
    return {
        "width": width,
        "height": height,
        "background_index": background_index,
        "palette": palette,
    }


class GifReader:
    """Streaming GIF decoder yielding raw indexed sub-frames.

    The header is parsed on construction; ``frames()`` decodes image blocks
    lazily. Frames are not composited: each record carries only the
    rectangle its image block covers.
    """

    def __init__(self, source: str | os.PathLike | BinaryIO):
        if isinstance(source, (str, os.PathLike)):
            self._f = open(source, "rb")
            self._owns = True
        else:
            self._f = source
            self._owns = False
        try:
            self.header = read_header(self._f)
        except BaseException:
            self.close()
            raise
        self.width: int = self.header["width"]
        self.height: int = self.header["height"]
        self.palette: bytes | None = self.header["palette"]
        self.background_index: int = self.header["background_index"]
        self.loop_count: int | None = None

    def __enter__(self) -> "GifReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __iter__(self) -> Iterator[FrameRecord]:
        return self.frames()

    def close(self) -> None:
        if self._owns and not self._f.closed:
            self._f.close()

    def frames(self) -> Iterator[FrameRecord]:
        f = self._f
        control: dict | None = None
        while True:
            intro = f.read(1)
            if not intro:
                warnings.warn("GIF stream ended without a trailer")
                return
            block = intro[0]
            if block == BLOCK_TRAILER:
                return
            if block == BLOCK_EXTENSION:
                label = _read_exact(f, 1, "extension label")[0]
                if label == EXT_GRAPHIC_CONTROL:
                    control = self._read_graphic_control(f)
                elif label == EXT_APPLICATION:
                    self._read_application(f)
                else:
                    # comment, plain text and unknown extensions carry nothing we use
                    _read_sub_blocks(f)
            elif block == BLOCK_IMAGE:
                yield self._read_image(f, control or {})
                control = None
            else:
                raise GifFormatError(f"Unknown block introducer 0x{block:02X}")

    @staticmethod
    def _read_graphic_control(f) -> dict:
        body = _read_sub_blocks(f)
        if len(body) < 4:
            raise GifFormatError("Incomplete graphic control extension")
        packed, delay, transparent = struct.unpack("<BHB", body[:4])
        return {
            "dispose": (packed >> 2) & 0x07,
            "user_input": bool(packed & 0x02),
            "delay": delay,
            "transparent": transparent if packed & 0x01 else None,
        }

    def _read_application(self, f) -> None:
        size = _read_exact(f, 1, "application block size")[0]
        app_id = _read_exact(f, size, "application identifier")
        data = _read_sub_blocks(f)
        if app_id in LOOP_APPLICATIONS and len(data) >= 3 and data[0] == 1:
            self.loop_count = struct.unpack("<H", data[1:3])[0]

    def _read_image(self, f, control: dict) -> FrameRecord:
        raw = _read_exact(f, 9, "image descriptor")
        left, top, width, height, packed = struct.unpack("<HHHHB", raw)
        if left + width > self.width or top + height > self.height:
            raise GifFormatError(
                f"Frame {width}x{height}+{left}+{top} exceeds logical screen "
                f"{self.width}x{self.height}"
            )
        local_palette = None
        if packed & 0x80:
            entries = 2 << (packed & 0x07)
            local_palette = _read_exact(f, 3 * entries, "local color table")
        interlaced = bool(packed & 0x40)

        min_code_size = _read_exact(f, 1, "LZW minimum code size")[0]
        if not 1 <= min_code_size < LZW_MAX_BITS:
            raise GifFormatError(f"Invalid LZW minimum code size {min_code_size}")
        pixels = lzw_decode(_read_sub_blocks(f), min_code_size)

        expected = width * height
        if len(pixels) < expected:
            warnings.warn(
                f"Image data short by {expected - len(pixels)} pixels; padding with index 0"
            )
            pixels += bytes(expected - len(pixels))
        buffer = np.frombuffer(pixels[:expected], dtype=np.uint8).reshape(height, width).copy()
        if interlaced:
            buffer = deinterlace(buffer)

        return FrameRecord(
            left=left,
            top=top,
            width=width,
            height=height,
            buffer=buffer,
            transparent=control.get("transparent"),
            delay=control.get("delay", 0),
            dispose=control.get("dispose", DISPOSE_ANY),
            user_input=control.get("user_input", False),
            interlaced=interlaced,
            local_palette=local_palette,
        )


def _color_table_exponent(entries: int) -> int:
    return max(1, (entries - 1).bit_length())


class GifWriter:
    """GIF89a encoder with a single global color table.

    Every frame is written with a graphic control extension and without a
    local color table or interlacing.
    """

    def __init__(
        self,
        target: str | os.PathLike | BinaryIO,
        width: int,
        height: int,
        palette: bytes,
        loop: int | None = LOOP_INFINITE,
    ):
        if not (0 < width <= 0xFFFF and 0 < height <= 0xFFFF):
            raise GifEncodeError(f"Unsupported canvas size {width}x{height}")
        if len(palette) % 3 != 0 or not 0 < len(palette) // 3 <= MAX_PALETTE_ENTRIES:
            raise GifEncodeError("Palette must hold 1..256 RGB triplets")
        if loop is not None and not 0 <= loop <= 0xFFFF:
            raise GifEncodeError(f"Loop count {loop} out of range")

        self.width = width
        self.height = height
        self.palette_entries = len(palette) // 3
        exponent = _color_table_exponent(self.palette_entries)
        self.min_code_size = max(2, exponent)
        self.frames_written = 0

        if isinstance(target, (str, os.PathLike)):
            self._f = open(target, "wb")
            self._owns = True
        else:
            self._f = target
            self._owns = False
        self._closed = False

        table = bytes(palette).ljust(3 * (1 << exponent), b"\x00")
        packed = 0x80 | ((exponent - 1) << 4) | (exponent - 1)
        header = io.BytesIO()
        header.write(MAGIC_89A)
        header.write(struct.pack("<HHBBB", width, height, packed, 0, 0))
        header.write(table)
        if loop is not None:
            header.write(struct.pack("<BBB", BLOCK_EXTENSION, EXT_APPLICATION, 11))
            header.write(b"NETSCAPE2.0")
            header.write(struct.pack("<BBHB", 3, 1, loop, 0))
        self._f.write(header.getvalue())

    def __enter__(self) -> "GifWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _validate(self, frame: FrameRecord) -> None:
        if frame.left + frame.width > self.width or frame.top + frame.height > self.height:
            raise GifEncodeError(
                f"Frame {frame.width}x{frame.height}+{frame.left}+{frame.top} exceeds "
                f"canvas {self.width}x{self.height}"
            )
        if frame.buffer.shape != (frame.height, frame.width):
            raise GifEncodeError(
                f"Buffer shape {frame.buffer.shape} does not match frame "
                f"{frame.width}x{frame.height}"
            )
        if frame.buffer.size and (
            int(frame.buffer.min()) < 0 or int(frame.buffer.max()) >= self.palette_entries
        ):
            raise GifEncodeError(
                f"Buffer index outside palette of {self.palette_entries} entries"
            )
        if not 0 <= frame.delay <= 0xFFFF:
            raise GifEncodeError(f"Delay {frame.delay} does not fit in 16 bits")
        if frame.transparent is not None and not 0 <= frame.transparent <= 0xFF:
            raise GifEncodeError(f"Transparent index {frame.transparent} does not fit in a byte")
        if not 0 <= frame.dispose <= 7:
            raise GifEncodeError(f"Invalid disposal method {frame.dispose}")

    def write_frame(self, frame: FrameRecord) -> None:
        """Encode one frame. Nothing is written when validation fails."""
        if self._closed:
            raise GifEncodeError("Writer is closed")
        self._validate(frame)

        packed = (frame.dispose << 2) | (0x02 if frame.user_input else 0)
        if frame.transparent is not None:
            packed |= 0x01
        buf = io.BytesIO()
        buf.write(
            struct.pack(
                "<BBBBHBB",
                BLOCK_EXTENSION,
                EXT_GRAPHIC_CONTROL,
                4,
                packed,
                frame.delay,
                frame.transparent or 0,
                0,
            )
        )
        buf.write(
            struct.pack(
                "<BHHHHB", BLOCK_IMAGE, frame.left, frame.top, frame.width, frame.height, 0
            )
        )
        buf.write(struct.pack("<B", self.min_code_size))
        indices = np.ascontiguousarray(frame.buffer, dtype=np.uint8).tobytes()
        _write_sub_blocks(buf, lzw_encode(indices, self.min_code_size))

        self._f.write(buf.getvalue())
        self.frames_written += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._f.write(struct.pack("<B", BLOCK_TRAILER))
        finally:
            if self._owns:
                self._f.close()
