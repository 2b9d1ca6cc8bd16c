"""Constants for gifmask background masking."""

BACKGROUND_THRESHOLD = 203  # first channel must be strictly greater

MASK_WHITE = 0  # background reached from a corner
MASK_BLACK = 1  # everything else
MASK_PALETTE = bytes([255, 255, 255, 0, 0, 0])

LOOP_INFINITE = 0

DISPOSE_ANY = 0
DISPOSE_KEEP = 1
DISPOSE_BACKGROUND = 2
DISPOSE_PREVIOUS = 3

MAX_PALETTE_ENTRIES = 256
LZW_MAX_BITS = 12
LZW_MAX_CODES = 1 << LZW_MAX_BITS
