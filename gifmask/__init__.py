"""Corner flood-fill background masks for indexed GIF animations."""
from .constants import (
    BACKGROUND_THRESHOLD,
    MASK_WHITE,
    MASK_BLACK,
    MASK_PALETTE,
    LOOP_INFINITE,
)
from .format import FrameRecord, GifEncodeError, GifFormatError, GifReader, GifWriter
from .models import (
    PaletteError,
    apply_frame,
    classify_palette,
    composite_frame,
    crop_mask,
    flood_erase,
)
from .encoder import MaskRenderer, MaskSummary, PipelineError, mask_gif
from .version import __version__, get_version_string, get_build_meta

__all__ = [
    "BACKGROUND_THRESHOLD",
    "MASK_WHITE",
    "MASK_BLACK",
    "MASK_PALETTE",
    "LOOP_INFINITE",
    "FrameRecord",
    "GifEncodeError",
    "GifFormatError",
    "GifReader",
    "GifWriter",
    "PaletteError",
    "apply_frame",
    "classify_palette",
    "composite_frame",
    "crop_mask",
    "flood_erase",
    "MaskRenderer",
    "MaskSummary",
    "PipelineError",
    "mask_gif",
    "get_version_string",
    "get_build_meta",
    "__version__",
]
