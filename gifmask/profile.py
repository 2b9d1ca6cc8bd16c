from __future__ import annotations

import argparse
import json
import sys
import time
import tracemalloc
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import psutil

from .encoder import mask_gif
from .utils import load_gif_frames, mask_coverage
from .version import get_build_meta


def current_rss_mb() -> float:
    proc = psutil.Process()
    return proc.memory_info().rss / (1024 * 1024)


def run_profile(input_path: Path, out_dir: Path, threshold: int | None = None) -> dict:
    out_dir.mkdir(parents=True, exist_ok=True)
    mask_path = out_dir / "mask.gif"
    kwargs = {} if threshold is None else {"threshold": threshold}
    result = {}

    tracemalloc.start()
    rss_start = current_rss_mb()
    t0 = time.perf_counter()
    summary = mask_gif(str(input_path), str(mask_path), **kwargs)
    mask_time = time.perf_counter() - t0
    rss_mask = current_rss_mb()
    _, peak_size = tracemalloc.get_traced_memory()
    tracemalloc.stop()

    coverage = mask_coverage(load_gif_frames(str(mask_path))) if summary.frames_written else []

    result["summary"] = asdict(summary)
    result["mask_time_sec"] = mask_time
    result["frames_per_sec"] = summary.frames_read / mask_time if mask_time > 0 else 0.0
    result["rss_start_mb"] = rss_start
    result["rss_mask_mb"] = rss_mask
    result["tracemalloc_peak_bytes"] = peak_size
    result["white_fraction"] = [float(c) for c in coverage]
    result["env"] = {
        "python": sys.version,
        "platform": sys.platform,
        "build": get_build_meta(),
    }

    with open(out_dir / "profile.json", "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2)
    return result


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Profile gifmask on one input")
    parser.add_argument("--input", type=Path, required=True, help="Input .gif")
    parser.add_argument("--out", type=Path, required=True, help="Output directory for profile")
    parser.add_argument("--threshold", type=int, default=None, help="Background threshold override")
    args = parser.parse_args(argv)

    res = run_profile(args.input, args.out, threshold=args.threshold)
    print(json.dumps(res, indent=2))


if __name__ == "__main__":
    main()
