from __future__ import annotations

import subprocess
from pathlib import Path

__version__ = "0.1.0"


def _git(*args: str) -> str | None:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=Path(__file__).resolve().parent,
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout.strip()


def get_build_meta() -> dict[str, str]:
    """Package version plus the short commit hash when run from a checkout."""
    status = _git("status", "--porcelain")
    return {
        "version": __version__,
        "git_hash": _git("rev-parse", "--short", "HEAD") or "unknown",
        "dirty": "1" if status else "0",
    }


def get_version_string() -> str:
    meta = get_build_meta()
    if meta["git_hash"] == "unknown":
        return f"gifmask {meta['version']}"
    suffix = "+dirty" if meta["dirty"] == "1" else ""
    return f"gifmask {meta['version']} ({meta['git_hash']}{suffix})"
