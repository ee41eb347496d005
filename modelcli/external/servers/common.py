"""Path confinement and formatting shared by the bundled servers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class OutsideRootError(ValueError):
    pass


def prepare_root(value: str | None, writable: bool = False) -> Path:
    """Resolve the server root, creating it when missing."""
    root = Path(value or ".").expanduser().resolve()
    if not root.exists():
        root.mkdir(parents=True)
    elif not root.is_dir():
        raise ValueError(f"{root} is not a directory")
    elif writable and not os.access(root, os.W_OK):
        raise ValueError(f"{root} is not writable")
    return root


def confine(root: Path, rel_path: str | None) -> Path:
    """Resolve *rel_path* against *root*, refusing anything outside it."""
    target = (root / (rel_path or ".")).resolve()
    if target != root and root not in target.parents:
        raise OutsideRootError(f"Path {rel_path} is outside the allowed root")
    return target


def relative(root: Path, target: Path) -> str:
    rel = target.relative_to(root).as_posix()
    return rel or "."


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit} ({size} B)"


def clamp(value, low: int, high: int, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return min(max(number, low), high)
