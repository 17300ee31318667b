"""Atomic file operations for markers, reports and cache entries."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

PathLike = Union[str, os.PathLike]


def atomic_write_bytes(path: PathLike, data: bytes) -> None:
    """Write bytes atomically using temp file + rename.

    A crash mid-write leaves either the previous file or nothing, never a
    truncated file.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=".tmp.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def atomic_write_json(path: PathLike, obj: Any, indent: int = 2) -> None:
    """Write JSON atomically."""
    text = json.dumps(obj, indent=indent, ensure_ascii=False, default=str)
    atomic_write_bytes(path, text.encode("utf-8"))


def read_json(path: PathLike) -> Optional[Dict[str, Any]]:
    """Read a JSON object, returning None when the file does not exist.

    Raises:
        ValueError: the file exists but is not a JSON object
        OSError: the file could not be read
    """
    p = Path(path)
    if not p.exists():
        return None
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{p} does not contain a JSON object")
    return data
