"""YAML overrides for the built-in keyword and source-tier dictionaries."""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, List, Optional
import logging
import yaml

logger = logging.getLogger(__name__)


def load_yaml_lists(path: Optional[str]) -> Dict[str, List[str]]:
    """Load a ``{name: [items]}`` mapping from YAML.

    Missing files are ignored with a warning; malformed content raises.

    Args:
        path: YAML file path, or None for no overrides

    Returns:
        Mapping of lower-cased names to lists of lower-cased strings
    """
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        logger.warning(f"Override file not found: {p}")
        return {}
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{p}: expected a mapping of lists")
    out: Dict[str, List[str]] = {}
    for name, items in data.items():
        if not isinstance(items, list):
            raise ValueError(f"{p}: entry '{name}' must be a list")
        out[str(name).lower()] = [str(i).lower().strip() for i in items if str(i).strip()]
    logger.info(f"Loaded {len(out)} override lists from {p}")
    return out


def merge_lists(base: Dict[str, Iterable[str]], extra: Dict[str, List[str]]) -> Dict[str, List[str]]:
    """Merge override lists into a base dictionary, preserving order and dropping duplicates."""
    merged = {k: list(v) for k, v in base.items()}
    for name, items in extra.items():
        current = merged.setdefault(name, [])
        for item in items:
            if item not in current:
                current.append(item)
    return merged
