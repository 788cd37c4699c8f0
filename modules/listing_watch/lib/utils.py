from __future__ import annotations

import html
import re
from typing import Any


def esc(s: str | None) -> str:
    """Escape text for HTML bodies and attribute values."""
    if s is None:
        return ""
    return html.escape(str(s), quote=True)


def truthy(v: Any, default: bool = False) -> bool:
    """
    Normalize booleans arriving from env/kwargs ('1', 'true', 'yes', 'on', ...).
    None falls back to `default`.
    """
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return v != 0
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y", "t"}


def slugify(s: str) -> str:
    s = re.sub(r"[^0-9a-zA-Z]+", "_", s.lower())
    return re.sub(r"_{2,}", "_", s).strip("_")
