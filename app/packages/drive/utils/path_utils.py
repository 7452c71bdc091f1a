"""Path utilities for slash-delimited namespace paths.

Rules shared by the namespace service and the WebDAV adapter:
- absolute paths always start with '/'; the root is '/';
- trailing slashes and empty segments are ignored; segments are never trimmed;
- '.' and '..' segments are rejected rather than interpreted.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from app.packages.drive.core.exceptions import InvalidReferenceError


def norm_abs_path(p: Optional[str]) -> str:
    segments = split_segments(p)
    return "/" + "/".join(segments) if segments else "/"


def split_segments(p: Optional[str]) -> List[str]:
    segments = [s for s in (p or "").replace("\\", "/").split("/") if s]
    if any(s in (".", "..") for s in segments):
        raise InvalidReferenceError(f"路径中不允许出现相对段: {p}")
    return segments


def split_parent(p: Optional[str]) -> Tuple[str, Optional[str]]:
    """拆分为 ``(父路径, 叶子名)``；根路径返回 ``("/", None)``。"""
    segments = split_segments(p)
    if not segments:
        return "/", None
    parent = "/" + "/".join(segments[:-1]) if len(segments) > 1 else "/"
    return parent, segments[-1]


def join_path(parent: str, name: str) -> str:
    base = norm_abs_path(parent)
    return f"/{name}" if base == "/" else f"{base}/{name}"
