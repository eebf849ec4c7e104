"""Path-safety checks for every path that crosses the public boundary.

A path is rejected if it, or any form a downstream component might decode it
into (single or repeated percent-decoding, Unicode compatibility folding),
escapes the project root. Overlong UTF-8 escapes are refused outright.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from lorevault_core.errors import UnsafePathError
from lorevault_core.models.requests import MAX_PATH_CHARS

logger = logging.getLogger(__name__)

MAX_DECODE_ROUNDS = 3

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")
_PERCENT_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")
# Overlong (non-shortest) UTF-8 encodings of '.', '/' and '\'.
_OVERLONG_UTF8 = re.compile(
    r"%c0%ae|%c0%af|%c1%9c|%e0%80%ae|%e0%80%af|%e0%81%9c|%f0%80%80%ae|%f0%80%80%af",
    re.IGNORECASE,
)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _decoded_variants(path: str) -> list[str]:
    """The raw path plus every form it takes under repeated percent-decoding."""
    variants = [path]
    current = path
    for _ in range(MAX_DECODE_ROUNDS):
        if not _PERCENT_ESCAPE.search(current):
            break
        current = unquote(current, errors="replace")
        variants.append(current)
    return variants


def _reject_reason(candidate: str) -> str | None:
    if "\x00" in candidate:
        return "null byte"
    if _CONTROL_CHARS.search(candidate):
        return "control character"
    if "\\" in candidate:
        return "backslash separator"
    if candidate.startswith(("/", "~")) or _DRIVE_LETTER.match(candidate):
        return "absolute path"
    segments = candidate.split("/")
    if any(seg == ".." or (seg.startswith("..") and set(seg) == {"."}) for seg in segments):
        return "parent directory traversal"
    return None


def validate_relative_path(path: str) -> str:
    """Check that ``path`` is a safe project-relative path and return it normalized.

    Raises UnsafePathError naming the first failed check. The returned path uses
    ``/`` separators and has no ``.`` segments or repeated slashes.
    """
    if not path or not path.strip():
        raise UnsafePathError(path, "empty path")
    if len(path) > MAX_PATH_CHARS:
        raise UnsafePathError(path, "path too long")
    if _OVERLONG_UTF8.search(path):
        raise UnsafePathError(path, "overlong UTF-8 encoding")

    for variant in _decoded_variants(path):
        folded = unicodedata.normalize("NFKC", variant)
        for candidate in (variant, folded):
            reason = _reject_reason(candidate)
            if reason is not None:
                logger.warning("Rejected unsafe path (%s), length=%d", reason, len(path))
                raise UnsafePathError(path, reason)

    if _PERCENT_ESCAPE.search(path):
        # Encoded-but-harmless names are refused too; stored paths stay literal.
        raise UnsafePathError(path, "percent-encoded path")

    parts = [part for part in PurePosixPath(path).parts if part not in ("", ".")]
    if not parts:
        raise UnsafePathError(path, "empty path")
    return "/".join(parts)


def resolve_within_root(root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` under ``root`` and confirm it stays inside.

    Symlinks are followed, so a link pointing outside the root is rejected.
    """
    safe = validate_relative_path(relative_path)
    resolved_root = root.resolve()
    resolved = (resolved_root / safe).resolve()
    if not resolved.is_relative_to(resolved_root):
        logger.warning("Rejected path escaping project root, length=%d", len(relative_path))
        raise UnsafePathError(relative_path, "outside project root")
    return resolved
