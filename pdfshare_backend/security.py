from __future__ import annotations

import re
import secrets
import uuid
from pathlib import Path
from urllib.parse import quote

from .config import DEFAULT_EXTENSION


_ARTIFACT_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")
_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,16}$")

# 18 random bytes -> 36 hex chars, 144 bits.
TOKEN_BYTES = 18


def new_artifact_id() -> str:
    return str(uuid.uuid4())


def new_access_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def normalize_artifact_id(artifact_id: str) -> str:
    """Validate and normalize an artifact id.

    Ids are canonical UUID4 strings; anything else is rejected before it gets
    near the registry or the filesystem.
    """
    if not isinstance(artifact_id, str):
        raise ValueError("Invalid artifact id")
    artifact_id = artifact_id.strip()
    if not _ARTIFACT_ID_RE.match(artifact_id):
        raise ValueError("Invalid artifact id")
    return str(uuid.UUID(artifact_id))


def tokens_match(supplied: str, expected: str) -> bool:
    """Timing-safe token comparison."""
    if not isinstance(supplied, str) or not isinstance(expected, str):
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def safe_extension(original_name: str | None) -> str:
    """Extension for the stored artifact name, taken from the client's filename.

    Only short alphanumeric suffixes survive; everything else becomes .pdf.
    """
    if not original_name:
        return DEFAULT_EXTENSION
    suffix = Path(original_name.replace("\\", "/")).suffix
    if not _EXTENSION_RE.match(suffix):
        return DEFAULT_EXTENSION
    return suffix.lower()


def sanitize_filename(name: str | None, fallback: str = "document.pdf") -> str:
    """Make a client-supplied filename safe for a Content-Disposition header.

    Strips directories, quotes, backslashes and control characters.
    """
    raw = str(name or "").replace("\\", "/").split("/")[-1]
    cleaned = "".join(ch for ch in raw if ch not in '"\\' and ch.isprintable()).strip()
    return cleaned or fallback


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when storing or serving artifacts.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def is_stored_name_for(artifact_id: str, stored_name: str) -> bool:
    """True if stored_name is artifact_id plus an acceptable extension."""
    if not artifact_id or not isinstance(stored_name, str) or not stored_name.startswith(artifact_id):
        return False
    return bool(_EXTENSION_RE.match(stored_name[len(artifact_id):])) and is_safe_basename(stored_name)


def inline_content_disposition(filename: str) -> str:
    """Content-Disposition for inline display; RFC 5987 form for non-plain names."""
    quoted = quote(filename)
    if quoted != filename:
        return f"inline; filename*=utf-8''{quoted}"
    return f'inline; filename="{filename}"'
