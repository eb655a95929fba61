from __future__ import annotations

import os
from pathlib import Path


# Project root (pdfshare_backend/ -> project root).
BASE_DIR = Path(__file__).resolve().parent.parent


def _path_from_env(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return Path(raw).resolve()
    return default.resolve()


# Where artifact bytes live. Override with PDFSHARE_UPLOAD_DIR.
UPLOAD_DIR = _path_from_env("PDFSHARE_UPLOAD_DIR", BASE_DIR / "uploads")

# Flat metadata table, rewritten on every mutation.
META_FILE = _path_from_env("PDFSHARE_META_FILE", BASE_DIR / "metadata.json")

PORT = int(os.environ.get("PORT", "3000"))

# Prefix for composed viewer links, e.g. "https://share.example.com".
BASE_URL = os.environ.get("BASE_URL", "").rstrip("/")

SWEEP_INTERVAL_SECONDS = int(os.environ.get("PDFSHARE_SWEEP_INTERVAL_SECONDS", "60"))

DEFAULT_LIFETIME_MINUTES = int(os.environ.get("PDFSHARE_DEFAULT_LIFETIME_MINUTES", "60"))
MIN_LIFETIME_MINUTES = 1

# Upload limit (best-effort; also enforced by proxy typically).
MAX_UPLOAD_BYTES = int(os.environ.get("PDFSHARE_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))  # 50MB

LOG_LEVEL = os.environ.get("PDFSHARE_LOG_LEVEL", "INFO").upper()

PDF_MEDIA_TYPE = "application/pdf"
DEFAULT_EXTENSION = ".pdf"
