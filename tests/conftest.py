"""Pytest configuration and fixtures for tests."""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Keep the module-level app in server.py away from the project tree.
_IMPORT_ROOT = Path(tempfile.mkdtemp(prefix="pdfshare-tests-"))
os.environ.setdefault("PDFSHARE_UPLOAD_DIR", str(_IMPORT_ROOT / "uploads"))
os.environ.setdefault("PDFSHARE_META_FILE", str(_IMPORT_ROOT / "metadata.json"))

from pdfshare_backend.artifacts import ArtifactStore  # noqa: E402
from pdfshare_backend.registry import AccessRecord, MetadataRegistry  # noqa: E402
from pdfshare_backend.security import new_access_token, new_artifact_id  # noqa: E402


PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "uploads")


@pytest.fixture
def registry(tmp_path):
    reg = MetadataRegistry(tmp_path / "metadata.json")
    reg.load()
    return reg


@pytest.fixture
def make_record(store, registry, clock):
    """Register an artifact directly, bypassing the upload path."""

    def _make(expires_in_ms: int = 60_000, original_name: str = "report.pdf", data: bytes = PDF_BYTES):
        artifact_id = new_artifact_id()
        record = AccessRecord(
            id=artifact_id,
            stored_name=f"{artifact_id}.pdf",
            original_name=original_name,
            token=new_access_token(),
            expires_at=clock() + expires_in_ms,
        )
        store.create(record.stored_name, data)
        registry.upsert_and_flush(record)
        return record

    return _make


@pytest.fixture
def app(tmp_path, clock):
    from server import create_app

    return create_app(
        upload_dir=tmp_path / "uploads",
        meta_file=tmp_path / "metadata.json",
        base_url="https://share.test",
        clock=clock,
        max_upload_bytes=1024 * 1024,
    )


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    # No context manager: the lifespan (and its periodic sweep) stays off.
    return TestClient(app)
