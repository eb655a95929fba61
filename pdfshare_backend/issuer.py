from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .artifacts import ArtifactStore
from .config import DEFAULT_LIFETIME_MINUTES, MAX_UPLOAD_BYTES, MIN_LIFETIME_MINUTES
from .errors import MissingPayload, PayloadTooLarge, StorageFailure, UnsupportedType
from .registry import AccessRecord, Clock, MetadataRegistry, now_ms
from .security import new_access_token, new_artifact_id, safe_extension


logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class IssuedLink:
    artifact_id: str
    token: str
    viewer_url: str
    expires_at: int


def parse_lifetime_minutes(requested: object, default: int = DEFAULT_LIFETIME_MINUTES) -> int:
    """Lifetime in minutes from a raw form value.

    Reads the leading integer ("15abc" -> 15, "2.9" -> 2). Missing or
    non-numeric input falls back to `default`; the result is never below
    one minute.
    """
    if isinstance(requested, bool):
        requested = None
    if isinstance(requested, int):
        minutes = requested
    else:
        match = _LEADING_INT_RE.match(str(requested)) if requested is not None else None
        minutes = int(match.group(1)) if match else default
    return max(MIN_LIFETIME_MINUTES, minutes)


def is_pdf_content_type(content_type: Optional[str]) -> bool:
    return "pdf" in (content_type or "").lower()


def viewer_path(artifact_id: str, token: str) -> str:
    return f"/view/{artifact_id}?t={token}"


class CapabilityIssuer:
    """Turns an upload into a stored artifact, a registered record and a link."""

    def __init__(
        self,
        store: ArtifactStore,
        registry: MetadataRegistry,
        base_url: str = "",
        clock: Clock = now_ms,
        max_bytes: int = MAX_UPLOAD_BYTES,
    ) -> None:
        self.store = store
        self.registry = registry
        self.base_url = (base_url or "").rstrip("/")
        self.clock = clock
        self.max_bytes = max_bytes

    def issue(
        self,
        data: Optional[bytes],
        content_type: Optional[str],
        original_name: Optional[str],
        requested_minutes: object = None,
    ) -> IssuedLink:
        if data is None:
            raise MissingPayload()
        # Rejected uploads are never written to the store.
        if not is_pdf_content_type(content_type):
            raise UnsupportedType()
        if len(data) > self.max_bytes:
            raise PayloadTooLarge()

        minutes = parse_lifetime_minutes(requested_minutes)
        artifact_id = new_artifact_id()
        token = new_access_token()
        stored_name = artifact_id + safe_extension(original_name)

        try:
            self.store.create(stored_name, data)
        except (OSError, ValueError) as exc:
            logger.error("Could not store artifact %s: %s", artifact_id, exc)
            raise StorageFailure() from exc

        record = AccessRecord(
            id=artifact_id,
            stored_name=stored_name,
            original_name=original_name or "",
            token=token,
            expires_at=self.clock() + minutes * 60 * 1000,
        )
        try:
            self.registry.upsert_and_flush(record)
        except OSError as exc:
            # No record may point at bytes we are about to drop, and vice versa.
            logger.error("Could not persist metadata for %s: %s", artifact_id, exc)
            self.store.delete(stored_name)
            raise StorageFailure() from exc

        logger.info("Issued artifact %s (%d bytes, %d min)", artifact_id, len(data), minutes)
        return IssuedLink(
            artifact_id=artifact_id,
            token=token,
            viewer_url=self.base_url + viewer_path(artifact_id, token),
            expires_at=record.expires_at,
        )
