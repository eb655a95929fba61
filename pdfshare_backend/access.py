from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from .artifacts import ArtifactStore
from .errors import Expired, FileMissing, NotFound
from .registry import AccessRecord, Clock, MetadataRegistry, now_ms
from .security import normalize_artifact_id, sanitize_filename, tokens_match


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileGrant:
    """An open handle on the artifact bytes.

    The handle is opened while the registry lock is held, so the bytes stay
    readable even if a sweep unlinks the file before the response is sent.
    """

    record: AccessRecord
    stream: BinaryIO
    size: int
    download_name: str

    def iter_chunks(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        try:
            while True:
                chunk = self.stream.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.stream.close()


class AccessGuard:
    """Validates id + token + expiry before anything touches the store.

    Every failure is an AccessDenied subclass; callers answer all of them the
    same way.
    """

    def __init__(
        self,
        store: ArtifactStore,
        registry: MetadataRegistry,
        clock: Clock = now_ms,
        purge_on_expiry: bool = True,
    ) -> None:
        self.store = store
        self.registry = registry
        self.clock = clock
        self.purge_on_expiry = purge_on_expiry

    def check(self, artifact_id: str, token: Optional[str]) -> AccessRecord:
        try:
            artifact_id = normalize_artifact_id(artifact_id)
        except ValueError:
            raise NotFound()

        record = self.registry.get(artifact_id)
        if record is None:
            raise NotFound()
        if not tokens_match(token or "", record.token):
            raise NotFound()
        if record.is_expired(self.clock()):
            if self.purge_on_expiry:
                self._purge(record)
            raise Expired()
        return record

    def open_file(self, artifact_id: str, token: Optional[str]) -> FileGrant:
        with self.registry.lock:
            record = self.check(artifact_id, token)
            try:
                stream = self.store.open(record.stored_name)
            except (FileNotFoundError, IsADirectoryError, ValueError):
                logger.error("Artifact %s is registered but its bytes are missing", record.id)
                raise FileMissing()
        return FileGrant(
            record=record,
            stream=stream,
            size=os.fstat(stream.fileno()).st_size,
            download_name=sanitize_filename(record.original_name),
        )

    def _purge(self, record: AccessRecord) -> None:
        # Failures are left for the next sweep; the request is denied either way.
        try:
            with self.registry.lock:
                if self.registry.get(record.id) is None:
                    return
                self.store.delete(record.stored_name)
                self.registry.delete_and_flush(record.id)
        except (OSError, ValueError):
            logger.exception("Could not purge expired artifact %s", record.id)
            return
        logger.info("Purged expired artifact %s on access", record.id)
