from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .artifacts import ArtifactStore
from .config import SWEEP_INTERVAL_SECONDS
from .registry import Clock, MetadataRegistry, now_ms
from .security import normalize_artifact_id


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    expired: int = 0
    malformed: int = 0

    @property
    def removed(self) -> int:
        return self.expired + self.malformed


@dataclass(frozen=True)
class ReconcileResult:
    orphan_files: int = 0
    dangling_records: int = 0


class ReclamationSweeper:
    def __init__(self, store: ArtifactStore, registry: MetadataRegistry, clock: Clock = now_ms) -> None:
        self.store = store
        self.registry = registry
        self.clock = clock

    def sweep(self) -> SweepResult:
        """Delete expired artifacts and their records.

        Bytes go first, then the record. The table is written at most once
        per pass, and not at all when nothing was removed. The registry lock
        is held for the whole pass so a concurrent access check on the same
        id sees either the old state or the new one.
        """
        expired = 0
        malformed = 0
        with self.registry.lock:
            now = self.clock()
            doomed: list[str] = []
            for artifact_id, record in self.registry.scan_all():
                if record is None:
                    doomed.append(artifact_id)
                    malformed += 1
                    continue
                if record.is_expired(now):
                    try:
                        self.store.delete(record.stored_name)
                    except (OSError, ValueError):
                        # Record stays until its bytes can be removed.
                        logger.exception("Could not delete expired artifact %s; retrying next pass", artifact_id)
                        continue
                    doomed.append(artifact_id)
                    expired += 1
            if doomed:
                self.registry.remove_many_and_flush(doomed)

        result = SweepResult(expired=expired, malformed=malformed)
        if result.removed:
            logger.info("Sweep removed %d expired and %d malformed records", expired, malformed)
        return result

    def reconcile(self) -> ReconcileResult:
        """Restore the record <-> bytes pairing after a restart.

        Artifact files with no record are deleted. Records whose bytes are
        gone are a fault: they are logged and dropped.
        """
        orphan_files = 0
        with self.registry.lock:
            for tmp in self.store.iter_stale_temp_files():
                tmp.unlink(missing_ok=True)

            known = {record.stored_name for _, record in self.registry.scan_all() if record is not None}
            for name in list(self.store.iter_names()):
                if name in known or not _looks_like_artifact(name):
                    continue
                self.store.delete(name)
                orphan_files += 1

            dangling = [
                artifact_id
                for artifact_id, record in self.registry.scan_all()
                if record is not None and not self.store.exists(record.stored_name)
            ]
            for artifact_id in dangling:
                logger.error("Artifact %s is registered but its bytes are missing; dropping record", artifact_id)
            self.registry.remove_many_and_flush(dangling)

        if orphan_files:
            logger.warning("Removed %d orphan artifact files", orphan_files)
        return ReconcileResult(orphan_files=orphan_files, dangling_records=len(dangling))


def _looks_like_artifact(name: str) -> bool:
    stem = name.split(".", 1)[0]
    try:
        normalize_artifact_id(stem)
    except ValueError:
        return False
    return True


async def sweep_forever(sweeper: ReclamationSweeper, interval_seconds: float = SWEEP_INTERVAL_SECONDS) -> None:
    # Keep the loop alive through unexpected filesystem errors.
    while True:
        await asyncio.sleep(max(1, interval_seconds))
        try:
            await asyncio.to_thread(sweeper.sweep)
        except Exception:
            logger.exception("Sweep pass failed")
