from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator

from .security import is_safe_basename, safe_join


_TMP_PREFIX = ".upload-"
_TMP_SUFFIX = ".tmp"


class ArtifactStore:
    """Artifact bytes on disk, one flat file per stored name.

    Writes go to a temp file in the same directory and are renamed into
    place, so readers see either the whole artifact or nothing.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, stored_name: str) -> Path:
        if not is_safe_basename(stored_name):
            raise ValueError("Invalid stored name")
        return safe_join(self.root, stored_name)

    def create(self, stored_name: str, data: bytes) -> Path:
        """Write-once creation. Raises FileExistsError if the name is taken."""
        dest = self.path_for(stored_name)
        if dest.exists():
            raise FileExistsError(stored_name)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.root), prefix=_TMP_PREFIX, suffix=_TMP_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, dest)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        return dest

    def exists(self, stored_name: str) -> bool:
        try:
            return self.path_for(stored_name).is_file()
        except ValueError:
            return False

    def read(self, stored_name: str) -> bytes:
        return self.path_for(stored_name).read_bytes()

    def open(self, stored_name: str) -> BinaryIO:
        return self.path_for(stored_name).open("rb")

    def delete(self, stored_name: str) -> bool:
        """Delete an artifact. Already absent counts as success.

        Returns True if a file was actually removed.
        """
        try:
            self.path_for(stored_name).unlink()
        except FileNotFoundError:
            return False
        return True

    def iter_names(self) -> Iterator[str]:
        """Stored names currently on disk. Hidden and in-flight temp files are skipped."""
        for child in self.root.iterdir():
            if not child.is_file():
                continue
            if child.name.startswith("."):
                continue
            yield child.name

    def iter_stale_temp_files(self) -> Iterator[Path]:
        for child in self.root.glob(f"{_TMP_PREFIX}*{_TMP_SUFFIX}"):
            if child.is_file():
                yield child
