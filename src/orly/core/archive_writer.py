"""EPUB zip container."""

import io
import logging
import zipfile
from pathlib import PurePath
from typing import BinaryIO

from orly.errors import ArchiveWriteFailure, BuildStateError

log = logging.getLogger(__name__)

MIMETYPE_PATH = "mimetype"
MIMETYPE = b"application/epub+zip"

# Fixed member timestamp so identical input produces identical archives
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def archive_path(path: str | PurePath) -> str:
    """Member name with forward slashes, whatever the host convention."""
    if isinstance(path, PurePath):
        path = path.as_posix()
    return path.replace("\\", "/").lstrip("/")


class EpubArchive:
    """In-memory zip with the mimetype marker as first, uncompressed entry."""

    def __init__(self) -> None:
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_DEFLATED)
        # Some readers choke on archive comments
        self._zip.comment = b""
        self._names: list[str] = []
        self._finalized = False
        self._add(MIMETYPE_PATH, MIMETYPE, zipfile.ZIP_STORED)

    @property
    def names(self) -> list[str]:
        """Member names in write order."""
        return list(self._names)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def write(self, path: str | PurePath, content: bytes | str) -> None:
        """Add one member.

        Raises:
            BuildStateError: If the archive was already finalized.
            ArchiveWriteFailure: If the path is the marker entry or already written.
        """
        if self._finalized:
            raise BuildStateError(f"Cannot write {path}: archive already finalized")
        name = archive_path(path)
        if name == MIMETYPE_PATH:
            raise ArchiveWriteFailure(name, "the mimetype entry is written automatically")
        if name in self._names:
            raise ArchiveWriteFailure(name, "entry already exists")
        if isinstance(content, str):
            content = content.encode("utf-8")
        self._add(name, content, zipfile.ZIP_DEFLATED)

    def finalize(self, sink: BinaryIO) -> int:
        """Close the archive and copy it to sink. Returns the number of bytes written."""
        if self._finalized:
            raise BuildStateError("Archive already finalized")
        self._finalized = True
        try:
            self._zip.close()
        except (OSError, ValueError) as e:
            raise ArchiveWriteFailure("<archive>", f"error writing zip file: {e}") from e

        data = self._buffer.getvalue()
        try:
            sink.write(data)
            sink.flush()
        except OSError as e:
            raise ArchiveWriteFailure(str(getattr(sink, "name", "<sink>")), str(e)) from e
        log.debug(f"Wrote {len(self._names)} entries, {len(data)} bytes")
        return len(data)

    def _add(self, name: str, content: bytes, compression: int) -> None:
        info = zipfile.ZipInfo(name, date_time=ENTRY_DATE_TIME)
        info.compress_type = compression
        info.external_attr = 0o644 << 16
        try:
            self._zip.writestr(info, content)
        except (OSError, ValueError) as e:
            raise ArchiveWriteFailure(name, str(e)) from e
        self._names.append(name)
