import io
import logging
import os
import posixpath
import shutil
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, BinaryIO, Optional, Type, Union


# Entries larger than this are spooled to disk instead of memory
DEFAULT_MEMORY_THRESHOLD = 1 << 30

_MAX_PREFIX_LENGTH = 100


class ArchiveEntryBuffer:
    """A re-readable copy of one file from an image archive.

    Archive entries can only be read once, in order, but every parser needs its own reader positioned at the start of
    the file. Small entries are kept in memory; large entries are spooled to a temporary file which is deleted by
    release().
    """

    def __init__(self, data: Optional[bytes] = None, temp_file_path: Optional[Path] = None) -> None:
        if (data is None) == (temp_file_path is None):
            raise ValueError("Exactly one of data or temp_file_path must be supplied")
        self._data = data if data is not None else b""
        self._temp_file_path = temp_file_path

    def __enter__(self) -> "ArchiveEntryBuffer":
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_value: Optional[BaseException], traceback: Optional[Any]
    ) -> None:
        self.release()

    @classmethod
    def from_stream(
        cls,
        entry_name: str,
        size: int,
        stream: BinaryIO,
        scratch_dir: Optional[Union[str, Path]] = None,
        memory_threshold: int = DEFAULT_MEMORY_THRESHOLD,
    ) -> "ArchiveEntryBuffer":
        if size <= memory_threshold:
            return cls(data=stream.read())

        logging.debug(f"Spooling {entry_name} ({size} bytes) to a temporary file")
        temp_file = NamedTemporaryFile(
            mode="wb", delete=False, dir=scratch_dir, prefix=_flatten_entry_name(entry_name) + "-"
        )
        # A truncated archive raises tarfile.ReadError, which is not an OSError
        try:
            with temp_file:
                shutil.copyfileobj(stream, temp_file)
        except BaseException:
            os.remove(temp_file.name)
            raise

        return cls(temp_file_path=Path(temp_file.name))

    @property
    def is_spooled(self) -> bool:
        return self._temp_file_path is not None

    @property
    def temp_file_path(self) -> Optional[Path]:
        return self._temp_file_path

    def open(self) -> BinaryIO:
        """Return a new reader positioned at the start of the entry; the caller must close it.
        """
        if self._temp_file_path is not None:
            return open(self._temp_file_path, mode="rb")

        return io.BytesIO(self._data)

    def release(self) -> None:
        if self._temp_file_path is None:
            return
        # release() may be called more than once
        if self._temp_file_path.exists():
            os.remove(self._temp_file_path)


def _flatten_entry_name(entry_name: str) -> str:
    # The temporary file must stay in the scratch directory whatever the entry's path looks like
    normalized = posixpath.normpath("/" + entry_name.lstrip("/")).lstrip("/")
    flattened = normalized.replace("/", "-").replace(os.sep, "-")
    return flattened[-_MAX_PREFIX_LENGTH:] or "entry"
