"""
Streaming ZIP archive writer.

ArchiveStream serializes entries into a single ZIP container and hands the
bytes to an async sink as they are produced. The container is written in
data-descriptor mode over an unseekable spool, so nothing is ever seeked
back and only the bytes of the current chunk are held in memory.

Archive format:
    Store-only (ZIP_STORED) by default; photo sessions are already
    compressed media, so deflating costs CPU and saves nothing.

Invariants:
    - Entries are appended in call order, one at a time
    - finalize() writes the central directory at most once
    - After abort() every append/finalize is a no-op and no byte reaches
      the sink any more
    - abort() after finalize() leaves the archive finalized

How to change safely:
    - Never make the spool seekable; zipfile would then rewrite local
      headers in place, which cannot work on a network stream
    - Keep the abort check before every sink write
    - Only zipfile calls may raise ArchiveWriteError; sink failures propagate
      as they are
"""

from __future__ import annotations

import logging
import time
import zipfile
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

from ..storage.base import ObjectContent
from .cancellation import AbortSignal
from .errors import ArchiveError, ArchiveWriteError

logger = logging.getLogger(__name__)

Sink = Callable[[bytes], Awaitable[None]]

# Without a known size the writer must reserve zip64 fields up front.
_ZIP64_THRESHOLD = int(zipfile.ZIP64_LIMIT / 1.05)

# Earliest timestamp a ZIP entry can carry.
_MIN_DATE_TIME = (1980, 1, 1, 0, 0, 0)


@contextmanager
def _writer_errors(name: str) -> Iterator[None]:
    """Report zipfile failures for one entry as ArchiveWriteError."""
    try:
        yield
    except (zipfile.LargeZipFile, ValueError, RuntimeError) as e:
        raise ArchiveWriteError(f"Failed to write entry {name}: {e}", details={"entry": name}) from e


class ArchiveState(Enum):
    """Lifecycle of an ArchiveStream."""

    OPEN = "open"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"
    ABORTED = "aborted"
    FAILED = "failed"


class ArchiveEvent(Enum):
    """Notifications emitted to listeners."""

    ERROR = "error"
    FINISH = "finish"
    ABORT = "abort"


class _Spool:
    """Unseekable write target for zipfile. Bytes accumulate until taken."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._discard = False

    def write(self, data: bytes) -> int:
        if not self._discard:
            self._buffer += data
        return len(data)

    def flush(self) -> None:
        pass

    def take(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    def discard(self) -> None:
        self._discard = True
        self._buffer.clear()


class ArchiveStream:
    """Append-only ZIP stream written to an async sink.

    Attributes:
        state: Current ArchiveState
        entry_names: Names appended so far, in order
        bytes_written: Bytes handed to the sink

    Example:
        >>> archive = ArchiveStream(response.write)
        >>> archive.add_listener(ArchiveEvent.FINISH, lambda _: print("done"))
        >>> await archive.append("a.jpg", content)
        >>> await archive.finalize()
    """

    def __init__(
        self,
        sink: Sink,
        signal: AbortSignal | None = None,
        compression: int = zipfile.ZIP_STORED,
    ) -> None:
        """Initialize the archive stream.

        Args:
            sink: Coroutine function receiving each produced byte chunk
            signal: Abort signal shared with the request; a private one is
                created if omitted
            compression: zipfile compression constant
        """
        self._sink = sink
        self._signal = signal or AbortSignal()
        self._compression = compression
        self._spool = _Spool()
        self._zip = zipfile.ZipFile(self._spool, mode="w", compression=compression)
        self._listeners: dict[ArchiveEvent, list[Callable[[Any], None]]] = {
            event: [] for event in ArchiveEvent
        }
        self.state = ArchiveState.OPEN
        self.entry_names: list[str] = []
        self.bytes_written = 0

        self._signal.add_callback(self._on_abort)

    @property
    def signal(self) -> AbortSignal:
        return self._signal

    @property
    def is_open(self) -> bool:
        return self.state is ArchiveState.OPEN

    def add_listener(self, event: ArchiveEvent, callback: Callable[[Any], None]) -> None:
        """Register a listener.

        ERROR receives the exception, FINISH receives the ArchiveStream,
        ABORT receives the abort reason.
        """
        self._listeners[event].append(callback)

    async def append(self, name: str, content: ObjectContent) -> bool:
        """Stream one object into the archive under ``name``.

        The content handle is always closed, whether or not it was appended.

        Args:
            name: Entry path inside the archive
            content: Object body to copy

        Returns:
            True if the entry was written, False if the archive no longer
            accepts entries (aborted, finalized or failed)

        Raises:
            ArchiveAborted: If aborted while this entry was being written
            ArchiveWriteError: If the ZIP writer failed
            FetchError: If reading the object body failed
        """
        try:
            if self.state is not ArchiveState.OPEN:
                logger.debug(
                    "Append ignored, archive not open",
                    extra={"entry": name, "state": self.state.value},
                )
                return False

            info = self._entry_info(name, content)
            force_zip64 = content.size is None or content.size > _ZIP64_THRESHOLD

            with _writer_errors(name):
                dest = self._zip.open(info, mode="w", force_zip64=force_zip64)
            try:
                await self._drain()
                async for chunk in content.chunks:
                    self._signal.raise_if_aborted()
                    with _writer_errors(name):
                        dest.write(chunk)
                    await self._drain()
            finally:
                with _writer_errors(name):
                    dest.close()

            # Data descriptor
            await self._drain()
            self.entry_names.append(name)
            return True

        except ArchiveWriteError as e:
            self._fail(e)
            raise
        finally:
            content.close()

    async def finalize(self) -> bool:
        """Write the central directory and seal the archive.

        Returns:
            True if this call finalized the archive, False if it was
            already finalized, aborted or failed

        Raises:
            ArchiveAborted: If aborted while the directory was being sent
            ArchiveWriteError: If the ZIP writer failed
        """
        if self.state is not ArchiveState.OPEN:
            logger.debug("Finalize ignored", extra={"state": self.state.value})
            return False

        self.state = ArchiveState.FINALIZING
        try:
            self._zip.close()
        except (zipfile.LargeZipFile, ValueError, RuntimeError) as e:
            error = ArchiveWriteError(f"Failed to write central directory: {e}")
            self._fail(error)
            raise error from e

        await self._drain()
        self.state = ArchiveState.FINALIZED
        self._emit(ArchiveEvent.FINISH, self)
        return True

    def abort(self, reason: str = "aborted") -> None:
        """Abort the archive. Idempotent, never raises."""
        self._signal.abort(reason)

    def _on_abort(self, reason: str) -> None:
        if self.state in (ArchiveState.OPEN, ArchiveState.FINALIZING):
            self.state = ArchiveState.ABORTED
            self._spool.discard()
            self._emit(ArchiveEvent.ABORT, reason)

    def _fail(self, error: ArchiveError) -> None:
        self.state = ArchiveState.FAILED
        self._spool.discard()
        self._emit(ArchiveEvent.ERROR, error)

    async def _drain(self) -> None:
        self._signal.raise_if_aborted()
        data = self._spool.take()
        if not data:
            return
        await self._sink(data)
        self.bytes_written += len(data)

    def _entry_info(self, name: str, content: ObjectContent) -> zipfile.ZipInfo:
        date_time = time.localtime()[:6]
        if content.last_modified is not None:
            date_time = content.last_modified.timetuple()[:6]
        if date_time < _MIN_DATE_TIME:
            date_time = _MIN_DATE_TIME

        info = zipfile.ZipInfo(filename=name, date_time=date_time)
        info.compress_type = self._compression
        info.external_attr = 0o644 << 16
        return info

    def _emit(self, event: ArchiveEvent, payload: Any) -> None:
        for callback in self._listeners[event]:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Archive {event.value} listener failed: {e}", exc_info=True)

