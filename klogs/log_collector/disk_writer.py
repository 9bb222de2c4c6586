"""Persist container log streams to per-container files."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Protocol

import structlog

from ..errors import FetchError, WriteError
from .models import TaskOutcome, TaskStatus, log_file_name

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 4096

ProgressCallback = Callable[[int], None]


class ByteStream(Protocol):
    def read(self, size: int) -> bytes: ...

    def close(self) -> None: ...


class DiskWriter:
    """Tees log streams into ``{output_dir}/{pod}-{container}.log`` files.

    A stream is probed for one byte before anything touches the filesystem,
    so pods without logs leave no empty files (or directories) behind.
    """

    def __init__(self, output_dir: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.output_dir = Path(output_dir)
        self.chunk_size = chunk_size

    def target_path(self, pod_name: str, container_name: str) -> Path:
        return self.output_dir / log_file_name(pod_name, container_name)

    def consume(
        self,
        stream: ByteStream,
        pod_name: str,
        container_name: str,
        on_progress: Optional[ProgressCallback] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> TaskOutcome:
        """Copy ``stream`` to disk until end of data or until ``stop_event`` is set.

        Task-scoped failures never raise; they come back as a ``FAILED``
        outcome. The stream is closed on every path.
        """
        target = self.target_path(pod_name, container_name)
        written = 0
        try:
            probe = self._read(stream, 1, stop_event)
            if not probe:
                logger.warning("Empty logs", log_name=target.name)
                return TaskOutcome(pod_name, container_name, TaskStatus.EMPTY)

            with self._create(target, pod_name, container_name) as handle:
                written = self._write(handle, probe, target, pod_name, container_name)
                self._report(on_progress, written, target)

                while not _stopped(stop_event):
                    chunk = self._read(stream, self.chunk_size, stop_event)
                    if not chunk:
                        break
                    written += self._write(handle, chunk, target, pod_name, container_name)
                    self._report(on_progress, written, target)

            logger.debug("Saved logs", path=str(target), bytes_written=written)
            return TaskOutcome(pod_name, container_name, TaskStatus.WRITTEN, bytes_written=written, path=str(target))

        except (FetchError, WriteError) as e:
            logger.error("Log task failed", pod=pod_name, container=container_name, error=e.reason)
            return TaskOutcome(pod_name, container_name, TaskStatus.FAILED, bytes_written=written, reason=e.reason)
        except OSError as e:
            # close() of the log file
            logger.error("Log task failed", pod=pod_name, container=container_name, error=str(e))
            return TaskOutcome(pod_name, container_name, TaskStatus.FAILED, bytes_written=written, reason=str(e))
        finally:
            stream.close()

    @staticmethod
    def _read(stream: ByteStream, size: int, stop_event: Optional[threading.Event]) -> bytes:
        try:
            return stream.read(size)
        except FetchError:
            # An aborted stream errors out; after cancellation that is a normal end.
            if _stopped(stop_event):
                return b""
            raise

    def _create(self, target: Path, pod_name: str, container_name: str) -> BinaryIO:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            return open(target, "wb")
        except OSError as e:
            raise WriteError(pod_name, container_name, f"cannot create {target}: {e}") from e

    @staticmethod
    def _write(handle: BinaryIO, data: bytes, target: Path, pod_name: str, container_name: str) -> int:
        try:
            handle.write(data)
            handle.flush()
        except OSError as e:
            raise WriteError(pod_name, container_name, f"cannot write {target}: {e}") from e
        return len(data)

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], written: int, target: Path) -> None:
        if on_progress is None:
            return
        try:
            on_progress(written)
        except Exception as e:
            logger.warning("Progress callback failed", log_name=target.name, error=str(e))


def _stopped(stop_event: Optional[threading.Event]) -> bool:
    return stop_event is not None and stop_event.is_set()
