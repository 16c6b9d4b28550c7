"""Advisory inter-process lock guarding every write to a profile directory."""

from __future__ import annotations

import fcntl
import logging
import threading
import time
from pathlib import Path
from typing import IO, Optional

from ..exceptions import StoreIOFailure, StoreLocked

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05


class FileLock:
    """Re-entrant exclusive ``flock`` on a sidecar lock file with a bounded wait.

    The lock lives on its own file because the log itself is replaced by
    atomic rename on every write. Threads sharing one instance queue on an
    in-process RLock before the ``flock`` is taken.
    """

    def __init__(self, path: Path, timeout_ms: int = 5000) -> None:
        self._path = Path(path)
        self._timeout_ms = timeout_ms
        self._handle: Optional[IO[bytes]] = None
        self._depth = 0
        self._owner = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        if not self._owner.acquire(timeout=self._timeout_ms / 1000.0):
            logger.warning("Timed out after %d ms waiting for %s in this process", self._timeout_ms, self._path)
            raise StoreLocked(str(self._path), self._timeout_ms)
        if self._depth:
            self._depth += 1
            return
        try:
            handle = self._path.open("a+b")
        except OSError as exc:
            self._owner.release()
            raise StoreIOFailure(f"Cannot open lock file {self._path}: {exc}") from exc

        deadline = time.monotonic() + self._timeout_ms / 1000.0
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    self._owner.release()
                    logger.warning("Timed out after %d ms waiting for %s", self._timeout_ms, self._path)
                    raise StoreLocked(str(self._path), self._timeout_ms)
                time.sleep(POLL_INTERVAL_SECONDS)
        self._handle = handle
        self._depth = 1

    def release(self) -> None:
        if not self._depth:
            return
        self._depth -= 1
        try:
            if self._depth:
                return
            handle, self._handle = self._handle, None
            if handle is not None:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                finally:
                    handle.close()
        finally:
            self._owner.release()

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


__all__ = ["FileLock", "POLL_INTERVAL_SECONDS"]
