# storage.py - JSON blob persistence with an ordered background writer
"""
File-backed storage for named JSON documents.

Names are relative paths under the storage root (e.g. "chat_data/chat-data-42.json").
Reads are synchronous. Writes can be synchronous (save) or queued (save_async);
queued writes are applied by one worker thread in submission order, so a later
snapshot of a document can never be overwritten by an earlier one.
"""
import json
import os
import queue
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

from kiew.errors import StorageError

logger = logging.getLogger(__name__)

_STOP = object()


class Storage:
    def __init__(self, base_dir):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._queue = queue.Queue()
        self._worker = None
        self._worker_lock = threading.Lock()
        logger.info(f"[STORAGE] Storage root: {self.base_dir}")

    def _path(self, name: str) -> Path:
        path = (self.base_dir / name).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise StorageError(f"Refusing to access {name!r} outside storage root")
        return path

    def exists(self, name: str) -> bool:
        return self._path(name).exists()

    def load(self, name: str, default: Any = None) -> Any:
        """Load a JSON document. Missing files return default; broken ones raise StorageError."""
        path = self._path(name)
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupted JSON in {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def save(self, name: str, data: Any):
        """Write a JSON document atomically (temp file + rename)."""
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def delete(self, name: str) -> bool:
        path = self._path(name)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e

    # -------------------------------------------------------------------------
    # Background writes
    # -------------------------------------------------------------------------

    def save_async(self, name: str, data: Any):
        """
        Queue a write and return immediately.

        Callers must hand over a snapshot they no longer mutate. Failures are
        logged by the writer thread; nothing is raised back to the caller.
        """
        self._ensure_worker()
        self._queue.put((name, data))

    def _ensure_worker(self):
        with self._worker_lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run_writer, name="kiew-storage-writer", daemon=True)
                self._worker.start()

    def _run_writer(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                name, data = item
                self.save(name, data)
                logger.debug(f"[STORAGE] Saved {name}")
            except StorageError as e:
                logger.error(f"[STORAGE] Background save failed: {e}")
            finally:
                self._queue.task_done()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until queued writes are on disk. Returns False on timeout."""
        if timeout is None:
            self._queue.join()
            return True
        done = threading.Event()

        def _wait():
            self._queue.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        return done.wait(timeout)

    def close(self, timeout: float = 5.0):
        """Drain pending writes and stop the writer thread."""
        with self._worker_lock:
            worker = self._worker
            self._worker = None
        if worker is not None and worker.is_alive():
            self._queue.put(_STOP)
            worker.join(timeout)
