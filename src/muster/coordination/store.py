"""Shared document store for Muster.

A shared document is a whole-file blob of nested mappings that every agent
reads and rewrites. There is no cross-process locking:

- Reads are served from a local copy until it is older than the refresh interval
- Writes persist the whole document synchronously; the last writer wins
- Persistence failures are logged and the last good copy is kept

Stale data is not reconciled. Everything stored here is short-lived and
expires instead.
"""

import copy
import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from ..exceptions import DocumentError, DocumentReadError, DocumentWriteError
from ..utils.logging import get_logger

logger = get_logger("store")

Document = dict[str, Any]
Clock = Callable[[], float]


class DocumentBackend(ABC):
    """Abstract base class for shared document backends."""

    @abstractmethod
    def load(self, name: str) -> Document | None:
        """Load a document. Returns None if it does not exist yet.

        Raises:
            DocumentReadError: If the document exists but cannot be read.
        """
        pass

    @abstractmethod
    def save(self, name: str, document: Document) -> None:
        """Persist a whole document, replacing any previous content.

        Raises:
            DocumentWriteError: If the document cannot be written.
        """
        pass


class InMemoryBackend(DocumentBackend):
    """In-memory backend for tests and single-process simulations.

    Several stores may share one backend to simulate agents racing over the
    same file.
    """

    def __init__(self):
        self._documents: dict[str, Document] = {}
        self._lock = threading.RLock()
        self.save_count = 0

    def load(self, name: str) -> Document | None:
        with self._lock:
            if name not in self._documents:
                return None
            return copy.deepcopy(self._documents[name])

    def save(self, name: str, document: Document) -> None:
        with self._lock:
            self._documents[name] = copy.deepcopy(document)
            self.save_count += 1

    def raw(self, name: str) -> Document | None:
        """Peek at the stored document without going through a store."""
        return self.load(name)


class FileBackend(DocumentBackend):
    """JSON file backend, one human-editable file per document."""

    def __init__(self, base_dir: str | Path):
        """Initialize file backend.

        Args:
            base_dir: Directory holding the document files.
        """
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, name: str) -> Path:
        """Get the file path for a document."""
        safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
        return self._base_dir / f"{safe_name}.json"

    def load(self, name: str) -> Document | None:
        with self._lock:
            path = self.path_for(name)
            if not path.exists():
                return None
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                raise DocumentReadError(name, e) from e
            if not isinstance(data, dict):
                raise DocumentReadError(name, ValueError("top level is not a mapping"))
            return data

    def save(self, name: str, document: Document) -> None:
        with self._lock:
            path = self.path_for(name)
            # Replace atomically so readers never see a torn file
            temp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2, sort_keys=True)
                os.replace(temp_path, path)
            except (OSError, TypeError, ValueError) as e:
                try:
                    temp_path.unlink()
                except OSError:
                    pass
                raise DocumentWriteError(name, e) from e


class SharedDocumentStore:
    """Cached read/write access to one named shared document.

    Example:
        store = SharedDocumentStore("team", FileBackend("./shared"), refresh_interval=0.25)

        doc = store.read()
        doc["members"]["alice"] = {...}
        store.write(doc)

        # Bypass the cache when freshness matters
        doc = store.read(force=True)
    """

    def __init__(
        self,
        name: str,
        backend: DocumentBackend,
        refresh_interval: float,
        clock: Clock,
        normalize: Callable[[Document], Document] | None = None,
    ):
        """Initialize the store.

        Args:
            name: Document name.
            backend: Persistence backend.
            refresh_interval: Max age in seconds of the cached copy served by read().
            clock: Time source in seconds.
            normalize: Fills in missing top-level tables after every load.
        """
        self._name = name
        self._backend = backend
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._normalize = normalize
        self._cache: Document = self._apply_normalize({})
        self._last_read: float | None = None
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    def _apply_normalize(self, document: Document) -> Document:
        if self._normalize is None:
            return document
        return self._normalize(document)

    def _cache_fresh(self, now: float) -> bool:
        return self._last_read is not None and now - self._last_read < self._refresh_interval

    def read(self, force: bool = False) -> Document:
        """Read the document.

        Args:
            force: Skip the local cache and load from the backend.

        Returns:
            A private copy of the document; mutate it freely and pass it to write().
        """
        with self._lock:
            now = self._clock()
            if not force and self._cache_fresh(now):
                return copy.deepcopy(self._cache)

            try:
                loaded = self._backend.load(self._name)
            except DocumentError as e:
                logger.error("Keeping last good copy of '%s': %s", self._name, e)
            else:
                self._cache = self._apply_normalize(loaded if loaded is not None else {})

            # A failed load also counts as a read so a broken file is not
            # retried on every tick
            self._last_read = now
            return copy.deepcopy(self._cache)

    def write(self, document: Document) -> bool:
        """Persist the whole document and refresh the local cache.

        Args:
            document: Full document content.

        Returns:
            True if the backend accepted the write.
        """
        with self._lock:
            self._cache = copy.deepcopy(document)
            self._last_read = self._clock()
            try:
                self._backend.save(self._name, self._cache)
            except DocumentError as e:
                logger.error("Write of '%s' failed, keeping it in memory: %s", self._name, e)
                return False
            return True

    def invalidate(self) -> None:
        """Expire the cached copy so the next read goes to the backend."""
        with self._lock:
            self._last_read = None
