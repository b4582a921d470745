"""
Process-local idempotent filter for the ingestion router.

Remembers the most recently seen filenames so repeated directory scans can
skip them without a round-trip to Redis. The filter is optionally persisted
to a file with one filename per line so it survives restarts. Names are
stored backslash-escaped so line breaks inside a filename survive reloads.
"""
import logging
import os
import threading
from collections import OrderedDict
from pathlib import Path

logger = logging.getLogger(__name__)


def _encode(name):
    return name.encode("unicode_escape").decode("ascii")


def _decode(line):
    return line.encode("ascii").decode("unicode_escape")


class LocalIdempotentFilter:
    """Bounded LRU set of filenames, optionally backed by a file"""

    def __init__(self, path=None, max_size=1000):
        """
        Args:
            path: File persisting the filter, or None for memory only
            max_size: Number of filenames kept before the oldest are evicted
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.path = Path(path) if path else None
        self.max_size = max_size
        self._entries = OrderedDict()
        self._lock = threading.Lock()
        self._load()

    def _load(self):
        if self.path is None or not self.path.exists():
            return
        with open(self.path, 'r', encoding='utf-8') as f:
            for line in f:
                name = _decode(line.rstrip("\n"))
                if name:
                    self._entries[name] = None
                    self._entries.move_to_end(name)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
        logger.info(f"event=local_filter_loaded path={self.path} entries={len(self._entries)}")

    def _append(self, name):
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(_encode(name) + "\n")

    def _rewrite(self):
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            for name in self._entries:
                f.write(_encode(name) + "\n")
        os.replace(tmp_path, self.path)

    def contains(self, name):
        with self._lock:
            if name in self._entries:
                self._entries.move_to_end(name)
                return True
            return False

    __contains__ = contains

    def add(self, name):
        """Record name. Returns False if it was already present."""
        with self._lock:
            if name in self._entries:
                self._entries.move_to_end(name)
                return False
            self._entries[name] = None
            if len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._rewrite()
            else:
                self._append(name)
            return True

    def remove(self, name):
        with self._lock:
            if name not in self._entries:
                return False
            del self._entries[name]
            self._rewrite()
            return True

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._rewrite()

    def __len__(self):
        with self._lock:
            return len(self._entries)
