import threading
from pathlib import Path

import pytest

from document_conversion_platform.db.idempotency_store import UNAVAILABLE, IdempotencyStore
from document_conversion_platform.db.state_tracker import FileState, StateTracker


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRedisList:
    """The subset of the redis list commands used by WorkQueue"""

    def __init__(self):
        self.lists = {}
        self._cond = threading.Condition()

    def rpush(self, name, value):
        with self._cond:
            self.lists.setdefault(name, []).append(value)
            self._cond.notify_all()
            return len(self.lists[name])

    def blpop(self, name, timeout=0):
        with self._cond:
            self._cond.wait_for(lambda: self.lists.get(name), timeout=timeout)
            items = self.lists.get(name)
            if not items:
                return None
            return name, items.pop(0)

    def llen(self, name):
        with self._cond:
            return len(self.lists.get(name, []))


class InMemoryIdempotencyStore(IdempotencyStore):
    """Local store honouring TTLs against a fake clock"""

    def __init__(self, clock=None):
        self.clock = clock or FakeClock()
        self.records = {}
        self.available = True
        self.opened = False
        self.client = FakeRedisList()
        self._lock = threading.Lock()

    def open(self):
        self.opened = True

    def close(self):
        self.opened = False

    def ping(self):
        return self.available

    def _live(self, key):
        record = self.records.get(key)
        if record is None:
            return None
        value, expires_at = record
        if self.clock() >= expires_at:
            del self.records[key]
            return None
        return value

    def set_if_absent(self, key, value, ttl):
        with self._lock:
            if not self.available or self._live(key) is not None:
                return False
            self.records[key] = (value, self.clock() + ttl)
            return True

    def set(self, key, value, ttl):
        with self._lock:
            if not self.available:
                return False
            self.records[key] = (value, self.clock() + ttl)
            return True

    def exists(self, key):
        with self._lock:
            if not self.available:
                return UNAVAILABLE
            return self._live(key) is not None

    def get(self, key):
        with self._lock:
            if not self.available:
                return UNAVAILABLE
            return self._live(key)

    def delete(self, key):
        with self._lock:
            if not self.available:
                return False
            return self.records.pop(key, None) is not None


class FakeConverter:
    """Writes the source bytes to the target, optionally failing"""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def convert(self, source, target):
        from document_conversion_platform.ingest_tools.converters import ConversionError

        source = Path(source)
        target = Path(target)
        with self._lock:
            self.calls.append((source, target))
        if self.fail:
            raise ConversionError("converter crashed")
        target.write_bytes(b"converted:" + source.read_bytes())
        return target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryIdempotencyStore(clock)


@pytest.fixture
def processed_tracker(store):
    return StateTracker(store, "processed", claim_state=FileState.PROCESSING, ttl=100)


@pytest.fixture
def read_tracker(store):
    return StateTracker(store, "read", claim_state=FileState.READ, ttl=100)


@pytest.fixture
def redis_list():
    return FakeRedisList()


@pytest.fixture
def fake_converter():
    return FakeConverter()
