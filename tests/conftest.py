"""Shared fixtures for auditfeed tests."""

import queue
import socket
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from auditfeed.config import Settings

_CLOSED = object()


class FakeRegistration:
    """In-memory stand-in for WatchRegistration; batches are pushed by the test."""

    def __init__(self, directory: Path, rearm: bool = True):
        self.directory = Path(directory)
        self.rearm = rearm
        self.q: "queue.Queue[Any]" = queue.Queue()
        self.opened = False
        self.closed = False
        self.close_calls = 0

    def push(self, *names: str) -> None:
        self.q.put([str(self.directory / n) for n in names])

    def open(self) -> None:
        self.opened = True

    def poll(self) -> Optional[List[Any]]:
        try:
            batch = self.q.get_nowait()
        except queue.Empty:
            return None
        return [] if batch is _CLOSED else batch

    def take(self) -> List[Any]:
        batch = self.q.get()
        return [] if batch is _CLOSED else batch

    def reset(self) -> bool:
        return self.rearm and not self.closed

    def close(self) -> None:
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self.q.put(_CLOSED)


class RegistrationFactory:
    def __init__(self, batches=(), rearm: bool = True):
        self.batches = list(batches)
        self.rearm = rearm
        self.last: Optional[FakeRegistration] = None

    def __call__(self, directory: Path) -> FakeRegistration:
        reg = FakeRegistration(directory, rearm=self.rearm)
        for batch in self.batches:
            reg.push(*batch)
        self.last = reg
        return reg


class Recorder:
    """Thread-safe emit callback."""

    def __init__(self):
        self.items: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def __call__(self, item: Dict[str, Any]) -> None:
        with self._lock:
            self.items.append(item)

    def __len__(self) -> int:
        with self._lock:
            return len(self.items)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def dirs(tmp_path: Path):
    data = tmp_path / "data"
    data.mkdir()
    return data, tmp_path / "meta"


@pytest.fixture
def settings(dirs) -> Settings:
    data, meta = dirs
    return Settings(
        directory=str(data),
        meta_dir=str(meta),
        with_auxiliary_service=False,
        type="adabas-auditing",
        poll_interval=0.05,
    )


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
