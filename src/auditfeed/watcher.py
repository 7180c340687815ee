"""
Directory watcher: turns audit files dropped into a directory into a stream
of normalized records.

    watcher = DirectoryWatcher(JsonLinesParser(), Settings.from_env())
    watcher.run_in_background(print)
    ...
    watcher.stop()
    watcher.await_stop()

Two loop strategies:
  poll  - check for a pending batch without blocking, sleep poll_interval when
          idle and re-check the stop flag.
  block - wait until a batch arrives. The stop flag is only seen between
          batches, so a blocked watcher needs interrupt() to exit.

Events for the same file within one drained batch are merged, so a file that
is created and then modified before the batch is drained is read once. A file
touched again in a later batch is read again.

Deleting the watched directory invalidates the watch and ends the loop.
"""
from __future__ import annotations

import logging
import os
import queue
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from auditfeed.config import Settings
from auditfeed.exceptions import ConfigurationError, WatchError
from auditfeed.launcher import MetadataThread, launch_for_url
from auditfeed.normalize import to_plain
from auditfeed.parser import RecordParser, set_metadata_directory, set_metadata_url

logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], None]

_CLOSED = object()


class WatcherState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


# ----------------------------
# Watch registration
# ----------------------------
class _QueueingHandler(FileSystemEventHandler):
    def __init__(self, q: "queue.Queue[Any]", watched: str, on_lost: Callable[[], None]):
        super().__init__()
        self.q = q
        self.watched = watched
        self.on_lost = on_lost

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.q.put(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.q.put(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # files renamed into place arrive as moves
        if not event.is_directory:
            self.q.put(event.dest_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory and os.fsdecode(event.src_path) == self.watched:
            self.on_lost()


class WatchRegistration:
    """
    Creation/modification watch on one directory (non-recursive). The watchdog
    observer thread only enqueues paths; the loop thread drains them in batches.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._q: "queue.Queue[Any]" = queue.Queue()
        self._observer = Observer()
        self._closed = threading.Event()
        self._lost = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def open(self) -> None:
        if not self.directory.is_dir():
            raise WatchError(f"not a directory: {self.directory}")
        try:
            watched = str(self.directory.resolve())
            handler = _QueueingHandler(self._q, watched, self._mark_lost)
            self._observer.schedule(handler, watched, recursive=False)
            self._observer.start()
        except Exception as e:
            raise WatchError(f"cannot watch {self.directory}: {e}") from e

    def poll(self) -> Optional[List[Any]]:
        """Pending batch, or None when nothing is ready."""
        try:
            first = self._q.get_nowait()
        except queue.Empty:
            return None
        return self._drain(first)

    def take(self) -> List[Any]:
        """Block until a batch is ready (or the registration is closed)."""
        return self._drain(self._q.get())

    def _drain(self, first: Any) -> List[Any]:
        batch: List[Any] = []
        item = first
        while item is not _CLOSED:
            batch.append(item)
            try:
                item = self._q.get_nowait()
            except queue.Empty:
                return batch
        return batch

    def _mark_lost(self) -> None:
        if not self._lost.is_set():
            self._lost.set()
            self._q.put(_CLOSED)

    def reset(self) -> bool:
        """Re-arm the watch; False means it is gone (closed, directory deleted, emitter dead)."""
        if self.closed or self._lost.is_set() or not self._observer.is_alive():
            return False
        return all(e.is_alive() for e in self._observer.emitters)

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self._q.put(_CLOSED)
        self._observer.stop()
        if self._observer.is_alive():
            self._observer.join(timeout=5)


# ----------------------------
# Watcher
# ----------------------------
class DirectoryWatcher:
    def __init__(
        self,
        parser: RecordParser,
        settings: Optional[Settings] = None,
        *,
        registration_factory: Callable[[Path], WatchRegistration] = WatchRegistration,
        **overrides: Any,
    ):
        base = settings or Settings()
        if overrides:
            base = Settings(**{**base.model_dump(), **overrides})
        self.settings = base
        self.parser = parser
        self.directory = Path(base.directory)
        self.meta_dir = Path(base.meta_dir)
        self.record_label = base.type
        self.label_policy = base.label_policy
        self._registration_factory = registration_factory

        self._lock = threading.Lock()
        self._state = WatcherState.CREATED
        self._stop = threading.Event()
        self._done = threading.Event()
        self._released = False
        self._registration: Optional[WatchRegistration] = None
        self.service: Optional[MetadataThread] = None

        self.events_seen = 0
        self.records_emitted = 0
        self.errors = 0

    # ---- lifecycle ----
    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self, emit: Emit) -> None:
        """Run the watch loop on the calling thread until stopped or failed."""
        with self._lock:
            if self._state is not WatcherState.CREATED:
                raise RuntimeError(f"watcher already {self._state.value}")
            self._state = WatcherState.RUNNING

        s = self.settings
        logger.debug("starting audit directory watcher")
        logger.debug("directory ............ %s", self.directory)
        logger.debug("metadata directory ... %s", self.meta_dir)
        logger.debug("type ................. %s (%s)", self.record_label, self.label_policy.value)
        logger.debug("strategy ............. %s", s.strategy)

        registration: Optional[WatchRegistration] = None
        try:
            if self._stop.is_set():
                return
            if not self._prepare():
                return
            registration = self._registration_factory(self.directory)
            registration.open()
            self._registration = registration
            if self._stop.is_set():
                return
            logger.info("watching %s", self.directory)
            self._loop(registration, emit)
        except WatchError as e:
            logger.error("cannot start watching: %s", e)
        except Exception:
            logger.exception("error in audit directory watcher")
        finally:
            if registration is not None:
                registration.close()
            self._finish()

    def stop(self) -> None:
        with self._lock:
            self._stop.set()
            if self._state is WatcherState.RUNNING:
                self._state = WatcherState.STOPPING

    def interrupt(self) -> None:
        """Stop and close the watch registration, unblocking a 'block' loop."""
        self.stop()
        registration = self._registration
        if registration is not None:
            registration.close()

    def await_stop(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def run_in_background(self, emit: Emit) -> threading.Thread:
        t = threading.Thread(target=self.start, args=(emit,), name="auditfeed-watcher", daemon=True)
        t.start()
        return t

    def _finish(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            self._stop.set()
            self._state = WatcherState.STOPPED
        logger.info(
            "watcher stopped: %d event(s), %d record(s), %d error(s)",
            self.events_seen, self.records_emitted, self.errors,
        )
        self._done.set()

    # ---- startup ----
    def _prepare(self) -> bool:
        try:
            self.meta_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception("failed to create metadata directory %s", self.meta_dir)
            return False

        set_metadata_directory(self.parser, self.meta_dir)
        set_metadata_url(self.parser, self.settings.rest_url)

        if self.settings.with_auxiliary_service:
            try:
                self.service = launch_for_url(self.settings.rest_url, self.meta_dir)
            except ConfigurationError as e:
                logger.error("metadata service not started: %s", e)
                return False
            timeout = self.settings.service_ready_timeout
            if self.service is not None and timeout > 0:
                if not self.service.wait_until_ready(timeout):
                    logger.warning(
                        "metadata service on port %d not ready after %.1fs, continuing",
                        self.service.port, timeout,
                    )
        return True

    # ---- loop ----
    def _loop(self, registration: WatchRegistration, emit: Emit) -> None:
        polling = self.settings.strategy == "poll"
        while not self._stop.is_set():
            if polling:
                batch = registration.poll()
                if batch is None:
                    if not registration.reset():
                        self._watch_gone(registration)
                        break
                    self._stop.wait(self.settings.poll_interval)
                    continue
            else:
                batch = registration.take()

            self._drain(batch, emit)

            if not registration.reset():
                self._watch_gone(registration)
                break

    def _watch_gone(self, registration: WatchRegistration) -> None:
        if registration.closed:
            logger.info("watch on %s closed", self.directory)
        else:
            logger.warning("watch on %s could not be re-armed, exiting watch loop", self.directory)

    def _drain(self, batch: List[Any], emit: Emit) -> None:
        # one batch may report the same file several times (create + modify)
        for raw in dict.fromkeys(batch):
            self.events_seen += 1
            logger.debug("event for %s", raw)
            try:
                path = self._resolve(raw)
                if path is None:
                    logger.warning("ignoring event outside %s: %r", self.directory, raw)
                    continue
                self._process(path, emit)
            except PermissionError:
                self.errors += 1
                logger.error("access denied to file: %s", raw, exc_info=True)
            except Exception:
                self.errors += 1
                logger.exception("error processing file event for %s", raw)

    def _resolve(self, raw: Any) -> Optional[Path]:
        if not isinstance(raw, (str, bytes, os.PathLike)):
            return None
        path = Path(os.fsdecode(raw))
        if not path.is_absolute():
            path = self.directory / path
        # only the directory part is resolved; a symlinked file is read through the link
        watched = self.directory.resolve()
        if path.parent.resolve() != watched:
            return None
        return watched / path.name

    def _process(self, path: Path, emit: Emit) -> None:
        data = path.read_bytes()
        if not data:
            logger.debug("skipping empty file %s", path)
            return
        for tree in self.parser.parse(data):
            item = to_plain(tree, self.record_label, self.label_policy)
            if self.settings.wrapper_key:
                item = {self.settings.wrapper_key: item}
            emit(item)
            self.records_emitted += 1
