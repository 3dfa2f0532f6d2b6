"""Watching the classes directory and batching change notifications.

Filesystem events are counted and signalled over a bounded queue; a single
worker thread waits for the events to settle and then invokes the change
callback once per burst.
"""

import queue
import threading
import time
from collections.abc import Callable
from pathlib import Path

from icecream import ic
from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from telegraf_injector.console import Reporter

# Directory swapped atomically by the kubelet when a mounted secret changes
DATA_DIRECTORY = "..data"

# Events that mean content changed; opening or reading a class is not one
_CHANGE_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED, EVENT_TYPE_CLOSED}
)

OnChange = Callable[[], None]


def watched_paths(directory: str | Path) -> list[Path]:
    """Return the paths to watch for a classes directory.

    The directory itself and ``..data`` are always watched. Other entries
    starting with ``..`` are the kubelet's timestamped copies of the secret
    and are left out.

    Args:
        directory: The classes directory.

    Returns:
        The directory followed by its watched entries.

    Raises:
        OSError: If the directory cannot be listed.

    """
    root = Path(directory)
    paths = [root]
    for entry in sorted(root.iterdir()):
        name = entry.name
        if name == DATA_DIRECTORY or not name.startswith(".."):
            paths.append(entry)
    return paths


class _ClassesEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: "ClassesWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _CHANGE_EVENTS:
            ic(event)
            self._watcher.notify()


class ClassesWatcher:
    """Invokes a callback once per burst of changes to the classes directory.

    Every notification bumps an event counter and is signalled on a bounded
    queue. The worker thread, on each signal, compares the counter with the
    value it last acted on; if they differ it sleeps for ``event_delay``,
    reads the counter again and calls ``on_change``. Signals that arrive
    while it sleeps find the counter unchanged afterwards and are absorbed.

    Attributes:
        event_delay: Quiescence window in seconds.

    """

    def __init__(
        self,
        on_change: OnChange,
        *,
        event_delay: float = 10.0,
        queue_size: int = 100,
        reporter: Reporter | None = None,
    ) -> None:
        """Initialize ClassesWatcher without starting it.

        Args:
            on_change: Callback invoked once per burst of changes.
            event_delay: Seconds to wait for a burst to settle.
            queue_size: Capacity of the signal queue.
            reporter: Reporter for log output.

        """
        self.event_delay = event_delay
        self._on_change = on_change
        self._reporter = reporter if reporter is not None else Reporter().child("watcher")

        self._event_count = 0
        self._lock = threading.Lock()
        # sized so bursts never block the notifying thread
        self._signals: queue.Queue[bool | None] = queue.Queue(maxsize=queue_size)

        self._worker: threading.Thread | None = None
        self._observer: Observer | None = None

    def __enter__(self) -> "ClassesWatcher":
        """Start the worker thread and return the watcher."""
        self.start()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Stop the observer and the worker thread."""
        self.stop()

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"ClassesWatcher(event_delay={self.event_delay!r}, event_count={self.event_count!r})"

    @property
    def event_count(self) -> int:
        """Number of change notifications received so far."""
        with self._lock:
            return self._event_count

    def notify(self) -> None:
        """Record one change notification."""
        with self._lock:
            self._event_count += 1
        self._signals.put(True)

    def watch(self, directory: str | Path) -> None:
        """Start delivering filesystem events for a classes directory.

        Args:
            directory: The classes directory.

        Raises:
            OSError: If the directory cannot be listed.

        """
        observer = Observer()
        handler = _ClassesEventHandler(self)
        for path in watched_paths(directory):
            self._reporter.info(f"adding item to watch: {path}")
            observer.schedule(handler, str(path), recursive=False)
        observer.start()
        self._observer = observer

    def start(self) -> None:
        """Start the worker thread that batches notifications."""
        if self._worker is not None:
            return
        self._worker = threading.Thread(target=self._batch_changes, name="classes-watcher", daemon=True)
        self._worker.start()

    def stop(self) -> None:
        """Stop watching and wait for the worker thread to finish."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._worker is not None:
            self._signals.put(None)
            self._worker.join()
            self._worker = None

    def wait(self) -> None:
        """Block until the worker thread exits."""
        if self._worker is not None:
            self._worker.join()

    def _batch_changes(self) -> None:
        previous_count = 0
        while True:
            signal = self._signals.get()
            if signal is None:
                return

            if self.event_count == previous_count:
                continue

            time.sleep(self.event_delay)
            # events seen during the delay are covered by this invocation
            current_count = self.event_count
            self._invoke()
            previous_count = current_count

    def _invoke(self) -> None:
        try:
            self._on_change()
        except Exception as err:
            self._reporter.error("class change handler failed", err)
