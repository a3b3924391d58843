"""
Progress channel: synchronizers publish ProgressEvents, listeners receive
them on a daemon thread. Publishing never blocks; when the queue is full the
oldest event is dropped.
"""

import logging
import queue
import threading
import time

logger = logging.getLogger(__name__)


class ProgressChannel:
    def __init__(self, maxsize=100):
        self._queue = queue.Queue(maxsize=maxsize)
        self._listeners = []
        self._listeners_lock = threading.Lock()
        self._thread = None

    def subscribe(self, listener):
        with self._listeners_lock:
            self._listeners.append(listener)
        self._ensure_thread()

    def unsubscribe(self, listener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event):
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def drain(self, timeout=2.0):
        """Wait until queued events have been delivered"""
        deadline = time.time() + timeout
        while not self._queue.empty() and time.time() < deadline:
            time.sleep(0.01)

    def _ensure_thread(self):
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run, name="progress-channel", daemon=True)
            self._thread.start()

    def _run(self):
        while True:
            event = self._queue.get()
            with self._listeners_lock:
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Progress listener failed")


class ConsoleProgress:
    """Prints events as a one-line progress bar"""

    def __init__(self, bar_length=30):
        self.bar_length = bar_length

    def __call__(self, event):
        filled = int(self.bar_length * event.percentage / 100)
        bar = '█' * filled + '░' * (self.bar_length - filled)
        phase = f" [{event.phase}]" if event.phase else ""
        position = f"{event.current}/{event.total}" if event.total else f"{event.current}"
        print(f"[{position}] [{bar}] {event.percentage}%{phase} | {event.message}", flush=True)
