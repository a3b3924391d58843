import os
import threading


class CancellationToken:
    """Cooperative cancel flag, set in-process or by creating the cancel file"""

    def __init__(self, cancel_file=None):
        self._event = threading.Event()
        self.cancel_file = cancel_file

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        if self._event.is_set():
            return True
        if self.cancel_file and os.path.exists(self.cancel_file):
            self._event.set()
            return True
        return False

    def __call__(self):
        return self.cancelled


def clear_cancel_request(cancel_file):
    if cancel_file and os.path.exists(cancel_file):
        os.remove(cancel_file)


def request_cancel(cancel_file):
    """Ask whatever sync is running (possibly in another process) to stop"""
    os.makedirs(os.path.dirname(cancel_file) or ".", exist_ok=True)
    with open(cancel_file, 'w', encoding='utf-8') as f:
        f.write('cancel')
