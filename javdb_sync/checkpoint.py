"""
Checkpoint store: one resumable progress record for the whole system, kept
as a JSON file in the data directory.
"""

import json
import logging
import os
import threading
import time

from .models import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Single-slot checkpoint file with expiry and identity validation"""

    def __init__(self, path, max_age_hours=24, clock=time.time):
        self.path = path
        self.max_age = max_age_hours * 3600
        self.clock = clock
        self._lock = threading.Lock()

    def save(self, checkpoint):
        """Overwrite the slot with this checkpoint"""
        checkpoint.timestamp = self.clock()
        tmp_path = f"{self.path}.tmp"
        with self._lock:
            try:
                os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(checkpoint.to_dict(), f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error("Could not save checkpoint to %s: %s", self.path, e)
                return
        logger.info("Checkpoint saved: %s", checkpoint.summary())

    def peek(self):
        """Return whatever is in the slot, without validation"""
        with self._lock:
            if not os.path.exists(self.path):
                return None
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    return Checkpoint.from_dict(json.load(f))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Ignoring unreadable checkpoint %s: %s", self.path, e)
                return None

    def load(self, collection_type, user_identity):
        """Return the checkpoint for (type, user), or None.

        Expired and mismatching checkpoints are purged from the slot.
        """
        checkpoint = self.peek()
        if checkpoint is None:
            return None

        if checkpoint.age_seconds(self.clock()) > self.max_age:
            logger.info("Checkpoint expired (%s), clearing", checkpoint.summary())
            self.clear()
            return None

        if checkpoint.collection_type != collection_type or checkpoint.user_identity != user_identity:
            logger.info(
                "Checkpoint belongs to %s/%s, not %s/%s; clearing",
                checkpoint.collection_type.value, checkpoint.user_identity,
                collection_type.value, user_identity,
            )
            self.clear()
            return None

        return checkpoint

    def clear(self):
        with self._lock:
            try:
                if os.path.exists(self.path):
                    os.remove(self.path)
            except OSError as e:
                logger.error("Could not remove checkpoint %s: %s", self.path, e)
