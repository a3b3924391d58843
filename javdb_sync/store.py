"""
Local store: synchronized records, lists and actors kept as JSON files in
the data directory.

Mutations stay in memory until flush(); the synchronizers flush at page
boundaries and before writing a checkpoint.
"""

import json
import logging
import os
import threading

from .models import ActorRecord, ListEntity, SyncedRecord

logger = logging.getLogger(__name__)


def _write_json(path, data):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2, sort_keys=True)
    os.replace(tmp_path, path)


def _read_json(path, default):
    if not os.path.exists(path):
        return default
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


class LocalStore:
    def __init__(self, records_file, lists_file, actors_file):
        self.records_file = records_file
        self.lists_file = lists_file
        self.actors_file = actors_file
        self._lock = threading.RLock()
        self._records = {}
        self._lists = []
        self._actors = {}
        self._dirty = set()
        self.load()

    def load(self):
        with self._lock:
            raw_records = _read_json(self.records_file, {})
            self._records = {key: SyncedRecord.from_dict(value) for key, value in raw_records.items()}
            self._lists = [ListEntity.from_dict(item) for item in _read_json(self.lists_file, [])]
            raw_actors = _read_json(self.actors_file, {})
            self._actors = {key: ActorRecord.from_dict(value) for key, value in raw_actors.items()}
            self._dirty.clear()
        logger.info("Loaded %d records, %d lists, %d actors",
                    len(self._records), len(self._lists), len(self._actors))

    def flush(self):
        """Write every changed table to disk"""
        with self._lock:
            if 'records' in self._dirty:
                _write_json(self.records_file, {k: r.to_dict() for k, r in self._records.items()})
            if 'lists' in self._dirty:
                _write_json(self.lists_file, [entity.to_dict() for entity in self._lists])
            if 'actors' in self._dirty:
                _write_json(self.actors_file, {k: a.to_dict() for k, a in self._actors.items()})
            self._dirty.clear()

    # ==================== RECORDS ====================

    def get(self, identity):
        with self._lock:
            return self._records.get(identity)

    def upsert(self, record):
        with self._lock:
            self._records[record.identity] = record
            self._dirty.add('records')

    def list_all(self):
        with self._lock:
            return list(self._records.values())

    def known_identities(self, status):
        """Identities (both the video code and the URL key) of records with this status"""
        with self._lock:
            known = set()
            for record in self._records.values():
                if record.status == status:
                    known.add(record.identity)
                    if record.url_identity:
                        known.add(record.url_identity)
            return known

    # ==================== LISTS ====================

    def lists_replace_all(self, lists):
        with self._lock:
            self._lists = list(lists)
            self._dirty.add('lists')
        self.flush()

    def lists_get_all(self):
        with self._lock:
            return list(self._lists)

    # ==================== ACTORS ====================

    def get_actor(self, actor_id):
        with self._lock:
            return self._actors.get(actor_id)

    def upsert_actor(self, actor):
        with self._lock:
            self._actors[actor.id] = actor
            self._dirty.add('actors')

    def list_actors(self):
        with self._lock:
            return list(self._actors.values())
