"""
Data model shared by the synchronizers, stores and orchestrator.
"""

import math
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


class CollectionType(str, Enum):
    WATCHED_VIDEOS = "watched"
    WANT_VIDEOS = "want"
    ALL_VIDEOS = "all"
    ACTOR_FAVORITES = "actors"
    LISTS = "lists"

    @property
    def display_name(self):
        return {
            "watched": "Watched videos",
            "want": "Want-to-watch videos",
            "all": "All videos",
            "actors": "Favorite actors",
            "lists": "Lists",
        }[self.value]


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class RecordStatus(str, Enum):
    VIEWED = "viewed"
    WANT = "want"
    UNTRACKED = "untracked"


# Local record status each video collection writes
COLLECTION_STATUS = {
    CollectionType.WATCHED_VIDEOS: RecordStatus.VIEWED,
    CollectionType.WANT_VIDEOS: RecordStatus.WANT,
}


class ListKind(str, Enum):
    OWNED = "owned"
    FAVORITED = "favorited"


class JobState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


class ProgressStage(str, Enum):
    PREPARING = "preparing"
    PAGES = "pages"
    DETAILS = "details"
    CLEANUP = "cleanup"
    COMPLETE = "complete"


def now_iso():
    return datetime.now().isoformat()


@dataclass
class SyncCounters:
    synced: int = 0
    skipped: int = 0
    errored: int = 0
    created: int = 0
    updated: int = 0

    def merge(self, other):
        self.synced += other.synced
        self.skipped += other.skipped
        self.errored += other.errored
        self.created += other.created
        self.updated += other.updated
        return self

    def copy(self):
        return SyncCounters(**asdict(self))

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(**{k: int(data.get(k, 0) or 0) for k in ("synced", "skipped", "errored", "created", "updated")})


@dataclass
class Checkpoint:
    collection_type: CollectionType
    user_identity: str
    mode: SyncMode
    current_page: int = 1
    current_item_index: int = 0
    total_pages: int = 0
    total_items: int = 0
    counters: SyncCounters = field(default_factory=SyncCounters)
    timestamp: float = field(default_factory=time.time)
    # Lists only
    current_list_id: Optional[str] = None
    current_list_index: Optional[int] = None
    total_lists: Optional[int] = None
    # identity -> ids of the lists walked so far that hold it
    list_memberships: Optional[dict] = None
    # Actor favorites only
    current_category_index: Optional[int] = None

    def age_seconds(self, now=None):
        return (now if now is not None else time.time()) - self.timestamp

    def summary(self):
        parts = [f"{self.collection_type.display_name} ({self.mode.value})"]
        if self.current_list_id is not None:
            parts.append(f"list {self.current_list_index + 1 if self.current_list_index is not None else '?'}"
                         f"/{self.total_lists or '?'} [{self.current_list_id}]")
        if self.current_category_index is not None:
            parts.append(f"category {self.current_category_index + 1}")
        parts.append(f"page {self.current_page}/{self.total_pages or '?'}, item {self.current_item_index}")
        parts.append(f"synced {self.counters.synced} (new {self.counters.created}, updated {self.counters.updated})")
        parts.append(f"saved {datetime.fromtimestamp(self.timestamp).strftime('%Y-%m-%d %H:%M')}")
        return " | ".join(parts)

    def to_dict(self):
        data = asdict(self)
        data["collection_type"] = self.collection_type.value
        data["mode"] = self.mode.value
        data["counters"] = self.counters.to_dict()
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            collection_type=CollectionType(data["collection_type"]),
            user_identity=data["user_identity"],
            mode=SyncMode(data.get("mode", SyncMode.FULL.value)),
            current_page=int(data.get("current_page", 1)),
            current_item_index=int(data.get("current_item_index", 0)),
            total_pages=int(data.get("total_pages", 0)),
            total_items=int(data.get("total_items", 0)),
            counters=SyncCounters.from_dict(data.get("counters")),
            timestamp=float(data["timestamp"]),
            current_list_id=data.get("current_list_id"),
            current_list_index=data.get("current_list_index"),
            total_lists=data.get("total_lists"),
            list_memberships=data.get("list_memberships"),
            current_category_index=data.get("current_category_index"),
        )


@dataclass
class RemoteItemRef:
    url_identity: str
    display_id: Optional[str] = None


@dataclass
class VideoDetail:
    """Fields parsed from a detail page"""
    identity: str
    title: str
    tags: list
    source_url: str
    release_date: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class SyncedRecord:
    identity: str
    title: str
    status: RecordStatus
    tags: list = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    release_date: Optional[str] = None
    source_url: str = ""
    image_url: Optional[str] = None
    list_memberships: set = field(default_factory=set)
    url_identity: Optional[str] = None

    def to_dict(self):
        data = asdict(self)
        data["status"] = self.status.value
        data["list_memberships"] = sorted(self.list_memberships)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            identity=data["identity"],
            title=data.get("title", ""),
            status=RecordStatus(data.get("status", RecordStatus.UNTRACKED.value)),
            tags=list(data.get("tags") or []),
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
            release_date=data.get("release_date"),
            source_url=data.get("source_url", ""),
            image_url=data.get("image_url"),
            list_memberships=set(data.get("list_memberships") or []),
            url_identity=data.get("url_identity"),
        )


@dataclass
class ListEntity:
    id: str
    name: str
    kind: ListKind
    source_url: str
    item_count: Optional[int] = None
    engagement_count: Optional[int] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self):
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            kind=ListKind(data.get("kind", ListKind.OWNED.value)),
            source_url=data.get("source_url", ""),
            item_count=data.get("item_count"),
            engagement_count=data.get("engagement_count"),
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
        )


@dataclass
class ActorRecord:
    id: str
    name: str
    profile_url: str
    aliases: list = field(default_factory=list)
    gender: str = "unknown"
    category: str = "unknown"
    avatar_url: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    last_synced_at: Optional[float] = None

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(**{k: data.get(k) for k in (
            "id", "name", "profile_url", "aliases", "gender", "category",
            "avatar_url", "created_at", "updated_at", "last_synced_at",
        ) if k in data})


@dataclass
class UserProfile:
    identity: str
    email: str = ""
    username: str = ""
    watched_count: int = 0
    want_count: int = 0

    def count_for(self, collection_type):
        if collection_type is CollectionType.WATCHED_VIDEOS:
            return self.watched_count
        if collection_type is CollectionType.WANT_VIDEOS:
            return self.want_count
        raise ValueError(f"No profile count for {collection_type.value}")


@dataclass
class ProgressEvent:
    stage: ProgressStage
    current: int = 0
    total: int = 0
    percentage: int = 0
    message: str = ""
    phase: Optional[str] = None

    @classmethod
    def of(cls, stage, current, total, message, phase=None):
        percentage = min(100, round(current / total * 100)) if total else 0
        return cls(stage=stage, current=current, total=total, percentage=percentage,
                   message=message, phase=phase)


@dataclass
class SyncResult:
    collection_type: CollectionType
    state: JobState
    message: str
    counters: SyncCounters = field(default_factory=SyncCounters)
    checkpoint: Optional[Checkpoint] = None
    error: Optional[Exception] = None

    @property
    def success(self):
        return self.state is JobState.COMPLETED

    @property
    def cancelled(self):
        return self.state is JobState.CANCELLED

    @property
    def has_errors(self):
        return self.counters.errored > 0

    @property
    def synced(self):
        return self.counters.synced

    @property
    def skipped(self):
        return self.counters.skipped

    @property
    def errored(self):
        return self.counters.errored

    @property
    def created(self):
        return self.counters.created

    @property
    def updated(self):
        return self.counters.updated


def total_pages_for(count, page_size):
    return math.ceil(count / page_size) if count > 0 else 0
