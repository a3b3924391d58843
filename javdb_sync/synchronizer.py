"""
Paginated collection synchronizer for the watched and want-to-watch video
indexes, plus the pieces the list and actor synchronizers share.
"""

import logging
import time
from dataclasses import dataclass, field

from .challenge import is_challenge
from .errors import ChallengeUnresolvedError, NetworkError, ParseError, UserCancelled
from .models import (
    COLLECTION_STATUS,
    Checkpoint,
    JobState,
    ProgressEvent,
    ProgressStage,
    RecordStatus,
    SyncCounters,
    SyncedRecord,
    SyncMode,
    SyncResult,
    now_iso,
    total_pages_for,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncSettings:
    site_url: str
    urls: dict = field(default_factory=dict)
    page_size: int = 20
    incremental_tolerance: int = 20
    request_interval: float = 3.0
    page_delay: float = 1.0
    list_index_delay: float = 0.5
    list_page_cap: int = 50
    max_attempts: int = 3
    actor_categories: list = field(default_factory=list)

    def url(self, key, page=None, **params):
        url = self.site_url.rstrip('/') + self.urls[key].format(**params)
        if page is not None:
            url += ('&' if '?' in url else '?') + f"page={page}"
        return url


def upsert_detail(store, detail, url_identity, counters, status=None):
    """Create or refresh the record for a parsed detail page.

    status=None keeps an existing record's status and marks new records as
    untracked. created_at and list memberships of existing records are kept;
    updated_at only moves when a field actually changed.
    """
    existing = store.get(detail.identity)
    if existing is None:
        record = SyncedRecord(
            identity=detail.identity,
            title=detail.title,
            status=status or RecordStatus.UNTRACKED,
            tags=list(detail.tags),
            release_date=detail.release_date,
            source_url=detail.source_url,
            image_url=detail.image_url,
            url_identity=url_identity,
        )
        store.upsert(record)
        counters.created += 1
        return record

    fields = {
        'title': detail.title,
        'status': status or existing.status,
        'tags': list(detail.tags),
        'release_date': detail.release_date,
        'source_url': detail.source_url,
        'image_url': detail.image_url,
        'url_identity': url_identity or existing.url_identity,
    }
    changed = False
    for name, value in fields.items():
        if getattr(existing, name) != value:
            setattr(existing, name, value)
            changed = True
    if changed:
        existing.updated_at = now_iso()
        store.upsert(existing)
    counters.updated += 1
    return existing


class BaseSynchronizer:
    """Shared plumbing: delays, progress, cancellation and detail fetches"""

    def __init__(self, fetcher, extractor, store, checkpoints, settings,
                 progress=None, is_cancelled=None, sleep=time.sleep):
        self.fetcher = fetcher
        self.extractor = extractor
        self.store = store
        self.checkpoints = checkpoints
        self.settings = settings
        self.progress = progress
        self.is_cancelled = is_cancelled or (lambda: False)
        self.sleep = sleep
        self.phase = None

    def emit(self, stage, current, total, message):
        if self.progress is not None:
            self.progress.publish(ProgressEvent.of(stage, current, total, message, phase=self.phase))

    def suspend(self, checkpoint):
        """Persist progress and stop the run as cancelled"""
        self.store.flush()
        self.checkpoints.save(checkpoint)
        raise UserCancelled(checkpoint=checkpoint)

    def fetch_detail(self, ref):
        """Fetch and parse one detail page; raises ParseError when it does not parse"""
        url = self.settings.url('video_detail', url_id=ref.url_identity)
        response = self.fetcher.fetch(url)
        if not response.ok:
            raise NetworkError(url, f"HTTP {response.status_code}", status_code=response.status_code)
        if is_challenge(response.text):
            raise ParseError(f"Detail page for {ref.url_identity} is still a verification page")
        detail = self.extractor.extract_detail(response.text, ref.display_id or ref.url_identity, source_url=url)
        if detail is None:
            raise ParseError(f"Could not parse detail page for {ref.url_identity}")
        return detail


class VideoCollectionSynchronizer(BaseSynchronizer):
    """Walks a paginated video index and stores one record per item"""

    def run(self, collection_type, mode, user_identity, total_count, checkpoint=None):
        counters = checkpoint.counters.copy() if checkpoint else SyncCounters()
        if total_count <= 0:
            self.checkpoints.clear()
            self.emit(ProgressStage.COMPLETE, 0, 0, f"No {collection_type.display_name.lower()} to sync")
            return SyncResult(collection_type, JobState.COMPLETED, "Nothing to sync", counters)

        status = COLLECTION_STATUS[collection_type]
        total_pages = total_pages_for(total_count, self.settings.page_size)
        incremental = mode is SyncMode.INCREMENTAL
        known = self.store.known_identities(status) if incremental else set()
        tolerance = self.settings.incremental_tolerance

        start_page = checkpoint.current_page if checkpoint else 1
        resume_item = checkpoint.current_item_index if checkpoint else 0

        def make_checkpoint(page, item_index):
            return Checkpoint(
                collection_type=collection_type,
                user_identity=user_identity,
                mode=mode,
                current_page=page,
                current_item_index=item_index,
                total_pages=total_pages,
                total_items=total_count,
                counters=counters.copy(),
            )

        logger.info("Syncing %s (%s): %d items over %d pages, starting at page %d item %d",
                    collection_type.value, mode.value, total_count, total_pages, start_page, resume_item)

        consecutive_known = 0
        stopped_early = False

        for page in range(start_page, total_pages + 1):
            first_item = resume_item if page == start_page else 0
            if self.is_cancelled():
                self.suspend(make_checkpoint(page, first_item))

            self.emit(ProgressStage.PAGES, page, total_pages, f"Fetching page {page}/{total_pages}")
            url = self.settings.url(collection_type.value + '_videos', page=page)
            try:
                response = self.fetcher.fetch(url)
                if not response.ok:
                    raise NetworkError(url, f"HTTP {response.status_code}", status_code=response.status_code)
                refs = self.extractor.extract_index_items(response.text)
            except ChallengeUnresolvedError:
                self.store.flush()
                self.checkpoints.save(make_checkpoint(page, 0))
                raise
            except NetworkError as e:
                counters.errored += 1
                logger.error("Page %d of %s failed: %s", page, collection_type.value, e)
                continue

            if not refs:
                logger.warning("Page %d of %s has no items", page, collection_type.value)

            for index in range(first_item, len(refs)):
                if self.is_cancelled():
                    self.suspend(make_checkpoint(page, index))

                ref = refs[index]
                if incremental and (ref.url_identity in known or (ref.display_id and ref.display_id in known)):
                    counters.skipped += 1
                    consecutive_known += 1
                    if consecutive_known >= tolerance:
                        logger.info("%d consecutive known items, stopping incremental sync", consecutive_known)
                        stopped_early = True
                        break
                    continue
                consecutive_known = 0

                try:
                    detail = self.fetch_detail(ref)
                    upsert_detail(self.store, detail, ref.url_identity, counters, status=status)
                    counters.synced += 1
                except ChallengeUnresolvedError:
                    self.store.flush()
                    self.checkpoints.save(make_checkpoint(page, index))
                    raise
                except (NetworkError, ParseError) as e:
                    counters.errored += 1
                    logger.error("Item %s failed: %s", ref.url_identity, e)

                done = counters.synced + counters.skipped + counters.errored
                self.emit(ProgressStage.DETAILS, done, total_count,
                          f"Page {page}/{total_pages}: {ref.display_id or ref.url_identity}")
                self.sleep(self.settings.request_interval)

            self.store.flush()
            if stopped_early:
                break
            if page < total_pages:
                self.sleep(self.settings.page_delay)

        self.checkpoints.clear()
        message = (f"{collection_type.display_name}: {counters.synced} synced "
                   f"({counters.created} new, {counters.updated} updated), "
                   f"{counters.skipped} skipped, {counters.errored} errors")
        self.emit(ProgressStage.COMPLETE, total_count, total_count, message)
        logger.info(message)
        return SyncResult(collection_type, JobState.COMPLETED, message, counters)
