"""
List collections: enumerate the user's own and favorited lists, diff them
against the local snapshot, confirm destructive changes, then walk every
list's items and rebuild record memberships.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from .errors import (
    ChallengeUnresolvedError,
    NetworkError,
    NotAuthenticatedOrStructureChanged,
    ParseError,
    UserCancelled,
)
from .models import (
    Checkpoint,
    CollectionType,
    JobState,
    ListKind,
    ProgressStage,
    SyncCounters,
    SyncResult,
    now_iso,
    total_pages_for,
)
from .synchronizer import BaseSynchronizer, upsert_detail

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5
CLEANUP_CANCEL_CHECK_EVERY = 200


@dataclass
class ListDiff:
    to_add: list = field(default_factory=list)
    to_update: list = field(default_factory=list)
    to_delete: list = field(default_factory=list)


def diff_lists(local_lists, remote_lists):
    """Three-way diff by list id"""
    local_ids = {entity.id for entity in local_lists}
    remote_ids = {entity.id for entity in remote_lists}
    return ListDiff(
        to_add=[entity for entity in remote_lists if entity.id not in local_ids],
        to_update=[entity for entity in remote_lists if entity.id in local_ids],
        to_delete=[entity for entity in local_lists if entity.id not in remote_ids],
    )


@dataclass
class ListChangeSummary:
    add_count: int
    update_count: int
    delete_count: int
    add_samples: list
    update_samples: list
    delete_samples: list

    @classmethod
    def from_diff(cls, diff, sample_size=SAMPLE_SIZE):
        return cls(
            add_count=len(diff.to_add),
            update_count=len(diff.to_update),
            delete_count=len(diff.to_delete),
            add_samples=[entity.name for entity in diff.to_add[:sample_size]],
            update_samples=[entity.name for entity in diff.to_update[:sample_size]],
            delete_samples=[entity.name for entity in diff.to_delete[:sample_size]],
        )


def merge_list_timestamps(local_lists, remote_lists):
    """Carry created_at over from the local snapshot; keep updated_at unless something changed"""
    local_by_id = {entity.id: entity for entity in local_lists}
    for entity in remote_lists:
        old = local_by_id.get(entity.id)
        if old is None:
            continue
        entity.created_at = old.created_at
        same = (old.name, old.kind, old.source_url, old.item_count, old.engagement_count) == \
               (entity.name, entity.kind, entity.source_url, entity.item_count, entity.engagement_count)
        entity.updated_at = old.updated_at if same else now_iso()
    return remote_lists


class ListReconciler(BaseSynchronizer):

    def run(self, mode, user_identity, checkpoint=None, confirm=None):
        counters = checkpoint.counters.copy() if checkpoint else SyncCounters()

        remote_lists = self.enumerate_lists()

        start_index = 0
        if checkpoint is not None:
            position = next((i for i, entity in enumerate(remote_lists)
                             if entity.id == checkpoint.current_list_id), None)
            if position is None or checkpoint.list_memberships is None:
                logger.warning("Checkpoint list %s can not be resumed, starting over", checkpoint.current_list_id)
                self.checkpoints.clear()
                checkpoint = None
                counters = SyncCounters()
            else:
                start_index = position
        resuming = checkpoint is not None

        local_lists = self.store.lists_get_all()
        diff = diff_lists(local_lists, remote_lists)
        logger.info("Lists: %d to add, %d to update, %d to delete",
                    len(diff.to_add), len(diff.to_update), len(diff.to_delete))

        if not resuming and (diff.to_add or diff.to_delete):
            summary = ListChangeSummary.from_diff(diff)
            if confirm is None or not confirm(summary):
                logger.info("List changes not confirmed, nothing applied")
                return SyncResult(CollectionType.LISTS, JobState.DECLINED, "List changes declined", SyncCounters())

        try:
            self.store.lists_replace_all(merge_list_timestamps(local_lists, remote_lists))
        except OSError as e:
            logger.error("Could not replace local lists: %s", e)

        video_to_lists = defaultdict(set)
        if resuming:
            for identity, list_ids in checkpoint.list_memberships.items():
                video_to_lists[identity].update(list_ids)
        total_items = sum(entity.item_count or 0 for entity in remote_lists)

        for list_index in range(start_index, len(remote_lists)):
            entity = remote_lists[list_index]
            resumed_list = resuming and list_index == start_index
            self._sync_list(entity, list_index, remote_lists, resumed_list, checkpoint,
                            counters, video_to_lists, mode, user_identity, total_items)

        # every list walked: a cancel from here on restarts from scratch
        self.checkpoints.clear()
        self._apply_memberships(video_to_lists, counters)
        self._cleanup_orphans(video_to_lists)
        self.store.flush()

        message = (f"Lists: {len(remote_lists)} lists, {counters.synced} videos synced "
                   f"({counters.created} new, {counters.updated} updated), "
                   f"{counters.skipped} skipped, {counters.errored} errors")
        self.emit(ProgressStage.COMPLETE, total_items, total_items, message)
        logger.info(message)
        return SyncResult(CollectionType.LISTS, JobState.COMPLETED, message, counters)

    # ==================== LIST INDEX ====================

    def enumerate_lists(self):
        """Owned lists, then favorited ones, each id once"""
        lists = []
        seen = set()
        for kind, url_key in ((ListKind.OWNED, 'owned_lists'), (ListKind.FAVORITED, 'favorite_lists')):
            for page in range(1, self.settings.list_page_cap + 1):
                if self.is_cancelled():
                    raise UserCancelled("Cancelled while reading the list index")
                url = self.settings.url(url_key, page=page)
                self.emit(ProgressStage.PREPARING, page, 0, f"Reading {kind.value} lists, page {page}")
                response = self.fetcher.fetch(url)
                if not response.ok:
                    raise NetworkError(url, f"HTTP {response.status_code}", status_code=response.status_code)
                found = self.extractor.extract_lists(response.text, kind)
                if not found:
                    if page == 1:
                        raise NotAuthenticatedOrStructureChanged(
                            f"No {kind.value} lists found: not logged in or the page layout changed")
                    break
                for entity in found:
                    if entity.id not in seen:
                        seen.add(entity.id)
                        lists.append(entity)
                self.sleep(self.settings.list_index_delay)
        logger.info("Found %d lists", len(lists))
        return lists

    # ==================== LIST ITEMS ====================

    def _sync_list(self, entity, list_index, remote_lists, resumed_list, checkpoint,
                   counters, video_to_lists, mode, user_identity, total_items):
        if entity.item_count == 0:
            logger.info("List %s is empty, skipping", entity.name)
            return

        if entity.item_count:
            total_pages = total_pages_for(entity.item_count, self.settings.page_size)
        else:
            total_pages = self.settings.list_page_cap
        start_page = checkpoint.current_page if resumed_list else 1
        resume_item = checkpoint.current_item_index if resumed_list else 0

        def make_checkpoint(page, item_index):
            return Checkpoint(
                collection_type=CollectionType.LISTS,
                user_identity=user_identity,
                mode=mode,
                current_page=page,
                current_item_index=item_index,
                total_pages=total_pages,
                total_items=total_items,
                counters=counters.copy(),
                current_list_id=entity.id,
                current_list_index=list_index,
                total_lists=len(remote_lists),
                list_memberships={identity: sorted(ids) for identity, ids in video_to_lists.items()},
            )

        list_path = self.settings.urls['list_detail'].format(list_id=entity.id)
        for page in range(start_page, total_pages + 1):
            first_item = resume_item if page == start_page else 0
            if self.is_cancelled():
                self.suspend(make_checkpoint(page, first_item))

            url = self.settings.url('list_detail', page=page, list_id=entity.id)
            self.emit(ProgressStage.PAGES, list_index + 1, len(remote_lists),
                      f"List {list_index + 1}/{len(remote_lists)} '{entity.name}', page {page}")
            try:
                response = self.fetcher.fetch(url)
            except ChallengeUnresolvedError:
                self.store.flush()
                self.checkpoints.save(make_checkpoint(page, 0))
                raise
            except NetworkError as e:
                counters.errored += 1
                logger.error("List %s page %d failed: %s", entity.id, page, e)
                break

            if not response.ok or list_path not in response.url or not self.extractor.has_list_content(response.text):
                counters.errored += 1
                logger.error("List %s page %d has no list content (HTTP %d, %s)",
                             entity.id, page, response.status_code, response.url)
                break

            refs = self.extractor.extract_list_item_ids(response.text)
            if not refs:
                break

            for index in range(first_item, len(refs)):
                if self.is_cancelled():
                    self.suspend(make_checkpoint(page, index))

                ref = refs[index]
                try:
                    detail = self.fetch_detail(ref)
                    record = upsert_detail(self.store, detail, ref.url_identity, counters)
                    video_to_lists[record.identity].add(entity.id)
                    if entity.id not in record.list_memberships:
                        record.list_memberships.add(entity.id)
                        record.updated_at = now_iso()
                        self.store.upsert(record)
                    counters.synced += 1
                except ChallengeUnresolvedError:
                    self.store.flush()
                    self.checkpoints.save(make_checkpoint(page, index))
                    raise
                except (NetworkError, ParseError) as e:
                    counters.errored += 1
                    logger.error("List %s item %s failed: %s", entity.id, ref.url_identity, e)

                self.emit(ProgressStage.DETAILS, counters.synced + counters.errored, total_items,
                          f"'{entity.name}': {ref.display_id or ref.url_identity}")
                self.sleep(self.settings.request_interval)

            self.store.flush()
            if page < total_pages:
                self.sleep(self.settings.page_delay)

    # ==================== MEMBERSHIPS ====================

    def _apply_memberships(self, video_to_lists, counters):
        for identity, list_ids in video_to_lists.items():
            record = self.store.get(identity)
            if record is None:
                counters.skipped += 1
                continue
            if record.list_memberships != list_ids:
                record.list_memberships = set(list_ids)
                record.updated_at = now_iso()
                self.store.upsert(record)

    def _cleanup_orphans(self, video_to_lists):
        """Clear memberships on records no list references any more"""
        cleared = 0
        records = self.store.list_all()
        for position, record in enumerate(records):
            if position % CLEANUP_CANCEL_CHECK_EVERY == 0 and self.is_cancelled():
                self.store.flush()
                raise UserCancelled("Cancelled during membership cleanup")
            if record.list_memberships and record.identity not in video_to_lists:
                record.list_memberships = set()
                record.updated_at = now_iso()
                self.store.upsert(record)
                cleared += 1
            if position % CLEANUP_CANCEL_CHECK_EVERY == 0:
                self.emit(ProgressStage.CLEANUP, position, len(records), "Cleaning up list memberships")
        if cleared:
            logger.info("Cleared orphaned memberships on %d records", cleared)
