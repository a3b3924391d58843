"""
Favorite actors, one index per category (gender x censorship). Actors are
read straight off the index pages.
"""

import logging
import time

from .errors import ChallengeUnresolvedError, NetworkError
from .models import (
    Checkpoint,
    CollectionType,
    JobState,
    ProgressStage,
    SyncCounters,
    SyncMode,
    SyncResult,
    now_iso,
)
from .synchronizer import BaseSynchronizer

logger = logging.getLogger(__name__)

RECENT_SYNC_SECONDS = 24 * 3600
ACTOR_FIELDS = ('name', 'aliases', 'gender', 'category', 'avatar_url', 'profile_url')


class ActorFavoritesSynchronizer(BaseSynchronizer):

    def __init__(self, *args, clock=time.time, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock

    def category_url(self, category, page):
        base = self.settings.url('collection_actors')
        return f"{base}?g={category['g']}&t={category['t']}&page={page}"

    def run(self, mode, user_identity, checkpoint=None):
        counters = checkpoint.counters.copy() if checkpoint else SyncCounters()
        categories = self.settings.actor_categories
        start_category = (checkpoint.current_category_index or 0) if checkpoint else 0

        def make_checkpoint(category_index, page):
            return Checkpoint(
                collection_type=CollectionType.ACTOR_FAVORITES,
                user_identity=user_identity,
                mode=mode,
                current_page=page,
                current_item_index=0,
                counters=counters.copy(),
                current_category_index=category_index,
            )

        for category_index in range(start_category, len(categories)):
            category = categories[category_index]
            label = category.get('display_name', f"g={category['g']} t={category['t']}")
            page = checkpoint.current_page if checkpoint and category_index == start_category else 1
            seen = set()
            consecutive_failures = 0

            while True:
                if self.is_cancelled():
                    self.suspend(make_checkpoint(category_index, page))

                self.emit(ProgressStage.PAGES, category_index + 1, len(categories), f"{label}: page {page}")
                url = self.category_url(category, page)
                try:
                    response = self.fetcher.fetch(url)
                    if not response.ok:
                        raise NetworkError(url, f"HTTP {response.status_code}", status_code=response.status_code)
                    actors = self.extractor.extract_actors(response.text)
                except ChallengeUnresolvedError:
                    self.store.flush()
                    self.checkpoints.save(make_checkpoint(category_index, page))
                    raise
                except NetworkError as e:
                    counters.errored += 1
                    consecutive_failures += 1
                    logger.error("%s page %d failed: %s", label, page, e)
                    if consecutive_failures > self.settings.max_attempts:
                        logger.error("Too many failures in %s, moving on", label)
                        break
                    page += 1
                    continue
                consecutive_failures = 0

                fresh = [actor for actor in actors if actor.id not in seen]
                if not fresh:
                    break
                for actor in fresh:
                    seen.add(actor.id)
                    self._save_actor(actor, category, mode, counters)

                self.store.flush()
                self.emit(ProgressStage.DETAILS, counters.synced + counters.skipped, 0,
                          f"{label}: {counters.synced} actors synced")
                page += 1
                self.sleep(self.settings.request_interval)

        self.checkpoints.clear()
        message = (f"Favorite actors: {counters.synced} synced ({counters.created} new, "
                   f"{counters.updated} updated), {counters.skipped} skipped, {counters.errored} errors")
        self.emit(ProgressStage.COMPLETE, 1, 1, message)
        logger.info(message)
        return SyncResult(CollectionType.ACTOR_FAVORITES, JobState.COMPLETED, message, counters)

    def _save_actor(self, actor, category, mode, counters):
        now = self.clock()
        existing = self.store.get_actor(actor.id)
        if (mode is SyncMode.INCREMENTAL and existing is not None and existing.last_synced_at
                and now - existing.last_synced_at < RECENT_SYNC_SECONDS):
            counters.skipped += 1
            return

        actor.gender = category.get('gender', 'unknown')
        actor.category = category.get('category', 'unknown')
        actor.last_synced_at = now
        if existing is None:
            counters.created += 1
        else:
            actor.created_at = existing.created_at
            unchanged = all(getattr(existing, name) == getattr(actor, name) for name in ACTOR_FIELDS)
            actor.updated_at = existing.updated_at if unchanged else now_iso()
            counters.updated += 1
        self.store.upsert_actor(actor)
        counters.synced += 1
