"""
Sync orchestrator: one job per (collection type, user), resume decisions,
dispatch to the right synchronizer, cancellation and the final SyncResult.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field

from .actor_sync import ActorFavoritesSynchronizer
from .cancellation import CancellationToken, clear_cancel_request
from .errors import (
    AlreadyRunningError,
    ChallengeUnresolvedError,
    ResumeDecisionRequired,
    SyncError,
    UserCancelled,
)
from .lists_sync import ListReconciler
from .models import (
    CollectionType,
    JobState,
    ProgressStage,
    ProgressEvent,
    SyncCounters,
    SyncMode,
    SyncResult,
)
from .synchronizer import VideoCollectionSynchronizer

logger = logging.getLogger(__name__)

ALL_VIDEOS_PHASES = (
    (CollectionType.WATCHED_VIDEOS, "Watched 1/2"),
    (CollectionType.WANT_VIDEOS, "Want 2/2"),
)


@dataclass
class SyncJob:
    collection_type: CollectionType
    mode: SyncMode
    user_identity: str
    token: CancellationToken
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: JobState = JobState.PREPARING
    counters: SyncCounters = field(default_factory=SyncCounters)


class JobRegistry:
    """Active jobs keyed by (collection type, user), claimed with compare-and-set"""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs = {}

    def claim(self, job):
        key = (job.collection_type, job.user_identity)
        with self._lock:
            if key in self._jobs:
                raise AlreadyRunningError(job.collection_type, job.user_identity)
            self._jobs[key] = job

    def release(self, job):
        key = (job.collection_type, job.user_identity)
        with self._lock:
            if self._jobs.get(key) is job:
                del self._jobs[key]

    def jobs_for(self, collection_type):
        with self._lock:
            return [job for (kind, _), job in self._jobs.items() if kind is collection_type]

    def all_jobs(self):
        with self._lock:
            return list(self._jobs.values())


class SyncOrchestrator:
    def __init__(self, fetcher, extractor, store, checkpoints, settings, profile_reader,
                 progress=None, confirm=None, cancel_file=None, sleep=time.sleep, clock=time.time):
        self.fetcher = fetcher
        self.extractor = extractor
        self.store = store
        self.checkpoints = checkpoints
        self.settings = settings
        self.profile_reader = profile_reader
        self.progress = progress
        self.confirm = confirm
        self.cancel_file = cancel_file
        self.sleep = sleep
        self.clock = clock
        self.registry = JobRegistry()

    # ==================== PUBLIC API ====================

    def start(self, collection_type, mode=SyncMode.FULL, resume=None):
        """Run one sync job to completion and return its SyncResult.

        Raises AlreadyRunningError when the same collection is already being
        synced for this user, and ResumeDecisionRequired when a checkpoint
        exists and resume is None.
        """
        try:
            profile = self.profile_reader.fetch_profile()
        except SyncError as e:
            logger.error("Could not read profile before %s sync: %s", collection_type.value, e)
            return SyncResult(collection_type, JobState.FAILED, str(e), error=e)

        job = SyncJob(collection_type, mode, profile.identity, CancellationToken(self.cancel_file))
        self.registry.claim(job)
        logger.info("Job %s: %s sync (%s) for %s", job.request_id, collection_type.value, mode.value, profile.identity)

        try:
            self._publish(ProgressStage.PREPARING, f"Preparing {collection_type.display_name.lower()} sync")
            checkpoint = self._resume_checkpoint(collection_type, profile.identity, resume)
            job.state = JobState.RUNNING
            result = self._dispatch(job, profile, checkpoint)
        except UserCancelled as e:
            counters = e.checkpoint.counters if e.checkpoint else SyncCounters()
            result = SyncResult(collection_type, JobState.CANCELLED, str(e), counters, checkpoint=e.checkpoint)
        except ChallengeUnresolvedError as e:
            logger.error("Job %s stopped at a verification challenge: %s", job.request_id, e)
            saved = self.checkpoints.peek()
            counters = saved.counters if saved else SyncCounters()
            result = SyncResult(collection_type, JobState.FAILED, str(e), counters, checkpoint=saved, error=e)
        except ResumeDecisionRequired:
            raise
        except SyncError as e:
            logger.error("Job %s failed: %s", job.request_id, e)
            result = SyncResult(collection_type, JobState.FAILED, str(e), error=e)
        finally:
            self.store.flush()
            self.registry.release(job)
            if job.token.cancelled:
                clear_cancel_request(self.cancel_file)

        job.state = result.state
        job.counters = result.counters
        logger.info("Job %s finished: %s (%s)", job.request_id, result.state.value, result.message)
        return result

    def cancel(self, collection_type):
        """Request cancellation of the running job(s) for this type"""
        cancelled = False
        for job in self.registry.jobs_for(collection_type):
            if job.state is JobState.RUNNING:
                job.token.cancel()
                cancelled = True
        return cancelled

    def cancel_all(self):
        for job in self.registry.all_jobs():
            job.token.cancel()

    def cancel_requested(self):
        return any(job.token.cancelled for job in self.registry.all_jobs())

    def is_running(self, collection_type):
        return any(job.state in (JobState.PREPARING, JobState.RUNNING)
                   for job in self.registry.jobs_for(collection_type))

    # ==================== INTERNALS ====================

    def _resume_checkpoint(self, collection_type, user_identity, resume):
        if collection_type is CollectionType.ALL_VIDEOS:
            slot = self.checkpoints.peek()
            phase_types = [phase for phase, _ in ALL_VIDEOS_PHASES]
            if slot is None or slot.collection_type not in phase_types:
                return None
            checkpoint = self.checkpoints.load(slot.collection_type, user_identity)
        else:
            checkpoint = self.checkpoints.load(collection_type, user_identity)

        if checkpoint is None:
            return None
        if resume is None:
            raise ResumeDecisionRequired(checkpoint)
        if not resume:
            logger.info("Discarding checkpoint: %s", checkpoint.summary())
            self.checkpoints.clear()
            return None
        logger.info("Resuming from checkpoint: %s", checkpoint.summary())
        return checkpoint

    def _publish(self, stage, message):
        if self.progress is not None:
            self.progress.publish(ProgressEvent.of(stage, 0, 0, message))

    def _synchronizer(self, cls, job, **kwargs):
        return cls(self.fetcher, self.extractor, self.store, self.checkpoints, self.settings,
                   progress=self.progress, is_cancelled=job.token, sleep=self.sleep, **kwargs)

    def _dispatch(self, job, profile, checkpoint):
        collection_type = job.collection_type

        if collection_type in (CollectionType.WATCHED_VIDEOS, CollectionType.WANT_VIDEOS):
            synchronizer = self._synchronizer(VideoCollectionSynchronizer, job)
            return synchronizer.run(collection_type, job.mode, profile.identity,
                                    profile.count_for(collection_type), checkpoint)

        if collection_type is CollectionType.ALL_VIDEOS:
            return self._run_all_videos(job, profile, checkpoint)

        if collection_type is CollectionType.ACTOR_FAVORITES:
            synchronizer = self._synchronizer(ActorFavoritesSynchronizer, job, clock=self.clock)
            return synchronizer.run(job.mode, profile.identity, checkpoint)

        if collection_type is CollectionType.LISTS:
            synchronizer = self._synchronizer(ListReconciler, job)
            return synchronizer.run(job.mode, profile.identity, checkpoint, confirm=self.confirm)

        raise ValueError(f"Unsupported collection type: {collection_type}")

    def _run_all_videos(self, job, profile, checkpoint):
        """Watched, then Want, each as its own 0-100% phase"""
        counters = SyncCounters()
        messages = []
        for phase_type, phase_label in ALL_VIDEOS_PHASES:
            if checkpoint is not None and checkpoint.collection_type is not phase_type:
                logger.info("Skipping finished phase %s", phase_label)
                continue
            synchronizer = self._synchronizer(VideoCollectionSynchronizer, job)
            synchronizer.phase = phase_label
            result = synchronizer.run(phase_type, job.mode, profile.identity,
                                      profile.count_for(phase_type), checkpoint)
            checkpoint = None
            counters.merge(result.counters)
            messages.append(result.message)
        return SyncResult(CollectionType.ALL_VIDEOS, JobState.COMPLETED, " | ".join(messages), counters)
