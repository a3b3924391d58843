"""
Error taxonomy for the sync engine.

Per-item and per-page failures are counted, not raised past the synchronizer.
Only auth/structure failures and unresolved challenges abort a whole job.
"""


class SyncError(Exception):
    """Base class for every error raised by the sync engine"""


class NetworkError(SyncError):
    """A request failed after exhausting its retries"""

    def __init__(self, url, message, status_code=None, attempts=0):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code
        self.attempts = attempts


class ChallengeUnresolvedError(SyncError):
    """An anti-automation challenge could not be resolved. Resumable at the page boundary."""

    def __init__(self, url, reason):
        super().__init__(f"Verification challenge unresolved for {url}: {reason}")
        self.url = url
        self.reason = reason


class NotAuthenticatedOrStructureChanged(SyncError):
    """Not logged in, or the remote markup no longer matches. Never checkpointed."""


class ParseError(SyncError):
    """A single page could not be turned into a record"""


class AlreadyRunningError(SyncError):
    """A job for the same collection type and user is already active"""

    def __init__(self, collection_type, user_identity):
        super().__init__(f"A {collection_type.value} sync is already running for {user_identity}")
        self.collection_type = collection_type
        self.user_identity = user_identity


class UserCancelled(SyncError):
    """Cooperative cancellation observed at a suspension point. Always leaves a checkpoint."""

    def __init__(self, message="Sync cancelled by user", checkpoint=None):
        super().__init__(message)
        self.checkpoint = checkpoint


class ResumeDecisionRequired(SyncError):
    """A valid checkpoint exists; the caller must choose resume=True or resume=False"""

    def __init__(self, checkpoint):
        super().__init__(f"Unfinished sync found: {checkpoint.summary()}")
        self.checkpoint = checkpoint
