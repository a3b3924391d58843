#!/usr/bin/env python3
"""
JavDB Collection Sync
Mirrors your watched/want-to-watch videos, lists and favorite actors from
javdb into local JSON files, resumably and incrementally.
"""

import os
import sys
import logging
import threading

import requests
from requests.exceptions import RequestException

from config.config import (
    SITE_URL, SITE_CONFIG, LOGIN_PAGE, USERNAME, PASSWORD, SESSION_COOKIE, HEADLESS,
    DATA_DIR, RECORDS_FILE, LISTS_FILE, ACTORS_FILE, CHECKPOINT_FILE, CANCEL_FILE, LOG_FILE,
    TIMEOUT, REQUEST_INTERVAL, PAGE_DELAY, LIST_INDEX_DELAY, RETRY_DELAY, MAX_ATTEMPTS,
    CHALLENGE_POLL_INTERVAL, SETTLE_DELAY, PAGE_SIZE, INCREMENTAL_TOLERANCE, LIST_PAGE_CAP, CHECKPOINT_MAX_AGE_HOURS,
)

os.makedirs(DATA_DIR, exist_ok=True)

# Configure logging: everything to the log file, only warnings on the console
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.WARNING)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOG_FILE, encoding='utf-8'),
        console_handler,
    ]
)

logger = logging.getLogger(__name__)

from javdb_sync.browser import session_cookies_as_dicts
from javdb_sync.cancellation import clear_cancel_request, request_cancel
from javdb_sync.challenge import BrowserSessionHost, ChallengeResolver, ConsoleSignals
from javdb_sync.checkpoint import CheckpointStore
from javdb_sync.console import ask_resume, ask_yes_no, confirm_list_changes, print_result
from javdb_sync.errors import ResumeDecisionRequired, SyncError
from javdb_sync.extractor import SiteExtractor
from javdb_sync.fetcher import RetryingFetcher, authenticate_session
from javdb_sync.models import CollectionType, RecordStatus, SyncMode
from javdb_sync.orchestrator import SyncOrchestrator
from javdb_sync.profile import ProfileReader
from javdb_sync.progress import ConsoleProgress, ProgressChannel
from javdb_sync.store import LocalStore
from javdb_sync.synchronizer import SyncSettings

_orchestrator = None


def print_header():
    """Print application header"""
    print("\n" + "=" * 60)
    print("  JAVDB COLLECTION SYNC")
    print("=" * 60 + "\n")


def validate_credentials():
    """Either a cookie header or a username/password pair is needed"""
    if SESSION_COOKIE or (USERNAME and PASSWORD):
        return True
    print("✗ ERROR: Credentials not configured!")
    print("\nPlease follow these steps:")
    print("1. Copy '.env.example' to '.env'")
    print("2. Set JAVDB_COOKIE (copied from your browser) or JAVDB_USERNAME and JAVDB_PASSWORD")
    print("3. Save the file and try again\n")
    return False


def build_settings():
    return SyncSettings(
        site_url=SITE_URL,
        urls=SITE_CONFIG.get('urls', {}),
        page_size=PAGE_SIZE,
        incremental_tolerance=INCREMENTAL_TOLERANCE,
        request_interval=REQUEST_INTERVAL,
        page_delay=PAGE_DELAY,
        list_index_delay=LIST_INDEX_DELAY,
        list_page_cap=LIST_PAGE_CAP,
        max_attempts=MAX_ATTEMPTS,
        actor_categories=SITE_CONFIG.get('actor_categories', []),
    )


def open_store():
    return LocalStore(RECORDS_FILE, LISTS_FILE, ACTORS_FILE)


def get_orchestrator():
    """Log in once and wire the sync engine"""
    global _orchestrator
    if _orchestrator is not None:
        return _orchestrator

    headers = SITE_CONFIG.get('headers', {})
    session = requests.Session()
    session.headers.update(headers)

    host = BrowserSessionHost(
        SITE_URL,
        cookie_source=lambda: session_cookies_as_dicts(session),
        user_agent=headers.get('User-Agent'),
    )
    resolver = ChallengeResolver(
        host,
        ConsoleSignals(),
        poll_interval=CHALLENGE_POLL_INTERVAL,
        settle_delay=SETTLE_DELAY,
    )
    fetcher = RetryingFetcher(
        session=session,
        resolver=resolver,
        timeout=TIMEOUT,
        max_attempts=MAX_ATTEMPTS,
        retry_delay=RETRY_DELAY,
    )

    print("→ Authenticating...")
    authenticate_session(
        session,
        cookie_header=SESSION_COOKIE,
        username=USERNAME,
        password=PASSWORD,
        login_page=LOGIN_PAGE,
        login_config=SITE_CONFIG.get('login', {}),
        headless=HEADLESS,
        timeout=TIMEOUT,
    )

    settings = build_settings()
    extractor = SiteExtractor()
    progress = ProgressChannel()
    progress.subscribe(ConsoleProgress())

    orchestrator = SyncOrchestrator(
        fetcher=fetcher,
        extractor=extractor,
        store=open_store(),
        checkpoints=CheckpointStore(CHECKPOINT_FILE, CHECKPOINT_MAX_AGE_HOURS),
        settings=settings,
        profile_reader=ProfileReader(
            fetcher, extractor, settings.url('profile'),
            sign_in_path=settings.urls.get('sign_in', '/login'),
        ),
        progress=progress,
        confirm=confirm_list_changes,
        cancel_file=CANCEL_FILE,
    )
    resolver.is_cancelled = orchestrator.cancel_requested
    _orchestrator = orchestrator
    return orchestrator


def show_menu():
    """Display interactive menu"""
    print("\nOptions:")
    print("  1. Sync watched videos")
    print("  2. Sync want-to-watch videos")
    print("  3. Sync all videos (watched, then want-to-watch)")
    print("  4. Sync lists")
    print("  5. Sync favorite actors")
    print("  6. Show local collection summary")
    print("  7. Cancel running sync (from another terminal)")
    print("  8. Discard saved checkpoint")
    print("  9. Exit\n")


def choose_mode():
    print("\nSync mode:")
    print("  1. Incremental (stop once already-synced items are reached)")
    print("  2. Full (walk everything)\n")
    choice = input("Choose mode (1-2) [default: 1]: ").strip() or '1'
    if choice not in ['1', '2']:
        print("⚠ Invalid choice, using default (incremental)")
        return SyncMode.INCREMENTAL
    return SyncMode.INCREMENTAL if choice == '1' else SyncMode.FULL


def run_sync(collection_type, mode, resume=None):
    """Run one job in a worker thread so Ctrl+C can cancel it cleanly"""
    try:
        orchestrator = get_orchestrator()
    except (SyncError, RequestException) as e:
        print(f"\n✗ Could not start: {str(e)}")
        logger.error(f"Setup failed: {e}")
        return
    except Exception as e:
        print(f"\n✗ Unexpected error during login: {str(e)}")
        logger.error(f"Unexpected error during login: {e}")
        return
    clear_cancel_request(CANCEL_FILE)

    outcome = {}

    def worker():
        try:
            outcome['result'] = orchestrator.start(collection_type, mode, resume=resume)
        except Exception as e:
            outcome['error'] = e

    thread = threading.Thread(target=worker, name=f"sync-{collection_type.value}", daemon=True)
    print(f"\n→ Starting {collection_type.display_name.lower()} sync ({mode.value})...")
    print("  (Press Ctrl+C to stop; progress is saved)\n")
    thread.start()
    while thread.is_alive():
        try:
            thread.join(0.5)
        except KeyboardInterrupt:
            print("\n⚠ Stopping after the current request...")
            logger.info("Cancellation requested with Ctrl+C")
            if not orchestrator.cancel(collection_type):
                orchestrator.cancel_all()

    orchestrator.progress.drain()
    error = outcome.get('error')
    if isinstance(error, ResumeDecisionRequired):
        run_sync(collection_type, mode, resume=ask_resume(error.checkpoint))
    elif isinstance(error, SyncError):
        print(f"\n✗ {str(error)}")
        logger.error(f"Sync error: {error}")
    elif isinstance(error, RequestException):
        print(f"\n✗ Network error occurred: {str(error)}")
        logger.error(f"Network error during sync: {error}")
    elif error is not None:
        print(f"\n✗ Unexpected error during sync: {str(error)}")
        logger.error("Unexpected error during sync", exc_info=error)
    else:
        print_result(outcome['result'])


def show_summary():
    """Counts of what is stored locally"""
    try:
        store = open_store()
    except (OSError, ValueError) as e:
        print(f"✗ Could not read local data: {str(e)}")
        logger.error(f"Could not read local data: {e}")
        return
    records = store.list_all()
    print("\n" + "-" * 60)
    print("LOCAL COLLECTION:")
    print("-" * 60)
    for status in RecordStatus:
        print(f"  {status.value:>10}: {sum(1 for r in records if r.status == status)} videos")
    print(f"  {'in lists':>10}: {sum(1 for r in records if r.list_memberships)} videos")
    print(f"  {'lists':>10}: {len(store.lists_get_all())}")
    print(f"  {'actors':>10}: {len(store.list_actors())}")
    checkpoint = CheckpointStore(CHECKPOINT_FILE, CHECKPOINT_MAX_AGE_HOURS).peek()
    if checkpoint is not None:
        print(f"\n⚠ Saved checkpoint: {checkpoint.summary()}")
    print("-" * 60)


def cancel_running_sync():
    """Create the cancel file; a sync in any terminal stops at its next check"""
    try:
        request_cancel(CANCEL_FILE)
        print(f"\n✓ Cancel file created: {CANCEL_FILE}\nThe running sync will stop and save a checkpoint.")
        logger.info(f"Cancel file created: {CANCEL_FILE}")
    except OSError as e:
        print(f"\n✗ Failed to create cancel file: {str(e)}")
        logger.error(f"Failed to create cancel file {CANCEL_FILE}: {e}")


def discard_checkpoint():
    checkpoints = CheckpointStore(CHECKPOINT_FILE, CHECKPOINT_MAX_AGE_HOURS)
    checkpoint = checkpoints.peek()
    if checkpoint is None:
        print("\n✓ No saved checkpoint")
        return
    print(f"\n  {checkpoint.summary()}")
    if ask_yes_no("Discard this checkpoint?"):
        checkpoints.clear()
        print("✓ Checkpoint discarded")


SYNC_CHOICES = {
    '1': CollectionType.WATCHED_VIDEOS,
    '2': CollectionType.WANT_VIDEOS,
    '3': CollectionType.ALL_VIDEOS,
    '4': CollectionType.LISTS,
    '5': CollectionType.ACTOR_FAVORITES,
}


def main():
    """Main application loop"""
    print_header()

    if not validate_credentials():
        sys.exit(1)

    while True:
        show_menu()
        choice = input("Enter your choice (1-9): ").strip()
        if not choice.isdigit() or not (1 <= int(choice) <= 9):
            print("✗ Invalid choice. Please enter a number between 1 and 9.")
            continue
        if choice in SYNC_CHOICES:
            collection_type = SYNC_CHOICES[choice]
            mode = SyncMode.FULL if collection_type is CollectionType.LISTS else choose_mode()
            run_sync(collection_type, mode)
        elif choice == '6':
            show_summary()
        elif choice == '7':
            cancel_running_sync()
        elif choice == '8':
            discard_checkpoint()
        elif choice == '9':
            print("\n✓ Goodbye!\n")
            break


if __name__ == "__main__":
    main()
