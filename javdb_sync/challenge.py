"""
Challenge detection and the interactive resolver.

When the site answers with a verification page instead of content, the
resolver opens a visible browser on that URL, lets the user pass the check,
and only accepts completion after the user says so AND the page content no
longer looks like a challenge. The window title is polled for a status hint
only.
"""

import logging
import queue
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from selenium.common.exceptions import (
    InvalidSessionIdException,
    NoSuchWindowException,
    WebDriverException,
)

from config.config import SITE_CONFIG
from .browser import apply_cookies_to_driver, create_driver

logger = logging.getLogger(__name__)

DEFAULT_MARKERS = {
    "keywords": ["Security Verification", "Please complete the security check"],
    "form_markers": ["cf-challenge", "cf_chl_opt"],
    "normal_content_markers": ["video-meta", "movie-list", "video-detail", "panel-block"],
    "title_phrase": "Security Verification",
}


def challenge_markers():
    markers = dict(DEFAULT_MARKERS)
    markers.update(SITE_CONFIG.get("challenge", {}))
    return markers


def is_challenge(content, markers=None):
    """True when the page is a verification challenge rather than real content.

    A challenge shows a keyword phrase or a challenge-form marker, and none of
    the markers that only appear on normal content pages.
    """
    if not content:
        return False
    markers = markers or challenge_markers()
    flagged = (any(k in content for k in markers["keywords"])
               or any(m in content for m in markers["form_markers"]))
    if not flagged:
        return False
    return not any(m in content for m in markers["normal_content_markers"])


class ResolutionFailure(str, Enum):
    USER_CANCELLED = "USER_CANCELLED"
    SESSION_CLOSED = "SESSION_CLOSED"
    SESSION_UNAVAILABLE = "SESSION_UNAVAILABLE"


@dataclass
class ChallengeResolution:
    success: bool
    content: Optional[str] = None
    reason: Optional[ResolutionFailure] = None
    cookies: list = field(default_factory=list)


class SessionClosed(Exception):
    """The challenge window was closed from outside"""


class SessionUnavailable(Exception):
    """The browser could not be started or did not answer"""


# ==================== SESSION HOST ====================

class BrowserSessionHost:
    """Visible Firefox window for one challenge at a time"""

    def __init__(self, site_url, cookie_source=None, user_agent=None):
        self.site_url = site_url
        # Callable returning the current HTTP session cookies as dicts
        self.cookie_source = cookie_source
        self.user_agent = user_agent

    def open_session(self, url):
        try:
            driver = create_driver(headless=False, user_agent=self.user_agent)
        except WebDriverException as e:
            raise SessionUnavailable(f"Could not start browser: {e.msg or e}") from e
        try:
            if self.cookie_source:
                apply_cookies_to_driver(driver, self.site_url, self.cookie_source())
            driver.get(url)
        except (NoSuchWindowException, InvalidSessionIdException) as e:
            raise SessionClosed(str(e)) from e
        except WebDriverException as e:
            # Page load trouble is fine, the user drives the window from here
            logger.warning("Challenge page load reported: %s", e.msg or e)
        return driver

    def poll_title(self, handle):
        return self._call(lambda: handle.title)

    def extract_content(self, handle):
        return self._call(lambda: handle.page_source)

    def get_cookies(self, handle):
        return self._call(handle.get_cookies)

    def close_session(self, handle):
        try:
            handle.quit()
        except WebDriverException as e:
            logger.debug("Error closing challenge browser: %s", e)

    @staticmethod
    def _call(fn):
        try:
            return fn()
        except (NoSuchWindowException, InvalidSessionIdException) as e:
            raise SessionClosed(str(e)) from e
        except WebDriverException as e:
            message = str(e)
            if "discarded" in message or "not reachable" in message or "Failed to decode" in message:
                raise SessionClosed(message) from e
            raise SessionUnavailable(message) from e


# ==================== USER SIGNALS ====================

class Signal(str, Enum):
    DONE = "done"
    CANCEL = "cancel"


class ConsoleSignals:
    """Reads the user's "done"/"cancel" answer from stdin without blocking the poll loop.

    Each reader thread reads exactly one line; a new one is started only when
    the previous one has delivered its line.
    """

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self._answers = queue.Queue()
        self._reading = False

    def _read_line(self):
        line = self.stream.readline()
        self._reading = False
        if not line:
            self._answers.put(Signal.CANCEL)
            return
        answer = line.strip().lower()
        self._answers.put(Signal.CANCEL if answer in ("c", "cancel", "q", "quit") else Signal.DONE)

    def wait(self, timeout):
        if not self._reading and self._answers.empty():
            self._reading = True
            threading.Thread(target=self._read_line, daemon=True).start()
        try:
            return self._answers.get(timeout=timeout)
        except queue.Empty:
            return None


# ==================== RESOLVER ====================

class ChallengeResolver:
    """Interactive resolution of a verification challenge"""

    def __init__(self, host, signals, poll_interval=1.5, settle_delay=1.0,
                 is_cancelled=None, detector=is_challenge, sleep=time.sleep):
        self.host = host
        self.signals = signals
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay
        self.is_cancelled = is_cancelled or (lambda: False)
        self.detector = detector
        self.sleep = sleep
        self._lock = threading.Lock()

    def resolve(self, url):
        # One window at a time, even when two jobs hit a challenge together
        with self._lock:
            return self._resolve(url)

    def _resolve(self, url):
        logger.warning("Verification challenge at %s, opening browser", url)
        try:
            handle = self.host.open_session(url)
        except SessionUnavailable as e:
            print(f"✗ Could not open a browser for verification: {e}")
            return ChallengeResolution(False, reason=ResolutionFailure.SESSION_UNAVAILABLE)
        except SessionClosed:
            return ChallengeResolution(False, reason=ResolutionFailure.SESSION_CLOSED)

        print("\n" + "=" * 60)
        print("⚠ SECURITY VERIFICATION REQUIRED")
        print("=" * 60)
        print(f"  A browser window opened on: {url}")
        print("  1. Complete the verification in that window")
        print("  2. Wait until the normal page is shown")
        print("  3. Press Enter here when done (or type 'c' + Enter to cancel)")
        print("=" * 60)

        last_title = None
        try:
            while True:
                if self.is_cancelled():
                    self.host.close_session(handle)
                    return ChallengeResolution(False, reason=ResolutionFailure.USER_CANCELLED)

                signal = self.signals.wait(self.poll_interval)

                if signal is Signal.CANCEL:
                    print("✗ Verification cancelled")
                    self.host.close_session(handle)
                    return ChallengeResolution(False, reason=ResolutionFailure.USER_CANCELLED)

                try:
                    title = self.host.poll_title(handle)
                except SessionUnavailable:
                    title = None
                if title and title != last_title:
                    last_title = title
                    if title_looks_verified(title):
                        print("  → Page looks ready, press Enter to continue")
                    else:
                        print(f"  → Waiting for verification... ({title})")

                if signal is not Signal.DONE:
                    continue

                self.sleep(self.settle_delay)
                try:
                    content = self.host.extract_content(handle)
                except SessionUnavailable as e:
                    print(f"  ⚠ Could not read the page yet ({e}), press Enter to try again")
                    continue

                if self.detector(content):
                    print("  ⚠ Still on the verification page. Finish it, then press Enter again")
                    continue

                try:
                    cookies = self.host.get_cookies(handle)
                except SessionUnavailable:
                    cookies = []
                self.host.close_session(handle)
                print("✓ Verification completed")
                return ChallengeResolution(True, content=content, cookies=cookies or [])

        except SessionClosed:
            print("✗ Verification window was closed")
            self.host.close_session(handle)
            return ChallengeResolution(False, reason=ResolutionFailure.SESSION_CLOSED)


def title_looks_verified(title):
    phrase = challenge_markers().get("title_phrase", "Security Verification")
    return bool(title) and phrase not in title and "Just a moment" not in title
