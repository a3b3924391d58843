"""
Retrying fetch layer over a requests session, with challenge detection.
"""

import logging
import time
from dataclasses import dataclass

import requests

from .browser import apply_cookies_to_session, browser_login
from .challenge import is_challenge
from .errors import ChallengeUnresolvedError, NetworkError

logger = logging.getLogger(__name__)

# Statuses whose markup may be a verification page
CHALLENGE_STATUSES = (403, 503)


def is_retryable_status(status_code):
    return status_code == 429 or status_code >= 500


@dataclass
class FetchResponse:
    url: str
    status_code: int
    content_type: str
    text: str
    requested_url: str = ""

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    @property
    def is_markup(self):
        return "text/html" in (self.content_type or "").lower()

    @classmethod
    def from_requests(cls, requested_url, response):
        return cls(
            url=response.url or requested_url,
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type", ""),
            text=response.text,
            requested_url=requested_url,
        )


class RetryingFetcher:
    """One GET with timeout, bounded retry and embedded challenge handling"""

    def __init__(self, session=None, resolver=None, timeout=30, max_attempts=3,
                 retry_delay=1.0, headers=None, sleep=time.sleep, detector=is_challenge):
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)
        self.resolver = resolver
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.detector = detector

    def fetch(self, url):
        """GET url and return a FetchResponse.

        Raises NetworkError once retries are exhausted and
        ChallengeUnresolvedError when a verification page cannot be passed.
        """
        last_status = None
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._get(url)
            except requests.RequestException as e:
                last_error = e
                logger.warning("Request to %s failed (attempt %d/%d): %s", url, attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    self.sleep(self.retry_delay)
                continue

            if self._looks_like_challenge(response):
                logger.info("Challenge detected at %s (HTTP %d)", url, response.status_code)
                return self._handle_challenge(url)

            if is_retryable_status(response.status_code):
                last_status = response.status_code
                last_error = None
                logger.warning("HTTP %d from %s (attempt %d/%d)", response.status_code, url, attempt, self.max_attempts)
                if attempt < self.max_attempts:
                    self.sleep(self.retry_delay)
                continue

            return response

        if last_error is not None:
            raise NetworkError(url, f"Request failed: {last_error}", attempts=self.max_attempts)
        raise NetworkError(url, f"HTTP {last_status}", status_code=last_status, attempts=self.max_attempts)

    def _get(self, url):
        raw = self.session.get(url, timeout=self.timeout)
        return FetchResponse.from_requests(url, raw)

    def _looks_like_challenge(self, response):
        if not (response.ok or response.status_code in CHALLENGE_STATUSES):
            return False
        return response.is_markup and self.detector(response.text)

    def _handle_challenge(self, url):
        if self.resolver is None:
            raise ChallengeUnresolvedError(url, "no resolver configured")

        resolution = self.resolver.resolve(url)
        if not resolution.success:
            reason = resolution.reason.value if resolution.reason else "unknown"
            raise ChallengeUnresolvedError(url, reason)
        if self.detector(resolution.content or ""):
            raise ChallengeUnresolvedError(url, "resolved page is still a challenge")

        apply_cookies_to_session(self.session, resolution.cookies)

        try:
            response = self._get(url)
        except requests.RequestException as e:
            raise NetworkError(url, f"Request failed after verification: {e}", attempts=1) from e
        if self._looks_like_challenge(response):
            raise ChallengeUnresolvedError(url, "challenge returned after verification")
        return response


# ==================== SESSION AUTH ====================

def parse_cookie_header(cookie_header):
    """'a=1; b=2' -> {'a': '1', 'b': '2'}"""
    cookies = {}
    for part in (cookie_header or "").split(";"):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        if name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def authenticate_session(session, cookie_header="", username="", password="",
                         login_page="", login_config=None, headless=True, timeout=30):
    """Make the requests session logged in.

    A raw cookie header wins; otherwise a browser login runs and its cookies
    are copied over.
    """
    if cookie_header:
        for name, value in parse_cookie_header(cookie_header).items():
            session.cookies.set(name, value)
        logger.info("Using session cookie from configuration")
        return

    cookies = browser_login(
        login_page, username, password, login_config or {},
        headless=headless, timeout=timeout,
        user_agent=session.headers.get("User-Agent"),
    )
    apply_cookies_to_session(session, cookies)
    logger.info("Copied %d browser cookies into the HTTP session", len(cookies))
