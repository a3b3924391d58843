"""Pytest configuration, fakes and HTML builders shared by the tests."""

import pytest

from config.config import SITE_CONFIG
from javdb_sync.checkpoint import CheckpointStore
from javdb_sync.extractor import SiteExtractor
from javdb_sync.fetcher import FetchResponse
from javdb_sync.models import UserProfile
from javdb_sync.store import LocalStore
from javdb_sync.synchronizer import SyncSettings

SITE = "https://javdb.test"

CHALLENGE_HTML = (
    "<html><head><title>Security Verification</title></head>"
    "<body><div id='cf-challenge'>Please complete the security check</div></body></html>"
)


# ==================== HTML BUILDERS ====================

def index_page(items):
    """items: [(url_id, code)]"""
    boxes = "".join(
        f'<div class="item"><a href="/v/{url_id}" class="box">'
        f'<div class="video-title"><strong>{code}</strong> title</div></a></div>'
        for url_id, code in items
    )
    return f'<html><body><div class="movie-list">{boxes}</div></body></html>'


def detail_page(url_id, code, title="Some title", tags=("Drama", "Solo"), date="2024-01-02"):
    tag_links = "".join(f'<a href="/tags?c7={i}">{tag}</a>' for i, tag in enumerate(tags))
    return (
        f'<html><head><title>{code} {title} | JavDB</title>'
        f'<link rel="canonical" href="{SITE}/v/{url_id}"></head><body>'
        f'<div class="video-detail">'
        f'<h2 class="title is-4"><strong>{code} </strong><strong class="current-title">{title}</strong></h2>'
        f'<div class="column-video-cover"><img class="video-cover" src="https://c0.jdbstatic.com/covers/{url_id}.jpg"></div>'
        f'<div class="video-meta-panel">'
        f'<div class="panel-block first-block"><strong>番號:</strong> <span class="value">{code}</span></div>'
        f'<div class="panel-block"><strong>日期:</strong> <span class="value">{date}</span></div>'
        f'<div class="panel-block"><strong>類別:</strong> <span class="value">{tag_links}</span></div>'
        f'</div></div></body></html>'
    )


def lists_index_page(lists):
    """lists: [(list_id, name, item_count)]"""
    items = "".join(
        f'<li class="list-item" id="list-{list_id}"><a href="/lists/{list_id}">'
        f'<span class="list-name">{name}</span></a>'
        f'<span class="meta">{count} 部影片, 點擊了 7 次</span></li>'
        for list_id, name, count in lists
    )
    return f'<html><body><ul id="lists">{items}</ul></body></html>'


def actors_page(actors):
    """actors: [(actor_id, 'Name,Alias')]"""
    boxes = "".join(
        f'<div class="box actor-box" id="actor-{actor_id}">'
        f'<a href="/actors/{actor_id}" title="{names}">'
        f'<img class="avatar" src="https://c0.jdbstatic.com/avatars/{actor_id}.jpg">'
        f'<strong>{names.split(",")[0]}</strong></a></div>'
        for actor_id, names in actors
    )
    return f'<html><body><div id="actors">{boxes}</div></body></html>'


def profile_page(email="user@example.com", username="tester", watched=0, want=0):
    return (
        '<html><body><div class="user-profile">'
        f'<div><span>電郵地址:</span> <span>{email}</span></div>'
        f'<div><span>用戶名:</span> <span>{username}</span></div>'
        '</div><nav>'
        f'<a href="/users/watched_videos">看過({watched:,})</a>'
        f'<a href="/users/want_watch_videos">想看({want})</a>'
        '</nav></body></html>'
    )


def html(url, text, status=200):
    return FetchResponse(url=url, status_code=status, content_type="text/html; charset=utf-8",
                         text=text, requested_url=url)


# ==================== FAKES ====================

class FakeFetcher:
    """Serves canned pages by URL; unknown URLs answer 404"""

    def __init__(self):
        self.pages = {}
        self.calls = []

    def add(self, url, text, status=200, final_url=None):
        self.pages[url] = html(final_url or url, text, status)

    def fail(self, url, error):
        self.pages[url] = error

    def fetch(self, url):
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            return html(url, "", status=404)
        if isinstance(page, Exception):
            raise page
        if callable(page):
            return page(url)
        return page

    def detail_calls(self):
        return [url for url in self.calls if "/v/" in url]


class FakeProfileReader:
    def __init__(self, profile=None, error=None):
        self.profile = profile or UserProfile(identity="user@example.com", watched_count=0, want_count=0)
        self.error = error

    def fetch_profile(self):
        if self.error is not None:
            raise self.error
        return self.profile


class RecordingProgress:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


class Site:
    """Builds a fake remote site on top of FakeFetcher"""

    def __init__(self, fetcher, settings):
        self.fetcher = fetcher
        self.settings = settings

    def video_index(self, collection, pages):
        """pages: list of [(url_id, code)] per page; details are registered too"""
        for number, items in enumerate(pages, 1):
            self.fetcher.add(self.settings.url(f"{collection}_videos", page=number), index_page(items))
            for url_id, code in items:
                self.detail(url_id, code)

    def detail(self, url_id, code, **kwargs):
        self.fetcher.add(self.settings.url('video_detail', url_id=url_id), detail_page(url_id, code, **kwargs))

    def lists(self, owned, favorited=()):
        self.fetcher.add(self.settings.url('owned_lists', page=1), lists_index_page(owned))
        self.fetcher.add(self.settings.url('owned_lists', page=2), lists_index_page([]))
        self.fetcher.add(self.settings.url('favorite_lists', page=1), lists_index_page(favorited))
        self.fetcher.add(self.settings.url('favorite_lists', page=2), lists_index_page([]))

    def list_items(self, list_id, pages):
        for number, items in enumerate(pages, 1):
            self.fetcher.add(self.settings.url('list_detail', page=number, list_id=list_id), index_page(items))
            for url_id, code in items:
                self.detail(url_id, code)


def make_items(prefix, start, count):
    return [(f"{prefix}{i:03d}", f"{prefix.upper()}-{i:03d}") for i in range(start, start + count)]


# ==================== FIXTURES ====================

@pytest.fixture
def settings():
    return SyncSettings(
        site_url=SITE,
        urls=SITE_CONFIG['urls'],
        page_size=20,
        incremental_tolerance=20,
        request_interval=0,
        page_delay=0,
        list_index_delay=0,
        list_page_cap=50,
        max_attempts=3,
        actor_categories=SITE_CONFIG['actor_categories'],
    )


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def site(fetcher, settings):
    return Site(fetcher, settings)


@pytest.fixture
def extractor():
    return SiteExtractor(site_config=SITE_CONFIG, site_url=SITE)


@pytest.fixture
def store(tmp_path):
    return LocalStore(
        str(tmp_path / "records.json"),
        str(tmp_path / "lists.json"),
        str(tmp_path / "actors.json"),
    )


@pytest.fixture
def checkpoints(tmp_path):
    return CheckpointStore(str(tmp_path / ".sync_checkpoint.json"))


@pytest.fixture
def progress():
    return RecordingProgress()


def no_sleep(_seconds):
    return None
