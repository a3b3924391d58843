"""
Record extractor: turns raw site pages into item references, video details,
lists, actors and profile fields. Selectors and labels come from
site_config.json.
"""

import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from config.config import SITE_CONFIG, SITE_URL
from .challenge import is_challenge
from .models import ActorRecord, ListEntity, RemoteItemRef, VideoDetail

logger = logging.getLogger(__name__)

# Order matters: FC2-PPV-123 would otherwise match as PPV-123
VIDEO_ID_PATTERNS = [
    re.compile(r'FC2-PPV-\d+', re.IGNORECASE),
    re.compile(r'[A-Z]{2,6}-\d{2,6}'),
    re.compile(r'\d{4,8}_\d{1,3}'),
    re.compile(r'\d{6,12}'),
    re.compile(r'[a-z0-9]+-\d+_\d+', re.IGNORECASE),
]

VIDEO_HREF_RE = re.compile(r'href="/v/([A-Za-z0-9]+)"')
COUNT_RE = re.compile(r'\(\s*([\d,.\s]+)\s*\)')
LIST_ITEM_COUNT_RE = re.compile(r'(\d+)\s*部影片')
LIST_CLICKS_RE = re.compile(r'點擊了\s*(\d+)\s*次')
BLOCKED_TITLE_WORDS = ("Security Verification", "Cloudflare")

DETAIL_MARKER = ".video-detail, .video-meta-panel, .movie-panel-info"


def normalize_video_id(text):
    """Pull a video code out of a heading like 'ABC-123 Some title'"""
    if not text:
        return None
    text = text.strip()
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(text)
        if match:
            found = match.group(0)
            return found.upper() if found.upper().startswith("FC2") else found
    first_word = re.sub(r'[^\x21-\x7e]', '', text.split()[0]) if text.split() else ''
    return first_word if len(first_word) >= 3 else None


def parse_count(text):
    if not text:
        return None
    match = COUNT_RE.search(text)
    if not match:
        return None
    digits = re.sub(r'[^\d]', '', match.group(1))
    return int(digits) if digits else None


class SiteExtractor:
    """BeautifulSoup extraction for the configured site"""

    def __init__(self, site_config=None, site_url=None):
        self.config = site_config if site_config is not None else SITE_CONFIG
        self.site_url = (site_url or self.config.get('site_url') or SITE_URL).rstrip('/')

    def selector(self, key, default):
        return self.config.get('selectors', {}).get(key, default)

    def labels(self, key, default):
        return self.config.get('labels', {}).get(key, default)

    def absolute(self, href):
        return urljoin(self.site_url + '/', href) if href else None

    # ==================== INDEX PAGES ====================

    def extract_index_items(self, content):
        """Ordered, de-duplicated video references from an index or list page"""
        soup = BeautifulSoup(content or '', 'html.parser')
        refs = []
        seen = set()

        for link in soup.select(self.selector('index_item', "a[href^='/v/']")):
            href = link.get('href', '')
            url_id = href.split('/v/', 1)[-1].split('?')[0].split('#')[0].strip('/')
            if not url_id or '/' in url_id or url_id in seen:
                continue
            seen.add(url_id)
            title_el = link.select_one(self.selector('index_item_title', '.video-title strong'))
            display_id = title_el.get_text(strip=True) if title_el else None
            refs.append(RemoteItemRef(url_identity=url_id, display_id=display_id or None))

        if not refs:
            # Markup without the usual anchors; fall back to raw hrefs
            for url_id in VIDEO_HREF_RE.findall(content or ''):
                if url_id not in seen:
                    seen.add(url_id)
                    refs.append(RemoteItemRef(url_identity=url_id))

        return refs

    # ==================== DETAIL PAGES ====================

    def extract_detail(self, content, fallback_identity, source_url=None):
        """Parse a video detail page. Returns None for challenges and non-detail pages."""
        if not content or is_challenge(content):
            return None
        soup = BeautifulSoup(content, 'html.parser')
        if soup.select_one(DETAIL_MARKER) is None:
            return None

        identity = self.extract_real_id(soup, fallback_identity)
        return VideoDetail(
            identity=identity,
            title=self._title(soup, identity),
            tags=self._tags(soup),
            source_url=self._canonical_url(soup) or source_url or self.absolute(f"/v/{fallback_identity}"),
            release_date=self._panel_value(soup, self.labels('release_date', ['日期'])),
            image_url=self._cover(soup),
        )

    def extract_real_id(self, soup, fallback_identity):
        heading = soup.select_one(self.selector('detail_title', 'h2.title strong'))
        text = heading.get_text(" ", strip=True) if heading else ''
        if not text:
            block = soup.select_one(self.selector('detail_first_block', '.panel-block.first-block .title.is-4'))
            text = block.get_text(" ", strip=True) if block else ''
        return normalize_video_id(text) or fallback_identity

    def _title(self, soup, identity):
        title = ''
        if soup.title and soup.title.string:
            title = soup.title.string.split('|')[0].strip()
        if any(word in title for word in BLOCKED_TITLE_WORDS):
            title = ''
        if not title:
            heading = soup.select_one('h2.title')
            title = heading.get_text(" ", strip=True) if heading else ''
        if title.upper().startswith(identity.upper()):
            title = title[len(identity):].strip()
        return title or identity

    def _panel_block(self, soup, labels):
        for block in soup.select('.panel-block'):
            label = block.find('strong')
            if label and any(text in label.get_text() for text in labels):
                return block
        return None

    def _panel_value(self, soup, labels):
        block = self._panel_block(soup, labels)
        if block is None:
            return None
        value = block.select_one('.value')
        text = value.get_text(strip=True) if value else block.get_text(strip=True).split(':', 1)[-1].strip()
        return text or None

    def _tags(self, soup):
        block = self._panel_block(soup, self.labels('tags', ['類別']))
        anchors = block.find_all('a') if block else []
        if not anchors:
            anchors = soup.select("a[href*='/genres/'], a[href*='/tags/']")
        tags = []
        for a in anchors:
            name = a.get_text(strip=True)
            if name and name not in tags:
                tags.append(name)
        return tags

    def _cover(self, soup):
        img = soup.select_one("img[src*='jdbstatic.com/covers']")
        if img is None:
            img = soup.select_one(self.selector('detail_cover', 'img.video-cover, .column-video-cover img'))
        if img is not None and img.get('src'):
            return self.absolute(img['src'])
        gallery = soup.select_one(self.selector('detail_gallery', "a[data-fancybox='gallery']"))
        if gallery is not None and gallery.get('href'):
            return self.absolute(gallery['href'])
        for img in soup.find_all('img', src=True):
            if 'cover' in img['src']:
                return self.absolute(img['src'])
        return None

    @staticmethod
    def _canonical_url(soup):
        link = soup.find('link', rel='canonical')
        if link and link.get('href'):
            return link['href']
        meta = soup.find('meta', property='og:url')
        if meta and meta.get('content'):
            return meta['content']
        return None

    # ==================== LISTS ====================

    def extract_lists(self, content, kind):
        soup = BeautifulSoup(content or '', 'html.parser')
        lists = []
        for item in soup.select(self.selector('list_item', 'li.list-item')):
            list_id = None
            if (item.get('id') or '').startswith('list-'):
                list_id = item['id'][len('list-'):]
            link = item.select_one("a[href^='/lists/']")
            if not list_id and link:
                list_id = link['href'].split('/lists/', 1)[-1].split('?')[0].strip('/')
            if not list_id:
                continue

            name_el = item.select_one(self.selector('list_name', '.list-name'))
            name = name_el.get_text(strip=True) if name_el else (link.get_text(strip=True) if link else list_id)
            meta_el = item.select_one(self.selector('list_meta', '.meta'))
            meta = meta_el.get_text(" ", strip=True) if meta_el else ''
            count_match = LIST_ITEM_COUNT_RE.search(meta)
            clicks_match = LIST_CLICKS_RE.search(meta)

            lists.append(ListEntity(
                id=list_id,
                name=name,
                kind=kind,
                source_url=self.absolute(f"/lists/{list_id}"),
                item_count=int(count_match.group(1)) if count_match else None,
                engagement_count=int(clicks_match.group(1)) if clicks_match else None,
            ))
        return lists

    def has_list_content(self, content):
        soup = BeautifulSoup(content or '', 'html.parser')
        if soup.select_one(self.selector('list_videos', '.movie-list .item')) is not None:
            return True
        return soup.select_one('.movie-list') is not None

    def extract_list_item_ids(self, content):
        return self.extract_index_items(content)

    # ==================== ACTORS ====================

    def extract_actors(self, content):
        """Actors on a favorites index page: id, name, aliases and avatar"""
        soup = BeautifulSoup(content or '', 'html.parser')
        actors = []
        for box in soup.select(self.selector('actor_box', 'div.actor-box')):
            actor_id = (box.get('id') or '')
            actor_id = actor_id[len('actor-'):] if actor_id.startswith('actor-') else ''
            link = box.select_one("a[href^='/actors/']")
            if not actor_id and link:
                actor_id = link['href'].split('/actors/', 1)[-1].split('?')[0].strip('/')
            if not actor_id:
                continue

            names = []
            if link and link.get('title'):
                names = [n.strip() for n in link['title'].split(',') if n.strip()]
            if not names:
                strong = box.find('strong')
                names = [strong.get_text(strip=True)] if strong else [actor_id]

            avatar = box.select_one(self.selector('actor_avatar', 'img.avatar'))
            actors.append(ActorRecord(
                id=actor_id,
                name=names[0],
                aliases=names[1:],
                avatar_url=self.absolute(avatar.get('src')) if avatar is not None else None,
                profile_url=self.absolute(f"/actors/{actor_id}"),
            ))
        return actors

    # ==================== PROFILE ====================

    def extract_profile(self, content):
        """email, username and the watched/want counts from the profile page"""
        soup = BeautifulSoup(content or '', 'html.parser')
        urls = self.config.get('urls', {})
        return {
            'email': self._profile_field(soup, 'email', self.labels('email', ['Email'])),
            'username': self._profile_field(soup, 'username', self.labels('username', ['Username'])),
            'watched_count': self._nav_count(
                soup, content, urls.get('watched_videos', '/users/watched_videos'),
                self.labels('watched_nav', ['看過', '看过'])),
            'want_count': self._nav_count(
                soup, content, urls.get('want_videos', '/users/want_watch_videos'),
                self.labels('want_nav', ['想看'])),
        }

    def _nav_count(self, soup, content, href, labels):
        for link in soup.find_all('a', href=True):
            if link['href'].split('?')[0] != href:
                continue
            text = link.get_text(" ", strip=True)
            if any(label in text for label in labels):
                count = parse_count(text)
                if count is not None:
                    return count
        for label in labels:
            match = re.search(re.escape(label) + r'\s*\(\s*([\d,]+)\s*\)', content or '')
            if match:
                return int(match.group(1).replace(',', ''))
        return 0

    @staticmethod
    def _profile_field(soup, name, labels):
        field = soup.find('input', attrs={'name': re.compile(name, re.IGNORECASE)})
        if field and field.get('value'):
            return field['value'].strip()

        for tag in soup.find_all(['span', 'label', 'strong', 'dt']):
            text = tag.get_text(strip=True)
            if not any(text.startswith(label) for label in labels):
                continue
            remainder = re.split(r'[:：]', text, maxsplit=1)
            if len(remainder) == 2 and remainder[1].strip():
                return remainder[1].strip()
            sibling = tag.find_next_sibling()
            if sibling is not None and sibling.get_text(strip=True):
                return sibling.get_text(strip=True)
            tail = tag.next_sibling
            if isinstance(tail, str) and tail.strip(' :：\n\t'):
                return tail.strip(' :：\n\t')
        return ''
