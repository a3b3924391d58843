import logging

from .errors import NotAuthenticatedOrStructureChanged
from .models import UserProfile

logger = logging.getLogger(__name__)


class ProfileReader:
    """Reads the logged-in user's identity and collection counts"""

    def __init__(self, fetcher, extractor, profile_url, sign_in_path="/login"):
        self.fetcher = fetcher
        self.extractor = extractor
        self.profile_url = profile_url
        self.sign_in_path = sign_in_path

    def fetch_profile(self):
        response = self.fetcher.fetch(self.profile_url)
        if self.sign_in_path in response.url.split('?')[0]:
            raise NotAuthenticatedOrStructureChanged("Redirected to sign-in page: session is not logged in")
        if not response.ok:
            raise NotAuthenticatedOrStructureChanged(f"Profile page returned HTTP {response.status_code}")

        fields = self.extractor.extract_profile(response.text)
        identity = fields['email'] or fields['username']
        if not identity:
            raise NotAuthenticatedOrStructureChanged("No email or username on the profile page")

        profile = UserProfile(
            identity=identity,
            email=fields['email'],
            username=fields['username'],
            watched_count=fields['watched_count'],
            want_count=fields['want_count'],
        )
        logger.info("Profile %s: %d watched, %d want", identity, profile.watched_count, profile.want_count)
        return profile
