import os
import json
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Website configuration
SITE_URL = os.getenv("JAVDB_SITE_URL", "https://javdb.com").rstrip("/")
LOGIN_PAGE = f"{SITE_URL}/login"

# Credentials (store in .env file)
USERNAME = os.getenv("JAVDB_USERNAME", "")
PASSWORD = os.getenv("JAVDB_PASSWORD", "")
# Raw "Cookie" header copied from a logged-in browser; skips the browser login
SESSION_COOKIE = os.getenv("JAVDB_COOKIE", "")

# Data storage
DATA_DIR = os.getenv("JAVDB_DATA_DIR", os.path.join(os.path.dirname(__file__), "..", "data"))
RECORDS_FILE = os.path.join(DATA_DIR, "records.json")
LISTS_FILE = os.path.join(DATA_DIR, "lists.json")
ACTORS_FILE = os.path.join(DATA_DIR, "actors.json")
CHECKPOINT_FILE = os.path.join(DATA_DIR, ".sync_checkpoint.json")
CANCEL_FILE = os.path.join(DATA_DIR, ".sync_cancel")
LOG_FILE = os.path.join(DATA_DIR, "sync.log")

# Load site configuration
CONFIG_DIR = os.path.dirname(__file__)
SITE_CONFIG_FILE = os.path.join(CONFIG_DIR, "site_config.json")


def load_site_config(path=SITE_CONFIG_FILE):
    """Load site-specific URL shapes, markers and timing from JSON"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        print(f"⚠ Warning: Could not load site config: {str(e)}")
        return {}


SITE_CONFIG = load_site_config()


def _timing(key, default):
    value = os.getenv(f"JAVDB_{key.upper()}")
    if value is None:
        value = SITE_CONFIG.get("timing", {}).get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# Sync configuration
TIMEOUT = _timing("timeout", 30.0)
REQUEST_INTERVAL = _timing("request_interval", 3.0)
PAGE_DELAY = _timing("page_delay", 1.0)
LIST_INDEX_DELAY = _timing("list_index_delay", 0.5)
RETRY_DELAY = _timing("retry_delay", 1.0)
MAX_ATTEMPTS = int(_timing("max_attempts", 3))
CHALLENGE_POLL_INTERVAL = _timing("challenge_poll_interval", 1.5)
SETTLE_DELAY = _timing("settle_delay", 1.0)

PAGE_SIZE = 20
INCREMENTAL_TOLERANCE = int(os.getenv("JAVDB_INCREMENTAL_TOLERANCE", "20"))
LIST_PAGE_CAP = 50
CHECKPOINT_MAX_AGE_HOURS = 24
HEADLESS = os.getenv("JAVDB_HEADLESS", "1") != "0"  # Login browser only; challenges always open visibly
