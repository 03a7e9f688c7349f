"""Configuration constants for the waitlist tracker"""

from pathlib import Path

# Target site
BASE_URL = "https://www.alaskaair.com"
STATUS_URL_TEMPLATE = BASE_URL + "/status/{flight_number}/{date}"
DEFAULT_DATA_DIR = Path("./data")
DEFAULT_SCREENSHOT_DIR = Path("./verification_screenshots")

# Page markers
SEGMENT_BLOCK_SELECTOR = ".main-row-status"
FLIGHT_ELEMENT_SELECTOR = "auro-flight"
ACCORDION_SELECTOR = ".accordion-container-fs"
WAITLIST_PANEL_SELECTOR = ".waitlist-single-container"
WAITLIST_CONTAINER_SELECTOR = ".waitlist-text-container"
WAITLIST_TABLE_ROW_SELECTOR = "table.auro_table tbody tr"
UPGRADE_PANEL_HEADING = "Upgrade requests"
STATUS_CONTENT_SELECTORS = (
    WAITLIST_CONTAINER_SELECTOR,
    ACCORDION_SELECTOR,
    SEGMENT_BLOCK_SELECTOR,
)
CHALLENGE_CONTROL_SELECTOR = "#px-captcha"
PASSENGER_CODE_PATTERN = r"^[A-Z]{2,3}/[A-Z]$"

# Browser timeouts (milliseconds, Playwright convention)
NAVIGATION_TIMEOUT_MS = 30000
CONTENT_WAIT_TIMEOUT_MS = 5000
POST_CHALLENGE_WAIT_TIMEOUT_MS = 2000
SELECTOR_CHECK_TIMEOUT_MS = 2000

# Whole-fetch budget (seconds)
FETCH_TIMEOUT = 120.0

# Navigation retry configuration
NAVIGATION_ATTEMPTS = 3
NAVIGATION_RETRY_DELAY = 5.0

# Browser launch retry configuration
LAUNCH_ATTEMPTS = 3
LAUNCH_INITIAL_BACKOFF = 1.0
LAUNCH_MAX_BACKOFF = 10.0
DISCONNECT_DEBOUNCE = 5.0  # Seconds to wait after a disconnect before relaunching
STRAY_PROCESS_PATTERN = "camoufox"

# Fingerprint randomization
VIEWPORTS = (
    (1920, 1080),
    (1680, 1050),
    (1536, 864),
    (1440, 900),
    (1366, 768),
)
MACOS_MINOR_VERSIONS = (13, 14, 15)
FIREFOX_VERSIONS = range(128, 136)
BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})

# Challenge handling
CHALLENGE_ATTEMPTS = 3  # First try plus two retries
CHALLENGE_RETRY_DELAY = 2.0
CHALLENGE_HOLD_SECONDS = 15.0
CHALLENGE_SETTLE_SECONDS = 2.0
CHALLENGE_VERIFY_WAIT_SECONDS = 3.0
CHALLENGE_RECHECK_SECONDS = 2.0
CHALLENGE_ATTEMPT_TIMEOUT = 30.0
CHALLENGE_FALLBACK_X = (872, 1096)
CHALLENGE_FALLBACK_Y = (615, 617)
CHALLENGE_JITTER_PX = 6
CHALLENGE_TITLE_MARKERS = ("Verify", "Security")
CHALLENGE_CONTENT_MARKERS = ("Press & Hold", "verify you are a human")
DENIAL_TITLE_MARKERS = ("been denied",)
DENIAL_CONTENT_MARKERS = ("Access to this page has been denied",)

# Diagnostic screenshots during the hold phase
SCREENSHOT_INTERVAL = 3.0
SCREENSHOT_MAX_DURATION = 20.0

# Rate limiting and caching (independent knobs)
RATE_LIMIT_INTERVAL = 600.0  # 10 minutes between fetches per flight key
CACHE_FRESHNESS = 300.0  # 5 minutes

# Scheduler
SNAPSHOT_INTERVAL = 4 * 60 * 60  # 4 hours
SNAPSHOT_LOOKAHEAD_DAYS = 2

# Status tiers (hours before departure)
TIER_HIGHEST_HOURS = 72
TIER_MIDDLE_HOURS = 48

# Fixed UTC offsets for departure airports (hours)
AIRPORT_UTC_OFFSETS = {
    "SFO": -8,
    "LAX": -8,
    "SAN": -8,
    "SJC": -8,
    "SEA": -8,
    "PDX": -8,
    "GEG": -8,
    "LAS": -8,
    "ANC": -9,
    "FAI": -9,
    "JNU": -9,
    "HNL": -10,
    "OGG": -10,
    "KOA": -10,
    "JFK": -5,
    "EWR": -5,
    "BOS": -5,
    "MIA": -5,
    "MCO": -5,
    "DCA": -5,
    "ORD": -6,
    "DFW": -6,
    "AUS": -6,
    "DEN": -7,
    "PHX": -7,
    "BOI": -7,
    "SLC": -7,
}
DEFAULT_UTC_OFFSET = -8

# Input validation
MAX_DAYS_AHEAD = 330
