"""Constants and configuration for lbcollect."""

from lbcollect import __version__

# Measurement provider
GLOBALPING_API_URL = "https://api.globalping.io/v1"
DEFAULT_PROVIDER = "globalping"
POLL_INTERVAL_S = 0.5
HTTP_TIMEOUT_S = 30.0

# Edge trace endpoint
TRACE_PATH = "/cdn-cgi/trace"
PROTOCOLS = ("HTTP", "HTTPS", "HTTP2")
DEFAULT_PROTOCOL = "HTTPS"

# Rate-limit gate
LIMITS_RETRY_S = 5.0       # limit fetch failed
RESET_MARGIN_S = 1.0       # added to the provider's reset window
QUOTA_REJECTED_S = 5.0     # creation rejected with rate_limit_exceeded
CREATE_ERROR_S = 1.0       # any other creation failure

# Coverage stopping rule
MIN_REQUESTS_THRESHOLD = 300
GROWTH_FACTOR = 1.0
COVERAGE_SCOPES = ("local", "global")

# Sweep modes
MAX_CONSECUTIVE_FAILURES = 5
BATCH_SIZE = 10
PAUSE_EVERY_N_REQUESTS = 5_000
PAUSE_S = 60.0

# Progress is logged every N completed requests and at completion
PROGRESS_EVERY = 10

# Output
RESULTS_DIR = "results"
NULL_MARKER = "null"

COLLECTION_MODES = ("session", "sweep", "batch", "local")

USER_AGENT = f"lbcollect/{__version__}"
