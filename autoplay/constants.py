"""
Constants for the self-play production client.
"""

# Version of this client, checked against the server's minimum on every resolve
CLIENT_VERSION = 18

# Network sync retry settings - exponential backoff for riding out server outages
RETRY_BASE_DELAY = 30  # seconds (initial delay)
RETRY_MAX_DELAY = 60 * 60  # seconds (cap on delay between retries)
RETRY_BACKOFF_FACTOR = 1.5
MAX_RETRIES = 4 * 24  # Stop retrying after ~4 days

# Resign policy: fraction of games played with resignation disabled
NO_RESIGN_PROBABILITY = 0.2
DEFAULT_RESIGN_PERCENT = 5

DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_GAMES_PER_DEVICE = 1

EXIT_FAILURE = 1
