"""
Self-play production client package.

Keeps a pool of self-play workers generating games with the server's current
best network, uploads each finished game, and moves every worker to a new
network as soon as the server publishes one.

Usage:
    python -m autoplay --help
    python -m autoplay --gpu 0 --games 2 --keep-pgn kept/
"""

from autoplay.constants import (
    CLIENT_VERSION,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)

__all__ = [
    # Constants
    'CLIENT_VERSION',
    'MAX_RETRIES',
    'RETRY_BASE_DELAY',
    'RETRY_MAX_DELAY',
    # Pool (import from autoplay.production when needed)
    # - Production, and autoplay.config.build_production to wire one up
]
