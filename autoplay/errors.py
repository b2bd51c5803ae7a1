"""
Error types shared by the synchronizer, transport and coordinator.
"""

from autoplay.constants import EXIT_FAILURE


class TransportError(Exception):
    """A transient failure talking to the server. Worth retrying."""


class FatalError(SystemExit):
    """
    A condition no local retry can repair (version skew, exhausted retries,
    unusable local artifact). Exits the process with EXIT_FAILURE when it
    reaches the main thread.
    """

    def __init__(self, message: str):
        super().__init__(EXIT_FAILURE)
        self.message = message

    def __str__(self):
        return self.message


def fatal(message: str):
    """Print the reason and raise FatalError."""
    print(message, flush=True)
    raise FatalError(message)
