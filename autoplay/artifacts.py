"""
Artifact (network) resolution and synchronization.

Asks the server which network is current, makes sure a verified copy exists
locally, and rides out server outages with exponential backoff. Version skew
with the server and running out of retries are fatal: every worker depends on
the same network, so there is nothing the pool can route around.
"""

import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from autoplay.constants import (
    MAX_RETRIES,
    RETRY_BACKOFF_FACTOR,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from autoplay.errors import TransportError, fatal


HASH_CHUNK_SIZE = 1 << 20


@dataclass(frozen=True)
class ArtifactRef:
    """The network the pool is currently required to play with."""
    identifier: str  # sha256 hex digest of the decompressed network
    min_client_version: int
    path: Path


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number `attempt` (0-based)."""
    return min(RETRY_BASE_DELAY * RETRY_BACKOFF_FACTOR ** attempt, RETRY_MAX_DELAY)


def file_sha256(path: Path) -> str:
    """Hex sha256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


def check_local_artifact(path: Path, identifier: str) -> bool:
    """
    Check whether a verified copy of the network exists at `path`.

    Returns True if the file exists and hashes to `identifier`. A file that
    fails verification is deleted so it can be fetched again. Failing to read
    or delete the file is fatal.
    """
    path = Path(path)
    if not path.exists():
        return False

    try:
        actual = file_sha256(path)
    except OSError as e:
        print(f"Unable to open network file for reading: {e}")
        _remove_or_die(path)
        return False

    if actual == identifier:
        return True

    print("Downloaded network hash doesn't match.")
    _remove_or_die(path)
    return False


def _remove_or_die(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        fatal(f"Unable to delete the network file {path}. Check permissions. ({e})")


class ArtifactSynchronizer:
    """
    Resolves the currently required network through a transport.

    The transport must provide:
        query_latest() -> (identifier, min_client_version)
        fetch_and_verify(identifier, dest) -> Path
    and raise TransportError for anything worth retrying.
    """

    def __init__(self, transport, client_version: int, networks_dir: Path,
                 sleep=time.sleep):
        self.transport = transport
        self.client_version = client_version
        self.networks_dir = Path(networks_dir)
        self._sleep = sleep

    def artifact_path(self, identifier: str) -> Path:
        return self.networks_dir / identifier

    def resolve(self, current: Optional[ArtifactRef] = None) -> tuple[ArtifactRef, bool]:
        """
        Return (artifact, changed).

        `changed` is False only when the server still reports the same network
        as `current`. Raises FatalError on version skew, on an unusable local
        file and after MAX_RETRIES failed attempts.
        """
        for attempt in range(MAX_RETRIES):
            try:
                return self._resolve_once(current)
            except TransportError as e:
                print("Network connection to server failed.")
                print(f"  {e}")
                if attempt < MAX_RETRIES - 1:
                    delay = backoff_delay(attempt)
                    print(f"Retrying in {delay:g} s.", flush=True)
                    self._sleep(delay)

        fatal("Maximum number of retries exceeded. Giving up.")

    def _resolve_once(self, current: Optional[ArtifactRef]) -> tuple[ArtifactRef, bool]:
        identifier, min_version = self.transport.query_latest()
        print(f"Best network hash: {identifier}")
        if min_version > self.client_version:
            print(f"Required client version: {min_version}")
            fatal(
                f"Server requires client version {min_version} "
                f"but we are version {self.client_version}. Check for updates."
            )
        print(f"Required client version: {min_version} (OK)")

        dest = self.artifact_path(identifier)
        if check_local_artifact(dest, identifier):
            print("Already downloaded network.")
        else:
            try:
                self.networks_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                fatal(f"Unable to create the networks directory {self.networks_dir}. ({e})")
            dest = Path(self.transport.fetch_and_verify(identifier, dest))
            print(f"Net filename: {dest}")

        if current is not None and current.identifier == identifier:
            return current, False
        return ArtifactRef(identifier, min_version, dest), True
