"""
HTTP transport for network downloads and game uploads.

APIClient talks to the distribution server:
    GET  /best-network-hash  -> "<sha256>\\n<min client version>"
    GET  /best-network       -> gzipped network file
    POST /submit             -> multipart game upload

ResultUploader turns the files a finished game left in the results directory
into one submission, keeping copies on request.
"""

import gzip
import shutil
import zlib
from pathlib import Path
from typing import Optional

import requests

from autoplay.artifacts import check_local_artifact
from autoplay.errors import TransportError, fatal


DOWNLOAD_CHUNK_SIZE = 1 << 16


class APIClient:
    """HTTP client for the network distribution server."""

    def __init__(self, base_url: str, timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()

    def query_latest(self) -> tuple[str, int]:
        """
        Ask for the current best network.

        Returns (network hash, minimum client version).
        """
        try:
            resp = self.session.get(f'{self.base_url}/best-network-hash', timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"API error (best-network-hash): {e}") from e

        lines = resp.text.strip().splitlines()
        if len(lines) != 2:
            print(f"Unexpected output from server:\n{resp.text}")
            raise TransportError("Unexpected output from server")

        identifier = lines[0].strip()
        try:
            min_version = int(lines[1])
        except ValueError as e:
            raise TransportError(f"Bad client version from server: {lines[1]!r}") from e
        return identifier, min_version

    def fetch_and_verify(self, identifier: str, dest: Path) -> Path:
        """
        Download the best network, decompress it to `dest` and check its hash.

        A hash mismatch (for instance the server moved on to a newer network
        mid-download) removes the file and raises TransportError. Failing to
        write either file locally is fatal.
        """
        dest = Path(dest)
        gz_path = dest.with_name(dest.name + '.gz')
        # Never append to a stale partial download
        try:
            gz_path.unlink(missing_ok=True)
        except OSError as e:
            fatal(f"Unable to remove stale download {gz_path}. Check permissions. ({e})")

        print(f"Downloading network {identifier[:8]}...", flush=True)
        try:
            with self.session.get(f'{self.base_url}/best-network', stream=True,
                                  timeout=self.timeout) as resp:
                resp.raise_for_status()
                with open(gz_path, 'wb') as f:
                    for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except requests.RequestException as e:
            gz_path.unlink(missing_ok=True)
            raise TransportError(f"API error (best-network): {e}") from e
        except OSError as e:
            # Local disk trouble, not the server
            fatal(f"Unable to write network download to {gz_path}. ({e})")

        try:
            with gzip.open(gz_path, 'rb') as src, open(dest, 'wb') as out:
                shutil.copyfileobj(src, out)
        except (gzip.BadGzipFile, EOFError, zlib.error) as e:
            dest.unlink(missing_ok=True)
            raise TransportError(f"Failed to decompress network: {e}") from e
        except OSError as e:
            fatal(f"Unable to write the network file {dest}. ({e})")
        finally:
            gz_path.unlink(missing_ok=True)

        if not check_local_artifact(dest, identifier):
            raise TransportError(f"Network download does not match hash {identifier}")
        return dest

    def submit_game(self, artifact_id: str, client_version: int,
                    pgn_gz: Path, training_gz: Path) -> str:
        """Upload one finished game. Returns the server's response text."""
        data = {
            'networkhash': artifact_id,
            'clientversion': str(client_version),
        }
        try:
            with open(pgn_gz, 'rb') as pgn_f, open(training_gz, 'rb') as train_f:
                files = {
                    'pgn': (Path(pgn_gz).name, pgn_f),
                    'trainingdata': (Path(training_gz).name, train_f),
                }
                resp = self.session.post(f'{self.base_url}/submit', data=data,
                                         files=files, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"API error (submit): {e}") from e
        return resp.text


class ResultUploader:
    """Uploads the files of one finished game, then cleans them up."""

    def __init__(self, api: APIClient, results_dir: Path,
                 keep_path: Optional[Path] = None, debug_path: Optional[Path] = None):
        self.api = api
        self.results_dir = Path(results_dir)
        self.keep_path = Path(keep_path) if keep_path else None
        self.debug_path = Path(debug_path) if debug_path else None

    def upload(self, result_id: str, artifact_id: str, client_version: int) -> bool:
        """
        Submit `<result_id>.pgn` and `<result_id>.train.gz`.

        Returns False if the game left nothing to upload (it was not
        scoreable). Transport and file errors propagate as TransportError;
        the local files are removed either way.
        """
        pgn_file = self.results_dir / f"{result_id}.pgn"
        training_file = self.results_dir / f"{result_id}.train.gz"
        pgn_gz = pgn_file.with_name(pgn_file.name + '.gz')

        if not pgn_file.exists():
            print(f"No result file for game {result_id}, nothing to upload.")
            training_file.unlink(missing_ok=True)
            return False

        try:
            # Save first if requested
            if self.keep_path:
                self.keep_path.mkdir(parents=True, exist_ok=True)
                shutil.copy2(pgn_file, self.keep_path / pgn_file.name)
            if self.debug_path and training_file.exists():
                self.debug_path.mkdir(parents=True, exist_ok=True)
                shutil.copy2(training_file, self.debug_path / training_file.name)

            with open(pgn_file, 'rb') as src, gzip.open(pgn_gz, 'wb') as out:
                shutil.copyfileobj(src, out)

            print(f"Uploading game {result_id} (network {artifact_id[:8]})", flush=True)
            response = self.api.submit_game(artifact_id, client_version, pgn_gz, training_file)
            if response.strip():
                print(response.strip())
            return True
        except OSError as e:
            raise TransportError(f"Failed to prepare upload of game {result_id}: {e}") from e
        finally:
            for path in (pgn_file, pgn_gz, training_file):
                path.unlink(missing_ok=True)
