"""
Production pool coordinator.

Owns the fixed set of self-play workers and the single current network.
Workers report finished games on their own threads; all of that handling
(statistics, upload, network re-check, change broadcast) runs under one lock,
so at most one outcome is processed at a time across the pool.
"""

import threading
import time
from dataclasses import replace
from typing import Callable, Optional

from autoplay.artifacts import ArtifactRef, ArtifactSynchronizer
from autoplay.constants import EXIT_FAILURE
from autoplay.errors import FatalError, TransportError
from autoplay.game import EngineOptions, SelfPlayGame
from autoplay.stats import AggregateStats, MoveCounter, format_timing_info
from autoplay.worker import GameOutcome, ResignPolicy, SelfPlayWorker


class Production:
    """Runs `games_per_device` workers on each device and keeps them on the best network."""

    def __init__(self, synchronizer: ArtifactSynchronizer, uploader,
                 options: EngineOptions, client_version: int,
                 games_per_device: int = 1, devices: Optional[list[str]] = None,
                 game_factory: Callable = SelfPlayGame,
                 resign_policy: Optional[Callable[[], int]] = None,
                 worker_factory: Callable = SelfPlayWorker):
        self.synchronizer = synchronizer
        self.uploader = uploader
        self.options = options
        self.client_version = client_version
        self.games_per_device = games_per_device
        self.devices = list(devices or [])
        self.game_factory = game_factory
        self.resign_policy = resign_policy or ResignPolicy()
        self.worker_factory = worker_factory

        self.moves = MoveCounter()
        self.stats = AggregateStats(moves=self.moves)
        self._workers: list[SelfPlayWorker] = []
        self._current: Optional[ArtifactRef] = None
        # Serializes all outcome handling
        self._sync_lock = threading.Lock()
        self._stopped = threading.Event()
        self._shutting_down = False
        self._fatal: Optional[FatalError] = None

    @property
    def pool_size(self) -> int:
        return max(len(self.devices), 1) * self.games_per_device

    @property
    def workers(self) -> list[SelfPlayWorker]:
        return list(self._workers)

    @property
    def current_artifact(self) -> Optional[ArtifactRef]:
        with self._sync_lock:
            return self._current

    @property
    def games_played(self) -> int:
        with self._sync_lock:
            return self.stats.games_played

    def start_games(self):
        """Resolve the initial network and start every worker on it."""
        self.stats.start_time = time.monotonic()
        with self._sync_lock:
            self._current, _ = self.synchronizer.resolve(None)
            artifact = self._current

        device_count = max(len(self.devices), 1)
        for gpu in range(device_count):
            device = self.devices[gpu] if self.devices else None
            for game in range(self.games_per_device):
                index = gpu * self.games_per_device + game
                worker = self.worker_factory(
                    index=index,
                    artifact=artifact,
                    move_counter=self.moves,
                    options=replace(self.options, device=device),
                    on_result=self.on_game_outcome,
                    game_factory=self.game_factory,
                    resign_policy=self.resign_policy,
                )
                self._workers.append(worker)

        print(f"Starting {len(self._workers)} self-play worker(s) on network {artifact.identifier[:8]}")
        for worker in self._workers:
            worker.start()

    def on_game_outcome(self, outcome: GameOutcome):
        """Handle one finished game. Called from the worker thread that played it."""
        with self._sync_lock:
            # Counted under the network the game was played on, even if it
            # finished just before a switch and is reported after it
            self.stats.record_game(outcome.artifact_id)
            self.print_timing_info(outcome.duration)

            try:
                self.uploader.upload(outcome.result_id, outcome.artifact_id, self.client_version)
            except TransportError as e:
                print(f"Upload failed: {e}")
                print("Continuing...")

            try:
                artifact, changed = self.synchronizer.resolve(self._current)
            except FatalError as e:
                self._fatal = e
                self._broadcast_shutdown()
                self._stopped.set()
                raise

            if changed:
                self._current = artifact
                print(f"Switching all workers to network {artifact.identifier[:8]}")
                for worker in self._workers:
                    worker.new_artifact(artifact)

    def print_timing_info(self, duration: float):
        line = format_timing_info(self.stats, duration)
        if line:
            print(line, flush=True)

    def _broadcast_shutdown(self):
        self._shutting_down = True
        for worker in self._workers:
            worker.shutdown()

    def shutdown(self):
        """Ask every worker to stop. In-flight games are abandoned, not interrupted."""
        print("Shutting down self-play workers...", flush=True)
        self._broadcast_shutdown()
        self._stopped.set()

    def join(self, timeout: Optional[float] = None):
        for worker in self._workers:
            worker.join(timeout)

    def wait(self, poll_interval: float = 1.0) -> int:
        """
        Block until the pool stops.

        Re-raises a fatal error from any worker thread so the process exits
        with EXIT_FAILURE. Returns EXIT_FAILURE if every worker died on its
        own, 0 after a requested shutdown.
        """
        while not self._stopped.wait(poll_interval):
            if self._workers and not any(w.is_alive() for w in self._workers):
                break

        if self._fatal is not None:
            raise self._fatal
        if self._shutting_down:
            return 0
        print("All self-play workers have exited.")
        return EXIT_FAILURE
