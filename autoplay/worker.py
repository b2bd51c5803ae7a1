"""
Self-play worker threads.

Each worker plays one game at a time, forever, against the network it was
last assigned. Between games (and after every move) it checks its control
state so the coordinator can move it to a new network or stop it.
"""

import asyncio
import random
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

import chess.engine

from autoplay.artifacts import ArtifactRef
from autoplay.constants import DEFAULT_RESIGN_PERCENT, NO_RESIGN_PROBABILITY
from autoplay.game import EngineOptions, SelfPlayGame
from autoplay.stats import MoveCounter


class ControlState(Enum):
    RUNNING = "running"
    ARTIFACT_CHANGED = "artifact_changed"
    SHUTTING_DOWN = "shutting_down"


@dataclass(frozen=True)
class GameOutcome:
    """What a worker reports once per completed game."""
    result_id: str
    duration: float  # seconds
    artifact_id: str
    worker_index: int


class ResignPolicy:
    """
    Picks the resign threshold for each game.

    Resignation is disabled for a fraction of games so the resign threshold
    can be checked against games that were played out.
    """

    def __init__(self, no_resign_probability: float = NO_RESIGN_PROBABILITY,
                 resign_percent: int = DEFAULT_RESIGN_PERCENT,
                 rng: Optional[random.Random] = None):
        self.no_resign_probability = no_resign_probability
        self.resign_percent = resign_percent
        self.rng = rng or random.Random()

    def __call__(self) -> int:
        if self.rng.random() < self.no_resign_probability:
            return 0
        return self.resign_percent


# Launch/engine failures that end one worker but not the pool.
# asyncio.TimeoutError is not an OSError before Python 3.11.
ENGINE_FAILURES = (
    OSError,
    asyncio.TimeoutError,
    chess.engine.EngineError,
    chess.engine.EngineTerminatedError,
)


class SelfPlayWorker(threading.Thread):
    """One thread running an unbounded sequence of self-play games."""

    def __init__(self, index: int, artifact: ArtifactRef, move_counter: MoveCounter,
                 options: EngineOptions, on_result: Callable[[GameOutcome], None],
                 game_factory: Callable = SelfPlayGame,
                 resign_policy: Callable[[], int] = None):
        super().__init__(name=f"worker-{index}", daemon=True)
        self.index = index
        self.move_counter = move_counter
        self.options = options
        self.on_result = on_result
        self.game_factory = game_factory
        self.resign_policy = resign_policy or ResignPolicy()
        # Guards _artifact and _state; held only for snapshots and updates
        self._lock = threading.Lock()
        self._artifact = artifact
        self._state = ControlState.RUNNING

    @property
    def state(self) -> ControlState:
        with self._lock:
            return self._state

    @property
    def artifact(self) -> ArtifactRef:
        with self._lock:
            return self._artifact

    def new_artifact(self, artifact: ArtifactRef):
        """Switch to `artifact` at the next game boundary."""
        with self._lock:
            self._artifact = artifact
            if self._state is not ControlState.SHUTTING_DOWN:
                self._state = ControlState.ARTIFACT_CHANGED

    def shutdown(self):
        """Stop after the current move; the in-flight game is abandoned."""
        with self._lock:
            self._state = ControlState.SHUTTING_DOWN

    def _log(self, message: str):
        print(f"  [{self.name}] {message}", flush=True)

    def _snapshot(self) -> Optional[tuple[ArtifactRef, EngineOptions]]:
        """Artifact and options for the next game, or None if shutting down."""
        with self._lock:
            if self._state is ControlState.SHUTTING_DOWN:
                return None
            if self._state is ControlState.ARTIFACT_CHANGED:
                # Between games, so the new artifact is picked up right here
                self._state = ControlState.RUNNING
            artifact = self._artifact
        options = replace(self.options, resign_percent=self.resign_policy())
        return artifact, options

    def run(self):
        while True:
            snapshot = self._snapshot()
            if snapshot is None:
                self._log("Program ends: exiting.")
                return
            artifact, options = snapshot
            start = time.monotonic()

            game = self.game_factory()
            # The engine process is shut down however this game ends
            try:
                if not game.start(artifact, options):
                    self._log("Incompatible engine version, worker exiting.")
                    return
                state = self._play(game)

                if state is ControlState.RUNNING:
                    self._log("Game has ended.")
                    if game.is_scoreable():
                        game.persist_result()
                        game.dump_training_data()
                    self.on_result(GameOutcome(
                        result_id=game.result_id,
                        duration=time.monotonic() - start,
                        artifact_id=artifact.identifier,
                        worker_index=self.index,
                    ))
                elif state is ControlState.ARTIFACT_CHANGED:
                    self._log("Best network has changed: restarting.")
                else:
                    self._log("Program ends: exiting.")
                    return
            except ENGINE_FAILURES as e:
                self._log(f"Engine or I/O failure, worker exiting: {e}")
                return
            finally:
                game.shutdown()

            if state is ControlState.ARTIFACT_CHANGED:
                with self._lock:
                    if self._state is ControlState.ARTIFACT_CHANGED:
                        self._state = ControlState.RUNNING

    def _play(self, game) -> ControlState:
        """Play moves until the game ends or the control state leaves RUNNING."""
        while True:
            game.request_move()
            self.move_counter.increment()
            state = self.state
            if state is not ControlState.RUNNING or game.game_concluded():
                return state
