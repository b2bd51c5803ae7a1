"""
Move counting and throughput reporting for the production pool.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Optional


class MoveCounter:
    """Move total shared by every worker thread."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


@dataclass
class AggregateStats:
    """Pool-wide totals. Only the coordinator touches these, under its lock."""
    moves: MoveCounter
    start_time: float = field(default_factory=time.monotonic)
    games_played: int = 0
    games_by_artifact: dict[str, int] = field(default_factory=dict)

    def record_game(self, artifact_id: str):
        self.games_played += 1
        self.games_by_artifact[artifact_id] = self.games_by_artifact.get(artifact_id, 0) + 1


def format_timing_info(stats: AggregateStats, last_duration: float,
                       now: Optional[float] = None) -> Optional[str]:
    """
    Build the throughput line printed after each game.

    Returns None until at least one game and one move have been recorded.
    """
    moves = stats.moves.value
    if moves == 0 or stats.games_played == 0:
        return None

    if now is None:
        now = time.monotonic()
    total_s = max(now - stats.start_time, 0.0)
    total_min = total_s / 60
    games_per_min = stats.games_played / total_min if total_min > 0 else 0.0

    return (
        f"{stats.games_played} game(s) played in {int(total_min)} minutes = "
        f"{games_per_min:.2f} games/minute, "
        f"{total_s / stats.games_played:.0f} seconds/game, "
        f"{total_s * 1000 / moves:.0f} ms/move, "
        f"last game took {int(last_duration)} seconds."
    )
