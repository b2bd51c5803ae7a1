"""
Self-play game driver.

Runs one game of a UCI network engine against itself, loading the current
network through the engine's weights option, and writes the game record (PGN)
plus per-position training data when the game has a result.
"""

import gzip
import json
import os
import re
import socket
import subprocess
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import chess
import chess.engine
import chess.pgn


# "Lc0 v0.31.2", "Lc0 v0.30.0-rc1", "MyEngine 1.4"
VERSION_PATTERN = re.compile(r'v?(\d+)\.(\d+)(?:\.(\d+))?')


@dataclass
class EngineOptions:
    """How to launch and drive the engine for one game."""
    command: str | list
    uci_options: dict = field(default_factory=dict)
    weights_option: str = "WeightsFile"
    device_option: Optional[str] = None  # e.g. "BackendOptions"
    device_value: str = "gpu={device}"
    device: Optional[str] = None
    nodes: Optional[int] = 800
    time_per_move: Optional[float] = None
    resign_percent: int = 0
    min_version: tuple = (0, 0, 0)
    max_plies: int = 450
    results_dir: Path = Path("results")

    def limit(self) -> chess.engine.Limit:
        if self.time_per_move:
            return chess.engine.Limit(time=self.time_per_move, nodes=self.nodes)
        return chess.engine.Limit(nodes=self.nodes)

    def engine_config(self, weights_path) -> dict:
        """UCI options to send after the engine starts."""
        config = dict(self.uci_options)
        config[self.weights_option] = str(weights_path)
        if self.device_option and self.device is not None:
            config[self.device_option] = self.device_value.format(device=self.device)
        return config


def parse_engine_version(name: str) -> Optional[tuple]:
    """Extract (major, minor, patch) from an engine's UCI id name."""
    if not name:
        return None
    match = VERSION_PATTERN.search(name)
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def new_result_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:12]}"


class SelfPlayGame:
    """One self-play game between two copies of the same engine process."""

    def __init__(self):
        self.result_id = new_result_id()
        self.board = chess.Board()
        self.engine: Optional[chess.engine.SimpleEngine] = None
        self.options: Optional[EngineOptions] = None
        self.artifact = None
        self.winner: Optional[chess.Color] = None  # set when a side resigns
        self.samples: list[dict] = []
        self.started_at = datetime.now()

    def start(self, artifact, options: EngineOptions) -> bool:
        """
        Launch the engine on `artifact`.

        Returns False if the engine is older than options.min_version.
        Launch and configuration failures raise (OSError or
        chess.engine.EngineError).
        """
        self.artifact = artifact
        self.options = options
        cmd = options.command if isinstance(options.command, list) else str(options.command)
        self.engine = chess.engine.SimpleEngine.popen_uci(cmd, stderr=subprocess.DEVNULL)

        name = self.engine.id.get("name", "")
        version = parse_engine_version(name)
        if version is None or version < tuple(options.min_version):
            wanted = ".".join(str(v) for v in options.min_version)
            print(f"  Engine '{name}' is too old or unknown, version {wanted} or later is required.")
            return False

        self.engine.configure(options.engine_config(artifact.path))
        print(f"  Engine {name} started with network {artifact.identifier[:8]}"
              f" (resign {options.resign_percent}%)")
        return True

    def request_move(self) -> Optional[chess.Move]:
        """
        Ask the engine for the next move and play it.

        Returns None if the side to move resigns instead.
        """
        mover = self.board.turn
        result = self.engine.play(self.board, self.options.limit(), info=chess.engine.INFO_SCORE)

        wdl = None
        score = result.info.get("score") if result.info else None
        if score is not None:
            pov_wdl = score.pov(mover).wdl()
            wdl = [pov_wdl.wins, pov_wdl.draws, pov_wdl.losses]
            expectation = pov_wdl.expectation()
            if self.options.resign_percent > 0 and expectation * 100 < self.options.resign_percent:
                self.winner = not mover
                return None

        if result.resigned or result.move is None:
            self.winner = not mover
            return None

        self.samples.append({
            "fen": self.board.fen(),
            "move": result.move.uci(),
            "wdl": wdl,
        })
        self.board.push(result.move)
        return result.move

    def game_concluded(self) -> bool:
        return (self.winner is not None
                or self.board.is_game_over(claim_draw=True)
                or self.board.ply() >= self.options.max_plies)

    def is_scoreable(self) -> bool:
        """True if the game reached a result (not cut off at the ply cap)."""
        return self.winner is not None or self.board.is_game_over(claim_draw=True)

    def result(self) -> str:
        if self.winner is not None:
            return "1-0" if self.winner == chess.WHITE else "0-1"
        return self.board.result(claim_draw=True)

    def results_path(self, suffix: str) -> Path:
        return Path(self.options.results_dir) / f"{self.result_id}{suffix}"

    def persist_result(self) -> str:
        """Write the PGN record. Returns the result id."""
        game = chess.pgn.Game.from_board(self.board)
        game.headers["Event"] = "Self-play"
        game.headers["Site"] = os.environ.get("COMPUTER_NAME", socket.gethostname())
        game.headers["Date"] = self.started_at.strftime("%Y.%m.%d")
        game.headers["White"] = game.headers["Black"] = f"network-{self.artifact.identifier[:8]}"
        game.headers["Result"] = self.result()
        game.headers["Network"] = self.artifact.identifier
        if self.winner is not None:
            game.headers["Termination"] = "resignation"

        path = self.results_path(".pgn")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(game) + "\n")
        return self.result_id

    def dump_training_data(self):
        """Write one JSON line per position, with the game result from the mover's view."""
        result = self.result()
        white_score = {"1-0": 1, "0-1": -1}.get(result, 0)

        path = self.results_path(".train.gz")
        path.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(path, 'wt', encoding='utf-8') as f:
            for sample in self.samples:
                white_to_move = sample["fen"].split()[1] == "w"
                record = dict(sample, result=white_score if white_to_move else -white_score)
                f.write(json.dumps(record) + "\n")

    def shutdown(self):
        if self.engine is None:
            return
        try:
            self.engine.quit()
        except chess.engine.EngineTerminatedError:
            pass  # Already gone
        self.engine = None
