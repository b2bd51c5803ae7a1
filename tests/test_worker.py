"""Tests for autoplay.worker module."""

import asyncio
import random
import threading
from pathlib import Path
from unittest.mock import MagicMock

import chess.engine
import pytest

from autoplay.artifacts import ArtifactRef
from autoplay.errors import FatalError
from autoplay.game import EngineOptions
from autoplay.stats import MoveCounter
from autoplay.worker import ControlState, GameOutcome, ResignPolicy, SelfPlayWorker


ARTIFACT_A = ArtifactRef("a" * 64, 1, Path("/nets/a"))
ARTIFACT_B = ArtifactRef("b" * 64, 1, Path("/nets/b"))


class FakeGame:
    """Scripted stand-in for SelfPlayGame."""

    def __init__(self, number, moves=3, scoreable=True, compatible=True,
                 on_move=None, start_error=None, move_error=None):
        self.number = number
        self.result_id = f"game-{number}"
        self.moves_to_play = moves
        self.scoreable = scoreable
        self.compatible = compatible
        self.on_move = on_move
        self.start_error = start_error
        self.move_error = move_error
        self.artifact = None
        self.options = None
        self.moves = 0
        self.persisted = False
        self.dumped = False
        self.shut_down = False

    def start(self, artifact, options):
        if self.start_error:
            raise self.start_error
        self.artifact = artifact
        self.options = options
        return self.compatible

    def request_move(self):
        if self.move_error:
            raise self.move_error
        self.moves += 1
        if self.on_move:
            self.on_move(self)
        return "move"

    def game_concluded(self):
        return self.moves >= self.moves_to_play

    def is_scoreable(self):
        return self.scoreable

    def persist_result(self):
        self.persisted = True
        return self.result_id

    def dump_training_data(self):
        self.dumped = True

    def shutdown(self):
        self.shut_down = True


class GameFactory:
    """Creates FakeGames and remembers them in order."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.games = []

    def __call__(self):
        game = FakeGame(len(self.games), **self.kwargs)
        self.games.append(game)
        return game


def make_worker(factory, on_result, counter=None, resign_policy=None):
    return SelfPlayWorker(
        index=0,
        artifact=ARTIFACT_A,
        move_counter=counter or MoveCounter(),
        options=EngineOptions(command="fake"),
        on_result=on_result,
        game_factory=factory,
        resign_policy=resign_policy or (lambda: 5),
    )


def stop_after(count, outcomes, worker_ref):
    """on_result callback that records outcomes and stops the worker after `count`."""
    def on_result(outcome):
        outcomes.append(outcome)
        if len(outcomes) >= count:
            worker_ref[0].shutdown()
    return on_result


class TestNaturalGameEnd:
    """Games that run to completion."""

    def test_emits_one_outcome_per_game(self):
        factory = GameFactory(moves=3)
        outcomes, ref = [], [None]
        counter = MoveCounter()
        worker = make_worker(factory, stop_after(2, outcomes, ref), counter)
        ref[0] = worker

        worker.run()

        assert [o.result_id for o in outcomes] == ["game-0", "game-1"]
        assert all(isinstance(o, GameOutcome) for o in outcomes)
        assert all(o.artifact_id == ARTIFACT_A.identifier for o in outcomes)
        assert all(o.worker_index == 0 for o in outcomes)
        assert all(o.duration >= 0 for o in outcomes)
        assert len(factory.games) == 2
        assert counter.value == 6

    def test_scoreable_game_is_persisted(self):
        factory = GameFactory()
        outcomes, ref = [], [None]
        ref[0] = worker = make_worker(factory, stop_after(1, outcomes, ref))

        worker.run()

        game = factory.games[0]
        assert game.persisted and game.dumped and game.shut_down

    def test_unscoreable_game_still_reports(self):
        factory = GameFactory(scoreable=False)
        outcomes, ref = [], [None]
        ref[0] = worker = make_worker(factory, stop_after(1, outcomes, ref))

        worker.run()

        game = factory.games[0]
        assert not game.persisted and not game.dumped
        assert len(outcomes) == 1

    def test_resign_policy_feeds_options(self):
        factory = GameFactory()
        outcomes, ref = [], [None]
        ref[0] = worker = make_worker(factory, stop_after(1, outcomes, ref),
                                      resign_policy=lambda: 7)
        worker.run()

        assert factory.games[0].options.resign_percent == 7
        # The worker's own options are untouched
        assert worker.options.resign_percent == 0


class TestArtifactChange:
    """ARTIFACT_CHANGED abandons the current game and restarts on the new network."""

    def test_abandoned_game_emits_nothing(self):
        outcomes, ref = [], [None]

        def on_move(game):
            if game.number == 0 and game.moves == 1:
                ref[0].new_artifact(ARTIFACT_B)

        factory = GameFactory(moves=3, on_move=on_move)
        ref[0] = worker = make_worker(factory, stop_after(1, outcomes, ref))

        worker.run()

        first, second = factory.games
        assert first.artifact == ARTIFACT_A
        assert first.moves == 1
        assert first.shut_down
        assert not first.persisted
        assert second.artifact == ARTIFACT_B
        assert [o.result_id for o in outcomes] == ["game-1"]
        assert outcomes[0].artifact_id == ARTIFACT_B.identifier

    def test_change_between_games_is_picked_up_at_next_start(self):
        outcomes, ref = [], [None]

        def on_result(outcome):
            outcomes.append(outcome)
            if len(outcomes) == 1:
                ref[0].new_artifact(ARTIFACT_B)
            else:
                ref[0].shutdown()

        factory = GameFactory(moves=2)
        ref[0] = worker = make_worker(factory, on_result)

        worker.run()

        # No game is wasted: the second game starts directly on B
        assert [g.artifact for g in factory.games] == [ARTIFACT_A, ARTIFACT_B]
        assert [o.artifact_id for o in outcomes] == [ARTIFACT_A.identifier, ARTIFACT_B.identifier]


class TestShutdown:
    """SHUTTING_DOWN ends the worker for good."""

    def test_shutdown_mid_game(self):
        outcomes, ref = [], [None]

        def on_move(game):
            ref[0].shutdown()

        factory = GameFactory(moves=5, on_move=on_move)
        ref[0] = worker = make_worker(factory, outcomes.append)

        worker.run()

        assert outcomes == []
        assert len(factory.games) == 1
        assert factory.games[0].moves == 1
        assert factory.games[0].shut_down
        assert worker.state is ControlState.SHUTTING_DOWN

    def test_shutdown_before_start(self):
        factory = GameFactory()
        worker = make_worker(factory, MagicMock())
        worker.shutdown()
        worker.run()
        assert factory.games == []

    def test_new_artifact_does_not_revive(self):
        worker = make_worker(GameFactory(), MagicMock())
        worker.shutdown()
        worker.new_artifact(ARTIFACT_B)

        assert worker.state is ControlState.SHUTTING_DOWN
        assert worker.artifact == ARTIFACT_B

    def test_new_artifact_sets_changed(self):
        worker = make_worker(GameFactory(), MagicMock())
        assert worker.state is ControlState.RUNNING
        worker.new_artifact(ARTIFACT_B)
        assert worker.state is ControlState.ARTIFACT_CHANGED


class TestWorkerFailures:
    """Engine problems end one worker; its engine is always shut down."""

    def test_incompatible_engine(self):
        factory = GameFactory(compatible=False)
        on_result = MagicMock()
        worker = make_worker(factory, on_result)

        worker.run()

        on_result.assert_not_called()
        assert len(factory.games) == 1
        assert factory.games[0].shut_down

    def test_engine_crash_mid_game(self):
        factory = GameFactory(move_error=chess.engine.EngineTerminatedError("crashed"))
        on_result = MagicMock()
        worker = make_worker(factory, on_result)

        worker.run()

        on_result.assert_not_called()
        assert factory.games[0].shut_down

    def test_engine_missing(self):
        factory = GameFactory(start_error=FileNotFoundError("lc0"))
        on_result = MagicMock()
        worker = make_worker(factory, on_result)

        worker.run()

        on_result.assert_not_called()
        assert len(factory.games) == 1

    def test_move_timeout_ends_worker_and_engine(self):
        factory = GameFactory(move_error=asyncio.TimeoutError())
        on_result = MagicMock()
        worker = make_worker(factory, on_result)

        worker.run()

        on_result.assert_not_called()
        assert factory.games[0].shut_down

    def test_unexpected_error_still_shuts_engine_down(self):
        factory = GameFactory(move_error=RuntimeError("future timed out"))
        worker = make_worker(factory, MagicMock())

        with pytest.raises(RuntimeError, match="future timed out"):
            worker.run()

        assert factory.games[0].shut_down

    def test_fatal_from_report_still_shuts_engine_down(self):
        factory = GameFactory(moves=1)
        on_result = MagicMock(side_effect=FatalError("Giving up."))
        worker = make_worker(factory, on_result)

        with pytest.raises(FatalError):
            worker.run()

        assert factory.games[0].shut_down


class TestThreaded:
    """The worker as an actual thread."""

    def test_runs_and_stops_in_thread(self):
        outcomes, ref = [], [None]
        done = threading.Event()

        def on_result(outcome):
            outcomes.append(outcome)
            if len(outcomes) >= 3:
                ref[0].shutdown()
                done.set()

        ref[0] = worker = make_worker(GameFactory(moves=2), on_result)
        worker.start()
        assert done.wait(5)
        worker.join(5)

        assert not worker.is_alive()
        assert worker.daemon
        assert worker.name == "worker-0"
        assert len(outcomes) == 3


class TestResignPolicy:
    """Tests for ResignPolicy."""

    def test_disables_resign_below_probability(self):
        rng = MagicMock()
        rng.random.return_value = 0.1
        assert ResignPolicy(0.2, 5, rng=rng)() == 0

    def test_uses_resign_percent_otherwise(self):
        rng = MagicMock()
        rng.random.return_value = 0.5
        assert ResignPolicy(0.2, 5, rng=rng)() == 5

    def test_rough_proportion(self):
        policy = ResignPolicy(0.2, 5, rng=random.Random(1234))
        picks = [policy() for _ in range(5000)]
        share = picks.count(0) / len(picks)
        assert 0.15 < share < 0.25
        assert set(picks) == {0, 5}
