import random
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.errors import StateConflict
from core.session import MigrationSession, SessionState, SessionStats


@pytest.fixture
def session():
    return MigrationSession(source="sidekiq", session_id="test", rng=random.Random(42))


def _route_many(session, calls):
    def route(_):
        if session.should_route_to_target():
            session.stats.record_target()
            return True
        session.stats.record_legacy()
        return False

    with ThreadPoolExecutor(max_workers=16) as pool:
        return list(pool.map(route, range(calls)))


class TestTransitions:
    def test_initial_state(self, session):
        assert session.state is SessionState.IDLE
        assert session.percentage == 0
        assert session.started_at is None

    def test_start_dual_run(self, session):
        assert session.start_dual_run(25) is SessionState.DUAL_RUN
        assert session.percentage == 25
        assert session.started_at is not None

    def test_start_twice_conflicts(self, session):
        session.start_dual_run(10)
        with pytest.raises(StateConflict):
            session.start_dual_run(20)
        assert session.percentage == 10

    def test_set_percentage_requires_dual_run(self, session):
        with pytest.raises(StateConflict):
            session.set_percentage(50)

    def test_set_percentage(self, session):
        session.start_dual_run(10)
        assert session.set_percentage(60) == 60
        assert session.percentage == 60

    @pytest.mark.parametrize("value", [-1, 101, 1.5, True, "50"])
    def test_percentage_out_of_range(self, session, value):
        with pytest.raises(ValueError):
            session.start_dual_run(value)
        assert session.state is SessionState.IDLE

    def test_cutover(self, session):
        session.start_dual_run(10)
        assert session.cutover() is SessionState.CUTOVER
        assert session.percentage == 100
        assert session.ended_at is not None

    def test_second_cutover_conflicts(self, session):
        session.start_dual_run(10)
        session.cutover()
        with pytest.raises(StateConflict):
            session.cutover()
        assert session.state is SessionState.CUTOVER

    def test_cutover_from_idle_conflicts(self, session):
        with pytest.raises(StateConflict):
            session.cutover()

    def test_rollback_from_idle_conflicts(self, session):
        with pytest.raises(StateConflict):
            session.rollback("bad deploy")
        assert session.percentage == 0
        assert session.state is SessionState.IDLE

    def test_rollback_from_dual_run(self, session):
        session.start_dual_run(40)
        assert session.rollback("error spike") is SessionState.ROLLED_BACK
        assert session.percentage == 0
        assert session.rollback_reason == "error spike"

    def test_rollback_after_cutover(self, session):
        session.start_dual_run(40)
        session.cutover()
        session.rollback("target outage")
        assert session.state is SessionState.ROLLED_BACK
        assert session.percentage == 0

    def test_rollback_requires_reason(self, session):
        session.start_dual_run(40)
        with pytest.raises(ValueError):
            session.rollback("   ")
        assert session.state is SessionState.DUAL_RUN

    def test_terminal_states_are_locked(self, session):
        session.start_dual_run(40)
        session.rollback("done")
        for transition in (
            lambda: session.start_dual_run(10),
            lambda: session.set_percentage(10),
            session.cutover,
            lambda: session.rollback("again"),
        ):
            with pytest.raises(StateConflict):
                transition()

    def test_concurrent_cutovers_only_one_wins(self, session):
        session.start_dual_run(50)
        barrier = threading.Barrier(8)
        outcomes = []

        def attempt():
            barrier.wait()
            try:
                session.cutover()
                outcomes.append("ok")
            except StateConflict:
                outcomes.append("conflict")

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7


class TestRouting:
    def test_zero_percent_routes_everything_to_legacy(self, session):
        session.start_dual_run(0)

        routed = _route_many(session, 1000)

        assert not any(routed)
        stats = session.stats.snapshot()
        assert stats.routed_to_legacy == 1000
        assert stats.routed_to_target == 0

    def test_hundred_percent_routes_everything_to_target(self, session):
        session.start_dual_run(100)

        routed = _route_many(session, 500)

        assert all(routed)
        assert session.stats.snapshot().routed_to_target == 500

    def test_idle_routes_to_legacy(self, session):
        assert not session.should_route_to_target()

    def test_split_roughly_matches_percentage(self, session):
        session.start_dual_run(30)
        hits = sum(session.should_route_to_target() for _ in range(10000))
        assert 2500 < hits < 3500

    def test_counters_are_consistent_under_load(self, session):
        session.start_dual_run(50)

        _route_many(session, 2000)

        stats = session.stats.snapshot()
        assert stats.routed_to_target + stats.routed_to_legacy == 2000


class TestStatus:
    def test_status_payload(self, session):
        session.start_dual_run(20)
        session.stats.record_error()

        status = session.status()

        assert status["session_id"] == "test"
        assert status["source"] == "sidekiq"
        assert status["state"] == "dual_run"
        assert status["percentage"] == 20
        assert status["stats"] == {"routed_to_target": 0, "routed_to_legacy": 0, "errors": 1}

    def test_stats_snapshot_is_frozen(self):
        stats = SessionStats()
        stats.record_target()
        snapshot = stats.snapshot()
        stats.record_target()
        assert snapshot.routed_to_target == 1
        assert stats.snapshot().routed_to_target == 2
