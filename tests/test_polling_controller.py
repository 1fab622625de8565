"""Tests for harvester.controllers.polling_controller: interval policy and the polling loop."""

import asyncio
import logging

import pytest

from harvester.controllers.ingestion_controller import CycleResult
from harvester.controllers.polling_controller import IntervalPolicy, PollingManager, PollingPhase
from harvester.errors import HarvesterError, PersistenceError, TransientSourceError

FAST = IntervalPolicy(initial=0.01, minimum=0.001, maximum=0.05)


class FakeReadiness:
    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = 0

    async def is_ready(self):
        self.calls += 1
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]


class FakeIngestion:
    """Replays queued cycle results; exceptions in the queue are raised."""

    def __init__(self, results=None, prepare_results=(None,)):
        self.results = list(results or [])
        self.prepare_results = list(prepare_results)
        self.prepare_calls = 0
        self.cycle_calls = []
        self.after_cycle = None

    async def prepare(self):
        self.prepare_calls += 1
        outcome = self.prepare_results.pop(0) if len(self.prepare_results) > 1 else self.prepare_results[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def run_cycle(self, since):
        self.cycle_calls.append(since)
        try:
            outcome = self.results.pop(0) if self.results else CycleResult(since, False)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            if self.after_cycle:
                self.after_cycle(len(self.cycle_calls))


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _poller(results=None, clock=None, **kwargs):
    ingestion = FakeIngestion(results)
    poller = PollingManager(FakeReadiness([True]), ingestion, clock=clock or Clock(), **kwargs)
    return poller, ingestion


# --- Interval policy ---


def test_new_data_speeds_up():
    assert IntervalPolicy().next_interval(5.0, True, None, 0.0) == 3.75


def test_speed_up_stops_at_minimum():
    assert IntervalPolicy().next_interval(1.2, True, None, 0.0) == 1.0
    assert IntervalPolicy().next_interval(1.0, True, None, 0.0) == 1.0


def test_silence_slows_down():
    assert IntervalPolicy().next_interval(5.0, False, 0.0, 301.0) == 7.5


def test_slow_down_stops_at_maximum():
    assert IntervalPolicy().next_interval(50.0, False, 0.0, 400.0) == 60.0
    assert IntervalPolicy().next_interval(60.0, False, 0.0, 400.0) == 60.0


def test_recent_activity_keeps_interval():
    policy = IntervalPolicy()
    assert policy.next_interval(5.0, False, 0.0, 300.0) == 5.0
    assert policy.next_interval(5.0, False, None, 10_000.0) == 5.0


def test_interval_stays_within_bounds():
    policy = IntervalPolicy()
    interval = policy.initial
    for cycle in range(200):
        had_new_data = cycle % 7 in (0, 1, 2) and cycle < 100
        interval = policy.next_interval(interval, had_new_data, 0.0, 1_000.0)
        assert policy.minimum <= interval <= policy.maximum
    assert interval == policy.maximum


def test_policy_from_settings(settings):
    settings.polling_initial_interval = 2.0
    settings.polling_max_interval = 30.0

    policy = IntervalPolicy.from_settings(settings)

    assert policy.initial == 2.0
    assert policy.maximum == 30.0
    assert policy.speedup == 0.75


# --- Single cycles ---


@pytest.mark.asyncio
async def test_new_data_cycle_advances_cursor_and_speeds_up():
    clock = Clock(now=42.0)
    poller, ingestion = _poller([CycleResult(103, True, fetched=3, stored=3)], clock=clock)

    result = await poller.poll_once(None)

    assert ingestion.cycle_calls == [None]
    assert result.new_cursor == 103
    assert poller.state.interval == 3.75
    assert poller.state.last_activity_time == 42.0
    assert poller.state.cycles == 1


@pytest.mark.asyncio
async def test_silent_cycle_after_five_minutes_slows_down():
    clock = Clock()
    poller, _ = _poller([CycleResult(10, False)], clock=clock)
    poller.state.last_activity_time = 0.0
    clock.now = 301.0

    await poller.poll_once(10)

    assert poller.state.interval == 7.5


@pytest.mark.asyncio
async def test_silent_cycles_do_not_refresh_activity():
    clock = Clock()
    poller, _ = _poller([CycleResult(10, False), CycleResult(10, False)], clock=clock)
    poller.state.last_activity_time = 0.0

    clock.now = 100.0
    await poller.poll_once(10)
    assert poller.state.interval == 5.0
    assert poller.state.last_activity_time == 0.0

    clock.now = 301.0
    await poller.poll_once(10)
    assert poller.state.interval == 7.5


@pytest.mark.asyncio
async def test_attempt_tracking_never_slows_down():
    clock = Clock()
    poller, _ = _poller([CycleResult(10, False)], clock=clock, track_attempts_as_activity=True)
    poller.state.last_activity_time = 0.0
    clock.now = 1_000.0

    await poller.poll_once(10)

    assert poller.state.interval == 5.0
    assert poller.state.last_activity_time == 1_000.0


@pytest.mark.asyncio
async def test_transient_error_keeps_cursor_and_counts_as_silence():
    clock = Clock()
    poller, _ = _poller([TransientSourceError("connection reset")], clock=clock)
    poller.state.last_activity_time = 0.0
    clock.now = 301.0

    result = await poller.poll_once(55)

    assert result.new_cursor == 55
    assert result.had_new_data is False
    assert isinstance(result.error, TransientSourceError)
    assert poller.state.interval == 7.5
    assert poller.state.last_error == "connection reset"


@pytest.mark.asyncio
async def test_persistence_error_keeps_cursor():
    poller, _ = _poller([PersistenceError("disk full")])

    result = await poller.poll_once(9)

    assert result.new_cursor == 9
    assert isinstance(result.error, PersistenceError)
    assert poller.state.interval == 5.0


@pytest.mark.asyncio
async def test_unexpected_error_does_not_escape():
    poller, _ = _poller([RuntimeError("boom")])

    result = await poller.poll_once(3)

    assert result.new_cursor == 3
    assert isinstance(result.error, HarvesterError)


@pytest.mark.asyncio
async def test_error_clears_after_successful_cycle():
    poller, _ = _poller([TransientSourceError("timeout"), CycleResult(4, True)])

    await poller.poll_once(3)
    await poller.poll_once(3)

    assert poller.state.last_error is None


@pytest.mark.asyncio
async def test_rate_limit_stretches_next_delay():
    poller, _ = _poller([TransientSourceError("flood", retry_after=30)])

    await poller.poll_once(1)

    assert poller._next_delay() == 30.0


# --- Loop ---


@pytest.mark.asyncio
async def test_loop_waits_for_ready_then_chains_cursors():
    readiness = FakeReadiness([False, False, True])
    ingestion = FakeIngestion([
        CycleResult(103, True),
        CycleResult(103, False),
        TransientSourceError("timeout"),
        CycleResult(104, True),
    ])
    poller = PollingManager(readiness, ingestion, policy=FAST, probe_interval=0.001)
    ingestion.after_cycle = lambda count: poller.stop() if count == 4 else None

    task = poller.start()
    await asyncio.wait_for(task, timeout=5)

    assert readiness.calls == 3
    assert ingestion.prepare_calls == 1
    assert ingestion.cycle_calls == [None, 103, 103, 103]
    assert poller.state.cursor == 104
    assert poller.state.phase == PollingPhase.STOPPED
    assert poller.state.is_polling is False


@pytest.mark.asyncio
async def test_loop_retries_failed_prepare():
    ingestion = FakeIngestion(prepare_results=[PersistenceError("db down"), 10])
    poller = PollingManager(FakeReadiness([True]), ingestion, policy=FAST, probe_interval=0.001)
    ingestion.after_cycle = lambda count: poller.stop()

    await asyncio.wait_for(poller.start(), timeout=5)

    assert ingestion.prepare_calls == 2
    assert ingestion.cycle_calls == [10]


@pytest.mark.asyncio
async def test_stop_while_awaiting_ready():
    ingestion = FakeIngestion()
    poller = PollingManager(FakeReadiness([False]), ingestion, policy=FAST, probe_interval=0.001)

    task = poller.start()
    await asyncio.sleep(0.01)
    assert poller.state.phase == PollingPhase.AWAITING_READY
    poller.stop()
    await asyncio.wait_for(task, timeout=5)

    assert ingestion.prepare_calls == 0
    assert ingestion.cycle_calls == []
    assert poller.state.phase == PollingPhase.STOPPED


@pytest.mark.asyncio
async def test_stop_lets_in_flight_cycle_finish():
    started = asyncio.Event()
    release = asyncio.Event()

    class SlowIngestion(FakeIngestion):
        async def run_cycle(self, since):
            self.cycle_calls.append(since)
            started.set()
            await release.wait()
            return CycleResult(8, True)

    ingestion = SlowIngestion(prepare_results=[7])
    poller = PollingManager(FakeReadiness([True]), ingestion, policy=FAST, probe_interval=0.001)

    task = poller.start()
    await asyncio.wait_for(started.wait(), timeout=5)
    poller.stop()
    release.set()
    await asyncio.wait_for(task, timeout=5)

    assert ingestion.cycle_calls == [7]
    assert poller.state.cycles == 1
    assert poller.state.cursor == 8


@pytest.mark.asyncio
async def test_start_during_in_flight_cycle_keeps_polling():
    started = asyncio.Event()
    release = asyncio.Event()

    class SlowIngestion(FakeIngestion):
        async def run_cycle(self, since):
            self.cycle_calls.append(since)
            if len(self.cycle_calls) == 1:
                started.set()
                await release.wait()
                return CycleResult(8, True)
            if len(self.cycle_calls) == 2:
                return CycleResult(9, True)
            return CycleResult(since, False)

    ingestion = SlowIngestion(prepare_results=[7])
    poller = PollingManager(FakeReadiness([True]), ingestion, policy=FAST, probe_interval=0.001)

    task = poller.start()
    await asyncio.wait_for(started.wait(), timeout=5)
    poller.stop()
    assert poller.state.is_polling is False

    assert poller.start() is task
    assert poller.state.phase == PollingPhase.POLLING
    release.set()
    for _ in range(500):
        if len(ingestion.cycle_calls) >= 2:
            break
        await asyncio.sleep(0.01)

    assert not task.done()
    assert poller.state.is_polling is True
    assert ingestion.cycle_calls[:2] == [7, 8]

    poller.stop()
    await asyncio.wait_for(task, timeout=5)
    assert poller.state.phase == PollingPhase.STOPPED


@pytest.mark.asyncio
async def test_start_after_stop_while_awaiting_ready_keeps_waiting():
    readiness = FakeReadiness([False])
    poller = PollingManager(readiness, FakeIngestion(), policy=FAST, probe_interval=0.001)

    task = poller.start()
    await asyncio.sleep(0.01)
    poller.stop()
    assert poller.start() is task
    await asyncio.sleep(0.01)

    assert not task.done()
    assert poller.state.phase == PollingPhase.AWAITING_READY

    poller.stop()
    await asyncio.wait_for(task, timeout=5)


def test_stop_before_start_is_quiet(caplog):
    poller = PollingManager(FakeReadiness([True]), FakeIngestion())

    with caplog.at_level(logging.INFO):
        poller.stop()

    assert poller.state.phase == PollingPhase.NOT_STARTED
    assert "Polling stopped" not in caplog.text


@pytest.mark.asyncio
async def test_second_start_is_a_no_op(caplog):
    poller = PollingManager(FakeReadiness([False]), FakeIngestion(), policy=FAST, probe_interval=0.001)

    first = poller.start()
    with caplog.at_level(logging.WARNING):
        second = poller.start()

    assert second is first
    assert "already running" in caplog.text

    poller.stop()
    await poller.wait_stopped(timeout=5)
    assert first.done()


@pytest.mark.asyncio
async def test_restart_after_stop():
    ingestion = FakeIngestion([CycleResult(1, True), CycleResult(2, True)])
    poller = PollingManager(FakeReadiness([True]), ingestion, policy=FAST, probe_interval=0.001)
    ingestion.after_cycle = lambda count: poller.stop()

    await asyncio.wait_for(poller.start(), timeout=5)
    await asyncio.wait_for(poller.start(), timeout=5)

    assert ingestion.cycle_calls == [None, None]
    assert poller.state.cycles == 1
    assert poller.state.cursor == 2
