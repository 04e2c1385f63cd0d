"""Tests for the sync scheduler."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from cardsync import AppContext
from cardsync.errors import LocalStoreError
from cardsync.scheduler import SyncScheduler
from cardsync.types import SyncResult


@pytest.fixture
def fake_engine():
    engine = MagicMock()
    engine.run_cycle.return_value = SyncResult(pushed=1)
    return engine


class TestTriggerSync:
    def test_runs_one_cycle(self, fake_engine):
        scheduler = SyncScheduler(fake_engine)

        result = scheduler.trigger_sync()

        assert result.pushed == 1
        assert scheduler.last_result is result
        assert not scheduler.is_syncing
        fake_engine.run_cycle.assert_called_once()

    def test_overlapping_trigger_is_dropped(self, fake_engine):
        started = threading.Event()
        release = threading.Event()

        def slow_cycle():
            started.set()
            release.wait(5)
            return SyncResult()

        fake_engine.run_cycle.side_effect = slow_cycle
        scheduler = SyncScheduler(fake_engine)
        worker = threading.Thread(target=scheduler.trigger_sync, args=("timer",))
        worker.start()
        assert started.wait(5)

        assert scheduler.is_syncing
        assert scheduler.trigger_sync("manual") is None
        assert scheduler.on_visible() is None

        release.set()
        worker.join(5)
        assert fake_engine.run_cycle.call_count == 1
        assert not scheduler.is_syncing

    def test_local_store_error_becomes_failed_result(self, fake_engine):
        fake_engine.run_cycle.side_effect = LocalStoreError("both backings failed")
        scheduler = SyncScheduler(fake_engine)

        result = scheduler.trigger_sync()

        assert not result.success
        assert result.summary() == "sync incomplete, will retry"
        # Guard is released so the next trigger can run
        fake_engine.run_cycle.side_effect = None
        assert scheduler.trigger_sync() is not None

    def test_unexpected_errors_propagate_and_release_guard(self, fake_engine):
        fake_engine.run_cycle.side_effect = RuntimeError("bug")
        scheduler = SyncScheduler(fake_engine)

        with pytest.raises(RuntimeError):
            scheduler.trigger_sync()

        assert not scheduler.is_syncing

    def test_hooks_trigger_cycles(self, fake_engine):
        scheduler = SyncScheduler(fake_engine)

        scheduler.on_visible()
        scheduler.on_online()

        assert fake_engine.run_cycle.call_count == 2


class TestLifecycle:
    def test_start_runs_startup_cycle_and_stop_joins(self, fake_engine):
        scheduler = SyncScheduler(fake_engine, interval=60)

        scheduler.start()
        try:
            assert scheduler.is_running
            assert fake_engine.run_cycle.call_count == 1
        finally:
            scheduler.stop()

        assert not scheduler.is_running

    def test_start_without_initial_sync(self, fake_engine):
        scheduler = SyncScheduler(fake_engine, interval=60)

        scheduler.start(sync_now=False)
        scheduler.stop()

        fake_engine.run_cycle.assert_not_called()

    def test_timer_fires(self, fake_engine):
        scheduler = SyncScheduler(fake_engine, interval=0.01)

        with scheduler:
            deadline = time.monotonic() + 5
            while fake_engine.run_cycle.call_count < 3 and time.monotonic() < deadline:
                time.sleep(0.01)

        assert fake_engine.run_cycle.call_count >= 3

    def test_timer_survives_cycle_errors(self, fake_engine):
        fake_engine.run_cycle.side_effect = RuntimeError("boom")
        scheduler = SyncScheduler(fake_engine, interval=0.01)

        scheduler.start(sync_now=False)
        try:
            deadline = time.monotonic() + 5
            while fake_engine.run_cycle.call_count < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert scheduler.is_running
        finally:
            scheduler.stop()

        assert fake_engine.run_cycle.call_count >= 2

    def test_start_twice_is_noop(self, fake_engine):
        scheduler = SyncScheduler(fake_engine, interval=60)

        scheduler.start()
        scheduler.start()
        scheduler.stop()

        assert fake_engine.run_cycle.call_count == 1

    def test_real_engine_cycle(self, engine, entries, remote):
        entries.add_entry("vocabulary", "ephemeral")
        scheduler = SyncScheduler(engine)

        result = scheduler.trigger_sync()

        assert result.success
        assert len(remote) == 1


class TestStopWaitsForCycle:
    def _slow_engine(self, fake_engine):
        started = threading.Event()
        release = threading.Event()
        finished = threading.Event()

        def slow_cycle():
            started.set()
            release.wait(5)
            finished.set()
            return SyncResult()

        fake_engine.run_cycle.side_effect = slow_cycle
        return started, release, finished

    def _assert_stop_blocks_until_release(self, scheduler, release, finished):
        stopper = threading.Thread(target=scheduler.stop)
        stopper.start()
        stopper.join(0.2)
        assert stopper.is_alive()
        assert not finished.is_set()

        release.set()
        stopper.join(5)
        assert not stopper.is_alive()
        assert finished.is_set()
        assert not scheduler.is_syncing

    def test_stop_waits_for_timer_cycle(self, fake_engine):
        started, release, finished = self._slow_engine(fake_engine)
        scheduler = SyncScheduler(fake_engine, interval=0.01)
        scheduler.start(sync_now=False)
        assert started.wait(5)

        self._assert_stop_blocks_until_release(scheduler, release, finished)
        assert not scheduler.is_running

    def test_stop_waits_for_manual_cycle(self, fake_engine):
        started, release, finished = self._slow_engine(fake_engine)
        scheduler = SyncScheduler(fake_engine)
        worker = threading.Thread(target=scheduler.trigger_sync, args=("manual",))
        worker.start()
        assert started.wait(5)

        self._assert_stop_blocks_until_release(scheduler, release, finished)
        worker.join(5)

    def test_context_close_waits_for_cycle(self, fake_engine, settings):
        started, release, finished = self._slow_engine(fake_engine)
        ctx = AppContext.create(settings)
        ctx.scheduler = SyncScheduler(fake_engine, interval=0.01)
        ctx.local = MagicMock(wraps=ctx.local)
        ctx.scheduler.start(sync_now=False)
        assert started.wait(5)

        closer = threading.Thread(target=ctx.close)
        closer.start()
        closer.join(0.2)
        ctx.local.close.assert_not_called()

        release.set()
        closer.join(5)
        assert finished.is_set()
        ctx.local.close.assert_called_once()
