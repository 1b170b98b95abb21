"""Tests for the sleep tracking state machine."""

from __future__ import annotations

import asyncio

import pytest

from sleep_tracker.errors import StorageError, TrackingAlreadyStarted
from sleep_tracker.models import SleepNight
from sleep_tracker.services import SleepTrackerService


def _open_nights(nights: list[SleepNight]) -> list[SleepNight]:
    return [n for n in nights if n.is_open]


class TestInitialize:
    @pytest.mark.asyncio
    async def test_empty_store(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.initialized
        assert tracker.tonight is None
        assert tracker.nights == []
        assert tracker.start_button_visible
        assert not tracker.stop_button_visible
        assert not tracker.clear_button_visible
        tracker.close()

    @pytest.mark.asyncio
    async def test_resumes_open_night(self, dao) -> None:
        night = SleepNight(start_time_milli=100, end_time_milli=100)
        await dao.insert(night)
        tracker = SleepTrackerService(dao)
        await tracker.initialized
        assert tracker.tonight == night
        assert tracker.stop_button_visible
        tracker.close()

    @pytest.mark.asyncio
    async def test_completed_night_is_not_resumed(self, dao) -> None:
        await dao.insert(SleepNight(start_time_milli=100, end_time_milli=400))
        tracker = SleepTrackerService(dao)
        await tracker.initialized
        assert tracker.tonight is None
        assert len(tracker.nights) == 1
        assert tracker.clear_button_visible
        tracker.close()


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_creates_open_night(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        night = await tracker.on_start_tracking()
        assert night.is_open
        assert night.sleep_quality == -1
        assert tracker.tonight is night
        assert await dao.get(night.night_id) == night
        assert tracker.nights == [night]
        tracker.close()

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        first = tracker.on_start_tracking()
        second = tracker.on_start_tracking()
        await first
        with pytest.raises(TrackingAlreadyStarted):
            await second
        assert len(_open_nights(await dao.get_all_nights())) == 1
        tracker.close()

    @pytest.mark.asyncio
    async def test_start_rejected_when_open_night_loaded_from_store(self, dao) -> None:
        await dao.insert(SleepNight(start_time_milli=100, end_time_milli=100))
        tracker = SleepTrackerService(dao)
        with pytest.raises(TrackingAlreadyStarted):
            await tracker.on_start_tracking()
        tracker.close()

    @pytest.mark.asyncio
    async def test_stop_without_night_is_noop(self, dao) -> None:
        await dao.insert(SleepNight(start_time_milli=100, end_time_milli=400, sleep_quality=2))
        tracker = SleepTrackerService(dao)
        result = await tracker.on_stop_tracking()
        assert result is None
        assert not tracker.navigate_to_sleep_quality.is_pending
        assert await dao.get_all_nights() == [
            SleepNight(night_id=1, start_time_milli=100, end_time_milli=400, sleep_quality=2)
        ]
        tracker.close()

    @pytest.mark.asyncio
    async def test_start_then_stop(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        started = await tracker.on_start_tracking()
        stopped = await tracker.on_stop_tracking()

        assert stopped.night_id == started.night_id
        assert stopped.start_time_milli == started.start_time_milli
        assert stopped.end_time_milli > stopped.start_time_milli
        assert tracker.navigate_to_sleep_quality.value == stopped
        assert tracker.tonight is None
        assert tracker.start_button_visible
        assert await dao.get(started.night_id) == stopped
        tracker.close()

    @pytest.mark.asyncio
    async def test_stop_at_given_time(self, dao, monkeypatch: pytest.MonkeyPatch) -> None:
        await dao.insert(SleepNight(start_time_milli=100, end_time_milli=100))
        monkeypatch.setattr("sleep_tracker.services.tracker.now_milli", lambda: 500)
        tracker = SleepTrackerService(dao)
        night = await tracker.on_stop_tracking()
        assert night.start_time_milli == 100
        assert night.end_time_milli == 500
        stored = await dao.get(night.night_id)
        assert stored.end_time_milli == 500
        tracker.close()

    @pytest.mark.asyncio
    async def test_start_allowed_after_stop(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.on_start_tracking()
        await tracker.on_stop_tracking()
        second = await tracker.on_start_tracking()
        assert tracker.tonight is second
        assert len(await dao.get_all_nights()) == 2
        tracker.close()


class TestSignals:
    @pytest.mark.asyncio
    async def test_navigation_signal_is_one_shot(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.on_start_tracking()
        night = await tracker.on_stop_tracking()

        # re-observing before the acknowledgement still sees it
        assert tracker.navigate_to_sleep_quality.value is night
        assert tracker.snapshot()["navigate_to_sleep_quality"]["night_id"] == night.night_id

        tracker.done_navigating()
        assert tracker.navigate_to_sleep_quality.value is None
        assert tracker.snapshot()["navigate_to_sleep_quality"] is None
        tracker.close()

    @pytest.mark.asyncio
    async def test_clear_raises_snackbar(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.on_start_tracking()
        await tracker.on_clear()

        assert tracker.tonight is None
        assert tracker.nights == []
        assert await dao.get_all_nights() == []
        assert tracker.show_snackbar_event.value is True

        tracker.done_showing_snackbar()
        assert not tracker.show_snackbar_event.is_pending
        tracker.close()

    @pytest.mark.asyncio
    async def test_listeners_notified_after_each_command(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        seen = []
        tracker.add_listener(lambda: seen.append(tracker.tonight))
        await tracker.initialized
        night = await tracker.on_start_tracking()
        assert seen[-1] is night
        tracker.close()


class TestHistory:
    @pytest.mark.asyncio
    async def test_nights_string_follows_store(self, dao) -> None:
        await dao.insert(SleepNight(start_time_milli=0, end_time_milli=3_600_000, sleep_quality=5))
        tracker = SleepTrackerService(dao)
        await tracker.initialized
        assert "Excellent" in tracker.nights_string
        assert "1:00:00" in tracker.nights_string
        tracker.close()


class TestLifetime:
    @pytest.mark.asyncio
    async def test_close_cancels_pending_work(self, dao) -> None:
        await dao.insert(SleepNight(start_time_milli=100, end_time_milli=200))
        tracker = SleepTrackerService(dao)
        await tracker.initialized
        task = tracker.on_clear()
        tracker.close()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(await dao.get_all_nights()) == 1

    @pytest.mark.asyncio
    async def test_commands_rejected_after_close(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.initialized
        tracker.close()
        with pytest.raises(RuntimeError):
            tracker.on_start_tracking()

    @pytest.mark.asyncio
    async def test_commands_apply_in_call_order(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        start = tracker.on_start_tracking()
        stop = tracker.on_stop_tracking()
        clear = tracker.on_clear()
        await asyncio.gather(start, stop, clear)
        assert tracker.navigate_to_sleep_quality.is_pending
        assert tracker.show_snackbar_event.is_pending
        assert await dao.get_all_nights() == []
        tracker.close()

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, dao, monkeypatch: pytest.MonkeyPatch) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.initialized

        async def _broken(night):
            raise StorageError("disk full")

        monkeypatch.setattr(dao, "insert", _broken)
        with pytest.raises(StorageError):
            await tracker.on_start_tracking()
        assert tracker.tonight is None
        tracker.close()

    @pytest.mark.asyncio
    async def test_failed_stop_keeps_night_open(self, dao, monkeypatch: pytest.MonkeyPatch) -> None:
        tracker = SleepTrackerService(dao)
        night = await tracker.on_start_tracking()

        async def _broken(n):
            raise StorageError("disk full")

        monkeypatch.setattr(dao, "update", _broken)
        with pytest.raises(StorageError):
            await tracker.on_stop_tracking()
        monkeypatch.undo()

        assert tracker.tonight is night
        assert tracker.tonight.is_open
        assert not tracker.navigate_to_sleep_quality.is_pending
        with pytest.raises(TrackingAlreadyStarted):
            await tracker.on_start_tracking()
        assert len(_open_nights(await dao.get_all_nights())) == 1
        tracker.close()

    @pytest.mark.asyncio
    async def test_rejected_start_logged_as_info(
        self, dao, caplog: pytest.LogCaptureFixture
    ) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.on_start_tracking()
        with caplog.at_level("INFO", logger="sleep_tracker.services.scope"):
            with pytest.raises(TrackingAlreadyStarted):
                await tracker.on_start_tracking()
        records = [r for r in caplog.records if r.name == "sleep_tracker.services.scope"]
        assert records
        assert all(r.levelname == "INFO" for r in records)
        tracker.close()

    @pytest.mark.asyncio
    async def test_unexpected_failure_logged_as_error(
        self, dao, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.initialized

        async def _broken():
            raise StorageError("disk full")

        monkeypatch.setattr(dao, "clear", _broken)
        with caplog.at_level("INFO", logger="sleep_tracker.services.scope"):
            with pytest.raises(StorageError):
                await tracker.on_clear()
        assert any(
            r.levelname == "ERROR" and r.name == "sleep_tracker.services.scope"
            for r in caplog.records
        )
        tracker.close()


class TestDrainEvents:
    @pytest.mark.asyncio
    async def test_each_event_drained_once(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.on_start_tracking()
        night = await tracker.on_stop_tracking()
        await tracker.on_clear()

        assert tracker.drain_events() == [
            {"event": "navigate_to_sleep_quality", "night_id": night.night_id},
            {"event": "show_snackbar"},
        ]
        assert tracker.drain_events() == []
        # draining is not an acknowledgement
        assert tracker.navigate_to_sleep_quality.is_pending
        tracker.close()

    @pytest.mark.asyncio
    async def test_acknowledged_events_are_not_drained(self, dao) -> None:
        tracker = SleepTrackerService(dao)
        await tracker.on_start_tracking()
        await tracker.on_stop_tracking()
        tracker.done_navigating()
        assert tracker.drain_events() == []
        tracker.close()
