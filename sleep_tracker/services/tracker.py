import asyncio
import dataclasses
import logging

from sleep_tracker.database import SleepDatabaseDao
from sleep_tracker.errors import TrackingAlreadyStarted
from sleep_tracker.models import SleepNight, now_milli
from sleep_tracker.services.formatting import format_nights
from sleep_tracker.services.scope import ScopedService
from sleep_tracker.services.signals import OneShotSignal, signal_payload

logger = logging.getLogger(__name__)


class SleepTrackerService(ScopedService):
    """Start, stop and clear sleep tracking for one client.

    State exposed to the presentation layer:

    * ``tonight`` - the open night, or None when nothing is being tracked
    * ``nights`` / ``nights_string`` - the history, most recent first
    * ``navigate_to_sleep_quality`` - raised with the night that was just
      stopped; acknowledge with ``done_navigating()``
    * ``show_snackbar_event`` - raised after the history was cleared;
      acknowledge with ``done_showing_snackbar()``

    Commands return the task that performs them.  Construction schedules
    the initial load, so it must happen inside a running event loop.
    """

    expected_errors = (TrackingAlreadyStarted,)

    def __init__(self, database: SleepDatabaseDao) -> None:
        super().__init__()
        self.database = database
        self.tonight: SleepNight | None = None
        self.nights: list[SleepNight] = []
        self.navigate_to_sleep_quality: OneShotSignal[SleepNight] = OneShotSignal(
            "navigate_to_sleep_quality"
        )
        self.show_snackbar_event: OneShotSignal[bool] = OneShotSignal(
            "show_snackbar_event"
        )
        self.initialized = self.initialize()

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def nights_string(self) -> str:
        return format_nights(self.nights)

    @property
    def start_button_visible(self) -> bool:
        return self.tonight is None

    @property
    def stop_button_visible(self) -> bool:
        return self.tonight is not None

    @property
    def clear_button_visible(self) -> bool:
        return bool(self.nights)

    def snapshot(self) -> dict:
        return {
            "tonight": self.tonight.to_dict() if self.tonight else None,
            "nights": [n.to_dict() for n in self.nights],
            "nights_string": self.nights_string,
            "start_button_visible": self.start_button_visible,
            "stop_button_visible": self.stop_button_visible,
            "clear_button_visible": self.clear_button_visible,
            "navigate_to_sleep_quality": signal_payload(
                self.navigate_to_sleep_quality.value
            ),
            "show_snackbar_event": signal_payload(self.show_snackbar_event.value),
        }

    def drain_events(self) -> list[dict]:
        """Signals raised since the last call, each returned once."""
        events = [
            {"event": "navigate_to_sleep_quality", "night_id": night.night_id}
            for night in self.navigate_to_sleep_quality.drain()
        ]
        events += [{"event": "show_snackbar"} for _ in self.show_snackbar_event.drain()]
        return events

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def initialize(self) -> asyncio.Task:
        return self._launch(self._initialize_tonight)

    def on_start_tracking(self) -> asyncio.Task:
        return self._launch(self._start_tracking)

    def on_stop_tracking(self) -> asyncio.Task:
        return self._launch(self._stop_tracking)

    def on_clear(self) -> asyncio.Task:
        return self._launch(self._clear)

    def done_navigating(self) -> None:
        self.navigate_to_sleep_quality.handled()

    def done_showing_snackbar(self) -> None:
        self.show_snackbar_event.handled()

    # ------------------------------------------------------------------
    # Task bodies (serialized by ScopedService)
    # ------------------------------------------------------------------

    async def _initialize_tonight(self) -> SleepNight | None:
        self.tonight = await self._get_tonight_from_database()
        await self._reload_nights()
        return self.tonight

    async def _get_tonight_from_database(self) -> SleepNight | None:
        night = await self.database.get_tonight()
        # a completed night is never resumed
        if night is not None and not night.is_open:
            return None
        return night

    async def _start_tracking(self) -> SleepNight:
        if self.tonight is not None and self.tonight.is_open:
            raise TrackingAlreadyStarted(self.tonight.night_id)
        new_night = SleepNight()
        await self.database.insert(new_night)
        self.tonight = new_night
        await self._reload_nights()
        logger.info("Started tracking night %d", new_night.night_id)
        return new_night

    async def _stop_tracking(self) -> SleepNight | None:
        old_night = self.tonight
        if old_night is None:
            logger.debug("Stop requested with no night being tracked")
            return None
        # tonight stays untouched until the update is stored
        closed = dataclasses.replace(
            old_night, end_time_milli=max(now_milli(), old_night.start_time_milli + 1)
        )
        await self.database.update(closed)
        self.tonight = None
        await self._reload_nights()
        self.navigate_to_sleep_quality.emit(closed)
        logger.info("Stopped tracking night %d", closed.night_id)
        return closed

    async def _clear(self) -> None:
        await self.database.clear()
        self.tonight = None
        self.nights = []
        self.show_snackbar_event.emit(True)
        logger.info("Sleep history cleared")

    async def _reload_nights(self) -> None:
        self.nights = await self.database.get_all_nights()
