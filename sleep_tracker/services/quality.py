import asyncio
import logging

from sleep_tracker.database import SleepDatabaseDao
from sleep_tracker.models import SleepNight
from sleep_tracker.services.scope import ScopedService
from sleep_tracker.services.signals import OneShotSignal, signal_payload

logger = logging.getLogger(__name__)


class SleepQualityService(ScopedService):
    """Attach a quality rating to one night, then signal the way back."""

    def __init__(self, sleep_night_key: int, database: SleepDatabaseDao) -> None:
        super().__init__()
        self.sleep_night_key = sleep_night_key
        self.database = database
        self.navigate_to_sleep_tracker: OneShotSignal[bool] = OneShotSignal(
            "navigate_to_sleep_tracker"
        )

    def snapshot(self) -> dict:
        return {
            "night_id": self.sleep_night_key,
            "navigate_to_sleep_tracker": signal_payload(
                self.navigate_to_sleep_tracker.value
            ),
        }

    def on_set_sleep_quality(self, quality: int) -> asyncio.Task:
        return self._launch(lambda: self._set_sleep_quality(quality))

    def done_navigating(self) -> None:
        self.navigate_to_sleep_tracker.handled()
        logger.debug("Done navigating from night %d", self.sleep_night_key)

    async def _set_sleep_quality(self, quality: int) -> SleepNight | None:
        tonight = await self.database.get(self.sleep_night_key)
        if tonight is None:
            logger.debug("Night %d not found, quality not recorded", self.sleep_night_key)
            return None
        tonight.sleep_quality = quality
        await self.database.update(tonight)
        self.navigate_to_sleep_tracker.emit(True)
        logger.info("Recorded quality %d for night %d", quality, self.sleep_night_key)
        return tonight
