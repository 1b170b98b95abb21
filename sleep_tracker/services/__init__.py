from sleep_tracker.services.quality import SleepQualityService
from sleep_tracker.services.signals import OneShotSignal
from sleep_tracker.services.tracker import SleepTrackerService

__all__ = ["OneShotSignal", "SleepQualityService", "SleepTrackerService"]
