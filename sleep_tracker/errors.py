class SleepTrackerError(Exception):
    """Base class for errors raised by the tracker services."""


class StorageError(SleepTrackerError):
    """The SQLite store failed while executing a DAO call."""


class TrackingAlreadyStarted(SleepTrackerError):
    """A start was requested while a night is still open."""

    def __init__(self, night_id: int) -> None:
        super().__init__(f"Night {night_id} is already being tracked")
        self.night_id = night_id
