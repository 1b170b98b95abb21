import time
from dataclasses import dataclass, field

UNRATED = -1


def now_milli() -> int:
    return int(time.time() * 1000)


@dataclass
class SleepNight:
    night_id: int = 0  # 0 until the row is inserted
    start_time_milli: int = field(default_factory=now_milli)
    end_time_milli: int | None = None  # defaults to start, i.e. open
    sleep_quality: int = UNRATED

    def __post_init__(self) -> None:
        if self.end_time_milli is None:
            self.end_time_milli = self.start_time_milli

    @property
    def is_open(self) -> bool:
        return self.end_time_milli == self.start_time_milli

    @property
    def is_rated(self) -> bool:
        return self.sleep_quality != UNRATED

    @classmethod
    def from_row(cls, row) -> "SleepNight":
        return cls(
            night_id=row["night_id"],
            start_time_milli=row["start_time_milli"],
            end_time_milli=row["end_time_milli"],
            sleep_quality=row["quality_rating"],
        )

    def to_dict(self) -> dict:
        return {
            "night_id": self.night_id,
            "start_time_milli": self.start_time_milli,
            "end_time_milli": self.end_time_milli,
            "sleep_quality": self.sleep_quality,
        }
