from datetime import datetime

from sleep_tracker.models import SleepNight

QUALITY_LABELS = {
    0: "Very bad",
    1: "Poor",
    2: "So-so",
    3: "OK",
    4: "Pretty good",
    5: "Excellent",
}

HEADER = "Here is your sleep data"


def convert_numeric_quality_to_string(quality: int) -> str:
    return QUALITY_LABELS.get(quality, "--")


def convert_long_to_date_string(milli: int) -> str:
    """Local time as e.g. ``Tuesday Mar-05-2024 Time: 22:41``."""
    return datetime.fromtimestamp(milli / 1000).strftime("%A %b-%d-%Y Time: %H:%M")


def convert_duration(start_milli: int, end_milli: int) -> str:
    total_seconds = max(end_milli - start_milli, 0) // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def format_nights(nights: list[SleepNight]) -> str:
    """Render the sleep history as plain text, one block per night."""
    lines = [HEADER, ""]
    for night in nights:
        lines.append(f"Start: {convert_long_to_date_string(night.start_time_milli)}")
        if not night.is_open:
            lines.append(f"End: {convert_long_to_date_string(night.end_time_milli)}")
            lines.append(
                f"Quality: {convert_numeric_quality_to_string(night.sleep_quality)}"
            )
            lines.append(
                "Hours:Minutes:Seconds: "
                + convert_duration(night.start_time_milli, night.end_time_milli)
            )
        lines.append("")
    return "\n".join(lines).rstrip("\n") + "\n"
