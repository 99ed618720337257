from datetime import datetime

from .errors import ValidationError

WEEKDAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']
WEEKEND = frozenset({'saturday', 'sunday'})
DAY_INDEX = {d: i for i, d in enumerate(WEEKDAYS)}


def parse_time(t_str: str) -> int:
    """Converts '08:30' (or '08:30:00') to minutes from midnight."""
    s = str(t_str).strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            t = datetime.strptime(s, fmt)
        except ValueError:
            continue
        return t.hour * 60 + t.minute
    raise ValidationError(f"Invalid time {t_str!r}; expected HH:MM")


def format_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def slot_label(start: int, end: int) -> str:
    return f"{format_time(start)} - {format_time(end)}"


def normalize_day(day: str) -> str:
    d = str(day).strip().lower()
    if d not in DAY_INDEX:
        # accept Mon/Tue/... abbreviations
        matches = [w for w in WEEKDAYS if len(d) >= 3 and w.startswith(d)]
        if len(matches) != 1:
            raise ValidationError(f"Unknown weekday {day!r}")
        d = matches[0]
    return d


def sort_days(days) -> list:
    return sorted(days, key=lambda d: DAY_INDEX[d])
