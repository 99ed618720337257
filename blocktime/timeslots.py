"""
Time-slot generation for one shift.

Two modes:
- fixed: back-to-back slots of ``slot_length`` minutes, jumping over the break
- distribution: ordered ``(length, count)`` groups with a fixed gap between
  slots of the same group

Both return plain ``(start, end)`` minute windows; ``generate_slots`` turns a
``TimingConfig`` into ``TimeSlot`` records.
"""
import logging
from typing import Any, Iterable, List, Optional, Tuple

from .errors import ValidationError
from .models import SHIFTS, TimeSlot, TimingConfig
from .timeutil import normalize_day, parse_time, sort_days

logger = logging.getLogger(__name__)

Window = Tuple[int, int]


def normalize_distribution(distribution: Iterable[Any]) -> List[Tuple[int, int]]:
    """Accept ``(len, count)`` pairs or ``{"len"|"length": .., "count": ..}`` mappings."""
    groups: List[Tuple[int, int]] = []
    for g in distribution:
        if isinstance(g, dict):
            length = g.get('len', g.get('length'))
            count = g.get('count')
        else:
            try:
                length, count = g
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid distribution entry {g!r}")
        try:
            length, count = int(length), int(count)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid distribution entry {g!r}")
        if length <= 0 or count <= 0:
            raise ValidationError(f"Distribution lengths and counts must be positive: {g!r}")
        groups.append((length, count))
    return groups


def required_minutes(distribution: List[Tuple[int, int]], gap_minutes: int = 15) -> int:
    return sum(length * count + gap_minutes * (count - 1) for length, count in distribution)


def fixed_windows(opening: int, closing: int, slot_length: int,
                  break_start: Optional[int] = None, break_minutes: int = 0) -> List[Window]:
    if slot_length <= 0:
        raise ValidationError("slot_length must be positive")
    has_break = break_start is not None and break_minutes > 0
    break_end = break_start + break_minutes if has_break else None
    windows: List[Window] = []
    cursor = opening
    while cursor + slot_length <= closing:
        if has_break and cursor < break_end and cursor + slot_length > break_start:
            cursor = break_end
            continue
        windows.append((cursor, cursor + slot_length))
        cursor += slot_length
    return windows


def distribution_windows(start: int, end: int, distribution: List[Tuple[int, int]],
                         gap_minutes: int = 15) -> List[Window]:
    needed = required_minutes(distribution, gap_minutes)
    available = end - start
    if needed > available:
        raise ValidationError(
            "Distribution does not fit in time window",
            details={"total_minutes": needed, "window_minutes": available},
        )
    windows: List[Window] = []
    cursor = start
    for length, count in distribution:
        for i in range(count):
            windows.append((cursor, cursor + length))
            cursor += length
            if i < count - 1:
                cursor += gap_minutes
    return windows


def _validate_timing(timing: TimingConfig) -> Tuple[int, int, List[str]]:
    if timing.shift not in SHIFTS:
        raise ValidationError(f"Unknown shift {timing.shift!r}")
    opening = parse_time(timing.opening)
    closing = parse_time(timing.closing)
    if closing <= opening:
        raise ValidationError("closing time must be after opening time")
    if (timing.slot_length is None) == (not timing.distribution):
        raise ValidationError("Provide exactly one of slot_length or distribution")
    days = sort_days({normalize_day(d) for d in timing.working_days})
    return opening, closing, days


def generate_slots(timing: TimingConfig, gap_minutes: int = 15, first_id: int = 1) -> List[TimeSlot]:
    """Build the complete slot set of one shift.

    Raises ValidationError before producing anything if the timing is invalid.
    Ids are assigned sequentially from ``first_id`` in output order.
    """
    opening, closing, days = _validate_timing(timing)

    if timing.distribution:
        if not days:
            raise ValidationError("working_days are required for distribution mode")
        windows = distribution_windows(opening, closing, normalize_distribution(timing.distribution), gap_minutes)
    else:
        break_start = parse_time(timing.break_start) if timing.break_start else None
        if break_start is not None and not opening <= break_start < closing:
            raise ValidationError("break must start inside the opening hours")
        windows = fixed_windows(opening, closing, int(timing.slot_length), break_start, int(timing.break_minutes or 0))

    day_scopes = days if days else [None]
    slots: List[TimeSlot] = []
    next_id = first_id
    for day in day_scopes:
        for start, end in windows:
            slots.append(TimeSlot(id=next_id, shift=timing.shift, start=start, end=end, day=day))
            next_id += 1
    logger.info("Generated %d slots for shift %s (%d per day)", len(slots), timing.shift, len(windows))
    return slots
