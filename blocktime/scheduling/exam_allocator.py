"""
Exam allocator: places one exam per (course, section) on the session's
temporal grid and gives it a room and an invigilator.

Invigilators are chosen by the session mode:
- match: the instructor teaching the course/section
- shuffle: the least-loaded free instructor, ties broken by id
"""
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import MATCH_FALLBACK_FAIL, MATCH_FALLBACK_LEAST_LOADED
from ..errors import ValidationError
from ..models import (
    EXAM_TYPES, MODE_MATCH, MODE_SHUFFLE, NO_INVIGILATOR, NO_ROOM, NO_SLOT,
    Exam, ExamCandidate, ExamRun, ExamSession, Unassigned,
)
from ..store import Directory
from ..timeutil import WEEKDAYS, WEEKEND, normalize_day, parse_time
from .occupancy import ROOM, SECTION, TEACHER, Occupancy

logger = logging.getLogger(__name__)

# (exam_date, start_minute, end_minute)
ExamTime = Tuple[date, int, int]


def validate_session(session: ExamSession):
    if session.mode not in (MODE_MATCH, MODE_SHUFFLE):
        raise ValidationError(f"mode must be 'match' or 'shuffle', got {session.mode!r}")
    if session.exam_type not in EXAM_TYPES:
        raise ValidationError(f"exam_type must be one of {', '.join(EXAM_TYPES)}, got {session.exam_type!r}")
    if not 30 <= session.duration_minutes <= 300:
        raise ValidationError("duration_minutes must be between 30 and 300")
    if session.end_date < session.start_date:
        raise ValidationError("end_date must not be before start_date")
    for day, hours in session.working_hours.items():
        normalize_day(day)
        try:
            start, end = hours
        except (TypeError, ValueError):
            raise ValidationError(f"working hours of {day} must be a (start, end) pair, got {hours!r}")
        if parse_time(end) <= parse_time(start):
            raise ValidationError(f"working hours of {day} end before they start")


def exam_grid(session: ExamSession, buffer_minutes: int = 30) -> List[ExamTime]:
    """Every candidate exam datetime of the session in chronological order."""
    hours = {normalize_day(d): (parse_time(s), parse_time(e)) for d, (s, e) in session.working_hours.items()}
    grid: List[ExamTime] = []
    current = session.start_date
    while current <= session.end_date:
        weekday = WEEKDAYS[current.weekday()]
        if weekday not in WEEKEND and weekday in hours:
            start, end = hours[weekday]
            cursor = start
            while cursor + session.duration_minutes <= end:
                grid.append((current, cursor, cursor + session.duration_minutes))
                cursor += session.duration_minutes + buffer_minutes
        current += timedelta(days=1)
    return grid


def _processing_key(candidate: ExamCandidate, directory: Directory):
    course = directory.courses.get(candidate.course_id)
    semester = course.semester if course else 0
    name = course.name if course else ''
    return (semester, name, candidate.course_id, candidate.section_id)


class InvigilatorPicker:
    def __init__(self, mode: str, instructor_ids: Sequence[int],
                 teaching: Dict[Tuple[int, int], int], match_fallback: str):
        self.mode = mode
        self.instructor_ids = sorted(instructor_ids)
        self.teaching = teaching
        self.match_fallback = match_fallback
        self.workload: Dict[int, int] = {i: 0 for i in self.instructor_ids}

    def matched(self, candidate: ExamCandidate) -> Optional[int]:
        """The active instructor teaching the candidate, if any."""
        teacher = candidate.instructor_id
        if teacher is None:
            teacher = self.teaching.get((candidate.course_id, candidate.section_id))
        return teacher if teacher in self.workload else None

    def uses_match(self, candidate: ExamCandidate) -> bool:
        if self.mode != MODE_MATCH:
            return False
        return self.matched(candidate) is not None or self.match_fallback != MATCH_FALLBACK_LEAST_LOADED

    def pick(self, candidate: ExamCandidate, occ: Occupancy, when) -> Optional[int]:
        if self.uses_match(candidate):
            teacher = self.matched(candidate)
            if teacher is not None and occ.is_free(TEACHER, teacher, when):
                return teacher
            return None
        free = [i for i in self.instructor_ids if occ.is_free(TEACHER, i, when)]
        if not free:
            return None
        return min(free, key=lambda i: (self.workload[i], i))

    def record(self, instructor_id: int):
        self.workload[instructor_id] = self.workload.get(instructor_id, 0) + 1


def allocate_exams(session: ExamSession, candidates: Iterable[ExamCandidate], directory: Directory,
                   teaching: Optional[Dict[Tuple[int, int], int]] = None,
                   buffer_minutes: int = 30, match_fallback: str = MATCH_FALLBACK_FAIL,
                   first_exam_id: int = 1, existing: Iterable[Exam] = ()) -> ExamRun:
    """Schedule one exam per candidate.

    ``teaching`` maps (course_id, section_id) to the instructor teaching it and
    is only read in match mode. ``existing`` exams (other sessions) keep their
    rooms, invigilators and sections booked at their start times.
    """
    validate_session(session)
    grid = exam_grid(session, buffer_minutes)
    rooms = sorted(directory.rooms, key=lambda r: (r.capacity, r.id))
    active = [i.id for i in directory.instructors.values() if i.active]
    picker = InvigilatorPicker(session.mode, active, teaching or {}, match_fallback)
    occ = Occupancy()
    for e in existing:
        if not e.scheduled:
            continue
        claims = [(ROOM, e.room_id), (SECTION, e.section_id)]
        if e.invigilator_id is not None:
            claims.append((TEACHER, e.invigilator_id))
        occ.take(claims, (e.exam_date.toordinal(), e.start_time))
    run = ExamRun()
    next_id = first_exam_id

    for cand in sorted(candidates, key=lambda c: _processing_key(c, directory)):
        section = directory.sections.get(cand.section_id)
        strength = section.strength if section else 0
        fitting = [r for r in rooms if r.capacity >= strength]
        if not fitting:
            run.unassigned.append(Unassigned(cand.course_id, cand.section_id, NO_ROOM,
                                             f"no room holds {strength} students"))
            continue
        if picker.uses_match(cand) and picker.matched(cand) is None:
            run.unassigned.append(Unassigned(cand.course_id, cand.section_id, NO_INVIGILATOR,
                                             "no active instructor teaches this course/section"))
            continue

        saw_room = False
        placed = False
        for exam_date, start, end in grid:
            when = (exam_date.toordinal(), start)
            if not occ.is_free(SECTION, cand.section_id, when):
                continue
            room = next((r for r in fitting if occ.is_free(ROOM, r.id, when)), None)
            if room is None:
                continue
            saw_room = True
            invigilator = picker.pick(cand, occ, when)
            if invigilator is None:
                continue
            occ.take(((ROOM, room.id), (TEACHER, invigilator), (SECTION, cand.section_id)), when)
            picker.record(invigilator)
            run.exams.append(Exam(
                id=next_id,
                session_id=session.id,
                exam_type=session.exam_type,
                course_id=cand.course_id,
                section_id=cand.section_id,
                room_id=room.id,
                invigilator_id=invigilator,
                exam_date=exam_date,
                start_time=start,
                end_time=end,
            ))
            next_id += 1
            placed = True
            break

        if not placed:
            reason = NO_INVIGILATOR if saw_room else NO_SLOT
            run.unassigned.append(Unassigned(cand.course_id, cand.section_id, reason,
                                             f"exhausted {len(grid)} candidate datetimes"))

    for item in run.unassigned:
        logger.warning("Exam for course %d section %d unassigned: %s (%s)",
                       item.course_id, item.section_id, item.reason, item.detail)
    logger.info("Exam session %d (%s mode): %d exams, %d unassigned",
                session.id, session.mode, len(run.exams), len(run.unassigned))
    return run
