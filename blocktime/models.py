from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from .timeutil import format_time, slot_label

SHIFTS = ('morning', 'evening', 'weekend')
ROOM_TYPES = ('lecture', 'lab', 'seminar')
THEORY_ROOM_TYPES = frozenset({'lecture', 'seminar'})
LAB_ROOM_TYPES = frozenset({'lab'})

PENDING = 'pending'
ACCEPTED = 'accepted'
COMMITTED = 'committed'
ACTIVE_STATUSES = frozenset({PENDING, ACCEPTED, COMMITTED})

ORIGIN_ADMIN = 'admin'
ORIGIN_INSTRUCTOR = 'instructor'

MODE_MATCH = 'match'
MODE_SHUFFLE = 'shuffle'
EXAM_TYPES = ('midterm', 'final', 'supplementary', 'quiz')

# Unassigned reasons
NO_ROOM = 'no_room'
NO_SLOT = 'no_slot'
TEACHER_CONFLICT = 'teacher_conflict'
NO_INVIGILATOR = 'no_invigilator'


@dataclass
class TimeSlot:
    id: int
    shift: str
    start: int  # minutes from midnight
    end: int
    day: Optional[str] = None  # None = valid on every working day of the shift

    @property
    def duration(self) -> int:
        return self.end - self.start

    @property
    def label(self) -> str:
        return slot_label(self.start, self.end)

    def applies_to(self, day: str) -> bool:
        return self.day is None or self.day == day


@dataclass(frozen=True)
class Room:
    id: int
    capacity: int
    type: str = 'lecture'
    name: str = ''
    resources: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Course:
    id: int
    name: str
    credit_hours: str = '3+0'
    semester: int = 1
    code: str = ''
    major_id: Optional[int] = None


@dataclass(frozen=True)
class Section:
    id: int
    name: str
    semester: int = 1
    strength: int = 0
    shift: str = 'morning'
    major_id: Optional[int] = None


@dataclass(frozen=True)
class Instructor:
    id: int
    name: str = ''
    active: bool = True


@dataclass(frozen=True)
class Preferences:
    days: FrozenSet[str] = frozenset()
    time_slot_ids: FrozenSet[int] = frozenset()


@dataclass
class CourseRequest:
    id: int
    course_id: int
    section_id: int
    shift: str
    status: str = PENDING
    origin: str = ORIGIN_ADMIN
    nominated_instructor_id: Optional[int] = None
    instructor_id: Optional[int] = None
    preferences: Optional[Preferences] = None
    accepted_at: Optional[datetime] = None
    undo_deadline: Optional[datetime] = None
    can_undo: bool = False
    version: int = 0


@dataclass(frozen=True)
class Block:
    id: int
    teacher_id: int
    course_id: int
    section_id: int
    room_id: int
    day: str
    time_slot_id: int
    shift: str
    block_type: str = 'theory'  # or 'lab'
    request_id: Optional[int] = None

    def as_dict(self):
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "course_id": self.course_id,
            "section_id": self.section_id,
            "room_id": self.room_id,
            "day": self.day,
            "time_slot_id": self.time_slot_id,
            "shift": self.shift,
            "block_type": self.block_type,
            "request_id": self.request_id,
        }


@dataclass
class TimingConfig:
    """Working-hours settings of one shift.

    Exactly one of ``slot_length`` (fixed mode) or ``distribution``
    (list of ``(length, count)`` groups) drives generation.
    """

    shift: str
    opening: str
    closing: str
    slot_length: Optional[int] = None
    distribution: List[Tuple[int, int]] = field(default_factory=list)
    break_start: Optional[str] = None
    break_minutes: int = 0
    working_days: List[str] = field(default_factory=list)
    active: bool = True


@dataclass
class ExamSession:
    id: int
    start_date: date
    end_date: date
    working_hours: Dict[str, Tuple[str, str]]  # weekday -> ("09:00", "17:00")
    duration_minutes: int = 120
    mode: str = MODE_SHUFFLE
    exam_type: str = 'final'


@dataclass(frozen=True)
class ExamCandidate:
    course_id: int
    section_id: int
    instructor_id: Optional[int] = None


@dataclass(frozen=True)
class Exam:
    id: int
    session_id: int
    exam_type: str
    course_id: int
    section_id: int
    room_id: int
    invigilator_id: Optional[int]
    exam_date: Optional[date]
    start_time: Optional[int]  # minutes from midnight; None after a slot reset
    end_time: Optional[int]

    @property
    def scheduled(self) -> bool:
        return self.exam_date is not None and self.start_time is not None

    def as_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "exam_type": self.exam_type,
            "course_id": self.course_id,
            "section_id": self.section_id,
            "room_id": self.room_id,
            "invigilator_id": self.invigilator_id,
            "exam_date": self.exam_date.isoformat() if self.exam_date else "",
            "start_time": format_time(self.start_time) if self.start_time is not None else "",
            "end_time": format_time(self.end_time) if self.end_time is not None else "",
        }


@dataclass(frozen=True)
class Unassigned:
    course_id: int
    section_id: int
    reason: str
    detail: str = ''
    request_id: Optional[int] = None


@dataclass
class BlockRun:
    blocks: List[Block] = field(default_factory=list)
    unassigned: List[Unassigned] = field(default_factory=list)
    placed_request_ids: List[int] = field(default_factory=list)


@dataclass
class ExamRun:
    exams: List[Exam] = field(default_factory=list)
    unassigned: List[Unassigned] = field(default_factory=list)
