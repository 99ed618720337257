"""
In-memory state of the engine plus the read-only resource directory.

``Store.transaction()`` gives an exclusive section that rolls every table back
if the body raises, so a failed operation never leaves a partial slot or
assignment set behind. ``Store.lock_keys()`` hands out exclusive locks on
composite keys such as ``('room', room_id, day, slot_id)``, hashed onto a fixed
set of lock stripes.
"""
import copy
import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import NotFoundError
from .models import (
    Block, Course, CourseRequest, Exam, ExamSession, Instructor, Room, Section,
    TimeSlot, TimingConfig,
)

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64

TABLES = ('rooms', 'courses', 'sections', 'instructors', 'time_slots',
          'requests', 'blocks', 'timings', 'sessions', 'exams')


@dataclass(frozen=True)
class Directory:
    """Snapshot of the resources an allocation run reads."""

    rooms: Tuple[Room, ...] = ()
    time_slots: Tuple[TimeSlot, ...] = ()
    courses: Dict[int, Course] = field(default_factory=dict)
    sections: Dict[int, Section] = field(default_factory=dict)
    instructors: Dict[int, Instructor] = field(default_factory=dict)

    def slots_for(self, shift: str, day: str, only: Optional[Iterable[int]] = None) -> List[TimeSlot]:
        wanted = set(only) if only else None
        slots = [ts for ts in self.time_slots
                 if ts.shift == shift and ts.applies_to(day) and (wanted is None or ts.id in wanted)]
        return sorted(slots, key=lambda ts: (ts.start, ts.id))

    def rooms_of_type(self, types: Iterable[str]) -> List[Room]:
        types = set(types)
        return [r for r in self.rooms if r.type in types]

    def slot(self, slot_id: int) -> Optional[TimeSlot]:
        for ts in self.time_slots:
            if ts.id == slot_id:
                return ts
        return None


class Store:
    def __init__(self):
        self.rooms: Dict[int, Room] = {}
        self.courses: Dict[int, Course] = {}
        self.sections: Dict[int, Section] = {}
        self.instructors: Dict[int, Instructor] = {}
        self.time_slots: Dict[int, TimeSlot] = {}
        self.requests: Dict[int, CourseRequest] = {}
        self.blocks: Dict[int, Block] = {}
        self.timings: Dict[str, TimingConfig] = {}
        self.sessions: Dict[int, ExamSession] = {}
        self.exams: Dict[int, Exam] = {}
        self._seq: Dict[str, int] = defaultdict(int)
        self._mutex = threading.RLock()
        self.lock_stripes: Tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    # ------------------------------------------------------------------
    # Ids and transactions
    # ------------------------------------------------------------------
    def next_id(self, table: str) -> int:
        self._seq[table] += 1
        return self._seq[table]

    def reserve_ids(self, table: str, n: int) -> int:
        """Reserve ``n`` consecutive ids and return the first."""
        first = self._seq[table] + 1
        self._seq[table] += n
        return first

    def _snapshot(self):
        return copy.deepcopy({t: getattr(self, t) for t in TABLES}), dict(self._seq)

    def _restore(self, snapshot):
        tables, seq = snapshot
        for t in TABLES:
            setattr(self, t, tables[t])
        self._seq = defaultdict(int, seq)

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        with self._mutex:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                self._restore(snapshot)
                logger.debug("Transaction rolled back")
                raise

    @contextmanager
    def lock_keys(self, keys: Iterable[tuple]):
        """Hold exclusive locks on every key.

        Keys map onto a fixed set of stripes; stripes are taken in index order
        so overlapping callers cannot deadlock.
        """
        stripes = sorted({hash(k) % len(self.lock_stripes) for k in keys})
        locks = [self.lock_stripes[i] for i in stripes]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # ------------------------------------------------------------------
    # Supplied entities
    # ------------------------------------------------------------------
    def add_room(self, room: Room) -> Room:
        self.rooms[room.id] = room
        return room

    def add_course(self, course: Course) -> Course:
        self.courses[course.id] = course
        return course

    def add_section(self, section: Section) -> Section:
        self.sections[section.id] = section
        return section

    def add_instructor(self, instructor: Instructor) -> Instructor:
        self.instructors[instructor.id] = instructor
        return instructor

    def add_request(self, request: CourseRequest) -> CourseRequest:
        self.requests[request.id] = request
        self._seq['requests'] = max(self._seq['requests'], request.id)
        return request

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_request(self, request_id: int) -> CourseRequest:
        try:
            return self.requests[request_id]
        except KeyError:
            raise NotFoundError(f"Course request {request_id} not found")

    def get_block(self, block_id: int) -> Block:
        try:
            return self.blocks[block_id]
        except KeyError:
            raise NotFoundError(f"Block {block_id} not found")

    def get_exam(self, exam_id: int) -> Exam:
        try:
            return self.exams[exam_id]
        except KeyError:
            raise NotFoundError(f"Exam {exam_id} not found")

    def get_instructor(self, instructor_id: int) -> Instructor:
        try:
            return self.instructors[instructor_id]
        except KeyError:
            raise NotFoundError(f"Instructor {instructor_id} not found")

    def directory(self) -> Directory:
        return Directory(
            rooms=tuple(sorted(self.rooms.values(), key=lambda r: r.id)),
            time_slots=tuple(sorted(self.time_slots.values(), key=lambda ts: ts.id)),
            courses=dict(self.courses),
            sections=dict(self.sections),
            instructors=dict(self.instructors),
        )

    def exams_of_session(self, session_id: int) -> List[Exam]:
        return [e for e in self.exams.values() if e.session_id == session_id]
