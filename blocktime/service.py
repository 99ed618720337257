"""
Scheduler: the operations the outside world calls.

Every operation reads the store, runs the pure allocation code and writes the
outcome back inside one transaction, so a failure leaves the previous state
untouched.
"""
import dataclasses
import logging
import warnings
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from . import course_requests
from .config import EngineConfig
from .errors import ConflictError, NotFoundError, UnassignableWarning, ValidationError
from .graph_build import build_clash_graph
from .models import (
    ACCEPTED, COMMITTED, LAB_ROOM_TYPES, THEORY_ROOM_TYPES,
    Block, CourseRequest, Exam, ExamCandidate, ExamSession, TimeSlot, TimingConfig, Unassigned,
)
from .scheduling.block_allocator import allocate_blocks
from .scheduling.exam_allocator import allocate_exams, validate_session
from .scheduling.validation import clashes
from .store import Store
from .timeutil import format_time, normalize_day, parse_time, sort_days
from .timeslots import generate_slots

logger = logging.getLogger(__name__)

RESET_SCOPES = ('slots', 'assignments', 'full')
EXAM_RESET_SCOPES = ('slots', 'invigilators', 'full')


@dataclass
class RequestBatch:
    created: int
    skipped: int
    requests: List[CourseRequest] = field(default_factory=list)


@dataclass
class AcceptResult:
    request_id: int
    status: str
    undo_deadline: datetime
    version: int


@dataclass
class BlockResult:
    blocks_created: int
    unassigned: List[Unassigned]
    blocks: List[Block] = field(default_factory=list)


@dataclass
class ExamResult:
    session_id: int
    exams_created: int
    conflicts: List[Unassigned]
    exams: List[Exam] = field(default_factory=list)


class Scheduler:
    def __init__(self, store: Optional[Store] = None, config: Optional[EngineConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store if store is not None else Store()
        self.config = config if config is not None else EngineConfig()
        self.clock = clock or datetime.now

    @property
    def working_days(self) -> List[str]:
        return sort_days({normalize_day(d) for d in self.config.working_days})

    # ------------------------------------------------------------------
    # Time slots
    # ------------------------------------------------------------------
    def generate_time_slots(self, timing: TimingConfig) -> List[TimeSlot]:
        """Replace the slot set of ``timing.shift``; nothing changes if validation fails."""
        store = self.store
        draft = generate_slots(timing, self.config.distribution_gap_minutes)
        with store.transaction():
            old_ids = {ts.id for ts in store.time_slots.values() if ts.shift == timing.shift}
            in_use = sorted(b.id for b in store.blocks.values() if b.time_slot_id in old_ids)
            if in_use:
                raise ConflictError(
                    f"{len(in_use)} blocks still use {timing.shift} slots; reset assignments first",
                    resource=('shift', timing.shift),
                )
            for sid in old_ids:
                del store.time_slots[sid]
            first = store.reserve_ids('time_slots', len(draft))
            slots = [dataclasses.replace(ts, id=first + i) for i, ts in enumerate(draft)]
            for ts in slots:
                store.time_slots[ts.id] = ts
            store.timings[timing.shift] = dataclasses.replace(timing, active=True)
        logger.info("Replaced %d %s slots with %d new ones", len(old_ids), timing.shift, len(slots))
        return slots

    # ------------------------------------------------------------------
    # Course requests
    # ------------------------------------------------------------------
    def generate_course_requests(self, semester: Optional[int] = None,
                                 major_id: Optional[int] = None) -> RequestBatch:
        created, skipped = course_requests.generate_requests(self.store, semester, major_id)
        return RequestBatch(created=len(created), skipped=skipped, requests=created)

    def nominate_instructor(self, request_id: int, instructor_id: int) -> CourseRequest:
        return course_requests.nominate(self.store, request_id, instructor_id)

    def accept_course_request(self, request_id: int, instructor_id: int, preferences,
                              expected_version: Optional[int] = None) -> AcceptResult:
        req = course_requests.accept(self.store, self.config, request_id, instructor_id,
                                     preferences, self.clock(), expected_version)
        return AcceptResult(request_id=req.id, status=req.status,
                            undo_deadline=req.undo_deadline, version=req.version)

    def undo_course_request(self, request_id: int, instructor_id: int) -> str:
        return course_requests.undo(self.store, request_id, instructor_id, self.clock()).status

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------
    def generate_blocks(self) -> BlockResult:
        """Rebuild every block from the accepted and committed requests."""
        store = self.store
        with store.transaction():
            requests = [r for r in store.requests.values()
                        if r.status in (ACCEPTED, COMMITTED) and r.instructor_id is not None]
            run = allocate_blocks(requests, store.directory(), self.working_days)
            store.blocks = {b.id: b for b in run.blocks}
            course_requests.commit(store, run.placed_request_ids)
        if run.unassigned:
            warnings.warn(f"{len(run.unassigned)} course requests could not be placed",
                          UnassignableWarning, stacklevel=2)
        return BlockResult(blocks_created=len(run.blocks), unassigned=run.unassigned, blocks=run.blocks)

    def move_block(self, block_id: int, room_id: int, day: str, time_slot_id: int) -> Block:
        """Manual override: move one block to another room/day/slot.

        The target (room, day, slot), (teacher, day, slot) and (section, day, slot)
        are locked before the conflict check so two concurrent edits cannot both
        claim the same cell.
        """
        day = normalize_day(day)
        current = self.store.get_block(block_id)
        keys = [('room', room_id, day, time_slot_id),
                ('teacher', current.teacher_id, day, time_slot_id),
                ('section', current.section_id, day, time_slot_id)]
        with self.store.lock_keys(keys):
            with self.store.transaction() as store:
                block = store.get_block(block_id)
                if (block.teacher_id, block.section_id) != (current.teacher_id, current.section_id):
                    raise ConflictError(f"Block {block_id} changed while waiting for the lock",
                                        resource=('block', block_id))
                slot = store.time_slots.get(time_slot_id)
                if slot is None:
                    raise ValidationError(f"Time slot {time_slot_id} does not exist")
                if slot.shift != block.shift or not slot.applies_to(day):
                    raise ValidationError(f"Time slot {time_slot_id} is not a {block.shift} slot on {day}")
                room = store.rooms.get(room_id)
                if room is None:
                    raise NotFoundError(f"Room {room_id} not found")
                allowed = LAB_ROOM_TYPES if block.block_type == 'lab' else THEORY_ROOM_TYPES
                section = store.sections.get(block.section_id)
                if room.type not in allowed or (section and room.capacity < section.strength):
                    raise ValidationError(f"Room {room_id} does not suit block {block_id}")
                for other in store.blocks.values():
                    if other.id == block_id or (other.day, other.time_slot_id) != (day, time_slot_id):
                        continue
                    for kind, mine, theirs in (('room', room_id, other.room_id),
                                               ('teacher', block.teacher_id, other.teacher_id),
                                               ('section', block.section_id, other.section_id)):
                        if mine == theirs:
                            raise ConflictError(
                                f"{kind.capitalize()} {mine} is already booked on {day} slot {time_slot_id} "
                                f"by block {other.id}",
                                resource=(kind, mine),
                            )
                moved = dataclasses.replace(block, room_id=room_id, day=day, time_slot_id=time_slot_id)
                store.blocks[block_id] = moved
        logger.info("Block %d moved to room %d, %s slot %d", block_id, room_id, day, time_slot_id)
        return moved

    # ------------------------------------------------------------------
    # Exams
    # ------------------------------------------------------------------
    def teaching_map(self) -> Dict[Tuple[int, int], int]:
        """(course_id, section_id) -> instructor, from blocks first, then requests."""
        teaching: Dict[Tuple[int, int], int] = {}
        for b in sorted(self.store.blocks.values(), key=lambda b: b.id):
            teaching.setdefault((b.course_id, b.section_id), b.teacher_id)
        for r in sorted(self.store.requests.values(), key=lambda r: r.id):
            if r.status in (ACCEPTED, COMMITTED) and r.instructor_id is not None:
                teaching.setdefault((r.course_id, r.section_id), r.instructor_id)
        return teaching

    def default_exam_candidates(self) -> List[ExamCandidate]:
        teaching = self.teaching_map()
        return [ExamCandidate(course_id=c, section_id=s) for c, s in sorted(teaching)]

    def generate_exam_session(self, session: ExamSession,
                              candidates: Optional[Iterable[ExamCandidate]] = None) -> ExamResult:
        """Replace every exam of ``session`` with a freshly allocated set."""
        validate_session(session)
        store = self.store
        with store.transaction():
            if candidates is None:
                candidates = self.default_exam_candidates()
            others = [e for e in store.exams.values() if e.session_id != session.id]
            first = max((e.id for e in others), default=0) + 1
            run = allocate_exams(session, list(candidates), store.directory(),
                                 teaching=self.teaching_map(),
                                 buffer_minutes=self.config.exam_buffer_minutes,
                                 match_fallback=self.config.match_fallback,
                                 first_exam_id=first,
                                 existing=others)
            store.sessions[session.id] = session
            store.exams = {e.id: e for e in others}
            store.exams.update({e.id: e for e in run.exams})
        if run.unassigned:
            warnings.warn(f"{len(run.unassigned)} exams could not be placed",
                          UnassignableWarning, stacklevel=2)
        return ExamResult(session_id=session.id, exams_created=len(run.exams),
                          conflicts=run.unassigned, exams=run.exams)

    def move_exam(self, exam_id: int, room_id: Optional[int] = None, invigilator_id: Optional[int] = None,
                  exam_date: Optional[date] = None, start_time=None) -> Exam:
        """Manual override of one exam's date, start time, room or invigilator.

        Omitted fields keep their current value and the exam keeps its length.
        The target room, invigilator and section are locked at the new
        (date, start) before the conflict check.
        """
        current = self.store.get_exam(exam_id)
        if isinstance(start_time, str):
            start_time = parse_time(start_time)
        room_id = current.room_id if room_id is None else room_id
        invigilator_id = current.invigilator_id if invigilator_id is None else invigilator_id
        exam_date = current.exam_date if exam_date is None else exam_date
        start_time = current.start_time if start_time is None else start_time
        if exam_date is None or start_time is None:
            raise ValidationError(f"Exam {exam_id} has no date or start time; both must be given")
        keys = [('room', room_id, exam_date, start_time),
                ('section', current.section_id, exam_date, start_time)]
        if invigilator_id is not None:
            keys.append(('invigilator', invigilator_id, exam_date, start_time))
        with self.store.lock_keys(keys):
            with self.store.transaction() as store:
                exam = store.get_exam(exam_id)
                session = store.sessions.get(exam.session_id)
                room = store.rooms.get(room_id)
                if room is None:
                    raise NotFoundError(f"Room {room_id} not found")
                section = store.sections.get(exam.section_id)
                if section and room.capacity < section.strength:
                    raise ValidationError(f"Room {room_id} holds {room.capacity}, section needs {section.strength}")
                if invigilator_id is not None and not store.get_instructor(invigilator_id).active:
                    raise ValidationError(f"Instructor {invigilator_id} is not active")
                if session is not None and not session.start_date <= exam_date <= session.end_date:
                    raise ValidationError(f"{exam_date.isoformat()} is outside exam session {session.id}")
                if exam.scheduled:
                    length = exam.end_time - exam.start_time
                elif session is not None:
                    length = session.duration_minutes
                else:
                    raise ValidationError(f"Exam {exam_id} has no session to take its length from")
                if start_time < 0 or start_time + length > 24 * 60:
                    raise ValidationError(f"Exam {exam_id} cannot start at minute {start_time}")
                for other in sorted(store.exams.values(), key=lambda e: e.id):
                    if other.id == exam_id or (other.exam_date, other.start_time) != (exam_date, start_time):
                        continue
                    for kind, mine, theirs in (('room', room_id, other.room_id),
                                               ('invigilator', invigilator_id, other.invigilator_id),
                                               ('section', exam.section_id, other.section_id)):
                        if mine is not None and mine == theirs:
                            raise ConflictError(
                                f"{kind.capitalize()} {mine} already has exam {other.id} on "
                                f"{exam_date.isoformat()} at {format_time(start_time)}",
                                resource=(kind, mine),
                            )
                moved = dataclasses.replace(exam, room_id=room_id, invigilator_id=invigilator_id,
                                            exam_date=exam_date, start_time=start_time,
                                            end_time=start_time + length)
                store.exams[exam_id] = moved
        logger.info("Exam %d moved to room %d on %s at %s", exam_id, room_id,
                    exam_date.isoformat(), format_time(start_time))
        return moved

    def reset_exam_session(self, session_id: int, scope: str) -> int:
        """Clear part of one session's exams and return how many were touched.

        ``slots`` drops dates and times but keeps rooms and invigilators,
        ``invigilators`` drops only the invigilators, ``full`` deletes the exams.
        """
        if scope not in EXAM_RESET_SCOPES:
            raise ValidationError(f"scope must be one of {', '.join(EXAM_RESET_SCOPES)}")
        with self.store.transaction() as store:
            exams = store.exams_of_session(session_id)
            if session_id not in store.sessions and not exams:
                raise NotFoundError(f"Exam session {session_id} not found")
            for e in exams:
                if scope == 'slots':
                    store.exams[e.id] = dataclasses.replace(e, exam_date=None, start_time=None, end_time=None)
                elif scope == 'invigilators':
                    store.exams[e.id] = dataclasses.replace(e, invigilator_id=None)
                else:
                    del store.exams[e.id]
        logger.info("Exam session %d reset (%s): %d exams", session_id, scope, len(exams))
        return len(exams)

    # ------------------------------------------------------------------
    # Reset and checks
    # ------------------------------------------------------------------
    def reset_schedule(self, scope: str):
        if scope not in RESET_SCOPES:
            raise ValidationError(f"scope must be one of {', '.join(RESET_SCOPES)}")
        store = self.store
        with store.transaction():
            if scope == 'slots':
                store.time_slots = {}
            elif scope == 'assignments':
                store.blocks = {}
                course_requests.reset_to_pending(store)
            else:
                store.blocks = {}
                store.requests = {}
                store.time_slots = {}
                store.exams = {}
                store.sessions = {}
                for timing in store.timings.values():
                    timing.active = False
        logger.info("Schedule reset (%s)", scope)

    def check_blocks(self):
        return clashes(build_clash_graph(self.store.blocks.values()))

    def check_exams(self, session_id: Optional[int] = None):
        exams = [e for e in self.store.exams.values() if session_id is None or e.session_id == session_id]
        return clashes(build_clash_graph(exams))
