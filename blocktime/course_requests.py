"""
Course-request lifecycle: pending -> accepted -> {pending (undo), committed}.

Every mutation runs inside ``Store.transaction()`` and re-reads the request
there, so two clients racing on the same request see exactly one winner.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from .config import EngineConfig
from .errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from .models import (
    ACCEPTED, ACTIVE_STATUSES, COMMITTED, ORIGIN_ADMIN, ORIGIN_INSTRUCTOR, PENDING,
    CourseRequest, Preferences,
)
from .store import Store
from .timeutil import normalize_day

logger = logging.getLogger(__name__)

PreferencesInput = Union[Preferences, Mapping[str, Any]]


def parse_preferences(raw: PreferencesInput) -> Preferences:
    """Turn a ``{"days": [...], "time_slots": [...]}`` mapping into ``Preferences``."""
    if isinstance(raw, Preferences):
        days: Iterable[Any] = raw.days
        slot_ids: Iterable[Any] = raw.time_slot_ids
    elif isinstance(raw, Mapping):
        days = raw.get('days') or ()
        slot_ids = raw.get('time_slots', raw.get('time_slot_ids')) or ()
    else:
        raise ValidationError("preferences must be a mapping with 'days' and 'time_slots'")
    try:
        slot_set = frozenset(int(s) for s in slot_ids)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time slot ids {slot_ids!r}")
    return Preferences(days=frozenset(normalize_day(d) for d in days), time_slot_ids=slot_set)


def _clear_acceptance(request: CourseRequest):
    request.status = PENDING
    request.instructor_id = None
    request.preferences = None
    request.accepted_at = None
    request.undo_deadline = None
    request.can_undo = False
    request.version += 1


def _check_version(request: CourseRequest, expected_version: Optional[int]):
    if expected_version is not None and request.version != expected_version:
        raise ConflictError(
            f"Course request {request.id} changed since it was read "
            f"(version {request.version}, expected {expected_version})",
            resource=('request', request.id),
        )


def generate_requests(store: Store, semester: Optional[int] = None,
                      major_id: Optional[int] = None) -> Tuple[List[CourseRequest], int]:
    """Create one pending request per course x section offering without an active one.

    Courses pair with sections of the same semester. Returns (created, skipped).
    """
    with store.transaction():
        covered = {(r.course_id, r.section_id) for r in store.requests.values()
                   if r.status in ACTIVE_STATUSES}
        created: List[CourseRequest] = []
        skipped = 0
        for course in sorted(store.courses.values(), key=lambda c: c.id):
            if semester is not None and course.semester != semester:
                continue
            if major_id is not None and course.major_id != major_id:
                continue
            for section in sorted(store.sections.values(), key=lambda s: s.id):
                if section.semester != course.semester:
                    continue
                if major_id is not None and section.major_id != major_id:
                    continue
                if (course.id, section.id) in covered:
                    skipped += 1
                    continue
                req = CourseRequest(
                    id=store.next_id('requests'),
                    course_id=course.id,
                    section_id=section.id,
                    shift=section.shift,
                    origin=ORIGIN_ADMIN,
                )
                store.requests[req.id] = req
                covered.add((course.id, section.id))
                created.append(req)
    logger.info("Generated %d course requests (%d offerings already covered)", len(created), skipped)
    return created, skipped


def nominate(store: Store, request_id: int, instructor_id: int) -> CourseRequest:
    """Admin names the instructor expected to answer a pending request."""
    with store.transaction():
        request = store.get_request(request_id)
        store.get_instructor(instructor_id)
        if request.status != PENDING:
            raise ConflictError(f"Course request {request_id} is {request.status}, not pending",
                                resource=('request', request_id))
        request.nominated_instructor_id = instructor_id
        request.origin = ORIGIN_INSTRUCTOR
        request.version += 1
    return request


def validate_preferences(store: Store, request: CourseRequest, prefs: Preferences):
    if not prefs.days or not prefs.time_slot_ids:
        raise ValidationError("Please select at least one day and time slot")
    for slot_id in sorted(prefs.time_slot_ids):
        slot = store.time_slots.get(slot_id)
        if slot is None:
            raise ValidationError(f"Time slot {slot_id} does not exist")
        if slot.shift != request.shift:
            raise ValidationError(
                f"Time slot {slot_id} belongs to the {slot.shift} shift, request is {request.shift}",
                details={"time_slot_id": slot_id},
            )


def accept(store: Store, config: EngineConfig, request_id: int, instructor_id: int,
           preferences: PreferencesInput, now: datetime,
           expected_version: Optional[int] = None) -> CourseRequest:
    prefs = parse_preferences(preferences)
    with store.transaction():
        request = store.get_request(request_id)
        instructor = store.get_instructor(instructor_id)
        if not instructor.active:
            raise ValidationError(f"Instructor {instructor_id} is not active")
        _check_version(request, expected_version)
        if request.status != PENDING:
            raise ConflictError(f"Course request {request_id} already {request.status}",
                                resource=('request', request_id))
        if request.nominated_instructor_id not in (None, instructor_id):
            raise ConflictError(f"Course request {request_id} is nominated to another instructor",
                                resource=('instructor', request.nominated_instructor_id))
        validate_preferences(store, request, prefs)

        for block in sorted(store.blocks.values(), key=lambda b: b.id):
            if (block.teacher_id == instructor_id and block.day in prefs.days
                    and block.time_slot_id in prefs.time_slot_ids):
                raise ConflictError(
                    f"Instructor {instructor_id} already teaches on {block.day} in slot {block.time_slot_id}",
                    resource=('teacher', instructor_id),
                )

        request.status = ACCEPTED
        request.instructor_id = instructor_id
        request.preferences = prefs
        request.accepted_at = now
        request.undo_deadline = now + config.undo_window(request.origin)
        request.can_undo = True
        request.version += 1
    logger.info("Request %d accepted by instructor %d; undo until %s",
                request_id, instructor_id, request.undo_deadline.isoformat())
    return request


def undo(store: Store, request_id: int, instructor_id: int, now: datetime) -> CourseRequest:
    with store.transaction():
        request = store.get_request(request_id)
        if request.status != ACCEPTED:
            raise ConflictError(f"Course request {request_id} is {request.status}, not accepted",
                                resource=('request', request_id))
        if request.instructor_id != instructor_id:
            raise NotFoundError(f"Course request {request_id} was not accepted by instructor {instructor_id}")
        if not request.can_undo:
            raise ExpiredError(f"Undo no longer allowed for course request {request_id}")
        if now >= request.undo_deadline:
            request.can_undo = False
            request.version += 1
            logger.info("Undo window of request %d expired at %s", request_id, request.undo_deadline.isoformat())
            expired = ExpiredError(f"Undo window expired for course request {request_id}")
        else:
            expired = None
            _clear_acceptance(request)
    # raised outside the transaction so the can_undo flag is kept
    if expired is not None:
        raise expired
    logger.info("Request %d returned to pending by instructor %d", request_id, instructor_id)
    return request


def commit(store: Store, request_ids: Iterable[int]) -> int:
    """Mark placed requests committed. Committed requests can no longer be undone."""
    n = 0
    with store.transaction():
        for rid in request_ids:
            request = store.get_request(rid)
            if request.status == COMMITTED:
                continue
            if request.status != ACCEPTED:
                raise ConflictError(f"Course request {rid} is {request.status}, cannot commit",
                                    resource=('request', rid))
            request.status = COMMITTED
            request.can_undo = False
            request.version += 1
            n += 1
    return n


def reset_to_pending(store: Store):
    with store.transaction():
        for request in store.requests.values():
            _clear_acceptance(request)
