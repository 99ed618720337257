"""
Block Theory allocator.

Greedy, first-fit and deterministic: accepted requests are sorted by how many
slot units they need and by section size, then each is walked over its
preferred days and slots and given the largest free room that fits. A request
is placed completely or not at all.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from ..errors import ValidationError
from ..models import (
    LAB_ROOM_TYPES, NO_ROOM, NO_SLOT, TEACHER_CONFLICT, THEORY_ROOM_TYPES,
    Block, BlockRun, CourseRequest, Room, Unassigned,
)
from ..store import Directory
from ..timeutil import DAY_INDEX, sort_days
from .occupancy import ROOM, SECTION, TEACHER, Occupancy

logger = logging.getLogger(__name__)


def parse_credit_hours(credit_hours) -> Tuple[int, int]:
    """'3+1' -> (3, 1); '3' -> (3, 0)."""
    parts = str(credit_hours).strip().split('+')
    if len(parts) > 2:
        raise ValidationError(f"Invalid credit hours {credit_hours!r}")
    try:
        theory = int(parts[0]) if parts[0].strip() else 0
        lab = int(parts[1]) if len(parts) == 2 and parts[1].strip() else 0
    except ValueError:
        raise ValidationError(f"Invalid credit hours {credit_hours!r}")
    if theory < 0 or lab < 0:
        raise ValidationError(f"Invalid credit hours {credit_hours!r}")
    return theory, lab


def slots_needed(credit_hours) -> int:
    return sum(parse_credit_hours(credit_hours))


def candidate_rooms(rooms: Sequence[Room], min_capacity: int) -> List[Room]:
    fits = [r for r in rooms if r.capacity >= min_capacity]
    return sorted(fits, key=lambda r: (-r.capacity, r.id))


def priority_key(request: CourseRequest, directory: Directory):
    course = directory.courses.get(request.course_id)
    section = directory.sections.get(request.section_id)
    try:
        need = slots_needed(course.credit_hours) if course else 0
    except ValidationError:
        need = 0
    strength = section.strength if section else 0
    return (-need, -strength, request.id)


def _fallback_days(directory: Directory, shift: str, working_days: Iterable[str]) -> List[str]:
    bound = {ts.day for ts in directory.time_slots if ts.shift == shift and ts.day}
    return sort_days(bound) if bound else sort_days(working_days)


def _unassigned(request: CourseRequest, reason: str, detail: str) -> Unassigned:
    return Unassigned(course_id=request.course_id, section_id=request.section_id,
                      reason=reason, detail=detail, request_id=request.id)


def allocate_blocks(requests: Iterable[CourseRequest], directory: Directory,
                    working_days: Iterable[str], existing: Iterable[Block] = (),
                    first_block_id: int = 1) -> BlockRun:
    """Place every accepted request into conflict-free (room, day, slot) triples.

    ``existing`` blocks are treated as already booked. Returns the new blocks in
    placement order together with the requests that could not be placed.
    """
    working_days = list(working_days)
    occ = Occupancy()
    for b in existing:
        occ.take(((ROOM, b.room_id), (TEACHER, b.teacher_id), (SECTION, b.section_id)),
                 (DAY_INDEX[b.day], b.time_slot_id))

    run = BlockRun()
    next_id = first_block_id
    ordered = sorted(requests, key=lambda r: priority_key(r, directory))

    for req in ordered:
        course = directory.courses.get(req.course_id)
        section = directory.sections.get(req.section_id)
        if course is None or section is None:
            run.unassigned.append(_unassigned(req, NO_SLOT, "course or section missing from directory"))
            continue
        if req.instructor_id is None:
            run.unassigned.append(_unassigned(req, NO_SLOT, "request has no accepting instructor"))
            continue
        try:
            theory, lab = parse_credit_hours(course.credit_hours)
        except ValidationError as exc:
            run.unassigned.append(_unassigned(req, NO_SLOT, str(exc)))
            continue

        components = []
        failure: Optional[Unassigned] = None
        for block_type, needed, types in (('theory', theory, THEORY_ROOM_TYPES), ('lab', lab, LAB_ROOM_TYPES)):
            if needed == 0:
                continue
            typed = directory.rooms_of_type(types)
            if not typed:
                failure = _unassigned(req, NO_ROOM, f"no {block_type} rooms exist")
                break
            rooms = candidate_rooms(typed, section.strength)
            if not rooms:
                failure = _unassigned(req, NO_ROOM, f"no {block_type} room holds {section.strength} students")
                break
            components.append((block_type, needed, rooms))
        if failure is None and not components:
            failure = _unassigned(req, NO_SLOT, f"credit hours {course.credit_hours!r} need no slots")
        if failure is not None:
            run.unassigned.append(failure)
            continue

        prefs = req.preferences
        days = sort_days(prefs.days) if prefs and prefs.days else _fallback_days(directory, req.shift, working_days)
        only = prefs.time_slot_ids if prefs else None

        tentative = []  # (block_type, room_id, day, slot_id)
        teacher_blocked = False
        short = False
        for block_type, needed, rooms in components:
            placed = 0
            for day in days:
                if placed == needed:
                    break
                for ts in directory.slots_for(req.shift, day, only):
                    if placed == needed:
                        break
                    when = (DAY_INDEX[day], ts.id)
                    if not occ.is_free(SECTION, section.id, when):
                        continue
                    room = next((r for r in rooms if occ.is_free(ROOM, r.id, when)), None)
                    if not occ.is_free(TEACHER, req.instructor_id, when):
                        teacher_blocked = teacher_blocked or room is not None
                        continue
                    if room is None:
                        continue
                    occ.take(((ROOM, room.id), (TEACHER, req.instructor_id), (SECTION, section.id)), when)
                    tentative.append((block_type, room.id, day, ts.id))
                    placed += 1
            if placed < needed:
                short = True
                break

        if short:
            for _, room_id, day, slot_id in tentative:
                occ.release(((ROOM, room_id), (TEACHER, req.instructor_id), (SECTION, section.id)),
                            (DAY_INDEX[day], slot_id))
            reason = TEACHER_CONFLICT if teacher_blocked else NO_SLOT
            run.unassigned.append(_unassigned(
                req, reason, f"placed {len(tentative)} of {theory + lab} slot units"))
            continue

        for block_type, room_id, day, slot_id in tentative:
            run.blocks.append(Block(
                id=next_id,
                teacher_id=req.instructor_id,
                course_id=req.course_id,
                section_id=req.section_id,
                room_id=room_id,
                day=day,
                time_slot_id=slot_id,
                shift=req.shift,
                block_type=block_type,
                request_id=req.id,
            ))
            next_id += 1
        run.placed_request_ids.append(req.id)

    for item in run.unassigned:
        logger.warning("Request %s (course %d, section %d) unassigned: %s (%s)",
                       item.request_id, item.course_id, item.section_id, item.reason, item.detail)
    logger.info("Block run: %d blocks for %d requests, %d unassigned",
                len(run.blocks), len(run.placed_request_ids), len(run.unassigned))
    return run
