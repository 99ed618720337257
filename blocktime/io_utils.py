import csv
import io
import os
from typing import IO, Dict, Iterable, List, Union

from .errors import ValidationError
from .models import (
    ACCEPTED, ROOM_TYPES, SHIFTS, Block, Course, CourseRequest, Exam, Instructor, Room, Section,
)
from .course_requests import parse_preferences

TextOrPath = Union[str, os.PathLike, IO]


def _open_text(src: TextOrPath):
    """Return a text-mode file handle and a flag indicating whether to close it.

    Accepts a filesystem path, a text IO object, or a BytesIO buffer.
    """
    if isinstance(src, (str, os.PathLike)):
        f = open(src, 'r', newline='')
        return f, True
    if isinstance(src, io.BytesIO):
        src.seek(0)
        f = io.TextIOWrapper(src, encoding='utf-8', newline='')
        return f, True
    if hasattr(src, 'read'):
        if hasattr(src, 'seek'):
            src.seek(0)
        return src, False
    raise TypeError("Unsupported input type; expected path or file-like object")


def _rows(src: TextOrPath) -> List[Dict[str, str]]:
    f, should_close = _open_text(src)
    try:
        return [{k.strip(): (v or '').strip() for k, v in row.items() if k} for row in csv.DictReader(f)]
    finally:
        if should_close:
            f.close()


def _int(row: Dict[str, str], key: str, default=None):
    raw = row.get(key, '')
    if raw == '':
        if default is None:
            raise ValidationError(f"Missing column {key!r} in row {row!r}")
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Column {key!r} must be an integer, got {raw!r}")


def _opt_int(row: Dict[str, str], key: str):
    raw = row.get(key, '')
    return int(raw) if raw else None


def _split(raw: str) -> List[str]:
    return [p.strip() for p in raw.replace('|', ';').split(';') if p.strip()]


def load_rooms(src: TextOrPath) -> Dict[int, Room]:
    """rooms.csv: id,capacity[,type,name,resources] (resources ';'-separated)."""
    rooms: Dict[int, Room] = {}
    for row in _rows(src):
        rid = _int(row, 'id')
        rtype = (row.get('type') or 'lecture').lower()
        if rtype not in ROOM_TYPES:
            raise ValidationError(f"Room {rid}: unknown type {rtype!r}")
        rooms[rid] = Room(
            id=rid,
            capacity=_int(row, 'capacity'),
            type=rtype,
            name=row.get('name', ''),
            resources=frozenset(_split(row.get('resources', ''))),
        )
    return rooms


def load_instructors(src: TextOrPath) -> Dict[int, Instructor]:
    out: Dict[int, Instructor] = {}
    for row in _rows(src):
        iid = _int(row, 'id')
        active = row.get('active', '1').lower() not in ('0', 'false', 'no')
        out[iid] = Instructor(id=iid, name=row.get('name', ''), active=active)
    return out


def load_courses(src: TextOrPath) -> Dict[int, Course]:
    """courses.csv: id,name,credit_hours,semester[,code,major_id]."""
    out: Dict[int, Course] = {}
    for row in _rows(src):
        cid = _int(row, 'id')
        out[cid] = Course(
            id=cid,
            name=row.get('name', ''),
            credit_hours=row.get('credit_hours') or '3+0',
            semester=_int(row, 'semester', 1),
            code=row.get('code', ''),
            major_id=_opt_int(row, 'major_id'),
        )
    return out


def load_sections(src: TextOrPath) -> Dict[int, Section]:
    """sections.csv: id,name,semester,strength,shift[,major_id]."""
    out: Dict[int, Section] = {}
    for row in _rows(src):
        sid = _int(row, 'id')
        shift = (row.get('shift') or 'morning').lower()
        if shift not in SHIFTS:
            raise ValidationError(f"Section {sid}: unknown shift {shift!r}")
        out[sid] = Section(
            id=sid,
            name=row.get('name', ''),
            semester=_int(row, 'semester', 1),
            strength=_int(row, 'strength', 0),
            shift=shift,
            major_id=_opt_int(row, 'major_id'),
        )
    return out


def load_accepted_requests(src: TextOrPath, sections: Dict[int, Section]) -> List[CourseRequest]:
    """requests.csv: id,course_id,section_id,instructor_id,days,time_slots.

    ``days`` and ``time_slots`` are ';'-separated. Rows become accepted requests.
    """
    out: List[CourseRequest] = []
    for row in _rows(src):
        rid = _int(row, 'id')
        section_id = _int(row, 'section_id')
        if section_id not in sections:
            raise ValidationError(f"Request {rid}: unknown section {section_id}")
        prefs = parse_preferences({"days": _split(row.get('days', '')),
                                   "time_slots": _split(row.get('time_slots', ''))})
        out.append(CourseRequest(
            id=rid,
            course_id=_int(row, 'course_id'),
            section_id=section_id,
            shift=sections[section_id].shift,
            status=ACCEPTED,
            instructor_id=_int(row, 'instructor_id'),
            preferences=prefs,
        ))
    return out


def save_blocks_csv(path: str, blocks: Iterable[Block]):
    fields = ['id', 'teacher_id', 'course_id', 'section_id', 'room_id', 'day',
              'time_slot_id', 'shift', 'block_type', 'request_id']
    with open(path, 'w', newline='') as f:
        w = csv.DictWriter(f, fieldnames=fields)
        w.writeheader()
        for b in blocks:
            w.writerow(b.as_dict())


def save_exams_csv(path: str, exams: Iterable[Exam]):
    fields = ['id', 'session_id', 'exam_type', 'course_id', 'section_id', 'room_id',
              'invigilator_id', 'exam_date', 'start_time', 'end_time']
    with open(path, 'w', newline='') as f:
        w = csv.DictWriter(f, fieldnames=fields)
        w.writeheader()
        for e in exams:
            w.writerow(e.as_dict())
