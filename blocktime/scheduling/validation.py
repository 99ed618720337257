from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Tuple

import networkx as nx

from ..models import LAB_ROOM_TYPES, THEORY_ROOM_TYPES, Block, CourseRequest
from ..store import Directory
from .block_allocator import slots_needed


def conflicts_ok(G: nx.Graph) -> bool:
    return G.number_of_edges() == 0


def clashes(G: nx.Graph) -> List[Tuple[int, int, List[Tuple[str, int]]]]:
    return sorted((min(u, v), max(u, v), data['resources']) for u, v, data in G.edges(data=True))


def capacity_ok(blocks: Iterable[Block], directory: Directory) -> bool:
    rooms = {r.id: r for r in directory.rooms}
    for b in blocks:
        room = rooms.get(b.room_id)
        section = directory.sections.get(b.section_id)
        if room is None or section is None:
            return False
        if room.capacity < section.strength:
            return False
        allowed = LAB_ROOM_TYPES if b.block_type == 'lab' else THEORY_ROOM_TYPES
        if room.type not in allowed:
            return False
    return True


def completeness_ok(blocks: Iterable[Block], requests: Iterable[CourseRequest], directory: Directory) -> bool:
    """Each request owns either none of the blocks or exactly as many as it needs."""
    per_request: Dict[int, int] = Counter(b.request_id for b in blocks)
    for req in requests:
        have = per_request.get(req.id, 0)
        if have == 0:
            continue
        course = directory.courses.get(req.course_id)
        if course is None or have != slots_needed(course.credit_hours):
            return False
    return True


def per_instructor_load(exams) -> Dict[int, int]:
    load: Dict[int, int] = defaultdict(int)
    for e in exams:
        if e.invigilator_id is not None:
            load[e.invigilator_id] += 1
    return dict(load)
