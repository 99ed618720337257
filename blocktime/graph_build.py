from collections import defaultdict
from itertools import combinations
from typing import Dict, Iterable, List, Tuple, Union

import networkx as nx

from .models import Block, Exam

Booking = Union[Block, Exam]


def _time_key(item: Booking) -> Tuple:
    if isinstance(item, Block):
        return (item.day, item.time_slot_id)
    return (item.exam_date, item.start_time)


def _resources(item: Booking) -> List[Tuple[str, int]]:
    if isinstance(item, Block):
        return [('room', item.room_id), ('teacher', item.teacher_id), ('section', item.section_id)]
    out = [('room', item.room_id), ('section', item.section_id)]
    if item.invigilator_id is not None:
        out.append(('teacher', item.invigilator_id))
    return out


def build_clash_graph(items: Iterable[Booking]) -> nx.Graph:
    """One node per block/exam; an edge joins two bookings that share a
    room, teacher/invigilator or section at the same time. Edge attribute
    ``resources`` lists the shared ``(kind, id)`` pairs. Exams without a time
    (after a slot reset) stay isolated.
    """
    G = nx.Graph()
    by_time: Dict[Tuple, List[Booking]] = defaultdict(list)
    for item in items:
        if isinstance(item, Exam) and not item.scheduled:
            G.add_node(item.id, time=None)
            continue
        G.add_node(item.id, time=_time_key(item))
        by_time[_time_key(item)].append(item)
    for bookings in by_time.values():
        for a, b in combinations(bookings, 2):
            shared = sorted(set(_resources(a)) & set(_resources(b)))
            if shared:
                G.add_edge(a.id, b.id, resources=shared)
    return G
