from collections import Counter
from typing import Iterable, List, Optional

import pandas as pd

from ..graph_build import build_clash_graph
from ..models import Block, BlockRun, CourseRequest, ExamRun
from ..store import Directory
from ..timeutil import WEEKDAYS, format_time
from .validation import capacity_ok, completeness_ok, conflicts_ok, per_instructor_load


def _reasons(unassigned) -> str:
    counts = Counter(u.reason for u in unassigned)
    return ", ".join(f"{reason}={n}" for reason, n in sorted(counts.items())) or "-"


def block_summary(run: BlockRun, directory: Directory, requests: Iterable[CourseRequest] = ()) -> str:
    G = build_clash_graph(run.blocks)
    ok_conf = conflicts_ok(G)
    ok_cap = capacity_ok(run.blocks, directory)
    ok_full = completeness_ok(run.blocks, list(requests), directory)
    rooms_used = len({b.room_id for b in run.blocks})
    return (
        f"Blocks: {len(run.blocks)}  Requests placed: {len(run.placed_request_ids)}  "
        f"Unassigned: {len(run.unassigned)} ({_reasons(run.unassigned)})\n"
        f"Rooms used: {rooms_used}/{len(directory.rooms)}\n"
        f"Valid (conflicts): {ok_conf}  Valid (capacity): {ok_cap}  Valid (complete): {ok_full}\n"
    )


def exam_summary(run: ExamRun) -> str:
    G = build_clash_graph(run.exams)
    load = per_instructor_load(run.exams)
    spread = f"{min(load.values())}..{max(load.values())}" if load else "-"
    days = len({e.exam_date for e in run.exams if e.exam_date})
    return (
        f"Exams: {len(run.exams)} over {days} days  "
        f"Unassigned: {len(run.unassigned)} ({_reasons(run.unassigned)})\n"
        f"Invigilators used: {len(load)}  Load per invigilator: {spread}\n"
        f"Valid (conflicts): {conflicts_ok(G)}\n"
    )


def timetable_grid(blocks: Iterable[Block], directory: Directory, section_id: Optional[int] = None) -> pd.DataFrame:
    """Day x slot grid of course codes (optionally for a single section)."""
    slots = {ts.id: ts for ts in directory.time_slots}
    rows: List[dict] = []
    for b in blocks:
        if section_id is not None and b.section_id != section_id:
            continue
        ts = slots.get(b.time_slot_id)
        course = directory.courses.get(b.course_id)
        rows.append({
            "day": b.day,
            "slot": ts.label if ts else str(b.time_slot_id),
            "start": ts.start if ts else 0,
            "cell": f"{course.code or course.name if course else b.course_id} [{b.room_id}]",
        })
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows).sort_values(["start", "slot"])
    grid = df.pivot_table(index="slot", columns="day", values="cell",
                          aggfunc=lambda cells: " / ".join(sorted(cells)), sort=False)
    days = [d for d in WEEKDAYS if d in grid.columns]
    return grid[days].fillna("")


def exam_table(run: ExamRun, directory: Directory) -> pd.DataFrame:
    rows = []
    for e in run.exams:
        course = directory.courses.get(e.course_id)
        rows.append({
            "date": e.exam_date.isoformat() if e.exam_date else "",
            "time": f"{format_time(e.start_time)}-{format_time(e.end_time)}" if e.scheduled else "",
            "course": course.code or course.name if course else e.course_id,
            "section": e.section_id,
            "room": e.room_id,
            "invigilator": e.invigilator_id,
        })
    return pd.DataFrame(rows, columns=["date", "time", "course", "section", "room", "invigilator"])
