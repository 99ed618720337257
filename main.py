import argparse
import logging
import warnings
from datetime import date

from blocktime.config import load_config
from blocktime.errors import SchedulingError, UnassignableWarning
from blocktime.io_utils import (
    load_accepted_requests, load_courses, load_instructors, load_rooms, load_sections,
    save_blocks_csv, save_exams_csv,
)
from blocktime.models import EXAM_TYPES, MODE_MATCH, MODE_SHUFFLE, BlockRun, ExamRun, ExamSession
from blocktime.scheduling.evaluation import block_summary, exam_summary, exam_table, timetable_grid
from blocktime.service import Scheduler


def parse_hours(raw: str):
    start, _, end = raw.partition('-')
    if not end:
        raise SystemExit("--exam_hours must look like 09:00-17:00")
    return start.strip(), end.strip()


def main():
    p = argparse.ArgumentParser(description="BlockTime – Block Theory timetable and exam allocator")
    p.add_argument('--config', type=str, default='config.yaml', help='YAML engine config (undo windows, timings, ...)')
    p.add_argument('--log-level', type=str, default='INFO')

    # Resources
    p.add_argument('--rooms', type=str, required=True, help='rooms.csv with id,capacity,type[,name,resources]')
    p.add_argument('--courses', type=str, required=True, help='courses.csv with id,name,credit_hours,semester[,code]')
    p.add_argument('--sections', type=str, required=True, help='sections.csv with id,name,semester,strength,shift')
    p.add_argument('--instructors', type=str, required=True, help='instructors.csv with id,name[,active]')
    p.add_argument('--requests', type=str, help='accepted requests: id,course_id,section_id,instructor_id,days,time_slots')

    # Exams
    p.add_argument('--exam_start', type=date.fromisoformat, help='First exam day (YYYY-MM-DD)')
    p.add_argument('--exam_end', type=date.fromisoformat, help='Last exam day (YYYY-MM-DD)')
    p.add_argument('--exam_hours', type=str, default='09:00-17:00', help='Daily exam window, Monday to Friday')
    p.add_argument('--exam_duration', type=int, default=120)
    p.add_argument('--exam_type', type=str, default='final', choices=EXAM_TYPES)
    p.add_argument('--mode', type=str, default=MODE_SHUFFLE, choices=[MODE_MATCH, MODE_SHUFFLE])

    # Output
    p.add_argument('--out_blocks', type=str, default='blocks.csv')
    p.add_argument('--out_exams', type=str, default='exams.csv')
    args = p.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    warnings.simplefilter('ignore', UnassignableWarning)

    try:
        cfg = load_config(args.config)
        scheduler = Scheduler(config=cfg)
        store = scheduler.store
        for room in load_rooms(args.rooms).values():
            store.add_room(room)
        for course in load_courses(args.courses).values():
            store.add_course(course)
        sections = load_sections(args.sections)
        for section in sections.values():
            store.add_section(section)
        for instructor in load_instructors(args.instructors).values():
            store.add_instructor(instructor)

        for timing in cfg.timing_configs():
            slots = scheduler.generate_time_slots(timing)
            print(f"Shift {timing.shift}: {len(slots)} slots")

        if args.requests:
            requests = load_accepted_requests(args.requests, sections)
            for req in requests:
                store.add_request(req)
            result = scheduler.generate_blocks()
            run = BlockRun(blocks=result.blocks, unassigned=result.unassigned,
                           placed_request_ids=sorted({b.request_id for b in result.blocks}))
            directory = store.directory()
            print(block_summary(run, directory, requests))
            grid = timetable_grid(result.blocks, directory)
            if not grid.empty:
                print(grid.to_string())
            for item in result.unassigned:
                print(f"  unassigned request {item.request_id}: {item.reason} ({item.detail})")
            save_blocks_csv(args.out_blocks, result.blocks)
            print(f"Saved: {args.out_blocks}")
        else:
            batch = scheduler.generate_course_requests()
            print(f"Generated {batch.created} pending course requests ({batch.skipped} already covered)")

        if args.exam_start:
            hours = parse_hours(args.exam_hours)
            session = ExamSession(
                id=1,
                start_date=args.exam_start,
                end_date=args.exam_end or args.exam_start,
                working_hours={d: hours for d in ('monday', 'tuesday', 'wednesday', 'thursday', 'friday')},
                duration_minutes=args.exam_duration,
                mode=args.mode,
                exam_type=args.exam_type,
            )
            result = scheduler.generate_exam_session(session)
            run = ExamRun(exams=result.exams, unassigned=result.conflicts)
            print(exam_summary(run))
            table = exam_table(run, store.directory())
            if not table.empty:
                print(table.to_string(index=False))
            save_exams_csv(args.out_exams, result.exams)
            print(f"Saved: {args.out_exams}")
    except SchedulingError as exc:
        raise SystemExit(f"error: {exc}")


if __name__ == '__main__':
    main()
