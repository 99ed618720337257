import threading
import unittest
from datetime import date

from blocktime.errors import ConflictError, NotFoundError, ValidationError, UnassignableWarning
from blocktime.models import (
    ACCEPTED, COMMITTED, MODE_MATCH, MODE_SHUFFLE, PENDING, Course, ExamCandidate, ExamSession, Instructor,
    Room, Section, TimingConfig,
)
from blocktime.service import Scheduler

from sample_data import EVENING, MORNING, FakeClock, build_scheduler

SESSION_HOURS = {d: ('09:00', '17:00') for d in ('monday', 'tuesday', 'wednesday', 'thursday', 'friday')}


def scheduled():
    """Scheduler with morning slots 1-4 and requests 1 and 3 placed as blocks."""
    s = build_scheduler()
    s.generate_time_slots(MORNING)
    s.generate_course_requests()
    s.accept_course_request(1, 1, {"days": ["monday", "tuesday"], "time_slots": [1, 2, 3, 4]})
    s.accept_course_request(3, 2, {"days": ["monday", "wednesday"], "time_slots": [1, 2, 3, 4]})
    s.generate_blocks()
    return s


class TimeSlotServiceTests(unittest.TestCase):
    def test_regeneration_replaces_only_that_shift(self):
        s = build_scheduler()
        s.generate_time_slots(MORNING)
        s.generate_time_slots(EVENING)
        shorter = TimingConfig(shift='morning', opening='08:00', closing='10:00', slot_length=60)
        slots = s.generate_time_slots(shorter)
        self.assertEqual([ts.id for ts in slots], [7, 8])
        morning = sorted(ts.id for ts in s.store.time_slots.values() if ts.shift == 'morning')
        evening = sorted(ts.id for ts in s.store.time_slots.values() if ts.shift == 'evening')
        self.assertEqual(morning, [7, 8])
        self.assertEqual(evening, [5, 6])

    def test_failed_regeneration_keeps_previous_slots(self):
        s = build_scheduler()
        before = s.generate_time_slots(MORNING)
        too_long = TimingConfig(shift='morning', opening='08:00', closing='11:20',
                                distribution=[(90, 2), (60, 1)], working_days=['monday'])
        with self.assertRaises(ValidationError):
            s.generate_time_slots(too_long)
        self.assertEqual(sorted(s.store.time_slots.values(), key=lambda ts: ts.id), before)

    def test_slots_in_use_cannot_be_replaced(self):
        s = scheduled()
        with self.assertRaises(ConflictError):
            s.generate_time_slots(MORNING)
        self.assertEqual(sorted(s.store.time_slots), [1, 2, 3, 4])


class AcceptRaceTests(unittest.TestCase):
    def test_two_instructors_accept_the_same_request(self):
        s = build_scheduler()
        s.generate_time_slots(MORNING)
        s.generate_course_requests()
        barrier = threading.Barrier(2)
        winners, outcomes = [], []

        def accept(instructor_id):
            barrier.wait()
            try:
                s.accept_course_request(1, instructor_id, {"days": ["monday"], "time_slots": [1, 2, 3, 4]})
                winners.append(instructor_id)
                outcomes.append('ok')
            except ConflictError:
                outcomes.append('conflict')

        threads = [threading.Thread(target=accept, args=(iid,)) for iid in (1, 2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sorted(outcomes), ['conflict', 'ok'])
        request = s.store.requests[1]
        self.assertEqual(request.status, ACCEPTED)
        self.assertEqual([request.instructor_id], winners)


class GenerateBlocksTests(unittest.TestCase):
    def test_blocks_are_clash_free_and_requests_committed(self):
        s = scheduled()
        blocks = sorted(s.store.blocks.values(), key=lambda b: b.id)
        self.assertEqual(len(blocks), 6)
        self.assertEqual([(b.request_id, b.block_type, b.day, b.time_slot_id, b.room_id) for b in blocks], [
            (1, 'theory', 'monday', 1, 1),
            (1, 'theory', 'monday', 2, 1),
            (1, 'theory', 'monday', 3, 1),
            (3, 'theory', 'monday', 4, 1),
            (3, 'theory', 'wednesday', 1, 1),
            (3, 'lab', 'wednesday', 2, 3),
        ])
        self.assertEqual(s.check_blocks(), [])
        self.assertEqual(s.store.requests[1].status, COMMITTED)
        self.assertEqual(s.store.requests[3].status, COMMITTED)
        self.assertEqual(s.store.requests[2].status, PENDING)

    def test_rerun_is_identical(self):
        a, b = scheduled(), scheduled()
        self.assertEqual(a.store.blocks, b.store.blocks)
        again = a.generate_blocks()
        self.assertEqual(sorted(again.blocks, key=lambda x: x.id),
                         sorted(b.store.blocks.values(), key=lambda x: x.id))

    def test_unplaced_requests_warn(self):
        s = build_scheduler()
        s.generate_time_slots(MORNING)
        s.generate_course_requests()
        s.accept_course_request(1, 1, {"days": ["monday"], "time_slots": [1, 2]})
        with self.assertWarns(UnassignableWarning):
            result = s.generate_blocks()
        self.assertEqual(result.blocks_created, 0)
        self.assertEqual(result.unassigned[0].request_id, 1)


class MoveBlockTests(unittest.TestCase):
    def test_move_to_free_cell(self):
        s = scheduled()
        moved = s.move_block(1, 1, 'Thu', 4)
        self.assertEqual((moved.room_id, moved.day, moved.time_slot_id), (1, 'thursday', 4))
        self.assertEqual(s.store.blocks[1], moved)

    def test_move_onto_booked_resources(self):
        s = scheduled()
        with self.assertRaises(ConflictError) as ctx:
            s.move_block(4, 1, 'wednesday', 1)
        self.assertEqual(ctx.exception.resource, ('room', 1))
        with self.assertRaises(ConflictError) as ctx:
            s.move_block(1, 1, 'wednesday', 2)
        self.assertEqual(ctx.exception.resource, ('section', 1))

    def test_move_into_unsuitable_room(self):
        s = scheduled()
        with self.assertRaises(ValidationError):
            s.move_block(6, 1, 'friday', 1)  # lab block into a lecture hall
        with self.assertRaises(ValidationError):
            s.move_block(1, 4, 'friday', 1)  # seminar room too small for 45 students

    def test_concurrent_moves_into_one_cell(self):
        s = scheduled()
        s.accept_course_request(2, 3, {"days": ["friday"], "time_slots": [1, 2, 3]})
        s.generate_blocks()
        mover_ids = [min(b.id for b in s.store.blocks.values() if b.request_id == 2), 1]
        barrier = threading.Barrier(len(mover_ids))
        outcomes = []

        def move(block_id):
            barrier.wait()
            try:
                s.move_block(block_id, 1, 'thursday', 3)
                outcomes.append('ok')
            except ConflictError:
                outcomes.append('conflict')

        threads = [threading.Thread(target=move, args=(bid,)) for bid in mover_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sorted(outcomes), ['conflict', 'ok'])
        self.assertEqual(s.check_blocks(), [])


class ExamSessionServiceTests(unittest.TestCase):
    def _session(self, mode=MODE_MATCH):
        return ExamSession(id=1, start_date=date(2025, 3, 3), end_date=date(2025, 3, 7),
                           working_hours=SESSION_HOURS, duration_minutes=120, mode=mode)

    def test_match_mode_uses_block_teachers(self):
        s = scheduled()
        result = s.generate_exam_session(self._session())
        self.assertEqual(result.exams_created, 2)
        self.assertEqual({(e.course_id, e.section_id): e.invigilator_id for e in result.exams},
                         {(1, 1): 1, (2, 1): 2})
        self.assertEqual(s.check_exams(1), [])

    def test_rerun_replaces_session_exams(self):
        s = scheduled()
        s.generate_exam_session(self._session())
        s.generate_exam_session(self._session())
        self.assertEqual(len(s.store.exams_of_session(1)), 2)
        self.assertEqual(sorted(s.store.exams), [1, 2])

    def test_unplaceable_exam_warns(self):
        s = scheduled()
        with self.assertWarns(UnassignableWarning):
            result = s.generate_exam_session(self._session(), [ExamCandidate(3, 3)])
        self.assertEqual(result.exams_created, 0)
        self.assertEqual(len(result.conflicts), 1)


def one_room_scheduler():
    """One room, one instructor, two single-section courses."""
    s = Scheduler(clock=FakeClock())
    s.store.add_room(Room(id=1, capacity=100, type='lecture'))
    for i in (1, 2, 3):
        s.store.add_course(Course(id=i, name=f'Course {i}', semester=1))
        s.store.add_section(Section(id=i, name=f'S{i}', semester=1, strength=30, shift='morning'))
    s.store.add_instructor(Instructor(id=1, name='Ayesha'))
    return s


class CrossSessionTests(unittest.TestCase):
    def _session(self, session_id, closing='12:00'):
        return ExamSession(id=session_id, start_date=date(2025, 3, 3), end_date=date(2025, 3, 3),
                           working_hours={'monday': ('09:00', closing)}, duration_minutes=60, mode=MODE_SHUFFLE)

    def test_sessions_on_the_same_day_do_not_share_resources(self):
        s = one_room_scheduler()
        s.generate_exam_session(self._session(1), [ExamCandidate(1, 1)])
        s.generate_exam_session(self._session(2), [ExamCandidate(2, 2)])
        first, second = s.store.exams_of_session(1)[0], s.store.exams_of_session(2)[0]
        self.assertEqual((first.room_id, first.invigilator_id, first.start_time), (1, 1, 540))
        self.assertEqual((second.room_id, second.invigilator_id, second.start_time), (1, 1, 630))
        self.assertEqual(s.check_exams(), [])

        s.generate_exam_session(self._session(1), [ExamCandidate(1, 1)])
        self.assertEqual(s.store.exams_of_session(1)[0].start_time, 540)
        self.assertEqual(s.check_exams(), [])

    def test_full_day_leaves_later_session_unplaced(self):
        s = one_room_scheduler()
        s.generate_exam_session(self._session(1), [ExamCandidate(1, 1)])
        with self.assertWarns(UnassignableWarning):
            result = s.generate_exam_session(self._session(2, closing='10:00'), [ExamCandidate(2, 2)])
        self.assertEqual(result.exams_created, 0)
        self.assertEqual(s.check_exams(), [])


class ExamEditTests(unittest.TestCase):
    """Exams: 1 = course 1/section 1, room 3, invigilator 1, Monday 09:00;
    2 = course 1/section 2, room 2, invigilator 2, Monday 09:00;
    3 = course 2/section 1, room 3, invigilator 3, Monday 11:30."""

    MONDAY = date(2025, 3, 3)
    TUESDAY = date(2025, 3, 4)

    def setUp(self):
        self.s = scheduled()
        session = ExamSession(id=1, start_date=self.MONDAY, end_date=date(2025, 3, 7),
                              working_hours=SESSION_HOURS, duration_minutes=120, mode=MODE_SHUFFLE)
        self.s.generate_exam_session(session, [ExamCandidate(1, 1), ExamCandidate(2, 1), ExamCandidate(1, 2)])

    def test_layout(self):
        exams = sorted(self.s.store.exams.values(), key=lambda e: e.id)
        self.assertEqual([(e.course_id, e.section_id, e.room_id, e.invigilator_id, e.start_time) for e in exams],
                         [(1, 1, 3, 1, 540), (1, 2, 2, 2, 540), (2, 1, 3, 3, 690)])

    def test_move_to_free_time(self):
        moved = self.s.move_exam(2, exam_date=self.TUESDAY, start_time='09:00')
        self.assertEqual((moved.exam_date, moved.start_time, moved.end_time), (self.TUESDAY, 540, 660))
        self.assertEqual((moved.room_id, moved.invigilator_id), (2, 2))
        self.assertEqual(self.s.store.exams[2], moved)
        self.assertEqual(self.s.check_exams(), [])

    def test_move_onto_booked_resources(self):
        for kwargs, resource in (({'room_id': 3}, ('room', 3)),
                                 ({'invigilator_id': 1}, ('invigilator', 1))):
            with self.assertRaises(ConflictError) as ctx:
                self.s.move_exam(2, **kwargs)
            self.assertEqual(ctx.exception.resource, resource)
        with self.assertRaises(ConflictError) as ctx:
            self.s.move_exam(3, room_id=1, start_time=540)
        self.assertEqual(ctx.exception.resource, ('section', 1))
        self.assertEqual(self.s.check_exams(), [])

    def test_invalid_moves_leave_exam_unchanged(self):
        self.s.store.add_instructor(Instructor(id=9, name='Eve', active=False))
        before = self.s.store.exams[1]
        with self.assertRaises(ValidationError):
            self.s.move_exam(1, room_id=4)  # seminar room holds 30, section has 45
        with self.assertRaises(ValidationError):
            self.s.move_exam(1, exam_date=date(2025, 3, 10))
        with self.assertRaises(ValidationError):
            self.s.move_exam(1, invigilator_id=9)
        with self.assertRaises(ValidationError):
            self.s.move_exam(1, start_time='23:00')
        with self.assertRaises(NotFoundError):
            self.s.move_exam(1, room_id=99)
        with self.assertRaises(NotFoundError):
            self.s.move_exam(42, room_id=1)
        self.assertEqual(self.s.store.exams[1], before)

    def test_concurrent_moves_into_one_room(self):
        barrier = threading.Barrier(2)
        outcomes = []

        def move(exam_id):
            barrier.wait()
            try:
                self.s.move_exam(exam_id, room_id=1, exam_date=self.TUESDAY, start_time=540)
                outcomes.append('ok')
            except ConflictError:
                outcomes.append('conflict')

        threads = [threading.Thread(target=move, args=(eid,)) for eid in (2, 3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sorted(outcomes), ['conflict', 'ok'])
        self.assertEqual(self.s.check_exams(), [])

    def test_reset_invigilators(self):
        self.assertEqual(self.s.reset_exam_session(1, 'invigilators'), 3)
        exams = self.s.store.exams_of_session(1)
        self.assertEqual({e.invigilator_id for e in exams}, {None})
        self.assertEqual({e.room_id for e in exams}, {2, 3})
        self.assertEqual(self.s.check_exams(), [])

    def test_reset_slots_then_place_by_hand(self):
        self.assertEqual(self.s.reset_exam_session(1, 'slots'), 3)
        exams = self.s.store.exams_of_session(1)
        self.assertTrue(all(e.exam_date is None and e.start_time is None and not e.scheduled for e in exams))
        self.assertEqual(self.s.check_exams(), [])
        with self.assertRaises(ValidationError):
            self.s.move_exam(1, room_id=1)
        moved = self.s.move_exam(1, exam_date=self.TUESDAY, start_time='11:00')
        self.assertEqual((moved.start_time, moved.end_time, moved.room_id), (660, 780, 3))

    def test_reset_full_keeps_session(self):
        self.assertEqual(self.s.reset_exam_session(1, 'full'), 3)
        self.assertEqual(self.s.store.exams, {})
        self.assertIn(1, self.s.store.sessions)

    def test_reset_bad_arguments(self):
        with self.assertRaises(ValidationError):
            self.s.reset_exam_session(1, 'rooms')
        with self.assertRaises(NotFoundError):
            self.s.reset_exam_session(99, 'slots')
        self.assertEqual(len(self.s.store.exams), 3)


class ResetTests(unittest.TestCase):
    def test_assignments_scope(self):
        s = scheduled()
        s.reset_schedule('assignments')
        self.assertEqual(s.store.blocks, {})
        self.assertTrue(all(r.status == PENDING for r in s.store.requests.values()))
        self.assertEqual(len(s.store.time_slots), 4)

    def test_slots_scope(self):
        s = build_scheduler()
        s.generate_time_slots(MORNING)
        s.reset_schedule('slots')
        self.assertEqual(s.store.time_slots, {})

    def test_full_scope(self):
        s = scheduled()
        s.generate_exam_session(ExamSession(id=1, start_date=date(2025, 3, 3), end_date=date(2025, 3, 7),
                                            working_hours=SESSION_HOURS, mode=MODE_MATCH))
        s.reset_schedule('full')
        self.assertEqual((s.store.blocks, s.store.requests, s.store.time_slots), ({}, {}, {}))
        self.assertEqual((s.store.exams, s.store.sessions), ({}, {}))
        self.assertFalse(s.store.timings['morning'].active)

    def test_unknown_scope(self):
        with self.assertRaises(ValidationError):
            build_scheduler().reset_schedule('everything')


if __name__ == "__main__":
    unittest.main()
