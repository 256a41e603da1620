from concurrent.futures import ThreadPoolExecutor
from datetime import date, time, timedelta
from threading import Barrier
from unittest import mock

from django.core import mail
from django.db import connection
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature
from rest_framework.exceptions import PermissionDenied

from schedule.exceptions import (
    BookingDeadlinePassed,
    BookingsClosed,
    DuplicateBooking,
    SlotUnavailable,
    ValidationError,
)
from schedule.lesson_types import PatternDraft
from schedule.models import BookingStatus, HybridBooking, Term
from schedule.services.hybrid_service import HybridService, Slot

from .base import WEEK4_DATE, HybridFixtureMixin, SchoolFixtureMixin


class HybridPatternTest(SchoolFixtureMixin, TestCase):

    def setUp(self):
        self.create_school()

    def test_default_alternating(self):
        group, individual = HybridService.validate_pattern(self.term, PatternDraft())
        self.assertEqual(group, [1, 3, 5, 7])
        self.assertEqual(individual, [2, 4, 6, 8])

    def test_custom_pattern(self):
        draft = PatternDraft(pattern_type='CUSTOM', group_weeks=(1, 2, 3), individual_weeks=(5, 4))
        self.assertEqual(HybridService.validate_pattern(self.term, draft), ([1, 2, 3], [4, 5]))

    def test_invalid_patterns(self):
        cases = {
            'overlap': PatternDraft(pattern_type='CUSTOM', group_weeks=(1, 2), individual_weeks=(2,)),
            'beyond term': PatternDraft(pattern_type='CUSTOM', individual_weeks=(9,)),
            'duplicates': PatternDraft(pattern_type='CUSTOM', individual_weeks=(2, 2)),
            'no individual': PatternDraft(pattern_type='CUSTOM', group_weeks=(1,)),
            'zero week': PatternDraft(pattern_type='CUSTOM', individual_weeks=(0,)),
            'bad slot': PatternDraft(individual_slot_duration=0),
            'bad deadline': PatternDraft(booking_deadline_hours=-1),
        }
        for name, draft in cases.items():
            with self.subTest(name):
                with self.assertRaises(ValidationError):
                    HybridService.validate_pattern(self.term, draft)

    def test_week_date_after_term_end(self):
        term = Term.objects.create(
            tenant=self.tenant, name='Short', start_date=date(2026, 2, 2), end_date=date(2026, 3, 25),
        )
        draft = PatternDraft(pattern_type='CUSTOM', individual_weeks=(8,))
        HybridService.validate_pattern(term, draft, day_of_week=0)
        with self.assertRaises(ValidationError):
            HybridService.validate_pattern(term, draft, day_of_week=4)

    def test_default_alternating_stops_at_term_end(self):
        # Семестр заканчивается в среду 8-й недели, урок по пятницам
        term = Term.objects.create(
            tenant=self.tenant, name='Short', start_date=date(2026, 2, 2), end_date=date(2026, 3, 25),
        )
        group, individual = HybridService.validate_pattern(term, PatternDraft(), day_of_week=4)
        self.assertEqual(group, [1, 3, 5, 7])
        self.assertEqual(individual, [2, 4, 6])

        lesson = self.create_hybrid_lesson(term=term, day_of_week=4)
        self.assertEqual(HybridService.get_pattern(lesson).individual_weeks, [2, 4, 6])

    def test_slot_longer_than_lesson(self):
        with self.assertRaises(ValidationError):
            self.create_hybrid_lesson(end_time='15:20')

    def test_update_keeps_bookings_flag(self):
        lesson = self.create_hybrid_lesson(bookings_open=False)
        HybridService.open_bookings(lesson)
        HybridService.save_pattern(lesson, PatternDraft(pattern_type='CUSTOM', group_weeks=(1,), individual_weeks=(2, 3)))
        pattern = HybridService.get_pattern(lesson)
        self.assertTrue(pattern.bookings_open)
        self.assertEqual(pattern.individual_weeks, [2, 3])

    def test_pattern_for_non_hybrid_lesson(self):
        lesson = self.create_lesson(start_time='18:00', end_time='19:00')
        with self.assertRaises(ValidationError):
            HybridService.get_pattern(lesson)


class SlotsTest(HybridFixtureMixin, TestCase):

    def test_week_slots(self):
        slots = HybridService.get_available_slots(self.lesson, 4, now=self.now)
        self.assertEqual(
            [(s.start_time, s.end_time) for s in slots],
            [(time(15, 0), time(15, 30)), (time(15, 30), time(16, 0)),
             (time(16, 0), time(16, 30)), (time(16, 30), time(17, 0))],
        )
        self.assertTrue(all(s.is_available and s.date == WEEK4_DATE for s in slots))

    def test_booked_slot_unavailable(self):
        self.book(self.masha, '15:30')
        slots = {s.start_time: s for s in HybridService.get_available_slots(self.lesson, 4, now=self.now)}
        self.assertFalse(slots[time(15, 30)].is_available)
        self.assertEqual(slots[time(15, 30)].unavailable_reason, Slot.BOOKED)
        self.assertTrue(slots[time(16, 0)].is_available)

    def test_closed_and_deadline_reasons(self):
        late = self.slot_start('16:00') - timedelta(hours=24, minutes=1)
        slots = {s.start_time: s for s in HybridService.get_available_slots(self.lesson, 4, now=late)}
        self.assertEqual(slots[time(15, 30)].unavailable_reason, Slot.DEADLINE_PASSED)
        self.assertTrue(slots[time(16, 0)].is_available)

        HybridService.close_bookings(self.lesson)
        slots = HybridService.get_available_slots(self.lesson, 4, now=self.now)
        self.assertEqual({s.unavailable_reason for s in slots}, {Slot.BOOKINGS_CLOSED})

    def test_group_week_has_no_slots(self):
        with self.assertRaises(ValidationError):
            HybridService.get_available_slots(self.lesson, 3, now=self.now)


class CreateBookingTest(HybridFixtureMixin, TestCase):

    def test_parent_books_own_child(self):
        booking = self.book(self.masha, '16:00', booked_by=self.parent)
        self.assertEqual(booking.status, BookingStatus.CONFIRMED)
        self.assertEqual(booking.scheduled_date, WEEK4_DATE)
        self.assertEqual((booking.start_time, booking.end_time), (time(16, 0), time(16, 30)))
        self.assertEqual(booking.parent, self.parent)

    def test_confirmation_email(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.book(self.masha, booked_by=self.parent)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['mama@harmony.test'])

    def test_parent_cannot_book_other_child(self):
        with self.assertRaises(PermissionDenied):
            self.book(self.petya, booked_by=self.parent)

    def test_admin_books_any_child(self):
        booking = self.book(self.petya, booked_by=self.admin)
        self.assertEqual(booking.student, self.petya)

    def test_bookings_closed(self):
        HybridService.close_bookings(self.lesson)
        with self.assertRaises(BookingsClosed):
            self.book(self.masha)

    def test_deadline(self):
        slot = self.slot_start('15:00')
        with self.assertRaises(BookingDeadlinePassed):
            self.book(self.masha, now=slot - timedelta(hours=23))
        booking = self.book(self.masha, now=slot - timedelta(hours=25))
        self.assertEqual(booking.start_time, time(15, 0))

    def test_deadline_exact_boundary_allowed(self):
        booking = self.book(self.masha, now=self.slot_start('15:00') - timedelta(hours=24))
        self.assertIsNotNone(booking.pk)

    def test_duplicate_booking_same_week(self):
        self.book(self.masha, '15:00')
        with self.assertRaises(DuplicateBooking):
            self.book(self.masha, '16:00')

    def test_same_student_other_week(self):
        self.book(self.masha, '15:00', week=4)
        booking = self.book(self.masha, '15:00', week=6)
        self.assertEqual(booking.scheduled_date, date(2026, 3, 9))

    def test_slot_taken(self):
        self.book(self.masha, '15:00')
        with self.assertRaises(SlotUnavailable):
            self.book(self.petya, '15:00')

    def test_slot_taken_detected_by_constraint(self):
        self.book(self.masha, '15:00')
        with mock.patch('schedule.services.hybrid_service.find_booking_overlap', return_value=None):
            with self.assertRaises(SlotUnavailable):
                self.book(self.petya, '15:00')
        self.assertEqual(HybridBooking.objects.active().filter(lesson=self.lesson, week_number=4).count(), 1)

    def test_duplicate_detected_by_constraint(self):
        self.book(self.masha, '15:00')
        with mock.patch('schedule.services.hybrid_service.find_student_booking', return_value=None):
            with self.assertRaises(DuplicateBooking):
                self.book(self.masha, '15:30')
        self.assertEqual(HybridBooking.objects.active().filter(lesson=self.lesson, student=self.masha).count(), 1)

    def test_off_grid_time(self):
        with self.assertRaises(ValidationError):
            self.book(self.masha, '15:10')

    def test_group_week_rejected(self):
        with self.assertRaises(ValidationError):
            self.book(self.masha, week=3)

    def test_student_not_enrolled(self):
        stranger = self.create_student('Гость')
        with self.assertRaises(ValidationError):
            self.book(stranger)

    def test_adjacent_booking_in_other_lesson_does_not_block(self):
        other = self.create_hybrid_lesson(start_time='17:00', end_time='18:00', room=self.other_room, name='Фортепиано')
        self.enroll(other, self.kolya)
        HybridService.create_booking(other, self.kolya, 4, '17:00', now=self.now)
        self.assertTrue(HybridService.get_available_slots(self.lesson, 4, now=self.now)[3].is_available)

    def test_cancelled_slot_can_be_rebooked(self):
        booking = self.book(self.masha, '15:00')
        HybridService.cancel_booking(booking, now=self.now)
        self.assertEqual(self.book(self.petya, '15:00').student, self.petya)
        self.assertEqual(self.book(self.masha, '15:30').student, self.masha)


class RescheduleBookingTest(HybridFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.booking = self.book(self.masha, '15:00', booked_by=self.parent)

    def test_parent_reschedules(self):
        booking = HybridService.reschedule_booking(self.booking, '16:30', actor=self.parent, now=self.now)
        self.assertEqual((booking.start_time, booking.end_time), (time(16, 30), time(17, 0)))
        self.assertEqual(booking.scheduled_date, WEEK4_DATE)

    def test_deadline_counts_from_original_slot(self):
        # Новый слот ещё открыт, а дедлайн исходного уже прошёл
        late = self.slot_start('15:00') - timedelta(hours=23)
        with self.assertRaises(BookingDeadlinePassed):
            HybridService.reschedule_booking(self.booking, '16:30', actor=self.parent, now=late)

    def test_admin_bypasses_deadline_and_gate(self):
        HybridService.close_bookings(self.lesson)
        late = self.slot_start('15:00') - timedelta(hours=1)
        booking = HybridService.reschedule_booking(self.booking, '16:30', actor=self.admin, now=late)
        self.assertEqual(booking.start_time, time(16, 30))

    def test_parent_blocked_when_closed(self):
        HybridService.close_bookings(self.lesson)
        with self.assertRaises(BookingsClosed):
            HybridService.reschedule_booking(self.booking, '16:30', actor=self.parent, now=self.now)

    def test_target_slot_taken(self):
        self.book(self.petya, '16:00')
        with self.assertRaises(SlotUnavailable):
            HybridService.reschedule_booking(self.booking, '16:00', actor=self.parent, now=self.now)

    def test_other_parent_forbidden(self):
        stranger = self.create_parent('stranger@harmony.test')
        with self.assertRaises(PermissionDenied):
            HybridService.reschedule_booking(self.booking, '16:00', actor=stranger, now=self.now)


class CancelBookingTest(HybridFixtureMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.booking = self.book(self.masha, '15:00', booked_by=self.parent)

    def test_parent_cancels_before_deadline(self):
        booking = HybridService.cancel_booking(
            self.booking, actor=self.parent, reason='Болеет', now=self.slot_start('15:00') - timedelta(hours=25),
        )
        self.assertEqual(booking.status, BookingStatus.CANCELLED)
        self.assertEqual(booking.cancellation_reason, 'Болеет')
        self.assertIsNotNone(booking.cancelled_at)

    def test_parent_cannot_cancel_after_deadline(self):
        with self.assertRaises(BookingDeadlinePassed):
            HybridService.cancel_booking(
                self.booking, actor=self.parent, now=self.slot_start('15:00') - timedelta(hours=23),
            )

    def test_admin_cancels_any_time(self):
        booking = HybridService.cancel_booking(self.booking, actor=self.admin, now=self.slot_start('15:00'))
        self.assertEqual(booking.status, BookingStatus.CANCELLED)

    def test_cancel_twice(self):
        booking = HybridService.cancel_booking(self.booking, now=self.now)
        with self.assertRaises(ValidationError):
            HybridService.cancel_booking(booking, now=self.now)

    def test_reason_too_long(self):
        with self.assertRaises(ValidationError):
            HybridService.cancel_booking(self.booking, reason='x' * 501, now=self.now)


class OutcomeAndStatsTest(HybridFixtureMixin, TestCase):

    def test_record_outcome_after_slot(self):
        booking = self.book(self.masha, '15:00')
        with self.assertRaises(ValidationError):
            HybridService.record_outcome(booking, BookingStatus.COMPLETED, now=self.slot_start('15:10'))
        booking = HybridService.record_outcome(booking, BookingStatus.COMPLETED, now=self.slot_start('15:30'))
        self.assertEqual(booking.status, BookingStatus.COMPLETED)
        with self.assertRaises(ValidationError):
            HybridService.cancel_booking(booking, now=self.now)

    def test_record_outcome_status_restricted(self):
        booking = self.book(self.masha, '15:00')
        with self.assertRaises(ValidationError):
            HybridService.record_outcome(booking, BookingStatus.CANCELLED, now=self.slot_start('17:00'))

    def test_unbooked_students(self):
        self.book(self.masha, '15:00')
        unbooked = HybridService.get_unbooked_students(self.lesson, 4)
        self.assertEqual({s.id for s in unbooked}, {self.petya.id, self.kolya.id})

    def test_booking_stats(self):
        self.book(self.masha, '15:00')
        cancelled = self.book(self.petya, '15:30')
        HybridService.cancel_booking(cancelled, now=self.now)

        stats = HybridService.get_booking_stats(self.lesson)
        self.assertEqual(stats['total_students'], 3)
        self.assertEqual(stats['expected_bookings'], 12)
        self.assertEqual(stats['booked_count'], 1)
        self.assertEqual(stats['unbooked_count'], 11)
        self.assertEqual(stats['completion_rate'], 8.33)
        self.assertEqual(stats['cancelled_bookings'], 1)

        week = HybridService.get_booking_stats(self.lesson, 4)
        self.assertEqual(week['expected_bookings'], 3)
        self.assertEqual(week['completion_rate'], 33.33)

    def test_parent_bookings(self):
        self.book(self.masha, '15:00')
        self.book(self.petya, '15:30')
        bookings = HybridService.parent_bookings(self.parent, self.tenant)
        self.assertEqual([b.student for b in bookings], [self.masha])


class BookingGateTest(HybridFixtureMixin, TestCase):

    def test_open_notifies_parents(self):
        HybridService.close_bookings(self.lesson)
        with self.captureOnCommitCallbacks(execute=True):
            HybridService.open_bookings(self.lesson)
        self.assertEqual(sorted(m.to[0] for m in mail.outbox), ['mama@harmony.test', 'papa@harmony.test'])

    def test_reopen_does_not_notify_again(self):
        with self.captureOnCommitCallbacks(execute=True):
            HybridService.open_bookings(self.lesson)
        self.assertEqual(len(mail.outbox), 0)

    def test_close_keeps_existing_bookings(self):
        booking = self.book(self.masha, '15:00')
        HybridService.close_bookings(self.lesson)
        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingStatus.CONFIRMED)


class ConcurrentBookingTest(SchoolFixtureMixin, TransactionTestCase):

    @skipUnlessDBFeature('has_select_for_update')
    def test_same_slot_race(self):
        self.create_school()
        lesson = self.create_hybrid_lesson()
        students = [self.create_student('Маша'), self.create_student('Петя')]
        self.enroll(lesson, *students)
        now = HybridService.slot_start(lesson, WEEK4_DATE, '15:00') - timedelta(days=3)
        barrier = Barrier(len(students))

        def attempt(student):
            barrier.wait()
            try:
                HybridService.create_booking(lesson, student, 4, '15:00', now=now)
                return 'ok'
            except SlotUnavailable:
                return 'taken'
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=len(students)) as pool:
            results = sorted(pool.map(attempt, students))

        self.assertEqual(results, ['ok', 'taken'])
        self.assertEqual(HybridBooking.objects.active().filter(lesson=lesson, week_number=4).count(), 1)
