from datetime import time, timedelta
from unittest import mock

from django.core import mail
from django.test import TestCase

from schedule.exceptions import RescheduleConfirmationRequired, ScheduleConflict, ValidationError
from schedule.lesson_types import build_lesson_kind
from schedule.models import BookingStatus, Enrollment, HybridPattern, LessonType, Room, Term
from schedule.services.enrollment_service import EnrollmentService
from schedule.services.hybrid_service import HybridService
from schedule.services.lesson_service import LessonService, resolve_schedule
from tenants.models import Tenant

from .base import HybridFixtureMixin, SchoolFixtureMixin, upcoming_monday


class ResolveScheduleTest(TestCase):

    def test_from_end_time(self):
        self.assertEqual(resolve_schedule('09:00', '09:45'), (time(9, 0), time(9, 45), 45))

    def test_from_duration(self):
        self.assertEqual(resolve_schedule('09:00', duration_mins=60), (time(9, 0), time(10, 0), 60))

    def test_inconsistent_duration(self):
        with self.assertRaises(ValidationError):
            resolve_schedule('09:00', '09:45', 60)

    def test_end_before_start(self):
        with self.assertRaises(ValidationError):
            resolve_schedule('10:00', '09:00')


class LessonKindTest(TestCase):

    def test_hybrid_requires_pattern(self):
        with self.assertRaises(ValidationError):
            build_lesson_kind(LessonType.HYBRID, 4)

    def test_pattern_only_for_hybrid(self):
        with self.assertRaises(ValidationError):
            build_lesson_kind(LessonType.GROUP, 4, {'individual_weeks': [2]})

    def test_individual_single_seat(self):
        with self.assertRaises(ValidationError):
            build_lesson_kind(LessonType.INDIVIDUAL, 2)
        self.assertEqual(build_lesson_kind(LessonType.INDIVIDUAL).max_students, 1)

    def test_unknown_pattern_field(self):
        with self.assertRaises(ValidationError):
            build_lesson_kind(LessonType.HYBRID, 4, {'weeks': [1, 2]})


class LessonServiceCreateTest(SchoolFixtureMixin, TestCase):

    def setUp(self):
        self.create_school()

    def test_create_group_lesson(self):
        lesson = self.create_lesson(max_students=6, duration_mins=45, end_time=None)
        self.assertEqual(lesson.end_time, time(15, 45))
        self.assertEqual(lesson.duration_mins, 45)
        self.assertEqual(lesson.max_students, 6)
        self.assertEqual(lesson.tenant, self.tenant)

    def test_create_hybrid_lesson_with_pattern(self):
        lesson = self.create_hybrid_lesson()
        pattern = HybridPattern.objects.get(lesson=lesson)
        self.assertEqual(pattern.group_weeks, [1, 3, 5, 7])
        self.assertEqual(pattern.individual_weeks, [2, 4, 6, 8])
        self.assertEqual(pattern.term, self.term)

    def test_invalid_pattern_rolls_back_lesson(self):
        with self.assertRaises(ValidationError):
            self.create_hybrid_lesson(pattern={'pattern_type': 'CUSTOM', 'group_weeks': [1, 2], 'individual_weeks': [2, 3]})
        self.assertFalse(HybridPattern.objects.exists())
        self.assertEqual(self.term.lessons.count(), 0)

    def test_teacher_must_belong_to_school(self):
        other = Tenant.objects.create(slug='other', name='Other')
        with self.assertRaises(ValidationError):
            LessonService.create_lesson(
                other, build_lesson_kind(LessonType.GROUP, 3),
                term=self.term, teacher=self.teacher, room=self.room, name='Чужой',
                day_of_week=0, start_time='09:00', end_time='10:00',
            )

    def test_inactive_room_rejected(self):
        room = Room.objects.create(tenant=self.tenant, name='Closed', is_active=False)
        with self.assertRaises(ValidationError):
            self.create_lesson(room=room)

    def test_update_rechecks_availability(self):
        self.create_lesson(start_time='10:00', end_time='11:00', room=self.other_room)
        lesson = self.create_lesson()
        with self.assertRaises(ScheduleConflict):
            LessonService.update_lesson(lesson, start_time='10:30')
        lesson = LessonService.update_lesson(lesson, start_time='12:00', name='Гитара (продвинутые)')
        self.assertEqual(lesson.end_time, time(13, 0))
        self.assertEqual(lesson.name, 'Гитара (продвинутые)')

    def test_update_cannot_shrink_below_enrolled(self):
        lesson = self.create_lesson(max_students=3)
        self.enroll(lesson, self.create_student('Маша'), self.create_student('Петя'))
        with self.assertRaises(ValidationError):
            LessonService.update_lesson(lesson, max_students=1)

    def test_update_individual_keeps_single_seat(self):
        lesson = self.create_lesson(LessonType.INDIVIDUAL)
        with self.assertRaises(ValidationError) as ctx:
            LessonService.update_lesson(lesson, max_students=2)
        self.assertIn('max_students', ctx.exception.detail)
        lesson.refresh_from_db()
        self.assertEqual(lesson.max_students, 1)

    def test_update_unknown_field(self):
        lesson = self.create_lesson()
        with self.assertRaises(ValidationError):
            LessonService.update_lesson(lesson, lesson_type=LessonType.BAND)


class RescheduleTest(SchoolFixtureMixin, TestCase):

    def setUp(self):
        self.create_school()
        self.lesson = self.create_lesson(max_students=4)
        self.blocker = self.create_lesson(start_time='17:00', end_time='18:00', room=self.other_room, day_of_week=2)

    def test_report_has_no_side_effects(self):
        first = LessonService.check_reschedule_conflicts(self.lesson, 2, '17:30', '18:30')
        second = LessonService.check_reschedule_conflicts(self.lesson, 2, '17:30', '18:30')
        self.assertEqual(first, second)
        self.assertTrue(first.has_conflicts)
        self.assertEqual(first.teacher_conflict.lesson_id, self.blocker.id)
        self.assertIsNone(first.room_conflict)
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.day_of_week, 0)

    def test_report_lists_affected_students(self):
        masha = self.create_student('Маша', 'Смирнова')
        self.enroll(self.lesson, masha)
        other = self.create_lesson(day_of_week=3, start_time='10:00', end_time='11:00')
        self.enroll(other, masha)

        report = LessonService.check_reschedule_conflicts(self.lesson, 3, '10:30', '11:30')
        self.assertEqual(report.affected_students, 1)
        self.assertTrue(report.affected_enrollments[0].has_other_lessons)
        self.assertTrue(report.requires_confirmation)

    def test_same_time_affects_nobody(self):
        self.enroll(self.lesson, self.create_student('Маша'))
        report = LessonService.check_reschedule_conflicts(self.lesson, 0, '15:00', '16:00')
        self.assertFalse(report.requires_confirmation)

    def test_confirmation_required(self):
        with self.assertRaises(RescheduleConfirmationRequired) as ctx:
            LessonService.reschedule_lesson(self.lesson, 2, '17:30', '18:30')
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertTrue(ctx.exception.detail['report']['has_conflicts'])
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.day_of_week, 0)

    def test_reschedule_without_conflicts(self):
        lesson, report = LessonService.reschedule_lesson(self.lesson, 4, '09:00', '10:30')
        self.assertFalse(report.has_conflicts)
        self.assertEqual((lesson.day_of_week, lesson.start_time, lesson.duration_mins), (4, time(9, 0), 90))

    def test_confirmed_reschedule_notifies_parents(self):
        parent = self.create_parent('mama@harmony.test')
        self.enroll(self.lesson, self.create_student('Маша', parent=parent))

        with self.captureOnCommitCallbacks(execute=True):
            LessonService.reschedule_lesson(
                self.lesson, 1, '15:00', '16:00', confirm=True, notify_parents=True, reason='Ремонт кабинета',
            )

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['mama@harmony.test'])
        self.assertIn('Ремонт кабинета', mail.outbox[0].body)

    def test_no_notification_without_flag(self):
        parent = self.create_parent('mama@harmony.test')
        self.enroll(self.lesson, self.create_student('Маша', parent=parent))
        with mock.patch('schedule.tasks.notify_lesson_rescheduled.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                LessonService.reschedule_lesson(self.lesson, 1, '15:00', '16:00', confirm=True)
        delay.assert_not_called()


class HybridRescheduleTest(SchoolFixtureMixin, TestCase):
    """Брони создаются с реальным текущим временем: семестр в будущем."""

    def setUp(self):
        self.start = upcoming_monday()
        self.create_school(term_start=self.start, term_end=self.start + timedelta(days=55))
        self.lesson = self.create_hybrid_lesson()
        self.masha = self.create_student('Маша', parent=self.create_parent('mama@harmony.test'))
        self.enroll(self.lesson, self.masha)

    def test_block_shorter_than_slot_rejected_even_with_confirm(self):
        with self.assertRaises(ValidationError):
            LessonService.check_reschedule_conflicts(self.lesson, 0, '15:00', '15:15')
        with self.assertRaises(ValidationError):
            LessonService.reschedule_lesson(self.lesson, 0, '15:00', '15:15', confirm=True)

        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.end_time, time(17, 0))
        self.assertEqual(len(HybridService.get_available_slots(self.lesson, 2)), 4)

    def test_weekday_after_term_end_rejected(self):
        # Семестр обрезан до среды 8-й недели: понедельник ещё в семестре, пятница уже нет
        Term.objects.filter(pk=self.term.pk).update(end_date=self.start + timedelta(days=51))
        with self.assertRaises(ValidationError) as ctx:
            LessonService.reschedule_lesson(self.lesson, 4, '15:00', '17:00', confirm=True)
        self.assertIn('individual_weeks', ctx.exception.detail)
        self.lesson.refresh_from_db()
        self.assertEqual(self.lesson.day_of_week, 0)

    def test_upcoming_bookings_reported_and_cancelled(self):
        booking = HybridService.create_booking(self.lesson, self.masha, 2, '15:30')

        report = LessonService.check_reschedule_conflicts(self.lesson, 2, '15:00', '17:00')
        self.assertEqual([item.booking_id for item in report.affected_bookings], [booking.id])
        self.assertEqual(report.affected_bookings[0].start_time, '15:30')
        self.assertTrue(report.requires_confirmation)

        with self.assertRaises(RescheduleConfirmationRequired):
            LessonService.reschedule_lesson(self.lesson, 2, '15:00', '17:00')
        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingStatus.CONFIRMED)

        lesson, _ = LessonService.reschedule_lesson(self.lesson, 2, '15:00', '17:00', confirm=True, reason='Ремонт')
        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingStatus.CANCELLED)
        self.assertEqual(booking.cancellation_reason, 'Урок перенесён. Ремонт')
        slots = HybridService.get_available_slots(lesson, 2)
        self.assertEqual([slot.is_available for slot in slots], [True] * 4)
        self.assertEqual(slots[0].date, self.start + timedelta(days=9))


class PastBookingsRescheduleTest(HybridFixtureMixin, TestCase):

    def test_past_bookings_not_reported(self):
        self.book(self.masha, '15:00')
        report = LessonService.check_reschedule_conflicts(self.lesson, 2, '15:00', '17:00')
        self.assertEqual(report.affected_students, 3)
        self.assertEqual(report.affected_bookings, [])


class DeactivateLessonTest(SchoolFixtureMixin, TestCase):

    def test_deactivate_closes_enrollments(self):
        self.create_school()
        lesson = self.create_lesson()
        self.enroll(lesson, self.create_student('Маша'), self.create_student('Петя'))

        LessonService.deactivate_lesson(lesson)
        lesson.refresh_from_db()

        self.assertFalse(lesson.is_active)
        self.assertFalse(Enrollment.objects.active().filter(lesson=lesson).exists())
        self.assertEqual(Enrollment.objects.filter(lesson=lesson).count(), 2)
        self.assertEqual(EnrollmentService.active_enrollments(lesson).count(), 0)
        # Слот освобождается для новых уроков
        self.create_lesson()
