from datetime import timedelta

from django.core import mail
from rest_framework import status
from rest_framework.test import APITestCase

from schedule.models import HybridBooking, Lesson, LessonType
from schedule.services.hybrid_service import HybridService
from tenants.models import Tenant, TenantMembership

from .base import SchoolFixtureMixin, User, upcoming_monday

LESSONS_URL = '/api/schedule/lessons/'
BOOKINGS_URL = '/api/schedule/bookings/'


def lesson_url(lesson, suffix=''):
    return f'{LESSONS_URL}{lesson.id}/{suffix}'


class LessonApiTest(SchoolFixtureMixin, APITestCase):

    def setUp(self):
        self.create_school()
        self.client.force_login(self.admin)

    def lesson_payload(self, **overrides):
        payload = {
            'lesson_type': LessonType.GROUP,
            'term': self.term.id,
            'teacher': self.teacher.id,
            'room': self.room.id,
            'name': 'Гитара',
            'day_of_week': 0,
            'start_time': '09:00',
            'end_time': '09:45',
            'max_students': 5,
        }
        payload.update(overrides)
        return payload

    def test_create_lesson(self):
        response = self.client.post(LESSONS_URL, self.lesson_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['time_range'], '09:00 - 09:45')
        self.assertEqual(response.data['duration_mins'], 45)

    def test_teacher_conflict_returns_409(self):
        first = self.client.post(LESSONS_URL, self.lesson_payload(), format='json')
        response = self.client.post(
            LESSONS_URL,
            self.lesson_payload(start_time='09:30', end_time='10:15', room=self.other_room.id),
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['resource'], 'TEACHER')
        self.assertEqual(response.data['conflicting_lesson']['time'], '09:00 - 09:45')
        self.assertEqual(response.data['conflicting_lesson']['id'], first.data['id'])
        self.assertEqual(response.data['conflicting_lesson']['day_of_week'], 0)

    def test_hybrid_without_pattern_rejected(self):
        response = self.client.post(LESSONS_URL, self.lesson_payload(lesson_type=LessonType.HYBRID), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('hybrid_pattern', response.data)

    def test_create_hybrid_lesson(self):
        payload = self.lesson_payload(
            lesson_type=LessonType.HYBRID, end_time='10:00',
            hybrid_pattern={'pattern_type': 'CUSTOM', 'group_weeks': [1, 2], 'individual_weeks': [3, 4]},
        )
        response = self.client.post(LESSONS_URL, payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['hybrid_pattern']['individual_weeks'], [3, 4])
        self.assertFalse(response.data['hybrid_pattern']['bookings_open'])

    def test_bad_time_format(self):
        response = self.client.post(LESSONS_URL, self.lesson_payload(start_time='9.00'), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_parent_cannot_create(self):
        self.client.force_login(self.create_parent('mama@harmony.test'))
        response = self.client.post(LESSONS_URL, self.lesson_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_availability(self):
        lesson = self.create_lesson(start_time='09:00', end_time='09:45')
        response = self.client.get(f'{LESSONS_URL}availability/', {
            'resource_type': 'ROOM', 'resource_id': self.room.id,
            'day_of_week': 0, 'start_time': '09:30', 'end_time': '10:00',
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['available'])
        self.assertEqual(response.data['conflicting_lesson']['id'], lesson.id)

    def test_enroll_and_capacity(self):
        lesson = self.create_lesson(max_students=1)
        first, second = self.create_student('Маша'), self.create_student('Петя')

        response = self.client.post(lesson_url(lesson, 'enroll/'), {'student_id': first.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.post(lesson_url(lesson, 'enroll/'), {'student_id': second.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['capacity'], {'current': 1, 'max': 1, 'available': 0})

        response = self.client.get(lesson_url(lesson, 'capacity/'))
        self.assertEqual(response.data['available'], 0)

    def test_bulk_enroll(self):
        lesson = self.create_lesson(max_students=3)
        ids = [self.create_student(name).id for name in ('Маша', 'Петя')]
        response = self.client.post(lesson_url(lesson, 'bulk-enroll/'), {'student_ids': ids}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['capacity']['current'], 2)

    def test_two_phase_reschedule(self):
        lesson = self.create_lesson()
        self.enroll(lesson, self.create_student('Маша'))
        new_time = {'day_of_week': 2, 'start_time': '10:00', 'end_time': '11:00'}

        response = self.client.post(lesson_url(lesson, 'check-reschedule/'), new_time, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['affected_students'], 1)

        response = self.client.post(lesson_url(lesson, 'reschedule/'), new_time, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['report']['affected_students'], 1)
        self.assertIs(response.data['report']['has_conflicts'], False)
        self.assertIs(response.data['report']['affected_enrollments'][0]['has_other_lessons'], False)

        response = self.client.post(lesson_url(lesson, 'reschedule/'), {**new_time, 'confirm': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lesson']['day_of_week'], 2)

    def test_partial_update(self):
        lesson = self.create_lesson()
        response = self.client.patch(lesson_url(lesson), {'name': 'Бас-гитара', 'duration_mins': 90}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['end_time'], '16:30')

    def test_partial_update_individual_seats_rejected(self):
        lesson = self.create_lesson(LessonType.INDIVIDUAL)
        response = self.client.patch(lesson_url(lesson), {'max_students': 2}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('max_students', response.data)
        lesson.refresh_from_db()
        self.assertEqual(lesson.max_students, 1)

    def test_delete_deactivates(self):
        lesson = self.create_lesson()
        response = self.client.delete(lesson_url(lesson))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertTrue(Lesson.objects.filter(pk=lesson.pk, is_active=False).exists())
        self.assertEqual(self.client.get(LESSONS_URL).data, [])

    def test_other_school_isolated(self):
        lesson = self.create_lesson()
        other = Tenant.objects.create(slug='other', name='Other School')
        stranger = User.objects.create_user(email='owner@other.test', password='testpass123', role='parent')
        TenantMembership.objects.create(tenant=other, user=stranger, role=TenantMembership.TenantRole.OWNER)

        self.client.force_login(stranger)
        self.assertEqual(self.client.get(LESSONS_URL).data, [])
        self.assertEqual(self.client.get(lesson_url(lesson)).status_code, status.HTTP_404_NOT_FOUND)

    def test_calendar(self):
        self.create_lesson()
        response = self.client.get(f'{LESSONS_URL}calendar/', {'start': '2026-02-02', 'end': '2026-02-08'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 1)


class BookingApiTest(SchoolFixtureMixin, APITestCase):
    """Бронирование идёт с реальным текущим временем: семестр в будущем."""

    def setUp(self):
        start = upcoming_monday()
        self.create_school(term_start=start, term_end=start + timedelta(days=55))
        self.lesson = self.create_hybrid_lesson(bookings_open=False)
        self.parent = self.create_parent('mama@harmony.test')
        self.child = self.create_student('Маша', parent=self.parent)
        self.other_child = self.create_student('Петя', parent=self.create_parent('papa@harmony.test'))
        self.enroll(self.lesson, self.child, self.other_child)

    def open_bookings(self):
        self.client.force_login(self.admin)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(lesson_url(self.lesson, 'open-bookings/'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['bookings_open'])

    def test_parent_books_slot(self):
        self.open_bookings()
        self.assertEqual(len(mail.outbox), 2)

        self.client.force_login(self.parent)
        response = self.client.get(lesson_url(self.lesson, 'slots/'), {'week': 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 4)

        response = self.client.post(BOOKINGS_URL, {
            'lesson': self.lesson.id, 'student': self.child.id, 'week_number': 2, 'start_time': '15:30',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'CONFIRMED')
        self.assertEqual(response.data['end_time'], '16:00')

        slots = self.client.get(lesson_url(self.lesson, 'slots/'), {'week': 2}).data
        self.assertEqual(slots[1]['unavailable_reason'], 'booked')

    def test_closed_bookings(self):
        self.client.force_login(self.parent)
        response = self.client.post(BOOKINGS_URL, {
            'lesson': self.lesson.id, 'student': self.child.id, 'week_number': 2, 'start_time': '15:30',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_parent_cannot_book_for_other_child(self):
        self.open_bookings()
        self.client.force_login(self.parent)
        response = self.client.post(BOOKINGS_URL, {
            'lesson': self.lesson.id, 'student': self.other_child.id, 'week_number': 2, 'start_time': '15:30',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_parent_sees_only_own_bookings_and_cancels(self):
        self.open_bookings()
        own = HybridService.create_booking(self.lesson, self.child, 2, '15:00', booked_by=self.parent)
        HybridService.create_booking(self.lesson, self.other_child, 2, '15:30')

        self.client.force_login(self.parent)
        response = self.client.get(BOOKINGS_URL)
        self.assertEqual([item['id'] for item in response.data], [own.id])

        response = self.client.post(f'{BOOKINGS_URL}{own.id}/cancel/', {'reason': 'Болеет'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'CANCELLED')

    def test_admin_stats_and_unbooked(self):
        self.open_bookings()
        response = self.client.get(lesson_url(self.lesson, 'booking-stats/'), {'week': 2})
        self.assertEqual(response.data['expected_bookings'], 2)
        response = self.client.get(lesson_url(self.lesson, 'unbooked-students/'), {'week': 2})
        self.assertEqual(len(response.data), 2)

    def test_outcome_requires_staff(self):
        self.open_bookings()
        booking = HybridService.create_booking(self.lesson, self.child, 2, '15:00')
        self.client.force_login(self.parent)
        response = self.client.post(f'{BOOKINGS_URL}{booking.id}/outcome/', {'status': 'COMPLETED'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_login(self.teacher)
        response = self.client.post(f'{BOOKINGS_URL}{booking.id}/outcome/', {'status': 'COMPLETED'}, format='json')
        # Занятие ещё не прошло
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(HybridBooking.objects.get(pk=booking.pk).status, 'CONFIRMED')
