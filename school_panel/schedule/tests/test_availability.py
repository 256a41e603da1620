from django.test import TestCase

from schedule.exceptions import ScheduleConflict, ValidationError
from schedule.models import ResourceType
from schedule.services.availability_service import check_availability
from schedule.services.lesson_service import LessonService

from .base import SchoolFixtureMixin


class AvailabilityServiceTest(SchoolFixtureMixin, TestCase):

    def setUp(self):
        self.create_school()
        self.lesson = self.create_lesson(start_time='09:00', end_time='09:45')

    def test_free_interval(self):
        result = check_availability(self.tenant, ResourceType.ROOM, self.room.id, 0, '09:45', '10:30')
        self.assertTrue(result.available)
        self.assertIsNone(result.conflicting_lesson)

    def test_conflict_reports_lesson(self):
        result = check_availability(self.tenant, ResourceType.TEACHER, self.teacher.id, 0, '09:30', '10:15')
        self.assertFalse(result.available)
        self.assertEqual(result.conflicting_lesson, self.lesson)
        self.assertEqual(result.as_dict()['conflicting_lesson']['time'], '09:00 - 09:45')

    def test_other_day_is_free(self):
        result = check_availability(self.tenant, ResourceType.ROOM, self.room.id, 1, '09:00', '09:45')
        self.assertTrue(result.available)

    def test_exclude_lesson(self):
        result = check_availability(
            self.tenant, ResourceType.ROOM, self.room.id, 0, '09:00', '09:45',
            exclude_lesson_id=self.lesson.id,
        )
        self.assertTrue(result.available)

    def test_inactive_lessons_ignored(self):
        LessonService.deactivate_lesson(self.lesson)
        result = check_availability(self.tenant, ResourceType.ROOM, self.room.id, 0, '09:00', '09:45')
        self.assertTrue(result.available)

    def test_other_tenant_not_visible(self):
        from tenants.models import Tenant

        other = Tenant.objects.create(slug='other', name='Other School')
        result = check_availability(other, ResourceType.ROOM, self.room.id, 0, '09:00', '09:45')
        self.assertTrue(result.available)

    def test_resource_checked_independently(self):
        second = self.create_lesson(start_time='10:00', end_time='11:00', room=self.other_room)
        busy = check_availability(self.tenant, ResourceType.ROOM, self.other_room.id, 0, '09:00', '10:30')
        free = check_availability(self.tenant, ResourceType.ROOM, self.other_room.id, 0, '11:00', '12:00')
        self.assertFalse(busy.available)
        self.assertEqual(busy.conflicting_lesson, second)
        self.assertTrue(free.available)

    def test_invalid_interval(self):
        with self.assertRaises(ValidationError):
            check_availability(self.tenant, ResourceType.ROOM, self.room.id, 0, '10:00', '09:00')
        with self.assertRaises(ValidationError):
            check_availability(self.tenant, 'PIANO', self.room.id, 0, '09:00', '10:00')
        with self.assertRaises(ValidationError):
            check_availability(self.tenant, ResourceType.ROOM, self.room.id, 7, '09:00', '10:00')


class LessonCreationConflictTest(SchoolFixtureMixin, TestCase):
    """Создание урока отклоняется при занятом преподавателе или кабинете."""

    def setUp(self):
        self.create_school()
        self.create_lesson(start_time='09:00', end_time='09:45')

    def test_teacher_conflict_in_other_room(self):
        with self.assertRaises(ScheduleConflict) as ctx:
            self.create_lesson(start_time='09:30', end_time='10:15', room=self.other_room)
        self.assertEqual(ctx.exception.resource_type, ResourceType.TEACHER)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_room_conflict_with_other_teacher(self):
        other_teacher = self.create_teacher('second@harmony.test')
        with self.assertRaises(ScheduleConflict) as ctx:
            self.create_lesson(start_time='09:15', end_time='10:00', teacher=other_teacher)
        self.assertEqual(ctx.exception.resource_type, ResourceType.ROOM)

    def test_back_to_back_allowed(self):
        lesson = self.create_lesson(start_time='09:45', end_time='10:30')
        self.assertTrue(lesson.is_active)
