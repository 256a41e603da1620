"""
Проверка занятости ресурсов (кабинет, преподаватель).

Единственный источник правды о пересечениях: используется и при создании,
и при изменении, и при переносе урока.
"""
from dataclasses import dataclass
from typing import Optional

from django.db.models import Q

from ..exceptions import ScheduleConflict, ValidationError
from ..models import HybridBooking, Lesson, ResourceType
from ..time_utils import day_name, overlaps, parse_time, to_minutes

RESOURCE_FIELDS = {
    ResourceType.ROOM: 'room_id',
    ResourceType.TEACHER: 'teacher_id',
}


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    resource_type: str
    conflicting_lesson: Optional[Lesson] = None

    def as_dict(self):
        lesson = self.conflicting_lesson
        return {
            'available': self.available,
            'resource': self.resource_type,
            'conflicting_lesson': None if lesson is None else {
                'id': lesson.pk,
                'name': lesson.name,
                'day_of_week': lesson.day_of_week,
                'time': lesson.time_range,
            },
        }


def _validate_interval(day_of_week, start, end):
    start, end = parse_time(start), parse_time(end)
    day_name(day_of_week)
    if to_minutes(end) <= to_minutes(start):
        raise ValidationError({'end_time': 'Время окончания должно быть позже времени начала.'})
    return start, end


def check_availability(tenant, resource_type, resource_id, day_of_week, start, end, exclude_lesson_id=None):
    """
    Свободен ли ресурс в недельном интервале [start, end).

    Учитываются только активные уроки школы. Индивидуальные слоты гибридных
    уроков хранятся отдельно (HybridBooking) и здесь не рассматриваются.

    Args:
        tenant: школа
        resource_type: ResourceType.ROOM или ResourceType.TEACHER
        resource_id: id кабинета или преподавателя
        day_of_week: 0 (понедельник) .. 6 (воскресенье)
        start, end: время 'HH:MM' или datetime.time
        exclude_lesson_id: урок, который не считается конфликтом (сам переносимый урок)

    Returns:
        AvailabilityResult: первый найденный конфликт, если есть
    """
    try:
        resource_type = ResourceType(resource_type)
    except ValueError:
        raise ValidationError({'resource_type': f'Неизвестный тип ресурса "{resource_type}".'})
    start, end = _validate_interval(day_of_week, start, end)

    candidates = Lesson.objects.for_tenant(tenant).filter(
        is_active=True,
        day_of_week=day_of_week,
        **{RESOURCE_FIELDS[resource_type]: resource_id},
    ).order_by('start_time', 'pk')
    if exclude_lesson_id is not None:
        candidates = candidates.exclude(pk=exclude_lesson_id)

    for lesson in candidates:
        if overlaps(start, end, lesson.start_time, lesson.end_time):
            return AvailabilityResult(False, resource_type.value, lesson)
    return AvailabilityResult(True, resource_type.value)


def ensure_available(tenant, room_id, teacher_id, day_of_week, start, end, exclude_lesson_id=None):
    """
    Проверяет кабинет и преподавателя.

    Raises:
        ScheduleConflict: с указанием ресурса и конфликтующего урока
    """
    for resource_type, resource_id in ((ResourceType.ROOM, room_id), (ResourceType.TEACHER, teacher_id)):
        result = check_availability(
            tenant, resource_type, resource_id, day_of_week, start, end,
            exclude_lesson_id=exclude_lesson_id,
        )
        if not result.available:
            raise ScheduleConflict(resource_type, result.conflicting_lesson)


def bookings_sharing_resources(lesson, scheduled_date, exclude_booking_id=None):
    """Действующие брони на дату у того же урока, преподавателя или кабинета."""
    qs = HybridBooking.objects.active().filter(
        scheduled_date=scheduled_date,
        lesson__tenant_id=lesson.tenant_id,
    ).filter(
        Q(lesson_id=lesson.pk) | Q(lesson__teacher_id=lesson.teacher_id) | Q(lesson__room_id=lesson.room_id)
    )
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    return list(qs.order_by('start_time'))


def find_booking_overlap(lesson, scheduled_date, start, end, exclude_booking_id=None):
    """Первая бронь, пересекающаяся с интервалом по преподавателю или кабинету."""
    for booking in bookings_sharing_resources(lesson, scheduled_date, exclude_booking_id):
        if overlaps(start, end, booking.start_time, booking.end_time):
            return booking
    return None
