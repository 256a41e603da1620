"""
Календарь школы: разворачивает еженедельные уроки в события на конкретные даты.

Уроки не хранятся по датам: дата вычисляется из семестра и номера недели.
Гибридный урок в групповую неделю даёт событие hybrid_group, в индивидуальную:
блок-заглушку hybrid_placeholder. Каждая бронь даёт событие hybrid_individual
на свою дату, в том числе бронь, сделанная до переноса урока.
"""
from collections import defaultdict

from ..exceptions import ValidationError
from ..models import HybridBooking, Lesson, scheduling_setting
from ..time_utils import date_for_week, local_datetime

EVENT_REGULAR = 'regular'
EVENT_HYBRID_GROUP = 'hybrid_group'
EVENT_HYBRID_PLACEHOLDER = 'hybrid_placeholder'
EVENT_HYBRID_INDIVIDUAL = 'hybrid_individual'


def _lesson_event(lesson, day, week_number, event_type, tz):
    return {
        'id': f'lesson_{lesson.pk}_{day.isoformat()}',
        'type': event_type,
        'title': lesson.name,
        'start': local_datetime(day, lesson.start_time, tz),
        'end': local_datetime(day, lesson.end_time, tz),
        'lesson_id': lesson.pk,
        'week_number': week_number,
        'room_id': lesson.room_id,
        'teacher_id': lesson.teacher_id,
    }


def _booking_event(lesson, booking, tz):
    return {
        'id': f'booking_{booking.pk}',
        'type': EVENT_HYBRID_INDIVIDUAL,
        'title': f'{lesson.name}: {booking.student.full_name}',
        'start': local_datetime(booking.scheduled_date, booking.start_time, tz),
        'end': local_datetime(booking.scheduled_date, booking.end_time, tz),
        'lesson_id': lesson.pk,
        'booking_id': booking.pk,
        'student_id': booking.student_id,
        'week_number': booking.week_number,
        'room_id': lesson.room_id,
        'teacher_id': lesson.teacher_id,
    }


def get_calendar_events(tenant, start_date, end_date, teacher=None, room=None, limit=None):
    """
    События календаря в диапазоне дат (включительно).

    Args:
        tenant: школа
        start_date, end_date: границы диапазона (datetime.date)
        teacher, room: необязательные фильтры
        limit: максимум событий (по умолчанию CALENDAR_PAGE_SIZE)

    Returns:
        dict: {'events': [...], 'total': int}: события отсортированы по началу
    """
    if end_date < start_date:
        raise ValidationError({'end': 'Конец диапазона раньше начала.'})
    limit = limit or scheduling_setting('CALENDAR_PAGE_SIZE')
    tz = tenant.tzinfo

    lessons = (
        Lesson.objects.for_tenant(tenant)
        .filter(is_active=True, term__start_date__lte=end_date, term__end_date__gte=start_date)
        .select_related('term', 'hybrid_pattern')
    )
    if teacher is not None:
        lessons = lessons.filter(teacher=teacher)
    if room is not None:
        lessons = lessons.filter(room=room)
    lessons = list(lessons)

    bookings = defaultdict(list)
    booking_qs = HybridBooking.objects.active().filter(
        lesson__in=[lesson.pk for lesson in lessons if lesson.is_hybrid],
        scheduled_date__range=(start_date, end_date),
    ).select_related('student')
    for booking in booking_qs:
        bookings[booking.lesson_id].append(booking)

    events = []
    for lesson in lessons:
        term = lesson.term
        first_day = max(start_date, term.start_date)
        last_day = min(end_date, term.end_date)
        weeks = range(1, term.week_count + 1) if lesson.is_recurring else range(1, 2)

        for week_number in weeks:
            day = date_for_week(term.start_date, week_number, lesson.day_of_week)
            if day < first_day or day > last_day:
                continue

            if not lesson.is_hybrid:
                events.append(_lesson_event(lesson, day, week_number, EVENT_REGULAR, tz))
                continue

            pattern = lesson.hybrid_pattern
            if pattern.is_group_week(week_number):
                events.append(_lesson_event(lesson, day, week_number, EVENT_HYBRID_GROUP, tz))
            elif pattern.is_individual_week(week_number):
                events.append(_lesson_event(lesson, day, week_number, EVENT_HYBRID_PLACEHOLDER, tz))

        events.extend(_booking_event(lesson, b, tz) for b in bookings[lesson.pk])

    events.sort(key=lambda event: (event['start'], event['id']))
    page = events[:limit]
    for event in page:
        event['start'] = event['start'].isoformat()
        event['end'] = event['end'].isoformat()
    return {'events': page, 'total': len(events)}
