"""
Ошибки расписания.

Все бизнес-ошибки: наследники DRF APIException, поэтому API отдаёт их
с нужным HTTP-кодом без дополнительной обработки во views.
"""
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, ValidationError

__all__ = [
    'ValidationError',
    'NotFound',
    'ScheduleConflict',
    'RescheduleConfirmationRequired',
    'CapacityExceeded',
    'AlreadyEnrolled',
    'DuplicateBooking',
    'SlotUnavailable',
    'BookingDeadlinePassed',
    'BookingsClosed',
]


class StructuredAPIException(APIException):
    """
    Ошибка со структурированным телом ответа.

    APIException приводит все значения detail к ErrorDetail-строкам,
    поэтому словарь кладём в detail уже после базовой инициализации:
    числа и флаги отчёта уходят клиенту как есть.
    """

    def __init__(self, payload):
        super().__init__(payload.get('detail'))
        self.payload = payload
        self.detail = payload


class ScheduleConflict(StructuredAPIException):
    """Ресурс (кабинет или преподаватель) уже занят другим уроком."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Ресурс занят в это время.'
    default_code = 'schedule_conflict'

    def __init__(self, resource_type, conflicting_lesson, detail=None):
        self.resource_type = resource_type
        self.conflicting_lesson = conflicting_lesson
        if detail is None:
            detail = f'{resource_type.label} занят: «{conflicting_lesson.name}» ({conflicting_lesson.time_range}).'
        super().__init__({
            'detail': detail,
            'resource': resource_type.value,
            'conflicting_lesson': {
                'id': conflicting_lesson.pk,
                'name': conflicting_lesson.name,
                'day_of_week': conflicting_lesson.day_of_week,
                'time': conflicting_lesson.time_range,
            },
        })


class RescheduleConfirmationRequired(StructuredAPIException):
    """Перенос затрагивает учеников или конфликтует: нужно подтверждение администратора."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Перенос требует подтверждения.'
    default_code = 'reschedule_confirmation_required'

    def __init__(self, report):
        self.report = report
        super().__init__({'detail': self.default_detail, 'report': report.as_dict()})


class CapacityExceeded(StructuredAPIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'В уроке нет свободных мест.'
    default_code = 'capacity_exceeded'

    def __init__(self, capacity, requested=1):
        self.capacity = capacity
        super().__init__({
            'detail': f'Недостаточно мест: запрошено {requested}, свободно {capacity.available}.',
            'capacity': capacity.as_dict(),
        })


class AlreadyEnrolled(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Ученик уже записан на этот урок.'
    default_code = 'already_enrolled'


class DuplicateBooking(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'У ученика уже есть бронь на эту неделю.'
    default_code = 'duplicate_booking'


class SlotUnavailable(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Этот слот уже занят.'
    default_code = 'slot_unavailable'


class BookingDeadlinePassed(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Срок бронирования этого слота истёк.'
    default_code = 'booking_deadline_passed'


class BookingsClosed(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Бронирование индивидуальных занятий сейчас закрыто.'
    default_code = 'bookings_closed'
