"""
Celery задачи для приложения schedule
"""
import logging

from celery import shared_task

from .models import HybridBooking, Lesson
from .notifications import EmailNotifier
from .services.enrollment_service import EnrollmentService
from .services.reminder_service import ReminderService

logger = logging.getLogger(__name__)


def _parent_recipients(lesson):
    """(email, имя родителя, имя ученика) для активных записей урока."""
    recipients = []
    for enrollment in EnrollmentService.active_enrollments(lesson):
        parent = enrollment.student.parent
        if parent is not None and parent.email:
            recipients.append((parent.email, parent.get_full_name() or parent.email, enrollment.student.full_name))
    return recipients


@shared_task
def send_hybrid_booking_reminders(lesson_id, week_number):
    """Напоминания родителям учеников без брони на индивидуальную неделю."""
    lesson = Lesson.objects.select_related('tenant').filter(pk=lesson_id, is_active=True).first()
    if lesson is None:
        logger.warning(f'send_hybrid_booking_reminders: урок {lesson_id} не найден или неактивен')
        return {'lesson_id': lesson_id, 'week_number': week_number, 'sent': 0}

    sent = ReminderService.send_booking_reminders(lesson, week_number)
    return {'lesson_id': lesson_id, 'week_number': week_number, 'sent': sent}


@shared_task
def dispatch_due_booking_reminders():
    """
    Периодическая задача (Celery Beat, раз в час).

    Находит индивидуальные недели с приближающимся дедлайном и ставит
    отправку напоминаний по каждой из них.
    """
    targets = ReminderService.due_reminder_targets()
    for lesson, week_number in targets:
        send_hybrid_booking_reminders.delay(lesson.pk, week_number)

    if targets:
        logger.info(f'Запланированы напоминания о брони: {len(targets)} недель')
    return {'dispatched': len(targets)}


@shared_task
def notify_bookings_opened(lesson_id):
    lesson = Lesson.objects.filter(pk=lesson_id).first()
    if lesson is None:
        return {'lesson_id': lesson_id, 'sent': 0}
    sent = EmailNotifier().send_bookings_opened(lesson, _parent_recipients(lesson))
    return {'lesson_id': lesson_id, 'sent': sent}


@shared_task
def notify_booking_confirmed(booking_id, rescheduled=False):
    booking = (
        HybridBooking.objects.select_related('lesson', 'student', 'student__parent')
        .filter(pk=booking_id)
        .first()
    )
    if booking is None:
        return {'booking_id': booking_id, 'sent': False}
    return {'booking_id': booking_id, 'sent': EmailNotifier().send_booking_confirmed(booking, rescheduled)}


@shared_task
def notify_lesson_rescheduled(lesson_id, old_day_of_week, old_start_time, old_end_time, reason=''):
    lesson = Lesson.objects.filter(pk=lesson_id).first()
    if lesson is None:
        return {'lesson_id': lesson_id, 'sent': 0}
    sent = EmailNotifier().send_lesson_rescheduled(
        lesson, _parent_recipients(lesson), old_day_of_week, old_start_time, old_end_time, reason,
    )
    return {'lesson_id': lesson_id, 'sent': sent}
