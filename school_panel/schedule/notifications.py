"""
Email-уведомления родителям.

Отправка работает по принципу fire-and-forget: ошибка доставки пишется в лог
и не прерывает бизнес-операцию, повторов нет.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from .time_utils import day_name, format_time

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Отправляет уведомления через django.core.mail (бэкенд задаётся в settings)."""

    def __init__(self, from_email=None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def _send(self, recipient, subject, body, notification_type):
        if not recipient:
            logger.warning(f'Email notification {notification_type} skipped: empty recipient')
            return False
        try:
            send_mail(subject, body, self.from_email, [recipient], fail_silently=False)
        except Exception as exc:
            logger.exception(f'Failed to send {notification_type} email to {recipient}: {exc}')
            return False
        return True

    def send_booking_reminders(self, recipients):
        """
        Напоминания о незабронированных индивидуальных занятиях.

        Args:
            recipients: список ReminderRecipient

        Returns:
            int: сколько писем отправлено успешно
        """
        sent = 0
        for r in recipients:
            deadline = timezone.localtime(r.deadline, r.timezone) if r.timezone else r.deadline
            body = (
                f'Здравствуйте, {r.parent_name}!\n\n'
                f'{r.student_name} ещё не записан(а) на индивидуальное занятие '
                f'«{r.lesson_name}» на неделе {r.week_number}.\n'
                f'Выберите удобный слот до {deadline:%d.%m.%Y %H:%M}.'
            )
            if self._send(r.parent_contact, f'Запишитесь на индивидуальное занятие: неделя {r.week_number}', body, 'booking_reminder'):
                sent += 1
        return sent

    def send_bookings_opened(self, lesson, recipients):
        """recipients: список (email, имя родителя, имя ученика)"""
        sent = 0
        for email, parent_name, student_name in recipients:
            body = (
                f'Здравствуйте, {parent_name}!\n\n'
                f'Открыто бронирование индивидуальных занятий «{lesson.name}» для {student_name}.'
            )
            if self._send(email, f'Открыта запись: {lesson.name}', body, 'bookings_opened'):
                sent += 1
        return sent

    def send_booking_confirmed(self, booking, rescheduled=False):
        parent = booking.student.parent
        if parent is None:
            return False
        action = 'перенесено' if rescheduled else 'забронировано'
        body = (
            f'Здравствуйте, {parent.get_full_name() or parent.email}!\n\n'
            f'Индивидуальное занятие «{booking.lesson.name}» для {booking.student.full_name} {action}: '
            f'{booking.scheduled_date:%d.%m.%Y}, {format_time(booking.start_time)}-{format_time(booking.end_time)}.'
        )
        subject = f'Занятие {action}: {booking.lesson.name}'
        return self._send(parent.email, subject, body, 'booking_rescheduled' if rescheduled else 'booking_confirmed')

    def send_lesson_rescheduled(self, lesson, recipients, old_day, old_start, old_end, reason=''):
        """recipients: список (email, имя родителя, имя ученика)"""
        sent = 0
        new_slot = f'{day_name(lesson.day_of_week)} {lesson.time_range}'
        old_slot = f'{day_name(old_day)} {old_start} - {old_end}'
        for email, parent_name, student_name in recipients:
            body = (
                f'Здравствуйте, {parent_name}!\n\n'
                f'Урок «{lesson.name}» ({student_name}) перенесён: {old_slot} → {new_slot}.'
            )
            if reason:
                body += f'\nПричина: {reason}'
            if self._send(email, f'Урок перенесён: {lesson.name}', body, 'lesson_rescheduled'):
                sent += 1
        return sent
