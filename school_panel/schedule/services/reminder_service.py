"""
Напоминания родителям учеников без брони на индивидуальную неделю.

Сервис решает, кому и о чём напомнить; доставку выполняет notifier.
Каждое напоминание (урок, ученик, неделя) отправляется один раз:
это фиксирует BookingReminderLog.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging

from django.utils import timezone

from ..models import BookingReminderLog, HybridPattern, scheduling_setting
from ..time_utils import date_for_week
from .hybrid_service import HybridService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderRecipient:
    parent_contact: str
    parent_name: str
    student_id: int
    student_name: str
    lesson_name: str
    week_number: int
    deadline: datetime
    timezone: Optional[object] = None


class ReminderService:

    @staticmethod
    def week_deadline(lesson, pattern, week_number):
        """Дедлайн первого слота недели: после него забронировать уже ничего нельзя."""
        scheduled_date = date_for_week(pattern.term.start_date, week_number, lesson.day_of_week)
        return HybridService.slot_deadline(lesson, pattern, scheduled_date, lesson.start_time)

    @staticmethod
    def collect_reminders(lesson, week_number, now=None):
        """
        Получатели напоминаний на неделю.

        Пусто, если бронирование закрыто или дедлайн недели уже прошёл.
        Ученики без родителя или без email пропускаются.
        """
        pattern = HybridService.get_pattern(lesson)
        now = now or timezone.now()
        if not pattern.bookings_open:
            return []
        deadline = ReminderService.week_deadline(lesson, pattern, week_number)
        if now > deadline:
            return []

        recipients = []
        for student in HybridService.get_unbooked_students(lesson, week_number):
            parent = student.parent
            if parent is None or not parent.email:
                continue
            recipients.append(ReminderRecipient(
                parent_contact=parent.email,
                parent_name=parent.get_full_name() or parent.email,
                student_id=student.pk,
                student_name=student.full_name,
                lesson_name=lesson.name,
                week_number=week_number,
                deadline=deadline,
                timezone=lesson.tenant.tzinfo,
            ))
        return recipients

    @staticmethod
    def send_booking_reminders(lesson, week_number, notifier=None, now=None, dry_run=False):
        """
        Отправить напоминания, которые ещё не отправлялись.

        Returns:
            int: количество получателей (для dry_run: сколько было бы отправлено)
        """
        from ..notifications import EmailNotifier

        already_sent = set(
            BookingReminderLog.objects.filter(lesson=lesson, week_number=week_number)
            .values_list('student_id', flat=True)
        )
        pending = [
            r for r in ReminderService.collect_reminders(lesson, week_number, now=now)
            if r.student_id not in already_sent
        ]
        if dry_run or not pending:
            return len(pending)

        notifier = notifier or EmailNotifier()
        sent = notifier.send_booking_reminders(pending)
        BookingReminderLog.objects.bulk_create(
            [BookingReminderLog(lesson=lesson, student_id=r.student_id, week_number=week_number) for r in pending],
            ignore_conflicts=True,
        )

        if sent < len(pending):
            logger.warning(
                f'Напоминания отправлены частично: lesson={lesson.id}, week={week_number}, '
                f'sent={sent}/{len(pending)}'
            )
        logger.info(f'Напоминания о брони: lesson={lesson.id}, week={week_number}, recipients={len(pending)}')
        return len(pending)

    @staticmethod
    def due_reminder_targets(now=None):
        """
        Пары (урок, неделя), у которых дедлайн наступает в ближайшие REMINDER_LEAD_HOURS часов.

        Returns:
            list[tuple[Lesson, int]]
        """
        now = now or timezone.now()
        horizon = now + timedelta(hours=scheduling_setting('REMINDER_LEAD_HOURS'))
        patterns = HybridPattern.objects.filter(
            bookings_open=True,
            lesson__is_active=True,
        ).select_related('lesson', 'lesson__tenant', 'term')

        targets = []
        for pattern in patterns:
            for week_number in pattern.individual_weeks:
                deadline = ReminderService.week_deadline(pattern.lesson, pattern, week_number)
                if now < deadline <= horizon:
                    targets.append((pattern.lesson, week_number))
        return targets
