"""
Management command для напоминаний о бронировании индивидуальных слотов.

Запуск:
    python manage.py send_booking_reminders
    python manage.py send_booking_reminders --lesson 12 --week 4 --dry-run

Без --lesson обрабатываются все гибридные уроки, у которых дедлайн недели
наступает в ближайшие REMINDER_LEAD_HOURS часов (то же, что делает Celery beat).
"""
import logging

from django.core.management.base import BaseCommand, CommandError

from schedule.models import Lesson
from schedule.services.reminder_service import ReminderService

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Отправить родителям напоминания о бронировании индивидуальных занятий'

    def add_arguments(self, parser):
        parser.add_argument('--lesson', type=int, help='ID гибридного урока')
        parser.add_argument('--week', type=int, help='Номер индивидуальной недели (вместе с --lesson)')
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Показать что будет отправлено, но не отправлять',
        )
        parser.add_argument(
            '--verbose',
            action='store_true',
            help='Подробный вывод',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        verbose = options['verbose']

        if options['lesson'] is not None:
            if options['week'] is None:
                raise CommandError('--week обязателен вместе с --lesson')
            lesson = Lesson.objects.select_related('tenant').filter(pk=options['lesson']).first()
            if lesson is None:
                raise CommandError(f'Урок {options["lesson"]} не найден')
            targets = [(lesson, options['week'])]
        else:
            targets = ReminderService.due_reminder_targets()

        if verbose:
            self.stdout.write(f'Уроков/недель к обработке: {len(targets)}')

        total = 0
        for lesson, week_number in targets:
            count = ReminderService.send_booking_reminders(lesson, week_number, dry_run=dry_run)
            total += count
            if verbose or dry_run:
                self.stdout.write(f'  {lesson.name} (id={lesson.id}), неделя {week_number}: {count}')

        action = 'Будет отправлено' if dry_run else 'Отправлено'
        self.stdout.write(self.style.SUCCESS(f'{action} напоминаний: {total}'))
