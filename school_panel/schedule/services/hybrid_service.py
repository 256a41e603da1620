"""
Гибридные уроки: шаблон недель, нарезка слотов и брони индивидуальных занятий.

Гибридный урок в групповые недели проходит как обычно, а в индивидуальные
недели его блок времени делится на слоты по individual_slot_duration минут.
Родитель бронирует один слот на ученика в неделю до дедлайна
(booking_deadline_hours до начала слота) и только пока bookings_open=True.

Время слота: локальное время школы (Tenant.timezone), дедлайн отсчитывается
в астрономических часах.
"""
from dataclasses import dataclass
from typing import Optional
import logging

from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied

from ..exceptions import (
    BookingDeadlinePassed,
    BookingsClosed,
    DuplicateBooking,
    NotFound,
    SlotUnavailable,
    ValidationError,
)
from ..lesson_types import PatternDraft
from ..models import (
    BookingStatus,
    Enrollment,
    HybridBooking,
    HybridPattern,
    Lesson,
    Student,
    scheduling_setting,
)
from ..permissions import is_school_admin
from ..time_utils import (
    alternating_weeks,
    booking_deadline,
    date_for_week,
    format_time,
    from_minutes,
    local_datetime,
    overlaps,
    parse_time,
    to_minutes,
)
from .availability_service import bookings_sharing_resources, find_booking_overlap

logger = logging.getLogger(__name__)

MAX_CANCELLATION_REASON = 500


def find_student_booking(lesson, student, week_number):
    """Действующая бронь ученика на неделю урока или None."""
    return HybridBooking.objects.active().filter(lesson=lesson, student=student, week_number=week_number).first()


@dataclass(frozen=True)
class Slot:
    date: object
    start_time: object
    end_time: object
    week_number: int
    is_available: bool
    unavailable_reason: Optional[str] = None

    BOOKED = 'booked'
    BOOKINGS_CLOSED = 'bookings_closed'
    DEADLINE_PASSED = 'deadline_passed'

    def as_dict(self):
        return {
            'date': self.date.isoformat(),
            'start_time': format_time(self.start_time),
            'end_time': format_time(self.end_time),
            'week_number': self.week_number,
            'is_available': self.is_available,
            'unavailable_reason': self.unavailable_reason,
        }


class HybridService:

    # ------------------------------------------------------------------
    # Шаблон
    # ------------------------------------------------------------------

    @staticmethod
    def validate_pattern(term, draft, day_of_week=None, lesson_duration=None):
        """
        Проверка шаблона недель.

        Args:
            term: семестр, к которому относится шаблон
            draft: PatternDraft или HybridPattern
            day_of_week: день урока; если задан, дата каждой недели должна попасть в семестр
            lesson_duration: длительность урока; слот не может быть длиннее

        Returns:
            tuple: (group_weeks, individual_weeks): отсортированные списки

        Raises:
            ValidationError: недели пересекаются, выходят за семестр, некорректные параметры
        """
        errors = {}
        group = list(draft.group_weeks or [])
        individual = list(draft.individual_weeks or [])

        if draft.pattern_type not in HybridPattern.PatternType.values:
            errors['pattern_type'] = f'Неизвестный тип шаблона "{draft.pattern_type}".'

        week_limit = min(term.week_count, scheduling_setting('MAX_TERM_WEEKS'))
        if draft.pattern_type == HybridPattern.PatternType.ALTERNATING and not group and not individual:
            group, individual = alternating_weeks(HybridService._last_lesson_week(term, week_limit, day_of_week))

        for name, weeks in (('group_weeks', group), ('individual_weeks', individual)):
            if any(isinstance(w, bool) or not isinstance(w, int) or w < 1 for w in weeks):
                errors[name] = 'Номера недель: положительные целые числа.'
            elif len(set(weeks)) != len(weeks):
                errors[name] = 'Недели не должны повторяться.'
            elif any(w > week_limit for w in weeks):
                outside = sorted(w for w in weeks if w > week_limit)
                errors[name] = f'Недели {outside} за пределами семестра (1..{week_limit}).'
            elif day_of_week is not None:
                outside = sorted(w for w in weeks if date_for_week(term.start_date, w, day_of_week) > term.end_date)
                if outside:
                    errors[name] = f'Занятия недель {outside} выпадают после окончания семестра.'

        if not errors:
            common = sorted(set(group) & set(individual))
            if common:
                errors['individual_weeks'] = f'Недели {common} не могут быть одновременно групповыми и индивидуальными.'
            elif not individual:
                errors['individual_weeks'] = 'Нужна хотя бы одна индивидуальная неделя.'

        slot = draft.individual_slot_duration
        if slot is None or slot < 1:
            errors['individual_slot_duration'] = 'Длительность слота должна быть положительной.'
        elif lesson_duration is not None and slot > lesson_duration:
            errors['individual_slot_duration'] = 'Слот не может быть длиннее урока.'
        if draft.booking_deadline_hours is None or draft.booking_deadline_hours < 0:
            errors['booking_deadline_hours'] = 'Дедлайн не может быть отрицательным.'

        if errors:
            raise ValidationError(errors)
        return sorted(group), sorted(individual)

    @staticmethod
    def _last_lesson_week(term, week_limit, day_of_week=None):
        """Последняя неделя, в которой занятие ещё попадает в семестр."""
        weeks = week_limit
        if day_of_week is not None:
            while weeks > 0 and date_for_week(term.start_date, weeks, day_of_week) > term.end_date:
                weeks -= 1
        return weeks

    @staticmethod
    def validate_pattern_for_lesson(lesson, draft):
        return HybridService.validate_pattern(
            lesson.term, draft, day_of_week=lesson.day_of_week, lesson_duration=lesson.duration_mins,
        )

    @staticmethod
    def save_pattern(lesson, draft) -> HybridPattern:
        """
        Создать или обновить шаблон урока на его семестр.

        Флаг bookings_open берётся из draft только при создании: дальше
        он меняется через open_bookings / close_bookings.
        """
        if not lesson.is_hybrid:
            raise ValidationError({'hybrid_pattern': 'Шаблон задаётся только для гибридного урока.'})
        if isinstance(draft, dict):
            draft = PatternDraft.from_dict(draft)
        group, individual = HybridService.validate_pattern_for_lesson(lesson, draft)

        pattern = HybridPattern.objects.filter(lesson=lesson).first()
        created = pattern is None
        if created:
            pattern = HybridPattern(lesson=lesson, bookings_open=draft.bookings_open)
        pattern.term = lesson.term
        pattern.pattern_type = draft.pattern_type
        pattern.group_weeks = group
        pattern.individual_weeks = individual
        pattern.individual_slot_duration = draft.individual_slot_duration
        pattern.booking_deadline_hours = draft.booking_deadline_hours
        pattern.save()

        logger.info(
            f'Гибридный шаблон {"создан" if created else "обновлён"}: lesson={lesson.id}, '
            f'group={group}, individual={individual}, slot={pattern.individual_slot_duration}'
        )
        return pattern

    @staticmethod
    def get_pattern(lesson) -> HybridPattern:
        """
        Raises:
            ValidationError: урок не гибридный
            NotFound: шаблона нет
        """
        if not lesson.is_hybrid:
            raise ValidationError({'lesson': 'Урок не является гибридным.'})
        pattern = HybridPattern.objects.filter(lesson=lesson).select_related('term').first()
        if pattern is None:
            raise NotFound('Гибридный шаблон не найден.')
        return pattern

    @staticmethod
    def _ensure_individual_week(pattern, week_number):
        if not pattern.is_individual_week(week_number):
            raise ValidationError({'week_number': f'Неделя {week_number} не является индивидуальной.'})

    # ------------------------------------------------------------------
    # Слоты
    # ------------------------------------------------------------------

    @staticmethod
    def slot_grid(lesson, pattern):
        """Последовательные слоты от начала урока: duration_mins // individual_slot_duration штук."""
        step = pattern.individual_slot_duration
        first = to_minutes(lesson.start_time)
        count = lesson.duration_mins // step
        return [
            (from_minutes(first + i * step), from_minutes(first + (i + 1) * step))
            for i in range(count)
        ]

    @staticmethod
    def _slot_end(lesson, pattern, start):
        for slot_start, slot_end in HybridService.slot_grid(lesson, pattern):
            if slot_start == start:
                return slot_end
        raise ValidationError({'start_time': f'Время {format_time(start)} не совпадает ни с одним слотом урока.'})

    @staticmethod
    def slot_start(lesson, scheduled_date, start):
        """Начало слота как aware datetime в часовом поясе школы."""
        return local_datetime(scheduled_date, start, lesson.tenant.tzinfo)

    @staticmethod
    def slot_deadline(lesson, pattern, scheduled_date, start):
        return booking_deadline(
            HybridService.slot_start(lesson, scheduled_date, start),
            pattern.booking_deadline_hours,
        )

    @staticmethod
    def _ensure_before_deadline(lesson, pattern, scheduled_date, start, now):
        deadline = HybridService.slot_deadline(lesson, pattern, scheduled_date, start)
        if now > deadline:
            raise BookingDeadlinePassed(
                f'Бронировать, переносить и отменять слот можно не позднее чем за '
                f'{pattern.booking_deadline_hours} ч до начала.'
            )

    @staticmethod
    def get_available_slots(lesson, week_number, now=None):
        """
        Слоты индивидуальной недели с отметкой доступности.

        Слот недоступен, если пересекается с действующей бронью того же урока,
        преподавателя или кабинета, если бронирование закрыто или если дедлайн прошёл.

        Returns:
            list[Slot]

        Raises:
            ValidationError: урок не гибридный/неактивен или неделя не индивидуальная
        """
        pattern = HybridService.get_pattern(lesson)
        if not lesson.is_active:
            raise ValidationError({'lesson': 'Урок деактивирован.'})
        HybridService._ensure_individual_week(pattern, week_number)

        now = now or timezone.now()
        scheduled_date = date_for_week(pattern.term.start_date, week_number, lesson.day_of_week)
        taken = bookings_sharing_resources(lesson, scheduled_date)

        slots = []
        for start, end in HybridService.slot_grid(lesson, pattern):
            reason = None
            if any(overlaps(start, end, b.start_time, b.end_time) for b in taken):
                reason = Slot.BOOKED
            elif not pattern.bookings_open:
                reason = Slot.BOOKINGS_CLOSED
            elif now > HybridService.slot_deadline(lesson, pattern, scheduled_date, start):
                reason = Slot.DEADLINE_PASSED
            slots.append(Slot(scheduled_date, start, end, week_number, reason is None, reason))
        return slots

    # ------------------------------------------------------------------
    # Брони
    # ------------------------------------------------------------------

    @staticmethod
    def _is_admin(actor, lesson):
        # actor=None: системный вызов (задачи, админка)
        return actor is None or is_school_admin(actor, lesson.tenant)

    @staticmethod
    def _ensure_owner(actor, student):
        if student.parent_id is None or student.parent_id != actor.pk:
            raise PermissionDenied('Можно бронировать только для своих детей.')

    @staticmethod
    def _raise_for_conflict(lesson, student, week_number):
        """После IntegrityError от параллельной записи определяет, какое ограничение сработало."""
        duplicate = HybridBooking.objects.active().filter(
            lesson=lesson, student=student, week_number=week_number,
        ).exists()
        if duplicate:
            raise DuplicateBooking()
        raise SlotUnavailable()

    @staticmethod
    def create_booking(lesson, student, week_number, start_time, booked_by=None, now=None) -> HybridBooking:
        """
        Забронировать индивидуальный слот.

        Args:
            lesson: гибридный урок
            student: ученик, записанный на урок
            week_number: индивидуальная неделя
            start_time: начало слота ('HH:MM')
            booked_by: родитель или администратор (None: системный вызов)
            now: текущее время (по умолчанию timezone.now())

        Returns:
            HybridBooking: бронь в статусе CONFIRMED

        Raises:
            BookingsClosed, PermissionDenied, ValidationError, BookingDeadlinePassed,
            DuplicateBooking, SlotUnavailable
        """
        start = parse_time(start_time)
        pattern = HybridService.get_pattern(lesson)
        if not pattern.bookings_open:
            raise BookingsClosed()
        if student.tenant_id != lesson.tenant_id:
            raise NotFound('Ученик не найден.')
        if not HybridService._is_admin(booked_by, lesson):
            HybridService._ensure_owner(booked_by, student)
        if not Enrollment.objects.active().filter(lesson=lesson, student=student).exists():
            raise ValidationError({'student': 'Ученик не записан на этот урок.'})
        HybridService._ensure_individual_week(pattern, week_number)

        end = HybridService._slot_end(lesson, pattern, start)
        scheduled_date = date_for_week(pattern.term.start_date, week_number, lesson.day_of_week)
        now = now or timezone.now()
        HybridService._ensure_before_deadline(lesson, pattern, scheduled_date, start, now)

        try:
            with transaction.atomic():
                locked = Lesson.objects.select_for_update().get(pk=lesson.pk)
                if not HybridPattern.objects.filter(lesson=locked, bookings_open=True).exists():
                    raise BookingsClosed()
                if find_student_booking(locked, student, week_number) is not None:
                    raise DuplicateBooking()
                if find_booking_overlap(locked, scheduled_date, start, end) is not None:
                    raise SlotUnavailable()

                booking = HybridBooking.objects.create(
                    lesson=locked,
                    student=student,
                    parent=booked_by,
                    week_number=week_number,
                    scheduled_date=scheduled_date,
                    start_time=start,
                    end_time=end,
                    status=BookingStatus.CONFIRMED,
                    confirmed_at=now,
                )
        except IntegrityError:
            HybridService._raise_for_conflict(lesson, student, week_number)

        HybridService._queue_confirmation(booking)
        logger.info(
            f'Бронь создана: booking={booking.id}, lesson={lesson.id}, student={student.id}, '
            f'week={week_number}, slot={scheduled_date} {format_time(start)}'
        )
        return booking

    @staticmethod
    def _queue_confirmation(booking, rescheduled=False):
        from ..tasks import notify_booking_confirmed

        booking_id = booking.pk
        transaction.on_commit(lambda: notify_booking_confirmed.delay(booking_id, rescheduled))

    @staticmethod
    def reschedule_booking(booking, start_time, actor=None, now=None) -> HybridBooking:
        """
        Перенести бронь на другой слот той же недели.

        Для родителя дедлайн проверяется и для исходного, и для нового слота,
        а бронирование должно быть открыто. Администратор эти ограничения обходит.

        Raises:
            ValidationError: бронь отменена или завершена, слот не из сетки
            BookingsClosed, BookingDeadlinePassed, PermissionDenied, SlotUnavailable
        """
        lesson = booking.lesson
        if booking.is_final:
            raise ValidationError({'status': f'Нельзя перенести бронь в статусе {booking.get_status_display()}.'})

        pattern = HybridService.get_pattern(lesson)
        start = parse_time(start_time)
        end = HybridService._slot_end(lesson, pattern, start)
        now = now or timezone.now()

        is_admin = HybridService._is_admin(actor, lesson)
        if not is_admin:
            HybridService._ensure_owner(actor, booking.student)
            if not pattern.bookings_open:
                raise BookingsClosed()
            HybridService._ensure_before_deadline(lesson, pattern, booking.scheduled_date, booking.start_time, now)
            HybridService._ensure_before_deadline(lesson, pattern, booking.scheduled_date, start, now)

        if start == parse_time(booking.start_time):
            return booking

        try:
            with transaction.atomic():
                Lesson.objects.select_for_update().filter(pk=lesson.pk).exists()
                booking = HybridBooking.objects.select_for_update().get(pk=booking.pk)
                if booking.is_final:
                    raise ValidationError({'status': 'Бронь уже отменена или завершена.'})
                if find_booking_overlap(lesson, booking.scheduled_date, start, end, exclude_booking_id=booking.pk):
                    raise SlotUnavailable()

                old_start = format_time(booking.start_time)
                booking.start_time = start
                booking.end_time = end
                booking.save(update_fields=['start_time', 'end_time', 'updated_at'])
        except IntegrityError:
            raise SlotUnavailable()

        HybridService._queue_confirmation(booking, rescheduled=True)
        logger.info(
            f'Бронь перенесена: booking={booking.id}, {old_start} → {format_time(start)}, '
            f'by_admin={is_admin}'
        )
        return booking

    @staticmethod
    def cancel_booking(booking, actor=None, reason='', now=None) -> HybridBooking:
        """
        Отменить бронь. Родитель: не позднее дедлайна исходного слота,
        администратор: в любое время.
        """
        reason = (reason or '').strip()
        if len(reason) > MAX_CANCELLATION_REASON:
            raise ValidationError({'reason': f'Причина отмены длиннее {MAX_CANCELLATION_REASON} символов.'})
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationError({'status': 'Бронь уже отменена.'})
        if booking.is_final:
            raise ValidationError({'status': 'Нельзя отменить проведённое занятие.'})

        lesson = booking.lesson
        now = now or timezone.now()
        is_admin = HybridService._is_admin(actor, lesson)
        if not is_admin:
            HybridService._ensure_owner(actor, booking.student)
            pattern = HybridService.get_pattern(lesson)
            HybridService._ensure_before_deadline(lesson, pattern, booking.scheduled_date, booking.start_time, now)

        with transaction.atomic():
            booking = HybridBooking.objects.select_for_update().get(pk=booking.pk)
            if booking.is_final:
                raise ValidationError({'status': 'Бронь уже отменена или завершена.'})
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            booking.cancellation_reason = reason
            booking.save(update_fields=['status', 'cancelled_at', 'cancellation_reason', 'updated_at'])

        logger.info(f'Бронь отменена: booking={booking.id}, by_admin={is_admin}, reason="{reason}"')
        return booking

    @staticmethod
    @transaction.atomic
    def record_outcome(booking, status, now=None) -> HybridBooking:
        """
        Итог занятия по данным посещаемости: COMPLETED или NO_SHOW.

        Допускается только после окончания слота.
        """
        if status not in (BookingStatus.COMPLETED, BookingStatus.NO_SHOW):
            raise ValidationError({'status': 'Итог занятия: COMPLETED или NO_SHOW.'})
        booking = HybridBooking.objects.select_for_update().select_related('lesson__tenant').get(pk=booking.pk)
        if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise ValidationError({'status': f'Нельзя отметить бронь в статусе {booking.get_status_display()}.'})

        now = now or timezone.now()
        slot_end = HybridService.slot_start(booking.lesson, booking.scheduled_date, booking.end_time)
        if now < slot_end:
            raise ValidationError({'status': 'Занятие ещё не прошло.'})

        booking.status = status
        booking.completed_at = now
        booking.save(update_fields=['status', 'completed_at', 'updated_at'])
        logger.info(f'Итог занятия: booking={booking.id}, status={status}')
        return booking

    # ------------------------------------------------------------------
    # Открытие/закрытие бронирования
    # ------------------------------------------------------------------

    @staticmethod
    def _set_bookings_open(lesson, is_open) -> HybridPattern:
        HybridService.get_pattern(lesson)
        with transaction.atomic():
            pattern = HybridPattern.objects.select_for_update().get(lesson=lesson)
            changed = pattern.bookings_open != is_open
            pattern.bookings_open = is_open
            pattern.save(update_fields=['bookings_open', 'updated_at'])

            if changed and is_open:
                from ..tasks import notify_bookings_opened

                lesson_id = lesson.pk
                transaction.on_commit(lambda: notify_bookings_opened.delay(lesson_id))

        logger.info(f'Бронирование {"открыто" if is_open else "закрыто"}: lesson={lesson.id}, changed={changed}')
        return pattern

    @staticmethod
    def open_bookings(lesson) -> HybridPattern:
        return HybridService._set_bookings_open(lesson, True)

    @staticmethod
    def close_bookings(lesson) -> HybridPattern:
        """Закрывает приём новых броней; существующие брони не трогаются."""
        return HybridService._set_bookings_open(lesson, False)

    # ------------------------------------------------------------------
    # Выборки и статистика
    # ------------------------------------------------------------------

    @staticmethod
    def get_unbooked_students(lesson, week_number):
        """Записанные ученики без действующей брони на неделю."""
        pattern = HybridService.get_pattern(lesson)
        HybridService._ensure_individual_week(pattern, week_number)

        booked = HybridBooking.objects.active().filter(
            lesson=lesson, week_number=week_number,
        ).values('student_id')
        return list(
            Student.objects.filter(enrollments__lesson=lesson, enrollments__is_active=True)
            .exclude(pk__in=booked)
            .select_related('parent')
            .order_by('last_name', 'first_name')
        )

    @staticmethod
    def lesson_bookings(lesson, week_number=None, status=None):
        qs = HybridBooking.objects.filter(lesson=lesson).select_related('student', 'parent')
        if week_number is not None:
            qs = qs.filter(week_number=week_number)
        if status:
            qs = qs.filter(status=status)
        return qs.order_by('week_number', 'start_time')

    @staticmethod
    def parent_bookings(parent, tenant):
        return (
            HybridBooking.objects.filter(student__parent=parent, lesson__tenant=tenant)
            .select_related('lesson', 'student')
            .order_by('scheduled_date', 'start_time')
        )

    @staticmethod
    def get_booking_stats(lesson, week_number=None):
        """
        Сводка по броням урока (по неделе или по всем индивидуальным неделям).

        booked = PENDING + CONFIRMED + COMPLETED; ожидаемое количество:
        записанные ученики × число индивидуальных недель.
        """
        pattern = HybridService.get_pattern(lesson)
        if week_number is not None:
            HybridService._ensure_individual_week(pattern, week_number)

        total_students = Enrollment.objects.active().filter(lesson=lesson).count()
        qs = HybridBooking.objects.filter(lesson=lesson)
        if week_number is not None:
            qs = qs.filter(week_number=week_number)
        counts = dict(qs.order_by().values_list('status').annotate(n=Count('id')))

        weeks = 1 if week_number is not None else len(pattern.individual_weeks)
        expected = total_students * weeks
        booked = sum(counts.get(s, 0) for s in (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED))
        return {
            'total_students': total_students,
            'expected_bookings': expected,
            'booked_count': booked,
            'unbooked_count': max(0, expected - booked),
            'completion_rate': round(booked / expected * 100, 2) if expected else 0.0,
            'pending_bookings': counts.get(BookingStatus.PENDING, 0),
            'confirmed_bookings': counts.get(BookingStatus.CONFIRMED, 0),
            'completed_bookings': counts.get(BookingStatus.COMPLETED, 0),
            'cancelled_bookings': counts.get(BookingStatus.CANCELLED, 0),
            'no_show_bookings': counts.get(BookingStatus.NO_SHOW, 0),
        }
