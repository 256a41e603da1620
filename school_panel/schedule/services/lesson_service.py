"""
Создание, изменение, перенос и деактивация уроков.

Перенос выполняется в два шага: check_reschedule_conflicts строит отчёт
без изменений в БД, reschedule_lesson применяет перенос. Если отчёт
содержит конфликты или затронутых учеников, перенос требует confirm=True.
"""
from dataclasses import asdict, dataclass, field
from typing import List, Optional
import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from tenants.models import TenantMembership

from ..exceptions import RescheduleConfirmationRequired, ValidationError
from ..lesson_types import Hybrid
from ..models import BookingStatus, Enrollment, HybridBooking, Lesson, LessonType, ResourceType, Room
from ..time_utils import end_time, format_time, minutes_between, overlaps, parse_time
from .availability_service import check_availability, ensure_available
from .capacity_service import CapacityService
from .hybrid_service import HybridService

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ('room', 'teacher', 'day_of_week', 'start_time', 'end_time', 'duration_mins')
UPDATABLE_FIELDS = SCHEDULE_FIELDS + ('name', 'description', 'instrument', 'max_students', 'is_recurring')


@dataclass(frozen=True)
class ConflictInfo:
    lesson_id: int
    lesson_name: str
    time: str

    @classmethod
    def from_lesson(cls, lesson):
        if lesson is None:
            return None
        return cls(lesson_id=lesson.pk, lesson_name=lesson.name, time=lesson.time_range)


@dataclass(frozen=True)
class AffectedEnrollment:
    student_id: int
    student_name: str
    has_other_lessons: bool


@dataclass(frozen=True)
class AffectedBooking:
    booking_id: int
    student_id: int
    student_name: str
    week_number: int
    date: str
    start_time: str


@dataclass(frozen=True)
class RescheduleReport:
    has_conflicts: bool
    teacher_conflict: Optional[ConflictInfo] = None
    room_conflict: Optional[ConflictInfo] = None
    affected_students: int = 0
    affected_enrollments: List[AffectedEnrollment] = field(default_factory=list)
    # Будущие брони гибридного урока: после переноса они отменяются
    affected_bookings: List[AffectedBooking] = field(default_factory=list)

    @property
    def requires_confirmation(self):
        return self.has_conflicts or self.affected_students > 0 or bool(self.affected_bookings)

    def as_dict(self):
        return asdict(self)


def resolve_schedule(start_time, end=None, duration_mins=None):
    """
    Приводит (начало, окончание, длительность) к согласованной тройке.

    Достаточно указать окончание или длительность; если указаны оба,
    они должны совпадать.
    """
    start = parse_time(start_time)
    if duration_mins is not None:
        finish = end_time(start, duration_mins)
        if end is not None and parse_time(end) != finish:
            raise ValidationError({'end_time': 'Время окончания не совпадает с длительностью урока.'})
        return start, finish, duration_mins
    if end is None:
        raise ValidationError({'end_time': 'Укажите время окончания или длительность.'})
    finish = parse_time(end)
    duration = minutes_between(start, finish)
    if duration <= 0:
        raise ValidationError({'end_time': 'Время окончания должно быть позже времени начала.'})
    return start, finish, duration


class LessonService:

    @staticmethod
    def validate_references(tenant, term=None, teacher=None, room=None, instrument=None):
        """Термин, преподаватель, кабинет и инструмент должны принадлежать школе."""
        errors = {}
        if term is not None and term.tenant_id != tenant.pk:
            errors['term'] = 'Семестр не найден.'
        if room is not None and (room.tenant_id != tenant.pk or not room.is_active):
            errors['room'] = 'Кабинет не найден или неактивен.'
        if instrument is not None and instrument.tenant_id != tenant.pk:
            errors['instrument'] = 'Инструмент не найден.'
        if teacher is not None:
            is_member = TenantMembership.objects.filter(
                tenant=tenant, user=teacher, is_active=True,
                role=TenantMembership.TenantRole.TEACHER,
            ).exists()
            if not is_member:
                errors['teacher'] = 'Преподаватель не найден в школе.'
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _lock_resources(room_id, teacher_id):
        # Сериализует параллельное создание уроков на тех же ресурсах
        Room.objects.select_for_update().filter(pk=room_id).exists()
        get_user_model().objects.select_for_update().filter(pk=teacher_id).exists()

    @staticmethod
    def create_lesson(tenant, kind, *, term, teacher, room, name, day_of_week, start_time,
                      end_time=None, duration_mins=None, instrument=None, description='',
                      is_recurring=True) -> Lesson:
        """
        Создать урок (и гибридный шаблон, если kind: Hybrid).

        Args:
            tenant: Школа
            kind: вариант из lesson_types (Individual, Group, Band, Hybrid)

        Returns:
            Lesson: созданный урок

        Raises:
            ValidationError: некорректные данные или шаблон
            ScheduleConflict: кабинет или преподаватель заняты
        """
        LessonService.validate_references(tenant, term=term, teacher=teacher, room=room, instrument=instrument)
        start, finish, duration = resolve_schedule(start_time, end_time, duration_mins)

        with transaction.atomic():
            LessonService._lock_resources(room.pk, teacher.pk)
            ensure_available(tenant, room.pk, teacher.pk, day_of_week, start, finish)

            lesson = Lesson.objects.create(
                tenant=tenant,
                lesson_type=kind.lesson_type,
                term=term,
                teacher=teacher,
                room=room,
                instrument=instrument,
                name=name,
                description=description,
                day_of_week=day_of_week,
                start_time=start,
                end_time=finish,
                duration_mins=duration,
                max_students=kind.max_students,
                is_recurring=is_recurring,
            )
            if isinstance(kind, Hybrid):
                HybridService.save_pattern(lesson, kind.pattern)

        logger.info(
            f'Создан урок: lesson={lesson.id}, type={lesson.lesson_type}, '
            f'day={day_of_week}, time={lesson.time_range}, room={room.id}, teacher={teacher.id}'
        )
        return lesson

    @staticmethod
    @transaction.atomic
    def update_lesson(lesson, hybrid_pattern=None, **changes) -> Lesson:
        """
        Изменить урок. При смене кабинета/преподавателя/времени занятость проверяется заново.

        Тип урока не меняется: для смены типа создаётся новый урок.
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError({field_name: 'Поле нельзя изменить.' for field_name in sorted(unknown)})

        lesson = CapacityService.lock_lesson(lesson)
        if not lesson.is_active:
            raise ValidationError({'lesson': 'Урок деактивирован.'})
        if hybrid_pattern is not None and not lesson.is_hybrid:
            raise ValidationError({'hybrid_pattern': 'Шаблон задаётся только для гибридного урока.'})

        LessonService.validate_references(
            lesson.tenant,
            teacher=changes.get('teacher'),
            room=changes.get('room'),
            instrument=changes.get('instrument'),
        )

        if 'max_students' in changes:
            if changes['max_students'] is None or changes['max_students'] < 1:
                raise ValidationError({'max_students': 'Должно быть хотя бы одно место.'})
            if lesson.lesson_type == LessonType.INDIVIDUAL and changes['max_students'] != 1:
                raise ValidationError({'max_students': 'Индивидуальный урок рассчитан ровно на одного ученика.'})
            current = CapacityService.check_capacity(lesson).current
            if changes['max_students'] < current:
                raise ValidationError({'max_students': f'Уже записано {current} учеников.'})

        schedule_changed = any(name in changes for name in SCHEDULE_FIELDS)
        if any(name in changes for name in ('start_time', 'end_time', 'duration_mins')):
            start = changes.get('start_time', lesson.start_time)
            if 'duration_mins' in changes:
                start, finish, duration = resolve_schedule(start, changes.get('end_time'), changes['duration_mins'])
            elif 'end_time' in changes:
                start, finish, duration = resolve_schedule(start, changes['end_time'])
            else:
                start, finish, duration = resolve_schedule(start, duration_mins=lesson.duration_mins)
            changes.update(start_time=start, end_time=finish, duration_mins=duration)

        for name, value in changes.items():
            setattr(lesson, name, value)

        if schedule_changed:
            ensure_available(
                lesson.tenant, lesson.room_id, lesson.teacher_id, lesson.day_of_week,
                lesson.start_time, lesson.end_time, exclude_lesson_id=lesson.pk,
            )

        lesson.save()
        if hybrid_pattern is not None:
            HybridService.save_pattern(lesson, hybrid_pattern)
        elif lesson.is_hybrid and schedule_changed:
            # Слоты нарезаются из блока урока: шаблон должен оставаться валидным
            HybridService.validate_pattern_for_lesson(lesson, lesson.hybrid_pattern)

        logger.info(f'Изменён урок: lesson={lesson.id}, fields={sorted(changes)}')
        return lesson

    @staticmethod
    def check_reschedule_conflicts(lesson, day_of_week, start_time, end_time) -> RescheduleReport:
        """
        Шаг 1 переноса: отчёт о конфликтах для нового времени. Ничего не изменяет.

        Returns:
            RescheduleReport: конфликты по преподавателю и кабинету, затронутые ученики и брони

        Raises:
            ValidationError: новое время несовместимо с гибридным шаблоном урока
        """
        start, finish, duration = resolve_schedule(start_time, end_time)
        if lesson.is_hybrid:
            HybridService.validate_pattern(
                lesson.term, HybridService.get_pattern(lesson),
                day_of_week=day_of_week, lesson_duration=duration,
            )
        teacher = check_availability(
            lesson.tenant, ResourceType.TEACHER, lesson.teacher_id, day_of_week, start, finish,
            exclude_lesson_id=lesson.pk,
        )
        room = check_availability(
            lesson.tenant, ResourceType.ROOM, lesson.room_id, day_of_week, start, finish,
            exclude_lesson_id=lesson.pk,
        )

        unchanged = (
            day_of_week == lesson.day_of_week
            and start == parse_time(lesson.start_time)
            and finish == parse_time(lesson.end_time)
        )
        affected = []
        bookings = []
        if not unchanged:
            bookings = [
                AffectedBooking(
                    booking_id=booking.pk,
                    student_id=booking.student_id,
                    student_name=booking.student.full_name,
                    week_number=booking.week_number,
                    date=booking.scheduled_date.isoformat(),
                    start_time=format_time(booking.start_time),
                )
                for booking in LessonService._upcoming_bookings(lesson).select_related('student')
            ]
            enrollments = (
                Enrollment.objects.active()
                .filter(lesson=lesson)
                .select_related('student')
                .order_by('student__last_name', 'student__first_name')
            )
            for enrollment in enrollments:
                affected.append(AffectedEnrollment(
                    student_id=enrollment.student_id,
                    student_name=enrollment.student.full_name,
                    has_other_lessons=LessonService._student_busy(
                        enrollment.student_id, lesson, day_of_week, start, finish,
                    ),
                ))

        return RescheduleReport(
            has_conflicts=not (teacher.available and room.available),
            teacher_conflict=ConflictInfo.from_lesson(teacher.conflicting_lesson),
            room_conflict=ConflictInfo.from_lesson(room.conflicting_lesson),
            affected_students=len(affected),
            affected_enrollments=affected,
            affected_bookings=bookings,
        )

    @staticmethod
    def _upcoming_bookings(lesson):
        """Действующие брони урока на сегодня и позже (по дате школы)."""
        today = timezone.localdate(timezone=lesson.tenant.tzinfo)
        return HybridBooking.objects.filter(
            lesson=lesson,
            status__in=[BookingStatus.PENDING, BookingStatus.CONFIRMED],
            scheduled_date__gte=today,
        ).order_by('scheduled_date', 'start_time')

    @staticmethod
    def _student_busy(student_id, lesson, day_of_week, start, finish):
        """Есть ли у ученика другой урок, пересекающийся с новым временем."""
        other_lessons = Lesson.objects.filter(
            enrollments__student_id=student_id,
            enrollments__is_active=True,
            is_active=True,
            day_of_week=day_of_week,
        ).exclude(pk=lesson.pk)
        return any(overlaps(start, finish, other.start_time, other.end_time) for other in other_lessons)

    @staticmethod
    def reschedule_lesson(lesson, day_of_week, start_time, end_time, confirm=False,
                          notify_parents=False, reason=''):
        """
        Шаг 2 переноса: применить новое время.

        Конфликты не блокируют перенос, если администратор подтвердил его (confirm=True).
        Будущие брони гибридного урока при переносе отменяются.

        Returns:
            tuple: (Lesson, RescheduleReport)

        Raises:
            ValidationError: новое время несовместимо с гибридным шаблоном (confirm не помогает)
            RescheduleConfirmationRequired: есть конфликты, затронутые ученики или брони, а confirm=False
        """
        with transaction.atomic():
            lesson = CapacityService.lock_lesson(lesson)
            if not lesson.is_active:
                raise ValidationError({'lesson': 'Урок деактивирован.'})

            report = LessonService.check_reschedule_conflicts(lesson, day_of_week, start_time, end_time)
            if report.requires_confirmation and not confirm:
                raise RescheduleConfirmationRequired(report)

            old_day = lesson.day_of_week
            old_start, old_end = format_time(lesson.start_time), format_time(lesson.end_time)

            start, finish, duration = resolve_schedule(start_time, end_time)
            lesson.day_of_week = day_of_week
            lesson.start_time = start
            lesson.end_time = finish
            lesson.duration_mins = duration
            lesson.save(update_fields=['day_of_week', 'start_time', 'end_time', 'duration_mins', 'updated_at'])

            if report.affected_bookings:
                # Сетка слотов построена заново: старые брони на ней не лежат
                HybridBooking.objects.filter(
                    pk__in=[item.booking_id for item in report.affected_bookings],
                ).update(
                    status=BookingStatus.CANCELLED,
                    cancelled_at=timezone.now(),
                    cancellation_reason=f'Урок перенесён. {reason}'.strip(),
                )

            if report.has_conflicts:
                logger.warning(
                    f'Перенос урока с конфликтом подтверждён: lesson={lesson.id}, '
                    f'teacher_conflict={report.teacher_conflict}, room_conflict={report.room_conflict}'
                )

            if notify_parents and report.affected_students:
                from ..tasks import notify_lesson_rescheduled

                lesson_id = lesson.pk
                transaction.on_commit(lambda: notify_lesson_rescheduled.delay(
                    lesson_id, old_day, old_start, old_end, reason,
                ))

        logger.info(
            f'Урок перенесён: lesson={lesson.id}, {old_day} {old_start}-{old_end} → '
            f'{day_of_week} {lesson.time_range}, affected={report.affected_students}, '
            f'bookings_cancelled={len(report.affected_bookings)}'
        )
        return lesson, report

    @staticmethod
    @transaction.atomic
    def deactivate_lesson(lesson) -> Lesson:
        """Мягкое удаление: урок и его записи деактивируются, история сохраняется."""
        lesson = CapacityService.lock_lesson(lesson)
        if not lesson.is_active:
            return lesson

        lesson.is_active = False
        lesson.save(update_fields=['is_active', 'updated_at'])
        closed = Enrollment.objects.active().filter(lesson=lesson).update(
            is_active=False, unenrolled_at=timezone.now(),
        )

        logger.info(f'Урок деактивирован: lesson={lesson.id}, enrollments_closed={closed}')
        return lesson

