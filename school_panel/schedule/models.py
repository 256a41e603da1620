from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from tenants.mixins import TenantModelMixin

from . import time_utils


def scheduling_setting(name):
    return settings.SCHOOL_PANEL_SCHEDULING[name]


class LessonType(models.TextChoices):
    INDIVIDUAL = 'INDIVIDUAL', _('Индивидуальный')
    GROUP = 'GROUP', _('Групповой')
    BAND = 'BAND', _('Ансамбль')
    HYBRID = 'HYBRID', _('Гибридный')


class ResourceType(models.TextChoices):
    ROOM = 'ROOM', _('Кабинет')
    TEACHER = 'TEACHER', _('Преподаватель')


class Term(TenantModelMixin):
    """Учебный семестр. Недели нумеруются с 1 от start_date."""

    name = models.CharField(_('название'), max_length=100)
    start_date = models.DateField(_('дата начала'))
    end_date = models.DateField(_('дата окончания'))
    is_active = models.BooleanField(_('активен'), default=True)

    class Meta:
        verbose_name = _('семестр')
        verbose_name_plural = _('семестры')
        ordering = ['-start_date']

    def __str__(self):
        return f'{self.name} ({self.start_date:%d.%m.%Y} - {self.end_date:%d.%m.%Y})'

    @property
    def week_count(self):
        return time_utils.term_week_count(self.start_date, self.end_date)

    def clean(self):
        if self.end_date and self.start_date and self.end_date < self.start_date:
            raise ValidationError(_('Дата окончания должна быть позже даты начала'))
        if self.start_date and self.end_date and self.week_count > scheduling_setting('MAX_TERM_WEEKS'):
            raise ValidationError(_('Семестр длиннее допустимого количества недель'))


class Room(TenantModelMixin):
    name = models.CharField(_('название'), max_length=100)
    capacity = models.PositiveIntegerField(_('вместимость'), default=10)
    is_active = models.BooleanField(_('активен'), default=True)

    class Meta:
        verbose_name = _('кабинет')
        verbose_name_plural = _('кабинеты')
        ordering = ['name']

    def __str__(self):
        return self.name


class Instrument(TenantModelMixin):
    name = models.CharField(_('название'), max_length=100)

    class Meta:
        verbose_name = _('инструмент')
        verbose_name_plural = _('инструменты')
        ordering = ['name']

    def __str__(self):
        return self.name


class Student(TenantModelMixin):
    """Ученик школы. Родитель: пользователь, который бронирует за него занятия."""

    first_name = models.CharField(_('имя'), max_length=100)
    last_name = models.CharField(_('фамилия'), max_length=100)
    parent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='children',
        limit_choices_to={'role': 'parent'},
        verbose_name=_('родитель'),
    )
    is_active = models.BooleanField(_('активен'), default=True)
    created_at = models.DateTimeField(_('создан'), auto_now_add=True)

    class Meta:
        verbose_name = _('ученик')
        verbose_name_plural = _('ученики')
        ordering = ['last_name', 'first_name']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()


class Lesson(TenantModelMixin):
    """
    Регулярный еженедельный урок.

    Не удаляется физически: is_active=False сохраняет ссылки из посещаемости и счетов.
    """

    DAY_OF_WEEK_CHOICES = time_utils.DAY_OF_WEEK_CHOICES

    lesson_type = models.CharField(
        _('тип урока'),
        max_length=20,
        choices=LessonType.choices,
        default=LessonType.GROUP,
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.PROTECT,
        related_name='lessons',
        verbose_name=_('семестр'),
    )
    teacher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='taught_lessons',
        limit_choices_to={'role': 'teacher'},
        verbose_name=_('преподаватель'),
    )
    room = models.ForeignKey(
        Room,
        on_delete=models.PROTECT,
        related_name='lessons',
        verbose_name=_('кабинет'),
    )
    instrument = models.ForeignKey(
        Instrument,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='lessons',
        verbose_name=_('инструмент'),
    )
    name = models.CharField(_('название'), max_length=200)
    description = models.TextField(_('описание'), blank=True, default='')

    day_of_week = models.PositiveSmallIntegerField(
        _('день недели'),
        choices=DAY_OF_WEEK_CHOICES,
        validators=[MaxValueValidator(6)],
    )
    start_time = models.TimeField(_('время начала'))
    end_time = models.TimeField(_('время окончания'))
    duration_mins = models.PositiveIntegerField(_('длительность (мин)'), validators=[MinValueValidator(1)])

    max_students = models.PositiveIntegerField(
        _('максимум учеников'),
        default=1,
        validators=[MinValueValidator(1)],
    )
    is_recurring = models.BooleanField(_('повторяется еженедельно'), default=True)
    is_active = models.BooleanField(_('активен'), default=True)

    created_at = models.DateTimeField(_('создан'), auto_now_add=True)
    updated_at = models.DateTimeField(_('обновлен'), auto_now=True)

    class Meta:
        verbose_name = _('урок')
        verbose_name_plural = _('уроки')
        ordering = ['day_of_week', 'start_time']
        indexes = [
            models.Index(fields=['room', 'day_of_week', 'is_active'], name='lesson_room_day_idx'),
            models.Index(fields=['teacher', 'day_of_week', 'is_active'], name='lesson_teacher_day_idx'),
        ]

    def __str__(self):
        return f'{self.name} ({time_utils.day_name(self.day_of_week)} {self.time_range})'

    @property
    def time_range(self):
        return f'{time_utils.format_time(self.start_time)} - {time_utils.format_time(self.end_time)}'

    @property
    def is_hybrid(self):
        return self.lesson_type == LessonType.HYBRID

    def clean(self):
        if self.start_time and self.end_time and self.duration_mins:
            if time_utils.minutes_between(self.start_time, self.end_time) != self.duration_mins:
                raise ValidationError(_('Время окончания должно равняться началу плюс длительность'))
        if self.lesson_type == LessonType.INDIVIDUAL and self.max_students != 1:
            raise ValidationError(_('Индивидуальный урок рассчитан ровно на одного ученика'))

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)


class EnrollmentQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)


class Enrollment(models.Model):
    """Запись ученика на урок. При отписке не удаляется, а деактивируется."""

    lesson = models.ForeignKey(
        Lesson,
        on_delete=models.CASCADE,
        related_name='enrollments',
        verbose_name=_('урок'),
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='enrollments',
        verbose_name=_('ученик'),
    )
    enrolled_at = models.DateTimeField(_('записан'), default=timezone.now)
    unenrolled_at = models.DateTimeField(_('отписан'), null=True, blank=True)
    is_active = models.BooleanField(_('активна'), default=True)

    objects = EnrollmentQuerySet.as_manager()

    class Meta:
        verbose_name = _('запись на урок')
        verbose_name_plural = _('записи на уроки')
        unique_together = ['lesson', 'student']
        indexes = [
            models.Index(fields=['lesson', 'is_active'], name='enrollment_lesson_active_idx'),
        ]

    def __str__(self):
        return f'{self.student} → {self.lesson.name}'


class HybridPattern(models.Model):
    """
    Шаблон гибридного урока на семестр: какие недели групповые, какие индивидуальные.

    bookings_open: единственный переключатель, по которому решается,
    можно ли сейчас бронировать индивидуальные слоты.
    """

    class PatternType(models.TextChoices):
        ALTERNATING = 'ALTERNATING', _('Чередование')
        CUSTOM = 'CUSTOM', _('Произвольный')

    lesson = models.OneToOneField(
        Lesson,
        on_delete=models.CASCADE,
        related_name='hybrid_pattern',
        verbose_name=_('урок'),
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.PROTECT,
        related_name='hybrid_patterns',
        verbose_name=_('семестр'),
    )
    pattern_type = models.CharField(
        _('тип шаблона'),
        max_length=20,
        choices=PatternType.choices,
        default=PatternType.ALTERNATING,
    )
    group_weeks = models.JSONField(_('групповые недели'), default=list, blank=True)
    individual_weeks = models.JSONField(_('индивидуальные недели'), default=list, blank=True)
    individual_slot_duration = models.PositiveIntegerField(
        _('длительность слота (мин)'),
        default=30,
        validators=[MinValueValidator(1)],
    )
    booking_deadline_hours = models.PositiveIntegerField(_('дедлайн бронирования (ч)'), default=24)
    bookings_open = models.BooleanField(_('бронирование открыто'), default=False)

    created_at = models.DateTimeField(_('создан'), auto_now_add=True)
    updated_at = models.DateTimeField(_('обновлен'), auto_now=True)

    class Meta:
        verbose_name = _('гибридный шаблон')
        verbose_name_plural = _('гибридные шаблоны')
        constraints = [
            models.UniqueConstraint(fields=['lesson', 'term'], name='uniq_hybrid_pattern_lesson_term'),
        ]

    def __str__(self):
        return f'Шаблон: {self.lesson.name} ({self.term.name})'

    def is_individual_week(self, week_number):
        return week_number in self.individual_weeks

    def is_group_week(self, week_number):
        return week_number in self.group_weeks


class BookingStatus(models.TextChoices):
    PENDING = 'PENDING', _('Ожидает')
    CONFIRMED = 'CONFIRMED', _('Подтверждено')
    CANCELLED = 'CANCELLED', _('Отменено')
    COMPLETED = 'COMPLETED', _('Проведено')
    NO_SHOW = 'NO_SHOW', _('Неявка')


class HybridBookingQuerySet(models.QuerySet):
    def active(self):
        """Брони, занимающие слот (всё, кроме отменённых)."""
        return self.exclude(status=BookingStatus.CANCELLED)


class HybridBooking(models.Model):
    """Бронь индивидуального слота ученика в индивидуальную неделю гибридного урока."""

    FINAL_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW)

    lesson = models.ForeignKey(
        Lesson,
        on_delete=models.CASCADE,
        related_name='hybrid_bookings',
        verbose_name=_('урок'),
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='hybrid_bookings',
        verbose_name=_('ученик'),
    )
    parent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='hybrid_bookings',
        verbose_name=_('кто забронировал'),
    )
    week_number = models.PositiveSmallIntegerField(_('номер недели'), validators=[MinValueValidator(1)])
    scheduled_date = models.DateField(_('дата'))
    start_time = models.TimeField(_('время начала'))
    end_time = models.TimeField(_('время окончания'))
    status = models.CharField(
        _('статус'),
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
    )
    booked_at = models.DateTimeField(_('забронировано'), auto_now_add=True)
    confirmed_at = models.DateTimeField(_('подтверждено'), null=True, blank=True)
    cancelled_at = models.DateTimeField(_('отменено'), null=True, blank=True)
    completed_at = models.DateTimeField(_('завершено'), null=True, blank=True)
    cancellation_reason = models.CharField(_('причина отмены'), max_length=500, blank=True, default='')
    updated_at = models.DateTimeField(_('обновлено'), auto_now=True)

    objects = HybridBookingQuerySet.as_manager()

    class Meta:
        verbose_name = _('бронь индивидуального слота')
        verbose_name_plural = _('брони индивидуальных слотов')
        ordering = ['scheduled_date', 'start_time']
        constraints = [
            models.UniqueConstraint(
                fields=['lesson', 'student', 'week_number'],
                condition=~Q(status='CANCELLED'),
                name='uniq_active_booking_student_week',
            ),
            models.UniqueConstraint(
                fields=['lesson', 'week_number', 'start_time'],
                condition=~Q(status='CANCELLED'),
                name='uniq_active_booking_slot',
            ),
        ]
        indexes = [
            models.Index(fields=['lesson', 'week_number', 'status'], name='booking_lesson_week_idx'),
            models.Index(fields=['scheduled_date'], name='booking_date_idx'),
        ]

    def __str__(self):
        return f'{self.student} - {self.lesson.name}, неделя {self.week_number} {self.start_time:%H:%M}'

    @property
    def is_final(self):
        return self.status in self.FINAL_STATUSES


class BookingReminderLog(models.Model):
    """Лог отправленных напоминаний о бронировании (для избежания дублей)"""

    lesson = models.ForeignKey(
        Lesson,
        on_delete=models.CASCADE,
        related_name='reminder_logs',
        verbose_name=_('урок'),
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='reminder_logs',
        verbose_name=_('ученик'),
    )
    week_number = models.PositiveSmallIntegerField(_('номер недели'))
    sent_at = models.DateTimeField(_('отправлено'), auto_now_add=True)
    error_message = models.TextField(_('ошибка'), blank=True, default='')

    class Meta:
        verbose_name = _('лог напоминания')
        verbose_name_plural = _('логи напоминаний')
        unique_together = ['lesson', 'student', 'week_number']

    def __str__(self):
        return f'Напоминание: {self.student} / {self.lesson.name} / неделя {self.week_number}'
