"""
Записи учеников на уроки.

Запись и массовая запись проверяют вместимость под блокировкой урока,
поэтому два параллельных запроса не займут одно последнее место.
Отписка не удаляет запись, а снимает флаг is_active.
"""
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import AlreadyEnrolled, NotFound, ValidationError
from ..models import Enrollment, Student
from .capacity_service import CapacityService

logger = logging.getLogger(__name__)


class EnrollmentService:

    @staticmethod
    def active_enrollments(lesson):
        return (
            Enrollment.objects.active()
            .filter(lesson=lesson)
            .select_related('student', 'student__parent')
            .order_by('student__last_name', 'student__first_name')
        )

    @staticmethod
    def _ensure_lesson_open(lesson):
        if not lesson.is_active:
            raise ValidationError({'lesson': 'Урок деактивирован, запись невозможна.'})

    @staticmethod
    @transaction.atomic
    def enroll_student(lesson, student) -> Enrollment:
        """
        Записать ученика на урок.

        Args:
            lesson: Урок
            student: Ученик той же школы

        Returns:
            Enrollment: новая или повторно активированная запись

        Raises:
            AlreadyEnrolled: ученик уже записан
            CapacityExceeded: мест нет
            NotFound: ученик из другой школы или неактивен
        """
        lesson = CapacityService.lock_lesson(lesson)
        EnrollmentService._ensure_lesson_open(lesson)
        if student.tenant_id != lesson.tenant_id or not student.is_active:
            raise NotFound('Ученик не найден.')

        enrollment = Enrollment.objects.filter(lesson=lesson, student=student).first()
        if enrollment is not None and enrollment.is_active:
            raise AlreadyEnrolled()

        CapacityService.ensure_capacity(lesson, seats=1)

        if enrollment is not None:
            enrollment.is_active = True
            enrollment.enrolled_at = timezone.now()
            enrollment.unenrolled_at = None
            enrollment.save(update_fields=['is_active', 'enrolled_at', 'unenrolled_at'])
        else:
            try:
                with transaction.atomic():
                    enrollment = Enrollment.objects.create(lesson=lesson, student=student)
            except IntegrityError:
                raise AlreadyEnrolled()

        logger.info(f'Запись на урок: lesson={lesson.id}, student={student.id}')
        return enrollment

    @staticmethod
    @transaction.atomic
    def bulk_enroll(lesson, student_ids):
        """
        Массовая запись: либо все, либо никто.

        Уже записанные ученики пропускаются. Вместимость проверяется один раз
        на весь остаток пакета.

        Returns:
            list[Enrollment]: созданные и повторно активированные записи

        Raises:
            ValidationError: пустой список или ученики не найдены в школе
            CapacityExceeded: пакет не помещается целиком
        """
        ids = list(dict.fromkeys(student_ids or []))
        if not ids:
            raise ValidationError({'student_ids': 'Список учеников пуст.'})

        lesson = CapacityService.lock_lesson(lesson)
        EnrollmentService._ensure_lesson_open(lesson)

        students = Student.objects.for_tenant(lesson.tenant).filter(pk__in=ids, is_active=True).in_bulk()
        missing = [student_id for student_id in ids if student_id not in students]
        if missing:
            raise ValidationError({'student_ids': f'Ученики не найдены: {", ".join(map(str, missing))}'})

        existing = {e.student_id: e for e in Enrollment.objects.filter(lesson=lesson, student_id__in=ids)}
        to_enroll = [student_id for student_id in ids if not (student_id in existing and existing[student_id].is_active)]
        if not to_enroll:
            return []

        CapacityService.ensure_capacity(lesson, seats=len(to_enroll))

        now = timezone.now()
        result = []
        new_rows = []
        for student_id in to_enroll:
            enrollment = existing.get(student_id)
            if enrollment is None:
                new_rows.append(Enrollment(lesson=lesson, student=students[student_id], enrolled_at=now))
                continue
            enrollment.is_active = True
            enrollment.enrolled_at = now
            enrollment.unenrolled_at = None
            enrollment.save(update_fields=['is_active', 'enrolled_at', 'unenrolled_at'])
            result.append(enrollment)

        try:
            with transaction.atomic():
                result.extend(Enrollment.objects.bulk_create(new_rows))
        except IntegrityError:
            raise AlreadyEnrolled('Часть учеников записана параллельным запросом, повторите операцию.')

        logger.info(f'Массовая запись на урок: lesson={lesson.id}, students={to_enroll}')
        return result

    @staticmethod
    @transaction.atomic
    def unenroll_student(lesson, student) -> Enrollment:
        """
        Raises:
            NotFound: активной записи нет
        """
        enrollment = (
            Enrollment.objects.select_for_update()
            .filter(lesson=lesson, student=student, is_active=True)
            .first()
        )
        if enrollment is None:
            raise NotFound('Ученик не записан на этот урок.')

        enrollment.is_active = False
        enrollment.unenrolled_at = timezone.now()
        enrollment.save(update_fields=['is_active', 'unenrolled_at'])

        logger.info(f'Отписка от урока: lesson={lesson.id}, student={student.id}')
        return enrollment
