import logging

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from tenants.mixins import TenantViewSetMixin

from .lesson_types import PatternDraft
from .models import HybridBooking, Lesson, Room, Student, Term
from .permissions import IsSchoolAdmin, IsSchoolAdminOrReadOnly, IsSchoolStaff, IsTenantMember, is_school_admin
from .serializers import (
    AvailabilityQuerySerializer,
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingOutcomeSerializer,
    BookingRescheduleSerializer,
    BulkEnrollSerializer,
    CalendarQuerySerializer,
    EnrollmentSerializer,
    EnrollSerializer,
    HybridBookingSerializer,
    HybridPatternSerializer,
    LessonSerializer,
    LessonWriteSerializer,
    RescheduleSerializer,
    RoomSerializer,
    StudentBriefSerializer,
    TermSerializer,
    WeekQuerySerializer,
)
from .services.availability_service import check_availability
from .services.calendar_service import get_calendar_events
from .services.capacity_service import CapacityService
from .services.enrollment_service import EnrollmentService
from .services.hybrid_service import HybridService
from .services.lesson_service import LessonService
from .services.reminder_service import ReminderService

logger = logging.getLogger(__name__)


def _query(serializer_class, request):
    serializer = serializer_class(data=request.query_params)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _payload(serializer_class, request):
    serializer = serializer_class(data=request.data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class TermViewSet(TenantViewSetMixin, viewsets.ModelViewSet):
    queryset = Term.objects.all()
    serializer_class = TermSerializer
    permission_classes = [IsSchoolAdminOrReadOnly]


class RoomViewSet(TenantViewSetMixin, viewsets.ModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer
    permission_classes = [IsSchoolAdminOrReadOnly]


class StudentViewSet(TenantViewSetMixin, viewsets.ModelViewSet):
    """Ученики школы. Родитель видит только своих детей."""
    queryset = Student.objects.select_related('parent')
    serializer_class = StudentBriefSerializer
    permission_classes = [IsSchoolAdminOrReadOnly]

    def get_queryset(self):
        qs = super().get_queryset().filter(is_active=True)
        if not is_school_admin(self.request.user, self.request.tenant):
            qs = qs.filter(parent=self.request.user)
        return qs


class LessonViewSet(TenantViewSetMixin, viewsets.ModelViewSet):
    """
    Уроки школы.

    Создание и изменение идут через LessonService (проверка занятости),
    удаление: мягкая деактивация.
    """
    queryset = Lesson.objects.select_related('teacher', 'room', 'term', 'instrument')
    serializer_class = LessonSerializer
    http_method_names = ['get', 'post', 'patch', 'delete', 'head', 'options']

    ADMIN_ACTIONS = {
        'create', 'partial_update', 'destroy', 'enroll', 'bulk_enroll', 'unenroll',
        'check_reschedule', 'reschedule', 'open_bookings', 'close_bookings',
        'unbooked_students', 'send_reminders', 'booking_stats',
    }

    def get_permissions(self):
        if self.action in self.ADMIN_ACTIONS:
            return [IsSchoolAdmin()]
        return [IsSchoolAdminOrReadOnly()]

    def get_queryset(self):
        qs = super().get_queryset()
        if self.action == 'list':
            qs = qs.filter(is_active=True)
            teacher = self.request.query_params.get('teacher')
            if teacher and teacher.isdigit():
                qs = qs.filter(teacher_id=teacher)
            term = self.request.query_params.get('term')
            if term and term.isdigit():
                qs = qs.filter(term_id=term)
        return qs

    def _student(self, student_id):
        student = Student.objects.for_tenant(self.get_tenant()).filter(pk=student_id, is_active=True).first()
        if student is None:
            raise NotFound('Ученик не найден.')
        return student

    def create(self, request, *args, **kwargs):
        data = _payload(LessonWriteSerializer, request)
        lesson = LessonService.create_lesson(self.get_tenant(), data.pop('kind'), **data)
        return Response(LessonSerializer(lesson).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        lesson = self.get_object()
        serializer = LessonWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        changes = dict(serializer.validated_data)
        pattern = changes.pop('hybrid_pattern', None)
        if pattern is not None:
            pattern = PatternDraft.from_dict(pattern)
        lesson = LessonService.update_lesson(lesson, hybrid_pattern=pattern, **changes)
        return Response(LessonSerializer(lesson).data)

    def destroy(self, request, *args, **kwargs):
        LessonService.deactivate_lesson(self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=['get'])
    def availability(self, request):
        """Свободен ли кабинет или преподаватель в заданный интервал"""
        params = _query(AvailabilityQuerySerializer, request)
        result = check_availability(
            self.get_tenant(),
            params['resource_type'],
            params['resource_id'],
            params['day_of_week'],
            params['start_time'],
            params['end_time'],
            exclude_lesson_id=params.get('exclude_lesson_id'),
        )
        return Response(result.as_dict())

    @action(detail=False, methods=['get'])
    def calendar(self, request):
        params = _query(CalendarQuerySerializer, request)
        return Response(get_calendar_events(
            self.get_tenant(),
            params['start'],
            params['end'],
            teacher=params.get('teacher'),
            room=params.get('room'),
            limit=params.get('limit'),
        ))

    @action(detail=True, methods=['get'])
    def capacity(self, request, pk=None):
        return Response(CapacityService.check_capacity(self.get_object()).as_dict())

    @action(detail=True, methods=['get'])
    def enrollments(self, request, pk=None):
        lesson = self.get_object()
        return Response(EnrollmentSerializer(EnrollmentService.active_enrollments(lesson), many=True).data)

    @action(detail=True, methods=['post'])
    def enroll(self, request, pk=None):
        lesson = self.get_object()
        data = _payload(EnrollSerializer, request)
        enrollment = EnrollmentService.enroll_student(lesson, self._student(data['student_id']))
        return Response(EnrollmentSerializer(enrollment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='bulk-enroll')
    def bulk_enroll(self, request, pk=None):
        lesson = self.get_object()
        data = _payload(BulkEnrollSerializer, request)
        enrollments = EnrollmentService.bulk_enroll(lesson, data['student_ids'])
        return Response({
            'enrolled': EnrollmentSerializer(enrollments, many=True).data,
            'capacity': CapacityService.check_capacity(lesson).as_dict(),
        }, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def unenroll(self, request, pk=None):
        lesson = self.get_object()
        data = _payload(EnrollSerializer, request)
        enrollment = EnrollmentService.unenroll_student(lesson, self._student(data['student_id']))
        return Response(EnrollmentSerializer(enrollment).data)

    @action(detail=True, methods=['post'], url_path='check-reschedule')
    def check_reschedule(self, request, pk=None):
        """Шаг 1 переноса: отчёт о конфликтах без изменений"""
        lesson = self.get_object()
        data = _payload(RescheduleSerializer, request)
        report = LessonService.check_reschedule_conflicts(
            lesson, data['day_of_week'], data['start_time'], data['end_time'],
        )
        return Response(report.as_dict())

    @action(detail=True, methods=['post'])
    def reschedule(self, request, pk=None):
        """Шаг 2 переноса: применить новое время"""
        lesson = self.get_object()
        data = _payload(RescheduleSerializer, request)
        lesson, report = LessonService.reschedule_lesson(
            lesson,
            data['day_of_week'],
            data['start_time'],
            data['end_time'],
            confirm=data['confirm'],
            notify_parents=data['notify_parents'],
            reason=data['reason'],
        )
        return Response({'lesson': LessonSerializer(lesson).data, 'report': report.as_dict()})

    @action(detail=True, methods=['post'], url_path='open-bookings')
    def open_bookings(self, request, pk=None):
        pattern = HybridService.open_bookings(self.get_object())
        return Response(HybridPatternSerializer(pattern).data)

    @action(detail=True, methods=['post'], url_path='close-bookings')
    def close_bookings(self, request, pk=None):
        pattern = HybridService.close_bookings(self.get_object())
        return Response(HybridPatternSerializer(pattern).data)

    @action(detail=True, methods=['get'])
    def slots(self, request, pk=None):
        lesson = self.get_object()
        params = _query(WeekQuerySerializer, request)
        slots = HybridService.get_available_slots(lesson, params['week'])
        return Response([slot.as_dict() for slot in slots])

    @action(detail=True, methods=['get'])
    def bookings(self, request, pk=None):
        lesson = self.get_object()
        week = request.query_params.get('week')
        bookings = HybridService.lesson_bookings(
            lesson,
            week_number=_query(WeekQuerySerializer, request)['week'] if week else None,
            status=request.query_params.get('status'),
        )
        if not is_school_admin(request.user, self.get_tenant()):
            bookings = bookings.filter(student__parent=request.user)
        return Response(HybridBookingSerializer(bookings, many=True).data)

    @action(detail=True, methods=['get'], url_path='booking-stats')
    def booking_stats(self, request, pk=None):
        lesson = self.get_object()
        week = request.query_params.get('week')
        week_number = _query(WeekQuerySerializer, request)['week'] if week else None
        return Response(HybridService.get_booking_stats(lesson, week_number))

    @action(detail=True, methods=['get'], url_path='unbooked-students')
    def unbooked_students(self, request, pk=None):
        lesson = self.get_object()
        params = _query(WeekQuerySerializer, request)
        students = HybridService.get_unbooked_students(lesson, params['week'])
        return Response(StudentBriefSerializer(students, many=True).data)

    @action(detail=True, methods=['post'], url_path='send-reminders')
    def send_reminders(self, request, pk=None):
        lesson = self.get_object()
        data = _payload(WeekQuerySerializer, request)
        sent = ReminderService.send_booking_reminders(lesson, data['week'])
        return Response({'week': data['week'], 'sent': sent})


class HybridBookingViewSet(TenantViewSetMixin,
                           mixins.ListModelMixin,
                           mixins.RetrieveModelMixin,
                           viewsets.GenericViewSet):
    """
    Брони индивидуальных слотов.

    Родитель видит и бронирует только за своих детей, администратор: все брони школы.
    """
    queryset = HybridBooking.objects.select_related('lesson', 'lesson__tenant', 'student', 'parent')
    serializer_class = HybridBookingSerializer
    permission_classes = [IsSchoolAdminOrReadOnly]
    tenant_field = 'lesson__tenant'

    def get_permissions(self):
        if self.action == 'outcome':
            return [IsSchoolStaff()]
        if self.action in ('create', 'reschedule', 'cancel'):
            # Владение бронью проверяет HybridService
            return [IsTenantMember()]
        return super().get_permissions()

    def get_queryset(self):
        qs = super().get_queryset()
        if not is_school_admin(self.request.user, getattr(self.request, 'tenant', None)):
            if self.action == 'outcome':
                # Преподаватель отмечает только занятия своих уроков
                return qs.filter(lesson__teacher=self.request.user)
            qs = qs.filter(student__parent=self.request.user)
        week = self.request.query_params.get('week')
        if week and week.isdigit():
            qs = qs.filter(week_number=int(week))
        return qs

    def create(self, request, *args, **kwargs):
        data = _payload(BookingCreateSerializer, request)
        tenant = self.get_tenant()
        lesson = Lesson.objects.for_tenant(tenant).filter(pk=data['lesson'], is_active=True).first()
        student = Student.objects.for_tenant(tenant).filter(pk=data['student']).first()
        if lesson is None:
            raise NotFound('Урок не найден.')
        if student is None:
            raise NotFound('Ученик не найден.')
        booking = HybridService.create_booking(
            lesson, student, data['week_number'], data['start_time'], booked_by=request.user,
        )
        return Response(HybridBookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def reschedule(self, request, pk=None):
        data = _payload(BookingRescheduleSerializer, request)
        booking = HybridService.reschedule_booking(self.get_object(), data['start_time'], actor=request.user)
        return Response(HybridBookingSerializer(booking).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        data = _payload(BookingCancelSerializer, request)
        booking = HybridService.cancel_booking(self.get_object(), actor=request.user, reason=data['reason'])
        return Response(HybridBookingSerializer(booking).data)

    @action(detail=True, methods=['post'])
    def outcome(self, request, pk=None):
        """Отметка итога занятия: проведено или неявка"""
        data = _payload(BookingOutcomeSerializer, request)
        booking = HybridService.record_outcome(self.get_object(), data['status'])
        return Response(HybridBookingSerializer(booking).data)
