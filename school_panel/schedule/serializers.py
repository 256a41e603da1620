from django.contrib.auth import get_user_model
from rest_framework import serializers

from .lesson_types import build_lesson_kind
from .models import (
    BookingStatus,
    Enrollment,
    HybridBooking,
    HybridPattern,
    Instrument,
    Lesson,
    LessonType,
    ResourceType,
    Room,
    Student,
    Term,
    scheduling_setting,
)
from .time_utils import format_time, parse_time

User = get_user_model()


class ClockTimeField(serializers.Field):
    """Время в формате HH:MM"""

    default_error_messages = {'invalid': 'Некорректное время, ожидается HH:MM.'}

    def to_internal_value(self, data):
        return parse_time(data)

    def to_representation(self, value):
        return format_time(value)


class TermSerializer(serializers.ModelSerializer):
    week_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Term
        fields = ['id', 'name', 'start_date', 'end_date', 'is_active', 'week_count']

    def validate(self, attrs):
        start_date = attrs.get('start_date') or getattr(self.instance, 'start_date', None)
        end_date = attrs.get('end_date') or getattr(self.instance, 'end_date', None)
        if start_date and end_date:
            if end_date < start_date:
                raise serializers.ValidationError({'end_date': 'end_date не может быть раньше start_date'})
            max_weeks = scheduling_setting('MAX_TERM_WEEKS')
            if (end_date - start_date).days // 7 + 1 > max_weeks:
                raise serializers.ValidationError({'end_date': f'Семестр не может быть длиннее {max_weeks} недель'})
        return attrs


class RoomSerializer(serializers.ModelSerializer):
    class Meta:
        model = Room
        fields = ['id', 'name', 'capacity', 'is_active']


class StudentBriefSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)

    class Meta:
        model = Student
        fields = ['id', 'first_name', 'last_name', 'full_name', 'parent']


class TeacherSerializer(serializers.ModelSerializer):
    """Сериализатор для преподавателя"""
    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name']


class HybridPatternSerializer(serializers.ModelSerializer):
    class Meta:
        model = HybridPattern
        fields = [
            'id', 'term', 'pattern_type', 'group_weeks', 'individual_weeks',
            'individual_slot_duration', 'booking_deadline_hours', 'bookings_open',
        ]
        read_only_fields = fields


class HybridPatternInputSerializer(serializers.Serializer):
    pattern_type = serializers.ChoiceField(
        choices=HybridPattern.PatternType.choices,
        default=HybridPattern.PatternType.ALTERNATING,
    )
    group_weeks = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    individual_weeks = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    individual_slot_duration = serializers.IntegerField(required=False, min_value=1)
    booking_deadline_hours = serializers.IntegerField(required=False, min_value=0)
    bookings_open = serializers.BooleanField(required=False, default=False)


class LessonSerializer(serializers.ModelSerializer):
    """Урок для чтения"""
    teacher = TeacherSerializer(read_only=True)
    start_time = ClockTimeField()
    end_time = ClockTimeField()
    time_range = serializers.CharField(read_only=True)
    day_name = serializers.CharField(source='get_day_of_week_display', read_only=True)
    hybrid_pattern = serializers.SerializerMethodField()

    class Meta:
        model = Lesson
        fields = [
            'id', 'lesson_type', 'term', 'teacher', 'room', 'instrument', 'name', 'description',
            'day_of_week', 'day_name', 'start_time', 'end_time', 'time_range', 'duration_mins',
            'max_students', 'is_recurring', 'is_active', 'hybrid_pattern', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_hybrid_pattern(self, obj):
        if not obj.is_hybrid:
            return None
        pattern = HybridPattern.objects.filter(lesson=obj).first()
        return HybridPatternSerializer(pattern).data if pattern else None


class LessonWriteSerializer(serializers.Serializer):
    """Создание и изменение урока. Набор обязательных полей зависит от lesson_type."""
    lesson_type = serializers.ChoiceField(choices=LessonType.choices)
    term = serializers.PrimaryKeyRelatedField(queryset=Term.objects.all())
    teacher = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(role='teacher'))
    room = serializers.PrimaryKeyRelatedField(queryset=Room.objects.all())
    instrument = serializers.PrimaryKeyRelatedField(queryset=Instrument.objects.all(), required=False, allow_null=True)
    name = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    day_of_week = serializers.IntegerField(min_value=0, max_value=6)
    start_time = ClockTimeField()
    end_time = ClockTimeField(required=False)
    duration_mins = serializers.IntegerField(required=False, min_value=1)
    max_students = serializers.IntegerField(required=False, min_value=1)
    is_recurring = serializers.BooleanField(required=False, default=True)
    hybrid_pattern = HybridPatternInputSerializer(required=False)

    def validate(self, attrs):
        if self.partial:
            if 'lesson_type' in attrs or 'term' in attrs:
                raise serializers.ValidationError('Тип урока и семестр не меняются после создания.')
            return attrs
        if 'end_time' not in attrs and 'duration_mins' not in attrs:
            raise serializers.ValidationError({'end_time': 'Укажите время окончания или длительность.'})
        attrs['kind'] = build_lesson_kind(
            attrs.pop('lesson_type'),
            attrs.pop('max_students', None),
            attrs.pop('hybrid_pattern', None),
        )
        return attrs


class AvailabilityQuerySerializer(serializers.Serializer):
    resource_type = serializers.ChoiceField(choices=ResourceType.choices)
    resource_id = serializers.IntegerField()
    day_of_week = serializers.IntegerField(min_value=0, max_value=6)
    start_time = ClockTimeField()
    end_time = ClockTimeField()
    exclude_lesson_id = serializers.IntegerField(required=False)


class RescheduleSerializer(serializers.Serializer):
    day_of_week = serializers.IntegerField(min_value=0, max_value=6)
    start_time = ClockTimeField()
    end_time = ClockTimeField()
    confirm = serializers.BooleanField(required=False, default=False)
    notify_parents = serializers.BooleanField(required=False, default=False)
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)


class EnrollSerializer(serializers.Serializer):
    student_id = serializers.IntegerField()


class BulkEnrollSerializer(serializers.Serializer):
    student_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


class EnrollmentSerializer(serializers.ModelSerializer):
    student = StudentBriefSerializer(read_only=True)

    class Meta:
        model = Enrollment
        fields = ['id', 'lesson', 'student', 'enrolled_at', 'unenrolled_at', 'is_active']
        read_only_fields = fields


class WeekQuerySerializer(serializers.Serializer):
    week = serializers.IntegerField(min_value=1)


class HybridBookingSerializer(serializers.ModelSerializer):
    start_time = ClockTimeField()
    end_time = ClockTimeField()
    student_name = serializers.CharField(source='student.full_name', read_only=True)
    lesson_name = serializers.CharField(source='lesson.name', read_only=True)

    class Meta:
        model = HybridBooking
        fields = [
            'id', 'lesson', 'lesson_name', 'student', 'student_name', 'parent', 'week_number',
            'scheduled_date', 'start_time', 'end_time', 'status', 'booked_at', 'confirmed_at',
            'cancelled_at', 'completed_at', 'cancellation_reason',
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    lesson = serializers.IntegerField()
    student = serializers.IntegerField()
    week_number = serializers.IntegerField(min_value=1)
    start_time = ClockTimeField()


class BookingRescheduleSerializer(serializers.Serializer):
    start_time = ClockTimeField()


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)


class BookingOutcomeSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[BookingStatus.COMPLETED, BookingStatus.NO_SHOW])


class CalendarQuerySerializer(serializers.Serializer):
    start = serializers.DateField()
    end = serializers.DateField()
    teacher = serializers.IntegerField(required=False)
    room = serializers.IntegerField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1)
