from django.contrib import admin

from .models import (
    BookingReminderLog,
    Enrollment,
    HybridBooking,
    HybridPattern,
    Instrument,
    Lesson,
    Room,
    Student,
    Term,
)


@admin.register(Term)
class TermAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'start_date', 'end_date', 'is_active')
    list_filter = ('tenant', 'is_active')
    search_fields = ('name',)


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ('name', 'tenant', 'capacity', 'is_active')
    list_filter = ('tenant', 'is_active')


admin.site.register(Instrument)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('full_name', 'tenant', 'parent', 'is_active')
    list_filter = ('tenant', 'is_active')
    search_fields = ('first_name', 'last_name', 'parent__email')


class EnrollmentInline(admin.TabularInline):
    model = Enrollment
    extra = 0
    readonly_fields = ('enrolled_at', 'unenrolled_at')


@admin.register(Lesson)
class LessonAdmin(admin.ModelAdmin):
    list_display = ('name', 'lesson_type', 'teacher', 'room', 'day_of_week', 'start_time', 'end_time', 'is_active')
    list_filter = ('tenant', 'lesson_type', 'day_of_week', 'is_active')
    search_fields = ('name', 'teacher__email', 'room__name')
    readonly_fields = ('created_at', 'updated_at')
    inlines = [EnrollmentInline]

    fieldsets = (
        ('Основная информация', {
            'fields': ('tenant', 'term', 'lesson_type', 'name', 'description', 'instrument')
        }),
        ('Расписание', {
            'fields': ('teacher', 'room', 'day_of_week', 'start_time', 'end_time', 'duration_mins', 'is_recurring')
        }),
        ('Вместимость', {
            'fields': ('max_students', 'is_active')
        }),
        ('Системная информация', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(HybridPattern)
class HybridPatternAdmin(admin.ModelAdmin):
    list_display = ('lesson', 'term', 'pattern_type', 'individual_slot_duration', 'booking_deadline_hours', 'bookings_open')
    list_filter = ('pattern_type', 'bookings_open')


@admin.register(HybridBooking)
class HybridBookingAdmin(admin.ModelAdmin):
    list_display = ('student', 'lesson', 'week_number', 'scheduled_date', 'start_time', 'status')
    list_filter = ('status', 'week_number')
    search_fields = ('student__first_name', 'student__last_name', 'lesson__name')
    date_hierarchy = 'scheduled_date'
    readonly_fields = ('booked_at', 'confirmed_at', 'cancelled_at', 'completed_at', 'updated_at')


@admin.register(BookingReminderLog)
class BookingReminderLogAdmin(admin.ModelAdmin):
    list_display = ('lesson', 'student', 'week_number', 'sent_at')
    readonly_fields = ('sent_at',)
