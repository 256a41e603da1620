import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('tenants', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Term',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, verbose_name='название')),
                ('start_date', models.DateField(verbose_name='дата начала')),
                ('end_date', models.DateField(verbose_name='дата окончания')),
                ('is_active', models.BooleanField(default=True, verbose_name='активен')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_terms', to='tenants.tenant', verbose_name='Школа')),
            ],
            options={
                'verbose_name': 'семестр',
                'verbose_name_plural': 'семестры',
                'ordering': ['-start_date'],
            },
        ),
        migrations.CreateModel(
            name='Room',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, verbose_name='название')),
                ('capacity', models.PositiveIntegerField(default=10, verbose_name='вместимость')),
                ('is_active', models.BooleanField(default=True, verbose_name='активен')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_rooms', to='tenants.tenant', verbose_name='Школа')),
            ],
            options={
                'verbose_name': 'кабинет',
                'verbose_name_plural': 'кабинеты',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Instrument',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, verbose_name='название')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_instruments', to='tenants.tenant', verbose_name='Школа')),
            ],
            options={
                'verbose_name': 'инструмент',
                'verbose_name_plural': 'инструменты',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Student',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('first_name', models.CharField(max_length=100, verbose_name='имя')),
                ('last_name', models.CharField(max_length=100, verbose_name='фамилия')),
                ('is_active', models.BooleanField(default=True, verbose_name='активен')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='создан')),
                ('parent', models.ForeignKey(blank=True, limit_choices_to={'role': 'parent'}, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='children', to=settings.AUTH_USER_MODEL, verbose_name='родитель')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_students', to='tenants.tenant', verbose_name='Школа')),
            ],
            options={
                'verbose_name': 'ученик',
                'verbose_name_plural': 'ученики',
                'ordering': ['last_name', 'first_name'],
            },
        ),
        migrations.CreateModel(
            name='Lesson',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('lesson_type', models.CharField(choices=[('INDIVIDUAL', 'Индивидуальный'), ('GROUP', 'Групповой'), ('BAND', 'Ансамбль'), ('HYBRID', 'Гибридный')], default='GROUP', max_length=20, verbose_name='тип урока')),
                ('name', models.CharField(max_length=200, verbose_name='название')),
                ('description', models.TextField(blank=True, default='', verbose_name='описание')),
                ('day_of_week', models.PositiveSmallIntegerField(choices=[(0, 'Понедельник'), (1, 'Вторник'), (2, 'Среда'), (3, 'Четверг'), (4, 'Пятница'), (5, 'Суббота'), (6, 'Воскресенье')], validators=[django.core.validators.MaxValueValidator(6)], verbose_name='день недели')),
                ('start_time', models.TimeField(verbose_name='время начала')),
                ('end_time', models.TimeField(verbose_name='время окончания')),
                ('duration_mins', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='длительность (мин)')),
                ('max_students', models.PositiveIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)], verbose_name='максимум учеников')),
                ('is_recurring', models.BooleanField(default=True, verbose_name='повторяется еженедельно')),
                ('is_active', models.BooleanField(default=True, verbose_name='активен')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='создан')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='обновлен')),
                ('instrument', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='lessons', to='schedule.instrument', verbose_name='инструмент')),
                ('room', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='lessons', to='schedule.room', verbose_name='кабинет')),
                ('teacher', models.ForeignKey(limit_choices_to={'role': 'teacher'}, on_delete=django.db.models.deletion.PROTECT, related_name='taught_lessons', to=settings.AUTH_USER_MODEL, verbose_name='преподаватель')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_lessons', to='tenants.tenant', verbose_name='Школа')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='lessons', to='schedule.term', verbose_name='семестр')),
            ],
            options={
                'verbose_name': 'урок',
                'verbose_name_plural': 'уроки',
                'ordering': ['day_of_week', 'start_time'],
                'indexes': [
                    models.Index(fields=['room', 'day_of_week', 'is_active'], name='lesson_room_day_idx'),
                    models.Index(fields=['teacher', 'day_of_week', 'is_active'], name='lesson_teacher_day_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Enrollment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('enrolled_at', models.DateTimeField(default=django.utils.timezone.now, verbose_name='записан')),
                ('unenrolled_at', models.DateTimeField(blank=True, null=True, verbose_name='отписан')),
                ('is_active', models.BooleanField(default=True, verbose_name='активна')),
                ('lesson', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrollments', to='schedule.lesson', verbose_name='урок')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrollments', to='schedule.student', verbose_name='ученик')),
            ],
            options={
                'verbose_name': 'запись на урок',
                'verbose_name_plural': 'записи на уроки',
                'unique_together': {('lesson', 'student')},
                'indexes': [models.Index(fields=['lesson', 'is_active'], name='enrollment_lesson_active_idx')],
            },
        ),
        migrations.CreateModel(
            name='HybridPattern',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pattern_type', models.CharField(choices=[('ALTERNATING', 'Чередование'), ('CUSTOM', 'Произвольный')], default='ALTERNATING', max_length=20, verbose_name='тип шаблона')),
                ('group_weeks', models.JSONField(blank=True, default=list, verbose_name='групповые недели')),
                ('individual_weeks', models.JSONField(blank=True, default=list, verbose_name='индивидуальные недели')),
                ('individual_slot_duration', models.PositiveIntegerField(default=30, validators=[django.core.validators.MinValueValidator(1)], verbose_name='длительность слота (мин)')),
                ('booking_deadline_hours', models.PositiveIntegerField(default=24, verbose_name='дедлайн бронирования (ч)')),
                ('bookings_open', models.BooleanField(default=False, verbose_name='бронирование открыто')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='создан')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='обновлен')),
                ('lesson', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='hybrid_pattern', to='schedule.lesson', verbose_name='урок')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='hybrid_patterns', to='schedule.term', verbose_name='семестр')),
            ],
            options={
                'verbose_name': 'гибридный шаблон',
                'verbose_name_plural': 'гибридные шаблоны',
                'constraints': [models.UniqueConstraint(fields=('lesson', 'term'), name='uniq_hybrid_pattern_lesson_term')],
            },
        ),
        migrations.CreateModel(
            name='HybridBooking',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('week_number', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='номер недели')),
                ('scheduled_date', models.DateField(verbose_name='дата')),
                ('start_time', models.TimeField(verbose_name='время начала')),
                ('end_time', models.TimeField(verbose_name='время окончания')),
                ('status', models.CharField(choices=[('PENDING', 'Ожидает'), ('CONFIRMED', 'Подтверждено'), ('CANCELLED', 'Отменено'), ('COMPLETED', 'Проведено'), ('NO_SHOW', 'Неявка')], default='PENDING', max_length=20, verbose_name='статус')),
                ('booked_at', models.DateTimeField(auto_now_add=True, verbose_name='забронировано')),
                ('confirmed_at', models.DateTimeField(blank=True, null=True, verbose_name='подтверждено')),
                ('cancelled_at', models.DateTimeField(blank=True, null=True, verbose_name='отменено')),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='завершено')),
                ('cancellation_reason', models.CharField(blank=True, default='', max_length=500, verbose_name='причина отмены')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='обновлено')),
                ('lesson', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='hybrid_bookings', to='schedule.lesson', verbose_name='урок')),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='hybrid_bookings', to=settings.AUTH_USER_MODEL, verbose_name='кто забронировал')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='hybrid_bookings', to='schedule.student', verbose_name='ученик')),
            ],
            options={
                'verbose_name': 'бронь индивидуального слота',
                'verbose_name_plural': 'брони индивидуальных слотов',
                'ordering': ['scheduled_date', 'start_time'],
                'indexes': [
                    models.Index(fields=['lesson', 'week_number', 'status'], name='booking_lesson_week_idx'),
                    models.Index(fields=['scheduled_date'], name='booking_date_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'CANCELLED'), _negated=True), fields=('lesson', 'student', 'week_number'), name='uniq_active_booking_student_week'),
                    models.UniqueConstraint(condition=models.Q(('status', 'CANCELLED'), _negated=True), fields=('lesson', 'week_number', 'start_time'), name='uniq_active_booking_slot'),
                ],
            },
        ),
        migrations.CreateModel(
            name='BookingReminderLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('week_number', models.PositiveSmallIntegerField(verbose_name='номер недели')),
                ('sent_at', models.DateTimeField(auto_now_add=True, verbose_name='отправлено')),
                ('error_message', models.TextField(blank=True, default='', verbose_name='ошибка')),
                ('lesson', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reminder_logs', to='schedule.lesson', verbose_name='урок')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reminder_logs', to='schedule.student', verbose_name='ученик')),
            ],
            options={
                'verbose_name': 'лог напоминания',
                'verbose_name_plural': 'логи напоминаний',
                'unique_together': {('lesson', 'student', 'week_number')},
            },
        ),
    ]
