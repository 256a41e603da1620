import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Tenant',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('slug', models.SlugField(help_text='Уникальный идентификатор (для URL/заголовка X-Tenant-ID)', unique=True)),
                ('name', models.CharField(help_text='Название школы', max_length=200)),
                ('status', models.CharField(choices=[('active', 'Активен'), ('inactive', 'Неактивен'), ('suspended', 'Приостановлен')], default='active', help_text='Статус', max_length=20)),
                ('email', models.EmailField(blank=True, help_text='Контактный email', max_length=254)),
                ('timezone', models.CharField(default='Australia/Sydney', help_text='Часовой пояс (IANA)', max_length=50)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Школа',
                'verbose_name_plural': 'Школы',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='TenantMembership',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=[('owner', 'Владелец'), ('admin', 'Администратор'), ('teacher', 'Преподаватель'), ('parent', 'Родитель')], default='parent', max_length=20, verbose_name='Роль в школе')),
                ('is_active', models.BooleanField(default=True, verbose_name='Активен')),
                ('joined_at', models.DateTimeField(auto_now_add=True, verbose_name='Дата вступления')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memberships', to='tenants.tenant', verbose_name='Школа')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tenant_memberships', to=settings.AUTH_USER_MODEL, verbose_name='Пользователь')),
            ],
            options={
                'verbose_name': 'Членство в школе',
                'verbose_name_plural': 'Членства в школах',
                'unique_together': {('tenant', 'user')},
                'indexes': [models.Index(fields=['user', 'is_active'], name='membership_user_active_idx')],
            },
        ),
    ]
