"""
Tenant models: ядро мультитенантной архитектуры.

Подход: shared-database, shared-schema с tenant FK на каждой модели верхнего уровня.
Tenant = школа.
"""

import uuid
from zoneinfo import ZoneInfo

from django.conf import settings
from django.db import models


class Tenant(models.Model):
    """
    Школа. Все данные расписания привязаны к tenant через FK.
    """

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Активен'
        INACTIVE = 'inactive', 'Неактивен'
        SUSPENDED = 'suspended', 'Приостановлен'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slug = models.SlugField(
        max_length=50, unique=True, db_index=True,
        help_text='Уникальный идентификатор (для URL/заголовка X-Tenant-ID)'
    )
    name = models.CharField(max_length=200, help_text='Название школы')
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.ACTIVE,
        help_text='Статус',
    )
    email = models.EmailField(blank=True, help_text='Контактный email')

    # Все слоты и дедлайны считаются в часовом поясе школы
    timezone = models.CharField(max_length=50, default='Australia/Sydney', help_text='Часовой пояс (IANA)')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = 'Школа'
        verbose_name_plural = 'Школы'

    def __str__(self):
        return f'{self.name} ({self.slug})'

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE

    @property
    def tzinfo(self):
        return ZoneInfo(self.timezone)


class TenantMembership(models.Model):
    """
    Связь пользователь ↔ школа с ролью внутри школы.
    """

    class TenantRole(models.TextChoices):
        OWNER = 'owner', 'Владелец'
        ADMIN = 'admin', 'Администратор'
        TEACHER = 'teacher', 'Преподаватель'
        PARENT = 'parent', 'Родитель'

    ADMIN_ROLES = (TenantRole.OWNER, TenantRole.ADMIN)

    tenant = models.ForeignKey(
        Tenant, on_delete=models.CASCADE,
        related_name='memberships',
        verbose_name='Школа',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='tenant_memberships',
        verbose_name='Пользователь',
    )
    role = models.CharField(
        max_length=20, choices=TenantRole.choices,
        default=TenantRole.PARENT,
        verbose_name='Роль в школе',
    )
    is_active = models.BooleanField(default=True, verbose_name='Активен')
    joined_at = models.DateTimeField(auto_now_add=True, verbose_name='Дата вступления')

    class Meta:
        verbose_name = 'Членство в школе'
        verbose_name_plural = 'Членства в школах'
        unique_together = ['tenant', 'user']
        indexes = [
            models.Index(fields=['user', 'is_active'], name='membership_user_active_idx'),
        ]

    def __str__(self):
        return f'{self.user} → {self.tenant} ({self.role})'

    @property
    def is_admin(self):
        return self.role in self.ADMIN_ROLES
