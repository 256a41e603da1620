"""
Tenant mixins: переиспользуемые компоненты для tenant-scoped моделей и ViewSets.
"""
from django.db import models
from rest_framework.exceptions import PermissionDenied

from .context import get_current_tenant


class TenantQuerySet(models.QuerySet):
    """QuerySet с явной фильтрацией по tenant."""

    def for_tenant(self, tenant):
        if tenant is None:
            return self.none()
        return self.filter(tenant=tenant)

    def for_current_tenant(self):
        return self.for_tenant(get_current_tenant())


class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    pass


class TenantModelMixin(models.Model):
    """
    Абстрактный mixin: добавляет FK tenant к модели.

    Использование:
        class Room(TenantModelMixin):
            name = models.CharField(...)
    """
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='%(app_label)s_%(class)ss',
        verbose_name='Школа',
        db_index=True,
    )

    objects = TenantManager()

    class Meta:
        abstract = True


class TenantViewSetMixin:
    """
    Mixin для DRF ViewSets: фильтрует queryset по request.tenant
    и устанавливает tenant при создании объектов.
    """

    tenant_field = 'tenant'

    def get_tenant(self):
        tenant = getattr(self.request, 'tenant', None)
        if tenant is None:
            raise PermissionDenied('Школа не определена.')
        return tenant

    def get_queryset(self):
        qs = super().get_queryset()
        tenant = getattr(self.request, 'tenant', None)
        if tenant is None:
            return qs.none()
        return qs.filter(**{self.tenant_field: tenant})

    def perform_create(self, serializer):
        serializer.save(tenant=self.get_tenant())
