from rest_framework.permissions import SAFE_METHODS, BasePermission

from tenants.models import TenantMembership


def is_school_admin(user, tenant):
    """Администратор школы: глобальная роль admin или членство owner/admin в этой школе."""
    if user is None or not user.is_authenticated:
        return False
    if getattr(user, 'is_school_admin', False):
        return True
    return TenantMembership.objects.filter(
        tenant=tenant,
        user=user,
        is_active=True,
        role__in=TenantMembership.ADMIN_ROLES,
    ).exists()


class IsSchoolAdmin(BasePermission):
    """Доступ только для администраторов текущей школы"""

    def has_permission(self, request, view):
        return is_school_admin(request.user, getattr(request, 'tenant', None))


class IsSchoolAdminOrReadOnly(BasePermission):
    """Чтение: всем участникам школы, изменение: только администраторам"""

    def has_permission(self, request, view):
        if getattr(request, 'tenant', None) is None:
            return False
        if request.method in SAFE_METHODS:
            return request.user and request.user.is_authenticated
        return is_school_admin(request.user, request.tenant)


class IsSchoolStaff(BasePermission):
    """Администраторы и преподаватели школы (отметка проведённых занятий)"""

    def has_permission(self, request, view):
        tenant = getattr(request, 'tenant', None)
        if is_school_admin(request.user, tenant):
            return True
        membership = getattr(request, 'tenant_membership', None)
        return membership is not None and membership.role == TenantMembership.TenantRole.TEACHER


class IsTenantMember(BasePermission):
    """Любой участник текущей школы"""

    def has_permission(self, request, view):
        return getattr(request, 'tenant', None) is not None and request.user.is_authenticated
