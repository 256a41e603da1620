"""
Tenant Middleware: кладёт в request.tenant школу аутентифицированного пользователя.

Маршрутизация по хосту не выполняется: школа берётся из активного членства
пользователя. Если пользователь состоит в нескольких школах, выбор уточняется
заголовком X-Tenant-ID (slug), который должен совпадать с одним из его членств.
"""

import logging

from .context import clear_current_tenant, set_current_tenant
from .models import TenantMembership

logger = logging.getLogger(__name__)


class TenantMiddleware:
    """
    Ставить в MIDDLEWARE ПОСЛЕ AuthenticationMiddleware.

    Ставит:
      - request.tenant            = Tenant instance (или None)
      - request.tenant_membership = TenantMembership (или None)
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        membership = self._resolve_membership(request)
        request.tenant_membership = membership
        request.tenant = membership.tenant if membership else None
        set_current_tenant(request.tenant)

        try:
            response = self.get_response(request)
        finally:
            clear_current_tenant()

        return response

    def _resolve_membership(self, request):
        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            return None

        memberships = (
            TenantMembership.objects
            .filter(user=user, is_active=True)
            .select_related('tenant')
            .order_by('joined_at')
        )
        header_slug = request.META.get('HTTP_X_TENANT_ID', '').strip()
        if header_slug:
            membership = memberships.filter(tenant__slug=header_slug).first()
            if membership is None:
                logger.warning(f'X-Tenant-ID "{header_slug}" ignored: user {user.pk} is not a member')
            return membership
        return memberships.first()
