from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.http import HttpResponse
from django.test import RequestFactory, TestCase

from schedule.models import Room

from .context import clear_current_tenant, get_current_tenant, set_current_tenant
from .middleware import TenantMiddleware
from .models import Tenant, TenantMembership

User = get_user_model()


class TenantMiddlewareTest(TestCase):

    def setUp(self):
        self.factory = RequestFactory()
        self.first = Tenant.objects.create(slug='first', name='First School')
        self.second = Tenant.objects.create(slug='second', name='Second School')
        self.user = User.objects.create_user(email='teacher@test.com', password='testpass123', role='teacher')
        TenantMembership.objects.create(tenant=self.first, user=self.user, role=TenantMembership.TenantRole.TEACHER)
        TenantMembership.objects.create(tenant=self.second, user=self.user, role=TenantMembership.TenantRole.ADMIN)
        self.seen = {}

    def run_middleware(self, user, **headers):
        def view(request):
            self.seen['tenant'] = request.tenant
            self.seen['context'] = get_current_tenant()
            self.seen['membership'] = request.tenant_membership
            return HttpResponse('ok')

        request = self.factory.get('/api/schedule/lessons/', **headers)
        request.user = user
        TenantMiddleware(view)(request)
        return request

    def test_first_membership_by_default(self):
        self.run_middleware(self.user)
        self.assertEqual(self.seen['tenant'], self.first)
        self.assertEqual(self.seen['context'], self.first)
        self.assertFalse(self.seen['membership'].is_admin)

    def test_header_selects_school(self):
        self.run_middleware(self.user, HTTP_X_TENANT_ID='second')
        self.assertEqual(self.seen['tenant'], self.second)
        self.assertTrue(self.seen['membership'].is_admin)

    def test_foreign_header_ignored(self):
        Tenant.objects.create(slug='third', name='Third School')
        self.run_middleware(self.user, HTTP_X_TENANT_ID='third')
        self.assertIsNone(self.seen['tenant'])

    def test_inactive_membership(self):
        TenantMembership.objects.filter(user=self.user).update(is_active=False)
        self.run_middleware(self.user)
        self.assertIsNone(self.seen['tenant'])

    def test_anonymous(self):
        self.run_middleware(AnonymousUser())
        self.assertIsNone(self.seen['tenant'])

    def test_context_cleared_after_response(self):
        self.run_middleware(self.user)
        self.assertIsNone(get_current_tenant())


class TenantQuerySetTest(TestCase):

    def test_for_tenant_isolation(self):
        first = Tenant.objects.create(slug='first', name='First School')
        second = Tenant.objects.create(slug='second', name='Second School')
        Room.objects.create(tenant=first, name='A')
        Room.objects.create(tenant=second, name='B')

        self.assertEqual(list(Room.objects.for_tenant(first).values_list('name', flat=True)), ['A'])
        self.assertEqual(Room.objects.for_tenant(None).count(), 0)

    def test_tzinfo(self):
        tenant = Tenant.objects.create(slug='perth', name='Perth', timezone='Australia/Perth')
        self.assertEqual(str(tenant.tzinfo), 'Australia/Perth')

    def test_for_current_tenant(self):
        tenant = Tenant.objects.create(slug='first', name='First School')
        Room.objects.create(tenant=tenant, name='A')
        self.assertEqual(Room.objects.for_current_tenant().count(), 0)
        set_current_tenant(tenant)
        try:
            self.assertEqual(Room.objects.for_current_tenant().count(), 1)
        finally:
            clear_current_tenant()
