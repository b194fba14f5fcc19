"""
Tests for Custom Decorators
============================

Tests all custom decorators to ensure proper access control.

Test Cases:
1. api_login_required decorator
2. tenant_required decorator
3. role_required decorator
4. super_admin_required decorator
5. json_view decorator

Run tests:
    pytest apps/accounts/tests/test_decorators.py
"""

import json

from django.contrib.auth.models import AnonymousUser
from django.http import JsonResponse
from django.test import TestCase, RequestFactory

from apps.accounts.decorators import (
    api_login_required,
    tenant_required,
    role_required,
    super_admin_required,
    json_view,
)
from apps.accounts.models import User, ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER, ROLE_SUPER_ADMIN
from apps.core.models import Institution
from apps.core.utils import parse_json_body


def ok_view(request, *args, **kwargs):
    return JsonResponse({'success': True})


class DecoratorTestCase(TestCase):

    def setUp(self):
        self.factory = RequestFactory()

        self.institution = Institution.objects.create(name='Sunrise College')
        self.other_institution = Institution.objects.create(name='Lakeside University')

        self.admin = User.objects.create_user(
            email='admin@sunrise.edu', password='testpass123', first_name='Asha', last_name='Menon',
            institution=self.institution, role=ROLE_INSTITUTION_ADMIN,
        )
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_TELECALLER,
        )
        self.super_admin = User.objects.create_superuser(email='root@platform.io', password='testpass123')

    def request(self, user, data=None):
        if data is None:
            request = self.factory.get('/test/')
        else:
            request = self.factory.post('/test/', data=json.dumps(data), content_type='application/json')
        request.user = user
        return request


class ApiLoginRequiredTest(DecoratorTestCase):
    """Test @api_login_required decorator"""

    def setUp(self):
        super().setUp()
        self.view = api_login_required(ok_view)

    def test_anonymous_gets_401(self):
        """
        Test: Anonymous user
        Expected: 401 JSON (no redirect to a login page)
        """
        response = self.view(self.request(AnonymousUser()))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(json.loads(response.content)['code'], 'UNAUTHENTICATED')

    def test_inactive_user_gets_403(self):
        self.admin.is_active = False
        response = self.view(self.request(self.admin))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(json.loads(response.content)['code'], 'ACCOUNT_INACTIVE')

    def test_authenticated_user_allowed(self):
        self.assertEqual(self.view(self.request(self.telecaller)).status_code, 200)


class TenantRequiredTest(DecoratorTestCase):
    """Test @tenant_required decorator"""

    def setUp(self):
        super().setUp()

        @tenant_required
        def tenant_view(request, tenant):
            return JsonResponse({'tenant': tenant.slug, 'request_tenant': request.tenant.pk})

        self.view = tenant_view

    def test_member_receives_institution(self):
        response = self.view(self.request(self.admin), tenant=self.institution.slug)

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.content)
        self.assertEqual(data['tenant'], self.institution.slug)
        self.assertEqual(data['request_tenant'], self.institution.pk)

    def test_unknown_slug(self):
        response = self.view(self.request(self.admin), tenant='missing')

        self.assertEqual(response.status_code, 404)
        self.assertEqual(json.loads(response.content)['code'], 'TENANT_NOT_FOUND')

    def test_other_tenant_is_indistinguishable_from_unknown(self):
        """
        Test: Member of Sunrise requests Lakeside
        Expected: Same 404 as an unknown slug
        """
        response = self.view(self.request(self.admin), tenant=self.other_institution.slug)

        self.assertEqual(response.status_code, 404)
        self.assertEqual(json.loads(response.content)['code'], 'TENANT_NOT_FOUND')

    def test_super_admin_enters_any_tenant(self):
        response = self.view(self.request(self.super_admin), tenant=self.other_institution.slug)
        self.assertEqual(response.status_code, 200)

    def test_suspended_tenant(self):
        self.institution.status = Institution.STATUS_SUSPENDED
        self.institution.save()

        response = self.view(self.request(self.admin), tenant=self.institution.slug)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(json.loads(response.content)['code'], 'TENANT_SUSPENDED')

        # Super admins can still look into a suspended institution
        response = self.view(self.request(self.super_admin), tenant=self.institution.slug)
        self.assertEqual(response.status_code, 200)

    def test_anonymous(self):
        response = self.view(self.request(AnonymousUser()), tenant=self.institution.slug)
        self.assertEqual(response.status_code, 401)


class RoleRequiredTest(DecoratorTestCase):
    """Test @role_required decorator"""

    def setUp(self):
        super().setUp()
        self.view = role_required(ROLE_INSTITUTION_ADMIN)(ok_view)

    def test_allowed_role(self):
        self.assertEqual(self.view(self.request(self.admin)).status_code, 200)

    def test_other_role_forbidden(self):
        response = self.view(self.request(self.telecaller))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(json.loads(response.content)['code'], 'FORBIDDEN')

    def test_super_admin_passes_every_role_check(self):
        self.assertEqual(self.view(self.request(self.super_admin)).status_code, 200)

    def test_multiple_roles(self):
        view = role_required(ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER)(ok_view)
        self.assertEqual(view(self.request(self.telecaller)).status_code, 200)


class SuperAdminRequiredTest(DecoratorTestCase):
    """Test @super_admin_required decorator"""

    def setUp(self):
        super().setUp()
        self.view = super_admin_required(ok_view)

    def test_super_admin(self):
        self.assertEqual(self.super_admin.role, ROLE_SUPER_ADMIN)
        self.assertEqual(self.view(self.request(self.super_admin)).status_code, 200)

    def test_institution_admin_forbidden(self):
        self.assertEqual(self.view(self.request(self.admin)).status_code, 403)

    def test_anonymous(self):
        self.assertEqual(self.view(self.request(AnonymousUser())).status_code, 401)


class JsonViewTest(DecoratorTestCase):
    """Test @json_view decorator"""

    def setUp(self):
        super().setUp()

        @json_view
        def echo_view(request):
            return JsonResponse({'received': parse_json_body(request)})

        self.view = echo_view

    def test_valid_json(self):
        response = self.view(self.request(self.admin, data={'name': 'Priya'}))
        self.assertEqual(json.loads(response.content)['received'], {'name': 'Priya'})

    def test_malformed_json(self):
        request = self.factory.post('/test/', data='{broken', content_type='application/json')
        request.user = self.admin

        response = self.view(request)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(json.loads(response.content)['code'], 'INVALID_PAYLOAD')

    def test_json_array_rejected(self):
        request = self.factory.post('/test/', data='[1, 2]', content_type='application/json')
        request.user = self.admin

        response = self.view(request)
        self.assertEqual(response.status_code, 400)
