# Decorators in this file:
# 1. api_login_required - 401 JSON for anonymous requests
# 2. tenant_required - Resolve the institution from the URL slug
# 3. role_required - Only specific roles can access
# 4. super_admin_required - Platform-level endpoints
# 5. json_view - Translate malformed JSON bodies into 400 responses
#
# All decorators answer with JSON ({'success': False, 'error': ...}) since
# every view in this project is an API endpoint.
# ==============================================================================

import logging
from functools import wraps

from django.http import JsonResponse

from apps.core.models import Institution
from apps.core.utils import InvalidPayload
from .models import ROLE_SUPER_ADMIN

logger = logging.getLogger(__name__)


def _denied(message, status, code):
    return JsonResponse({'success': False, 'error': message, 'code': code}, status=status)


# AUTHENTICATION
def api_login_required(view_func):
    """
    Decorator: User must be logged in

    Unlike django.contrib.auth's login_required this never redirects, the
    frontend handles 401 by showing its login screen.
    """

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return _denied('Authentication required', 401, 'UNAUTHENTICATED')
        if not request.user.is_active:
            return _denied('Account is inactive', 403, 'ACCOUNT_INACTIVE')
        return view_func(request, *args, **kwargs)

    return wrapper


# TENANT DECORATORS
def tenant_required(view_func):
    """
    Decorator: Resolve the ``tenant`` URL slug into an Institution

    Checks:
    1. User is authenticated
    2. Institution exists (404 otherwise)
    3. Institution is active (403 when suspended or inactive)
    4. User belongs to the institution (super admins may enter any)

    The view receives the Institution instance as its ``tenant`` argument
    and it is also stored on ``request.tenant``.

    Usage:
        @tenant_required
        def lead_list_view(request, tenant):
            leads = Lead.objects.filter(institution=tenant)
    """

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return _denied('Authentication required', 401, 'UNAUTHENTICATED')

        slug = kwargs.get('tenant')
        try:
            institution = Institution.objects.get(slug=slug)
        except Institution.DoesNotExist:
            return _denied('Institution not found', 404, 'TENANT_NOT_FOUND')

        if not institution.is_active and not request.user.is_super_admin():
            logger.warning("Blocked request to %s institution %s by %s",
                           institution.status, institution.slug, request.user.email)
            return _denied(f'Institution is {institution.status}', 403, 'TENANT_SUSPENDED')

        if not request.user.belongs_to(institution):
            # Same response as an unknown tenant, so other tenants cannot be probed
            logger.warning("Cross-tenant access attempt: %s -> %s", request.user.email, institution.slug)
            return _denied('Institution not found', 404, 'TENANT_NOT_FOUND')

        request.tenant = institution
        kwargs['tenant'] = institution
        return view_func(request, *args, **kwargs)

    return wrapper


# ROLE-BASED DECORATORS
def role_required(*allowed_roles):
    """
    Decorator: Only specific roles can access

    Super admins pass every role check. Must be applied below
    @tenant_required or @api_login_required so the user is authenticated.

    Usage:
        @tenant_required
        @role_required('institution_admin', 'admission_head')
        def reports_view(request, tenant):
            ...
    """

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return _denied('Authentication required', 401, 'UNAUTHENTICATED')

            if request.user.role in allowed_roles or request.user.is_super_admin():
                return view_func(request, *args, **kwargs)

            return _denied('You do not have permission to perform this action', 403, 'FORBIDDEN')

        return wrapper

    return decorator


def super_admin_required(view_func):
    """Decorator: Platform super admins only"""
    return api_login_required(role_required(ROLE_SUPER_ADMIN)(view_func))


# REQUEST BODY DECORATORS
def json_view(view_func):
    """
    Decorator: Answer 400 when the view fails to parse its JSON body

    Views call ``parse_json_body(request)`` freely and let InvalidPayload
    propagate up to here.
    """

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except InvalidPayload as e:
            return _denied(str(e), 400, 'INVALID_PAYLOAD')

    return wrapper
