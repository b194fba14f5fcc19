import logging

from django.conf import settings
from django.contrib.auth import authenticate, login, logout, update_session_auth_hash
from django.contrib.auth.tokens import default_token_generator
from django.core.mail import send_mail
from django.db.models import Q
from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.middleware.csrf import get_token
from django.shortcuts import get_object_or_404
from django.utils.encoding import force_bytes, force_str
from django.utils.http import urlsafe_base64_encode, urlsafe_base64_decode
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.core.utils import parse_json_body, json_error, form_errors, paginate, to_iso, get_client_ip
from .decorators import api_login_required, tenant_required, role_required, json_view
from .forms import (
    LoginForm,
    UserCreateForm,
    UserUpdateForm,
    ProfileUpdateForm,
    PasswordChangeForm,
    PasswordResetRequestForm,
    PasswordResetConfirmForm,
)
from .models import User, ROLE_CHOICES, ROLE_PERMISSIONS, ROLE_INSTITUTION_ADMIN

logger = logging.getLogger(__name__)


# SERIALIZATION
def user_to_dict(user, detailed=False):
    data = {
        'id': user.id,
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'full_name': user.get_full_name(),
        'initials': user.get_initials(),
        'phone': user.phone,
        'role': user.role,
        'role_display': user.get_role_display(),
        'institution': user.institution.slug if user.institution_id else None,
        'is_active': user.is_active,
    }
    if detailed:
        data.update({
            'skills': user.skills,
            'job_title': user.job_title,
            'permissions': user.get_permissions(),
            'total_leads_assigned': user.total_leads_assigned,
            'total_leads_converted': user.total_leads_converted,
            'conversion_rate': user.get_conversion_rate(),
            'login_count': user.login_count,
            'last_login': to_iso(user.last_login),
            'date_joined': to_iso(user.date_joined),
        })
    return data


# AUTHENTICATION VIEWS
@never_cache
@require_GET
def csrf_view(request):
    """Sets the CSRF cookie for the SPA and returns the token"""
    return JsonResponse({'success': True, 'csrf_token': get_token(request)})


@never_cache
@require_POST
@json_view
def login_view(request):
    form = LoginForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    email = form.cleaned_data['email']
    user = authenticate(request, username=email, password=form.cleaned_data['password'])

    if user is None:
        # ModelBackend refuses inactive users, tell them apart from bad credentials
        inactive = User.objects.filter(email=email, is_active=False).first()
        if inactive and inactive.check_password(form.cleaned_data['password']):
            return json_error('Your account is inactive. Please contact administrator.', 403, 'ACCOUNT_INACTIVE')
        logger.info("Failed login for %s", email)
        return json_error('Invalid email or password.', 401, 'INVALID_CREDENTIALS')

    if user.institution_id and not user.institution.is_active and not user.is_super_admin():
        return json_error(f'Institution is {user.institution.status}', 403, 'TENANT_SUSPENDED')

    login(request, user)

    if form.cleaned_data.get('remember'):
        request.session.set_expiry(settings.SESSION_REMEMBER_ME_AGE)
    else:
        # Session expires when browser closes
        request.session.set_expiry(0)

    user.increment_login_count(ip_address=get_client_ip(request))
    logger.info("User logged in: %s", user.email)

    return JsonResponse({'success': True, 'user': user_to_dict(user, detailed=True)})


@require_POST
@api_login_required
def logout_view(request):
    logger.info("User logged out: %s", request.user.email)
    logout(request)
    return JsonResponse({'success': True})


@never_cache
@require_http_methods(['GET', 'PUT', 'PATCH'])
@api_login_required
@json_view
def me_view(request):
    user = request.user

    if request.method == 'GET':
        data = user_to_dict(user, detailed=True)
        data['profile'] = {
            'bio': user.profile.bio,
            'date_of_birth': to_iso(user.profile.date_of_birth),
            'address': user.profile.address,
            'city': user.profile.city,
            'country': user.profile.country,
            'language': user.profile.language,
        }
        return JsonResponse({'success': True, 'user': data})

    payload = parse_json_body(request)
    initial = model_to_dict(user.profile, fields=ProfileUpdateForm.Meta.fields)
    form = ProfileUpdateForm({**initial, **payload}, instance=user.profile)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    form.save()
    user.refresh_from_db()
    return JsonResponse({'success': True, 'user': user_to_dict(user, detailed=True)})


@require_POST
@api_login_required
@json_view
def password_change_view(request):
    form = PasswordChangeForm(request.user, parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    request.user.set_password(form.cleaned_data['new_password'])
    request.user.save()
    # Keep the current session alive after the password hash changed
    update_session_auth_hash(request, request.user)
    return JsonResponse({'success': True, 'message': 'Password changed successfully.'})


@never_cache
@require_POST
@json_view
def password_reset_request_view(request):
    form = PasswordResetRequestForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please enter a valid email address.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    user = User.objects.filter(email=form.cleaned_data['email'], is_active=True).first()
    if user:
        uid = urlsafe_base64_encode(force_bytes(user.pk))
        token = default_token_generator.make_token(user)
        reset_url = f"{settings.FRONTEND_URL}/reset-password?uid={uid}&token={token}"
        send_mail(
            subject='Reset your password',
            message=f'Hello {user.get_short_name()},\n\nUse the link below to choose a new password:\n{reset_url}\n',
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            fail_silently=True,
        )
        logger.info("Password reset requested for %s", user.email)

    # Always the same answer (prevents email enumeration)
    return JsonResponse({
        'success': True,
        'message': 'If an account exists with this email, you will receive password reset instructions shortly.',
    })


@never_cache
@require_POST
@json_view
def password_reset_confirm_view(request):
    form = PasswordResetConfirmForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    try:
        uid = force_str(urlsafe_base64_decode(form.cleaned_data['uid']))
        user = User.objects.get(pk=uid)
    except (TypeError, ValueError, OverflowError, User.DoesNotExist):
        user = None

    if user is None or not default_token_generator.check_token(user, form.cleaned_data['token']):
        return json_error('Invalid or expired reset link.', 400, 'INVALID_TOKEN')

    user.set_password(form.cleaned_data['new_password1'])
    user.save()
    return JsonResponse({'success': True, 'message': 'Password has been reset.'})


# USER MANAGEMENT VIEWS (Institution admin)
@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def user_list_view(request, tenant):
    if request.method == 'POST':
        form = UserCreateForm(parse_json_body(request), institution=tenant)
        if not form.is_valid():
            return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
        user = form.save()
        logger.info("User %s (%s) created in %s by %s", user.email, user.role, tenant.slug, request.user.email)
        return JsonResponse({'success': True, 'user': user_to_dict(user, detailed=True)}, status=201)

    users = User.objects.filter(institution=tenant).select_related('institution').order_by('first_name', 'last_name')

    role = request.GET.get('role')
    if role:
        users = users.filter(role=role)

    is_active = request.GET.get('is_active')
    if is_active in ('true', 'false'):
        users = users.filter(is_active=is_active == 'true')

    search = request.GET.get('search', '').strip()
    if search:
        users = users.filter(
            Q(first_name__icontains=search) |
            Q(last_name__icontains=search) |
            Q(email__icontains=search) |
            Q(phone__icontains=search)
        )

    return JsonResponse({'success': True, **paginate(request, users, user_to_dict)})


@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def user_detail_view(request, tenant, pk):
    user = get_object_or_404(User, pk=pk, institution=tenant)

    if request.method == 'GET':
        return JsonResponse({'success': True, 'user': user_to_dict(user, detailed=True)})

    if request.method == 'DELETE':
        if user == request.user:
            return json_error('You cannot deactivate your own account.', 400, 'SELF_DEACTIVATION')
        # Deactivate instead of deleting (keeps leads, calls and reviews attributed)
        user.is_active = False
        user.save(update_fields=['is_active'])
        logger.info("User %s deactivated by %s", user.email, request.user.email)
        return JsonResponse({'success': True})

    initial = model_to_dict(user, fields=UserUpdateForm.Meta.fields)
    form = UserUpdateForm({**initial, **parse_json_body(request)}, instance=user)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    user = form.save()
    return JsonResponse({'success': True, 'user': user_to_dict(user, detailed=True)})


@require_GET
@tenant_required
def role_list_view(request, tenant):
    roles = [
        {'value': value, 'label': str(label), 'permissions': ROLE_PERMISSIONS.get(value, [])}
        for value, label in ROLE_CHOICES
    ]
    return JsonResponse({'success': True, 'roles': roles})
