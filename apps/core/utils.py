"""
Shared helpers for the JSON API views

- parse_json_body: decode a request body into a dict
- json_error: consistent error envelope
- paginate: page a queryset from ?page= / ?page_size=
- to_iso / to_float: serialization of dates and decimals
"""
import json
import logging
from django.conf import settings
from django.core.paginator import Paginator
from django.http import JsonResponse

logger = logging.getLogger(__name__)


class InvalidPayload(Exception):
    """Raised when a request body is not a JSON object"""
    pass


def parse_json_body(request):
    """
    Return the request body as a dict

    Form-encoded bodies are accepted too (the QueryDict is flattened), so
    the same view serves both fetch() JSON calls and plain HTML forms.

    Raises:
        InvalidPayload: If the body is not valid JSON or not an object
    """
    content_type = request.META.get('CONTENT_TYPE', '')
    if content_type.startswith('multipart/form-data') or content_type.startswith('application/x-www-form-urlencoded'):
        return request.POST.dict()

    if not request.body:
        return {}

    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidPayload('Invalid JSON payload')

    if not isinstance(data, dict):
        raise InvalidPayload('JSON payload must be an object')
    return data


def json_error(message, status=400, code=None, **extra):
    payload = {'success': False, 'error': str(message)}
    if code:
        payload['code'] = code
    payload.update(extra)
    return JsonResponse(payload, status=status)


def form_errors(form):
    """Flatten Django form errors into {field: [messages]}"""
    return {field: [str(e) for e in errors] for field, errors in form.errors.items()}


def paginate(request, queryset, serializer):
    """
    Paginate a queryset and serialize the current page

    Returns:
        dict: {'results': [...], 'pagination': {...}}
    """
    try:
        page_size = int(request.GET.get('page_size', settings.PAGINATION_SIZE))
    except (TypeError, ValueError):
        page_size = settings.PAGINATION_SIZE
    page_size = max(1, min(page_size, settings.PAGINATION_MAX_SIZE))

    paginator = Paginator(queryset, page_size)
    page_obj = paginator.get_page(request.GET.get('page', 1))

    return {
        'results': [serializer(obj) for obj in page_obj],
        'pagination': {
            'page': page_obj.number,
            'page_size': page_size,
            'total': paginator.count,
            'num_pages': paginator.num_pages,
            'has_next': page_obj.has_next(),
            'has_previous': page_obj.has_previous(),
        },
    }


def to_iso(value):
    return value.isoformat() if value else None


def to_float(value):
    return float(value) if value is not None else None


def percentage(part, whole, digits=1):
    if not whole:
        return 0.0
    return round(part / whole * 100, digits)


def get_client_ip(request):
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        # First one is the original client IP
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')
