"""
Placeholder templates for messages and offer letters

Syntax:
    {{variable}}          -> context['variable']
    {{object.property}}   -> context['object']['property'] (dict) or
                             getattr(context['object'], 'property')

Unknown placeholders are left in the text untouched and reported, so a
half-filled message is easy to spot instead of silently sending blanks.

Example:
    >>> render_template('Dear {{student_name}}, welcome to {{institution.name}}',
    ...                 {'student_name': 'Asha', 'institution': {'name': 'ABC College'}})
    RenderResult(text='Dear Asha, welcome to ABC College', missing=[])
"""

import logging
import re
from collections import namedtuple
from datetime import date, datetime
from decimal import Decimal

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r'\{\{\s*(\w+)(?:\.(\w+))?\s*\}\}')

RenderResult = namedtuple('RenderResult', ['text', 'missing'])


class TemplateRenderError(Exception):
    """Raised when required template variables are missing"""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f'Missing template variables: {", ".join(self.missing)}')


def _format_value(value):
    if isinstance(value, datetime):
        return value.strftime('%d %b %Y %H:%M')
    if isinstance(value, date):
        return value.strftime('%d %b %Y')
    if isinstance(value, Decimal):
        return f'{value:,.2f}'
    return str(value)


def _lookup(context, name, prop):
    if name not in context or context[name] is None:
        raise KeyError(name)
    value = context[name]
    if prop is None:
        return value

    if isinstance(value, dict):
        if prop not in value or value[prop] is None:
            raise KeyError(f'{name}.{prop}')
        return value[prop]

    attr = getattr(value, prop, None)
    if attr is None or prop.startswith('_'):
        raise KeyError(f'{name}.{prop}')
    return attr() if callable(attr) else attr


def render_template(text, context):
    """
    Substitute placeholders

    Returns:
        RenderResult: (text, missing placeholder names)
    """
    missing = []

    def replace(match):
        name, prop = match.group(1), match.group(2)
        try:
            return _format_value(_lookup(context, name, prop))
        except KeyError:
            placeholder = f'{name}.{prop}' if prop else name
            if placeholder not in missing:
                missing.append(placeholder)
            return match.group(0)

    rendered = PLACEHOLDER_RE.sub(replace, text or '')
    if missing:
        logger.warning("Template variables not found: %s", ', '.join(missing))
    return RenderResult(rendered, missing)


def extract_variables(text):
    """Placeholder names in order of first appearance ('student_name', 'institution.name')"""
    seen = []
    for name, prop in PLACEHOLDER_RE.findall(text or ''):
        placeholder = f'{name}.{prop}' if prop else name
        if placeholder not in seen:
            seen.append(placeholder)
    return seen


def validate_variables(text, context, required=None):
    """
    Check that a context can fill a template

    Args:
        required (list, optional): Names that must be present; defaults to
            every placeholder in ``text``

    Returns:
        dict: {'valid': bool, 'missing': [...], 'variables': [...]}
    """
    variables = extract_variables(text)
    needed = variables if required is None else required
    missing = []
    for placeholder in needed:
        name, _, prop = placeholder.partition('.')
        try:
            _lookup(context, name, prop or None)
        except KeyError:
            missing.append(placeholder)
    return {'valid': not missing, 'missing': missing, 'variables': variables}


def render_strict(text, context):
    """Render, raising TemplateRenderError when a placeholder is unknown"""
    result = render_template(text, context)
    if result.missing:
        raise TemplateRenderError(result.missing)
    return result.text


# BUILT-IN TEMPLATES (used when an institution has not written its own)
DEFAULT_TEMPLATES = {
    'welcome': {
        'name': 'Welcome',
        'category': 'admission',
        'subject': 'Welcome to {{institution_name}} - Your Application Journey Begins',
        'body': (
            'Dear {{student_name}},\n\n'
            'Thank you for your interest in {{course}} at {{institution_name}}. '
            'Our admissions team will guide you through the next steps.\n\n'
            'Regards,\nAdmissions Team'
        ),
    },
    'documents_required': {
        'name': 'Required Documents',
        'category': 'document',
        'subject': 'Required Documents - {{institution_name}}',
        'body': (
            'Dear {{student_name}},\n\n'
            'Please upload the remaining documents for your {{course}} application '
            'so we can continue reviewing it.\n\n'
            'Regards,\nAdmissions Team'
        ),
    },
    'payment_confirmed': {
        'name': 'Payment Confirmed',
        'category': 'payment',
        'subject': 'Payment Confirmed - {{institution_name}}',
        'body': (
            'Dear {{student_name}},\n\n'
            'We have received your payment of {{amount}} {{currency}}. Thank you.\n\n'
            'Regards,\nFinance Team'
        ),
    },
    'follow_up_reminder': {
        'name': 'Follow-up Reminder',
        'category': 'lead',
        'subject': 'Follow-up Reminder - {{institution_name}}',
        'body': (
            'Dear {{student_name}},\n\n'
            'We tried to reach you about {{course}}. Reply to this message or call us '
            'at {{institution_phone}} at a convenient time.\n\n'
            'Regards,\nAdmissions Team'
        ),
    },
    'offer_letter': {
        'name': 'Admission Offer',
        'category': 'admission',
        'subject': 'Congratulations! Admission Offer from {{institution_name}}',
        'body': (
            'Dear {{student_name}},\n\n'
            'Congratulations! We are pleased to offer you admission to our {{course}} program '
            'for the academic year {{academic_year}}.\n\n'
            'Your program will begin on {{program_start_date}} and the total fee is '
            '{{fee_amount}} per year.\n\n'
            'Please confirm your acceptance by {{acceptance_deadline}}.\n\n'
            'We look forward to welcoming you to {{institution_name}}.\n\n'
            'Best regards,\nAdmissions Team'
        ),
    },
}
