"""
This module maps arbitrary inbound form payloads onto lead fields.

Forms on institution websites, landing pages and ad platforms name their
fields freely ("Student Name", "mobileNumber", "utm_source"...). Field names
are normalized (lowercased, separators removed) and matched against known
patterns per target field:

1. An exact pattern match always wins.
2. Otherwise the longest pattern contained in the field name wins
   ("guardian_phone_number" -> parent_phone, not phone).

Values are normalized per target (email, phone, dates, pincode, names).
Fields that match nothing are returned separately so callers can keep
them as extra data.
"""

import logging
import re
from datetime import date, datetime

from django.conf import settings
from django.utils.dateparse import parse_date, parse_datetime

logger = logging.getLogger(__name__)


# Canonical lead fields and the form field names that feed them
FIELD_PATTERNS = {
    'name': [
        'name', 'full_name', 'fullname', 'student_name', 'applicant_name', 'candidate_name',
    ],
    'email': [
        'email', 'email_address', 'e_mail', 'student_email', 'applicant_email', 'contact_email', 'primary_email',
    ],
    'phone': [
        'phone', 'phone_number', 'mobile', 'mobile_number', 'contact_number', 'telephone',
        'student_phone', 'applicant_phone', 'whatsapp_number',
    ],
    'course': [
        'course', 'course_name', 'program', 'program_name', 'programme', 'degree', 'degree_name',
        'stream', 'specialization', 'field_of_study',
    ],
    'qualification': [
        'qualification', 'education', 'educational_background', 'highest_qualification',
        'degree_held', 'academic_qualification',
    ],
    'address': [
        'address', 'full_address', 'permanent_address', 'residential_address', 'home_address', 'current_address',
    ],
    'city': [
        'city', 'location', 'residence_city', 'current_city', 'hometown', 'home_town',
    ],
    'state': [
        'state', 'province', 'region', 'residence_state', 'current_state',
    ],
    'pincode': [
        'pincode', 'pin_code', 'postal_code', 'zip_code', 'zip',
    ],
    'date_of_birth': [
        'date_of_birth', 'dob', 'birth_date', 'birthday',
    ],
    'gender': ['gender', 'sex'],
    'parent_name': [
        'parent_name', 'father_name', 'mother_name', 'guardian_name', 'emergency_contact',
    ],
    'parent_phone': [
        'parent_phone', 'father_phone', 'mother_phone', 'guardian_phone', 'emergency_phone',
        'parent_mobile', 'father_mobile', 'mother_mobile', 'guardian_mobile',
    ],
    'parent_email': [
        'parent_email', 'father_email', 'mother_email', 'guardian_email', 'emergency_email',
    ],
    'source': [
        'source', 'lead_source', 'referral_source', 'how_did_you_hear', 'marketing_source',
        'utm_source', 'campaign', 'utm_campaign', 'medium', 'utm_medium',
    ],
    'interest': [
        'interest', 'area_of_interest', 'preferred_course', 'course_interest', 'program_interest',
    ],
    'budget': [
        'budget', 'budget_range', 'fee_budget', 'affordability', 'financial_capacity',
    ],
    'experience': [
        'experience', 'work_experience', 'professional_experience', 'years_of_experience',
    ],
    'notes': [
        'notes', 'comments', 'remarks', 'additional_info', 'message', 'feedback',
        'requirements', 'special_requirements',
    ],
}

# Split name fields, joined into `name` when no full name is present
NAME_PART_PATTERNS = {
    'firstname': 0, 'givenname': 0, 'fname': 0,
    'middlename': 1,
    'lastname': 2, 'surname': 2, 'familyname': 2, 'lname': 2,
}

TARGET_FIELDS = list(FIELD_PATTERNS.keys())
REQUIRED_FIELDS = ['name', 'email', 'phone']

# Keys checked (in order) for the lead source and course interest
SOURCE_KEYS = ['source', 'lead_source', 'referral_source', 'utm_source', 'campaign']
COURSE_INTEREST_KEYS = ['course', 'program', 'interest', 'area_of_interest', 'preferred_course']
DEFAULT_SOURCE = 'Website Form'

# Shortest pattern allowed to match as a substring ("sex" in "essex" no)
MIN_PARTIAL_LENGTH = 4
# Short patterns that still match as a substring ("student_dob", "home_zip")
SHORT_PARTIAL_PATTERNS = {'zip', 'dob'}

DATE_FORMATS = ['%d/%m/%Y', '%d-%m-%Y', '%d.%m.%Y', '%Y/%m/%d', '%d %b %Y', '%d %B %Y', '%b %d, %Y', '%B %d, %Y']


def normalize_key(field_name):
    return re.sub(r'[\s_\-.]', '', str(field_name).lower())


# Precomputed (normalized pattern, target, original pattern)
_NORMALIZED_PATTERNS = [
    (normalize_key(pattern), target, pattern)
    for target, patterns in FIELD_PATTERNS.items()
    for pattern in patterns
]


def _is_empty(value):
    return value is None or (isinstance(value, str) and not value.strip())


# FIELD MATCHING
def match_field(field_name):
    """
    Find the lead field a form field maps to

    Returns:
        tuple: (target_field, confidence, matched_pattern) or None.
            confidence is 100 for an exact match and 80 for a partial one.

    Example:
        >>> match_field('Student Name')
        ('name', 100, 'student_name')
        >>> match_field('guardian_phone_no')
        ('parent_phone', 80, 'guardian_phone')
    """
    normalized = normalize_key(field_name)
    if not normalized:
        return None

    for pattern, target, original in _NORMALIZED_PATTERNS:
        if normalized == pattern:
            return target, 100, original

    best = None
    for pattern, target, original in _NORMALIZED_PATTERNS:
        if len(pattern) < MIN_PARTIAL_LENGTH and pattern not in SHORT_PARTIAL_PATTERNS:
            continue
        if pattern in normalized and (best is None or len(pattern) > len(best[0])):
            best = (pattern, target, original)

    if best:
        return best[1], 80, best[2]
    return None


def _name_part_index(field_name):
    return NAME_PART_PATTERNS.get(normalize_key(field_name))


# VALUE NORMALIZATION
def normalize_email(value):
    return str(value).strip().lower()


def normalize_phone(value, country_code=None):
    """
    Keep digits and '+', then add the default country code to bare
    national numbers

    Example (country code 91):
        '98765 43210'     -> '+919876543210'
        '919876543210'    -> '+919876543210'
        '+1 415-555-0100' -> '+14155550100'
    """
    country_code = country_code or settings.DEFAULT_PHONE_COUNTRY_CODE
    normalized = re.sub(r'[^\d+]', '', str(value))

    if normalized.startswith('00'):
        normalized = '+' + normalized[2:]

    if normalized.startswith('+'):
        return normalized

    if len(normalized) == 11 and normalized.startswith('0'):
        normalized = normalized[1:]

    if len(normalized) == 10:
        return f'+{country_code}{normalized}'
    if len(normalized) == 10 + len(country_code) and normalized.startswith(country_code):
        return f'+{normalized}'
    return normalized


def normalize_date(value):
    """Return an ISO date string, or the input as text when it cannot be parsed"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    try:
        parsed = parse_date(text)
        if parsed:
            return parsed.isoformat()
        parsed_dt = parse_datetime(text)
        if parsed_dt:
            return parsed_dt.date().isoformat()
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return text


def normalize_pincode(value):
    return re.sub(r'\D', '', str(value))[:6]


def normalize_name(value):
    return re.sub(r'\s+', ' ', str(value)).strip()


def normalize_value(value, target):
    if target in ('email', 'parent_email'):
        return normalize_email(value)
    if target in ('phone', 'parent_phone'):
        return normalize_phone(value)
    if target == 'date_of_birth':
        return normalize_date(value)
    if target == 'pincode':
        return normalize_pincode(value)
    if target in ('name', 'parent_name'):
        return normalize_name(value)
    if isinstance(value, str):
        return value.strip()
    return value


# MAPPING
def map_form_data(form_data):
    """
    Map a raw form payload onto lead fields

    Args:
        form_data (dict): Field name -> value as submitted

    Returns:
        dict: {
            'mapped': {target_field: normalized value},
            'unmapped': {original field: value},
            'log': ['"Student Name" -> "name"', ...],
        }

    Conflicts (two form fields for one target) keep the first value seen,
    except that an exact match replaces a value from a partial match.
    """
    mapped = {}
    confidence = {}
    unmapped = {}
    log = []
    name_parts = {}

    for field_name, value in form_data.items():
        if _is_empty(value):
            continue

        part_index = _name_part_index(field_name)
        if part_index is not None:
            name_parts.setdefault(part_index, normalize_name(value))
            log.append(f'"{field_name}" -> "name" (part)')
            continue

        match = match_field(field_name)
        if not match:
            unmapped[field_name] = value
            continue

        target, score, _pattern = match
        if target in mapped and confidence[target] >= score:
            # Keep the earlier value, the duplicate goes to extra data
            unmapped[field_name] = value
            log.append(f'"{field_name}" -> "{target}" skipped (already mapped)')
            continue

        mapped[target] = normalize_value(value, target)
        confidence[target] = score
        log.append(f'"{field_name}" -> "{target}"')

    if 'name' not in mapped and name_parts:
        mapped['name'] = ' '.join(name_parts[i] for i in sorted(name_parts))

    return {'mapped': mapped, 'unmapped': unmapped, 'log': log}


def extract_lead_source(form_data):
    """First non-empty source-like key, else 'Website Form'"""
    for key in SOURCE_KEYS:
        if not _is_empty(form_data.get(key)):
            return str(form_data[key]).strip()
    return DEFAULT_SOURCE


def extract_course_interest(form_data):
    for key in COURSE_INTEREST_KEYS:
        if not _is_empty(form_data.get(key)):
            return str(form_data[key]).strip()
    return None


def validate_mapped_data(mapped):
    """
    Check the required lead fields (name, email, phone)

    Returns:
        dict: {'is_valid': bool, 'missing_fields': [...], 'score': 0-100}
    """
    missing = [field for field in REQUIRED_FIELDS if _is_empty(mapped.get(field))]
    score = round((len(REQUIRED_FIELDS) - len(missing)) / len(REQUIRED_FIELDS) * 100)
    return {'is_valid': not missing, 'missing_fields': missing, 'score': score}


def suggest_mappings(form_data):
    """
    Suggest a target for every non-empty form field

    Confidence: 100 exact name match, 80 partial name match, 70 when only
    the value looks like an email address or a 10-digit phone number.
    """
    suggestions = []
    for field_name, value in form_data.items():
        if _is_empty(value):
            continue

        if _name_part_index(field_name) is not None:
            suggestions.append({
                'source_field': field_name,
                'suggested_target': 'name',
                'confidence': 100,
                'reason': 'Name part (joined into full name)',
            })
            continue

        match = match_field(field_name)
        if match:
            target, score, pattern = match
            kind = 'Exact' if score == 100 else 'Partial'
            suggestions.append({
                'source_field': field_name,
                'suggested_target': target,
                'confidence': score,
                'reason': f'{kind} match with pattern: {pattern}',
            })
            continue

        if isinstance(value, str):
            if '@' in value and '.' in value:
                suggestions.append({
                    'source_field': field_name,
                    'suggested_target': 'email',
                    'confidence': 70,
                    'reason': 'Contains email-like format',
                })
            elif re.fullmatch(r'\d{10}', re.sub(r'\D', '', value)):
                suggestions.append({
                    'source_field': field_name,
                    'suggested_target': 'phone',
                    'confidence': 70,
                    'reason': 'Contains 10-digit number (likely phone)',
                })

    return suggestions
