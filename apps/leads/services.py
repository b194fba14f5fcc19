"""
Lead intake pipeline

Every way a lead enters the system (public webhook, manual entry, file
import) goes through ``capture_lead``:

    raw form data
      -> field mapping (canonical fields + extra data)
      -> de-duplication (merge into an existing lead or create)
      -> scoring
      -> auto-assignment (new leads only)
      -> notifications (assignee, or the institution admins when unassigned)
"""

import csv
import logging
from io import TextIOWrapper

import openpyxl
from django.core.exceptions import ValidationError
from django.core.validators import validate_email

from apps.accounts.models import ROLE_INSTITUTION_ADMIN
from apps.notifications.services import send_notification, send_role_notification
from .assignment import LeadAssigner, AssignmentError, auto_assign_lead
from .deduplication import create_or_update_lead
from .field_mapping import map_form_data, validate_mapped_data, extract_lead_source
from .models import CallLog, Lead
from .scoring import score_lead

logger = logging.getLogger(__name__)


class LeadIntakeError(Exception):
    """Raised when a submission cannot become a lead"""
    pass


# Display source for submissions that do not name one
PLATFORM_SOURCES = {
    'website': 'Website Form',
    'landing_page': 'Landing Page',
    'google_ads': 'Google Ads',
    'facebook_ads': 'Facebook Ads',
    'instagram': 'Instagram',
    'linkedin': 'LinkedIn',
    'manual': 'Manual Entry',
    'import': 'Import',
}

# Mapped fields stored in their own Lead column
COLUMN_FIELDS = {
    'name': 'name',
    'email': 'email',
    'phone': 'phone',
    'source': 'source',
    'qualification': 'qualification',
    'city': 'city',
    'state': 'state',
    'notes': 'notes',
}


# HELPER FUNCTIONS
def build_lead_data(mapped, unmapped, platform=''):
    """
    Split mapped form data into Lead columns and extra data

    Returns:
        dict: Keyword data for create_or_update_lead
    """
    data = {column: mapped[field] for field, column in COLUMN_FIELDS.items() if mapped.get(field)}
    data['course_interest'] = mapped.get('course') or mapped.get('interest') or ''

    if not data.get('source'):
        data['source'] = PLATFORM_SOURCES.get(platform) or extract_lead_source(unmapped)

    extra = {key: value for key, value in mapped.items() if key not in COLUMN_FIELDS and key != 'course'}
    extra.update(unmapped)

    email = data.get('email')
    if email:
        try:
            validate_email(email)
        except ValidationError:
            extra['invalid_email'] = data.pop('email')

    data['extra_data'] = extra
    return data


def notify_lead_assigned(lead, assignee, assigned_by=None):
    send_notification(
        assignee,
        title='New lead assigned',
        message=f'{lead.name} ({lead.course_interest or lead.source}) has been assigned to you.',
        category='lead',
        priority='high' if lead.score >= 70 else 'medium',
        institution=lead.institution,
        lead=lead,
        action_type='lead_assigned',
        data={'lead_id': lead.pk, 'assigned_by': assigned_by.pk if assigned_by else None},
    )


def _assign(lead, auto_assign, user):
    if auto_assign is None:
        return auto_assign_lead(lead, assigned_by=user)
    if not auto_assign:
        return None
    try:
        result = LeadAssigner(lead.institution).assign([lead], assigned_by=user)
    except AssignmentError as e:
        logger.warning("Could not assign lead %s: %s", lead.pk, e)
        return None
    return result['assignments'][0][1] if result['assignments'] else None


# INTAKE
def capture_lead(institution, form_data, platform='website', form_type='default', external_id='', campaign_id='',
                 form_id='', metadata=None, response_minutes=None, user=None, auto_assign=None, source=None):
    """
    Turn a raw form submission into a lead

    Args:
        institution: Owning Institution
        form_data (dict): Field name -> value, as submitted
        platform (str): Intake platform key
        form_type (str): admission / inquiry / application / registration...
        response_minutes (int, optional): Time taken to fill the form
        user: Staff member entering the lead (None for public intake)
        auto_assign: None follows the institution's AssignmentConfig,
            True/False forces assignment on or off
        source (str, optional): Overrides the detected source

    Returns:
        dict: {'lead', 'created', 'assigned_to', 'mapping', 'validation', 'scoring'}

    Raises:
        LeadIntakeError: The submission has neither an email nor a phone number
    """
    mapping = map_form_data(form_data or {})
    data = build_lead_data(mapping['mapped'], mapping['unmapped'], platform)
    if source:
        data['source'] = source

    if not data.get('email') and not data.get('phone'):
        raise LeadIntakeError('A lead needs an email address or a phone number')

    lead, created = create_or_update_lead(
        institution,
        data,
        platform=platform,
        external_id=external_id,
        campaign_id=campaign_id,
        form_id=form_id,
        metadata=metadata,
        user=user,
    )

    previous_score = lead.score
    scoring = score_lead(
        lead,
        form_type=form_type,
        form_data={**mapping['mapped'], **(lead.extra_data or {})},
        response_minutes=response_minutes,
        config=(institution.settings or {}).get('lead_scoring'),
    )
    lead.save(update_fields=['score', 'score_breakdown', 'updated_at'])
    if lead.score != previous_score:
        lead.log_activity('score_updated', f'Lead score set to {lead.score}', metadata=scoring['breakdown'])

    assigned_to = lead.assigned_to
    if created:
        assigned_to = _assign(lead, auto_assign, user)
        if assigned_to:
            notify_lead_assigned(lead, assigned_to, assigned_by=user)
        else:
            send_role_notification(
                institution,
                [ROLE_INSTITUTION_ADMIN],
                title='New unassigned lead',
                message=f'{lead.name} came in from {lead.source} and is waiting for assignment.',
                category='lead',
                lead=lead,
                action_type='lead_created',
                data={'lead_id': lead.pk},
            )

    logger.info("Lead %s %s for %s via %s (score %s)", lead.pk, 'created' if created else 'merged',
                institution.slug, platform or 'unknown', lead.score)

    return {
        'lead': lead,
        'created': created,
        'assigned_to': assigned_to,
        'mapping': mapping,
        'validation': validate_mapped_data(mapping['mapped']),
        'scoring': scoring,
    }


# FILE IMPORT
def read_import_rows(uploaded_file):
    """
    Read a CSV or XLSX upload into a list of {header: value} dicts

    The first row holds the column headers, they go through field mapping
    like any web form.
    """
    name = uploaded_file.name.lower()

    if name.endswith('.xlsx'):
        wb = openpyxl.load_workbook(uploaded_file, read_only=True, data_only=True)
        ws = wb.active
        rows = ws.iter_rows(values_only=True)
        headers = [str(h).strip() if h is not None else '' for h in next(rows, [])]
        records = []
        for row in rows:
            record = {headers[i]: value for i, value in enumerate(row) if i < len(headers) and headers[i] and value is not None}
            if record:
                records.append({key: str(value).strip() for key, value in record.items()})
        wb.close()
        return records

    file_data = TextIOWrapper(uploaded_file.file, encoding='utf-8-sig')
    reader = csv.DictReader(file_data)
    records = []
    for row in reader:
        record = {key.strip(): (value or '').strip() for key, value in row.items() if key}
        if any(record.values()):
            records.append(record)
    return records


def import_leads(institution, uploaded_file, source='', auto_assign=False, user=None):
    """
    Bulk import leads from a spreadsheet

    Returns:
        dict: {'total', 'created', 'merged', 'failed', 'errors': ['Row 3: ...']}
    """
    results = {'total': 0, 'created': 0, 'merged': 0, 'failed': 0, 'errors': []}

    for row_num, record in enumerate(read_import_rows(uploaded_file), start=2):
        results['total'] += 1
        try:
            outcome = capture_lead(
                institution,
                record,
                platform='import',
                user=user,
                auto_assign=auto_assign,
                source=source or None,
            )
        except LeadIntakeError as e:
            results['failed'] += 1
            results['errors'].append(f'Row {row_num}: {e}')
            continue

        results['created' if outcome['created'] else 'merged'] += 1

    logger.info("Imported leads into %s: %d created, %d merged, %d failed",
                institution.slug, results['created'], results['merged'], results['failed'])
    return results


# TELECALLING
def record_call(call_log, user=None):
    """
    Apply a logged call to its lead

    - activity entry on the lead timeline
    - last_contacted_at moves forward for connected calls
    - outcomes like interested / qualified / not_interested move the lead
      along the funnel, but only while it is still being worked
    """
    lead = call_log.lead
    outcome_label = call_log.get_outcome_display() if call_log.outcome else call_log.get_status_display()
    lead.log_activity(
        'call_logged',
        f'{call_log.get_call_type_display()} call logged: {outcome_label}',
        user=user,
        metadata={'call_log_id': call_log.pk, 'duration_seconds': call_log.duration_seconds},
    )

    if call_log.is_connected():
        lead.last_contacted_at = call_log.ended_at or call_log.started_at
        lead.save(update_fields=['last_contacted_at', 'updated_at'])

    new_status = CallLog.OUTCOME_STATUS_MAP.get(call_log.outcome)
    if new_status and lead.status in Lead.ACTIVE_STATUSES:
        lead.change_status(new_status, user=user, note=f'Call outcome: {outcome_label}')
    return lead


def schedule_follow_up(follow_up, user=None):
    """Keep the lead's next_follow_up in sync and log the scheduling"""
    lead = follow_up.lead
    if lead.next_follow_up is None or follow_up.scheduled_at < lead.next_follow_up or lead.next_follow_up < follow_up.created_at:
        lead.next_follow_up = follow_up.scheduled_at
        lead.save(update_fields=['next_follow_up', 'updated_at'])

    lead.log_activity(
        'follow_up_scheduled',
        f'{follow_up.get_follow_up_type_display()} follow-up scheduled for {follow_up.scheduled_at:%Y-%m-%d %H:%M}',
        user=user,
        metadata={'follow_up_id': follow_up.pk},
    )
