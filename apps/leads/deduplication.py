"""
Lead de-duplication

A submission is a duplicate when:
1. the same platform already delivered the same external id, or
2. the institution already has a lead with the same email
   (case-insensitive) or the same phone number.

Duplicates are merged into the existing lead (blank fields filled, extra
data merged) instead of creating a second lead.
"""

import logging

from django.db import transaction
from django.db.models import Q

from .models import Lead, LeadSourceTracking

logger = logging.getLogger(__name__)

# Lead columns a submission may fill in
LEAD_FIELDS = ['name', 'email', 'phone', 'source', 'platform', 'course_interest', 'qualification', 'city', 'state']


def find_duplicate(institution, email=None, phone=None, platform=None, external_id=None):
    """
    Look for an existing lead matching a submission

    Returns:
        tuple: (lead, reason) or (None, None)
    """
    if platform and external_id:
        tracking = (
            LeadSourceTracking.objects
            .filter(institution=institution, platform=platform, external_id=external_id)
            .select_related('lead')
            .first()
        )
        if tracking:
            return tracking.lead, 'Duplicate external ID from same platform'

    conditions = Q()
    if email:
        conditions |= Q(email__iexact=email)
    if phone:
        conditions |= Q(phone=phone)

    if conditions:
        lead = Lead.objects.filter(institution=institution).filter(conditions).order_by('created_at').first()
        if lead:
            return lead, 'Matching email or phone number'

    return None, None


def merge_into(lead, data, user=None, reason=''):
    """
    Merge a duplicate submission into an existing lead

    Only blank columns are filled, existing values are never overwritten.
    New notes are appended.

    Returns:
        list: Names of the fields that changed
    """
    changed = []
    for field in LEAD_FIELDS:
        value = data.get(field)
        if value and not getattr(lead, field):
            setattr(lead, field, value)
            changed.append(field)

    extra = data.get('extra_data') or {}
    if extra:
        merged_extra = dict(lead.extra_data or {})
        for key, value in extra.items():
            merged_extra.setdefault(key, value)
        if merged_extra != lead.extra_data:
            lead.extra_data = merged_extra
            changed.append('extra_data')

    notes = (data.get('notes') or '').strip()
    if notes and notes not in lead.notes:
        lead.notes = f'{lead.notes}\n{notes}'.strip()
        changed.append('notes')

    lead.save()
    lead.log_activity(
        'merged',
        f'Duplicate submission merged ({reason or "matching contact details"})',
        user=user,
        metadata={'fields': changed},
    )
    logger.info("Merged duplicate submission into lead %s (%s)", lead.pk, ', '.join(changed) or 'no changes')
    return changed


def create_or_update_lead(institution, data, platform='', external_id='', campaign_id='', form_id='',
                          metadata=None, user=None):
    """
    Create a lead from a submission, or merge it into its duplicate

    Args:
        institution: Owning Institution
        data (dict): Lead fields (name, email, phone, source, course_interest,
            qualification, city, state, notes, extra_data)
        platform (str): Intake platform key (website, google_ads, manual...)
        external_id (str): Submission id on that platform

    Returns:
        tuple: (lead, created)
    """
    with transaction.atomic():
        existing, reason = find_duplicate(
            institution,
            email=data.get('email'),
            phone=data.get('phone'),
            platform=platform,
            external_id=external_id,
        )

        if existing:
            merge_into(existing, data, user=user, reason=reason)
            lead, created = existing, False
        else:
            lead = Lead.objects.create(
                institution=institution,
                name=data.get('name') or data.get('email') or data.get('phone') or 'Unknown',
                email=data.get('email') or '',
                phone=data.get('phone') or '',
                source=data.get('source') or 'Website Form',
                platform=platform or data.get('platform') or '',
                course_interest=data.get('course_interest') or '',
                qualification=data.get('qualification') or '',
                city=data.get('city') or '',
                state=data.get('state') or '',
                notes=data.get('notes') or '',
                extra_data=data.get('extra_data') or {},
            )
            lead.log_activity('created', f'Lead created from {lead.source}', user=user)
            created = True

        already_tracked = bool(external_id) and LeadSourceTracking.objects.filter(
            institution=institution, platform=platform, external_id=external_id
        ).exists()
        if platform and not already_tracked:
            LeadSourceTracking.objects.create(
                institution=institution,
                lead=lead,
                platform=platform,
                external_id=external_id or '',
                campaign_id=campaign_id or '',
                form_id=form_id or '',
                metadata=metadata or {},
            )

    return lead, created
