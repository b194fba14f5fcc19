"""
Payload parsers for the public lead intake webhook

Each parser turns a platform's webhook body into a list of submissions:

    {
        'form_data': {field name: value},   # goes through field mapping
        'external_id': str,                 # used for de-duplication
        'campaign_id': str,
        'form_id': str,
        'form_type': str,
        'response_minutes': int or None,
        'metadata': dict,
    }

Unknown platforms use the generic parser: a flat JSON object (or one
nested under "fields"), as posted by website forms and landing pages.
"""

import logging

logger = logging.getLogger(__name__)

# Keys of a generic payload that describe the submission, not the lead
GENERIC_META_KEYS = ['external_id', 'submission_id', 'campaign_id', 'form_id', 'form_type', 'response_time_minutes']


class InvalidWebhookPayload(Exception):
    pass


def _submission(form_data, external_id='', campaign_id='', form_id='', form_type='default',
                response_minutes=None, metadata=None):
    return {
        'form_data': form_data,
        'external_id': str(external_id or ''),
        'campaign_id': str(campaign_id or ''),
        'form_id': str(form_id or ''),
        'form_type': form_type or 'default',
        'response_minutes': response_minutes,
        'metadata': metadata or {},
    }


def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_generic(payload):
    fields = payload.get('fields') if isinstance(payload.get('fields'), dict) else payload
    form_data = {key: value for key, value in fields.items() if key not in GENERIC_META_KEYS and key != 'fields'}
    return [_submission(
        form_data,
        external_id=payload.get('external_id') or payload.get('submission_id'),
        campaign_id=payload.get('campaign_id'),
        form_id=payload.get('form_id'),
        form_type=payload.get('form_type'),
        response_minutes=_to_int(payload.get('response_time_minutes')),
    )]


def parse_google_ads(payload):
    """Google Ads lead form extension: columns arrive as user_column_data"""
    columns = payload.get('user_column_data')
    if not isinstance(columns, list):
        raise InvalidWebhookPayload('user_column_data is required')

    form_data = {}
    for column in columns:
        if not isinstance(column, dict) or not column.get('column_id'):
            continue
        value = column.get('string_value')
        if value is None:
            value = column.get('boolean_value')
        form_data[str(column['column_id']).lower()] = value

    return [_submission(
        form_data,
        external_id=payload.get('gclid') or payload.get('lead_id'),
        campaign_id=payload.get('campaign_id'),
        form_id=payload.get('form_id'),
        metadata={
            'ad_group_id': payload.get('ad_group_id'),
            'creative_id': payload.get('creative_id'),
        },
    )]


def parse_meta(payload):
    """Facebook / Instagram lead ads: one submission per leadgen change"""
    entries = payload.get('entry')
    if not isinstance(entries, list):
        raise InvalidWebhookPayload('entry is required')

    submissions = []
    for entry in entries:
        for change in (entry or {}).get('changes') or []:
            if change.get('field') != 'leadgen':
                continue
            value = change.get('value') or {}
            form_data = {
                field.get('name'): (field.get('values') or [''])[0]
                for field in value.get('field_data') or []
                if field.get('name')
            }
            submissions.append(_submission(
                form_data,
                external_id=value.get('leadgen_id'),
                campaign_id=value.get('campaign_id'),
                form_id=value.get('form_id'),
                metadata={
                    'ad_id': value.get('ad_id'),
                    'page_id': value.get('page_id'),
                    'adgroup_id': value.get('adgroup_id'),
                    'platform': value.get('platform'),
                },
            ))
    return submissions


def parse_linkedin(payload):
    form_data = {
        'first_name': payload.get('firstName'),
        'last_name': payload.get('lastName'),
        'email': payload.get('email'),
        'phone': payload.get('phoneNumber'),
    }
    for response in payload.get('responses') or []:
        if response.get('questionId'):
            form_data[str(response['questionId'])] = response.get('answer')

    return [_submission(
        form_data,
        external_id=payload.get('id'),
        campaign_id=payload.get('campaignId'),
        metadata={'creative_id': payload.get('creativeId'), 'company': payload.get('company'), 'title': payload.get('title')},
    )]


PARSERS = {
    'google_ads': parse_google_ads,
    'facebook_ads': parse_meta,
    'meta': parse_meta,
    'instagram': parse_meta,
    'linkedin': parse_linkedin,
}


def parse_webhook_payload(platform, payload):
    """
    Raises:
        InvalidWebhookPayload: Body does not match the platform's format
    """
    parser = PARSERS.get(platform, parse_generic)
    try:
        return parser(payload)
    except (AttributeError, TypeError) as e:
        logger.warning("Malformed %s webhook payload: %s", platform, e)
        raise InvalidWebhookPayload(f'Malformed {platform} payload')
