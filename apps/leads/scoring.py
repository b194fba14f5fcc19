"""
Lead quality scoring

A lead's score is the sum of six weighted factors, reported as a
percentage of the best possible total:

- form type       (registration/application forms signal more intent)
- completeness    (how many lead fields were filled)
- response time   (minutes between form open and submit, or first contact)
- source          (walk-ins and referrals convert best)
- course interest (high-demand programs)
- budget          (stated affordability)

Keyword matching is forgiving: values are lowercased with separators
removed and a weight applies when either string contains the other.
"""

import copy
import logging

from .field_mapping import REQUIRED_FIELDS, TARGET_FIELDS, normalize_key

logger = logging.getLogger(__name__)


DEFAULT_SCORING_CONFIG = {
    'form_type': {
        'admission': 25,
        'inquiry': 20,
        'application': 30,
        'registration': 35,
        'scholarship': 15,
        'default': 10,
    },
    'completeness': {
        'required': 20,
        'optional': 10,
        'cap': 100,
    },
    'response_time': {
        'immediate': 25,  # within 1 hour
        'fast': 20,  # within 24 hours
        'normal': 15,  # within 72 hours (also used when unknown)
        'slow': 5,  # more than 72 hours
    },
    'source': {
        'website': 15,
        'google_ads': 20,
        'facebook_ads': 18,
        'referral': 25,
        'walk_in': 30,
        'phone': 20,
        'email': 15,
        'social_media': 12,
        'default': 10,
    },
    'course_interest': {
        'engineering': 20,
        'medicine': 25,
        'management': 18,
        'arts': 12,
        'science': 15,
        'commerce': 10,
        'default': 8,
    },
    'budget': {
        'high': 25,
        'medium': 15,
        'low': 5,
    },
}

BUDGET_KEYWORDS = [
    ('high', ['high', 'premium', 'expensive']),
    ('medium', ['medium', 'moderate', 'average']),
    ('low', ['low', 'budget', 'affordable']),
]

OPTIONAL_FIELDS = [field for field in TARGET_FIELDS if field not in REQUIRED_FIELDS]


def _has_value(value):
    return value is not None and str(value).strip() != ''


class LeadScorer:
    """
    Usage:
        scorer = LeadScorer()
        result = scorer.score(
            form_type='admission',
            form_data=mapped_fields,
            source='Google Ads',
            course_interest='B.Tech Computer Engineering',
            budget='medium',
            response_minutes=20,
        )
        result['percentage']  # -> 0..100
    """

    def __init__(self, config=None):
        self.config = copy.deepcopy(DEFAULT_SCORING_CONFIG)
        if config:
            self.update_config(config)

    def update_config(self, overrides):
        for section, values in overrides.items():
            if isinstance(values, dict):
                self.config.setdefault(section, {}).update(values)

    # FACTORS
    def _keyword_weight(self, section, value, missing=None):
        weights = self.config[section]
        default = weights.get('default', 0)

        if not _has_value(value):
            return default if missing is None else missing

        normalized = normalize_key(value)
        for key, weight in weights.items():
            if key == 'default':
                continue
            normalized_key = normalize_key(key)
            if normalized_key in normalized or normalized in normalized_key:
                return weight
        return default

    def form_type_score(self, form_type):
        return self._keyword_weight('form_type', form_type)

    def completeness_score(self, form_data):
        weights = self.config['completeness']
        score = sum(weights['required'] for field in REQUIRED_FIELDS if _has_value(form_data.get(field)))
        score += sum(weights['optional'] for field in OPTIONAL_FIELDS if _has_value(form_data.get(field)))
        return min(score, weights['cap'])

    def response_time_score(self, response_minutes):
        weights = self.config['response_time']
        if response_minutes is None:
            return weights['normal']

        hours = response_minutes / 60
        if hours <= 1:
            return weights['immediate']
        if hours <= 24:
            return weights['fast']
        if hours <= 72:
            return weights['normal']
        return weights['slow']

    def source_score(self, source):
        return self._keyword_weight('source', source)

    def course_interest_score(self, course_interest):
        # No stated interest earns nothing (not the default weight)
        return self._keyword_weight('course_interest', course_interest, missing=0)

    def budget_score(self, budget):
        if not _has_value(budget):
            return 0
        text = str(budget).lower()
        for level, keywords in BUDGET_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                return self.config['budget'][level]
        return 0

    def max_score(self):
        completeness = self.config['completeness']
        max_completeness = min(
            len(REQUIRED_FIELDS) * completeness['required'] + len(OPTIONAL_FIELDS) * completeness['optional'],
            completeness['cap'],
        )
        return (
            max(self.config['form_type'].values())
            + max_completeness
            + max(self.config['response_time'].values())
            + max(self.config['source'].values())
            + max(self.config['course_interest'].values())
            + max(self.config['budget'].values())
        )

    # SCORING
    def score(self, form_type='default', form_data=None, source='', course_interest=None, budget=None,
              response_minutes=None):
        """
        Score a lead

        Returns:
            dict: {
                'score': int, 'max_score': int, 'percentage': int,
                'breakdown': {factor: points},
                'factors': [str], 'recommendations': [str],
            }
        """
        form_data = form_data or {}
        breakdown = {
            'form_type': self.form_type_score(form_type),
            'completeness': self.completeness_score(form_data),
            'response_time': self.response_time_score(response_minutes),
            'source': self.source_score(source),
            'course_interest': self.course_interest_score(course_interest),
            'budget': self.budget_score(budget),
        }

        total = sum(breakdown.values())
        max_score = self.max_score()
        percentage = round(total / max_score * 100) if max_score else 0

        return {
            'score': total,
            'max_score': max_score,
            'percentage': percentage,
            'breakdown': breakdown,
            'factors': self._factors(breakdown, form_type, source, course_interest),
            'recommendations': self._recommendations(breakdown, form_type),
        }

    def _factors(self, breakdown, form_type, source, course_interest):
        factors = []
        if breakdown['form_type'] > 20:
            factors.append(f'High-value form type: {form_type}')
        if breakdown['completeness'] > 50:
            factors.append('Complete form submission')
        if breakdown['response_time'] > 20:
            factors.append('Quick response time')
        if breakdown['source'] > 20:
            factors.append(f'High-quality source: {source}')
        if breakdown['course_interest'] > 15:
            factors.append(f'High-demand course: {course_interest}')
        if breakdown['budget'] > 20:
            factors.append('High budget capacity')
        return factors

    def _recommendations(self, breakdown, form_type):
        recommendations = []
        if breakdown['completeness'] < 30:
            recommendations.append('Follow up to collect missing information')
        if breakdown['response_time'] > 20:
            recommendations.append('Prioritize immediate contact - high engagement')
        if breakdown['source'] > 20:
            recommendations.append('High-quality lead - assign to experienced telecaller')
        if breakdown['course_interest'] > 15:
            recommendations.append('Course-specific follow-up strategy')
        if breakdown['budget'] > 20:
            recommendations.append('Premium service offering')
        if str(form_type).lower() in ('admission', 'application'):
            recommendations.append('Admission-focused follow-up')
        return recommendations


def score_lead(lead, form_type='default', form_data=None, response_minutes=None, config=None):
    """
    Score a Lead instance and store the result on it (not saved)

    ``form_data`` defaults to the lead's own fields plus its extra data.
    """
    if form_data is None:
        form_data = dict(lead.extra_data or {})
        form_data.update({
            'name': lead.name,
            'email': lead.email,
            'phone': lead.phone,
            'course': lead.course_interest,
            'qualification': lead.qualification,
            'city': lead.city,
            'state': lead.state,
            'source': lead.source,
            'notes': lead.notes,
        })

    scorer = LeadScorer(config)
    result = scorer.score(
        form_type=form_type,
        form_data=form_data,
        source=lead.platform or lead.source,
        course_interest=lead.course_interest or form_data.get('interest'),
        budget=form_data.get('budget'),
        response_minutes=response_minutes,
    )
    lead.score = result['percentage']
    lead.score_breakdown = result['breakdown']
    return result
