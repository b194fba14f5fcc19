"""
Lead-to-telecaller assignment

Algorithms:
- round_robin: rotate through active telecallers in a fixed order. The
  rotation cursor is stored on AssignmentConfig so it carries over between
  batches and single intake assignments.
- load_based: pick the telecaller with the fewest active leads. Loads are
  updated as the batch is assigned, so a batch spreads evenly.
- skill_based: restrict candidates to telecallers whose skills match the
  lead's course interest, then pick by load. Falls back to every
  telecaller when nobody has the skill.

Telecallers holding ``max_leads_per_user`` active leads are skipped
(0 disables the cap).
"""

import logging

from django.db import transaction
from django.db.models import Count, Q

from apps.accounts.models import User, ROLE_TELECALLER
from .field_mapping import normalize_key
from .models import Lead, AssignmentConfig

logger = logging.getLogger(__name__)


class AssignmentError(Exception):
    """Raised when no telecaller can take a lead"""
    pass


class LeadAssigner:

    def __init__(self, institution, config=None):
        self.institution = institution
        self.config = config or AssignmentConfig.for_institution(institution)
        self._loads = None

    # CANDIDATES
    def get_candidates(self):
        return list(
            User.objects.filter(institution=self.institution, role=ROLE_TELECALLER, is_active=True).order_by('id')
        )

    def get_loads(self, users):
        """Active lead count per telecaller id"""
        counts = (
            Lead.objects
            .filter(institution=self.institution, assigned_to__in=users, status__in=Lead.ACTIVE_STATUSES)
            .values('assigned_to')
            .annotate(total=Count('id'))
        )
        loads = {user.pk: 0 for user in users}
        loads.update({row['assigned_to']: row['total'] for row in counts})
        return loads

    def _has_capacity(self, user):
        cap = self.config.max_leads_per_user
        return not cap or self._loads[user.pk] < cap

    # ALGORITHMS
    def _pick_round_robin(self, candidates):
        ids = [user.pk for user in candidates]
        start = 0
        cursor = self.config.last_assigned_user_id
        if cursor is not None:
            # Continue after the last assigned user (or the next id above it if they left)
            later = [i for i, pk in enumerate(ids) if pk > cursor]
            start = later[0] if later else 0

        for offset in range(len(candidates)):
            user = candidates[(start + offset) % len(candidates)]
            if self._has_capacity(user):
                return user
        return None

    def _pick_least_loaded(self, candidates):
        available = [user for user in candidates if self._has_capacity(user)]
        if not available:
            return None
        return min(available, key=lambda user: (self._loads[user.pk], user.pk))

    def required_skills(self, lead):
        """Skills that satisfy the lead's course interest ([] when no keyword applies)"""
        interest = normalize_key(lead.course_interest or '')
        if not interest:
            return []
        for keyword, skills in (self.config.skill_requirements or {}).items():
            if normalize_key(keyword) in interest:
                if isinstance(skills, str):
                    skills = [skills]
                return [normalize_key(str(skill)) for skill in skills if str(skill).strip()]
        return []

    def _pick_skill_based(self, lead, candidates):
        required = self.required_skills(lead)
        interest = normalize_key(lead.course_interest or '')

        def matches(user):
            skills = [normalize_key(s) for s in (user.skills or [])]
            if required:
                return any(skill in skills for skill in required)
            return bool(interest) and any(s and s in interest for s in skills)

        skilled = [user for user in candidates if matches(user)]
        picked = self._pick_least_loaded(skilled) if skilled else None
        if picked is None:
            logger.info("No skilled telecaller with capacity for lead %s, falling back to load-based", lead.pk)
            picked = self._pick_least_loaded(candidates)
        return picked

    # ASSIGNMENT
    def pick(self, lead, candidates, algorithm):
        if algorithm == AssignmentConfig.ALGORITHM_ROUND_ROBIN:
            return self._pick_round_robin(candidates)
        if algorithm == AssignmentConfig.ALGORITHM_SKILL_BASED:
            return self._pick_skill_based(lead, candidates)
        return self._pick_least_loaded(candidates)

    def assign(self, leads, algorithm=None, assigned_by=None):
        """
        Assign a batch of leads

        Args:
            leads: Iterable of Lead instances (same institution)
            algorithm (str, optional): Overrides the configured algorithm
            assigned_by (User, optional): Recorded on the activity log

        Returns:
            dict: {'assignments': [(lead, user)], 'skipped': [(lead, reason)]}

        Raises:
            AssignmentError: No active telecallers, or all are at capacity
        """
        assignments = []
        skipped = []

        with transaction.atomic():
            # Row lock serialises the round-robin cursor and capacity checks
            # across concurrent intakes of one institution
            if self.config.pk:
                self.config = AssignmentConfig.objects.select_for_update().get(pk=self.config.pk)
            algorithm = algorithm or self.config.algorithm

            candidates = self.get_candidates()
            if not candidates:
                raise AssignmentError('No active telecallers found')
            self._loads = self.get_loads(candidates)

            for lead in leads:
                if not lead.can_be_assigned():
                    skipped.append((lead, f'Lead is {lead.get_status_display().lower()}'))
                    continue

                user = self.pick(lead, candidates, algorithm)
                if user is None:
                    if not assignments:
                        raise AssignmentError('All telecallers are at capacity')
                    skipped.append((lead, 'All telecallers are at capacity'))
                    continue

                previous = lead.assigned_to_id
                lead.assign_to(user, assigned_by=assigned_by)
                if previous != user.pk:
                    self._loads[user.pk] += 1 if lead.is_active() else 0
                    if previous in self._loads and lead.is_active():
                        self._loads[previous] -= 1
                assignments.append((lead, user))

                if algorithm == AssignmentConfig.ALGORITHM_ROUND_ROBIN:
                    self.config.last_assigned_user = user

            if algorithm == AssignmentConfig.ALGORITHM_ROUND_ROBIN and assignments:
                self.config.save(update_fields=['last_assigned_user', 'updated_at'])

        logger.info("Assigned %d lead(s) in %s using %s (%d skipped)",
                    len(assignments), self.institution.slug, algorithm, len(skipped))
        return {'assignments': assignments, 'skipped': skipped}


def auto_assign_lead(lead, assigned_by=None):
    """
    Assign a freshly captured lead when the institution has auto-assign on

    Returns:
        User or None: The telecaller, or None when auto-assign is off or
        nobody can take the lead (logged, never raised)
    """
    config = AssignmentConfig.for_institution(lead.institution)
    if not config.auto_assign or lead.assigned_to_id:
        return lead.assigned_to if lead.assigned_to_id else None

    try:
        result = LeadAssigner(lead.institution, config).assign([lead], assigned_by=assigned_by)
    except AssignmentError as e:
        logger.warning("Auto-assign failed for lead %s: %s", lead.pk, e)
        return None

    if result['assignments']:
        return result['assignments'][0][1]
    return None


def get_assignment_stats(institution):
    """Workload per telecaller plus unassigned lead count"""
    config = AssignmentConfig.for_institution(institution)
    telecallers = (
        User.objects
        .filter(institution=institution, role=ROLE_TELECALLER)
        .annotate(
            active_leads=Count('assigned_leads', filter=Q(assigned_leads__status__in=Lead.ACTIVE_STATUSES)),
            total_leads=Count('assigned_leads'),
            enrolled_leads=Count('assigned_leads', filter=Q(assigned_leads__status=Lead.STATUS_ENROLLED)),
        )
        .order_by('first_name', 'last_name')
    )

    cap = config.max_leads_per_user
    rows = []
    for user in telecallers:
        rows.append({
            'id': user.pk,
            'name': user.get_full_name(),
            'is_active': user.is_active,
            'skills': user.skills,
            'active_leads': user.active_leads,
            'total_leads': user.total_leads,
            'enrolled_leads': user.enrolled_leads,
            'capacity': cap or None,
            'utilization': round(user.active_leads / cap * 100, 1) if cap else None,
        })

    unassigned = Lead.objects.filter(
        institution=institution, assigned_to__isnull=True
    ).exclude(status__in=Lead.CLOSED_STATUSES).count()

    return {
        'algorithm': config.algorithm,
        'auto_assign': config.auto_assign,
        'max_leads_per_user': cap,
        'telecallers': rows,
        'unassigned_leads': unassigned,
    }
