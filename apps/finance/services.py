"""
Payments, platform fees and refunds

Fee rules (settings.PLATFORM_FEE_STRUCTURE, by subscription tier):
    platform fee   = max(amount * platform_percent / 100, minimum_fee)
    processing fee = amount * processing_percent / 100
    institution    = amount - platform fee - processing fee
Fees are rounded to whole currency units.

Example (starter tier, 10,000):
    platform 250, processing 100, institution 9,650
"""

import logging
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Sum, Q
from django.utils import timezone

from apps.accounts.models import ROLE_FINANCE_TEAM
from apps.core.models import Institution
from apps.core.utils import percentage
from apps.notifications.models import Notification
from apps.notifications.services import send_notification, send_role_notification
from .models import Payment, RefundRequest

logger = logging.getLogger(__name__)

PERIODS = {'7d': 7, '30d': 30, '90d': 90}
DEFAULT_PERIOD = '30d'


class RefundError(Exception):
    """Raised when a refund request or decision is not allowed"""
    pass


def _whole(value):
    return Decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def _money(value):
    return float(value or 0)


# FEES
def get_fee_structure(tier):
    structures = settings.PLATFORM_FEE_STRUCTURE
    return structures.get(tier, structures[Institution.TIER_STARTER])


def calculate_platform_fee(amount, tier=Institution.TIER_STARTER, fee_structure=None):
    """
    Args:
        amount: Gross payment amount
        tier (str): Subscription tier of the institution
        fee_structure (dict, optional): Overrides the tier's structure

    Returns:
        dict: total_amount, platform_fee, processing_fee, institution_amount, breakdown
    """
    amount = Decimal(str(amount))
    structure = fee_structure or get_fee_structure(tier)

    percentage_fee = amount * Decimal(str(structure['platform_percent'])) / 100
    platform_fee = _whole(max(percentage_fee, Decimal(str(structure['minimum_fee']))))
    processing_fee = _whole(amount * Decimal(str(structure['processing_percent'])) / 100)

    return {
        'total_amount': amount,
        'platform_fee': platform_fee,
        'processing_fee': processing_fee,
        'institution_amount': amount - platform_fee - processing_fee,
        'breakdown': {
            'base_amount': amount,
            'platform_fee_percentage': structure['platform_percent'],
            'platform_fee_minimum': structure['minimum_fee'],
            'processing_fee_percentage': structure['processing_percent'],
            'tier': tier,
        },
    }


def calculate_revenue_split(amount, tier=Institution.TIER_STARTER):
    fees = calculate_platform_fee(amount, tier)
    return {
        'platform_revenue': fees['platform_fee'],
        'institution_revenue': fees['institution_amount'],
        'split_breakdown': {
            'gross_amount': fees['total_amount'],
            'platform_fee': fees['platform_fee'],
            'processing_fee': fees['processing_fee'],
            'net_institution_amount': fees['institution_amount'],
        },
    }


def fees_to_json(fees):
    """Decimal values of a fee calculation as floats"""
    result = {}
    for key, value in fees.items():
        if isinstance(value, dict):
            result[key] = fees_to_json(value)
        elif isinstance(value, Decimal):
            result[key] = float(value)
        else:
            result[key] = value
    return result


# PAYMENTS
def create_payment(institution, amount, application=None, payer=None, payment_type='application_fee',
                   gateway='cashfree', gateway_transaction_id='', gateway_response=None, currency=None):
    fees = calculate_platform_fee(amount, institution.subscription_tier)
    payment = Payment.objects.create(
        institution=institution,
        application=application,
        payer=payer or (application.student if application is not None else None),
        amount=fees['total_amount'],
        currency=currency or settings.DEFAULT_CURRENCY,
        payment_type=payment_type,
        platform_fee=fees['platform_fee'],
        processing_fee=fees['processing_fee'],
        institution_amount=fees['institution_amount'],
        gateway=gateway,
        gateway_transaction_id=gateway_transaction_id or '',
        gateway_response=gateway_response or {},
    )
    logger.info("Payment %s created in %s: %s %s", payment.pk, institution.slug, payment.amount, payment.currency)
    return payment


def update_payment_status(payment, status, gateway_transaction_id=None, gateway_response=None):
    """Record a gateway result; the payer is notified when it completes or fails"""
    old_status = payment.status
    payment.status = status
    if gateway_transaction_id:
        payment.gateway_transaction_id = gateway_transaction_id
    if gateway_response is not None:
        payment.gateway_response = gateway_response
    if status == Payment.STATUS_COMPLETED and not payment.paid_at:
        payment.paid_at = timezone.now()
    payment.save()

    if old_status != status and payment.payer_id and status in (Payment.STATUS_COMPLETED, Payment.STATUS_FAILED):
        completed = status == Payment.STATUS_COMPLETED
        send_notification(
            payment.payer,
            'Payment received' if completed else 'Payment failed',
            f'Your payment of {payment.amount} {payment.currency} '
            + ('was received. Thank you.' if completed else 'could not be completed. Please try again.'),
            notification_type=Notification.TYPE_SUCCESS if completed else Notification.TYPE_ERROR,
            category='payment',
            institution=payment.institution,
            action_type='payment_status',
            data={'payment_id': payment.pk, 'status': status},
        )
    logger.info("Payment %s: %s -> %s", payment.pk, old_status, status)
    return payment


# REFUNDS
def request_refund(payment, user, amount, reason):
    """
    Raises:
        RefundError: Payment not completed or amount above what is refundable
    """
    amount = Decimal(str(amount))
    if payment.status != Payment.STATUS_COMPLETED:
        raise RefundError('Refunds can only be requested for completed payments')
    if amount <= 0:
        raise RefundError('Refund amount must be greater than 0')

    with transaction.atomic():
        # Lock the payment so concurrent requests cannot over-commit it
        payment = Payment.objects.select_for_update().get(pk=payment.pk)
        refundable = payment.refundable_amount()
        if amount > refundable:
            raise RefundError(f'Refund amount exceeds the refundable amount ({refundable} {payment.currency})')

        refund = RefundRequest.objects.create(
            institution=payment.institution,
            payment=payment,
            application=payment.application,
            requested_by=user,
            amount=amount,
            reason=reason,
        )

    send_role_notification(
        payment.institution,
        [ROLE_FINANCE_TEAM],
        'New refund request',
        f'{user.get_full_name()} requested a refund of {amount} {payment.currency}',
        category='finance',
        action_type='refund_requested',
        data={'refund_id': refund.pk, 'payment_id': payment.pk},
    )
    logger.info("Refund request %s for payment %s (%s)", refund.pk, payment.pk, amount)
    return refund


def _notify_requester(refund, title, message, notification_type):
    if not refund.requested_by_id:
        return
    send_notification(
        refund.requested_by,
        title,
        message,
        notification_type=notification_type,
        category='payment',
        institution=refund.institution,
        action_type='refund_status',
        data={'refund_id': refund.pk, 'status': refund.status},
    )


def decide_refund(refund, user, approve, notes=''):
    if refund.status != RefundRequest.STATUS_PENDING:
        raise RefundError(f'Refund request is already {refund.get_status_display().lower()}')

    refund.status = RefundRequest.STATUS_APPROVED if approve else RefundRequest.STATUS_REJECTED
    refund.reviewed_by = user
    refund.review_notes = notes or ''
    refund.reviewed_at = timezone.now()
    refund.save()

    currency = refund.payment.currency
    if approve:
        _notify_requester(refund, 'Refund approved',
                          f'Your refund of {refund.amount} {currency} was approved and will be processed shortly.',
                          Notification.TYPE_SUCCESS)
    else:
        _notify_requester(refund, 'Refund rejected',
                          f'Your refund of {refund.amount} {currency} was rejected' + (f': {notes}' if notes else '.'),
                          Notification.TYPE_ERROR)
    return refund


def process_refund(refund, user):
    """Mark an approved refund as paid out; a fully refunded payment becomes refunded"""
    if refund.status != RefundRequest.STATUS_APPROVED:
        raise RefundError('Only approved refunds can be processed')

    with transaction.atomic():
        refund.status = RefundRequest.STATUS_PROCESSED
        refund.processed_at = timezone.now()
        if not refund.reviewed_by_id:
            refund.reviewed_by = user
        refund.save()

        payment = refund.payment
        if payment.processed_refund_amount() >= payment.amount:
            payment.status = Payment.STATUS_REFUNDED
            payment.save(update_fields=['status', 'updated_at'])

    _notify_requester(refund, 'Refund processed',
                      f'Your refund of {refund.amount} {refund.payment.currency} has been processed.',
                      Notification.TYPE_SUCCESS)
    logger.info("Refund %s processed by %s", refund.pk, user.email)
    return refund


# METRICS
def period_start(period):
    days = PERIODS.get(period, PERIODS[DEFAULT_PERIOD])
    return timezone.now() - timedelta(days=days)


def get_tenant_financial_metrics(institution, period=DEFAULT_PERIOD):
    if period not in PERIODS:
        period = DEFAULT_PERIOD
    start = period_start(period)
    payments = Payment.objects.filter(institution=institution, created_at__gte=start)

    totals = payments.aggregate(
        count=Count('id'),
        amount=Sum('amount'),
        platform_fees=Sum('platform_fee'),
        institution_amount=Sum('institution_amount'),
    )
    successful = payments.filter(status=Payment.STATUS_COMPLETED).aggregate(
        count=Count('id'),
        amount=Sum('amount'),
        platform_fees=Sum('platform_fee'),
        institution_amount=Sum('institution_amount'),
    )
    refunded = payments.filter(status=Payment.STATUS_REFUNDED).aggregate(count=Count('id'), amount=Sum('amount'))
    refunds = RefundRequest.objects.filter(institution=institution, created_at__gte=start)

    return {
        'period': period,
        'date_range': {'start': start.isoformat(), 'end': timezone.now().isoformat()},
        'metrics': {
            'total_transactions': totals['count'],
            'total_amount': _money(totals['amount']),
            'total_platform_fees': _money(totals['platform_fees']),
            'total_institution_amount': _money(totals['institution_amount']),
            'successful_transactions': successful['count'],
            'successful_amount': _money(successful['amount']),
            'net_institution_revenue': _money(successful['institution_amount']),
            'failed_transactions': payments.filter(status=Payment.STATUS_FAILED).count(),
            'refunded_transactions': refunded['count'],
            'refunded_amount': _money(refunded['amount']),
            'processed_refund_amount': _money(
                refunds.filter(status=RefundRequest.STATUS_PROCESSED).aggregate(total=Sum('amount'))['total']
            ),
            'pending_refunds': refunds.filter(status=RefundRequest.STATUS_PENDING).count(),
        },
        'conversion': {
            'success_rate': percentage(successful['count'], totals['count']),
            'average_transaction_value': round(_money(successful['amount']) / successful['count'], 2) if successful['count'] else 0.0,
        },
        'by_type': {
            row['payment_type']: _money(row['total'])
            for row in payments.filter(status=Payment.STATUS_COMPLETED).values('payment_type').annotate(total=Sum('amount'))
        },
    }


def get_platform_financial_metrics(period=DEFAULT_PERIOD):
    if period not in PERIODS:
        period = DEFAULT_PERIOD
    start = period_start(period)
    completed = Payment.objects.filter(status=Payment.STATUS_COMPLETED, created_at__gte=start)

    totals = completed.aggregate(
        count=Count('id'),
        revenue=Sum('amount'),
        platform_fees=Sum('platform_fee'),
        institution_revenue=Sum('institution_amount'),
    )
    by_tier = [
        {
            'subscription_tier': row['institution__subscription_tier'],
            'transaction_count': row['count'],
            'total_revenue': _money(row['revenue']),
            'total_platform_fees': _money(row['platform_fees']),
            'total_institution_revenue': _money(row['institution_revenue']),
        }
        for row in completed.values('institution__subscription_tier').annotate(
            count=Count('id'),
            revenue=Sum('amount'),
            platform_fees=Sum('platform_fee'),
            institution_revenue=Sum('institution_amount'),
        ).order_by('institution__subscription_tier')
    ]
    top_institutions = [
        {
            'id': row['institution'],
            'name': row['institution__name'],
            'slug': row['institution__slug'],
            'subscription_tier': row['institution__subscription_tier'],
            'transaction_count': row['count'],
            'total_revenue': _money(row['revenue']),
            'total_platform_fees': _money(row['platform_fees']),
        }
        for row in completed.values(
            'institution', 'institution__name', 'institution__slug', 'institution__subscription_tier'
        ).annotate(
            count=Count('id'),
            revenue=Sum('amount'),
            platform_fees=Sum('platform_fee'),
        ).order_by('-revenue')[:10]
    ]

    return {
        'period': period,
        'date_range': {'start': start.isoformat(), 'end': timezone.now().isoformat()},
        'platform_metrics': {
            'total_transactions': totals['count'],
            'total_revenue': _money(totals['revenue']),
            'total_platform_fees': _money(totals['platform_fees']),
            'total_institution_revenue': _money(totals['institution_revenue']),
            'net_platform_revenue': _money(totals['platform_fees']),
        },
        'revenue_by_tier': by_tier,
        'top_institutions': top_institutions,
    }


def get_finance_dashboard(institution):
    payments = Payment.objects.filter(institution=institution)
    return {
        'metrics': get_tenant_financial_metrics(institution, DEFAULT_PERIOD)['metrics'],
        'all_time': {
            'collected': _money(payments.filter(status=Payment.STATUS_COMPLETED).aggregate(total=Sum('amount'))['total']),
            'pending_payments': payments.filter(status=Payment.STATUS_CREATED).count(),
        },
        'refunds': dict(
            RefundRequest.objects.filter(institution=institution).values_list('status').annotate(count=Count('id'))
        ),
        'recent_payments': [
            p.to_dict() for p in payments.select_related('application', 'payer').filter(
                Q(status=Payment.STATUS_COMPLETED) | Q(status=Payment.STATUS_FAILED)
            )[:10]
        ],
    }
