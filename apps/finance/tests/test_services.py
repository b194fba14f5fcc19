"""
Finance Service Tests

Test Coverage:
1. Platform fee calculation per subscription tier
2. Payment creation and status updates
3. Refund requests, decisions and processing
4. Financial metrics

Run tests:
    pytest apps/finance/tests/test_services.py
"""

from decimal import Decimal

from django.test import TestCase, SimpleTestCase

from apps.accounts.models import User, ROLE_FINANCE_TEAM, ROLE_STUDENT
from apps.admissions.services import convert_lead
from apps.core.models import Institution
from apps.finance import services
from apps.finance.models import Payment, RefundRequest
from apps.finance.services import RefundError
from apps.leads.models import Lead
from apps.notifications.models import Notification


class PlatformFeeTest(SimpleTestCase):

    def test_starter_tier(self):
        fees = services.calculate_platform_fee(10000, 'starter')

        self.assertEqual(fees['platform_fee'], Decimal('250'))
        self.assertEqual(fees['processing_fee'], Decimal('100'))
        self.assertEqual(fees['institution_amount'], Decimal('9650'))
        self.assertEqual(fees['breakdown']['tier'], 'starter')

    def test_pro_and_max_tiers(self):
        pro = services.calculate_platform_fee(10000, 'pro')
        self.assertEqual((pro['platform_fee'], pro['processing_fee']), (Decimal('200'), Decimal('80')))

        max_tier = services.calculate_platform_fee(100000, 'max')
        self.assertEqual((max_tier['platform_fee'], max_tier['processing_fee']), (Decimal('1500'), Decimal('500')))

    def test_minimum_fee(self):
        fees = services.calculate_platform_fee(1000, 'max')

        self.assertEqual(fees['platform_fee'], Decimal('50'))
        self.assertEqual(fees['processing_fee'], Decimal('5'))
        self.assertEqual(fees['institution_amount'], Decimal('945'))

    def test_fees_rounded_to_whole_units(self):
        fees = services.calculate_platform_fee('1234.56', 'starter')

        self.assertEqual(fees['platform_fee'], Decimal('31'))
        self.assertEqual(fees['processing_fee'], Decimal('12'))
        self.assertEqual(fees['institution_amount'], Decimal('1191.56'))

    def test_small_amount_is_not_capped(self):
        """
        Test: Payment smaller than the minimum platform fee
        Expected: Institution amount goes negative rather than being capped
        """
        fees = services.calculate_platform_fee(20, 'starter')
        self.assertEqual(fees['institution_amount'], Decimal('-30'))

    def test_unknown_tier_uses_starter(self):
        fees = services.calculate_platform_fee(10000, 'enterprise')
        self.assertEqual(fees['platform_fee'], Decimal('250'))

    def test_custom_structure(self):
        structure = {'platform_percent': 10, 'minimum_fee': 0, 'processing_percent': 0}
        fees = services.calculate_platform_fee(500, fee_structure=structure)
        self.assertEqual(fees['platform_fee'], Decimal('50'))

    def test_revenue_split(self):
        split = services.calculate_revenue_split(10000, 'pro')

        self.assertEqual(split['platform_revenue'], Decimal('200'))
        self.assertEqual(split['institution_revenue'], Decimal('9720'))
        self.assertEqual(services.fees_to_json(split)['split_breakdown']['gross_amount'], 10000.0)


class FinanceServiceTestCase(TestCase):

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College', subscription_tier=Institution.TIER_PRO)
        self.finance = User.objects.create_user(
            email='finance@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_FINANCE_TEAM,
        )
        self.student = User.objects.create_user(
            email='priya@example.com', password='testpass123', first_name='Priya', last_name='Nair',
            institution=self.institution, role=ROLE_STUDENT,
        )
        lead = Lead.objects.create(institution=self.institution, name='Priya Nair', email='priya@example.com',
                                   phone='+919876543210')
        self.application = convert_lead(lead)

    def completed_payment(self, amount=10000):
        payment = services.create_payment(self.institution, amount, application=self.application)
        return services.update_payment_status(payment, Payment.STATUS_COMPLETED, 'cf_123')


class PaymentTest(FinanceServiceTestCase):

    def test_create_payment_fixes_split(self):
        payment = services.create_payment(self.institution, 10000, application=self.application)

        self.assertEqual(payment.status, Payment.STATUS_CREATED)
        self.assertEqual(payment.payer, self.student)
        self.assertEqual(payment.currency, 'INR')
        self.assertEqual(payment.platform_fee, Decimal('200'))
        self.assertEqual(payment.institution_amount, Decimal('9720'))

    def test_complete_payment(self):
        payment = self.completed_payment()

        self.assertEqual(payment.gateway_transaction_id, 'cf_123')
        self.assertIsNotNone(payment.paid_at)
        notification = Notification.objects.get(user=self.student, action_type='payment_status')
        self.assertEqual(notification.title, 'Payment received')

    def test_same_status_does_not_notify_again(self):
        payment = self.completed_payment()
        services.update_payment_status(payment, Payment.STATUS_COMPLETED)

        self.assertEqual(Notification.objects.filter(user=self.student, action_type='payment_status').count(), 1)

    def test_failed_payment(self):
        payment = services.create_payment(self.institution, 500, application=self.application)
        services.update_payment_status(payment, Payment.STATUS_FAILED, gateway_response={'error': 'declined'})

        payment.refresh_from_db()
        self.assertIsNone(payment.paid_at)
        self.assertEqual(payment.gateway_response, {'error': 'declined'})
        notification = Notification.objects.get(user=self.student, action_type='payment_status')
        self.assertEqual(notification.notification_type, Notification.TYPE_ERROR)


class RefundTest(FinanceServiceTestCase):

    def setUp(self):
        super().setUp()
        self.payment = self.completed_payment()

    def test_request_refund(self):
        refund = services.request_refund(self.payment, self.student, 4000, 'Changed my mind about the course')

        self.assertEqual(refund.status, RefundRequest.STATUS_PENDING)
        self.assertEqual(refund.application, self.application)
        self.assertEqual(self.payment.refundable_amount(), Decimal('6000'))
        self.assertTrue(Notification.objects.filter(user=self.finance, action_type='refund_requested').exists())

    def test_refund_above_refundable_amount(self):
        services.request_refund(self.payment, self.student, 8000, 'Changed my mind about the course')

        with self.assertRaisesMessage(RefundError, 'exceeds the refundable amount'):
            services.request_refund(self.payment, self.student, 3000, 'Second request for the rest')

    def test_rejected_refund_frees_amount(self):
        refund = services.request_refund(self.payment, self.student, 8000, 'Changed my mind about the course')
        services.decide_refund(refund, self.finance, approve=False, notes='Past the deadline')

        self.assertEqual(self.payment.refundable_amount(), Decimal('10000'))
        notification = Notification.objects.get(user=self.student, action_type='refund_status')
        self.assertIn('Past the deadline', notification.message)

    def test_refund_requires_completed_payment(self):
        pending = services.create_payment(self.institution, 500, application=self.application)

        with self.assertRaises(RefundError):
            services.request_refund(pending, self.student, 100, 'Charged twice by mistake')

    def test_decide_twice(self):
        refund = services.request_refund(self.payment, self.student, 1000, 'Charged twice by mistake')
        services.decide_refund(refund, self.finance, approve=True)

        with self.assertRaisesMessage(RefundError, 'already approved'):
            services.decide_refund(refund, self.finance, approve=False)

    def test_process_partial_refund(self):
        refund = services.request_refund(self.payment, self.student, 1000, 'Charged twice by mistake')
        services.decide_refund(refund, self.finance, approve=True)

        services.process_refund(refund, self.finance)

        self.assertEqual(refund.status, RefundRequest.STATUS_PROCESSED)
        self.assertIsNotNone(refund.processed_at)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.STATUS_COMPLETED)

    def test_process_full_refund(self):
        refund = services.request_refund(self.payment, self.student, 10000, 'Withdrawing my application')
        services.decide_refund(refund, self.finance, approve=True)
        services.process_refund(refund, self.finance)

        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, Payment.STATUS_REFUNDED)
        self.assertEqual(self.payment.refundable_amount(), Decimal('0'))

    def test_process_requires_approval(self):
        refund = services.request_refund(self.payment, self.student, 1000, 'Charged twice by mistake')

        with self.assertRaisesMessage(RefundError, 'Only approved refunds'):
            services.process_refund(refund, self.finance)


class FinancialMetricsTest(FinanceServiceTestCase):

    def test_tenant_metrics(self):
        self.completed_payment(10000)
        self.completed_payment(5000)
        failed = services.create_payment(self.institution, 2000, application=self.application)
        services.update_payment_status(failed, Payment.STATUS_FAILED)

        metrics = services.get_tenant_financial_metrics(self.institution, '7d')

        self.assertEqual(metrics['period'], '7d')
        self.assertEqual(metrics['metrics']['total_transactions'], 3)
        self.assertEqual(metrics['metrics']['successful_amount'], 15000.0)
        self.assertEqual(metrics['metrics']['failed_transactions'], 1)
        self.assertEqual(metrics['conversion']['success_rate'], 66.7)
        self.assertEqual(metrics['conversion']['average_transaction_value'], 7500.0)
        self.assertEqual(metrics['by_type'], {'application_fee': 15000.0})

    def test_unknown_period_falls_back(self):
        self.assertEqual(services.get_tenant_financial_metrics(self.institution, '1y')['period'], '30d')

    def test_platform_metrics(self):
        self.completed_payment(10000)
        other = Institution.objects.create(name='Lakeside University')
        payment = services.create_payment(other, 10000)
        services.update_payment_status(payment, Payment.STATUS_COMPLETED)

        metrics = services.get_platform_financial_metrics()

        self.assertEqual(metrics['platform_metrics']['total_transactions'], 2)
        self.assertEqual(metrics['platform_metrics']['total_platform_fees'], 450.0)
        self.assertEqual([row['subscription_tier'] for row in metrics['revenue_by_tier']], ['pro', 'starter'])
        self.assertEqual(len(metrics['top_institutions']), 2)
