from datetime import datetime, timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase
from django.utils import timezone

from .accounts import ROLE_ADMIN, change_password, create_user, delete_user, user_role
from .exceptions import Duplicate, NotFound, ValidationFailed
from .invoice_utils import build_invoice
from .models import Category, Customer, Invoice, Payment
from .payment_utils import issue_receipt, record_payment
from .reports import inactive_customers, profitability_report, sales_report


def local_dt(year, month, day, hour=12):
    return timezone.make_aware(datetime(year, month, day, hour, 0))


def hamper(price='10000'):
    return {
        'package_name': 'Hamper',
        'package_price': Decimal(price),
        'packaging_cost': Decimal('500'),
        'items': [{'description': 'Tea', 'quantity': 2, 'unit_price': Decimal('0'), 'cost_price': Decimal('1000')}],
    }


class SalesReportTests(TestCase):
    def setUp(self):
        self.flowers = Category.objects.create(name='Flowers')
        self.dilani = Customer.objects.create(name='Dilani', country='Sri Lanka')
        self.ravi = Customer.objects.create(name='Ravi')

    def paid_invoice(self, customer, amount, paid_at, category=None):
        invoice = build_invoice(
            customer=customer,
            items=[{
                'description': 'Bouquet',
                'quantity': 1,
                'unit_price': Decimal(amount),
                'cost_price': Decimal('100'),
                'category': category,
            }],
        )
        record_payment(invoice.pk, invoice.total)
        Invoice.objects.filter(pk=invoice.pk).update(paid_at=paid_at)
        return invoice

    def test_groups_paid_invoices(self):
        self.paid_invoice(self.dilani, '3000', local_dt(2025, 1, 10), self.flowers)
        self.paid_invoice(self.dilani, '2000', local_dt(2025, 2, 5), self.flowers)
        self.paid_invoice(self.ravi, '1500', local_dt(2025, 2, 20))
        build_invoice(customer=self.ravi, items=[{'description': 'Cake', 'unit_price': Decimal('9000')}])

        report = sales_report()

        self.assertEqual(report['monthly'], [
            {'month': '2025-01', 'revenue': Decimal('3000.00'), 'orders': 1},
            {'month': '2025-02', 'revenue': Decimal('3500.00'), 'orders': 2},
        ])
        self.assertEqual(report['byCategory'], [
            {'name': 'Flowers', 'revenue': Decimal('5000.00')},
            {'name': 'Other', 'revenue': Decimal('1500.00')},
        ])
        self.assertEqual(report['byCountry'], [
            {'country': 'Sri Lanka', 'revenue': Decimal('5000.00'), 'orders': 2},
            {'country': 'Unknown', 'revenue': Decimal('1500.00'), 'orders': 1},
        ])
        self.assertEqual(report['topCustomers'][0], {'name': 'Dilani', 'revenue': Decimal('5000.00'), 'orders': 2})
        self.assertEqual(len(report['topCustomers']), 2)

    def test_empty(self):
        self.assertEqual(
            sales_report(),
            {'monthly': [], 'byCategory': [], 'byCountry': [], 'topCustomers': []},
        )


class ProfitabilityReportTests(TestCase):
    def setUp(self):
        self.customer = Customer.objects.create(name='Kamala')

    def test_cost_follows_payments_across_months(self):
        invoice = build_invoice(customer=self.customer, packages=[hamper()])
        Invoice.objects.filter(pk=invoice.pk).update(created_at=local_dt(2025, 1, 5))
        record_payment(invoice.pk, Decimal('4000'))
        record_payment(invoice.pk, Decimal('6000'))
        Payment.objects.filter(invoice=invoice, amount=Decimal('4000')).update(payment_date=local_dt(2025, 1, 15))
        Payment.objects.filter(invoice=invoice, amount=Decimal('6000')).update(payment_date=local_dt(2025, 2, 15))
        build_invoice(customer=self.customer, packages=[hamper()])

        report = profitability_report()

        self.assertEqual(report['summary'], {
            'totalRevenue': Decimal('10000.00'),
            'totalCost': Decimal('2500.00'),
            'totalProfit': Decimal('7500.00'),
            'totalPackagingCost': Decimal('500.00'),
            'avgMargin': Decimal('75.00'),
            'avgMarkup': Decimal('300.00'),
        })
        self.assertEqual(report['monthly'], [
            {
                'month': '2025-01',
                'revenue': Decimal('4000.00'),
                'cost': Decimal('1000.00'),
                'profit': Decimal('3000.00'),
                'margin': Decimal('75.00'),
                'markup': Decimal('300.00'),
                'orders': 1,
            },
            {
                'month': '2025-02',
                'revenue': Decimal('6000.00'),
                'cost': Decimal('1500.00'),
                'profit': Decimal('4500.00'),
                'margin': Decimal('75.00'),
                'markup': Decimal('300.00'),
                'orders': 0,
            },
        ])
        self.assertEqual(report['packagingCosts'], [
            {'month': '2025-01', 'cost': Decimal('200.00')},
            {'month': '2025-02', 'cost': Decimal('300.00')},
        ])

    def test_partial_invoice_counts_money_received(self):
        invoice = build_invoice(customer=self.customer, packages=[hamper()])
        record_payment(invoice.pk, Decimal('2500'))

        summary = profitability_report()['summary']

        self.assertEqual(summary['totalRevenue'], Decimal('2500.00'))
        self.assertEqual(summary['totalCost'], Decimal('2500.00'))
        self.assertEqual(summary['avgMargin'], Decimal('0.00'))

    def test_receipt_only_invoice_is_booked_when_raised(self):
        invoice = build_invoice(customer=self.customer, packages=[hamper()])
        Invoice.objects.filter(pk=invoice.pk).update(created_at=local_dt(2025, 3, 2))
        issue_receipt(invoice.pk)

        monthly = profitability_report()['monthly']

        self.assertEqual(len(monthly), 1)
        self.assertEqual(monthly[0]['month'], '2025-03')
        self.assertEqual(monthly[0]['revenue'], Decimal('0.00'))
        self.assertEqual(monthly[0]['cost'], Decimal('2500.00'))
        self.assertEqual(monthly[0]['margin'], Decimal('0.00'))


class InactiveCustomerTests(TestCase):
    def test_lists_customers_without_recent_orders(self):
        now = timezone.now()
        quiet = Customer.objects.create(name='Quiet')
        Customer.objects.filter(pk=quiet.pk).update(created_at=now - timedelta(days=200))
        regular = Customer.objects.create(name='Regular')
        build_invoice(customer=regular)
        lapsed = Customer.objects.create(name='Lapsed')
        old = build_invoice(customer=lapsed)
        Invoice.objects.filter(pk=old.pk).update(created_at=now - timedelta(days=120))

        rows = inactive_customers(90, now=now)

        self.assertEqual([row['name'] for row in rows], ['Quiet', 'Lapsed'])
        self.assertIsNone(rows[0]['last_order'])
        self.assertEqual(rows[0]['days_inactive'], 200)
        self.assertEqual(rows[1]['days_inactive'], 120)
        self.assertEqual([row['name'] for row in inactive_customers(150, now=now)], ['Quiet'])


class AccountTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username='owner', password='gift-shop-owner-26', is_staff=True)

    def test_create_admin_and_staff(self):
        admin = create_user(username='manager', password='ribbons-and-bows-26', name='Sita Perera', role=ROLE_ADMIN)
        clerk = create_user(username='clerk', password='ribbons-and-bows-26')

        self.assertTrue(admin.is_staff)
        self.assertEqual(admin.get_full_name(), 'Sita Perera')
        self.assertEqual(user_role(admin), 'admin')
        self.assertEqual(user_role(clerk), 'staff')
        self.assertTrue(clerk.check_password('ribbons-and-bows-26'))

    def test_duplicate_username(self):
        with self.assertRaisesMessage(Duplicate, 'Username already exists'):
            create_user(username='OWNER', password='ribbons-and-bows-26')

    def test_weak_password_rejected(self):
        with self.assertRaises(ValidationFailed):
            create_user(username='clerk', password='123')
        self.assertFalse(User.objects.filter(username='clerk').exists())

    def test_change_password(self):
        with self.assertRaisesMessage(ValidationFailed, 'Current password is incorrect'):
            change_password(self.owner, 'wrong', 'wrapping-paper-26')

        change_password(self.owner, 'gift-shop-owner-26', 'wrapping-paper-26')
        self.owner.refresh_from_db()
        self.assertTrue(self.owner.check_password('wrapping-paper-26'))

    def test_delete_user(self):
        clerk = create_user(username='clerk', password='ribbons-and-bows-26')
        with self.assertRaisesMessage(ValidationFailed, 'Cannot delete yourself'):
            delete_user(self.owner.pk, acting_user=self.owner)

        delete_user(clerk.pk, acting_user=self.owner)
        self.assertFalse(User.objects.filter(pk=clerk.pk).exists())
        with self.assertRaises(NotFound):
            delete_user(clerk.pk, acting_user=self.owner)
