import random
import re
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, transaction
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from .exceptions import (
    InvalidStatusTransition,
    InvoiceCancelled,
    InvoiceLocked,
    PaymentExceedsBalance,
    ReceiptAlreadyExists,
    ValidationFailed,
)
from .invoice_utils import (
    build_invoice,
    calculate_invoice_totals,
    rebuild_invoice,
    recalculate_invoice_totals,
    totals_from_records,
)
from .ledger import percentage, quantize_money
from .models import (
    Customer,
    DeliveryZone,
    DocumentSequence,
    Invoice,
    InvoiceItem,
    InvoicePackage,
    Payment,
    Receipt,
    Setting,
    Vendor,
    VendorOrder,
)
from .payment_utils import (
    AUTO_RECEIPT_NOTE,
    change_invoice_status,
    change_order_status,
    delete_payment,
    issue_receipt,
    next_payment_status,
    record_payment,
)
from .sequences import DOCUMENT_NUMBER_RE, next_document_number
from .vendor_utils import delete_vendor_payment, record_vendor_payment, vendor_summary


def birthday_box(**overrides):
    package = {
        'package_name': 'Birthday box',
        'package_price': Decimal('10000'),
        'packaging_cost': Decimal('500'),
        'items': [
            {
                'description': 'Chocolate hamper',
                'quantity': 2,
                'unit_price': Decimal('3000'),
                'cost_price': Decimal('1000'),
            },
        ],
    }
    package.update(overrides)
    return package


class InvoiceTotalsTests(SimpleTestCase):
    def test_package_invoice_rollup(self):
        totals = calculate_invoice_totals([birthday_box()], discount=Decimal('0'), delivery_fee=Decimal('300'))

        self.assertEqual(totals.subtotal, Decimal('10000.00'))
        self.assertEqual(totals.total_cost, Decimal('2500.00'))
        self.assertEqual(totals.total_packaging_cost, Decimal('500.00'))
        self.assertEqual(totals.total, Decimal('10300.00'))
        self.assertEqual(totals.profit, Decimal('7500.00'))
        self.assertEqual(totals.profit_margin, Decimal('72.82'))
        self.assertEqual(totals.markup_percentage, Decimal('300.00'))

    def test_delivery_fee_is_not_profit(self):
        without_fee = calculate_invoice_totals([birthday_box()])
        with_fee = calculate_invoice_totals([birthday_box()], delivery_fee=Decimal('750'))
        self.assertEqual(without_fee.profit, with_fee.profit)
        self.assertEqual(with_fee.total - without_fee.total, Decimal('750.00'))

    def test_package_items_default_to_quantity_one(self):
        package = birthday_box(items=[{'description': 'Card', 'unit_price': '200', 'cost_price': '80'}])
        totals = calculate_invoice_totals([package])
        self.assertEqual(totals.total_cost, Decimal('580.00'))

    def test_explicit_zero_quantity_is_not_billed(self):
        items = [{'description': 'Card', 'quantity': 0, 'unit_price': '100', 'cost_price': '40'}]
        totals = calculate_invoice_totals(items=items)
        self.assertEqual(totals.subtotal, Decimal('0.00'))
        self.assertEqual(totals.total_cost, Decimal('0.00'))

    def test_legacy_flat_items(self):
        items = [
            {'description': 'Roses', 'quantity': 2, 'unit_price': '1500', 'cost_price': '900'},
            {'description': 'Card', 'quantity': 1, 'unit_price': '500', 'cost_price': '200'},
        ]
        totals = calculate_invoice_totals(None, items, discount='100')

        self.assertEqual(totals.subtotal, Decimal('3500.00'))
        self.assertEqual(totals.total_cost, Decimal('2000.00'))
        self.assertEqual(totals.total, Decimal('3400.00'))
        self.assertEqual(totals.profit_margin, Decimal('41.18'))
        self.assertEqual(totals.markup_percentage, Decimal('70.00'))

    def test_packages_take_precedence_over_items(self):
        items = [{'description': 'Ignored', 'quantity': 5, 'unit_price': '999', 'cost_price': '1'}]
        totals = calculate_invoice_totals([birthday_box()], items)
        self.assertEqual(totals.subtotal, Decimal('10000.00'))

    def test_empty_invoice_is_a_zero_draft(self):
        totals = calculate_invoice_totals([], [])
        self.assertEqual(totals.subtotal, Decimal('0.00'))
        self.assertEqual(totals.total, Decimal('0.00'))
        self.assertEqual(totals.profit_margin, Decimal('0.00'))
        self.assertEqual(totals.markup_percentage, Decimal('0.00'))

    def test_percentage_guards_non_positive_denominator(self):
        self.assertEqual(percentage(Decimal('10'), Decimal('0')), Decimal('0.00'))
        self.assertEqual(percentage(Decimal('10'), Decimal('-5')), Decimal('0.00'))
        self.assertEqual(quantize_money('1.005'), Decimal('1.01'))


class InvoiceAggregateTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="owner", password="p")
        self.customer = Customer.objects.create(name="Nimal", whatsapp="+94 77 123 4567")
        self.year = timezone.localdate().year

    def test_build_invoice_persists_packages_and_items(self):
        invoice = build_invoice(
            customer=self.customer,
            packages=[birthday_box()],
            delivery_fee=Decimal('300'),
            created_by=self.user,
        )

        self.assertEqual(invoice.invoice_number, f"INV-{self.year}-0001")
        self.assertEqual(invoice.total, Decimal('10300.00'))
        self.assertEqual(invoice.status, Invoice.STATUS_PENDING)
        package = invoice.packages.get()
        item = package.items.get()
        self.assertEqual(item.invoice_id, invoice.pk)
        self.assertEqual(item.total, Decimal('6000.00'))

    def test_totals_recomputed_from_records_match_creation(self):
        invoice = build_invoice(
            customer=self.customer,
            packages=[birthday_box(), birthday_box(package_name='Anniversary', package_price='4500')],
            discount=Decimal('250'),
            delivery_fee=Decimal('300'),
        )
        invoice.refresh_from_db()
        recomputed = totals_from_records(invoice)

        for field, value in recomputed.as_model_fields().items():
            self.assertEqual(getattr(invoice, field), value, field)

    def test_legacy_items_are_stored_without_package(self):
        invoice = build_invoice(
            customer=self.customer,
            items=[{'description': 'Roses', 'quantity': 3, 'unit_price': '1000', 'cost_price': '600'}],
        )
        item = InvoiceItem.objects.get(invoice=invoice)
        self.assertIsNone(item.package_id)
        self.assertEqual(invoice.subtotal, Decimal('3000.00'))

    def test_delivery_zone_fee_used_when_no_fee_given(self):
        zone = DeliveryZone.objects.create(name="Colombo", delivery_fee=Decimal('450'))
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()], delivery_zone=zone)
        self.assertEqual(invoice.delivery_fee, Decimal('450.00'))
        self.assertEqual(invoice.total, Decimal('10450.00'))

    def test_failure_rolls_back_whole_aggregate(self):
        def explode(invoice, packages, items):
            InvoicePackage.objects.create(invoice=invoice, package_name='half written')
            raise DatabaseError('disk full')

        with patch('crm.invoice_utils._write_lines', side_effect=explode):
            with self.assertRaises(DatabaseError):
                build_invoice(customer=self.customer, packages=[birthday_box()])

        self.assertFalse(Invoice.objects.exists())
        self.assertFalse(InvoicePackage.objects.exists())
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        self.assertEqual(invoice.invoice_number, f"INV-{self.year}-0001")

    def test_rebuild_replaces_lines_and_keeps_number(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        record_payment(invoice.pk, Decimal('1000'))

        updated = rebuild_invoice(
            invoice.pk,
            customer=self.customer,
            packages=[birthday_box(package_price='12000')],
        )

        self.assertEqual(updated.invoice_number, invoice.invoice_number)
        self.assertEqual(updated.total, Decimal('12000.00'))
        self.assertEqual(updated.status, Invoice.STATUS_PARTIAL)
        self.assertEqual(InvoicePackage.objects.filter(invoice=invoice).count(), 1)
        self.assertEqual(InvoiceItem.objects.filter(invoice=invoice).count(), 1)

    def test_rebuild_rejects_paid_and_cancelled(self):
        paid = build_invoice(customer=self.customer, packages=[birthday_box()])
        record_payment(paid.pk, paid.total)
        with self.assertRaisesMessage(InvoiceLocked, 'Cannot edit a paid invoice'):
            rebuild_invoice(paid.pk, customer=self.customer, packages=[birthday_box()])

        cancelled = build_invoice(customer=self.customer, packages=[birthday_box()])
        change_invoice_status(cancelled.pk, Invoice.STATUS_CANCELLED)
        with self.assertRaisesMessage(InvoiceLocked, 'Cannot edit a cancelled invoice'):
            rebuild_invoice(cancelled.pk, customer=self.customer, packages=[birthday_box()])

    def test_rebuild_rejects_total_below_amount_paid(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        record_payment(invoice.pk, Decimal('8000'))
        with self.assertRaises(ValidationFailed):
            rebuild_invoice(invoice.pk, customer=self.customer, packages=[birthday_box(package_price='5000')])

    def test_recalculate_command_repairs_drifted_totals(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        Invoice.objects.filter(pk=invoice.pk).update(total=Decimal('1.00'), total_cost=Decimal('0'))

        out = StringIO()
        call_command('recalculate_invoice_totals', stdout=out)

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal('10000.00'))
        self.assertEqual(invoice.total_cost, Decimal('2500.00'))
        self.assertIn(invoice.invoice_number, out.getvalue())

    def test_recalculate_without_commit_leaves_row(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        Invoice.objects.filter(pk=invoice.pk).update(total=Decimal('1.00'))
        invoice.refresh_from_db()
        recalculate_invoice_totals(invoice, commit=False)
        self.assertEqual(Invoice.objects.get(pk=invoice.pk).total, Decimal('1.00'))

    def test_rebuild_down_to_amount_paid_issues_receipt(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box(package_price='5000')])
        record_payment(invoice.pk, Decimal('2000'), payment_method='card')

        updated = rebuild_invoice(
            invoice.pk,
            customer=self.customer,
            packages=[birthday_box(package_price='2000')],
        )

        self.assertEqual(updated.status, Invoice.STATUS_PAID)
        self.assertIsNotNone(updated.paid_at)
        receipt = Receipt.objects.get(invoice=invoice)
        self.assertEqual(receipt.amount, Decimal('2000.00'))
        self.assertEqual(receipt.payment_method, 'card')
        self.assertEqual(receipt.notes, AUTO_RECEIPT_NOTE)

    def test_recalculate_refuses_total_below_amount_paid(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box(package_price='5000')])
        record_payment(invoice.pk, Decimal('5000'))
        InvoicePackage.objects.filter(invoice=invoice).update(package_price=Decimal('1000'))
        invoice.refresh_from_db()

        with self.assertRaises(ValidationFailed):
            recalculate_invoice_totals(invoice)

        out = StringIO()
        call_command('recalculate_invoice_totals', stdout=out)

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal('5000.00'))
        self.assertEqual(invoice.amount_paid, Decimal('5000.00'))
        self.assertEqual(invoice.status, Invoice.STATUS_PAID)
        self.assertIn(f'{invoice.invoice_number}: skipped', out.getvalue())
        self.assertIn('1 skipped', out.getvalue())

    def test_recalculate_settles_partial_invoice_that_shrinks_to_amount_paid(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box(package_price='5000')])
        record_payment(invoice.pk, Decimal('2000'))
        InvoicePackage.objects.filter(invoice=invoice).update(package_price=Decimal('2000'))
        invoice.refresh_from_db()

        recalculate_invoice_totals(invoice)

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal('2000.00'))
        self.assertEqual(invoice.status, Invoice.STATUS_PAID)
        self.assertIsNotNone(invoice.paid_at)
        self.assertEqual(Receipt.objects.filter(invoice=invoice).count(), 1)

    def test_recalculate_reopens_paid_invoice_whose_total_grows(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        record_payment(invoice.pk, invoice.total)
        InvoicePackage.objects.filter(invoice=invoice).update(package_price=Decimal('12000'))
        invoice.refresh_from_db()

        recalculate_invoice_totals(invoice)

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal('12000.00'))
        self.assertEqual(invoice.status, Invoice.STATUS_PENDING)
        self.assertIsNone(invoice.paid_at)

    def test_recalculate_keeps_invoice_settled_by_receipt(self):
        invoice = build_invoice(customer=self.customer, packages=[birthday_box()])
        record_payment(invoice.pk, Decimal('4000'))
        issue_receipt(invoice.pk)
        InvoicePackage.objects.filter(invoice=invoice).update(package_price=Decimal('12000'))
        invoice.refresh_from_db()

        recalculate_invoice_totals(invoice)

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal('12000.00'))
        self.assertEqual(invoice.status, Invoice.STATUS_PAID)


class DocumentNumberingTests(TestCase):
    def setUp(self):
        self.customer = Customer.objects.create(name="Kamala")
        self.year = timezone.localdate().year

    def test_sequential_numbers_in_same_year(self):
        first = build_invoice(customer=self.customer)
        second = build_invoice(customer=self.customer)
        self.assertEqual(first.invoice_number, f"INV-{self.year}-0001")
        self.assertEqual(second.invoice_number, f"INV-{self.year}-0002")
        self.assertRegex(second.invoice_number, DOCUMENT_NUMBER_RE)

    def test_prefix_change_starts_its_own_series(self):
        build_invoice(customer=self.customer)
        build_invoice(customer=self.customer)
        Setting.set_many({'invoice_prefix': 'gft'})
        self.assertEqual(build_invoice(customer=self.customer).invoice_number, f"GFT-{self.year}-0001")

        Setting.set_many({'invoice_prefix': 'INV'})
        self.assertEqual(build_invoice(customer=self.customer).invoice_number, f"INV-{self.year}-0003")

    def test_counter_resets_per_year(self):
        self.assertEqual(next_document_number('invoice', year=2024), "INV-2024-0001")
        self.assertEqual(next_document_number('invoice', year=2024), "INV-2024-0002")
        self.assertEqual(next_document_number('invoice', year=2025), "INV-2025-0001")

    def test_receipts_have_an_independent_counter(self):
        build_invoice(customer=self.customer)
        build_invoice(customer=self.customer)
        self.assertEqual(next_document_number('receipt'), f"RCP-{self.year}-0001")

    def test_counter_seeds_from_existing_numbers(self):
        Invoice.objects.create(invoice_number=f"INV-{self.year}-0041", customer=self.customer)
        self.assertEqual(next_document_number('invoice'), f"INV-{self.year}-0042")

    def test_counter_widens_past_four_digits(self):
        DocumentSequence.objects.create(prefix='INV', year=2025, last_value=9999)
        number = next_document_number('invoice', year=2025)
        self.assertEqual(number, "INV-2025-10000")
        self.assertTrue(re.match(DOCUMENT_NUMBER_RE, number))

    def test_prefix_year_pair_is_unique(self):
        DocumentSequence.objects.create(prefix='INV', year=2030)
        with self.assertRaises(IntegrityError), transaction.atomic():
            DocumentSequence.objects.create(prefix='INV', year=2030)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(ValidationFailed):
            next_document_number('quote')

    def test_missing_numbers_command_lists_gaps(self):
        for suffix in ('0001', '0002', '0005'):
            Invoice.objects.create(invoice_number=f"INV-{self.year}-{suffix}", customer=self.customer)
        out = StringIO()
        call_command('missing_document_numbers', '--ranges', stdout=out)
        self.assertEqual(out.getvalue().split(), ['3-4'])


class PaymentAccumulatorTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="cashier", password="p")
        self.customer = Customer.objects.create(name="Saman")
        self.invoice = build_invoice(
            customer=self.customer,
            items=[{'description': 'Hamper', 'quantity': 1, 'unit_price': '5000', 'cost_price': '3000'}],
        )
        self.year = timezone.localdate().year

    def test_partial_then_full_then_delete(self):
        first = record_payment(self.invoice.pk, Decimal('2000'), created_by=self.user)
        self.assertEqual(first.invoice.status, Invoice.STATUS_PARTIAL)
        self.assertEqual(first.invoice.amount_paid, Decimal('2000.00'))
        self.assertEqual(first.balance, Decimal('3000.00'))
        self.assertFalse(first.is_fully_paid)
        self.assertIsNone(first.receipt)

        second = record_payment(self.invoice.pk, Decimal('3000'), payment_method='cash')
        self.assertEqual(second.invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(second.balance, Decimal('0.00'))
        self.assertIsNotNone(second.invoice.paid_at)
        receipt = Receipt.objects.get(invoice=self.invoice)
        self.assertEqual(receipt.receipt_number, f"RCP-{self.year}-0001")
        self.assertEqual(receipt.amount, Decimal('5000.00'))
        self.assertEqual(receipt.payment_method, 'cash')
        self.assertEqual(receipt.notes, 'Auto-generated on full payment')
        self.assertEqual(second.as_response()['receipt_number'], receipt.receipt_number)

        invoice = delete_payment(second.payment.pk)
        self.assertEqual(invoice.status, Invoice.STATUS_PENDING)
        self.assertEqual(invoice.amount_paid, Decimal('2000.00'))
        self.assertIsNone(invoice.paid_at)

    def test_exact_balance_pays_and_one_cent_more_is_rejected(self):
        with self.assertRaisesMessage(
            PaymentExceedsBalance, 'Payment exceeds balance. Maximum payment: Rs. 5000.00'
        ):
            record_payment(self.invoice.pk, Decimal('5000.01'))
        self.assertFalse(Payment.objects.exists())

        outcome = record_payment(self.invoice.pk, Decimal('5000.00'))
        self.assertTrue(outcome.is_fully_paid)
        self.assertTrue(Receipt.objects.filter(invoice=self.invoice).exists())

    def test_over_limit_message_reports_remaining_balance_and_currency(self):
        Setting.set_many({'currency_symbol': 'LKR'})
        record_payment(self.invoice.pk, Decimal('1250.50'))
        with self.assertRaisesMessage(PaymentExceedsBalance, 'Maximum payment: LKR 3749.50'):
            record_payment(self.invoice.pk, Decimal('4000'))

    def test_default_method_is_bank_transfer(self):
        outcome = record_payment(self.invoice.pk, Decimal('100'))
        self.assertEqual(outcome.payment.payment_method, 'bank_transfer')

    def test_non_positive_amount_rejected(self):
        with self.assertRaises(ValidationFailed):
            record_payment(self.invoice.pk, Decimal('0'))

    def test_cancelled_invoice_rejects_payments(self):
        change_invoice_status(self.invoice.pk, Invoice.STATUS_CANCELLED)
        with self.assertRaisesMessage(InvoiceCancelled, 'Cannot add payment to cancelled invoice'):
            record_payment(self.invoice.pk, Decimal('10'))

    def test_partial_returns_to_pending_when_payments_removed(self):
        outcome = record_payment(self.invoice.pk, Decimal('500'))
        invoice = delete_payment(outcome.payment.pk)
        self.assertEqual(invoice.status, Invoice.STATUS_PENDING)
        self.assertEqual(invoice.amount_paid, Decimal('0.00'))

    def test_manual_receipt_marks_paid_and_is_unique(self):
        receipt = issue_receipt(self.invoice.pk, payment_method='card')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(receipt.amount, self.invoice.total)

        with self.assertRaisesMessage(ReceiptAlreadyExists, 'Receipt already exists for this invoice'):
            issue_receipt(self.invoice.pk)

    def test_full_payment_reuses_existing_receipt(self):
        issue_receipt(self.invoice.pk)
        outcome = record_payment(self.invoice.pk, Decimal('5000'))
        self.assertEqual(Receipt.objects.filter(invoice=self.invoice).count(), 1)
        self.assertEqual(outcome.receipt.invoice_id, self.invoice.pk)

    def test_database_allows_one_receipt_per_invoice(self):
        Receipt.objects.create(receipt_number='RCP-2025-9001', invoice=self.invoice, amount=Decimal('1'))
        with self.assertRaises(IntegrityError), transaction.atomic():
            Receipt.objects.create(receipt_number='RCP-2025-9002', invoice=self.invoice, amount=Decimal('1'))

    def test_status_transitions(self):
        record_payment(self.invoice.pk, Decimal('100'))
        invoice = change_invoice_status(self.invoice.pk, Invoice.STATUS_CANCELLED)
        self.assertEqual(invoice.status, Invoice.STATUS_CANCELLED)
        with self.assertRaises(InvalidStatusTransition):
            change_invoice_status(self.invoice.pk, Invoice.STATUS_PAID)

        paid = build_invoice(customer=self.customer, items=[{'description': 'x', 'unit_price': '10'}])
        change_invoice_status(paid.pk, Invoice.STATUS_PAID)
        with self.assertRaises(InvalidStatusTransition):
            change_invoice_status(paid.pk, Invoice.STATUS_CANCELLED)
        with self.assertRaises(InvalidStatusTransition):
            change_invoice_status(paid.pk, Invoice.STATUS_PARTIAL)

    def test_next_payment_status_table(self):
        cases = [
            (Invoice.STATUS_PENDING, '0', '100', Invoice.STATUS_PENDING),
            (Invoice.STATUS_PENDING, '40', '100', Invoice.STATUS_PARTIAL),
            (Invoice.STATUS_PARTIAL, '100', '100', Invoice.STATUS_PAID),
            (Invoice.STATUS_PAID, '60', '100', Invoice.STATUS_PENDING),
            (Invoice.STATUS_PARTIAL, '0', '100', Invoice.STATUS_PENDING),
            (Invoice.STATUS_CANCELLED, '100', '100', Invoice.STATUS_CANCELLED),
        ]
        for current, paid, total, expected in cases:
            self.assertEqual(next_payment_status(current, Decimal(paid), Decimal(total)), expected)

    def test_order_status_stamps_timestamps(self):
        invoice = change_order_status(self.invoice.pk, Invoice.ORDER_DISPATCHED)
        self.assertIsNotNone(invoice.dispatched_at)
        invoice = change_order_status(self.invoice.pk, Invoice.ORDER_DELIVERED)
        self.assertIsNotNone(invoice.delivered_at)
        with self.assertRaises(ValidationFailed):
            change_order_status(self.invoice.pk, 'lost')

    def test_random_payment_sequences_never_overpay(self):
        rng = random.Random(20250308)
        for _ in range(60):
            if Payment.objects.filter(invoice=self.invoice).exists() and rng.random() < 0.35:
                payment = rng.choice(list(Payment.objects.filter(invoice=self.invoice)))
                delete_payment(payment.pk)
            else:
                amount = Decimal(rng.randint(1, 300000)) / 100
                try:
                    record_payment(self.invoice.pk, amount)
                except PaymentExceedsBalance:
                    pass

            self.invoice.refresh_from_db()
            paid = sum((p.amount for p in self.invoice.payments.all()), Decimal('0'))
            self.assertLessEqual(self.invoice.amount_paid, self.invoice.total)
            self.assertEqual(self.invoice.amount_paid, paid)
            self.assertLessEqual(Receipt.objects.filter(invoice=self.invoice).count(), 1)


class VendorOrderTests(TestCase):
    def setUp(self):
        customer = Customer.objects.create(name="Ruwan")
        self.invoice = build_invoice(customer=customer, packages=[birthday_box()])
        self.vendor = Vendor.objects.create(name="Cake House")
        self.order = VendorOrder.objects.create(
            invoice=self.invoice, vendor=self.vendor, description="Custom cake", total_amount=Decimal('4000')
        )

    def test_payments_rederive_amount_paid(self):
        first = record_vendor_payment(self.order.pk, Decimal('1500'))
        record_vendor_payment(self.order.pk, Decimal('1000'), payment_type='partial')
        self.order.refresh_from_db()
        self.assertEqual(first.payment_method, 'cash')
        self.assertEqual(first.payment_type, 'advance')
        self.assertEqual(self.order.amount_paid, Decimal('2500.00'))
        self.assertEqual(self.order.balance_due, Decimal('1500.00'))

        delete_vendor_payment(first.pk)
        self.order.refresh_from_db()
        self.assertEqual(self.order.amount_paid, Decimal('1000.00'))

    def test_vendor_summary(self):
        record_vendor_payment(self.order.pk, Decimal('1000'))
        summary = vendor_summary(self.vendor.pk)
        self.assertEqual(summary['order_count'], 1)
        self.assertEqual(summary['total_amount'], Decimal('4000.00'))
        self.assertEqual(summary['balance_due'], Decimal('3000.00'))
