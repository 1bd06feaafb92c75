"""Payment accumulator: applies payments to invoices and issues receipts.

Payment status moves pending -> partial -> paid as payments accumulate.
Deleting a payment from a paid invoice drops it back to pending, which is
the only reverse move. Cancelled is terminal and only reachable from pending
or partial. Every mutation locks the invoice row so concurrent requests
cannot push ``amount_paid`` past ``total`` or issue a second receipt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from .exceptions import (
    InvalidStatusTransition,
    InvoiceCancelled,
    NotFound,
    PaymentExceedsBalance,
    ReceiptAlreadyExists,
    ValidationFailed,
)
from .ledger import ZERO, ensure_decimal, quantize_money
from .models import Invoice, Payment, Receipt, Setting
from .sequences import next_document_number


logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD = 'bank_transfer'
AUTO_RECEIPT_NOTE = 'Auto-generated on full payment'


@dataclass
class PaymentOutcome:
    payment: Payment
    invoice: Invoice
    receipt: Receipt | None = None

    @property
    def balance(self) -> Decimal:
        return self.invoice.balance_due

    @property
    def is_fully_paid(self) -> bool:
        return self.invoice.status == Invoice.STATUS_PAID

    def as_response(self) -> dict:
        return {
            'id': self.payment.pk,
            'amount_paid': self.invoice.amount_paid,
            'balance': self.balance,
            'is_fully_paid': self.is_fully_paid,
            'receipt_number': self.receipt.receipt_number if self.receipt else None,
        }


def next_payment_status(current: str, amount_paid, total) -> str:
    """Return the status an invoice moves to after ``amount_paid`` changes."""

    if current == Invoice.STATUS_CANCELLED:
        return Invoice.STATUS_CANCELLED
    amount_paid = ensure_decimal(amount_paid)
    total = ensure_decimal(total)
    if amount_paid > 0 and amount_paid >= total:
        return Invoice.STATUS_PAID
    if current == Invoice.STATUS_PAID:
        return Invoice.STATUS_PENDING
    if amount_paid > 0:
        return Invoice.STATUS_PARTIAL
    return Invoice.STATUS_PENDING


def derive_payment_status(invoice: Invoice, *, now=None):
    """Return ``(status, paid_at)`` for the invoice's current amounts."""

    status = next_payment_status(invoice.status, invoice.amount_paid, invoice.total)
    if status == Invoice.STATUS_PAID:
        return status, invoice.paid_at or now or timezone.now()
    if status == Invoice.STATUS_CANCELLED:
        return status, invoice.paid_at
    return status, None


def _lock_invoice(invoice_id) -> Invoice:
    invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
    if invoice is None:
        raise NotFound('Invoice not found')
    return invoice


def _create_receipt(invoice: Invoice, payment_method: str, notes: str = '') -> Receipt:
    receipt = Receipt.objects.create(
        receipt_number=next_document_number('receipt'),
        invoice=invoice,
        amount=invoice.total,
        payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
        notes=notes or '',
    )
    logger.info("Issued receipt %s for invoice %s", receipt.receipt_number, invoice.invoice_number)
    return receipt


def ensure_receipt(
    invoice: Invoice,
    payment_method: str | None = None,
    notes: str = AUTO_RECEIPT_NOTE,
) -> Receipt:
    """Return the invoice's receipt, issuing one when it has none yet.

    Without an explicit method the receipt takes the method of the most recent
    payment. Call inside the transaction that settled the invoice.
    """
    receipt = Receipt.objects.filter(invoice=invoice).first()
    if receipt is not None:
        return receipt
    if not payment_method:
        payment_method = invoice.payments.values_list('payment_method', flat=True).first()
    return _create_receipt(invoice, payment_method, notes)


def record_payment(
    invoice_id,
    amount,
    *,
    payment_method: str | None = None,
    notes: str = '',
    created_by=None,
) -> PaymentOutcome:
    amount = quantize_money(amount)
    if amount <= 0:
        raise ValidationFailed('Payment amount must be greater than zero')

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        if invoice.status == Invoice.STATUS_CANCELLED:
            raise InvoiceCancelled()

        new_total = invoice.amount_paid + amount
        if new_total > invoice.total:
            raise PaymentExceedsBalance(
                quantize_money(invoice.total - invoice.amount_paid),
                Setting.currency_symbol(),
            )

        method = payment_method or DEFAULT_PAYMENT_METHOD
        payment = Payment.objects.create(
            invoice=invoice,
            amount=amount,
            payment_method=method,
            notes=notes or '',
            created_by=created_by,
        )

        invoice.amount_paid = new_total
        invoice.status, invoice.paid_at = derive_payment_status(invoice)
        invoice.save(update_fields=['amount_paid', 'status', 'paid_at', 'updated_at'])

        receipt = None
        if invoice.status == Invoice.STATUS_PAID:
            receipt = ensure_receipt(invoice, method)

    logger.info(
        "Recorded payment %s of %s on invoice %s (paid=%s, status=%s)",
        payment.pk,
        amount,
        invoice.invoice_number,
        invoice.amount_paid,
        invoice.status,
    )
    return PaymentOutcome(payment=payment, invoice=invoice, receipt=receipt)


def delete_payment(payment_id) -> Invoice:
    invoice_id = Payment.objects.filter(pk=payment_id).values_list('invoice_id', flat=True).first()
    if invoice_id is None:
        raise NotFound('Payment not found')

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        payment = Payment.objects.filter(pk=payment_id, invoice=invoice).first()
        if payment is None:
            raise NotFound('Payment not found')
        payment.delete()

        invoice.amount_paid = max(invoice.amount_paid - payment.amount, ZERO)
        invoice.status, invoice.paid_at = derive_payment_status(invoice)
        invoice.save(update_fields=['amount_paid', 'status', 'paid_at', 'updated_at'])

    logger.info(
        "Deleted payment %s from invoice %s (paid=%s, status=%s)",
        payment_id,
        invoice.invoice_number,
        invoice.amount_paid,
        invoice.status,
    )
    return invoice


def issue_receipt(invoice_id, *, payment_method: str | None = None, notes: str = '') -> Receipt:
    """Issue the receipt for an invoice settled in full outside the payment ledger."""

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        if invoice.status == Invoice.STATUS_CANCELLED:
            raise InvoiceCancelled('Cannot issue a receipt for a cancelled invoice')
        if Receipt.objects.filter(invoice=invoice).exists():
            raise ReceiptAlreadyExists()

        receipt = _create_receipt(invoice, payment_method, notes)
        invoice.status = Invoice.STATUS_PAID
        invoice.paid_at = timezone.now()
        invoice.save(update_fields=['status', 'paid_at', 'updated_at'])
    return receipt


def change_invoice_status(invoice_id, status: str) -> Invoice:
    """Apply a manual status change: cancel an open invoice or mark it paid."""

    if status not in dict(Invoice.STATUS_CHOICES):
        raise InvalidStatusTransition('Invalid status')
    if status in (Invoice.STATUS_PENDING, Invoice.STATUS_PARTIAL):
        raise InvalidStatusTransition('Pending and partial statuses follow recorded payments')

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        if invoice.status == Invoice.STATUS_CANCELLED:
            raise InvalidStatusTransition('Cancelled invoices cannot change status')
        if status == Invoice.STATUS_CANCELLED:
            if invoice.status == Invoice.STATUS_PAID:
                raise InvalidStatusTransition('Cannot cancel a paid invoice')
            invoice.status = Invoice.STATUS_CANCELLED
        elif invoice.status != Invoice.STATUS_PAID:
            invoice.status = Invoice.STATUS_PAID
            invoice.paid_at = timezone.now()
        invoice.save(update_fields=['status', 'paid_at', 'updated_at'])

    logger.info("Invoice %s status set to %s", invoice.invoice_number, invoice.status)
    return invoice


def change_order_status(invoice_id, order_status: str) -> Invoice:
    if order_status not in dict(Invoice.ORDER_STATUS_CHOICES):
        raise ValidationFailed('Invalid order status')

    with transaction.atomic():
        invoice = _lock_invoice(invoice_id)
        now = timezone.now()
        invoice.order_status = order_status
        if order_status == Invoice.ORDER_DISPATCHED:
            invoice.dispatched_at = now
        elif order_status == Invoice.ORDER_DELIVERED:
            invoice.delivered_at = now
            if invoice.dispatched_at is None:
                invoice.dispatched_at = now
        invoice.save(update_fields=['order_status', 'dispatched_at', 'delivered_at', 'updated_at'])
    return invoice
