"""Invoice aggregate: profitability rollup and atomic persistence.

An invoice is either package based (each package has a selling price, a
packaging cost and the items inside it) or a legacy flat list of items. The
totals are computed by :func:`calculate_invoice_totals` both when an invoice
is written and when it is re-derived from stored rows, so the two always
agree.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from django.db import transaction

from .exceptions import InvoiceLocked, NotFound, ValidationFailed
from .ledger import ZERO, ensure_decimal, percentage, quantize_money
from .models import Invoice, InvoiceItem, InvoicePackage
from .payment_utils import derive_payment_status, ensure_receipt
from .sequences import next_document_number


logger = logging.getLogger(__name__)


@dataclass
class InvoiceTotals:
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    total: Decimal
    total_cost: Decimal
    total_packaging_cost: Decimal
    profit: Decimal
    profit_margin: Decimal
    markup_percentage: Decimal

    def as_model_fields(self) -> dict:
        fields = asdict(self)
        # Profit is derived on the model, not stored.
        fields.pop('profit')
        return fields


def _item_quantity(item: Mapping) -> int:
    quantity = item.get('quantity')
    if quantity in (None, ''):
        return 1
    return int(quantity)


def calculate_invoice_totals(
    packages: Sequence[Mapping] | None = None,
    items: Sequence[Mapping] | None = None,
    discount=None,
    delivery_fee=None,
) -> InvoiceTotals:
    """Return the rollup for a package based or legacy invoice.

    When ``packages`` has content it wins and ``items`` is ignored. With
    neither, subtotal and cost are zero and the invoice is a draft.
    """

    subtotal = ZERO
    item_cost = ZERO
    packaging_cost = ZERO

    if packages:
        for package in packages:
            subtotal += ensure_decimal(package.get('package_price'))
            packaging_cost += ensure_decimal(package.get('packaging_cost'))
            for item in package.get('items') or ():
                item_cost += ensure_decimal(item.get('cost_price')) * _item_quantity(item)
    elif items:
        for item in items:
            quantity = _item_quantity(item)
            subtotal += ensure_decimal(item.get('unit_price')) * quantity
            item_cost += ensure_decimal(item.get('cost_price')) * quantity

    discount = ensure_decimal(discount)
    delivery_fee = ensure_decimal(delivery_fee)
    total_cost = item_cost + packaging_cost
    total = subtotal - discount + delivery_fee
    # Delivery is passed through to the courier and never counts as margin.
    profit = total - total_cost - delivery_fee

    return InvoiceTotals(
        subtotal=quantize_money(subtotal),
        discount=quantize_money(discount),
        delivery_fee=quantize_money(delivery_fee),
        total=quantize_money(total),
        total_cost=quantize_money(total_cost),
        total_packaging_cost=quantize_money(packaging_cost),
        profit=quantize_money(profit),
        profit_margin=percentage(profit, total),
        markup_percentage=percentage(profit, total_cost),
    )


def _create_item(invoice: Invoice, item: Mapping, package: InvoicePackage | None = None) -> InvoiceItem:
    return InvoiceItem.objects.create(
        invoice=invoice,
        package=package,
        product=item.get('product'),
        category=item.get('category'),
        vendor=item.get('vendor'),
        description=item.get('description') or '',
        quantity=_item_quantity(item),
        unit_price=quantize_money(item.get('unit_price')),
        cost_price=quantize_money(item.get('cost_price')),
    )


def _write_lines(invoice: Invoice, packages: Iterable[Mapping] | None, items: Iterable[Mapping] | None) -> None:
    if packages:
        for payload in packages:
            package = InvoicePackage.objects.create(
                invoice=invoice,
                package_name=payload.get('package_name') or '',
                package_price=quantize_money(payload.get('package_price')),
                packaging_cost=quantize_money(payload.get('packaging_cost')),
                notes=payload.get('notes') or '',
            )
            for item in payload.get('items') or ():
                _create_item(invoice, item, package)
    elif items:
        for item in items:
            _create_item(invoice, item)


def _resolve_delivery_fee(delivery_fee, delivery_zone):
    if delivery_fee in (None, '') and delivery_zone is not None:
        return delivery_zone.delivery_fee
    return delivery_fee


def build_invoice(
    *,
    customer,
    packages: Sequence[Mapping] | None = None,
    items: Sequence[Mapping] | None = None,
    discount=None,
    delivery_fee=None,
    delivery_zone=None,
    recipient=None,
    gift_message: str = '',
    notes: str = '',
    created_by=None,
) -> Invoice:
    """Number and persist a new invoice with its packages and items in one transaction."""

    delivery_fee = _resolve_delivery_fee(delivery_fee, delivery_zone)
    totals = calculate_invoice_totals(packages, items, discount, delivery_fee)

    with transaction.atomic():
        invoice = Invoice.objects.create(
            invoice_number=next_document_number('invoice'),
            customer=customer,
            recipient=recipient,
            delivery_zone=delivery_zone,
            gift_message=gift_message or '',
            notes=notes or '',
            created_by=created_by,
            **totals.as_model_fields(),
        )
        _write_lines(invoice, packages, items)

    logger.info(
        "Created invoice %s for customer %s (total=%s, profit=%s)",
        invoice.invoice_number,
        customer.pk,
        totals.total,
        totals.profit,
    )
    return invoice


def rebuild_invoice(
    invoice_id: int,
    *,
    customer,
    packages: Sequence[Mapping] | None = None,
    items: Sequence[Mapping] | None = None,
    discount=None,
    delivery_fee=None,
    delivery_zone=None,
    recipient=None,
    gift_message: str = '',
    notes: str = '',
) -> Invoice:
    """Replace an open invoice's lines and totals, keeping its number and payments."""

    delivery_fee = _resolve_delivery_fee(delivery_fee, delivery_zone)
    totals = calculate_invoice_totals(packages, items, discount, delivery_fee)

    with transaction.atomic():
        invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
        if invoice is None:
            raise NotFound('Invoice not found')
        if invoice.status == Invoice.STATUS_PAID:
            raise InvoiceLocked('Cannot edit a paid invoice')
        if invoice.status == Invoice.STATUS_CANCELLED:
            raise InvoiceLocked('Cannot edit a cancelled invoice')
        if totals.total < invoice.amount_paid:
            raise ValidationFailed(
                f'Invoice total cannot be less than the amount already paid ({invoice.amount_paid:.2f})'
            )

        invoice.customer = customer
        invoice.recipient = recipient
        invoice.delivery_zone = delivery_zone
        invoice.gift_message = gift_message or ''
        invoice.notes = notes or ''
        for field, value in totals.as_model_fields().items():
            setattr(invoice, field, value)
        invoice.status, invoice.paid_at = derive_payment_status(invoice)
        invoice.save()

        invoice.items.all().delete()
        invoice.packages.all().delete()
        _write_lines(invoice, packages, items)
        if invoice.status == Invoice.STATUS_PAID:
            ensure_receipt(invoice)

    logger.info("Updated invoice %s (total=%s)", invoice.invoice_number, totals.total)
    return invoice


def totals_from_records(invoice: Invoice) -> InvoiceTotals:
    """Recompute the rollup from the invoice's stored packages and items."""

    packages = [
        {
            'package_price': package.package_price,
            'packaging_cost': package.packaging_cost,
            'items': [
                {'cost_price': item.cost_price, 'quantity': item.quantity}
                for item in package.items.all()
            ],
        }
        for package in invoice.packages.prefetch_related('items')
    ]
    items = [
        {'unit_price': item.unit_price, 'cost_price': item.cost_price, 'quantity': item.quantity}
        for item in invoice.items.filter(package__isnull=True)
    ]
    return calculate_invoice_totals(packages, items, invoice.discount, invoice.delivery_fee)


def recalculate_invoice_totals(invoice: Invoice, *, commit: bool = True) -> InvoiceTotals:
    """Re-derive the stored rollup from the invoice's packages and items.

    A recomputed total below the amount already paid is refused. When the total
    moves, the payment status follows it, except on an invoice that was marked
    paid by issuing a receipt for less than its total.
    """

    totals = totals_from_records(invoice)
    if totals.total < invoice.amount_paid:
        raise ValidationFailed(
            f'Recalculated total {totals.total:.2f} is less than the amount already paid '
            f'({invoice.amount_paid:.2f})'
        )

    settled_by_receipt = (
        invoice.status == Invoice.STATUS_PAID and invoice.amount_paid < invoice.total
    )
    total_changed = totals.total != invoice.total
    update_fields = [*totals.as_model_fields(), 'updated_at']
    for field, value in totals.as_model_fields().items():
        setattr(invoice, field, value)
    if total_changed and not settled_by_receipt:
        invoice.status, invoice.paid_at = derive_payment_status(invoice)
        update_fields += ['status', 'paid_at']

    if commit:
        with transaction.atomic():
            invoice.save(update_fields=update_fields)
            if invoice.status == Invoice.STATUS_PAID:
                ensure_receipt(invoice)
        logger.info(
            "Recalculated invoice %s (total=%s, status=%s)",
            invoice.invoice_number,
            totals.total,
            invoice.status,
        )
    return totals
