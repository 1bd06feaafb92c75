import logging

from django.db import transaction
from django.db.models import Count, DecimalField, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from .exceptions import NotFound, ValidationFailed
from .ledger import ZERO, ensure_decimal, quantize_money
from .models import Vendor, VendorOrder, VendorPayment

logger = logging.getLogger(__name__)

MONEY_FIELD = DecimalField(max_digits=12, decimal_places=2)


def set_vendor_order_status(order, status):
    if status not in dict(VendorOrder.STATUS_CHOICES):
        raise ValidationFailed('Invalid status')
    order.status = status
    if status == 'completed':
        order.completed_at = timezone.now()
    order.save(update_fields=['status', 'completed_at', 'updated_at'])
    return order


def record_vendor_payment(order_id, amount, *, payment_type=None, payment_method=None, notes='', created_by=None):
    amount = quantize_money(amount)
    if amount <= 0:
        raise ValidationFailed('Payment amount must be greater than zero')

    with transaction.atomic():
        order = VendorOrder.objects.select_for_update().filter(pk=order_id).first()
        if order is None:
            raise NotFound('Vendor order not found')
        payment = VendorPayment.objects.create(
            vendor_order=order,
            vendor_id=order.vendor_id,
            amount=amount,
            payment_type=payment_type or 'advance',
            payment_method=payment_method or 'cash',
            notes=notes or '',
            created_by=created_by,
        )
        order.refresh_amount_paid()

    logger.info("Recorded vendor payment %s of %s on order %s", payment.pk, amount, order.pk)
    return payment


def delete_vendor_payment(payment_id):
    with transaction.atomic():
        payment = VendorPayment.objects.select_related('vendor_order').filter(pk=payment_id).first()
        if payment is None:
            raise NotFound('Vendor payment not found')
        order = VendorOrder.objects.select_for_update().get(pk=payment.vendor_order_id)
        payment.delete()
        order.refresh_amount_paid()
    return order


def vendor_summary(vendor_id):
    vendor = Vendor.objects.filter(pk=vendor_id).first()
    if vendor is None:
        raise NotFound('Vendor not found')
    orders = VendorOrder.objects.filter(vendor=vendor).exclude(status='cancelled')
    totals = orders.aggregate(
        order_count=Count('id'),
        total_amount=Coalesce(Sum('total_amount'), Value(ZERO), output_field=MONEY_FIELD),
        total_paid=Coalesce(Sum('amount_paid'), Value(ZERO), output_field=MONEY_FIELD),
    )
    total_amount = ensure_decimal(totals['total_amount'])
    total_paid = ensure_decimal(totals['total_paid'])
    return {
        'vendor_id': vendor.pk,
        'vendor_name': vendor.name,
        'order_count': totals['order_count'],
        'pending_orders': orders.exclude(status='completed').count(),
        'total_amount': quantize_money(total_amount),
        'total_paid': quantize_money(total_paid),
        'balance_due': quantize_money(total_amount - total_paid),
    }
