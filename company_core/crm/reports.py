"""Sales and profitability reports.

Months are reported as ``YYYY-MM`` in the business time zone. The sales
report covers paid invoices at their full total. The profitability report is
cash based: revenue is money actually received on paid and partially paid
invoices, and each invoice's cost is spread over the months its payments
arrived in, in proportion to the amounts.
"""

from collections import defaultdict
from datetime import timedelta

from django.db.models import Count, DecimalField, Max, Q, Sum, Value
from django.db.models.functions import Coalesce, NullIf, TruncMonth
from django.utils import timezone

from .ledger import ZERO, ensure_decimal, percentage, quantize_money
from .models import Customer, Invoice, InvoiceItem

MONEY_FIELD = DecimalField(max_digits=12, decimal_places=2)
TOP_CUSTOMER_LIMIT = 10


def _money_sum(field):
    return Coalesce(Sum(field), Value(ZERO), output_field=MONEY_FIELD)


def month_key(value):
    return timezone.localtime(value).strftime('%Y-%m')


def sales_report():
    paid = Invoice.objects.filter(status=Invoice.STATUS_PAID)

    monthly = (
        paid.annotate(month=TruncMonth(Coalesce('paid_at', 'created_at')))
        .values('month')
        .annotate(revenue=_money_sum('total'), orders=Count('id'))
        .order_by('month')
    )
    by_category = (
        InvoiceItem.objects.filter(invoice__status=Invoice.STATUS_PAID)
        .annotate(category_name=Coalesce('category__name', Value('Other')))
        .values('category_name')
        .annotate(revenue=_money_sum('total'))
        .order_by('-revenue', 'category_name')
    )
    by_country = (
        paid.annotate(country=Coalesce(NullIf('customer__country', Value('')), Value('Unknown')))
        .values('country')
        .annotate(revenue=_money_sum('total'), orders=Count('id'))
        .order_by('-revenue', 'country')
    )
    top_customers = (
        paid.values('customer_id', 'customer__name')
        .annotate(revenue=_money_sum('total'), orders=Count('id'))
        .order_by('-revenue', 'customer__name')[:TOP_CUSTOMER_LIMIT]
    )

    return {
        'monthly': [
            {
                'month': row['month'].strftime('%Y-%m'),
                'revenue': quantize_money(row['revenue']),
                'orders': row['orders'],
            }
            for row in monthly
        ],
        'byCategory': [
            {'name': row['category_name'], 'revenue': quantize_money(row['revenue'])}
            for row in by_category
        ],
        'byCountry': [
            {
                'country': row['country'],
                'revenue': quantize_money(row['revenue']),
                'orders': row['orders'],
            }
            for row in by_country
        ],
        'topCustomers': [
            {
                'name': row['customer__name'],
                'revenue': quantize_money(row['revenue']),
                'orders': row['orders'],
            }
            for row in top_customers
        ],
    }


def profitability_report():
    invoices = (
        Invoice.objects.filter(status__in=[Invoice.STATUS_PAID, Invoice.STATUS_PARTIAL])
        .prefetch_related('payments')
        .order_by('id')
    )
    months = defaultdict(lambda: {'revenue': ZERO, 'cost': ZERO, 'packaging': ZERO, 'orders': 0})
    total_revenue = total_cost = total_packaging = ZERO

    for invoice in invoices:
        revenue = ensure_decimal(invoice.amount_paid)
        cost = ensure_decimal(invoice.total_cost)
        packaging = ensure_decimal(invoice.total_packaging_cost)

        payments = list(invoice.payments.all())
        received = sum((payment.amount for payment in payments), ZERO)
        if payments:
            for payment in payments:
                bucket = months[month_key(payment.payment_date)]
                bucket['revenue'] += payment.amount
                if received > 0:
                    bucket['cost'] += cost * payment.amount / received
                    bucket['packaging'] += packaging * payment.amount / received
        else:
            # Settled by receipt alone, so book it in the month it was raised.
            bucket = months[month_key(invoice.created_at)]
            bucket['revenue'] += revenue
            bucket['cost'] += cost
            bucket['packaging'] += packaging

        months[month_key(invoice.created_at)]['orders'] += 1
        total_revenue += revenue
        total_cost += cost
        total_packaging += packaging

    total_profit = total_revenue - total_cost
    monthly = []
    packaging_costs = []
    for month in sorted(months):
        data = months[month]
        profit = data['revenue'] - data['cost']
        monthly.append({
            'month': month,
            'revenue': quantize_money(data['revenue']),
            'cost': quantize_money(data['cost']),
            'profit': quantize_money(profit),
            'margin': percentage(profit, data['revenue']),
            'markup': percentage(profit, data['cost']),
            'orders': data['orders'],
        })
        if data['packaging'] > 0:
            packaging_costs.append({'month': month, 'cost': quantize_money(data['packaging'])})

    return {
        'summary': {
            'totalRevenue': quantize_money(total_revenue),
            'totalCost': quantize_money(total_cost),
            'totalProfit': quantize_money(total_profit),
            'totalPackagingCost': quantize_money(total_packaging),
            'avgMargin': percentage(total_profit, total_revenue),
            'avgMarkup': percentage(total_profit, total_cost),
        },
        'monthly': monthly,
        'packagingCosts': packaging_costs,
    }


def inactive_customers(days=90, *, now=None):
    """Customers with no invoice in the last ``days`` days, longest idle first."""

    now = now or timezone.now()
    cutoff = now - timedelta(days=days)
    customers = (
        Customer.objects.annotate(last_order=Max('invoices__created_at'))
        .filter(Q(last_order__isnull=True) | Q(last_order__lt=cutoff))
    )
    rows = [
        {
            'id': customer.pk,
            'name': customer.name,
            'whatsapp': customer.whatsapp,
            'country': customer.country,
            'created_at': customer.created_at,
            'last_order': customer.last_order,
            'days_inactive': (now - (customer.last_order or customer.created_at)).days,
        }
        for customer in customers
    ]
    rows.sort(key=lambda row: row['days_inactive'], reverse=True)
    return rows
