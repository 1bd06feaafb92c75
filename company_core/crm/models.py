from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import User
from django.db import models
from django.utils import timezone

from .ledger import ensure_decimal, quantize_money


MONEY = dict(max_digits=12, decimal_places=2, default=Decimal('0.00'))
PERCENT = dict(max_digits=9, decimal_places=2, default=Decimal('0.00'))


class Setting(models.Model):
    """Business-editable key/value configuration (prefixes, currency, contact details)."""

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True, default='')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['key']

    def __str__(self):
        return f'{self.key}={self.value}'

    @classmethod
    def get_value(cls, key, default=None):
        value = cls.objects.filter(key=key).values_list('value', flat=True).first()
        if value in (None, ''):
            return default
        return value

    @classmethod
    def set_many(cls, values):
        for key, value in values.items():
            cls.objects.update_or_create(
                key=key,
                defaults={'value': '' if value is None else str(value)},
            )

    @classmethod
    def as_dict(cls):
        return dict(cls.objects.values_list('key', 'value'))

    @classmethod
    def currency_symbol(cls):
        return cls.get_value('currency_symbol', settings.DEFAULT_CURRENCY_SYMBOL)


class Customer(models.Model):
    name = models.CharField(max_length=255)
    whatsapp = models.CharField(max_length=50, blank=True, default='')
    country = models.CharField(max_length=100, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.name


class Recipient(models.Model):
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name='recipients')
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=50, blank=True, default='')
    address = models.TextField(blank=True, default='')
    relationship = models.CharField(max_length=100, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f'{self.name} ({self.customer.name})'


class ImportantDate(models.Model):
    """A customer's recurring occasion. Only month/day matter when ``recurring`` is set."""

    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name='important_dates')
    recipient = models.ForeignKey(
        Recipient,
        on_delete=models.SET_NULL,
        related_name='important_dates',
        null=True,
        blank=True,
    )
    title = models.CharField(max_length=255)
    date = models.DateField()
    recurring = models.BooleanField(default=True)
    reminder_days = models.PositiveIntegerField(null=True, blank=True, default=7)
    reminder_sent_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f'{self.title} ({self.date:%m-%d})'

    @property
    def effective_reminder_days(self):
        if self.reminder_days is None:
            return settings.DEFAULT_REMINDER_DAYS
        return self.reminder_days


class DeliveryZone(models.Model):
    name = models.CharField(max_length=255)
    areas = models.TextField(blank=True, default='')
    delivery_fee = models.DecimalField(**MONEY)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['delivery_fee', 'name']

    def __str__(self):
        return self.name


class Category(models.Model):
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'categories'

    def __str__(self):
        return self.name


class Vendor(models.Model):
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=50, blank=True, default='')
    address = models.TextField(blank=True, default='')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    name = models.CharField(max_length=255)
    category = models.ForeignKey(
        Category, on_delete=models.SET_NULL, related_name='products', null=True, blank=True
    )
    vendor = models.ForeignKey(
        Vendor, on_delete=models.SET_NULL, related_name='products', null=True, blank=True
    )
    cost_price = models.DecimalField(**MONEY)
    retail_price = models.DecimalField(**MONEY)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class GiftPackage(models.Model):
    """Reusable package template used to pre-fill invoice packages."""

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    total_price = models.DecimalField(**MONEY)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class GiftPackageItem(models.Model):
    package = models.ForeignKey(GiftPackage, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(
        Product, on_delete=models.SET_NULL, related_name='package_items', null=True, blank=True
    )
    description = models.CharField(max_length=500, blank=True, default='')
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(**MONEY)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f'{self.quantity} x {self.description or self.product}'


class Invoice(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_PARTIAL = 'partial'
    STATUS_PAID = 'paid'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PARTIAL, 'Partially paid'),
        (STATUS_PAID, 'Paid'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    ORDER_RECEIVED = 'received'
    ORDER_PROCESSING = 'processing'
    ORDER_DISPATCHED = 'dispatched'
    ORDER_DELIVERED = 'delivered'
    ORDER_STATUS_CHOICES = [
        (ORDER_RECEIVED, 'Received'),
        (ORDER_PROCESSING, 'Processing'),
        (ORDER_DISPATCHED, 'Dispatched'),
        (ORDER_DELIVERED, 'Delivered'),
    ]

    invoice_number = models.CharField(max_length=50, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name='invoices')
    recipient = models.ForeignKey(
        Recipient, on_delete=models.SET_NULL, related_name='invoices', null=True, blank=True
    )
    delivery_zone = models.ForeignKey(
        DeliveryZone, on_delete=models.SET_NULL, related_name='invoices', null=True, blank=True
    )
    subtotal = models.DecimalField(**MONEY)
    discount = models.DecimalField(**MONEY)
    delivery_fee = models.DecimalField(**MONEY)
    total = models.DecimalField(**MONEY)
    total_cost = models.DecimalField(**MONEY)
    total_packaging_cost = models.DecimalField(**MONEY)
    amount_paid = models.DecimalField(**MONEY)
    profit_margin = models.DecimalField(**PERCENT)
    markup_percentage = models.DecimalField(**PERCENT)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    order_status = models.CharField(
        max_length=20, choices=ORDER_STATUS_CHOICES, default=ORDER_RECEIVED
    )
    gift_message = models.TextField(blank=True, default='')
    notes = models.TextField(blank=True, default='')
    paid_at = models.DateTimeField(null=True, blank=True)
    dispatched_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, related_name='created_invoices', null=True, blank=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return self.invoice_number

    @property
    def balance_due(self):
        return quantize_money(ensure_decimal(self.total) - ensure_decimal(self.amount_paid))

    @property
    def profit(self):
        return quantize_money(
            ensure_decimal(self.total)
            - ensure_decimal(self.total_cost)
            - ensure_decimal(self.delivery_fee)
        )

    @property
    def is_fully_paid(self):
        return ensure_decimal(self.amount_paid) >= ensure_decimal(self.total)


class InvoicePackage(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='packages')
    package_name = models.CharField(max_length=255)
    package_price = models.DecimalField(**MONEY)
    packaging_cost = models.DecimalField(**MONEY)
    notes = models.TextField(blank=True, default='')

    class Meta:
        ordering = ['id']

    def __str__(self):
        return self.package_name


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    # Legacy flat invoices keep items directly on the invoice with no package.
    package = models.ForeignKey(
        InvoicePackage, on_delete=models.CASCADE, related_name='items', null=True, blank=True
    )
    product = models.ForeignKey(
        Product, on_delete=models.SET_NULL, related_name='invoice_items', null=True, blank=True
    )
    category = models.ForeignKey(
        Category, on_delete=models.SET_NULL, related_name='invoice_items', null=True, blank=True
    )
    vendor = models.ForeignKey(
        Vendor, on_delete=models.SET_NULL, related_name='invoice_items', null=True, blank=True
    )
    description = models.CharField(max_length=500)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(**MONEY)
    cost_price = models.DecimalField(**MONEY)
    total = models.DecimalField(**MONEY)

    class Meta:
        ordering = ['id']

    def save(self, *args, **kwargs):
        self.total = quantize_money(ensure_decimal(self.unit_price) * (self.quantity or 0))
        super().save(*args, **kwargs)

    def __str__(self):
        return f'{self.quantity} x {self.description}'


class Payment(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=50, default='bank_transfer')
    payment_date = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, related_name='recorded_payments', null=True, blank=True
    )

    class Meta:
        ordering = ['-payment_date', '-id']

    def __str__(self):
        return f'Payment of {self.amount} for Invoice {self.invoice.invoice_number}'


class Receipt(models.Model):
    receipt_number = models.CharField(max_length=50, unique=True)
    # One receipt per invoice, enforced by the database.
    invoice = models.OneToOneField(Invoice, on_delete=models.CASCADE, related_name='receipt')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=50, default='bank_transfer')
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return self.receipt_number


class DocumentSequence(models.Model):
    """Last number handed out for one prefix in one calendar year."""

    prefix = models.CharField(max_length=20)
    year = models.PositiveIntegerField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['prefix', 'year'], name='unique_document_sequence'),
        ]

    def __str__(self):
        return f'{self.prefix}-{self.year}: {self.last_value}'


class VendorOrder(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Assigned'),
        ('in_progress', 'In progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='vendor_orders')
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name='orders')
    description = models.TextField()
    total_amount = models.DecimalField(**MONEY)
    amount_paid = models.DecimalField(**MONEY)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, related_name='vendor_orders', null=True, blank=True
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return f'{self.vendor.name} for {self.invoice.invoice_number}'

    @property
    def balance_due(self):
        return quantize_money(ensure_decimal(self.total_amount) - ensure_decimal(self.amount_paid))

    def refresh_amount_paid(self):
        total = self.payments.aggregate(total=models.Sum('amount'))['total']
        self.amount_paid = quantize_money(ensure_decimal(total))
        self.save(update_fields=['amount_paid', 'updated_at'])
        return self.amount_paid


class VendorPayment(models.Model):
    PAYMENT_TYPE_CHOICES = [
        ('advance', 'Advance'),
        ('partial', 'Partial'),
        ('final', 'Final'),
    ]

    vendor_order = models.ForeignKey(VendorOrder, on_delete=models.CASCADE, related_name='payments')
    vendor = models.ForeignKey(Vendor, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_type = models.CharField(max_length=20, choices=PAYMENT_TYPE_CHOICES, default='advance')
    payment_method = models.CharField(max_length=50, default='cash')
    payment_date = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True, default='')
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, related_name='vendor_payments', null=True, blank=True
    )

    class Meta:
        ordering = ['-payment_date', '-id']

    def __str__(self):
        return f'{self.amount} to {self.vendor.name}'


class PushSubscription(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='push_subscriptions')
    endpoint = models.TextField(unique=True)
    p256dh = models.TextField()
    auth = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)
    last_used_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f'Push subscription for {self.user}'

    def as_subscription_info(self):
        return {
            'endpoint': self.endpoint,
            'keys': {'p256dh': self.p256dh, 'auth': self.auth},
        }


class Notification(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='crm_notifications')
    type = models.CharField(max_length=50, default='reminder')
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True, default='')
    related_entity_type = models.CharField(max_length=50, blank=True, default='')
    related_entity_id = models.PositiveBigIntegerField(null=True, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']

    def __str__(self):
        return self.title
