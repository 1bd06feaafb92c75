from decimal import Decimal

from django.contrib.auth.models import User
from django.db import transaction
from rest_framework import serializers
from rest_framework.validators import UniqueValidator

from crm.accounts import ROLE_STAFF, ROLES, user_role
from crm.models import (
    Category, Customer, DeliveryZone, GiftPackage, GiftPackageItem, ImportantDate, Invoice,
    InvoiceItem, InvoicePackage, Notification, Payment, Product, PushSubscription, Receipt,
    Recipient, Vendor, VendorOrder, VendorPayment,
)


ZERO = Decimal('0')


def _money(**kwargs):
    kwargs.setdefault('max_digits', 12)
    kwargs.setdefault('decimal_places', 2)
    return serializers.DecimalField(**kwargs)


class CustomerSerializer(serializers.ModelSerializer):
    recipient_count = serializers.IntegerField(read_only=True)
    invoice_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Customer
        fields = '__all__'


class RecipientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Recipient
        fields = '__all__'


class ImportantDateSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source='customer.name', read_only=True)
    customer_whatsapp = serializers.CharField(source='customer.whatsapp', read_only=True)
    recipient_name = serializers.SerializerMethodField()

    class Meta:
        model = ImportantDate
        fields = '__all__'
        read_only_fields = ['reminder_sent_at']

    def get_recipient_name(self, obj):
        return obj.recipient.name if obj.recipient_id else None

    def validate(self, attrs):
        customer = attrs.get('customer') or getattr(self.instance, 'customer', None)
        recipient = attrs.get('recipient')
        if recipient is not None and customer is not None and recipient.customer_id != customer.pk:
            raise serializers.ValidationError('Recipient does not belong to this customer')
        return attrs


class InvoiceSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Invoice
        fields = ['id', 'invoice_number', 'total', 'status', 'created_at']


class CustomerDetailSerializer(CustomerSerializer):
    recipients = RecipientSerializer(many=True, read_only=True)
    importantDates = ImportantDateSerializer(source='important_dates', many=True, read_only=True)
    invoices = InvoiceSummarySerializer(many=True, read_only=True)


class DeliveryZoneSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryZone
        fields = '__all__'


class CategorySerializer(serializers.ModelSerializer):
    name = serializers.CharField(
        max_length=100,
        validators=[UniqueValidator(queryset=Category.objects.all(), message='Category already exists')],
    )

    class Meta:
        model = Category
        fields = '__all__'


class VendorSerializer(serializers.ModelSerializer):
    class Meta:
        model = Vendor
        fields = '__all__'


class ProductSerializer(serializers.ModelSerializer):
    category_name = serializers.SerializerMethodField()
    vendor_name = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = '__all__'

    def get_category_name(self, obj):
        return obj.category.name if obj.category_id else None

    def get_vendor_name(self, obj):
        return obj.vendor.name if obj.vendor_id else None


class GiftPackageItemSerializer(serializers.ModelSerializer):
    product_id = serializers.PrimaryKeyRelatedField(
        queryset=Product.objects.all(), source='product', required=False, allow_null=True
    )
    product_name = serializers.SerializerMethodField()
    quantity = serializers.IntegerField(min_value=1, required=False, default=1)

    class Meta:
        model = GiftPackageItem
        fields = ['id', 'product_id', 'product_name', 'description', 'quantity', 'unit_price']

    def get_product_name(self, obj):
        return obj.product.name if obj.product_id else None


class GiftPackageSerializer(serializers.ModelSerializer):
    items = GiftPackageItemSerializer(many=True, required=False)

    class Meta:
        model = GiftPackage
        fields = ['id', 'name', 'description', 'total_price', 'is_active', 'created_at', 'items']
        read_only_fields = ['is_active', 'created_at']

    def create(self, validated_data):
        items = validated_data.pop('items', [])
        with transaction.atomic():
            package = GiftPackage.objects.create(**validated_data)
            GiftPackageItem.objects.bulk_create(
                [GiftPackageItem(package=package, **item) for item in items]
            )
        return package


# Invoice input: nested packages -> items, or a legacy flat item list.

class InvoiceItemInputSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    quantity = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    unit_price = _money(min_value=ZERO, default=0)
    cost_price = _money(min_value=ZERO, required=False, allow_null=True, default=0)
    product_id = serializers.PrimaryKeyRelatedField(
        queryset=Product.objects.all(), source='product', required=False, allow_null=True
    )
    category_id = serializers.PrimaryKeyRelatedField(
        queryset=Category.objects.all(), source='category', required=False, allow_null=True
    )
    vendor_id = serializers.PrimaryKeyRelatedField(
        queryset=Vendor.objects.all(), source='vendor', required=False, allow_null=True
    )


class InvoicePackageInputSerializer(serializers.Serializer):
    package_name = serializers.CharField(max_length=255)
    package_price = _money(min_value=ZERO, default=0)
    packaging_cost = _money(min_value=ZERO, required=False, allow_null=True, default=0)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    items = InvoiceItemInputSerializer(many=True, required=False, default=list)


class InvoiceWriteSerializer(serializers.Serializer):
    customer_id = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all(), source='customer')
    recipient_id = serializers.PrimaryKeyRelatedField(
        queryset=Recipient.objects.all(), source='recipient', required=False, allow_null=True
    )
    delivery_zone_id = serializers.PrimaryKeyRelatedField(
        queryset=DeliveryZone.objects.all(), source='delivery_zone', required=False, allow_null=True
    )
    packages = InvoicePackageInputSerializer(many=True, required=False, default=list)
    items = InvoiceItemInputSerializer(many=True, required=False, default=list)
    discount = _money(min_value=ZERO, required=False, allow_null=True, default=0)
    delivery_fee = _money(min_value=ZERO, required=False, allow_null=True)
    gift_message = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')

    def validate(self, attrs):
        recipient = attrs.get('recipient')
        if recipient is not None and recipient.customer_id != attrs['customer'].pk:
            raise serializers.ValidationError('Recipient does not belong to this customer')
        return attrs


# Invoice output

class InvoiceItemSerializer(serializers.ModelSerializer):
    product_name = serializers.SerializerMethodField()
    category_name = serializers.SerializerMethodField()
    vendor_name = serializers.SerializerMethodField()

    class Meta:
        model = InvoiceItem
        fields = [
            'id', 'package', 'product', 'category', 'vendor', 'product_name', 'category_name',
            'vendor_name', 'description', 'quantity', 'unit_price', 'cost_price', 'total',
        ]

    def get_product_name(self, obj):
        return obj.product.name if obj.product_id else None

    def get_category_name(self, obj):
        return obj.category.name if obj.category_id else None

    def get_vendor_name(self, obj):
        return obj.vendor.name if obj.vendor_id else None


class InvoicePackageSerializer(serializers.ModelSerializer):
    items = InvoiceItemSerializer(many=True, read_only=True)

    class Meta:
        model = InvoicePackage
        fields = ['id', 'package_name', 'package_price', 'packaging_cost', 'notes', 'items']


class PaymentSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True)

    class Meta:
        model = Payment
        fields = '__all__'


class InvoiceSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source='customer.name', read_only=True)
    customer_whatsapp = serializers.CharField(source='customer.whatsapp', read_only=True)
    recipient_name = serializers.SerializerMethodField()
    delivery_zone_name = serializers.SerializerMethodField()
    balance_due = _money(read_only=True)
    profit = _money(read_only=True)

    class Meta:
        model = Invoice
        fields = '__all__'

    def get_recipient_name(self, obj):
        return obj.recipient.name if obj.recipient_id else None

    def get_delivery_zone_name(self, obj):
        return obj.delivery_zone.name if obj.delivery_zone_id else None


class InvoiceDetailSerializer(InvoiceSerializer):
    recipient_phone = serializers.SerializerMethodField()
    recipient_address = serializers.SerializerMethodField()
    packages = InvoicePackageSerializer(many=True, read_only=True)
    items = serializers.SerializerMethodField()
    all_items = InvoiceItemSerializer(source='items', many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    receipt_number = serializers.SerializerMethodField()

    def get_recipient_phone(self, obj):
        return obj.recipient.phone if obj.recipient_id else None

    def get_recipient_address(self, obj):
        return obj.recipient.address if obj.recipient_id else None

    def get_items(self, obj):
        standalone = [item for item in obj.items.all() if item.package_id is None]
        return InvoiceItemSerializer(standalone, many=True).data

    def get_receipt_number(self, obj):
        receipt = Receipt.objects.filter(invoice=obj).only('receipt_number').first()
        return receipt.receipt_number if receipt else None


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.CharField()


class OrderStatusSerializer(serializers.Serializer):
    order_status = serializers.CharField()


class PaymentCreateSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField()
    amount = _money()
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')


class ReceiptSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True)
    customer_name = serializers.CharField(source='invoice.customer.name', read_only=True)
    invoice_total = _money(source='invoice.total', read_only=True)

    class Meta:
        model = Receipt
        fields = '__all__'


class ReceiptCreateSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField()
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, default='')


class VendorPaymentSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source='vendor.name', read_only=True)

    class Meta:
        model = VendorPayment
        fields = '__all__'
        read_only_fields = ['vendor_order', 'vendor', 'created_by', 'payment_date']


class VendorOrderSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source='vendor.name', read_only=True)
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True)
    customer_name = serializers.CharField(source='invoice.customer.name', read_only=True)
    balance_due = _money(read_only=True)

    class Meta:
        model = VendorOrder
        fields = '__all__'
        read_only_fields = ['amount_paid', 'created_by', 'completed_at']
        extra_kwargs = {
            'invoice': {'required': False},
            'vendor': {'required': False},
            'description': {'required': False, 'allow_blank': True},
        }

    def validate(self, attrs):
        if self.instance is None and not (
            attrs.get('invoice') and attrs.get('vendor') and attrs.get('description')
        ):
            raise serializers.ValidationError('Invoice, vendor, and description are required')
        return attrs


class VendorOrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=VendorOrder.STATUS_CHOICES)


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        exclude = ['user']


class PushSubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PushSubscription
        fields = ['id', 'created_at', 'last_used_at']


class UserSerializer(serializers.ModelSerializer):
    name = serializers.SerializerMethodField()
    role = serializers.SerializerMethodField()
    created_at = serializers.DateTimeField(source='date_joined', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'name', 'role', 'created_at']

    def get_name(self, obj):
        return obj.get_full_name() or obj.get_username()

    def get_role(self, obj):
        return user_role(obj)


class UserCreateSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True)
    name = serializers.CharField(max_length=300, required=False, allow_blank=True, default='')
    role = serializers.ChoiceField(choices=ROLES, default=ROLE_STAFF)


class ChangePasswordSerializer(serializers.Serializer):
    currentPassword = serializers.CharField()
    newPassword = serializers.CharField()
