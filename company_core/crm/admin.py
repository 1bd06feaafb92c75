from django.contrib import admin

from .models import (
    Category, Customer, DeliveryZone, DocumentSequence, GiftPackage, GiftPackageItem, ImportantDate,
    Invoice, InvoiceItem, InvoicePackage, Notification, Payment, Product, PushSubscription, Receipt,
    Recipient, Setting, Vendor, VendorOrder, VendorPayment,
)


class RecipientInline(admin.TabularInline):
    model = Recipient
    extra = 0


class ImportantDateInline(admin.TabularInline):
    model = ImportantDate
    extra = 0
    fields = ('title', 'date', 'recurring', 'reminder_days', 'recipient', 'reminder_sent_at')
    readonly_fields = ('reminder_sent_at',)


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ('name', 'whatsapp', 'country', 'created_at')
    search_fields = ('name', 'whatsapp')
    inlines = [RecipientInline, ImportantDateInline]


@admin.register(ImportantDate)
class ImportantDateAdmin(admin.ModelAdmin):
    list_display = ('title', 'customer', 'date', 'recurring', 'reminder_days', 'reminder_sent_at')
    list_filter = ('recurring',)
    search_fields = ('title', 'customer__name')


class InvoicePackageInline(admin.TabularInline):
    model = InvoicePackage
    extra = 0


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    # Payments go through the accumulator so status and receipts stay consistent.
    readonly_fields = ('amount', 'payment_method', 'payment_date', 'notes', 'created_by')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = (
        'invoice_number', 'customer', 'total', 'amount_paid', 'balance_display',
        'status', 'order_status', 'profit_margin', 'created_at',
    )
    list_filter = ('status', 'order_status')
    search_fields = ('invoice_number', 'customer__name')
    readonly_fields = (
        'invoice_number', 'subtotal', 'total', 'total_cost', 'total_packaging_cost',
        'amount_paid', 'profit_margin', 'markup_percentage', 'paid_at',
    )
    inlines = [InvoicePackageInline, PaymentInline]

    def balance_display(self, obj):
        return obj.balance_due
    balance_display.short_description = 'Balance'


@admin.register(InvoiceItem)
class InvoiceItemAdmin(admin.ModelAdmin):
    list_display = ('description', 'invoice', 'package', 'quantity', 'unit_price', 'cost_price', 'total')
    search_fields = ('description', 'invoice__invoice_number')


class GiftPackageItemInline(admin.TabularInline):
    model = GiftPackageItem
    extra = 0


@admin.register(GiftPackage)
class GiftPackageAdmin(admin.ModelAdmin):
    list_display = ('name', 'total_price', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('name',)
    inlines = [GiftPackageItemInline]


@admin.register(Receipt)
class ReceiptAdmin(admin.ModelAdmin):
    list_display = ('receipt_number', 'invoice', 'amount', 'payment_method', 'created_at')
    search_fields = ('receipt_number', 'invoice__invoice_number')


@admin.register(DocumentSequence)
class DocumentSequenceAdmin(admin.ModelAdmin):
    list_display = ('prefix', 'year', 'last_value')


@admin.register(VendorOrder)
class VendorOrderAdmin(admin.ModelAdmin):
    list_display = ('invoice', 'vendor', 'total_amount', 'amount_paid', 'status', 'completed_at')
    list_filter = ('status',)


@admin.register(Setting)
class SettingAdmin(admin.ModelAdmin):
    list_display = ('key', 'value', 'updated_at')
    search_fields = ('key',)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('title', 'user', 'type', 'read_at', 'created_at')
    list_filter = ('type',)


admin.site.register(Recipient)
admin.site.register(DeliveryZone)
admin.site.register(Category)
admin.site.register(Vendor)
admin.site.register(Product)
admin.site.register(VendorPayment)
admin.site.register(PushSubscription)
