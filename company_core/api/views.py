# api/views.py
import logging
import mimetypes
import re

from django.conf import settings
from django.contrib.auth.models import User
from django.db.models import Count, Prefetch, Q
from django.db.models.functions import ExtractDay, ExtractMonth
from django.http import FileResponse, Http404
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.crypto import constant_time_compare
from django.utils.dateparse import parse_date
from django.core.files.storage import default_storage
from rest_framework import mixins, status, viewsets
from rest_framework.authtoken.models import Token
from rest_framework.decorators import action, api_view, authentication_classes, parser_classes, permission_classes
from rest_framework.exceptions import MethodNotAllowed
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from crm.accounts import change_password, create_user, delete_user
from crm.exceptions import InvoiceLocked, NotFound, ValidationFailed
from crm.invoice_utils import build_invoice, rebuild_invoice
from crm.models import (
    Category, Customer, DeliveryZone, GiftPackage, GiftPackageItem, ImportantDate, Invoice,
    InvoiceItem, Notification, Payment, Product, PushSubscription, Receipt, Recipient, Setting,
    Vendor, VendorOrder,
)
from crm.payment_utils import (
    change_invoice_status, change_order_status, delete_payment, issue_receipt, record_payment,
)
from crm.push import push_configured, remove_subscription, save_subscription, send_push_notification
from crm.reminders import run_reminder_check
from crm.reports import inactive_customers, profitability_report, sales_report
from crm.vendor_utils import (
    delete_vendor_payment, record_vendor_payment, set_vendor_order_status, vendor_summary,
)

from .permissions import IsAdminOrPublicRead, IsAdminOrReadOnly, IsAdminUser
from .serializers import (
    CategorySerializer, ChangePasswordSerializer, CustomerDetailSerializer, CustomerSerializer,
    DeliveryZoneSerializer, GiftPackageSerializer, ImportantDateSerializer, InvoiceDetailSerializer,
    InvoiceSerializer, InvoiceStatusSerializer, InvoiceWriteSerializer, NotificationSerializer,
    OrderStatusSerializer, PaymentCreateSerializer, PaymentSerializer, ProductSerializer,
    PushSubscriptionSerializer, ReceiptCreateSerializer, ReceiptSerializer, RecipientSerializer,
    UserCreateSerializer, UserSerializer, VendorOrderSerializer, VendorOrderStatusSerializer,
    VendorPaymentSerializer, VendorSerializer,
)

logger = logging.getLogger(__name__)

NOTIFICATION_LIST_LIMIT = 50
INACTIVE_DAYS_DEFAULT = 90


def _truthy(value):
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _query_date(request, name):
    raw = request.query_params.get(name)
    if not raw:
        return None
    parsed = parse_date(raw)
    if parsed is None:
        raise ValidationFailed(f'Invalid {name}, expected YYYY-MM-DD')
    return parsed


# ------------------------------
# Customers and their occasions
# ------------------------------

def whatsapp_digits(value):
    return re.sub(r'\D', '', value or '')


def find_duplicate_customer(whatsapp, exclude_id=None):
    """Customers are duplicates when their WhatsApp numbers share the same digits."""
    digits = whatsapp_digits(whatsapp)
    if not digits:
        return None
    candidates = Customer.objects.exclude(whatsapp='').only('id', 'name', 'whatsapp')
    if exclude_id is not None:
        candidates = candidates.exclude(pk=exclude_id)
    for customer in candidates.iterator():
        if whatsapp_digits(customer.whatsapp) == digits:
            return customer
    return None


def _customer_brief(customer):
    return {'id': customer.pk, 'name': customer.name, 'whatsapp': customer.whatsapp}


class CustomerViewSet(viewsets.ModelViewSet):
    serializer_class = CustomerSerializer

    def get_queryset(self):
        queryset = Customer.objects.annotate(
            recipient_count=Count('recipients', distinct=True),
            invoice_count=Count('invoices', distinct=True),
        )
        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(whatsapp__icontains=search))
        if self.action == 'retrieve':
            queryset = queryset.prefetch_related(
                'recipients',
                Prefetch('important_dates', queryset=ImportantDate.objects.select_related('customer', 'recipient')),
                'invoices',
            )
        return queryset

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return CustomerDetailSerializer
        return CustomerSerializer

    def create(self, request, *args, **kwargs):
        if not _truthy(request.data.get('skipDuplicateCheck', False)):
            existing = find_duplicate_customer(request.data.get('whatsapp'))
            if existing is not None:
                return Response(
                    {
                        'error': 'Duplicate customer',
                        'message': f'A customer with this WhatsApp number already exists: {existing.name}',
                        'existingCustomer': _customer_brief(existing),
                    },
                    status=status.HTTP_409_CONFLICT,
                )
        return super().create(request, *args, **kwargs)

    @action(detail=False, methods=['get'], url_path='check-duplicate')
    def check_duplicate(self, request):
        exclude_id = request.query_params.get('exclude_id')
        existing = find_duplicate_customer(request.query_params.get('whatsapp'), exclude_id=exclude_id)
        return Response({
            'isDuplicate': existing is not None,
            'existingCustomer': _customer_brief(existing) if existing else None,
        })


class RecipientViewSet(viewsets.ModelViewSet):
    serializer_class = RecipientSerializer

    def get_queryset(self):
        queryset = Recipient.objects.select_related('customer')
        customer_id = self.request.query_params.get('customer_id')
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        return queryset


class ImportantDateViewSet(viewsets.ModelViewSet):
    serializer_class = ImportantDateSerializer

    def get_queryset(self):
        queryset = ImportantDate.objects.select_related('customer', 'recipient').annotate(
            occurs_month=ExtractMonth('date'),
            occurs_day=ExtractDay('date'),
        ).order_by('occurs_month', 'occurs_day', 'id')
        customer_id = self.request.query_params.get('customer_id')
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        return queryset


# ------------------------------
# Catalogue
# ------------------------------

class DeliveryZoneViewSet(viewsets.ModelViewSet):
    serializer_class = DeliveryZoneSerializer
    permission_classes = [IsAdminOrReadOnly]

    def get_queryset(self):
        queryset = DeliveryZone.objects.all()
        if self.action == 'list' and not _truthy(self.request.query_params.get('include_inactive', '')):
            queryset = queryset.filter(is_active=True)
        return queryset

    def destroy(self, request, *args, **kwargs):
        zone = self.get_object()
        zone.is_active = False
        zone.save(update_fields=['is_active'])
        logger.info("Delivery zone %s deactivated", zone.pk)
        return Response({'success': True})


class CategoryViewSet(viewsets.ModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer


class VendorViewSet(viewsets.ModelViewSet):
    queryset = Vendor.objects.all()
    serializer_class = VendorSerializer

    @action(detail=True, methods=['get'])
    def summary(self, request, pk=None):
        return Response(vendor_summary(pk))


class ProductViewSet(viewsets.ModelViewSet):
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.select_related('category', 'vendor')
        params = self.request.query_params
        if params.get('category_id'):
            queryset = queryset.filter(category_id=params['category_id'])
        if params.get('vendor_id'):
            queryset = queryset.filter(vendor_id=params['vendor_id'])
        if params.get('active') is not None:
            queryset = queryset.filter(is_active=_truthy(params['active']))
        return queryset


class GiftPackageViewSet(mixins.ListModelMixin,
                         mixins.RetrieveModelMixin,
                         mixins.CreateModelMixin,
                         mixins.DestroyModelMixin,
                         viewsets.GenericViewSet):
    serializer_class = GiftPackageSerializer

    def get_permissions(self):
        if self.action == 'destroy':
            return [IsAdminUser()]
        return super().get_permissions()

    def get_queryset(self):
        queryset = GiftPackage.objects.prefetch_related(
            Prefetch('items', queryset=GiftPackageItem.objects.select_related('product'))
        )
        if self.action == 'list':
            queryset = queryset.filter(is_active=True)
        return queryset

    def get_object(self):
        try:
            return super().get_object()
        except Http404:
            raise NotFound('Package not found') from None

    def destroy(self, request, *args, **kwargs):
        package = self.get_object()
        package.is_active = False
        package.save(update_fields=['is_active'])
        logger.info("Gift package %s deactivated", package.pk)
        return Response({'message': 'Package deleted'})


# ------------------------------
# Invoices, payments and receipts
# ------------------------------

class InvoiceViewSet(viewsets.ModelViewSet):
    serializer_class = InvoiceSerializer

    def get_queryset(self):
        queryset = Invoice.objects.select_related('customer', 'recipient', 'delivery_zone')
        params = self.request.query_params
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('order_status'):
            queryset = queryset.filter(order_status=params['order_status'])
        if params.get('customer_id'):
            queryset = queryset.filter(customer_id=params['customer_id'])
        search = params.get('search')
        if search:
            queryset = queryset.filter(
                Q(invoice_number__icontains=search) | Q(customer__name__icontains=search)
            )
        date_from = _query_date(self.request, 'date_from')
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)
        date_to = _query_date(self.request, 'date_to')
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)
        if self.action == 'retrieve':
            line_items = InvoiceItem.objects.select_related('product', 'category', 'vendor')
            queryset = queryset.prefetch_related(
                Prefetch('items', queryset=line_items),
                Prefetch('packages__items', queryset=line_items),
                Prefetch('payments', queryset=Payment.objects.select_related('invoice')),
            )
        return queryset

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return InvoiceDetailSerializer
        if self.action in ('create', 'update'):
            return InvoiceWriteSerializer
        return InvoiceSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = build_invoice(created_by=request.user, **serializer.validated_data)
        return Response(
            {'id': invoice.pk, 'invoice_number': invoice.invoice_number},
            status=status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        if kwargs.get('partial'):
            raise MethodNotAllowed(request.method)
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = rebuild_invoice(self.kwargs['pk'], **serializer.validated_data)
        return Response(InvoiceSerializer(invoice).data)

    def perform_destroy(self, instance):
        if instance.status == Invoice.STATUS_PAID:
            raise InvoiceLocked('Cannot delete a paid invoice')
        logger.info("Deleting invoice %s", instance.invoice_number)
        instance.delete()

    @action(detail=True, methods=['put', 'patch', 'post'], url_path='status')
    def set_status(self, request, pk=None):
        serializer = InvoiceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = change_invoice_status(pk, serializer.validated_data['status'])
        return Response(InvoiceSerializer(invoice).data)

    @action(detail=True, methods=['put', 'patch', 'post'], url_path='order-status')
    def order_status(self, request, pk=None):
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = change_order_status(pk, serializer.validated_data['order_status'])
        return Response(InvoiceSerializer(invoice).data)


class PaymentViewSet(mixins.ListModelMixin,
                     mixins.RetrieveModelMixin,
                     mixins.CreateModelMixin,
                     mixins.DestroyModelMixin,
                     viewsets.GenericViewSet):
    serializer_class = PaymentSerializer

    def get_queryset(self):
        queryset = Payment.objects.select_related('invoice')
        invoice_id = self.request.query_params.get('invoice_id')
        if invoice_id:
            queryset = queryset.filter(invoice_id=invoice_id)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        outcome = record_payment(
            data['invoice_id'],
            data['amount'],
            payment_method=data.get('payment_method'),
            notes=data.get('notes') or '',
            created_by=request.user,
        )
        return Response(outcome.as_response(), status=status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        delete_payment(kwargs['pk'])
        return Response({'success': True})

    @action(detail=False, methods=['get'], url_path=r'invoice/(?P<invoice_id>\d+)')
    def for_invoice(self, request, invoice_id=None):
        payments = Payment.objects.select_related('invoice').filter(invoice_id=invoice_id)
        return Response(PaymentSerializer(payments, many=True).data)


class ReceiptViewSet(mixins.ListModelMixin,
                     mixins.RetrieveModelMixin,
                     mixins.CreateModelMixin,
                     viewsets.GenericViewSet):
    queryset = Receipt.objects.select_related('invoice', 'invoice__customer')
    serializer_class = ReceiptSerializer

    def create(self, request, *args, **kwargs):
        serializer = ReceiptCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        receipt = issue_receipt(
            data['invoice_id'],
            payment_method=data.get('payment_method'),
            notes=data.get('notes') or '',
        )
        return Response(
            {'id': receipt.pk, 'receipt_number': receipt.receipt_number},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=['get'], url_path=r'invoice/(?P<invoice_id>\d+)')
    def for_invoice(self, request, invoice_id=None):
        receipt = self.get_queryset().filter(invoice_id=invoice_id).first()
        if receipt is None:
            raise NotFound('Receipt not found')
        return Response(ReceiptSerializer(receipt).data)


# ------------------------------
# Vendor orders
# ------------------------------

class VendorOrderViewSet(viewsets.ModelViewSet):
    serializer_class = VendorOrderSerializer

    def get_queryset(self):
        queryset = VendorOrder.objects.select_related('vendor', 'invoice', 'invoice__customer')
        params = self.request.query_params
        if params.get('vendor_id'):
            queryset = queryset.filter(vendor_id=params['vendor_id'])
        if params.get('invoice_id'):
            queryset = queryset.filter(invoice_id=params['invoice_id'])
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        return queryset

    def perform_create(self, serializer):
        order = serializer.save(created_by=self.request.user)
        logger.info("Vendor order %s assigned to vendor %s", order.pk, order.vendor_id)

    @action(detail=True, methods=['put', 'patch', 'post'], url_path='status')
    def set_status(self, request, pk=None):
        serializer = VendorOrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = set_vendor_order_status(self.get_object(), serializer.validated_data['status'])
        return Response(VendorOrderSerializer(order).data)

    @action(detail=True, methods=['get', 'post'])
    def payments(self, request, pk=None):
        order = self.get_object()
        if request.method == 'GET':
            payments = order.payments.select_related('vendor')
            return Response(VendorPaymentSerializer(payments, many=True).data)

        serializer = VendorPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment = record_vendor_payment(
            order.pk,
            data['amount'],
            payment_type=data.get('payment_type'),
            payment_method=data.get('payment_method'),
            notes=data.get('notes') or '',
            created_by=request.user,
        )
        return Response(VendorPaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['delete'], url_path=r'payments/(?P<payment_id>\d+)')
    def delete_payment(self, request, payment_id=None):
        delete_vendor_payment(payment_id)
        return Response({'success': True})


# ------------------------------
# Reminders and notifications
# ------------------------------

class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = NotificationSerializer

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user)

    def list(self, request, *args, **kwargs):
        notifications = self.get_queryset()[:NOTIFICATION_LIST_LIMIT]
        return Response(self.get_serializer(notifications, many=True).data)

    @action(detail=True, methods=['put', 'post'])
    def read(self, request, pk=None):
        notification = get_object_or_404(self.get_queryset(), pk=pk)
        if notification.read_at is None:
            notification.read_at = timezone.now()
            notification.save(update_fields=['read_at'])
        return Response(self.get_serializer(notification).data)

    @action(detail=False, methods=['put', 'post'], url_path='read-all')
    def read_all(self, request):
        updated = self.get_queryset().filter(read_at__isnull=True).update(read_at=timezone.now())
        return Response({'success': True, 'updated': updated})

    @action(detail=False, methods=['get'], url_path='unread-count')
    def unread_count(self, request):
        return Response({'count': self.get_queryset().filter(read_at__isnull=True).count()})


@api_view(['GET', 'POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def reminders_check(request):
    """Scheduler entry point. Requires ``x-cron-secret`` when CRON_SECRET is configured."""
    expected = settings.CRON_SECRET
    if expected:
        provided = request.headers.get('x-cron-secret', '')
        if not constant_time_compare(provided, expected):
            logger.warning("Rejected reminder check with a bad cron secret")
            return Response({'error': 'Unauthorized'}, status=status.HTTP_401_UNAUTHORIZED)
    else:
        logger.warning("CRON_SECRET is not set; reminder check endpoint is unauthenticated")

    return Response(run_reminder_check())


# ------------------------------
# Push subscriptions
# ------------------------------

@api_view(['GET'])
def push_vapid_public_key(request):
    if not settings.VAPID_PUBLIC_KEY:
        return Response(
            {'error': 'Push notifications not configured'},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return Response({'publicKey': settings.VAPID_PUBLIC_KEY})


@api_view(['POST'])
def push_subscribe(request):
    body = request.data or {}
    subscription = save_subscription(request.user, body.get('subscription') or body)
    logger.info("Push subscription %s saved for user %s", subscription.pk, request.user.pk)
    return Response({'success': True}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
def push_unsubscribe(request):
    endpoint = (request.data or {}).get('endpoint')
    if not endpoint:
        raise ValidationFailed('Endpoint is required')
    removed = remove_subscription(request.user, endpoint)
    return Response({'success': True, 'removed': removed})


@api_view(['POST'])
def push_test(request):
    result = send_push_notification(request.user.pk, {
        'title': 'Test Notification',
        'body': 'Push notifications are working!',
        'tag': 'test',
    })
    return Response({'success': result.sent > 0, **result.as_dict()})


@api_view(['GET'])
def push_status(request):
    subscriptions = PushSubscription.objects.filter(user=request.user).order_by('-created_at')
    return Response({
        'configured': push_configured(),
        'subscribed': subscriptions.exists(),
        'subscriptions': PushSubscriptionSerializer(subscriptions, many=True).data,
    })


# ------------------------------
# Reports
# ------------------------------

@api_view(['GET'])
def reports_sales(request):
    return Response(sales_report())


@api_view(['GET'])
def reports_profitability(request):
    return Response(profitability_report())


@api_view(['GET'])
def reports_inactive_customers(request):
    raw = request.query_params.get('days') or INACTIVE_DAYS_DEFAULT
    try:
        days = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed('days must be a whole number') from None
    if days < 0:
        raise ValidationFailed('days must not be negative')
    return Response(inactive_customers(days))


# ------------------------------
# Business settings and logo
# ------------------------------

LOGO_FILE_KEY = 'logo_file'
LOGO_TYPE_KEY = 'logo_content_type'


def _logo_name():
    name = Setting.get_value(LOGO_FILE_KEY)
    if name and default_storage.exists(name):
        return name
    return None


@api_view(['GET', 'PUT'])
@permission_classes([IsAdminOrReadOnly])
def business_settings(request):
    if request.method == 'PUT':
        if not hasattr(request.data, 'items'):
            raise ValidationFailed('Settings must be an object of key/value pairs')
        values = {key: value for key, value in request.data.items() if key not in (LOGO_FILE_KEY, LOGO_TYPE_KEY)}
        Setting.set_many(values)
        logger.info("Updated settings: %s", ', '.join(sorted(values)))

    payload = Setting.as_dict()
    payload['logo_exists'] = _logo_name() is not None
    return Response(payload)


@api_view(['GET', 'POST'])
@permission_classes([IsAdminOrPublicRead])
@parser_classes([MultiPartParser, FormParser])
def business_logo(request):
    if request.method == 'GET':
        name = _logo_name()
        if name is None:
            raise NotFound('Logo not found')
        content_type = Setting.get_value(LOGO_TYPE_KEY) or mimetypes.guess_type(name)[0]
        return FileResponse(default_storage.open(name, 'rb'), content_type=content_type or 'application/octet-stream')

    upload = request.FILES.get('logo')
    if upload is None:
        raise ValidationFailed('No file uploaded')
    if not (upload.content_type or '').startswith('image/'):
        raise ValidationFailed('Only image files are allowed')
    if upload.size > settings.LOGO_MAX_UPLOAD_BYTES:
        raise ValidationFailed('Logo file is too large')

    previous = Setting.get_value(LOGO_FILE_KEY)
    if previous and default_storage.exists(previous):
        default_storage.delete(previous)
    extension = mimetypes.guess_extension(upload.content_type) or ''
    name = default_storage.save(f'{settings.LOGO_STORAGE_NAME}{extension}', upload)
    Setting.set_many({LOGO_FILE_KEY: name, LOGO_TYPE_KEY: upload.content_type})
    logger.info("Logo uploaded to %s", name)
    return Response({'success': True}, status=status.HTTP_201_CREATED)


# ------------------------------
# Authentication
# ------------------------------

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def auth_logout(request):
    """Invalidate the current token."""
    Token.objects.filter(user=request.user).delete()
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def auth_me(request):
    user = request.user
    return Response({
        'id': user.pk,
        'username': user.get_username(),
        'name': user.get_full_name() or user.get_username(),
        'email': user.email,
        'role': 'admin' if user.is_staff else 'staff',
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def auth_change_password(request):
    serializer = ChangePasswordSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    change_password(
        request.user,
        serializer.validated_data['currentPassword'],
        serializer.validated_data['newPassword'],
    )
    return Response({'message': 'Password changed successfully'})


class UserViewSet(mixins.ListModelMixin,
                  mixins.CreateModelMixin,
                  mixins.DestroyModelMixin,
                  viewsets.GenericViewSet):
    """Admin-only management of staff accounts."""

    serializer_class = UserSerializer
    permission_classes = [IsAdminUser]
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        return User.objects.order_by('date_joined', 'id')

    def create(self, request, *args, **kwargs):
        serializer = UserCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = create_user(**serializer.validated_data)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        delete_user(kwargs['pk'], acting_user=request.user)
        return Response({'message': 'User deleted'})
