# api/urls.py
from django.urls import path, include
from rest_framework.authtoken.views import obtain_auth_token
from rest_framework.routers import DefaultRouter
from .views import (
    CategoryViewSet,
    CustomerViewSet,
    DeliveryZoneViewSet,
    GiftPackageViewSet,
    ImportantDateViewSet,
    InvoiceViewSet,
    NotificationViewSet,
    PaymentViewSet,
    ProductViewSet,
    ReceiptViewSet,
    RecipientViewSet,
    UserViewSet,
    VendorOrderViewSet,
    VendorViewSet,
)
from .views import (
    auth_change_password,
    auth_logout,
    auth_me,
    business_logo,
    business_settings,
    push_status,
    push_subscribe,
    push_test,
    push_unsubscribe,
    push_vapid_public_key,
    reminders_check,
    reports_inactive_customers,
    reports_profitability,
    reports_sales,
)

router = DefaultRouter()
router.register(r'customers', CustomerViewSet, basename='customers')
router.register(r'recipients', RecipientViewSet, basename='recipients')
router.register(r'important-dates', ImportantDateViewSet, basename='important-dates')
router.register(r'delivery-zones', DeliveryZoneViewSet, basename='delivery-zones')
router.register(r'categories', CategoryViewSet, basename='categories')
router.register(r'vendors', VendorViewSet, basename='vendors')
router.register(r'products', ProductViewSet, basename='products')
router.register(r'packages', GiftPackageViewSet, basename='packages')
router.register(r'invoices', InvoiceViewSet, basename='invoices')
router.register(r'payments', PaymentViewSet, basename='payments')
router.register(r'receipts', ReceiptViewSet, basename='receipts')
router.register(r'vendor-orders', VendorOrderViewSet, basename='vendor-orders')
router.register(r'reminders/notifications', NotificationViewSet, basename='notifications')
router.register(r'auth/users', UserViewSet, basename='users')

urlpatterns = [
    # Scheduler trigger
    path('reminders/check/', reminders_check, name='reminders-check'),

    # Web push
    path('push/vapid-public-key/', push_vapid_public_key, name='push-vapid-public-key'),
    path('push/subscribe/', push_subscribe, name='push-subscribe'),
    path('push/unsubscribe/', push_unsubscribe, name='push-unsubscribe'),
    path('push/test/', push_test, name='push-test'),
    path('push/status/', push_status, name='push-status'),

    # Reports
    path('reports/sales/', reports_sales, name='reports-sales'),
    path('reports/profitability/', reports_profitability, name='reports-profitability'),
    path('reports/inactive-customers/', reports_inactive_customers, name='reports-inactive-customers'),

    # Business settings
    path('settings/', business_settings, name='settings'),
    path('settings/logo/', business_logo, name='settings-logo'),

    # Auth
    path('auth/login/', obtain_auth_token, name='auth-login'),
    path('auth/logout/', auth_logout, name='auth-logout'),
    path('auth/me/', auth_me, name='auth-me'),
    path('auth/change-password/', auth_change_password, name='auth-change-password'),

    path('', include(router.urls)),
]
