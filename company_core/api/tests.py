from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth.models import User
from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase
from django.test.utils import override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from crm.invoice_utils import build_invoice
from crm.models import (
    Category, Customer, DeliveryZone, GiftPackage, Invoice, Notification, Payment, Product, Receipt,
    Vendor,
)
from crm.push import PushResult

from .exceptions import api_exception_handler


class ApiTestCase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='staff', password='pass1234', first_name='Nimal')
        self.client = APIClient()
        self.client.force_authenticate(self.user)
        self.customer = Customer.objects.create(name='Dilani', whatsapp='+94 77 123 4567')
        self.year = timezone.localdate().year

    def make_invoice(self, amount='100.00'):
        return build_invoice(
            customer=self.customer,
            items=[{'description': 'Flowers', 'quantity': 1, 'unit_price': Decimal(amount)}],
        )


class InvoiceEndpointTests(ApiTestCase):
    def test_create_returns_id_and_number(self):
        response = self.client.post('/api/invoices/', {
            'customer_id': self.customer.pk,
            'delivery_fee': '300.00',
            'packages': [{
                'package_name': 'Birthday box',
                'package_price': '10000.00',
                'packaging_cost': '500.00',
                'items': [
                    {'description': 'Cake', 'unit_price': '0', 'cost_price': '2000.00'},
                    {'description': 'Teddy', 'quantity': 2, 'unit_price': '0', 'cost_price': '1200.00'},
                ],
            }],
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(set(response.data), {'id', 'invoice_number'})
        self.assertEqual(response.data['invoice_number'], f'INV-{self.year}-0001')

        invoice = Invoice.objects.get(pk=response.data['id'])
        self.assertEqual(invoice.total, Decimal('10300.00'))
        self.assertEqual(invoice.total_cost, Decimal('4900.00'))
        self.assertEqual(invoice.created_by, self.user)

    def test_detail_includes_packages_and_payments(self):
        invoice = self.make_invoice()
        response = self.client.get(f'/api/invoices/{invoice.pk}/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['invoice_number'], invoice.invoice_number)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['packages'], [])
        self.assertIsNone(response.data['receipt_number'])

    def test_unknown_customer_is_rejected(self):
        response = self.client.post('/api/invoices/', {'customer_id': 9999}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.data)
        self.assertIn('customer_id', response.data['details'])

    def test_zero_quantity_is_rejected(self):
        response = self.client.post('/api/invoices/', {
            'customer_id': self.customer.pk,
            'items': [{'description': 'Card', 'quantity': 0, 'unit_price': '100', 'cost_price': '40'}],
        }, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('items', response.data['details'])
        self.assertFalse(Invoice.objects.exists())

    def test_patch_is_not_allowed(self):
        invoice = self.make_invoice()
        response = self.client.patch(f'/api/invoices/{invoice.pk}/', {'notes': 'x'}, format='json')
        self.assertEqual(response.status_code, 405)

    def test_put_rebuilds_lines(self):
        invoice = self.make_invoice()
        response = self.client.put(f'/api/invoices/{invoice.pk}/', {
            'customer_id': self.customer.pk,
            'items': [{'description': 'Roses', 'quantity': 3, 'unit_price': '50.00'}],
        }, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['invoice_number'], invoice.invoice_number)
        self.assertEqual(Decimal(str(response.data['total'])), Decimal('150.00'))

    def test_invalid_status_transition(self):
        invoice = self.make_invoice()
        response = self.client.post(f'/api/invoices/{invoice.pk}/status/', {'status': 'partial'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'INVALID_STATUS')

    def test_filters_by_status(self):
        self.make_invoice()
        paid = self.make_invoice()
        self.client.post(f'/api/invoices/{paid.pk}/status/', {'status': 'paid'}, format='json')

        response = self.client.get('/api/invoices/', {'status': 'paid'})
        self.assertEqual([row['id'] for row in response.data], [paid.pk])

    def test_bad_date_filter(self):
        response = self.client.get('/api/invoices/', {'date_from': '17/10/2026'})
        self.assertEqual(response.status_code, 400)


class PaymentEndpointTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.invoice = self.make_invoice('100.00')

    def test_partial_then_full_payment(self):
        first = self.client.post('/api/payments/', {'invoice_id': self.invoice.pk, 'amount': '40.00'}, format='json')
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.data['amount_paid'], Decimal('40.00'))
        self.assertEqual(first.data['balance'], Decimal('60.00'))
        self.assertFalse(first.data['is_fully_paid'])
        self.assertIsNone(first.data['receipt_number'])

        second = self.client.post('/api/payments/', {'invoice_id': self.invoice.pk, 'amount': '60.00'}, format='json')
        self.assertTrue(second.data['is_fully_paid'])
        self.assertEqual(second.data['balance'], Decimal('0.00'))
        self.assertEqual(second.data['receipt_number'], f'RCP-{self.year}-0001')

    def test_over_limit_payment_reports_maximum(self):
        response = self.client.post(
            '/api/payments/', {'invoice_id': self.invoice.pk, 'amount': '100.01'}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'Payment exceeds balance. Maximum payment: Rs. 100.00')
        self.assertFalse(Payment.objects.exists())

    def test_payment_for_missing_invoice(self):
        response = self.client.post('/api/payments/', {'invoice_id': 424242, 'amount': '1.00'}, format='json')
        self.assertEqual(response.status_code, 404)

    def test_delete_payment(self):
        created = self.client.post('/api/payments/', {'invoice_id': self.invoice.pk, 'amount': '25.00'}, format='json')
        response = self.client.delete(f"/api/payments/{created.data['id']}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'success': True})
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal('0.00'))
        self.assertEqual(self.invoice.status, Invoice.STATUS_PENDING)

    def test_payments_for_invoice_newest_first(self):
        self.client.post('/api/payments/', {'invoice_id': self.invoice.pk, 'amount': '10.00'}, format='json')
        self.client.post('/api/payments/', {'invoice_id': self.invoice.pk, 'amount': '20.00'}, format='json')

        response = self.client.get(f'/api/payments/invoice/{self.invoice.pk}/')
        self.assertEqual([Decimal(str(row['amount'])) for row in response.data], [Decimal('20.00'), Decimal('10.00')])


class ReceiptEndpointTests(ApiTestCase):
    def test_manual_receipt(self):
        invoice = self.make_invoice()
        response = self.client.post('/api/receipts/', {'invoice_id': invoice.pk, 'payment_method': 'cash'}, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['receipt_number'], f'RCP-{self.year}-0001')
        again = self.client.post('/api/receipts/', {'invoice_id': invoice.pk}, format='json')
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data['error'], 'Receipt already exists for this invoice')

        lookup = self.client.get(f'/api/receipts/invoice/{invoice.pk}/')
        self.assertEqual(lookup.data['id'], response.data['id'])

    def test_missing_receipt(self):
        invoice = self.make_invoice()
        response = self.client.get(f'/api/receipts/invoice/{invoice.pk}/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], 'Receipt not found')
        self.assertFalse(Receipt.objects.exists())


class CustomerEndpointTests(ApiTestCase):
    def test_duplicate_whatsapp_is_flagged(self):
        response = self.client.post('/api/customers/', {'name': 'Dilani P', 'whatsapp': '94771234567'}, format='json')

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'Duplicate customer')
        self.assertEqual(response.data['existingCustomer']['id'], self.customer.pk)

    def test_duplicate_check_can_be_skipped(self):
        response = self.client.post(
            '/api/customers/',
            {'name': 'Dilani P', 'whatsapp': '94771234567', 'skipDuplicateCheck': True},
            format='json',
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Customer.objects.count(), 2)

    def test_check_duplicate_action(self):
        hit = self.client.get('/api/customers/check-duplicate/', {'whatsapp': '077-123-4567'})
        self.assertFalse(hit.data['isDuplicate'])
        hit = self.client.get('/api/customers/check-duplicate/', {'whatsapp': '+94771234567'})
        self.assertTrue(hit.data['isDuplicate'])

    def test_list_counts_recipients_and_invoices(self):
        self.make_invoice()
        response = self.client.get('/api/customers/')
        self.assertEqual(response.data[0]['invoice_count'], 1)
        self.assertEqual(response.data[0]['recipient_count'], 0)

    def test_important_dates_sorted_by_month_day(self):
        for title, day in (('Anniversary', '1990-12-01'), ('Birthday', '2001-03-15')):
            self.client.post('/api/important-dates/', {
                'customer': self.customer.pk, 'title': title, 'date': day,
            }, format='json')
        response = self.client.get('/api/important-dates/', {'customer_id': self.customer.pk})
        self.assertEqual([row['title'] for row in response.data], ['Birthday', 'Anniversary'])


class CatalogueEndpointTests(ApiTestCase):
    def test_category_duplicate(self):
        Category.objects.create(name='Cakes')
        response = self.client.post('/api/categories/', {'name': 'Cakes'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'Category already exists')

    def test_delivery_zone_writes_need_admin(self):
        response = self.client.post('/api/delivery-zones/', {'name': 'Colombo', 'delivery_fee': '300'}, format='json')
        self.assertEqual(response.status_code, 403)

        admin = User.objects.create_user(username='boss', password='pass1234', is_staff=True)
        self.client.force_authenticate(admin)
        response = self.client.post('/api/delivery-zones/', {'name': 'Colombo', 'delivery_fee': '300'}, format='json')
        self.assertEqual(response.status_code, 201)

    def test_deleted_zone_is_hidden(self):
        admin = User.objects.create_user(username='boss', password='pass1234', is_staff=True)
        zone = DeliveryZone.objects.create(name='Kandy', delivery_fee=Decimal('800'))
        self.client.force_authenticate(admin)

        self.assertEqual(self.client.delete(f'/api/delivery-zones/{zone.pk}/').data, {'success': True})
        self.assertEqual(self.client.get('/api/delivery-zones/').data, [])
        zone.refresh_from_db()
        self.assertFalse(zone.is_active)

    def test_vendor_order_requires_core_fields(self):
        response = self.client.post('/api/vendor-orders/', {'total_amount': '100'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'Invoice, vendor, and description are required')

    def test_vendor_order_payments(self):
        vendor = Vendor.objects.create(name='Sweet Treats')
        invoice = self.make_invoice()
        created = self.client.post('/api/vendor-orders/', {
            'invoice': invoice.pk, 'vendor': vendor.pk, 'description': 'Chocolate cake', 'total_amount': '2000',
        }, format='json')
        self.assertEqual(created.status_code, 201)
        order_id = created.data['id']

        payment = self.client.post(f'/api/vendor-orders/{order_id}/payments/', {'amount': '500'}, format='json')
        self.assertEqual(payment.status_code, 201)
        self.assertEqual(payment.data['payment_type'], 'advance')

        summary = self.client.get(f'/api/vendors/{vendor.pk}/summary/')
        self.assertEqual(summary.data['balance_due'], Decimal('1500.00'))

        deleted = self.client.delete(f"/api/vendor-orders/payments/{payment.data['id']}/")
        self.assertEqual(deleted.data, {'success': True})
        order = self.client.get(f'/api/vendor-orders/{order_id}/')
        self.assertEqual(Decimal(str(order.data['amount_paid'])), Decimal('0.00'))


class ReminderEndpointTests(ApiTestCase):
    @override_settings(CRON_SECRET='s3cret')
    def test_cron_secret_required(self):
        anonymous = APIClient()
        response = anonymous.get('/api/reminders/check/')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.data, {'error': 'Unauthorized'})

        response = anonymous.get('/api/reminders/check/', HTTP_X_CRON_SECRET='s3cret')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['message'], 'No dates to check')

    def test_notifications(self):
        for index in range(3):
            Notification.objects.create(user=self.user, title=f'Reminder {index}')
        other = User.objects.create_user(username='other', password='pass1234')
        Notification.objects.create(user=other, title='Not mine')

        self.assertEqual(self.client.get('/api/reminders/notifications/unread-count/').data, {'count': 3})
        listing = self.client.get('/api/reminders/notifications/')
        self.assertEqual(len(listing.data), 3)

        first = listing.data[0]['id']
        self.client.post(f'/api/reminders/notifications/{first}/read/')
        self.assertEqual(self.client.get('/api/reminders/notifications/unread-count/').data, {'count': 2})

        self.client.post('/api/reminders/notifications/read-all/')
        self.assertEqual(self.client.get('/api/reminders/notifications/unread-count/').data, {'count': 0})


class PushEndpointTests(ApiTestCase):
    @override_settings(VAPID_PUBLIC_KEY='')
    def test_public_key_unavailable_without_configuration(self):
        response = self.client.get('/api/push/vapid-public-key/')
        self.assertEqual(response.status_code, 503)

    def test_subscribe_and_status(self):
        response = self.client.post('/api/push/subscribe/', {
            'subscription': {'endpoint': 'https://push.example.com/1', 'keys': {'p256dh': 'k', 'auth': 'a'}},
        }, format='json')
        self.assertEqual(response.status_code, 201)

        status = self.client.get('/api/push/status/')
        self.assertTrue(status.data['subscribed'])
        self.assertEqual(len(status.data['subscriptions']), 1)

        self.client.post('/api/push/unsubscribe/', {'endpoint': 'https://push.example.com/1'}, format='json')
        self.assertFalse(self.client.get('/api/push/status/').data['subscribed'])

    def test_invalid_subscription(self):
        response = self.client.post('/api/push/subscribe/', {'endpoint': 'https://push.example.com/1'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'Invalid subscription data')

    @patch('api.views.send_push_notification', return_value=PushResult(sent=1, failed=0))
    def test_test_push(self, send):
        response = self.client.post('/api/push/test/')
        self.assertEqual(response.data, {'success': True, 'sent': 1, 'failed': 0})
        self.assertEqual(send.call_args.args[0], self.user.pk)


class SettingsAndAuthTests(ApiTestCase):
    def test_settings_read_and_admin_write(self):
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['logo_exists'])

        denied = self.client.put('/api/settings/', {'invoice_prefix': 'GFT'}, format='json')
        self.assertEqual(denied.status_code, 403)

        self.user.is_staff = True
        self.user.save()
        saved = self.client.put('/api/settings/', {'invoice_prefix': 'GFT'}, format='json')
        self.assertEqual(saved.data['invoice_prefix'], 'GFT')

    def test_me(self):
        response = self.client.get('/api/auth/me/')
        self.assertEqual(response.data['role'], 'staff')
        self.assertEqual(response.data['name'], 'Nimal')

    def test_login_and_logout(self):
        anonymous = APIClient()
        login = anonymous.post('/api/auth/login/', {'username': 'staff', 'password': 'pass1234'}, format='json')
        self.assertEqual(login.status_code, 200)

        anonymous.credentials(HTTP_AUTHORIZATION=f"Token {login.data['token']}")
        self.assertEqual(anonymous.get('/api/auth/me/').status_code, 200)
        self.assertEqual(anonymous.post('/api/auth/logout/').status_code, 204)
        self.assertEqual(anonymous.get('/api/auth/me/').status_code, 401)

    def test_anonymous_requests_are_rejected(self):
        response = APIClient().get('/api/customers/')
        self.assertEqual(response.status_code, 401)
        self.assertIn('error', response.data)


class GiftPackageEndpointTests(ApiTestCase):
    def create_package(self):
        chocolates = Product.objects.create(name='Chocolates', retail_price=Decimal('1500'))
        return self.client.post('/api/packages/', {
            'name': 'Birthday box',
            'description': 'Cake, chocolates and a card',
            'total_price': '6500.00',
            'items': [
                {'product_id': chocolates.pk, 'quantity': 2, 'unit_price': '1500.00'},
                {'description': 'Greeting card', 'unit_price': '500.00'},
            ],
        }, format='json')

    def test_create_and_list_with_items(self):
        response = self.create_package()
        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(response.data['items']), 2)

        listed = self.client.get('/api/packages/')
        self.assertEqual(len(listed.data), 1)
        items = listed.data[0]['items']
        self.assertEqual(items[0]['product_name'], 'Chocolates')
        self.assertEqual(items[0]['quantity'], 2)
        self.assertEqual(items[1]['quantity'], 1)
        self.assertIsNone(items[1]['product_name'])

    def test_missing_package(self):
        response = self.client.get('/api/packages/9999/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['error'], 'Package not found')

    def test_delete_is_admin_only_and_soft(self):
        package_id = self.create_package().data['id']
        self.assertEqual(self.client.delete(f'/api/packages/{package_id}/').status_code, 403)

        self.user.is_staff = True
        self.user.save()
        response = self.client.delete(f'/api/packages/{package_id}/')
        self.assertEqual(response.data, {'message': 'Package deleted'})
        self.assertEqual(self.client.get('/api/packages/').data, [])
        self.assertFalse(GiftPackage.objects.get(pk=package_id).is_active)


class ReportEndpointTests(ApiTestCase):
    def test_sales_and_profitability(self):
        invoice = self.make_invoice('2500.00')
        self.client.post('/api/payments/', {'invoice_id': invoice.pk, 'amount': '2500.00'}, format='json')

        sales = self.client.get('/api/reports/sales/')
        self.assertEqual(sales.status_code, 200)
        self.assertEqual(sales.data['topCustomers'][0]['name'], 'Dilani')

        profitability = self.client.get('/api/reports/profitability/')
        self.assertEqual(profitability.status_code, 200)
        self.assertEqual(profitability.data['summary']['totalRevenue'], Decimal('2500.00'))

    def test_inactive_customers(self):
        response = self.client.get('/api/reports/inactive-customers/', {'days': 0})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['name'] for row in response.data], ['Dilani'])

        bad = self.client.get('/api/reports/inactive-customers/', {'days': 'soon'})
        self.assertEqual(bad.status_code, 400)


class UserAdminEndpointTests(ApiTestCase):
    def test_requires_admin(self):
        self.assertEqual(self.client.get('/api/auth/users/').status_code, 403)

    def test_create_list_and_delete(self):
        self.user.is_staff = True
        self.user.save()

        created = self.client.post('/api/auth/users/', {
            'username': 'clerk', 'password': 'ribbons-and-bows-26', 'name': 'Ruwan', 'role': 'staff',
        }, format='json')
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.data['role'], 'staff')
        self.assertNotIn('password', created.data)

        duplicate = self.client.post('/api/auth/users/', {
            'username': 'clerk', 'password': 'ribbons-and-bows-26',
        }, format='json')
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.data['error'], 'Username already exists')

        listed = self.client.get('/api/auth/users/')
        self.assertEqual([row['username'] for row in listed.data], ['staff', 'clerk'])
        self.assertEqual(listed.data[0]['role'], 'admin')

        itself = self.client.delete(f'/api/auth/users/{self.user.pk}/')
        self.assertEqual(itself.status_code, 400)
        self.assertEqual(itself.data['error'], 'Cannot delete yourself')

        removed = self.client.delete(f"/api/auth/users/{created.data['id']}/")
        self.assertEqual(removed.data, {'message': 'User deleted'})

    def test_change_password(self):
        wrong = self.client.post('/api/auth/change-password/', {
            'currentPassword': 'nope', 'newPassword': 'ribbons-and-bows-26',
        }, format='json')
        self.assertEqual(wrong.status_code, 400)
        self.assertEqual(wrong.data['error'], 'Current password is incorrect')

        changed = self.client.post('/api/auth/change-password/', {
            'currentPassword': 'pass1234', 'newPassword': 'ribbons-and-bows-26',
        }, format='json')
        self.assertEqual(changed.data, {'message': 'Password changed successfully'})

        login = APIClient().post('/api/auth/login/', {
            'username': 'staff', 'password': 'ribbons-and-bows-26',
        }, format='json')
        self.assertEqual(login.status_code, 200)


class ExceptionHandlerTests(SimpleTestCase):
    def test_unique_violation_is_conflict(self):
        response = api_exception_handler(IntegrityError('UNIQUE constraint failed: crm_category.name'), {})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'A record with this value already exists')

    def test_foreign_key_violation_is_bad_request(self):
        response = api_exception_handler(IntegrityError('FOREIGN KEY constraint failed'), {})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'Referenced record does not exist')

    def test_unexpected_errors_are_hidden(self):
        with self.assertLogs('api.exceptions', level='ERROR'):
            response = api_exception_handler(RuntimeError('boom'), {})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {'error': 'Server error'})
