from datetime import date, datetime, timedelta
from io import StringIO
from unittest.mock import Mock, patch

from django.contrib.auth.models import User
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.test.utils import override_settings
from django.utils import timezone
from pywebpush import WebPushException

from .exceptions import ValidationFailed
from .models import Customer, ImportantDate, Notification, PushSubscription, Recipient
from .push import PushResult, broadcast_push_notification, save_subscription, send_push_notification
from .reminders import _claim, days_until_next_occurrence, run_reminder_check, should_remind


def local_dt(year, month, day, hour=7):
    return timezone.make_aware(datetime(year, month, day, hour, 0))


class NextOccurrenceTests(SimpleTestCase):
    def test_days_until_same_year(self):
        self.assertEqual(days_until_next_occurrence(date(2025, 3, 8), 3, 15), 7)

    def test_today_is_zero(self):
        self.assertEqual(days_until_next_occurrence(date(2025, 3, 15), 3, 15), 0)

    def test_passed_dates_roll_to_next_year(self):
        self.assertEqual(days_until_next_occurrence(date(2025, 3, 16), 3, 15), 364)
        self.assertEqual(days_until_next_occurrence(date(2025, 12, 30), 1, 2), 3)

    def test_leap_day_observed_on_feb_28_in_common_years(self):
        self.assertEqual(days_until_next_occurrence(date(2025, 2, 20), 2, 29), 8)
        self.assertEqual(days_until_next_occurrence(date(2025, 2, 28), 2, 29), 0)
        self.assertEqual(days_until_next_occurrence(date(2024, 2, 20), 2, 29), 9)
        self.assertEqual(days_until_next_occurrence(date(2025, 3, 1), 2, 29), 364)

    def test_should_remind(self):
        self.assertTrue(should_remind(7, 7))
        self.assertTrue(should_remind(0, 7))
        self.assertFalse(should_remind(3, 7))
        self.assertTrue(should_remind(3, 3))
        self.assertTrue(should_remind(0, 0))
        self.assertFalse(should_remind(7, 0))


class ReminderSchedulerTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username="owner", password="p")
        self.staff = User.objects.create_user(username="staff", password="p")
        User.objects.create_user(username="former", password="p", is_active=False)
        self.customer = Customer.objects.create(name="Dilani")
        self.recipient = Recipient.objects.create(customer=self.customer, name="Amma", relationship="mother")
        self.birthday = ImportantDate.objects.create(
            customer=self.customer,
            recipient=self.recipient,
            title="Amma's birthday",
            date=date(2020, 3, 15),
            recurring=True,
            reminder_days=7,
        )
        patcher = patch("crm.reminders.send_push_notification", return_value=PushResult(sent=1, failed=0))
        self.push = patcher.start()
        self.addCleanup(patcher.stop)

    def test_week_ahead_reminder_fires_once_per_day(self):
        now = local_dt(2025, 3, 8)
        results = run_reminder_check(now=now)

        self.assertTrue(results["success"])
        self.assertEqual(results["checked"], 1)
        self.assertEqual(results["reminders_sent"], 1)
        self.assertEqual(
            results["dates"],
            [{"id": self.birthday.pk, "title": "Amma's birthday", "customer": "Dilani", "daysUntil": 7}],
        )
        self.assertEqual(results["push_notifications"], {"sent": 2, "failed": 0})
        self.assertEqual(results["timestamp"], now.isoformat())

        notifications = Notification.objects.filter(related_entity_id=self.birthday.pk)
        self.assertEqual(set(notifications.values_list("user__username", flat=True)), {"owner", "staff"})
        note = notifications.first()
        self.assertEqual(note.title, "📅 Upcoming: Amma's birthday")
        self.assertEqual(note.message, "Dilani → Amma - in 7 days")
        self.assertEqual(note.type, "reminder")
        self.assertEqual(note.related_entity_type, "important_date")

        self.birthday.refresh_from_db()
        self.assertEqual(self.birthday.reminder_sent_at, now)

        again = run_reminder_check(now=now + timedelta(hours=2))
        self.assertEqual(again["reminders_sent"], 0)
        self.assertEqual(again["checked"], 1)
        self.assertEqual(Notification.objects.count(), 2)

    def test_fires_again_on_the_day(self):
        run_reminder_check(now=local_dt(2025, 3, 8))
        results = run_reminder_check(now=local_dt(2025, 3, 15))

        self.assertEqual(results["reminders_sent"], 1)
        self.assertEqual(results["dates"][0]["daysUntil"], 0)
        latest = Notification.objects.filter(user=self.owner).first()
        self.assertEqual(latest.title, "🎉 TODAY: Amma's birthday")
        self.assertEqual(latest.message, "Dilani → Amma - Today!")

    def test_push_payload(self):
        run_reminder_check(now=local_dt(2025, 3, 15))

        user_id, payload = self.push.call_args_list[0].args
        self.assertIn(user_id, {self.owner.pk, self.staff.pk})
        self.assertEqual(payload["title"], "🎉 Amma's birthday is TODAY!")
        self.assertEqual(payload["body"], "Dilani → Amma. Don't forget to reach out!")
        self.assertEqual(payload["tag"], f"reminder-{self.birthday.pk}")
        self.assertEqual(
            payload["data"],
            {"url": "/important-dates", "dateId": self.birthday.pk, "customerId": self.customer.pk},
        )

    def test_days_not_matching_are_skipped(self):
        results = run_reminder_check(now=local_dt(2025, 3, 10))
        self.assertEqual(results["reminders_sent"], 0)
        self.birthday.refresh_from_db()
        self.assertIsNone(self.birthday.reminder_sent_at)
        self.push.assert_not_called()

    def test_unset_reminder_days_defaults_to_a_week(self):
        ImportantDate.objects.filter(pk=self.birthday.pk).update(reminder_days=None)
        results = run_reminder_check(now=local_dt(2025, 3, 8))
        self.assertEqual(results["reminders_sent"], 1)

    def test_zero_reminder_days_fires_on_the_day_only(self):
        ImportantDate.objects.filter(pk=self.birthday.pk).update(reminder_days=0)
        self.assertEqual(run_reminder_check(now=local_dt(2025, 3, 8))["reminders_sent"], 0)
        self.assertEqual(run_reminder_check(now=local_dt(2025, 3, 15))["reminders_sent"], 1)

    def test_one_off_dates_are_ignored(self):
        ImportantDate.objects.filter(pk=self.birthday.pk).update(recurring=False)
        results = run_reminder_check(now=local_dt(2025, 3, 15))
        self.assertEqual(results["checked"], 0)
        self.assertEqual(results["message"], "No dates to check")

    def test_stored_year_is_ignored(self):
        ImportantDate.objects.filter(pk=self.birthday.pk).update(date=date(1961, 3, 15))
        results = run_reminder_check(now=local_dt(2025, 3, 15))
        self.assertEqual(results["reminders_sent"], 1)

    def test_claim_refuses_recent_stamp(self):
        now = local_dt(2025, 3, 8)
        ImportantDate.objects.filter(pk=self.birthday.pk).update(reminder_sent_at=now - timedelta(hours=1))
        self.assertFalse(_claim(self.birthday, now))
        self.assertTrue(_claim(self.birthday, now + timedelta(hours=24)))

    def test_check_reminders_command(self):
        out = StringIO()
        call_command("check_reminders", date="2025-03-08", stdout=out)
        self.assertIn("Amma's birthday for Dilani (in 7 days)", out.getvalue())
        self.assertIn("Sent 1 reminder(s)", out.getvalue())


@override_settings(VAPID_PUBLIC_KEY="public", VAPID_PRIVATE_KEY="private", VAPID_EMAIL="ops@example.com")
class PushDeliveryTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="u", password="p")
        self.subscription = PushSubscription.objects.create(
            user=self.user, endpoint="https://push.example.com/abc", p256dh="key", auth="secret"
        )
        self.notification = {"title": "Hello", "body": "World", "tag": "test"}

    @patch("crm.push.webpush")
    def test_sends_to_each_subscription(self, webpush):
        result = send_push_notification(self.user.pk, self.notification)

        self.assertEqual(result, PushResult(sent=1, failed=0))
        kwargs = webpush.call_args.kwargs
        self.assertEqual(kwargs["subscription_info"]["endpoint"], self.subscription.endpoint)
        self.assertEqual(kwargs["vapid_claims"], {"sub": "mailto:ops@example.com"})
        self.assertIn('"icon": "/icon.svg"', kwargs["data"])
        self.subscription.refresh_from_db()
        self.assertIsNotNone(self.subscription.last_used_at)

    @patch("crm.push.webpush")
    def test_expired_subscription_is_removed(self, webpush):
        webpush.side_effect = WebPushException("gone", response=Mock(status_code=410))
        result = send_push_notification(self.user.pk, self.notification)

        self.assertEqual(result, PushResult(sent=0, failed=1))
        self.assertFalse(PushSubscription.objects.exists())

    @patch("crm.push.webpush")
    def test_other_failures_keep_subscription(self, webpush):
        webpush.side_effect = WebPushException("server error", response=Mock(status_code=500))
        result = send_push_notification(self.user.pk, self.notification)

        self.assertEqual(result.failed, 1)
        self.assertTrue(PushSubscription.objects.exists())

    @patch("crm.push.webpush")
    def test_broadcast_sums_results(self, webpush):
        other = User.objects.create_user(username="v", password="p")
        PushSubscription.objects.create(user=other, endpoint="https://push.example.com/def", p256dh="k", auth="a")
        result = broadcast_push_notification(self.notification)
        self.assertEqual(result.as_dict(), {"sent": 2, "failed": 0})

    @override_settings(VAPID_PRIVATE_KEY="")
    @patch("crm.push.webpush")
    def test_unconfigured_push_is_skipped(self, webpush):
        result = send_push_notification(self.user.pk, self.notification)
        self.assertEqual(result, PushResult())
        webpush.assert_not_called()

    def test_save_subscription_upserts_on_endpoint(self):
        other = User.objects.create_user(username="w", password="p")
        save_subscription(other, {"endpoint": self.subscription.endpoint, "keys": {"p256dh": "new", "auth": "x"}})
        self.subscription.refresh_from_db()
        self.assertEqual(self.subscription.user, other)
        self.assertEqual(self.subscription.p256dh, "new")
        self.assertEqual(PushSubscription.objects.count(), 1)

    def test_save_subscription_requires_keys(self):
        with self.assertRaisesMessage(ValidationFailed, "Invalid subscription data"):
            save_subscription(self.user, {"endpoint": "https://push.example.com/x", "keys": {"p256dh": "k"}})
