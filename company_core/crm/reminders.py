"""Daily reminder run for customers' recurring important dates.

Only the month and day of a recurring date matter. A date is due when its
next occurrence is exactly ``reminder_days`` away, or is today. Each due date
notifies every active user (in-app notification plus web push) and is then
left alone for 24 hours, so repeated cron triggers on the same day do not
send the reminder twice.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta

from django.contrib.auth.models import User
from django.db.models import Q
from django.utils import timezone

from .models import ImportantDate, Notification
from .push import PushResult, send_push_notification


logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(hours=24)


def observed_date(year: int, month: int, day: int) -> date:
    """Return the calendar day a month/day falls on in ``year``.

    February 29 is observed on February 28 in non-leap years.
    """
    if month == 2 and day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, month, day)


def days_until_next_occurrence(today: date, month: int, day: int) -> int:
    target = observed_date(today.year, month, day)
    if target < today:
        target = observed_date(today.year + 1, month, day)
    return (target - today).days


def should_remind(days_until: int, reminder_days: int) -> bool:
    return days_until == reminder_days or days_until == 0


def _people_label(important_date: ImportantDate) -> str:
    customer_name = important_date.customer.name if important_date.customer_id else 'Unknown'
    if important_date.recipient_id:
        return f'{customer_name} → {important_date.recipient.name}'
    return customer_name


def build_notification_text(important_date: ImportantDate, days_until: int) -> dict:
    people = _people_label(important_date)
    title = important_date.title
    if days_until == 0:
        return {
            'title': f'🎉 TODAY: {title}',
            'message': f'{people} - Today!',
            'push_title': f'🎉 {title} is TODAY!',
            'push_body': f"{people}. Don't forget to reach out!",
        }
    return {
        'title': f'📅 Upcoming: {title}',
        'message': f'{people} - in {days_until} days',
        'push_title': f'📅 {title} in {days_until} days',
        'push_body': f"{people}. Don't forget to reach out!",
    }


def _claim(important_date: ImportantDate, now: datetime) -> bool:
    """Stamp ``reminder_sent_at`` unless another run already did in the last 24h."""
    cutoff = now - DEDUP_WINDOW
    claimed = (
        ImportantDate.objects.filter(pk=important_date.pk)
        .filter(Q(reminder_sent_at__isnull=True) | Q(reminder_sent_at__lte=cutoff))
        .update(reminder_sent_at=now)
    )
    return bool(claimed)


def _dispatch(important_date: ImportantDate, days_until: int, user_ids: list[int]) -> PushResult:
    text = build_notification_text(important_date, days_until)
    Notification.objects.bulk_create([
        Notification(
            user_id=user_id,
            type='reminder',
            title=text['title'],
            message=text['message'],
            related_entity_type='important_date',
            related_entity_id=important_date.pk,
        )
        for user_id in user_ids
    ])

    push = PushResult()
    for user_id in user_ids:
        push = push + send_push_notification(user_id, {
            'title': text['push_title'],
            'body': text['push_body'],
            'tag': f'reminder-{important_date.pk}',
            'data': {
                'url': '/important-dates',
                'dateId': important_date.pk,
                'customerId': important_date.customer_id,
            },
        })
    return push


def run_reminder_check(now: datetime | None = None) -> dict:
    """Evaluate every recurring date against today and send the due reminders."""

    now = now or timezone.now()
    today = timezone.localdate(now)
    cutoff = now - DEDUP_WINDOW

    results = {
        'success': True,
        'checked': 0,
        'reminders_sent': 0,
        'push_notifications': {'sent': 0, 'failed': 0},
        'dates': [],
    }
    push_total = PushResult()

    dates = (
        ImportantDate.objects.filter(recurring=True)
        .select_related('customer', 'recipient')
        .order_by('id')
    )
    user_ids = list(User.objects.filter(is_active=True).values_list('id', flat=True))

    for important_date in dates:
        results['checked'] += 1

        if important_date.reminder_sent_at and important_date.reminder_sent_at > cutoff:
            continue

        days_until = days_until_next_occurrence(
            today, important_date.date.month, important_date.date.day
        )
        if not should_remind(days_until, important_date.effective_reminder_days):
            continue
        if not _claim(important_date, now):
            logger.info("Reminder for important date %s already claimed", important_date.pk)
            continue

        push_total = push_total + _dispatch(important_date, days_until, user_ids)
        results['reminders_sent'] += 1
        results['dates'].append({
            'id': important_date.pk,
            'title': important_date.title,
            'customer': important_date.customer.name,
            'daysUntil': days_until,
        })

    if not results['checked']:
        results['message'] = 'No dates to check'

    results['push_notifications'] = push_total.as_dict()
    results['timestamp'] = now.isoformat()
    logger.info(
        "Reminder check on %s: checked=%s sent=%s push=%s",
        today,
        results['checked'],
        results['reminders_sent'],
        results['push_notifications'],
    )
    return results
