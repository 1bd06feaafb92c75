"""Web push delivery to the browsers users subscribed from.

Failures are counted, never raised. A push service answering 404 or 410 means
the browser dropped the subscription, so the row is deleted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from django.conf import settings
from django.contrib.auth.models import User
from django.utils import timezone
from pywebpush import WebPushException, webpush

from .exceptions import ValidationFailed
from .models import PushSubscription


logger = logging.getLogger(__name__)

DEFAULT_ICON = '/icon.svg'
EXPIRED_STATUS_CODES = {404, 410}


@dataclass
class PushResult:
    sent: int = 0
    failed: int = 0

    def __add__(self, other: 'PushResult') -> 'PushResult':
        return PushResult(self.sent + other.sent, self.failed + other.failed)

    def as_dict(self) -> dict:
        return {'sent': self.sent, 'failed': self.failed}


def push_configured() -> bool:
    return bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY)


def _vapid_claims() -> dict:
    email = settings.VAPID_EMAIL
    if not email.startswith('mailto:'):
        email = f'mailto:{email}'
    return {'sub': email}


def build_payload(notification: dict) -> str:
    return json.dumps({
        'title': notification.get('title', ''),
        'body': notification.get('body', ''),
        'icon': notification.get('icon') or DEFAULT_ICON,
        'badge': DEFAULT_ICON,
        'tag': notification.get('tag') or 'default',
        'data': notification.get('data') or {},
    })


def _status_code(exc: WebPushException) -> int | None:
    response = getattr(exc, 'response', None)
    return getattr(response, 'status_code', None)


def send_push_notification(user_id: int, notification: dict) -> PushResult:
    """Push ``{title, body, tag, data}`` to every subscription of one user."""

    if not push_configured():
        logger.warning("VAPID keys not configured, skipping push notification")
        return PushResult()

    subscriptions = list(PushSubscription.objects.filter(user_id=user_id))
    if not subscriptions:
        return PushResult()

    payload = build_payload(notification)
    result = PushResult()
    for subscription in subscriptions:
        try:
            webpush(
                subscription_info=subscription.as_subscription_info(),
                data=payload,
                vapid_private_key=settings.VAPID_PRIVATE_KEY,
                vapid_claims=_vapid_claims(),
            )
        except WebPushException as exc:
            result.failed += 1
            status_code = _status_code(exc)
            if status_code in EXPIRED_STATUS_CODES:
                logger.warning(
                    "Removing expired push subscription %s for user %s", subscription.pk, user_id
                )
                subscription.delete()
            else:
                logger.warning("Push to subscription %s failed: %s", subscription.pk, exc)
            continue

        result.sent += 1
        PushSubscription.objects.filter(pk=subscription.pk).update(last_used_at=timezone.now())

    return result


def broadcast_push_notification(notification: dict) -> PushResult:
    result = PushResult()
    for user_id in User.objects.filter(is_active=True).values_list('id', flat=True):
        result = result + send_push_notification(user_id, notification)
    return result


def save_subscription(user, data) -> PushSubscription:
    """Create or re-point the subscription for ``data['endpoint']`` to ``user``."""

    endpoint = (data or {}).get('endpoint')
    keys = (data or {}).get('keys') or {}
    if not endpoint or not keys.get('p256dh') or not keys.get('auth'):
        raise ValidationFailed('Invalid subscription data')

    subscription, _ = PushSubscription.objects.update_or_create(
        endpoint=endpoint,
        defaults={
            'user': user,
            'p256dh': keys['p256dh'],
            'auth': keys['auth'],
            'last_used_at': timezone.now(),
        },
    )
    return subscription


def remove_subscription(user, endpoint: str | None) -> int:
    deleted, _ = PushSubscription.objects.filter(user=user, endpoint=endpoint).delete()
    return deleted
