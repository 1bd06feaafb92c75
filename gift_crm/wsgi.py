"""
WSGI config for gift_crm project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import logging
import os

from django.conf import settings
from django.core.wsgi import get_wsgi_application
from whitenoise import WhiteNoise

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gift_crm.settings')

logger = logging.getLogger(__name__)

django_application = get_wsgi_application()

# Only log presence, never the key itself.
logger.info(
    "Web push configured=%s, cron secret configured=%s",
    bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY),
    bool(settings.CRON_SECRET),
)

# Serve static assets from the process itself; WhiteNoise skips directories
# that do not exist yet so first boots survive a missing collectstatic.
application = WhiteNoise(django_application)

static_root = getattr(settings, 'STATIC_ROOT', None)
if static_root:
    application.add_files(static_root, prefix='static/')
