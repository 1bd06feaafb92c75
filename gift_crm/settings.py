from pathlib import Path
import sys
import os
from dotenv import load_dotenv
import dj_database_url
from urllib.parse import urlparse, parse_qsl

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Shared core apps live in company_core for reuse across projects.
CORE_DIR = BASE_DIR / "company_core"
if CORE_DIR.exists():
    sys.path.insert(0, str(CORE_DIR))

# Load environment variables from .env (default) or .env.example (fallback)
_env_file = os.getenv("ENV_FILE")
if _env_file:
    # Load an explicit env file first (e.g. for CI or alternate configs).
    # Then load .env.example as a "defaults" layer (does not override).
    load_dotenv(_env_file)
    load_dotenv(BASE_DIR / '.env.example', override=False)
else:
    load_dotenv(BASE_DIR / '.env')
    load_dotenv(BASE_DIR / '.env.example', override=False)


def _env_truthy(value, default=False):
    """Return True when the provided environment value represents truthy."""

    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_strip(value):
    return value.strip() if value else ''


def _env_int(name, default):
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY') or 'django-insecure-local-development-key'

DEBUG = _env_truthy(os.getenv('DEBUG'), True)

_DEFAULT_ALLOWED_HOSTS = [
    'localhost',
    '127.0.0.1',
    'testserver',
]

_allowed_hosts_env = os.getenv('ALLOWED_HOSTS')
_configured_hosts = (
    [h.strip() for h in _allowed_hosts_env.split(',') if h.strip()]
    if _allowed_hosts_env
    else []
)

ALLOWED_HOSTS = []
for _host in _DEFAULT_ALLOWED_HOSTS + _configured_hosts:
    if _host not in ALLOWED_HOSTS:
        ALLOWED_HOSTS.append(_host)

# CSRF trusted origins (comma-separated) e.g. https://crm.example.com
_csrf_env = os.getenv('CSRF_TRUSTED_ORIGINS', '')
if _csrf_env:
    CSRF_TRUSTED_ORIGINS = [o.strip() for o in _csrf_env.split(',') if o.strip()]
else:
    CSRF_TRUSTED_ORIGINS = [
        'http://localhost:8000',
        'http://127.0.0.1:8000',
        'http://localhost:5173',
    ]

# Business defaults. The database settings store overrides prefixes and
# currency once an admin saves them.
DEFAULT_BUSINESS_NAME = _env_strip(os.getenv('DEFAULT_BUSINESS_NAME', '')) or 'Gift Shop'
DEFAULT_INVOICE_PREFIX = _env_strip(os.getenv('DEFAULT_INVOICE_PREFIX', '')) or 'INV'
DEFAULT_RECEIPT_PREFIX = _env_strip(os.getenv('DEFAULT_RECEIPT_PREFIX', '')) or 'RCP'
DEFAULT_CURRENCY_SYMBOL = _env_strip(os.getenv('DEFAULT_CURRENCY_SYMBOL', '')) or 'Rs.'
DEFAULT_REMINDER_DAYS = _env_int('DEFAULT_REMINDER_DAYS', 7)

# Shared secret expected in the x-cron-secret header of the reminder trigger.
CRON_SECRET = _env_strip(os.getenv('CRON_SECRET', ''))

# Web push (VAPID) identity. Push delivery is skipped when the keys are blank.
VAPID_PUBLIC_KEY = _env_strip(os.getenv('VAPID_PUBLIC_KEY', ''))
VAPID_PRIVATE_KEY = _env_strip(os.getenv('VAPID_PRIVATE_KEY', ''))
VAPID_EMAIL = _env_strip(os.getenv('VAPID_EMAIL', '')) or 'mailto:admin@example.com'

# Application definition

INSTALLED_APPS = [
    'django.contrib.staticfiles',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'crm',
    'django_cron',
    'corsheaders',
    'rest_framework',
    'rest_framework.authtoken',
    'api',
]

CRON_CLASSES = [
    'crm.cron.ImportantDateReminderCronJob',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

FRONTEND_URL = _env_strip(os.getenv('FRONTEND_URL', ''))
if FRONTEND_URL:
    CORS_ALLOWED_ORIGINS = [o.strip() for o in FRONTEND_URL.split(',') if o.strip()]
else:
    CORS_ORIGIN_ALLOW_ALL = True
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_HEADERS = [
    'accept',
    'authorization',
    'content-type',
    'origin',
    'x-csrftoken',
    'x-requested-with',
    'x-cron-secret',
]

ROOT_URLCONF = 'gift_crm.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'gift_crm.wsgi.application'

# Database

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

# Keep SQLite when explicitly requested.
_force_sqlite = _env_truthy(os.getenv('FORCE_SQLITE'), False)

# Enable DATABASE_URL parsing when provided; fallback stays SQLite
_raw_db_url = os.getenv('DATABASE_URL', '')
_clean_db_url = _raw_db_url.strip().strip('"').strip("'")
if (not _force_sqlite) and _clean_db_url:
    try:
        DATABASES['default'] = dj_database_url.parse(
            _clean_db_url,
            conn_max_age=600,
            ssl_require=_env_truthy(os.getenv('DB_SSL_REQUIRE'), False),
        )
    except ValueError:
        # Fallback manual parse for Postgres URLs if dj_database_url fails
        _u = urlparse(_clean_db_url)
        if _u.scheme in ('postgres', 'postgresql', 'pgsql'):
            _opts = dict(parse_qsl(_u.query or ''))
            if _env_truthy(os.getenv('DB_SSL_REQUIRE'), False) and 'sslmode' not in _opts:
                _opts['sslmode'] = 'require'
            DATABASES['default'] = {
                'ENGINE': 'django.db.backends.postgresql',
                'NAME': (_u.path or '').lstrip('/'),
                'USER': _u.username,
                'PASSWORD': _u.password,
                'HOST': _u.hostname,
                'PORT': _u.port or 5432,
                'OPTIONS': _opts,
            }

# Serverless Postgres providers drop server-side cursors between fetches.
if DATABASES['default']['ENGINE'] in {
    'django.db.backends.postgresql',
    'django.db.backends.postgresql_psycopg2',
}:
    DATABASES['default']['DISABLE_SERVER_SIDE_CURSORS'] = True


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
        'OPTIONS': {
            'min_length': 8,
        }
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
]

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.TokenAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'EXCEPTION_HANDLER': 'api.exceptions.api_exception_handler',
    'COERCE_DECIMAL_TO_STRING': False,
}

# Internationalization

LANGUAGE_CODE = 'en-us'

# "Today" for the reminder scheduler is the local date in this zone.
TIME_ZONE = _env_strip(os.getenv('TIME_ZONE', '')) or 'Asia/Colombo'

USE_I18N = True

USE_TZ = True

# Static files (CSS, JavaScript, Images)

STATIC_URL = '/static/'
STATIC_ROOT = os.path.join(BASE_DIR, 'staticfiles')

if not DEBUG:
    STORAGES = {
        'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
        'staticfiles': {'BACKEND': 'whitenoise.storage.CompressedStaticFilesStorage'},
    }
    WHITENOISE_MANIFEST_STRICT = False
    SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_SSL_REDIRECT = _env_truthy(os.getenv('SECURE_SSL_REDIRECT'), False)

# Media files (uploaded business logo)
MEDIA_URL = '/media/'
MEDIA_ROOT = os.path.join(BASE_DIR, 'media')
LOGO_STORAGE_NAME = 'branding/logo'
LOGO_MAX_UPLOAD_BYTES = _env_int('LOGO_MAX_UPLOAD_BYTES', 5 * 1024 * 1024)

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOG_TO_FILE = _env_truthy(os.getenv('LOG_TO_FILE'), False)
LOG_LEVEL = _env_strip(os.getenv('LOG_LEVEL', '')).upper() or 'INFO'
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
        **({
            'file': {
                'level': 'INFO',
                'class': 'logging.FileHandler',
                'filename': os.path.join(BASE_DIR, 'logs', 'gift_crm.log'),
                'formatter': 'simple',
            }
        } if LOG_TO_FILE else {})
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'crm': {
            'handlers': ['file'] if LOG_TO_FILE else [],
            'level': LOG_LEVEL,
            'propagate': True,
        },
        'api': {
            'handlers': ['file'] if LOG_TO_FILE else [],
            'level': LOG_LEVEL,
            'propagate': True,
        },
    },
}
