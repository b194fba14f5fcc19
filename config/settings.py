import sys
from pathlib import Path
from decouple import config, Csv


# BASE DIRECTORY
# Repository root, one level above config/
BASE_DIR = Path(__file__).resolve().parent.parent

# True when running under `manage.py test` or pytest
TESTING = 'test' in sys.argv[1:2] or 'pytest' in sys.modules


# SECURITY SETTINGS

# SECURITY WARNING: keep the secret key used in production secret!
# Any long random string works; rotate it per environment
SECRET_KEY = config('SECRET_KEY', default='django-insecure-CHANGE-THIS-IN-PRODUCTION')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config('DEBUG', default=True, cast=bool)

# Comma separated, e.g. 'crm.example.edu,api.crm.example.edu'
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,0.0.0.0,testserver', cast=Csv())


# INSTALLED APPS

INSTALLED_APPS = [
    # Django Channels (must be before django.contrib.staticfiles)
    'daphne',  # serves both HTTP and the notification WebSocket

    # Django built-in apps
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third-party apps
    'rest_framework',  # Browsable API auth/session helpers
    'corsheaders',  # CORS headers for the SPA frontend
    'channels',  # WebSocket support (notifications)
    'taggit',

    # Our custom apps
    # accounts defines AUTH_USER_MODEL, keep it first
    'apps.accounts',  # Users, roles & authentication
    'apps.core',  # Institutions (tenants), dashboards
    'apps.leads',  # Lead intake, assignment, telecalling
    'apps.admissions',  # Applications, reviews, offer letters
    'apps.appointments',  # Counseling appointments
    'apps.documents',  # Document upload & verification
    'apps.finance',  # Payments & refunds
    'apps.notifications',  # In-app notifications (SSE / WebSocket)
    'apps.communications',  # Email / SMS / WhatsApp messaging
]


# MIDDLEWARE

# Tenant resolution happens in the view decorators, not here
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',  # must be before CommonMiddleware
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]


# URL CONFIGURATION
ROOT_URLCONF = 'config.urls'


# TEMPLATES
# Only used by the admin site and the password reset email
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


# ASGI/WSGI APPLICATION

# ASGI application (HTTP + WebSocket), served by Daphne
ASGI_APPLICATION = 'config.asgi.application'

# WSGI application (for traditional HTTP)
WSGI_APPLICATION = 'config.wsgi.application'


# DATABASE

# PostgreSQL in every environment except the test runner
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': config('DB_NAME', default='admissions_db'),
        'USER': config('DB_USER', default='admissions_user'),
        'PASSWORD': config('DB_PASSWORD', default='admissions_pass'),
        'HOST': config('DB_HOST', default='db'),
        'PORT': config('DB_PORT', default='5432'),
        'CONN_MAX_AGE': 600,
        'OPTIONS': {
            'connect_timeout': 10,
        }
    }
}

if TESTING:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'test_db.sqlite3',
        }
    }


# AUTHENTICATION

# Custom user model (email login, institution + role)
AUTH_USER_MODEL = 'accounts.User'

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
        'OPTIONS': {
            'min_length': 8,
        }
    },
]

# Unauthenticated API calls get a 401 JSON response, LOGIN_URL is only
# used by the admin site
LOGIN_URL = '/admin/login/'


# INTERNATIONALIZATION

LANGUAGE_CODE = 'en-us'
TIME_ZONE = config('TIME_ZONE', default='Asia/Kolkata')
USE_I18N = True
USE_TZ = True


# STATIC & MEDIA FILES

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Uploaded documents, avatars and institution logos
MEDIA_URL = '/media/'
MEDIA_ROOT = BASE_DIR / 'media'


# DJANGO REST FRAMEWORK

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DATETIME_FORMAT': '%Y-%m-%dT%H:%M:%S%z',
}


# CORS HEADERS

# In development: allow all. In production: the frontend origins only
if DEBUG:
    CORS_ALLOW_ALL_ORIGINS = True
else:
    CORS_ALLOWED_ORIGINS = config('CORS_ALLOWED_ORIGINS', default='', cast=Csv())
CORS_ALLOW_CREDENTIALS = True


# CHANNELS (WebSocket)

REDIS_URL = config('REDIS_URL', default='redis://redis:6379/0')

CHANNEL_LAYERS = {
    'default': {
        'BACKEND': 'channels_redis.core.RedisChannelLayer',
        'CONFIG': {
            'hosts': [config('CHANNELS_REDIS_URL', default='redis://redis:6379/1')],
        },
    },
}

if TESTING:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels.layers.InMemoryChannelLayer',
        },
    }


# CELERY (Background Tasks)

CELERY_BROKER_URL = REDIS_URL
CELERY_RESULT_BACKEND = REDIS_URL
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TIME_LIMIT = 5 * 60
CELERY_TASK_SOFT_TIME_LIMIT = 4 * 60

# Run tasks inline during tests (no broker needed)
CELERY_TASK_ALWAYS_EAGER = TESTING
CELERY_TASK_EAGER_PROPAGATES = TESTING


# EMAIL CONFIGURATION

EMAIL_BACKEND = config(
    'EMAIL_BACKEND',
    default='django.core.mail.backends.console.EmailBackend'
)
EMAIL_HOST = config('EMAIL_HOST', default='smtp.gmail.com')
EMAIL_PORT = config('EMAIL_PORT', default=587, cast=int)
EMAIL_USE_TLS = config('EMAIL_USE_TLS', default=True, cast=bool)
EMAIL_HOST_USER = config('EMAIL_HOST_USER', default='')
EMAIL_HOST_PASSWORD = config('EMAIL_HOST_PASSWORD', default='')
DEFAULT_FROM_EMAIL = config('DEFAULT_FROM_EMAIL', default='Admissions CRM <noreply@admissions-crm.local>')

if TESTING:
    EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

# Frontend base URL (used in password reset and offer letter links)
FRONTEND_URL = config('FRONTEND_URL', default='http://localhost:3000')


# SMS (Twilio) & WHATSAPP (Cloud API)

TWILIO_ACCOUNT_SID = config('TWILIO_ACCOUNT_SID', default='')
TWILIO_AUTH_TOKEN = config('TWILIO_AUTH_TOKEN', default='')
TWILIO_FROM_NUMBER = config('TWILIO_FROM_NUMBER', default='')

WHATSAPP_API_URL = config('WHATSAPP_API_URL', default='https://graph.facebook.com/v18.0')
WHATSAPP_ACCESS_TOKEN = config('WHATSAPP_ACCESS_TOKEN', default='')
WHATSAPP_PHONE_NUMBER_ID = config('WHATSAPP_PHONE_NUMBER_ID', default='')


# LOGGING

LOG_DIR = BASE_DIR / 'logs'
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,

    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },

    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple' if TESTING else 'verbose',
        },
        'file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_DIR / 'django.log',
            'maxBytes': 1024 * 1024 * 10,  # 10 MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
    },

    'loggers': {
        'django': {
            'handlers': ['console', 'file'],
            'level': config('LOG_LEVEL', default='INFO'),
            'propagate': True,
        },
        'apps': {
            'handlers': ['console', 'file'],
            'level': 'WARNING' if TESTING else 'DEBUG',
            'propagate': False,
        },
    },
}


# CUSTOM SETTINGS

# Default page size for list endpoints
PAGINATION_SIZE = 25
PAGINATION_MAX_SIZE = 100

# Session settings
SESSION_COOKIE_AGE = 60 * 60 * 24
SESSION_REMEMBER_ME_AGE = 30 * 86400  # 30 days when "remember me" is set

# Uploads (documents, lead imports)
FILE_UPLOAD_MAX_MEMORY_SIZE = 5 * 1024 * 1024  # 5 MB
DATA_UPLOAD_MAX_MEMORY_SIZE = 15 * 1024 * 1024  # 15 MB

# Lead management
LEAD_IMPORT_MAX_FILE_SIZE = 5 * 1024 * 1024
DEFAULT_PHONE_COUNTRY_CODE = config('DEFAULT_PHONE_COUNTRY_CODE', default='91')
FOLLOW_UP_REMINDER_WINDOW_MINUTES = 30

# Documents
DOCUMENT_MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB
DOCUMENT_ALLOWED_MIME_TYPES = [
    'image/jpeg', 'image/png', 'image/gif', 'image/webp',
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'text/plain', 'application/rtf',
    'application/vnd.oasis.opendocument.text',
    'application/vnd.oasis.opendocument.spreadsheet',
]

# Offer letters
OFFER_LETTER_VALIDITY_DAYS = config('OFFER_LETTER_VALIDITY_DAYS', default=30, cast=int)

# Platform fees per subscription tier (percentages + fixed minimum, whole currency units)
PLATFORM_FEE_STRUCTURE = {
    'starter': {'platform_percent': 2.5, 'minimum_fee': 50, 'processing_percent': 1.0},
    'pro': {'platform_percent': 2.0, 'minimum_fee': 50, 'processing_percent': 0.8},
    'max': {'platform_percent': 1.5, 'minimum_fee': 50, 'processing_percent': 0.5},
}
DEFAULT_CURRENCY = config('DEFAULT_CURRENCY', default='INR')

# Notification stream (SSE)
NOTIFICATION_STREAM_TIMEOUT = config('NOTIFICATION_STREAM_TIMEOUT', default=300, cast=int)  # seconds per connection
NOTIFICATION_STREAM_POLL_INTERVAL = 2  # seconds between database checks
NOTIFICATION_HEARTBEAT_INTERVAL = 30  # seconds between heartbeats

# Communications
COMMUNICATION_MAX_RETRIES = 3
COMMUNICATION_STALE_QUEUE_MINUTES = config('COMMUNICATION_STALE_QUEUE_MINUTES', default=15, cast=int)  # queued longer than this is re-sent


# SECURITY SETTINGS (Production)

if not DEBUG:
    SECURE_SSL_REDIRECT = True
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = 'DENY'
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True


# DEFAULT AUTO FIELD
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
