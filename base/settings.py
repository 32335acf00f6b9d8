"""
Django settings for the Wozap connections project.
"""

from pathlib import Path

from base.env_config import (
    DEBUG as ENV_DEBUG,
    EVOLUTION_API_KEY,
    EVOLUTION_HOST_URL,
    SECRET_KEY as ENV_SECRET_KEY,
    SITE_URL as ENV_SITE_URL,
    get_env_float,
    get_env_int,
    get_env_variable,
)

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = ENV_SECRET_KEY or 'django-insecure-wozap-connections-dev-key'
DEBUG = ENV_DEBUG
ALLOWED_HOSTS = [host.strip() for host in get_env_variable('ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if host.strip()]
SITE_URL = ENV_SITE_URL

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'core',
    'aiengine',
    'connections',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'core.logging_filters.RequestLoggingMiddleware',
]

ROOT_URLCONF = 'base.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'base.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': get_env_variable('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': get_env_variable('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': get_env_variable('DB_USER', ''),
        'PASSWORD': get_env_variable('DB_PASSWORD', ''),
        'HOST': get_env_variable('DB_HOST', ''),
        'PORT': get_env_variable('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

LOGIN_URL = '/admin/login/'

# Evolution API gateway
EVOLUTION_API_KEY = EVOLUTION_API_KEY
EVOLUTION_HOST_URL = EVOLUTION_HOST_URL

# WhatsApp instance connection & event reconciliation
WHATSAPP_GATEWAY_TIMEOUT = get_env_float('WHATSAPP_GATEWAY_TIMEOUT', 10.0)
WHATSAPP_POLL_INTERVAL = get_env_float('WHATSAPP_POLL_INTERVAL', 10.0)
WHATSAPP_POLL_MAX_DURATION = get_env_float('WHATSAPP_POLL_MAX_DURATION', 600.0)
WHATSAPP_QR_TTL = get_env_float('WHATSAPP_QR_TTL', 60.0)
WHATSAPP_MAX_QR_ISSUES = get_env_int('WHATSAPP_MAX_QR_ISSUES', 5)
WHATSAPP_OBSERVER_TIMEOUT = get_env_float('WHATSAPP_OBSERVER_TIMEOUT', 60.0)
WHATSAPP_OBSERVER_HEARTBEAT = get_env_float('WHATSAPP_OBSERVER_HEARTBEAT', 15.0)
WHATSAPP_WEBHOOK_DEDUP_WINDOW = get_env_int('WHATSAPP_WEBHOOK_DEDUP_WINDOW', 600)
WHATSAPP_WEBHOOK_TOKEN = get_env_variable('WHATSAPP_WEBHOOK_TOKEN', '')
WHATSAPP_RESPONSE_CACHE_TTL = get_env_float('WHATSAPP_RESPONSE_CACHE_TTL', 300.0)
WHATSAPP_RESPONSE_CACHE_SIZE = get_env_int('WHATSAPP_RESPONSE_CACHE_SIZE', 200)
WHATSAPP_REPLY_GENERATOR = get_env_variable('WHATSAPP_REPLY_GENERATOR', 'aiengine.service.generate_reply')
WHATSAPP_STORE_RETRIES = get_env_int('WHATSAPP_STORE_RETRIES', 3)

# Logging
LOGS_DIR = BASE_DIR / 'logs'
LOGS_DIR.mkdir(exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'user_info': {
            '()': 'core.logging_filters.UserInfoFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name} [{request_id}] [{user}] {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
        'general_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': str(LOGS_DIR / 'general.log'),
            'maxBytes': 5 * 1024 * 1024,
            'backupCount': 5,
            'formatter': 'verbose',
            'filters': ['user_info'],
        },
        'errors_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': str(LOGS_DIR / 'errors.log'),
            'maxBytes': 5 * 1024 * 1024,
            'backupCount': 5,
            'level': 'ERROR',
            'formatter': 'verbose',
            'filters': ['user_info'],
        },
        'connections_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': str(LOGS_DIR / 'connections.log'),
            'maxBytes': 5 * 1024 * 1024,
            'backupCount': 5,
            'formatter': 'verbose',
            'filters': ['user_info'],
        },
        'evolution_api_file': {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': str(LOGS_DIR / 'evolution_api.log'),
            'maxBytes': 5 * 1024 * 1024,
            'backupCount': 5,
            'formatter': 'verbose',
            'filters': ['user_info'],
        },
    },
    'root': {
        'handlers': ['console', 'general_file', 'errors_file'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console', 'general_file'],
            'level': 'INFO',
            'propagate': False,
        },
        'connections': {
            'handlers': ['connections_file'],
            'level': 'DEBUG' if DEBUG else 'INFO',
        },
        'connections.services': {
            'handlers': ['evolution_api_file'],
            'level': 'DEBUG' if DEBUG else 'INFO',
        },
        'aiengine': {
            'handlers': ['connections_file'],
            'level': 'DEBUG' if DEBUG else 'INFO',
        },
    },
}
