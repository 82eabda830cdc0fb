"""
Django settings for railway_backend project.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-change-this-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')


# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Third party apps
    'rest_framework',
    'drf_spectacular',
    # Local apps
    'berths',
    'tickets',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    # Custom middleware for API logging
    'utils.middleware.APILoggingMiddleware',
]

ROOT_URLCONF = 'railway_backend.urls'

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

WSGI_APPLICATION = 'railway_backend.wsgi.application'


# Database Configuration
# For development, using SQLite. For production, use MySQL.
USE_MYSQL = os.getenv('USE_MYSQL', 'False').lower() == 'true'

if USE_MYSQL:
    # MySQL configuration - requires mysqlclient package
    # pip install mysqlclient (requires MySQL dev libraries)
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.mysql',
            'NAME': os.getenv('MYSQL_DATABASE', 'railway_reservation'),
            'USER': os.getenv('MYSQL_USER', 'root'),
            'PASSWORD': os.getenv('MYSQL_PASSWORD', ''),
            'HOST': os.getenv('MYSQL_HOST', 'localhost'),
            'PORT': os.getenv('MYSQL_PORT', '3306'),
            'OPTIONS': {
                'charset': 'utf8mb4',
                # Ledger and berth rows are read-then-written under SELECT ... FOR UPDATE
                'isolation_level': 'read committed',
            }
        }
    }
else:
    # SQLite for development/testing
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
            'OPTIONS': {
                # SQLite has no row locks: every transaction takes the write lock at BEGIN
                'transaction_mode': 'IMMEDIATE',
            }
        }
    }

# MongoDB Configuration (request audit log, optional)
MONGODB_ENABLED = os.getenv('MONGODB_ENABLED', 'True').lower() == 'true'
MONGODB_URI = os.getenv('MONGODB_URI', 'mongodb://localhost:27017/')
MONGODB_NAME = os.getenv('MONGODB_NAME', 'railway_logs')


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Kolkata'
USE_I18N = True
USE_TZ = True


# Static files (CSS, JavaScript, Images)
STATIC_URL = 'static/'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# REST Framework Configuration
# The reservation API is public: no authentication, open permissions.
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.AllowAny',
    ),
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'Railway Reservation API',
    'DESCRIPTION': 'Berth allocation with confirmed, RAC and waiting-list tiers',
    'VERSION': '1.0.0',
}

# Reservation limits for the single modelled coach.
# Berth counts size the inventory created by `manage.py setup_berths`.
RAILWAY_RESERVATION = {
    'CONFIRMED_BERTHS': int(os.getenv('CONFIRMED_BERTHS', 63)),
    'RAC_BERTHS': int(os.getenv('RAC_BERTHS', 9)),
    'RAC_PASSENGERS_PER_BERTH': 2,
    'WAITING_LIST_SIZE': int(os.getenv('WAITING_LIST_SIZE', 10)),
    'CHILD_AGE_LIMIT': 5,  # Children under 5 don't get a berth
    'SENIOR_CITIZEN_AGE': 60,  # Priority for lower berth
    'LEDGER_RETRY_ATTEMPTS': int(os.getenv('LEDGER_RETRY_ATTEMPTS', 3)),
    'LOCK_WAIT_TIMEOUT': float(os.getenv('LOCK_WAIT_TIMEOUT', 10)),  # Seconds to keep retrying a locked database
    'PNR_GENERATION_ATTEMPTS': 5,
}

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'berths': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'tickets': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'utils': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
