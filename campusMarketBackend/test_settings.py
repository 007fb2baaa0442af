import os

# Mock SECRET_KEY for tests BEFORE importing settings to bypass validation
os.environ.setdefault("SECRET_KEY", "django-insecure-test-key-for-unit-tests-only")

from .settings import *  # noqa: F403,E402

# SQLite in memory unless DB_ENGINE points the suite at a real server
if not os.environ.get("DB_ENGINE"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
        }
    }

# Disable external services
INFRASTRUCTURE["PAYMENT_PROVIDER"] = "mock"  # noqa: F405
INFRASTRUCTURE["EVENT_BUS_BACKEND"] = "memory"  # noqa: F405

MPESA_ENV = "sandbox"
MPESA_SHORTCODE = "174379"
MPESA_PASSKEY = "test-passkey"
MPESA_CONSUMER_KEY = "test-key"
MPESA_CONSUMER_SECRET = "test-secret"
MPESA_CALLBACK_URL = "https://testserver/api/payments/mpesa/callback/"
MPESA_CALLBACK_ALLOWED_IPS = []
TRUSTED_PROXY_COUNT = 0
PAYMENT_TEST_MODE = False

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

TRACING_ENABLED = False

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# Enable SessionAuthentication for tests to support client.force_login()
REST_FRAMEWORK["DEFAULT_AUTHENTICATION_CLASSES"] = [  # noqa: F405
    "rest_framework_simplejwt.authentication.JWTAuthentication",
    "rest_framework.authentication.SessionAuthentication",
]
