from .base import *  # noqa

DEBUG = False
SECRET_KEY = "test-only-secret-key"
SIMPLE_JWT["SIGNING_KEY"] = SECRET_KEY

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# run tasks inline, no broker needed
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

ESCROW = {
    **ESCROW,
    "PLATFORM_FEE_RATE": "0.05",
    "RELEASE_WINDOW_DAYS": 7,
    "ORDER_ACCEPT_DEADLINE_HOURS": 72,
    "DEFAULT_CURRENCY": "KES",
}

LOGGING["root"]["level"] = "WARNING"
LOGGING["loggers"]["apps.escrow"]["level"] = "WARNING"
