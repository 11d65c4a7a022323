# config/celery.py
import os
from celery import Celery

# Use your environment-specific settings module (manage.py picks local/production from DJANGO_ENV)
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.local")

app = Celery("payloom")

# Read CELERY_* settings from Django
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks.py in all INSTALLED_APPS (escrow sweeps)
app.autodiscover_tasks()
