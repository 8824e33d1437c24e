"""
Celery application for asynchronous fulfillment side effects.

Workers are started with:
    celery -A config worker -l info
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('getlocal')

# All CELERY_* settings in config/settings.py configure the app
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
