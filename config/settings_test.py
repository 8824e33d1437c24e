"""
Settings for the test suite.

    pytest                      (DJANGO_SETTINGS_MODULE set in pyproject.toml)
    POSTGRES_DB=getlocal_test pytest
"""
import os

os.environ.setdefault('DJANGO_SECRET_KEY', 'test-only-secret-key')

from .settings import *  # noqa: E402,F401,F403
from .settings import DATABASES, LOGGING  # noqa: E402

DEBUG = False

if DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':
    # A file database lets threaded tests open their own connections;
    # the in-memory shared cache fails them with "table is locked"
    DATABASES['default']['TEST'] = {'NAME': BASE_DIR / 'test_db.sqlite3'}  # noqa: F405

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False

RATE_LIMIT_ENABLED = False

LOG_LEVEL = 'WARNING'
LOGGING['root']['level'] = LOG_LEVEL
