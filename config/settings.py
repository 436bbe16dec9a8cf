import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'devprod-insecure-local-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '') == '1'
ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'devprod',
]

DATABASES = {}
USE_TZ = True

# Roblox
DEVPROD_COOKIE = os.environ.get('DEVPROD_COOKIE', '')
DEVPROD_CATALOGUE_PATH = os.environ.get('DEVPROD_CATALOGUE_PATH', str(BASE_DIR / 'game.devprod.json'))
DEVPROD_VERIFY = os.environ.get('DEVPROD_VERIFY', '') == '1'
# None waits forever
DEVPROD_REQUEST_TIMEOUT = float(os.environ['DEVPROD_REQUEST_TIMEOUT']) if os.environ.get('DEVPROD_REQUEST_TIMEOUT') else None

# Celery
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', '') == '1'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '[%(asctime)s][%(levelname)s] %(name)s: %(message)s',
            'datefmt': '%H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'devprod': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO').upper(),
        },
    },
}
