# config/settings/local.py
from .base import *  # noqa

DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"

LOG_LEVEL = os.getenv("LAB_LOG_LEVEL", "DEBUG")
LOGGING = build_logging_config(LOG_DIR, LOG_LEVEL)
