# config/settings/test.py
from .base import *  # noqa

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING = build_logging_config(LOG_DIR, "DEBUG", quiet=True)

LAB_BARCODE_CHECK_DIGIT = False
LAB_DELTA_CHECK_ELIGIBLE_STATUSES = ("FINAL",)
LAB_ALERT_NOTIFIER = "lab_core.alerts.notifications.InAppNotifier"
LAB_ALERT_ESCALATION_MINUTES = 30
LAB_ALERT_ESCALATION_RECIPIENT_ID = None
LAB_IDENTITY_DIRECTORY = "lab_core.common.directory.PlaceholderDirectory"
