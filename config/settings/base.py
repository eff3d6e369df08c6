# config/settings/base.py
from pathlib import Path
import os
from dotenv import load_dotenv

from .logging import build_logging_config


BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "unsafe-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = ["*"]

INSTALLED_APPS = [
    # Django
    "django.contrib.auth",
    "django.contrib.contenttypes",

    # Third-party
    "rest_framework",

    # Lab workflow engine (modular monolith)
    "lab_core.common.apps.CommonConfig",
    "lab_core.catalog.apps.CatalogConfig",
    "lab_core.orders.apps.OrdersConfig",
    "lab_core.specimens.apps.SpecimensConfig",
    "lab_core.lab.apps.LabConfig",
    "lab_core.validation.apps.ValidationConfig",
    "lab_core.alerts.apps.AlertsConfig",
    "lab_core.audit.apps.AuditConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "lab"),
        "USER": os.getenv("DB_USER", "lab"),
        "PASSWORD": os.getenv("DB_PASSWORD", "lab"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),
        "PORT": os.getenv("DB_PORT", "5432"),
        "ATOMIC_REQUESTS": False,
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "Asia/Jakarta")
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    # Standard error envelope for any API layer mounted on top of the engine
    "EXCEPTION_HANDLER": "lab_core.common.api.exceptions.api_exception_handler",
}

# Logging
LOG_DIR = Path(os.getenv("LAB_LOG_DIR", BASE_DIR / "logs"))
LOG_LEVEL = os.getenv("LAB_LOG_LEVEL", "INFO")
LOGGING = build_logging_config(LOG_DIR, LOG_LEVEL)

# -------------------------------------------------------------------
# Lab engine
# -------------------------------------------------------------------

# Barcodes: SP + yyyyMMdd + 6 random digits (+ Luhn check digit when enabled)
LAB_BARCODE_CHECK_DIGIT = os.getenv("LAB_BARCODE_CHECK_DIGIT", "0") == "1"
LAB_BARCODE_MAX_ATTEMPTS = int(os.getenv("LAB_BARCODE_MAX_ATTEMPTS", "10"))

# Result statuses that may serve as the "previous result" of a delta check
LAB_DELTA_CHECK_ELIGIBLE_STATUSES = tuple(
    s.strip() for s in os.getenv("LAB_DELTA_CHECK_ELIGIBLE_STATUSES", "FINAL").split(",") if s.strip()
)

# Validation levels that may be skipped on the way up (SENIOR_TECH)
LAB_VALIDATION_OPTIONAL_LEVELS = (2,)

LAB_ALERT_NOTIFIER = os.getenv("LAB_ALERT_NOTIFIER", "lab_core.alerts.notifications.InAppNotifier")
LAB_ALERT_ESCALATION_MINUTES = int(os.getenv("LAB_ALERT_ESCALATION_MINUTES", "30"))
LAB_ALERT_ESCALATION_RECIPIENT_ID = os.getenv("LAB_ALERT_ESCALATION_RECIPIENT_ID") or None

LAB_IDENTITY_DIRECTORY = os.getenv("LAB_IDENTITY_DIRECTORY", "lab_core.common.directory.PlaceholderDirectory")
