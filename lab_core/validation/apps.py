# lab_core/validation/apps.py
from django.apps import AppConfig


class ValidationConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "lab_core.validation"
