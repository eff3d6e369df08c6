# lab_core/alerts/apps.py
from django.apps import AppConfig


class AlertsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "lab_core.alerts"

    def ready(self):
        # Registers the lab.parameter.flagged handler
        import lab_core.alerts.subscribers  # noqa: F401
