# lab_core/alerts/management/commands/escalate_critical_alerts.py

from django.conf import settings
from django.core.management.base import BaseCommand

from lab_core.alerts.services import CriticalValueAlertService


class Command(BaseCommand):
    help = "Escalate critical value alerts left unacknowledged past the threshold (safe to re-run)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--minutes",
            type=int,
            default=None,
            help="Unacknowledged age in minutes (default: LAB_ALERT_ESCALATION_MINUTES).",
        )
        parser.add_argument("--actor", default="SYSTEM", help="Name recorded in the escalation note.")

    def handle(self, *args, **options):
        minutes = options["minutes"]
        if minutes is None:
            minutes = getattr(settings, "LAB_ALERT_ESCALATION_MINUTES", 30)

        escalated = CriticalValueAlertService.escalate_unacknowledged_alerts(
            minutes_threshold=minutes, actor=options["actor"]
        )

        for alert in escalated:
            self.stdout.write(f"- {alert.id} {alert.severity} {alert.test_name}/{alert.parameter_name}")
        self.stdout.write(self.style.SUCCESS(f"Escalated {len(escalated)} alert(s) older than {minutes} minutes."))
