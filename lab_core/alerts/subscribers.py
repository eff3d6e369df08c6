# lab_core/alerts/subscribers.py
from uuid import UUID

from lab_core.alerts.services import CriticalValueAlertService
from lab_core.common.events import PARAMETER_FLAGGED, subscribe


@subscribe(PARAMETER_FLAGGED)
def on_parameter_flagged(payload: dict) -> None:
    CriticalValueAlertService.create_alerts_for_parameter(
        result_parameter_id=UUID(payload["result_parameter_id"]),
    )
