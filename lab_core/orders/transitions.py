# lab_core/orders/transitions.py
from lab_core.common.transitions import TransitionTable
from lab_core.orders.models import OrderStatus

ORDER_TRANSITIONS = TransitionTable(
    "LabOrder",
    {
        OrderStatus.PENDING: {OrderStatus.SCHEDULED, OrderStatus.COLLECTED, OrderStatus.CANCELLED},
        OrderStatus.SCHEDULED: {OrderStatus.COLLECTED, OrderStatus.CANCELLED},
        OrderStatus.COLLECTED: {OrderStatus.RECEIVED, OrderStatus.CANCELLED},
        OrderStatus.RECEIVED: {OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED},
        OrderStatus.IN_PROGRESS: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
        OrderStatus.COMPLETED: set(),
        OrderStatus.CANCELLED: set(),
    },
)

# Timestamp field stamped when an order enters the given status
STATUS_TIMESTAMP_FIELDS = {
    OrderStatus.SCHEDULED: "scheduled_at",
    OrderStatus.COLLECTED: "specimen_collected_at",
    OrderStatus.RECEIVED: "specimen_received_at",
    OrderStatus.IN_PROGRESS: "processing_started_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}
