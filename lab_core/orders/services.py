# lab_core/orders/services.py
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from lab_core.catalog.models import LabPanel, LabTest
from lab_core.catalog.selectors import get_panels, get_tests, panel_tests
from lab_core.common.api.exceptions import InvalidTransition, PreconditionFailed
from lab_core.common.events import ORDER_STATUS_CHANGED, publish
from lab_core.common.numbering import next_order_number
from lab_core.orders.models import (
    LabOrder,
    LabOrderItem,
    OrderItemStatus,
    OrderItemType,
    OrderPriority,
    OrderStatus,
    OrderStatusHistory,
    RecurrencePattern,
)
from lab_core.orders.selectors import OrderSelector
from lab_core.orders.transitions import ORDER_TRANSITIONS, STATUS_TIMESTAMP_FIELDS

logger = logging.getLogger(__name__)


def next_recurrence_date(pattern: str, from_date: date) -> date:
    """
    DAILY +1 day, WEEKLY +7 days, MONTHLY +1 calendar month (clamped to the
    last day of a shorter month). Unknown patterns fall back to daily.
    """
    if pattern == RecurrencePattern.WEEKLY:
        return from_date + timedelta(weeks=1)
    if pattern == RecurrencePattern.MONTHLY:
        year = from_date.year + (1 if from_date.month == 12 else 0)
        month = 1 if from_date.month == 12 else from_date.month + 1
        day = min(from_date.day, calendar.monthrange(year, month)[1])
        return from_date.replace(year=year, month=month, day=day)
    return from_date + timedelta(days=1)


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if timezone.is_aware(value) else timezone.make_aware(value)
    return timezone.make_aware(datetime.combine(value, time.min))


class OrderService:
    """
    Write-model operations for lab orders.
    - create_order: order + items atomically (panels expanded per test)
    - update_order_status: guarded by ORDER_TRANSITIONS, one history row per change
    - cancel_order / create_recurring_order
    """

    # ----------------------------
    # Internal helpers
    # ----------------------------
    @staticmethod
    def _build_item(*, order: LabOrder, test: LabTest, panel: LabPanel | None = None) -> LabOrderItem:
        return LabOrderItem(
            order=order,
            test=test,
            panel=panel,
            item_type=OrderItemType.PANEL if panel else OrderItemType.TEST,
            test_code=test.code,
            test_name=test.name,
            status=OrderItemStatus.PENDING,
            unit_price=test.base_cost,
            final_price=test.base_cost,
        )

    @staticmethod
    def _append_history(
        *, order: LabOrder, previous_status: str, new_status: str, changed_by: UUID | None, reason: str = ""
    ) -> OrderStatusHistory:
        return OrderStatusHistory.objects.create(
            order=order,
            previous_status=previous_status or "",
            new_status=new_status,
            changed_by=changed_by,
            reason=reason or "",
            changed_at=timezone.now(),
        )

    # ----------------------------
    # Create
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def create_order(
        *,
        patient_id: UUID,
        ordering_doctor_id: UUID,
        test_ids: Iterable[UUID] = (),
        panel_ids: Iterable[UUID] = (),
        encounter_id: UUID | None = None,
        priority: str | None = None,
        ordering_department: str = "",
        ordering_location: str = "",
        clinical_indication: str = "",
        diagnosis_code: str = "",
        notes: str = "",
        is_recurring: bool = False,
        recurrence_pattern: str = "",
        recurrence_end_date: date | None = None,
        collection_scheduled_at: datetime | None = None,
        parent_order: LabOrder | None = None,
        created_by: UUID | None = None,
    ) -> tuple[LabOrder, list[LabOrderItem]]:
        tests = get_tests(test_ids=test_ids)
        panels = get_panels(panel_ids=panel_ids)
        if not tests and not panels:
            raise PreconditionFailed("An order needs at least one test or panel")
        if is_recurring and not recurrence_pattern:
            raise PreconditionFailed("Recurring orders need a recurrence pattern")

        order = LabOrder.objects.create(
            order_number=next_order_number(),
            patient_id=patient_id,
            encounter_id=encounter_id,
            ordering_doctor_id=ordering_doctor_id,
            ordering_department=ordering_department,
            ordering_location=ordering_location,
            priority=priority or OrderPriority.ROUTINE,
            status=OrderStatus.PENDING,
            clinical_indication=clinical_indication,
            diagnosis_code=diagnosis_code,
            notes=notes,
            is_recurring=is_recurring,
            parent_order=parent_order,
            recurrence_pattern=recurrence_pattern or "",
            recurrence_end_date=recurrence_end_date,
            collection_scheduled_at=collection_scheduled_at,
            created_by=created_by,
        )

        # One item per test; a directly ordered test wins over the same test in a panel
        seen: set = set()
        items = []
        for t in tests:
            if t.id not in seen:
                seen.add(t.id)
                items.append(OrderService._build_item(order=order, test=t))
        for panel in panels:
            for t in panel_tests(panel=panel):
                if t.id not in seen:
                    seen.add(t.id)
                    items.append(OrderService._build_item(order=order, test=t, panel=panel))
        items = LabOrderItem.objects.bulk_create(items)

        OrderService._append_history(
            order=order,
            previous_status="",
            new_status=OrderStatus.PENDING,
            changed_by=created_by,
            reason="Order created",
        )

        logger.info("lab order %s created with %d item(s)", order.order_number, len(items))
        return order, items

    # ----------------------------
    # Status transitions
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def update_order_status(
        *,
        order_id: UUID,
        new_status: str,
        changed_by: UUID | None,
        reason: str = "",
    ) -> LabOrder:
        order = OrderSelector.get_order_for_update(order_id=order_id)
        previous = order.status

        ORDER_TRANSITIONS.ensure(previous, new_status)

        now = timezone.now()
        fields = ["status", "updated_at"]
        order.status = new_status

        stamp = STATUS_TIMESTAMP_FIELDS.get(new_status)
        if stamp:
            setattr(order, stamp, now)
            fields.append(stamp)
        if new_status == OrderStatus.CANCELLED:
            order.cancelled_by = changed_by
            order.cancellation_reason = reason or ""
            fields += ["cancelled_by", "cancellation_reason"]

        order.save(update_fields=fields)
        OrderService._append_history(
            order=order,
            previous_status=previous,
            new_status=new_status,
            changed_by=changed_by,
            reason=reason,
        )

        logger.info("lab order %s: %s -> %s", order.order_number, previous, new_status)
        publish(
            ORDER_STATUS_CHANGED,
            {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "previous_status": previous,
                "new_status": new_status,
                "changed_by": str(changed_by) if changed_by else None,
            },
        )
        return order

    @staticmethod
    @transaction.atomic
    def cancel_order(*, order_id: UUID, cancelled_by: UUID | None, reason: str) -> LabOrder:
        order = OrderSelector.get_order_for_update(order_id=order_id)
        if order.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            raise InvalidTransition(
                "LabOrder",
                order.status,
                OrderStatus.CANCELLED,
                detail=f"Cannot cancel order {order.order_number} with status {order.status}",
            )

        order = OrderService.update_order_status(
            order_id=order.id,
            new_status=OrderStatus.CANCELLED,
            changed_by=cancelled_by,
            reason=reason,
        )
        order.items.exclude(status=OrderItemStatus.COMPLETED).update(
            status=OrderItemStatus.CANCELLED, updated_at=timezone.now()
        )
        return order

    # ----------------------------
    # Recurrence
    # ----------------------------
    @staticmethod
    @transaction.atomic
    def create_recurring_order(
        *,
        parent_order_id: UUID,
        scheduled_date: date | datetime,
        created_by: UUID | None = None,
    ) -> tuple[LabOrder, list[LabOrderItem]]:
        parent = OrderSelector.get_order(order_id=parent_order_id)
        if not parent.is_recurring:
            raise PreconditionFailed(f"Order {parent.order_number} is not a recurring order")

        scheduled_at = _as_datetime(scheduled_date)
        if parent.recurrence_end_date and timezone.localdate(scheduled_at) > parent.recurrence_end_date:
            raise PreconditionFailed(
                f"Scheduled date {timezone.localdate(scheduled_at)} is after recurrence end "
                f"{parent.recurrence_end_date} of order {parent.order_number}"
            )

        parent_items = list(parent.items.all())
        test_ids = [i.test_id for i in parent_items if i.panel_id is None]
        panel_ids = list(dict.fromkeys(i.panel_id for i in parent_items if i.panel_id is not None))

        return OrderService.create_order(
            patient_id=parent.patient_id,
            ordering_doctor_id=parent.ordering_doctor_id,
            test_ids=test_ids,
            panel_ids=panel_ids,
            encounter_id=parent.encounter_id,
            priority=parent.priority,
            ordering_department=parent.ordering_department,
            ordering_location=parent.ordering_location,
            clinical_indication=parent.clinical_indication,
            diagnosis_code=parent.diagnosis_code,
            is_recurring=True,
            recurrence_pattern=parent.recurrence_pattern,
            recurrence_end_date=parent.recurrence_end_date,
            collection_scheduled_at=scheduled_at,
            parent_order=parent,
            created_by=created_by,
        )

    @staticmethod
    def next_occurrence(*, order: LabOrder, after: date | None = None) -> date | None:
        """
        Next scheduled date for a recurring order, or None once past the end date.
        """
        if not order.is_recurring:
            return None
        base = after or timezone.localdate(order.collection_scheduled_at or order.created_at)
        nxt = next_recurrence_date(order.recurrence_pattern, base)
        if order.recurrence_end_date and nxt > order.recurrence_end_date:
            return None
        return nxt
