# lab_core/orders/selectors.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from django.core.exceptions import ValidationError
from django.db.models import QuerySet, Sum

from lab_core.common.api.exceptions import NotFound
from lab_core.orders.models import (
    OPEN_ORDER_STATUSES,
    URGENT_PRIORITIES,
    LabOrder,
    LabOrderItem,
    OrderItemStatus,
    OrderStatusHistory,
)


class OrderSelector:
    NotFound = NotFound

    @staticmethod
    def get_order(*, order_id: UUID) -> LabOrder:
        try:
            return LabOrder.objects.prefetch_related("items").get(id=order_id)
        except (LabOrder.DoesNotExist, ValidationError):
            raise NotFound("LabOrder", order_id)

    @staticmethod
    def get_order_for_update(*, order_id: UUID) -> LabOrder:
        try:
            return LabOrder.objects.select_for_update().get(id=order_id)
        except (LabOrder.DoesNotExist, ValidationError):
            raise NotFound("LabOrder", order_id)

    @staticmethod
    def get_order_by_number(*, order_number: str) -> LabOrder:
        try:
            return LabOrder.objects.get(order_number=order_number)
        except LabOrder.DoesNotExist:
            raise NotFound("LabOrder", order_number)

    @staticmethod
    def get_item(*, order_item_id: UUID, for_update: bool = False) -> LabOrderItem:
        qs = LabOrderItem.objects.select_related("order", "test")
        if for_update:
            qs = qs.select_for_update(of=("self",))
        try:
            return qs.get(id=order_item_id)
        except (LabOrderItem.DoesNotExist, ValidationError):
            raise NotFound("LabOrderItem", order_item_id)

    @staticmethod
    def list_orders(*, patient_id=None, status=None) -> QuerySet[LabOrder]:
        qs = LabOrder.objects.prefetch_related("items").order_by("-created_at")
        if patient_id:
            qs = qs.filter(patient_id=patient_id)
        if status:
            qs = qs.filter(status=status)
        return qs

    @staticmethod
    def urgent_orders() -> QuerySet[LabOrder]:
        """
        Open URGENT/CITO orders, oldest first (same rule as LabOrder.is_urgent).
        """
        return LabOrder.objects.filter(priority__in=URGENT_PRIORITIES, status__in=OPEN_ORDER_STATUSES).order_by(
            "created_at", "id"
        )

    @staticmethod
    def overdue_orders(*, cutoff: datetime) -> QuerySet[LabOrder]:
        return LabOrder.objects.filter(status__in=OPEN_ORDER_STATUSES, created_at__lt=cutoff).order_by(
            "created_at", "id"
        )

    @staticmethod
    def order_history(*, order_id: UUID) -> QuerySet[OrderStatusHistory]:
        return OrderStatusHistory.objects.filter(order_id=order_id).order_by("changed_at", "id")

    @staticmethod
    def order_total(*, order: LabOrder) -> Decimal:
        total = (
            order.items.exclude(status=OrderItemStatus.CANCELLED)
            .aggregate(total=Sum("final_price"))
            .get("total")
        )
        return total or Decimal("0.00")
