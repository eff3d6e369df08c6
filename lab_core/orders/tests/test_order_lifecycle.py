import itertools
from decimal import Decimal

import pytest
from django.utils import timezone

from lab_core.common.api.exceptions import InvalidTransition, NotFound, PreconditionFailed
from lab_core.catalog.models import LabTest
from lab_core.common.events import ORDER_STATUS_CHANGED
from lab_core.orders.models import OrderItemStatus, OrderItemType, OrderStatus, OrderStatusHistory
from lab_core.orders.selectors import OrderSelector
from lab_core.orders.services import OrderService
from lab_core.orders.transitions import ORDER_TRANSITIONS

pytestmark = pytest.mark.django_db


HAPPY_PATH = [
    OrderStatus.COLLECTED,
    OrderStatus.RECEIVED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.COMPLETED,
]


def _walk_to(order_id, target, actor):
    """Move an order from PENDING to `target` along the happy path."""
    if target == OrderStatus.PENDING:
        return
    if target == OrderStatus.SCHEDULED:
        OrderService.update_order_status(order_id=order_id, new_status=target, changed_by=actor)
        return
    if target == OrderStatus.CANCELLED:
        OrderService.update_order_status(order_id=order_id, new_status=target, changed_by=actor, reason="test")
        return
    for status in HAPPY_PATH:
        OrderService.update_order_status(order_id=order_id, new_status=status, changed_by=actor)
        if status == target:
            return


def test_create_order_expands_panels_and_snapshots_prices(make_order, hb_test, lipid_panel, doctor_id):
    order, items = make_order(test_ids=[hb_test.id], panel_ids=[lipid_panel.id], created_by=doctor_id)

    assert order.status == OrderStatus.PENDING
    assert order.order_number.startswith("LO" + timezone.localdate().strftime("%Y%m%d"))
    assert len(order.order_number) == 15

    assert len(items) == 3
    by_code = {i.test_code: i for i in items}
    assert by_code["HB"].item_type == OrderItemType.TEST
    assert by_code["HB"].panel_id is None
    assert by_code["CHOL"].item_type == OrderItemType.PANEL
    assert by_code["TG"].panel_id == lipid_panel.id
    assert all(i.status == OrderItemStatus.PENDING for i in items)
    assert by_code["HB"].unit_price == Decimal("40000.00")
    assert OrderSelector.order_total(order=order) == Decimal("105000.00")

    history = list(OrderSelector.order_history(order_id=order.id))
    assert len(history) == 1
    assert history[0].previous_status == ""
    assert history[0].new_status == OrderStatus.PENDING


def test_order_numbers_are_sequential_per_day(make_order, hb_test):
    first, _ = make_order(test_ids=[hb_test.id])
    second, _ = make_order(test_ids=[hb_test.id])
    assert int(second.order_number[-5:]) == int(first.order_number[-5:]) + 1


def test_create_order_requires_tests(make_order):
    with pytest.raises(PreconditionFailed):
        make_order(test_ids=[], panel_ids=[])


def test_create_order_unknown_test_is_not_found(make_order):
    with pytest.raises(NotFound):
        make_order(test_ids=["00000000-0000-0000-0000-000000000000"])


def test_happy_path_stamps_each_timestamp(hb_order, doctor_id):
    order, _ = hb_order
    for status in HAPPY_PATH:
        OrderService.update_order_status(order_id=order.id, new_status=status, changed_by=doctor_id)

    order.refresh_from_db()
    assert order.status == OrderStatus.COMPLETED
    assert order.specimen_collected_at is not None
    assert order.specimen_received_at is not None
    assert order.processing_started_at is not None
    assert order.completed_at is not None
    assert OrderStatusHistory.objects.filter(order=order).count() == 1 + len(HAPPY_PATH)


@pytest.mark.parametrize(
    "current,target",
    list(itertools.product(list(OrderStatus.values), list(OrderStatus.values))),
)
def test_transition_table_is_enforced(make_order, hb_test, doctor_id, current, target):
    order, _ = make_order(test_ids=[hb_test.id])
    _walk_to(order.id, current, doctor_id)
    order.refresh_from_db()
    assert order.status == current
    before = OrderStatusHistory.objects.filter(order=order).count()

    if ORDER_TRANSITIONS.can_transition(current, target):
        OrderService.update_order_status(order_id=order.id, new_status=target, changed_by=doctor_id)
        order.refresh_from_db()
        assert order.status == target
        assert OrderStatusHistory.objects.filter(order=order).count() == before + 1
    else:
        with pytest.raises(InvalidTransition) as exc:
            OrderService.update_order_status(order_id=order.id, new_status=target, changed_by=doctor_id)
        assert exc.value.current_state == current
        assert exc.value.attempted_state == target
        order.refresh_from_db()
        assert order.status == current
        assert OrderStatusHistory.objects.filter(order=order).count() == before


def test_history_records_actor_and_reason(hb_order, doctor_id):
    order, _ = hb_order
    OrderService.update_order_status(
        order_id=order.id, new_status=OrderStatus.SCHEDULED, changed_by=doctor_id, reason="Fasting draw 07:00"
    )
    last = OrderSelector.order_history(order_id=order.id).last()
    assert last.previous_status == OrderStatus.PENDING
    assert last.new_status == OrderStatus.SCHEDULED
    assert last.changed_by == doctor_id
    assert last.reason == "Fasting draw 07:00"

    last.reason = "rewritten"
    with pytest.raises(ValueError):
        last.save()


def test_status_change_publishes_event(hb_order, doctor_id, captured_events):
    seen = captured_events(ORDER_STATUS_CHANGED)
    order, _ = hb_order
    OrderService.update_order_status(order_id=order.id, new_status=OrderStatus.COLLECTED, changed_by=doctor_id)

    assert seen[-1]["order_id"] == str(order.id)
    assert seen[-1]["previous_status"] == OrderStatus.PENDING
    assert seen[-1]["new_status"] == OrderStatus.COLLECTED


def test_cancel_order_stamps_and_cancels_items(hb_order, doctor_id):
    order, item = hb_order
    OrderService.cancel_order(order_id=order.id, cancelled_by=doctor_id, reason="Duplicate order")

    order.refresh_from_db()
    item.refresh_from_db()
    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_at is not None
    assert order.cancelled_by == doctor_id
    assert order.cancellation_reason == "Duplicate order"
    assert item.status == OrderItemStatus.CANCELLED


@pytest.mark.parametrize("terminal", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
def test_cancel_refuses_terminal_orders(hb_order, doctor_id, terminal):
    order, _ = hb_order
    _walk_to(order.id, terminal, doctor_id)

    with pytest.raises(InvalidTransition):
        OrderService.cancel_order(order_id=order.id, cancelled_by=doctor_id, reason="too late")


def test_update_unknown_order_is_not_found(doctor_id):
    with pytest.raises(NotFound):
        OrderService.update_order_status(
            order_id="6f1c1c55-0000-4000-8000-000000000000",
            new_status=OrderStatus.CANCELLED,
            changed_by=doctor_id,
        )


def test_create_order_keeps_one_item_per_test(make_order, hb_test, lipid_panel):
    chol = LabTest.objects.get(code="CHOL")
    order, items = make_order(test_ids=[hb_test.id, hb_test.id, chol.id], panel_ids=[lipid_panel.id])

    by_code = {i.test_code: i for i in items}
    assert sorted(by_code) == ["CHOL", "HB", "TG"]
    assert len(items) == 3
    assert by_code["CHOL"].item_type == OrderItemType.TEST
    assert by_code["CHOL"].panel_id is None
    assert by_code["TG"].panel_id == lipid_panel.id
    assert order.items.count() == 3


def test_order_lookup_by_number(hb_order):
    order, _ = hb_order
    assert OrderSelector.get_order_by_number(order_number=order.order_number) == order

    with pytest.raises(NotFound):
        OrderSelector.get_order_by_number(order_number="LO2000010100001")
