"""
Order workflow: creation, status transitions, kitchen item updates, serving,
kitchen assignment and editing of open orders (lines, quantities, priority).

Table state is not touched here. Saving an order fires the post_save hook in
``dining.signals`` which reconciles the table.
"""

import logging

from django.db import transaction
from django.utils import timezone

from .exceptions import DiningError, InvalidStatusTransition, OrderNotEditable, TableUnavailable
from .models import CustomUser, MenuItem, Order, OrderItem, Table
from .reconciler import has_active_order
from .utils import broadcast_order_update

logger = logging.getLogger(__name__)

S = Order.Status

# Forward moves (steps may be skipped) and cancellation from any live status.
ALLOWED_TRANSITIONS = {
    S.PENDING: {S.PREPARING, S.READY, S.SERVED, S.CANCELLED},
    S.PREPARING: {S.READY, S.SERVED, S.CANCELLED},
    S.READY: {S.SERVED, S.COMPLETED, S.CANCELLED},
    S.SERVED: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}


def can_transition(current, target) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _menu_item(value):
    menu_item = value if isinstance(value, MenuItem) else MenuItem.objects.get(pk=value)
    if not menu_item.is_available:
        raise DiningError(f"{menu_item.name} is not available.")
    return menu_item


def _add_lines(order, items):
    for entry in items:
        OrderItem.objects.create(
            order=order,
            menu_item=_menu_item(entry["menu_item"]),
            quantity=int(entry.get("quantity", 1)),
            special_instructions=entry.get("special_instructions") or "",
        )


def _broadcast_later(order, event="order_updated"):
    transaction.on_commit(lambda: broadcast_order_update(order, event))


@transaction.atomic
def create_order(table, items, *, priority=Order.Priority.NORMAL, special_instructions="",
                 created_by=None, customer=None):
    """
    Open a new order on ``table``.

    ``items`` is a list of dicts with ``menu_item`` (instance or id),
    ``quantity`` and optional ``special_instructions``.
    """
    # serialises concurrent openings on the same table
    table = Table.objects.select_for_update().get(pk=table.pk)
    if not table.is_active:
        raise TableUnavailable(f"Table {table.table_number} is inactive.")
    if has_active_order(table.pk):
        raise TableUnavailable("Table already has an active order.")
    if not items:
        raise DiningError("An order needs at least one item.")

    order = Order.objects.create(
        table=table,
        priority=priority,
        special_instructions=special_instructions or "",
        status=Order.Status.PENDING,
        created_by=created_by,
        customer=customer,
    )

    _add_lines(order, items)
    order.update_totals()
    logger.info(f"🆕 Order {order.order_number} opened on table {table.table_number}")
    return order


def change_status(order, new_status):
    """Move ``order`` to ``new_status``, stamping ready/served times."""
    old_status = order.status
    if new_status == old_status:
        return order
    if not can_transition(old_status, new_status):
        raise InvalidStatusTransition(old_status, new_status)

    order.status = new_status
    now = timezone.now()
    if new_status == Order.Status.READY and not order.ready_time:
        order.ready_time = now
    if new_status == Order.Status.SERVED and not order.served_time:
        order.served_time = now
    order.save()

    logger.info(f"🔄 Order {order.order_number} status changed: {old_status} → {new_status}")
    return order


def mark_served(order):
    if order.status != Order.Status.READY:
        raise DiningError("Order must be ready before serving.")
    return change_status(order, Order.Status.SERVED)


@transaction.atomic
def update_item_status(order, item_id, status):
    """Update one kitchen item; the order turns ready once every item is ready."""
    item = order.items.get(pk=item_id)
    item.status = status
    item.save(update_fields=["status"])

    all_ready = not order.items.exclude(status=OrderItem.Status.READY).exists()
    if all_ready and order.status in (Order.Status.PENDING, Order.Status.PREPARING):
        change_status(order, Order.Status.READY)
    elif status == OrderItem.Status.PREPARING and order.status == Order.Status.PENDING:
        change_status(order, Order.Status.PREPARING)
    return item


def assign_order(order, user):
    if user.role != CustomUser.Roles.KITCHEN:
        raise DiningError("Order can only be assigned to kitchen staff.")
    order.assigned_to = user
    order.save(update_fields=["assigned_to", "updated_at"])
    logger.info(f"Order {order.order_number} assigned to {user.username}")
    return order


# -----------------------------------------------------------------------------
# Editing open orders
# -----------------------------------------------------------------------------
EDITABLE_STATUSES = (S.PENDING, S.PREPARING)


def _ensure_open(order):
    if not order.is_active:
        raise OrderNotEditable(f"Order {order.order_number} is {order.status} and can no longer be edited.")


def change_priority(order, priority):
    """Re-prioritise a live order; kitchen and reception screens are told on commit."""
    if priority not in Order.Priority.values:
        raise DiningError(f"Unknown priority '{priority}'.")
    _ensure_open(order)
    old_priority = order.priority
    if priority == old_priority:
        return order

    order.priority = priority
    order.save(update_fields=["priority", "updated_at"])
    logger.info(f"⚡ Order {order.order_number} priority changed: {old_priority} → {priority}")
    _broadcast_later(order, "priority_changed")
    return order


@transaction.atomic
def update_order(order, *, items=None, priority=None, special_instructions=None):
    """
    Edit a live order. ``items`` replaces every line and is only accepted
    while the order is still pending; totals are recomputed afterwards.
    Arguments left as None are not touched.
    """
    _ensure_open(order)
    if items is not None:
        if order.status != S.PENDING:
            raise OrderNotEditable("Items can only be changed while the order is pending.")
        if not items:
            raise DiningError("An order needs at least one item.")
        order.items.all().delete()
        _add_lines(order, items)
        order.update_totals()

    if special_instructions is not None:
        order.special_instructions = special_instructions
        order.save(update_fields=["special_instructions", "updated_at"])

    if priority is not None:
        change_priority(order, priority)

    logger.info(f"✏️ Order {order.order_number} edited")
    _broadcast_later(order)
    return order


@transaction.atomic
def add_item_to_table(table, menu_item, quantity=1, special_instructions="", *, created_by=None):
    """
    Quick booking: add a line to the table's open (pending or preparing) order,
    or open a new order when there is none. A pending line for the same menu
    item and instructions has its quantity increased instead.
    """
    table = Table.objects.select_for_update().get(pk=table.pk)
    if not table.is_active:
        raise TableUnavailable(f"Table {table.table_number} is inactive.")

    entry = {"menu_item": menu_item, "quantity": quantity, "special_instructions": special_instructions}
    order = (
        table.orders.filter(status__in=EDITABLE_STATUSES)
        .order_by("order_time", "id")
        .first()
    )
    if order is None:
        return create_order(table, [entry], created_by=created_by)

    menu_item = _menu_item(menu_item)
    line = order.items.filter(
        menu_item=menu_item,
        special_instructions=special_instructions or "",
        status=OrderItem.Status.PENDING,
    ).first()
    if line:
        line.quantity += int(quantity)
        line.save()
    else:
        _add_lines(order, [entry])
    order.update_totals()

    logger.info(f"➕ {quantity}x {menu_item.name} added to order {order.order_number}")
    _broadcast_later(order)
    return order


def _pending_line(order, item_id):
    if order.status not in EDITABLE_STATUSES:
        raise OrderNotEditable(f"Order {order.order_number} is {order.status}; its items are locked.")
    item = order.items.get(pk=item_id)
    if item.status != OrderItem.Status.PENDING:
        raise OrderNotEditable(f"{item.menu_item.name} is already {item.status} in the kitchen.")
    return item


@transaction.atomic
def change_item_quantity(order, item_id, quantity):
    quantity = int(quantity)
    if quantity < 1:
        raise DiningError("Quantity must be at least 1.")
    item = _pending_line(order, item_id)
    item.quantity = quantity
    item.save()
    order.update_totals()
    _broadcast_later(order)
    return item


@transaction.atomic
def remove_order_item(order, item_id):
    """
    Drop a line the kitchen has not started. Removing the last line deletes the
    order (the delete hook then frees the table) and returns None.
    """
    item = _pending_line(order, item_id)
    item.delete()

    if not OrderItem.objects.filter(order=order).exists():
        logger.info(f"🗑️ Order {order.order_number} removed with its last item")
        order.delete()
        return None

    order.update_totals()
    _broadcast_later(order)
    return order
