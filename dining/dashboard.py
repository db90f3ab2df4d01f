"""
Role-based dashboard payloads: reception (staff), kitchen and customer.
"""

from django.db.models import Sum
from django.utils import timezone

from .models import Bill, CustomUser, Order, Table

KITCHEN_STATUSES = (Order.Status.PENDING, Order.Status.PREPARING)
RECEPTION_STATUSES = (Order.Status.PENDING, Order.Status.PREPARING, Order.Status.READY)


def _order_row(order):
    return {
        "id": order.id,
        "order_number": order.order_number,
        "table_number": order.table.table_number,
        "status": order.status,
        "priority": order.priority,
        "special_instructions": order.special_instructions,
        "total_amount": str(order.total_amount),
        "total_items": sum(item.quantity for item in order.items.all()),
        "time_elapsed": order.elapsed_minutes(),
        "created_by": order.created_by.username if order.created_by else None,
        "assigned_to": order.assigned_to.username if order.assigned_to else None,
    }


def _status_counts(queryset):
    return {
        "pending_orders": queryset.filter(status=Order.Status.PENDING).count(),
        "preparing_orders": queryset.filter(status=Order.Status.PREPARING).count(),
        "ready_orders": queryset.filter(status=Order.Status.READY).count(),
    }


def kitchen_summary():
    """Kitchen queue: high priority first, oldest first within a priority."""
    queue = (
        Order.objects.filter(status__in=KITCHEN_STATUSES)
        .select_related("table", "created_by", "assigned_to")
        .prefetch_related("items__menu_item")
        .priority_first()
    )
    orders = []
    for order in queue:
        row = _order_row(order)
        row["items"] = [
            {
                "id": item.id,
                "menu_item_name": item.menu_item.name,
                "quantity": item.quantity,
                "status": item.status,
                "special_instructions": item.special_instructions,
            }
            for item in order.items.all()
        ]
        orders.append(row)

    live = Order.objects.filter(status__in=RECEPTION_STATUSES)
    stats = {
        **_status_counts(live),
        "total_active_orders": live.count(),
        "high_priority_orders": Order.objects.filter(
            status__in=KITCHEN_STATUSES, priority=Order.Priority.HIGH
        ).count(),
    }
    return {"orders": orders, "stats": stats, "timestamp": timezone.now().isoformat()}


def reception_summary():
    live = Order.objects.filter(status__in=RECEPTION_STATUSES)
    active_orders = [
        _order_row(o)
        for o in live.select_related("table", "created_by", "assigned_to")
        .prefetch_related("items")
        .priority_first()
    ]
    ready_orders = [
        {
            "id": o.id,
            "order_number": o.order_number,
            "table_number": o.table.table_number,
            "ready_time": o.ready_time.isoformat() if o.ready_time else None,
            "total_amount": str(o.total_amount),
        }
        for o in Order.objects.filter(status=Order.Status.READY).select_related("table").order_by("ready_time", "id")
    ]

    tables = []
    for table in Table.objects.all():
        current = table.active_order
        tables.append({
            "id": table.id,
            "table_number": table.table_number,
            "name": table.name,
            "capacity": table.capacity,
            "status": table.status,
            "has_active_order": table.has_active_order,
            "active_order": current.order_number if current else None,
        })

    today = timezone.localdate()
    revenue = (
        Bill.objects.filter(payment_status=Bill.PaymentStatus.PAID, paid_time__date=today)
        .aggregate(total=Sum("total_amount"))["total"]
    )
    stats = {
        **_status_counts(live),
        "total_active_orders": live.count(),
        "total_tables": Table.objects.count(),
        "occupied_tables": Table.objects.filter(status=Table.Status.OCCUPIED).count(),
        "available_tables": Table.objects.filter(status=Table.Status.AVAILABLE).count(),
        "high_priority_orders": live.filter(priority=Order.Priority.HIGH).count(),
        "daily_revenue": f"{revenue or 0:.2f}",
    }
    return {"active_orders": active_orders, "ready_orders": ready_orders, "tables": tables, "stats": stats}


def customer_summary(user):
    orders = (
        Order.objects.filter(customer=user)
        .select_related("table", "created_by", "assigned_to")
        .prefetch_related("items")
    )
    return {"orders": [_order_row(o) for o in orders]}


def summary_for(user):
    if user.is_superuser or user.role == CustomUser.Roles.STAFF:
        return {"role": CustomUser.Roles.STAFF.value, **reception_summary()}
    if user.role == CustomUser.Roles.KITCHEN:
        return {"role": CustomUser.Roles.KITCHEN.value, **kitchen_summary()}
    return {"role": CustomUser.Roles.CUSTOMER.value, **customer_summary(user)}
