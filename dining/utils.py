from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync
import logging

logger = logging.getLogger(__name__)

KITCHEN_GROUP = "kitchen_display"
RECEPTION_GROUP = "reception"


def customer_group(table_id):
    return f"customer_display_{table_id}"


def _group_send(group, message):
    layer = get_channel_layer()
    if not layer:
        logger.warning("No channel layer configured; broadcast skipped.")
        return False
    async_to_sync(layer.group_send)(group, message)
    return True


def broadcast_order_update(order, event="order_updated"):
    """
    Push an order event to the kitchen display, the reception screen and the
    customer display of the order's table.

    Args:
        order (Order): the order that changed.
        event (str): "order_created", "order_updated", ...
    """
    from .serializers import serialize_order_for_channels

    try:
        data = {"event": event, "order": serialize_order_for_channels(order)}
        message = {"type": "order_update", "data": data}
        _group_send(KITCHEN_GROUP, message)
        _group_send(RECEPTION_GROUP, message)
        _group_send(customer_group(order.table_id), message)
        logger.debug(f"Broadcasted {event} for order {order.order_number}.")
    except Exception as exc:
        logger.error(f"Order broadcast failed: {exc}", exc_info=True)


def broadcast_table_update(repair):
    """Tell reception screens that a table's flag or status was repaired."""
    try:
        data = {
            "event": "table_reconciled",
            "table": {
                "id": repair.table_id,
                "table_number": repair.table_number,
                "status": str(repair.new_status),
                "has_active_order": repair.new_has_active_order,
            },
        }
        _group_send(RECEPTION_GROUP, {"type": "table_update", "data": data})
    except Exception as exc:
        logger.error(f"Table broadcast failed: {exc}", exc_info=True)
