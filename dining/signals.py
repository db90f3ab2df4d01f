import logging
from django.conf import settings
from django.db import transaction
from django.db.models.signals import pre_save, post_save, post_delete
from django.dispatch import receiver

from .exceptions import TableNotFound
from .models import Order
from .reconciler import reconcile_table
from .utils import broadcast_order_update, broadcast_table_update
# -----------------------------------------------------------------------------
# Logger
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)


def _reconcile_enabled():
    return getattr(settings, "TABLE_RECONCILE_ON_ORDER_SAVE", True)


def _reconcile_for(table_id):
    try:
        repair = reconcile_table(table_id)
    except TableNotFound:
        # the table is being deleted together with its orders
        return None
    if repair.changed:
        transaction.on_commit(lambda: broadcast_table_update(repair))
    return repair

# -----------------------------------------------------------------------------
# Store previous Order status and table
# -----------------------------------------------------------------------------
@receiver(pre_save, sender=Order)
def store_previous_order_status(sender, instance, **kwargs):
    instance._previous_status = None
    instance._previous_table_id = None
    if instance.pk:
        row = Order.objects.filter(pk=instance.pk).values_list("status", "table_id").first()
        if row:
            instance._previous_status, instance._previous_table_id = row

# -----------------------------------------------------------------------------
# Order status change hook: table reconciliation + realtime broadcast
# -----------------------------------------------------------------------------
@receiver(post_save, sender=Order)
def on_order_saved(sender, instance, created, raw=False, **kwargs):
    if raw:
        return  # loaddata

    previous_status = getattr(instance, "_previous_status", None)
    previous_table_id = getattr(instance, "_previous_table_id", None)
    moved = not created and previous_table_id is not None and previous_table_id != instance.table_id
    if not created and not moved and previous_status == instance.status:
        return

    if _reconcile_enabled():
        if moved:
            # the table it left may have no active order any more
            _reconcile_for(previous_table_id)
        _reconcile_for(instance.table_id)

    event = "order_created" if created else "order_updated"
    transaction.on_commit(lambda: broadcast_order_update(instance, event))


@receiver(post_delete, sender=Order)
def on_order_deleted(sender, instance, **kwargs):
    if _reconcile_enabled():
        _reconcile_for(instance.table_id)
