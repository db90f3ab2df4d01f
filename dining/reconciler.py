"""
dining/reconciler.py
=====================================================================================
Keeps ``Table.has_active_order`` and ``Table.status`` in line with the table's
orders.

A table "has an active order" when at least one of its orders is pending,
preparing, ready or served. The flag on the table row is only a cached copy of
that fact, so it can drift (manual edits, queryset updates, crashes between
writes). Every caller that needs to repair it goes through ``reconcile_table``:
the management commands, the admin action, the API and the order signals.
=====================================================================================
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.db import DatabaseError, transaction

from .exceptions import DiningError, TableNotFound, TableUnavailable
from .models import Order, Table

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")


@dataclass(frozen=True)
class Diagnosis:
    table_id: int
    table_number: str
    has_active_order: bool
    status: str
    expected_has_active_order: bool
    expected_status: str

    @property
    def consistent(self) -> bool:
        return (
            self.has_active_order == self.expected_has_active_order
            and self.status == self.expected_status
        )


@dataclass(frozen=True)
class RepairResult:
    table_id: int
    table_number: str
    changed: bool
    previous_has_active_order: bool
    previous_status: str
    new_has_active_order: bool
    new_status: str


@dataclass
class SweepResult:
    tables_scanned: int = 0
    tables_fixed: int = 0
    repairs: list = field(default_factory=list)
    failures: list = field(default_factory=list)  # [(table_id, exception)]

    @property
    def ok(self) -> bool:
        return not self.failures


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------
def _active_orders(table_id):
    return Order.objects.filter(table_id=table_id, status__in=Order.ACTIVE_STATUSES)


def has_active_order(table_id) -> bool:
    """True if any order of the table is in an active status."""
    return _active_orders(table_id).exists()


def active_order(table_id):
    """
    The order a table is currently working on, or None.

    A table can hold several active orders at once (a served order plus a new
    pending one is common), so the oldest wins: earliest ``order_time``, then
    the lowest id.
    """
    return _active_orders(table_id).order_by("order_time", "id").first()


def preserved_statuses() -> frozenset:
    return frozenset(getattr(settings, "TABLE_PRESERVED_STATUSES", ()))


def expected_status(current_status, active) -> str:
    if active:
        return Table.Status.OCCUPIED
    # reserved / maintenance are owned by other workflows
    if current_status in preserved_statuses():
        return current_status
    return Table.Status.AVAILABLE


def _table_id(table):
    return table.pk if isinstance(table, Table) else table


def _diagnose(table) -> Diagnosis:
    active = has_active_order(table.pk)
    return Diagnosis(
        table_id=table.pk,
        table_number=table.table_number,
        has_active_order=table.has_active_order,
        status=table.status,
        expected_has_active_order=active,
        expected_status=expected_status(table.status, active),
    )


def diagnose_table(table) -> Diagnosis:
    """Compare stored and derived state without writing anything."""
    table_id = _table_id(table)
    try:
        row = Table.objects.get(pk=table_id)
    except Table.DoesNotExist:
        raise TableNotFound(table_id)
    return _diagnose(row)


# -----------------------------------------------------------------------------
# Repair
# -----------------------------------------------------------------------------
def reconcile_table(table) -> RepairResult:
    """
    Recompute the active-order state of one table and fix the stored fields.

    ``table`` may be a Table instance or a primary key. The row is locked for
    the duration of the read-compare-write so a concurrent order update cannot
    interleave with it. Raises TableNotFound if the table does not exist.
    """
    table_id = _table_id(table)

    with transaction.atomic():
        try:
            row = Table.objects.select_for_update().get(pk=table_id)
        except Table.DoesNotExist:
            raise TableNotFound(table_id)

        diagnosis = _diagnose(row)
        changed = not diagnosis.consistent
        if changed:
            row.has_active_order = diagnosis.expected_has_active_order
            row.status = diagnosis.expected_status
            row.save(update_fields=["has_active_order", "status", "updated_at"])
            audit_logger.info(
                f"Table {row.table_number} (ID: {row.pk}) reconciled: "
                f"has_active_order {diagnosis.has_active_order} -> {row.has_active_order}, "
                f"status {diagnosis.status} -> {row.status}"
            )

    if changed and isinstance(table, Table):
        table.has_active_order = row.has_active_order
        table.status = row.status

    return RepairResult(
        table_id=row.pk,
        table_number=row.table_number,
        changed=changed,
        previous_has_active_order=diagnosis.has_active_order,
        previous_status=diagnosis.status,
        new_has_active_order=row.has_active_order,
        new_status=row.status,
    )


def release_table(table):
    """
    Hand a reserved table back to the floor. Refused while the table has an
    active order, since the order owns the table until it is finished.
    """
    table_id = _table_id(table)

    with transaction.atomic():
        try:
            row = Table.objects.select_for_update().get(pk=table_id)
        except Table.DoesNotExist:
            raise TableNotFound(table_id)
        if row.status != Table.Status.RESERVED:
            raise DiningError(f"Table {row.table_number} is not reserved.")
        if has_active_order(row.pk):
            raise TableUnavailable(f"Cannot release table {row.table_number} with an active order.")

        row.status = Table.Status.AVAILABLE
        row.has_active_order = False
        row.save(update_fields=["status", "has_active_order", "updated_at"])
        audit_logger.info(f"Table {row.table_number} (ID: {row.pk}) released")

    if isinstance(table, Table):
        table.status = row.status
        table.has_active_order = row.has_active_order
    return row


def reconcile_all() -> SweepResult:
    """
    Reconcile every table. A database error on one table is recorded in
    ``failures`` and the sweep moves on to the next one.
    """
    result = SweepResult()

    for table_id in Table.objects.order_by("pk").values_list("pk", flat=True):
        try:
            repair = reconcile_table(table_id)
        except TableNotFound:
            # deleted while the sweep was running
            logger.info(f"Table {table_id} disappeared during sweep, skipped.")
            continue
        except DatabaseError as exc:
            result.tables_scanned += 1
            result.failures.append((table_id, exc))
            logger.exception(f"Reconciliation failed for table {table_id}: {exc}")
            continue

        result.tables_scanned += 1
        if repair.changed:
            result.tables_fixed += 1
            result.repairs.append(repair)

    logger.info(
        f"Table sweep finished: scanned={result.tables_scanned} "
        f"fixed={result.tables_fixed} failed={len(result.failures)}"
    )
    return result
