"""
Repair the stored active-order flag and status of tables.

    python manage.py reconcile_tables            # every table
    python manage.py reconcile_tables --table 7  # one table
    python manage.py reconcile_tables --dry-run  # report only
"""

from django.core.management.base import BaseCommand, CommandError

from dining.exceptions import TableNotFound
from dining.models import Table
from dining.reconciler import diagnose_table, reconcile_all, reconcile_table


class Command(BaseCommand):
    help = "Recompute has_active_order/status for tables from their orders and fix drift."

    def add_arguments(self, parser):
        parser.add_argument("--table", type=int, dest="table_id", help="Only reconcile this table id.")
        parser.add_argument(
            "--dry-run", action="store_true",
            help="Show what would change without writing anything.",
        )

    def handle(self, *args, **options):
        table_id = options["table_id"]
        dry_run = options["dry_run"]

        if table_id is not None:
            self._single(table_id, dry_run)
        elif dry_run:
            self._dry_sweep()
        else:
            self._sweep()

    # -------------------------------------------------------------------------
    def _line(self, table_number, before_flag, before_status, after_flag, after_status, changed):
        marker = self.style.WARNING("FIXED") if changed else self.style.SUCCESS("OK")
        self.stdout.write(
            f"[{marker}] Table {table_number}: "
            f"has_active_order {before_flag} -> {after_flag}, status {before_status} -> {after_status}"
        )

    def _single(self, table_id, dry_run):
        try:
            if dry_run:
                d = diagnose_table(table_id)
                self._line(d.table_number, d.has_active_order, d.status,
                           d.expected_has_active_order, d.expected_status, not d.consistent)
                fixed = 0 if d.consistent else 1
                self.stdout.write(f"Scanned 1 tables, would fix {fixed}.")
                return
            repair = reconcile_table(table_id)
        except TableNotFound as exc:
            raise CommandError(str(exc))

        self._line(repair.table_number, repair.previous_has_active_order, repair.previous_status,
                   repair.new_has_active_order, repair.new_status, repair.changed)
        self.stdout.write(self.style.SUCCESS(f"Scanned 1 tables, fixed {int(repair.changed)}."))

    def _dry_sweep(self):
        scanned = would_fix = 0
        for table_id in Table.objects.order_by("pk").values_list("pk", flat=True):
            try:
                d = diagnose_table(table_id)
            except TableNotFound:
                continue
            scanned += 1
            if not d.consistent:
                would_fix += 1
                self._line(d.table_number, d.has_active_order, d.status,
                           d.expected_has_active_order, d.expected_status, True)
        self.stdout.write(f"Scanned {scanned} tables, would fix {would_fix}.")

    def _sweep(self):
        result = reconcile_all()
        for repair in result.repairs:
            self._line(repair.table_number, repair.previous_has_active_order, repair.previous_status,
                       repair.new_has_active_order, repair.new_status, True)
        for table_id, exc in result.failures:
            self.stderr.write(self.style.ERROR(f"Table {table_id} failed: {exc}"))

        self.stdout.write(self.style.SUCCESS(
            f"Scanned {result.tables_scanned} tables, fixed {result.tables_fixed}."
        ))
        if not result.ok:
            raise CommandError(f"{len(result.failures)} table(s) could not be reconciled.")
