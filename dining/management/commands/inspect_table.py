from django.core.management.base import BaseCommand, CommandError

from dining.exceptions import TableNotFound
from dining.models import Order
from dining.reconciler import active_order, diagnose_table


class Command(BaseCommand):
    help = "Show a table's stored state next to the state derived from its orders."

    def add_arguments(self, parser):
        parser.add_argument("table_id", type=int)

    def handle(self, *args, **options):
        table_id = options["table_id"]
        try:
            d = diagnose_table(table_id)
        except TableNotFound as exc:
            raise CommandError(str(exc))

        self.stdout.write(f"Table {d.table_number} (ID: {d.table_id})")
        self.stdout.write(f"  status:            {d.status} (expected {d.expected_status})")
        self.stdout.write(f"  has_active_order:  {d.has_active_order} (expected {d.expected_has_active_order})")

        current = active_order(table_id)
        self.stdout.write(f"  active order:      {current.order_number if current else '-'}")

        orders = Order.objects.filter(table_id=table_id).order_by("order_time", "id")
        self.stdout.write(f"  orders ({orders.count()}):")
        for order in orders:
            self.stdout.write(f"    {order.order_number}  {order.status:<10} {order.order_time:%Y-%m-%d %H:%M}")

        served = [o.order_number for o in orders if o.status == Order.Status.SERVED]
        self.stdout.write(f"  served orders:     {', '.join(served) or '-'}")

        if d.consistent:
            self.stdout.write(self.style.SUCCESS("Consistent."))
        else:
            self.stdout.write(self.style.WARNING(
                f"Inconsistent. Run: manage.py reconcile_tables --table {d.table_id}"
            ))
