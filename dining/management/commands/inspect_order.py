from django.core.management.base import BaseCommand, CommandError

from dining.models import Order
from dining.reconciler import active_order, has_active_order


class Command(BaseCommand):
    help = "Show an order together with the active-order state of its table."

    def add_arguments(self, parser):
        parser.add_argument("order_number")

    def handle(self, *args, **options):
        try:
            order = Order.objects.select_related("table").get(order_number=options["order_number"])
        except Order.DoesNotExist:
            raise CommandError(f"Order {options['order_number']} not found.")

        table = order.table
        self.stdout.write(f"Order {order.order_number} (ID: {order.pk})")
        self.stdout.write(f"  status:   {order.status}")
        self.stdout.write(f"  priority: {order.priority}")
        self.stdout.write(f"  total:    {order.total_amount}")
        self.stdout.write(f"Table {table.table_number} (ID: {table.pk})")
        self.stdout.write(f"  status:           {table.status}")
        self.stdout.write(f"  has_active_order: {table.has_active_order} (derived {has_active_order(table.pk)})")

        current = active_order(table.pk)
        self.stdout.write(f"  active order:     {current.order_number if current else '-'}")
        for other in table.orders.order_by("order_time", "id"):
            marker = "*" if other.pk == order.pk else " "
            self.stdout.write(f"   {marker} {other.order_number}  {other.status}")
