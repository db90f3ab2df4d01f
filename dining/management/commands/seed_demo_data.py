from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from dining.models import CustomUser, MenuCategory, MenuItem, Table, TableType, TaxSetting


TABLE_TYPES = [
    ("Standard", Decimal("1.00")),
    ("Booth", Decimal("1.10")),
    ("Patio", Decimal("1.05")),
]

MENU = {
    "Starters": [("Spring Rolls", "4.50"), ("Soup of the Day", "5.00"), ("Fries", "3.99")],
    "Mains": [("Beef Burger", "9.99"), ("Margherita Pizza", "12.99"), ("Grilled Chicken", "13.50")],
    "Drinks": [("Lemonade", "2.50"), ("Espresso", "2.20"), ("Iced Tea", "2.80")],
}

USERS = [
    ("reception", CustomUser.Roles.STAFF),
    ("chef", CustomUser.Roles.KITCHEN),
    ("guest", CustomUser.Roles.CUSTOMER),
]


class Command(BaseCommand):
    help = 'Seed the database with demo tables, menu, tax setting and users'

    def add_arguments(self, parser):
        parser.add_argument("--tables", type=int, default=8, help="Number of tables to create.")

    @transaction.atomic
    def handle(self, *args, **options):
        types = [
            TableType.objects.get_or_create(name=name, defaults={"price_multiplier": multiplier})[0]
            for name, multiplier in TABLE_TYPES
        ]

        for i in range(1, options["tables"] + 1):
            Table.objects.get_or_create(
                table_number=f"T{i}",
                defaults={
                    "name": f"Table {i}",
                    "table_type": types[i % len(types)],
                    "capacity": 2 if i % 3 == 0 else 4,
                    "position": {"x": (i - 1) % 4, "y": (i - 1) // 4},
                },
            )

        for sort_order, (category_name, items) in enumerate(MENU.items()):
            category, _ = MenuCategory.objects.get_or_create(
                name=category_name, defaults={"sort_order": sort_order}
            )
            for name, price in items:
                MenuItem.objects.get_or_create(
                    name=name, category=category, defaults={"price": Decimal(price)}
                )

        if not TaxSetting.objects.exists():
            TaxSetting.objects.create(
                name="Standard VAT", type=TaxSetting.Type.MANUAL, tax_rate=Decimal("10.00")
            ).activate()

        for username, role in USERS:
            if not CustomUser.objects.filter(username=username).exists():
                CustomUser.objects.create_user(username=username, password='password', role=role)

        self.stdout.write(self.style.SUCCESS(
            f"Seeded {Table.objects.count()} tables, {MenuItem.objects.count()} menu items "
            f"and {CustomUser.objects.count()} users."
        ))
