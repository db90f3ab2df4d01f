"""
Sales reporting over bills: totals for a date range, best sellers, a per-day
breakdown and the CSV export used by reception.
"""

import csv

from django.db.models import Count, Sum
from django.db.models.functions import TruncDate

from .models import Bill, Order, OrderItem

CSV_HEADER = [
    "Bill Number",
    "Order Number",
    "Table",
    "Bill Date",
    "Subtotal",
    "Tax Amount",
    "Service Charge",
    "Total Amount",
    "Paid Amount",
    "Payment Status",
    "Payment Method",
    "Items Count",
    "Items",
]


def _amount(value):
    return f"{value or 0:.2f}"


def _filter_bills(date_from=None, date_to=None, payment_status=None, table=None):
    bills = Bill.objects.all()
    if date_from:
        bills = bills.filter(bill_time__date__gte=date_from)
    if date_to:
        bills = bills.filter(bill_time__date__lte=date_to)
    if payment_status and payment_status != "all":
        bills = bills.filter(payment_status=payment_status)
    if table:
        bills = bills.filter(table_id=table)
    return bills


def bills_in_range(date_from=None, date_to=None, payment_status=None, table=None):
    """Bills filtered by bill date (inclusive), payment status and table, newest first."""
    return (
        _filter_bills(date_from, date_to, payment_status, table)
        .select_related("order", "table")
        .prefetch_related("order__items__menu_item")
        .order_by("-bill_time", "-id")
    )


def sales_report(date_from=None, date_to=None, payment_status=None, table=None, top=10):
    """
    Summary of sales for the period. Revenue, tax and service charge only count
    paid bills; ``total_bills`` counts every bill matching the filters.
    """
    bills = _filter_bills(date_from, date_to, payment_status, table)
    paid = bills.filter(payment_status=Bill.PaymentStatus.PAID)
    totals = paid.aggregate(
        revenue=Sum("total_amount"),
        tax=Sum("tax_amount"),
        service=Sum("service_charge"),
        count=Count("id"),
    )

    top_items = (
        OrderItem.objects.filter(order__bill__in=paid.values("pk"))
        .values("menu_item_id", "menu_item__name")
        .annotate(quantity=Sum("quantity"), revenue=Sum("total_price"))
        .order_by("-quantity", "menu_item__name")[:top]
    )
    daily = (
        paid.annotate(day=TruncDate("bill_time"))
        .values("day")
        .annotate(bills=Count("id"), revenue=Sum("total_amount"))
        .order_by("day")
    )

    completed = Order.objects.filter(status=Order.Status.COMPLETED)
    if date_from:
        completed = completed.filter(order_time__date__gte=date_from)
    if date_to:
        completed = completed.filter(order_time__date__lte=date_to)
    if table:
        completed = completed.filter(table_id=table)

    paid_count = totals["count"] or 0
    revenue = totals["revenue"] or 0
    return {
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
        "total_bills": bills.count(),
        "paid_bills": paid_count,
        "completed_orders": completed.count(),
        "total_sales": _amount(revenue),
        "tax_collected": _amount(totals["tax"]),
        "service_charges": _amount(totals["service"]),
        "average_bill": _amount(revenue / paid_count if paid_count else 0),
        "top_items": [
            {
                "menu_item_id": row["menu_item_id"],
                "name": row["menu_item__name"],
                "quantity": row["quantity"],
                "revenue": _amount(row["revenue"]),
            }
            for row in top_items
        ],
        "daily": [
            {"date": row["day"].isoformat(), "bills": row["bills"], "revenue": _amount(row["revenue"])}
            for row in daily
        ],
    }


def write_sales_csv(bills, stream):
    """Write one CSV row per bill to ``stream`` (a file or an HttpResponse)."""
    writer = csv.writer(stream)
    writer.writerow(CSV_HEADER)
    for bill in bills:
        items = list(bill.order.items.all())
        writer.writerow([
            bill.bill_number,
            bill.order.order_number,
            bill.table.table_number,
            bill.bill_time.strftime("%Y-%m-%d %H:%M:%S"),
            bill.subtotal,
            bill.tax_amount,
            bill.service_charge,
            bill.total_amount,
            bill.paid_amount,
            bill.payment_status,
            bill.payment_method or "N/A",
            sum(item.quantity for item in items),
            "; ".join(f"{item.menu_item.name} x{item.quantity}" for item in items),
        ])
    return stream
