import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import BillAlreadyExists, PaymentRejected
from .models import Bill, Order, money
from .orders import change_status

logger = logging.getLogger(__name__)


def service_charge_rate() -> Decimal:
    return Decimal(str(settings.SERVICE_CHARGE_RATE))


@transaction.atomic
def generate_bill(order):
    """Create the bill for ``order`` from its current totals."""
    if Bill.objects.filter(order=order).exists():
        raise BillAlreadyExists()

    service_charge = money(order.subtotal * service_charge_rate())
    try:
        # savepoint: a concurrent request may have billed the order since the check
        with transaction.atomic():
            bill = Bill.objects.create(
                order=order,
                table=order.table,
                subtotal=order.subtotal,
                tax_amount=order.tax_amount,
                service_charge=service_charge,
                discount_amount=order.discount_amount,
                total_amount=money(order.subtotal + order.tax_amount + service_charge - order.discount_amount),
            )
    except IntegrityError:
        raise BillAlreadyExists()
    logger.info(f"🧾 Bill {bill.bill_number} generated for order {order.order_number}: {bill.total_amount}")
    return bill


@transaction.atomic
def record_payment(bill, method, amount):
    """
    Record a (partial) payment against ``bill``. Once the bill is fully paid the
    order is completed, which frees the table.

    The bill row is locked and re-read first, so two payments racing on the
    same bill are applied one after the other. ``bill`` is refreshed in place.
    """
    try:
        amount = money(Decimal(str(amount)))
    except (InvalidOperation, TypeError, ValueError):
        raise PaymentRejected("Invalid payment amount.")

    if method not in Bill.PaymentMethod.values:
        raise PaymentRejected(f"Unknown payment method '{method}'.")

    locked = Bill.objects.select_for_update().get(pk=bill.pk)
    if locked.payment_status in (Bill.PaymentStatus.PAID, Bill.PaymentStatus.REFUNDED):
        raise PaymentRejected(f"Bill is already {locked.payment_status}.")
    if amount < 0:
        raise PaymentRejected("Payment amount must be positive.")
    if amount == 0 and locked.remaining_amount > 0:
        raise PaymentRejected("Payment amount must be positive.")
    if amount > locked.remaining_amount:
        raise PaymentRejected(f"Payment exceeds remaining amount {locked.remaining_amount}.")

    locked.paid_amount = money(locked.paid_amount + amount)
    locked.payment_method = method
    if locked.paid_amount >= locked.total_amount:
        locked.payment_status = Bill.PaymentStatus.PAID
        locked.paid_time = locked.paid_time or timezone.now()
    else:
        locked.payment_status = Bill.PaymentStatus.PARTIAL
    locked.save()
    bill.refresh_from_db()

    logger.info(f"💳 {method} payment of {amount} on {bill.bill_number} ({bill.payment_status})")

    order = Order.objects.select_for_update().get(pk=bill.order_id)
    if bill.payment_status == Bill.PaymentStatus.PAID and order.status in (
        Order.Status.READY, Order.Status.SERVED
    ):
        change_status(order, Order.Status.COMPLETED)
    return bill
