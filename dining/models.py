import random
import uuid
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator, RegexValidator
from django.db import models, transaction
from django.db.models import Case, IntegerField, Sum, Value, When
from django.utils import timezone

TWO_PLACES = Decimal("0.01")


def money(value) -> Decimal:
    """Round a monetary amount to cents."""
    return Decimal(value or 0).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _dated_number(prefix, model, field):
    """Generate a unique ``PREFIX-YYYYMMDD-NNNN`` value for ``model.field``."""
    while True:
        candidate = f"{prefix}-{timezone.localdate():%Y%m%d}-{random.randint(1, 9999):04d}"
        if not model.objects.filter(**{field: candidate}).exists():
            return candidate


# =============================================================================
# === USERS & ROLES ===========================================================
# =============================================================================

phone_regex = RegexValidator(
    regex=r'^\+?1?\d{9,15}$',
    message="Use international format: +999999999. Up to 15 digits."
)


class CustomUser(AbstractUser):
    class Roles(models.TextChoices):
        STAFF = 'staff', 'Staff / Reception'
        KITCHEN = 'kitchen', 'Kitchen'
        CUSTOMER = 'customer', 'Customer'

    role = models.CharField(max_length=20, choices=Roles.choices, default=Roles.CUSTOMER)
    phone_number = models.CharField(validators=[phone_regex], max_length=17, blank=True)
    created_by = models.ForeignKey(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='created_users'
    )

    def save(self, *args, **kwargs):
        if not self.is_superuser:
            self.is_staff = self.role == self.Roles.STAFF
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def is_kitchen(self) -> bool:
        return self.role == self.Roles.KITCHEN


# =============================================================================
# === TABLES ==================================================================
# =============================================================================

class TableType(models.Model):
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    price_multiplier = models.DecimalField(max_digits=4, decimal_places=2, default=Decimal('1.00'))
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class TableQuerySet(models.QuerySet):
    def available(self):
        return self.filter(status=Table.Status.AVAILABLE, is_active=True)

    def by_capacity(self, party_size):
        return self.filter(capacity__gte=party_size, min_capacity__lte=party_size)


class Table(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = 'available', 'Available'
        RESERVED = 'reserved', 'Reserved'
        OCCUPIED = 'occupied', 'Occupied'
        MAINTENANCE = 'maintenance', 'Maintenance'

    table_number = models.CharField(max_length=10, unique=True)
    name = models.CharField(max_length=255, blank=True)
    table_type = models.ForeignKey(
        TableType, null=True, blank=True, on_delete=models.SET_NULL, related_name='tables'
    )
    capacity = models.PositiveIntegerField(default=4, validators=[MinValueValidator(1), MaxValueValidator(20)])
    min_capacity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    location = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    position = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.AVAILABLE)
    is_active = models.BooleanField(default=True)

    # Denormalized copy of "has an order in an active status".
    # dining.reconciler is the only code that should write it.
    has_active_order = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TableQuerySet.as_manager()

    class Meta:
        ordering = ['table_number']

    def __str__(self):
        return f"Table {self.table_number}"

    def clean(self):
        if self.min_capacity and self.capacity and self.min_capacity > self.capacity:
            raise ValidationError({'min_capacity': "Minimum capacity cannot exceed capacity."})

    def save(self, *args, **kwargs):
        self.table_number = str(self.table_number).upper().strip()
        super().save(*args, **kwargs)

    def is_available(self) -> bool:
        return self.status == self.Status.AVAILABLE and self.is_active

    @property
    def active_order(self):
        from .reconciler import active_order
        return active_order(self.pk)

    @property
    def active_reservations(self):
        return self.reservations.filter(
            status__in=[Reservation.Status.PENDING, Reservation.Status.CONFIRMED]
        )


# =============================================================================
# === MENU ====================================================================
# =============================================================================

class MenuCategory(models.Model):
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    sort_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['sort_order', 'name']
        verbose_name_plural = 'menu categories'

    def __str__(self):
        return self.name


class MenuItemQuerySet(models.QuerySet):
    def available(self):
        return self.filter(is_available=True)


class MenuItem(models.Model):
    category = models.ForeignKey(
        MenuCategory, null=True, blank=True, on_delete=models.SET_NULL, related_name='items'
    )
    name = models.CharField(max_length=120)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    is_available = models.BooleanField(default=True)
    preparation_time = models.PositiveIntegerField(default=15, help_text="Minutes")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MenuItemQuerySet.as_manager()

    class Meta:
        ordering = ['category', 'name']

    def __str__(self):
        return self.name

    def toggle_availability(self):
        self.is_available = not self.is_available
        self.save(update_fields=['is_available', 'updated_at'])
        return self.is_available


# =============================================================================
# === TAX =====================================================================
# =============================================================================

class TaxSetting(models.Model):
    class Type(models.TextChoices):
        FREE = 'free', 'Tax free'
        MANUAL = 'manual', 'Manual rate'

    name = models.CharField(max_length=255)
    type = models.CharField(max_length=10, choices=Type.choices, default=Type.MANUAL)
    tax_rate = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Percentage, e.g. 8.50",
    )
    is_active = models.BooleanField(default=False)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} ({self.formatted_tax_rate})"

    @classmethod
    def get_active(cls):
        return cls.objects.filter(is_active=True).first()

    @classmethod
    def current_rate(cls) -> Decimal:
        """Active tax rate as a fraction; falls back to DEFAULT_TAX_RATE."""
        active = cls.get_active()
        if active is None:
            return Decimal(str(settings.DEFAULT_TAX_RATE))
        if active.type == cls.Type.FREE:
            return Decimal('0')
        return Decimal(active.tax_rate or 0) / Decimal('100')

    def calculate_tax(self, amount) -> Decimal:
        if self.type == self.Type.FREE:
            return money(0)
        return money(Decimal(amount) * Decimal(self.tax_rate or 0) / Decimal('100'))

    @property
    def formatted_tax_rate(self) -> str:
        if self.type == self.Type.FREE:
            return 'Free (0%)'
        return f"{self.tax_rate}%"

    @transaction.atomic
    def activate(self):
        TaxSetting.objects.filter(is_active=True).exclude(pk=self.pk).update(is_active=False)
        self.is_active = True
        self.save(update_fields=['is_active', 'updated_at'])

    def toggle_active(self):
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active', 'updated_at'])
        else:
            self.activate()
        return self.is_active


# =============================================================================
# === ORDERS ==================================================================
# =============================================================================

class OrderQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status__in=Order.ACTIVE_STATUSES)

    def by_status(self, status):
        return self.filter(status=status)

    def by_priority(self, priority):
        return self.filter(priority=priority)

    def priority_first(self):
        """High priority first, then oldest order_time."""
        return self.annotate(
            priority_rank=Case(
                When(priority=Order.Priority.HIGH, then=Value(0)),
                When(priority=Order.Priority.NORMAL, then=Value(1)),
                default=Value(2),
                output_field=IntegerField(),
            )
        ).order_by('priority_rank', 'order_time', 'id')


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PREPARING = 'preparing', 'Preparing'
        READY = 'ready', 'Ready'
        SERVED = 'served', 'Served'
        COMPLETED = 'completed', 'Completed'
        CANCELLED = 'cancelled', 'Cancelled'

    class Priority(models.TextChoices):
        LOW = 'low', 'Low'
        NORMAL = 'normal', 'Normal'
        HIGH = 'high', 'High'

    # Statuses that keep a table busy. completed/cancelled are terminal.
    ACTIVE_STATUSES = (Status.PENDING, Status.PREPARING, Status.READY, Status.SERVED)
    TERMINAL_STATUSES = (Status.COMPLETED, Status.CANCELLED)

    table = models.ForeignKey(Table, on_delete=models.CASCADE, related_name='orders')
    order_number = models.CharField(max_length=32, unique=True, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.NORMAL)
    special_instructions = models.TextField(blank=True)

    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))

    order_time = models.DateTimeField(default=timezone.now, db_index=True)
    ready_time = models.DateTimeField(null=True, blank=True)
    served_time = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name='created_orders'
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name='assigned_orders'
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name='customer_orders'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        ordering = ['-order_time']

    def __str__(self):
        return f"{self.order_number} ({self.get_status_display()})"

    def save(self, *args, **kwargs):
        if not self.order_number:
            self.order_number = _dated_number("ORD", Order, "order_number")
        super().save(*args, **kwargs)

    @property
    def is_active(self) -> bool:
        return self.status in self.ACTIVE_STATUSES

    def elapsed_minutes(self) -> int:
        return int((timezone.now() - self.order_time).total_seconds() // 60)

    def update_totals(self):
        """Recompute subtotal, tax and total from the order items."""
        self.subtotal = money(OrderItem.objects.filter(order=self).aggregate(total=Sum('total_price'))['total'])
        self.tax_amount = money(self.subtotal * TaxSetting.current_rate())
        self.total_amount = money(self.subtotal + self.tax_amount - (self.discount_amount or 0))
        self.save(update_fields=['subtotal', 'tax_amount', 'total_amount', 'updated_at'])


class OrderItem(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PREPARING = 'preparing', 'Preparing'
        READY = 'ready', 'Ready'

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    menu_item = models.ForeignKey(MenuItem, on_delete=models.PROTECT, related_name='order_items')
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    total_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    special_instructions = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    def __str__(self):
        return f"{self.quantity}x {self.menu_item.name}"

    def save(self, *args, **kwargs):
        if self.unit_price is None:
            self.unit_price = self.menu_item.price
        self.total_price = money(self.unit_price * self.quantity)
        super().save(*args, **kwargs)


# =============================================================================
# === BILLING =================================================================
# =============================================================================

class Bill(models.Model):
    class PaymentStatus(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'
        PARTIAL = 'partial', 'Partially paid'
        REFUNDED = 'refunded', 'Refunded'

    class PaymentMethod(models.TextChoices):
        CASH = 'cash', 'Cash'
        CARD = 'card', 'Card'
        UPI = 'upi', 'UPI'
        OTHER = 'other', 'Other'

    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='bill')
    table = models.ForeignKey(Table, on_delete=models.CASCADE, related_name='bills')
    bill_number = models.CharField(max_length=32, unique=True, blank=True)

    subtotal = models.DecimalField(max_digits=10, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    service_charge = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)

    payment_status = models.CharField(
        max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    payment_method = models.CharField(max_length=10, choices=PaymentMethod.choices, blank=True)
    paid_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))

    bill_time = models.DateTimeField(default=timezone.now)
    paid_time = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-bill_time']

    def __str__(self):
        return f"{self.bill_number} ({self.get_payment_status_display()})"

    def save(self, *args, **kwargs):
        if not self.bill_number:
            self.bill_number = _dated_number("BILL", Bill, "bill_number")
        super().save(*args, **kwargs)

    @property
    def remaining_amount(self) -> Decimal:
        return money(self.total_amount - self.paid_amount)

    @property
    def formatted_total(self) -> str:
        return f"${self.total_amount:,.2f}"


# =============================================================================
# === RESERVATIONS ============================================================
# =============================================================================

class Reservation(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        COMPLETED = 'completed', 'Completed'
        CANCELLED = 'cancelled', 'Cancelled'

    table = models.ForeignKey(Table, on_delete=models.CASCADE, related_name='reservations')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.SET_NULL, related_name='reservations'
    )
    customer_name = models.CharField(max_length=120)
    customer_email = models.EmailField(blank=True)
    customer_phone = models.CharField(max_length=20, blank=True)
    party_size = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    reservation_date = models.DateTimeField()
    end_time = models.DateTimeField(null=True, blank=True)
    duration_minutes = models.PositiveIntegerField(default=120)
    special_requests = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    is_walk_in = models.BooleanField(default=False)
    confirmation_code = models.CharField(max_length=8, unique=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['reservation_date']

    def __str__(self):
        return f"{self.customer_name} @ {self.table} ({self.reservation_date:%Y-%m-%d %H:%M})"

    def save(self, *args, **kwargs):
        if not self.pk:
            if not self.confirmation_code:
                self.confirmation_code = uuid.uuid4().hex[:8].upper()
            self.end_time = self.reservation_date + timedelta(minutes=int(self.duration_minutes))
        super().save(*args, **kwargs)

    def is_active(self) -> bool:
        return (
            self.status in (self.Status.PENDING, self.Status.CONFIRMED)
            and self.reservation_date > timezone.now()
        )

    def is_past(self) -> bool:
        return self.reservation_date < timezone.now()

    def confirm(self):
        self.status = self.Status.CONFIRMED
        self.confirmed_at = timezone.now()
        self.save(update_fields=['status', 'confirmed_at'])

    def cancel(self):
        self.status = self.Status.CANCELLED
        self.cancelled_at = timezone.now()
        self.save(update_fields=['status', 'cancelled_at'])
