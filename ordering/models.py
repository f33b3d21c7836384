from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone
from decimal import Decimal

from .constants import ALLOWED_CURRENCY_CODES, default_currency, normalize_currency
from .money import Money


# --- Choice constants ---

class FulfillmentType(models.TextChoices):
    DINE_IN = 'dine_in', 'Dine In'
    TAKEAWAY = 'takeaway', 'Takeaway'
    DELIVERY = 'delivery', 'Delivery'


class OrderStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    CONFIRMED = 'confirmed', 'Confirmed'
    PREPARING = 'preparing', 'Preparing'
    READY = 'ready', 'Ready'
    SERVED = 'served', 'Served'
    DELIVERED = 'delivered', 'Delivered'
    BILL_REQUESTED = 'bill_requested', 'Bill Requested'
    PAID = 'paid', 'Paid'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class ItemStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PREPARING = 'preparing', 'Preparing'
    READY = 'ready', 'Ready'
    SERVED = 'served', 'Served'


class PaymentStatus(models.TextChoices):
    UNPAID = 'unpaid', 'Unpaid'
    PAID = 'paid', 'Paid'


class PaymentMethod(models.TextChoices):
    CASH = 'cash', 'Cash'
    CARD = 'card', 'Card'
    WALLET = 'wallet', 'Wallet'


class WaiterCallType(models.TextChoices):
    WAITER = 'waiter', 'Waiter'
    BILL = 'bill', 'Bill'
    HELP = 'help', 'Help'


class WaiterCallStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'


TERMINAL_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.CANCELLED)


# --- Models ---

class Customer(models.Model):
    """Ordering customer; identity is owned by the session collaborator."""
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'ordering_customer'
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.name} ({self.phone})' if self.phone else self.name


class Venue(models.Model):
    """A venue and the billing policy its orders are priced with."""
    slug = models.SlugField(unique=True, max_length=100)
    name = models.CharField(max_length=255)
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    currency = models.CharField(max_length=3, default=default_currency)
    tax_percent = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal('0'),
        help_text='Tax percentage applied on subtotal (e.g. 8 for 8%%)'
    )
    service_charge_percent = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        help_text='Service charge percentage applied on subtotal; empty for none'
    )
    delivery_base_fee = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal('0')
    )
    minimum_order_amount = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal('0'),
        help_text='Minimum subtotal for delivery orders'
    )
    spending_limit = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True,
        help_text='Informational ceiling for an open tab; never blocks ordering'
    )
    is_open = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'ordering_venue'
        ordering = ['name']

    def __str__(self):
        return self.name

    def clean(self):
        self.currency = normalize_currency(self.currency)
        if self.currency not in ALLOWED_CURRENCY_CODES:
            raise DjangoValidationError({'currency': f'Unsupported currency {self.currency!r}'})

    def policy(self):
        from .billing import VenuePolicy

        return VenuePolicy.from_venue(self)


class Order(models.Model):
    order_number = models.CharField(max_length=32, unique=True)
    venue = models.ForeignKey(
        Venue, on_delete=models.PROTECT, related_name='orders'
    )
    customer = models.ForeignKey(
        Customer, on_delete=models.PROTECT, related_name='orders'
    )
    fulfillment_type = models.CharField(
        max_length=20, choices=FulfillmentType.choices
    )
    table_number = models.CharField(max_length=64, blank=True, null=True)
    delivery_address = models.TextField(blank=True, null=True)
    customer_contact = models.CharField(max_length=255, blank=True, null=True)
    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING
    )
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID
    )
    payment_method = models.CharField(
        max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH
    )
    currency = models.CharField(max_length=3)
    # Pricing inputs
    tip_percent = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True
    )
    tip_amount = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True,
        help_text='Explicit tip; wins over tip_percent'
    )
    discount_amount = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )
    split_count = models.PositiveIntegerField(null=True, blank=True)
    # Derived pricing; written only by the billing calculator
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    tip = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    service_charge = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    delivery_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    per_head = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    notes = models.TextField(blank=True)
    cancel_reason = models.TextField(blank=True)
    estimated_minutes = models.PositiveIntegerField(default=0)
    idempotency_key = models.CharField(max_length=64, blank=True, null=True)
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'ordering_order'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['venue', 'table_number'],
                condition=Q(fulfillment_type='dine_in') & ~Q(
                    status__in=['paid', 'completed', 'cancelled']
                ),
                name='unique_active_dine_in_table',
            ),
            models.UniqueConstraint(
                fields=['customer', 'idempotency_key'],
                condition=Q(idempotency_key__isnull=False),
                name='unique_customer_idempotency_key',
            ),
        ]
        indexes = [
            models.Index(fields=['customer', 'venue', 'status']),
        ]

    def __str__(self):
        return f'Order {self.order_number} ({self.status})'

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def money(self, value):
        return Money(value if value is not None else Decimal('0'), self.currency)

    @property
    def pricing(self):
        from .billing import BillBreakdown

        return BillBreakdown.from_order(self)


class OrderItem(models.Model):
    order = models.ForeignKey(
        Order, on_delete=models.CASCADE, related_name='items'
    )
    item_key = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField(default=1)
    # [{"option_name": ..., "choice_name": ..., "price_modifier": "2.50"}, ...]
    options = models.JSONField(default=list, blank=True)
    status = models.CharField(
        max_length=20, choices=ItemStatus.choices, default=ItemStatus.PENDING
    )
    note = models.TextField(blank=True)
    line_total = models.DecimalField(max_digits=12, decimal_places=2, editable=False)
    position = models.PositiveIntegerField(default=0)
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'ordering_order_item'
        ordering = ['order', 'position', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'item_key'],
                name='unique_order_item_key',
            ),
        ]

    def __str__(self):
        return f'{self.quantity} x {self.product_name} (Order {self.order_id})'

    @property
    def modifier_total(self):
        return sum(
            (Decimal(str(o.get('price_modifier') or '0')) for o in self.options or []),
            Decimal('0'),
        )

    def compute_line_total(self):
        return (Decimal(str(self.unit_price)) + self.modifier_total) * int(self.quantity)

    def save(self, *args, **kwargs):
        self.line_total = self.compute_line_total()
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'line_total' not in update_fields:
            kwargs['update_fields'] = list(update_fields) + ['line_total']
        super().save(*args, **kwargs)


class WaiterCall(models.Model):
    venue = models.ForeignKey(
        Venue, on_delete=models.CASCADE, related_name='waiter_calls'
    )
    customer = models.ForeignKey(
        Customer, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='waiter_calls'
    )
    table_number = models.CharField(max_length=64, blank=True)
    call_type = models.CharField(
        max_length=20, choices=WaiterCallType.choices,
        default=WaiterCallType.WAITER
    )
    message = models.TextField(blank=True)
    status = models.CharField(
        max_length=20, choices=WaiterCallStatus.choices,
        default=WaiterCallStatus.PENDING
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'ordering_waiter_call'
        ordering = ['-created_at']

    def __str__(self):
        return f'WaiterCall #{self.id} {self.call_type} ({self.venue.name})'
