from django.contrib import admin, messages

from . import services
from .exceptions import OrderingError
from .models import (
    Customer,
    Order,
    OrderItem,
    OrderStatus,
    Venue,
    WaiterCall,
)

PRICING_FIELDS = (
    'subtotal', 'tax', 'service_charge', 'tip', 'delivery_fee', 'discount', 'total', 'per_head',
)


# --- Inlines ---

class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    fields = ('item_key', 'product_name', 'unit_price', 'quantity', 'options', 'status', 'line_total', 'version')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ('name', 'phone', 'created_at')
    search_fields = ('name', 'phone')
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Venue)
class VenueAdmin(admin.ModelAdmin):
    list_display = ('name', 'slug', 'currency', 'tax_percent', 'service_charge_percent', 'is_open', 'created_at')
    list_filter = ('is_open', 'currency')
    search_fields = ('name', 'slug')
    prepopulated_fields = {'slug': ('name',)}
    readonly_fields = ('created_at', 'updated_at')


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Status, payment and pricing change only through the order services (actions below)."""
    list_display = ('order_number', 'customer', 'venue', 'fulfillment_type', 'status', 'payment_status', 'total', 'version', 'created_at')
    list_filter = ('venue', 'status', 'payment_status', 'fulfillment_type')
    search_fields = ('order_number', 'customer__name', 'customer__phone', 'table_number')
    autocomplete_fields = ('customer', 'venue')
    inlines = (OrderItemInline,)
    readonly_fields = (
        'order_number', 'status', 'payment_status', 'currency', 'version', 'idempotency_key',
        'estimated_minutes', 'created_at', 'updated_at',
    ) + PRICING_FIELDS
    actions = ['confirm_orders', 'cancel_orders']

    def has_add_permission(self, request):
        return False

    @admin.action(description='Confirm pending orders')
    def confirm_orders(self, request, queryset):
        done, failed = 0, 0
        for order in queryset.filter(status=OrderStatus.PENDING):
            try:
                services.advance_order_status(order.pk, OrderStatus.CONFIRMED)
                done += 1
            except OrderingError as e:
                failed += 1
                self.message_user(request, f'{order.order_number}: {e.message}', messages.WARNING)
        self.message_user(request, f'Confirmed {done} order(s), {failed} failed.', messages.SUCCESS)

    @admin.action(description='Cancel orders')
    def cancel_orders(self, request, queryset):
        done = 0
        for order in queryset:
            try:
                services.cancel_order(order.pk, 'Cancelled by admin')
                done += 1
            except OrderingError as e:
                self.message_user(request, f'{order.order_number}: {e.message}', messages.WARNING)
        self.message_user(request, f'Cancelled {done} order(s).', messages.SUCCESS)


@admin.register(OrderItem)
class OrderItemAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'item_key', 'product_name', 'unit_price', 'quantity', 'line_total', 'status')
    list_filter = ('order__venue', 'status')
    search_fields = ('order__order_number', 'product_name')
    readonly_fields = ('line_total', 'version', 'created_at', 'updated_at')


@admin.register(WaiterCall)
class WaiterCallAdmin(admin.ModelAdmin):
    list_display = ('id', 'venue', 'table_number', 'call_type', 'status', 'customer', 'created_at')
    list_filter = ('venue', 'call_type', 'status')
    search_fields = ('table_number', 'customer__name')
    readonly_fields = ('created_at', 'updated_at')
