# dining/serializers.py

from rest_framework import serializers
from .models import (
    Bill, CustomUser, MenuCategory, MenuItem, Order, OrderItem,
    Reservation, Table, TableType, TaxSetting,
)


# ==============================================================================
# CustomUser Serializer
# ==============================================================================

class CustomUserSerializer(serializers.ModelSerializer):
    """Serializer for the CustomUser model."""

    full_name = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = CustomUser
        fields = [
            'id',
            'username',
            'email',
            'first_name',
            'last_name',
            'full_name',
            'role',
            'phone_number',
            'is_active',
        ]
        read_only_fields = ['id']

    def get_full_name(self, obj):
        """Return full name derived from first and last names."""
        return f"{obj.first_name} {obj.last_name}".strip() or obj.username


# ==============================================================================
# Tables
# ==============================================================================

class TableTypeSerializer(serializers.ModelSerializer):
    class Meta:
        model = TableType
        fields = ['id', 'name', 'description', 'price_multiplier', 'is_active']


class TableSerializer(serializers.ModelSerializer):
    """
    Table with its selected active order. ``has_active_order`` is maintained by
    the reconciler and cannot be written through the API.
    """

    table_type_name = serializers.CharField(source='table_type.name', read_only=True, allow_null=True)
    active_order_number = serializers.SerializerMethodField()

    class Meta:
        model = Table
        fields = [
            'id',
            'table_number',
            'name',
            'table_type',
            'table_type_name',
            'capacity',
            'min_capacity',
            'location',
            'description',
            'position',
            'status',
            'is_active',
            'has_active_order',
            'active_order_number',
        ]
        read_only_fields = ['id', 'has_active_order']

    def get_active_order_number(self, obj):
        order = obj.active_order
        return order.order_number if order else None

    def validate(self, attrs):
        capacity = attrs.get('capacity', getattr(self.instance, 'capacity', 4))
        min_capacity = attrs.get('min_capacity', getattr(self.instance, 'min_capacity', 1))
        if min_capacity > capacity:
            raise serializers.ValidationError({'min_capacity': "Minimum capacity cannot exceed capacity."})
        return attrs


class TableStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Table.Status.choices)


# ==============================================================================
# Menu
# ==============================================================================

class MenuCategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = MenuCategory
        fields = ['id', 'name', 'description', 'sort_order', 'is_active']


class MenuItemSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source='category.name', read_only=True, allow_null=True)

    class Meta:
        model = MenuItem
        fields = [
            'id',
            'name',
            'description',
            'category',
            'category_name',
            'price',
            'is_available',
            'preparation_time',
        ]


# ==============================================================================
# Order Item Serializer
# ==============================================================================

class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for individual items within an order."""

    menu_item_name = serializers.CharField(source='menu_item.name', read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            'id',
            'menu_item',
            'menu_item_name',
            'quantity',
            'unit_price',
            'total_price',
            'special_instructions',
            'status',
        ]
        read_only_fields = fields


# ==============================================================================
# Order Serializer (Main)
# ==============================================================================

class OrderSerializer(serializers.ModelSerializer):
    """
    Main serializer for the Order model.
    Includes nested items for both read and broadcasting via Channels.
    """

    items = OrderItemSerializer(many=True, read_only=True)
    table_number = serializers.CharField(source='table.table_number', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    total_items = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id',
            'order_number',
            'table',
            'table_number',
            'status',
            'status_display',
            'priority',
            'special_instructions',
            'subtotal',
            'tax_amount',
            'discount_amount',
            'total_amount',
            'order_time',
            'ready_time',
            'served_time',
            'created_by',
            'assigned_to',
            'items',
            'total_items',
        ]
        read_only_fields = fields

    def get_total_items(self, obj):
        return sum(item.quantity for item in obj.items.all())


class OrderLineSerializer(serializers.Serializer):
    menu_item = serializers.PrimaryKeyRelatedField(queryset=MenuItem.objects.all())
    quantity = serializers.IntegerField(min_value=1, default=1)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default="")


class OrderCreateSerializer(serializers.Serializer):
    table = serializers.PrimaryKeyRelatedField(queryset=Table.objects.all())
    priority = serializers.ChoiceField(choices=Order.Priority.choices, default=Order.Priority.NORMAL)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default="")
    items = OrderLineSerializer(many=True, allow_empty=False)


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)


class ItemStatusSerializer(serializers.Serializer):
    item_id = serializers.IntegerField()
    status = serializers.ChoiceField(choices=OrderItem.Status.choices)


class AssignOrderSerializer(serializers.Serializer):
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=CustomUser.objects.filter(is_active=True))


class OrderUpdateSerializer(serializers.Serializer):
    priority = serializers.ChoiceField(choices=Order.Priority.choices, required=False)
    special_instructions = serializers.CharField(required=False, allow_blank=True)
    items = OrderLineSerializer(many=True, required=False, allow_empty=False)


class OrderPrioritySerializer(serializers.Serializer):
    priority = serializers.ChoiceField(choices=Order.Priority.choices)


class ItemQuantitySerializer(serializers.Serializer):
    item_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)


class RemoveItemSerializer(serializers.Serializer):
    item_id = serializers.IntegerField()


# ==============================================================================
# Billing & Tax
# ==============================================================================

class BillSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)
    table_number = serializers.CharField(source='table.table_number', read_only=True)
    remaining_amount = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Bill
        fields = [
            'id',
            'bill_number',
            'order',
            'order_number',
            'table',
            'table_number',
            'subtotal',
            'tax_amount',
            'service_charge',
            'discount_amount',
            'total_amount',
            'payment_status',
            'payment_method',
            'paid_amount',
            'remaining_amount',
            'bill_time',
            'paid_time',
            'notes',
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=Bill.PaymentMethod.choices)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)


class TaxSettingSerializer(serializers.ModelSerializer):
    formatted_tax_rate = serializers.CharField(read_only=True)

    class Meta:
        model = TaxSetting
        fields = ['id', 'name', 'type', 'tax_rate', 'formatted_tax_rate', 'is_active', 'description']
        read_only_fields = ['id', 'is_active']

    def validate(self, attrs):
        tax_type = attrs.get('type', getattr(self.instance, 'type', TaxSetting.Type.MANUAL))
        if tax_type == TaxSetting.Type.FREE:
            attrs['tax_rate'] = None
        elif attrs.get('tax_rate', getattr(self.instance, 'tax_rate', None)) is None:
            raise serializers.ValidationError({'tax_rate': "A manual tax setting needs a rate."})
        return attrs


# ==============================================================================
# Reservations
# ==============================================================================

class ReservationSerializer(serializers.ModelSerializer):
    table_number = serializers.CharField(source='table.table_number', read_only=True)

    class Meta:
        model = Reservation
        fields = [
            'id',
            'table',
            'table_number',
            'customer_name',
            'customer_email',
            'customer_phone',
            'party_size',
            'reservation_date',
            'end_time',
            'duration_minutes',
            'special_requests',
            'status',
            'deposit_amount',
            'is_walk_in',
            'confirmation_code',
            'confirmed_at',
            'cancelled_at',
        ]
        read_only_fields = ['id', 'end_time', 'status', 'confirmation_code', 'confirmed_at', 'cancelled_at']

    def validate(self, attrs):
        table = attrs.get('table', getattr(self.instance, 'table', None))
        party_size = attrs.get('party_size', getattr(self.instance, 'party_size', None))
        if table and party_size and not (table.min_capacity <= party_size <= table.capacity):
            raise serializers.ValidationError(
                {'party_size': f"Table {table.table_number} seats {table.min_capacity}-{table.capacity} guests."}
            )
        return attrs


# ==============================================================================
# Integration Helper: Build payloads for Channels Consumers
# ==============================================================================

def serialize_order_for_channels(order):
    """
    Helper function for WebSocket broadcasting.

    Usage:
        serialized_data = serialize_order_for_channels(order)
        await channel_layer.group_send("kitchen_display", {
            "type": "order_update",
            "data": {"event": "order_created", "order": serialized_data},
        })
    """
    serializer = OrderSerializer(order)
    return serializer.data
