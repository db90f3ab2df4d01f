import logging

from django.db.models.deletion import ProtectedError
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.response import Response

from . import billing, orders
from .dashboard import kitchen_summary, summary_for
from .exceptions import DiningError
from .models import (
    Bill, CustomUser, MenuCategory, MenuItem, Order, OrderItem,
    Reservation, Table, TableType, TaxSetting,
)
from .permissions import IsKitchenOrStaff, IsStaffRole, StaffWriteOrReadOnly
from .reconciler import reconcile_all, reconcile_table, release_table
from .reports import bills_in_range, sales_report, write_sales_csv
from .serializers import (
    AssignOrderSerializer, BillSerializer, CustomUserSerializer, ItemQuantitySerializer,
    ItemStatusSerializer, MenuCategorySerializer, MenuItemSerializer, OrderCreateSerializer,
    OrderLineSerializer, OrderPrioritySerializer, OrderSerializer, OrderStatusSerializer,
    OrderUpdateSerializer, PaymentSerializer, RemoveItemSerializer, ReservationSerializer,
    TableSerializer, TableStatusSerializer, TableTypeSerializer, TaxSettingSerializer,
)
from .utils import broadcast_table_update

logger = logging.getLogger(__name__)


def error_response(exc):
    return Response({"error": str(exc)}, status=exc.status_code)


def repair_payload(repair):
    return {
        "table_id": repair.table_id,
        "table_number": repair.table_number,
        "changed": repair.changed,
        "before": {
            "has_active_order": repair.previous_has_active_order,
            "status": repair.previous_status,
        },
        "after": {
            "has_active_order": repair.new_has_active_order,
            "status": repair.new_status,
        },
    }


# ==============================================================================
# TABLES
# ==============================================================================

class TableTypeViewSet(viewsets.ModelViewSet):
    queryset = TableType.objects.all()
    serializer_class = TableTypeSerializer
    permission_classes = [StaffWriteOrReadOnly]


class TableViewSet(viewsets.ModelViewSet):
    queryset = Table.objects.select_related('table_type')
    serializer_class = TableSerializer
    permission_classes = [StaffWriteOrReadOnly]

    def destroy(self, request, *args, **kwargs):
        table = self.get_object()
        if table.active_reservations.exists():
            return Response(
                {"error": "Cannot delete table with active reservations."},
                status=status.HTTP_409_CONFLICT,
            )
        return super().destroy(request, *args, **kwargs)

    @action(detail=True, methods=['post'], url_path='status', permission_classes=[IsStaffRole])
    def set_status(self, request, pk=None):
        table = self.get_object()
        serializer = TableStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        table.status = serializer.validated_data['status']
        table.save(update_fields=['status', 'updated_at'])
        return Response(TableSerializer(table).data)

    @action(detail=True, methods=['get'], url_path='active-order')
    def active_order(self, request, pk=None):
        order = self.get_object().active_order
        return Response({"order": OrderSerializer(order).data if order else None})

    @action(detail=True, methods=['post'], permission_classes=[IsStaffRole])
    def reconcile(self, request, pk=None):
        table = self.get_object()
        try:
            repair = reconcile_table(table)
        except DiningError as exc:
            return error_response(exc)
        if repair.changed:
            broadcast_table_update(repair)
        return Response(repair_payload(repair))

    @action(detail=False, methods=['post'], url_path='reconcile-all', permission_classes=[IsStaffRole])
    def reconcile_all_tables(self, request):
        sweep = reconcile_all()
        logger.info(f"{request.user} ran a table sweep: fixed {sweep.tables_fixed} of {sweep.tables_scanned}")
        for repair in sweep.repairs:
            broadcast_table_update(repair)
        return Response({
            "tables_scanned": sweep.tables_scanned,
            "tables_fixed": sweep.tables_fixed,
            "repairs": [repair_payload(r) for r in sweep.repairs],
            "failures": [{"table_id": table_id, "error": str(exc)} for table_id, exc in sweep.failures],
        })

    @action(detail=True, methods=['post'], permission_classes=[IsStaffRole])
    def release(self, request, pk=None):
        table = self.get_object()
        try:
            release_table(table)
        except DiningError as exc:
            return error_response(exc)
        return Response(TableSerializer(table).data)

    @action(detail=True, methods=['post'], url_path='add-item', permission_classes=[IsStaffRole])
    def add_item(self, request, pk=None):
        table = self.get_object()
        serializer = OrderLineSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            order = orders.add_item_to_table(
                table,
                data['menu_item'],
                data['quantity'],
                data['special_instructions'],
                created_by=request.user,
            )
        except DiningError as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


# ==============================================================================
# MENU
# ==============================================================================

class MenuCategoryViewSet(viewsets.ModelViewSet):
    queryset = MenuCategory.objects.all()
    serializer_class = MenuCategorySerializer
    permission_classes = [StaffWriteOrReadOnly]


class MenuItemViewSet(viewsets.ModelViewSet):
    queryset = MenuItem.objects.select_related('category')
    serializer_class = MenuItemSerializer
    permission_classes = [StaffWriteOrReadOnly]

    def get_queryset(self):
        qs = super().get_queryset()
        if self.request.query_params.get('available') in ('1', 'true'):
            qs = qs.available()
        return qs

    def destroy(self, request, *args, **kwargs):
        try:
            return super().destroy(request, *args, **kwargs)
        except ProtectedError:
            return Response(
                {"error": "Menu item is referenced by existing orders."},
                status=status.HTTP_409_CONFLICT,
            )

    @action(detail=True, methods=['post'], url_path='toggle-availability', permission_classes=[IsStaffRole])
    def toggle_availability(self, request, pk=None):
        item = self.get_object()
        item.toggle_availability()
        return Response(MenuItemSerializer(item).data)


# ==============================================================================
# ORDERS
# ==============================================================================

class OrderViewSet(mixins.ListModelMixin,
                   mixins.RetrieveModelMixin,
                   mixins.DestroyModelMixin,
                   viewsets.GenericViewSet):
    serializer_class = OrderSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        qs = Order.objects.select_related('table', 'created_by', 'assigned_to').prefetch_related('items__menu_item')
        if not (user.is_superuser or user.role in (CustomUser.Roles.STAFF, CustomUser.Roles.KITCHEN)):
            qs = qs.filter(customer=user)

        params = self.request.query_params
        if params.get('status') and params['status'] != 'all':
            qs = qs.by_status(params['status'])
        if params.get('table'):
            qs = qs.filter(table_id=params['table'])
        if params.get('date_from'):
            qs = qs.filter(order_time__date__gte=params['date_from'])
        if params.get('date_to'):
            qs = qs.filter(order_time__date__lte=params['date_to'])
        return qs

    def get_permissions(self):
        if self.action in ('destroy', 'serve', 'generate_bill', 'partial_update', 'priority',
                           'item_quantity', 'remove_item'):
            return [IsStaffRole()]
        if self.action in ('set_status', 'assign', 'item_status'):
            return [IsKitchenOrStaff()]
        return super().get_permissions()

    def create(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = request.user
        try:
            order = orders.create_order(
                data['table'],
                data['items'],
                priority=data['priority'],
                special_instructions=data['special_instructions'],
                created_by=user if user.role != CustomUser.Roles.CUSTOMER else None,
                customer=user if user.role == CustomUser.Roles.CUSTOMER else None,
            )
        except DiningError as exc:
            return error_response(exc)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        order = self.get_object()
        serializer = OrderUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            orders.update_order(
                order,
                items=data.get('items'),
                priority=data.get('priority'),
                special_instructions=data.get('special_instructions'),
            )
        except DiningError as exc:
            return error_response(exc)
        order = self.get_object()
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'])
    def priority(self, request, pk=None):
        order = self.get_object()
        serializer = OrderPrioritySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            orders.change_priority(order, serializer.validated_data['priority'])
        except DiningError as exc:
            return error_response(exc)
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'], url_path='item-quantity')
    def item_quantity(self, request, pk=None):
        order = self.get_object()
        serializer = ItemQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            orders.change_item_quantity(order, serializer.validated_data['item_id'],
                                        serializer.validated_data['quantity'])
        except OrderItem.DoesNotExist:
            return Response({"error": "Item not found on this order."}, status=status.HTTP_404_NOT_FOUND)
        except DiningError as exc:
            return error_response(exc)
        order = self.get_object()
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'], url_path='remove-item')
    def remove_item(self, request, pk=None):
        order = self.get_object()
        serializer = RemoveItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            remaining = orders.remove_order_item(order, serializer.validated_data['item_id'])
        except OrderItem.DoesNotExist:
            return Response({"error": "Item not found on this order."}, status=status.HTTP_404_NOT_FOUND)
        except DiningError as exc:
            return error_response(exc)
        if remaining is None:
            return Response({"success": True, "order": None})
        order = self.get_object()
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'], url_path='status')
    def set_status(self, request, pk=None):
        order = self.get_object()
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            orders.change_status(order, serializer.validated_data['status'])
        except DiningError as exc:
            return error_response(exc)
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'])
    def serve(self, request, pk=None):
        order = self.get_object()
        try:
            orders.mark_served(order)
        except DiningError as exc:
            return error_response(exc)
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'])
    def assign(self, request, pk=None):
        order = self.get_object()
        serializer = AssignOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            orders.assign_order(order, serializer.validated_data['assigned_to'])
        except DiningError as exc:
            return error_response(exc)
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'], url_path='item-status')
    def item_status(self, request, pk=None):
        order = self.get_object()
        serializer = ItemStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            orders.update_item_status(order, serializer.validated_data['item_id'],
                                      serializer.validated_data['status'])
        except OrderItem.DoesNotExist:
            return Response({"error": "Item not found on this order."}, status=status.HTTP_404_NOT_FOUND)
        except DiningError as exc:
            return error_response(exc)
        order = self.get_object()
        return Response({"success": True, "order": OrderSerializer(order).data})

    @action(detail=True, methods=['post'], url_path='generate-bill')
    def generate_bill(self, request, pk=None):
        order = self.get_object()
        try:
            bill = billing.generate_bill(order)
        except DiningError as exc:
            return error_response(exc)
        return Response(BillSerializer(bill).data, status=status.HTTP_201_CREATED)


# ==============================================================================
# BILLS & TAX
# ==============================================================================

class BillViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Bill.objects.select_related('order', 'table')
    serializer_class = BillSerializer
    permission_classes = [IsStaffRole]

    @action(detail=True, methods=['post'])
    def pay(self, request, pk=None):
        bill = self.get_object()
        serializer = PaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            billing.record_payment(
                bill,
                serializer.validated_data['payment_method'],
                serializer.validated_data['amount'],
            )
        except DiningError as exc:
            return error_response(exc)
        return Response(BillSerializer(bill).data)


class TaxSettingViewSet(viewsets.ModelViewSet):
    queryset = TaxSetting.objects.all()
    serializer_class = TaxSettingSerializer
    permission_classes = [StaffWriteOrReadOnly]

    @action(detail=True, methods=['post'], url_path='toggle-active', permission_classes=[IsStaffRole])
    def toggle_active(self, request, pk=None):
        setting = self.get_object()
        setting.toggle_active()
        return Response(TaxSettingSerializer(setting).data)

    @action(detail=False, methods=['get'])
    def active(self, request):
        setting = TaxSetting.get_active()
        return Response({"tax_setting": TaxSettingSerializer(setting).data if setting else None})


# ==============================================================================
# RESERVATIONS
# ==============================================================================

class ReservationViewSet(viewsets.ModelViewSet):
    queryset = Reservation.objects.select_related('table')
    serializer_class = ReservationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        if user.is_superuser or user.role == CustomUser.Roles.STAFF:
            return super().get_queryset()
        return super().get_queryset().filter(user=user)

    def perform_create(self, serializer):
        serializer.save(user=self.request.user)

    @action(detail=True, methods=['post'], permission_classes=[IsStaffRole])
    def confirm(self, request, pk=None):
        reservation = self.get_object()
        reservation.confirm()
        return Response(ReservationSerializer(reservation).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        reservation = self.get_object()
        reservation.cancel()
        return Response(ReservationSerializer(reservation).data)


# ==============================================================================
# USERS
# ==============================================================================

class CustomUserViewSet(viewsets.ModelViewSet):
    queryset = CustomUser.objects.all().order_by('id')
    serializer_class = CustomUserSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        if user.is_superuser or user.role == CustomUser.Roles.STAFF:
            return CustomUser.objects.all().order_by('id')
        return CustomUser.objects.filter(id=user.id)

    def get_permissions(self):
        if self.action in ('create', 'destroy'):
            return [IsStaffRole()]
        return super().get_permissions()

    def perform_create(self, serializer):
        serializer.save(created_by=self.request.user)


# ==============================================================================
# DASHBOARDS
# ==============================================================================

@api_view(['GET'])
@permission_classes([permissions.IsAuthenticated])
def dashboard(request):
    return Response(summary_for(request.user))


@api_view(['GET'])
@permission_classes([IsKitchenOrStaff])
def kitchen_realtime(request):
    return Response(kitchen_summary())


# ==============================================================================
# REPORTS
# ==============================================================================

@api_view(['GET'])
@permission_classes([IsStaffRole])
def sales(request):
    """
    Sales summary for ``date_from``..``date_to`` (inclusive, YYYY-MM-DD).
    ``payment_status`` and ``table`` narrow it down; ``export=csv`` downloads
    the matching bills instead.
    """
    params = request.query_params
    dates = {}
    for name in ('date_from', 'date_to'):
        value = params.get(name)
        if value:
            try:
                dates[name] = parse_date(value)
            except ValueError:
                dates[name] = None
            if dates[name] is None:
                return Response({"error": f"Invalid {name} '{value}', use YYYY-MM-DD."},
                                status=status.HTTP_400_BAD_REQUEST)
    table = params.get('table')
    if table and not table.isdigit():
        return Response({"error": "table must be a table id."}, status=status.HTTP_400_BAD_REQUEST)
    filters = {**dates, 'payment_status': params.get('payment_status'), 'table': table}

    if params.get('export') == 'csv':
        response = HttpResponse(content_type="text/csv")
        filename = f"sales_report_{timezone.now().strftime('%Y%m%d_%H%M%S')}.csv"
        response["Content-Disposition"] = f'attachment; filename="{filename}"'
        write_sales_csv(bills_in_range(**filters), response)
        logging.getLogger("audit").info(
            f"User {request.user.username} exported sales report "
            f"from IP={request.META.get('REMOTE_ADDR')}"
        )
        return response

    return Response(sales_report(**filters))
