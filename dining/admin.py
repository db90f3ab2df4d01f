# dining/admin.py
import logging

from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin
from django.db import DatabaseError
from django.utils.html import format_html

from .models import (
    Bill, CustomUser, MenuCategory, MenuItem, Order, OrderItem,
    Reservation, Table, TableType, TaxSetting,
)
from .reconciler import reconcile_table

logger = logging.getLogger(__name__)

# =============================================================================
# === ROLE-BASED PERMISSION SYSTEM ============================================
# =============================================================================

class RoleRestrictedAdmin(admin.ModelAdmin):
    """Staff may manage everything, kitchen accounts may only look."""

    def has_module_permission(self, request):
        u = request.user
        return u.is_authenticated and (u.is_superuser or u.role in [
            CustomUser.Roles.STAFF,
            CustomUser.Roles.KITCHEN,
        ])

    def has_view_permission(self, request, obj=None):
        return self.has_module_permission(request)

    def has_add_permission(self, request):
        u = request.user
        return u.is_superuser or u.role == CustomUser.Roles.STAFF

    def has_change_permission(self, request, obj=None):
        u = request.user
        return u.is_superuser or u.role == CustomUser.Roles.STAFF

    def has_delete_permission(self, request, obj=None):
        u = request.user
        return u.is_superuser or u.role == CustomUser.Roles.STAFF


# =============================================================================
# === GLOBAL UTILITIES ========================================================
# =============================================================================

@admin.action(description="Mark selected as inactive")
def mark_inactive(modeladmin, request, queryset):
    queryset.update(is_active=False)

@admin.action(description="Mark selected as active")
def mark_active(modeladmin, request, queryset):
    queryset.update(is_active=True)


# =============================================================================
# === USER ADMIN ==============================================================
# =============================================================================

@admin.register(CustomUser)
class CustomUserAdmin(UserAdmin):
    list_display = ("username", "email", "role", "is_active", "is_staff")
    list_filter = ("role", "is_active")
    search_fields = ("username", "email", "phone_number")
    readonly_fields = ("last_login", "date_joined")
    ordering = ("-date_joined",)
    fieldsets = UserAdmin.fieldsets + (
        ("Dining", {"fields": ("role", "phone_number", "created_by")}),
    )


# =============================================================================
# === TABLE ADMIN =============================================================
# =============================================================================

@admin.register(TableType)
class TableTypeAdmin(RoleRestrictedAdmin):
    list_display = ("name", "price_multiplier", "is_active")
    actions = [mark_active, mark_inactive]


@admin.register(Table)
class TableAdmin(RoleRestrictedAdmin):
    list_display = ("table_number", "name", "table_type", "capacity", "status_badge", "has_active_order", "is_active")
    list_filter = ("status", "has_active_order", "is_active", "table_type")
    search_fields = ("table_number", "name", "location")
    readonly_fields = ("has_active_order", "created_at", "updated_at")
    actions = ["reconcile_selected", mark_active, mark_inactive]

    def status_badge(self, obj):
        colors = {
            Table.Status.AVAILABLE: "green",
            Table.Status.OCCUPIED: "red",
            Table.Status.RESERVED: "orange",
            Table.Status.MAINTENANCE: "gray",
        }
        return format_html('<b style="color:{}">{}</b>', colors.get(obj.status, "black"), obj.get_status_display())
    status_badge.short_description = "Status"

    @admin.action(description="Reconcile active-order flag and status")
    def reconcile_selected(self, request, queryset):
        checked, fixed, failed = 0, 0, []
        for table in queryset:
            try:
                repair = reconcile_table(table)
            except DatabaseError as exc:
                logger.exception(f"Admin reconcile failed for table {table.table_number}: {exc}")
                failed.append(table.table_number)
                continue
            checked += 1
            if repair.changed:
                fixed += 1
        logger.info(f"Admin {request.user} reconciled {checked} tables, fixed {fixed}, failed {len(failed)}.")
        self.message_user(request, f"Checked {checked} tables, fixed {fixed}.")
        if failed:
            self.message_user(
                request,
                f"Could not reconcile {len(failed)} tables: {', '.join(failed)}",
                level=messages.ERROR,
            )


# =============================================================================
# === MENU ADMIN ==============================================================
# =============================================================================

@admin.register(MenuCategory)
class MenuCategoryAdmin(RoleRestrictedAdmin):
    list_display = ("name", "sort_order", "is_active")
    ordering = ("sort_order", "name")


@admin.register(MenuItem)
class MenuItemAdmin(RoleRestrictedAdmin):
    list_display = ("name", "category", "price", "is_available", "preparation_time")
    list_filter = ("category", "is_available")
    search_fields = ("name", "description")


# =============================================================================
# === ORDER & BILLING ADMIN ===================================================
# =============================================================================

class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("total_price",)


@admin.register(Order)
class OrderAdmin(RoleRestrictedAdmin):
    list_display = ("order_number", "table", "status", "priority", "order_time", "total_amount")
    list_filter = ("status", "priority", "order_time")
    search_fields = ("order_number", "table__table_number")
    readonly_fields = ("order_number", "subtotal", "tax_amount", "total_amount", "ready_time", "served_time")
    inlines = [OrderItemInline]
    date_hierarchy = "order_time"

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        # inline item edits change the totals
        form.instance.update_totals()


@admin.register(Bill)
class BillAdmin(RoleRestrictedAdmin):
    list_display = ("bill_number", "order", "table", "total_amount", "paid_amount", "payment_status", "bill_time")
    list_filter = ("payment_status", "payment_method")
    search_fields = ("bill_number", "order__order_number")
    readonly_fields = ("bill_number", "subtotal", "tax_amount", "service_charge", "total_amount")


@admin.register(TaxSetting)
class TaxSettingAdmin(RoleRestrictedAdmin):
    list_display = ("name", "type", "formatted_tax_rate", "is_active", "updated_at")
    list_filter = ("type", "is_active")
    actions = ["activate_selected"]

    @admin.action(description="Activate (deactivates all others)")
    def activate_selected(self, request, queryset):
        if queryset.count() != 1:
            self.message_user(request, "Select exactly one tax setting to activate.", level="error")
            return
        setting = queryset.first()
        setting.activate()
        self.message_user(request, f"{setting.name} is now the active tax setting.")


# =============================================================================
# === RESERVATION ADMIN =======================================================
# =============================================================================

@admin.register(Reservation)
class ReservationAdmin(RoleRestrictedAdmin):
    list_display = ("confirmation_code", "customer_name", "table", "party_size", "reservation_date", "status")
    list_filter = ("status", "is_walk_in", "reservation_date")
    search_fields = ("confirmation_code", "customer_name", "customer_email", "customer_phone")
    readonly_fields = ("confirmation_code", "end_time", "confirmed_at", "cancelled_at")
