"""
Allocman Admin.

Catalog, BOMs and order setup are editable. Everything holding quantities
is read-only: batches, registry, allocations and the activity log only
change through the inventory service.
"""

import logging

from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from allocman.exceptions import AllocmanError
from allocman.models import (
    BatchActivityLog,
    BatchRegistryEntry,
    Bom,
    BomItem,
    InventoryAllocation,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PackagingMaterial,
    PackagingMaterialBatch,
    Part,
    ProductBatch,
    Sku,
)

logger = logging.getLogger(__name__)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Base for ledgers only the service writes."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =========================================================================
# CATALOG
# =========================================================================

@admin.register(Sku)
class SkuAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'is_active']
    list_filter = ['is_active']
    search_fields = ['code', 'name']


@admin.register(PackagingMaterial)
class PackagingMaterialAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'unit']
    search_fields = ['code', 'name']


@admin.register(Part)
class PartAdmin(admin.ModelAdmin):
    list_display = ['code', 'name']
    search_fields = ['code', 'name']
    filter_horizontal = ['materials']


# =========================================================================
# BATCH ADMIN (read-only with quarantine action)
# =========================================================================

class BatchAdmin(ReadOnlyAdmin):
    """Batch admin: quantities only change via the inventory service."""

    list_filter = ['status', 'expiry_date']
    search_fields = ['lot_number']
    date_hierarchy = 'expiry_date'
    actions = ['quarantine_batches']

    @admin.display(description=_('Registry'))
    def registry_display(self, obj):
        entry = getattr(obj, 'registry_entry', None)
        return entry.registry_id if entry else '-'

    @admin.display(description=_('Expired?'), boolean=True)
    def is_expired_display(self, obj):
        return obj.is_expired

    @admin.action(description=_('Quarantine selected batches'))
    def quarantine_batches(self, request, queryset):
        from allocman import inventory

        count = 0
        for batch in queryset.filter(registry_entry__isnull=False).select_related('registry_entry'):
            try:
                if inventory.quarantine(batch.registry_entry, reason='Quarantined via admin',
                                        actor=request.user):
                    count += 1
            except AllocmanError as exc:
                logger.warning("quarantine_batches: failed for %s: %s", batch.registry_entry, exc)

        self.message_user(request, _('{count} batch(es) quarantined.').format(count=count))


@admin.register(ProductBatch)
class ProductBatchAdmin(BatchAdmin):
    list_display = ['lot_number', 'sku', 'expiry_date', 'inbound_date', 'status',
                    'available_quantity', 'reserved_quantity', 'consumed_quantity',
                    'registry_display', 'is_expired_display']


@admin.register(PackagingMaterialBatch)
class PackagingMaterialBatchAdmin(BatchAdmin):
    list_display = ['lot_number', 'packaging_material', 'supplier', 'expiry_date',
                    'inbound_date', 'status', 'available_quantity', 'reserved_quantity',
                    'registry_display', 'is_expired_display']


@admin.register(BatchRegistryEntry)
class BatchRegistryEntryAdmin(ReadOnlyAdmin):
    list_display = ['registry_id', 'kind', 'batch', 'registered_at']
    list_filter = ['kind']


# =========================================================================
# ALLOCATIONS & ACTIVITY (read-only audit trail)
# =========================================================================

@admin.register(InventoryAllocation)
class InventoryAllocationAdmin(ReadOnlyAdmin):
    list_display = ['id', 'order', 'order_item', 'registry_entry', 'quantity',
                    'status', 'created_at', 'resolved_at']
    list_filter = ['status', 'created_at']
    search_fields = ['order__order_number']


@admin.register(BatchActivityLog)
class BatchActivityLogAdmin(ReadOnlyAdmin):
    """Immutable audit trail."""

    list_display = ['timestamp', 'registry_entry', 'action', 'summary', 'actor']
    list_filter = ['action', 'timestamp']
    search_fields = ['summary']
    date_hierarchy = 'timestamp'


# =========================================================================
# BOM ADMIN
# =========================================================================

class BomItemInline(admin.TabularInline):
    model = BomItem
    extra = 0


@admin.register(Bom)
class BomAdmin(admin.ModelAdmin):
    list_display = ['code', 'sku', 'revision', 'is_active', 'max_units_display']
    list_filter = ['is_active']
    search_fields = ['code', 'sku__code']
    inlines = [BomItemInline]

    @admin.display(description=_('Producible units'))
    def max_units_display(self, obj):
        from allocman import inventory
        return inventory.compute_readiness(obj).max_producible_units


# =========================================================================
# ORDER ADMIN
# =========================================================================

@admin.register(OrderType)
class OrderTypeAdmin(admin.ModelAdmin):
    list_display = ['code', 'name']


@admin.register(OrderStatus)
class OrderStatusAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'category', 'is_final']
    list_filter = ['category', 'is_final']


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'order_type', 'status', 'status_date']
    list_filter = ['order_type', 'status']
    search_fields = ['order_number']
    readonly_fields = ['status', 'status_date', 'created_at', 'updated_at']
    inlines = [OrderItemInline]
