"""
Initial migration for Allocman models.
"""

from decimal import Decimal
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


BATCH_STATUS_CHOICES = [
    ('available', 'Available'),
    ('reserved', 'Reserved'),
    ('depleted', 'Depleted'),
    ('expired', 'Expired'),
    ('quarantined', 'Quarantined'),
]

BATCH_KIND_CHOICES = [
    ('product', 'Product'),
    ('packaging_material', 'Packaging material'),
]


def batch_fields():
    return [
        ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
        ('lot_number', models.CharField(max_length=50, verbose_name='Lot number')),
        ('received_quantity', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Received')),
        ('available_quantity', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=12, verbose_name='Available')),
        ('reserved_quantity', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=12, verbose_name='Reserved')),
        ('consumed_quantity', models.DecimalField(decimal_places=3, default=Decimal('0'), help_text='Confirmed deductions and negative adjustments', max_digits=12, verbose_name='Consumed')),
        ('expiry_date', models.DateField(blank=True, db_index=True, null=True, verbose_name='Expiry date')),
        ('inbound_date', models.DateField(default=django.utils.timezone.localdate, verbose_name='Inbound date')),
        ('status', models.CharField(choices=BATCH_STATUS_CHOICES, db_index=True, default='available', max_length=20, verbose_name='Status')),
        ('metadata', models.JSONField(blank=True, default=dict)),
        ('created_at', models.DateTimeField(auto_now_add=True)),
        ('updated_at', models.DateTimeField(auto_now=True)),
    ]


def quantity_constraints(model_name, prefix):
    return [
        migrations.AddConstraint(
            model_name=model_name,
            constraint=models.CheckConstraint(condition=models.Q(available_quantity__gte=0), name=f'{prefix}_available_non_negative'),
        ),
        migrations.AddConstraint(
            model_name=model_name,
            constraint=models.CheckConstraint(condition=models.Q(reserved_quantity__gte=0), name=f'{prefix}_reserved_non_negative'),
        ),
        migrations.AddConstraint(
            model_name=model_name,
            constraint=models.CheckConstraint(condition=models.Q(consumed_quantity__gte=0), name=f'{prefix}_consumed_non_negative'),
        ),
    ]


class Migration(migrations.Migration):
    """Create Allocman models: catalog, batches, registry, BOMs, orders, allocations, activity log."""

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # Catalog
        migrations.CreateModel(
            name='Sku',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=60, unique=True, verbose_name='SKU')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'SKU',
                'verbose_name_plural': 'SKUs',
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='PackagingMaterial',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=60, unique=True, verbose_name='Code')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('unit', models.CharField(default='pc', help_text='Ex: pc, roll, kg', max_length=20, verbose_name='Unit')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Packaging material',
                'verbose_name_plural': 'Packaging materials',
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='Part',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=60, unique=True, verbose_name='Code')),
                ('name', models.CharField(max_length=200, verbose_name='Name')),
                ('materials', models.ManyToManyField(blank=True, related_name='parts', to='allocman.packagingmaterial', verbose_name='Materials')),
            ],
            options={
                'verbose_name': 'Part',
                'verbose_name_plural': 'Parts',
                'ordering': ['code'],
            },
        ),
        # Batches
        migrations.CreateModel(
            name='ProductBatch',
            fields=[
                *batch_fields(),
                ('sku', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='batches', to='allocman.sku', verbose_name='SKU')),
            ],
            options={
                'verbose_name': 'Product batch',
                'verbose_name_plural': 'Product batches',
                'ordering': ['expiry_date', 'inbound_date'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='PackagingMaterialBatch',
            fields=[
                *batch_fields(),
                ('supplier', models.CharField(blank=True, default='', max_length=200, verbose_name='Supplier')),
                ('packaging_material', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='batches', to='allocman.packagingmaterial', verbose_name='Packaging material')),
            ],
            options={
                'verbose_name': 'Packaging material batch',
                'verbose_name_plural': 'Packaging material batches',
                'ordering': ['expiry_date', 'inbound_date'],
                'abstract': False,
            },
        ),
        migrations.CreateModel(
            name='BatchRegistryEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('kind', models.CharField(choices=BATCH_KIND_CHOICES, max_length=20, verbose_name='Kind')),
                ('registered_at', models.DateTimeField(auto_now_add=True)),
                ('note', models.CharField(blank=True, default='', max_length=255)),
                ('product_batch', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='registry_entry', to='allocman.productbatch', verbose_name='Product batch')),
                ('packaging_material_batch', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='registry_entry', to='allocman.packagingmaterialbatch', verbose_name='Packaging material batch')),
            ],
            options={
                'verbose_name': 'Batch registry entry',
                'verbose_name_plural': 'Batch registry',
            },
        ),
        # BOMs
        migrations.CreateModel(
            name='Bom',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=80, unique=True, verbose_name='Code')),
                ('revision', models.PositiveIntegerField(default=1, verbose_name='Revision')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('sku', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='boms', to='allocman.sku', verbose_name='SKU')),
            ],
            options={
                'verbose_name': 'BOM',
                'verbose_name_plural': 'BOMs',
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='BomItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('quantity_per_unit', models.DecimalField(decimal_places=4, max_digits=12, verbose_name='Quantity per unit')),
                ('unit', models.CharField(default='pc', max_length=20, verbose_name='Unit')),
                ('note', models.CharField(blank=True, default='', max_length=255)),
                ('bom', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='allocman.bom', verbose_name='BOM')),
                ('part', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bom_items', to='allocman.part', verbose_name='Part')),
            ],
            options={
                'verbose_name': 'BOM item',
                'verbose_name_plural': 'BOM items',
                'ordering': ['bom', 'pk'],
            },
        ),
        # Orders
        migrations.CreateModel(
            name='OrderType',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.SlugField(unique=True, verbose_name='Code')),
                ('name', models.CharField(max_length=100, verbose_name='Name')),
                ('transitions', models.JSONField(blank=True, default=dict, verbose_name='Transitions')),
            ],
            options={
                'verbose_name': 'Order type',
                'verbose_name_plural': 'Order types',
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='OrderStatus',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True, verbose_name='Code')),
                ('name', models.CharField(max_length=100, verbose_name='Name')),
                ('category', models.CharField(choices=[('draft', 'Draft'), ('confirmation', 'Confirmation'), ('processing', 'Processing'), ('shipment', 'Shipment'), ('payment', 'Payment'), ('return', 'Return'), ('completion', 'Completion')], max_length=20, verbose_name='Category')),
                ('is_final', models.BooleanField(default=False, help_text='Final statuses admit no further transition', verbose_name='Final')),
            ],
            options={
                'verbose_name': 'Order status',
                'verbose_name_plural': 'Order statuses',
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_number', models.CharField(max_length=60, unique=True, verbose_name='Order number')),
                ('status_date', models.DateTimeField(default=django.utils.timezone.now, verbose_name='Status date')),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('order_type', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='allocman.ordertype', verbose_name='Order type')),
                ('status', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='allocman.orderstatus', verbose_name='Status')),
            ],
            options={
                'verbose_name': 'Order',
                'verbose_name_plural': 'Orders',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('quantity_ordered', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Quantity ordered')),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='allocman.order', verbose_name='Order')),
                ('sku', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='order_items', to='allocman.sku', verbose_name='SKU')),
                ('packaging_material', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='order_items', to='allocman.packagingmaterial', verbose_name='Packaging material')),
            ],
            options={
                'verbose_name': 'Order item',
                'verbose_name_plural': 'Order items',
                'ordering': ['order', 'pk'],
            },
        ),
        # Allocations
        migrations.CreateModel(
            name='InventoryAllocation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('quantity', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Quantity')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('reserved', 'Reserved'), ('confirmed', 'Confirmed'), ('released', 'Released'), ('failed', 'Failed')], db_index=True, default='pending', max_length=20, verbose_name='Status')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('resolved_at', models.DateTimeField(blank=True, help_text='Confirmation or release time', null=True, verbose_name='Resolved at')),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='Created by')),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='allocations', to='allocman.order', verbose_name='Order')),
                ('order_item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='allocations', to='allocman.orderitem', verbose_name='Order item')),
                ('registry_entry', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='allocations', to='allocman.batchregistryentry', verbose_name='Batch')),
            ],
            options={
                'verbose_name': 'Inventory allocation',
                'verbose_name_plural': 'Inventory allocations',
                'ordering': ['created_at', 'pk'],
            },
        ),
        # Activity log
        migrations.CreateModel(
            name='BatchActivityLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(choices=[('registered', 'Registered'), ('reserved', 'Reserved'), ('confirmed', 'Confirmed'), ('released', 'Released'), ('adjusted', 'Manual adjustment'), ('status_changed', 'Status changed')], max_length=20, verbose_name='Action')),
                ('previous', models.JSONField(blank=True, null=True, verbose_name='Previous snapshot')),
                ('new', models.JSONField(verbose_name='New snapshot')),
                ('summary', models.CharField(help_text='Required. Ex: "Reserved 40 for SO-1001"', max_length=255, verbose_name='Summary')),
                ('timestamp', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='Timestamp')),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='Actor')),
                ('allocation', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='activity', to='allocman.inventoryallocation', verbose_name='Allocation')),
                ('registry_entry', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='activity', to='allocman.batchregistryentry', verbose_name='Batch')),
            ],
            options={
                'verbose_name': 'Batch activity',
                'verbose_name_plural': 'Batch activity log',
                'ordering': ['timestamp', 'pk'],
            },
        ),
        # Indexes
        migrations.AddIndex(
            model_name='productbatch',
            index=models.Index(fields=['sku', 'status'], name='allocman_pb_sku_status_idx'),
        ),
        migrations.AddIndex(
            model_name='packagingmaterialbatch',
            index=models.Index(fields=['packaging_material', 'status'], name='allocman_mb_mat_status_idx'),
        ),
        migrations.AddIndex(
            model_name='inventoryallocation',
            index=models.Index(fields=['order', 'status'], name='allocman_al_order_status_idx'),
        ),
        migrations.AddIndex(
            model_name='inventoryallocation',
            index=models.Index(fields=['registry_entry', 'status'], name='allocman_al_entry_status_idx'),
        ),
        migrations.AddIndex(
            model_name='batchactivitylog',
            index=models.Index(fields=['registry_entry', 'timestamp'], name='allocman_log_entry_ts_idx'),
        ),
        # Constraints
        migrations.AddConstraint(
            model_name='productbatch',
            constraint=models.UniqueConstraint(fields=('sku', 'lot_number'), name='unique_product_batch_lot'),
        ),
        *quantity_constraints('productbatch', 'product_batch'),
        migrations.AddConstraint(
            model_name='packagingmaterialbatch',
            constraint=models.UniqueConstraint(fields=('packaging_material', 'lot_number'), name='unique_material_batch_lot'),
        ),
        *quantity_constraints('packagingmaterialbatch', 'material_batch'),
        migrations.AddConstraint(
            model_name='batchregistryentry',
            constraint=models.CheckConstraint(
                condition=models.Q(
                    models.Q(kind='product', packaging_material_batch__isnull=True, product_batch__isnull=False),
                    models.Q(kind='packaging_material', packaging_material_batch__isnull=False, product_batch__isnull=True),
                    _connector='OR',
                ),
                name='registry_entry_exactly_one_batch',
            ),
        ),
        migrations.AddConstraint(
            model_name='bomitem',
            constraint=models.UniqueConstraint(fields=('bom', 'part'), name='unique_bom_part'),
        ),
        migrations.AddConstraint(
            model_name='bomitem',
            constraint=models.CheckConstraint(condition=models.Q(quantity_per_unit__gt=Decimal('0')), name='bom_item_quantity_positive'),
        ),
        migrations.AddConstraint(
            model_name='orderitem',
            constraint=models.CheckConstraint(
                condition=models.Q(
                    models.Q(packaging_material__isnull=True, sku__isnull=False),
                    models.Q(packaging_material__isnull=False, sku__isnull=True),
                    _connector='OR',
                ),
                name='order_item_exactly_one_target',
            ),
        ),
        migrations.AddConstraint(
            model_name='orderitem',
            constraint=models.CheckConstraint(condition=models.Q(quantity_ordered__gt=Decimal('0')), name='order_item_quantity_positive'),
        ),
        migrations.AddConstraint(
            model_name='inventoryallocation',
            constraint=models.CheckConstraint(condition=models.Q(quantity__gt=0), name='allocation_quantity_positive'),
        ),
    ]
