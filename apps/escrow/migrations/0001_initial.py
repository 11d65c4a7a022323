import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


def _base_fields():
    return [
        ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
        ('updated_at', models.DateTimeField(auto_now=True)),
    ]


ORDER_STATUS_CHOICES = [
    ('PENDING', 'Pending'), ('ACCEPTED', 'Accepted'), ('SHIPPED', 'Shipped'), ('DELIVERED', 'Delivered'),
    ('COMPLETED', 'Completed'), ('DISPUTED', 'Disputed'), ('CANCELLED', 'Cancelled'), ('REFUNDED', 'Refunded'),
]
DISPUTE_STATUS_CHOICES = [
    ('OPEN', 'Open'), ('UNDER_REVIEW', 'Under review'), ('AWAITING_SELLER', 'Awaiting seller'),
    ('AWAITING_BUYER', 'Awaiting buyer'), ('RESOLVED_BUYER', 'Resolved for buyer'),
    ('RESOLVED_SELLER', 'Resolved for seller'), ('CLOSED', 'Closed'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=_base_fields() + [
                ('buyer_name', models.CharField(blank=True, max_length=200)),
                ('buyer_phone', models.CharField(blank=True, max_length=50)),
                ('buyer_email', models.EmailField(blank=True, max_length=254)),
                ('buyer_address', models.TextField(blank=True)),
                ('item_name', models.CharField(max_length=255)),
                ('item_description', models.TextField(blank=True)),
                ('quantity', models.PositiveIntegerField(default=1)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('currency', models.CharField(default='KES', max_length=3)),
                ('platform_fee', models.DecimalField(decimal_places=2, max_digits=14)),
                ('seller_payout', models.DecimalField(decimal_places=2, max_digits=14)),
                ('status', models.CharField(choices=ORDER_STATUS_CHOICES, db_index=True, default='PENDING', max_length=20)),
                ('version', models.PositiveIntegerField(default=0)),
                ('deadline', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at', models.DateTimeField(blank=True, null=True)),
                ('shipped_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('disputed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('refunded_at', models.DateTimeField(blank=True, null=True)),
                ('rejection_reason', models.TextField(blank=True)),
                ('cancellation_reason', models.TextField(blank=True)),
                ('courier_name', models.CharField(blank=True, max_length=120)),
                ('tracking_number', models.CharField(blank=True, max_length=120)),
                ('estimated_delivery_date', models.DateField(blank=True, null=True)),
                ('shipping_notes', models.TextField(blank=True)),
                ('proof_images', models.JSONField(blank=True, default=list)),
                ('buyer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='purchases', to=settings.AUTH_USER_MODEL)),
                ('seller', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='sales', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['seller', 'status'], name='escrow_order_seller_status_idx'),
                    models.Index(fields=['buyer', 'status'], name='escrow_order_buyer_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Dispute',
            fields=_base_fields() + [
                ('opened_by_role', models.CharField(max_length=20)),
                ('reason', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('evidence', models.JSONField(blank=True, default=list)),
                ('status', models.CharField(choices=DISPUTE_STATUS_CHOICES, db_index=True, default='OPEN', max_length=20)),
                ('resolution', models.TextField(blank=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('deadline', models.DateTimeField(blank=True, null=True)),
                ('opened_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='disputes_opened', to=settings.AUTH_USER_MODEL)),
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='dispute', to='escrow.order')),
                ('resolved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='disputes_resolved', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='DisputeMessage',
            fields=_base_fields() + [
                ('body', models.TextField()),
                ('attachments', models.JSONField(blank=True, default=list)),
                ('is_admin', models.BooleanField(default=False)),
                ('dispute', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='escrow.dispute')),
                ('sender', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='dispute_messages', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='Wallet',
            fields=_base_fields() + [
                ('available_balance', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('total_earned', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('currency', models.CharField(default='KES', max_length=3)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='wallet', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='Payout',
            fields=_base_fields() + [
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('platform_fee', models.DecimalField(decimal_places=2, max_digits=14)),
                ('currency', models.CharField(default='KES', max_length=3)),
                ('trigger', models.CharField(choices=[('confirm_delivery', 'Buyer confirmed delivery'), ('auto_release', 'Auto-released'), ('resolve_dispute', 'Dispute resolved for seller')], max_length=30)),
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='payout', to='escrow.order')),
                ('seller', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payouts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='PaymentMethod',
            fields=_base_fields() + [
                ('type', models.CharField(choices=[('MOBILE_MONEY', 'Mobile money'), ('BANK_ACCOUNT', 'Bank account')], max_length=20)),
                ('provider', models.CharField(max_length=100)),
                ('account_number', models.CharField(max_length=100)),
                ('account_name', models.CharField(max_length=200)),
                ('is_default', models.BooleanField(default=False)),
                ('is_active', models.BooleanField(default=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payment_methods', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-is_default', '-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Withdrawal',
            fields=_base_fields() + [
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('fee', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('net_amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('currency', models.CharField(default='KES', max_length=3)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('PROCESSING', 'Processing'), ('COMPLETED', 'Completed'), ('FAILED', 'Failed'), ('CANCELLED', 'Cancelled')], db_index=True, default='PENDING', max_length=20)),
                ('reference', models.CharField(blank=True, max_length=120)),
                ('failure_reason', models.TextField(blank=True)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('payment_method', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='withdrawals', to='escrow.paymentmethod')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='withdrawals', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
