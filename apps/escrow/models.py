"""
Escrow Django App (escrow)

Purpose:
- Orders paid into escrow and released to sellers once delivery is confirmed,
  the release window elapses, or an admin settles a dispute in the seller's favour.
- Disputes with an append-only message log.
- Seller wallets, payout records, payout destinations and withdrawal requests.

Status rules live in lifecycle.py; every write to Order.status goes through
services.transition so the version check and the wallet credit stay atomic.
"""
import uuid

from django.conf import settings
from django.db import models
from django.db.models import JSONField
from django.utils import timezone

from .lifecycle import OrderStatus, DisputeStatus, ESCROW_STATUSES


class BaseEntity(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class OrderQuerySet(models.QuerySet):
    def for_user(self, user):
        if getattr(user, "is_platform_admin", False):
            return self
        return self.filter(models.Q(seller=user) | models.Q(buyer=user))

    def in_escrow(self):
        return self.filter(status__in=ESCROW_STATUSES)


class Order(BaseEntity):
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='sales')
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                              related_name='purchases')
    # guest checkout contact details; also a snapshot for account buyers
    buyer_name = models.CharField(max_length=200, blank=True)
    buyer_phone = models.CharField(max_length=50, blank=True)
    buyer_email = models.EmailField(blank=True)
    buyer_address = models.TextField(blank=True)

    item_name = models.CharField(max_length=255)
    item_description = models.TextField(blank=True)
    quantity = models.PositiveIntegerField(default=1)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    currency = models.CharField(max_length=3, default='KES')
    platform_fee = models.DecimalField(max_digits=14, decimal_places=2)
    seller_payout = models.DecimalField(max_digits=14, decimal_places=2)

    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)
    version = models.PositiveIntegerField(default=0)
    deadline = models.DateTimeField(null=True, blank=True, db_index=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True, db_index=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    rejection_reason = models.TextField(blank=True)
    cancellation_reason = models.TextField(blank=True)

    courier_name = models.CharField(max_length=120, blank=True)
    tracking_number = models.CharField(max_length=120, blank=True)
    estimated_delivery_date = models.DateField(null=True, blank=True)
    shipping_notes = models.TextField(blank=True)
    proof_images = JSONField(default=list, blank=True)

    objects = OrderQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['seller', 'status'], name='escrow_order_seller_status_idx'),
            models.Index(fields=['buyer', 'status'], name='escrow_order_buyer_status_idx'),
        ]

    def __str__(self):
        return f"{self.item_name} x{self.quantity} [{self.status}]"

    @property
    def buyer_display_name(self):
        if self.buyer_id and self.buyer.display_name:
            return self.buyer.display_name
        return self.buyer_name

    @property
    def shipping_info(self):
        if not self.shipped_at:
            return None
        return {
            'courier_name': self.courier_name,
            'tracking_number': self.tracking_number,
            'estimated_delivery_date': self.estimated_delivery_date,
            'notes': self.shipping_notes,
            'proof_images': list(self.proof_images or []),
        }


class Dispute(BaseEntity):
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='dispute')
    opened_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='disputes_opened')
    opened_by_role = models.CharField(max_length=20)  # BUYER | SELLER
    reason = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    evidence = JSONField(default=list, blank=True)  # list of URLs
    status = models.CharField(max_length=20, choices=DisputeStatus.choices, default=DisputeStatus.OPEN, db_index=True)
    resolution = models.TextField(blank=True)
    resolved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='disputes_resolved')
    resolved_at = models.DateTimeField(null=True, blank=True)
    deadline = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Dispute {self.pk} on order {self.order_id} [{self.status}]"


class DisputeMessage(BaseEntity):
    dispute = models.ForeignKey(Dispute, on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='dispute_messages')
    body = models.TextField()
    attachments = JSONField(default=list, blank=True)
    is_admin = models.BooleanField(default=False)

    class Meta:
        ordering = ['created_at']


class Wallet(BaseEntity):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='wallet')
    available_balance = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_earned = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='KES')

    def __str__(self):
        return f"Wallet of {self.user} ({self.available_balance} {self.currency})"


class Payout(BaseEntity):
    TRIGGERS = [
        ('confirm_delivery', 'Buyer confirmed delivery'),
        ('auto_release', 'Auto-released'),
        ('resolve_dispute', 'Dispute resolved for seller'),
    ]
    # one payout per order: the unique key rules out a second credit
    order = models.OneToOneField(Order, on_delete=models.PROTECT, related_name='payout')
    seller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='payouts')
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=14, decimal_places=2)
    currency = models.CharField(max_length=3, default='KES')
    trigger = models.CharField(max_length=30, choices=TRIGGERS)

    class Meta:
        ordering = ['-created_at']


class PaymentMethod(BaseEntity):
    class Type(models.TextChoices):
        MOBILE_MONEY = 'MOBILE_MONEY', 'Mobile money'
        BANK_ACCOUNT = 'BANK_ACCOUNT', 'Bank account'

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='payment_methods')
    type = models.CharField(max_length=20, choices=Type.choices)
    provider = models.CharField(max_length=100)
    account_number = models.CharField(max_length=100)
    account_name = models.CharField(max_length=200)
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['-is_default', '-created_at']

    def __str__(self):
        return f"{self.provider} {self.account_number[-4:]}"


class Withdrawal(BaseEntity):
    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        PROCESSING = 'PROCESSING', 'Processing'
        COMPLETED = 'COMPLETED', 'Completed'
        FAILED = 'FAILED', 'Failed'
        CANCELLED = 'CANCELLED', 'Cancelled'

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='withdrawals')
    payment_method = models.ForeignKey(PaymentMethod, on_delete=models.PROTECT, related_name='withdrawals')
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    fee = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    net_amount = models.DecimalField(max_digits=14, decimal_places=2)
    currency = models.CharField(max_length=3, default='KES')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    reference = models.CharField(max_length=120, blank=True)
    failure_reason = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
