from django.contrib import admin

from .models import Dispute, DisputeMessage, Order, PaymentMethod, Payout, Wallet, Withdrawal


class DisputeMessageInline(admin.TabularInline):
    model = DisputeMessage
    extra = 0
    readonly_fields = ('sender', 'body', 'attachments', 'is_admin', 'created_at')
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'item_name', 'seller', 'buyer_name', 'amount', 'currency', 'status', 'created_at')
    list_filter = ('status', 'currency')
    search_fields = ('id', 'item_name', 'buyer_name', 'buyer_phone', 'tracking_number')
    # status only moves through services.transition
    readonly_fields = (
        'status', 'version', 'platform_fee', 'seller_payout', 'paid_at', 'accepted_at', 'rejected_at',
        'shipped_at', 'delivered_at', 'completed_at', 'disputed_at', 'cancelled_at', 'refunded_at',
    )


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'opened_by_role', 'reason', 'status', 'created_at')
    list_filter = ('status', 'opened_by_role')
    readonly_fields = ('order', 'opened_by', 'status', 'resolved_by', 'resolved_at')
    inlines = [DisputeMessageInline]


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ('user', 'available_balance', 'total_earned', 'currency')
    readonly_fields = ('available_balance', 'total_earned')


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    list_display = ('order', 'seller', 'amount', 'platform_fee', 'trigger', 'created_at')
    list_filter = ('trigger',)


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ('user', 'type', 'provider', 'account_name', 'is_default', 'is_active')
    list_filter = ('type', 'is_active')


@admin.register(Withdrawal)
class WithdrawalAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'amount', 'fee', 'net_amount', 'status', 'created_at')
    list_filter = ('status',)
    readonly_fields = ('amount', 'fee', 'net_amount')
