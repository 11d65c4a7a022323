from rest_framework import serializers

from .lifecycle import DisputeStatus, SORT_KEYS, WINNER_BUYER, WINNER_SELLER, available_actions
from .models import Dispute, DisputeMessage, Order, PaymentMethod, Payout, Withdrawal


class ShippingInfoSerializer(serializers.Serializer):
    courier_name = serializers.CharField()
    tracking_number = serializers.CharField()
    estimated_delivery_date = serializers.DateField(allow_null=True)
    notes = serializers.CharField(allow_blank=True)
    proof_images = serializers.ListField(child=serializers.CharField())


class OrderSerializer(serializers.ModelSerializer):
    buyer_display_name = serializers.CharField(read_only=True)
    shipping_info = ShippingInfoSerializer(read_only=True, allow_null=True)
    available_actions = serializers.SerializerMethodField()

    class Meta:
        model = Order
        exclude = ('courier_name', 'tracking_number', 'estimated_delivery_date', 'shipping_notes', 'proof_images')
        read_only_fields = [f.name for f in Order._meta.fields]

    def get_available_actions(self, obj):
        role = self.context.get('roles', {}).get(obj.pk)
        return available_actions(obj, role) if role else []


class OrderCreateSerializer(serializers.Serializer):
    # set when a buyer checks out; sellers recording an order leave it empty
    seller = serializers.UUIDField(required=False)
    item_name = serializers.CharField(max_length=255)
    item_description = serializers.CharField(required=False, allow_blank=True, default='')
    quantity = serializers.IntegerField(min_value=1, default=1)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField(max_length=3, required=False)
    buyer_name = serializers.CharField(required=False, allow_blank=True, default='')
    buyer_phone = serializers.CharField(required=False, allow_blank=True, default='')
    buyer_email = serializers.EmailField(required=False, allow_blank=True, default='')
    buyer_address = serializers.CharField(required=False, allow_blank=True, default='')


class OrderListQuerySerializer(serializers.Serializer):
    status = serializers.CharField(required=False, allow_blank=True)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    search = serializers.CharField(required=False, allow_blank=True)
    sort = serializers.ChoiceField(choices=sorted(SORT_KEYS), default='newest')

    def validate(self, attrs):
        if attrs.get('date_from') and attrs.get('date_to') and attrs['date_from'] > attrs['date_to']:
            raise serializers.ValidationError({'date_to': 'Must not be before date_from.'})
        return attrs


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class ShipSerializer(serializers.Serializer):
    courier_name = serializers.CharField(required=False, allow_blank=True, default='')
    tracking_number = serializers.CharField(required=False, allow_blank=True, default='')
    estimated_delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    proof_images = serializers.ListField(child=serializers.URLField(), required=False, default=list)


class ProofImagesSerializer(serializers.Serializer):
    images = serializers.ListField(child=serializers.URLField(), allow_empty=False)


class TimelineEventSerializer(serializers.Serializer):
    key = serializers.CharField()
    title = serializers.CharField()
    completed = serializers.BooleanField()
    completed_at = serializers.DateTimeField(allow_null=True)


class DisputeMessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = DisputeMessage
        fields = ('id', 'sender', 'body', 'attachments', 'is_admin', 'created_at')
        read_only_fields = ('id', 'sender', 'is_admin', 'created_at')


class DisputeSerializer(serializers.ModelSerializer):
    messages = DisputeMessageSerializer(many=True, read_only=True)

    class Meta:
        model = Dispute
        fields = '__all__'
        read_only_fields = [f.name for f in Dispute._meta.fields]


class DisputeOpenSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    evidence = serializers.ListField(child=serializers.URLField(), required=False, default=list)


class DisputeResolveSerializer(serializers.Serializer):
    winner = serializers.ChoiceField(choices=[WINNER_BUYER, WINNER_SELLER])
    resolution = serializers.CharField(required=False, allow_blank=True, default='')


class DisputeStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DisputeStatus.choices)


class WalletSummarySerializer(serializers.Serializer):
    available_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_earned = serializers.DecimalField(max_digits=14, decimal_places=2)
    withdrawn = serializers.DecimalField(max_digits=14, decimal_places=2)
    withdrawable = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField()


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = '__all__'


class PaymentMethodSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentMethod
        fields = ('id', 'type', 'provider', 'account_number', 'account_name', 'is_default', 'is_active', 'created_at')
        read_only_fields = ('id', 'is_active', 'created_at')


class WithdrawalSerializer(serializers.ModelSerializer):
    class Meta:
        model = Withdrawal
        fields = '__all__'
        read_only_fields = [f.name for f in Withdrawal._meta.fields]


class WithdrawalCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_method = serializers.UUIDField()


class WithdrawalProcessSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[
        Withdrawal.Status.PROCESSING, Withdrawal.Status.COMPLETED, Withdrawal.Status.FAILED,
    ])
    reference = serializers.CharField(required=False, allow_blank=True, default='')
    failure_reason = serializers.CharField(required=False, allow_blank=True, default='')
