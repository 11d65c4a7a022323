# escrow/views.py
"""
Thin HTTP layer over escrow.services. Views parse the request, call one
service function and serialize what comes back; domain errors propagate to
common.exceptions.custom_exception_handler.
"""
from django.contrib.auth import get_user_model
from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiResponse
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.pagination import StandardResultsSetPagination
from common.permissions import IsPlatformAdmin, IsSeller
from . import services
from .exceptions import NotFoundError, UnauthorizedAction
from .lifecycle import Action
from .models import Dispute, Order, PaymentMethod, Payout, Withdrawal
from .serializers import (
    DisputeMessageSerializer, DisputeOpenSerializer, DisputeResolveSerializer, DisputeSerializer,
    DisputeStatusSerializer, OrderCreateSerializer, OrderListQuerySerializer, OrderSerializer,
    PaymentMethodSerializer, PayoutSerializer, ProofImagesSerializer, ReasonSerializer, ShipSerializer,
    TimelineEventSerializer, WalletSummarySerializer, WithdrawalCreateSerializer, WithdrawalProcessSerializer,
    WithdrawalSerializer,
)


def _roles(orders, user):
    roles = {}
    for order in orders:
        try:
            roles[order.pk] = services.actor_role(order, user)
        except UnauthorizedAction:
            pass
    return roles


@extend_schema_view(
    list=extend_schema(tags=['Orders'], parameters=[OrderListQuerySerializer]),
    retrieve=extend_schema(tags=['Orders']),
    create=extend_schema(tags=['Orders'], request=OrderCreateSerializer, responses={201: OrderSerializer}),
)
class OrderViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin,
                   viewsets.GenericViewSet):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination

    def get_queryset(self):
        return Order.objects.for_user(self.request.user).select_related('seller', 'buyer')

    def _render(self, order, status_code=status.HTTP_200_OK):
        context = self.get_serializer_context()
        context['roles'] = _roles([order], self.request.user)
        return Response(OrderSerializer(order, context=context).data, status=status_code)

    def list(self, request, *args, **kwargs):
        query = OrderListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        orders = services.filter_and_sort(list(self.get_queryset()), **query.validated_data)
        page = self.paginate_queryset(orders)
        context = self.get_serializer_context()
        context['roles'] = _roles(page, request.user)
        data = OrderSerializer(page, many=True, context=context).data
        return self.get_paginated_response(data)

    def retrieve(self, request, pk=None, *args, **kwargs):
        order = services.get_order(pk)
        services.actor_role(order, request.user)
        return self._render(order)

    def create(self, request, *args, **kwargs):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        seller_id = data.pop('seller', None)
        if seller_id is None:
            seller, buyer = request.user, None
        else:
            seller = get_user_model().objects.filter(pk=seller_id).first()
            if seller is None:
                raise NotFoundError(f"Seller {seller_id} not found.")
            buyer = request.user
        order = services.create_order(seller=seller, buyer=buyer, **data)
        return self._render(order, status.HTTP_201_CREATED)

    def _transition(self, request, pk, action_name, payload=None):
        order = services.transition(pk, action_name, request.user, payload)
        return self._render(order)

    @extend_schema(tags=['Orders'], summary="Seller accepts a pending order", request=None,
                   responses={200: OrderSerializer})
    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        return self._transition(request, pk, Action.ACCEPT)

    @extend_schema(tags=['Orders'], summary="Seller rejects a pending order (reason required)",
                   request=ReasonSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._transition(request, pk, Action.REJECT, serializer.validated_data)

    @extend_schema(tags=['Orders'], summary="Buyer or admin cancels a pending order",
                   request=ReasonSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._transition(request, pk, Action.CANCEL, serializer.validated_data)

    @extend_schema(tags=['Orders'], summary="Seller ships an accepted order",
                   request=ShipSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'])
    def ship(self, request, pk=None):
        serializer = ShipSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._transition(request, pk, Action.SHIP, serializer.validated_data)

    @extend_schema(tags=['Orders'], summary="Record courier delivery", request=None,
                   responses={200: OrderSerializer})
    @action(detail=True, methods=['post'], url_path='mark-delivered')
    def mark_delivered(self, request, pk=None):
        return self._transition(request, pk, Action.MARK_DELIVERED)

    @extend_schema(tags=['Orders'], summary="Buyer confirms receipt; releases funds to the seller",
                   request=None, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'], url_path='confirm-delivery')
    def confirm_delivery(self, request, pk=None):
        return self._transition(request, pk, Action.CONFIRM_DELIVERY)

    @extend_schema(tags=['Orders'], summary="Attach more proof-of-shipment images",
                   request=ProofImagesSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=['post'], url_path='proof-images')
    def proof_images(self, request, pk=None):
        serializer = ProofImagesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._transition(request, pk, Action.ADD_PROOF_IMAGES, serializer.validated_data)

    @extend_schema(tags=['Disputes'], summary="Open a dispute on an order",
                   request=DisputeOpenSerializer, responses={201: DisputeSerializer})
    @action(detail=True, methods=['post'])
    def dispute(self, request, pk=None):
        serializer = DisputeOpenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = services.open_dispute(pk, request.user, **serializer.validated_data)
        return Response(DisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=['Orders'], summary="Progress timeline for an order",
                   responses={200: TimelineEventSerializer(many=True)})
    @action(detail=True, methods=['get'])
    def timeline(self, request, pk=None):
        order = services.get_order(pk)
        services.actor_role(order, request.user)
        events = services.get_timeline(order)
        return Response(TimelineEventSerializer([e._asdict() for e in events], many=True).data)


@extend_schema_view(
    list=extend_schema(tags=['Disputes']),
    retrieve=extend_schema(tags=['Disputes']),
)
class DisputeViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = DisputeSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'opened_by_role']

    def get_queryset(self):
        user = self.request.user
        qs = Dispute.objects.select_related('order').prefetch_related('messages')
        if getattr(user, 'is_platform_admin', False):
            return qs
        return qs.filter(Q(order__seller=user) | Q(order__buyer=user))

    @extend_schema(tags=['Disputes'], summary="List or post dispute messages",
                   request=DisputeMessageSerializer, responses={200: DisputeMessageSerializer(many=True),
                                                                201: DisputeMessageSerializer})
    @action(detail=True, methods=['get', 'post'])
    def messages(self, request, pk=None):
        dispute = self.get_object()
        if request.method == 'GET':
            return Response(DisputeMessageSerializer(dispute.messages.all(), many=True).data)
        serializer = DisputeMessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = services.add_dispute_message(dispute.pk, request.user, **serializer.validated_data)
        return Response(DisputeMessageSerializer(message).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=['Disputes'], summary="Admin rules on a dispute",
                   request=DisputeResolveSerializer, responses={200: DisputeSerializer})
    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        serializer = DisputeResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = services.resolve_dispute(pk, request.user, **serializer.validated_data)
        return Response(DisputeSerializer(dispute).data)

    @extend_schema(tags=['Disputes'], summary="Admin moves a dispute through review",
                   request=DisputeStatusSerializer, responses={200: DisputeSerializer})
    @action(detail=True, methods=['post'], url_path='status')
    def set_status(self, request, pk=None):
        serializer = DisputeStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = services.set_dispute_status(pk, request.user, serializer.validated_data['status'])
        return Response(DisputeSerializer(dispute).data)

    @extend_schema(tags=['Disputes'], summary="Admin closes a resolved dispute", request=None,
                   responses={200: DisputeSerializer})
    @action(detail=True, methods=['post'])
    def close(self, request, pk=None):
        dispute = services.close_dispute(pk, request.user)
        return Response(DisputeSerializer(dispute).data)


class WalletView(APIView):
    permission_classes = [IsSeller]

    @extend_schema(tags=['Wallet'], summary="Seller balance summary",
                   responses={200: WalletSummarySerializer})
    def get(self, request):
        return Response(WalletSummarySerializer(services.get_wallet_summary(request.user)).data)


@extend_schema_view(list=extend_schema(tags=['Wallet'], summary="Payouts credited to the seller"))
class PayoutViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = PayoutSerializer
    permission_classes = [IsSeller]
    pagination_class = StandardResultsSetPagination

    def get_queryset(self):
        return Payout.objects.filter(seller=self.request.user)


@extend_schema_view(
    list=extend_schema(tags=['Wallet']),
    retrieve=extend_schema(tags=['Wallet']),
    create=extend_schema(tags=['Wallet']),
    destroy=extend_schema(tags=['Wallet'], summary="Deactivate a payment method"),
)
class PaymentMethodViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin,
                           mixins.DestroyModelMixin, viewsets.GenericViewSet):
    serializer_class = PaymentMethodSerializer
    permission_classes = [IsSeller]

    def get_queryset(self):
        return PaymentMethod.objects.filter(user=self.request.user, is_active=True)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        method = services.add_payment_method(request.user, **serializer.validated_data)
        return Response(self.get_serializer(method).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None, *args, **kwargs):
        services.deactivate_payment_method(request.user, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(tags=['Wallet'], summary="Make this the default payout destination", request=None,
                   responses={200: PaymentMethodSerializer})
    @action(detail=True, methods=['post'], url_path='set-default')
    def set_default(self, request, pk=None):
        method = services.set_default_payment_method(request.user, pk)
        return Response(self.get_serializer(method).data)


@extend_schema_view(
    list=extend_schema(tags=['Withdrawals']),
    retrieve=extend_schema(tags=['Withdrawals']),
    create=extend_schema(tags=['Withdrawals'], request=WithdrawalCreateSerializer,
                         responses={201: WithdrawalSerializer}),
)
class WithdrawalViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin,
                        viewsets.GenericViewSet):
    serializer_class = WithdrawalSerializer
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'currency']

    def get_permissions(self):
        if self.action == 'process':
            return [IsPlatformAdmin()]
        if self.action in ('list', 'retrieve'):
            return [IsAuthenticated()]
        return [IsSeller()]

    def get_queryset(self):
        user = self.request.user
        qs = Withdrawal.objects.select_related('payment_method')
        if getattr(user, 'is_platform_admin', False):
            return qs
        return qs.filter(user=user)

    def create(self, request, *args, **kwargs):
        serializer = WithdrawalCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        withdrawal = services.request_withdrawal(request.user, serializer.validated_data['amount'],
                                                 serializer.validated_data['payment_method'])
        return Response(WithdrawalSerializer(withdrawal).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=['Withdrawals'], summary="Cancel a pending withdrawal", request=None,
                   responses={200: WithdrawalSerializer})
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        return Response(WithdrawalSerializer(services.cancel_withdrawal(pk, request.user)).data)

    @extend_schema(
        tags=['Withdrawals'], summary="Admin records the payout provider's outcome",
        request=WithdrawalProcessSerializer,
        responses={200: WithdrawalSerializer, 409: OpenApiResponse(description="Illegal status move")},
        parameters=[OpenApiParameter('id', str, OpenApiParameter.PATH)],
    )
    @action(detail=True, methods=['post'])
    def process(self, request, pk=None):
        serializer = WithdrawalProcessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        withdrawal = services.process_withdrawal(pk, request.user, **serializer.validated_data)
        return Response(WithdrawalSerializer(withdrawal).data)
