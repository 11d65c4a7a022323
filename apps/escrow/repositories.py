"""
Order persistence.

Services never query Order directly for writes; they go through an
OrderRepository so the compare-and-set on `version` is applied to every
transition. Pass a different repository to the service functions to swap
the storage (the default uses the Django ORM).
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F
from django.utils import timezone

from .exceptions import ConflictError, NotFoundError
from .models import Dispute, Order


class OrderRepository:
    def get(self, order_id) -> Order:
        try:
            return Order.objects.select_related('seller', 'buyer').get(pk=order_id)
        except (Order.DoesNotExist, DjangoValidationError, ValueError):
            # malformed ids land here too
            raise NotFoundError(f"Order {order_id} not found.", order_id=order_id)

    def save(self, order: Order, changes: dict, expected_version: int, action=None) -> Order:
        """
        Write `changes` only if nobody committed since `expected_version` was
        read. Raises ConflictError otherwise; the order instance is left as is.
        """
        updated = Order.objects.filter(pk=order.pk, version=expected_version).update(
            version=F('version') + 1,
            updated_at=timezone.now(),
            **changes,
        )
        if updated != 1:
            raise ConflictError(order_id=order.pk, action=action, current_status=order.status)
        for field, value in changes.items():
            setattr(order, field, value)
        order.version = expected_version + 1
        return order

    def find_many(self, **filters) -> list:
        return list(Order.objects.filter(**filters).order_by('created_at'))

    def get_dispute(self, dispute_id) -> Dispute:
        try:
            return Dispute.objects.select_related('order').get(pk=dispute_id)
        except (Dispute.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(f"Dispute {dispute_id} not found.")

    def get_dispute_for_order(self, order: Order) -> Dispute:
        try:
            return Dispute.objects.get(order=order)
        except Dispute.DoesNotExist:
            raise NotFoundError(f"Order {order.pk} has no dispute.", order_id=order.pk)


default_repository = OrderRepository()
