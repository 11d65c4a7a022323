"""
Escrow services: the only code that changes order state.

Each transition is planned by lifecycle.plan_transition, then written in one
atomic block together with its side effects (dispute rows, wallet credit,
payout record). The repository's version check makes two concurrent
transitions on the same order impossible to both commit.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from common.phone import normalize_phone
from . import conf, lifecycle
from .exceptions import (
    ConflictError, EscrowError, InvalidTransition, NotFoundError, UnauthorizedAction, ValidationError,
)
from .lifecycle import Action, ActorRole, DisputeStatus, OrderStatus
from .models import Dispute, DisputeMessage, Order, PaymentMethod, Payout, Wallet, Withdrawal
from .repositories import default_repository
from .signals import order_transitioned

logger = logging.getLogger(__name__)


def _is_admin(user):
    return bool(getattr(user, "is_platform_admin", False))


def actor_role(order, actor):
    """Role `actor` plays on `order`; None is the scheduler."""
    if actor is None:
        return ActorRole.SYSTEM
    # a party acts as that party even when they also hold admin rights
    if actor.pk == order.seller_id:
        return ActorRole.SELLER
    if order.buyer_id is not None and actor.pk == order.buyer_id:
        return ActorRole.BUYER
    if _is_admin(actor):
        return ActorRole.ADMIN
    raise UnauthorizedAction("You are not a party to this order.", order_id=order.pk, current_status=order.status)


# ---------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------
def wallet_currency(seller):
    """Currency the seller is paid in: their wallet's, else their country's."""
    wallet = Wallet.objects.filter(user=seller).only("currency").first()
    if wallet is not None:
        return wallet.currency
    return conf.currency_for_country(getattr(seller, "country", ""))


def create_order(seller, item_name, quantity, amount, currency=None, buyer=None, buyer_name="",
                 buyer_phone="", buyer_email="", buyer_address="", item_description="",
                 deadline=None, now=None):
    """
    Record a paid order awaiting the seller's decision.

    Fee and payout are computed here once and stored; nothing recomputes them.
    """
    now = now or timezone.now()
    if getattr(seller, "role", None) != ActorRole.SELLER:
        raise UnauthorizedAction("Only sellers can receive orders.")
    if buyer is not None and buyer.pk == seller.pk:
        raise ValidationError("A seller cannot buy from themselves.", field="buyer")
    item_name = (item_name or "").strip()
    if not item_name:
        raise ValidationError("Item name is required.", field="item_name")
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number.", field="quantity")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.", field="quantity")
    seller_currency = wallet_currency(seller)
    currency = (currency or seller_currency).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("Currency must be a 3-letter code.", field="currency")
    if currency != seller_currency:
        raise ValidationError(f"This seller is paid in {seller_currency}; price the order in {seller_currency}.",
                              field="currency", expected=seller_currency)

    places = conf.currency_precision(currency)
    amount = lifecycle.validate_amount(amount, places)
    platform_fee, seller_payout = lifecycle.compute_fees(amount, conf.fee_rate(), places)

    if buyer is not None:
        buyer_name = buyer_name or buyer.display_name
        buyer_phone = buyer_phone or (buyer.phone or "")
        buyer_email = buyer_email or (buyer.email or "")
    elif not (buyer_phone or buyer_email):
        raise ValidationError("Guest orders need a buyer phone or email.", field="buyer_phone")

    order = Order.objects.create(
        seller=seller,
        buyer=buyer,
        buyer_name=(buyer_name or "").strip(),
        buyer_phone=normalize_phone(buyer_phone) or "",
        buyer_email=(buyer_email or "").strip(),
        buyer_address=(buyer_address or "").strip(),
        item_name=item_name,
        item_description=(item_description or "").strip(),
        quantity=quantity,
        amount=amount,
        currency=currency,
        platform_fee=platform_fee,
        seller_payout=seller_payout,
        status=OrderStatus.PENDING,
        created_at=now,
        paid_at=now,
        deadline=deadline or now + conf.accept_deadline(),
    )
    logger.info("order %s created for seller %s: %s %s (fee %s)", order.pk, seller.pk, amount, currency, platform_fee)
    return order


def get_order(order_id, repository=None):
    return (repository or default_repository).get(order_id)


def get_timeline(order):
    return lifecycle.build_timeline(order)


def filter_and_sort(orders, status=None, date_from=None, date_to=None, search=None, sort="newest"):
    return lifecycle.filter_and_sort(orders, status=status, date_from=date_from, date_to=date_to,
                                     search=search, sort=sort)


def _credit_seller(order, trigger, now):
    wallet, _ = Wallet.objects.get_or_create(user_id=order.seller_id, defaults={"currency": order.currency})
    Wallet.objects.filter(pk=wallet.pk).update(
        available_balance=F("available_balance") + order.seller_payout,
        total_earned=F("total_earned") + order.seller_payout,
        updated_at=now,
    )
    Payout.objects.create(
        order=order,
        seller_id=order.seller_id,
        amount=order.seller_payout,
        platform_fee=order.platform_fee,
        currency=order.currency,
        trigger=trigger,
        created_at=now,
    )


def transition(order_id, action, actor, payload=None, now=None, repository=None):
    """
    Apply `action` to the order on behalf of `actor` (None = system).

    Raises NotFoundError, UnauthorizedAction, InvalidTransition,
    ValidationError or ConflictError; on any of them nothing is written.
    """
    repo = repository or default_repository
    now = now or timezone.now()
    payload = payload or {}
    order = repo.get(order_id)
    role = actor_role(order, actor)

    dispute = None
    if action == Action.RESOLVE_DISPUTE and order.status == OrderStatus.DISPUTED:
        dispute = repo.get_dispute_for_order(order)
        lifecycle.ensure_dispute_open(dispute)

    try:
        changes = lifecycle.plan_transition(order, action, role, payload, now=now,
                                            release_window=conf.release_window())
    except EscrowError as exc:
        logger.info("order %s: %s by %s rejected (%s)", order.pk, action, role, exc.code)
        raise

    previous = order.status
    with transaction.atomic():
        repo.save(order, changes, expected_version=order.version, action=action)

        if action == Action.OPEN_DISPUTE:
            Dispute.objects.create(
                order=order,
                opened_by=actor,
                opened_by_role=role,
                reason=str(payload["reason"]).strip(),
                description=str(payload.get("description") or "").strip(),
                evidence=list(payload.get("evidence") or []),
                deadline=now + conf.dispute_response_window(),
                created_at=now,
            )
        elif action == Action.RESOLVE_DISPUTE:
            winner = str(payload["winner"]).lower()
            dispute.status = (DisputeStatus.RESOLVED_SELLER if winner == lifecycle.WINNER_SELLER
                              else DisputeStatus.RESOLVED_BUYER)
            dispute.resolution = str(payload.get("resolution") or "").strip()
            dispute.resolved_by = actor
            dispute.resolved_at = now
            dispute.save(update_fields=["status", "resolution", "resolved_by", "resolved_at", "updated_at"])

        if lifecycle.releases_funds(changes):
            _credit_seller(order, trigger=str(action), now=now)

        transaction.on_commit(lambda: order_transitioned.send(
            sender=Order, order=order, action=str(action), previous_status=previous, actor=actor,
        ))

    logger.info("order %s: %s -> %s by %s", order.pk, previous, order.status, role)
    return order


# ---------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------
def open_dispute(order_id, actor, reason, description="", evidence=None, now=None, repository=None):
    order = transition(order_id, Action.OPEN_DISPUTE, actor,
                       {"reason": reason, "description": description, "evidence": evidence or []},
                       now=now, repository=repository)
    return Dispute.objects.get(order=order)


def resolve_dispute(dispute_id, actor, winner, resolution="", now=None, repository=None):
    """Admin ruling: seller wins -> order completed and paid out, buyer wins -> refunded."""
    repo = repository or default_repository
    dispute = repo.get_dispute(dispute_id)
    transition(dispute.order_id, Action.RESOLVE_DISPUTE, actor,
               {"winner": winner, "resolution": resolution}, now=now, repository=repo)
    dispute.refresh_from_db()
    return dispute


def _require_admin(actor, action, dispute=None):
    if not _is_admin(actor):
        raise UnauthorizedAction("Only admins can do this.", action=action,
                                 order_id=getattr(dispute, "order_id", None))


REVIEW_STATUSES = (
    DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW,
    DisputeStatus.AWAITING_SELLER, DisputeStatus.AWAITING_BUYER,
)


def set_dispute_status(dispute_id, actor, status, repository=None):
    repo = repository or default_repository
    dispute = repo.get_dispute(dispute_id)
    _require_admin(actor, "set_dispute_status", dispute)
    if status not in REVIEW_STATUSES:
        raise ValidationError(f"Status must be one of {', '.join(REVIEW_STATUSES)}; "
                              "use resolve to settle a dispute.", field="status")
    lifecycle.ensure_dispute_open(dispute, action="set_dispute_status")
    updated = Dispute.objects.filter(pk=dispute.pk, status=dispute.status).update(
        status=status, updated_at=timezone.now())
    if updated != 1:
        raise _dispute_conflict(dispute)
    dispute.status = status
    return dispute


def close_dispute(dispute_id, actor, repository=None):
    repo = repository or default_repository
    dispute = repo.get_dispute(dispute_id)
    _require_admin(actor, "close_dispute", dispute)
    if dispute.status not in (DisputeStatus.RESOLVED_BUYER, DisputeStatus.RESOLVED_SELLER):
        raise InvalidTransition(dispute.status, "close_dispute", order_id=dispute.order_id,
                                message="Only resolved disputes can be closed.")
    updated = Dispute.objects.filter(pk=dispute.pk, status=dispute.status).update(
        status=DisputeStatus.CLOSED, updated_at=timezone.now())
    if updated != 1:
        raise _dispute_conflict(dispute)
    dispute.status = DisputeStatus.CLOSED
    return dispute


def _dispute_conflict(dispute):
    return ConflictError("The dispute was modified concurrently; re-fetch and retry.",
                         order_id=dispute.order_id, current_status=dispute.status)


def add_dispute_message(dispute_id, sender, body, attachments=None, repository=None):
    repo = repository or default_repository
    dispute = repo.get_dispute(dispute_id)
    order = dispute.order
    is_admin = _is_admin(sender)
    if not is_admin and sender.pk not in (order.seller_id, order.buyer_id):
        raise UnauthorizedAction("You are not a party to this dispute.", order_id=order.pk)
    if dispute.status == DisputeStatus.CLOSED:
        raise InvalidTransition(dispute.status, "add_dispute_message", order_id=order.pk,
                                message="The dispute is closed.")
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message body is required.", field="body")
    return DisputeMessage.objects.create(
        dispute=dispute, sender=sender, body=body,
        attachments=list(attachments or []), is_admin=is_admin,
    )


# ---------------------------------------------------------------------
# Scheduled sweeps
# ---------------------------------------------------------------------
def release_due_orders(now=None, repository=None):
    """
    Complete shipped orders whose release window elapsed. Safe to re-run:
    released orders are no longer SHIPPED/DELIVERED and each release goes
    through the version-checked transition.
    """
    repo = repository or default_repository
    now = now or timezone.now()
    cutoff = now - conf.release_window()
    released = []
    for order in repo.find_many(status__in=[OrderStatus.SHIPPED, OrderStatus.DELIVERED], shipped_at__lte=cutoff):
        try:
            released.append(transition(order.pk, Action.AUTO_RELEASE, None, now=now, repository=repo))
        except EscrowError as exc:
            logger.warning("auto-release skipped for order %s: %s", order.pk, exc)
    logger.info("auto-release sweep released %d order(s)", len(released))
    return released


def expire_stale_orders(now=None, repository=None):
    """Cancel pending orders the seller never acted on before the deadline."""
    repo = repository or default_repository
    now = now or timezone.now()
    expired = []
    for order in repo.find_many(status=OrderStatus.PENDING, deadline__lte=now):
        try:
            expired.append(transition(order.pk, Action.EXPIRE, None, now=now, repository=repo))
        except EscrowError as exc:
            logger.warning("expiry skipped for order %s: %s", order.pk, exc)
    logger.info("expiry sweep cancelled %d order(s)", len(expired))
    return expired


# ---------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------
RESERVING_WITHDRAWALS = (Withdrawal.Status.PENDING, Withdrawal.Status.PROCESSING, Withdrawal.Status.COMPLETED)


def _reserved_amount(user):
    total = Withdrawal.objects.filter(user=user, status__in=RESERVING_WITHDRAWALS).aggregate(total=Sum("amount"))
    return total["total"] or Decimal("0")


def get_wallet_summary(user):
    wallet = Wallet.objects.filter(user=user).first()
    available = wallet.available_balance if wallet else Decimal("0")
    currency = wallet.currency if wallet else wallet_currency(user)
    pending = Order.objects.filter(seller=user, currency=currency).in_escrow().aggregate(total=Sum("seller_payout"))["total"]
    reserved = _reserved_amount(user)
    return {
        "available_balance": available,
        "pending_balance": pending or Decimal("0"),
        "total_earned": wallet.total_earned if wallet else Decimal("0"),
        "withdrawn": reserved,
        "withdrawable": available - reserved,
        "currency": currency,
    }


# ---------------------------------------------------------------------
# Payment methods
# ---------------------------------------------------------------------
def add_payment_method(user, type, provider, account_number, account_name, is_default=False):
    if type not in PaymentMethod.Type.values:
        raise ValidationError(f"Unknown payment method type '{type}'.", field="type")
    fields = {"provider": provider, "account_number": account_number, "account_name": account_name}
    for name, value in fields.items():
        if not (value or "").strip():
            raise ValidationError(f"'{name}' is required.", field=name)
    with transaction.atomic():
        active = PaymentMethod.objects.select_for_update().filter(user=user, is_active=True)
        make_default = is_default or not active.exists()
        if make_default:
            active.update(is_default=False)
        method = PaymentMethod.objects.create(
            user=user, type=type, is_default=make_default,
            **{name: value.strip() for name, value in fields.items()},
        )
    return method


def _get_payment_method(user, method_id):
    try:
        return PaymentMethod.objects.get(pk=method_id, user=user, is_active=True)
    except (PaymentMethod.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError("Payment method not found.")


def set_default_payment_method(user, method_id):
    with transaction.atomic():
        method = _get_payment_method(user, method_id)
        PaymentMethod.objects.filter(user=user).exclude(pk=method.pk).update(is_default=False)
        method.is_default = True
        method.save(update_fields=["is_default", "updated_at"])
    return method


def deactivate_payment_method(user, method_id):
    with transaction.atomic():
        method = _get_payment_method(user, method_id)
        was_default = method.is_default
        method.is_active = False
        method.is_default = False
        method.save(update_fields=["is_active", "is_default", "updated_at"])
        if was_default:
            successor = PaymentMethod.objects.filter(user=user, is_active=True).order_by("-created_at").first()
            if successor is not None:
                successor.is_default = True
                successor.save(update_fields=["is_default", "updated_at"])
    return method


# ---------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------
def withdrawal_fee(amount, currency):
    """Platform withdrawal fee: a percentage clamped to the currency's min/max."""
    currency = (currency or "KES").upper()
    places = conf.currency_precision(currency)
    limits = conf.get_setting("WITHDRAWAL_FEE_LIMITS")
    low, high = limits.get(currency) or limits["KES"]
    fee = Decimal(str(amount)) * Decimal(str(conf.get_setting("WITHDRAWAL_FEE_RATE")))
    fee = min(max(fee, Decimal(str(low))), Decimal(str(high)))
    fee = fee.quantize(lifecycle.quantum(places), rounding=ROUND_HALF_UP)
    return fee, Decimal(str(amount)) - fee


def request_withdrawal(user, amount, payment_method_id, now=None):
    now = now or timezone.now()
    with transaction.atomic():
        # lock the wallet row so concurrent requests see each other's reservations
        wallet = Wallet.objects.select_for_update().filter(user=user).first()
        currency = wallet.currency if wallet else wallet_currency(user)
        amount = lifecycle.validate_amount(amount, conf.currency_precision(currency))
        method = _get_payment_method(user, payment_method_id)
        available = wallet.available_balance if wallet else Decimal("0")
        if amount > available - _reserved_amount(user):
            raise ValidationError("Insufficient balance.", field="amount")
        fee, net = withdrawal_fee(amount, currency)
        if net <= 0:
            raise ValidationError(f"Amount too low. Minimum fees are {currency} {fee}.", field="amount")
        withdrawal = Withdrawal.objects.create(
            user=user, payment_method=method, amount=amount, fee=fee, net_amount=net,
            currency=currency, created_at=now,
        )
    logger.info("withdrawal %s requested by %s: %s %s", withdrawal.pk, user.pk, amount, currency)
    return withdrawal


WITHDRAWAL_FLOW = {
    Withdrawal.Status.PENDING: {Withdrawal.Status.PROCESSING, Withdrawal.Status.COMPLETED, Withdrawal.Status.FAILED},
    Withdrawal.Status.PROCESSING: {Withdrawal.Status.COMPLETED, Withdrawal.Status.FAILED},
}


def _get_withdrawal(withdrawal_id, **filters):
    try:
        return Withdrawal.objects.get(pk=withdrawal_id, **filters)
    except (Withdrawal.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError("Withdrawal not found.")


def _move_withdrawal(withdrawal, status, now, **fields):
    updated = Withdrawal.objects.filter(pk=withdrawal.pk, status=withdrawal.status).update(
        status=status, updated_at=now, **fields)
    if updated != 1:
        raise ConflictError("The withdrawal was modified concurrently; re-fetch and retry.",
                            current_status=withdrawal.status)
    withdrawal.status = status
    for name, value in fields.items():
        setattr(withdrawal, name, value)
    return withdrawal


def process_withdrawal(withdrawal_id, actor, status, reference="", failure_reason="", now=None):
    now = now or timezone.now()
    if not _is_admin(actor):
        raise UnauthorizedAction("Only admins can process withdrawals.", action="process_withdrawal")
    withdrawal = _get_withdrawal(withdrawal_id)
    if status not in WITHDRAWAL_FLOW.get(withdrawal.status, set()):
        raise InvalidTransition(withdrawal.status, f"move withdrawal to {status}",
                                message=f"Cannot move a {withdrawal.status} withdrawal to {status}.")
    if status == Withdrawal.Status.FAILED and not (failure_reason or "").strip():
        raise ValidationError("A failure reason is required.", field="failure_reason")
    fields = {"reference": reference or withdrawal.reference, "failure_reason": (failure_reason or "").strip()}
    if status in (Withdrawal.Status.COMPLETED, Withdrawal.Status.FAILED):
        fields["processed_at"] = now
    withdrawal = _move_withdrawal(withdrawal, status, now, **fields)
    logger.info("withdrawal %s -> %s by %s", withdrawal.pk, status, actor.pk)
    return withdrawal


def cancel_withdrawal(withdrawal_id, actor, now=None):
    now = now or timezone.now()
    withdrawal = _get_withdrawal(withdrawal_id, user=actor)
    if withdrawal.status != Withdrawal.Status.PENDING:
        raise InvalidTransition(withdrawal.status, "cancel withdrawal",
                                message="Only pending withdrawals can be cancelled.")
    return _move_withdrawal(withdrawal, Withdrawal.Status.CANCELLED, now)
