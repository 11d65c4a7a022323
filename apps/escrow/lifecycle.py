"""
Order lifecycle rules.

Pure functions over order snapshots. Nothing in here touches the database:
services.py loads an order, asks `plan_transition` which fields to write,
and persists the result through the repository.

State graph:

    PENDING -> ACCEPTED -> SHIPPED -> (DELIVERED) -> COMPLETED
    PENDING -> CANCELLED                      (reject / cancel / expire)
    PENDING|ACCEPTED|SHIPPED|DELIVERED -> DISPUTED -> COMPLETED | REFUNDED

A PENDING order has already been paid; payment capture happens outside this
module.
"""
import datetime
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from django.db import models
from django.utils import timezone
from django.utils.dateparse import parse_date

from .exceptions import InvalidTransition, UnauthorizedAction, ValidationError


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    ACCEPTED = "ACCEPTED", "Accepted"
    SHIPPED = "SHIPPED", "Shipped"
    DELIVERED = "DELIVERED", "Delivered"
    COMPLETED = "COMPLETED", "Completed"
    DISPUTED = "DISPUTED", "Disputed"
    CANCELLED = "CANCELLED", "Cancelled"
    REFUNDED = "REFUNDED", "Refunded"


class DisputeStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    UNDER_REVIEW = "UNDER_REVIEW", "Under review"
    AWAITING_SELLER = "AWAITING_SELLER", "Awaiting seller"
    AWAITING_BUYER = "AWAITING_BUYER", "Awaiting buyer"
    RESOLVED_BUYER = "RESOLVED_BUYER", "Resolved for buyer"
    RESOLVED_SELLER = "RESOLVED_SELLER", "Resolved for seller"
    CLOSED = "CLOSED", "Closed"


class Action(models.TextChoices):
    ACCEPT = "accept", "Accept"
    REJECT = "reject", "Reject"
    CANCEL = "cancel", "Cancel"
    SHIP = "ship", "Ship"
    MARK_DELIVERED = "mark_delivered", "Mark delivered"
    CONFIRM_DELIVERY = "confirm_delivery", "Confirm delivery"
    OPEN_DISPUTE = "open_dispute", "Open dispute"
    RESOLVE_DISPUTE = "resolve_dispute", "Resolve dispute"
    AUTO_RELEASE = "auto_release", "Auto release"
    EXPIRE = "expire", "Expire"
    ADD_PROOF_IMAGES = "add_proof_images", "Add proof images"


class ActorRole(models.TextChoices):
    BUYER = "BUYER", "Buyer"
    SELLER = "SELLER", "Seller"
    ADMIN = "ADMIN", "Admin"
    SYSTEM = "SYSTEM", "System"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})
# statuses whose payout is still held by the platform
ESCROW_STATUSES = frozenset({
    OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.SHIPPED,
    OrderStatus.DELIVERED, OrderStatus.DISPUTED,
})
SHIPPED_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.COMPLETED})
RESOLVED_DISPUTE_STATUSES = frozenset({
    DisputeStatus.RESOLVED_BUYER, DisputeStatus.RESOLVED_SELLER, DisputeStatus.CLOSED,
})

Rule = namedtuple("Rule", ["sources", "target", "roles"])

# target None: depends on the payload (resolve_dispute) or status is unchanged
RULES = {
    Action.ACCEPT: Rule({OrderStatus.PENDING}, OrderStatus.ACCEPTED, {ActorRole.SELLER}),
    Action.REJECT: Rule({OrderStatus.PENDING}, OrderStatus.CANCELLED, {ActorRole.SELLER}),
    Action.CANCEL: Rule({OrderStatus.PENDING}, OrderStatus.CANCELLED, {ActorRole.BUYER, ActorRole.ADMIN}),
    Action.SHIP: Rule({OrderStatus.ACCEPTED}, OrderStatus.SHIPPED, {ActorRole.SELLER}),
    Action.MARK_DELIVERED: Rule({OrderStatus.SHIPPED}, OrderStatus.DELIVERED, {ActorRole.SELLER, ActorRole.ADMIN}),
    Action.CONFIRM_DELIVERY: Rule({OrderStatus.SHIPPED, OrderStatus.DELIVERED}, OrderStatus.COMPLETED, {ActorRole.BUYER}),
    Action.OPEN_DISPUTE: Rule(
        {OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.SHIPPED, OrderStatus.DELIVERED},
        OrderStatus.DISPUTED,
        {ActorRole.BUYER, ActorRole.SELLER},
    ),
    Action.RESOLVE_DISPUTE: Rule({OrderStatus.DISPUTED}, None, {ActorRole.ADMIN}),
    Action.AUTO_RELEASE: Rule({OrderStatus.SHIPPED, OrderStatus.DELIVERED}, OrderStatus.COMPLETED, {ActorRole.SYSTEM}),
    Action.EXPIRE: Rule({OrderStatus.PENDING}, OrderStatus.CANCELLED, {ActorRole.SYSTEM}),
    Action.ADD_PROOF_IMAGES: Rule(SHIPPED_STATUSES, None, {ActorRole.SELLER}),
}

WINNER_BUYER = "buyer"
WINNER_SELLER = "seller"


# ---------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------
def quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def compute_fees(amount, rate, places=2):
    """
    Return (platform_fee, seller_payout) for a gross amount.

    The fee is rounded half-up to the currency precision and the payout is
    the exact remainder, so fee + payout == amount.
    """
    amount = Decimal(str(amount))
    fee = (amount * Decimal(str(rate))).quantize(quantum(places), rounding=ROUND_HALF_UP)
    return fee, amount - fee


# Order and wallet amounts are DecimalField(max_digits=14, decimal_places=2)
MAX_AMOUNT = Decimal(10) ** 12


def validate_amount(amount, places=2) -> Decimal:
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        raise ValidationError(f"Amount {amount!r} is not a number.", field="amount")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be a positive number.", field="amount")
    if value >= MAX_AMOUNT:
        raise ValidationError(f"Amount must be below {MAX_AMOUNT:,}.", field="amount")
    if value != value.quantize(quantum(places)):
        raise ValidationError(f"Amount has more than {places} decimal places.", field="amount")
    return value


# ---------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------
def is_release_due(order, now, window) -> bool:
    return (
        order.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED)
        and order.shipped_at is not None
        and now >= order.shipped_at + window
    )


def is_expired(order, now) -> bool:
    return order.status == OrderStatus.PENDING and order.deadline is not None and now >= order.deadline


def _required_text(payload, key, action):
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"'{key}' is required to {action}.", field=key, action=action)
    return str(value).strip()


def _stamp(order, changes, field, now):
    # timestamps are write-once
    if getattr(order, field) is None:
        changes[field] = now


def _parse_delivery_date(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    parsed = parse_date(str(value))
    if parsed is None:
        raise ValidationError("'estimated_delivery_date' must be an ISO date.", field="estimated_delivery_date")
    return parsed


def _image_list(value, action):
    if isinstance(value, str):
        value = [value]
    images = [str(v).strip() for v in (value or []) if str(v).strip()]
    if action == Action.ADD_PROOF_IMAGES and not images:
        raise ValidationError("At least one proof image is required.", field="proof_images", action=action)
    return images


def plan_transition(order, action, role, payload=None, now=None, release_window=None) -> dict:
    """
    Validate `action` by `role` against the order snapshot and return the
    field changes it produces. Raises before anything is written:

    - ValidationError for an unknown action or a missing payload field
    - UnauthorizedAction when the role may not perform the action
    - InvalidTransition when the current status (or a time guard) forbids it
    """
    payload = payload or {}
    now = now or timezone.now()
    try:
        action = Action(action)
    except ValueError:
        raise ValidationError(f"Unknown action '{action}'.", order_id=getattr(order, "pk", None))

    rule = RULES[action]
    order_id = getattr(order, "pk", None)
    if role not in rule.roles:
        raise UnauthorizedAction(
            f"A {str(role).lower()} cannot {action.label.lower()} this order.",
            order_id=order_id, action=action, current_status=order.status,
        )
    if order.status not in rule.sources:
        raise InvalidTransition(order.status, action, order_id=order_id)

    if action == Action.AUTO_RELEASE:
        if release_window is None or not is_release_due(order, now, release_window):
            raise InvalidTransition(order.status, action, order_id=order_id,
                                    message="The release window has not elapsed for this order.")
    if action == Action.EXPIRE and not is_expired(order, now):
        raise InvalidTransition(order.status, action, order_id=order_id,
                                message="The order has not reached its deadline.")

    changes = {}
    if rule.target is not None:
        changes["status"] = rule.target

    if action == Action.ACCEPT:
        _stamp(order, changes, "accepted_at", now)
    elif action == Action.REJECT:
        changes["rejection_reason"] = _required_text(payload, "reason", action)
        _stamp(order, changes, "rejected_at", now)
        _stamp(order, changes, "cancelled_at", now)
    elif action == Action.CANCEL:
        changes["cancellation_reason"] = str(payload.get("reason") or "").strip()
        _stamp(order, changes, "cancelled_at", now)
    elif action == Action.SHIP:
        changes["courier_name"] = _required_text(payload, "courier_name", action)
        changes["tracking_number"] = _required_text(payload, "tracking_number", action)
        changes["estimated_delivery_date"] = _parse_delivery_date(payload.get("estimated_delivery_date"))
        changes["shipping_notes"] = str(payload.get("notes") or "").strip()
        changes["proof_images"] = _image_list(payload.get("proof_images"), action)
        _stamp(order, changes, "shipped_at", now)
    elif action == Action.MARK_DELIVERED:
        _stamp(order, changes, "delivered_at", now)
    elif action == Action.CONFIRM_DELIVERY:
        _stamp(order, changes, "delivered_at", now)
        _stamp(order, changes, "completed_at", now)
    elif action == Action.OPEN_DISPUTE:
        _required_text(payload, "reason", action)
        _stamp(order, changes, "disputed_at", now)
    elif action == Action.RESOLVE_DISPUTE:
        winner = str(payload.get("winner") or "").lower()
        if winner == WINNER_SELLER:
            changes["status"] = OrderStatus.COMPLETED
            _stamp(order, changes, "completed_at", now)
        elif winner == WINNER_BUYER:
            changes["status"] = OrderStatus.REFUNDED
            _stamp(order, changes, "refunded_at", now)
        else:
            raise ValidationError("'winner' must be 'buyer' or 'seller'.", field="winner", action=action)
    elif action == Action.AUTO_RELEASE:
        _stamp(order, changes, "completed_at", now)
    elif action == Action.EXPIRE:
        changes["cancellation_reason"] = "expired"
        _stamp(order, changes, "cancelled_at", now)
    elif action == Action.ADD_PROOF_IMAGES:
        changes["proof_images"] = list(order.proof_images or []) + _image_list(payload.get("images"), action)

    return changes


def releases_funds(changes) -> bool:
    """True when applying `changes` completes the order and pays the seller."""
    return changes.get("status") == OrderStatus.COMPLETED


def ensure_dispute_open(dispute, action=Action.RESOLVE_DISPUTE):
    if dispute.status in RESOLVED_DISPUTE_STATUSES:
        raise InvalidTransition(dispute.status, action, order_id=dispute.order_id,
                                message=f"Dispute is already {dispute.status}.")


# ---------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------
TimelineEvent = namedtuple("TimelineEvent", ["key", "title", "completed", "completed_at"])


def _event(key, title, at):
    return TimelineEvent(key, title, at is not None, at)


def build_timeline(order) -> List[TimelineEvent]:
    """
    Milestones for the path the order has taken (or is on). A milestone is
    completed iff its timestamp is set.
    """
    events = [
        _event("placed", "Order Placed", order.created_at),
        _event("paid", "Payment Confirmed", order.paid_at),
    ]
    if order.rejected_at is not None:
        events.append(_event("rejected", "Seller Rejected", order.rejected_at))
        return events
    if order.status == OrderStatus.CANCELLED:
        events.append(_event("cancelled", "Cancelled", order.cancelled_at))
        return events

    if order.disputed_at is not None:
        for key, title, field in (("accepted", "Seller Accepted", "accepted_at"),
                                  ("shipped", "Shipped", "shipped_at"),
                                  ("delivered", "Delivered", "delivered_at")):
            if getattr(order, field) is not None:
                events.append(_event(key, title, getattr(order, field)))
        events.append(_event("disputed", "Dispute Opened", order.disputed_at))
        if order.status == OrderStatus.REFUNDED:
            events.append(_event("refunded", "Refunded", order.refunded_at))
        elif order.status == OrderStatus.COMPLETED:
            events.append(_event("completed", "Completed", order.completed_at))
        else:
            events.append(_event("resolved", "Dispute Resolved", None))
        return events

    events.append(_event("accepted", "Seller Accepted", order.accepted_at))
    events.append(_event("shipped", "Shipped", order.shipped_at))
    # delivery is optional once funds were auto-released
    if order.delivered_at is not None or order.completed_at is None:
        events.append(_event("delivered", "Delivered", order.delivered_at))
    events.append(_event("completed", "Completed", order.completed_at))
    return events


# ---------------------------------------------------------------------
# Collection views
# ---------------------------------------------------------------------
SORT_KEYS = {
    "newest": (lambda o: o.created_at, True),
    "oldest": (lambda o: o.created_at, False),
    "amount-high": (lambda o: o.amount, True),
    "amount-low": (lambda o: o.amount, False),
}


def _bound(value, end=False):
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if not end:
            return value
        return value.replace(hour=23, minute=59, second=59, microsecond=999999)
    return datetime.datetime.combine(value, datetime.time.max if end else datetime.time.min)


def _comparable(bound, reference):
    if bound is None:
        return None
    if timezone.is_aware(reference) and timezone.is_naive(bound):
        return timezone.make_aware(bound)
    if timezone.is_naive(reference) and timezone.is_aware(bound):
        return timezone.make_naive(bound)
    return bound


def filter_and_sort(orders: Iterable, status: Optional[str] = None, date_from=None, date_to=None,
                    search: Optional[str] = None, sort: str = "newest") -> list:
    """
    Filter an order collection in memory and return it sorted.

    `date_to` covers its whole day. `search` matches the order id or the
    buyer display name, case-insensitively. The sort is stable, so ties keep
    their input order.
    """
    if sort not in SORT_KEYS:
        raise ValidationError(f"Unknown sort '{sort}'.", field="sort", choices=sorted(SORT_KEYS))
    start, end = _bound(date_from), _bound(date_to, end=True)
    needle = (search or "").strip().lower()

    selected = []
    for order in orders:
        if status and status.lower() != "all" and str(order.status).upper() != status.upper():
            continue
        if start is not None and order.created_at < _comparable(start, order.created_at):
            continue
        if end is not None and order.created_at > _comparable(end, order.created_at):
            continue
        if needle:
            haystack = (str(order.pk).lower(), (getattr(order, "buyer_display_name", "") or "").lower())
            if not any(needle in text for text in haystack):
                continue
        selected.append(order)

    key, reverse = SORT_KEYS[sort]
    return sorted(selected, key=key, reverse=reverse)


def available_actions(order, role) -> List[str]:
    """Actions whose status and role preconditions hold (time guards aside)."""
    return [
        str(action) for action, rule in RULES.items()
        if role in rule.roles and order.status in rule.sources and role != ActorRole.SYSTEM
    ]
