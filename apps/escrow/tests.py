import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

from django.contrib.auth import get_user_model
from django.db.models import F
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APITestCase

from . import services, tasks
from .exceptions import ConflictError, InvalidTransition, NotFoundError, UnauthorizedAction, ValidationError
from .lifecycle import (
    RULES, Action, ActorRole, DisputeStatus, OrderStatus,
    available_actions, build_timeline, compute_fees, filter_and_sort, plan_transition, validate_amount,
)
from .models import Dispute, Order, Payout, Wallet, Withdrawal
from .repositories import OrderRepository, default_repository

T0 = datetime.datetime(2024, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)
HOUR = datetime.timedelta(hours=1)
DAY = datetime.timedelta(days=1)

SHIP_PAYLOAD = {'courier_name': 'G4S', 'tracking_number': 'TRK-001'}

STAMPS = ('paid_at', 'accepted_at', 'rejected_at', 'shipped_at', 'delivered_at', 'completed_at',
          'disputed_at', 'cancelled_at', 'refunded_at')


def snapshot(**fields):
    """In-memory stand-in for an Order row."""
    data = dict.fromkeys(STAMPS)
    data.update(pk='ord-1', status=OrderStatus.PENDING, created_at=T0, paid_at=T0, deadline=T0 + 72 * HOUR,
                amount=Decimal('5000.00'), proof_images=[], buyer_display_name='Wanjiku')
    data.update(fields)
    return SimpleNamespace(**data)


def legal_payload(action):
    return {
        Action.REJECT: {'reason': 'Out of stock'},
        Action.SHIP: SHIP_PAYLOAD,
        Action.OPEN_DISPUTE: {'reason': 'Not as described'},
        Action.RESOLVE_DISPUTE: {'winner': 'buyer'},
        Action.ADD_PROOF_IMAGES: {'images': ['https://cdn.example.com/p.jpg']},
    }.get(action, {})


class FeeTests(SimpleTestCase):
    def test_five_percent_of_5000(self):
        fee, payout = compute_fees(Decimal('5000'), Decimal('0.05'))
        self.assertEqual(fee, Decimal('250.00'))
        self.assertEqual(payout, Decimal('4750.00'))

    def test_fee_plus_payout_is_amount(self):
        for amount in ('0.01', '0.10', '19.99', '333.33', '1234.57', '99999.99'):
            fee, payout = compute_fees(Decimal(amount), Decimal('0.05'))
            self.assertEqual(fee + payout, Decimal(amount))
            self.assertEqual(fee, fee.quantize(Decimal('0.01')))

    def test_half_up_in_zero_decimal_currency(self):
        fee, payout = compute_fees(Decimal('1230'), Decimal('0.05'), places=0)
        self.assertEqual(fee, Decimal('62'))
        self.assertEqual(payout, Decimal('1168'))

    def test_amount_validation(self):
        for bad in ('0', '-5', 'abc', '1.234', '1000000000000'):
            with self.assertRaises(ValidationError):
                validate_amount(bad)
        with self.assertRaises(ValidationError):
            validate_amount('10.5', places=0)
        self.assertEqual(validate_amount('10.50'), Decimal('10.50'))


class TransitionRuleTests(SimpleTestCase):
    NOW = T0 + 30 * DAY

    def _snapshot_in(self, status):
        return snapshot(status=status, shipped_at=T0 + DAY, deadline=T0 + HOUR)

    def test_illegal_pairs_raise_invalid_transition(self):
        for action, rule in RULES.items():
            role = sorted(rule.roles)[0]
            for status in OrderStatus.values:
                order = self._snapshot_in(status)
                if status in rule.sources:
                    plan_transition(order, action, role, legal_payload(action), now=self.NOW,
                                    release_window=7 * DAY)
                else:
                    with self.assertRaises(InvalidTransition, msg=f"{action} from {status}"):
                        plan_transition(order, action, role, legal_payload(action), now=self.NOW,
                                        release_window=7 * DAY)

    def test_role_is_checked_before_status(self):
        # buyer may never ship; the order being PENDING does not matter
        with self.assertRaises(UnauthorizedAction):
            plan_transition(snapshot(), Action.SHIP, ActorRole.BUYER, SHIP_PAYLOAD)
        with self.assertRaises(UnauthorizedAction):
            plan_transition(snapshot(), Action.ACCEPT, ActorRole.BUYER)
        with self.assertRaises(UnauthorizedAction):
            plan_transition(snapshot(status=OrderStatus.DISPUTED), Action.RESOLVE_DISPUTE, ActorRole.SELLER,
                            {'winner': 'seller'})

    def test_ship_requires_courier_and_tracking(self):
        order = snapshot(status=OrderStatus.ACCEPTED)
        with self.assertRaises(ValidationError):
            plan_transition(order, Action.SHIP, ActorRole.SELLER, {'courier_name': 'G4S'})
        with self.assertRaises(ValidationError):
            plan_transition(order, Action.SHIP, ActorRole.SELLER, {'courier_name': '  ', 'tracking_number': 'X'})

    def test_reject_requires_reason(self):
        with self.assertRaises(ValidationError):
            plan_transition(snapshot(), Action.REJECT, ActorRole.SELLER, {'reason': ''})

    def test_unknown_action(self):
        with self.assertRaises(ValidationError):
            plan_transition(snapshot(), 'teleport', ActorRole.SELLER)

    def test_auto_release_waits_for_window(self):
        order = snapshot(status=OrderStatus.SHIPPED, shipped_at=T0)
        with self.assertRaises(InvalidTransition):
            plan_transition(order, Action.AUTO_RELEASE, ActorRole.SYSTEM, now=T0 + 6 * DAY,
                            release_window=7 * DAY)
        changes = plan_transition(order, Action.AUTO_RELEASE, ActorRole.SYSTEM, now=T0 + 7 * DAY,
                                  release_window=7 * DAY)
        self.assertEqual(changes['status'], OrderStatus.COMPLETED)
        self.assertEqual(changes['completed_at'], T0 + 7 * DAY)

    def test_expire_waits_for_deadline(self):
        order = snapshot(deadline=T0 + 72 * HOUR)
        with self.assertRaises(InvalidTransition):
            plan_transition(order, Action.EXPIRE, ActorRole.SYSTEM, now=T0 + 71 * HOUR)
        changes = plan_transition(order, Action.EXPIRE, ActorRole.SYSTEM, now=T0 + 72 * HOUR)
        self.assertEqual(changes['status'], OrderStatus.CANCELLED)
        self.assertEqual(changes['cancellation_reason'], 'expired')

    def test_timestamps_are_write_once(self):
        order = snapshot(status=OrderStatus.DELIVERED, shipped_at=T0 + DAY, delivered_at=T0 + 2 * DAY)
        changes = plan_transition(order, Action.CONFIRM_DELIVERY, ActorRole.BUYER, now=T0 + 3 * DAY)
        self.assertNotIn('delivered_at', changes)
        self.assertEqual(changes['completed_at'], T0 + 3 * DAY)

    def test_resolve_dispute_outcomes(self):
        order = snapshot(status=OrderStatus.DISPUTED, disputed_at=T0 + DAY)
        changes = plan_transition(order, Action.RESOLVE_DISPUTE, ActorRole.ADMIN, {'winner': 'buyer'})
        self.assertEqual(changes['status'], OrderStatus.REFUNDED)
        self.assertIn('refunded_at', changes)
        changes = plan_transition(order, Action.RESOLVE_DISPUTE, ActorRole.ADMIN, {'winner': 'seller'})
        self.assertEqual(changes['status'], OrderStatus.COMPLETED)
        with self.assertRaises(ValidationError):
            plan_transition(order, Action.RESOLVE_DISPUTE, ActorRole.ADMIN, {'winner': 'nobody'})

    def test_available_actions(self):
        self.assertEqual(set(available_actions(snapshot(), ActorRole.SELLER)),
                         {'accept', 'reject', 'open_dispute'})
        self.assertEqual(set(available_actions(snapshot(status=OrderStatus.SHIPPED), ActorRole.BUYER)),
                         {'confirm_delivery', 'open_dispute'})
        self.assertEqual(available_actions(snapshot(status=OrderStatus.COMPLETED), ActorRole.BUYER), [])


class TimelineTests(SimpleTestCase):
    def test_pending_order(self):
        events = build_timeline(snapshot())
        self.assertEqual([e.key for e in events], ['placed', 'paid', 'accepted', 'shipped', 'delivered', 'completed'])
        self.assertEqual([e.completed for e in events], [True, True, False, False, False, False])

    def test_completed_iff_timestamp_set(self):
        order = snapshot(status=OrderStatus.SHIPPED, accepted_at=T0 + HOUR, shipped_at=T0 + DAY)
        for event in build_timeline(order):
            self.assertEqual(event.completed, event.completed_at is not None)

    def test_is_pure(self):
        order = snapshot(status=OrderStatus.SHIPPED, accepted_at=T0 + HOUR, shipped_at=T0 + DAY)
        before = dict(vars(order))
        self.assertEqual(build_timeline(order), build_timeline(order))
        self.assertEqual(vars(order), before)

    def test_auto_released_order_skips_delivery(self):
        order = snapshot(status=OrderStatus.COMPLETED, accepted_at=T0 + HOUR, shipped_at=T0 + DAY,
                         completed_at=T0 + 8 * DAY)
        self.assertNotIn('delivered', [e.key for e in build_timeline(order)])

    def test_rejected_order(self):
        order = snapshot(status=OrderStatus.CANCELLED, rejected_at=T0 + HOUR, cancelled_at=T0 + HOUR)
        self.assertEqual([e.key for e in build_timeline(order)], ['placed', 'paid', 'rejected'])

    def test_refunded_dispute(self):
        order = snapshot(status=OrderStatus.REFUNDED, accepted_at=T0 + HOUR, disputed_at=T0 + DAY,
                         refunded_at=T0 + 2 * DAY)
        events = build_timeline(order)
        self.assertEqual([e.key for e in events], ['placed', 'paid', 'accepted', 'disputed', 'refunded'])
        self.assertTrue(all(e.completed for e in events))


class FilterAndSortTests(SimpleTestCase):
    def setUp(self):
        self.orders = [
            snapshot(pk='a1', amount=Decimal('100'), created_at=T0, buyer_display_name='Achieng'),
            snapshot(pk='b2', amount=Decimal('500'), created_at=T0 + DAY, status=OrderStatus.SHIPPED,
                     buyer_display_name='Baraka'),
            snapshot(pk='c3', amount=Decimal('250'), created_at=T0 + 2 * DAY, buyer_display_name='Chebet'),
        ]

    def test_sort_by_amount(self):
        result = filter_and_sort(self.orders, sort='amount-high')
        self.assertEqual([o.amount for o in result], [Decimal('500'), Decimal('250'), Decimal('100')])
        result = filter_and_sort(self.orders, sort='amount-low')
        self.assertEqual([o.pk for o in result], ['a1', 'c3', 'b2'])

    def test_default_is_newest_first(self):
        self.assertEqual([o.pk for o in filter_and_sort(self.orders)], ['c3', 'b2', 'a1'])

    def test_status_filter(self):
        self.assertEqual([o.pk for o in filter_and_sort(self.orders, status='shipped')], ['b2'])
        self.assertEqual(len(filter_and_sort(self.orders, status='all')), 3)

    def test_search_matches_buyer_name_and_id(self):
        self.assertEqual([o.pk for o in filter_and_sort(self.orders, search='bara')], ['b2'])
        self.assertEqual([o.pk for o in filter_and_sort(self.orders, search='C3')], ['c3'])

    def test_date_range_includes_whole_end_day(self):
        result = filter_and_sort(self.orders, date_from=(T0 + DAY).date(), date_to=(T0 + DAY).date())
        self.assertEqual([o.pk for o in result], ['b2'])

    def test_unknown_sort(self):
        with self.assertRaises(ValidationError):
            filter_and_sort(self.orders, sort='cheapest')


class EscrowTestMixin:
    def setUp(self):
        User = get_user_model()
        self.seller = User.objects.create_user(phone='+254711000001', role=User.Role.SELLER, display_name='Duka')
        self.buyer = User.objects.create_user(phone='+254711000002', display_name='Wanjiku')
        self.stranger = User.objects.create_user(phone='+254711000003')
        self.admin = User.objects.create_user(email='ops@example.com', role=User.Role.ADMIN)

    def make_order(self, amount='5000', now=None, **kwargs):
        kwargs.setdefault('buyer', self.buyer)
        return services.create_order(self.seller, 'Kitenge dress', 1, amount, now=now, **kwargs)

    def shipped_order(self, now=T0):
        order = self.make_order(now=now)
        services.transition(order.pk, Action.ACCEPT, self.seller, now=now + HOUR)
        return services.transition(order.pk, Action.SHIP, self.seller, SHIP_PAYLOAD, now=now + 2 * HOUR)

    def wallet(self):
        return Wallet.objects.get(user=self.seller)


class OrderServiceTests(EscrowTestMixin, TestCase):
    def test_create_order_computes_fees(self):
        order = self.make_order()
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.platform_fee, Decimal('250.00'))
        self.assertEqual(order.seller_payout, Decimal('4750.00'))
        self.assertIsNotNone(order.paid_at)
        self.assertEqual(order.buyer_name, 'Wanjiku')

    def test_guest_order_needs_contact(self):
        with self.assertRaises(ValidationError):
            services.create_order(self.seller, 'Kitenge dress', 1, '100', buyer=None)
        order = services.create_order(self.seller, 'Kitenge dress', 1, '100', buyer=None,
                                      buyer_name='Guest', buyer_phone='0711000099')
        self.assertEqual(order.buyer_phone, '+254711000099')

    def test_only_sellers_receive_orders(self):
        with self.assertRaises(UnauthorizedAction):
            services.create_order(self.buyer, 'Kitenge dress', 1, '100', buyer=self.stranger)

    def test_happy_path_credits_seller_once(self):
        order = self.shipped_order()
        order = services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer, now=T0 + DAY)
        self.assertEqual(order.status, OrderStatus.COMPLETED)
        self.assertEqual(self.wallet().available_balance, Decimal('4750.00'))
        self.assertEqual(self.wallet().total_earned, Decimal('4750.00'))
        payout = Payout.objects.get(order=order)
        self.assertEqual(payout.trigger, 'confirm_delivery')
        with self.assertRaises(InvalidTransition):
            services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer)
        self.assertEqual(self.wallet().available_balance, Decimal('4750.00'))

    def test_ship_while_pending_changes_nothing(self):
        order = self.make_order()
        with self.assertRaises(InvalidTransition) as ctx:
            services.transition(order.pk, Action.SHIP, self.seller, SHIP_PAYLOAD)
        self.assertEqual(ctx.exception.current_status, OrderStatus.PENDING)
        fresh = Order.objects.get(pk=order.pk)
        self.assertEqual(fresh.status, OrderStatus.PENDING)
        self.assertEqual(fresh.version, 0)
        self.assertIsNone(fresh.shipped_at)
        self.assertEqual(fresh.courier_name, '')

    def test_wrong_party_is_unauthorized(self):
        order = self.make_order()
        with self.assertRaises(UnauthorizedAction):
            services.transition(order.pk, Action.ACCEPT, self.buyer)
        with self.assertRaises(UnauthorizedAction):
            services.transition(order.pk, Action.CANCEL, self.stranger)

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            services.transition('not-a-uuid', Action.ACCEPT, self.seller)

    def test_timestamps_follow_status_order(self):
        order = self.shipped_order()
        services.transition(order.pk, Action.MARK_DELIVERED, self.admin, now=T0 + 5 * HOUR)
        order = services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer, now=T0 + 6 * HOUR)
        stamps = [order.created_at, order.paid_at, order.accepted_at, order.shipped_at,
                  order.delivered_at, order.completed_at]
        self.assertEqual(stamps, sorted(stamps))
        self.assertEqual(order.delivered_at, T0 + 5 * HOUR)
        self.assertEqual(order.version, 4)

    def test_reject_records_reason(self):
        order = self.make_order()
        order = services.transition(order.pk, Action.REJECT, self.seller, {'reason': 'Out of stock'})
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.rejection_reason, 'Out of stock')
        self.assertIsNotNone(order.rejected_at)

    def test_add_proof_images_appends(self):
        order = self.make_order()
        services.transition(order.pk, Action.ACCEPT, self.seller)
        services.transition(order.pk, Action.SHIP, self.seller,
                            {**SHIP_PAYLOAD, 'proof_images': ['https://cdn.example.com/1.jpg']})
        order = services.transition(order.pk, Action.ADD_PROOF_IMAGES, self.seller,
                                    {'images': ['https://cdn.example.com/2.jpg']})
        self.assertEqual(order.status, OrderStatus.SHIPPED)
        self.assertEqual(len(order.proof_images), 2)

    def test_stale_snapshot_conflicts(self):
        order = self.make_order()
        stale = Order.objects.get(pk=order.pk)

        class SnapshotRepository(OrderRepository):
            def get(self, order_id):
                return stale

        services.transition(order.pk, Action.ACCEPT, self.seller)
        with self.assertRaises(ConflictError):
            services.transition(order.pk, Action.CANCEL, self.buyer, repository=SnapshotRepository())
        self.assertEqual(Order.objects.get(pk=order.pk).status, OrderStatus.ACCEPTED)

    def test_repository_save_checks_version(self):
        order = self.make_order()
        Order.objects.filter(pk=order.pk).update(version=F('version') + 1)
        with self.assertRaises(ConflictError):
            default_repository.save(order, {'status': OrderStatus.ACCEPTED}, expected_version=0)

    def test_credit_and_status_commit_together(self):
        order = self.shipped_order()
        with mock.patch.object(Payout.objects, 'create', side_effect=RuntimeError('payout insert failed')):
            with self.assertRaises(RuntimeError):
                services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.SHIPPED)
        self.assertIsNone(order.completed_at)
        self.assertEqual(order.version, 2)
        self.assertEqual(self.wallet().available_balance, Decimal('0'))
        self.assertFalse(Payout.objects.exists())

    def test_exactly_one_terminal_outcome(self):
        rejected = self.make_order()
        services.transition(rejected.pk, Action.REJECT, self.seller, {'reason': 'Sold out'})
        expired = self.make_order(now=T0)
        services.expire_stale_orders(now=T0 + 73 * HOUR)
        refunded = self.shipped_order()
        dispute = services.open_dispute(refunded.pk, self.buyer, 'Broken', now=T0 + DAY)
        services.resolve_dispute(dispute.pk, self.admin, 'buyer', now=T0 + 2 * DAY)
        released = self.shipped_order()
        services.release_due_orders(now=T0 + 8 * DAY)

        expected = {
            rejected.pk: ('cancelled_at', OrderStatus.CANCELLED),
            expired.pk: ('cancelled_at', OrderStatus.CANCELLED),
            refunded.pk: ('refunded_at', OrderStatus.REFUNDED),
            released.pk: ('completed_at', OrderStatus.COMPLETED),
        }
        for pk, (stamp, status) in expected.items():
            order = Order.objects.get(pk=pk)
            self.assertEqual(order.status, status)
            outcomes = [f for f in ('completed_at', 'cancelled_at', 'refunded_at') if getattr(order, f)]
            self.assertEqual(outcomes, [stamp])

    def test_order_is_priced_in_seller_currency(self):
        with self.assertRaises(ValidationError) as ctx:
            self.make_order(currency='UGX')
        self.assertEqual(ctx.exception.extra['expected'], 'KES')
        self.assertEqual(self.make_order(currency='kes').currency, 'KES')

    def test_sellers_are_credited_in_their_own_currency(self):
        User = get_user_model()
        ug_seller = User.objects.create_user(phone='+256772123456', role=User.Role.SELLER, country='UG')
        self.assertEqual(Wallet.objects.get(user=ug_seller).currency, 'UGX')
        orders = [
            self.make_order('1000'),
            services.create_order(ug_seller, 'Gomesi', 1, '100000', buyer=self.buyer),
        ]
        self.assertEqual(orders[1].currency, 'UGX')
        self.assertEqual(orders[1].platform_fee, Decimal('5000'))
        for order in orders:
            services.transition(order.pk, Action.ACCEPT, order.seller)
            services.transition(order.pk, Action.SHIP, order.seller, SHIP_PAYLOAD)
            services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer)

        kes = services.get_wallet_summary(self.seller)
        self.assertEqual((kes['currency'], kes['available_balance']), ('KES', Decimal('950.00')))
        ugx = services.get_wallet_summary(ug_seller)
        self.assertEqual((ugx['currency'], ugx['available_balance']), ('UGX', Decimal('95000')))
        self.assertEqual(Payout.objects.get(order=orders[1]).currency, 'UGX')

    def test_amount_above_column_limit(self):
        with self.assertRaises(ValidationError):
            self.make_order('1000000000000')

    def test_admin_seller_acts_as_seller_on_own_orders(self):
        User = get_user_model()
        owner = User.objects.create_user(phone='+254711000009', role=User.Role.SELLER, is_superuser=True)
        order = services.create_order(owner, 'Kikoi', 1, '800', buyer=self.buyer)
        self.assertEqual(services.actor_role(order, owner), ActorRole.SELLER)
        self.assertEqual(services.transition(order.pk, Action.ACCEPT, owner).status, OrderStatus.ACCEPTED)
        # admin rights still apply to other sellers' orders
        other = self.make_order()
        self.assertEqual(services.actor_role(other, owner), ActorRole.ADMIN)


class SweepTests(EscrowTestMixin, TestCase):
    def test_auto_release_is_idempotent(self):
        order = self.shipped_order()
        self.assertEqual(services.release_due_orders(now=T0 + 6 * DAY), [])
        released = services.release_due_orders(now=T0 + 8 * DAY)
        self.assertEqual([o.pk for o in released], [order.pk])
        self.assertEqual(services.release_due_orders(now=T0 + 9 * DAY), [])
        with self.assertRaises(InvalidTransition):
            services.transition(order.pk, Action.AUTO_RELEASE, None, now=T0 + 10 * DAY)
        self.assertEqual(Payout.objects.filter(order=order).count(), 1)
        self.assertEqual(self.wallet().available_balance, Decimal('4750.00'))
        self.assertEqual(Order.objects.get(pk=order.pk).status, OrderStatus.COMPLETED)

    def test_disputed_orders_are_not_released(self):
        order = self.shipped_order()
        services.open_dispute(order.pk, self.buyer, 'Never arrived')
        self.assertEqual(services.release_due_orders(now=T0 + 30 * DAY), [])

    def test_expire_cancels_stale_pending_orders(self):
        order = self.make_order(now=T0)
        fresh = self.make_order(now=T0 + 2 * DAY)
        expired = services.expire_stale_orders(now=T0 + 73 * HOUR)
        self.assertEqual([o.pk for o in expired], [order.pk])
        order.refresh_from_db()
        self.assertEqual(order.cancellation_reason, 'expired')
        self.assertEqual(Order.objects.get(pk=fresh.pk).status, OrderStatus.PENDING)

    def test_celery_task_releases_due_orders(self):
        now = timezone.now()
        order = self.shipped_order(now=now - 10 * DAY)
        result = tasks.auto_release_escrow.apply().get()
        self.assertEqual(result, {'released': [str(order.pk)]})


class DisputeServiceTests(EscrowTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.order = self.shipped_order()
        self.dispute = services.open_dispute(self.order.pk, self.buyer, 'Wrong size', evidence=['https://x.io/1'])

    def test_open_dispute(self):
        self.assertEqual(self.dispute.status, DisputeStatus.OPEN)
        self.assertEqual(self.dispute.opened_by_role, ActorRole.BUYER)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.DISPUTED)
        with self.assertRaises(InvalidTransition):
            services.open_dispute(self.order.pk, self.seller, 'Again')

    def test_buyer_wins_refund(self):
        dispute = services.resolve_dispute(self.dispute.pk, self.admin, 'buyer', 'Item never delivered')
        self.assertEqual(dispute.status, DisputeStatus.RESOLVED_BUYER)
        order = Order.objects.get(pk=self.order.pk)
        self.assertEqual(order.status, OrderStatus.REFUNDED)
        self.assertIsNotNone(order.refunded_at)
        self.assertEqual(self.wallet().available_balance, Decimal('0'))
        self.assertFalse(Payout.objects.exists())

    def test_seller_wins_payout(self):
        dispute = services.resolve_dispute(self.dispute.pk, self.admin, 'seller')
        self.assertEqual(dispute.status, DisputeStatus.RESOLVED_SELLER)
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, OrderStatus.COMPLETED)
        self.assertEqual(self.wallet().available_balance, Decimal('4750.00'))
        self.assertEqual(Payout.objects.get().trigger, 'resolve_dispute')

    def test_only_admin_resolves_once(self):
        with self.assertRaises(UnauthorizedAction):
            services.resolve_dispute(self.dispute.pk, self.seller, 'seller')
        services.resolve_dispute(self.dispute.pk, self.admin, 'buyer')
        with self.assertRaises(InvalidTransition):
            services.resolve_dispute(self.dispute.pk, self.admin, 'seller')

    def test_review_status_and_close(self):
        dispute = services.set_dispute_status(self.dispute.pk, self.admin, DisputeStatus.UNDER_REVIEW)
        self.assertEqual(dispute.status, DisputeStatus.UNDER_REVIEW)
        with self.assertRaises(ValidationError):
            services.set_dispute_status(self.dispute.pk, self.admin, DisputeStatus.RESOLVED_SELLER)
        with self.assertRaises(InvalidTransition):
            services.close_dispute(self.dispute.pk, self.admin)
        services.resolve_dispute(self.dispute.pk, self.admin, 'seller')
        self.assertEqual(services.close_dispute(self.dispute.pk, self.admin).status, DisputeStatus.CLOSED)
        with self.assertRaises(InvalidTransition):
            services.add_dispute_message(self.dispute.pk, self.buyer, 'Hello?')

    def test_messages(self):
        services.add_dispute_message(self.dispute.pk, self.seller, 'It was delivered.')
        message = services.add_dispute_message(self.dispute.pk, self.admin, 'Please share photos.')
        self.assertTrue(message.is_admin)
        self.assertEqual(Dispute.objects.get(pk=self.dispute.pk).messages.count(), 2)
        with self.assertRaises(UnauthorizedAction):
            services.add_dispute_message(self.dispute.pk, self.stranger, 'Hi')
        with self.assertRaises(ValidationError):
            services.add_dispute_message(self.dispute.pk, self.buyer, '   ')

    def test_timeline_after_refund(self):
        services.resolve_dispute(self.dispute.pk, self.admin, 'buyer')
        order = services.get_order(self.order.pk)
        keys = [e.key for e in services.get_timeline(order)]
        self.assertEqual(keys, ['placed', 'paid', 'accepted', 'shipped', 'disputed', 'refunded'])


class WalletServiceTests(EscrowTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        order = self.shipped_order()
        services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer)
        self.pending = self.make_order('1000')
        self.method = services.add_payment_method(self.seller, 'MOBILE_MONEY', 'M-Pesa', '0711000001', 'Duka Ltd')

    def test_summary(self):
        summary = services.get_wallet_summary(self.seller)
        self.assertEqual(summary['available_balance'], Decimal('4750.00'))
        self.assertEqual(summary['pending_balance'], Decimal('950.00'))
        self.assertEqual(summary['withdrawable'], Decimal('4750.00'))

    def test_first_method_is_default(self):
        self.assertTrue(self.method.is_default)
        second = services.add_payment_method(self.seller, 'BANK_ACCOUNT', 'KCB', '1100223344', 'Duka Ltd')
        self.assertFalse(second.is_default)
        services.set_default_payment_method(self.seller, second.pk)
        self.method.refresh_from_db()
        self.assertFalse(self.method.is_default)
        services.deactivate_payment_method(self.seller, second.pk)
        self.method.refresh_from_db()
        self.assertTrue(self.method.is_default)

    def test_withdrawal_reserves_balance(self):
        with self.assertRaises(ValidationError):
            services.request_withdrawal(self.seller, '5000', self.method.pk)
        withdrawal = services.request_withdrawal(self.seller, '1000', self.method.pk)
        self.assertEqual(withdrawal.fee, Decimal('20.00'))
        self.assertEqual(withdrawal.net_amount, Decimal('980.00'))
        self.assertEqual(services.get_wallet_summary(self.seller)['withdrawable'], Decimal('3750.00'))
        # the wallet row itself is never debited
        self.assertEqual(self.wallet().available_balance, Decimal('4750.00'))

        services.cancel_withdrawal(withdrawal.pk, self.seller)
        self.assertEqual(services.get_wallet_summary(self.seller)['withdrawable'], Decimal('4750.00'))

    def test_withdrawal_fee_is_clamped(self):
        self.assertEqual(services.withdrawal_fee(Decimal('100'), 'KES')[0], Decimal('10.00'))
        self.assertEqual(services.withdrawal_fee(Decimal('100000'), 'KES')[0], Decimal('500.00'))

    def test_process_withdrawal(self):
        withdrawal = services.request_withdrawal(self.seller, '1000', self.method.pk)
        with self.assertRaises(UnauthorizedAction):
            services.process_withdrawal(withdrawal.pk, self.seller, Withdrawal.Status.COMPLETED)
        with self.assertRaises(ValidationError):
            services.process_withdrawal(withdrawal.pk, self.admin, Withdrawal.Status.FAILED)
        services.process_withdrawal(withdrawal.pk, self.admin, Withdrawal.Status.PROCESSING)
        done = services.process_withdrawal(withdrawal.pk, self.admin, Withdrawal.Status.COMPLETED, reference='MP123')
        self.assertIsNotNone(done.processed_at)
        with self.assertRaises(InvalidTransition):
            services.cancel_withdrawal(withdrawal.pk, self.seller)
        self.assertEqual(services.get_wallet_summary(self.seller)['withdrawn'], Decimal('1000.00'))


class OrderApiTests(EscrowTestMixin, APITestCase):
    def test_seller_records_guest_order(self):
        self.client.force_authenticate(self.seller)
        res = self.client.post('/api/v1/orders/', {
            'item_name': 'Sneakers', 'amount': '5000.00', 'buyer_name': 'Guest', 'buyer_phone': '0711000099',
        }, format='json')
        self.assertEqual(res.status_code, 201, res.data)
        self.assertEqual(res.data['platform_fee'], '250.00')
        self.assertEqual(res.data['seller_payout'], '4750.00')
        self.assertEqual(res.data['status'], 'PENDING')
        self.assertIn('accept', res.data['available_actions'])

    def test_buyer_checks_out_with_seller(self):
        self.client.force_authenticate(self.buyer)
        res = self.client.post('/api/v1/orders/', {
            'seller': str(self.seller.pk), 'item_name': 'Sneakers', 'amount': '1200',
        }, format='json')
        self.assertEqual(res.status_code, 201, res.data)
        self.assertEqual(res.data['buyer'], self.buyer.pk)

    def test_full_flow_over_http(self):
        order = self.make_order()
        self.client.force_authenticate(self.seller)
        self.assertEqual(self.client.post(f'/api/v1/orders/{order.pk}/accept/').status_code, 200)
        res = self.client.post(f'/api/v1/orders/{order.pk}/ship/', SHIP_PAYLOAD, format='json')
        self.assertEqual(res.status_code, 200, res.data)
        self.assertEqual(res.data['shipping_info']['tracking_number'], 'TRK-001')

        self.client.force_authenticate(self.buyer)
        res = self.client.post(f'/api/v1/orders/{order.pk}/confirm-delivery/')
        self.assertEqual(res.status_code, 200, res.data)
        self.assertEqual(res.data['status'], 'COMPLETED')

        res = self.client.get(f'/api/v1/orders/{order.pk}/timeline/')
        self.assertEqual(res.status_code, 200)
        self.assertTrue(all(event['completed'] for event in res.data))

        self.client.force_authenticate(self.seller)
        res = self.client.get('/api/v1/wallet/')
        self.assertEqual(res.data['available_balance'], '4750.00')

    def test_illegal_action_is_409(self):
        order = self.make_order()
        self.client.force_authenticate(self.seller)
        res = self.client.post(f'/api/v1/orders/{order.pk}/ship/', SHIP_PAYLOAD, format='json')
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.data['code'], 'invalid_transition')
        self.assertEqual(res.data['current_status'], 'PENDING')

    def test_missing_payload_is_400(self):
        order = self.make_order()
        services.transition(order.pk, Action.ACCEPT, self.seller)
        self.client.force_authenticate(self.seller)
        res = self.client.post(f'/api/v1/orders/{order.pk}/ship/', {'courier_name': 'G4S'}, format='json')
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.data['code'], 'validation_error')

    def test_strangers_get_403_and_unknown_ids_404(self):
        order = self.make_order()
        self.client.force_authenticate(self.stranger)
        self.assertEqual(self.client.get(f'/api/v1/orders/{order.pk}/').status_code, 403)
        self.assertEqual(self.client.post(f'/api/v1/orders/{order.pk}/cancel/').status_code, 403)
        self.assertEqual(self.client.get('/api/v1/orders/00000000-0000-0000-0000-000000000000/').status_code, 404)

    def test_list_sorted_and_scoped(self):
        for amount in ('100', '500', '250'):
            self.make_order(amount)
        services.create_order(self.seller, 'Other', 1, '999', buyer=self.stranger)
        self.client.force_authenticate(self.buyer)
        res = self.client.get('/api/v1/orders/', {'sort': 'amount-high'})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data['meta']['count'], 3)
        self.assertEqual([r['amount'] for r in res.data['results']], ['500.00', '250.00', '100.00'])

        res = self.client.get('/api/v1/orders/', {'sort': 'cheapest'})
        self.assertEqual(res.status_code, 400)

    def test_dispute_flow_over_http(self):
        order = self.shipped_order()
        self.client.force_authenticate(self.buyer)
        res = self.client.post(f'/api/v1/orders/{order.pk}/dispute/', {'reason': 'Damaged'}, format='json')
        self.assertEqual(res.status_code, 201, res.data)
        dispute_id = res.data['id']

        res = self.client.post(f'/api/v1/disputes/{dispute_id}/resolve/', {'winner': 'buyer'}, format='json')
        self.assertEqual(res.status_code, 403)

        self.client.force_authenticate(self.admin)
        res = self.client.post(f'/api/v1/disputes/{dispute_id}/resolve/', {'winner': 'buyer'}, format='json')
        self.assertEqual(res.status_code, 200, res.data)
        self.assertEqual(res.data['status'], 'RESOLVED_BUYER')
        self.assertEqual(Order.objects.get(pk=order.pk).status, OrderStatus.REFUNDED)

    def test_buyer_cannot_choose_deadline(self):
        self.client.force_authenticate(self.buyer)
        res = self.client.post('/api/v1/orders/', {
            'seller': str(self.seller.pk), 'item_name': 'Sneakers', 'amount': '1200',
            'deadline': '2000-01-01T00:00:00Z',
        }, format='json')
        self.assertEqual(res.status_code, 201, res.data)
        order = Order.objects.get(pk=res.data['id'])
        self.assertEqual(order.deadline, order.created_at + datetime.timedelta(hours=72))
        self.assertEqual(services.expire_stale_orders(), [])

    def test_wallet_is_seller_only(self):
        self.client.force_authenticate(self.buyer)
        self.assertEqual(self.client.get('/api/v1/wallet/').status_code, 403)


class WithdrawalApiTests(EscrowTestMixin, APITestCase):
    def test_request_and_process(self):
        order = self.shipped_order()
        services.transition(order.pk, Action.CONFIRM_DELIVERY, self.buyer)

        self.client.force_authenticate(self.seller)
        res = self.client.post('/api/v1/payment-methods/', {
            'type': 'MOBILE_MONEY', 'provider': 'M-Pesa', 'account_number': '0711000001', 'account_name': 'Duka',
        }, format='json')
        self.assertEqual(res.status_code, 201, res.data)
        res = self.client.post('/api/v1/withdrawals/', {'amount': '1000', 'payment_method': res.data['id']},
                               format='json')
        self.assertEqual(res.status_code, 201, res.data)
        withdrawal_id = res.data['id']
        self.assertEqual(self.client.post(f'/api/v1/withdrawals/{withdrawal_id}/process/',
                                          {'status': 'COMPLETED'}, format='json').status_code, 403)

        self.client.force_authenticate(self.admin)
        res = self.client.post(f'/api/v1/withdrawals/{withdrawal_id}/process/', {'status': 'COMPLETED'},
                               format='json')
        self.assertEqual(res.status_code, 200, res.data)
        self.assertEqual(res.data['status'], 'COMPLETED')
