import random
import threading
import unittest
from datetime import timedelta
from unittest import mock

from factories import CYCLE_START, NOW, make_order, make_plan
from luckydraw.draw.models import PaymentOutcome, PaymentStatus
from luckydraw.draw.operator import DrawOperator
from luckydraw.draw.payment import PaymentGateway, StubPaymentGateway
from luckydraw.errors import NotFoundError, ValidationError
from luckydraw.store.memory import MemoryStore
from luckydraw.utils.common import utcnow


class DecliningGateway(PaymentGateway):
    async def initiate_payment(self, amount, order_id):
        return PaymentOutcome(success=False, message="insufficient balance")


class BrokenGateway(PaymentGateway):
    async def initiate_payment(self, amount, order_id):
        raise ConnectionError("gateway unreachable")


def build_operator(gateway=None, config=None, **bootstrap):
    store = MemoryStore()
    store.bootstrap(**bootstrap)
    operator = DrawOperator(
        store,
        config or {"draw": {"cycle_length_days": 15}},
        gateway or StubPaymentGateway(delay_seconds=0),
        rng=random.Random(3),
    )
    return operator, store


class CreateOrderTests(unittest.TestCase):
    def setUp(self):
        self.operator, self.store = build_operator(
            plans=[make_plan(1, price=5, end_date=utcnow() + timedelta(days=5))]
        )

    def test_order_carries_plan_cycle_marker(self):
        order = self.operator.create_order(name=" Sara ", payment_account="0300", plan_id=1, amount=5)

        self.assertEqual(order.cycle_start_date, CYCLE_START)
        self.assertEqual(order.name, "Sara")
        self.assertEqual(order.payment_status, PaymentStatus.PENDING)
        self.assertRegex(order.order_code, r"^[0-9]{7}$")

    def test_missing_fields_are_listed(self):
        with self.assertRaises(ValidationError) as ctx:
            self.operator.create_order(name="", payment_account=None, plan_id=1, amount=0)
        self.assertEqual(ctx.exception.fields, ["name", "payment_account", "amount"])
        self.assertTrue(str(ctx.exception).startswith("Missing required fields"))

    def test_unknown_plan(self):
        with self.assertRaises(ValidationError):
            self.operator.create_order(name="a", payment_account="b", plan_id=42, amount=1)

    def test_negative_amount(self):
        with self.assertRaises(ValidationError):
            self.operator.create_order(name="a", payment_account="b", plan_id=1, amount=-3)

    def test_order_on_lapsed_plan_joins_the_new_cycle(self):
        now = utcnow()
        operator, store = build_operator(
            plans=[
                make_plan(
                    1,
                    end_date=now - timedelta(days=1),
                    last_reset_date=now - timedelta(days=16),
                    current_amount=40,
                )
            ]
        )

        order = operator.create_order(name="Sara", payment_account="0300", plan_id=1, amount=3)
        store.update_order_status(order.id, PaymentStatus.COMPLETED)
        self.assertEqual(operator.reset_expired_plans(), [])

        plan = store.get_plan(1)
        self.assertEqual(order.cycle_start_date, plan.last_reset_date)
        self.assertGreater(plan.end_date, now)
        self.assertEqual(plan.current_amount, 3)
        self.assertEqual([o.id for o in operator.participants(plan)], [order.id])


class CheckoutTests(unittest.IsolatedAsyncioTestCase):
    async def test_successful_checkout_completes_order(self):
        operator, store = build_operator(plans=[make_plan(1, price=5, current_amount=0)])

        order = await operator.checkout(name="Sara", payment_account="0300", plan_id=1)

        self.assertEqual(order.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual(order.amount, 5)
        self.assertEqual(store.get_plan(1).current_amount, 5)

    async def test_declined_payment_marks_order_failed(self):
        operator, store = build_operator(DecliningGateway(), plans=[make_plan(1)])

        order = await operator.checkout(name="Sara", payment_account="0300", plan_id=1, amount=1)

        self.assertEqual(order.payment_status, PaymentStatus.FAILED)
        self.assertEqual(store.get_plan(1).current_amount, 0)

    async def test_gateway_error_marks_order_failed(self):
        operator, store = build_operator(BrokenGateway(), plans=[make_plan(1)])

        order = await operator.checkout(name="Sara", payment_account="0300", plan_id=1, amount=1)

        self.assertEqual(order.payment_status, PaymentStatus.FAILED)

    async def test_unknown_plan_without_amount(self):
        operator, _ = build_operator(plans=[make_plan(1)])
        with self.assertRaises(ValidationError):
            await operator.checkout(name="Sara", payment_account="0300", plan_id=7)


class DrawWinnerTests(unittest.TestCase):
    def test_winner_is_recorded_and_not_rerolled(self):
        orders = [make_order(i) for i in range(1, 6)]
        operator, store = build_operator(plans=[make_plan(1)], orders=orders)

        first = operator.draw_winner(1, now=NOW)
        self.assertFalse(first.already_drawn)
        self.assertEqual(first.pool_size, 5)
        self.assertIn(first.order.id, range(1, 6))
        self.assertEqual(first.announcement, f"{first.order.order_code}: {first.order.name.upper()} WON!")

        second = operator.draw_winner(1, now=NOW)
        self.assertTrue(second.already_drawn)
        self.assertEqual(second.winner.order_code, first.winner.order_code)
        self.assertEqual(operator.current_winner(1).winner, first.winner)

    def test_force_draws_again(self):
        operator, _ = build_operator(plans=[make_plan(1)], orders=[make_order(1)])
        operator.draw_winner(1, now=NOW)
        forced = operator.draw_winner(1, force=True, now=NOW)
        self.assertFalse(forced.already_drawn)
        self.assertEqual(forced.order.id, 1)

    def test_winner_recorded_by_a_racing_draw_is_kept(self):
        orders = [make_order(i) for i in range(1, 6)]
        outside_pool = make_order(6, payment_status=PaymentStatus.PENDING)
        operator, store = build_operator(plans=[make_plan(1)], orders=orders + [outside_pool])
        first = store.record_winner(make_plan(1), outside_pool, selected_at=NOW)

        # Both draws passed the "no winner yet" check before either recorded one.
        with mock.patch.object(DrawOperator, "_existing_result", return_value=None):
            result = operator.draw_winner(1, now=NOW)

        self.assertTrue(result.already_drawn)
        self.assertEqual(result.winner, first)
        self.assertEqual(result.order.id, 6)
        self.assertEqual(store.get_winner(1, CYCLE_START), first)

    def test_concurrent_draws_agree_on_one_winner(self):
        orders = [make_order(i) for i in range(1, 21)]
        operator, store = build_operator(plans=[make_plan(1)], orders=orders)
        barrier = threading.Barrier(8)
        results = []

        def draw():
            barrier.wait()
            results.append(operator.draw_winner(1, now=NOW))

        threads = [threading.Thread(target=draw) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        recorded = store.get_winner(1, CYCLE_START)
        self.assertEqual(len(results), 8)
        self.assertEqual({r.winner.order_code for r in results}, {recorded.order_code})

    def test_empty_pool_has_no_winner(self):
        stale = make_order(1, cycle_start_date=CYCLE_START - timedelta(days=15))
        operator, _ = build_operator(plans=[make_plan(1)], orders=[stale])

        result = operator.draw_winner(1, now=NOW)

        self.assertIsNone(result.winner)
        self.assertEqual(result.pool_size, 0)
        self.assertIsNone(result.to_dict()["announcement"])

    def test_new_cycle_starts_without_winner(self):
        plan = make_plan(1, end_date=NOW - timedelta(minutes=1))
        operator, _ = build_operator(plans=[plan], orders=[make_order(1)])
        operator.draw_winner(1, now=NOW)

        self.assertEqual(operator.reset_expired_plans(NOW), [1])
        result = operator.current_winner(1)
        self.assertIsNone(result.winner)
        self.assertEqual(result.pool_size, 0)

    def test_legacy_fallback_admits_unmarked_orders(self):
        unmarked = make_order(1, cycle_start_date=None, created_at=NOW - timedelta(days=2))
        config = {"draw": {"legacy_cycle_fallback": "true"}}
        operator, _ = build_operator(config=config, plans=[make_plan(1)], orders=[unmarked])

        self.assertTrue(operator.legacy_fallback)
        self.assertEqual(len(operator.participants(operator.get_plan(1), NOW)), 1)

    def test_unknown_plan(self):
        operator, _ = build_operator()
        with self.assertRaises(NotFoundError):
            operator.draw_winner(9)


if __name__ == "__main__":
    unittest.main()
