import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

import requests

from luckydraw.draw.models import Order, PaymentStatus, Plan
from luckydraw.errors import DuplicateOrderCodeError, InvalidTransitionError, NotFoundError, StoreError
from luckydraw.store.supabase import SupabaseStore

ORDER_ROW = {
    "id": 11,
    "order_id": "0012345",
    "name": "Sara",
    "easypaisa_account": "03001234567",
    "plan_id": 2,
    "amount": 5,
    "payment_status": "completed",
    "created_at": "2025-03-01T10:00:00Z",
    "cycle_start_date": "2025-02-25T00:00:00+00:00",
}


CYCLE = datetime(2025, 2, 25, tzinfo=timezone.utc)

WINNER_ROW = {
    "id": 1,
    "plan_id": 2,
    "order_id": 11,
    "order_code": "0012345",
    "name": "Sara",
    "cycle_start_date": "2025-02-25T00:00:00+00:00",
    "selected_at": "2025-03-10T08:00:00.12345+00:00",
}

def fake_response(status_code=200, payload=None):
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    response.content = b"" if payload is None else b"x"
    response.json.return_value = payload
    response.text = ""
    return response


class SupabaseStoreTests(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.session.headers = {}
        self.store = SupabaseStore("https://db.example.co/", "anon-key", session=self.session)

    def _last_call(self):
        args, kwargs = self.session.request.call_args
        return args[0], args[1], kwargs

    def test_auth_headers_and_base_url(self):
        self.assertEqual(self.session.headers["apikey"], "anon-key")
        self.assertEqual(self.session.headers["Authorization"], "Bearer anon-key")
        self.assertEqual(self.store.base_url, "https://db.example.co/rest/v1")

    def test_missing_credentials(self):
        with self.assertRaises(ValueError):
            SupabaseStore("", "key", session=self.session)

    def test_list_orders_maps_filters_and_columns(self):
        self.session.request.return_value = fake_response(payload=[ORDER_ROW])

        orders = self.store.list_orders(plan_id=2, status=PaymentStatus.COMPLETED)

        method, url, kwargs = self._last_call()
        self.assertEqual(method, "GET")
        self.assertEqual(url, "https://db.example.co/rest/v1/orders")
        self.assertEqual(kwargs["params"]["plan_id"], "eq.2")
        self.assertEqual(kwargs["params"]["payment_status"], "eq.completed")
        self.assertEqual(kwargs["timeout"], 10.0)

        order = orders[0]
        self.assertEqual(order.order_code, "0012345")
        self.assertEqual(order.payment_account, "03001234567")
        self.assertEqual(order.cycle_start_date, datetime(2025, 2, 25, tzinfo=timezone.utc))

    def test_create_order_sends_cycle_marker(self):
        self.session.request.return_value = fake_response(payload=[dict(ORDER_ROW, payment_status="pending")])

        self.store.create_order(
            order_code="0012345",
            name="Sara",
            payment_account="03001234567",
            plan_id=2,
            amount=5,
            cycle_start_date=datetime(2025, 2, 25, tzinfo=timezone.utc),
        )

        method, _, kwargs = self._last_call()
        self.assertEqual(method, "POST")
        self.assertEqual(kwargs["json"]["order_id"], "0012345")
        self.assertEqual(kwargs["json"]["easypaisa_account"], "03001234567")
        self.assertEqual(kwargs["json"]["cycle_start_date"], "2025-02-25T00:00:00+00:00")
        self.assertEqual(kwargs["headers"], {"Prefer": "return=representation"})

    def test_unique_violation_maps_to_duplicate_code(self):
        self.session.request.return_value = fake_response(
            409, {"code": "23505", "message": "duplicate key value violates unique constraint"}
        )
        with self.assertRaises(DuplicateOrderCodeError):
            self.store.create_order(
                order_code="0012345",
                name="Sara",
                payment_account="0300",
                plan_id=2,
                amount=5,
                cycle_start_date=None,
            )

    def test_error_message_is_passed_through(self):
        self.session.request.return_value = fake_response(400, {"code": "42P01", "message": "relation missing"})
        with self.assertRaises(StoreError) as ctx:
            self.store.list_plans()
        self.assertEqual(str(ctx.exception), "relation missing")

    def test_network_failure_becomes_store_error(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("boom")
        with self.assertRaises(StoreError):
            self.store.get_plan(1)

    def test_reset_calls_procedure_and_emits(self):
        events = []
        self.store.add_listener("plans_reset", events.append)
        self.session.request.return_value = fake_response(payload=[{"check_and_reset_expired_plans": 3}, 4])

        reset = self.store.check_and_reset_expired_plans()

        method, url, kwargs = self._last_call()
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/rpc/check_and_reset_expired_plans"))
        self.assertEqual(kwargs["json"], {"cycle_days": 15})
        self.assertEqual(reset, [3, 4])
        self.assertEqual(events, [{"plan_ids": [3, 4]}])

    def test_update_plan_on_reset_patches_cycle_columns(self):
        self.session.request.return_value = fake_response()
        start = datetime(2025, 3, 1, tzinfo=timezone.utc)

        self.store.update_plan_on_reset(4, start + timedelta(days=15), start)

        method, url, kwargs = self._last_call()
        self.assertEqual(method, "PATCH")
        self.assertTrue(url.endswith("/game_plans"))
        self.assertEqual(kwargs["params"], {"id": "eq.4"})
        self.assertEqual(
            kwargs["json"],
            {
                "end_date": "2025-03-16T00:00:00+00:00",
                "last_reset_date": "2025-03-01T00:00:00+00:00",
                "current_amount": 0,
            },
        )

    def test_reset_with_nothing_expired(self):
        self.session.request.return_value = fake_response(payload=[])
        self.assertEqual(self.store.check_and_reset_expired_plans(), [])

    def test_status_update_is_guarded_on_pending(self):
        received = []
        self.store.subscribe_to_new_completed_orders(received.append)
        self.session.request.return_value = fake_response(payload=[ORDER_ROW])

        order = self.store.update_order_status(11, PaymentStatus.COMPLETED)

        method, _, kwargs = self._last_call()
        self.assertEqual(method, "PATCH")
        self.assertEqual(kwargs["params"], {"id": "eq.11", "payment_status": "eq.pending"})
        self.assertEqual(order.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual([o.order_code for o in received], ["0012345"])

    def test_status_update_on_settled_order(self):
        self.session.request.side_effect = [fake_response(payload=[]), fake_response(payload=[ORDER_ROW])]
        with self.assertRaises(InvalidTransitionError):
            self.store.update_order_status(11, PaymentStatus.FAILED)

    def test_status_update_on_missing_order(self):
        self.session.request.side_effect = [fake_response(payload=[]), fake_response(payload=[])]
        with self.assertRaises(NotFoundError):
            self.store.update_order_status(99, PaymentStatus.FAILED)

    def _record_winner(self, **kwargs):
        plan = Plan(id=2, reward_title="Phone", price=5, goal_amount=100, last_reset_date=CYCLE)
        order = Order.from_row(ORDER_ROW)
        return self.store.record_winner(plan, order, **kwargs)

    def test_winner_conflict_returns_recorded_winner(self):
        self.session.request.side_effect = [
            fake_response(409, {"code": "23505", "message": "duplicate key value violates unique constraint"}),
            fake_response(payload=[dict(WINNER_ROW, order_id=12, order_code="0099999")]),
        ]

        winner = self._record_winner()

        self.assertEqual(winner.order_code, "0099999")
        method, _, kwargs = self._last_call()
        self.assertEqual(method, "GET")
        self.assertEqual(kwargs["params"]["cycle_start_date"], "eq.2025-02-25T00:00:00+00:00")

    def test_overwrite_upserts_on_cycle_key(self):
        self.session.request.return_value = fake_response(payload=[WINNER_ROW])

        winner = self._record_winner(overwrite=True)

        self.assertEqual(winner.selected_at, datetime(2025, 3, 10, 8, 0, 0, 123450, tzinfo=timezone.utc))

        method, url, kwargs = self._last_call()
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/winners"))
        self.assertEqual(kwargs["params"], {"on_conflict": "plan_id,cycle_start_date"})
        self.assertEqual(kwargs["headers"], {"Prefer": "resolution=merge-duplicates,return=representation"})

    def test_winner_lookup_without_cycle_marker(self):
        self.session.request.return_value = fake_response(payload=[])
        self.assertIsNone(self.store.get_winner(2, None))
        _, _, kwargs = self._last_call()
        self.assertEqual(kwargs["params"]["cycle_start_date"], "is.null")

    def test_health_check_reports_errors(self):
        self.session.request.side_effect = requests.exceptions.Timeout("slow")
        self.assertEqual(self.store.health_check()["status"], "error")


if __name__ == "__main__":
    unittest.main()
