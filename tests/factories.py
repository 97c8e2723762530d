from datetime import datetime, timedelta, timezone

from luckydraw.draw.models import Order, PaymentStatus, Plan

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
CYCLE_START = NOW - timedelta(days=5)


def make_plan(plan_id=1, **overrides):
    values = dict(
        id=plan_id,
        reward_title="iPhone 17 Pro Max",
        price=1,
        goal_amount=1000,
        current_amount=0,
        end_date=NOW + timedelta(days=10),
        last_reset_date=CYCLE_START,
    )
    values.update(overrides)
    return Plan(**values)


def make_order(order_id=1, plan_id=1, **overrides):
    values = dict(
        id=order_id,
        order_code=f"{order_id:07d}",
        name=f"player {order_id}",
        payment_account="03001234567",
        plan_id=plan_id,
        amount=1,
        payment_status=PaymentStatus.COMPLETED,
        created_at=NOW - timedelta(days=1),
        cycle_start_date=CYCLE_START,
    )
    values.update(overrides)
    return Order(**values)
