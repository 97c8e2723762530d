"""Core data models for the lucky draw backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from luckydraw.utils.common import format_timestamp, parse_timestamp, utcnow


class PaymentStatus(str, Enum):
    """Payment states an order moves through."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CycleStatus(str, Enum):
    """Which cycle of its plan an order belongs to."""

    CURRENT = "current"
    PREVIOUS = "previous"
    VIRTUAL = "virtual"


@dataclass
class Plan:
    """One prize offer and its current funding cycle."""

    id: int
    reward_title: str
    price: int
    goal_amount: int
    current_amount: int = 0
    end_date: Optional[datetime] = None
    last_reset_date: Optional[datetime] = None
    name: str = ""
    image_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Plan":
        return cls(
            id=int(row["id"]),
            reward_title=row.get("reward_title") or "",
            price=int(row.get("price") or 0),
            goal_amount=int(row.get("goal_amount") or 0),
            current_amount=int(row.get("current_amount") or 0),
            end_date=parse_timestamp(row.get("end_date")),
            last_reset_date=parse_timestamp(row.get("last_reset_date")),
            name=row.get("name") or "",
            image_url=row.get("image_url"),
            created_at=parse_timestamp(row.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(row.get("updated_at")) or utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "reward_title": self.reward_title,
            "price": self.price,
            "goal_amount": self.goal_amount,
            "current_amount": self.current_amount,
            "end_date": format_timestamp(self.end_date),
            "last_reset_date": format_timestamp(self.last_reset_date),
            "image_url": self.image_url,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass
class Order:
    """One purchased entry into a plan's prize pool."""

    id: int
    order_code: str
    name: str
    payment_account: str
    plan_id: int
    amount: int
    payment_status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    cycle_start_date: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Order":
        return cls(
            id=int(row["id"]),
            order_code=str(row.get("order_id") or row.get("order_code") or ""),
            name=row.get("name") or "",
            payment_account=row.get("easypaisa_account") or row.get("payment_account") or "",
            plan_id=int(row["plan_id"]),
            amount=int(row.get("amount") or 0),
            payment_status=PaymentStatus(row.get("payment_status") or PaymentStatus.PENDING.value),
            created_at=parse_timestamp(row.get("created_at")) or utcnow(),
            cycle_start_date=parse_timestamp(row.get("cycle_start_date")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_code": self.order_code,
            "name": self.name,
            "payment_account": self.payment_account,
            "plan_id": self.plan_id,
            "amount": self.amount,
            "payment_status": self.payment_status.value,
            "created_at": format_timestamp(self.created_at),
            "cycle_start_date": format_timestamp(self.cycle_start_date),
        }


@dataclass
class Milestone:
    """Reward tier inside a plan's funding goal; display only."""

    id: str
    plan_id: int
    amount: float
    reward_name: str
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Milestone":
        return cls(
            id=str(row["id"]),
            plan_id=int(row["plan_id"]),
            amount=float(row.get("amount") or 0),
            reward_name=row.get("reward_name") or "",
            image_url=row.get("image_url"),
        )


@dataclass
class Winner:
    """Recorded draw result for one plan cycle."""

    id: int
    plan_id: int
    order_id: int
    order_code: str
    name: str
    cycle_start_date: Optional[datetime]
    selected_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Winner":
        return cls(
            id=int(row["id"]),
            plan_id=int(row["plan_id"]),
            order_id=int(row["order_id"]),
            order_code=str(row.get("order_code") or ""),
            name=row.get("name") or "",
            cycle_start_date=parse_timestamp(row.get("cycle_start_date")),
            selected_at=parse_timestamp(row.get("selected_at")) or utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "order_id": self.order_id,
            "order_code": self.order_code,
            "name": self.name,
            "cycle_start_date": format_timestamp(self.cycle_start_date),
            "selected_at": format_timestamp(self.selected_at),
        }


@dataclass
class OrderCycle:
    """Result of classifying an order against its plan's cycle."""

    status: CycleStatus
    expires_at: datetime
    legacy: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "expires_at": format_timestamp(self.expires_at),
            "legacy": self.legacy,
        }


@dataclass
class Countdown:
    """Remaining time on a plan's persisted cycle, never negative."""

    remaining: timedelta
    ended: bool

    @property
    def days_left(self) -> int:
        seconds = self.remaining.total_seconds()
        return int(-(-seconds // 86400))

    @property
    def label(self) -> str:
        if self.ended:
            return "Ended"
        total = int(self.remaining.total_seconds())
        days, rest = divmod(total, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        if days > 0:
            return f"{days:02d}:{hours:02d}:{minutes:02d}:{seconds:02d}"
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remaining_seconds": int(self.remaining.total_seconds()),
            "days_left": self.days_left,
            "ended": self.ended,
            "label": self.label,
        }


@dataclass
class PaymentOutcome:
    """Result reported by a payment gateway."""

    success: bool
    reference: Optional[str] = None
    message: str = ""


@dataclass
class LiveFeedItem:
    """Entry pushed to the frontend activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any]
    created_at: datetime = field(default_factory=utcnow)
