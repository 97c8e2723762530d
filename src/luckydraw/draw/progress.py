"""Funding progress and milestone tiers for the plan progress bar."""

from __future__ import annotations

from typing import Dict, Iterable, List

from luckydraw.draw.models import Milestone, Plan

DEFAULT_IMAGE = "/globe.svg"

# Keyword -> image, first match wins.
PLAN_IMAGES: Dict[str, str] = {
    "iphone": "/iphone17.webp",
    "phone": "/phone.png",
    "trip": "/trip.jpg",
    "cash": "/cash.png",
    "money": "/cash.png",
    "bike": "/bike.jpg",
    "motorcycle": "/bike.jpg",
    "car": "/car.jpg",
    "laptop": "/laptop.jpg",
    "macbook": "/laptop.jpg",
    "camera": "/smallcamera.jpg",
    "17 pro max": "/iphone17.webp",
    "pro max": "/iphone17.webp",
}

# (fraction of goal, reward name, image) used when a plan has no milestones.
DEFAULT_TIERS = (
    (0.1, "cash", "/cash.png"),
    (0.3, "small camera", "/smallcamera.jpg"),
    (0.6, "phone", "/phone.png"),
    (1.0, "17 Pro Max", "/iphone17.webp"),
)


def progress_percent(current: float, goal: float) -> float:
    if not goal or not current:
        return 0.0
    return min(current / goal * 100.0, 100.0)


def plan_image(title: str) -> str:
    lowered = (title or "").lower()
    for keyword, path in PLAN_IMAGES.items():
        if keyword in lowered:
            return path
    return DEFAULT_IMAGE


def default_milestones(plan: Plan) -> List[Milestone]:
    return [
        Milestone(
            id=f"d-{plan.id}-{name.replace(' ', '').lower()}",
            plan_id=plan.id,
            amount=plan.goal_amount * fraction,
            reward_name=name,
            image_url=image,
        )
        for fraction, name, image in DEFAULT_TIERS
    ]


def plan_milestones(plan: Plan, milestones: Iterable[Milestone]) -> List[Milestone]:
    """Milestones for one plan, deduplicated by reward name, falling back to defaults."""
    seen = set()
    unique = []
    for milestone in milestones:
        if milestone.plan_id != plan.id or milestone.reward_name in seen:
            continue
        seen.add(milestone.reward_name)
        unique.append(milestone)
    return unique or default_milestones(plan)


def milestone_percent(milestone: Milestone, goal: float) -> float:
    if not goal:
        return 0.0
    return max(0.0, min(milestone.amount / goal * 100.0, 100.0))
