"""Human-readable order codes: 7-digit, zero-padded decimal strings."""

from __future__ import annotations

import random
import secrets
import time
from typing import Callable, Optional

from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)

ORDER_CODE_DIGITS = 7
ORDER_CODE_SPACE = 10 ** ORDER_CODE_DIGITS
DEFAULT_MAX_ATTEMPTS = 10

_system_random = secrets.SystemRandom()


def generate_order_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or _system_random
    return f"{rng.randrange(ORDER_CODE_SPACE):0{ORDER_CODE_DIGITS}d}"


def timestamp_order_code(clock: Callable[[], float] = time.time) -> str:
    """Last seven digits of the millisecond clock."""
    return str(int(clock() * 1000))[-ORDER_CODE_DIGITS:].zfill(ORDER_CODE_DIGITS)


def allocate_order_code(
    exists: Callable[[str], bool],
    rng: Optional[random.Random] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    clock: Callable[[], float] = time.time,
) -> str:
    """Pick a random code not yet taken according to `exists`.

    The check is advisory: two callers can still race to the same code, so
    the store keeps its own uniqueness constraint. After `max_attempts`
    collisions a timestamp-derived code is returned instead.
    """
    for attempt in range(max_attempts):
        code = generate_order_code(rng)
        if not exists(code):
            return code
        logger.debug("Order code %s already taken (attempt %d)", code, attempt + 1)

    code = timestamp_order_code(clock)
    logger.warning("Order code space contended after %d attempts, using timestamp code %s", max_attempts, code)
    return code
