"""
Health ID generation and validation.

A Health ID (``EMH-`` followed by six digits) is the stable identifier
embedded in every QR payload and used for the authenticated full-record
lookup.  Uniqueness is checked through an injected ``is_taken`` callable so
this module stays independent of the patient store.
"""

from __future__ import annotations

import logging
import random
import re
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

HEALTH_ID_PREFIX = "EMH-"
_HEALTH_ID_RE = re.compile(r"^EMH-\d{6}$")


class HealthIdExhaustedError(RuntimeError):
    """Raised when no free Health ID could be found."""
    pass


def is_valid_health_id(value: object) -> bool:
    """Whether ``value`` is a well-formed Health ID (``EMH-######``)."""
    return isinstance(value, str) and bool(_HEALTH_ID_RE.match(value))


def generate_health_id(
    is_taken: Callable[[str], bool],
    rng: Optional[random.Random] = None,
    max_attempts: int = 10,
    clock: Callable[[], float] = time.time,
) -> str:
    """Generate a Health ID not yet in use.

    Tries ``max_attempts`` random six-digit candidates (100000-999999).  If
    all collide, falls back to the last six digits of the millisecond clock.

    Args:
        is_taken: Returns True if a candidate already belongs to a patient.
        rng: Random source; defaults to a fresh ``random.Random()``.
        max_attempts: Random candidates to try before the clock fallback.
        clock: Time source in seconds, for the fallback.

    Returns:
        A free Health ID.

    Raises:
        HealthIdExhaustedError: If the clock-based candidate is taken too.
    """
    rng = rng or random.Random()
    for _ in range(max_attempts):
        candidate = f"{HEALTH_ID_PREFIX}{rng.randint(100000, 999999)}"
        if not is_taken(candidate):
            return candidate

    millis = str(int(clock() * 1000))
    candidate = f"{HEALTH_ID_PREFIX}{millis[-6:].zfill(6)}"
    logger.warning(
        "%d random Health ID candidates collided; trying clock-based %s",
        max_attempts,
        candidate,
    )
    if not is_taken(candidate):
        return candidate
    raise HealthIdExhaustedError(
        f"Could not find a free Health ID after {max_attempts} attempts and clock fallback"
    )
