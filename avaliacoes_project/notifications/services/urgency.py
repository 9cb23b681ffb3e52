"""
Urgency tiers from time left until a deadline.

days_remaining = ceil((deadline - now) / 1 day)

    < 0                      overdue (urgency from policy, high by default)
    0 .. high_max_days       high
    .. medium_max_days       medium
    above                    low
"""

import math
from dataclasses import dataclass

from django.conf import settings

from core.exceptions import FatalConfigError

SECONDS_PER_DAY = 24 * 60 * 60

URGENCIES = ("low", "medium", "high", "overdue")

SETTINGS_KEYS = {
    "HIGH_MAX_DAYS": "high_max_days",
    "MEDIUM_MAX_DAYS": "medium_max_days",
    "OVERDUE_URGENCY": "overdue_urgency",
}


@dataclass(frozen=True)
class UrgencyPolicy:
    high_max_days: int = 1
    medium_max_days: int = 3
    overdue_urgency: str = "high"

    def __post_init__(self):
        for name in ("high_max_days", "medium_max_days"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise FatalConfigError(f"{name.upper()} must be a non-negative integer.")
        if self.medium_max_days < self.high_max_days:
            raise FatalConfigError("MEDIUM_MAX_DAYS must not be lower than HIGH_MAX_DAYS.")
        if self.overdue_urgency not in URGENCIES:
            raise FatalConfigError(
                f"OVERDUE_URGENCY must be one of {', '.join(URGENCIES)}."
            )

    @classmethod
    def from_settings(cls, raw=None):
        if raw is None:
            raw = getattr(settings, "NOTIFICATION_URGENCY", {}) or {}
        unknown = set(raw) - set(SETTINGS_KEYS)
        if unknown:
            raise FatalConfigError(
                f"Unknown NOTIFICATION_URGENCY key(s): {', '.join(sorted(unknown))}."
            )
        return cls(**{SETTINGS_KEYS[key]: value for key, value in raw.items()})


@dataclass(frozen=True)
class Classification:
    type: str
    urgency: str
    days_remaining: int

    @property
    def is_overdue(self):
        return self.type == "overdue"


def days_remaining(deadline, now) -> int:
    return math.ceil((deadline - now).total_seconds() / SECONDS_PER_DAY)


def classify(days, policy=None) -> Classification:
    policy = policy or UrgencyPolicy()

    if days < 0:
        return Classification("overdue", policy.overdue_urgency, days)
    if days <= policy.high_max_days:
        return Classification("pending", "high", days)
    if days <= policy.medium_max_days:
        return Classification("pending", "medium", days)
    return Classification("pending", "low", days)
