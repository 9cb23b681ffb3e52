"""
Window overlap detection between evaluation periods.

Only non-terminal periods (PLANNED, ACTIVE) take part. FINISHED and
CANCELED periods never conflict with anything.
"""

from dataclasses import dataclass
from datetime import datetime

from periods.models import Period


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ConflictingPeriod:
    id: int
    name: str
    status: str
    start: datetime
    end: datetime

    @classmethod
    def from_period(cls, period):
        return cls(
            id=period.pk,
            name=period.name,
            status=period.status,
            start=period.start,
            end=period.end,
        )

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def window_of(period) -> Window:
    return Window(start=period.start, end=period.end)


def overlaps(a: Window, b: Window) -> bool:
    """Closed-interval overlap: touching endpoints count."""
    return a.start <= b.end and a.end >= b.start


def find_conflicts(window: Window, exclude_id=None, statuses=Period.NON_TERMINAL):
    """
    All non-terminal periods overlapping `window`, ordered by start.
    The full set is always returned; nothing is merged or trimmed.
    """
    qs = Period.objects.filter(
        status__in=statuses,
        start__lte=window.end,
        end__gte=window.start,
    )
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)

    return [
        ConflictingPeriod.from_period(p)
        for p in qs.order_by("start", "id")
    ]
