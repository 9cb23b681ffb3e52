"""
Time source for everything that depends on "now".

Services take a clock instead of calling timezone.now() directly,
so tests can move time forward deterministically.
"""

from datetime import timedelta

from django.utils import timezone


class Clock:
    def now(self):
        raise NotImplementedError

    def localdate(self):
        return timezone.localtime(self.now()).date()


class SystemClock(Clock):
    def now(self):
        return timezone.now()


class FixedClock(Clock):
    """
    A clock frozen at a given instant until moved explicitly.
    """

    def __init__(self, at):
        if timezone.is_naive(at):
            at = timezone.make_aware(at)
        self._at = at

    def now(self):
        return self._at

    def set(self, at):
        if timezone.is_naive(at):
            at = timezone.make_aware(at)
        self._at = at

    def advance(self, **kwargs):
        self._at = self._at + timedelta(**kwargs)
        return self._at


def resolve_clock(clock=None, now=None):
    """Prefer an explicit instant, then an explicit clock, then wall time."""
    if now is not None:
        return FixedClock(now)
    return clock or SystemClock()
