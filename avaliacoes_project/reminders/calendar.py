"""
Eligible delivery days.

Weekends and holidays (the Holiday table) are skipped unless the
configuration allows them; skipped days roll forward to the next
eligible day.
"""

from datetime import timedelta

from reminders.models import Holiday

# A year of consecutive blocked days means the holiday table is broken.
MAX_ROLL_DAYS = 366


class DeliveryCalendar:
    def __init__(self, include_weekends, include_holidays, holidays=None):
        self.include_weekends = include_weekends
        self.include_holidays = include_holidays
        self._holidays = holidays

    @classmethod
    def for_config(cls, config):
        return cls(
            include_weekends=config.incluir_fim_de_semana,
            include_holidays=config.incluir_feriados,
        )

    @property
    def holidays(self):
        if self._holidays is None:
            self._holidays = set(Holiday.objects.values_list("date", flat=True))
        return self._holidays

    def is_weekend(self, day):
        return day.weekday() >= 5

    def is_holiday(self, day):
        return day in self.holidays

    def is_eligible(self, day):
        if not self.include_weekends and self.is_weekend(day):
            return False
        if not self.include_holidays and self.is_holiday(day):
            return False
        return True

    def roll_forward(self, day, limit=None):
        """
        First eligible day on or after `day`.
        Returns None when no eligible day exists up to `limit`.
        """
        for _ in range(MAX_ROLL_DAYS):
            if limit is not None and day > limit:
                return None
            if self.is_eligible(day):
                return day
            day += timedelta(days=1)
        return None
