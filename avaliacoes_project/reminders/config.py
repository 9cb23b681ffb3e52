"""
Reminder scheduler configuration.

Read from settings.REMINDER_SCHEDULER (upper-case keys) and validated
eagerly. An invalid value raises FatalConfigError and the previous
configuration stays in force.
"""

import re
from dataclasses import dataclass, fields, replace
from datetime import time, timedelta

from django.conf import settings

from core.exceptions import FatalConfigError

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

SETTINGS_KEYS = {
    "DIAS_ANTECEDENCIA": "dias_antecedencia",
    "HORARIO_ENVIO": "horario_envio",
    "ATIVO": "ativo",
    "INCLUIR_FIM_DE_SEMANA": "incluir_fim_de_semana",
    "INCLUIR_FERIADOS": "incluir_feriados",
    "MAX_ATTEMPTS": "max_attempts",
    "MAIL_TIMEOUT": "mail_timeout",
    "CLAIM_TTL_MINUTES": "claim_ttl_minutes",
    "LOOKAHEAD_DAYS": "lookahead_days",
    "SWEEP_INTERVAL_MINUTES": "sweep_interval_minutes",
}


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class ReminderConfig:
    dias_antecedencia: tuple = (7, 3, 1)
    horario_envio: str = "09:00"
    ativo: bool = True
    incluir_fim_de_semana: bool = False
    incluir_feriados: bool = False
    max_attempts: int = 5
    mail_timeout: int = 10
    claim_ttl_minutes: int = 10
    lookahead_days: int = 30
    sweep_interval_minutes: int = 60

    def __post_init__(self):
        offsets = self.dias_antecedencia
        if not isinstance(offsets, (list, tuple)):
            raise FatalConfigError("DIAS_ANTECEDENCIA must be a list of days.")
        for offset in offsets:
            if not _is_int(offset) or offset < 0:
                raise FatalConfigError(
                    f"DIAS_ANTECEDENCIA must hold non-negative integers, got {offset!r}."
                )
        # Normalise to a sorted, de-duplicated tuple (largest offset first).
        object.__setattr__(
            self, "dias_antecedencia", tuple(sorted(set(offsets), reverse=True))
        )

        if not isinstance(self.horario_envio, str) or not _TIME_RE.match(self.horario_envio):
            raise FatalConfigError(
                f"HORARIO_ENVIO must be a time in HH:MM format, got {self.horario_envio!r}."
            )

        for name in ("ativo", "incluir_fim_de_semana", "incluir_feriados"):
            if not isinstance(getattr(self, name), bool):
                raise FatalConfigError(f"{name.upper()} must be true or false.")

        for name in (
            "max_attempts",
            "mail_timeout",
            "claim_ttl_minutes",
            "lookahead_days",
            "sweep_interval_minutes",
        ):
            value = getattr(self, name)
            if not _is_int(value) or value < 1:
                raise FatalConfigError(f"{name.upper()} must be a positive integer.")

    # --------------------------------------------
    # DERIVED VALUES
    # --------------------------------------------
    @property
    def send_time(self) -> time:
        hours, minutes = self.horario_envio.split(":")
        return time(int(hours), int(minutes))

    @property
    def claim_ttl(self) -> timedelta:
        return timedelta(minutes=self.claim_ttl_minutes)

    @property
    def lookahead(self) -> timedelta:
        return timedelta(days=self.lookahead_days)

    # --------------------------------------------
    # CONSTRUCTION
    # --------------------------------------------
    @classmethod
    def from_settings(cls, raw=None):
        if raw is None:
            raw = getattr(settings, "REMINDER_SCHEDULER", {}) or {}

        unknown = set(raw) - set(SETTINGS_KEYS)
        if unknown:
            raise FatalConfigError(
                f"Unknown REMINDER_SCHEDULER key(s): {', '.join(sorted(unknown))}."
            )
        return cls(**{SETTINGS_KEYS[key]: value for key, value in raw.items()})

    def replace(self, **changes):
        """New validated config with `changes` applied; self is untouched."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise FatalConfigError(
                f"Unknown configuration field(s): {', '.join(sorted(unknown))}."
            )
        return replace(self, **changes)

    def as_dict(self):
        return {
            key: list(getattr(self, name)) if name == "dias_antecedencia" else getattr(self, name)
            for key, name in SETTINGS_KEYS.items()
        }
