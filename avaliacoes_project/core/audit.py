"""
Structured audit trail.

Each kind of change is its own frozen dataclass with a fixed tag.
Entries are stored as (tag, JSON payload) and rebuilt into the same
dataclass on read, so diffs stay typed instead of opaque strings.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import ClassVar, Optional

from django.utils.dateparse import parse_datetime

from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_REGISTRY = {}


def _register(cls):
    _REGISTRY[cls.tag] = cls
    return cls


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: object
    new: object


@dataclass(frozen=True)
class Change:
    tag: ClassVar[str] = ""
    entity: ClassVar[str] = ""

    entity_id: int

    def to_payload(self):
        payload = asdict(self)
        return _encode(payload)


@_register
@dataclass(frozen=True)
class PeriodCreated(Change):
    tag: ClassVar[str] = "period_created"
    entity: ClassVar[str] = "period"

    name: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@_register
@dataclass(frozen=True)
class PeriodUpdated(Change):
    tag: ClassVar[str] = "period_updated"
    entity: ClassVar[str] = "period"

    changes: tuple = field(default_factory=tuple)


@_register
@dataclass(frozen=True)
class PeriodStatusChanged(Change):
    tag: ClassVar[str] = "period_status_changed"
    entity: ClassVar[str] = "period"

    old_status: str = ""
    new_status: str = ""
    automatic: bool = False


@_register
@dataclass(frozen=True)
class PeriodDeleted(Change):
    tag: ClassVar[str] = "period_deleted"
    entity: ClassVar[str] = "period"

    name: str = ""


@_register
@dataclass(frozen=True)
class EvaluationCreated(Change):
    tag: ClassVar[str] = "evaluation_created"
    entity: ClassVar[str] = "evaluation"

    period_id: int = 0
    evaluated_id: int = 0
    status: str = ""


@_register
@dataclass(frozen=True)
class EvaluationUpdated(Change):
    tag: ClassVar[str] = "evaluation_updated"
    entity: ClassVar[str] = "evaluation"

    changes: tuple = field(default_factory=tuple)


@_register
@dataclass(frozen=True)
class EvaluationDeleted(Change):
    tag: ClassVar[str] = "evaluation_deleted"
    entity: ClassVar[str] = "evaluation"

    period_id: int = 0
    evaluated_id: int = 0


@_register
@dataclass(frozen=True)
class RemindersRescheduled(Change):
    tag: ClassVar[str] = "reminders_rescheduled"
    entity: ClassVar[str] = "evaluation"

    removed: int = 0
    created: int = 0


def diff(instance, new_values):
    """FieldChange tuple for every field whose value actually changes."""
    changes = []
    for name, new in new_values.items():
        old = getattr(instance, name)
        if old != new:
            changes.append(FieldChange(field=name, old=old, new=new))
    return tuple(changes)


def record(change, user=None, at=None):
    from core.models import AuditLog
    from django.utils import timezone

    # Accept a user or resolved Capabilities.
    user_id = getattr(user, "pk", None) or getattr(user, "user_id", None)
    entry = AuditLog.objects.create(
        user_id=user_id,
        entity=change.entity,
        entity_id=str(change.entity_id),
        action=change.tag,
        payload=change.to_payload(),
        created_at=at or timezone.now(),
    )
    logger.debug("Audit %s for %s#%s", change.tag, change.entity, change.entity_id)
    return entry


def load_change(tag, payload):
    cls = _REGISTRY.get(tag)
    if cls is None:
        raise ValidationError(f"Unknown audit action '{tag}'.")

    kwargs = {}
    for f in fields(cls):
        if f.name not in payload:
            continue
        value = payload[f.name]
        if f.name == "changes":
            value = tuple(
                FieldChange(field=c["field"], old=_decode(c["old"]), new=_decode(c["new"]))
                for c in value
            )
        else:
            value = _decode(value)
        kwargs[f.name] = value
    return cls(**kwargs)


# ============================================================
# JSON ENCODING
# ============================================================

def _encode(value):
    if isinstance(value, datetime):
        return {"__datetime__": value.isoformat()}
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(value):
    if isinstance(value, dict) and "__datetime__" in value:
        return parse_datetime(value["__datetime__"])
    return value
