"""
Role → capability resolution.

Resolve a user's capabilities once per request with `capabilities_for`
and pass the result around instead of comparing role strings.
"""

from dataclasses import dataclass

from core.exceptions import PermissionDenied

ADMIN = "ADMIN"
MANAGER = "MANAGER"
ATTENDANT = "ATTENDANT"


@dataclass(frozen=True)
class Capabilities:
    user_id: int = None
    role: str = ""
    manage_periods: bool = False
    delete_periods: bool = False
    bypass_evaluation_window: bool = False
    manage_evaluations: bool = False
    manage_reminders: bool = False
    purge_reminders: bool = False
    view_all_notifications: bool = False

    @property
    def is_elevated(self) -> bool:
        return self.manage_evaluations

    def require(self, capability: str, message: str = None):
        if not getattr(self, capability):
            raise PermissionDenied(message or f"Missing capability: {capability}.")


_ROLE_CAPABILITIES = {
    ADMIN: dict(
        manage_periods=True,
        delete_periods=True,
        bypass_evaluation_window=True,
        manage_evaluations=True,
        manage_reminders=True,
        purge_reminders=True,
        view_all_notifications=True,
    ),
    MANAGER: dict(
        manage_periods=True,
        bypass_evaluation_window=True,
        manage_evaluations=True,
        manage_reminders=True,
        view_all_notifications=True,
    ),
    ATTENDANT: {},
}


def capabilities_for(user) -> Capabilities:
    if user is None or not user.is_authenticated or not user.is_active:
        return Capabilities()

    role = ADMIN if user.is_superuser else getattr(user, "role", ATTENDANT)
    return Capabilities(
        user_id=user.pk,
        role=role,
        **_ROLE_CAPABILITIES.get(role, {}),
    )


def as_capabilities(actor) -> Capabilities:
    """Accept either a user or already-resolved capabilities."""
    if isinstance(actor, Capabilities):
        return actor
    return capabilities_for(actor)
