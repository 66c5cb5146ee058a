from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from sqlalchemy.orm import sessionmaker

from .config import load_settings
from .models import User
from .repository import get_user_role_names


class Capability(str, Enum):
    VIEW_CHANGE = "view_change"
    EDIT_PAYMENTS = "edit_payments"
    EDIT_CHANGE = "edit_change"
    UPLOAD_RECEIPTS = "upload_receipts"


EDIT_CAPABILITIES = frozenset({
    Capability.EDIT_PAYMENTS,
    Capability.EDIT_CHANGE,
    Capability.UPLOAD_RECEIPTS,
})


@dataclass(frozen=True)
class SessionCapabilities:
    """Capacidades del usuario, resueltas una sola vez al iniciar sesión."""

    username: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    capabilities: frozenset[Capability] = field(default_factory=lambda: frozenset({Capability.VIEW_CHANGE}))

    def has(self, cap: Capability) -> bool:
        return cap in self.capabilities

    @property
    def can_edit(self) -> bool:
        return Capability.EDIT_CHANGE in self.capabilities


READ_ONLY = SessionCapabilities()


def resolve_capabilities(role_names: Iterable[str], edit_roles: Iterable[str] | None = None) -> frozenset[Capability]:
    """Traduce nombres de rol a capacidades (comparación sin distinguir mayúsculas)."""
    if edit_roles is None:
        edit_roles = load_settings().edit_roles
    allowed = {r.strip().lower() for r in edit_roles if r and r.strip()}
    caps = {Capability.VIEW_CHANGE}
    if any((name or "").strip().lower() in allowed for name in role_names):
        caps |= EDIT_CAPABILITIES
    return frozenset(caps)


def session_for_roles(username: str | None, role_names: Iterable[str], edit_roles: Iterable[str] | None = None) -> SessionCapabilities:
    roles = frozenset(r for r in role_names if r)
    return SessionCapabilities(
        username=username,
        roles=roles,
        capabilities=resolve_capabilities(roles, edit_roles),
    )


def load_session_capabilities(session_factory: sessionmaker, username: str | None) -> SessionCapabilities:
    """Lee los roles del usuario en la BD y resuelve sus capacidades.

    Usuario desconocido o inactivo → solo lectura.
    """
    if not username:
        return READ_ONLY
    with session_factory() as session:
        user = session.query(User).filter(User.username == username).first()
        if not user or not user.is_active:
            return SessionCapabilities(username=username)
        roles = get_user_role_names(session, user_id=user.id)
    return session_for_roles(username, roles)
