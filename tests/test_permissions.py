"""
Pruebas de permisos: roles → capacidades (edición vs solo lectura).
"""

import pytest

from src.order_change.models import Role, User, UserRole
from src.order_change.permissions import (
    READ_ONLY,
    Capability,
    load_session_capabilities,
    resolve_capabilities,
    session_for_roles,
)


@pytest.fixture
def users(session_factory):
    with session_factory() as s:
        vendedor = Role(name="Vendedor", description="Vendedor")
        cliente = Role(name="Cliente")
        ana = User(username="ana", is_active=True)
        luis = User(username="luis", is_active=True)
        baja = User(username="baja", is_active=False)
        s.add_all([vendedor, cliente, ana, luis, baja])
        s.flush()
        s.add_all([
            UserRole(user_id=ana.id, role_id=vendedor.id),
            UserRole(user_id=luis.id, role_id=cliente.id),
            UserRole(user_id=baja.id, role_id=vendedor.id),
        ])
        s.commit()
    return session_factory


def test_roles_are_case_insensitive():
    caps = resolve_capabilities(["ADMIN"], ["Admin", "Gerente"])
    assert Capability.EDIT_CHANGE in caps
    assert Capability.UPLOAD_RECEIPTS in caps


def test_unknown_role_is_read_only():
    caps = resolve_capabilities(["Chofer"], ["Admin"])
    assert caps == frozenset({Capability.VIEW_CHANGE})


def test_default_edit_roles_from_settings():
    assert session_for_roles("x", ["Gerente"]).can_edit
    assert not session_for_roles("x", []).can_edit


def test_edit_roles_from_environment(monkeypatch):
    monkeypatch.setenv("ORDER_CHANGE_EDIT_ROLES", "Caja, Supervisor")
    assert session_for_roles("x", ["caja"]).can_edit
    assert not session_for_roles("x", ["Vendedor"]).can_edit


def test_load_from_database(users):
    ana = load_session_capabilities(users, "ana")
    assert ana.can_edit
    assert ana.roles == frozenset({"Vendedor"})

    luis = load_session_capabilities(users, "luis")
    assert not luis.can_edit
    assert luis.has(Capability.VIEW_CHANGE)


def test_inactive_or_missing_user_is_read_only(users):
    assert not load_session_capabilities(users, "baja").can_edit
    assert not load_session_capabilities(users, "nadie").can_edit
    assert load_session_capabilities(users, None) is READ_ONLY
