import pytest

from app.auth.catalog import DEFAULT_CATALOG
from app.auth.roles import (
    ASSIGNABLE_ROLES,
    DEFAULT_ROLE_DEFAULTS,
    ROLE_DEFAULT_PERMISSIONS,
    Role,
    RoleDefaults,
)
from app.errors import UnknownPermission


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        ("administrator", Role.ADMINISTRATOR),
        ("Administrador", Role.ADMINISTRATOR),
        ("Líder", Role.LEADER),
        ("Tesoureiro", Role.TREASURER),
        ("Voluntário", Role.VOLUNTEER),
        ("Membro", Role.MEMBER),
        ("PASTOR", Role.PASTOR),
        (" treasurer ", Role.TREASURER),
        (Role.LEADER, Role.LEADER),
    ],
)
def test_parse_known_labels(label, expected: Role) -> None:
    assert Role.parse(label) is expected


@pytest.mark.parametrize("label", ["superuser", "", "admin", None, 3, "unknownish"])
def test_parse_unknown_labels_fall_back(label) -> None:
    assert Role.parse(label) is Role.UNKNOWN


def test_exactly_one_administrator_role() -> None:
    assert [role for role in Role if role.is_administrator] == [Role.ADMINISTRATOR]
    assert Role.UNKNOWN not in ASSIGNABLE_ROLES


def test_administrator_defaults_are_computed_from_catalog() -> None:
    assert Role.ADMINISTRATOR not in ROLE_DEFAULT_PERMISSIONS
    assert DEFAULT_ROLE_DEFAULTS.defaults_for(Role.ADMINISTRATOR) == DEFAULT_CATALOG.names()


def test_unknown_role_has_no_defaults() -> None:
    assert DEFAULT_ROLE_DEFAULTS.defaults_for(Role.UNKNOWN) == frozenset()


def test_role_missing_from_mapping_has_no_defaults() -> None:
    defaults = RoleDefaults({Role.LEADER: {"events.view"}})
    assert defaults.defaults_for(Role.VOLUNTEER) == frozenset()
    assert defaults.defaults_for(Role.LEADER) == frozenset({"events.view"})


def test_every_default_is_in_catalog() -> None:
    for role in ASSIGNABLE_ROLES:
        assert DEFAULT_ROLE_DEFAULTS.defaults_for(role) <= DEFAULT_CATALOG.names()


def test_treasurer_defaults_cover_financial_module() -> None:
    treasurer = DEFAULT_ROLE_DEFAULTS.defaults_for(Role.TREASURER)
    assert {"financial.view", "financial.export", "financial.reports"} <= treasurer
    assert "users.permissions" not in treasurer


def test_role_defaults_reject_unknown_names() -> None:
    with pytest.raises(UnknownPermission) as exc:
        RoleDefaults({Role.MEMBER: {"members.view", "members.teleport"}})
    assert exc.value.names == ("members.teleport",)


def test_role_defaults_reject_enumerated_administrator() -> None:
    with pytest.raises(ValueError):
        RoleDefaults({Role.ADMINISTRATOR: {"members.view"}})
