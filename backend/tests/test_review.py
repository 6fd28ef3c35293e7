from app.auth.resolver import PermissionOverrides
from app.auth.review import review_assignment
from app.auth.roles import Role


def test_plain_role_defaults_review_clean() -> None:
    review = review_assignment(Role.PASTOR, PermissionOverrides())
    assert review.is_valid
    assert review.errors == review.warnings == review.suggestions == []


def test_unknown_role_is_an_error() -> None:
    review = review_assignment(Role.UNKNOWN, PermissionOverrides.of(["events.view"], []))
    assert not review.is_valid
    assert "not recognised" in review.errors[0]


def test_administrator_overrides_are_flagged_as_ineffective() -> None:
    review = review_assignment(Role.ADMINISTRATOR, PermissionOverrides.of([], ["settings.edit"]))
    assert review.is_valid
    assert len(review.warnings) == 1


def test_conflicting_overrides_are_an_error() -> None:
    review = review_assignment(Role.LEADER, PermissionOverrides.of(["events.delete"], ["events.delete"]))
    assert not review.is_valid
    assert "events.delete" in review.errors[0]


def test_deviation_from_defaults_is_reported() -> None:
    review = review_assignment(
        Role.VOLUNTEER, PermissionOverrides.of(["events.create"], ["members.view"])
    )
    assert review.is_valid
    assert any("members.view" in warning for warning in review.warnings)
    assert any("events.create" in warning for warning in review.warnings)


def test_treasurer_needs_financial_view() -> None:
    review = review_assignment(Role.TREASURER, PermissionOverrides.of([], ["financial.view"]))
    assert not review.is_valid
    assert "financial" in review.errors[0]


def test_treasurer_without_edit_is_a_warning() -> None:
    review = review_assignment(Role.TREASURER, PermissionOverrides.of([], ["financial.edit"]))
    assert review.is_valid
    assert any("edit financial" in warning for warning in review.warnings)


def test_member_with_delete_is_a_warning() -> None:
    review = review_assignment(Role.MEMBER, PermissionOverrides.of(["members.delete"], []))
    assert review.is_valid
    assert any("security risk" in warning for warning in review.warnings)


def test_leader_without_member_registration_gets_a_suggestion() -> None:
    review = review_assignment(Role.LEADER, PermissionOverrides.of([], ["members.create"]))
    assert review.is_valid
    assert review.suggestions == ["Leaders usually need to register new members"]
