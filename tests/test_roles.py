import pytest

from dealerdesk.models.branch import BranchStatus, BranchType
from dealerdesk.models.user import UserRole, UserStatus
from dealerdesk.schemas.user import UserCreate


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("admin", UserRole.admin),
        ("  Owner ", UserRole.owner),
        ("executive", UserRole.staff),
        ("call-boy", UserRole.callboy),
        ("call_boy", UserRole.callboy),
        ("MECHANIC", UserRole.mechanic),
        ("backend", UserRole.backend),
        ("superuser", UserRole.user),
        ("", UserRole.user),
        (None, UserRole.user),
    ],
)
def test_role_normalization(raw, expected):
    assert UserRole.normalize(raw) is expected


def test_branch_scoped_roles():
    assert {r for r in UserRole if r.is_branch_scoped} == {
        UserRole.staff,
        UserRole.mechanic,
        UserRole.callboy,
    }


def test_status_and_branch_enums_fall_back_to_defaults():
    assert UserStatus.normalize("Suspended") is UserStatus.suspended
    assert UserStatus.normalize("gone") is UserStatus.active
    assert BranchType.normalize("SERVICE") is BranchType.service
    assert BranchType.normalize("unknown") is BranchType.sales_and_services
    assert BranchStatus.normalize("under_maintenance") is BranchStatus.under_maintenance
    assert BranchStatus.normalize(None) is BranchStatus.active


def test_user_create_normalizes_role_and_picks_branch():
    body = UserCreate.model_validate(
        {
            "name": "Ravi",
            "email": " Ravi@Example.com ",
            "password": "secret123",
            "role": "Executive",
            "branches": [9, 10],
            "branchId": 11,
        }
    )

    assert body.role is UserRole.staff
    assert body.email == "ravi@example.com"
    assert body.requested_branch_id() == 9

    body = UserCreate.model_validate(
        {"name": "Ravi", "email": "r@example.com", "password": "secret123", "primaryBranch": 3, "branchId": 11}
    )
    assert body.requested_branch_id() == 3
