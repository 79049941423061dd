from datetime import datetime, timedelta, timezone

import pytest

from billsync.core.errors import NotFoundError, OwnerRoleError, OwnerSeatError, ValidationError
from billsync.features.store.memory import InMemoryDocumentStore
from billsync.features.teams.seats import SeatAssignmentManager
from billsync.features.teams.service import TeamService
from billsync.models.billing import TeamRole
from billsync.tests.mocks import CountingStore


class StepClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def teams():
    return TeamService(InMemoryDocumentStore(), clock=StepClock())


def test_create_team_writes_owner_mapping_and_placeholder(teams):
    team = teams.create_team("Crew", "Road crew", "owner", "owner@example.com")

    assert teams.get_team(team.id).name == "Crew"
    owner = teams.get_member(team.id, "owner")
    assert owner.role == TeamRole.OWNER
    assert owner.has_seat
    assert owner.seat_assignment.assigned_by == "owner"
    assert teams.store.get("user-teams/owner")["teamId"] == team.id
    placeholder = teams.get_team_subscription(team.id)
    assert placeholder.status == "inactive"
    assert placeholder.quantity == 0


def test_create_team_requires_name(teams):
    with pytest.raises(ValidationError):
        teams.create_team("", "", "owner", "owner@example.com")


def test_add_member_without_seat(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")

    member = teams.add_member(team.id, "u2", "member", "owner", "u2@example.com")

    assert member.has_seat is False
    assert teams.get_user_team("u2").id == team.id


def test_add_member_rejects_unknown_role(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    with pytest.raises(ValidationError):
        teams.add_member(team.id, "u2", "superuser", "owner")


def test_members_newest_first(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.add_member(team.id, "u2", "member", "owner")
    teams.add_member(team.id, "u3", "admin", "owner")

    assert [m.id for m in teams.get_members(team.id)] == ["u3", "u2", "owner"]


def test_update_role_and_remove(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.add_member(team.id, "u2", "member", "owner")

    teams.update_member_role(team.id, "u2", "admin")
    assert teams.get_member(team.id, "u2").role == TeamRole.ADMIN
    assert teams.store.get("user-teams/u2")["role"] == "admin"

    teams.remove_member(team.id, "u2")
    assert teams.get_member(team.id, "u2") is None
    assert teams.get_user_team("u2") is None


def test_update_role_unknown_member(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    with pytest.raises(NotFoundError):
        teams.update_member_role(team.id, "ghost", "admin")


def test_owned_team_found_without_mapping(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.store.delete("user-teams/owner")

    assert teams.get_owned_team("owner").id == team.id
    assert teams.get_user_team("owner").id == team.id


def test_owned_team_ignores_membership(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.add_member(team.id, "u2", "admin", "owner")

    assert teams.get_owned_team("u2") is None


@pytest.mark.parametrize(
    "user_id,required_role,authorized",
    [
        ("owner", None, True),
        ("owner", "admin", True),
        ("owner", "owner", True),
        ("admin", "admin", True),
        ("admin", "owner", False),
        ("member", None, True),
        ("member", "admin", False),
        ("stranger", None, False),
    ],
)
def test_verify_team_access(teams, user_id, required_role, authorized):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.add_member(team.id, "admin", "admin", "owner")
    teams.add_member(team.id, "member", "member", "owner")

    access = teams.verify_team_access(team.id, user_id, required_role=required_role)

    assert access.authorized is authorized


def test_verify_access_unknown_team(teams):
    assert teams.verify_team_access("missing", "owner").authorized is False


def owners(teams, team_id):
    return [(m.id, m.has_seat) for m in teams.get_members(team_id) if m.role == TeamRole.OWNER]


def test_owner_cannot_be_demoted(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")

    with pytest.raises(OwnerRoleError):
        teams.update_member_role(team.id, "owner", "member")

    assert owners(teams, team.id) == [("owner", True)]
    with pytest.raises(OwnerSeatError):
        SeatAssignmentManager(teams.store).unassign_seat(team.id, "owner", "owner")
    assert teams.get_member(team.id, "owner").has_seat


def test_member_cannot_be_promoted_to_owner(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.add_member(team.id, "u2", "admin", "owner")

    with pytest.raises(OwnerRoleError):
        teams.update_member_role(team.id, "u2", "owner")

    assert teams.get_member(team.id, "u2").role == TeamRole.ADMIN
    assert owners(teams, team.id) == [("owner", True)]


def test_second_owner_cannot_be_added(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")

    with pytest.raises(OwnerRoleError):
        teams.add_member(team.id, "u2", "owner", "owner")

    assert teams.get_member(team.id, "u2") is None
    assert owners(teams, team.id) == [("owner", True)]


def test_owner_cannot_be_removed(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")

    with pytest.raises(OwnerRoleError):
        teams.remove_member(team.id, "owner")

    assert owners(teams, team.id) == [("owner", True)]
    assert teams.get_user_team("owner").id == team.id


def test_same_role_update_is_noop_for_owner(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")

    assert teams.update_member_role(team.id, "owner", "owner").role == TeamRole.OWNER


def test_remove_member_keeps_mapping_to_other_team(teams):
    first = teams.create_team("Crew", "", "owner", "owner@example.com")
    second = teams.create_team("Band", "", "boss", "boss@example.com")
    teams.add_member(first.id, "u2", "member", "owner")
    teams.add_member(second.id, "u2", "member", "boss")

    teams.remove_member(first.id, "u2")

    assert teams.get_user_team("u2").id == second.id


def test_owned_team_lookup_does_not_scan_for_members():
    store = CountingStore()
    teams = TeamService(store, clock=StepClock())
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.add_member(team.id, "u2", "member", "owner")

    assert teams.get_owned_team("u2") is None
    assert teams.get_owned_team("owner").id == team.id
    assert store.lists == 0


def test_owned_team_found_after_joining_another_team(teams):
    owned = teams.create_team("Crew", "", "owner", "owner@example.com")
    other = teams.create_team("Band", "", "boss", "boss@example.com")
    teams.add_member(other.id, "owner", "member", "boss")

    assert teams.get_owned_team("owner").id == owned.id


def test_owned_team_scan_for_unindexed_owner(teams):
    team = teams.create_team("Crew", "", "owner", "owner@example.com")
    teams.store.delete("user-teams/owner")
    teams.store.delete("owner-teams/owner")

    assert teams.get_owned_team("owner").id == team.id
