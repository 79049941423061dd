"""
Team service.

Teams, their members and the user -> team mapping:

- teams/{teamId}
- teams/{teamId}/members/{userId}
- teams/{teamId}/subscription/current
- user-teams/{userId}
- owner-teams/{userId}

Seat assignment lives in seats.py; this module only grants the owner's seat
when the owner is added. The owner is fixed at creation: it cannot be
demoted, removed, or joined by a second owner.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from billsync.core.errors import NotFoundError, OwnerRoleError, ValidationError
from billsync.core.logging import log_event
from billsync.features.billing.subjects import TeamSubject, subscription_path
from billsync.features.store.interface import DocumentStore
from billsync.models.billing import (
    SeatAssignment,
    Subscription,
    SubscriptionStatus,
    Team,
    TeamMember,
    TeamRole,
    utc_now,
)


def team_path(team_id: str) -> str:
    return f"teams/{team_id}"


def members_collection(team_id: str) -> str:
    return f"teams/{team_id}/members"


def member_path(team_id: str, user_id: str) -> str:
    return f"{members_collection(team_id)}/{user_id}"


def user_team_path(user_id: str) -> str:
    return f"user-teams/{user_id}"


def owned_team_path(user_id: str) -> str:
    return f"owner-teams/{user_id}"


def team_subscription_path(team_id: str) -> str:
    # Subject user id is irrelevant for the path
    return subscription_path(TeamSubject(team_id=team_id, user_id=""))


def parse_role(role: str) -> TeamRole:
    try:
        return TeamRole(role)
    except ValueError:
        raise ValidationError(f"Invalid role: {role}")


@dataclass
class TeamAccess:
    authorized: bool
    role: Optional[TeamRole] = None
    team: Optional[Team] = None


class TeamService:
    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def create_team(self, name: str, description: str, owner_id: str, owner_email: str) -> Team:
        """Create a team with its owner (holding a seat) and an inactive subscription."""
        if not name or not owner_id:
            raise ValidationError("Team name and owner are required")

        now = self.clock()
        team = Team(
            id=uuid.uuid4().hex,
            name=name,
            description=description or "",
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        self.store.set(team_path(team.id), team.to_document())
        self.store.set(owned_team_path(owner_id), {"teamId": team.id})
        self.add_member(team.id, owner_id, TeamRole.OWNER.value, owner_id, owner_email)

        placeholder = Subscription(
            status=SubscriptionStatus.INACTIVE.value,
            quantity=0,
            created_at=now,
            updated_at=now,
        )
        self.store.set(team_subscription_path(team.id), placeholder.to_document())

        log_event("info", "team.created", subject_kind="team", subject_id=team.id)
        return team

    def get_team(self, team_id: str) -> Optional[Team]:
        doc = self.store.get(team_path(team_id))
        if doc is None:
            return None
        return Team.model_validate({**doc, "id": team_id})

    def get_user_team(self, user_id: str) -> Optional[Team]:
        """The team a user belongs to, via the user-teams mapping."""
        if not user_id:
            return None
        mapping = self.store.get(user_team_path(user_id))
        if mapping and mapping.get("teamId"):
            team = self.get_team(mapping["teamId"])
            if team is not None:
                return team
        # Mapping missing for teams created before it existed
        return self.get_owned_team(user_id)

    def get_owned_team(self, user_id: str) -> Optional[Team]:
        """
        The team this user owns.

        Reads the owner-teams index, then the user-teams mapping. Only users
        with neither (teams created before both existed) fall back to a scan
        of teams by ownerId.
        """
        if not user_id:
            return None
        index = self.store.get(owned_team_path(user_id))
        mapping = self.store.get(user_team_path(user_id))
        for candidate in (index, mapping):
            if not candidate or not candidate.get("teamId"):
                continue
            if candidate is mapping and candidate.get("role") != TeamRole.OWNER.value:
                continue
            team = self.get_team(candidate["teamId"])
            if team is not None and team.owner_id == user_id:
                return team
        if index is not None or mapping is not None:
            return None

        for team_id, doc in self.store.list("teams"):
            if doc.get("ownerId") == user_id:
                return Team.model_validate({**doc, "id": team_id})
        return None

    def add_member(
        self,
        team_id: str,
        user_id: str,
        role: str,
        invited_by: str,
        email: Optional[str] = None,
    ) -> TeamMember:
        member_role = parse_role(role)
        if member_role == TeamRole.OWNER:
            team = self.get_team(team_id)
            if team is not None and team.owner_id != user_id:
                raise OwnerRoleError("A team has exactly one owner")
        now = self.clock()
        member = TeamMember(
            id=user_id,
            email=email or "",
            role=member_role,
            joined_at=now,
            invited_by=invited_by,
        )
        if member_role == TeamRole.OWNER:
            member.seat_assignment = SeatAssignment(assigned_at=now, assigned_by=invited_by, is_active=True)

        self.store.set(member_path(team_id, user_id), member.to_document())
        self.store.set(
            user_team_path(user_id),
            {"teamId": team_id, "role": member_role.value, "joinedAt": member.to_document()["joinedAt"]},
        )
        return member

    def get_member(self, team_id: str, user_id: str) -> Optional[TeamMember]:
        doc = self.store.get(member_path(team_id, user_id))
        if doc is None:
            return None
        return TeamMember.model_validate({**doc, "id": user_id})

    def get_members(self, team_id: str) -> List[TeamMember]:
        """Members ordered by joinedAt, newest first."""
        members = [
            TeamMember.model_validate({**doc, "id": doc_id})
            for doc_id, doc in self.store.list(members_collection(team_id))
        ]
        return sorted(
            members,
            key=lambda m: m.joined_at.timestamp() if m.joined_at else 0.0,
            reverse=True,
        )

    def update_member_role(self, team_id: str, member_id: str, role: str) -> TeamMember:
        """
        Switch a member between admin and member.

        Raises:
            NotFoundError: Member is not in the team
            OwnerRoleError: The change would demote the owner or add a second one
        """
        member_role = parse_role(role)
        member = self.get_member(team_id, member_id)
        if member is None:
            raise NotFoundError("Team member not found")
        if member.role == member_role:
            return member
        if TeamRole.OWNER in (member.role, member_role):
            raise OwnerRoleError("The team owner's role cannot be changed")
        member.role = member_role
        self.store.set(member_path(team_id, member_id), member.to_document())

        mapping = self.store.get(user_team_path(member_id))
        if mapping and mapping.get("teamId") == team_id:
            self.store.set(user_team_path(member_id), {**mapping, "role": member_role.value})
        return member

    def remove_member(self, team_id: str, member_id: str) -> None:
        team = self.get_team(team_id)
        member = self.get_member(team_id, member_id)
        if (team is not None and team.owner_id == member_id) or (member and member.role == TeamRole.OWNER):
            raise OwnerRoleError("The team owner cannot be removed")
        self.store.delete(member_path(team_id, member_id))
        mapping = self.store.get(user_team_path(member_id))
        if mapping and mapping.get("teamId") == team_id:
            self.store.delete(user_team_path(member_id))

    def get_team_subscription(self, team_id: str) -> Optional[Subscription]:
        doc = self.store.get(team_subscription_path(team_id))
        if doc is None:
            return None
        return Subscription.model_validate(doc)

    def verify_team_access(self, team_id: str, user_id: str, required_role: Optional[str] = None) -> TeamAccess:
        """
        Check a user's membership and role in a team.

        `required_role="admin"` accepts admins and owners; `"owner"` only owners.
        """
        if not team_id or not user_id:
            return TeamAccess(authorized=False)
        team = self.get_team(team_id)
        if team is None:
            return TeamAccess(authorized=False)
        member = self.get_member(team_id, user_id)
        if member is None:
            return TeamAccess(authorized=False, team=team)

        if required_role == TeamRole.OWNER.value:
            allowed = member.role == TeamRole.OWNER
        elif required_role == TeamRole.ADMIN.value:
            allowed = member.role in (TeamRole.OWNER, TeamRole.ADMIN)
        else:
            allowed = True
        return TeamAccess(authorized=allowed, role=member.role, team=team)
