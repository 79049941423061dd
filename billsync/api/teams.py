"""
Team API routes.

The acting user is identified by the X-User-Id header. Seat changes require
the actor to be an admin or owner of the team.
"""
from typing import Optional

from fastapi import APIRouter, Header, Query, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from billsync.core.errors import NotFoundError, PermissionError, ValidationError
from billsync.features.teams.seats import SeatAssignmentManager
from billsync.features.teams.service import TeamService


router = APIRouter(prefix="/api/teams", tags=["teams"])


class CreateTeamRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    description: str = ""
    owner_id: Optional[str] = None
    owner_email: str = ""


def _teams(request: Request) -> TeamService:
    return request.app.state.teams


def _require_access(teams: TeamService, team_id: str, actor_id: Optional[str], required_role: Optional[str] = None):
    if not actor_id:
        raise PermissionError("X-User-Id header is required")
    if teams.get_team(team_id) is None:
        raise NotFoundError("Team not found")
    access = teams.verify_team_access(team_id, actor_id, required_role=required_role)
    if not access.authorized:
        raise PermissionError("Not allowed to manage this team")
    return access


@router.get("")
def get_user_team(request: Request, user_id: Optional[str] = Query(None, alias="userId")):
    """The team the user belongs to, or null."""
    if not user_id:
        raise ValidationError("Missing userId parameter")
    team = _teams(request).get_user_team(user_id)
    return {"team": team.to_document() if team else None}


@router.post("", status_code=201)
def create_team(body: CreateTeamRequest, request: Request):
    if not body.name or not body.owner_id:
        raise ValidationError("Missing required fields: name, ownerId")
    team = _teams(request).create_team(body.name, body.description, body.owner_id, body.owner_email)
    return {"team": team.to_document()}


@router.get("/{team_id}/members")
def list_members(team_id: str, request: Request, x_user_id: Optional[str] = Header(None)):
    teams = _teams(request)
    _require_access(teams, team_id, x_user_id)
    return {"members": [m.to_document() for m in teams.get_members(team_id)]}


@router.get("/{team_id}/seats")
def seat_summary(team_id: str, request: Request, x_user_id: Optional[str] = Header(None)):
    teams = _teams(request)
    _require_access(teams, team_id, x_user_id)
    seats: SeatAssignmentManager = request.app.state.seats
    return seats.seat_summary(team_id).to_dict()


@router.post("/{team_id}/seats/{member_id}")
def assign_seat(team_id: str, member_id: str, request: Request, x_user_id: Optional[str] = Header(None)):
    """
    Assign a paid seat to a member.

    Errors:
        403: Actor is not an admin or owner
        404: Unknown team or member
        409: seat_limit_reached
    """
    teams = _teams(request)
    _require_access(teams, team_id, x_user_id, required_role="admin")
    seats: SeatAssignmentManager = request.app.state.seats
    member = seats.assign_seat(team_id, member_id, x_user_id)
    return {"member": member.to_document()}


@router.delete("/{team_id}/seats/{member_id}")
def unassign_seat(team_id: str, member_id: str, request: Request, x_user_id: Optional[str] = Header(None)):
    """
    Release a member's seat.

    Errors:
        409: owner_seat_protected
    """
    teams = _teams(request)
    _require_access(teams, team_id, x_user_id, required_role="admin")
    seats: SeatAssignmentManager = request.app.state.seats
    member = seats.unassign_seat(team_id, member_id, x_user_id)
    return {"member": member.to_document()}
