"""
Seat assignment.

A team's subscription quantity is the number of paid seats. Members hold a
seat while their seatAssignment is active; the owner always holds one.
Capacity check and write run in one store transaction, so two concurrent
assignments cannot both take the last seat.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from billsync.core.errors import NotFoundError, OwnerSeatError, SeatLimitError
from billsync.core.logging import log_event
from billsync.core.metrics import seat_changes_total
from billsync.features.store.interface import DocumentTransaction, DocumentStore
from billsync.features.teams.service import member_path, members_collection, team_subscription_path
from billsync.models.billing import SeatAssignment, TeamMember, TeamRole, utc_now


@dataclass
class SeatSummary:
    total: int
    assigned: int
    available: int

    def to_dict(self) -> dict:
        return {"total": self.total, "assigned": self.assigned, "available": self.available}


def _seat_quantity(txn: DocumentTransaction, team_id: str) -> int:
    subscription = txn.get(team_subscription_path(team_id)) or {}
    return int(subscription.get("quantity") or 0)


def _assigned_count(txn: DocumentTransaction, team_id: str) -> int:
    return sum(
        1
        for _, doc in txn.list(members_collection(team_id))
        if (doc.get("seatAssignment") or {}).get("isActive")
    )


def _load_member(txn: DocumentTransaction, team_id: str, member_id: str) -> TeamMember:
    doc = txn.get(member_path(team_id, member_id))
    if doc is None:
        raise NotFoundError("Team member not found")
    return TeamMember.model_validate({**doc, "id": member_id})


class SeatAssignmentManager:
    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def assign_seat(self, team_id: str, member_id: str, actor_id: str) -> TeamMember:
        """
        Give a member one of the team's paid seats.

        Raises:
            NotFoundError: Member is not in the team
            SeatLimitError: Every seat is taken
        """
        with self.store.transaction() as txn:
            member = _load_member(txn, team_id, member_id)
            if member.has_seat:
                return member

            total = _seat_quantity(txn, team_id)
            assigned = _assigned_count(txn, team_id)
            if assigned >= total:
                seat_changes_total.inc({"action": "assign", "result": "limit"})
                log_event(
                    "warning",
                    "seats.limit_reached",
                    subject_kind="team",
                    subject_id=team_id,
                    error_code=SeatLimitError.code,
                    extra={"member_id": member_id, "assigned": assigned, "total": total},
                )
                raise SeatLimitError(f"All {total} seats are assigned")

            member.seat_assignment = SeatAssignment(
                assigned_at=self.clock(), assigned_by=actor_id, is_active=True
            )
            txn.set(member_path(team_id, member_id), member.to_document())

        seat_changes_total.inc({"action": "assign", "result": "ok"})
        log_event("info", "seats.assigned", subject_kind="team", subject_id=team_id, extra={"member_id": member_id})
        return member

    def unassign_seat(self, team_id: str, member_id: str, actor_id: str) -> TeamMember:
        """
        Release a member's seat.

        Raises:
            NotFoundError: Member is not in the team
            OwnerSeatError: Member is the team owner
        """
        with self.store.transaction() as txn:
            member = _load_member(txn, team_id, member_id)
            if member.role == TeamRole.OWNER:
                seat_changes_total.inc({"action": "unassign", "result": "owner"})
                raise OwnerSeatError("The team owner's seat cannot be unassigned")

            member.seat_assignment = SeatAssignment(
                assigned_at=self.clock(), assigned_by=actor_id, is_active=False
            )
            txn.set(member_path(team_id, member_id), member.to_document())

        seat_changes_total.inc({"action": "unassign", "result": "ok"})
        log_event("info", "seats.unassigned", subject_kind="team", subject_id=team_id, extra={"member_id": member_id})
        return member

    def seat_summary(self, team_id: str) -> SeatSummary:
        with self.store.transaction() as txn:
            total = _seat_quantity(txn, team_id)
            assigned = _assigned_count(txn, team_id)
        return SeatSummary(total=total, assigned=assigned, available=max(total - assigned, 0))
