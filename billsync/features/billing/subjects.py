"""
Billing subjects.

A subscription or payment belongs either to an individual user or to a team.
`subject_from_metadata` is the only place that reads gateway customer metadata
to decide which.
"""
from dataclasses import dataclass
from typing import Mapping, Optional, Union

# Customer metadata keys written at checkout
USER_METADATA_KEY = "firebase_uid"
TEAM_METADATA_KEY = "team_id"


@dataclass(frozen=True)
class IndividualSubject:
    user_id: str
    kind: str = "user"

    @property
    def subject_id(self) -> str:
        return self.user_id

    @property
    def root_path(self) -> str:
        return f"users/{self.user_id}"


@dataclass(frozen=True)
class TeamSubject:
    team_id: str
    user_id: str
    kind: str = "team"

    @property
    def subject_id(self) -> str:
        return self.team_id

    @property
    def root_path(self) -> str:
        return f"teams/{self.team_id}"


Subject = Union[IndividualSubject, TeamSubject]


def subscription_path(subject: Subject) -> str:
    return f"{subject.root_path}/subscription/current"


def payments_collection(subject: Subject) -> str:
    return f"{subject.root_path}/payments"


def payment_path(subject: Subject, invoice_id: str) -> str:
    return f"{payments_collection(subject)}/{invoice_id}"


def subject_from_metadata(metadata: Optional[Mapping[str, str]]) -> Optional[Subject]:
    """
    Resolve the owning subject from gateway customer metadata.

    Returns None when `firebase_uid` is missing: such an event cannot be
    attributed to anyone. A `team_id` makes the team the subject.
    """
    metadata = metadata or {}
    user_id = metadata.get(USER_METADATA_KEY)
    if not user_id:
        return None
    team_id = metadata.get(TEAM_METADATA_KEY)
    if team_id:
        return TeamSubject(team_id=team_id, user_id=user_id)
    return IndividualSubject(user_id=user_id)
