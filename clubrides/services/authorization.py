"""Role-derived authorization for club-scoped ride operations.

A single static table maps each club role to its capability set. Roles form a
chain (member < ride_leader < ride_captain < admin < owner) and every role
inherits the capabilities of the roles below it. ``require_capability`` is the
only place roles are compared.
"""

import logging
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Dict, FrozenSet, Optional, Tuple

from clubrides.errors import AuthorizationError
from clubrides.models.membership import ClubMembership, ClubRole, MembershipStatus
from clubrides.models.ride import RideStatus
from clubrides.schemas.actor import Actor
from clubrides.services.membership_directory import MembershipDirectory

logger = logging.getLogger(__name__)


class Capability(str, PyEnum):
    VIEW_CLUB_RIDES = "view_club_rides"
    CREATE_RIDE_PROPOSALS = "create_ride_proposals"
    JOIN_RIDES = "join_rides"
    VIEW_DRAFT_RIDES = "view_draft_rides"
    MANAGE_RIDES = "manage_rides"
    MANAGE_PARTICIPANTS = "manage_participants"
    PUBLISH_RIDE_IMMEDIATELY = "publish_ride_immediately"
    COMPLETE_RIDES = "complete_rides"
    CANCEL_ANY_RIDE = "cancel_any_ride"
    APPROVE_JOIN_REQUESTS = "approve_join_requests"
    MANAGE_CLUB_SETTINGS = "manage_club_settings"


# lowest to highest
ROLE_HIERARCHY: Tuple[ClubRole, ...] = (
    ClubRole.MEMBER,
    ClubRole.RIDE_LEADER,
    ClubRole.RIDE_CAPTAIN,
    ClubRole.ADMIN,
    ClubRole.OWNER,
)

_ROLE_ADDITIONS: Dict[ClubRole, FrozenSet[Capability]] = {
    ClubRole.MEMBER: frozenset(
        {Capability.VIEW_CLUB_RIDES, Capability.CREATE_RIDE_PROPOSALS, Capability.JOIN_RIDES}
    ),
    ClubRole.RIDE_LEADER: frozenset(),
    ClubRole.RIDE_CAPTAIN: frozenset(
        {
            Capability.PUBLISH_RIDE_IMMEDIATELY,
            Capability.COMPLETE_RIDES,
            Capability.VIEW_DRAFT_RIDES,
            Capability.MANAGE_RIDES,
            Capability.MANAGE_PARTICIPANTS,
        }
    ),
    ClubRole.ADMIN: frozenset({Capability.CANCEL_ANY_RIDE, Capability.APPROVE_JOIN_REQUESTS}),
    ClubRole.OWNER: frozenset({Capability.MANAGE_CLUB_SETTINGS}),
}


def _build_capability_table() -> Dict[ClubRole, FrozenSet[Capability]]:
    table: Dict[ClubRole, FrozenSet[Capability]] = {}
    inherited: FrozenSet[Capability] = frozenset()
    for role in ROLE_HIERARCHY:
        inherited = inherited | _ROLE_ADDITIONS[role]
        table[role] = inherited
    return table


ROLE_CAPABILITIES: Dict[ClubRole, FrozenSet[Capability]] = _build_capability_table()

# Granted to the captain of a ride for that ride only, on top of the club role.
RIDE_CAPTAIN_GRANTS: FrozenSet[Capability] = frozenset(
    {
        Capability.CANCEL_ANY_RIDE,
        Capability.COMPLETE_RIDES,
        Capability.VIEW_DRAFT_RIDES,
        Capability.MANAGE_RIDES,
        Capability.MANAGE_PARTICIPANTS,
    }
)


def capabilities_for(role: str) -> FrozenSet[Capability]:
    try:
        return ROLE_CAPABILITIES[ClubRole(role)]
    except ValueError:
        return frozenset()


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    membership: Optional[ClubMembership] = None


class AuthorizationEngine:
    def __init__(self, directory: MembershipDirectory) -> None:
        self._directory = directory

    def evaluate(
        self,
        capability: Capability,
        actor: Actor,
        club_id: str,
        ride_captain_id: Optional[str] = None,
    ) -> Decision:
        """Resolve one decision. Membership is read fresh on every call."""
        membership = self._directory.get_membership(actor.user_id, club_id)
        if membership is None:
            return Decision(False, "not a member of this club")
        if membership.status != MembershipStatus.ACTIVE.value:
            return Decision(False, f"membership is {membership.status}", membership)
        if capability in capabilities_for(membership.role):
            return Decision(True, f"granted to role {membership.role}", membership)
        if ride_captain_id is not None and ride_captain_id == actor.user_id and capability in RIDE_CAPTAIN_GRANTS:
            return Decision(True, "granted to the ride captain", membership)
        return Decision(False, f"role {membership.role} lacks {capability.value}", membership)

    def has_capability(
        self,
        capability: Capability,
        actor: Actor,
        club_id: str,
        ride_captain_id: Optional[str] = None,
    ) -> bool:
        return self._log(self.evaluate(capability, actor, club_id, ride_captain_id), capability, actor, club_id).allowed

    def require_capability(
        self,
        capability: Capability,
        actor: Actor,
        club_id: str,
        ride_captain_id: Optional[str] = None,
    ) -> ClubMembership:
        """Return the actor's active membership or raise AuthorizationError."""
        decision = self._log(self.evaluate(capability, actor, club_id, ride_captain_id), capability, actor, club_id)
        if not decision.allowed:
            raise AuthorizationError(f"Missing capability {capability.value} in this club")
        return decision.membership

    def require_ride_visibility(self, actor: Actor, club_id: str, ride_status: str, ride_captain_id: str) -> None:
        """Club members see non-draft rides; drafts need VIEW_DRAFT_RIDES or being the ride's captain."""
        self.require_capability(Capability.VIEW_CLUB_RIDES, actor, club_id)
        if ride_status == RideStatus.DRAFT.value:
            self.require_capability(Capability.VIEW_DRAFT_RIDES, actor, club_id, ride_captain_id=ride_captain_id)

    @staticmethod
    def _log(decision: Decision, capability: Capability, actor: Actor, club_id: str) -> Decision:
        level = logging.DEBUG if decision.allowed else logging.INFO
        logger.log(
            level,
            "Authorization %s: user=%s club=%s capability=%s (%s)",
            "allowed" if decision.allowed else "denied",
            actor.user_id,
            club_id,
            capability.value,
            decision.reason,
        )
        return decision
