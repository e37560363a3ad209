from concurrent.futures import ThreadPoolExecutor

import pytest

from clubrides.errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from clubrides.models.participation import SEATED_ROLES, Participation
from clubrides.models.ride import Ride
from clubrides.schemas.actor import Actor
from clubrides.services.authorization import AuthorizationEngine
from clubrides.services.membership_directory import MembershipDirectory
from clubrides.services.participation import ParticipationCoordinator
from clubrides.store.partitioned import PartitionedStore

CLUB_ID = "club-1"
CAPTAIN = Actor(user_id="captain")


def _row(store, ride_id, user_id):
    return store.get(Participation, {"ride_id": ride_id, "user_id": user_id})


def _seated(store, ride_id):
    return store.count(Participation, {"ride_id": ride_id}, filters={"status": "active", "role": SEATED_ROLES})


class ParticipationWriteFails(PartitionedStore):
    """Participation inserts fail with a store error after the seat was claimed."""

    def put(self, model, item, condition=None):
        if model is Participation:
            raise InternalError("Store unavailable")
        return super().put(model, item, condition)


def test_join_takes_a_seat(participation, lifecycle, published_ride, add_member):
    ride = published_ride(max_participants=2)

    row = participation.join_ride(ride.ride_id, add_member("alice"))

    assert (row.role, row.status) == ("participant", "active")
    assert row.club_id == CLUB_ID
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_joining_twice_is_a_conflict(participation, lifecycle, published_ride, add_member):
    ride = published_ride(max_participants=5)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)

    with pytest.raises(ConflictError):
        participation.join_ride(ride.ride_id, alice)
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_captain_cannot_join_own_ride_again(participation, published_ride):
    ride = published_ride()

    with pytest.raises(ConflictError):
        participation.join_ride(ride.ride_id, Actor(user_id="captain"))


def test_only_published_rides_can_be_joined(participation, lifecycle, add_member, ride_payload):
    ride = lifecycle.create_ride(ride_payload(), add_member("author"), CLUB_ID)

    with pytest.raises(ConflictError):
        participation.join_ride(ride.ride_id, add_member("alice"))


def test_join_requires_active_membership(participation, published_ride, add_member):
    ride = published_ride()

    with pytest.raises(AuthorizationError):
        participation.join_ride(ride.ride_id, add_member("alice", status="suspended"))
    with pytest.raises(AuthorizationError):
        participation.join_ride(ride.ride_id, Actor(user_id="stranger"))


def test_join_unknown_ride_is_not_found(participation, add_member):
    with pytest.raises(NotFoundError):
        participation.join_ride("ride_missing", add_member("alice"))


def test_full_ride_without_waitlist_is_a_conflict(participation, lifecycle, store, published_ride, add_member):
    ride = published_ride(max_participants=1, allow_waitlist=False)
    participation.join_ride(ride.ride_id, add_member("alice"))

    with pytest.raises(ConflictError):
        participation.join_ride(ride.ride_id, add_member("bob"))
    assert _row(store, ride.ride_id, "bob") is None
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_unlimited_ride_never_waitlists(participation, lifecycle, published_ride, add_member):
    ride = published_ride(max_participants=None)

    roles = {participation.join_ride(ride.ride_id, add_member(f"u{i}")).role for i in range(4)}

    assert roles == {"participant"}
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 4


def test_waitlisted_rider_is_promoted_when_a_seat_frees(participation, lifecycle, store, published_ride, add_member):
    ride = published_ride(max_participants=1)
    alice = add_member("alice")
    bob = add_member("bob")

    assert participation.join_ride(ride.ride_id, alice).role == "participant"
    assert participation.join_ride(ride.ride_id, bob).role == "waitlisted"
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1

    left = participation.leave_ride(ride.ride_id, alice)

    assert left.status == "left"
    assert left.left_at is not None
    assert _row(store, ride.ride_id, "bob").role == "participant"
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_waitlist_is_promoted_in_join_order(participation, store, published_ride, add_member):
    ride = published_ride(max_participants=1)
    participation.join_ride(ride.ride_id, add_member("alice"))
    participation.join_ride(ride.ride_id, add_member("bob"))
    participation.join_ride(ride.ride_id, add_member("carol"))

    participation.leave_ride(ride.ride_id, Actor(user_id="alice"))

    assert _row(store, ride.ride_id, "bob").role == "participant"
    assert _row(store, ride.ride_id, "carol").role == "waitlisted"


def test_leaving_the_waitlist_keeps_the_counter(participation, lifecycle, published_ride, add_member):
    ride = published_ride(max_participants=1)
    participation.join_ride(ride.ride_id, add_member("alice"))
    bob = add_member("bob")
    participation.join_ride(ride.ride_id, bob)

    participation.leave_ride(ride.ride_id, bob)

    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_leave_then_rejoin_reuses_the_row(participation, lifecycle, store, published_ride, add_member):
    ride = published_ride(max_participants=3)
    alice = add_member("alice")
    first = participation.join_ride(ride.ride_id, alice)
    participation.leave_ride(ride.ride_id, alice)
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 0

    again = participation.join_ride(ride.ride_id, alice)

    assert (again.role, again.status) == ("participant", "active")
    assert again.left_at is None
    assert again.joined_at >= first.joined_at
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_leave_without_participation_is_not_found(participation, published_ride, add_member):
    ride = published_ride()
    alice = add_member("alice")

    with pytest.raises(NotFoundError):
        participation.leave_ride(ride.ride_id, alice)

    participation.join_ride(ride.ride_id, alice)
    participation.leave_ride(ride.ride_id, alice)
    with pytest.raises(NotFoundError):
        participation.leave_ride(ride.ride_id, alice)


def test_captain_cannot_leave(participation, published_ride):
    ride = published_ride()

    with pytest.raises(ConflictError):
        participation.leave_ride(ride.ride_id, Actor(user_id="captain"))


def test_no_promotion_after_cancel(participation, lifecycle, store, published_ride, add_member):
    ride = published_ride(max_participants=1)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)
    participation.join_ride(ride.ride_id, add_member("bob"))
    lifecycle.cancel_ride(ride.ride_id, Actor(user_id="captain"))

    participation.leave_ride(ride.ride_id, alice)

    assert _row(store, ride.ride_id, "bob").role == "waitlisted"


def test_concurrent_joins_never_exceed_capacity(participation, lifecycle, store, published_ride, add_member):
    capacity = 3
    ride = published_ride(max_participants=capacity)
    actors = [add_member(f"rider-{i}") for i in range(10)]

    with ThreadPoolExecutor(max_workers=10) as pool:
        rows = list(pool.map(lambda actor: participation.join_ride(ride.ride_id, actor), actors))

    roles = sorted(row.role for row in rows)
    assert roles.count("participant") == capacity
    assert roles.count("waitlisted") == len(actors) - capacity
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == capacity
    assert lifecycle.reconcile_participant_count(ride.ride_id) == capacity


def test_concurrent_leaves_decrement_once(participation, lifecycle, published_ride, add_member):
    ride = published_ride(max_participants=3)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)
    participation.join_ride(ride.ride_id, add_member("bob"))

    def leave():
        try:
            participation.leave_ride(ride.ride_id, alice)
            return "left"
        except NotFoundError:
            return "not-found"

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(lambda _: leave(), range(4)))

    assert outcomes.count("left") == 1
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_get_ride_participants(participation, published_ride, add_member):
    ride = published_ride(max_participants=5)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)
    participation.join_ride(ride.ride_id, add_member("bob"))
    participation.leave_ride(ride.ride_id, alice)

    active = participation.get_ride_participants(ride.ride_id, alice)
    everyone = participation.get_ride_participants(ride.ride_id, alice, include_left=True)

    assert [p.user_id for p in active] == ["captain", "bob"]
    assert {p.user_id for p in everyone} == {"captain", "alice", "bob"}


def test_user_rides_newest_start_first_with_cursor(participation, published_ride, add_member):
    rider = add_member("rider")
    rides = [published_ride(days_ahead=days) for days in (1, 3, 2)]
    for ride in rides:
        participation.join_ride(ride.ride_id, rider)

    first = participation.get_user_rides("rider", limit=2)
    second = participation.get_user_rides("rider", limit=2, cursor=first.next_cursor)

    assert [e.ride.ride_id for e in first.items] == [rides[1].ride_id, rides[2].ride_id]
    assert [e.ride.ride_id for e in second.items] == [rides[0].ride_id]
    assert second.next_cursor is None
    assert all(e.participation.user_id == "rider" for e in first.items + second.items)


def test_user_rides_filters(participation, published_ride, add_member):
    rider = add_member("rider")
    full = published_ride(max_participants=1)
    open_ride = published_ride(max_participants=5, days_ahead=3)
    participation.join_ride(full.ride_id, add_member("early"))
    participation.join_ride(full.ride_id, rider)
    participation.join_ride(open_ride.ride_id, rider)

    waitlisted = participation.get_user_rides("rider", role="waitlisted")
    captained = participation.get_user_rides("captain", role="captain")

    assert [e.ride.ride_id for e in waitlisted.items] == [full.ride_id]
    assert {e.ride.ride_id for e in captained.items} == {full.ride_id, open_ride.ride_id}
    assert participation.get_user_rides("rider", status="left").items == []


@pytest.mark.parametrize("limit", [0, 101])
def test_user_rides_limit_out_of_range(participation, limit):
    with pytest.raises(ValidationError):
        participation.get_user_rides("rider", limit=limit)


def test_failed_participation_write_returns_the_seat(store, settings, published_ride, add_member):
    ride = published_ride(max_participants=2)
    alice = add_member("alice")
    failing = ParticipationWriteFails(store._session_factory)
    coordinator = ParticipationCoordinator(failing, AuthorizationEngine(MembershipDirectory(failing)), settings)

    with pytest.raises(InternalError):
        coordinator.join_ride(ride.ride_id, alice)

    counter = store.get(Ride, {"club_id": CLUB_ID, "ride_id": ride.ride_id}).current_participants
    assert counter == _seated(store, ride.ride_id) == 0


def test_two_seated_riders_leaving_promote_once(participation, lifecycle, store, published_ride, add_member):
    ride = published_ride(max_participants=2)
    seated = [add_member("a"), add_member("b")]
    for actor in seated:
        participation.join_ride(ride.ride_id, actor)
    assert participation.join_ride(ride.ride_id, add_member("c")).role == "waitlisted"

    with ThreadPoolExecutor(max_workers=2) as pool:
        list(pool.map(lambda actor: participation.leave_ride(ride.ride_id, actor), seated))

    active = participation.get_ride_participants(ride.ride_id, CAPTAIN)
    assert sorted(p.role for p in active) == ["captain", "participant"]
    assert _row(store, ride.ride_id, "c").role == "participant"
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1
    assert _seated(store, ride.ride_id) == 1


def test_removed_rider_frees_a_seat(participation, lifecycle, store, published_ride, add_member):
    ride = published_ride(max_participants=1)
    participation.join_ride(ride.ride_id, add_member("alice"))
    participation.join_ride(ride.ride_id, add_member("bob"))

    removed = participation.remove_participant(ride.ride_id, "alice", CAPTAIN)

    assert removed.status == "left"
    assert _row(store, ride.ride_id, "bob").role == "participant"
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1


def test_remove_participant_rules(participation, published_ride, add_member):
    ride = published_ride(max_participants=3)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)
    bob = add_member("bob")
    participation.join_ride(ride.ride_id, bob)

    with pytest.raises(AuthorizationError):
        participation.remove_participant(ride.ride_id, "bob", alice)
    with pytest.raises(ConflictError):
        participation.remove_participant(ride.ride_id, "captain", CAPTAIN)
    with pytest.raises(NotFoundError):
        participation.remove_participant(ride.ride_id, "nobody", CAPTAIN)

    admin = add_member("admin", role="admin")
    assert participation.remove_participant(ride.ride_id, "bob", admin).status == "left"


def test_participant_can_be_made_leader_and_back(participation, lifecycle, published_ride, add_member):
    ride = published_ride(max_participants=2)
    participation.join_ride(ride.ride_id, add_member("alice"))

    leader = participation.update_participant_role(ride.ride_id, "alice", "leader", CAPTAIN)

    assert (leader.role, leader.status) == ("leader", "active")
    assert lifecycle.get_ride(ride.ride_id, CAPTAIN).current_participants == 1
    assert lifecycle.reconcile_participant_count(ride.ride_id) == 1
    assert participation.update_participant_role(ride.ride_id, "alice", "participant", CAPTAIN).role == "participant"


def test_leader_leaving_frees_a_seat(participation, store, published_ride, add_member):
    ride = published_ride(max_participants=1)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)
    participation.join_ride(ride.ride_id, add_member("bob"))
    participation.update_participant_role(ride.ride_id, "alice", "leader", CAPTAIN)

    participation.leave_ride(ride.ride_id, alice)

    assert _row(store, ride.ride_id, "bob").role == "participant"


def test_role_changes_outside_the_table_are_rejected(participation, published_ride, add_member):
    ride = published_ride(max_participants=1)
    alice = add_member("alice")
    participation.join_ride(ride.ride_id, alice)
    participation.join_ride(ride.ride_id, add_member("bob"))

    with pytest.raises(ConflictError):
        participation.update_participant_role(ride.ride_id, "bob", "leader", CAPTAIN)
    with pytest.raises(ConflictError):
        participation.update_participant_role(ride.ride_id, "alice", "captain", CAPTAIN)
    with pytest.raises(ConflictError):
        participation.update_participant_role(ride.ride_id, "captain", "participant", CAPTAIN)
    with pytest.raises(ValidationError) as excinfo:
        participation.update_participant_role(ride.ride_id, "alice", "marshal", CAPTAIN)
    assert excinfo.value.fields == ["role"]
    with pytest.raises(AuthorizationError):
        participation.update_participant_role(ride.ride_id, "bob", "participant", alice)


def test_participants_visible_to_members_only(participation, lifecycle, published_ride, add_member, ride_payload):
    ride = published_ride()
    draft = lifecycle.create_ride(ride_payload(), add_member("author"), CLUB_ID)
    member = add_member("alice")

    assert [p.user_id for p in participation.get_ride_participants(ride.ride_id, member)] == ["captain"]
    with pytest.raises(AuthorizationError):
        participation.get_ride_participants(ride.ride_id, Actor(user_id="stranger"))
    with pytest.raises(AuthorizationError):
        participation.get_ride_participants(draft.ride_id, member)
    assert [p.user_id for p in participation.get_ride_participants(draft.ride_id, Actor(user_id="author"))] == [
        "author"
    ]
