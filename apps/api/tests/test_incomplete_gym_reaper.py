"""
Tests for IncompleteGymReaper.

Covers:
- Only gym, all gyms incomplete, incomplete active gym, protected gym
- Gym floor: a pass never leaves an owner without a gym
- Minimality: a pass that would go below the floor deletes nothing
- Forced cleanup of a cancelled setup (including the brand-new first gym)
- Fail-safe behaviour on remote read/write errors
"""
from unittest.mock import MagicMock
from uuid import uuid4

from models import Gym, GymEquipment
from services.gym_setup.errors import TransientRemoteError
from services.gym_setup.reaper import IncompleteGymReaper


def _gym_ids(db_session, owner):
    return [g.id for g in db_session.query(Gym).filter(Gym.owner_id == owner.owner_id).order_by(Gym.created_at)]


# ---------------------------------------------------------------------------
# Basic passes
# ---------------------------------------------------------------------------

def test_only_gym_is_preserved_even_when_incomplete(db_session, store, profile, make_gym):
    gym = make_gym(profile, active=True)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 0
    assert _gym_ids(db_session, profile) == [gym.id]


def test_all_incomplete_keeps_oldest(db_session, store, profile, make_gym):
    oldest = make_gym(profile, "Home")
    make_gym(profile, "Work")
    make_gym(profile, "Hotel")

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 2
    assert _gym_ids(db_session, profile) == [oldest.id]


def test_all_incomplete_moves_active_to_oldest(db_session, store, profile, make_gym):
    oldest = make_gym(profile)
    make_gym(profile, active=True)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 1
    assert store.get_profile(profile.owner_id).active_gym_id == oldest.id


def test_active_incomplete_gym_is_reassigned_then_deleted(db_session, store, profile, make_gym):
    complete = make_gym(profile, equipment=2)
    incomplete = make_gym(profile, active=True)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 1
    assert _gym_ids(db_session, profile) == [complete.id]
    assert store.get_profile(profile.owner_id).active_gym_id == complete.id
    assert incomplete.id not in _gym_ids(db_session, profile)


def test_protected_gym_is_never_deleted(db_session, store, profile, make_gym):
    complete = make_gym(profile, exercises=3, active=True)
    stale = make_gym(profile)
    in_setup = make_gym(profile)

    deleted = IncompleteGymReaper(store).reap(profile.owner_id, protected_gym_id=in_setup.id)

    assert deleted == 1
    assert _gym_ids(db_session, profile) == [complete.id, in_setup.id]
    assert stale.id not in _gym_ids(db_session, profile)


def test_protected_gym_survives_when_everything_is_incomplete(db_session, store, profile, make_gym):
    oldest = make_gym(profile)
    other = make_gym(profile)
    in_setup = make_gym(profile)

    deleted = IncompleteGymReaper(store).reap(profile.owner_id, protected_gym_id=in_setup.id)

    assert deleted == 1
    assert _gym_ids(db_session, profile) == [oldest.id, in_setup.id]
    assert other.id not in _gym_ids(db_session, profile)


def test_protected_gym_source_is_read_after_listing(db_session, store, profile, make_gym, monkeypatch):
    complete = make_gym(profile, equipment=1, active=True)
    in_setup = make_gym(profile)
    calls = []
    real_list_gyms = store.list_gyms

    def recording_list_gyms(owner_id):
        calls.append("list")
        return real_list_gyms(owner_id)

    def protected_gym():
        calls.append("protected")
        return in_setup.id

    monkeypatch.setattr(store, "list_gyms", recording_list_gyms)

    assert IncompleteGymReaper(store).reap(profile.owner_id, protected_gym_source=protected_gym) == 0
    assert calls[:2] == ["list", "protected"]
    assert _gym_ids(db_session, profile) == [complete.id, in_setup.id]


def test_active_gym_never_moves_to_a_gym_the_same_pass_deletes(db_session, store, profile, make_gym, monkeypatch):
    stale = make_gym(profile)
    complete = make_gym(profile, equipment=2)
    make_gym(profile, active=True)
    stale_reads = []
    real_has_equipment = store.has_equipment

    def flaky_has_equipment(gym_id):
        # First read classifies the gym as incomplete; a re-check would see it as present.
        if gym_id == stale.id:
            stale_reads.append(gym_id)
            if len(stale_reads) > 1:
                raise TransientRemoteError("connection reset")
        return real_has_equipment(gym_id)

    monkeypatch.setattr(store, "has_equipment", flaky_has_equipment)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 2
    assert _gym_ids(db_session, profile) == [complete.id]
    assert store.get_profile(profile.owner_id).active_gym_id == complete.id


def test_complete_gyms_are_untouched(db_session, store, profile, make_gym):
    make_gym(profile, equipment=1)
    make_gym(profile, exercises=1)
    make_gym(profile, plans=1)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 0
    assert len(_gym_ids(db_session, profile)) == 3


def test_several_incomplete_gyms_next_to_a_complete_one(db_session, store, profile, make_gym):
    make_gym(profile)
    complete = make_gym(profile, plans=2)
    make_gym(profile)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 2
    assert _gym_ids(db_session, profile) == [complete.id]


# ---------------------------------------------------------------------------
# Floor and minimality
# ---------------------------------------------------------------------------

def test_open_setup_requires_two_remaining_gyms(db_session, store, profile, make_gym):
    """A setup is open (protected id set) but its gym is not in the list yet."""
    complete = make_gym(profile, equipment=1)
    incomplete = make_gym(profile)

    deleted = IncompleteGymReaper(store).reap(profile.owner_id, protected_gym_id=uuid4())

    assert deleted == 0
    assert _gym_ids(db_session, profile) == [complete.id, incomplete.id]


def test_repeated_passes_converge_on_the_same_floor(db_session, store, profile, make_gym):
    make_gym(profile)
    make_gym(profile)
    make_gym(profile)

    first = IncompleteGymReaper(store).reap(profile.owner_id)
    second = IncompleteGymReaper(store).reap(profile.owner_id)

    assert (first, second) == (2, 0)
    assert len(_gym_ids(db_session, profile)) == 1


def test_active_gym_kept_when_replacement_cannot_be_saved(db_session, store, profile, make_gym):
    make_gym(profile, equipment=1)
    active = make_gym(profile, active=True)
    resolver = MagicMock()
    resolver.resolve_replacement.side_effect = TransientRemoteError("write failed")

    deleted = IncompleteGymReaper(store, resolver=resolver).reap(profile.owner_id)

    assert deleted == 0
    assert active.id in _gym_ids(db_session, profile)


def test_unreadable_gym_list_deletes_nothing(profile):
    store = MagicMock()
    store.list_gyms.side_effect = TransientRemoteError("connection reset")

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 0
    store.delete_gym.assert_not_called()


def test_failed_completeness_read_protects_gym(db_session, store, profile, make_gym, monkeypatch):
    oldest = make_gym(profile, equipment=1)
    flaky = make_gym(profile)

    def has_equipment(gym_id):
        if gym_id == flaky.id:
            raise TransientRemoteError("lock timeout")
        return gym_id == oldest.id

    monkeypatch.setattr(store, "has_equipment", has_equipment)

    assert IncompleteGymReaper(store).reap(profile.owner_id) == 0
    assert flaky.id in _gym_ids(db_session, profile)


# ---------------------------------------------------------------------------
# Forced cleanup (cancelled setup)
# ---------------------------------------------------------------------------

def test_forced_reap_targets_only_the_given_gym(db_session, store, profile, make_gym):
    complete = make_gym(profile, equipment=1)
    other_incomplete = make_gym(profile)
    abandoned = make_gym(profile)

    deleted = IncompleteGymReaper(store).reap(profile.owner_id, force_gym_id=abandoned.id)

    assert deleted == 1
    assert _gym_ids(db_session, profile) == [complete.id, other_incomplete.id]


def test_forced_reap_ignores_protection(db_session, store, profile, make_gym):
    make_gym(profile, equipment=1)
    abandoned = make_gym(profile)

    deleted = IncompleteGymReaper(store).reap(
        profile.owner_id, force_gym_id=abandoned.id, protected_gym_id=abandoned.id
    )

    assert deleted == 1


def test_forced_reap_keeps_configured_gym(db_session, store, profile, make_gym):
    make_gym(profile, equipment=1)
    configured = make_gym(profile, exercises=4)

    assert IncompleteGymReaper(store).reap(profile.owner_id, force_gym_id=configured.id) == 0
    assert configured.id in _gym_ids(db_session, profile)


def test_forced_reap_keeps_only_gym_by_default(db_session, store, profile, make_gym):
    gym = make_gym(profile, active=True)

    assert IncompleteGymReaper(store).reap(profile.owner_id, force_gym_id=gym.id) == 0
    assert _gym_ids(db_session, profile) == [gym.id]


def test_forced_reap_may_delete_first_gym_of_abandoned_creation(db_session, store, profile, make_gym):
    gym = make_gym(profile, active=True)

    deleted = IncompleteGymReaper(store).reap(profile.owner_id, force_gym_id=gym.id, allow_last_gym=True)

    assert deleted == 1
    assert _gym_ids(db_session, profile) == []
    assert store.get_profile(profile.owner_id).active_gym_id is None


def test_forced_reap_moves_active_gym_first(db_session, store, profile, make_gym):
    complete = make_gym(profile, plans=1)
    abandoned = make_gym(profile, active=True)

    assert IncompleteGymReaper(store).reap(profile.owner_id, force_gym_id=abandoned.id) == 1
    assert store.get_profile(profile.owner_id).active_gym_id == complete.id


def test_forced_reap_of_unknown_gym_is_noop(db_session, store, profile, make_gym):
    make_gym(profile)
    make_gym(profile)

    assert IncompleteGymReaper(store).reap(profile.owner_id, force_gym_id=uuid4()) == 0
    assert len(_gym_ids(db_session, profile)) == 2


def test_deleting_gym_removes_its_children(db_session, store, profile, make_gym):
    keep = make_gym(profile, exercises=1)
    gym = make_gym(profile)
    store.insert_equipment(gym.id, [("barbell", 1)])

    store.delete_gym(gym.id)

    assert db_session.query(GymEquipment).filter(GymEquipment.gym_id == gym.id).count() == 0
    assert _gym_ids(db_session, profile) == [keep.id]
