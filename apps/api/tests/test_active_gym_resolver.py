"""Tests for ActiveGymResolver replacement preference and persistence."""
from unittest.mock import MagicMock

import pytest

from services.gym_setup.active_gym import ActiveGymResolver
from services.gym_setup.errors import TransientRemoteError


def test_prefers_complete_gym(store, profile, make_gym):
    make_gym(profile)
    complete = make_gym(profile, equipment=1)
    leaving = make_gym(profile, active=True)

    assert ActiveGymResolver(store).resolve_replacement(profile.owner_id, leaving.id) == complete.id
    assert store.get_profile(profile.owner_id).active_gym_id == complete.id


def test_gyms_being_deleted_are_never_picked(store, profile, make_gym):
    doomed = make_gym(profile, equipment=1)
    survivor = make_gym(profile)
    leaving = make_gym(profile, active=True)

    replacement = ActiveGymResolver(store).resolve_replacement(
        profile.owner_id, leaving.id, doomed_gym_ids=[doomed.id, leaving.id]
    )

    assert replacement == survivor.id
    assert store.get_profile(profile.owner_id).active_gym_id == survivor.id


def test_no_replacement_when_every_other_gym_is_being_deleted(store, profile, make_gym):
    doomed = make_gym(profile, equipment=1)
    leaving = make_gym(profile, active=True)

    assert ActiveGymResolver(store).pick_replacement(profile.owner_id, leaving.id, [doomed.id]) is None


def test_oldest_complete_gym_wins(store, profile, make_gym):
    older = make_gym(profile, plans=1)
    make_gym(profile, exercises=1)
    leaving = make_gym(profile, active=True)

    assert ActiveGymResolver(store).resolve_replacement(profile.owner_id, leaving.id) == older.id


def test_falls_back_to_oldest_incomplete_gym(store, profile, make_gym):
    oldest = make_gym(profile)
    make_gym(profile)
    leaving = make_gym(profile, active=True)

    assert ActiveGymResolver(store).resolve_replacement(profile.owner_id, leaving.id) == oldest.id


def test_returns_none_without_other_gyms(store, profile, make_gym):
    only = make_gym(profile, active=True)

    assert ActiveGymResolver(store).resolve_replacement(profile.owner_id, only.id) is None
    # Nothing persisted when there is no replacement.
    assert store.get_profile(profile.owner_id).active_gym_id == only.id


def test_pick_replacement_does_not_write(store, profile, make_gym):
    other = make_gym(profile)
    leaving = make_gym(profile, active=True)

    assert ActiveGymResolver(store).pick_replacement(profile.owner_id, leaving.id) == other.id
    assert store.get_profile(profile.owner_id).active_gym_id == leaving.id


def test_write_failure_propagates():
    store = MagicMock()
    store.list_gyms.return_value = [MagicMock(id="a"), MagicMock(id="b")]
    store.update_profile.side_effect = TransientRemoteError("write failed")
    checker = MagicMock()
    checker.is_incomplete.return_value = False

    with pytest.raises(TransientRemoteError):
        ActiveGymResolver(store, checker).resolve_replacement("owner", "b")
