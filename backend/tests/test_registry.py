import logging

import pytest

from hitguessr.services.games.coordinator import GameCoordinator
from hitguessr.services.games.errors import InvalidRequestError, NotFoundError
from hitguessr.services.games.types import GameMode, GameStatus, SessionSettings

from conftest import ALICE, BOB, OrderedTrackProvider


@pytest.fixture()
def coordinator(registry, store, broker, scheduler):
    return GameCoordinator(
        registry=registry,
        store=store,
        tracks=OrderedTrackProvider(),
        broker=broker,
        scheduler=scheduler,
        identity=None,
        settings=SessionSettings(lobby_timeout=0),
        logger=logging.getLogger('hitguessr.tests'),
    )


def test_sessions_are_registered_on_creation(make_session, registry):
    session = make_session()
    assert session.game_id in registry
    assert registry.get(session.game_id) is session
    assert registry.require(session.game_id) is session
    assert len(registry) == 1


def test_unknown_room_is_not_found(registry):
    assert registry.get('missing') is None
    with pytest.raises(NotFoundError) as excinfo:
        registry.require('missing')
    assert excinfo.value.code == 'room_not_found'


def test_terminal_sessions_are_evicted(make_session, registry):
    session = make_session()
    other = make_session()
    session.cancel('creator_gone')
    assert session.status is GameStatus.CANCELLED
    assert session.game_id not in registry
    assert registry.all() == [other]


def test_remove_returns_the_session(make_session, registry):
    session = make_session()
    assert registry.remove(session.game_id) is session
    assert registry.remove(session.game_id) is None


def test_create_game_accepts_mode_members_and_names(coordinator, registry):
    challenge_room = coordinator.create_game(ALICE, GameMode.MULTIPLAYER, 2, invited_user_id=BOB.user_id)
    assert challenge_room.mode is GameMode.MULTIPLAYER
    assert challenge_room.status is GameStatus.WAITING
    assert registry.get(challenge_room.game_id) is challenge_room

    solo = coordinator.create_game(ALICE, 'solo', 1)
    assert solo.mode is GameMode.SOLO
    assert solo.status is GameStatus.IN_PROGRESS


def test_create_game_rejects_unknown_mode(coordinator, store):
    with pytest.raises(InvalidRequestError):
        coordinator.create_game(ALICE, 'DUEL', 2)
    assert store.games == {}
