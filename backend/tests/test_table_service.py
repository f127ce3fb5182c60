import asyncio

import pytest

from cardroom.domain.errors import NotFoundError, ValidationError
from cardroom.domain.models.session import BettingStage, TeardownStage
from cardroom.domain.models.types import Status
from cardroom.services import table_service
from tests.conftest import EventLog, FakeDeck, MemoryRepository, act, make_config, seat_players


def test_create_room_seats_host(repository: MemoryRepository) -> None:
    alice = table_service.register_player(repository, "Alice")
    rid, session = table_service.create_room(repository, alice)

    assert session.host_id == alice
    assert session.players[alice].seat == 1
    assert rid in repository.get_rooms()


def test_create_room_unknown_host(repository: MemoryRepository) -> None:
    with pytest.raises(NotFoundError):
        table_service.create_room(repository, "nobody")


def test_start_game(repository: MemoryRepository, deck: FakeDeck) -> None:
    config = make_config(starting_balance=500)
    rid, (alice, bob) = seat_players(repository, deck, ["Alice", "Bob"], config)
    session = repository.load_session(rid).session

    assert isinstance(session.stage, BettingStage)
    assert session.round == 1
    assert session.deck_id == "deck-1"
    assert {p.balance for p in session.players.values()} == {500}
    assert repository.load_config(rid).starting_balance == 500

    with pytest.raises(ValidationError):
        asyncio.run(table_service.start_game(repository, deck, rid))


def test_start_game_rejects_config_smaller_than_room(
    repository: MemoryRepository, deck: FakeDeck
) -> None:
    alice = table_service.register_player(repository, "Alice")
    bob = table_service.register_player(repository, "Bob")
    rid, _ = table_service.create_room(repository, alice)
    table_service.player_join(repository, rid, bob)

    with pytest.raises(ValidationError):
        asyncio.run(table_service.start_game(repository, deck, rid, make_config(max_players=1)))

    assert deck.created == 0
    session = repository.load_session(rid).session
    assert session.deck_id is None
    assert session.round == 0


def test_join_assigns_next_seat(repository: MemoryRepository) -> None:
    alice = table_service.register_player(repository, "Alice")
    bob = table_service.register_player(repository, "Bob")
    rid, _ = table_service.create_room(repository, alice)
    log = EventLog()

    session = table_service.player_join(repository, rid, bob, log)
    assert session.players[bob].seat == 2
    assert session.players[bob].status == Status.AWAY
    assert log.of_type("player_join") == [{"player_id": bob, "player_name": "Bob"}]


def test_join_full_room(repository: MemoryRepository) -> None:
    alice = table_service.register_player(repository, "Alice")
    bob = table_service.register_player(repository, "Bob")
    rid, _ = table_service.create_room(repository, alice)
    table_service.set_config(repository, rid, make_config(max_players=1))

    with pytest.raises(ValidationError):
        table_service.player_join(repository, rid, bob)


def test_rejoin_restores_broke_player(repository: MemoryRepository) -> None:
    alice = table_service.register_player(repository, "Alice")
    rid, _ = table_service.create_room(repository, alice)
    table_service.set_config(repository, rid, make_config(starting_balance=300))
    snapshot = repository.load_session(rid)
    snapshot.session.players[alice].balance = 0
    snapshot.session.players[alice].status = Status.INACTIVE
    repository.save_session(rid, snapshot.session, snapshot.version)

    session = table_service.player_join(repository, rid, alice)
    assert session.players[alice].status == Status.AWAY
    assert session.players[alice].balance == 300
    assert session.players[alice].seat == 1


def test_leave_hands_host_over(repository: MemoryRepository, deck: FakeDeck) -> None:
    rid, (alice, bob) = seat_players(repository, deck, ["Alice", "Bob"])
    act(repository, deck, rid, alice, "bet", {"amount": 10})
    log = EventLog()

    session = table_service.player_leave(repository, rid, alice, log)
    assert session.players[alice].status == Status.LEFT
    assert alice not in session.bets
    assert session.host_id == bob
    assert log.of_type("player_leave") == [{"player_id": alice, "player_name": "Alice"}]
    assert log.of_type("host_change") == [{"player_id": bob, "player_name": "Bob"}]

    session = table_service.player_leave(repository, rid, bob, log)
    assert session.host_id is None
    with pytest.raises(NotFoundError):
        table_service.player_leave(repository, rid, bob)


def test_left_player_cannot_act(repository: MemoryRepository, deck: FakeDeck) -> None:
    rid, (alice, bob) = seat_players(repository, deck, ["Alice", "Bob"])
    table_service.player_leave(repository, rid, bob)
    with pytest.raises(NotFoundError):
        act(repository, deck, rid, bob, "bet", {"amount": 10})


def test_teardown(repository: MemoryRepository, deck: FakeDeck) -> None:
    rid, (alice,) = seat_players(repository, deck, ["Alice"])
    log = EventLog()

    session = table_service.teardown(repository, rid, log)
    assert isinstance(session.stage, TeardownStage)
    assert log.of_type("game_state_update")[0]["current_stage"] == {"type": "teardown"}
    with pytest.raises(ValidationError):
        table_service.teardown(repository, rid)
    with pytest.raises(ValidationError):
        act(repository, deck, rid, alice, "bet", {"amount": 10})
    with pytest.raises(ValidationError):
        table_service.player_join(repository, rid, alice)


def test_config_locked_mid_round(repository: MemoryRepository, deck: FakeDeck) -> None:
    rid, (alice,) = seat_players(repository, deck, ["Alice"])
    table_service.set_config(repository, rid, make_config(turn_time_limit=10))
    assert table_service.get_config(repository, rid).turn_time_limit == 10

    act(repository, deck, rid, alice, "bet", {"amount": 10})
    with pytest.raises(ValidationError):
        table_service.set_config(repository, rid, make_config())
    with pytest.raises(NotFoundError):
        table_service.get_config(repository, "missing")


def test_post_message(repository: MemoryRepository) -> None:
    alice = table_service.register_player(repository, "Alice")
    rid, _ = table_service.create_room(repository, alice)
    log = EventLog()

    table_service.post_message(repository, rid, alice, "hello", log)
    [message] = log.of_type("message")
    assert message["sender"] == "Alice"
    assert message["content"] == "hello"
    with pytest.raises(NotFoundError):
        table_service.post_message(repository, rid, "stranger", "hi")


def test_public_view_hides_hole_card(repository: MemoryRepository) -> None:
    deck = FakeDeck(["0S", "5D", "9H", "AC"])
    rid, (alice,) = seat_players(repository, deck, ["Alice"])
    act(repository, deck, rid, alice, "bet", {"amount": 10})

    view = table_service.public_view(repository, rid)
    assert "deck_id" not in view
    assert view["dealer_hand"][0]["code"] == "5D"
    assert view["dealer_hand"][1]["face_down"] is True
    assert view["dealer_hand"][1]["code"] == ""
    assert view["dealer_score"] == 5
    assert view["stage"]["type"] == "player_action"
    assert view["room_id"] == rid
