import logging
from typing import Any, Dict, Optional, Tuple

from cardroom.domain.errors import NotFoundError, ValidationError
from cardroom.domain.models.messages import (
    HostChangeEventData,
    MessageEventData,
    PlayerJoinEventData,
    PlayerLeaveEventData,
)
from cardroom.domain.models.session import (
    BettingStage,
    DealingStage,
    GameConfig,
    NotStartedStage,
    Participant,
    PlayerActionStage,
    Session,
    TeardownStage,
)
from cardroom.domain.models.types import EventType, Status
from cardroom.domain.rules.blackjack_rules import hide_cards, score
from cardroom.infra.deck.client import DeckClient
from cardroom.infra.redis.repo import RoomRepository
from cardroom.services.round_service import Emit, emit_event, emit_stage
from cardroom.utils.ids import new_id
from cardroom.utils.time import deadline_in

logger = logging.getLogger(__name__)


def register_player(repository: RoomRepository, name: str) -> str:
    player_id = repository.register_player(name)
    logger.info("Registered player %s (%s)", player_id, name)
    return player_id


def _require_name(repository: RoomRepository, player_id: str) -> str:
    name = repository.display_name(player_id)
    if name is None:
        raise NotFoundError(f"User {player_id} not found.")
    return name


def create_room(repository: RoomRepository, host_id: str) -> Tuple[str, Session]:
    name = _require_name(repository, host_id)
    config = GameConfig()
    rid = new_id()
    session = Session(host_id=host_id)
    session.players[host_id] = Participant(
        player_id=host_id, name=name, seat=1, balance=config.starting_balance
    )
    repository.create_session(rid, session, config)
    logger.info("Created room %s for host %s", rid, host_id)
    return rid, session


async def start_game(
    repository: RoomRepository,
    deck: DeckClient,
    rid: str,
    config: Optional[GameConfig] = None,
    emit: Optional[Emit] = None,
) -> Session:
    with repository.lock(rid):
        stored = repository.load_session(rid)
        session = stored.session
        if not isinstance(session.stage, NotStartedStage):
            raise ValidationError("Game already started.")
        seated = session.seated()
        if not seated:
            raise ValidationError("No players in room.")

        config = config or repository.load_config(rid)
        if len(seated) > config.max_players:
            raise ValidationError(
                f"Room has {len(seated)} players but allows {config.max_players}."
            )
        for participant in seated:
            participant.balance = config.starting_balance
            participant.status = Status.AWAY
        # keep after every check that can raise
        session.deck_id = await deck.create_deck(config.num_decks)
        session.round = 1
        session.stage = BettingStage(deadline=deadline_in(config.betting_time_limit))

        repository.save_session(rid, session, stored.version)
        repository.save_config(rid, config)

    logger.info("Room %s started with %d player(s)", rid, len(seated))
    emit_stage(emit, session)
    return session


def player_join(
    repository: RoomRepository, rid: str, pid: str, emit: Optional[Emit] = None
) -> Session:
    name = _require_name(repository, pid)
    with repository.lock(rid):
        stored = repository.load_session(rid)
        session = stored.session
        if isinstance(session.stage, TeardownStage):
            raise ValidationError(f"Room {rid} is closed.")

        config = repository.load_config(rid)
        existing = session.players.get(pid)
        if existing is None or existing.status == Status.LEFT:
            seated = len(session.seated())
            if seated >= config.max_players:
                raise ValidationError(f"Room {rid} is full ({seated}/{config.max_players}).")

        if existing is None:
            session.players[pid] = Participant(
                player_id=pid,
                name=name,
                seat=session.next_seat(),
                balance=config.starting_balance,
            )
        else:
            existing.name = name
            if existing.status in (Status.INACTIVE, Status.LEFT):
                existing.status = Status.AWAY
                if config.allow_balance_reset and existing.balance <= 0:
                    existing.balance = config.starting_balance
        if session.host_id is None:
            session.host_id = pid

        repository.save_session(rid, session, stored.version)

    emit_event(emit, EventType.PLAYER_JOIN, PlayerJoinEventData(player_id=pid, player_name=name))
    return session


def player_leave(
    repository: RoomRepository, rid: str, pid: str, emit: Optional[Emit] = None
) -> Session:
    new_host: Optional[Participant] = None
    with repository.lock(rid):
        stored = repository.load_session(rid)
        session = stored.session
        participant = session.players.get(pid)
        if participant is None or participant.status == Status.LEFT:
            raise NotFoundError(f"Player {pid} not found in room {rid}.")

        participant.status = Status.LEFT
        if isinstance(session.stage, BettingStage):
            session.bets.pop(pid, None)

        if session.host_id == pid:
            candidates = [
                p for p in session.seated() if p.status in (Status.ACTIVE, Status.AWAY)
            ]
            if candidates:
                new_host = candidates[0]
                session.host_id = new_host.player_id
            else:
                session.host_id = None
                logger.info("Room %s has no one left to host", rid)

        repository.save_session(rid, session, stored.version)

    emit_event(
        emit,
        EventType.PLAYER_LEAVE,
        PlayerLeaveEventData(player_id=pid, player_name=participant.name),
    )
    if new_host is not None:
        emit_event(
            emit,
            EventType.HOST_CHANGE,
            HostChangeEventData(player_id=new_host.player_id, player_name=new_host.name),
        )
    return session


def teardown(repository: RoomRepository, rid: str, emit: Optional[Emit] = None) -> Session:
    with repository.lock(rid):
        stored = repository.load_session(rid)
        session = stored.session
        if isinstance(session.stage, TeardownStage):
            raise ValidationError("Game already torn down.")
        session.stage = TeardownStage()
        repository.save_session(rid, session, stored.version)

    logger.info("Room %s torn down", rid)
    emit_stage(emit, session)
    return session


def get_config(repository: RoomRepository, rid: str) -> GameConfig:
    repository.load_session(rid)
    return repository.load_config(rid)


def set_config(repository: RoomRepository, rid: str, config: GameConfig) -> GameConfig:
    with repository.lock(rid):
        session = repository.load_session(rid).session
        if not isinstance(session.stage, (NotStartedStage, BettingStage)):
            raise ValidationError("Config can only be changed between rounds.")
        repository.save_config(rid, config)
    return config


def post_message(
    repository: RoomRepository, rid: str, pid: str, content: str, emit: Optional[Emit] = None
) -> None:
    session = repository.load_session(rid).session
    participant = session.players.get(pid)
    if participant is None or participant.status == Status.LEFT:
        raise NotFoundError(f"Player {pid} not found in room {rid}.")
    emit_event(
        emit,
        EventType.MESSAGE,
        MessageEventData(sender=participant.name, content=content),
    )


def public_view(repository: RoomRepository, rid: str) -> Dict[str, Any]:
    """Session as other players may see it: no deck id, dealer hole card hidden mid-round."""
    stored = repository.load_session(rid)
    session = stored.session
    dealer_hand = session.dealer_hand
    if isinstance(session.stage, (DealingStage, PlayerActionStage)):
        dealer_hand = hide_cards(dealer_hand, 1)

    view = session.model_dump(mode="json", exclude={"deck_id", "dealer_hand"})
    view["dealer_hand"] = [c.model_dump(mode="json") for c in dealer_hand]
    view["dealer_score"] = score(dealer_hand)
    view["room_id"] = rid
    view["version"] = stored.version
    return view
