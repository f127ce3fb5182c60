import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type, TypeVar, assert_never

from pydantic import BaseModel

from cardroom.domain.errors import InternalError, NotFoundError, ValidationError
from cardroom.domain.models.messages import (
    BetAction,
    BlackjackAction,
    DealerRevealEventData,
    DoubleAction,
    GameStateUpdateEventData,
    HitAction,
    HurryUpAction,
    PlayerActionEventData,
    PlayerRevealEventData,
    SplitAction,
    StandAction,
    SurrenderAction,
)
from cardroom.domain.models.session import (
    BettingStage,
    Card,
    DealingStage,
    FinishRoundStage,
    GameConfig,
    Hand,
    NotStartedStage,
    Participant,
    PlayerActionStage,
    Session,
    Stage,
    TeardownStage,
)
from cardroom.domain.models.types import Action, EventType, Status
from cardroom.domain.rules.blackjack_rules import (
    DEALER_STANDS_AT,
    compare,
    hide_cards,
    is_bust,
    score,
)
from cardroom.infra.deck.client import DeckClient
from cardroom.infra.redis.repo import RoomRepository
from cardroom.utils.ids import new_id
from cardroom.utils.time import deadline_in, is_past

logger = logging.getLogger(__name__)

GAME_MODE = "blackjack"
DEALER_PILE = "dealer"

BETTING_ACTIONS = {Action.BET.value, Action.HURRY_UP.value}
PLAYER_ACTIONS = {
    Action.HIT.value,
    Action.STAND.value,
    Action.DOUBLE.value,
    Action.SPLIT.value,
    Action.SURRENDER.value,
    Action.HURRY_UP.value,
}

Emit = Callable[[str, Dict[str, Any]], None]
StageT = TypeVar("StageT", bound=BaseModel)


def emit_event(emit: Optional[Emit], event_type: EventType, data: BaseModel) -> None:
    if emit:
        emit(event_type.value, data.model_dump(mode="json"))


def emit_stage(emit: Optional[Emit], session: Session) -> None:
    emit_event(
        emit,
        EventType.GAME_STATE_UPDATE,
        GameStateUpdateEventData(current_stage=session.stage),
    )


def _emit_action(
    emit: Optional[Emit],
    player_id: str,
    hand_index: int,
    action: Action,
    amount: Optional[int] = None,
    cards: Optional[list[Card]] = None,
    target_player_id: Optional[str] = None,
    success: bool = True,
) -> None:
    emit_event(
        emit,
        EventType.PLAYER_ACTION,
        PlayerActionEventData(
            player_id=player_id,
            hand_index=hand_index,
            action=action.value,
            amount=amount,
            cards=cards,
            target_player_id=target_player_id,
            success=success,
        ),
    )


def _emit_hand(emit: Optional[Emit], hand: Hand, hidden: Sequence[int] = ()) -> None:
    shown = hide_cards(hand.cards, *hidden)
    emit_event(
        emit,
        EventType.PLAYER_REVEAL,
        PlayerRevealEventData(
            player_id=hand.player_id,
            hand_index=hand.hand_number,
            player_hand=shown,
            player_score=score(shown),
        ),
    )


def _emit_dealer(emit: Optional[Emit], cards: list[Card], hidden: Sequence[int] = ()) -> None:
    shown = hide_cards(cards, *hidden)
    emit_event(
        emit,
        EventType.DEALER_REVEAL,
        DealerRevealEventData(dealer_hand=shown, dealer_score=score(shown)),
    )


def is_action_valid(action: str, stage: Stage) -> bool:
    match stage:
        case BettingStage():
            return action in BETTING_ACTIONS
        case PlayerActionStage():
            return action in PLAYER_ACTIONS
        case NotStartedStage() | DealingStage() | FinishRoundStage() | TeardownStage():
            return False
        case _:
            assert_never(stage)


def _stage_as(session: Session, stage_type: Type[StageT]) -> StageT:
    if not isinstance(session.stage, stage_type):
        raise InternalError(f"Current stage is not {stage_type.__name__}.")
    return session.stage


def _deck_id(session: Session) -> str:
    if not session.deck_id:
        raise InternalError("Room has no deck ID.")
    return session.deck_id


async def _ensure_deck(session: Session, config: GameConfig, deck: DeckClient, rid: str) -> str:
    if not session.deck_id:
        logger.warning(
            "Room %s has no deck ID. Attempting to create a new one...",
            rid,
            extra={"room_id": rid},
        )
        session.deck_id = await deck.create_deck(config.num_decks)
    return session.deck_id


async def perform_action(
    repository: RoomRepository,
    deck: DeckClient,
    rid: str,
    pid: str,
    action: BlackjackAction,
    emit: Optional[Emit] = None,
) -> Session:
    with repository.lock(rid):
        stored = repository.load_session(rid)
        session = stored.session
        if not is_action_valid(action.action, session.stage):
            raise ValidationError(
                f"Action {action.action} is not a valid action for this game stage."
            )

        player = session.players.get(pid)
        if player is None or player.status == Status.LEFT:
            raise NotFoundError(f"Player {pid} not found.")

        config = repository.load_config(rid)
        changed = await _apply(session, config, deck, rid, player, action, emit)
        if changed:
            repository.save_session(rid, session, stored.version)
    return session


async def _apply(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    rid: str,
    player: Participant,
    action: BlackjackAction,
    emit: Optional[Emit],
) -> bool:
    match action:
        case BetAction(amount=amount):
            await _place_bet(session, config, deck, rid, player, amount, emit)
        case HitAction():
            await _hit(session, config, deck, rid, player, emit)
        case StandAction():
            _, hand = _current_turn(session, player)
            _emit_action(emit, player.player_id, hand.hand_number, Action.STAND)
            await _next_hand_or_finish_round(session, config, deck, rid, emit)
        case DoubleAction():
            await _double(session, config, deck, rid, player, emit)
        case SplitAction(amount=amount):
            await _split(session, config, deck, player, amount, emit)
        case SurrenderAction():
            await _surrender(session, config, deck, rid, player, emit)
        case HurryUpAction():
            return await _hurry_up(session, config, deck, rid, player, emit)
        case _:
            assert_never(action)
    return True


async def _place_bet(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    rid: str,
    player: Participant,
    amount: int,
    emit: Optional[Emit],
) -> None:
    stage = _stage_as(session, BettingStage)
    if player.status not in (Status.ACTIVE, Status.AWAY):
        raise ValidationError(f"Player {player.player_id} must rejoin before betting.")
    if amount > player.balance:
        raise ValidationError(
            f"Player {player.player_id} does not have enough chips to bet {amount}."
        )

    session.bets[player.player_id] = amount
    player.status = Status.ACTIVE
    _emit_action(emit, player.player_id, 0, Action.BET, amount=amount)
    emit_stage(emit, session)

    if is_past(stage.deadline) or _everyone_has_bet(session):
        await _start_round(session, config, deck, rid, emit)


def _everyone_has_bet(session: Session) -> bool:
    if not session.bets:
        return False
    waiting = [p for p in session.players.values() if p.status in (Status.ACTIVE, Status.AWAY)]
    return all(p.player_id in session.bets for p in waiting)


async def _start_round(
    session: Session, config: GameConfig, deck: DeckClient, rid: str, emit: Optional[Emit]
) -> None:
    if not session.bets:
        raise ValidationError("No bets have been placed yet.")
    for pid in session.bets:
        if pid not in session.players:
            raise InternalError(f"Could not find player {pid} to process their bet.")

    session.stage = DealingStage()
    emit_stage(emit, session)

    # deduct bets and open one hand per bettor, in seat order
    bettors = sorted((session.players[pid] for pid in session.bets), key=lambda p: p.seat)
    session.hands = []
    for order, bettor in enumerate(bettors):
        bet = session.bets[bettor.player_id]
        if bet > bettor.balance:
            raise InternalError(f"Player {bettor.player_id} cannot cover their bet of {bet}.")
        bettor.balance -= bet
        session.hands.append(
            Hand(id=new_id(), player_id=bettor.player_id, order=order, bet=bet)
        )

    deck_id = await _ensure_deck(session, config, deck, rid)

    # one card at a time: every hand, then the dealer, twice
    session.dealer_hand = []
    for _ in range(2):
        for hand in session.hands:
            hand.cards.extend(await deck.draw(deck_id, hand.pile, 1))
        session.dealer_hand.extend(await deck.draw(deck_id, DEALER_PILE, 1))

    for hand in session.hands:
        _emit_hand(emit, hand)
    _emit_dealer(emit, session.dealer_hand, hidden=(1,))

    session.stage = PlayerActionStage(
        deadline=deadline_in(config.turn_time_limit), player_index=0, hand_index=0
    )
    emit_stage(emit, session)
    logger.info("Room %s round %d dealt to %d hand(s)", rid, session.round, len(session.hands))


def _current_turn(session: Session, player: Participant) -> Tuple[PlayerActionStage, Hand]:
    stage = _stage_as(session, PlayerActionStage)
    hand = session.find_hand(stage.player_index, stage.hand_index)
    if hand is None:
        raise InternalError(
            f"No hand at position ({stage.player_index}, {stage.hand_index})."
        )
    if hand.player_id != player.player_id:
        raise ValidationError("It is not your turn.")
    return stage, hand


async def _hit(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    rid: str,
    player: Participant,
    emit: Optional[Emit],
) -> None:
    stage, hand = _current_turn(session, player)

    drawn = await deck.draw(_deck_id(session), hand.pile, 1)
    hand.cards.extend(drawn)
    _emit_action(emit, player.player_id, hand.hand_number, Action.HIT, cards=drawn)
    _emit_hand(emit, hand)

    if is_bust(hand.cards):
        await _next_hand_or_finish_round(session, config, deck, rid, emit)
        return

    # same hand keeps the turn
    stage.deadline = deadline_in(config.turn_time_limit)
    emit_stage(emit, session)


async def _double(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    rid: str,
    player: Participant,
    emit: Optional[Emit],
) -> None:
    _, hand = _current_turn(session, player)
    if len(hand.cards) != 2:
        raise ValidationError("Double can only be done on the hand's first action.")
    if player.balance < hand.bet:
        raise ValidationError(
            f"Player {player.player_id} does not have enough chips to double their bet."
        )

    player.balance -= hand.bet
    hand.bet *= 2
    drawn = await deck.draw(_deck_id(session), hand.pile, 1)
    hand.cards.extend(drawn)

    _emit_action(
        emit, player.player_id, hand.hand_number, Action.DOUBLE, amount=hand.bet, cards=drawn
    )
    _emit_hand(emit, hand)
    await _next_hand_or_finish_round(session, config, deck, rid, emit)


async def _split(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    player: Participant,
    amount: Optional[int],
    emit: Optional[Emit],
) -> None:
    stage, hand = _current_turn(session, player)
    if len(hand.cards) != 2:
        raise ValidationError("Split can only be done on the hand's first action.")
    first, second = hand.cards
    if first.value != second.value:
        raise ValidationError("Can only split if both cards have the same value.")
    if session.find_hand(hand.order, hand.hand_number + 1) is not None:
        raise ValidationError("This hand has already been split.")
    bet = amount or hand.bet
    if player.balance < bet:
        raise ValidationError(
            f"Player {player.player_id} does not have enough chips to split their bet with {bet}."
        )

    deck_id = _deck_id(session)
    new_hand = Hand(
        id=new_id(),
        player_id=hand.player_id,
        order=hand.order,
        hand_number=hand.hand_number + 1,
        bet=bet,
    )

    await deck.remove_from_pile(deck_id, hand.pile, [second.code])
    await deck.add_to_pile(deck_id, new_hand.pile, [second.code])
    hand.cards = [first]
    new_hand.cards = [second]
    hand.cards.extend(await deck.draw(deck_id, hand.pile, 1))
    new_hand.cards.extend(await deck.draw(deck_id, new_hand.pile, 1))

    player.balance -= bet
    session.hands.append(new_hand)

    _emit_action(emit, player.player_id, hand.hand_number, Action.SPLIT, amount=bet)
    _emit_hand(emit, hand)
    _emit_hand(emit, new_hand)

    # turn stays on the original hand
    stage.deadline = deadline_in(config.turn_time_limit)
    emit_stage(emit, session)


async def _surrender(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    rid: str,
    player: Participant,
    emit: Optional[Emit],
) -> None:
    _, hand = _current_turn(session, player)
    split = hand.hand_number != 0 or session.find_hand(hand.order, 1) is not None
    if len(hand.cards) != 2 or split:
        raise ValidationError("Surrender is only allowed on your first action.")

    refund = hand.bet // 2
    player.balance += refund
    hand.surrendered = True

    _emit_action(emit, player.player_id, hand.hand_number, Action.SURRENDER, amount=refund)
    await _next_hand_or_finish_round(session, config, deck, rid, emit)


async def _hurry_up(
    session: Session,
    config: GameConfig,
    deck: DeckClient,
    rid: str,
    player: Participant,
    emit: Optional[Emit],
) -> bool:
    match session.stage:
        case BettingStage():
            active = [p for p in session.players.values() if p.status == Status.ACTIVE]
            if not session.bets:
                raise ValidationError("No bets have been placed yet.")
            if any(p.player_id not in session.bets for p in active):
                raise ValidationError("Not all active players have bet yet.")
            await _start_round(session, config, deck, rid, emit)
            return True

        case PlayerActionStage() as stage:
            if not is_past(stage.deadline):
                _emit_action(
                    emit, player.player_id, stage.hand_index, Action.HURRY_UP, success=False
                )
                return False

            hand = session.find_hand(stage.player_index, stage.hand_index)
            owner = session.players.get(hand.player_id) if hand else None
            if owner is None:
                raise InternalError(
                    f"Could not find current player at ({stage.player_index}, {stage.hand_index})."
                )
            if owner.status in (Status.ACTIVE, Status.AWAY):
                owner.status = Status.INACTIVE
            _emit_action(
                emit,
                player.player_id,
                stage.hand_index,
                Action.HURRY_UP,
                target_player_id=owner.player_id,
                success=True,
            )
            logger.info("Room %s - player %s timed out, forcing stand", rid, owner.player_id)
            await _next_hand_or_finish_round(session, config, deck, rid, emit)
            return True

        case _:
            raise ValidationError("Nothing to hurry in the current stage.")


async def _next_hand_or_finish_round(
    session: Session, config: GameConfig, deck: DeckClient, rid: str, emit: Optional[Emit]
) -> None:
    stage = session.stage
    if not isinstance(stage, PlayerActionStage):
        raise InternalError("Cannot move to next hand when not in player action stage.")

    deadline = deadline_in(config.turn_time_limit)
    if session.find_hand(stage.player_index, stage.hand_index + 1) is not None:
        session.stage = PlayerActionStage(
            deadline=deadline, player_index=stage.player_index, hand_index=stage.hand_index + 1
        )
    elif session.find_hand(stage.player_index + 1, 0) is not None:
        session.stage = PlayerActionStage(
            deadline=deadline, player_index=stage.player_index + 1, hand_index=0
        )
    else:
        await _finish_round(session, config, deck, rid, emit)
        return
    emit_stage(emit, session)


async def _finish_round(
    session: Session, config: GameConfig, deck: DeckClient, rid: str, emit: Optional[Emit]
) -> None:
    session.stage = FinishRoundStage()
    emit_stage(emit, session)
    deck_id = _deck_id(session)

    # dealer hits below 17, soft totals included
    while score(session.dealer_hand) < DEALER_STANDS_AT:
        session.dealer_hand.extend(await deck.draw(deck_id, DEALER_PILE, 1))
    logger.info(
        "Room %s - Dealer hand: %s (%d)",
        rid,
        ", ".join(c.code for c in session.dealer_hand),
        score(session.dealer_hand),
    )
    _emit_dealer(emit, session.dealer_hand)

    for hand in session.ordered_hands():
        owner = session.players.get(hand.player_id)
        if owner is None:
            raise InternalError(f"Player {hand.player_id} not found.")
        if not hand.surrendered:
            result = compare(hand.cards, session.dealer_hand)
            if result > 0:
                owner.balance += hand.bet * 2
            elif result == 0:
                owner.balance += hand.bet
        _emit_hand(emit, hand)

    session.hands = []
    await deck.return_all_and_shuffle(deck_id)

    session.dealer_hand = []
    session.bets = {}
    for participant in session.players.values():
        if participant.status == Status.ACTIVE:
            participant.status = Status.AWAY
    session.stage = BettingStage(deadline=deadline_in(config.betting_time_limit))
    session.round += 1
    emit_stage(emit, session)
