from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from cardroom.config import settings
from cardroom.domain.models.types import Status


class Card(BaseModel):
    value: str = ""
    suit: str = ""
    code: str = ""
    image: Optional[str] = None
    face_down: bool = False


class Hand(BaseModel):
    id: str
    player_id: str
    order: int
    hand_number: int = 0
    bet: int
    cards: List[Card] = Field(default_factory=list)
    surrendered: bool = False

    @property
    def pile(self) -> str:
        return f"hand-{self.id}"


class Participant(BaseModel):
    player_id: str
    name: str = ""
    seat: int
    balance: int = 0
    status: Status = Status.AWAY


# Stages. `type` is the discriminator persisted with the session.


class NotStartedStage(BaseModel):
    type: Literal["not_started"] = "not_started"


class BettingStage(BaseModel):
    type: Literal["betting"] = "betting"
    deadline: datetime


class DealingStage(BaseModel):
    type: Literal["dealing"] = "dealing"


class PlayerActionStage(BaseModel):
    type: Literal["player_action"] = "player_action"
    deadline: datetime
    player_index: int
    hand_index: int


class FinishRoundStage(BaseModel):
    type: Literal["finish_round"] = "finish_round"


class TeardownStage(BaseModel):
    type: Literal["teardown"] = "teardown"


Stage = Annotated[
    Union[
        NotStartedStage,
        BettingStage,
        DealingStage,
        PlayerActionStage,
        FinishRoundStage,
        TeardownStage,
    ],
    Field(discriminator="type"),
]


class GameConfig(BaseModel):
    starting_balance: int = Field(default_factory=lambda: settings.starting_balance, ge=0)
    max_players: int = Field(default_factory=lambda: settings.max_players, ge=1)
    betting_time_limit: int = Field(
        default_factory=lambda: settings.betting_time_limit_seconds, ge=0
    )
    turn_time_limit: int = Field(default_factory=lambda: settings.turn_time_limit_seconds, ge=0)
    allow_balance_reset: bool = Field(default_factory=lambda: settings.allow_balance_reset)
    num_decks: int = Field(default_factory=lambda: settings.num_decks, ge=1, le=20)


class Session(BaseModel):
    stage: Stage = Field(default_factory=NotStartedStage)
    dealer_hand: List[Card] = Field(default_factory=list)
    bets: Dict[str, int] = Field(default_factory=dict)
    hands: List[Hand] = Field(default_factory=list)
    players: Dict[str, Participant] = Field(default_factory=dict)
    round: int = 0
    deck_id: Optional[str] = None
    host_id: Optional[str] = None

    def find_hand(self, order: int, hand_number: int) -> Optional[Hand]:
        for hand in self.hands:
            if hand.order == order and hand.hand_number == hand_number:
                return hand
        return None

    def ordered_hands(self) -> List[Hand]:
        return sorted(self.hands, key=lambda h: (h.order, h.hand_number))

    def seated(self) -> List[Participant]:
        return sorted(
            (p for p in self.players.values() if p.status != Status.LEFT),
            key=lambda p: p.seat,
        )

    def next_seat(self) -> int:
        return max((p.seat for p in self.players.values()), default=0) + 1
