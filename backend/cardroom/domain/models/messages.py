from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as SchemaError

from cardroom.domain.errors import ValidationError
from cardroom.domain.models.session import Card, GameConfig, Stage
from cardroom.utils.time import utc_now


# Actions: the wire shape is {"action": <name>, "data": {...}}


class GameAction(BaseModel):
    action: str


class BetAction(GameAction):
    action: Literal["bet"] = "bet"
    amount: int = Field(gt=0)


class HitAction(GameAction):
    action: Literal["hit"] = "hit"


class StandAction(GameAction):
    action: Literal["stand"] = "stand"


class DoubleAction(GameAction):
    action: Literal["double"] = "double"


class SplitAction(GameAction):
    action: Literal["split"] = "split"
    amount: Optional[int] = Field(default=None, gt=0)


class SurrenderAction(GameAction):
    action: Literal["surrender"] = "surrender"


class HurryUpAction(GameAction):
    action: Literal["hurry_up"] = "hurry_up"


BlackjackAction = Union[
    BetAction,
    HitAction,
    StandAction,
    DoubleAction,
    SplitAction,
    SurrenderAction,
    HurryUpAction,
]

_ACTION_ADAPTER: TypeAdapter[BlackjackAction] = TypeAdapter(
    Annotated[BlackjackAction, Field(discriminator="action")]
)

ACTION_MODELS: Dict[str, Type[GameAction]] = {
    "bet": BetAction,
    "hit": HitAction,
    "stand": StandAction,
    "double": DoubleAction,
    "split": SplitAction,
    "surrender": SurrenderAction,
    "hurry_up": HurryUpAction,
}


def parse_action(action: str, data: Optional[Dict[str, Any]] = None) -> BlackjackAction:
    if action not in ACTION_MODELS:
        raise ValidationError(f"Action '{action}' is not a valid action for Blackjack.")
    try:
        return _ACTION_ADAPTER.validate_python({**(data or {}), "action": action})
    except SchemaError as exc:
        raise ValidationError(f"Invalid data for action '{action}': {exc}") from exc


# Event payloads broadcast to room subscribers


class MessageEventData(BaseModel):
    sender: str
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class GameStateUpdateEventData(BaseModel):
    current_stage: Stage


class PlayerActionEventData(BaseModel):
    player_id: str
    hand_index: int = 0
    action: str
    amount: Optional[int] = None
    cards: Optional[List[Card]] = None
    target_player_id: Optional[str] = None
    success: Optional[bool] = True


class PlayerJoinEventData(BaseModel):
    player_id: str
    player_name: str


class PlayerLeaveEventData(BaseModel):
    player_id: str
    player_name: str


class HostChangeEventData(BaseModel):
    player_id: str
    player_name: str


class DealerRevealEventData(BaseModel):
    dealer_hand: List[Card]
    dealer_score: int


class PlayerRevealEventData(BaseModel):
    player_id: str
    hand_index: int = 0
    player_hand: List[Card]
    player_score: int


# HTTP request / response bodies


class ActionRequest(BaseModel):
    action: str
    data: Dict[str, Any] = Field(default_factory=dict)


class RegisterPlayer(BaseModel):
    name: str = Field(min_length=1, max_length=64)


class CreateRoom(BaseModel):
    host_id: str


class StartGame(BaseModel):
    config: Optional[GameConfig] = None


class ChatMessage(BaseModel):
    content: str = Field(min_length=1, max_length=500)


class ErrorMessage(BaseModel):
    type: Literal["ERROR"] = "ERROR"
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
