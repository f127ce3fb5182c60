from enum import Enum


class Status(str, Enum):
    ACTIVE = "active"
    AWAY = "away"
    INACTIVE = "inactive"
    LEFT = "left"


class Action(str, Enum):
    BET = "bet"
    HIT = "hit"
    STAND = "stand"
    DOUBLE = "double"
    SPLIT = "split"
    SURRENDER = "surrender"
    HURRY_UP = "hurry_up"


class EventType(str, Enum):
    MESSAGE = "message"
    GAME_STATE_UPDATE = "game_state_update"
    PLAYER_ACTION = "player_action"
    PLAYER_JOIN = "player_join"
    PLAYER_LEAVE = "player_leave"
    HOST_CHANGE = "host_change"
    DEALER_REVEAL = "dealer_reveal"
    PLAYER_REVEAL = "player_reveal"
