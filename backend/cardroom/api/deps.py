from fastapi import Header, Request

from cardroom.api.sse.hub import RoomHub
from cardroom.infra.deck.client import DeckClient
from cardroom.infra.redis.repo import RoomRepository


def get_repository(request: Request) -> RoomRepository:
    return request.app.state.repository


def get_deck(request: Request) -> DeckClient:
    return request.app.state.deck


def get_hub(request: Request) -> RoomHub:
    return request.app.state.hub


def get_player_id(x_player_id: str = Header(..., min_length=1)) -> str:
    return x_player_id
