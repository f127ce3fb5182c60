import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Tuple

from fastapi import APIRouter, Depends, Request

from cardroom.api.deps import get_deck, get_hub, get_player_id, get_repository
from cardroom.api.sse.events import flush_events
from cardroom.api.sse.hub import RoomHub
from cardroom.config import settings
from cardroom.domain.errors import ConflictError
from cardroom.domain.models.messages import (
    ActionRequest,
    ChatMessage,
    CreateRoom,
    RegisterPlayer,
    StartGame,
    parse_action,
)
from cardroom.domain.models.session import GameConfig
from cardroom.infra.deck.client import DeckClient
from cardroom.infra.redis.repo import RoomRepository
from cardroom.services import table_service
from cardroom.services.round_service import GAME_MODE, Emit

logger = logging.getLogger(__name__)

router = APIRouter()


async def run_with_retry(hub: RoomHub, rid: str, handler: Callable[[Emit], Any]) -> Any:
    """Run a room mutation, retrying lost races, then broadcast what it emitted.

    Events are only flushed for the attempt that committed.
    """
    attempts = max(1, settings.action_retries)
    for attempt in range(1, attempts + 1):
        events: List[Tuple[str, Dict[str, Any]]] = []

        def emit(event_type: str, payload: Dict[str, Any]) -> None:
            events.append((event_type, payload))

        try:
            result = handler(emit)
            if inspect.isawaitable(result):
                result = await result
        except ConflictError:
            if attempt == attempts:
                raise
            logger.info("Room %s conflict, retrying (%d/%d)", rid, attempt, attempts)
            await asyncio.sleep(settings.retry_backoff_ms * attempt / 1000)
            continue
        await flush_events(hub, rid, events)
        return result


@router.post("/players")
def register_player(
    payload: RegisterPlayer, repository: RoomRepository = Depends(get_repository)
) -> dict:
    return {"player_id": table_service.register_player(repository, payload.name)}


@router.get("/rooms")
def list_rooms(repository: RoomRepository = Depends(get_repository)) -> dict:
    return {"rooms": sorted(repository.get_rooms())}


@router.post("/rooms", status_code=201)
def create_room(payload: CreateRoom, repository: RoomRepository = Depends(get_repository)) -> dict:
    rid, _ = table_service.create_room(repository, payload.host_id)
    return {"room_id": rid, "state": table_service.public_view(repository, rid)}


@router.get("/rooms/{room_id}")
def get_room(room_id: str, repository: RoomRepository = Depends(get_repository)) -> dict:
    return table_service.public_view(repository, room_id)


@router.get("/rooms/{room_id}/config")
def get_config(room_id: str, repository: RoomRepository = Depends(get_repository)) -> GameConfig:
    return table_service.get_config(repository, room_id)


@router.put("/rooms/{room_id}/config")
def set_config(
    room_id: str, payload: GameConfig, repository: RoomRepository = Depends(get_repository)
) -> GameConfig:
    return table_service.set_config(repository, room_id, payload)


@router.post("/rooms/{room_id}/start")
async def start_game(
    room_id: str,
    payload: StartGame,
    repository: RoomRepository = Depends(get_repository),
    deck: DeckClient = Depends(get_deck),
    hub: RoomHub = Depends(get_hub),
) -> dict:
    await run_with_retry(
        hub,
        room_id,
        lambda emit: table_service.start_game(repository, deck, room_id, payload.config, emit),
    )
    return table_service.public_view(repository, room_id)


@router.post("/rooms/{room_id}/join")
async def join_room(
    room_id: str,
    player_id: str = Depends(get_player_id),
    repository: RoomRepository = Depends(get_repository),
    hub: RoomHub = Depends(get_hub),
) -> dict:
    await run_with_retry(
        hub, room_id, lambda emit: table_service.player_join(repository, room_id, player_id, emit)
    )
    return table_service.public_view(repository, room_id)


@router.post("/rooms/{room_id}/leave")
async def leave_room(
    room_id: str,
    player_id: str = Depends(get_player_id),
    repository: RoomRepository = Depends(get_repository),
    hub: RoomHub = Depends(get_hub),
) -> dict:
    await run_with_retry(
        hub, room_id, lambda emit: table_service.player_leave(repository, room_id, player_id, emit)
    )
    return table_service.public_view(repository, room_id)


@router.post("/rooms/{room_id}/teardown")
async def teardown_room(
    room_id: str,
    repository: RoomRepository = Depends(get_repository),
    hub: RoomHub = Depends(get_hub),
) -> dict:
    await run_with_retry(
        hub, room_id, lambda emit: table_service.teardown(repository, room_id, emit)
    )
    return table_service.public_view(repository, room_id)


@router.post("/rooms/{room_id}/chat", status_code=202)
async def chat(
    room_id: str,
    payload: ChatMessage,
    player_id: str = Depends(get_player_id),
    repository: RoomRepository = Depends(get_repository),
    hub: RoomHub = Depends(get_hub),
) -> dict:
    await run_with_retry(
        hub,
        room_id,
        lambda emit: table_service.post_message(
            repository, room_id, player_id, payload.content, emit
        ),
    )
    return {"ok": True}


@router.post("/rooms/{room_id}/action")
async def perform_action(
    room_id: str,
    payload: ActionRequest,
    request: Request,
    player_id: str = Depends(get_player_id),
    repository: RoomRepository = Depends(get_repository),
    deck: DeckClient = Depends(get_deck),
    hub: RoomHub = Depends(get_hub),
) -> dict:
    action = parse_action(payload.action, payload.data)
    perform = request.app.state.games[GAME_MODE]
    await run_with_retry(
        hub, room_id, lambda emit: perform(repository, deck, room_id, player_id, action, emit)
    )
    return table_service.public_view(repository, room_id)
