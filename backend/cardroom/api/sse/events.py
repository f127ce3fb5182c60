import logging
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from cardroom.api.deps import get_hub, get_repository
from cardroom.api.sse.hub import RoomHub
from cardroom.infra.redis.repo import RoomRepository

logger = logging.getLogger(__name__)

router = APIRouter()


async def flush_events(hub: RoomHub, room_id: str, events: List[Tuple[str, Dict[str, Any]]]) -> None:
    for event_type, payload in events:
        await hub.broadcast(room_id, event_type, payload)


@router.get("/rooms/{room_id}/events")
async def room_events(
    room_id: str,
    repository: RoomRepository = Depends(get_repository),
    hub: RoomHub = Depends(get_hub),
) -> StreamingResponse:
    repository.load_session(room_id)
    logger.info("[SSE] New subscriber for room %s", room_id)
    return StreamingResponse(
        hub.subscribe(room_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
