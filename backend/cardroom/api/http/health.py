from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from cardroom.api.deps import get_repository
from cardroom.infra.redis.repo import RoomRepository

router = APIRouter()


@router.get("/health")
def health(repository: RoomRepository = Depends(get_repository)) -> dict:
    try:
        rooms = len(repository.get_rooms())
    except RedisError:
        return {"status": "degraded", "redis": False}
    return {"status": "ok", "redis": True, "rooms": rooms}
