import logging
from dataclasses import dataclass
from typing import ContextManager, List, Optional

from pydantic import ValidationError as SchemaError
from redis import Redis

from cardroom.config import settings
from cardroom.domain.errors import ConflictError, InternalError, NotFoundError
from cardroom.domain.models.session import GameConfig, Session
from cardroom.infra.redis import keys
from cardroom.infra.redis.locks import room_lock
from cardroom.utils.ids import new_id

logger = logging.getLogger(__name__)

# Compare-and-set on the stored version token.
# Returns the new version, 0 on a version mismatch and -1 if the room does not exist.
_SAVE_SCRIPT = """
local current = redis.call("hget", KEYS[1], "version")
if not current then
    return -1
end
if current ~= ARGV[1] then
    return 0
end
local next_version = tonumber(current) + 1
redis.call("hset", KEYS[1], "session", ARGV[2], "version", next_version)
return next_version
"""


@dataclass
class StoredSession:
    session: Session
    version: int


class RoomRepository:
    def __init__(self, redis: Redis, lock_ttl_ms: Optional[int] = None) -> None:
        self.redis = redis
        self.lock_ttl_ms = lock_ttl_ms or settings.lock_ttl_ms
        self._save = redis.register_script(_SAVE_SCRIPT)

    def lock(self, rid: str) -> ContextManager[None]:
        return room_lock(self.redis, rid, self.lock_ttl_ms)

    def create_session(self, rid: str, session: Session, config: GameConfig) -> None:
        created = self.redis.hsetnx(keys.room_state(rid), "session", session.model_dump_json())
        if not created:
            raise ConflictError(f"Room {rid} already exists.")
        self.redis.hset(keys.room_state(rid), mapping={"version": 1})
        self.redis.set(keys.room_config(rid), config.model_dump_json())
        self.redis.sadd(keys.rooms_set(), rid)

    def load_session(self, rid: str) -> StoredSession:
        raw = self.redis.hgetall(keys.room_state(rid))
        if not raw or "session" not in raw:
            raise NotFoundError(f"Room {rid} not found.")
        try:
            session = Session.model_validate_json(raw["session"])
            version = int(raw.get("version") or 0)
        except (SchemaError, ValueError) as exc:
            logger.exception("Corrupt session state", extra={"room_id": rid})
            raise InternalError("Failed to deserialize game state.") from exc
        return StoredSession(session=session, version=version)

    def save_session(self, rid: str, session: Session, expected_version: int) -> int:
        result = int(
            self._save(
                keys=[keys.room_state(rid)],
                args=[str(expected_version), session.model_dump_json()],
            )
        )
        if result == -1:
            raise NotFoundError(f"Room {rid} not found.")
        if result == 0:
            raise ConflictError(f"Room {rid} was modified concurrently.")
        return result

    def load_config(self, rid: str) -> GameConfig:
        raw = self.redis.get(keys.room_config(rid))
        if not raw:
            return GameConfig()
        try:
            return GameConfig.model_validate_json(raw)
        except SchemaError as exc:
            logger.exception("Corrupt game config", extra={"room_id": rid})
            raise InternalError("Failed to get game config.") from exc

    def save_config(self, rid: str, config: GameConfig) -> None:
        self.redis.set(keys.room_config(rid), config.model_dump_json())

    def get_rooms(self) -> List[str]:
        return list(self.redis.smembers(keys.rooms_set()))

    # Player directory

    def register_player(self, name: str) -> str:
        player_id = new_id()
        self.redis.hset(keys.players_directory(), mapping={player_id: name})
        return player_id

    def display_name(self, player_id: str) -> Optional[str]:
        return self.redis.hget(keys.players_directory(), player_id)
