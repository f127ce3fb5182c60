import logging
import uuid
from contextlib import contextmanager

from redis import Redis
from redis.exceptions import RedisError

from cardroom.domain.errors import ConflictError
from cardroom.infra.redis import keys

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@contextmanager
def room_lock(redis: Redis, rid: str, ttl_ms: int = 5000):
    lock_key = keys.room_lock(rid)
    token = str(uuid.uuid4())
    acquired = redis.set(lock_key, token, nx=True, px=ttl_ms)
    if not acquired:
        raise ConflictError("Room is busy, try again")
    try:
        yield
    finally:
        try:
            released = redis.eval(_RELEASE_SCRIPT, 1, lock_key, token)
        except RedisError:
            logger.exception("Failed to release room lock", extra={"room_id": rid})
        else:
            if not released:
                # TTL ran out while the action was still running
                logger.warning("Room lock expired before release", extra={"room_id": rid})
