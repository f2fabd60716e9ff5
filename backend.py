import redis
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import COUPLE_MEMBERS_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class RedisBackend:
    """Couple membership lookups used to authorize websocket handshakes."""

    def __init__(self, redis_client: redis.Redis = None):
        # redis.Redis connects lazily, so constructing this never touches the network
        self.redis_client = redis_client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            return False

    def add_couple(self, couple_id: str, user_ids: list[str]):
        """Record the members of a couple. Called by the account layer when an invite is accepted."""
        logger.info(f"Registering couple {couple_id} with {len(user_ids)} members")
        key = COUPLE_MEMBERS_KEY.format(couple_id=couple_id)
        if user_ids:
            self.redis_client.sadd(key, *user_ids)
        return couple_id

    def get_couple_members(self, couple_id: str) -> set[str]:
        logger.debug(f"Getting members of couple {couple_id}")
        key = COUPLE_MEMBERS_KEY.format(couple_id=couple_id)
        members = self.redis_client.smembers(key)
        logger.debug(f"Couple {couple_id} has {len(members)} members")
        return set(members)

    def is_couple_member(self, couple_id: str, user_id: str) -> bool:
        key = COUPLE_MEMBERS_KEY.format(couple_id=couple_id)
        return bool(self.redis_client.sismember(key, user_id))

    def delete_couple(self, couple_id: str):
        logger.info(f"Deleting couple {couple_id}")
        deleted = self.redis_client.delete(COUPLE_MEMBERS_KEY.format(couple_id=couple_id))
        logger.debug(f"Couple {couple_id} deleted: members_key={deleted}")
        return True


redis_backend = RedisBackend()
