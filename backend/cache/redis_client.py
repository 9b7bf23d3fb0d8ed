"""Cliente Redis opcional, configurado apenas por REDIS_URL."""
import logging
from typing import Optional

import redis

from backend.config import get_settings


logger = logging.getLogger(__name__)

redis_url = get_settings().redis_url
redis_client: Optional[redis.Redis] = None

if redis_url:
    try:
        # rediss:// liga TLS; decode_responses evita decodificar bytes nas leituras.
        redis_client = redis.Redis.from_url(redis_url, decode_responses=True)
    except (ValueError, redis.RedisError):
        logger.warning("Invalid REDIS_URL, task cache disabled", exc_info=True)
        redis_client = None


def is_cache_available() -> bool:
    """Tenta dar ping no Redis; retorna False se nao houver URL ou conexao falhar."""
    if not redis_client:
        return False
    try:
        return bool(redis_client.ping())
    except redis.RedisError:
        return False
