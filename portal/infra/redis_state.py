from __future__ import annotations

import logging
import os
from functools import lru_cache

from redis import Redis

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
TREE_GENERATION_KEY = os.getenv("KB_TREE_GENERATION_KEY", "kb:tree:generation")

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def tree_generation() -> int:
    """Current knowledge-tree generation; 0 until the first mutation."""
    raw = get_redis().get(TREE_GENERATION_KEY)
    return int(raw) if raw is not None else 0


def bump_tree_generation() -> int:
    generation = int(get_redis().incr(TREE_GENERATION_KEY))
    logger.debug("knowledge tree generation bumped to %s", generation)
    return generation


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        logger.warning("redis readiness check failed", exc_info=True)
        return False
