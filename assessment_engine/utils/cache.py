"""
Redis cache for the sanitized question payload of published quizzes
"""
import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

import redis

from assessment_engine.config import settings

logger = logging.getLogger(__name__)

QuizPayload = List[Dict[str, Any]]


class CacheService:
    """
    Stores the taking-view questions of a PUBLISHED quiz under ``quiz_payload:<id>``

    Payloads never carry correctness flags. When Redis cannot be reached at
    construction the service runs disabled: every read misses, every write is a no-op.
    """

    def __init__(self, url: Optional[str] = None, ttl: Optional[int] = None):
        self.ttl = ttl or settings.QUIZ_CACHE_TTL
        self.redis_client = self._connect(url or settings.REDIS_URL)

    @staticmethod
    def _connect(url: str):
        try:
            client = redis.from_url(url, decode_responses=True, socket_connect_timeout=2)
            client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable ({e}); quiz payload caching disabled")
            return None
        logger.info("Redis connection established")
        return client

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    @staticmethod
    def quiz_payload_key(quiz_id: UUID) -> str:
        return f"quiz_payload:{quiz_id}"

    def get_quiz_payload(self, quiz_id: UUID) -> Optional[QuizPayload]:
        if not self.enabled:
            return None
        key = self.quiz_payload_key(quiz_id)
        try:
            raw = self.redis_client.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        logger.debug(f"Cache hit: {key}")
        return json.loads(raw)

    def store_quiz_payload(self, quiz_id: UUID, payload: QuizPayload) -> bool:
        if not self.enabled:
            return False
        key = self.quiz_payload_key(quiz_id)
        try:
            self.redis_client.setex(key, self.ttl, json.dumps(payload))
        except redis.RedisError as e:
            logger.error(f"Cache write failed for {key}: {e}")
            return False
        return True

    def invalidate_quiz(self, quiz_id: UUID) -> bool:
        """Drop the cached payload; called on every status or content change"""
        if not self.enabled:
            return False
        try:
            self.redis_client.delete(self.quiz_payload_key(quiz_id))
        except redis.RedisError as e:
            logger.error(f"Cache invalidation failed for quiz {quiz_id}: {e}")
            return False
        logger.info(f"Cache invalidated for quiz {quiz_id}")
        return True


# Global instance
cache_service = CacheService()
