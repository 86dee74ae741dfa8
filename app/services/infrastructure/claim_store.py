"""
Escalation Claim Store
Single-flight guard for escalation writes. A scheduler run must claim
`escalation:{job_id}:{level}` before writing that level; overlapping runs
that lose the claim skip the job instead of racing to the same send.
"""

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.expiring_store import ExpiringStore
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


class EscalationClaimStore:
    """
    Claims live in Redis when REDIS_URL is configured (shared between
    instances) and in the process-local expiring store otherwise.
    """

    def __init__(
        self,
        redis_client: FastRedisClient | None = None,
        local_store: ExpiringStore | None = None,
        ttl_seconds: int | None = None,
    ):
        self._redis = redis_client
        self._local = local_store or ExpiringStore()
        self.ttl_seconds = ttl_seconds or settings.ESCALATION_CLAIM_TTL_SECONDS

    @staticmethod
    def claim_key(job_id: str, level: int) -> str:
        return f"escalation:{job_id}:{level}"

    @property
    def backend(self) -> str:
        return "redis" if self._redis and self._redis.configured else "memory"

    async def claim(self, job_id: str, level: int, owner: str) -> bool:
        """Claim a level for one run; True if this run now owns it."""
        key = self.claim_key(job_id, level)

        if self._redis and self._redis.configured:
            claimed = await self._redis.set_if_absent(key, owner, self.ttl_seconds)
            if claimed is not None:
                if not claimed:
                    logger.info("Escalation claim held by another run", job_id=job_id, level=level)
                return claimed
            logger.warning("Redis claim unavailable, using local claim", job_id=job_id, level=level)

        claimed = await self._local.set_if_absent(key, owner, self.ttl_seconds)
        if not claimed:
            logger.info("Escalation claim held by another run", job_id=job_id, level=level)
        return claimed

    async def release(self, job_id: str, level: int) -> None:
        """Drop a claim whose write never committed, so the next cycle can retry."""
        key = self.claim_key(job_id, level)
        if self._redis and self._redis.configured:
            await self._redis.delete(key)
        await self._local.delete(key)


# Singleton instance for application use
escalation_claims = EscalationClaimStore(redis_client=fast_redis)
