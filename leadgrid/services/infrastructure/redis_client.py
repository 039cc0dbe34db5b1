# leadgrid/services/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled async Redis client shared by the job queues of one worker process."""

    def __init__(self, url: str | None = None, max_connections: int = 20):
        self.url = url
        self.max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        redis_url = self.url or settings.REDIS_URL
        try:
            logger.info("Attempting Redis connection", url_preview=redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=settings.QUEUE_POLL_TIMEOUT_SECONDS + 10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis client initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def get_client(self) -> redis.Redis:
        """Return the live client, initializing lazily."""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
        return self.client


# Global instance
fast_redis = FastRedisClient()
