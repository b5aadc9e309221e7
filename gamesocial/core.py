import os
import asyncio
import logging
from prometheus_client import start_http_server
import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

REDIS = None

METRICS_PORT = int(os.getenv('METRICS_PORT', '8001'))


def init_metrics(port: int = METRICS_PORT):
    """Initialize Prometheus metrics server"""
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except Exception as e:
        logger.warning(f'Prometheus start failed: {e}')


async def redis_startup(max_retries: int = 3, retry_delay: float = 3):
    """Connect to Redis with retries; leaves REDIS as None when unreachable"""
    global REDIS

    redis_url = os.getenv('REDIS_URL', 'redis://redis:6379/0')

    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to Redis: {redis_url} (attempt {attempt + 1}/{max_retries})")

            REDIS = aioredis.from_url(
                redis_url,
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True,
                health_check_interval=30,
                socket_connect_timeout=5,
            )

            await REDIS.ping()

            logger.info("Redis connected successfully")
            break

        except Exception as e:
            logger.warning(f'Redis startup attempt {attempt + 1} failed: {e}')
            if REDIS:
                try:
                    await REDIS.aclose()
                except Exception as close_error:
                    logger.debug(f'Closing failed Redis client: {close_error}')
                REDIS = None

            if attempt < max_retries - 1:
                logger.info(f"Retrying Redis connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Failed to connect to Redis after all retries")

    return REDIS


async def shutdown_connections():
    """Gracefully shutdown all connections"""
    global REDIS
    logger.info("Shutting down connections...")

    if REDIS:
        try:
            await REDIS.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
        REDIS = None
