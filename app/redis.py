from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Request


def create_redis_pool(url: str) -> aioredis.ConnectionPool:
    return aioredis.ConnectionPool.from_url(url)


async def get_redis(request: Request) -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=request.app.state.redis_pool)
    try:
        yield client
    finally:
        await client.aclose()
