import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from safety_core.moderation.domain import container


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from safety_core.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def reset_container():
	container.reset()
	try:
		yield
	finally:
		container.reset()
