import asyncio

import fakeredis
import pytest
import pytest_asyncio

from auth import LocalIdentityProvider
from backend import RedisBackend
from schemas.profiles import Profile
from session import ClientSession
from state import SetCurrentUser, Store, UpsertUser

POLL_TIMEOUT = 0.05


@pytest.fixture()
def redis_server():
    # One server shared by every client built in a test, like a real deployment
    return fakeredis.FakeServer()


@pytest.fixture()
def make_backend(redis_server):
    def _make():
        client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
        return RedisBackend(redis_client=client, poll_timeout=POLL_TIMEOUT)
    return _make


@pytest.fixture()
def backend(make_backend):
    return make_backend()


@pytest.fixture()
def signed_in_store(backend):
    """Build a Store whose current user has a profile row in the shared store."""
    def _make(user_id: str, username: str = None) -> Store:
        username = username or user_id
        record = backend.get("profiles", user_id) or backend.insert(
            "profiles", {"id": user_id, "username": username, "is_online": True}
        )
        profile = Profile.model_validate(record)
        store = Store()
        store.dispatch(UpsertUser(user=profile))
        store.dispatch(SetCurrentUser(user=profile))
        return store
    return _make


@pytest_asyncio.fixture()
async def make_client(make_backend):
    clients = []

    async def _make(username: str) -> ClientSession:
        identity = LocalIdentityProvider()
        client = ClientSession(make_backend(), identity)
        identity.sign_in(username)
        await client.settle()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.close()


@pytest.fixture()
def eventually():
    async def _wait(predicate, timeout: float = 3.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.02)
    return _wait
