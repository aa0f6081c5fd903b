"""Token issue + user upsert against both store implementations."""
import asyncio
import itertools

import pytest

from meetbridge_backend.app.auth.tokens import TokenIssuer, generate_opaque_token
from meetbridge_backend.app.core.errors import AuthFlowError, ErrorKind
from meetbridge_backend.app.db.init_db import init_models
from meetbridge_backend.app.db.session import make_engine, make_sessionmaker
from meetbridge_backend.app.services.users import InMemoryUserStore, SqlUserStore

pytestmark = pytest.mark.anyio


@pytest.fixture(params=["memory", "sql"])
async def store(request, settings):
    if request.param == "memory":
        yield InMemoryUserStore()
        return
    engine = make_engine(settings)
    await init_models(engine)
    try:
        yield SqlUserStore(make_sessionmaker(engine))
    finally:
        await engine.dispose()


def _counter_tokens():
    counter = itertools.count(1)
    return lambda: f"tok-{next(counter)}"


async def test_first_login_creates_user_with_one_token(store):
    token = await TokenIssuer(store).issue("sub-1", "Tess")

    user = await store.find_user("sub-1")
    assert user.id == "sub-1"
    assert user.name == "Tess"
    assert [t.token_id for t in user.tokens] == [token]


async def test_second_login_appends_without_renaming(store):
    issuer = TokenIssuer(store, token_factory=_counter_tokens())

    await issuer.issue("sub-1", "Tess")
    await issuer.issue("sub-1", "Tessa Renamed")

    user = await store.find_user("sub-1")
    assert user.name == "Tess"
    assert [t.token_id for t in user.tokens] == ["tok-1", "tok-2"]


async def test_unknown_user_is_none(store):
    assert await store.find_user("nobody") is None


async def test_concurrent_first_logins_create_one_user(store):
    n = 10
    results = await asyncio.gather(
        *(store.upsert_with_token("sub-race", "Racer", f"race-{i}") for i in range(n))
    )

    assert results.count(True) == 1
    user = await store.find_user("sub-race")
    assert sorted(t.token_id for t in user.tokens) == sorted(f"race-{i}" for i in range(n))


async def test_token_generation_failure_leaves_store_untouched(store):
    def broken():
        raise OSError("entropy pool exhausted")

    with pytest.raises(AuthFlowError) as ei:
        await TokenIssuer(store, token_factory=broken).issue("sub-1", "Tess")

    assert ei.value.kind == ErrorKind.TOKEN_GENERATION_FAILED
    assert ei.value.status_code == 500
    assert await store.find_user("sub-1") is None


async def test_empty_token_counts_as_generation_failure(store):
    with pytest.raises(AuthFlowError) as ei:
        await TokenIssuer(store, token_factory=lambda: "").issue("sub-1", "Tess")
    assert ei.value.kind == ErrorKind.TOKEN_GENERATION_FAILED


async def test_create_and_append_primitives(store):
    created = await store.create_user("sub-2", "Bo", "t-1")
    assert [t.token_id for t in created.tokens] == ["t-1"]

    await store.append_token("sub-2", "t-2")
    user = await store.find_user("sub-2")
    assert [t.token_id for t in user.tokens] == ["t-1", "t-2"]

    with pytest.raises(AuthFlowError) as ei:
        await store.create_user("sub-2", "Bo", "t-3")
    assert ei.value.kind == ErrorKind.STORE_ERROR

    with pytest.raises(AuthFlowError) as ei:
        await store.append_token("missing", "t-4")
    assert ei.value.kind == ErrorKind.STORE_ERROR


async def test_sql_store_failure_is_store_error(settings):
    engine = make_engine(settings)  # tables never created
    try:
        store = SqlUserStore(make_sessionmaker(engine))
        with pytest.raises(AuthFlowError) as ei:
            await store.upsert_with_token("sub-1", "Tess", "t-1")
        assert ei.value.kind == ErrorKind.STORE_ERROR
    finally:
        await engine.dispose()


def test_opaque_tokens_are_unique_uuid_strings():
    tokens = {generate_opaque_token() for _ in range(100)}
    assert len(tokens) == 100
    assert all(len(t) == 36 and t.count("-") == 4 for t in tokens)
