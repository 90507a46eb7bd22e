"""
Tests for the refresh token store.
"""

import pytest
from sqlalchemy import select

from gov.treasury.authrpd.errors import RefreshTokenInvalid
from gov.treasury.authrpd.model.refresh_token import RefreshToken
from gov.treasury.authrpd.tokens.actors import ActorType
from gov.treasury.authrpd.tokens.refresh import RefreshMetadata, RefreshTokenStore


@pytest.fixture
def store(password_hasher, clock):
    return RefreshTokenStore(
        expires_in=3600, candidate_window=3, password_hasher=password_hasher, clock=clock
    )


async def issue(database_session_maker, store, actor_type="MEMBER", actor_id="42", metadata=None):
    async with database_session_maker() as database_session:
        async with database_session.begin():
            return await store.issue(database_session, actor_type, actor_id, metadata)


async def consume(database_session_maker, store, plaintext, actor_type="MEMBER", actor_id="42"):
    async with database_session_maker() as database_session:
        async with database_session.begin():
            return await store.verify_and_consume(
                database_session, plaintext, actor_type, actor_id
            )


async def test_only_hash_is_stored(database_session_maker, store):
    plaintext = await issue(
        database_session_maker,
        store,
        metadata=RefreshMetadata(device_id="phone-1", ip="10.0.0.1", user_agent="curl/8"),
    )

    async with database_session_maker() as database_session:
        row = (await database_session.scalars(select(RefreshToken))).one()

    assert len(plaintext) >= 43
    assert row.token_hash != plaintext
    assert plaintext not in row.token_hash
    assert row.token_hash.startswith("$argon2id$")
    assert row.actor_type == "MEMBER"
    assert row.actor_id == "42"
    assert row.device_id == "phone-1"
    assert row.ip == "10.0.0.1"
    assert row.user_agent == "curl/8"
    assert row.revoked_at is None


async def test_token_is_single_use(database_session_maker, store):
    plaintext = await issue(database_session_maker, store)

    consumed = await consume(database_session_maker, store, plaintext)
    assert consumed.revoked_at is not None

    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, plaintext)


async def test_actor_type_enum_matches_stored_string(database_session_maker, store):
    plaintext = await issue(database_session_maker, store, actor_type=ActorType.CLIENT)
    await consume(database_session_maker, store, plaintext, actor_type="CLIENT")


async def test_token_is_bound_to_actor(database_session_maker, store):
    plaintext = await issue(database_session_maker, store)

    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, plaintext, actor_id="43")
    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, plaintext, actor_type="CLIENT")

    await consume(database_session_maker, store, plaintext)


async def test_unknown_and_empty_tokens(database_session_maker, store):
    await issue(database_session_maker, store)

    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, "not-a-real-token")
    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, "")


async def test_expired_token(database_session_maker, store, clock):
    plaintext = await issue(database_session_maker, store)

    clock.advance(seconds=3601)

    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, plaintext)


async def test_candidate_window(database_session_maker, store, clock):
    oldest = await issue(database_session_maker, store)
    newer = []
    for _ in range(3):
        clock.advance(seconds=1)
        newer.append(await issue(database_session_maker, store))

    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, oldest)

    for plaintext in newer:
        await consume(database_session_maker, store, plaintext)


async def test_concurrent_consumer_loses(database_session_maker, store):
    plaintext = await issue(database_session_maker, store)

    # A second request matched the same row before the first one revoked it.
    async with database_session_maker() as database_session:
        late_match = await store.find_match(database_session, plaintext, "MEMBER", "42")
    assert late_match is not None

    await consume(database_session_maker, store, plaintext)

    async with database_session_maker() as database_session:
        async with database_session.begin():
            assert await store.revoke(database_session, late_match.id) is False


async def test_rolled_back_consume_keeps_token_usable(database_session_maker, store):
    plaintext = await issue(database_session_maker, store)

    with pytest.raises(LookupError):
        async with database_session_maker() as database_session:
            async with database_session.begin():
                await store.verify_and_consume(database_session, plaintext, "MEMBER", "42")
                raise LookupError("successor could not be minted")

    await consume(database_session_maker, store, plaintext)


async def test_revoke(database_session_maker, store):
    plaintext = await issue(database_session_maker, store)

    async with database_session_maker() as database_session:
        async with database_session.begin():
            match = await store.find_match(database_session, plaintext, "MEMBER", "42")
            assert await store.revoke(database_session, match.id) is True
            assert await store.revoke(database_session, match.id) is False

    with pytest.raises(RefreshTokenInvalid):
        await consume(database_session_maker, store, plaintext)


async def test_revoke_presented(database_session_maker, store):
    plaintext = await issue(database_session_maker, store)

    async with database_session_maker() as database_session:
        async with database_session.begin():
            assert await store.revoke_presented(database_session, plaintext, "MEMBER", "42")
            assert not await store.revoke_presented(database_session, plaintext, "MEMBER", "42")


async def test_revoke_all(database_session_maker, store):
    first = await issue(database_session_maker, store)
    second = await issue(database_session_maker, store)
    other_actor = await issue(database_session_maker, store, actor_id="99")

    async with database_session_maker() as database_session:
        async with database_session.begin():
            assert await store.revoke_all(database_session, "MEMBER", "42") == 2

    for plaintext in (first, second):
        with pytest.raises(RefreshTokenInvalid):
            await consume(database_session_maker, store, plaintext)
    await consume(database_session_maker, store, other_actor, actor_id="99")

    async with database_session_maker() as database_session:
        rows = (await database_session.scalars(select(RefreshToken))).all()
    assert len(rows) == 3
