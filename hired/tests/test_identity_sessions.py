"""
Tests for the identity session store and access token claims.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from hired.core.errors import AuthenticationFailedError, ValidationError
from hired.core.metrics import session_events_total
from hired.features.identity.claims import session_from_access_token
from hired.features.identity.service import IdentitySessionStore
from hired.models.identity import DirectorySession, Identity, Role


def make_session(identity_id="user-1", *, full_name="Grace Hopper", role=None):
    metadata = {"full_name": full_name}
    if role:
        metadata["role"] = role
    return DirectorySession(identity_id=identity_id, email=f"{identity_id}@example.com", claims={"user_metadata": metadata})


async def next_item(stream):
    return await asyncio.wait_for(stream.__anext__(), timeout=1)


def test_identity_from_session_maps_metadata():
    identity = Identity.from_session(make_session(full_name="Linus", role="interviewer"))
    assert identity.display_name == "Linus"
    assert identity.role == Role.INTERVIEWER
    assert identity.email == "user-1@example.com"


def test_identity_from_session_defaults_to_candidate():
    assert Identity.from_session(make_session()).role == Role.CANDIDATE
    odd = DirectorySession(identity_id="u", claims={"role": "authenticated"})
    assert Identity.from_session(odd).role == Role.CANDIDATE


@pytest.mark.asyncio
async def test_start_loads_persisted_session(directory, router, test_settings):
    directory.session = make_session("user-persisted")
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    try:
        assert store.snapshot().id == "user-persisted"
        stream = store.current_identity()
        assert (await next_item(stream)).id == "user-persisted"
        assert directory.calls[0] == "get_session"
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_eager_fetch_failure_is_signed_out(directory, router, test_settings, caplog):
    directory.fetch_error = ConnectionError("directory down")
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    try:
        assert store.snapshot() is None
        assert await next_item(store.is_authenticated()) is False
        assert any("treating as signed out" in r.getMessage() for r in caplog.records)
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_eager_fetch_timeout_is_signed_out(directory, router, test_settings):
    directory.session = make_session()
    directory.fetch_delay = 5  # longer than SESSION_FETCH_TIMEOUT_SECONDS
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    try:
        assert store.snapshot() is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sign_out_clears_identity_in_order(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    identities = store.current_identity()
    authenticated = store.is_authenticated()
    try:
        assert await next_item(identities) is None
        assert await next_item(authenticated) is False

        directory.emit(make_session("user-42"))
        assert (await next_item(identities)).id == "user-42"
        assert await next_item(authenticated) is True

        await store.sign_out()
        assert await next_item(identities) is None
        assert await next_item(authenticated) is False
        assert store.snapshot() is None
        assert router.targets == ["/auth/login"]
        assert "sign_out" in directory.calls
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_transitions_are_not_coalesced(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    roles = store.user_role()
    try:
        assert await next_item(roles) is None
        directory.emit(make_session("a", role="admin"))
        directory.emit(None)
        directory.emit(make_session("b", role="interviewer"))

        assert await next_item(roles) == Role.ADMIN
        assert await next_item(roles) is None
        assert await next_item(roles) == Role.INTERVIEWER
        assert session_events_total.value({"kind": "signed_in"}) == 2
        assert session_events_total.value({"kind": "signed_out"}) == 1
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_every_subscriber_sees_every_transition(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    first = store.current_identity()
    second = store.current_identity()
    try:
        directory.emit(make_session("user-1"))
        directory.emit(make_session("user-2"))
        await asyncio.sleep(0)

        for stream in (first, second):
            assert await next_item(stream) is None
            assert (await next_item(stream)).id == "user-1"
            assert (await next_item(stream)).id == "user-2"
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_close_ends_streams(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    stream = store.current_identity()
    assert await next_item(stream) is None
    await store.close()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_sign_in_navigates_and_reports_identity(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    stream = store.current_identity()
    try:
        assert await next_item(stream) is None
        identity = await store.sign_in("ada@example.com", "secret")
        assert identity.id == "user-ada@example.com"
        assert (await next_item(stream)).id == "user-ada@example.com"
        assert router.targets == ["/dashboard"]

        await store.sign_in("ada@example.com", "secret", return_url="/simulator")
        assert router.targets[-1] == "/simulator"
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sign_in_failure_surfaces_directory_message(directory, router, test_settings):
    directory.sign_in_error = RuntimeError("Invalid login credentials")
    store = IdentitySessionStore(directory, router, test_settings)
    with pytest.raises(AuthenticationFailedError, match="Invalid login credentials"):
        await store.sign_in("ada@example.com", "wrong")
    assert router.targets == []


@pytest.mark.asyncio
async def test_sign_in_requires_credentials(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    with pytest.raises(ValidationError):
        await store.sign_in("", "secret")


@pytest.mark.asyncio
async def test_sign_up_sends_candidate_metadata(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    identity = await store.sign_up("new@example.com", "secret", "New Person")
    assert identity.display_name == "New Person"
    assert identity.role == Role.CANDIDATE
    assert directory.calls[-1] == ("sign_up", "new@example.com", {"full_name": "New Person", "role": "candidate"})


@pytest.mark.asyncio
async def test_sign_out_directory_failure_still_clears(directory, router, test_settings):
    directory.session = make_session()
    directory.sign_out_error = ConnectionError("offline")
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    try:
        await store.sign_out()
        assert store.snapshot() is None
        assert router.targets == ["/auth/login"]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_subscriber_before_start_sees_persisted_session(directory, router, test_settings):
    directory.session = make_session("user-persisted")
    store = IdentitySessionStore(directory, router, test_settings)
    authenticated = store.is_authenticated()
    identities = store.current_identity()
    await store.start()
    try:
        assert await next_item(authenticated) is True
        assert (await next_item(identities)).id == "user-persisted"
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_subscriber_before_failed_start_sees_signed_out(directory, router, test_settings):
    directory.fetch_error = ConnectionError("directory down")
    store = IdentitySessionStore(directory, router, test_settings)
    authenticated = store.is_authenticated()
    await store.start()
    try:
        assert await next_item(authenticated) is False
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_broken_event_stream_signs_out(directory, router, test_settings, caplog):
    directory.session = make_session("user-1")
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    identities = store.current_identity()
    try:
        assert (await next_item(identities)).id == "user-1"

        directory.break_stream(ConnectionError("stream dropped"))
        assert await next_item(identities) is None
        assert store.snapshot() is None
        assert session_events_total.value({"kind": "stream_failed"}) == 1
        assert "directory event stream failed" in caplog.text
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sign_out_delivers_one_transition(directory, router, test_settings):
    directory.session = make_session("user-1")
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    identities = store.current_identity()
    try:
        assert (await next_item(identities)).id == "user-1"

        await store.sign_out()
        directory.emit(make_session("user-2"))

        assert await next_item(identities) is None
        assert (await next_item(identities)).id == "user-2"
        assert session_events_total.value({"kind": "signed_out"}) == 1
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sign_out_when_already_signed_out_publishes_nothing(directory, router, test_settings):
    store = IdentitySessionStore(directory, router, test_settings)
    await store.start()
    identities = store.current_identity()
    try:
        assert await next_item(identities) is None

        await store.sign_out()
        directory.emit(make_session("user-2"))

        # The Directory's own sign-out event still arrives
        assert await next_item(identities) is None
        assert (await next_item(identities)).id == "user-2"
        assert router.targets == ["/auth/login"]
    finally:
        await store.close()


def _token(secret="test-secret", **overrides):
    claims = {
        "sub": "user-jwt",
        "email": "jwt@example.com",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        "user_metadata": {"full_name": "Token Holder", "role": "admin"},
    }
    claims.update(overrides)
    return jwt.encode(claims, secret, algorithm="HS256")


def test_session_from_access_token():
    session = session_from_access_token(_token(), secret="test-secret")
    assert session.identity_id == "user-jwt"
    assert session.email == "jwt@example.com"
    identity = Identity.from_session(session)
    assert identity.role == Role.ADMIN
    assert identity.display_name == "Token Holder"


def test_session_from_access_token_rejects_bad_tokens():
    with pytest.raises(AuthenticationFailedError, match="Token expired"):
        session_from_access_token(
            _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1)), secret="test-secret"
        )
    with pytest.raises(AuthenticationFailedError, match="Invalid token"):
        session_from_access_token(_token(secret="other-secret"), secret="test-secret")
    with pytest.raises(AuthenticationFailedError, match="Invalid token"):
        session_from_access_token(_token(aud="someone-else"), secret="test-secret")
