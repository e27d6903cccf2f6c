from dataclasses import replace
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import func, select

from creator_studio import db
from creator_studio.connections import ConnectionManager
from creator_studio.errors import NotConfigured, NotConnected, Unauthenticated
from creator_studio.models import SocialAccount, User, as_utc
from creator_studio.sessions import SessionUser, sign_state, verify_state
from creator_studio.token_cipher import TokenCipher

from conftest import ENCRYPTION_SECRET, FB, FIXED_NOW, IG, SESSION_SECRET, make_user

ACCOUNTS = "http://testserver/accounts"


def _state(user: User) -> str:
    return sign_state(SESSION_SECRET, "connect", "instagram", user_id=user.id)


def _callback(manager, session_factory, user, code="auth-code", state=None, error=None) -> str:
    with db.session_scope(session_factory) as session:
        return manager.handle_callback(
            session,
            SessionUser.from_user(user) if user else None,
            "instagram",
            code,
            state if state is not None else (_state(user) if user else None),
            error,
        )


def _account(session_factory, user: User) -> SocialAccount | None:
    with db.session_scope(session_factory) as session:
        return db.get_social_account(session, user.id, "instagram")


def _seed_account(session_factory, user: User, token: str = "seeded-token", expires_at=None) -> None:
    with db.session_scope(session_factory) as session:
        db.upsert_social_account(
            session,
            user_id=user.id,
            platform="instagram",
            username="seeded",
            access_token=TokenCipher(ENCRYPTION_SECRET).encrypt(token),
            token_expires_at=expires_at or FIXED_NOW + timedelta(days=30),
            external_id="ig-1",
        )


def test_initiate_connect_builds_signed_dialog_url(manager, user) -> None:
    url = manager.initiate_connect(SessionUser.from_user(user), "instagram")
    parts = urlsplit(url)
    query = parse_qs(parts.query)

    assert parts.netloc == "www.facebook.com"
    assert parts.path == "/v21.0/dialog/oauth"
    assert query["client_id"] == ["app-id"]
    assert query["redirect_uri"] == ["http://testserver/connect/instagram/callback"]
    assert "instagram_content_publish" in query["scope"][0].split(",")
    assert verify_state(query["state"][0], SESSION_SECRET, "connect", "instagram", user_id=user.id)


def test_initiate_connect_requires_user(manager) -> None:
    with pytest.raises(Unauthenticated):
        manager.initiate_connect(None, "instagram")


def test_initiate_connect_requires_meta_credentials(settings, graph, user) -> None:
    unconfigured = ConnectionManager(replace(settings, facebook_app_secret=None), graph, TokenCipher("k" * 32))

    with pytest.raises(NotConfigured):
        unconfigured.initiate_connect(SessionUser.from_user(user), "instagram")


@pytest.mark.parametrize("platform", ["facebook", "tiktok"])
def test_status_only_platforms_are_not_connectable(manager, user, platform) -> None:
    with pytest.raises(NotConfigured):
        manager.initiate_connect(SessionUser.from_user(user), platform)


def test_callback_stores_encrypted_long_lived_token(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow()

    target = _callback(manager, session_factory, user)

    assert target == f"{ACCOUNTS}?connected=instagram"
    account = _account(session_factory, user)
    assert account is not None
    assert account.connected is True
    assert account.username == "creator"
    assert account.external_id == "ig-1"
    assert account.access_token != "long-token"
    assert manager.cipher.decrypt(account.access_token) == "long-token"
    assert as_utc(account.token_expires_at) == FIXED_NOW + timedelta(seconds=5184000)


def test_callback_uses_page_token_for_long_lived_exchange(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow(page_token="the-page-token")

    _callback(manager, session_factory, user)

    exchange = fake_provider.called(f"{FB}/oauth/access_token#long_lived")
    assert len(exchange) == 1
    assert exchange[0].url.params["fb_exchange_token"] == "the-page-token"


def test_reconnect_updates_single_row(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow(long_lived=(200, {"access_token": "first", "expires_in": 100}))
    _callback(manager, session_factory, user)
    fake_provider.connect_flow(long_lived=(200, {"access_token": "second", "expires_in": 100}))
    _callback(manager, session_factory, user)

    with db.session_scope(session_factory) as session:
        count = session.execute(select(func.count()).select_from(SocialAccount)).scalar_one()
    assert count == 1
    assert manager.cipher.decrypt(_account(session_factory, user).access_token) == "second"


def test_denied_callback_writes_nothing(manager, session_factory, user, fake_provider) -> None:
    _seed_account(session_factory, user)
    before = _account(session_factory, user)

    target = _callback(manager, session_factory, user, code=None, error="access_denied")

    query = parse_qs(urlsplit(target).query)
    assert query["error"] == ["user_denied"]
    assert fake_provider.calls == []
    after = _account(session_factory, user)
    assert after.access_token == before.access_token
    assert after.updated_at == before.updated_at


def test_long_lived_failure_falls_back_to_page_token(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow(long_lived=(400, {"error": {"message": "Invalid OAuth access token"}}))

    target = _callback(manager, session_factory, user)

    assert target == f"{ACCOUNTS}?connected=instagram"
    account = _account(session_factory, user)
    assert manager.cipher.decrypt(account.access_token) == "page-token"
    assert as_utc(account.token_expires_at) == FIXED_NOW + timedelta(days=60)


def test_username_failure_uses_placeholder(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow(username=(500, {"error": {"message": "boom"}}))

    target = _callback(manager, session_factory, user)

    assert target == f"{ACCOUNTS}?connected=instagram"
    assert _account(session_factory, user).username == "instagram"


def test_no_eligible_page(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow()
    fake_provider.add(f"{FB}/me/accounts", (200, {"data": [{"id": "p", "access_token": "t"}]}))

    target = _callback(manager, session_factory, user)

    assert parse_qs(urlsplit(target).query)["error"] == ["no_eligible_account"]
    assert _account(session_factory, user) is None


def test_code_exchange_rejection_carries_provider_message(manager, session_factory, user, fake_provider) -> None:
    fake_provider.add(f"{FB}/oauth/access_token", (400, {"error": {"message": "Code was already used"}}))

    target = _callback(manager, session_factory, user)

    query = parse_qs(urlsplit(target).query)
    assert query["error"] == ["remote_rejected"]
    assert query["message"] == ["Code was already used"]
    assert _account(session_factory, user) is None


def test_forged_state_is_rejected(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow()
    other_user_state = sign_state(SESSION_SECRET, "connect", "instagram", user_id=user.id + 1)

    target = _callback(manager, session_factory, user, state=other_user_state)

    query = parse_qs(urlsplit(target).query)
    assert query["error"] == ["invalid_input"]
    assert query["message"] == ["Invalid or expired OAuth state"]
    assert fake_provider.calls == []


def test_missing_code_is_invalid_input(manager, session_factory, user) -> None:
    target = _callback(manager, session_factory, user, code="")

    assert parse_qs(urlsplit(target).query)["error"] == ["invalid_input"]


def test_callback_without_session_redirects_to_login(manager, session_factory) -> None:
    target = _callback(manager, session_factory, None, state="anything")

    assert target == "http://testserver/login?error=unauthenticated"


def test_missing_encryption_secret_refuses_to_store(settings, graph, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow()
    manager = ConnectionManager(settings, graph, TokenCipher(None), clock=lambda: FIXED_NOW)

    target = _callback(manager, session_factory, user)

    assert parse_qs(urlsplit(target).query)["error"] == ["not_configured"]
    assert _account(session_factory, user) is None


def test_disconnect_is_idempotent(manager, session_factory, user) -> None:
    _seed_account(session_factory, user)

    for _ in range(2):
        with db.session_scope(session_factory) as session:
            manager.disconnect(session, user.id, "instagram")

    account = _account(session_factory, user)
    assert account.connected is False
    assert account.access_token is None
    assert account.token_expires_at is None
    assert account.external_id is None


def test_disconnect_without_row_is_a_no_op(manager, session_factory, user) -> None:
    with db.session_scope(session_factory) as session:
        manager.disconnect(session, user.id, "tiktok")

    with db.session_scope(session_factory) as session:
        assert db.list_social_accounts(session, user.id) == []


def test_status_reports_booleans_only(manager, session_factory, user) -> None:
    _seed_account(session_factory, user)

    with db.session_scope(session_factory) as session:
        status = manager.connection_status(session, user.id)

    assert status == {"instagram": True, "facebook": False, "tiktok": False}


def test_status_treats_expired_token_as_disconnected(manager, session_factory, user) -> None:
    _seed_account(session_factory, user, expires_at=FIXED_NOW - timedelta(seconds=1))

    with db.session_scope(session_factory) as session:
        assert manager.connection_status(session, user.id)["instagram"] is False
        with pytest.raises(NotConnected):
            manager.usable_credentials(session, user.id, "instagram")


def test_status_without_user_is_all_false(manager, session_factory) -> None:
    with db.session_scope(session_factory) as session:
        assert manager.connection_status(session, None) == {"instagram": False, "facebook": False, "tiktok": False}


def test_unreadable_token_is_not_usable(manager, session_factory, user) -> None:
    with db.session_scope(session_factory) as session:
        db.upsert_social_account(
            session,
            user_id=user.id,
            platform="instagram",
            username="seeded",
            access_token=TokenCipher("some-other-secret-value-32-bytes-long").encrypt("tok"),
            token_expires_at=FIXED_NOW + timedelta(days=1),
            external_id="ig-1",
        )

    with db.session_scope(session_factory) as session, pytest.raises(NotConnected):
        manager.usable_credentials(session, user.id, "instagram")


def test_deleting_user_removes_social_accounts(session_factory, user) -> None:
    _seed_account(session_factory, user)
    other = make_user(session_factory, "other@example.com")
    _seed_account(session_factory, other)

    with db.session_scope(session_factory) as session:
        session.delete(session.get(User, user.id))

    with db.session_scope(session_factory) as session:
        owners = session.execute(select(SocialAccount.user_id)).scalars().all()
    assert owners == [other.id]


def test_username_lookup_hits_instagram_host(manager, session_factory, user, fake_provider) -> None:
    fake_provider.connect_flow()

    _callback(manager, session_factory, user)

    lookups = fake_provider.called(f"{IG}/ig-1")
    assert len(lookups) == 1
    assert lookups[0].headers["authorization"] == "Bearer long-token"
    assert "access_token" not in lookups[0].url.params


def test_app_url_encodes_params(manager) -> None:
    assert manager.app_url("/login", error="unauthenticated") == "http://testserver/login?error=unauthenticated"
    assert manager.app_url("/accounts", message="a b&c") == "http://testserver/accounts?message=a+b%26c"
