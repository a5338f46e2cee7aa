try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, urlparse

import httpx
import pytest

from weatherify.clients.spotify_auth import (
    IdentityLookupError,
    OAuthTokenExchangeError,
    SpotifyOAuthClient,
    SpotifyUserProfile,
    TokenGrant,
)
from weatherify.core.config import OAuthSettings, SpotifySettings
from weatherify.services.spotify_tokens import LoginFailure, SpotifyTokenService
from weatherify.services.token_cipher import TokenCipherService

pytestmark = pytest.mark.anyio("asyncio")

SESSION = "session-abc"
PARTITION = f"session#{SESSION}"


class InMemoryStore:
    def __init__(self) -> None:
        self._storage: dict[tuple[str, str], dict] = {}

    def put_item(self, item: dict) -> None:
        self._storage[(item["pk"], item["sk"])] = dict(item)

    def get_item(self, *, partition_key: str, sort_key: str) -> dict | None:
        item = self._storage.get((partition_key, sort_key))
        return dict(item) if item else None

    def pop_item(self, *, partition_key: str, sort_key: str) -> dict | None:
        return self._storage.pop((partition_key, sort_key), None)

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        self._storage.pop((partition_key, sort_key), None)


class FakeSpotifyClient:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.codes: list[str] = []
        self.refresh_calls: list[str] = []
        self.exchange_error: Exception | None = None
        self.identity_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.refreshed = TokenGrant("refreshed-access", None, 3600)
        self.refresh_delay = 0.0

    def build_authorization_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://accounts.example/authorize?state={state}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        self.codes.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return TokenGrant("access-1", "refresh-1", 3600)

    async def get_current_user(self, access_token: str) -> SpotifyUserProfile:
        if self.identity_error:
            raise self.identity_error
        return SpotifyUserProfile(id="spotify-user", display_name="Sunny Listener")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        return self.refreshed


@pytest.fixture()
def cipher() -> TokenCipherService:
    return TokenCipherService(secret="secret-key")


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def spotify() -> FakeSpotifyClient:
    return FakeSpotifyClient()


@pytest.fixture()
def service(store, spotify, cipher) -> SpotifyTokenService:
    return SpotifyTokenService(
        store=store,
        oauth_client=spotify,
        oauth_settings=OAuthSettings(),
        token_cipher=cipher,
    )


def _seed_credentials(
    store: InMemoryStore,
    cipher: TokenCipherService,
    *,
    expires_in: timedelta,
    access_token: str = "T1",
    refresh_token: str = "R1",
) -> None:
    now = datetime.now(timezone.utc)
    store.put_item(
        {
            "pk": PARTITION,
            "sk": SpotifyTokenService.CREDENTIALS_SORT_KEY,
            "access_token_encrypted": cipher.encrypt(access_token),
            "refresh_token_encrypted": cipher.encrypt(refresh_token),
            "expires_at": (now + expires_in).isoformat(),
            "user_id": "spotify-user",
            "user_display_name": "Sunny Listener",
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
    )


def _stored_credentials(store: InMemoryStore) -> dict | None:
    return store.get_item(
        partition_key=PARTITION, sort_key=SpotifyTokenService.CREDENTIALS_SORT_KEY
    )


def _stored_state(store: InMemoryStore) -> dict | None:
    return store.get_item(partition_key=PARTITION, sort_key=SpotifyTokenService.STATE_SORT_KEY)


async def test_begin_login_stores_urlsafe_state_and_returns_consent_url(service, store, spotify) -> None:
    url = service.begin_login(SESSION)

    state = spotify.states[-1]
    assert url == f"https://accounts.example/authorize?state={state}"
    assert len(state) >= 22  # 16 random bytes, base64url without padding
    assert set(state) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")
    assert _stored_state(store)["state"] == state


async def test_begin_login_issues_a_new_state_each_time(service, spotify) -> None:
    service.begin_login(SESSION)
    service.begin_login(SESSION)

    assert spotify.states[0] != spotify.states[1]


async def test_complete_login_stores_full_record_and_consumes_state(service, store, spotify, cipher) -> None:
    service.begin_login(SESSION)
    before = datetime.now(timezone.utc)

    result = await service.complete_login(SESSION, "auth-code", spotify.states[-1])

    assert result.success
    assert result.user_id == "spotify-user"
    assert spotify.codes == ["auth-code"]
    assert service.is_logged_in(SESSION)
    assert _stored_state(store) is None

    stored = _stored_credentials(store)
    assert cipher.decrypt(stored["access_token_encrypted"]) == "access-1"
    assert cipher.decrypt(stored["refresh_token_encrypted"]) == "refresh-1"
    assert stored["access_token_encrypted"] != "access-1"
    expires_at = datetime.fromisoformat(stored["expires_at"])
    assert before + timedelta(seconds=3600) <= expires_at <= datetime.now(timezone.utc) + timedelta(seconds=3600)

    profile = service.get_profile(SESSION)
    assert profile.user_display_name == "Sunny Listener"


async def test_complete_login_rejects_mismatched_state_without_touching_record(
    service, store, spotify, cipher
) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(hours=1))
    original = _stored_credentials(store)
    service.begin_login(SESSION)

    result = await service.complete_login(SESSION, "auth-code", "forged-state")

    assert not result.success
    assert result.failure is LoginFailure.STATE_MISMATCH
    assert spotify.codes == []
    assert _stored_credentials(store) == original
    assert _stored_state(store) is None


async def test_complete_login_without_pending_state_is_a_mismatch(service, store, spotify) -> None:
    result = await service.complete_login(SESSION, "auth-code", "any-state")

    assert result.failure is LoginFailure.STATE_MISMATCH
    assert _stored_credentials(store) is None
    assert not service.is_logged_in(SESSION)


async def test_complete_login_replay_of_used_state_fails(service, spotify) -> None:
    service.begin_login(SESSION)
    state = spotify.states[-1]

    first = await service.complete_login(SESSION, "code-1", state)
    second = await service.complete_login(SESSION, "code-2", state)

    assert first.success
    assert second.failure is LoginFailure.STATE_MISMATCH
    assert spotify.codes == ["code-1"]


async def test_complete_login_rejects_expired_state(service, store, spotify) -> None:
    service.begin_login(SESSION)
    state_item = _stored_state(store)
    state_item["issued_at"] = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    store.put_item(state_item)

    result = await service.complete_login(SESSION, "auth-code", state_item["state"])

    assert result.failure is LoginFailure.STATE_MISMATCH
    assert spotify.codes == []


async def test_complete_login_exchange_failure_leaves_no_record(service, store, spotify) -> None:
    spotify.exchange_error = OAuthTokenExchangeError("invalid_grant")
    service.begin_login(SESSION)

    result = await service.complete_login(SESSION, "auth-code", spotify.states[-1])

    assert result.failure is LoginFailure.EXCHANGE_FAILED
    assert _stored_credentials(store) is None
    assert _stored_state(store) is None
    assert not service.is_logged_in(SESSION)


async def test_complete_login_identity_failure_drops_previous_record(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(hours=1))
    spotify.identity_error = IdentityLookupError("503")
    service.begin_login(SESSION)

    result = await service.complete_login(SESSION, "auth-code", spotify.states[-1])

    assert result.failure is LoginFailure.IDENTITY_LOOKUP_FAILED
    assert _stored_credentials(store) is None
    assert not service.is_logged_in(SESSION)


async def test_complete_login_without_code_counts_as_exchange_failure(service, spotify) -> None:
    service.begin_login(SESSION)

    result = await service.complete_login(SESSION, None, spotify.states[-1])

    assert result.failure is LoginFailure.EXCHANGE_FAILED
    assert spotify.codes == []


async def test_get_valid_access_token_returns_none_without_record(service, spotify) -> None:
    assert await service.get_valid_access_token(SESSION) is None
    assert spotify.refresh_calls == []


async def test_fresh_token_is_returned_without_refresh(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=10))

    token = await service.get_valid_access_token(SESSION)

    assert token == "T1"
    assert spotify.refresh_calls == []


async def test_token_inside_refresh_window_is_refreshed_once(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=2))

    token = await service.get_valid_access_token(SESSION)

    assert token == "refreshed-access"
    assert spotify.refresh_calls == ["R1"]
    stored = _stored_credentials(store)
    assert cipher.decrypt(stored["access_token_encrypted"]) == "refreshed-access"
    assert cipher.decrypt(stored["refresh_token_encrypted"]) == "R1"
    assert datetime.fromisoformat(stored["expires_at"]) > datetime.now(timezone.utc) + timedelta(minutes=55)

    assert await service.get_valid_access_token(SESSION) == "refreshed-access"
    assert spotify.refresh_calls == ["R1"]


async def test_already_expired_token_is_refreshed(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=-30))

    assert await service.get_valid_access_token(SESSION) == "refreshed-access"
    assert spotify.refresh_calls == ["R1"]


async def test_rotated_refresh_token_replaces_stored_one(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=1))
    spotify.refreshed = TokenGrant("T2", "R2", 3600)

    assert await service.get_valid_access_token(SESSION) == "T2"

    stored = _stored_credentials(store)
    assert cipher.decrypt(stored["refresh_token_encrypted"]) == "R2"


async def test_refresh_failure_deletes_record(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=2))
    spotify.refresh_error = OAuthTokenExchangeError("invalid_grant")

    assert await service.get_valid_access_token(SESSION) is None

    assert spotify.refresh_calls == ["R1"]
    assert _stored_credentials(store) is None
    assert not service.is_logged_in(SESSION)
    assert await service.get_valid_access_token(SESSION) is None
    assert spotify.refresh_calls == ["R1"]


async def test_concurrent_callers_share_a_single_refresh(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=2))
    spotify.refresh_delay = 0.05

    tokens = await asyncio.gather(
        *(service.get_valid_access_token(SESSION) for _ in range(5))
    )

    assert tokens == ["refreshed-access"] * 5
    assert spotify.refresh_calls == ["R1"]


async def test_is_logged_in_ignores_expiry(service, store, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(hours=-2))

    assert service.is_logged_in(SESSION)


async def test_partial_record_counts_as_logged_out(service, store, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(hours=1))
    item = _stored_credentials(store)
    item.pop("user_id")
    store.put_item(item)

    assert not service.is_logged_in(SESSION)
    assert await service.get_valid_access_token(SESSION) is None


async def test_record_encrypted_with_other_secret_counts_as_logged_out(service, store) -> None:
    _seed_credentials(store, TokenCipherService(secret="rotated-away"), expires_in=timedelta(hours=1))

    assert not service.is_logged_in(SESSION)
    assert await service.get_valid_access_token(SESSION) is None


async def test_logout_clears_record_and_pending_state(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(hours=1))
    service.begin_login(SESSION)

    await service.logout(SESSION)

    assert not service.is_logged_in(SESSION)
    assert _stored_state(store) is None
    assert await service.get_valid_access_token(SESSION) is None


async def test_sessions_are_isolated(service, store, spotify, cipher) -> None:
    _seed_credentials(store, cipher, expires_in=timedelta(hours=1))

    assert service.is_logged_in(SESSION)
    assert not service.is_logged_in("someone-else")
    assert await service.get_valid_access_token("someone-else") is None


def _service_over_http(store, cipher, handler) -> SpotifyTokenService:
    oauth_client = SpotifyOAuthClient(
        SpotifySettings(
            SPOTIFY_CLIENT_ID="client",
            SPOTIFY_CLIENT_SECRET="secret",
            SPOTIFY_REDIRECT_URI="https://weatherify.example/api/v1/auth/spotify/callback",
        ),
        OAuthSettings(),
        transport=httpx.MockTransport(handler),
    )
    return SpotifyTokenService(
        store=store,
        oauth_client=oauth_client,
        oauth_settings=OAuthSettings(),
        token_cipher=cipher,
    )


@pytest.mark.parametrize(
    "body",
    [
        {"access_token": "T2", "expires_in": "soon"},
        ["not", "a", "dict"],
    ],
)
async def test_malformed_refresh_response_deletes_record(store, cipher, body) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    service = _service_over_http(store, cipher, handler)
    _seed_credentials(store, cipher, expires_in=timedelta(minutes=2))

    assert await service.get_valid_access_token(SESSION) is None
    assert _stored_credentials(store) is None
    assert service.is_logged_in(SESSION) is False


async def test_malformed_exchange_response_is_an_exchange_failure(store, cipher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["x"])

    service = _service_over_http(store, cipher, handler)
    url = service.begin_login(SESSION)
    state = dict(parse_qsl(urlparse(url).query))["state"]

    result = await service.complete_login(SESSION, "auth-code", state)

    assert result.success is False
    assert result.failure is LoginFailure.EXCHANGE_FAILED
    assert _stored_credentials(store) is None
