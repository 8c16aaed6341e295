"""
Shared fixtures for identity gateway tests.

FakeKeycloak stands in for the realm: it serves the token endpoint (code
exchange, refresh rotation and client credentials), the JWKS endpoint and
the slice of the admin API used by the password reset flow. It is plugged
into the gateway through httpx.MockTransport, so every outbound call goes
through the real httpx client code.
"""

import os
from datetime import datetime, timedelta, timezone
from http.cookies import SimpleCookie
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

# identity_gateway.main builds a module-level app from the environment
os.environ.setdefault("KEYCLOAK_URL", "http://keycloak.test")
os.environ.setdefault("KEYCLOAK_REALM", "test-realm")
os.environ.setdefault("KEYCLOAK_CLIENT_ID", "gateway")
os.environ.setdefault("KEYCLOAK_CLIENT_SECRET", "gateway-secret")
os.environ.setdefault("KEYCLOAK_REDIRECT_URI", "http://gateway.test/api/auth/callback")
os.environ.setdefault("STATE_SECRET", "test-state-secret-0123456789abcdef0123")

import httpx
import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from fastapi.testclient import TestClient
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from identity_gateway.config import Settings
from identity_gateway.main import create_app
from identity_gateway.reset.notifier import ResetNotifier
from identity_gateway.reset.store import InMemoryResetTokenStore


KEYCLOAK_URL = "http://keycloak.test"
REALM = "test-realm"
ISSUER = f"{KEYCLOAK_URL}/realms/{REALM}"
TOKEN_URL = f"{ISSUER}/protocol/openid-connect/token"
CERTS_URL = f"{ISSUER}/protocol/openid-connect/certs"
ADMIN_URL = f"{KEYCLOAK_URL}/admin/realms/{REALM}"
FRONTEND_URL = "http://app.test/"
VALID_CODE = "valid-code"
TEST_KID = "test-key-2024"


# ============================================================================
# Signing keys
# ============================================================================

TEST_PRIVATE_KEY = rsa.generate_private_key(
    public_exponent=65537,
    key_size=2048,
    backend=default_backend()
)


def create_jwks(kid: str = TEST_KID) -> Dict[str, Any]:
    jwk = RSAAlgorithm.to_jwk(TEST_PRIVATE_KEY.public_key(), as_dict=True)
    jwk["kid"] = kid
    jwk["use"] = "sig"
    jwk["alg"] = "RS256"
    return {"keys": [jwk]}


def create_ec_jwk(kid: str) -> Dict[str, Any]:
    """A P-256 key published in the realm JWKS alongside the RSA key."""
    jwk = ECAlgorithm.to_jwk(ec.generate_private_key(ec.SECP256R1()).public_key(), as_dict=True)
    jwk["kid"] = kid
    jwk["use"] = "sig"
    jwk["alg"] = "ES256"
    return jwk


def create_access_token(
    sub: Optional[str] = "user-123",
    realm_roles: Optional[List[str]] = None,
    client_roles: Optional[Dict[str, List[str]]] = None,
    issuer: str = ISSUER,
    kid: str = TEST_KID,
    exp_delta_minutes: int = 5,
    **extra: Any,
) -> str:
    """Mint an RS256 access token shaped like Keycloak's."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "iss": issuer,
        "iat": now,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "typ": "Bearer",
        "azp": "gateway",
    }
    if sub is not None:
        payload["sub"] = sub
    if realm_roles is not None:
        payload["realm_access"] = {"roles": realm_roles}
    if client_roles is not None:
        payload["resource_access"] = {
            client: {"roles": roles} for client, roles in client_roles.items()
        }
    payload.update(extra)

    return jwt.encode(payload, TEST_PRIVATE_KEY, algorithm="RS256", headers={"kid": kid})


# ============================================================================
# Fake Keycloak
# ============================================================================

class FakeKeycloak:
    """
    In-memory Keycloak realm.

    Refresh tokens rotate: each successful refresh invalidates the token it
    consumed, so replaying an old one gets ``invalid_grant``.

    ``mode`` forces token endpoint failures: "unavailable", "malformed",
    "non_json" or None.
    """

    def __init__(self):
        self.mode: Optional[str] = None
        self.issued = 0
        self.active_refresh_tokens = set()
        self.token_requests: List[Dict[str, str]] = []
        self.jwks_requests = 0
        self.jwks = create_jwks()
        self.users = {"alice@example.com": "user-alice"}
        self.passwords: Dict[str, str] = {}

    # -- token endpoint ------------------------------------------------------

    def _issue_pair(self) -> Dict[str, Any]:
        self.issued += 1
        refresh_token = f"refresh-{self.issued}"
        self.active_refresh_tokens.add(refresh_token)
        return {
            "access_token": f"access-{self.issued}",
            "refresh_token": refresh_token,
            "expires_in": 300,
            "refresh_expires_in": 1800,
            "token_type": "Bearer",
        }

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_requests.append(form)

        if self.mode == "unavailable":
            raise httpx.ConnectError("connection refused", request=request)
        if self.mode == "malformed":
            return httpx.Response(200, json={"access_token": "only-access"})
        if self.mode == "non_json":
            return httpx.Response(200, text="<html>gateway error</html>")

        if form.get("client_secret") != "gateway-secret":
            return httpx.Response(401, json={"error": "unauthorized_client"})

        grant_type = form.get("grant_type")
        if grant_type == "authorization_code":
            if form.get("code") != VALID_CODE:
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Code not valid"},
                )
            return httpx.Response(200, json=self._issue_pair())

        if grant_type == "refresh_token":
            presented = form.get("refresh_token")
            if presented not in self.active_refresh_tokens:
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Token is not active"},
                )
            self.active_refresh_tokens.discard(presented)
            return httpx.Response(200, json=self._issue_pair())

        if grant_type == "client_credentials":
            return httpx.Response(
                200,
                json={"access_token": "admin-token", "expires_in": 60, "token_type": "Bearer"},
            )

        return httpx.Response(400, json={"error": "unsupported_grant_type"})

    # -- admin API -----------------------------------------------------------

    def _admin(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") != "Bearer admin-token":
            return httpx.Response(401)

        path = request.url.path
        if request.method == "GET" and path.endswith("/users"):
            email = request.url.params.get("email", "")
            user_id = self.users.get(email.lower())
            if user_id is None:
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{"id": user_id, "email": email}])

        if request.method == "PUT" and path.endswith("/reset-password"):
            user_id = path.split("/")[-2]
            if user_id not in self.users.values():
                return httpx.Response(404)
            self.passwords[user_id] = request.read().decode()
            return httpx.Response(204)

        return httpx.Response(404)

    # -- routing -------------------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).split("?", 1)[0]
        if url == TOKEN_URL:
            return self._token(request)
        if url == CERTS_URL:
            self.jwks_requests += 1
            return httpx.Response(200, json=self.jwks)
        if url.startswith(ADMIN_URL):
            return self._admin(request)
        return httpx.Response(404)

    @property
    def code_exchanges(self) -> int:
        return sum(1 for r in self.token_requests if r.get("grant_type") == "authorization_code")


class RecordingNotifier(ResetNotifier):
    """Keeps issued reset tokens so tests can redeem them."""

    def __init__(self):
        self.sent: List[Dict[str, str]] = []

    async def send_reset_token(self, email: str, token: str) -> None:
        self.sent.append({"email": email, "token": token})


# ============================================================================
# Helpers
# ============================================================================

def set_cookies(response: httpx.Response) -> Dict[str, Any]:
    """Parse every Set-Cookie header of a response into morsels by name."""
    cookies: Dict[str, Any] = {}
    for header in response.headers.get_list("set-cookie"):
        jar = SimpleCookie()
        jar.load(header)
        for name, morsel in jar.items():
            cookies[name] = morsel
    return cookies


def fragment_params(location: str) -> Dict[str, str]:
    _, _, fragment = location.partition("#")
    return {k: v[0] for k, v in parse_qs(fragment).items()}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings_factory():
    """Build Settings with test defaults; keyword arguments override."""
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = dict(
            KEYCLOAK_URL=KEYCLOAK_URL,
            KEYCLOAK_REALM=REALM,
            KEYCLOAK_CLIENT_ID="gateway",
            KEYCLOAK_CLIENT_SECRET="gateway-secret",
            KEYCLOAK_REDIRECT_URI="http://gateway.test/api/auth/callback",
            FRONTEND_CALLBACK_URL=FRONTEND_URL,
            POST_LOGOUT_REDIRECT_URI="http://app.test/signed-out",
            STATE_SECRET="test-state-secret-0123456789abcdef0123",
            COOKIE_DOMAIN=None,
            COOKIE_SECURE=False,
        )
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def settings(settings_factory) -> Settings:
    return settings_factory()


@pytest.fixture
def fake_keycloak() -> FakeKeycloak:
    return FakeKeycloak()


@pytest.fixture
def http_client(fake_keycloak) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_keycloak))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def app_factory(settings_factory, fake_keycloak, notifier):
    """Build a gateway app wired to the fake realm."""
    def _make(**overrides: Any):
        return create_app(
            settings=settings_factory(**overrides),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_keycloak)),
            reset_store=InMemoryResetTokenStore(),
            notifier=notifier,
        )
    return _make


@pytest.fixture
def client(app_factory) -> TestClient:
    return TestClient(app_factory(), follow_redirects=False)
