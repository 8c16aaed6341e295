"""
Access Token Verification Tests

JWKS caching and rotation, and rejection of expired, foreign and
wrongly-addressed tokens.
"""

import httpx
import pytest

from conftest import create_access_token, create_ec_jwk, create_jwks
from identity_gateway.auth.verifier import AccessTokenVerifier, extract_bearer_token
from identity_gateway.errors import TokenVerificationError


@pytest.fixture
def verifier(settings, http_client) -> AccessTokenVerifier:
    return AccessTokenVerifier(settings, http_client)


class TestExtractBearerToken:

    @pytest.mark.parametrize("header,expected", [
        (None, None),
        ("", None),
        ("Bearer", None),
        ("Basic abc", None),
        ("Bearer abc def", None),
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
    ])
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestAccessTokenVerifier:

    @pytest.mark.asyncio
    async def test_valid_token(self, verifier):
        claims = await verifier.verify_access_token(create_access_token(realm_roles=["USER"]))

        assert claims["sub"] == "user-123"
        assert claims["realm_access"] == {"roles": ["USER"]}

    @pytest.mark.asyncio
    async def test_jwks_is_cached(self, verifier, fake_keycloak):
        await verifier.verify_access_token(create_access_token())
        await verifier.verify_access_token(create_access_token())

        assert fake_keycloak.jwks_requests == 1

    @pytest.mark.asyncio
    async def test_unknown_kid_forces_refetch(self, verifier, fake_keycloak):
        await verifier.verify_access_token(create_access_token())

        fake_keycloak.jwks = create_jwks(kid="rotated-key")
        claims = await verifier.verify_access_token(create_access_token(kid="rotated-key"))

        assert claims["sub"] == "user-123"
        assert fake_keycloak.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_kid_missing_after_refetch(self, verifier):
        with pytest.raises(TokenVerificationError):
            await verifier.verify_access_token(create_access_token(kid="nobody"))

    @pytest.mark.asyncio
    async def test_non_rsa_key_is_rejected(self, verifier, fake_keycloak):
        fake_keycloak.jwks["keys"].append(create_ec_jwk(kid="ec-key"))

        with pytest.raises(TokenVerificationError, match="construct public key"):
            await verifier.verify_access_token(create_access_token(kid="ec-key"))

    @pytest.mark.asyncio
    async def test_expired_token(self, verifier):
        with pytest.raises(TokenVerificationError, match="expired"):
            await verifier.verify_access_token(create_access_token(exp_delta_minutes=-10))

    @pytest.mark.asyncio
    async def test_wrong_issuer(self, verifier):
        with pytest.raises(TokenVerificationError):
            await verifier.verify_access_token(
                create_access_token(issuer="http://keycloak.test/realms/other")
            )

    @pytest.mark.asyncio
    async def test_audience_checked_when_configured(self, settings_factory, http_client):
        verifier = AccessTokenVerifier(settings_factory(KEYCLOAK_AUDIENCE="gateway-api"), http_client)

        accepted = await verifier.verify_access_token(create_access_token(aud="gateway-api"))
        assert accepted["aud"] == "gateway-api"

        with pytest.raises(TokenVerificationError):
            await verifier.verify_access_token(create_access_token(aud="account"))

    @pytest.mark.asyncio
    async def test_jwks_endpoint_failure(self, settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        verifier = AccessTokenVerifier(
            settings, httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        with pytest.raises(TokenVerificationError):
            await verifier.verify_access_token(create_access_token())
