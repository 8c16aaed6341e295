"""
Token Exchange Client Tests

Request shape for both grants and the mapping of every upstream failure to
its lifecycle error category.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from conftest import TOKEN_URL
from identity_gateway.auth.token_client import TokenExchangeClient, parse_token_pair
from identity_gateway.errors import (
    ErrorKind,
    MalformedUpstreamResponse,
    UpstreamAuthError,
    UpstreamUnavailable,
)


VALID_BODY = {
    "access_token": "access",
    "refresh_token": "refresh",
    "expires_in": 300,
    "token_type": "Bearer",
}


def client_for(settings, handler) -> TokenExchangeClient:
    return TokenExchangeClient(settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestRequests:

    @pytest.mark.asyncio
    async def test_refresh_posts_form_to_token_endpoint(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["content-type"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json=VALID_BODY)

        pair = await client_for(settings, handler).refresh("refresh-old")

        assert seen["url"] == TOKEN_URL
        assert seen["content_type"] == "application/x-www-form-urlencoded"
        assert seen["form"] == {
            "grant_type": ["refresh_token"],
            "client_id": ["gateway"],
            "client_secret": ["gateway-secret"],
            "refresh_token": ["refresh-old"],
        }
        assert pair.refresh_token == "refresh"
        assert pair.expires_in == 300

    @pytest.mark.asyncio
    async def test_code_exchange_sends_redirect_uri(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json=VALID_BODY)

        await client_for(settings, handler).exchange_authorization_code("the-code")

        assert seen["form"]["grant_type"] == ["authorization_code"]
        assert seen["form"]["code"] == ["the-code"]
        assert seen["form"]["redirect_uri"] == [settings.KEYCLOAK_REDIRECT_URI]


class TestFailures:

    @pytest.mark.asyncio
    async def test_rejection_is_upstream_auth_error(self, settings):
        def handler(request):
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Token is not active"},
            )

        with pytest.raises(UpstreamAuthError) as exc_info:
            await client_for(settings, handler).refresh("r")

        error = exc_info.value
        assert error.kind is ErrorKind.UPSTREAM_AUTH
        assert error.status_code == 400
        assert error.upstream_error == "invalid_grant"
        assert "Token is not active" in error.body
        assert "Token is not active" not in str(error)

    @pytest.mark.asyncio
    async def test_server_error_is_upstream_auth_error(self, settings):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(UpstreamAuthError) as exc_info:
            await client_for(settings, handler).refresh("r")

        assert exc_info.value.upstream_error == "unknown"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exception", [
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        httpx.ConnectTimeout("slow"),
    ])
    async def test_network_failures_are_upstream_unavailable(self, settings, exception):
        def handler(request):
            raise exception

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await client_for(settings, handler).refresh("r")

        assert exc_info.value.kind is ErrorKind.UPSTREAM_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_non_json_success_is_malformed(self, settings):
        def handler(request):
            return httpx.Response(200, text="<html></html>")

        with pytest.raises(MalformedUpstreamResponse):
            await client_for(settings, handler).refresh("r")


class TestParseTokenPair:

    def test_valid_body(self):
        pair = parse_token_pair(dict(VALID_BODY, token_type="bearer"))

        assert pair.access_token == "access"
        assert pair.token_type == "Bearer"

    def test_extra_fields_are_ignored(self):
        pair = parse_token_pair(dict(VALID_BODY, refresh_expires_in=1800, scope="openid"))

        assert pair.expires_in == 300

    @pytest.mark.parametrize("missing", ["access_token", "refresh_token", "expires_in", "token_type"])
    def test_missing_field(self, missing):
        body = dict(VALID_BODY)
        del body[missing]

        with pytest.raises(MalformedUpstreamResponse):
            parse_token_pair(body)

    @pytest.mark.parametrize("field,value", [
        ("access_token", ""),
        ("refresh_token", None),
        ("access_token", 123),
        ("expires_in", "300"),
        ("expires_in", 0),
        ("expires_in", -5),
        ("expires_in", True),
        ("expires_in", 1.5),
        ("token_type", "mac"),
    ])
    def test_invalid_field(self, field, value):
        with pytest.raises(MalformedUpstreamResponse):
            parse_token_pair(dict(VALID_BODY, **{field: value}))

    @pytest.mark.parametrize("body", [None, [], "token", 42])
    def test_non_object_body(self, body):
        with pytest.raises(MalformedUpstreamResponse):
            parse_token_pair(body)

    def test_repr_hides_tokens(self):
        pair = parse_token_pair(VALID_BODY)

        assert "'access'" not in repr(pair)
        assert "'refresh'" not in repr(pair)
