"""
Callback State Binding Tests
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from identity_gateway.auth.state import STATE_COOKIE_NAME, STATE_JWT_AUDIENCE, StateBinder
from identity_gateway.errors import ErrorKind, MalformedCallbackState


@pytest.fixture
def binder(settings) -> StateBinder:
    return StateBinder(settings)


class TestStateBinder:

    def test_bind_and_verify(self, binder):
        attempt = binder.new_attempt(return_to="http://app.test/page")
        record = binder.bind(attempt)

        verified = binder.verify(attempt.state, record.value)

        assert verified.state == attempt.state
        assert verified.return_to == "http://app.test/page"

    def test_cookie_attributes(self, binder):
        record = binder.bind(binder.new_attempt())

        assert record.name == STATE_COOKIE_NAME
        assert record.path == "/api/auth/callback"
        assert record.same_site == "lax"
        assert record.http_only
        assert record.max_age == 600

    def test_clear(self, binder):
        record = binder.clear()

        assert record.is_deletion
        assert record.path == "/api/auth/callback"

    def test_attempts_are_unique(self, binder):
        assert binder.new_attempt().state != binder.new_attempt().state

    def test_mismatched_state(self, binder):
        record = binder.bind(binder.new_attempt())

        with pytest.raises(MalformedCallbackState) as exc_info:
            binder.verify("some-other-state", record.value)

        assert exc_info.value.kind is ErrorKind.MALFORMED_CALLBACK_STATE

    @pytest.mark.parametrize("state,cookie", [(None, "x"), ("", "x"), ("s", None), ("s", "")])
    def test_missing_inputs(self, binder, state, cookie):
        with pytest.raises(MalformedCallbackState):
            binder.verify(state, cookie)

    def test_cookie_signed_with_another_secret(self, binder):
        forged = jwt.encode(
            {
                "state": "s",
                "aud": STATE_JWT_AUDIENCE,
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            "another-secret-another-secret-0000",
            algorithm="HS256",
        )

        with pytest.raises(MalformedCallbackState):
            binder.verify("s", forged)

    def test_expired_cookie(self, binder, settings):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        expired = jwt.encode(
            {"state": "s", "aud": STATE_JWT_AUDIENCE, "iat": past, "exp": past + timedelta(minutes=10)},
            settings.STATE_SECRET,
            algorithm="HS256",
        )

        with pytest.raises(MalformedCallbackState):
            binder.verify("s", expired)

    def test_garbage_cookie(self, binder):
        with pytest.raises(MalformedCallbackState):
            binder.verify("s", "not-a-token")
