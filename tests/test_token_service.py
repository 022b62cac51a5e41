"""Tests for bearer token issue/verify."""

import pytest

from sketchdb.src.exceptions import AuthenticationError
from sketchdb.web_app.token_service import TokenService


class TestTokenService:

    def test_round_trip_user_id(self, tokens):
        assert tokens.verify(tokens.issue(42)) == 42

    @pytest.mark.parametrize('token, reason', [
        (None, 'auth-required'),
        ('', 'auth-required'),
        ('garbage', 'invalid'),
    ])
    def test_rejections(self, tokens, token, reason):
        with pytest.raises(AuthenticationError) as excinfo:
            tokens.verify(token)
        assert excinfo.value.reason == reason

    def test_expired_is_distinguished_from_invalid(self, tokens, clock):
        token = tokens.issue(1)
        clock.advance(3600)
        assert tokens.verify(token) == 1
        clock.advance(1)
        with pytest.raises(AuthenticationError) as excinfo:
            tokens.verify(token)
        assert excinfo.value.to_dict() == {
            'type': 'auth-failed', 'reason': 'expired', 'message': 'Token expired',
        }

    def test_token_from_other_secret_is_invalid(self, tokens, clock):
        other = TokenService('another-secret', ttl_seconds=3600, clock=clock)
        with pytest.raises(AuthenticationError) as excinfo:
            tokens.verify(other.issue(1))
        assert excinfo.value.reason == 'invalid'
