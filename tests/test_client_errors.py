"""Tests for the client error taxonomy."""

import pytest

from trello_sync.core.errors import (
    AuthError,
    ClientError,
    ConnectionLostError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TrelloSyncError,
    error_for_status,
)


@pytest.mark.parametrize(
    "status, expected",
    [
        (401, AuthError),
        (403, AuthError),
        (404, NotFoundError),
        (429, RateLimitError),
        (500, ServerError),
        (503, ServerError),
        (400, ClientError),
        (422, ClientError),
    ],
)
def test_error_for_status(status, expected):
    error = error_for_status(status, "cards/abc")
    assert type(error) is expected
    assert isinstance(error, TrelloSyncError)
    assert error.path == "cards/abc"


def test_status_is_kept():
    assert error_for_status(503, "boards/x").status == 503
    assert error_for_status(429, "boards/x").status == 429


def test_body_detail_is_truncated():
    error = error_for_status(400, "cards", "x" * 500)
    assert str(error).count("x") == 200


def test_auth_message_names_credentials():
    assert "TRELLO_TOKEN" in str(error_for_status(401, "members/me"))


class TestFlags:
    def test_retryable(self):
        assert RateLimitError.retryable
        assert ServerError.retryable
        assert ConnectionLostError.retryable
        assert not AuthError.retryable
        assert not NotFoundError.retryable
        assert not ClientError.retryable

    def test_fatal(self):
        assert AuthError.fatal
        assert ConnectionLostError.fatal
        assert not ClientError.fatal
        assert not NotFoundError.fatal
        assert not ServerError.fatal

    def test_rate_limit_keeps_retry_after(self):
        error = RateLimitError("slow down", retry_after=2.5)
        assert error.retry_after == 2.5
        assert error.status == 429
