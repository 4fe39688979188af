import datetime
import threading
from unittest import mock

import pytest

from devsugar.tokens import (
    ReuseTokenSource,
    RefreshTokenSource,
    StaticTokenSource,
    Token,
    TokenExchangeError,
)

UTC = datetime.timezone.utc


def _now():
    return datetime.datetime(2023, 5, 1, 12, 0, 0, tzinfo=UTC)


def test_token_without_expiry_never_expires():
    tok = Token("abc")
    assert not tok.expired()
    assert tok.valid()


def test_token_expires_shortly_before_expiry():
    now = _now()
    tok = Token("abc", expiry=now + datetime.timedelta(seconds=5))
    assert tok.expired(now)
    assert not tok.valid(now)

    tok = Token("abc", expiry=now + datetime.timedelta(seconds=60))
    assert not tok.expired(now)
    assert tok.valid(now)


def test_empty_access_token_is_invalid():
    assert not Token("").valid()


def test_from_response_converts_expires_in_and_keeps_extras():
    now = _now()
    tok = Token.from_response({
        "access_token": "at",
        "token_type": "Bearer",
        "refresh_token": "rt",
        "expires_in": 3599,
        "id_token": "a.b.c",
        "scope": "openid email",
    }, now=now)

    assert tok.access_token == "at"
    assert tok.refresh_token == "rt"
    assert tok.expiry == now + datetime.timedelta(seconds=3599)
    assert tok.extra_value("id_token") == "a.b.c"
    assert tok.extra_value("scope") == "openid email"
    assert tok.extra_value("expires_in") is None


def test_cache_round_trip_preserves_fields():
    tok = Token("at", refresh_token="rt", expiry=_now(), extra={"id_token": "a.b.c", "scope": "email"})

    restored = Token.from_dict(tok.to_dict())

    assert restored.access_token == "at"
    assert restored.refresh_token == "rt"
    assert restored.expiry == _now()
    assert restored.token_type == "Bearer"
    assert restored.extra_value("id_token") == "a.b.c"


def test_from_dict_accepts_z_suffix():
    tok = Token.from_dict({"access_token": "at", "expiry": "2023-05-01T12:00:00Z"})
    assert tok.expiry == _now()


def test_authorization_header():
    assert Token("at").authorization_header() == "Bearer at"


def test_reuse_token_source_reuses_valid_token():
    refresher = mock.MagicMock()
    tok = Token("at")

    ts = ReuseTokenSource(tok, refresher)

    assert ts.token() is tok
    assert ts.token() is tok
    refresher.token.assert_not_called()


def test_reuse_token_source_refreshes_expired_token():
    refresher = mock.MagicMock()
    fresh = Token("fresh")
    refresher.token.return_value = fresh
    expired = Token("old", expiry=datetime.datetime.now(UTC) - datetime.timedelta(minutes=1))

    ts = ReuseTokenSource(expired, refresher)

    assert ts.token() is fresh
    assert ts.token() is fresh
    refresher.token.assert_called_once()


def test_reuse_token_source_refreshes_once_across_threads():
    calls = []

    class SlowRefresher(object):
        def token(self):
            calls.append(1)
            return Token("fresh")

    ts = ReuseTokenSource(None, SlowRefresher())
    threads = [threading.Thread(target=ts.token) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1


def test_refresh_token_source_without_refresh_token():
    with pytest.raises(TokenExchangeError):
        RefreshTokenSource(mock.MagicMock(), None).token()


def test_refresh_token_source_keeps_previous_refresh_token():
    config = mock.MagicMock()
    config.refresh.return_value = Token("new-at")

    tok = RefreshTokenSource(config, "rt").token()

    config.refresh.assert_called_once_with("rt")
    assert tok.access_token == "new-at"
    assert tok.refresh_token == "rt"


def test_static_token_source():
    tok = Token("at")
    assert StaticTokenSource(tok).token() is tok
