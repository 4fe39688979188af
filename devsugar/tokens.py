"""
OAuth2 tokens and token sources.

A token source hands out a valid token on every call to token(), refreshing it
when needed. Token sources are shared between the thread that completed a
login flow and whatever code later calls APIs, so refreshing is serialized.
"""

import datetime
import threading
from typing import Any, Dict, Optional

from . import constants
from .utils import DevSugarException

ID_TOKEN_FIELD = 'id_token'


class TokenExchangeError ( DevSugarException ):
    '''The token endpoint refused or failed to issue a token.'''
    pass


# Fields of a token endpoint response that map onto Token attributes.
_STANDARD_FIELDS = ( 'access_token', 'token_type', 'refresh_token', 'expires_in' )


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _format_expiry(expiry: Optional[datetime.datetime]) -> Optional[str]:
    if expiry is None:
        return None
    return expiry.astimezone(datetime.timezone.utc).isoformat()


def _parse_expiry(value) -> Optional[datetime.datetime]:
    if value in (None, ''):
        return None
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    # fromisoformat() doesn't accept a trailing Z before Python 3.11.
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    expiry = datetime.datetime.fromisoformat(value)
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=datetime.timezone.utc)
    return expiry


class Token(object):
    '''An OAuth2 token as returned by a token endpoint.'''

    def __init__(self, access_token: str, token_type: str = 'Bearer', refresh_token: Optional[str] = None,
                 expiry: Optional[datetime.datetime] = None, extra: Optional[Dict[str, Any]] = None):
        self.access_token = access_token
        self.token_type = token_type or 'Bearer'
        self.refresh_token = refresh_token
        self.expiry = expiry
        self.extra = dict(extra or {})

    def __repr__(self):
        return 'Token(token_type=%r, expiry=%r, has_refresh_token=%r)' % (
            self.token_type, _format_expiry(self.expiry), bool(self.refresh_token))

    def extra_value(self, name: str) -> Any:
        return self.extra.get(name)

    def expired(self, now: Optional[datetime.datetime] = None) -> bool:
        """A token with no expiry never expires."""
        if self.expiry is None:
            return False
        now = now or _utcnow()
        return self.expiry - datetime.timedelta(seconds=constants.TOKEN_EXPIRY_DELTA) <= now

    def valid(self, now: Optional[datetime.datetime] = None) -> bool:
        return bool(self.access_token) and not self.expired(now)

    def authorization_header(self) -> str:
        return '%s %s' % (self.token_type, self.access_token)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'access_token': self.access_token,
            'token_type': self.token_type,
        }
        if self.refresh_token:
            data['refresh_token'] = self.refresh_token
        if self.expiry is not None:
            data['expiry'] = _format_expiry(self.expiry)
        if self.extra_value(ID_TOKEN_FIELD):
            data[ID_TOKEN_FIELD] = self.extra_value(ID_TOKEN_FIELD)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Token':
        extra = {}
        if data.get(ID_TOKEN_FIELD):
            extra[ID_TOKEN_FIELD] = data[ID_TOKEN_FIELD]
        return cls(
            access_token=data.get('access_token', ''),
            token_type=data.get('token_type', 'Bearer'),
            refresh_token=data.get('refresh_token') or None,
            expiry=_parse_expiry(data.get('expiry')),
            extra=extra,
        )

    @classmethod
    def from_response(cls, data: Dict[str, Any], now: Optional[datetime.datetime] = None) -> 'Token':
        """
        Build a token from a token endpoint JSON response.

        expires_in is converted to an absolute expiry; unknown fields such as
        id_token and scope are kept in extra.
        """
        now = now or _utcnow()
        expiry = None
        expires_in = data.get('expires_in')
        if expires_in not in (None, '', 0, '0'):
            expiry = now + datetime.timedelta(seconds=int(expires_in))
        extra = {k: v for k, v in data.items() if k not in _STANDARD_FIELDS}
        return cls(
            access_token=data.get('access_token', ''),
            token_type=data.get('token_type', 'Bearer'),
            refresh_token=data.get('refresh_token') or None,
            expiry=expiry,
            extra=extra,
        )


class TokenSource(object):
    '''Anything that can hand out a token.'''

    def token(self) -> Token:
        raise NotImplementedError()


class StaticTokenSource(TokenSource):
    '''Always returns the same token, never refreshes it.'''

    def __init__(self, token: Token):
        self._token = token

    def token(self) -> Token:
        return self._token


class ReuseTokenSource(TokenSource):
    '''
    Returns the current token while it is valid and asks the refresher for a
    new one otherwise.
    '''

    def __init__(self, token: Optional[Token], refresher: TokenSource):
        self._token = token
        self._refresher = refresher
        self._lock = threading.Lock()

    def token(self) -> Token:
        with self._lock:
            if self._token is not None and self._token.valid():
                return self._token
            self._token = self._refresher.token()
            return self._token


class RefreshTokenSource(TokenSource):
    '''Exchanges a refresh token for a new token on every call.'''

    def __init__(self, config, refresh_token: Optional[str]):
        self._config = config
        self._refresh_token = refresh_token

    def token(self) -> Token:
        if not self._refresh_token:
            raise TokenExchangeError('token expired and refresh token is not set')
        tok = self._config.refresh(self._refresh_token)
        if tok.refresh_token:
            self._refresh_token = tok.refresh_token
        else:
            # Providers commonly omit the refresh token from refresh responses.
            tok.refresh_token = self._refresh_token
        return tok
