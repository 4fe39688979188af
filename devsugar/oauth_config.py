"""
OAuth2 client configuration and the token endpoint calls that go with it.

The token endpoint is called with the client credentials in the form body,
which is what Google and most OIDC providers accept for desktop clients.
"""

import urllib.parse
from typing import Dict, List, Optional

import requests

from . import constants
from . import json_utils
from .tokens import ReuseTokenSource, RefreshTokenSource, Token, TokenExchangeError, TokenSource
from .utils import ConfigError

__all__ = [ 'Endpoint', 'OAuthConfig', 'TokenExchangeError', 'config_from_json' ]

GOOGLE_AUTH_URL = 'https://accounts.google.com/o/oauth2/auth'
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'


class Endpoint(object):
    '''The authorization and token URLs of an OAuth2 provider.'''

    def __init__(self, auth_url: str, token_url: str):
        self.auth_url = auth_url
        self.token_url = token_url

    def __repr__(self):
        return 'Endpoint(auth_url=%r, token_url=%r)' % (self.auth_url, self.token_url)


class OAuthConfig(object):
    '''OAuth2 client configuration for the authorization code grant.'''

    def __init__(self, client_id: str, client_secret: str, endpoint: Endpoint, redirect_url: str = '',
                 scopes: Optional[List[str]] = None, session: Optional[requests.Session] = None):
        """
        Args:
            client_id: OAuth client ID.
            client_secret: OAuth client secret. Desktop clients treat it as public.
            endpoint: provider endpoints.
            redirect_url: where the provider sends the browser back with the code.
            scopes: scopes to request.
            session: requests session used to call the token endpoint.
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.endpoint = endpoint
        self.redirect_url = redirect_url
        self.scopes = list(scopes or [])
        self._session = session

    def copy(self, **changes) -> 'OAuthConfig':
        values = {
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'endpoint': self.endpoint,
            'redirect_url': self.redirect_url,
            'scopes': self.scopes,
            'session': self._session,
        }
        values.update(changes)
        return OAuthConfig(**values)

    def auth_code_url(self, state: str, **params) -> str:
        """
        Build the URL of the provider's consent page.

        Args:
            state: opaque anti-forgery value echoed back on the callback.
            params: extra query parameters, e.g. nonce or access_type.
        """
        query = {
            'response_type': 'code',
            'client_id': self.client_id,
        }
        if self.redirect_url:
            query['redirect_uri'] = self.redirect_url
        if self.scopes:
            query['scope'] = ' '.join(self.scopes)
        query['state'] = state
        query.update({k: v for k, v in params.items() if v is not None})

        separator = '&' if '?' in self.endpoint.auth_url else '?'
        return self.endpoint.auth_url + separator + urllib.parse.urlencode(query)

    def exchange(self, code: str) -> Token:
        """
        Exchange an authorization code for a token.

        Raises:
            TokenExchangeError: if the token endpoint can't be reached or rejects the code.
        """
        if not code:
            raise TokenExchangeError('authorization code is empty', code=400)
        payload = {
            'grant_type': 'authorization_code',
            'code': code,
        }
        if self.redirect_url:
            payload['redirect_uri'] = self.redirect_url
        return self._retrieve_token(payload)

    def refresh(self, refresh_token: str) -> Token:
        """Exchange a refresh token for a new token."""
        payload = {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        }
        return self._retrieve_token(payload)

    def token_source(self, token: Token) -> TokenSource:
        """Return a token source that starts with token and refreshes it when it expires."""
        return ReuseTokenSource(token, RefreshTokenSource(self, token.refresh_token))

    def _post(self, url: str, data: Dict[str, str]) -> requests.Response:
        poster = self._session if self._session is not None else requests
        return poster.post(
            url,
            data=data,
            headers={'Content-Type': 'application/x-www-form-urlencoded', 'Accept': 'application/json'},
            timeout=constants.HTTP_TIMEOUT,
        )

    def _retrieve_token(self, payload: Dict[str, str]) -> Token:
        payload = dict(payload)
        payload['client_id'] = self.client_id
        if self.client_secret:
            payload['client_secret'] = self.client_secret

        try:
            response = self._post(self.endpoint.token_url, payload)
        except requests.exceptions.RequestException as e:
            raise TokenExchangeError('Failed to reach token endpoint %s: %s' % (self.endpoint.token_url, e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            message = data.get('error_description') or data.get('error') or response.text or 'Unknown error'
            raise TokenExchangeError('oauth2: cannot fetch token: %s; %s' % (response.status_code, message),
                                     code=response.status_code)

        if not isinstance(data, dict) or not data.get('access_token'):
            raise TokenExchangeError('oauth2: server response missing access_token')

        return Token.from_response(data)


def config_from_json(data, scopes: Optional[List[str]] = None) -> OAuthConfig:
    """
    Parse an OAuth client file as downloaded from the Google API console.

    The file holds a single "installed" (desktop) or "web" entry. The first
    registered redirect URI becomes the config's redirect URL.

    Args:
        data: file contents, str or bytes.
        scopes: scopes to request.

    Raises:
        ConfigError: if the contents aren't a usable client file.
    """
    try:
        parsed = json_utils.loads(data)
    except json_utils.JSONDecodeError as e:
        raise ConfigError('Unable to parse client secret file to config: %s' % (e,)) from e

    if not isinstance(parsed, dict):
        raise ConfigError('Unable to parse client secret file to config: expected a JSON object')

    entry = parsed.get('installed') or parsed.get('web')
    if not isinstance(entry, dict):
        raise ConfigError('Unable to parse client secret file to config: missing "installed" or "web" entry')

    client_id = entry.get('client_id')
    if not client_id:
        raise ConfigError('Unable to parse client secret file to config: missing client_id')

    redirect_uris = entry.get('redirect_uris') or []
    return OAuthConfig(
        client_id=client_id,
        client_secret=entry.get('client_secret', ''),
        endpoint=Endpoint(entry.get('auth_uri') or GOOGLE_AUTH_URL, entry.get('token_uri') or GOOGLE_TOKEN_URL),
        redirect_url=redirect_uris[0] if redirect_uris else '',
        scopes=scopes,
    )
