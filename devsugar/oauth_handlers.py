"""
HTTP handlers for the two halves of the OAuth2 authorization code flow.

The first half sends the browser to the provider with an anti-forgery state
(and, for OpenID Connect, a nonce) stored in cookies. The second half checks
those values when the provider redirects back and exchanges the code.

Every failure both answers the browser and raises OAuthFlowError; a flow
is never retried.
"""

import logging
from typing import Optional, Tuple

from .http_utils import HttpRequest, HttpResponse
from .oauth_config import OAuthConfig
from .oidc import IDTokenSource, IDTokenVerificationError, IDTokenVerifier
from .tokens import ID_TOKEN_FIELD, TokenExchangeError, TokenSource
from .utils import DevSugarException, rand_bytes

STATE_COOKIE = 'state'
NONCE_COOKIE = 'nonce'

# Bytes of randomness in state and nonce values.
RANDOM_BYTES = 16


class OAuthFlowError ( DevSugarException ):
    '''The login flow was aborted: forged or stale callback, provider error, bad token.'''
    pass


def _fail(response: HttpResponse, message: str, code: int):
    response.error(message, code)
    return OAuthFlowError(message, code=code)


class OAuthHandlers(object):
    '''Handlers for the plain OAuth2 flow.'''

    def __init__(self, config: OAuthConfig, log: Optional[logging.Logger] = None):
        self._config = config
        self._log = log or logging.getLogger(__name__)

    @property
    def config(self) -> OAuthConfig:
        return self._config

    def _new_random(self, response: HttpResponse) -> str:
        try:
            return rand_bytes(RANDOM_BYTES)
        except OSError as e:
            self._log.error("Failed to generate random value: %s", e)
            raise _fail(response, 'Internal error', 500) from e

    def _auth_url_params(self, request: HttpRequest, response: HttpResponse) -> dict:
        return {}

    def redirect_to_auth_url(self, request: HttpRequest, response: HttpResponse) -> str:
        """
        Send the browser to the provider's consent page.

        Args:
            request: the incoming request, used to decide whether cookies are Secure.
            response: receives the state cookie and the redirect.

        Returns:
            the generated state, so the caller can correlate the callback.

        Raises:
            OAuthFlowError: if random values can't be generated; the response is a 500.
        """
        state = self._new_random(response)
        params = self._auth_url_params(request, response)
        response.set_cookie(STATE_COOKIE, state, secure=request.tls)
        url = self._config.auth_code_url(state, **params)
        self._log.debug("Redirecting to auth URL", extra={'url': url, 'state': state})
        response.redirect(url, code=302)
        return state

    def _check_state(self, request: HttpRequest, response: HttpResponse) -> str:
        expected = request.cookie(STATE_COOKIE)
        if not expected:
            raise _fail(response, 'state not found', 400)
        state = request.query_get('state')
        if state != expected:
            raise _fail(response, 'state did not match', 400)
        return state

    def _exchange(self, request: HttpRequest, response: HttpResponse):
        error = request.query_get('error')
        if error:
            description = request.query_get('error_description') or error
            raise _fail(response, 'Authorization failed: %s' % (description,), 400)

        try:
            return self._config.exchange(request.query_get('code'))
        except TokenExchangeError as e:
            self._log.error("Failed to exchange token: %s", e)
            raise _fail(response, 'Failed to exchange token: %s' % (e,), 500) from e

    def handle_auth_code(self, request: HttpRequest, response: HttpResponse) -> Tuple[str, TokenSource]:
        """
        Handle the provider's redirect back to the callback URL.

        Returns:
            (state, token source) on success.

        Raises:
            OAuthFlowError: on a missing or mismatched state (400), a provider
                error (400) or a failed exchange (500). The response already
                carries the matching status.
        """
        state = self._check_state(request, response)
        tok = self._exchange(request, response)
        return state, self._config.token_source(tok)


class OIDCHandlers(OAuthHandlers):
    '''
    Handlers for the OpenID Connect flow.

    On top of the OAuth2 checks the callback requires an ID token that
    verifies and carries the nonce stored in the browser's cookie.
    '''

    def __init__(self, config: OAuthConfig, verifier: IDTokenVerifier, log: Optional[logging.Logger] = None):
        super().__init__(config, log=log)
        self._verifier = verifier

    @property
    def verifier(self) -> IDTokenVerifier:
        return self._verifier

    def _auth_url_params(self, request: HttpRequest, response: HttpResponse) -> dict:
        nonce = self._new_random(response)
        response.set_cookie(NONCE_COOKIE, nonce, secure=request.tls)
        return {'nonce': nonce}

    def handle_auth_code(self, request: HttpRequest, response: HttpResponse) -> Tuple[str, IDTokenSource]:
        """
        Handle the callback and return (state, IDTokenSource).

        Raises:
            OAuthFlowError: as OAuthHandlers.handle_auth_code, and also when the
                token response has no id_token (500), the ID token doesn't
                verify (500), or the nonce cookie is missing or doesn't match
                the token (400).
        """
        state = self._check_state(request, response)
        tok = self._exchange(request, response)

        raw = tok.extra_value(ID_TOKEN_FIELD)
        if not isinstance(raw, str) or not raw:
            raise _fail(response, 'No id_token field in oauth2 token.', 500)

        try:
            id_token = self._verifier.verify(raw)
        except IDTokenVerificationError as e:
            self._log.error("Failed to verify ID token: %s", e)
            raise _fail(response, 'Failed to verify ID Token: %s' % (e,), 500) from e

        nonce = request.cookie(NONCE_COOKIE)
        if not nonce:
            raise _fail(response, 'nonce not found', 400)
        if id_token.nonce != nonce:
            raise _fail(response, 'nonce did not match', 400)

        self._log.info("ID token verified", extra={'state': state})
        return state, IDTokenSource(self._config.token_source(tok), self._verifier)
