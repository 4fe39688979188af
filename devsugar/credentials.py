"""
Credential helpers: something that can produce a token source, plus a cache
so users don't have to log in through the browser on every invocation.
"""

import logging
import os
import shutil
import stat
import tempfile
from typing import List, Optional

from . import json_utils
from .oauth_config import OAuthConfig
from .oauth_handlers import OAuthHandlers
from .oidc import IDTokenSource
from .oidc_webflow import WebFlowServer, load_client_config
from .tokens import Token, TokenSource
from .utils import DevSugarException

CREDENTIAL_DIR_PERM_MODE = 0o700
CREDENTIAL_FILE_PERM_MODE = stat.S_IWUSR | stat.S_IRUSR  # 0o600


class CredentialHelper(object):
    '''Produces token sources, typically by running an interactive login.'''

    def get_token_source(self) -> TokenSource:
        raise NotImplementedError()

    def get_oauth_config(self) -> OAuthConfig:
        raise NotImplementedError()

    def wrap_token_source(self, ts: TokenSource) -> TokenSource:
        """Turn a token source built from get_oauth_config() into what get_token_source() returns."""
        return ts


class WebFlowHelper(CredentialHelper):
    '''Plain OAuth2 login through the loopback web flow, no ID token.'''

    def __init__(self, client_file: str, scopes: List[str], port: int = 0, log: Optional[logging.Logger] = None,
                 **kw):
        config = load_client_config(client_file, scopes=scopes, port=port)
        self._server = WebFlowServer(OAuthHandlers(config, log=log), log=log, **kw)

    def get_token_source(self) -> TokenSource:
        return self._server.run()

    def get_oauth_config(self) -> OAuthConfig:
        return self._server.get_oauth_config()


class TokenCache(object):

    def get_token(self) -> Optional[Token]:
        raise NotImplementedError()

    def save(self, token: Token):
        raise NotImplementedError()


class FileTokenCache(TokenCache):
    '''Caches a token as JSON in a file only the current user can read.'''

    def __init__(self, cache_file: str, log: Optional[logging.Logger] = None):
        self.cache_file = os.path.expanduser(cache_file)
        self._log = log or logging.getLogger(__name__)

    def get_token(self) -> Optional[Token]:
        """
        Returns:
            the cached token, None if nothing is cached.

        Raises:
            DevSugarException: if the cache file exists but can't be read.
        """
        try:
            with open(self.cache_file, 'rb') as f:
                data = json_utils.load(f)
        except FileNotFoundError:
            self._log.debug("No cached token", extra={'file': self.cache_file})
            return None
        except (OSError, json_utils.JSONDecodeError) as e:
            raise DevSugarException('Could not read token cache %s: %s' % (self.cache_file, e)) from e

        if not isinstance(data, dict):
            raise DevSugarException('Could not read token cache %s: expected a JSON object' % (self.cache_file,))
        return Token.from_dict(data)

    def save(self, token: Token):
        directory = os.path.dirname(self.cache_file) or '.'
        try:
            os.makedirs(directory, mode=CREDENTIAL_DIR_PERM_MODE, exist_ok=True)
        except OSError as e:
            raise DevSugarException('Could not create token cache directory %s: %s' % (directory, e)) from e

        content = json_utils.dumpb(token.to_dict())

        # Write to a private temporary file next to the cache so the move is an atomic rename.
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.token-')
        try:
            os.chmod(tmp_path, CREDENTIAL_FILE_PERM_MODE)
            try:
                os.write(fd, content)
            finally:
                os.close(fd)
            shutil.move(tmp_path, self.cache_file)
        except OSError as e:
            raise DevSugarException('Could not write token cache %s: %s' % (self.cache_file, e)) from e
        finally:
            if os.path.isfile(tmp_path):
                os.unlink(tmp_path)

        self._log.debug("Token cached", extra={'file': self.cache_file})


class CachedCredentialHelper(CredentialHelper):
    '''
    Serves tokens from a cache and only falls back to the wrapped helper's
    interactive login when there is no usable cached token.
    '''

    def __init__(self, helper: CredentialHelper, cache: TokenCache, log: Optional[logging.Logger] = None):
        self._helper = helper
        self._cache = cache
        self._log = log or logging.getLogger(__name__)

    def get_oauth_config(self) -> OAuthConfig:
        return self._helper.get_oauth_config()

    def wrap_token_source(self, ts: TokenSource) -> TokenSource:
        return self._helper.wrap_token_source(ts)

    def _cached_token(self) -> Optional[Token]:
        try:
            tok = self._cache.get_token()
        except DevSugarException as e:
            self._log.warning("Ignoring token cache: %s", e)
            return None
        if tok is None:
            return None
        if not tok.valid() and not tok.refresh_token:
            self._log.info("Cached token expired and can't be refreshed")
            return None
        return tok

    def get_token_source(self) -> TokenSource:
        """
        Return a token source from the cache, or run the login and cache its token.

        Raises:
            DevSugarException: if the login fails.
        """
        tok = self._cached_token()
        if tok is None:
            ts = self._helper.get_token_source()
            underlying = ts.access_token_source() if isinstance(ts, IDTokenSource) else ts
            tok = underlying.token()
            try:
                self._cache.save(tok)
            except DevSugarException as e:
                self._log.error("Failed to cache token: %s", e)
        else:
            self._log.info("Using cached token")

        config = self._helper.get_oauth_config()
        return self._helper.wrap_token_source(config.token_source(tok))
