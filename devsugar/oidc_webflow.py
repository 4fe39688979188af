"""
Loopback login flow for command line tools.

A short lived HTTP server on the local machine starts the authorization code
flow in the user's browser and receives the provider's redirect. The caller
blocks in run() until the callback has been handled or a deadline passes.

Typical use:

    server = flow_from_client_file(constants.DEFAULT_OIDC_ISSUER, '~/secrets/oauth-client.json')
    ts = server.run()
    print(ts.id_token().claims_as().email)
"""

import logging
import os
import time
import urllib.parse
import webbrowser
from typing import List, Optional, Tuple

import requests

from . import constants
from .completion import CompletionSignal
from .files import read_file
from .http_utils import HttpRequest, HttpResponse, Router, write_status
from .oauth_config import OAuthConfig, config_from_json
from .oauth_handlers import OAuthFlowError, OAuthHandlers, OIDCHandlers
from .oauth_server import RoutedHTTPServer, get_free_port
from .oidc import IDTokenSource, IDTokenVerifier, Provider
from .tokens import TokenSource
from .utils import ConfigError, DevSugarException, FlowTimeoutError

AUTH_START_PATH = '/auth/start'
AUTH_CALLBACK_PATH = '/auth/callback'
HEALTH_PATH = '/healthz'

_SUCCESS_PAGE = '''<!DOCTYPE html>
<html>
<head><title>Login complete</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 50px;">
<h1>Login complete</h1>
<p>You are logged in, you can close this window.</p>
</body>
</html>
'''


class WebFlowServer(object):
    '''Runs an authorization code flow through a loopback HTTP server.'''

    name = 'OAuth web flow'

    def __init__(self, handlers: OAuthHandlers, log: Optional[logging.Logger] = None,
                 ready_timeout: float = constants.SERVER_READY_TIMEOUT,
                 ready_interval: float = constants.SERVER_READY_POLL_INTERVAL,
                 flow_timeout: float = constants.FLOW_COMPLETION_TIMEOUT,
                 open_browser: bool = True):
        """
        Args:
            handlers: handlers for the start and callback endpoints.
            log: logger, defaults to the module logger.
            ready_timeout: seconds to wait for the server to answer health checks.
            ready_interval: seconds between health checks.
            flow_timeout: seconds to wait for the user to complete the login.
            open_browser: open the start URL in a browser instead of only printing it.

        Raises:
            ConfigError: if the config's redirect URL can't be served locally.
        """
        self._handlers = handlers
        self._log = log or logging.getLogger(__name__)
        self.ready_timeout = ready_timeout
        self.ready_interval = ready_interval
        self.flow_timeout = flow_timeout
        self.open_browser = open_browser

        redirect_url = handlers.config.redirect_url
        try:
            parsed = urllib.parse.urlsplit(redirect_url)
            port = parsed.port
        except ValueError as e:
            raise ConfigError('Could not parse redirect URL %r: %s' % (redirect_url, e)) from e
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise ConfigError('Redirect URL %r must be an absolute http URL' % (redirect_url,))

        self._scheme = parsed.scheme
        self._host = parsed.hostname
        self._port = port if port is not None else (443 if parsed.scheme == 'https' else 80)
        self._callback_path = parsed.path or '/'
        self._server = None
        self._signal = CompletionSignal(log=self._log)
        self._router = self._build_router()

    def _build_router(self) -> Router:
        router = Router(strict_slash=True)
        router.handle(HEALTH_PATH, self._handle_health)
        router.handle(AUTH_START_PATH, self._handle_start)
        router.handle(self._callback_path, self._handle_callback)
        router.not_found_handler = self._handle_not_found
        return router

    @property
    def callback_path(self) -> str:
        return self._callback_path

    def address(self) -> str:
        """Return host:port of the listener."""
        return '%s:%d' % (self._host, self._port)

    def auth_start_url(self) -> str:
        # Same host as the redirect URL so the browser sends the cookies back on the callback.
        return '%s://%s%s' % (self._scheme, self.address(), AUTH_START_PATH)

    def _health_url(self) -> str:
        return '%s://%s%s' % (self._scheme, self.address(), HEALTH_PATH)

    def _handle_health(self, request: HttpRequest, response: HttpResponse):
        write_status(response, '%s server is running' % (self.name,), 200, log=self._log)

    def _handle_not_found(self, request: HttpRequest, response: HttpResponse):
        write_status(response, "%s server doesn't handle the path; url: %s" % (self.name, request.url), 404,
                     log=self._log)

    def _handle_start(self, request: HttpRequest, response: HttpResponse):
        try:
            self._handlers.redirect_to_auth_url(request, response)
        except OAuthFlowError as e:
            self._signal.set_error(e)

    def _handle_callback(self, request: HttpRequest, response: HttpResponse):
        try:
            _, ts = self._handlers.handle_auth_code(request, response)
        except OAuthFlowError as e:
            self._signal.set_error(e)
            return
        self._signal.set_result(ts)
        response.set_header('Content-Type', 'text/html; charset=utf-8')
        response.write(_SUCCESS_PAGE)

    def _start_server(self):
        try:
            self._server = RoutedHTTPServer((self._host, self._port), self._router, log=self._log)
        except OSError as e:
            # run() times out waiting for the server to be healthy.
            self._log.error("Failed to listen on %s: %s", self.address(), e, extra={'address': self.address()})
            return
        self._server.start()

    def shutdown(self):
        if self._server is None:
            return
        self._log.info("Shutting down %s server", self.name, extra={'address': self.address()})
        server, self._server = self._server, None
        server.stop()

    def wait_for_ready(self):
        """
        Poll the health endpoint until it answers.

        Raises:
            FlowTimeoutError: if the server isn't healthy before ready_timeout.
        """
        url = self._health_url()
        deadline = time.monotonic() + self.ready_timeout
        # Loopback traffic must not go through HTTP_PROXY and friends.
        http = requests.Session()
        http.trust_env = False
        with http:
            self._poll_health(http, url, deadline)

    def _poll_health(self, http: requests.Session, url: str, deadline: float):
        while True:
            try:
                response = http.get(url, timeout=max(self.ready_interval, 1))
                if response.status_code == 200:
                    self._log.debug("Server is ready", extra={'url': url})
                    return
                self._log.info("Server not ready yet: %d", response.status_code, extra={'url': url})
            except requests.exceptions.RequestException as e:
                self._log.info("Server not ready yet: %s", e, extra={'url': url})
            if time.monotonic() + self.ready_interval > deadline:
                raise FlowTimeoutError('timeout waiting for server to be healthy')
            time.sleep(self.ready_interval)

    def _open_browser(self, url: str):
        opened = False
        if self.open_browser:
            try:
                opened = webbrowser.open(url)
            except webbrowser.Error as e:
                self._log.warning("Failed to open browser: %s", e)
        if not opened:
            print("Go to the following link in your browser to log in:\n\n%s\n" % (url,))

    def run(self) -> TokenSource:
        """
        Run the flow and block until it completes.

        Returns:
            the token source produced by the callback.

        Raises:
            FlowTimeoutError: if the server never became healthy or the user
                didn't complete the login before flow_timeout.
            OAuthFlowError: if the callback rejected the login.
        """
        self._signal = CompletionSignal(log=self._log)
        self._start_server()
        try:
            self.wait_for_ready()
            self._open_browser(self.auth_start_url())
            try:
                return self._signal.wait(self.flow_timeout)
            except FlowTimeoutError as e:
                raise FlowTimeoutError('Timeout waiting for %s to complete' % (self.name,)) from e
            except OAuthFlowError as e:
                raise OAuthFlowError("%s didn't complete successfully: %s" % (self.name, e), code=e.code) from e
        finally:
            self.shutdown()

    def get_token_source(self) -> TokenSource:
        return self.run()

    def get_oauth_config(self) -> OAuthConfig:
        return self._handlers.config

    def wrap_token_source(self, ts: TokenSource) -> TokenSource:
        return ts


class OIDCWebFlowServer(WebFlowServer):
    '''Loopback flow that yields verified ID tokens.'''

    name = 'OIDC flow'

    def __init__(self, config: OAuthConfig, verifier: IDTokenVerifier, log: Optional[logging.Logger] = None, **kw):
        self._verifier = verifier
        super().__init__(OIDCHandlers(config, verifier, log=log), log=log, **kw)

    def run(self) -> IDTokenSource:
        return super().run()

    def wrap_token_source(self, ts: TokenSource) -> IDTokenSource:
        return IDTokenSource(ts, self._verifier)


def loopback_redirect_url(port: int) -> str:
    return 'http://127.0.0.1:%d%s' % (port, AUTH_CALLBACK_PATH)


def load_client_config(client_file: str, scopes: Optional[List[str]] = None, port: int = 0) -> OAuthConfig:
    """
    Read an OAuth client file and point its redirect URL at the loopback server.

    Args:
        client_file: path or file:// URI of the client file.
        scopes: scopes to request, defaults to openid profile email.
        port: loopback port, 0 picks a free one.
    """
    client_file = os.path.expanduser(client_file)
    try:
        data = read_file(client_file)
    except DevSugarException as e:
        raise ConfigError('Could not read OAuth client file: %s' % (e,)) from e
    config = config_from_json(data, scopes or list(constants.DEFAULT_SCOPES))
    if port == 0:
        port = get_free_port()
    return config.copy(redirect_url=loopback_redirect_url(port))


def discover_client_config(issuer: str, client_file: str, scopes: Optional[List[str]] = None, port: int = 0,
                           session: Optional[requests.Session] = None) -> Tuple[OAuthConfig, IDTokenVerifier]:
    """
    Load a client file and point it at the issuer's endpoints.

    Returns:
        (config, verifier) with the redirect URL on the loopback port.

    Raises:
        ConfigError: if the client file can't be used or the issuer can't be discovered.
    """
    config = load_client_config(client_file, scopes=scopes, port=port)
    provider = Provider.discover(issuer, session=session)
    config = config.copy(endpoint=provider.endpoint())
    return config, provider.verifier(config.client_id)


def flow_from_client_file(issuer: str, client_file: str, scopes: Optional[List[str]] = None, port: int = 0,
                          log: Optional[logging.Logger] = None, session: Optional[requests.Session] = None,
                          **kw) -> OIDCWebFlowServer:
    """Build an OIDC loopback flow from a client file."""
    config, verifier = discover_client_config(issuer, client_file, scopes=scopes, port=port, session=session)
    return OIDCWebFlowServer(config, verifier, log=log, **kw)
