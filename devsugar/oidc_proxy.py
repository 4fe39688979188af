"""
Local stand-in for an identity aware proxy.

Requests reaching the proxy without a logged in session are sent through the
OIDC login flow. Once a session has a token source, requests are forwarded to
a fixed upstream with the user's ID token attached in the headers IAP uses,
so services that verify IAP assertions can be developed locally.

Sessions are kept in memory and never expire.
"""

import logging
import signal
import threading
import urllib.parse
from typing import Dict, Optional

import requests

from . import constants
from .http_utils import HttpRequest, HttpResponse, Router, write_status
from .iap import JWT_HEADER
from .oauth_handlers import OAuthFlowError, OIDCHandlers
from .oauth_server import RoutedHTTPServer
from .oidc import IDTokenSource
from .utils import DevSugarException, pretty_string, rand_bytes

SESSION_COOKIE = 'oidc-proxy-sid'
OAUTH_START = '/oidc/start'
ID_TOKEN_PATH = '/oidc/token'
HEALTH_PATH = '/healthz'

# Bytes of randomness in a session id.
SESSION_ID_BYTES = 24

# Headers that apply to a single connection and must not be forwarded.
HOP_BY_HOP_HEADERS = frozenset([
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization', 'te', 'trailers',
    'transfer-encoding', 'upgrade',
])


class Session(object):
    '''Login state of one browser.'''

    def __init__(self, ts: Optional[IDTokenSource] = None, next_url: str = ''):
        self.ts = ts
        self.next_url = next_url

    def copy(self) -> 'Session':
        return Session(ts=self.ts, next_url=self.next_url)

    def __repr__(self):
        return 'Session(logged_in=%r, next_url=%r)' % (self.ts is not None, self.next_url)


class SessionStore(object):
    '''
    Sessions by id plus the login flows in flight, mapping a flow's state to
    the session that started it. One lock guards both maps.
    '''

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._states: Dict[str, str] = {}

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def get(self, sid: Optional[str]) -> Optional[Session]:
        """Return a copy of the session, None if there is none."""
        if not sid:
            return None
        with self._lock:
            session = self._sessions.get(sid)
            return session.copy() if session is not None else None

    def set(self, sid: str, session: Session):
        if not sid:
            self._log.error("Refusing to store a session without an id")
            return
        with self._lock:
            self._sessions[sid] = session.copy()

    def new_session(self, next_url: str = '') -> str:
        """Create an anonymous session and return its id."""
        sid = rand_bytes(SESSION_ID_BYTES)
        with self._lock:
            self._sessions[sid] = Session(next_url=next_url)
        return sid

    def bind_state(self, state: str, sid: str):
        """Bind state to sid, dropping states of abandoned logins of the same session."""
        with self._lock:
            stale = [s for s, bound in self._states.items() if bound == sid]
            for s in stale:
                del self._states[s]
            self._states[state] = sid

    def pop_state(self, state: str) -> Optional[str]:
        """Return and forget the session id bound to state."""
        with self._lock:
            return self._states.pop(state, None)


class Proxy(object):
    '''Authenticating reverse proxy in front of a single upstream.'''

    def __init__(self, handlers: OIDCHandlers, port: int = constants.DEFAULT_PROXY_PORT,
                 target: str = constants.DEFAULT_PROXY_TARGET, log: Optional[logging.Logger] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            handlers: OIDC handlers whose config redirects back to this proxy.
            port: port to listen on.
            target: base URL requests are forwarded to.
            log: logger, defaults to the module logger.
            session: requests session used to talk to the upstream.
        """
        self._handlers = handlers
        self.port = port
        self.target = target.rstrip('/')
        self._log = log or logging.getLogger(__name__)
        self._http = session or requests.Session()
        self.sessions = SessionStore(log=self._log)
        self._server = None
        self._stopped = threading.Event()

        parsed = urllib.parse.urlsplit(handlers.config.redirect_url)
        self._host = parsed.hostname or 'localhost'
        self._callback_path = parsed.path or '/'
        self.base_url = 'http://%s:%d' % (self._host, self.port)
        self.router = self._build_router()

    def _build_router(self) -> Router:
        router = Router(strict_slash=True)
        router.handle(HEALTH_PATH, self.handle_health)
        router.handle(OAUTH_START, self.handle_start)
        router.handle(self._callback_path, self.handle_callback)
        router.handle(ID_TOKEN_PATH, self.handle_token)
        router.not_found_handler = self.proxy_request
        return router

    def handle_health(self, request: HttpRequest, response: HttpResponse):
        write_status(response, 'OIDC proxy is running', 200, log=self._log)

    def ensure_auth(self, request: HttpRequest, response: HttpResponse) -> Optional[Session]:
        """
        Return the logged in session of the request.

        Otherwise the response redirects to the login start page and None is
        returned. Requests without a known session get a new session cookie.
        """
        sid = request.cookie(SESSION_COOKIE)
        session = self.sessions.get(sid)
        if session is not None and session.ts is not None:
            return session

        if session is None:
            sid = self.sessions.new_session(next_url=request.url)
            response.set_cookie(SESSION_COOKIE, sid, secure=request.tls)
            self._log.info("New session", extra={'url': request.url})
        else:
            session.next_url = request.url
            self.sessions.set(sid, session)

        response.redirect(self.base_url + OAUTH_START, code=302)
        return None

    def handle_start(self, request: HttpRequest, response: HttpResponse):
        sid = request.cookie(SESSION_COOKIE)
        if self.sessions.get(sid) is None:
            write_status(response, 'No session; load the page you want to visit to start a login', 400,
                         log=self._log)
            return
        try:
            state = self._handlers.redirect_to_auth_url(request, response)
        except OAuthFlowError:
            return
        self.sessions.bind_state(state, sid)

    def handle_callback(self, request: HttpRequest, response: HttpResponse):
        try:
            state, ts = self._handlers.handle_auth_code(request, response)
        except OAuthFlowError as e:
            self._log.info("Login failed: %s", e)
            return

        sid = self.sessions.pop_state(state)
        session = self.sessions.get(sid)
        if session is None:
            write_status(response, 'Session not found for state', 500, log=self._log)
            return

        session.ts = ts
        self.sessions.set(sid, session)
        response.redirect(session.next_url or ID_TOKEN_PATH, code=302)

    def handle_token(self, request: HttpRequest, response: HttpResponse):
        session = self.ensure_auth(request, response)
        if session is None:
            return
        try:
            id_token = session.ts.id_token()
        except DevSugarException as e:
            write_status(response, 'Failed to get ID token: %s' % (e,), 500, log=self._log)
            return
        response.set_header('Content-Type', 'application/json')
        response.write(pretty_string(id_token.claims))

    def _forward_headers(self, request: HttpRequest, jwt: str) -> Dict[str, str]:
        headers = {k: v for k, v in request.headers.items()
                   if k not in HOP_BY_HOP_HEADERS and k not in ('host', 'content-length')}
        headers[JWT_HEADER] = jwt
        headers['authorization'] = 'Bearer ' + jwt
        return headers

    def proxy_request(self, request: HttpRequest, response: HttpResponse):
        session = self.ensure_auth(request, response)
        if session is None:
            return
        try:
            jwt = session.ts.token().access_token
        except DevSugarException as e:
            write_status(response, 'Failed to get ID token: %s' % (e,), 500, log=self._log)
            return

        url = self.target + request.url
        try:
            upstream = self._http.request(
                request.method,
                url,
                headers=self._forward_headers(request, jwt),
                data=request.body or None,
                allow_redirects=False,
                timeout=constants.HTTP_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            write_status(response, 'Failed to reach upstream: %s' % (e,), 502, log=self._log)
            return

        response.status = upstream.status_code
        # upstream.headers comma-joins repeats, which breaks Set-Cookie; the raw headers keep each one.
        for name, value in upstream.raw.headers.items():
            # requests already decoded the body and the length is recomputed.
            if name.lower() in HOP_BY_HOP_HEADERS or name.lower() in ('content-length', 'content-encoding'):
                continue
            response.add_header(name, value)
        response.write(upstream.content)

    def start(self):
        """Serve in the background."""
        self._server = RoutedHTTPServer((self._host, self.port), self.router, log=self._log)
        self.port = self._server.server_port
        self.base_url = 'http://%s:%d' % (self._host, self.port)
        self._server.start()
        self._stopped.clear()
        self._log.info("Proxying %s to %s", self.base_url, self.target, extra={'url': self.target})

    def shutdown(self):
        self._stopped.set()
        if self._server is not None:
            server, self._server = self._server, None
            server.stop()

    def start_and_block(self):
        """Serve until interrupted with Ctrl-C."""
        self.start()

        def _on_interrupt(signum, frame):
            self._log.info("Interrupted, shutting down")
            self._stopped.set()

        previous = signal.signal(signal.SIGINT, _on_interrupt)
        try:
            while not self._stopped.wait(1):
                pass
        finally:
            signal.signal(signal.SIGINT, previous)
            self.shutdown()
