"""
Small request/response types and a path router for the loopback servers.

Handlers are plain functions taking (HttpRequest, HttpResponse) so they can be
exercised without a socket; oauth_server adapts them to http.server.
"""

import http.cookies
import logging
import urllib.parse
from typing import Callable, Dict, List, Optional, Tuple

from . import constants
from . import json_utils
from .utils import this_caller

REQUEST_STATUS_KIND = 'RequestStatus'


class HttpRequest(object):
    '''An incoming HTTP request.'''

    def __init__(self, method: str = 'GET', url: str = '/', headers: Optional[Dict[str, str]] = None,
                 body: bytes = b'', cookies: Optional[Dict[str, str]] = None, tls: bool = False):
        self.method = method.upper()
        self.url = url
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.body = body
        self.tls = tls

        parsed = urllib.parse.urlsplit(url)
        self.path = parsed.path or '/'
        self.raw_query = parsed.query
        self.query = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)

        if cookies is None:
            cookies = self._parse_cookies(self.headers.get('cookie', ''))
        self.cookies = dict(cookies)

    @staticmethod
    def _parse_cookies(header: str) -> Dict[str, str]:
        # Lenient: one malformed or foreign cookie on the host must not hide the others.
        cookies = {}
        for part in header.split(';'):
            name, sep, value = part.partition('=')
            name = name.strip()
            if not sep or not name:
                continue
            value = value.strip()
            if len(value) > 1 and value[0] == value[-1] == '"':
                value = value[1:-1]
            cookies.setdefault(name, value)
        return cookies

    @classmethod
    def from_handler(cls, handler) -> 'HttpRequest':
        """Build a request from a http.server.BaseHTTPRequestHandler."""
        length = int(handler.headers.get('Content-Length') or 0)
        body = handler.rfile.read(length) if length > 0 else b''
        return cls(
            method=handler.command,
            url=handler.path,
            headers=dict(handler.headers.items()),
            body=body,
        )

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), '')

    def query_get(self, name: str) -> str:
        """Return the first value of query parameter name, or an empty string."""
        values = self.query.get(name)
        return values[0] if values else ''

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)

    def __repr__(self):
        return 'HttpRequest(%s %s)' % (self.method, self.url)


class HttpResponse(object):
    '''An outgoing HTTP response built up by handlers.'''

    def __init__(self):
        self.status = 200
        self.headers: List[Tuple[str, str]] = []
        self.body = b''
        # Cookies set on this response, by name.
        self.cookies: Dict[str, str] = {}

    def get_header(self, name: str) -> Optional[str]:
        for k, v in self.headers:
            if k.lower() == name.lower():
                return v
        return None

    def set_header(self, name: str, value: str):
        self.headers = [(k, v) for k, v in self.headers if k.lower() != name.lower()]
        self.headers.append((name, value))

    def add_header(self, name: str, value: str):
        self.headers.append((name, value))

    def set_cookie(self, name: str, value: str, max_age: int = constants.CALLBACK_COOKIE_MAX_AGE,
                   secure: bool = False, http_only: bool = True, path: str = '/'):
        jar = http.cookies.SimpleCookie()
        jar[name] = value
        morsel = jar[name]
        morsel['path'] = path
        morsel['max-age'] = str(max_age)
        if secure:
            morsel['secure'] = True
        if http_only:
            morsel['httponly'] = True
        self.add_header('Set-Cookie', morsel.OutputString())
        self.cookies[name] = value

    def write(self, data):
        if isinstance(data, str):
            data = data.encode('utf-8')
        self.body += data

    def write_json(self, obj, status: int = 200):
        self.status = status
        self.set_header('Content-Type', 'application/json')
        self.body = json_utils.dumpb(obj)

    def redirect(self, url: str, code: int = 302):
        self.status = code
        self.set_header('Location', url)
        if not self.body:
            self.set_header('Content-Type', 'text/html; charset=utf-8')
            self.write('<a href="%s">Found</a>.\n' % (url,))

    def error(self, message: str, code: int):
        """Replace the response with a plain text error."""
        self.status = code
        self.set_header('Content-Type', 'text/plain; charset=utf-8')
        self.set_header('X-Content-Type-Options', 'nosniff')
        self.body = (message + '\n').encode('utf-8')

    def send(self, handler):
        """Write the response through a http.server.BaseHTTPRequestHandler."""
        handler.send_response(self.status)
        for name, value in self.headers:
            handler.send_header(name, value)
        handler.send_header('Content-Length', str(len(self.body)))
        handler.end_headers()
        if handler.command != 'HEAD':
            handler.wfile.write(self.body)

    def __repr__(self):
        return 'HttpResponse(%d)' % (self.status,)


def write_status(response: HttpResponse, message: str, code: int, log: Optional[logging.Logger] = None):
    """
    Write a JSON status message to the response.

    Anything other than 200 is also logged together with the code location
    that wrote it.
    """
    if code != 200:
        (log or logging.getLogger(__name__)).info(message, extra={'code': code, 'caller': this_caller(1)})
    response.write_json({
        'kind': REQUEST_STATUS_KIND,
        'message': message,
        'code': code,
    }, status=code)


Handler = Callable[[HttpRequest, HttpResponse], None]


class Router(object):
    '''Dispatches requests to handlers by exact path.'''

    def __init__(self, strict_slash: bool = True):
        """
        Args:
            strict_slash: redirect "/path/" to "/path" when only the latter is registered.
        """
        self.strict_slash = strict_slash
        self._routes: Dict[str, Handler] = {}
        self.not_found_handler: Optional[Handler] = None

    def handle(self, path: str, fn: Handler):
        self._routes[path] = fn

    def paths(self) -> List[str]:
        return sorted(self._routes)

    def dispatch(self, request: HttpRequest) -> HttpResponse:
        response = HttpResponse()
        fn = self._routes.get(request.path)
        if fn is not None:
            fn(request, response)
            return response

        if self.strict_slash and request.path != '/' and request.path.endswith('/'):
            trimmed = request.path.rstrip('/')
            if trimmed in self._routes:
                target = trimmed + ('?' + request.raw_query if request.raw_query else '')
                response.redirect(target, code=301)
                return response

        if self.not_found_handler is not None:
            self.not_found_handler(request, response)
        else:
            response.error('404 page not found', 404)
        return response
