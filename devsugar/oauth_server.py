import http.server
import logging
import socket
import socketserver
import threading
from typing import Optional, Tuple

from .http_utils import HttpRequest, HttpResponse, Router, write_status


def get_free_port(host: str = '127.0.0.1') -> int:
    """Ask the OS for a port that is free right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


class RoutedRequestHandler(http.server.BaseHTTPRequestHandler):
    """Adapts http.server requests to the Router of the owning server."""

    def _dispatch(self):
        server = self.server
        request = HttpRequest.from_handler(self)
        try:
            response = server.router.dispatch(request)
        except Exception as e:
            server.log.exception("Handler for %s failed: %s", request.path, e)
            response = HttpResponse()
            write_status(response, 'Internal error: %s' % (e,), 500, log=server.log)
        response.send(self)

    do_GET = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_DELETE = _dispatch
    do_PATCH = _dispatch
    do_HEAD = _dispatch
    do_OPTIONS = _dispatch

    def log_message(self, format, *args):
        """Route access logs to the server logger at debug level."""
        self.server.log.debug("%s - %s", self.address_string(), format % args)


class RoutedHTTPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    """
    Threaded HTTP server serving a Router.

    The socket is bound in the constructor, so a port of 0 picks an ephemeral
    port that is readable from server_port right away.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: Tuple[str, int], router: Router, log: Optional[logging.Logger] = None):
        self.router = router
        self.log = log or logging.getLogger(__name__)
        self._thread = None
        super().__init__(address, RoutedRequestHandler)

    @property
    def address(self) -> str:
        host, port = self.server_address[:2]
        return '%s:%d' % (host, port)

    def start(self):
        """Serve on a daemon thread."""
        self._thread = threading.Thread(target=self.serve_forever, name='devsugar-http-%d' % (self.server_port,))
        self._thread.daemon = True
        self._thread.start()
        self.log.info("Listening on %s", self.address, extra={'address': self.address})

    def stop(self, timeout: float = 5):
        """Stop serving and release the socket. Safe to call more than once."""
        if self._thread is not None:
            # shutdown() blocks until serve_forever returns, so only call it when serving.
            self.shutdown()
            self._thread.join(timeout=timeout)
            self._thread = None
        self.server_close()
