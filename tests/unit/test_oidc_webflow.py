"""
Tests running the loopback login flow against a real local server.

The browser is simulated by replacing webbrowser.open with a thread that
follows the flow using requests; the provider's token endpoint is a mock.
"""

import threading
import urllib.parse

import pytest
import requests

from devsugar.oauth_handlers import OAuthFlowError
from devsugar.oauth_server import get_free_port
from devsugar.oidc import IDTokenSource
from devsugar.oidc_webflow import (
    AUTH_START_PATH,
    HEALTH_PATH,
    OIDCWebFlowServer,
    loopback_redirect_url,
)
from devsugar.utils import ConfigError, FlowTimeoutError

FAST = {"ready_timeout": 5, "ready_interval": 0.05, "flow_timeout": 10}


@pytest.fixture
def loopback_config(oauth_config):
    return oauth_config.copy(redirect_url=loopback_redirect_url(get_free_port()))


class FakeBrowser(object):
    '''Follows the login flow the way a browser would, on its own thread.'''

    def __init__(self, tamper_state=False):
        self.tamper_state = tamper_state
        self.nonce = None
        self.responses = {}
        self.errors = []
        self.thread = None

    def open(self, url):
        self.thread = threading.Thread(target=self._run, args=(url,))
        self.thread.start()
        return True

    def _run(self, url):
        try:
            base = url[:-len(AUTH_START_PATH)]
            self.responses["health"] = requests.get(base + HEALTH_PATH, timeout=5)
            self.responses["unknown"] = requests.get(base + "/unknown", timeout=5)

            start = requests.get(url, allow_redirects=False, timeout=5)
            self.responses["start"] = start
            query = urllib.parse.parse_qs(urllib.parse.urlsplit(start.headers["Location"]).query)
            state = query["state"][0]
            self.nonce = query.get("nonce", [None])[0]
            cookies = {"state": state}
            if self.nonce:
                cookies["nonce"] = self.nonce

            # The provider redirects back to the redirect URL.
            callback = query["redirect_uri"][0] + "?" + urllib.parse.urlencode({
                "state": "forged" if self.tamper_state else state,
                "code": "fabricated-code",
            })
            self.responses["callback"] = requests.get(callback, cookies=cookies, timeout=5)
        except Exception as e:
            self.errors.append(e)

    def join(self):
        if self.thread is not None:
            self.thread.join(10)


@pytest.fixture
def browser(monkeypatch):
    fake = FakeBrowser()
    monkeypatch.setattr("devsugar.oidc_webflow.webbrowser.open", fake.open)
    yield fake
    fake.join()


@pytest.fixture
def provider_issues_id_token(http_session, make_id_token, browser, token_response):
    """Token endpoint answering with an ID token bound to the nonce the browser saw."""
    def _post(url, data=None, **kwargs):
        return token_response(access_token="at", refresh_token="rt", expires_in=3600,
                              id_token=make_id_token(nonce=browser.nonce))
    http_session.post.side_effect = _post
    return http_session.post


def test_run_returns_verified_id_token_source(loopback_config, verifier, browser, provider_issues_id_token):
    server = OIDCWebFlowServer(loopback_config, verifier, **FAST)

    ts = server.run()
    browser.join()

    assert not browser.errors
    assert isinstance(ts, IDTokenSource)
    assert ts.id_token().claims_as().email == "someone@example.com"
    assert ts.id_token().issuer == "https://accounts.google.com"

    assert browser.responses["health"].status_code == 200
    assert browser.responses["health"].json()["kind"] == "RequestStatus"
    assert browser.responses["unknown"].status_code == 404
    assert browser.responses["unknown"].json()["code"] == 404
    assert browser.responses["start"].status_code == 302
    assert browser.responses["callback"].status_code == 200
    assert "close this window" in browser.responses["callback"].text

    provider_issues_id_token.assert_called_once()
    assert provider_issues_id_token.call_args[1]["data"]["code"] == "fabricated-code"


def test_run_fails_on_forged_state(loopback_config, verifier, browser, provider_issues_id_token):
    browser.tamper_state = True
    server = OIDCWebFlowServer(loopback_config, verifier, **FAST)

    with pytest.raises(OAuthFlowError) as exc:
        server.run()
    browser.join()

    assert exc.value.code == 400
    assert browser.responses["callback"].status_code == 400
    provider_issues_id_token.assert_not_called()


def test_run_times_out_and_stops_server(loopback_config, verifier, monkeypatch):
    monkeypatch.setattr("devsugar.oidc_webflow.webbrowser.open", lambda url: True)
    server = OIDCWebFlowServer(loopback_config, verifier, ready_timeout=5, ready_interval=0.05, flow_timeout=0.2)

    with pytest.raises(FlowTimeoutError) as exc:
        server.run()

    assert "Timeout waiting for OIDC flow to complete" in str(exc.value)
    with pytest.raises(requests.exceptions.ConnectionError):
        requests.get("http://%s%s" % (server.address(), HEALTH_PATH), timeout=2)


def test_run_prints_url_without_browser(loopback_config, verifier, monkeypatch, capsys):
    opened = []
    monkeypatch.setattr("devsugar.oidc_webflow.webbrowser.open", lambda url: opened.append(url))
    server = OIDCWebFlowServer(loopback_config, verifier, ready_timeout=5, ready_interval=0.05, flow_timeout=0.1,
                               open_browser=False)

    with pytest.raises(FlowTimeoutError):
        server.run()

    assert not opened
    assert server.auth_start_url() in capsys.readouterr().out


def test_readiness_timeout_when_port_taken(loopback_config, verifier, monkeypatch):
    monkeypatch.setattr("devsugar.oidc_webflow.webbrowser.open", lambda url: True)
    server = OIDCWebFlowServer(loopback_config, verifier, ready_timeout=0.2, ready_interval=0.05)
    # Nothing serves health checks if binding failed.
    monkeypatch.setattr(server, "_start_server", lambda: None)

    with pytest.raises(FlowTimeoutError) as exc:
        server.run()

    assert "healthy" in str(exc.value)


def test_address_and_start_url(loopback_config, verifier):
    server = OIDCWebFlowServer(loopback_config, verifier)
    port = urllib.parse.urlsplit(loopback_config.redirect_url).port

    assert server.address() == "127.0.0.1:%d" % port
    assert server.auth_start_url() == "http://127.0.0.1:%d/auth/start" % port
    assert server.callback_path == "/auth/callback"
    assert server.get_oauth_config() is loopback_config


@pytest.mark.parametrize("redirect_url", ["", "not a url", "ftp://127.0.0.1/cb", "http://127.0.0.1:notaport/cb"])
def test_bad_redirect_url(oauth_config, verifier, redirect_url):
    with pytest.raises(ConfigError):
        OIDCWebFlowServer(oauth_config.copy(redirect_url=redirect_url), verifier)


def test_readiness_ignores_environment_proxy(loopback_config, verifier, monkeypatch):
    # Nothing listens on port 9, so health checks sent through the proxy would fail.
    for name in ("HTTP_PROXY", "http_proxy", "ALL_PROXY", "all_proxy"):
        monkeypatch.setenv(name, "http://127.0.0.1:9")
    for name in ("NO_PROXY", "no_proxy"):
        monkeypatch.delenv(name, raising=False)
    server = OIDCWebFlowServer(loopback_config, verifier, ready_timeout=2, ready_interval=0.05)

    server._start_server()
    try:
        server.wait_for_ready()
    finally:
        server.shutdown()
