import json
import logging

import pytest

from devsugar.http_utils import HttpRequest, HttpResponse, Router, write_status


def test_request_parses_query_and_cookies():
    request = HttpRequest("get", "/auth/callback?state=abc&code=1%2F2&code=3",
                          headers={"Cookie": "state=abc; nonce=xyz", "Host": "127.0.0.1:8080"})

    assert request.method == "GET"
    assert request.path == "/auth/callback"
    assert request.query_get("state") == "abc"
    assert request.query_get("code") == "1/2"
    assert request.query_get("missing") == ""
    assert request.cookie("state") == "abc"
    assert request.cookie("nonce") == "xyz"
    assert request.cookie("other") is None
    assert request.header("host") == "127.0.0.1:8080"


def test_request_bad_cookie_header():
    request = HttpRequest("GET", "/", headers={"Cookie": "\x00;;;==="})
    assert request.cookie("state") is None


@pytest.mark.parametrize("foreign", [
    'prefs={"theme":"dark"}',
    "ga=GA1 2 3",
    "flag",
    "=orphan",
])
def test_request_cookies_next_to_foreign_cookies(foreign):
    request = HttpRequest("GET", "/auth/callback?state=abc123",
                          headers={"Cookie": "%s; state=abc123;  nonce=\"n1\"" % foreign})

    assert request.cookie("state") == "abc123"
    assert request.cookie("nonce") == "n1"


def test_write_status():
    response = HttpResponse()

    write_status(response, "not here", 404)

    assert response.status == 404
    assert response.get_header("Content-Type") == "application/json"
    assert json.loads(response.body) == {"kind": "RequestStatus", "message": "not here", "code": 404}


def test_write_status_logs_errors(caplog):
    caplog.set_level(logging.INFO)
    write_status(HttpResponse(), "bad state", 400)
    assert "bad state" in caplog.text


def test_set_cookie_attributes():
    response = HttpResponse()
    response.set_cookie("state", "v1", secure=True)

    header = response.get_header("Set-Cookie")
    assert header.startswith("state=v1")
    for attr in ("HttpOnly", "Secure", "Path=/", "Max-Age=3600"):
        assert attr in header
    assert response.cookies == {"state": "v1"}


def test_error_replaces_body():
    response = HttpResponse()
    response.write("partial")

    response.error("state not found", 400)

    assert response.status == 400
    assert response.body == b"state not found\n"
    assert response.get_header("Content-Type").startswith("text/plain")


def test_router_dispatch():
    router = Router()
    router.handle("/healthz", lambda req, resp: resp.write("ok"))

    response = router.dispatch(HttpRequest("GET", "/healthz"))

    assert response.status == 200
    assert response.body == b"ok"
    assert router.paths() == ["/healthz"]


def test_router_strict_slash_redirects():
    router = Router()
    router.handle("/auth/start", lambda req, resp: resp.write("ok"))

    response = router.dispatch(HttpRequest("GET", "/auth/start/?a=1"))

    assert response.status == 301
    assert response.get_header("Location") == "/auth/start?a=1"


def test_router_not_found():
    router = Router()
    assert router.dispatch(HttpRequest("GET", "/nope")).status == 404

    router.not_found_handler = lambda req, resp: write_status(resp, "no " + req.path, 404)
    response = router.dispatch(HttpRequest("GET", "/nope"))
    assert json.loads(response.body)["message"] == "no /nope"
