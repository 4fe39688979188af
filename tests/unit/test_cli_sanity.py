"""
This module contains some very basic sanity tests for the CLI actions.
"""

import pytest

from devsugar import __version__
from devsugar.__main__ import cli, main

# Actions that need arguments print their usage when given none.
AVAILABLE_ACTIONS_WITH_ARGUMENTS = [
    "jwts",
]


@pytest.fixture(autouse=True)
def no_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DEVSUGAR_CONFIG", str(tmp_path / "settings"))


def test_version(capsys):
    cli(["devsugar", "version"])
    assert __version__ in capsys.readouterr().out


def test_basic_arg_parsing_sanity_commands_with_arguments(capsys):
    for action in AVAILABLE_ACTIONS_WITH_ARGUMENTS:
        with pytest.raises(SystemExit):
            cli(["devsugar", action])
        captured = capsys.readouterr()
        assert "usage: devsugar %s" % action in captured.err


@pytest.mark.parametrize("action", ["login", "proxy", "jwts"])
def test_action_help(capsys, action):
    with pytest.raises(SystemExit) as exc:
        cli(["devsugar", action, "--help"])
    assert exc.value.code == 0
    assert "--level" in capsys.readouterr().out


def test_jwts_parse_unverified(capsys, make_id_token):
    cli(["devsugar", "jwts", "parse", make_id_token(), "--jwks", ""])

    out = capsys.readouterr().out
    assert "not validating signature" in out
    assert '"email": "someone@example.com"' in out
    assert '"alg": "RS256"' in out


def test_main_reports_errors(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["devsugar", "no-such-action"])

    assert main() == 1
    assert "Error: invalid action: no-such-action" in capsys.readouterr().err


def test_login_uses_settings_and_cache(monkeypatch, tmp_path, capsys):
    settings = tmp_path / "settings"
    settings.write_text("oidc_issuer: https://issuer.example.com\noidc_client_file: /tmp/client.json\n")
    monkeypatch.setenv("DEVSUGAR_CONFIG", str(settings))

    calls = {}

    class FakeTokenSource(object):
        def id_token(self):
            class _IDToken(object):
                claims = {"email": "someone@example.com"}
            return _IDToken()

    class FakeFlow(object):
        def get_token_source(self):
            return FakeTokenSource()

    def fake_flow_from_client_file(issuer, client_file, **kw):
        calls["issuer"] = issuer
        calls["client_file"] = client_file
        calls.update(kw)
        return FakeFlow()

    monkeypatch.setattr("devsugar.oidc_webflow.flow_from_client_file", fake_flow_from_client_file)

    cli(["devsugar", "login", "--token-cache", "", "--no-browser"])

    assert calls["issuer"] == "https://issuer.example.com"
    assert calls["client_file"] == "/tmp/client.json"
    assert calls["open_browser"] is False
    assert "someone@example.com" in capsys.readouterr().out
