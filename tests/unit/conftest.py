import os
import sys
import time
from unittest import mock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

# Get the directory of the current conftest.py file
current_dir = os.path.dirname(os.path.abspath(__file__))

# Calculate the project root (adjust the number of ".." if needed)
project_root = os.path.abspath(os.path.join(current_dir, '../../'))

# Insert the project root at the beginning of sys.path
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from devsugar.oauth_config import Endpoint, OAuthConfig
from devsugar.oidc import IDTokenVerifier

TEST_ISSUER = "https://accounts.google.com"
TEST_CLIENT_ID = "1234-test.apps.googleusercontent.com"
TEST_EMAIL = "someone@example.com"


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_id_token(rsa_key):
    """Returns a function signing an ID token; keyword arguments override claims."""
    def _make(**overrides):
        now = int(time.time())
        claims = {
            "iss": TEST_ISSUER,
            "aud": TEST_CLIENT_ID,
            "azp": TEST_CLIENT_ID,
            "sub": "110169484474386276334",
            "email": TEST_EMAIL,
            "email_verified": True,
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, rsa_key, algorithm="RS256", headers={"kid": "test-key"})
    return _make


@pytest.fixture
def verifier(rsa_key):
    return IDTokenVerifier(TEST_ISSUER, TEST_CLIENT_ID, key_resolver=lambda raw: rsa_key.public_key())


def _token_response(status=200, **body):
    response = mock.MagicMock()
    response.status_code = status
    response.json.return_value = body
    response.text = str(body)
    return response


@pytest.fixture
def token_response():
    """Returns a function building a fake requests.Response of a token endpoint."""
    return _token_response


@pytest.fixture
def http_session():
    return mock.MagicMock()


@pytest.fixture
def oauth_config(http_session):
    return OAuthConfig(
        client_id=TEST_CLIENT_ID,
        client_secret="test-secret",
        endpoint=Endpoint("https://provider.example.com/auth", "https://provider.example.com/token"),
        redirect_url="http://127.0.0.1:8080/auth/callback",
        scopes=["openid", "profile", "email"],
        session=http_session,
    )


@pytest.fixture
def fake_token_endpoint(http_session):
    """Returns a function configuring the token endpoint to answer with body."""
    def _answer(status=200, **body):
        http_session.post.return_value = _token_response(status, **body)
        return http_session.post
    return _answer
