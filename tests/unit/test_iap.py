import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from devsugar.iap import IAP_ISSUER, Verifier
from devsugar.utils import DevSugarException

AUD = "/projects/1234/global/backendServices/5678"


@pytest.fixture(scope="module")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def make_assertion(ec_key):
    def _make(**overrides):
        now = int(time.time())
        claims = {"iss": IAP_ISSUER, "aud": AUD, "email": "someone@example.com", "iat": now, "exp": now + 600}
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, ec_key, algorithm="ES256")
    return _make


@pytest.fixture
def verifier(ec_key):
    return Verifier(AUD, key_resolver=lambda raw: ec_key.public_key())


def test_email(verifier, make_assertion):
    assert verifier.email(make_assertion()) == "someone@example.com"
    verifier.verify(make_assertion())


@pytest.mark.parametrize("overrides", [
    {"aud": "/projects/1234/global/backendServices/other"},
    {"iss": "https://accounts.google.com"},
    {"exp": int(time.time()) - 60},
    {"email": None},
    {"email": 42},
])
def test_invalid_assertions(verifier, make_assertion, overrides):
    with pytest.raises(DevSugarException):
        verifier.email(make_assertion(**overrides))


def test_rs256_assertion_rejected(verifier, rsa_key):
    now = int(time.time())
    token = jwt.encode({"iss": IAP_ISSUER, "aud": AUD, "email": "a@b.c", "iat": now, "exp": now + 60},
                       rsa_key, algorithm="RS256")
    with pytest.raises(DevSugarException):
        verifier.verify(token)
