"""
Verification of the signed headers Identity-Aware Proxy adds to requests.

See https://cloud.google.com/iap/docs/signed-headers-howto
"""

from typing import Any, Callable, Dict, Optional

import jwt
from jwt import PyJWKClient

from .utils import DevSugarException

# Header holding the JWT set by IAP.
JWT_HEADER = 'x-goog-iap-jwt-assertion'
EMAIL_CLAIM = 'email'

IAP_ISSUER = 'https://cloud.google.com/iap'
IAP_JWKS_URL = 'https://www.gstatic.com/iap/verify/public_key-jwk'
IAP_ALGORITHMS = [ 'ES256' ]


class Verifier(object):
    '''Verifies IAP JWTs issued for one audience.'''

    def __init__(self, aud: str, key_resolver: Optional[Callable[[str], Any]] = None,
                 jwks_url: str = IAP_JWKS_URL):
        """
        Args:
            aud: expected audience, "/projects/PROJECT_NUMBER/global/backendServices/SERVICE_ID"
                for backend services.
            key_resolver: returns the verification key for a raw JWT instead of fetching the IAP keys.
            jwks_url: where IAP publishes its keys.
        """
        self.aud = aud
        self._key_resolver = key_resolver
        self._jwks_url = jwks_url
        self._jwks_client = None

    def _signing_key(self, iap_jwt: str):
        if self._key_resolver is not None:
            return self._key_resolver(iap_jwt)
        if self._jwks_client is None:
            self._jwks_client = PyJWKClient(self._jwks_url, cache_keys=True)
        return self._jwks_client.get_signing_key_from_jwt(iap_jwt).key

    def claims(self, iap_jwt: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                iap_jwt,
                self._signing_key(iap_jwt),
                algorithms=IAP_ALGORITHMS,
                audience=self.aud,
                issuer=IAP_ISSUER,
                options={'require': [ 'exp', 'iat', 'aud', 'iss' ]},
            )
        except jwt.PyJWTError as e:
            raise DevSugarException('JWT is invalid: %s' % (e,)) from e

    def verify(self, iap_jwt: str):
        """Raise DevSugarException unless iap_jwt was signed by IAP for this audience."""
        self.email(iap_jwt)

    def email(self, iap_jwt: str) -> str:
        """Verify iap_jwt and return the email of the user it was issued for."""
        claims = self.claims(iap_jwt)
        if EMAIL_CLAIM not in claims:
            raise DevSugarException('JWT is missing claim %s' % (EMAIL_CLAIM,))
        email = claims[EMAIL_CLAIM]
        if not isinstance(email, str):
            raise DevSugarException('Claim %s is not of type string' % (EMAIL_CLAIM,))
        return email
