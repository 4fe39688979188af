from typing import Any, Callable, Dict, Optional, Tuple

import jwt
from jwt import PyJWKClient, PyJWKClientError

from .utils import DevSugarException

# JWKS of Google's OIDC signer, as listed in its discovery document.
GOOGLE_JWKS_URL = 'https://www.googleapis.com/oauth2/v3/certs'

# Firebase ID tokens are signed with these keys instead.
FIREBASE_JWKS_URL = 'https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com'

SIGNING_ALGORITHMS = [ 'RS256', 'RS384', 'RS512', 'ES256', 'ES384' ]


def parse_jwt(token: str, jwks_url: Optional[str] = GOOGLE_JWKS_URL,
              key_resolver: Optional[Callable[[str], Any]] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Parse a JWT, checking its signature when a key source is given.

    The audience isn't checked since the token may have been issued for any client.

    Args:
        token: the encoded JWT.
        jwks_url: JWKS used to check the signature; empty or None skips the check.
        key_resolver: returns the verification key for token; takes precedence over jwks_url.

    Returns:
        (header, claims)

    Raises:
        DevSugarException: if the token is malformed, or its signature or expiry don't check out.
    """
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as e:
        raise DevSugarException('Failed to parse JWT: %s' % (e,)) from e

    if key_resolver is None and not jwks_url:
        try:
            claims = jwt.decode(token, options={'verify_signature': False})
        except jwt.PyJWTError as e:
            raise DevSugarException('Failed to parse unverified JWT: %s' % (e,)) from e
        return header, claims

    try:
        if key_resolver is not None:
            key = key_resolver(token)
        else:
            key = PyJWKClient(jwks_url).get_signing_key_from_jwt(token).key
    except PyJWKClientError as e:
        raise DevSugarException('Failed to get the JWKS from the given URL: %s' % (e,)) from e

    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=SIGNING_ALGORITHMS,
            options={'verify_aud': False},
        )
    except jwt.PyJWTError as e:
        raise DevSugarException('Failed to parse JWT: %s' % (e,)) from e
    return header, claims
