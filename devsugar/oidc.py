"""
OpenID Connect support: provider discovery, ID token verification and a
token source that hands out verified ID tokens.

ID tokens are checked the way https://openid.net/specs/openid-connect-core-1_0.html#IDTokenValidation
describes: signature against the provider's JWKS, issuer, audience and expiry.
"""

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import jwt
import requests
from jwt import PyJWKClient, PyJWKClientError

from . import constants
from .oauth_config import Endpoint
from .tokens import ID_TOKEN_FIELD, Token, TokenSource
from .utils import ConfigError, DevSugarException

logger = logging.getLogger(__name__)

DISCOVERY_PATH = '/.well-known/openid-configuration'
GOOGLE_ISSUER = 'https://accounts.google.com'

# Google issues tokens with either form of the issuer.
_ISSUER_ALIASES = {
    GOOGLE_ISSUER: ( GOOGLE_ISSUER, 'accounts.google.com' ),
}


class IDTokenVerificationError ( DevSugarException ):
    '''An ID token failed signature, issuer, audience or expiry checks.'''
    pass


class CommonClaims(object):
    '''Common claims of an ID token, at least as provided by Google's OIDC.'''

    FIELDS = ( 'at_hash', 'aud', 'azp', 'email', 'email_verified', 'exp', 'family_name', 'given_name',
               'locale', 'hd', 'iat', 'iss', 'name', 'nonce', 'picture', 'sub' )

    def __init__(self, **claims):
        for field in self.FIELDS:
            setattr(self, field, claims.get(field))

    @classmethod
    def from_dict(cls, claims: Dict[str, Any]) -> 'CommonClaims':
        return cls(**{k: v for k, v in claims.items() if k in cls.FIELDS})

    def to_dict(self) -> Dict[str, Any]:
        return {field: getattr(self, field) for field in self.FIELDS if getattr(self, field) is not None}

    def __eq__(self, other):
        if not isinstance(other, CommonClaims):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return 'CommonClaims(%s)' % (', '.join('%s=%r' % kv for kv in sorted(self.to_dict().items())),)


class IDToken(object):
    '''A verified ID token.'''

    def __init__(self, raw: str, claims: Dict[str, Any]):
        self.raw = raw
        self.claims = dict(claims)
        self.issuer = claims.get('iss', '')
        aud = claims.get('aud', [])
        self.audience = [aud] if isinstance(aud, str) else list(aud)
        self.subject = claims.get('sub', '')
        self.nonce = claims.get('nonce', '')
        self.expiry = _from_timestamp(claims.get('exp'))
        self.issued_at = _from_timestamp(claims.get('iat'))

    def claims_as(self, cls=CommonClaims):
        return cls.from_dict(self.claims)

    def __repr__(self):
        return 'IDToken(issuer=%r, subject=%r, audience=%r, expiry=%r)' % (
            self.issuer, self.subject, self.audience, self.expiry)


def _from_timestamp(value) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)


class IDTokenVerifier(object):
    '''Verifies ID tokens issued by one issuer for one client.'''

    def __init__(self, issuer: str, client_id: str, jwks_uri: Optional[str] = None,
                 key_resolver: Optional[Callable[[str], Any]] = None, algorithms: Sequence[str] = ( 'RS256', ),
                 leeway: int = 0):
        """
        Args:
            issuer: expected iss claim.
            client_id: expected aud claim.
            jwks_uri: where the provider publishes its signing keys.
            key_resolver: returns the verification key for a raw JWT; replaces the JWKS lookup.
            algorithms: accepted signing algorithms.
            leeway: clock skew tolerance in seconds.
        """
        if jwks_uri is None and key_resolver is None:
            raise ConfigError('IDTokenVerifier needs a jwks_uri or a key_resolver')
        self.issuer = issuer
        self.client_id = client_id
        self.algorithms = list(algorithms)
        self.leeway = leeway
        self._jwks_uri = jwks_uri
        self._key_resolver = key_resolver
        self._jwks_client = None

    @property
    def jwks_client(self) -> PyJWKClient:
        """Lazy-load JWKS client."""
        if self._jwks_client is None:
            self._jwks_client = PyJWKClient(self._jwks_uri, cache_keys=True, lifespan=3600)
        return self._jwks_client

    def _signing_key(self, raw: str):
        if self._key_resolver is not None:
            return self._key_resolver(raw)
        return self.jwks_client.get_signing_key_from_jwt(raw).key

    def _allowed_issuers(self) -> Sequence[str]:
        return _ISSUER_ALIASES.get(self.issuer, ( self.issuer, ))

    def verify(self, raw: str) -> IDToken:
        """
        Verify a raw ID token.

        Raises:
            IDTokenVerificationError: if any check fails.
        """
        if not raw:
            raise IDTokenVerificationError('ID token is empty')
        try:
            key = self._signing_key(raw)
            claims = jwt.decode(
                raw,
                key,
                algorithms=self.algorithms,
                audience=self.client_id,
                leeway=self.leeway,
                options={
                    'require': [ 'iss', 'aud', 'exp', 'iat' ],
                    'verify_exp': True,
                    'verify_iat': True,
                },
            )
        except PyJWKClientError as e:
            raise IDTokenVerificationError('Could not fetch signing key: %s' % (e,)) from e
        except jwt.ExpiredSignatureError as e:
            raise IDTokenVerificationError('ID token is expired: %s' % (e,)) from e
        except jwt.InvalidAudienceError as e:
            raise IDTokenVerificationError('ID token has wrong audience, expected %s: %s' % (self.client_id, e)) from e
        except jwt.PyJWTError as e:
            raise IDTokenVerificationError('Failed to verify ID token: %s' % (e,)) from e

        if claims.get('iss') not in self._allowed_issuers():
            raise IDTokenVerificationError('ID token issued by a different provider, expected %r got %r' % (
                self.issuer, claims.get('iss')))

        logger.debug('ID token verified for subject: %s', claims.get('sub'))
        return IDToken(raw, claims)


class Provider(object):
    '''An OIDC provider as described by its discovery document.'''

    def __init__(self, issuer: str, authorization_endpoint: str, token_endpoint: str, jwks_uri: str,
                 userinfo_endpoint: Optional[str] = None, algorithms: Optional[List[str]] = None):
        self.issuer = issuer
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.jwks_uri = jwks_uri
        self.userinfo_endpoint = userinfo_endpoint
        self.algorithms = algorithms or [ 'RS256' ]

    @classmethod
    def discover(cls, issuer: str, session: Optional[requests.Session] = None) -> 'Provider':
        """
        Fetch the discovery document of issuer.

        Raises:
            ConfigError: if the document can't be fetched or doesn't match the issuer.
        """
        url = issuer.rstrip('/') + DISCOVERY_PATH
        getter = session if session is not None else requests
        try:
            response = getter.get(url, timeout=constants.HTTP_TIMEOUT)
            response.raise_for_status()
            doc = response.json()
        except requests.exceptions.RequestException as e:
            raise ConfigError('Failed to create OIDC provider for %s: %s' % (issuer, e)) from e
        except ValueError as e:
            raise ConfigError('Failed to create OIDC provider for %s: invalid discovery document' % (issuer,)) from e

        if doc.get('issuer', '').rstrip('/') != issuer.rstrip('/'):
            raise ConfigError('oidc: issuer did not match the issuer returned by provider, expected %r got %r' % (
                issuer, doc.get('issuer')))

        missing = [k for k in ('authorization_endpoint', 'token_endpoint', 'jwks_uri') if not doc.get(k)]
        if missing:
            raise ConfigError('Discovery document for %s is missing %s' % (issuer, ', '.join(missing)))

        return cls(
            issuer=doc['issuer'],
            authorization_endpoint=doc['authorization_endpoint'],
            token_endpoint=doc['token_endpoint'],
            jwks_uri=doc['jwks_uri'],
            userinfo_endpoint=doc.get('userinfo_endpoint'),
            algorithms=doc.get('id_token_signing_alg_values_supported'),
        )

    def endpoint(self) -> Endpoint:
        return Endpoint(self.authorization_endpoint, self.token_endpoint)

    def verifier(self, client_id: str) -> IDTokenVerifier:
        return IDTokenVerifier(self.issuer, client_id, jwks_uri=self.jwks_uri, algorithms=self.algorithms)


class IDTokenSource(TokenSource):
    '''
    Wraps a token source so that the bearer token is the verified OpenID token
    rather than the opaque access token.

    The ID token is verified on every call, even if the underlying token didn't change.
    '''

    def __init__(self, source: TokenSource, verifier: IDTokenVerifier):
        self.source = source
        self.verifier = verifier

    def token(self) -> Token:
        """Return a token whose access token is the verified JWT."""
        raw, id_token = self._get_token()
        return Token(access_token=raw, token_type='Bearer', expiry=id_token.expiry)

    def id_token(self) -> IDToken:
        """Return the verified ID token, or raise if one can't be obtained."""
        _, id_token = self._get_token()
        return id_token

    def access_token_source(self) -> TokenSource:
        """
        Return the token source of the underlying access token, e.g. to call
        the provider's userinfo endpoint.
        """
        return self.source

    def _get_token(self):
        try:
            tok = self.source.token()
        except DevSugarException as e:
            raise IDTokenVerificationError(
                'IDTokenSource failed to get token from underlying token source: %s' % (e,)) from e

        raw = tok.extra_value(ID_TOKEN_FIELD)
        if not isinstance(raw, str) or not raw:
            raise IDTokenVerificationError("Underlying token source didn't have field id_token")

        return raw, self.verifier.verify(raw)
