"""devsugar: OAuth2 and OpenID Connect login flows for developer tools"""

__version__ = "0.4.0"
__author__ = "The devsugar authors"
__author_email__ = "devsugar@users.noreply.github.com"
__license__ = "Apache v2"
__copyright__ = "Copyright (c) 2023 The devsugar authors"

from .utils import DevSugarException, ConfigError, FlowTimeoutError
from .tokens import Token, TokenSource, TokenExchangeError
from .oauth_config import Endpoint, OAuthConfig, config_from_json
from .oidc import CommonClaims, IDToken, IDTokenSource, IDTokenVerifier, IDTokenVerificationError, Provider
from .oauth_handlers import OAuthFlowError, OAuthHandlers, OIDCHandlers
from .oidc_webflow import OIDCWebFlowServer, WebFlowServer, flow_from_client_file
from .credentials import CachedCredentialHelper, FileTokenCache, WebFlowHelper
from .oidc_proxy import Proxy
