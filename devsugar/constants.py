import os

# Path to the settings file. Can be overriden for tests.
CONFIG_FILE_PATH = os.path.expanduser( '~/.devsugar' )

# Environment variable pointing at an alternate settings file.
CONFIG_FILE_ENV_VAR = 'DEVSUGAR_CONFIG'

# Default token cache used by "devsugar login".
DEFAULT_TOKEN_CACHE = os.path.expanduser( '~/.devsugar.d/token.json' )

# Default OAuth client file, as downloaded from the API console.
DEFAULT_OAUTH_CLIENT_FILE = os.path.join( os.path.expanduser( '~' ), 'secrets', 'oauth-client.json' )

# OIDC defaults.
DEFAULT_OIDC_ISSUER = 'https://accounts.google.com'
SCOPE_OPENID = 'openid'
DEFAULT_SCOPES = [ SCOPE_OPENID, 'profile', 'email' ]

# Loopback flow timing, in seconds.
SERVER_READY_TIMEOUT = 180
SERVER_READY_POLL_INTERVAL = 5
FLOW_COMPLETION_TIMEOUT = 180

# Lifetime of the state, nonce and session cookies, in seconds.
CALLBACK_COOKIE_MAX_AGE = 3600

# Tokens are treated as expired this many seconds before their actual expiry.
TOKEN_EXPIRY_DELTA = 10

# Local IAP emulation proxy defaults.
DEFAULT_PROXY_PORT = 9080
DEFAULT_PROXY_TARGET = 'http://localhost:8080'

# Timeout applied to outbound HTTP requests, in seconds.
HTTP_TIMEOUT = 30
