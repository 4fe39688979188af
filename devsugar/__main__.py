import sys
import traceback


def _add_logging_args( parser ):
    parser.add_argument( '--level',
                         type = str,
                         default = 'info',
                         dest = 'level',
                         help = 'logging level: debug, info, warning or error' )
    parser.add_argument( '--json-logs',
                         action = 'store_true',
                         default = False,
                         dest = 'json_logs',
                         help = 'emit logs as one JSON object per line' )


def _add_oidc_args( parser, settings ):
    from . import constants
    parser.add_argument( '--oidc-issuer',
                         type = str,
                         default = settings.get( 'oidc_issuer', constants.DEFAULT_OIDC_ISSUER ),
                         dest = 'oidc_issuer',
                         help = 'the OpenID Connect issuer to log in with' )
    parser.add_argument( '--oidc-client-file',
                         type = str,
                         default = settings.get( 'oidc_client_file', constants.DEFAULT_OAUTH_CLIENT_FILE ),
                         dest = 'oidc_client_file',
                         help = 'OAuth client file as downloaded from the API console' )


def cli( args ):
    """
    Command line interface for devsugar.

    Args:
        args (list): list of CLI arguments to parse.
    """
    import argparse

    from . import constants
    from .log_utils import init_logger
    from .utils import load_settings

    parser = argparse.ArgumentParser( prog = 'devsugar' )
    parser.add_argument( 'action',
                         type = str,
                         help = 'action, currently supported "version", "login" (log in through the browser and print the ID token claims), "proxy" (run a local identity aware proxy), "jwts" (inspect JWTs)' )

    # Only the action is parsed here, the rest goes to the action's own parser
    # so that --help is the action's.
    rootArgs = args[ 1: 2 ]
    actionArgs = args[ 2: ]
    args = parser.parse_args( rootArgs )
    action = args.action.lower()

    settings = load_settings()
    scopes = settings.get( 'scopes', constants.DEFAULT_SCOPES )

    if action == 'version':
        from . import __version__
        print( "devsugar version %s" % ( __version__, ) )
    elif action == 'login':
        parser = argparse.ArgumentParser( prog = 'devsugar login' )
        _add_oidc_args( parser, settings )
        parser.add_argument( '--token-cache',
                             type = str,
                             default = settings.get( 'token_cache', constants.DEFAULT_TOKEN_CACHE ),
                             dest = 'token_cache',
                             help = 'file caching the token between invocations, empty to disable' )
        parser.add_argument( '--port',
                             type = int,
                             default = 0,
                             dest = 'port',
                             help = 'port of the loopback server, a free one if 0' )
        parser.add_argument( '--no-browser',
                             action = 'store_false',
                             default = True,
                             dest = 'open_browser',
                             help = 'print the login URL instead of opening a browser' )
        _add_logging_args( parser )
        args = parser.parse_args( actionArgs )
        init_logger( args.level, args.json_logs )

        from .credentials import CachedCredentialHelper, FileTokenCache
        from .oidc_webflow import flow_from_client_file
        from .term_utils import printClaims

        helper = flow_from_client_file( args.oidc_issuer,
                                        args.oidc_client_file,
                                        scopes = scopes,
                                        port = args.port,
                                        open_browser = args.open_browser )
        if args.token_cache:
            helper = CachedCredentialHelper( helper, FileTokenCache( args.token_cache ) )

        ts = helper.get_token_source()
        printClaims( ts.id_token().claims, title = "ID token claims" )
    elif action == 'proxy':
        parser = argparse.ArgumentParser( prog = 'devsugar proxy' )
        _add_oidc_args( parser, settings )
        parser.add_argument( '--port',
                             type = int,
                             default = settings.get( 'proxy_port', constants.DEFAULT_PROXY_PORT ),
                             dest = 'port',
                             help = 'port the proxy listens on' )
        parser.add_argument( '--target',
                             type = str,
                             default = settings.get( 'proxy_target', constants.DEFAULT_PROXY_TARGET ),
                             dest = 'target',
                             help = 'base URL requests are forwarded to' )
        _add_logging_args( parser )
        args = parser.parse_args( actionArgs )
        init_logger( args.level, args.json_logs )

        from .oauth_handlers import OIDCHandlers
        from .oauth_server import get_free_port
        from .oidc_proxy import Proxy
        from .oidc_webflow import discover_client_config

        port = args.port or get_free_port()
        config, verifier = discover_client_config( args.oidc_issuer, args.oidc_client_file, scopes = scopes, port = port )
        proxy = Proxy( OIDCHandlers( config, verifier ), port = port, target = args.target )
        print( "Open %s in your browser, press Ctrl-C to stop." % ( proxy.base_url, ) )
        proxy.start_and_block()
    elif action == 'jwts':
        from .jwts import GOOGLE_JWKS_URL, parse_jwt
        from .term_utils import prettyFormatDict

        parser = argparse.ArgumentParser( prog = 'devsugar jwts' )
        parser.add_argument( 'command',
                             type = str,
                             choices = [ 'parse' ],
                             help = '"parse" validates the signature of a JWT and pretty prints it' )
        parser.add_argument( 'jwt',
                             type = str,
                             help = 'the encoded JWT, e.g. from "gcloud auth print-identity-token"' )
        parser.add_argument( '--jwks',
                             type = str,
                             default = GOOGLE_JWKS_URL,
                             dest = 'jwks',
                             help = 'URL of the JWKS used to check the signature, defaults to Google ID tokens; empty to skip the check' )
        _add_logging_args( parser )
        args = parser.parse_args( actionArgs )
        init_logger( args.level, args.json_logs )

        if not args.jwks:
            print( "No JWKS URL specified; not validating signature" )
        header, claims = parse_jwt( args.jwt, jwks_url = args.jwks )
        print( "Header:\n%s" % ( prettyFormatDict( header ), ) )
        print( "Claims:\n%s" % ( prettyFormatDict( claims ), ) )
    else:
        raise Exception( 'invalid action: %s' % ( action, ) )


def main():
    args = sys.argv

    # Parsing itself may fail so look for the flag by hand.
    debug_mode = False
    if "--debug" in args:
        debug_mode = True
        args.remove( "--debug" )

    try:
        cli( args )
    except KeyboardInterrupt:
        print( "\nInterrupted.", file = sys.stderr )
        return 1
    except Exception as e:
        print( "Error:", e, file = sys.stderr )

        if debug_mode:
            print( traceback.format_exc(), file = sys.stderr )

        return 1
    return 0

if __name__ == "__main__":
    sys.exit( main() )
