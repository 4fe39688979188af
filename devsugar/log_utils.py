"""
Logging setup for the devsugar CLI.

Library code never configures logging; components take a logger in their
constructor and fall back to logging.getLogger(__name__). Only the CLI calls
init_logger() to install a handler on the root logger.
"""

import logging
from typing import Optional

from rich.logging import RichHandler

from . import json_utils

# Attributes of a LogRecord that StructuredFormatter copies into the JSON object
# when a call site passes them through `extra`.
STRUCTURED_EXTRA_KEYS = ( 'url', 'address', 'state', 'port', 'file', 'code', 'caller', 'sid' )

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


class StructuredFormatter( logging.Formatter ):
    '''Formats each record as a single line JSON object.'''

    def format( self, record: logging.LogRecord ) -> str:
        log_obj = {
            'timestamp': self.formatTime( record ),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key in STRUCTURED_EXTRA_KEYS:
            if hasattr( record, key ):
                log_obj[ key ] = getattr( record, key )
        if record.exc_info:
            log_obj[ 'exception' ] = self.formatException( record.exc_info )
        return json_utils.dumps( log_obj, default = str )


def parse_level( level: str ) -> int:
    try:
        return _LEVELS[ level.lower() ]
    except KeyError:
        raise ValueError( 'unknown logging level %r, expected one of %s' % ( level, ', '.join( sorted( _LEVELS ) ) ) )


def init_logger( level: str = 'info', json_logs: bool = False, handler: Optional[ logging.Handler ] = None ) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: name of the logging level.
        json_logs: emit one JSON object per line instead of rich console output.
        handler: use this handler instead of the default stderr one.

    Returns:
        the root logger.
    """
    if handler is None:
        if json_logs:
            handler = logging.StreamHandler()
        else:
            handler = RichHandler( show_path = False, rich_tracebacks = False )
    if json_logs:
        handler.setFormatter( StructuredFormatter() )

    root = logging.getLogger()
    root.handlers = [ handler ]
    root.setLevel( parse_level( level ) )

    # Reduce noise from libraries
    logging.getLogger( 'urllib3' ).setLevel( logging.WARNING )
    return root
