import base64
import inspect
import logging
import os
import secrets

import yaml

from . import constants
from . import json_utils


class DevSugarException ( Exception ):
    '''Exception type used for various errors in devsugar.'''

    def __init__(self, message, code=None):
        """
        Initialize the exception with a message and an optional status code.

        Args:
            message (str): The error message.
            code (int, optional): HTTP status code associated with the error. Defaults to None.
        """
        super().__init__(message)
        self.code = code


class ConfigError ( DevSugarException ):
    '''Invalid configuration: client file, issuer, redirect URL, settings.'''
    pass


class FlowTimeoutError ( DevSugarException ):
    '''A login flow or the server backing it did not complete in time.'''
    pass


def rand_bytes(n_bytes: int) -> str:
    """
    Generate n_bytes of randomness and return them base64url encoded without padding.

    The returned string is longer than n_bytes.
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(n_bytes)).decode('utf-8').rstrip('=')


def rand_string(length: int) -> str:
    """Generate a random url-safe string of exactly length characters."""
    # Every 4 base64 characters encode 3 bytes.
    n_bytes = int((length + 1) * 0.75) + 1
    return rand_bytes(n_bytes)[:length]


def ignore_error(err, log=None):
    """Log an error that can't be acted upon."""
    if err is None:
        return
    (log or logging.getLogger(__name__)).error("Unexpected error occurred: %s", err)


def this_caller(skip: int = 1) -> str:
    """
    Describe the location of a caller as "file:line function".

    Args:
        skip: number of frames to skip above the function calling this_caller.
    """
    frame = inspect.currentframe()
    try:
        for _ in range(skip + 1):
            if frame is None or frame.f_back is None:
                break
            frame = frame.f_back
        if frame is None:
            return 'unknown'
        code = frame.f_code
        return '%s:%d %s' % (os.path.basename(code.co_filename), frame.f_lineno, code.co_name)
    finally:
        del frame


def pretty_string(obj) -> str:
    """Return an indented JSON rendering of obj, or a description of the failure."""
    try:
        return json_utils.dumps(obj, indent=2, sort_keys=True, default=str)
    except (TypeError, ValueError) as e:
        return 'pretty_string returned error; %s' % (e,)


def settings_path() -> str:
    return os.environ.get( constants.CONFIG_FILE_ENV_VAR ) or constants.CONFIG_FILE_PATH


def load_settings() -> dict:
    """
    Load user settings from the YAML settings file.

    Returns:
        dict: the settings, empty if the file doesn't exist.

    Raises:
        ConfigError: if the file isn't valid YAML or isn't a mapping.
    """
    path = settings_path()
    try:
        with open( path, 'rb' ) as f:
            settings = yaml.safe_load( f.read() )
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigError( 'Failed to parse settings file %s: %s' % ( path, e ) ) from e

    # Handle scenario where a file is empty
    settings = settings or {}
    if not isinstance( settings, dict ):
        raise ConfigError( 'Settings file %s must contain a mapping' % ( path, ) )
    return settings
