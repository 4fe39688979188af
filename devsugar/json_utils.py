"""
JSON helpers backed by orjson.

The signatures follow the stdlib json module so call sites read the same.
datetime values are written as RFC 3339 strings, and objects exposing
to_dict() (tokens, claims) are written as that dict.
"""

import orjson

JSONDecodeError = orjson.JSONDecodeError


def _to_jsonable(obj):
    to_dict = getattr(obj, 'to_dict', None)
    if callable(to_dict):
        return to_dict()
    raise TypeError('Object of type %s is not JSON serializable' % (type(obj).__name__,))


def _options(indent, sort_keys):
    option = 0
    if indent is not None:
        # orjson only supports 2 space indentation.
        option |= orjson.OPT_INDENT_2
    if sort_keys:
        option |= orjson.OPT_SORT_KEYS
    return option


def dumpb(obj, *, default=None, indent=None, sort_keys=False) -> bytes:
    """Serialize obj to UTF-8 bytes, ready to be written to a file or socket."""
    if default is None:
        default = _to_jsonable
    else:
        fallback = default

        def default(o):
            try:
                return _to_jsonable(o)
            except TypeError:
                return fallback(o)

    return orjson.dumps(obj, default=default, option=_options(indent, sort_keys))


def dumps(obj, **kwargs) -> str:
    return dumpb(obj, **kwargs).decode('utf-8')


def loads(s):
    # orjson accepts str and bytes alike.
    return orjson.loads(s)


def dump(obj, fp, **kwargs):
    fp.write(dumps(obj, **kwargs))


def load(fp):
    return loads(fp.read())
