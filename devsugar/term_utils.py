import os
import sys

from pygments import highlight, lexers, formatters
from rich.console import Console

from . import json_utils


def useColors(stream=None):
    """
    Return true if ANSI colors should be used when writing to stream.

    :param stream: the stream being written to, stdout by default.
    :return: True if ANSI colors should be used, False otherwise.
    """
    stream = stream if stream is not None else sys.stdout
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False

    # https://no-color.org/
    if "NO_COLOR" in os.environ:
        return False

    return os.environ.get("TERM", "") != "dumb"

def prettyFormatDict(data, use_colors: bool = None) -> str:
    """
    Format a dict (or anything JSON serializable) as indented JSON with sorted keys.

    :param data: the value to format.
    :param use_colors: highlight with ANSI colors; decided by useColors() when None.
    :return: the formatted string.
    """
    formatted = json_utils.dumps(data, indent=2, sort_keys=True, default=str)

    if use_colors is None:
        use_colors = useColors()
    if not use_colors:
        return formatted
    return highlight(formatted, lexers.JsonLexer(), formatters.TerminalFormatter()).rstrip("\n")

def printClaims(claims: dict, title: str = "Claims", console: Console = None) -> None:
    """
    Print a titled claim set, for example the claims of a verified ID token.

    The email claim, when present, is shown above the full dump.
    """
    console = console or Console(highlight=False)
    console.print(f"[bold cyan]{title}[/bold cyan]")

    if not claims:
        console.print("[bold red]No claims available.[/bold red]")
        return

    email = claims.get("email")
    if email:
        verified = "" if claims.get("email_verified", True) else " [yellow](unverified)[/yellow]"
        console.print(f"Logged in as [bold]{email}[/bold]{verified}")

    # Print the JSON through the builtin print so pygments escapes aren't mangled by rich markup.
    print(prettyFormatDict(claims))
