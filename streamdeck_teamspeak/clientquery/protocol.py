"""TeamSpeak 3 ClientQuery wire format and command builders.

ClientQuery is a line-oriented text protocol. A command is one UTF-8 line of
the form ``<command> [key=value ...]``. Every response consists of zero or
more data lines followed by exactly one status line::

    clid=5 cid=12
    error id=0 msg=ok

Data lines may hold several records separated by ``|``. Values escape
whitespace, slashes and pipes with two-character backslash tokens.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple, Union

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 25639

# Emitted by the client after the welcome text; nothing may be sent before it
BANNER_TOKEN = "selected schandlerid"

STATUS_PREFIX = "error "

# Order matters: the backslash must be escaped first
_ESCAPES: Tuple[Tuple[str, str], ...] = (
    ("\\", "\\\\"),
    ("/", "\\/"),
    ("|", "\\p"),
    (" ", "\\s"),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\t", "\\t"),
)

_UNESCAPES: Dict[str, str] = {token: char for char, token in _ESCAPES}
_UNESCAPE_RE = re.compile(r"\\.", re.DOTALL)
_ERROR_ID_RE = re.compile(r"-?[0-9]+")


# -----------------------------------------------------------------------------
# Escaping
# -----------------------------------------------------------------------------


def escape(text: str) -> str:
    """Escape a value for transmission in a ClientQuery command."""
    for char, token in _ESCAPES:
        text = text.replace(char, token)
    return text


def unescape(wire: str) -> str:
    """Reverse :func:`escape`.

    Runs as a single left-to-right pass so that an escaped backslash
    followed by a letter (``\\\\s``) is not read as an escaped space.
    Unknown escape pairs are left as they are.
    """
    return _UNESCAPE_RE.sub(
        lambda m: _UNESCAPES.get(m.group(0), m.group(0)),
        wire,
    )


# -----------------------------------------------------------------------------
# Response Dataclasses
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryError:
    """Parsed ``error id=... msg=...`` status line."""
    id: int = 0
    msg: str = "ok"


@dataclass(frozen=True)
class QueryResponse:
    """Decoded ClientQuery response."""
    rows: Tuple[Dict[str, str], ...] = ()
    error: QueryError = field(default_factory=QueryError)

    @property
    def ok(self) -> bool:
        """Whether the status line reported success."""
        return self.error.id == 0

    @property
    def first(self) -> Dict[str, str]:
        """First row, or an empty mapping when there are no rows."""
        if self.rows:
            return self.rows[0]
        return {}


OK_RESPONSE = QueryResponse()


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


def parse_params(text: str) -> Dict[str, str]:
    """Tokenize ``key=value`` pairs separated by whitespace.

    A bare key maps to an empty string. Values are returned still escaped.
    """
    params: Dict[str, str] = {}
    for token in text.split():
        key, _, value = token.partition("=")
        if key:
            params[key] = value
    return params


def parse_status_line(line: str) -> QueryError:
    """Parse a status line into a :class:`QueryError`."""
    params = parse_params(line[len("error"):])
    raw_id = params.get("id", "0")
    error_id = int(raw_id) if _ERROR_ID_RE.fullmatch(raw_id) else 0
    return QueryError(id=error_id, msg=unescape(params.get("msg", "ok")))


def parse_data_line(line: str) -> List[Dict[str, str]]:
    """Split a data line into records and unescape every value."""
    rows = []
    for record in line.split("|"):
        params = parse_params(record)
        rows.append({key: unescape(value) for key, value in params.items()})
    return rows


def decode(raw: Union[bytes, str]) -> QueryResponse:
    """Decode a complete response.

    Never raises: malformed input yields default or partial results, and
    callers judge success through ``response.error.id``.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    # TeamSpeak terminates lines with "\n\r"
    lines = [line for line in raw.replace("\r", "").split("\n") if line]

    status: Optional[QueryError] = None
    rows: List[Dict[str, str]] = []
    for line in lines:
        if line.startswith(STATUS_PREFIX):
            if status is None:
                status = parse_status_line(line)
            continue
        rows.extend(parse_data_line(line))

    return QueryResponse(rows=tuple(rows), error=status or QueryError())


def split_response(buffer: str) -> Tuple[Optional[str], str]:
    """Cut the first complete response off the front of ``buffer``.

    Returns:
        Tuple of (response text or None, remaining buffer). A response is
        complete once its status line is terminated by a newline.
    """
    start = 0
    while True:
        end = buffer.find("\n", start)
        if end == -1:
            return None, buffer
        if buffer[start:end].lstrip("\r").startswith(STATUS_PREFIX):
            return buffer[: end + 1], buffer[end + 1:].lstrip("\r")
        start = end + 1


# -----------------------------------------------------------------------------
# Command Builders
# -----------------------------------------------------------------------------


def _flag(value: bool) -> str:
    return "1" if value else "0"


def build_command(name: str, params: Optional[Mapping[str, object]] = None) -> str:
    """Build a command line (without terminator) with escaped values.

    A ``None`` value emits a bare key.
    """
    parts = [name]
    for key, value in (params or {}).items():
        if value is None:
            parts.append(key)
        else:
            parts.append(f"{key}={escape(str(value))}")
    return " ".join(parts)


def whoami() -> str:
    return "whoami"


def clientvariable(clid: str) -> str:
    """Query the mute and away variables of one client."""
    return build_command(
        "clientvariable",
        {
            "clid": clid,
            "client_input_muted": None,
            "client_output_muted": None,
            "client_away": None,
            "client_away_message": None,
        },
    )


def set_away(away: bool, message: Optional[str] = None) -> str:
    params: Dict[str, object] = {"client_away": _flag(away)}
    if away and message:
        params["client_away_message"] = message
    return build_command("clientupdate", params)


def set_input_muted(muted: bool) -> str:
    return build_command("clientupdate", {"client_input_muted": _flag(muted)})


def set_output_muted(muted: bool) -> str:
    return build_command("clientupdate", {"client_output_muted": _flag(muted)})


def clientmove(clid: str, cid: str, password_hash: Optional[str] = None) -> str:
    params: Dict[str, object] = {"clid": clid, "cid": cid}
    if password_hash:
        # Hashes come back unescaped from decode() and must be re-escaped
        params["cpw"] = password_hash
    return build_command("clientmove", params)


def channellist() -> str:
    return "channellist"


def hashpassword(password: str) -> str:
    return build_command("hashpassword", {"password": password})


def auth(api_key: str) -> str:
    return build_command("auth", {"apikey": api_key})
