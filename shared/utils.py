from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

# ========================================
#           ENDPOINT HELPERS
# ========================================

_WS_SCHEMES = {"ws", "wss"}


def is_ws_url(s: str) -> bool:
    """
    returns True if the string looks like a ws:// or wss:// URL with a host.
    """
    try:
        parts = urlsplit(s)
    except ValueError:
        return False
    return parts.scheme in _WS_SCHEMES and bool(parts.hostname)


def build_endpoint(base_url: str, username: str, channel: str) -> str:
    """
    Embed identity in the connect URL.

    'ws://host/ws' -> 'ws://host/ws?username=<enc>&channel=<enc>'

    Values are percent-encoded the way encodeURIComponent does it (spaces
    become %20). Query parameters already on the base URL are kept, but a
    username or channel there is replaced.
    """
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
             if k not in ("username", "channel")]
    query.append(("username", username))
    query.append(("channel", channel))
    encoded = urlencode(query, quote_via=quote, safe="")
    return urlunsplit((parts.scheme, parts.netloc, parts.path, encoded, parts.fragment))


# ========================================
#           TIMESTAMP HELPERS
# ========================================

# fromisoformat before 3.11 takes at most 6 fractional digits and no 'Z'
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 instant as sent by the server.

    - Accepts a trailing 'Z' and nanosecond fractions.
    - Naive values are taken as UTC.
    - Returns None for anything unparseable.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
