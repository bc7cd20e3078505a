"""Passphrase format checks and account-link parsing.

An account token travels between devices as a deep link
``notesync://sync?passphrase=<token>``, typically through a QR code. Scanned
text arrives in many shapes (nested URL encoding, quoted, embedded in JSON,
bare), so :func:`extract_token` tries a fixed sequence of strategies.
"""

import json
import logging
import re
from typing import Callable, List, Optional
from urllib.parse import parse_qsl, quote, unquote, urlsplit

logger = logging.getLogger(__name__)

DEEP_LINK_SCHEME = "notesync"
DEEP_LINK_PREFIX = f"{DEEP_LINK_SCHEME}://sync?passphrase="
JSON_TOKEN_FIELDS = ("passphrase", "deviceId", "id")
MARKERS = ("passphrase=", "passphrase:", "deviceId=")
MAX_URL_DECODE_ROUNDS = 3
SINGLE_TOKEN_MIN = 8
SINGLE_TOKEN_MAX = 128

_DIGITS3_RE = re.compile(r"^\d{3}$")
_HEX_ID_RE = re.compile(r"^[0-9a-fA-F-]{8,}$")
_PASSPHRASE_SEARCH_RE = re.compile(r"[A-Za-z]+-[A-Za-z]+-\d{3}")
_VALUE_END_RE = re.compile(r"[&\"'\s}]")


def is_valid_passphrase_format(passphrase: str) -> bool:
    """``word-word-NNN``: three non-empty dash-separated parts, last is three digits."""
    parts = passphrase.split("-")
    return (
        len(parts) == 3
        and bool(parts[0])
        and bool(parts[1])
        and bool(_DIGITS3_RE.match(parts[2]))
    )


def build_deep_link(passphrase: str) -> str:
    return DEEP_LINK_PREFIX + quote(passphrase, safe="-_.")


def _normalize(text: str) -> str:
    content = text.strip().replace("\n", "").replace("\r", "").strip()
    if len(content) >= 2 and content[0] == content[-1] and content[0] in "\"'":
        content = content[1:-1].strip()

    for _ in range(MAX_URL_DECODE_ROUNDS):
        decoded = unquote(content).strip()
        if decoded == content:
            break
        content = decoded
    return content


def _value_after(content: str, marker: str) -> Optional[str]:
    idx = content.lower().find(marker.lower())
    if idx < 0:
        return None
    rest = content[idx + len(marker):].lstrip()
    match = _VALUE_END_RE.search(rest)
    value = (rest[: match.start()] if match else rest).strip()
    return value or None


def _from_deep_link(content: str) -> Optional[str]:
    return _value_after(content, DEEP_LINK_PREFIX)


def _from_json(content: str) -> Optional[str]:
    if not (content.startswith("{") and content.endswith("}")):
        return None
    try:
        data = json.loads(content)
    except ValueError:
        logger.debug("JSON parse failed for link content")
        return None
    if not isinstance(data, dict):
        return None
    for field in JSON_TOKEN_FIELDS:
        value = data.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _from_query(content: str) -> Optional[str]:
    try:
        query = urlsplit(content).query
    except ValueError:
        return None
    if not query:
        return None
    for key, value in parse_qsl(query):
        if key.lower() in ("passphrase", "deviceid") and value.strip():
            return value.strip()
    return None


def _from_markers(content: str) -> Optional[str]:
    for marker in MARKERS:
        value = _value_after(content, marker)
        if value:
            return value
    return None


def _direct_passphrase(content: str) -> Optional[str]:
    return content if is_valid_passphrase_format(content) else None


def _hex_id(content: str) -> Optional[str]:
    return content if _HEX_ID_RE.match(content) else None


def _passphrase_anywhere(content: str) -> Optional[str]:
    found = _PASSPHRASE_SEARCH_RE.search(content)
    return found.group(0) if found else None


def _single_token(content: str) -> Optional[str]:
    if re.search(r"\s", content):
        return None
    if SINGLE_TOKEN_MIN <= len(content) <= SINGLE_TOKEN_MAX:
        return content
    return None


STRATEGIES: List[Callable[[str], Optional[str]]] = [
    _from_deep_link,
    _from_json,
    _from_query,
    _from_markers,
    _direct_passphrase,
    _hex_id,
    _passphrase_anywhere,
    _single_token,
]


def extract_token(text: str) -> Optional[str]:
    """Pull a passphrase or device id out of scanned link text, or ``None``."""
    content = _normalize(text or "")
    if not content:
        return None
    for strategy in STRATEGIES:
        token = strategy(content)
        if token:
            logger.debug("Link token found by %s", strategy.__name__)
            return token
    logger.warning("Unknown link format: %r", content[:60])
    return None
