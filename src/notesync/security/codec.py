"""Keyed, deterministic content codec for note titles and descriptions.

Ciphertext is ``base64(AES-ECB(PKCS7(utf8(text))))`` with the AES key taken
from ``SHA-256(key)``. There is no nonce: encoding the same text under the
same key always yields the same string, so re-uploading an unchanged note is
a no-op at the remote leaf.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

BLOCK_SIZE = 16
KEY_LENGTHS = (16, 32)
FALLBACK_KEY = "DefaultDeviceId123"
HEX_KEY_PREFIX = "HEX:"
PREFIX_LENGTHS = (16, 20, 32)

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
_NON_HEX_RE = re.compile(r"[^0-9a-fA-F]")


def _key_material(key: str) -> bytes:
    if not key:
        logger.warning("Empty codec key, using the shared fallback key")
        key = FALLBACK_KEY
    if key.upper().startswith(HEX_KEY_PREFIX):
        hex_part = key[len(HEX_KEY_PREFIX):].strip()
        if hex_part.lower().startswith("0x"):
            hex_part = hex_part[2:]
        hex_part = _NON_HEX_RE.sub("", hex_part)
        try:
            raw = bytes.fromhex(hex_part[: len(hex_part) // 2 * 2])
        except ValueError:
            raw = b""
        if len(raw) >= BLOCK_SIZE:
            return raw
        if raw:
            return hashlib.sha256(raw).digest()
    return hashlib.sha256(key.encode("utf-8")).digest()


def derive_key(key: str, length: int = BLOCK_SIZE) -> bytes:
    material = _key_material(key)
    if length <= 0:
        length = BLOCK_SIZE
    return material[:length].ljust(length, b"\x00")


def key_preview(key: str) -> str:
    """First 8 bytes of the key hash, safe to log."""
    return hashlib.sha256(key.encode("utf-8")).digest()[:8].hex()


def _cipher(key_bytes: bytes) -> Cipher:
    return Cipher(algorithms.AES(key_bytes), modes.ECB())


def encode(plaintext: str, key: str) -> str:
    if not plaintext:
        return plaintext
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = _cipher(derive_key(key)).encryptor()
    raw = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(raw).decode("ascii")


def _b64decode(text: str) -> Optional[bytes]:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None


def looks_encoded(text: str) -> bool:
    """Whether ``text`` is structurally valid codec output, for any key."""
    if not text or " " in text or "\n" in text:
        return False
    if not _BASE64_RE.match(text):
        return False
    raw = _b64decode(text)
    if not raw:
        return False
    return len(raw) >= BLOCK_SIZE and len(raw) % BLOCK_SIZE == 0


def decode(ciphertext: str, key: str) -> Optional[str]:
    """Reverse :func:`encode`. Returns ``None`` on any failure, never raises."""
    if ciphertext == "":
        return ""
    try:
        if not looks_encoded(ciphertext):
            logger.debug("Text does not look like codec output (first 20: %r)", ciphertext[:20])
            return None
        raw = _b64decode(ciphertext)
        if raw is None:
            return None
        for length in KEY_LENGTHS:
            try:
                decryptor = _cipher(derive_key(key, length)).decryptor()
                padded = decryptor.update(raw) + decryptor.finalize()
                unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
                data = unpadder.update(padded) + unpadder.finalize()
                return data.decode("utf-8")
            except ValueError:
                # bad padding or not utf-8: wrong key for this length
                continue
        return None
    except Exception:
        logger.exception("Unexpected decode failure")
        return None


# ---------------------------------------------------------------------------
# Candidate keys
# ---------------------------------------------------------------------------

def key_variants(raw_key: str) -> List[str]:
    """Normalised spellings of ``raw_key`` that older clients encoded under."""
    key = raw_key.strip()
    if not key:
        return []

    variants = [key, key.lower(), key.upper(), key.replace("-", "")]
    cleaned = _NON_ALNUM_RE.sub("", key)
    variants.append(cleaned)
    variants.extend(cleaned[:n] for n in PREFIX_LENGTHS if len(cleaned) >= n)
    variants.append(unquote(key).strip())

    if _BASE64_RE.match(key):
        raw = _b64decode(key)
        if raw:
            try:
                variants.append(raw.decode("utf-8"))
            except UnicodeDecodeError:
                pass

    return _dedupe(variants)


def build_candidates(keys: Iterable[Optional[str]]) -> List[str]:
    """Raw keys first, in order, then the variants of each raw key."""
    raw = _dedupe(k for k in keys if k)
    expanded = list(raw)
    for key in raw:
        expanded.extend(key_variants(key))
    return _dedupe(expanded)


def try_decode(ciphertext: str, candidates: Sequence[str]) -> Optional[str]:
    for key in candidates:
        plaintext = decode(ciphertext, key)
        if plaintext is not None:
            return plaintext
    return None


def try_decode_pair(
    title: str, description: str, candidates: Sequence[str]
) -> Optional[Tuple[str, str, str]]:
    """Find one key that decodes both fields.

    Returns ``(title, description, key)``. Fields that are not codec output
    are taken as plaintext, with an empty key.
    """
    if not looks_encoded(title) and not looks_encoded(description):
        return title, description, ""

    for key in candidates:
        plain_title = decode(title, key)
        plain_description = decode(description, key)
        if plain_title is not None and plain_description is not None:
            logger.debug("Decoded with key preview=%s", key_preview(key))
            return plain_title, plain_description, key
    return None


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out
