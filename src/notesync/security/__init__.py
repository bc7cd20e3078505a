from notesync.security.codec import (
    build_candidates,
    decode,
    encode,
    key_preview,
    key_variants,
    looks_encoded,
    try_decode,
    try_decode_pair,
)

__all__ = [
    'build_candidates',
    'decode',
    'encode',
    'key_preview',
    'key_variants',
    'looks_encoded',
    'try_decode',
    'try_decode_pair',
]
