from notesync.utils.deeplink import build_deep_link, extract_token, is_valid_passphrase_format

__all__ = [
    'build_deep_link',
    'extract_token',
    'is_valid_passphrase_format',
]
