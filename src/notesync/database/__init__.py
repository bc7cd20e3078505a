"""
Storage package for NoteSync.

Local SQLite store plus the Redis-backed remote tree.
"""

from notesync.database.local_store import LocalStore
from notesync.database.ports import RemoteTree
from notesync.database.redis_tree import RedisTreeClient

__all__ = [
    'LocalStore',
    'RedisTreeClient',
    'RemoteTree',
]
