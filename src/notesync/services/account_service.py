"""Device identity, account resolution and passphrase management."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from ulid import ULID

from notesync.database import LocalStore, RemoteTree
from notesync.errors import AuthenticationFailed, InvalidToken, Result, SyncError
from notesync.models import RemotePath, is_valid_segment, now_millis
from notesync.utils import build_deep_link, extract_token

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"
PASSPHRASE_KEY = "device_passphrase"
USERS_ROOT = "users"
NOTES_NODE = "notes"
REMINDERS_NODE = "reminders"


class DeviceRegistry:
    """Persistent identity of this installation (``d_<ULID>``)."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        self._lock = threading.Lock()

    def get_or_create_device_id(self) -> str:
        with self._lock:
            existing = self.store.get_preference(DEVICE_ID_KEY)
            if existing:
                return existing
            device_id = f"d_{ULID()}"
            self.store.set_preference(DEVICE_ID_KEY, device_id)
            logger.info("Created device id %s", device_id)
            return device_id

    def rotate_device_id(self) -> str:
        """Replace the stored id with a fresh one and return it."""
        with self._lock:
            device_id = f"d_{ULID()}"
            self.store.set_preference(DEVICE_ID_KEY, device_id)
            logger.info("Rotated device id to %s", device_id)
            return device_id


class AccountResolver:
    """Maps this device (and its stored passphrase, if any) to remote paths.

    Nothing is cached: every call re-reads the stored passphrase so adopting
    or switching an account redirects the very next remote operation.
    """

    def __init__(self, store: LocalStore, devices: DeviceRegistry) -> None:
        self.store = store
        self.devices = devices

    def device_id(self) -> str:
        return self.devices.get_or_create_device_id()

    def stored_passphrase(self) -> Optional[str]:
        value = self.store.get_preference(PASSPHRASE_KEY)
        return value or None

    def resolve_account_id(self) -> str:
        return self.stored_passphrase() or self.device_id()

    @staticmethod
    def account_path(account_id: str) -> RemotePath:
        return RemotePath.of(USERS_ROOT, account_id)

    def resolve_notes_path(self) -> RemotePath:
        return self.account_path(self.resolve_account_id()).child(NOTES_NODE, self.device_id())


class Authenticator(Protocol):
    def ensure_authenticated(self) -> None:
        ...


class RemoteAuthenticator:
    """Authenticates against the remote store once, then remembers success."""

    def __init__(self, tree: RemoteTree) -> None:
        self.tree = tree
        self._authenticated = False
        self._lock = threading.Lock()

    def ensure_authenticated(self) -> None:
        with self._lock:
            if self._authenticated:
                return
            try:
                if not self.tree.ping():
                    raise ConnectionError("remote store did not answer PING")
            except Exception as e:
                logger.warning("Remote authentication failed: %s", e)
                raise AuthenticationFailed(e) from e
            self._authenticated = True
            logger.debug("Authenticated against remote store")

    def reset(self) -> None:
        with self._lock:
            self._authenticated = False


class PassphraseService:
    def __init__(
        self,
        store: LocalStore,
        tree: RemoteTree,
        authenticator: Authenticator,
        resolver: AccountResolver,
        device_type: str = "desktop",
    ) -> None:
        self.store = store
        self.tree = tree
        self.authenticator = authenticator
        self.resolver = resolver
        self.device_type = device_type

    def get_stored_passphrase(self) -> Optional[str]:
        return self.resolver.stored_passphrase()

    def store_passphrase(self, passphrase: str) -> Result[str]:
        """Adopt ``passphrase`` locally and register it in the remote tree."""
        passphrase = passphrase.strip()
        if not is_valid_segment(passphrase):
            return Result.failure(InvalidToken(passphrase))
        account = AccountResolver.account_path(passphrase)
        try:
            self.authenticator.ensure_authenticated()
            now = now_millis()
            created_at = self.tree.read_subtree(account.child("createdAt"))
            self.tree.update_children(
                account,
                {
                    "passphrase": passphrase,
                    "createdAt": created_at if isinstance(created_at, int) else now,
                    "deviceType": self.device_type,
                    "lastActiveAt": now,
                },
            )
            self.store.set_preference(PASSPHRASE_KEY, passphrase)
        except SyncError as e:
            logger.error("Failed to store passphrase: %s", e)
            return Result.failure(e)

        logger.info("Passphrase stored")
        return Result.success(passphrase)

    def verify_passphrase(self, passphrase: str) -> Result[bool]:
        """Whether an account exists remotely under ``passphrase``."""
        passphrase = passphrase.strip()
        if not is_valid_segment(passphrase):
            return Result.success(False)
        account = AccountResolver.account_path(passphrase)
        try:
            self.authenticator.ensure_authenticated()
            exists = self.tree.exists(account)
        except SyncError as e:
            logger.error("Failed to verify passphrase: %s", e)
            return Result.failure(e)
        logger.debug("Passphrase verification: exists=%s", exists)
        return Result.success(exists)

    def clear_stored_passphrase(self) -> None:
        self.store.delete_preference(PASSPHRASE_KEY)
        logger.info("Stored passphrase cleared")

    def deep_link(self) -> str:
        return build_deep_link(self.resolver.resolve_account_id())

    @staticmethod
    def extract_passphrase(text: str) -> Optional[str]:
        return extract_token(text)
