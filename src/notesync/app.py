import logging
from typing import Optional, Tuple

from notesync.config import RedisConfig, SyncSettings
from notesync.database import LocalStore, RemoteTree
from notesync.errors import AccountNotFound, InvalidToken, Result
from notesync.models import is_valid_segment
from notesync.network import Connectivity, ConnectivityMonitor
from notesync.services import (
    AccountMergeService,
    AccountResolver,
    AutoSyncService,
    DeviceRegistry,
    MergeReport,
    PassphraseService,
    RemoteAuthenticator,
    SyncEngine,
)

logger = logging.getLogger(__name__)


class NoteSyncApp:
    """Owns the shared local store and remote client and wires every service onto them.

    Building the app opens the local database and nothing else; background
    sync only begins in :meth:`start`.
    """

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        redis_config: Optional[RedisConfig] = None,
        store: Optional[LocalStore] = None,
        tree: Optional[RemoteTree] = None,
        connectivity: Optional[Connectivity] = None,
    ):
        self.settings = settings or SyncSettings()
        self.redis_config = redis_config or RedisConfig()

        self.store = store or LocalStore(self.settings.db_path, encrypt_at_rest=self.settings.encrypt_at_rest)
        self.tree = tree or self.redis_config.create_tree()
        self.connectivity = connectivity or ConnectivityMonitor(self.redis_config.host, self.redis_config.port)

        self.devices = DeviceRegistry(self.store)
        self.resolver = AccountResolver(self.store, self.devices)
        self.authenticator = RemoteAuthenticator(self.tree)
        self.engine = SyncEngine(self.store, self.tree, self.resolver, self.authenticator, self.connectivity)
        self.passphrases = PassphraseService(
            self.store, self.tree, self.authenticator, self.resolver, device_type=self.settings.device_type
        )
        self.merger = AccountMergeService(self.store, self.tree, self.authenticator)
        self.auto_sync = AutoSyncService(
            self.engine,
            self.connectivity,
            interval=self.settings.sync_interval,
            retry_attempts=self.settings.retry_attempts,
            retry_delay=self.settings.retry_delay,
        )
        self.running = False

    @classmethod
    def from_env(cls) -> "NoteSyncApp":
        return cls(settings=SyncSettings.from_env(), redis_config=RedisConfig.from_env())

    def join_account(self, source: str) -> Result[MergeReport]:
        """Import ``source`` into this device's current account.

        The source account must exist remotely; nothing is imported or
        republished otherwise. The local device id is the only key handed
        over beyond the account tokens themselves.
        """
        source = source.strip()
        if not is_valid_segment(source):
            return Result.failure(InvalidToken(source))
        verified = self.passphrases.verify_passphrase(source)
        if not verified.ok:
            return Result.failure(verified.error)
        if not verified.value:
            logger.warning("Join refused: no account under the given token")
            return Result.failure(AccountNotFound(source))
        return self.merger.join_account(
            source,
            self.resolver.resolve_account_id(),
            fallback_keys=[self.resolver.device_id()],
        )

    def reset_local_data(self) -> None:
        """Forget every local note, tombstone and reminder. Remote data is untouched."""
        self.store.clear_all()

    def rotate_device_id(self) -> Tuple[str, int]:
        """Give this installation a new id and re-tag its notes for republishing."""
        device_id = self.devices.rotate_device_id()
        return device_id, self.store.reassign_device_id(device_id)

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        logger.info("NoteSync starting - device %s", self.resolver.device_id())
        self.auto_sync.start()

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self.auto_sync.stop()

    def close(self) -> None:
        self.stop()
        close_tree = getattr(self.tree, "close", None)
        if close_tree is not None:
            close_tree()
        self.store.close()

    def __enter__(self) -> "NoteSyncApp":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
