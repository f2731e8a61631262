"""Plugin entry point: builds a recovery hook from settings.

The host calls :func:`create_recovery_hook` once per workspace and forwards
every bus event to ``hook.handle_event``. Each call returns an independent
hook with its own recovery state.
"""

from typing import Optional

from ctxrecover.config.settings import RecoverySettings, load_settings
from ctxrecover.host.client import BaseHostClient
from ctxrecover.host.http_client import HttpHostClient
from ctxrecover.recovery.hook import RecoveryHook
from ctxrecover.storage.paths import StorageLayout
from ctxrecover.storage.tool_outputs import ToolOutputStore
from ctxrecover.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def create_recovery_hook(
    client: Optional[BaseHostClient] = None,
    settings: Optional[RecoverySettings] = None,
    config_file: Optional[str] = None,
    configure_logging: bool = True,
) -> RecoveryHook:
    """
    Build a fully wired :class:`RecoveryHook`.

    Args:
        client: Host API client; an :class:`HttpHostClient` is created from
            settings when omitted
        settings: Explicit settings (loaded from the environment otherwise)
        config_file: Optional YAML settings file used when ``settings`` is None
        configure_logging: Whether to run :func:`setup_logging`

    Returns:
        A hook ready to receive host events
    """
    settings = settings or load_settings(config_file)
    if configure_logging:
        setup_logging(level=settings.log_level, json_logs=settings.json_logs)

    if client is None:
        client = HttpHostClient(
            settings.host_base_url,
            directory=settings.host_directory,
            username=settings.host_username,
            password=settings.host_password,
        )

    storage_root = settings.get_storage_root()
    store = ToolOutputStore(StorageLayout(storage_root))
    logger.info(f"Context recovery enabled (storage: {storage_root})")

    return RecoveryHook(
        client,
        store,
        config=settings.get_recovery_config(),
        dedup_config=settings.get_deduplication_config(),
        error_recovery_delay=settings.error_recovery_delay,
    )
