"""
Wires the storage layer and core engine together from a validated config.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from tilevault.models.config import TileVaultConfig
from tilevault.models.region import RegionDescriptor
from tilevault.storage.blob_store import BlobStore
from tilevault.storage.metadata import MetadataTable
from tilevault.storage.regions import load_regions
from tilevault.utils.structured_logger import (
    StructuredLogger,
    create_structured_logger,
)

from .interceptor import FetchInterceptor
from .notifier import StateNotifier
from .transfer_manager import RegionTransferManager

log = logging.getLogger(__name__)


@dataclass
class OfflineContext:
    """Everything a CLI command or the proxy server needs to operate the cache."""

    config: TileVaultConfig
    store: BlobStore
    metadata: MetadataTable
    manager: RegionTransferManager
    interceptor: FetchInterceptor
    notifier: StateNotifier
    structured_logger: StructuredLogger
    regions: list[RegionDescriptor] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: TileVaultConfig) -> "OfflineContext":
        data_dir = Path(config.data_dir).expanduser()
        store = BlobStore(data_dir / "blobs", quota_bytes=config.store_quota_bytes)
        store.clear_staging()
        log.debug(f"Offline cache rooted at '{data_dir}'.")
        metadata = MetadataTable(data_dir)
        notifier = StateNotifier()
        base_logger, transfer_logger = create_structured_logger(
            log_dir=data_dir / "logs", enable_json=config.json_log
        )
        base_logger.set_session_context(data_dir=str(data_dir))
        manager = RegionTransferManager(
            store,
            metadata,
            chunk_size=config.chunk_size,
            connect_timeout=config.connect_timeout,
            streaming=config.streaming,
            notifier=notifier,
            transfer_logger=transfer_logger,
        )
        interceptor = FetchInterceptor(
            store,
            tile_pattern=config.tile_pattern,
            connect_timeout=config.connect_timeout,
        )
        return cls(
            config=config,
            store=store,
            metadata=metadata,
            manager=manager,
            interceptor=interceptor,
            notifier=notifier,
            structured_logger=base_logger,
        )

    async def load_regions(self) -> list[RegionDescriptor]:
        """Loads the region catalogue named in the config."""
        self.regions = await load_regions(
            self.config.regions_source, self.config.tiles_base_url
        )
        return self.regions

    async def close(self) -> None:
        await self.manager.close()
        self.structured_logger.close()
