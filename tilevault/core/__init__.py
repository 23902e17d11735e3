"""
Core offline-cache engine.

The `FetchInterceptor` answers tile requests from the blob store (delegating
Range handling to the range virtualizer), while the `RegionTransferManager`
downloads whole archives and keeps the metadata table consistent. The
`OfflineWorker` exposes both through a typed command/event channel.
"""

from .interceptor import FetchInterceptor, Route
from .notifier import ChangeKind, StateChange, StateNotifier
from .range_virtualizer import TileResponse, virtualize_range
from .transfer_manager import RegionTransferManager, TransferSession
from .worker import OfflineWorker

__all__ = [
    "ChangeKind",
    "FetchInterceptor",
    "OfflineWorker",
    "RegionTransferManager",
    "Route",
    "StateChange",
    "StateNotifier",
    "TileResponse",
    "TransferSession",
    "virtualize_range",
]
