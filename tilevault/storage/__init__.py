"""
Storage Layer.

This package handles all data persistence: the blob store holding cached
archives, the metadata table describing them, the region catalogue, and the
configuration file.
"""

from .blob_store import BlobStore, CacheEntry
from .config_manager import ConfigManager
from .metadata import MetadataTable

__all__ = ["BlobStore", "CacheEntry", "ConfigManager", "MetadataTable"]
