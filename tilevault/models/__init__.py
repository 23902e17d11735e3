"""
Data Models Layer.

This package contains Pydantic models that define the core data structures
used throughout the application, such as configuration and region records.
"""

from .config import TileVaultConfig
from .region import Availability, RegionDescriptor, RegionMetadata

__all__ = ["Availability", "RegionDescriptor", "RegionMetadata", "TileVaultConfig"]
