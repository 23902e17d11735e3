"""
Pydantic models for region descriptors and the per-resource metadata records
kept alongside cached archives.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class RegionDescriptor(BaseModel):
    """
    A downloadable regional tile archive as listed in the region catalogue.

    Accepts both the canonical field names and the legacy catalogue shape
    (``code``, ``pmtiles_url``, ``size_mb``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(validation_alias=AliasChoices("id", "code"))
    label: str = ""
    source_url: str = Field(
        validation_alias=AliasChoices("source_url", "sourceUrl", "pmtiles_url")
    )
    approximate_size_mib: float | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "approximate_size_mib", "approximateSizeMiB", "size_mb"
        ),
    )

    @field_validator("id", "source_url")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Region id and source URL cannot be empty.")
        return v.strip()

    @property
    def display_label(self) -> str:
        return f"{self.label} ({self.id})" if self.label else self.id


class RegionMetadata(BaseModel):
    """The persisted record describing a completed region transfer."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    code: str
    label: str = ""
    byte_size: int = Field(alias="byteSize", ge=0)
    fetched_at: datetime = Field(alias="fetchedAt")

    def to_record(self) -> dict:
        """Serializes the record in its on-disk shape."""
        return self.model_dump(by_alias=True, mode="json", exclude={"url"})


@dataclass(frozen=True)
class Availability:
    """Result of an availability query after metadata re-validation."""

    url: str
    available: bool
    byte_size: int | None = None
    metadata: RegionMetadata | None = None
