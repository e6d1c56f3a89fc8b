"""Time-stamped raster collections and the raster source boundary."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Protocol, Sequence

import structlog
import xarray as xr
from shapely.geometry.base import BaseGeometry

from glacierisk.raster.grid import band_names

logger = structlog.get_logger()


@dataclass(frozen=True)
class CollectionMember:
    """One raster of a collection with its acquisition time and metadata."""

    raster: xr.DataArray
    timestamp: datetime
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def cloud_cover(self) -> float | None:
        """Scene cloud cover percentage, if known."""
        value = self.properties.get("cloud_cover")
        return float(value) if value is not None else None

    @property
    def item_id(self) -> str | None:
        return self.properties.get("id")


@dataclass
class RasterCollection:
    """Ordered sequence of time-stamped rasters sharing one band schema.

    Members are sorted by timestamp. The sequence is not assumed to be
    contiguous or evenly spaced in time.
    """

    members: list[CollectionMember] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.members = sorted(self.members, key=lambda m: m.timestamp)
        if self.members:
            schema = band_names(self.members[0].raster)
            for member in self.members[1:]:
                if band_names(member.raster) != schema:
                    raise ValueError(
                        f"Band schema mismatch at {member.timestamp.isoformat()}: "
                        f"{band_names(member.raster)} != {schema}"
                    )

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[CollectionMember]:
        return iter(self.members)

    @property
    def bands(self) -> list[str]:
        """Band names shared by all members (empty for single-band members)."""
        return band_names(self.members[0].raster) if self.members else []

    @property
    def timestamps(self) -> list[datetime]:
        return [m.timestamp for m in self.members]

    def filter(self, predicate: Callable[[CollectionMember], bool]) -> "RasterCollection":
        """Keep members for which ``predicate`` is true."""
        return RasterCollection([m for m in self.members if predicate(m)])

    def filter_date(self, start: datetime, end: datetime) -> "RasterCollection":
        """Keep members with start <= timestamp < end."""
        return self.filter(lambda m: start <= m.timestamp < end)

    def filter_cloud(self, max_cloud_cover: float) -> "RasterCollection":
        """Keep members whose cloud cover is strictly below the threshold.

        Members without cloud metadata are excluded.
        """
        kept = self.filter(
            lambda m: m.cloud_cover is not None and m.cloud_cover < max_cloud_cover
        )
        logger.debug(
            "Cloud filter applied",
            max_cloud_cover=max_cloud_cover,
            kept=len(kept),
            dropped=len(self) - len(kept),
        )
        return kept

    def map(self, fn: Callable[[xr.DataArray], xr.DataArray]) -> "RasterCollection":
        """Apply a raster transform to every member, keeping time and metadata."""
        return RasterCollection(
            [CollectionMember(fn(m.raster), m.timestamp, dict(m.properties)) for m in self.members]
        )


class RasterSource(Protocol):
    """Supplier of time-stamped rasters for a geometry and date range.

    Implementations may fail per item; they return whatever loaded, so the
    collection may have gaps.
    """

    def fetch_collection(
        self,
        bands: Sequence[str],
        geometry: BaseGeometry,
        date_range: tuple[str, str],
        max_cloud_cover: float | None = None,
    ) -> RasterCollection: ...
