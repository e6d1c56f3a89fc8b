"""Time-stamped raster collections, period composites and time series."""

from glacierisk.temporal.aggregate import (
    Composite,
    TimeSeries,
    aggregate_by_period,
    build_time_series,
    cloud_filtered_median,
    reduce_region,
)
from glacierisk.temporal.collection import CollectionMember, RasterCollection, RasterSource

__all__ = [
    "RasterCollection",
    "CollectionMember",
    "RasterSource",
    "Composite",
    "TimeSeries",
    "aggregate_by_period",
    "cloud_filtered_median",
    "reduce_region",
    "build_time_series",
]
