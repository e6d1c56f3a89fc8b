"""Temporal compositing, zonal reduction and time-series assembly."""

import math
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Hashable, Iterable, Sequence

import numpy as np
import pandas as pd
import structlog
import xarray as xr
from pyproj import CRS
from rasterio import features
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from glacierisk.geo_utils import geographic_cell_size_m, reproject_geometry
from glacierisk.raster.grid import assert_aligned, single_band, valid_mask
from glacierisk.temporal.collection import CollectionMember, RasterCollection

logger = structlog.get_logger()

PIXEL_REDUCERS = ("mean", "median", "sum", "min", "max")

_REGION_REDUCERS: dict[str, Callable[[np.ndarray], Any]] = {
    "mean": np.mean,
    "median": np.median,
    "sum": np.sum,
    "min": np.min,
    "max": np.max,
}


def month_of(timestamp: datetime) -> int:
    """Calendar month (1-12)."""
    return timestamp.month


def year_of(timestamp: datetime) -> int:
    return timestamp.year


def date_of(timestamp: datetime) -> date:
    """Calendar date, for per-day series."""
    return timestamp.date()


def _check_reducer(reducer: str) -> None:
    if reducer not in PIXEL_REDUCERS:
        raise ValueError(f"Unknown reducer '{reducer}'. Choose from: {list(PIXEL_REDUCERS)}")


@dataclass(frozen=True)
class Composite:
    """A pixel-wise reduction of the rasters of one period.

    ``data`` is a NaN grid when the period had no contributing rasters, or
    None when no grid was known to build one on.
    """

    period: Hashable
    data: xr.DataArray | None
    sources: tuple[datetime, ...] = ()
    reducer: str = "mean"

    @property
    def is_empty(self) -> bool:
        return not self.sources or self.data is None


def reduce_rasters(rasters: Sequence[xr.DataArray], reducer: str = "mean") -> xr.DataArray:
    """Reduce aligned rasters pixel-wise, skipping NaN.

    Args:
        rasters: Non-empty sequence of rasters on one grid.
        reducer: One of mean, median, sum, min, max.

    Returns:
        Float32 raster on the shared grid; NaN where no input had data.

    Raises:
        RasterAlignmentError: If the rasters are not aligned.
    """
    _check_reducer(reducer)
    if not rasters:
        raise ValueError("Cannot reduce an empty raster sequence")
    assert_aligned(*rasters)

    reference = rasters[0]
    stacked = xr.concat(
        [r.astype(np.float32).drop_vars("spatial_ref", errors="ignore") for r in rasters],
        dim="time",
        join="override",
    )
    if reducer == "sum":
        reduced = stacked.sum("time", skipna=True, min_count=1)
    else:
        reduced = getattr(stacked, reducer)("time", skipna=True)

    reduced = reduced.astype(np.float32)
    reduced = reduced.rio.write_crs(reference.rio.crs)
    reduced = reduced.rio.write_transform(reference.rio.transform())
    return reduced.rio.write_nodata(np.nan)


def _empty_like(template: xr.DataArray) -> xr.DataArray:
    empty = template.astype(np.float32).copy(
        data=np.full(template.shape, np.nan, dtype=np.float32)
    )
    return empty.rio.write_nodata(np.nan)


def composite_members(
    members: Sequence[CollectionMember],
    period: Hashable,
    reducer: str = "mean",
    template: xr.DataArray | None = None,
) -> Composite:
    """Build one period composite from collection members."""
    if not members:
        data = _empty_like(template) if template is not None else None
        return Composite(period=period, data=data, sources=(), reducer=reducer)

    data = reduce_rasters([m.raster for m in members], reducer)
    return Composite(
        period=period,
        data=data,
        sources=tuple(m.timestamp for m in members),
        reducer=reducer,
    )


def aggregate_by_period(
    collection: RasterCollection,
    period_fn: Callable[[datetime], Hashable],
    reducer: str = "mean",
    periods: Iterable[Hashable] | None = None,
    max_cloud_cover: float | None = None,
    template: xr.DataArray | None = None,
) -> list[Composite]:
    """Group a collection into periods and composite each period.

    Args:
        collection: Source rasters.
        period_fn: Maps a timestamp to a period key (e.g. ``month_of``).
        reducer: Pixel statistic (mean, median, sum, min, max).
        periods: Periods to emit. When given, every listed period appears in
            the output (empty ones included) and members outside them are
            ignored. Defaults to the periods present in the collection.
        max_cloud_cover: When set, only members with cloud cover strictly
            below it contribute.
        template: Grid for empty composites. Defaults to the first member.

    Returns:
        Composites ordered by period key.
    """
    _check_reducer(reducer)
    if template is None and len(collection):
        template = collection.members[0].raster

    if max_cloud_cover is not None:
        collection = collection.filter_cloud(max_cloud_cover)

    groups: dict[Hashable, list[CollectionMember]] = defaultdict(list)
    for member in collection:
        groups[period_fn(member.timestamp)].append(member)

    keys = sorted(periods) if periods is not None else sorted(groups)
    ignored = set(groups) - set(keys)
    if ignored:
        logger.debug("Members outside requested periods ignored", periods=sorted(ignored))

    composites = [composite_members(groups.get(key, []), key, reducer, template) for key in keys]

    empty = [c.period for c in composites if c.is_empty]
    logger.info(
        "Aggregated collection by period",
        reducer=reducer,
        periods=len(composites),
        members=len(collection),
        empty_periods=empty,
    )
    return composites


def cloud_filtered_median(collection: RasterCollection, max_cloud_cover: float = 5.0) -> Composite:
    """Median composite of the members below a cloud-cover threshold."""
    template = collection.members[0].raster if len(collection) else None
    kept = collection.filter_cloud(max_cloud_cover)
    logger.info(
        "Building cloud-filtered median",
        max_cloud_cover=max_cloud_cover,
        candidates=len(collection),
        kept=len(kept),
    )
    return composite_members(kept.members, period="median", reducer="median", template=template)


def combine_composites(composites: Sequence[Composite], reducer: str = "mean", period: Hashable = "all") -> Composite:
    """Reduce the non-empty composites of a series into one composite."""
    filled = [c for c in composites if not c.is_empty]
    if not filled:
        template = next((c.data for c in composites if c.data is not None), None)
        data = _empty_like(template) if template is not None else None
        return Composite(period=period, data=data, sources=(), reducer=reducer)

    data = reduce_rasters([c.data for c in filled], reducer)
    sources = tuple(sorted(ts for c in filled for ts in c.sources))
    return Composite(period=period, data=data, sources=sources, reducer=reducer)


def _block_mean(values: np.ndarray, factor: int) -> np.ndarray:
    """Average non-overlapping factor x factor blocks, skipping NaN.

    Partial blocks at the right and bottom edges average their valid pixels.
    Computed from sums and counts.
    """
    rows, cols = values.shape
    padded = np.pad(
        values,
        ((0, (-rows) % factor), (0, (-cols) % factor)),
        constant_values=np.nan,
    )
    blocks = padded.reshape(padded.shape[0] // factor, factor, padded.shape[1] // factor, factor)
    valid = ~np.isnan(blocks)
    sums = np.where(valid, blocks, 0.0).sum(axis=(1, 3))
    counts = valid.sum(axis=(1, 3))
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)


def _resolution_m(raster: xr.DataArray) -> float:
    res_x, res_y = raster.rio.resolution()
    crs = raster.rio.crs
    if crs is not None and CRS.from_user_input(crs).is_geographic:
        _, min_y, _, max_y = raster.rio.bounds()
        cell_x, cell_y = geographic_cell_size_m(res_x, res_y, (min_y + max_y) / 2)
        return min(cell_x, cell_y)
    return min(abs(float(res_x)), abs(float(res_y)))


def reduce_region(
    raster: xr.DataArray,
    geometry: BaseGeometry,
    reducer: str = "mean",
    scale: float | None = None,
    band: str | None = None,
    geometry_crs: Any = None,
) -> float:
    """Reduce the valid pixels of a raster inside a geometry to one value.

    A pixel is included iff its centre falls inside the geometry. When
    ``scale`` (metres) is coarser than the native resolution, the included
    pixels are then block-averaged by ``round(scale / resolution)`` and every
    block holding at least one of them contributes; a finer scale
    keeps the native grid.

    Args:
        raster: Single-band raster, or multi-band with ``band`` given.
        geometry: Region geometry.
        reducer: mean, median, sum, min or max.
        scale: Sampling resolution in metres.
        band: Band to reduce for multi-band rasters.
        geometry_crs: CRS of the geometry (default: the raster CRS).

    Returns:
        The reduced value, or NaN if no valid pixel falls inside.
    """
    if reducer not in _REGION_REDUCERS:
        raise ValueError(f"Unknown reducer '{reducer}'. Choose from: {list(_REGION_REDUCERS)}")

    da = single_band(raster, band)
    geometry = reproject_geometry(geometry, geometry_crs, da.rio.crs)
    if geometry.is_empty:
        return math.nan

    values = np.where(valid_mask(da), da.values.astype(np.float64), np.nan)
    inside = features.geometry_mask(
        [mapping(geometry)],
        out_shape=values.shape,
        transform=da.rio.transform(),
        invert=True,
        all_touched=False,
    )
    # Inclusion is decided on the native grid, before any resampling.
    values[~inside] = np.nan

    if scale is not None:
        factor = int(round(scale / _resolution_m(da)))
        if factor > 1:
            values = _block_mean(values, factor)

    selected = values[~np.isnan(values)]
    if selected.size == 0:
        return math.nan
    return float(_REGION_REDUCERS[reducer](selected))


@dataclass(frozen=True)
class TimeSeriesEntry:
    """One period of a time series. NaN marks an unmeasured period."""

    period: Hashable
    value: float
    source_count: int = 0

    @property
    def is_missing(self) -> bool:
        return math.isnan(self.value)


@dataclass
class TimeSeries:
    """Scalar time series ordered by period key."""

    name: str
    entries: list[TimeSeriesEntry] = field(default_factory=list)
    period_name: str = "period"

    def __post_init__(self) -> None:
        self.entries = sorted(self.entries, key=lambda e: e.period)
        periods = [e.period for e in self.entries]
        if len(set(periods)) != len(periods):
            raise ValueError(f"Duplicate periods in time series '{self.name}'")

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def periods(self) -> list[Hashable]:
        return [e.period for e in self.entries]

    @property
    def values(self) -> list[float]:
        return [e.value for e in self.entries]

    @property
    def missing_periods(self) -> list[Hashable]:
        return [e.period for e in self.entries if e.is_missing]

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to a DataFrame with period, value and source count columns."""
        return pd.DataFrame(
            {
                self.period_name: self.periods,
                self.name: self.values,
                "source_count": [e.source_count for e in self.entries],
            }
        )

    def to_csv(self, path: Path) -> Path:
        """Write the series to CSV; unmeasured periods are empty cells."""
        self.to_dataframe().to_csv(path, index=False, na_rep="")
        return path


def build_time_series(
    composites: Sequence[Composite],
    geometry: BaseGeometry,
    reducer: str = "mean",
    scale: float | None = None,
    name: str = "value",
    unit_factor: float = 1.0,
    band: str | None = None,
    geometry_crs: Any = None,
    period_name: str = "period",
    workers: int | None = None,
) -> TimeSeries:
    """Reduce each period composite over a region into a time series.

    Empty composites yield NaN entries rather than being dropped, so an
    unmeasured period stays distinguishable from a measured zero. Entries
    are ordered by period, whatever order the reductions finish in.

    Args:
        composites: Period composites.
        geometry: Region to reduce over.
        reducer: Region statistic.
        scale: Sampling resolution in metres.
        name: Value column name.
        unit_factor: Multiplier applied to each reduced value.
        band: Band to reduce for multi-band composites.
        geometry_crs: CRS of the geometry.
        period_name: Period column name.
        workers: Thread count for parallel reductions.

    Returns:
        TimeSeries with one entry per composite.
    """

    def _entry(composite: Composite) -> TimeSeriesEntry:
        if composite.is_empty:
            return TimeSeriesEntry(composite.period, math.nan, 0)
        value = reduce_region(
            composite.data,
            geometry,
            reducer=reducer,
            scale=scale,
            band=band,
            geometry_crs=geometry_crs,
        )
        return TimeSeriesEntry(composite.period, value * unit_factor, len(composite.sources))

    if workers and workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            entries = list(executor.map(_entry, composites))
    else:
        entries = [_entry(c) for c in composites]

    series = TimeSeries(name=name, entries=entries, period_name=period_name)
    logger.info(
        "Built time series",
        name=name,
        entries=len(series),
        missing=len(series.missing_periods),
    )
    return series
