"""Precipitation climatology and land-surface-temperature indicators."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import numpy as np
import structlog
import xarray as xr
from shapely.geometry.base import BaseGeometry

from glacierisk.config import get_config
from glacierisk.temporal.aggregate import (
    Composite,
    TimeSeries,
    aggregate_by_period,
    build_time_series,
    combine_composites,
    date_of,
    month_of,
)
from glacierisk.temporal.collection import RasterCollection

logger = structlog.get_logger()

MONTHS = list(range(1, 13))


@dataclass
class ClimatologyResult:
    """Period composites, their regional series and the overall mean map."""

    composites: list[Composite]
    series: TimeSeries
    mean_map: xr.DataArray | None

    @property
    def sources(self) -> tuple[datetime, ...]:
        return tuple(sorted(ts for c in self.composites for ts in c.sources))


def monthly_precipitation(
    collection: RasterCollection,
    geometry: BaseGeometry,
    year: int | None = None,
    scale: float | None = None,
    unit_factor: float | None = None,
    geometry_crs: Any = None,
    workers: int | None = None,
) -> ClimatologyResult:
    """Monthly mean precipitation for one calendar year.

    Each month's composite is the mean of the collection rasters dated in
    that month. The regional monthly value and the annual mean map are
    multiplied by ``unit_factor`` (100 by default, the fixed conversion the
    CHIRPS pentad workflow applies). Months without data are NaN entries.

    Args:
        collection: Precipitation rasters (e.g. CHIRPS pentads).
        geometry: Study-area geometry.
        year: Calendar year (default from config).
        scale: Region sampling resolution in metres (default 5000).
        unit_factor: Output multiplier (default 100).
        geometry_crs: CRS of the geometry.
        workers: Thread count for the regional reductions.

    Returns:
        ClimatologyResult keyed by month 1..12.
    """
    config = get_config()
    year = year if year is not None else config.climate.year
    scale = scale if scale is not None else config.climate.precipitation_scale_m
    unit_factor = unit_factor if unit_factor is not None else config.climate.precipitation_unit_factor

    logger.info("Computing monthly precipitation", year=year, members=len(collection))

    in_year = collection.filter_date(datetime(year, 1, 1), datetime(year + 1, 1, 1))
    template = collection.members[0].raster if len(collection) else None
    composites = aggregate_by_period(
        in_year,
        month_of,
        reducer="mean",
        periods=MONTHS,
        template=template,
    )

    series = build_time_series(
        composites,
        geometry,
        reducer="mean",
        scale=scale,
        name="mean_precipitation",
        unit_factor=unit_factor,
        geometry_crs=geometry_crs,
        period_name="month",
        workers=workers,
    )

    annual = combine_composites(composites, reducer="mean", period=year)
    mean_map = annual.data * unit_factor if annual.data is not None else None
    if mean_map is not None:
        mean_map = mean_map.rename("annual_mean_precipitation")

    logger.info(
        "Monthly precipitation complete",
        year=year,
        missing_months=series.missing_periods,
    )
    return ClimatologyResult(composites=composites, series=series, mean_map=mean_map)


def lst_to_celsius(
    collection: RasterCollection,
    scale_factor: float | None = None,
    offset: float | None = None,
) -> RasterCollection:
    """Convert MODIS LST digital numbers to degrees Celsius.

    celsius = DN * scale_factor + offset. A raw value of 0 is the MODIS fill
    value and becomes NaN.
    """
    config = get_config()
    scale_factor = scale_factor if scale_factor is not None else config.climate.lst_scale_factor
    offset = offset if offset is not None else config.climate.lst_offset

    def _convert(raster: xr.DataArray) -> xr.DataArray:
        raw = raster.astype(np.float32)
        celsius = xr.where(raw != 0, raw * scale_factor + offset, np.nan).astype(np.float32)
        celsius = celsius.rio.write_crs(raster.rio.crs)
        celsius = celsius.rio.write_transform(raster.rio.transform())
        return celsius.rio.write_nodata(np.nan)

    return collection.map(_convert)


def lst_time_series(
    collection: RasterCollection,
    geometry: BaseGeometry,
    scale: float | None = None,
    geometry_crs: Any = None,
    workers: int | None = None,
) -> ClimatologyResult:
    """Daily regional mean LST and the mean LST map.

    Args:
        collection: LST rasters already in degrees Celsius.
        geometry: Study-area geometry.
        scale: Region sampling resolution in metres (default 1000).
        geometry_crs: CRS of the geometry.
        workers: Thread count for the regional reductions.

    Returns:
        ClimatologyResult keyed by date.
    """
    config = get_config()
    scale = scale if scale is not None else config.climate.lst_scale_m

    logger.info("Computing LST time series", members=len(collection))

    composites = aggregate_by_period(collection, date_of, reducer="mean")
    series = build_time_series(
        composites,
        geometry,
        reducer="mean",
        scale=scale,
        name="mean_lst_celsius",
        geometry_crs=geometry_crs,
        period_name="date",
        workers=workers,
    )

    overall = combine_composites(composites, reducer="mean", period="all")
    mean_map = overall.data.rename("mean_lst_celsius") if overall.data is not None else None

    return ClimatologyResult(composites=composites, series=series, mean_map=mean_map)
