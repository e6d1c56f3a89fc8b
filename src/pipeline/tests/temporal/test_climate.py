"""Unit tests for the precipitation and LST indicators."""

import math
from datetime import datetime

import numpy as np
import pytest
from rasterio.transform import from_origin
from shapely.geometry import box

from glacierisk.raster.grid import make_raster
from glacierisk.temporal.climate import (
    ClimatologyResult,
    lst_time_series,
    lst_to_celsius,
    monthly_precipitation,
)
from glacierisk.temporal.collection import CollectionMember, RasterCollection

TRANSFORM = from_origin(400000.0, 3100000.0, 1000.0, 1000.0)
REGION = box(400000.0, 3090000.0, 410000.0, 3100000.0)


def raster(value: float):
    return make_raster(np.full((10, 10), value, dtype=np.float32), transform=TRANSFORM, crs="EPSG:32645")


@pytest.fixture
def pentads():
    """CHIRPS-like pentads: six per month in 2024 (March missing), plus 2023 noise."""
    members = []
    for month in range(1, 13):
        if month == 3:
            continue
        for pentad in range(6):
            day = 5 * pentad + 1
            members.append(CollectionMember(raster(month + pentad * 0.1), datetime(2024, month, day)))
    members.append(CollectionMember(raster(1000.0), datetime(2023, 12, 26)))
    return RasterCollection(members)


class TestMonthlyPrecipitation:
    """Monthly mean composites scaled by the unit factor."""

    def test_twelve_months(self, pentads):
        result = monthly_precipitation(pentads, REGION, year=2024)

        assert isinstance(result, ClimatologyResult)
        assert result.series.periods == list(range(1, 13))
        assert result.series.period_name == "month"
        assert result.series.name == "mean_precipitation"

    def test_monthly_values_scaled(self, pentads):
        result = monthly_precipitation(pentads, REGION, year=2024, unit_factor=100.0)

        # mean of month + 0.0 .. 0.5 is month + 0.25
        assert result.series.values[0] == pytest.approx(125.0, rel=1e-5)
        assert result.series.values[11] == pytest.approx(1225.0, rel=1e-5)

    def test_missing_month_is_nan(self, pentads):
        result = monthly_precipitation(pentads, REGION, year=2024)

        assert result.series.missing_periods == [3]
        assert math.isnan(result.series.values[2])
        assert np.isnan(result.composites[2].data.values).all()

    def test_other_years_excluded(self, pentads):
        result = monthly_precipitation(pentads, REGION, year=2024)

        assert all(ts.year == 2024 for ts in result.sources)
        assert result.series.values[11] < 2000

    def test_annual_mean_map(self, pentads):
        result = monthly_precipitation(pentads, REGION, year=2024, unit_factor=100.0)

        expected = np.mean([m + 0.25 for m in range(1, 13) if m != 3]) * 100.0
        np.testing.assert_allclose(result.mean_map.values, expected, rtol=1e-5)
        assert result.mean_map.name == "annual_mean_precipitation"
        assert result.mean_map.rio.crs.to_epsg() == 32645

    def test_no_data_year(self, pentads):
        result = monthly_precipitation(pentads, REGION, year=2020)

        assert len(result.series.missing_periods) == 12
        assert np.isnan(result.mean_map.values).all()

    def test_defaults_from_config(self, pentads, default_config):
        default_config.climate.precipitation_unit_factor = 1.0

        result = monthly_precipitation(pentads, REGION, year=2024)

        assert result.series.values[0] == pytest.approx(1.25, rel=1e-5)


class TestLandSurfaceTemperature:
    """MODIS digital numbers to Celsius and daily series."""

    def test_conversion(self):
        collection = RasterCollection([CollectionMember(raster(15000.0), datetime(2024, 7, 1))])

        celsius = lst_to_celsius(collection)

        np.testing.assert_allclose(celsius.members[0].raster.values, 15000 * 0.02 - 273.15, rtol=1e-5)

    def test_fill_value_becomes_nan(self):
        values = np.full((10, 10), 14000.0, dtype=np.float32)
        values[0, 0] = 0.0
        collection = RasterCollection([
            CollectionMember(make_raster(values, transform=TRANSFORM), datetime(2024, 7, 1)),
        ])

        converted = lst_to_celsius(collection).members[0].raster.values

        assert np.isnan(converted[0, 0])
        assert np.isfinite(converted[1:, 1:]).all()

    def test_daily_series(self):
        collection = RasterCollection([
            CollectionMember(raster(10.0), datetime(2024, 7, 1, 5)),
            CollectionMember(raster(20.0), datetime(2024, 7, 2, 5)),
            CollectionMember(raster(30.0), datetime(2024, 7, 4, 5)),
        ])

        result = lst_time_series(collection, REGION)

        assert [p.isoformat() for p in result.series.periods] == ["2024-07-01", "2024-07-02", "2024-07-04"]
        assert result.series.values == pytest.approx([10.0, 20.0, 30.0])
        np.testing.assert_allclose(result.mean_map.values, 20.0)
        assert result.series.name == "mean_lst_celsius"
