"""Unit tests for slope/aspect derivation and glacier proxies."""

import numpy as np
import pytest
from rasterio.transform import from_origin

from glacierisk.raster.grid import RasterAlignmentError, make_raster
from glacierisk.raster.terrain import (
    FLAT_ASPECT,
    DEMData,
    GlacierProxies,
    derive_slope_aspect,
    estimate_thickness,
)

CELL = 10.0


def make_dem(values: np.ndarray, cell: float = CELL, crs: str = "EPSG:32645"):
    """Elevation raster on a square-cell north-up grid."""
    transform = from_origin(470000.0, 3090000.0, cell, cell)
    return make_raster(values.astype(np.float32), transform=transform, crs=crs)


def plane(rows: int = 7, cols: int = 7, east: float = 0.0, south: float = 0.0) -> np.ndarray:
    """Planar surface rising ``east`` m per column and ``south`` m per row."""
    r, c = np.mgrid[0:rows, 0:cols]
    return 1000.0 + east * c + south * r


def interior(values: np.ndarray) -> np.ndarray:
    return values[1:-1, 1:-1]


# ---------------------------------------------------------------------------
# 1. Slope and aspect of simple planes
# ---------------------------------------------------------------------------

class TestSlopeAspect:
    """Horn gradients on planar surfaces."""

    def test_flat_dem(self):
        dem = derive_slope_aspect(make_dem(np.full((5, 5), 1200.0)))

        np.testing.assert_allclose(dem.slope.values, 0.0)
        np.testing.assert_array_equal(dem.aspect.values, FLAT_ASPECT)

    def test_flat_aspect_is_outside_valid_range(self):
        assert not 0.0 <= FLAT_ASPECT < 360.0

    @pytest.mark.parametrize(
        "east, south, expected_aspect",
        [
            (-10.0, 0.0, 90.0),    # lower to the east
            (10.0, 0.0, 270.0),    # lower to the west
            (0.0, 10.0, 0.0),      # lower to the north
            (0.0, -10.0, 180.0),   # lower to the south
        ],
    )
    def test_aspect_faces_downslope(self, east, south, expected_aspect):
        dem = derive_slope_aspect(make_dem(plane(east=east, south=south)))

        np.testing.assert_allclose(interior(dem.aspect.values), expected_aspect, atol=1e-4)

    def test_unit_gradient_is_45_degrees(self):
        dem = derive_slope_aspect(make_dem(plane(east=-10.0)))

        np.testing.assert_allclose(interior(dem.slope.values), 45.0, atol=1e-4)

    def test_diagonal_plane(self):
        """Lower to the north-east: aspect 45."""
        dem = derive_slope_aspect(make_dem(plane(east=-10.0, south=10.0)))

        np.testing.assert_allclose(interior(dem.aspect.values), 45.0, atol=1e-4)
        expected_slope = np.degrees(np.arctan(np.sqrt(2.0)))
        np.testing.assert_allclose(interior(dem.slope.values), expected_slope, atol=1e-4)

    def test_explicit_cell_size(self):
        dem = derive_slope_aspect(make_dem(plane(east=-10.0)), cell_size=20.0)

        expected = np.degrees(np.arctan(0.5))
        np.testing.assert_allclose(interior(dem.slope.values), expected, atol=1e-4)

    def test_slope_range(self):
        rng = np.random.default_rng(3)
        dem = derive_slope_aspect(make_dem(rng.uniform(0, 5000, (20, 20))))

        assert np.nanmin(dem.slope.values) >= 0.0
        assert np.nanmax(dem.slope.values) <= 90.0
        aspect = dem.aspect.values
        assert ((aspect == FLAT_ASPECT) | ((aspect >= 0) & (aspect < 360))).all()

    def test_outputs_share_dem_grid(self):
        elevation = make_dem(plane())
        dem = derive_slope_aspect(elevation)

        assert dem.slope.rio.transform() == elevation.rio.transform()
        assert dem.aspect.shape == elevation.shape
        assert isinstance(dem, DEMData)


# ---------------------------------------------------------------------------
# 2. No-data and geographic grids
# ---------------------------------------------------------------------------

class TestNoDataAndCellSize:
    """No-data propagation and degree-to-metre conversion."""

    def test_nodata_window_is_nan(self):
        values = plane(east=-10.0)
        values[3, 3] = np.nan

        dem = derive_slope_aspect(make_dem(values))

        nan_slope = np.isnan(dem.slope.values)
        expected = np.zeros((7, 7), dtype=bool)
        expected[2:5, 2:5] = True
        np.testing.assert_array_equal(nan_slope, expected)
        np.testing.assert_array_equal(np.isnan(dem.aspect.values), expected)

    def test_geographic_cell_size(self):
        lat = 28.0
        res = 0.001
        elevation = make_raster(
            np.full((4, 4), 4000.0, dtype=np.float32),
            transform=from_origin(86.7, lat, res, res),
            crs="EPSG:4326",
        )

        dem = DEMData.from_raster(elevation)

        center_lat = lat - 2 * res
        cell_x = res * 111_320.0 * np.cos(np.radians(center_lat))
        cell_y = res * 111_320.0
        assert dem.resolution_m == pytest.approx((cell_x + cell_y) / 2, rel=1e-6)


# ---------------------------------------------------------------------------
# 3. Glacier proxies
# ---------------------------------------------------------------------------

class TestGlacierProxies:
    """thickness = slope * snowline / 100 above the snowline."""

    def test_thickness_formula(self):
        elevation = make_dem(np.array([[3500.0, 2500.0], [3000.0, 2999.0]]))
        slope = make_dem(np.full((2, 2), 20.0))

        proxies = estimate_thickness(elevation, slope, snowline_elevation=3000, velocity_factor=0.02)

        assert isinstance(proxies, GlacierProxies)
        thickness = proxies.thickness.values
        assert thickness[0, 0] == pytest.approx(600.0)
        assert thickness[1, 0] == pytest.approx(600.0)  # at the snowline counts
        assert np.isnan(thickness[0, 1])
        assert np.isnan(thickness[1, 1])

    def test_velocity_is_scaled_thickness(self):
        elevation = make_dem(np.full((2, 2), 4000.0))
        slope = make_dem(np.full((2, 2), 30.0))

        proxies = estimate_thickness(elevation, slope, snowline_elevation=3000, velocity_factor=0.02)

        np.testing.assert_allclose(proxies.velocity.values, 900.0 * 0.02, rtol=1e-6)

    def test_snowline_mask(self):
        elevation = make_dem(np.array([[3500.0, np.nan], [2000.0, 3000.0]]))
        slope = make_dem(np.full((2, 2), 10.0))

        proxies = estimate_thickness(elevation, slope, snowline_elevation=3000)

        np.testing.assert_array_equal(proxies.snowline_mask.values, [[1, 0], [0, 1]])
        assert proxies.snowline_mask.dtype == np.uint8

    def test_defaults_from_config(self):
        elevation = make_dem(np.full((2, 2), 5000.0))
        slope = make_dem(np.full((2, 2), 10.0))

        proxies = estimate_thickness(elevation, slope)

        assert proxies.snowline_elevation_m == 3000.0
        assert proxies.velocity_factor == 0.02
        np.testing.assert_allclose(proxies.thickness.values, 300.0)

    def test_derives_slope_when_missing(self):
        proxies = estimate_thickness(make_dem(np.full((3, 3), 4000.0)))

        np.testing.assert_allclose(proxies.thickness.values, 0.0)

    def test_misaligned_slope_raises(self):
        elevation = make_dem(np.full((3, 3), 4000.0))
        slope = make_dem(np.full((3, 4), 10.0))

        with pytest.raises(RasterAlignmentError):
            estimate_thickness(elevation, slope)
