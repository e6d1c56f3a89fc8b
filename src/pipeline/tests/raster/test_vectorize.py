"""Unit tests for mask vectorization by connected components."""

import numpy as np
import pytest
import xarray as xr
from rasterio.transform import from_origin
from shapely.geometry import MultiPolygon, Point, Polygon, box

from glacierisk.raster.grid import make_raster
from glacierisk.raster.vectorize import (
    POLYGON_COLUMNS,
    MaskPolygon,
    label_components,
    polygons_to_geodataframe,
    vectorize,
)

CHECKERBOARD = np.array(
    [
        [1, 0, 1],
        [0, 1, 0],
        [1, 0, 1],
    ],
    dtype=np.uint8,
)


def make_mask(values) -> xr.DataArray:
    """uint8 mask on a 1-unit grid whose top-left corner is (0, rows)."""
    values = np.asarray(values, dtype=np.uint8)
    return make_raster(values, transform=from_origin(0, values.shape[0], 1, 1))


# ---------------------------------------------------------------------------
# 1. Degenerate masks
# ---------------------------------------------------------------------------

class TestDegenerateMasks:
    """Empty and full masks."""

    def test_empty_mask_yields_no_polygons(self):
        assert vectorize(make_mask(np.zeros((5, 5)))) == []

    def test_full_mask_is_grid_footprint(self):
        polygons = vectorize(make_mask(np.ones((4, 4))))

        assert len(polygons) == 1
        assert polygons[0].geometry.equals(box(0, 0, 4, 4))
        assert polygons[0].pixel_count == 16

    def test_single_pixel(self):
        mask = np.zeros((3, 3))
        mask[1, 1] = 1

        polygons = vectorize(make_mask(mask))

        assert len(polygons) == 1
        assert polygons[0].geometry.equals(box(1, 1, 2, 2))
        assert polygons[0].area == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# 2. Geometry and georeferencing
# ---------------------------------------------------------------------------

class TestGeometry:
    """Outlines follow pixel edges in map coordinates."""

    def test_top_left_block(self):
        """A 2x2 block in the top-left of a 4x4 mask is the box (0,2)-(2,4)."""
        mask = np.zeros((4, 4))
        mask[0:2, 0:2] = 1

        polygons = vectorize(make_mask(mask))

        assert len(polygons) == 1
        assert isinstance(polygons[0].geometry, Polygon)
        assert polygons[0].geometry.equals(box(0, 2, 2, 4))
        assert polygons[0].pixel_count == 4
        assert polygons[0].area == pytest.approx(4.0)

    def test_hole_is_preserved(self):
        ring = np.ones((3, 3))
        ring[1, 1] = 0

        polygons = vectorize(make_mask(ring))

        assert len(polygons) == 1
        geometry = polygons[0].geometry
        assert isinstance(geometry, Polygon)
        assert len(geometry.interiors) == 1
        assert geometry.area == pytest.approx(8.0)

    def test_uses_mask_transform(self, utm_transform):
        mask = np.zeros((4, 4), dtype=np.uint8)
        mask[0, 0] = 1

        polygons = vectorize(make_raster(mask, transform=utm_transform))

        minx, miny, maxx, maxy = polygons[0].geometry.bounds
        assert (minx, maxy) == (utm_transform.c, utm_transform.f)
        assert maxx - minx == pytest.approx(10.0)
        assert polygons[0].area == pytest.approx(100.0)


# ---------------------------------------------------------------------------
# 3. Connectivity
# ---------------------------------------------------------------------------

class TestConnectivity:
    """8-connectivity by default; 4 on request."""

    def test_checkerboard_eight_connected_is_one_component(self):
        polygons = vectorize(make_mask(CHECKERBOARD))

        assert len(polygons) == 1
        assert isinstance(polygons[0].geometry, MultiPolygon)
        assert len(polygons[0].geometry.geoms) == 5
        assert polygons[0].pixel_count == 5

    def test_checkerboard_four_connected_is_five_components(self):
        polygons = vectorize(make_mask(CHECKERBOARD), connectivity=4)

        assert len(polygons) == 5
        assert all(isinstance(p.geometry, Polygon) for p in polygons)
        assert sum(p.pixel_count for p in polygons) == 5

    def test_diagonal_pair_is_multipolygon(self):
        polygons = vectorize(make_mask([[1, 0], [0, 1]]))

        assert len(polygons) == 1
        assert isinstance(polygons[0].geometry, MultiPolygon)
        assert polygons[0].area == pytest.approx(2.0)

    def test_polygon_count_matches_component_count(self):
        rng = np.random.default_rng(7)
        mask = (rng.random((15, 15)) > 0.6).astype(np.uint8)

        for connectivity in (4, 8):
            _, count = label_components(mask, connectivity)
            assert len(vectorize(make_mask(mask), connectivity=connectivity)) == count

    def test_invalid_connectivity(self):
        with pytest.raises(ValueError, match="connectivity"):
            vectorize(make_mask(np.ones((2, 2))), connectivity=6)


# ---------------------------------------------------------------------------
# 4. Ordering and filtering
# ---------------------------------------------------------------------------

class TestOrderingAndFiltering:
    """Output follows raster-scan order of each component's first pixel."""

    def test_raster_scan_order(self):
        mask = np.zeros((4, 4))
        mask[3, 0] = 1
        mask[0, 3] = 1

        polygons = vectorize(make_mask(mask))

        assert [p.component_id for p in polygons] == [1, 2]
        assert polygons[0].geometry.contains(Point(3.5, 3.5))
        assert polygons[1].geometry.contains(Point(0.5, 0.5))

    def test_min_pixels_drops_small_components(self):
        mask = np.zeros((5, 5))
        mask[0:2, 0:2] = 1
        mask[4, 4] = 1

        polygons = vectorize(make_mask(mask), min_pixels=2)

        assert len(polygons) == 1
        assert polygons[0].pixel_count == 4


# ---------------------------------------------------------------------------
# 5. GeoDataFrame conversion
# ---------------------------------------------------------------------------

class TestGeoDataFrame:
    """Polygon sets convert to GeoDataFrames for export."""

    def test_empty_set(self):
        gdf = polygons_to_geodataframe([], "EPSG:32645")

        assert gdf.empty
        assert list(gdf.columns) == POLYGON_COLUMNS
        assert gdf.crs.to_epsg() == 32645

    def test_records(self):
        polygon = MaskPolygon(geometry=box(0, 0, 1, 1), component_id=1, pixel_count=1, area=1.0)

        gdf = polygons_to_geodataframe([polygon], "EPSG:32645")

        assert len(gdf) == 1
        assert gdf.iloc[0]["pixel_count"] == 1

    def test_to_dict_is_feature(self):
        polygon = MaskPolygon(geometry=box(0, 0, 1, 1), component_id=3, pixel_count=1, area=1.0)

        feature = polygon.to_dict()

        assert feature["type"] == "Feature"
        assert feature["properties"]["component_id"] == 3
