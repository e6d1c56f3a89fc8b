"""Tests for writing rasters, polygons, time series and full analysis outputs."""

import json
import math
from datetime import datetime

import geopandas as gpd
import numpy as np
import pytest
import rioxarray as rxr
from shapely.geometry import box

from glacierisk.export import export_outputs, write_polygons, write_raster, write_time_series
from glacierisk.pipeline import AnalysisOutputs
from glacierisk.raster.grid import NODATA_LABEL, make_raster
from glacierisk.raster.terrain import derive_slope_aspect, estimate_thickness
from glacierisk.raster.vectorize import vectorize
from glacierisk.raster.water import detect_water
from glacierisk.temporal.aggregate import TimeSeries, TimeSeriesEntry
from glacierisk.vector import StudyArea


# ---------------------------------------------------------------------------
# 1. Rasters
# ---------------------------------------------------------------------------

class TestWriteRaster:
    """GeoTIFF plus JSON sidecar."""

    def test_float_raster_nodata_and_sidecar(self, tmp_path, utm_transform):
        values = np.ones((4, 5), dtype=np.float32)
        values[0, 0] = np.nan
        raster = make_raster(values, transform=utm_transform, name="slope")
        sources = [datetime(2024, 1, 6), datetime(2024, 2, 11)]

        path = write_raster(raster, tmp_path / "out" / "slope.tif", sources)

        assert path.exists()
        reopened = rxr.open_rasterio(path, masked=True).squeeze("band", drop=True)
        assert reopened.shape == (4, 5)
        assert np.isnan(reopened.values[0, 0])
        assert reopened.rio.crs.to_epsg() == 32645

        metadata = json.loads((tmp_path / "out" / "slope.json").read_text())
        assert metadata["name"] == "slope"
        assert metadata["shape"] == [4, 5]
        assert metadata["crs"] == "EPSG:32645"
        assert metadata["transform"][:3] == [10.0, 0.0, 470000.0]
        assert metadata["sources"] == ["2024-01-06T00:00:00", "2024-02-11T00:00:00"]

    def test_label_raster_keeps_nodata(self, tmp_path, utm_transform):
        labels = make_raster(np.array([[0, 1], [NODATA_LABEL, 1]], dtype=np.uint8), transform=utm_transform)
        labels = labels.rio.write_nodata(NODATA_LABEL)

        path = write_raster(labels, tmp_path / "labels.tif")

        reopened = rxr.open_rasterio(path)
        assert reopened.dtype == np.uint8
        assert reopened.rio.nodata == NODATA_LABEL
        assert json.loads((tmp_path / "labels.json").read_text())["nodata"] == NODATA_LABEL


# ---------------------------------------------------------------------------
# 2. Vectors and CSV
# ---------------------------------------------------------------------------

class TestWritePolygons:
    """Lake polygons by suffix, empty sets as empty GeoJSON."""

    def test_geojson(self, tmp_path, utm_transform):
        mask = np.zeros((6, 6), dtype=np.uint8)
        mask[1:3, 1:3] = 1
        mask[4, 4] = 1
        polygons = vectorize(make_raster(mask, transform=utm_transform))

        path = write_polygons(polygons, tmp_path / "lakes.geojson", "EPSG:32645")

        gdf = gpd.read_file(path)
        assert len(gdf) == 2
        assert sorted(gdf["pixel_count"]) == [1, 4]
        assert gdf.crs.to_epsg() == 32645

    def test_empty_set_is_empty_geojson(self, tmp_path):
        path = write_polygons([], tmp_path / "lakes.shp", "EPSG:32645")

        assert path.suffix == ".geojson"
        assert json.loads(path.read_text()) == {"type": "FeatureCollection", "features": []}

    def test_unsupported_suffix(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported vector format"):
            write_polygons([], tmp_path / "lakes.kml", "EPSG:32645")


class TestWriteTimeSeries:
    def test_missing_values_are_empty_cells(self, tmp_path):
        series = TimeSeries(
            "mean_precipitation",
            [TimeSeriesEntry(1, 12.5, 6), TimeSeriesEntry(2, math.nan, 0)],
            period_name="month",
        )

        path = write_time_series(series, tmp_path / "series" / "precip.csv")

        lines = path.read_text().splitlines()
        assert lines[0] == "month,mean_precipitation,source_count"
        assert lines[1] == "1,12.5,6"
        assert lines[2] == "2,,0"


# ---------------------------------------------------------------------------
# 3. Full export
# ---------------------------------------------------------------------------

class TestExportOutputs:
    """Every indicator of an analysis is written, plus a summary."""

    def test_water_terrain_and_hazards(self, tmp_path, lake_composite, utm_transform):
        rows, cols = np.mgrid[0:10, 0:10]
        dem = make_raster((2900.0 + 20.0 * cols).astype(np.float32), transform=utm_transform)
        terrain = derive_slope_aspect(dem)
        hazard = make_raster(np.ones((10, 10), dtype=np.uint8), transform=utm_transform)
        outputs = AnalysisOutputs(
            study_area=StudyArea.from_bbox("khumbu", (86.6, 27.8, 86.8, 28.0)),
            water=detect_water(lake_composite),
            terrain=terrain,
            glacier=estimate_thickness(terrain),
            hazards={"rockfall": hazard},
            sources={"imagery": (datetime(2024, 10, 1),)},
            glacier_outlines=gpd.GeoDataFrame(
                {"name": ["Khumbu"]}, geometry=[box(470020, 3089920, 470080, 3089980)], crs="EPSG:32645"
            ),
            skipped=["precipitation", "temperature"],
        )

        paths = export_outputs(outputs, tmp_path)

        assert set(paths) == {
            "ndwi", "water_mask", "lakes", "dem", "slope", "aspect", "snowline_mask",
            "glacier_thickness", "glacier_velocity", "glaciers", "rockfall_classification", "summary",
        }
        assert all(p.exists() for p in paths.values())
        assert len(gpd.read_file(paths["lakes"])) == 2

        written = rxr.open_rasterio(paths["dem"]).squeeze("band", drop=True)
        np.testing.assert_allclose(written.values, dem.values)
        glaciers = gpd.read_file(paths["glaciers"])
        assert paths["glaciers"].name == "glaciers.geojson"
        assert glaciers["name"].tolist() == ["Khumbu"]
        assert glaciers.crs.to_epsg() == 32645

        summary = json.loads(paths["summary"].read_text())
        assert summary["study_area"] == "khumbu"
        assert summary["skipped_stages"] == ["precipitation", "temperature"]
        assert summary["water"]["num_polygons"] == 2
        assert summary["hazards"] == {"rockfall": {"hazard_pixels": 100}}
        assert summary["sources"]["imagery"] == ["2024-10-01T00:00:00"]

    def test_empty_outputs_write_summary_only(self, tmp_path):
        outputs = AnalysisOutputs(study_area=StudyArea.from_bbox("empty", (0, 0, 1, 1)))

        paths = export_outputs(outputs, tmp_path)

        assert list(paths) == ["summary"]
