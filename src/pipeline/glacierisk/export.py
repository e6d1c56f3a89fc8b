"""Write analysis outputs: GeoTIFFs with JSON sidecars, vectors and CSVs."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

import geopandas as gpd
import numpy as np
import structlog
import xarray as xr

from glacierisk.pipeline import AnalysisOutputs
from glacierisk.raster.grid import band_names
from glacierisk.raster.vectorize import MaskPolygon, polygons_to_geodataframe
from glacierisk.temporal.aggregate import TimeSeries

logger = structlog.get_logger()

VECTOR_DRIVERS = {
    ".geojson": "GeoJSON",
    ".json": "GeoJSON",
    ".shp": "ESRI Shapefile",
    ".gpkg": "GPKG",
}


def raster_metadata(da: xr.DataArray, sources: Sequence[datetime] | None = None) -> dict[str, Any]:
    """Grid and provenance description of a raster."""
    crs = da.rio.crs
    nodata = da.rio.nodata
    if nodata is not None:
        nodata = float(nodata)
        if np.isnan(nodata):
            nodata = None
        elif nodata.is_integer():
            nodata = int(nodata)
    return {
        "name": da.name,
        "bands": band_names(da) or [da.name],
        "shape": list(da.shape[-2:]),
        "dtype": str(da.dtype),
        "crs": crs.to_string() if crs is not None else None,
        "transform": list(da.rio.transform())[:6],
        "bounds": list(da.rio.bounds()),
        "nodata": nodata,
        "sources": [ts.isoformat() for ts in sources or ()],
    }


def write_raster(da: xr.DataArray, path: Path, sources: Sequence[datetime] | None = None) -> Path:
    """Write a raster as GeoTIFF plus a ``.json`` metadata sidecar.

    Float rasters are written with NaN as the nodata value.

    Args:
        da: Raster to write.
        path: Output ``.tif`` path.
        sources: Acquisition timestamps the raster was derived from.

    Returns:
        Path to the GeoTIFF.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if np.issubdtype(da.dtype, np.floating) and da.rio.nodata is None:
        da = da.rio.write_nodata(np.nan)
    da.rio.to_raster(path)

    sidecar = path.with_suffix(".json")
    with open(sidecar, "w") as f:
        json.dump(raster_metadata(da, sources), f, indent=2)

    logger.info("Wrote raster", path=str(path), shape=da.shape)
    return path


def write_polygons(polygons: list[MaskPolygon], path: Path, crs: Any) -> Path:
    """Write mask polygons as a vector file chosen by suffix.

    An empty polygon set is written as an empty GeoJSON FeatureCollection.

    Args:
        polygons: Polygons to write.
        path: Output path (.geojson, .shp or .gpkg).
        crs: CRS of the polygon coordinates.

    Returns:
        Path to the written file.
    """
    path = Path(path)
    driver = VECTOR_DRIVERS.get(path.suffix.lower())
    if driver is None:
        raise ValueError(f"Unsupported vector format '{path.suffix}'. Use one of {list(VECTOR_DRIVERS)}")
    path.parent.mkdir(parents=True, exist_ok=True)

    if not polygons:
        if driver != "GeoJSON":
            path = path.with_suffix(".geojson")
        with open(path, "w") as f:
            json.dump({"type": "FeatureCollection", "features": []}, f)
        logger.info("Wrote empty polygon set", path=str(path))
        return path

    gdf = polygons_to_geodataframe(polygons, crs)
    gdf.to_file(path, driver=driver)
    logger.info("Wrote polygons", path=str(path), count=len(polygons))
    return path


def write_geodataframe(gdf: gpd.GeoDataFrame, path: Path) -> Path:
    """Write a GeoDataFrame as a vector file chosen by suffix."""
    path = Path(path)
    driver = VECTOR_DRIVERS.get(path.suffix.lower())
    if driver is None:
        raise ValueError(f"Unsupported vector format '{path.suffix}'. Use one of {list(VECTOR_DRIVERS)}")
    path.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(path, driver=driver)
    logger.info("Wrote vector layer", path=str(path), count=len(gdf))
    return path


def write_time_series(series: TimeSeries, path: Path) -> Path:
    """Write a time series as CSV; missing values are empty cells."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    series.to_csv(path)
    logger.info("Wrote time series", path=str(path), entries=len(series))
    return path


def export_outputs(outputs: AnalysisOutputs, output_dir: Path, vector_format: str = ".geojson") -> dict[str, Path]:
    """Write every indicator an analysis produced.

    Args:
        outputs: Result of run_analysis.
        output_dir: Directory for the files.
        vector_format: Suffix for lake polygons (.geojson or .shp).

    Returns:
        Output name -> written path.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    paths: dict[str, Path] = {}

    imagery_sources = outputs.sources.get("imagery")
    if outputs.water is not None:
        water = outputs.water
        paths["ndwi"] = write_raster(water.index.data, output_dir / "ndwi.tif", imagery_sources)
        paths["water_mask"] = write_raster(water.mask, output_dir / "water_mask.tif", imagery_sources)
        paths["lakes"] = write_polygons(water.polygons, output_dir / f"lakes{vector_format}", water.mask.rio.crs)

    if outputs.terrain is not None:
        paths["dem"] = write_raster(outputs.terrain.elevation, output_dir / "dem.tif")
        paths["slope"] = write_raster(outputs.terrain.slope, output_dir / "slope.tif")
        paths["aspect"] = write_raster(outputs.terrain.aspect, output_dir / "aspect.tif")

    if outputs.glacier is not None:
        paths["snowline_mask"] = write_raster(outputs.glacier.snowline_mask, output_dir / "snowline_mask.tif")
        paths["glacier_thickness"] = write_raster(outputs.glacier.thickness, output_dir / "glacier_thickness.tif")
        paths["glacier_velocity"] = write_raster(outputs.glacier.velocity, output_dir / "glacier_velocity.tif")

    if outputs.glacier_outlines is not None and not outputs.glacier_outlines.empty:
        paths["glaciers"] = write_geodataframe(outputs.glacier_outlines, output_dir / "glaciers.geojson")

    if outputs.precipitation is not None:
        precip = outputs.precipitation
        paths["precipitation_monthly"] = write_time_series(precip.series, output_dir / "precipitation_monthly.csv")
        if precip.mean_map is not None:
            paths["precipitation_annual_mean"] = write_raster(
                precip.mean_map, output_dir / "precipitation_annual_mean.tif", precip.sources
            )

    if outputs.temperature is not None:
        lst = outputs.temperature
        paths["lst_daily"] = write_time_series(lst.series, output_dir / "lst_daily.csv")
        if lst.mean_map is not None:
            paths["lst_mean"] = write_raster(lst.mean_map, output_dir / "lst_mean.tif", lst.sources)

    classification_sources = outputs.sources.get("classification_imagery")
    for name, classified in outputs.hazards.items():
        paths[f"{name}_classification"] = write_raster(
            classified, output_dir / f"{name}_classification.tif", classification_sources
        )

    summary_path = output_dir / "summary.json"
    with open(summary_path, "w") as f:
        json.dump(outputs.summary(), f, indent=2, default=str)
    paths["summary"] = summary_path

    logger.info("Exported outputs", output_dir=str(output_dir), files=len(paths))
    return paths
