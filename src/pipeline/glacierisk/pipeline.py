"""End-to-end watershed hazard analysis."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable

import geopandas as gpd
import structlog
import xarray as xr

from glacierisk.config import Config, get_config
from glacierisk.hazard.classifier import HazardClassifier, TrainingPoint
from glacierisk.raster.download import clip_to_geometry
from glacierisk.raster.terrain import DEMData, GlacierProxies, derive_slope_aspect, estimate_thickness, load_dem_for_bbox
from glacierisk.raster.water import WaterDetectionResult, detect_water
from glacierisk.stac.source import LocalRasterSource, StacRasterSource
from glacierisk.temporal.aggregate import Composite, cloud_filtered_median
from glacierisk.temporal.climate import ClimatologyResult, lst_time_series, lst_to_celsius, monthly_precipitation
from glacierisk.temporal.collection import RasterCollection, RasterSource
from glacierisk.vector import WGS84, StudyArea, glacier_summary

logger = structlog.get_logger()


@dataclass
class AnalysisInputs:
    """Everything one analysis run reads.

    ``imagery`` is the analysis-year composite used for water detection;
    ``classification_imagery`` is the composite the hazard classifiers are
    trained on and applied to. ``lst`` holds raw MODIS digital numbers.
    """

    study_area: StudyArea
    imagery: Composite | None = None
    classification_imagery: Composite | None = None
    dem: xr.DataArray | None = None
    precipitation: RasterCollection | None = None
    lst: RasterCollection | None = None
    training_sets: dict[str, list[TrainingPoint]] = field(default_factory=dict)
    training_crs: Any = WGS84
    glaciers: gpd.GeoDataFrame | None = None


@dataclass
class AnalysisOutputs:
    """Indicators produced by one analysis run. Absent stages stay None."""

    study_area: StudyArea
    water: WaterDetectionResult | None = None
    terrain: DEMData | None = None
    glacier: GlacierProxies | None = None
    precipitation: ClimatologyResult | None = None
    temperature: ClimatologyResult | None = None
    hazards: dict[str, xr.DataArray] = field(default_factory=dict)
    sources: dict[str, tuple[datetime, ...]] = field(default_factory=dict)
    glaciers: dict[str, float] | None = None
    glacier_outlines: gpd.GeoDataFrame | None = None
    skipped: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        """JSON-serializable overview of the run."""
        summary: dict[str, Any] = {
            "study_area": self.study_area.name,
            "bbox": list(self.study_area.bbox),
            "skipped_stages": list(self.skipped),
        }
        if self.water is not None:
            summary["water"] = dict(self.water.stats)
        if self.glacier is not None:
            summary["glacier_proxies"] = {
                "snowline_elevation_m": self.glacier.snowline_elevation_m,
                "velocity_factor": self.glacier.velocity_factor,
                "pixels_above_snowline": int(self.glacier.snowline_mask.sum().values),
            }
        if self.precipitation is not None:
            summary["precipitation"] = {
                "missing_months": self.precipitation.series.missing_periods,
            }
        if self.temperature is not None:
            summary["temperature"] = {"days": len(self.temperature.series)}
        if self.hazards:
            summary["hazards"] = {
                name: {"hazard_pixels": int((raster == 1).sum().values)}
                for name, raster in self.hazards.items()
            }
        if self.glaciers is not None:
            summary["glaciers"] = self.glaciers
        summary["sources"] = {
            name: [ts.isoformat() for ts in timestamps]
            for name, timestamps in self.sources.items()
        }
        return summary


def _has_data(composite: Composite | None) -> bool:
    return composite is not None and not composite.is_empty


def run_analysis(
    inputs: AnalysisInputs,
    config: Config | None = None,
    workers: int | None = None,
) -> AnalysisOutputs:
    """Run every indicator stage whose inputs are present.

    Stages are independent and run concurrently. A stage whose input is
    missing or empty is skipped with a warning; input and training errors
    raised inside a stage propagate to the caller.

    Args:
        inputs: Rasters, collections and training points for the study area.
        config: Configuration (defaults to the global config).
        workers: Thread count for stages and their inner loops.

    Returns:
        AnalysisOutputs with the indicators of the stages that ran.
    """
    config = config or get_config()
    outputs = AnalysisOutputs(study_area=inputs.study_area)
    boundary = inputs.study_area.boundary

    stages: dict[str, Callable[[], Any]] = {}

    if _has_data(inputs.imagery):
        stages["water"] = lambda: detect_water(
            inputs.imagery.data,
            band_a=config.water.green_band,
            band_b=config.water.nir_band,
            threshold_value=config.water.ndwi_threshold,
            connectivity=config.water.connectivity,
            min_pixels=config.water.min_pixels,
        )
        outputs.sources["imagery"] = inputs.imagery.sources
    else:
        outputs.skipped.append("water")

    if inputs.dem is not None and config.terrain.enabled:
        def _terrain() -> tuple[DEMData, GlacierProxies]:
            dem = derive_slope_aspect(inputs.dem)
            proxies = estimate_thickness(
                dem,
                snowline_elevation=config.terrain.snowline_elevation_m,
                velocity_factor=config.terrain.velocity_factor,
            )
            return dem, proxies

        stages["terrain"] = _terrain
    else:
        outputs.skipped.append("terrain")

    if inputs.precipitation is not None and len(inputs.precipitation):
        stages["precipitation"] = lambda: monthly_precipitation(
            inputs.precipitation,
            boundary,
            year=config.climate.year,
            scale=config.climate.precipitation_scale_m,
            unit_factor=config.climate.precipitation_unit_factor,
            geometry_crs=WGS84,
            workers=workers,
        )
    else:
        outputs.skipped.append("precipitation")

    if inputs.lst is not None and len(inputs.lst):
        stages["temperature"] = lambda: lst_time_series(
            lst_to_celsius(
                inputs.lst,
                scale_factor=config.climate.lst_scale_factor,
                offset=config.climate.lst_offset,
            ),
            boundary,
            scale=config.climate.lst_scale_m,
            geometry_crs=WGS84,
            workers=workers,
        )
    else:
        outputs.skipped.append("temperature")

    if _has_data(inputs.classification_imagery) and inputs.training_sets:
        raster = inputs.classification_imagery.data
        for problem, points in inputs.training_sets.items():
            classifier = HazardClassifier(
                problem,
                bands=config.classifier.bands,
                tree_count=config.classifier.tree_count,
                seed=config.classifier.seed,
            )

            def _hazard(classifier: HazardClassifier = classifier, points: list[TrainingPoint] = points) -> xr.DataArray:
                classifier.fit(raster, points, points_crs=inputs.training_crs)
                return classifier.apply(raster, workers=workers)

            stages[f"hazard:{problem}"] = _hazard
        outputs.sources["classification_imagery"] = inputs.classification_imagery.sources
    else:
        outputs.skipped.append("hazards")

    for stage in outputs.skipped:
        logger.warning("Skipping stage without input data", stage=stage)

    logger.info("Running analysis", study_area=inputs.study_area.name, stages=list(stages))

    results: dict[str, Any] = {}
    if stages:
        with ThreadPoolExecutor(max_workers=workers or len(stages)) as executor:
            futures = {name: executor.submit(fn) for name, fn in stages.items()}
            # result() re-raises any stage exception
            results = {name: future.result() for name, future in futures.items()}

    outputs.water = results.get("water")
    if "terrain" in results:
        outputs.terrain, outputs.glacier = results["terrain"]
    outputs.precipitation = results.get("precipitation")
    outputs.temperature = results.get("temperature")
    outputs.hazards = {
        name.split(":", 1)[1]: result
        for name, result in results.items()
        if name.startswith("hazard:")
    }
    if outputs.precipitation is not None:
        outputs.sources["precipitation"] = outputs.precipitation.sources
    if outputs.temperature is not None:
        outputs.sources["lst"] = outputs.temperature.sources
    if inputs.glaciers is not None:
        outputs.glaciers = glacier_summary(inputs.glaciers)
        outputs.glacier_outlines = inputs.glaciers

    logger.info(
        "Analysis complete",
        study_area=inputs.study_area.name,
        completed=list(results),
        skipped=outputs.skipped,
    )
    return outputs


def default_sources(config: Config | None = None) -> dict[str, RasterSource]:
    """RasterSources for imagery and LST from STAC, precipitation from disk."""
    config = config or get_config()
    sources: dict[str, RasterSource] = {
        "imagery": StacRasterSource(config.stac.imagery_collection),
        "lst": StacRasterSource(config.stac.lst_collection),
    }
    if config.climate.precipitation_dir:
        sources["precipitation"] = LocalRasterSource(
            config.climate.precipitation_dir,
            pattern=config.climate.precipitation_pattern,
        )
    return sources


def _clip_composite(composite: Composite, study_area: StudyArea) -> Composite:
    if composite.is_empty:
        return composite
    return replace(composite, data=clip_to_geometry(composite.data, study_area.boundary, WGS84))


def _year_range(year: int) -> tuple[str, str]:
    return f"{year}-01-01", f"{year + 1}-01-01"


def fetch_inputs(
    study_area: StudyArea,
    sources: dict[str, RasterSource],
    config: Config | None = None,
    training_sets: dict[str, list[TrainingPoint]] | None = None,
    training_crs: Any = WGS84,
    glaciers: gpd.GeoDataFrame | None = None,
) -> AnalysisInputs:
    """Gather analysis inputs for a study area from raster sources.

    Imagery is the cloud-filtered median of the analysis year (water) and of
    the previous year (classification). Precipitation and LST are the
    analysis-year collections. A missing source leaves its input empty.

    Args:
        study_area: Boundary in WGS84.
        sources: RasterSources keyed "imagery", "precipitation", "lst".
        config: Configuration (defaults to the global config).
        training_sets: Hazard problem -> labelled points.
        training_crs: CRS of the training point coordinates.
        glaciers: Optional glacier outlines.

    Returns:
        AnalysisInputs ready for run_analysis.
    """
    config = config or get_config()
    year = config.climate.year
    max_cloud = config.stac.max_cloud_cover
    inputs = AnalysisInputs(
        study_area=study_area,
        training_sets=training_sets or {},
        training_crs=training_crs,
        glaciers=glaciers,
    )
    boundary = study_area.boundary

    if "imagery" in sources:
        bands = list(config.classifier.bands)
        for band in (config.water.green_band, config.water.nir_band):
            if band not in bands:
                bands.append(band)

        current = sources["imagery"].fetch_collection(bands, boundary, _year_range(year), max_cloud)
        inputs.imagery = _clip_composite(cloud_filtered_median(current, max_cloud), study_area)

        if inputs.training_sets:
            previous = sources["imagery"].fetch_collection(bands, boundary, _year_range(year - 1), max_cloud)
            inputs.classification_imagery = _clip_composite(
                cloud_filtered_median(previous, max_cloud), study_area
            )

    if "precipitation" in sources:
        inputs.precipitation = sources["precipitation"].fetch_collection(
            [config.climate.precipitation_band], boundary, _year_range(year)
        )

    if "lst" in sources:
        inputs.lst = sources["lst"].fetch_collection(
            [config.climate.lst_band], boundary, _year_range(year)
        )

    if config.terrain.enabled:
        dem = load_dem_for_bbox(study_area.bbox)
        if dem is not None:
            inputs.dem = clip_to_geometry(dem.elevation, boundary, WGS84)

    logger.info(
        "Fetched analysis inputs",
        study_area=study_area.name,
        imagery=_has_data(inputs.imagery),
        classification_imagery=_has_data(inputs.classification_imagery),
        precipitation=len(inputs.precipitation) if inputs.precipitation is not None else 0,
        lst=len(inputs.lst) if inputs.lst is not None else 0,
        dem=inputs.dem is not None,
    )
    return inputs
