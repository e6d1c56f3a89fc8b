"""Command-line interface for the GlacieRisk pipeline."""

import json
import sys
from datetime import datetime
from pathlib import Path

import click
import structlog

from glacierisk.config import get_config, reload_config
from glacierisk.export import export_outputs, write_polygons, write_raster, write_time_series
from glacierisk.hazard.classifier import HazardClassifier
from glacierisk.hazard.training import load_training_sets
from glacierisk.pipeline import default_sources, fetch_inputs, run_analysis
from glacierisk.raster.download import load_raster
from glacierisk.raster.terrain import derive_slope_aspect, estimate_thickness
from glacierisk.raster.water import detect_water
from glacierisk.stac.source import DEFAULT_DATE_PATTERN, LocalRasterSource
from glacierisk.storage.minio import MinioStorage
from glacierisk.temporal.climate import monthly_precipitation
from glacierisk.vector import WGS84, StudyArea, load_boundary, load_glaciers

# Configure structlog for CLI output
import logging

logging.basicConfig(format="%(message)s", level=logging.INFO)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


def _split_bands(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [b.strip() for b in value.split(",") if b.strip()]


def _load_study_area(aoi_dir: Path, boundary: Path | None) -> StudyArea:
    """Boundary file if given or present in the AOI directory, else the config.json bbox."""
    config_path = aoi_dir / "config.json"
    aoi_config = {}
    if config_path.exists():
        with open(config_path) as f:
            aoi_config = json.load(f)
    name = aoi_config.get("aoi_id", aoi_dir.name)

    boundary = boundary or next(
        (p for p in (aoi_dir / "boundary.geojson", aoi_dir / "boundary.shp") if p.exists()),
        None,
    )
    if boundary is not None:
        return load_boundary(boundary, name=name)

    if "bbox" not in aoi_config:
        raise click.UsageError(f"No boundary file or config.json bbox in {aoi_dir}")
    bbox = aoi_config["bbox"]
    return StudyArea.from_bbox(name, (bbox["min_lon"], bbox["min_lat"], bbox["max_lon"], bbox["max_lat"]))


@click.group()
@click.option("--config-dir", type=click.Path(exists=True, path_type=Path), help="Configuration directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None, verbose: bool) -> None:
    """GlacieRisk glacier and watershed hazard pipeline."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    if config_dir:
        reload_config(config_dir)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        click.echo("Configuration loaded")


@cli.command()
@click.option("--aoi-dir", required=True, type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Area of Interest directory (config.json, boundary, training points)")
@click.option("--output-dir", "-o", required=True, type=click.Path(path_type=Path), help="Output directory")
@click.option("--boundary", type=click.Path(exists=True, path_type=Path), help="Boundary vector file")
@click.option("--glaciers", type=click.Path(exists=True, path_type=Path), help="Glacier outlines (e.g. GLIMS)")
@click.option("--training", type=click.Path(exists=True, path_type=Path), help="Training points YAML")
@click.option("--precipitation-dir", type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Directory of dated precipitation GeoTIFFs")
@click.option("--year", type=int, help="Analysis year")
@click.option("--workers", type=int, help="Worker threads")
@click.option("--upload", is_flag=True, help="Upload outputs to object storage")
@click.option("--run-id", help="Run ID for uploaded outputs (default: timestamp)")
def run(
    aoi_dir: Path,
    output_dir: Path,
    boundary: Path | None,
    glaciers: Path | None,
    training: Path | None,
    precipitation_dir: Path | None,
    year: int | None,
    workers: int | None,
    upload: bool,
    run_id: str | None,
) -> None:
    """Run the full watershed analysis for an AOI."""
    try:
        config = get_config()
        if year is not None:
            config.climate.year = year
        if precipitation_dir is not None:
            config.climate.precipitation_dir = str(precipitation_dir)

        study_area = _load_study_area(aoi_dir, boundary)
        click.echo(f"Study area: {study_area.name} {study_area.bbox}")

        training = training or (aoi_dir / "training_points.yaml")
        training_sets = {}
        if training.exists():
            training_sets = load_training_sets(training)
            click.echo(f"Training problems: {', '.join(training_sets)}")

        glacier_outlines = load_glaciers(glaciers, study_area.boundary) if glaciers else None

        click.echo("\n1. Fetching inputs...")
        inputs = fetch_inputs(
            study_area,
            default_sources(config),
            config,
            training_sets=training_sets,
            glaciers=glacier_outlines,
        )

        click.echo("\n2. Running analysis...")
        outputs = run_analysis(inputs, config, workers=workers)

        click.echo("\n3. Exporting outputs...")
        paths = export_outputs(outputs, output_dir)
        for name, path in paths.items():
            click.echo(f"  {name}: {path}")

        if upload:
            click.echo("\n4. Uploading outputs...")
            run_id = run_id or datetime.now().strftime("%Y%m%dT%H%M%S")
            uploaded = MinioStorage().upload_outputs(paths, study_area.name, run_id)
            click.echo(f"  Uploaded {len(uploaded)} outputs (run {run_id})")

        click.echo("\n" + "=" * 50)
        click.echo("Analysis complete!")
        if outputs.skipped:
            click.echo(f"  Skipped: {', '.join(outputs.skipped)}")

    except Exception as e:
        logger.exception("Analysis failed")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("raster", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--band-names", help="Comma-separated band names in file order (e.g. B2,B3,B4,B8)")
@click.option("--green", help="Green band name (default: B3)")
@click.option("--nir", help="NIR band name (default: B8)")
@click.option("--threshold", type=float, help="NDWI threshold (default: 0.3)")
@click.option("--connectivity", type=click.Choice(["4", "8"]), help="Pixel connectivity (default: 8)")
@click.option("--output-dir", "-o", required=True, type=click.Path(path_type=Path), help="Output directory")
def lakes(
    raster: Path,
    band_names: str | None,
    green: str | None,
    nir: str | None,
    threshold: float | None,
    connectivity: str | None,
    output_dir: Path,
) -> None:
    """Detect lakes in a multi-band GeoTIFF (NDWI threshold and polygons)."""
    try:
        image = load_raster(raster, bands=_split_bands(band_names))
        result = detect_water(
            image,
            band_a=green,
            band_b=nir,
            threshold_value=threshold,
            connectivity=int(connectivity) if connectivity else None,
        )

        write_raster(result.index.data, output_dir / "ndwi.tif")
        write_raster(result.mask, output_dir / "water_mask.tif")
        lakes_path = write_polygons(result.polygons, output_dir / "lakes.geojson", result.mask.rio.crs)

        click.echo(f"NDWI mean: {result.index.mean_value:.3f}")
        click.echo(f"Water: {result.stats['water_percent']:.2f}% ({result.stats['water_pixels']} pixels)")
        click.echo(f"Lakes: {len(result.polygons)} polygons -> {lakes_path}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("dem", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--snowline", type=float, help="Snowline elevation in metres (default: 3000)")
@click.option("--velocity-factor", type=float, help="Velocity factor (default: 0.02)")
@click.option("--output-dir", "-o", required=True, type=click.Path(path_type=Path), help="Output directory")
def terrain(dem: Path, snowline: float | None, velocity_factor: float | None, output_dir: Path) -> None:
    """Derive slope, aspect and glacier proxies from a DEM GeoTIFF."""
    try:
        elevation = load_raster(dem).squeeze("band", drop=True)
        dem_data = derive_slope_aspect(elevation)
        proxies = estimate_thickness(dem_data, snowline_elevation=snowline, velocity_factor=velocity_factor)

        write_raster(dem_data.slope, output_dir / "slope.tif")
        write_raster(dem_data.aspect, output_dir / "aspect.tif")
        write_raster(proxies.snowline_mask, output_dir / "snowline_mask.tif")
        write_raster(proxies.thickness, output_dir / "glacier_thickness.tif")
        write_raster(proxies.velocity, output_dir / "glacier_velocity.tif")

        click.echo(f"Slope/aspect: {dem_data.slope.shape[0]}x{dem_data.slope.shape[1]} pixels")
        click.echo(f"Pixels above snowline ({proxies.snowline_elevation_m:.0f} m): "
                   f"{int(proxies.snowline_mask.sum().values)}")
        click.echo(f"Outputs written to: {output_dir}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--training", required=True, type=click.Path(exists=True, path_type=Path), help="Training points YAML")
@click.option("--problem", "problems", multiple=True, help="Hazard problem to classify (default: all)")
@click.option("--band-names", help="Comma-separated band names in file order")
@click.option("--trees", type=int, help="Number of trees (default: 50)")
@click.option("--seed", type=int, help="Random seed (default: 0)")
@click.option("--workers", type=int, help="Worker threads")
@click.option("--output-dir", "-o", required=True, type=click.Path(path_type=Path), help="Output directory")
def classify(
    image: Path,
    training: Path,
    problems: tuple[str, ...],
    band_names: str | None,
    trees: int | None,
    seed: int | None,
    workers: int | None,
    output_dir: Path,
) -> None:
    """Train and apply hazard classifiers on a multi-band GeoTIFF."""
    try:
        raster = load_raster(image, bands=_split_bands(band_names))
        training_sets = load_training_sets(training)

        selected = list(problems) or list(training_sets)
        unknown = [p for p in selected if p not in training_sets]
        if unknown:
            raise click.BadParameter(f"Unknown problem(s) {unknown}; file defines {list(training_sets)}")

        for problem in selected:
            classifier = HazardClassifier(problem, tree_count=trees, seed=seed)
            classifier.fit(raster, training_sets[problem])
            classified = classifier.apply(raster, workers=workers)
            path = write_raster(classified, output_dir / f"{problem}_classification.tif")

            hazard_pixels = int((classified == 1).sum().values)
            click.echo(f"{problem}: {len(classifier.training_set)} samples, "
                       f"{hazard_pixels} hazard pixels -> {path}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--boundary", required=True, type=click.Path(exists=True, path_type=Path), help="Boundary vector file")
@click.option("--year", type=int, help="Calendar year (default: 2024)")
@click.option("--pattern", help="File glob (default from config)")
@click.option("--date-pattern", default=DEFAULT_DATE_PATTERN, show_default=True,
              help="Regex with year/month/(day|pentad) groups")
@click.option("--scale", type=float, help="Sampling resolution in metres (default: 5000)")
@click.option("--unit-factor", type=float, help="Output multiplier (default: 100)")
@click.option("--output-dir", "-o", required=True, type=click.Path(path_type=Path), help="Output directory")
def precipitation(
    directory: Path,
    boundary: Path,
    year: int | None,
    pattern: str | None,
    date_pattern: str,
    scale: float | None,
    unit_factor: float | None,
    output_dir: Path,
) -> None:
    """Monthly precipitation climatology from a directory of dated rasters."""
    try:
        config = get_config()
        year = year if year is not None else config.climate.year
        study_area = load_boundary(boundary)

        source = LocalRasterSource(directory, pattern=pattern or config.climate.precipitation_pattern,
                                   date_pattern=date_pattern)
        collection = source.fetch_collection(
            [config.climate.precipitation_band],
            study_area.boundary,
            (f"{year}-01-01", f"{year + 1}-01-01"),
        )
        if not len(collection):
            raise click.ClickException(f"No dated rasters for {year} in {directory}")

        result = monthly_precipitation(
            collection,
            study_area.boundary,
            year=year,
            scale=scale,
            unit_factor=unit_factor,
            geometry_crs=WGS84,
        )

        csv_path = write_time_series(result.series, output_dir / "precipitation_monthly.csv")
        if result.mean_map is not None:
            write_raster(result.mean_map, output_dir / "precipitation_annual_mean.tif", result.sources)

        for entry in result.series.entries:
            value = "no data" if entry.is_missing else f"{entry.value:.2f}"
            click.echo(f"  {year}-{entry.period:02d}: {value}")
        click.echo(f"Monthly series -> {csv_path}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
