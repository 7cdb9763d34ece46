from dataclasses import replace
from pathlib import Path
from typing import Callable

import geopandas as gpd
import pytest
from shapely.geometry import box

from modis_subsetting.core.exceptions import ToolchainError
from modis_subsetting.core.pipeline import (
    STAGE_CACHE,
    STAGE_MOSAIC,
    STAGE_STATISTICS,
    STAGE_SUBSET,
    ModisSubsettingPipeline,
)
from modis_subsetting.core.run_config import ProcessingSettings, RunConfig

from conftest import FakeToolchain

LST = "MOD11A2.061"
LAND_COVER = "MCD12Q1.061"


def test_full_run_writes_geotiffs(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
) -> None:
    run_config = make_run_config(start_date="2015", end_date="2016")
    for year in (2015, 2016):
        make_granules(run_config.input_dir, LST, year, ["h10v03.hdf", "h11v03.hdf"])

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert report.failures == []
    assert sorted(report.rasters) == [(LST, 2015), (LST, 2016)]
    for raster in report.rasters.values():
        assert raster.exists()
    assert report.bbox.projection_window == (30.0, 20.0, 40.0, 10.0)
    assert run_config.mosaic_path(LST, 2015).exists()


def test_empty_year_is_skipped_and_reported(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
) -> None:
    run_config = make_run_config(start_date="2015", end_date="2017")
    make_granules(run_config.input_dir, LST, 2015, ["h10v03.hdf"])
    make_granules(run_config.input_dir, LST, 2017, ["h10v03.hdf"])

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert sorted(report.rasters) == [(LST, 2015), (LST, 2017)]
    assert report.failed_pairs == [(LST, 2016)]
    assert report.failures[0].stage == STAGE_MOSAIC
    assert report.failures[0].kind == "DiscoveryWarning"
    translated = [command[-1] for command in toolchain.commands_for("gdal_translate")]
    assert not any("2016" in Path(destination).name for destination in translated)


def test_pairs_run_variable_outer_year_inner(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
) -> None:
    run_config = make_run_config(variable=f"{LST},{LAND_COVER}", start_date="2015", end_date="2016")
    for variable in (LST, LAND_COVER):
        for year in (2015, 2016):
            make_granules(run_config.input_dir, variable, year, ["h10v03.hdf"])

    ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    warped = [Path(command[-1]) for command in toolchain.commands_for("gdalwarp")]
    assert [(path.parent.name, path.name) for path in warped] == [
        (LST, "2015_4326.vrt"),
        (LST, "2016_4326.vrt"),
        (LAND_COVER, "2015_4326.vrt"),
        (LAND_COVER, "2016_4326.vrt"),
    ]


def test_tool_failure_is_recorded_and_run_continues(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
) -> None:
    run_config = make_run_config(start_date="2015", end_date="2016")
    for year in (2015, 2016):
        make_granules(run_config.input_dir, LST, year, ["h10v03.hdf"])
    toolchain = FakeToolchain(settings, failing_tools={"gdal_translate"})

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert len(report.mosaics) == 2
    assert report.rasters == {}
    assert [(f.variable, f.year, f.stage) for f in report.failures] == [
        (LST, 2015, STAGE_SUBSET),
        (LST, 2016, STAGE_SUBSET),
    ]
    assert report.failures[0].kind == "ToolInvocationError"
    assert "Failures: 2" in report.summary()


def test_unwritable_geotiff_is_recorded_and_run_continues(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
) -> None:
    run_config = make_run_config(start_date="2015", end_date="2016")
    for year in (2015, 2016):
        make_granules(run_config.input_dir, LST, year, ["h10v03.hdf"])
    run_config.output_raster_path(LST, 2015).mkdir(parents=True)

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert list(report.rasters) == [(LST, 2016)]
    assert run_config.output_raster_path(LST, 2016).is_file()
    assert [(f.year, f.stage, f.kind) for f in report.failures] == [
        (2015, STAGE_SUBSET, "OutputWriteError"),
    ]


def test_statistics_run_for_each_raster(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
    tmp_path: Path,
) -> None:
    shapefile = tmp_path / "basin.shp"
    gpd.GeoDataFrame({'COMID': [7]}, geometry=[box(30.0, 10.0, 40.0, 20.0)], crs="EPSG:4326").to_file(shapefile)
    run_config = make_run_config(
        lat_lims=None, lon_lims=None, shape_file=str(shapefile), stat="mean", fid="COMID"
    )
    make_granules(run_config.input_dir, LST, 2015, ["h10v03.hdf"])

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert report.failures == []
    assert report.statistics == {(LST, 2015): run_config.stats_csv_path(LST, 2015)}
    assert report.bbox.lat_min == pytest.approx(10.0)
    assert report.bbox.lon_max == pytest.approx(40.0)
    assert len(toolchain.commands_for("Rscript")) == 1


def test_statistics_failure_keeps_geotiff(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    tmp_path: Path,
) -> None:
    shapefile = tmp_path / "basin.shp"
    gpd.GeoDataFrame({'COMID': [7]}, geometry=[box(30.0, 10.0, 40.0, 20.0)], crs="EPSG:4326").to_file(shapefile)
    run_config = make_run_config(shape_file=str(shapefile), stat="mean")
    make_granules(run_config.input_dir, LST, 2015, ["h10v03.hdf"])
    toolchain = FakeToolchain(settings, failing_tools={"Rscript"})

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert report.rasters[(LST, 2015)].exists()
    assert report.statistics == {}
    assert [f.stage for f in report.failures] == [STAGE_STATISTICS]


def test_unwritable_statistics_log_is_recorded_and_run_continues(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
    tmp_path: Path,
) -> None:
    shapefile = tmp_path / "basin.shp"
    gpd.GeoDataFrame({'COMID': [7]}, geometry=[box(30.0, 10.0, 40.0, 20.0)], crs="EPSG:4326").to_file(shapefile)
    run_config = make_run_config(
        start_date="2015", end_date="2016", shape_file=str(shapefile), stat="mean"
    )
    for year in (2015, 2016):
        make_granules(run_config.input_dir, LST, year, ["h10v03.hdf"])
    run_config.stats_log_path(LST, 2015).mkdir(parents=True)

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert sorted(report.rasters) == [(LST, 2015), (LST, 2016)]
    assert report.statistics == {(LST, 2016): run_config.stats_csv_path(LST, 2016)}
    assert [(f.year, f.stage, f.kind) for f in report.failures] == [
        (2015, STAGE_STATISTICS, "OutputWriteError"),
    ]
    assert len(toolchain.commands_for("Rscript")) == 1


def test_cache_is_retained_by_default(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
) -> None:
    run_config = make_run_config()
    make_granules(run_config.input_dir, LST, 2015, ["h10v03.hdf"])

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert report.removed_cache_files == []
    assert run_config.reprojected_mosaic_path(LST, 2015).exists()


def test_cache_cleanup_keeps_cached_geotiffs(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
) -> None:
    run_config = make_run_config(print_geotiff="false")
    make_granules(run_config.input_dir, LST, 2015, ["h10v03.hdf"])
    settings = replace(settings, retain_cache=False)

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert sorted(report.removed_cache_files) == [
        run_config.mosaic_path(LST, 2015),
        run_config.reprojected_mosaic_path(LST, 2015),
    ]
    assert not run_config.mosaic_path(LST, 2015).exists()
    assert run_config.output_raster_path(LST, 2015).exists()


def test_undeletable_cache_files_are_recorded(
    make_run_config: Callable[..., RunConfig],
    make_granules: Callable[..., Path],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    run_config = make_run_config()
    make_granules(run_config.input_dir, LST, 2015, ["h10v03.hdf"])
    settings = replace(settings, retain_cache=False)
    unlink = Path.unlink

    def locked_vrt(self, missing_ok=False):
        if self.suffix == ".vrt":
            raise PermissionError(13, "Permission denied", str(self))
        unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", locked_vrt)

    report = ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert report.removed_cache_files == []
    assert report.rasters[(LST, 2015)].exists()
    assert [(f.stage, f.kind) for f in report.failures] == [
        (STAGE_CACHE, "OutputWriteError"),
        (STAGE_CACHE, "OutputWriteError"),
    ]
    assert run_config.reprojected_mosaic_path(LST, 2015).exists()


def test_toolchain_error_aborts_before_io(
    make_run_config: Callable[..., RunConfig],
    settings: ProcessingSettings,
    toolchain: FakeToolchain,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    run_config = make_run_config()

    def missing(include_statistics: bool = False):
        raise ToolchainError("'gdalwarp' not found in PATH")

    monkeypatch.setattr(toolchain, "ensure_ready", missing)

    with pytest.raises(ToolchainError):
        ModisSubsettingPipeline(run_config, settings, toolchain).run_full_pipeline()

    assert not run_config.cache_dir.exists()
    assert not run_config.output_dir.exists()
