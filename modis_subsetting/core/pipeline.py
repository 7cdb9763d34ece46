"""
MODIS Subsetting Pipeline

Class-based workflow driver that turns annual MODIS HDF granules into
per-variable, per-year GeoTIFFs cropped to a region, with optional zonal
statistics against a boundary shapefile.

The workflow runs these stages in sequence:
1. Preflight check of the external toolchain
2. Cache and output directory creation
3. Bounding box resolution (explicit limits or shapefile extent)
4. Virtual mosaic building and reprojection for every (variable, year)
5. Spatial subsetting of every reprojected mosaic
6. Zonal statistics of every subset raster (when configured)
7. Cache retention policy

A failure of one stage for one (variable, year) pair is logged and recorded;
the pair is skipped by the later stages and the run continues. Only
configuration and toolchain errors abort the run.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tqdm import tqdm

from shared_utils import (
    get_logger, ensure_directory, log_pipeline_start, log_pipeline_end, log_section
)

from .exceptions import DiscoveryWarning, OutputWriteError, StageError
from .extent import BoundingBox, resolve_bounding_box
from .mosaic import MosaicBuilder, ReprojectedMosaic
from .run_config import ProcessingSettings, RunConfig
from .statistics import StatisticsRunner
from .subsetting import SpatialSubsetter
from .toolchain import CapabilityReport, GdalToolchain

STAGE_MOSAIC = "mosaic"
STAGE_SUBSET = "subset"
STAGE_STATISTICS = "statistics"
STAGE_CACHE = "cache"

PIPELINE_NAME = "MODIS Subsetting"

Pair = Tuple[str, int]


@dataclass(frozen=True)
class StageFailure:
    """Failure of one stage for one (variable, year) pair."""
    variable: str
    year: int
    stage: str
    kind: str
    reason: str

    def __str__(self) -> str:
        return f"{self.variable} {self.year} [{self.stage}] {self.kind}: {self.reason}"


@dataclass
class PipelineReport:
    """Outcome of a pipeline run, per stage and per (variable, year) pair."""
    mosaics: Dict[Pair, Path] = field(default_factory=dict)
    rasters: Dict[Pair, Path] = field(default_factory=dict)
    statistics: Dict[Pair, Path] = field(default_factory=dict)
    failures: List[StageFailure] = field(default_factory=list)
    removed_cache_files: List[Path] = field(default_factory=list)
    bbox: Optional[BoundingBox] = None
    capabilities: Optional[CapabilityReport] = None
    cancelled: bool = False

    def failures_for(self, stage: str) -> List[StageFailure]:
        return [f for f in self.failures if f.stage == stage]

    @property
    def failed_pairs(self) -> List[Pair]:
        return sorted({(f.variable, f.year) for f in self.failures})

    def summary(self) -> str:
        lines = [
            f"Mosaics built: {len(self.mosaics)}",
            f"GeoTIFFs written: {len(self.rasters)}",
            f"Statistics produced: {len(self.statistics)}",
            f"Failures: {len(self.failures)}",
        ]
        lines.extend(f"  - {failure}" for failure in self.failures)
        return "\n".join(lines)


class ModisSubsettingPipeline:
    """
    Workflow driver for MODIS subsetting.

    Args:
        run_config: Run configuration built from the command line
        settings: Ambient toolchain settings from the component YAML
        toolchain: External toolchain, a GdalToolchain on the given settings
            when None
    """

    def __init__(
        self,
        run_config: RunConfig,
        settings: Optional[ProcessingSettings] = None,
        toolchain: Optional[GdalToolchain] = None
    ):
        self.run_config = run_config
        self.settings = settings or ProcessingSettings()
        self.toolchain = toolchain or GdalToolchain(self.settings)
        self.logger = get_logger('modis_subsetting')

        self.mosaic_builder = MosaicBuilder(run_config, self.settings, self.toolchain)
        self.statistics_runner = (
            StatisticsRunner(run_config, self.settings, self.toolchain)
            if run_config.compute_statistics else None
        )
        self.subsetter: Optional[SpatialSubsetter] = None
        self.reprojected_mosaics: Dict[Pair, ReprojectedMosaic] = {}
        self.report = PipelineReport()

        self.logger.info("ModisSubsettingPipeline initialized")

    def run_full_pipeline(self) -> PipelineReport:
        """
        Run the complete workflow.

        Returns:
            PipelineReport: Produced artifacts and recorded failures

        Raises:
            ConfigError: Invalid configuration or unusable extent
            ToolchainError: Missing tool or driver
        """
        start_time = time.time()
        config = self.run_config
        log_pipeline_start(self.logger, PIPELINE_NAME, config.summary())

        try:
            log_section(self.logger, "Preflight")
            self.preflight()

            self.logger.info(f"Creating cache directory under {config.cache_dir}")
            ensure_directory(config.cache_dir)
            self.logger.info(f"Creating output directory under {config.output_dir}")
            ensure_directory(config.output_dir)

            years = config.year_range
            self.logger.info(f"Processing years {years[0]}-{years[-1]} for {', '.join(config.variables)}")

            self.report.bbox = resolve_bounding_box(config)
            self.subsetter = SpatialSubsetter(config, self.report.bbox, self.toolchain)

            for variable in config.variables:
                ensure_directory(config.output_dir / variable)

            log_section(self.logger, "Building virtual mosaics")
            self.run_mosaic_stage()

            log_section(self.logger, "Subsetting GeoTIFFs")
            self.run_subset_stage()

            if self.statistics_runner is not None:
                log_section(self.logger, "Zonal statistics")
                self.run_statistics_stage()

            self.apply_cache_policy()

        except KeyboardInterrupt:
            self.report.cancelled = True
            self.logger.warning("Run cancelled, outputs written so far are kept")
            self.logger.info(self.report.summary())
            log_pipeline_end(self.logger, PIPELINE_NAME, success=False, elapsed_time=time.time() - start_time)
            raise
        except Exception as e:
            self.logger.error(f"Pipeline failed: {e}")
            log_pipeline_end(self.logger, PIPELINE_NAME, success=False, elapsed_time=time.time() - start_time)
            raise

        self.logger.info(self.report.summary())
        self.logger.info(f"Results are produced under {config.output_dir}")
        log_pipeline_end(self.logger, PIPELINE_NAME, success=True, elapsed_time=time.time() - start_time)
        return self.report

    def preflight(self) -> CapabilityReport:
        """Check the toolchain and statistics resources before any I/O."""
        include_statistics = self.statistics_runner is not None
        self.report.capabilities = self.toolchain.ensure_ready(include_statistics)
        if include_statistics:
            self.statistics_runner.validate()
        return self.report.capabilities

    def run_mosaic_stage(self) -> Dict[Pair, Path]:
        """Build the reprojected mosaic of every (variable, year) pair."""
        def build(variable: str, year: int) -> Path:
            mosaic = self.mosaic_builder.build(variable, year)
            self.reprojected_mosaics[(variable, year)] = mosaic
            self.report.mosaics[(variable, year)] = mosaic.path
            return mosaic.path

        self._run_stage(STAGE_MOSAIC, self.run_config.pairs(), build)
        return self.report.mosaics

    def run_subset_stage(self) -> Dict[Pair, Path]:
        """Crop every reprojected mosaic; pairs without a mosaic are skipped."""
        def subset(variable: str, year: int) -> Path:
            raster = self.subsetter.subset(self.reprojected_mosaics[(variable, year)])
            self.report.rasters[(variable, year)] = raster
            return raster

        self._run_stage(STAGE_SUBSET, list(self.reprojected_mosaics), subset)
        return self.report.rasters

    def run_statistics_stage(self) -> Dict[Pair, Path]:
        """Compute zonal statistics of every written GeoTIFF."""
        try:
            self.statistics_runner.prepare()
        except OSError as e:
            error = OutputWriteError(f"cannot prepare the R environment: {e}")
            self.logger.error(f"[{STAGE_STATISTICS}] {error}")
            for variable, year in self.report.rasters:
                self._record(variable, year, STAGE_STATISTICS, error)
            return self.report.statistics

        def statistics(variable: str, year: int) -> Path:
            csv_path = self.statistics_runner.run(variable, year)
            self.report.statistics[(variable, year)] = csv_path
            return csv_path

        self._run_stage(STAGE_STATISTICS, list(self.report.rasters), statistics)
        return self.report.statistics

    def apply_cache_policy(self) -> List[Path]:
        """
        Remove intermediate mosaics from the cache unless they are retained.

        A file that cannot be deleted is logged and recorded as a failure of
        the cache stage; the run still completes.
        """
        if self.settings.retain_cache:
            self.logger.info(f"Keeping intermediate files under {self.run_config.cache_dir}")
            return []

        self.logger.info(f"Deleting intermediate mosaics from {self.run_config.cache_dir}")
        for variable, year in self.run_config.pairs():
            for path in (
                self.run_config.mosaic_path(variable, year),
                self.run_config.reprojected_mosaic_path(variable, year)
            ):
                if not path.exists():
                    continue
                try:
                    path.unlink()
                except OSError as e:
                    error = OutputWriteError(f"cannot delete {path}: {e}", variable, year)
                    self.logger.error(f"[{STAGE_CACHE}] {error}")
                    self._record(variable, year, STAGE_CACHE, error)
                    continue
                self.report.removed_cache_files.append(path)
        return self.report.removed_cache_files

    def _run_stage(self, stage: str, pairs: Sequence[Pair], action: Callable[[str, int], Path]) -> None:
        """Apply ``action`` to each pair, recording stage errors without stopping."""
        if not pairs:
            self.logger.warning(f"No (variable, year) pairs to process in the {stage} stage")
            return

        for variable, year in tqdm(pairs, desc=stage, disable=not self.settings.progress_bars):
            self.logger.info(f"[{stage}] processing {variable} {year}")
            try:
                action(variable, year)
            except DiscoveryWarning as e:
                self.logger.warning(f"[{stage}] skipping {variable} {year}: {e}")
                self._record(variable, year, stage, e)
            except StageError as e:
                self.logger.error(f"[{stage}] failed for {variable} {year}: {e}")
                self._record(variable, year, stage, e)

    def _record(self, variable: str, year: int, stage: str, error: StageError) -> None:
        self.report.failures.append(
            StageFailure(
                variable=variable,
                year=year,
                stage=stage,
                kind=type(error).__name__,
                reason=str(error)
            )
        )
