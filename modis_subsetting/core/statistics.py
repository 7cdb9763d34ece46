"""
Zonal statistics of the subset GeoTIFFs.

Calls the gistool R routine (``stats.R``, built on exactextractr inside an
renv project) once per (variable, year) raster against the boundary
shapefile. The routine receives a fixed positional argument list and writes
a CSV; its console output is appended to a per-pair log file.
"""

import shutil
from pathlib import Path
from typing import List

from shared_utils import get_logger, ensure_directory

from .exceptions import ConfigError, OutputWriteError
from .run_config import ProcessingSettings, RunConfig, stats_argument
from .toolchain import GdalToolchain

logger = get_logger('modis_subsetting.statistics')


class StatisticsRunner:
    """
    Runs the external zonal statistics routine.

    Args:
        run_config: Run configuration with a shapefile and a stats list
        settings: Ambient toolchain settings
        toolchain: External toolchain
    """

    def __init__(self, run_config: RunConfig, settings: ProcessingSettings, toolchain: GdalToolchain):
        self.run_config = run_config
        self.settings = settings
        self.toolchain = toolchain
        self.logger = logger
        self.prepared = False

    @property
    def lockfile_path(self) -> Path:
        return self.run_config.r_virtual_env_dir / "renv.lock"

    def validate(self) -> None:
        """
        Check that the statistics script and renv lockfile exist.

        Raises:
            ConfigError: If the statistics script or lockfile is missing
        """
        if not self.settings.stats_script.exists():
            raise ConfigError("statistics.script_path", f"statistics script not found: {self.settings.stats_script}")
        if not self.settings.renv_lockfile.exists():
            raise ConfigError("statistics.renv_lockfile", f"renv lockfile not found: {self.settings.renv_lockfile}")

    def prepare(self) -> None:
        """
        Create the R package and renv directories in the cache and copy the
        renv lockfile into the project directory.
        """
        self.validate()
        ensure_directory(self.run_config.r_virtual_env_dir)
        ensure_directory(self.run_config.r_packages_dir)
        shutil.copyfile(self.settings.renv_lockfile, self.lockfile_path)
        self.prepared = True
        self.logger.info(f"Prepared R environment under {self.run_config.r_virtual_env_dir}")

    def arguments(self, variable: str, year: int) -> List[str]:
        """
        Positional arguments of the statistics routine for one pair.

        Order: temporary install path, exactextractr cache, renv archive,
        renv project path (twice), lockfile, raster, boundary, output CSV,
        statistics, include-NA flag, quantiles, feature id.
        """
        config = self.run_config
        virtual_env = f"{config.r_virtual_env_dir}/"
        return [
            str(config.r_packages_dir),
            str(config.exactextractr_cache),
            str(config.renv_package_path),
            virtual_env,
            virtual_env,
            str(self.lockfile_path),
            str(config.output_raster_path(variable, year)),
            str(config.shapefile_path),
            str(config.stats_csv_path(variable, year)),
            stats_argument(config.stats),
            "true" if config.include_na else "false",
            stats_argument(config.quantiles),
            config.feature_id or "",
        ]

    def run(self, variable: str, year: int) -> Path:
        """
        Compute the zonal statistics of one (variable, year) raster.

        Returns:
            Path: CSV written by the routine

        Raises:
            OutputWriteError: The log directory or log file cannot be written
            ToolInvocationError: The routine exited non-zero or timed out
        """
        if not self.prepared:
            self.prepare()

        log_path = self.run_config.stats_log_path(variable, year)

        self.logger.info(f"Extracting {','.join(self.run_config.stats)} for {variable} {year} (log: {log_path.name})")
        try:
            ensure_directory(log_path.parent)
            self.toolchain.run_rscript(
                self.settings.stats_script,
                self.arguments(variable, year),
                log_path,
                env={'R_LIBS_USER': str(self.run_config.r_packages_dir)},
                variable=variable,
                year=year
            )
        except OSError as e:
            raise OutputWriteError(f"cannot write statistics log {log_path}: {e}", variable, year)
        return self.run_config.stats_csv_path(variable, year)
