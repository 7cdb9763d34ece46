"""
External geospatial toolchain used by the MODIS subsetting workflow.

Wraps the GDAL command-line utilities (gdalinfo, gdalbuildvrt, gdalwarp,
gdal_translate) and Rscript behind one class. Every invocation runs through
``subprocess.run`` with a timeout and a captured exit status. Driver and
subdataset discovery query the same GDAL build that does the raster work,
through ``gdalinfo``. A preflight check reports on the toolchain once,
before any work begins.
"""

import json
import os
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, IO, List, Mapping, Optional, Sequence, Tuple, Union

from shared_utils import get_logger

from .exceptions import ToolchainError, ToolInvocationError
from .run_config import ProcessingSettings, format_number

STDERR_TAIL_CHARS = 2000
SUBDATASET_NAME_KEY = re.compile(r"^SUBDATASET_(\d+)_NAME$")

logger = get_logger('modis_subsetting.toolchain')


@dataclass
class CapabilityReport:
    """Result of the preflight check on the external toolchain."""
    tools: Dict[str, Optional[str]] = field(default_factory=dict)
    required_driver: str = "HDF4"
    driver_available: bool = False
    gdal_version: str = "unknown"

    @property
    def missing_tools(self) -> List[str]:
        return [name for name, location in self.tools.items() if location is None]

    @property
    def ok(self) -> bool:
        return not self.missing_tools and self.driver_available

    def log(self, log) -> None:
        log.info(f"GDAL version: {self.gdal_version}")
        for name, location in self.tools.items():
            if location:
                log.info(f"✅ {name} found at {location}")
            else:
                log.error(f"❌ {name} not found in PATH")
        if self.driver_available:
            log.info(f"✅ GDAL has {self.required_driver} support")
        else:
            log.error(f"❌ GDAL does not have {self.required_driver} support")

    def problems(self) -> List[str]:
        issues = [f"'{name}' not found in PATH" for name in self.missing_tools]
        if not self.driver_available:
            issues.append(
                f"GDAL build {self.gdal_version} has no {self.required_driver} driver "
                f"(install it, e.g. conda install -c conda-forge libgdal-hdf4)"
            )
        return issues


def parse_driver_list(text: str) -> Dict[str, str]:
    """
    Parse ``gdalinfo --formats`` output into driver short names and descriptions.

    Examples:
        >>> parse_driver_list("Supported Formats: ...\\n  HDF4 -raster- (ros): Hierarchical Data Format Release 4")
        {'HDF4': 'Hierarchical Data Format Release 4'}
    """
    drivers = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("Supported Formats") or "):" not in line:
            continue
        name = line.split(None, 1)[0]
        drivers[name] = line.split("):", 1)[1].strip()
    return drivers


def parse_subdatasets(info: Mapping) -> List[str]:
    """Subdataset names from ``gdalinfo -json`` output, in SUBDATASET_<n> order."""
    metadata = info.get('metadata') or {}
    entries = metadata.get('SUBDATASETS') or {}
    names = {}
    for key, value in entries.items():
        match = SUBDATASET_NAME_KEY.match(key)
        if match:
            names[int(match.group(1))] = value
    return [names[index] for index in sorted(names)]


def _tail(text: Optional[str]) -> str:
    if not text:
        return ""
    text = text.strip()
    return text[-STDERR_TAIL_CHARS:]


class GdalToolchain:
    """
    Command-line geospatial toolchain.

    Args:
        settings: Ambient toolchain settings
    """

    def __init__(self, settings: ProcessingSettings):
        self.settings = settings
        self.logger = logger

    def preflight(self, include_statistics: bool = False) -> CapabilityReport:
        """
        Check the toolchain once before processing.

        Args:
            include_statistics: Whether Rscript is also required

        Returns:
            CapabilityReport: Tools found and driver support
        """
        report = CapabilityReport(required_driver=self.settings.required_driver)
        for command in self.settings.tool_commands(include_statistics):
            report.tools[command] = shutil.which(command)

        if report.tools.get(self.settings.gdalinfo) is None:
            return report

        try:
            report.gdal_version = self.gdal_version()
            report.driver_available = self.settings.required_driver in self.available_drivers()
        except ToolInvocationError as e:
            self.logger.error(f"Unable to query GDAL drivers: {e}")
            report.driver_available = False

        return report

    def ensure_ready(self, include_statistics: bool = False) -> CapabilityReport:
        """
        Run the preflight check and fail when the toolchain is unusable.

        Raises:
            ToolchainError: If a required tool or driver is missing
        """
        report = self.preflight(include_statistics)
        report.log(self.logger)
        if not report.ok:
            raise ToolchainError("; ".join(report.problems()))
        return report

    def gdal_version(self) -> str:
        """Version of the command-line GDAL, e.g. ``3.10.3``."""
        output = self.run([self.settings.gdalinfo, "--version"]).stdout.strip()
        return output.split(",", 1)[0].replace("GDAL", "", 1).strip() or "unknown"

    def available_drivers(self) -> Dict[str, str]:
        """Short names and descriptions of the drivers of the command-line GDAL."""
        return parse_driver_list(self.run([self.settings.gdalinfo, "--formats"]).stdout)

    def run(
        self,
        command: Sequence[Union[str, Path]],
        timeout: Optional[float] = None,
        variable: Optional[str] = None,
        year: Optional[int] = None,
        log_stream: Optional[IO] = None,
        env: Optional[Mapping[str, str]] = None
    ) -> subprocess.CompletedProcess:
        """
        Run one external command.

        Args:
            command: Program and arguments
            timeout: Timeout in seconds, defaults to the configured tool timeout
            variable: Variable being processed, attached to raised errors
            year: Year being processed, attached to raised errors
            log_stream: Open file receiving stdout and stderr instead of a pipe
            env: Extra environment variables for the child process only

        Returns:
            subprocess.CompletedProcess: Completed process with exit status 0

        Raises:
            ToolInvocationError: On non-zero exit, timeout or missing executable
        """
        command = [str(part) for part in command]
        timeout = timeout if timeout is not None else self.settings.tool_timeout
        child_env = {**os.environ, **env} if env else None

        self.logger.debug(f"Running: {' '.join(command)}")

        if log_stream is not None:
            output = {'stdout': log_stream, 'stderr': subprocess.STDOUT}
        else:
            output = {'capture_output': True}

        try:
            result = subprocess.run(
                command,
                text=True,
                timeout=timeout,
                env=child_env,
                check=False,
                **output
            )
        except subprocess.TimeoutExpired as e:
            stderr = e.stderr if isinstance(e.stderr, str) else None
            raise ToolInvocationError(command, None, _tail(stderr), variable, year, timed_out=True)
        except OSError as e:
            raise ToolInvocationError(command, None, str(e), variable, year)

        if result.returncode != 0:
            raise ToolInvocationError(command, result.returncode, _tail(result.stderr), variable, year)

        return result

    def list_subdatasets(
        self,
        granule: Union[str, Path],
        variable: Optional[str] = None,
        year: Optional[int] = None
    ) -> List[str]:
        """
        List the subdataset names of a multi-layer granule in driver order.

        Raises:
            ToolInvocationError: If gdalinfo cannot open the granule or its
                output is not valid JSON
        """
        command = [self.settings.gdalinfo, "-json", str(granule)]
        result = self.run(command, variable=variable, year=year)
        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ToolInvocationError(command, 0, f"unparseable gdalinfo output: {e}", variable, year)
        return parse_subdatasets(info)

    def build_vrt(
        self,
        sources: Sequence[str],
        destination: Path,
        variable: Optional[str] = None,
        year: Optional[int] = None
    ) -> Path:
        """Assemble ``sources`` into a virtual mosaic at the highest resolution."""
        command = [
            self.settings.gdalbuildvrt,
            "-overwrite",
            "-resolution", self.settings.resolution,
            str(destination),
            *sources
        ]
        self.run(command, variable=variable, year=year)
        return self._expect_output(command, destination, variable, year)

    def warp_to_vrt(
        self,
        source: Path,
        destination: Path,
        epsg: int,
        variable: Optional[str] = None,
        year: Optional[int] = None
    ) -> Path:
        """Reproject ``source`` to ``EPSG:<epsg>`` as a virtual raster."""
        command = [
            self.settings.gdalwarp,
            "-overwrite",
            "-of", "VRT",
            "-t_srs", f"EPSG:{epsg}",
            str(source),
            str(destination)
        ]
        self.run(command, variable=variable, year=year)
        return self._expect_output(command, destination, variable, year)

    def translate_window(
        self,
        source: Path,
        destination: Path,
        projection_window: Tuple[float, float, float, float],
        variable: Optional[str] = None,
        year: Optional[int] = None
    ) -> Path:
        """
        Crop ``source`` to a projection window and write a compressed GeoTIFF.

        Args:
            projection_window: (ulx, uly, lrx, lry)
        """
        ulx, uly, lrx, lry = projection_window
        command = [
            self.settings.gdal_translate,
            "--config", "GDAL_CACHEMAX", str(self.settings.gdal_cache_max_mb),
            "-of", "GTiff",
            "-co", f"COMPRESS={self.settings.compress}",
            "-co", f"BIGTIFF={self.settings.bigtiff}",
            "-projwin", format_number(ulx), format_number(uly), format_number(lrx), format_number(lry),
            str(source),
            str(destination)
        ]
        self.run(command, variable=variable, year=year)
        return self._expect_output(command, destination, variable, year)

    def run_rscript(
        self,
        script: Path,
        arguments: Sequence[str],
        log_file: Path,
        env: Optional[Mapping[str, str]] = None,
        variable: Optional[str] = None,
        year: Optional[int] = None
    ) -> None:
        """
        Run an R script, appending its stdout and stderr to ``log_file``.

        Raises:
            OSError: If ``log_file`` cannot be opened for appending
            ToolInvocationError: The script exited non-zero or timed out
        """
        command = [self.settings.rscript, str(script), *arguments]
        with open(log_file, 'a') as log_stream:
            self.run(
                command,
                timeout=self.settings.stats_timeout,
                variable=variable,
                year=year,
                log_stream=log_stream,
                env=env
            )

    def _expect_output(self, command: List[str], destination: Path, variable, year) -> Path:
        if not Path(destination).exists():
            raise ToolInvocationError(command, 0, f"expected output was not created: {destination}", variable, year)
        return Path(destination)
