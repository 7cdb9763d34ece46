from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import pytest

from modis_subsetting.core.exceptions import ToolInvocationError
from modis_subsetting.core.run_config import ProcessingSettings, RunConfig, build_run_config
from modis_subsetting.core.toolchain import CapabilityReport, GdalToolchain

DEFAULT_SUBDATASETS = [
    'HDF4_EOS:EOS_GRID:"{path}":MODIS_Grid_8Day_1km_LST:LST_Day_1km',
    'HDF4_EOS:EOS_GRID:"{path}":MODIS_Grid_8Day_1km_LST:QC_Day',
]

DEFAULT_DRIVERS = [
    "  VRT -raster,multidimensional raster- (rw+v): Virtual Raster",
    "  GTiff -raster- (rw+vs): GeoTIFF",
    "  HDF4 -raster,multidimensional raster- (ros): Hierarchical Data Format Release 4",
    "  HDF4Image -raster- (rw+): HDF4 Dataset",
]

# Stand-in gdalinfo: --version, --formats and -json <granule>; granules named
# *corrupt* fail the way GDAL does on an unreadable file. Subdatasets are
# listed out of order in the JSON object.
GDALINFO_SCRIPT = """#!/bin/sh
case "$1" in
  --version)
    echo "GDAL 3.10.3, released 2025/04/01"
    ;;
  --formats)
    cat <<'FORMATS'
Supported Formats: (ro:read-only, rw:read-write, +:update, v:virtual-I/O s:subdatasets)
{drivers}
FORMATS
    ;;
  -json)
    case "$2" in
      *corrupt*)
        echo "ERROR 4: $2: not recognized as being in a supported file format." >&2
        exit 1
        ;;
    esac
    cat <<JSON
{{"description": "$2", "driverShortName": "HDF4", "metadata": {{"SUBDATASETS": {{
  "SUBDATASET_2_NAME": "HDF4_EOS:EOS_GRID:\\"$2\\":MODIS_Grid_8Day_1km_LST:QC_Day",
  "SUBDATASET_2_DESC": "[1200x1200] QC_Day MODIS_Grid_8Day_1km_LST (8-bit unsigned integer)",
  "SUBDATASET_1_NAME": "HDF4_EOS:EOS_GRID:\\"$2\\":MODIS_Grid_8Day_1km_LST:LST_Day_1km",
  "SUBDATASET_1_DESC": "[1200x1200] LST_Day_1km MODIS_Grid_8Day_1km_LST (16-bit unsigned integer)"
}}}}}}
JSON
    ;;
esac
"""


class FakeToolchain(GdalToolchain):
    """Toolchain double recording commands and creating their outputs."""

    def __init__(self, settings: ProcessingSettings, failing_tools: Optional[Set[str]] = None) -> None:
        super().__init__(settings)
        self.failing_tools = failing_tools or set()
        self.commands: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.subdatasets: Dict[str, List[str]] = {}

    def ensure_ready(self, include_statistics: bool = False) -> CapabilityReport:
        tools = {name: f"/usr/bin/{name}" for name in self.settings.tool_commands(include_statistics)}
        return CapabilityReport(tools=tools, driver_available=True, gdal_version="3.9.0")

    def list_subdatasets(self, granule: Any, variable: Optional[str] = None, year: Optional[int] = None) -> List[str]:
        granule = Path(granule)
        if granule.name in self.subdatasets:
            return self.subdatasets[granule.name]
        return [name.format(path=granule) for name in DEFAULT_SUBDATASETS]

    def run(self, command, timeout=None, variable=None, year=None, log_stream=None, env=None):
        command = [str(part) for part in command]
        self.commands.append(command)
        self.envs.append(dict(env) if env else None)

        tool = command[0]
        if tool in self.failing_tools:
            raise ToolInvocationError(command, 1, f"{tool} failed", variable, year)

        if tool == self.settings.gdalbuildvrt:
            Path(command[4]).write_text("<VRTDataset/>")
        elif tool in (self.settings.gdalwarp, self.settings.gdal_translate):
            Path(command[-1]).write_text("raster")
        elif tool == self.settings.rscript:
            Path(command[10]).write_text("id,mean\n1,0.5\n")
            if log_stream is not None:
                log_stream.write("stats.R finished\n")
        return None

    def commands_for(self, tool: str) -> List[List[str]]:
        return [command for command in self.commands if command[0] == tool]


@pytest.fixture
def make_granules() -> Callable[..., Path]:
    def factory(input_dir: Path, variable: str, year: int, names: List[str]) -> Path:
        directory = input_dir / variable / f"{year}.01.01"
        directory.mkdir(parents=True, exist_ok=True)
        for name in names:
            (directory / name).write_bytes(b"\x0e\x03\x13\x01")
        return directory

    return factory


@pytest.fixture
def make_gdalinfo(tmp_path: Path) -> Callable[..., Path]:
    def factory(drivers: Optional[List[str]] = None) -> Path:
        script = tmp_path / "bin" / "gdalinfo"
        script.parent.mkdir(parents=True, exist_ok=True)
        lines = DEFAULT_DRIVERS if drivers is None else drivers
        script.write_text(GDALINFO_SCRIPT.format(drivers="\n".join(lines)))
        script.chmod(0o755)
        return script

    return factory


@pytest.fixture
def settings(tmp_path: Path) -> ProcessingSettings:
    gistool_root = tmp_path / "gistool"
    (gistool_root / "etc" / "scripts").mkdir(parents=True)
    (gistool_root / "etc" / "renv").mkdir(parents=True)
    (gistool_root / "etc" / "scripts" / "stats.R").write_text("# zonal statistics\n")
    (gistool_root / "etc" / "renv" / "renv.lock").write_text('{"R": {"Version": "4.3.1"}}\n')
    return ProcessingSettings(
        stats_script=gistool_root / "etc" / "scripts" / "stats.R",
        renv_lockfile=gistool_root / "etc" / "renv" / "renv.lock",
        progress_bars=False,
    )


@pytest.fixture
def toolchain(settings: ProcessingSettings) -> FakeToolchain:
    return FakeToolchain(settings)


@pytest.fixture
def cli_values(tmp_path: Path) -> Dict[str, Any]:
    return {
        'dataset_dir': str(tmp_path / "modis"),
        'output_dir': str(tmp_path / "output"),
        'cache': str(tmp_path / "cache"),
        'lib_path': str(tmp_path / "r-libs"),
        'variable': "MOD11A2.061",
        'crs': "4326",
        'start_date': "2015",
        'end_date': "2015",
        'lat_lims': "10,20",
        'lon_lims': "30,40",
        'print_geotiff': "true",
        'include_na': "false",
    }


@pytest.fixture
def make_run_config(cli_values: Dict[str, Any]) -> Callable[..., RunConfig]:
    def factory(**overrides: Any) -> RunConfig:
        return build_run_config({**cli_values, **overrides})

    return factory
