"""
Run configuration for the MODIS subsetting workflow.

Turns raw command-line values into an immutable RunConfig and loads the
ambient toolchain settings from the component YAML into ProcessingSettings.
Parsing is pure: the only side effect is warnings emitted on the component
logger.
"""

from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from shared_utils import get_logger, get_config_value

from .exceptions import ConfigError

DEFAULT_START_DATE = "2001"
DEFAULT_END_DATE = "2020"
DEFAULT_PREFIX = "modis_"

DATE_FORMATS = (
    "%Y",
    "%Y-%m",
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)

TRUE_VALUES = {"true", "yes", "1"}
FALSE_VALUES = {"false", "no", "0"}

logger = get_logger('modis_subsetting')


def split_comma_delimited(value: Optional[str]) -> List[str]:
    """
    Split a comma-delimited string into stripped, non-empty items.

    Examples:
        >>> split_comma_delimited("LST_Day_1km, NDVI,")
        ['LST_Day_1km', 'NDVI']
    """
    if value is None:
        return []
    return [item.strip() for item in str(value).split(",") if item.strip()]


def sort_comma_delimited(value: str) -> List[float]:
    """
    Parse a comma-delimited string of real numbers and sort it ascending.

    Examples:
        >>> sort_comma_delimited("60,50")
        [50.0, 60.0]
    """
    try:
        numbers = [float(item) for item in split_comma_delimited(value)]
    except ValueError:
        raise ValueError(f"expected comma-delimited real numbers, got '{value}'")
    return sorted(numbers)


def parse_limits(value: Optional[str], field_name: str) -> Optional[Tuple[float, float]]:
    """Parse a ``min,max`` pair given in any order into an ascending tuple."""
    if value is None or not str(value).strip():
        return None
    try:
        limits = sort_comma_delimited(value)
    except ValueError as e:
        raise ConfigError(field_name, str(e))
    if len(limits) != 2:
        raise ConfigError(field_name, f"expected exactly two comma-delimited values, got '{value}'")
    return limits[0], limits[1]


def parse_bool(value: Any, field_name: str) -> bool:
    """Parse a ``true``/``false`` command-line flag value."""
    if isinstance(value, bool):
        return value
    if value is None:
        raise ConfigError(field_name, "missing required value (true/false)")
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ConfigError(field_name, f"expected true or false, got '{value}'")


def parse_date(value: str, field_name: str) -> date:
    """
    Parse a calendar date given with year, month or day precision.

    Dates are taken as UTC calendar dates, no timezone conversion happens.
    """
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ConfigError(field_name, f"unrecognized date '{value}'")


def parse_quantiles(value: Optional[str]) -> Tuple[float, ...]:
    """Parse a comma-delimited quantile list, each value within [0, 1]."""
    quantiles = []
    for item in split_comma_delimited(value):
        try:
            quantile = float(item)
        except ValueError:
            raise ConfigError("quantile", f"'{item}' is not a real number")
        if not 0.0 <= quantile <= 1.0:
            raise ConfigError("quantile", f"{quantile} is outside [0, 1]")
        quantiles.append(quantile)
    return tuple(quantiles)


def parse_epsg(value: Any) -> int:
    """Parse a positive integer EPSG code, accepting an optional ``EPSG:`` prefix."""
    if value is None or not str(value).strip():
        raise ConfigError("crs", "missing required EPSG code")
    text = str(value).strip()
    if text.upper().startswith("EPSG:"):
        text = text[5:]
    try:
        epsg = int(text)
    except ValueError:
        raise ConfigError("crs", f"'{value}' is not an integer EPSG code")
    if epsg <= 0:
        raise ConfigError("crs", f"EPSG code must be positive, got {epsg}")
    return epsg


def format_number(value: float) -> str:
    """
    Render a float with full round-trip precision, dropping a trailing ``.0``.

    Examples:
        >>> format_number(30.0)
        '30'
        >>> format_number(-115.789123456)
        '-115.789123456'
    """
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


@dataclass(frozen=True)
class RunConfig:
    """Immutable record of one workflow run, built once from CLI input."""
    input_dir: Path
    output_dir: Path
    cache_dir: Path
    variables: Tuple[str, ...]
    target_crs: int
    start_date: date
    end_date: date
    library_path: Path
    write_final_geotiff: bool
    include_na: bool
    lat_limits: Optional[Tuple[float, float]] = None
    lon_limits: Optional[Tuple[float, float]] = None
    shapefile_path: Optional[Path] = None
    feature_id: Optional[str] = None
    stats: Tuple[str, ...] = ()
    quantiles: Tuple[float, ...] = ()
    output_prefix: str = DEFAULT_PREFIX
    renv_version: str = "1.1.1"

    def __post_init__(self):
        if not self.variables:
            raise ConfigError("variable", "at least one variable is required")
        if self.shapefile_path is None and (self.lat_limits is None or self.lon_limits is None):
            raise ConfigError(
                "lat-lims/lon-lims",
                "both latitude and longitude limits are required when no shapefile is given"
            )
        if self.start_date.year > self.end_date.year:
            raise ConfigError(
                "start-date",
                f"start year {self.start_date.year} is after end year {self.end_date.year}"
            )

    @property
    def year_range(self) -> List[int]:
        """Years from start to end date, inclusive."""
        return list(range(self.start_date.year, self.end_date.year + 1))

    @property
    def compute_statistics(self) -> bool:
        return self.shapefile_path is not None and bool(self.stats)

    @property
    def raster_root(self) -> Path:
        """Directory receiving the cropped GeoTIFFs."""
        return self.output_dir if self.write_final_geotiff else self.cache_dir

    @property
    def exactextractr_cache(self) -> Path:
        return self.library_path / "exact-extract-env"

    @property
    def renv_package_path(self) -> Path:
        return self.library_path / f"renv_{self.renv_version}.tar.gz"

    @property
    def r_packages_dir(self) -> Path:
        return self.cache_dir / "r-packages"

    @property
    def r_virtual_env_dir(self) -> Path:
        return self.cache_dir / "r-virtual-env"

    def pairs(self) -> List[Tuple[str, int]]:
        """All (variable, year) pairs, variable outer loop and year inner loop."""
        return [(variable, year) for variable in self.variables for year in self.year_range]

    def mosaic_path(self, variable: str, year: int) -> Path:
        return self.cache_dir / variable / f"{year}.vrt"

    def reprojected_mosaic_path(self, variable: str, year: int) -> Path:
        return self.cache_dir / variable / f"{year}_{self.target_crs}.vrt"

    def output_raster_path(self, variable: str, year: int) -> Path:
        return self.raster_root / variable / f"{self.output_prefix}{year}.tif"

    def stats_csv_path(self, variable: str, year: int) -> Path:
        return self.output_dir / variable / f"{self.output_prefix}stats_{variable}_{year}.csv"

    def stats_log_path(self, variable: str, year: int) -> Path:
        return self.output_dir / variable / f"{self.output_prefix}stats_{variable}_{year}.log"

    def summary(self) -> Dict[str, Any]:
        """Flat view of the run parameters for start-of-run logging."""
        return {
            'input_dir': str(self.input_dir),
            'output_dir': str(self.output_dir),
            'cache_dir': str(self.cache_dir),
            'variables': ",".join(self.variables),
            'target_crs': f"EPSG:{self.target_crs}",
            'years': f"{self.start_date.year}-{self.end_date.year}",
            'lat_limits': self.lat_limits,
            'lon_limits': self.lon_limits,
            'shapefile': str(self.shapefile_path) if self.shapefile_path else None,
            'write_final_geotiff': self.write_final_geotiff,
            'stats': ",".join(self.stats) or None,
            'prefix': self.output_prefix,
        }


def _required(values: Mapping[str, Any], key: str, field_name: str) -> str:
    value = values.get(key)
    if value is None or not str(value).strip():
        raise ConfigError(field_name, "missing required argument")
    return str(value).strip()


def build_run_config(values: Mapping[str, Any], defaults: Optional[Mapping[str, Any]] = None) -> RunConfig:
    """
    Build a RunConfig from parsed command-line values.

    Args:
        values: Mapping with the keys dataset_dir, output_dir, variable, crs,
            start_date, end_date, lat_lims, lon_lims, shape_file, fid,
            print_geotiff, stat, include_na, quantile, prefix, cache, lib_path
        defaults: Optional ``defaults`` section of the component configuration

    Returns:
        RunConfig: Validated run configuration

    Raises:
        ConfigError: If a required field is missing or a value is invalid
    """
    defaults = defaults or {}

    input_dir = Path(_required(values, 'dataset_dir', 'dataset-dir'))
    output_dir = Path(_required(values, 'output_dir', 'output-dir'))
    cache_dir = Path(_required(values, 'cache', 'cache'))
    library_path = Path(_required(values, 'lib_path', 'lib-path'))

    variables = tuple(split_comma_delimited(values.get('variable')))
    if not variables:
        raise ConfigError("variable", "missing required argument")

    target_crs = parse_epsg(values.get('crs'))
    write_final_geotiff = parse_bool(values.get('print_geotiff'), 'print-geotiff')
    include_na = parse_bool(values.get('include_na'), 'include-na')

    start_value = values.get('start_date')
    end_value = values.get('end_date')
    if not start_value or not end_value:
        start_value = defaults.get('start_date', DEFAULT_START_DATE)
        end_value = defaults.get('end_date', DEFAULT_END_DATE)
        logger.warning(
            f"Time extents missing, considering full time range {start_value}-{end_value}"
        )
    start_date = parse_date(start_value, 'start-date')
    end_date = parse_date(end_value, 'end-date')

    shapefile = values.get('shape_file')
    shapefile_path = Path(shapefile) if shapefile else None

    prefix = values.get('prefix')
    if not prefix:
        prefix = defaults.get('prefix', DEFAULT_PREFIX)

    return RunConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        cache_dir=cache_dir,
        variables=variables,
        target_crs=target_crs,
        start_date=start_date,
        end_date=end_date,
        library_path=library_path,
        write_final_geotiff=write_final_geotiff,
        include_na=include_na,
        lat_limits=parse_limits(values.get('lat_lims'), 'lat-lims'),
        lon_limits=parse_limits(values.get('lon_lims'), 'lon-lims'),
        shapefile_path=shapefile_path,
        feature_id=values.get('fid') or None,
        stats=tuple(split_comma_delimited(values.get('stat'))),
        quantiles=parse_quantiles(values.get('quantile')),
        output_prefix=prefix,
        renv_version=str(defaults.get('renv_version', "1.1.1")),
    )


@dataclass(frozen=True)
class ProcessingSettings:
    """Ambient toolchain settings loaded from the component YAML."""
    gdalbuildvrt: str = "gdalbuildvrt"
    gdalwarp: str = "gdalwarp"
    gdal_translate: str = "gdal_translate"
    gdalinfo: str = "gdalinfo"
    rscript: str = "Rscript"
    tool_timeout: float = 3600.0
    required_driver: str = "HDF4"
    granule_pattern: str = "*.hdf"
    year_directory_format: str = "{year}.01.01"
    subdataset_index: int = 1
    subdataset_name: Optional[str] = None
    resolution: str = "highest"
    gdal_cache_max_mb: int = 500
    compress: str = "DEFLATE"
    bigtiff: str = "YES"
    stats_script: Path = Path("etc/scripts/stats.R")
    renv_lockfile: Path = Path("etc/renv/renv.lock")
    renv_version: str = "1.1.1"
    stats_timeout: float = 7200.0
    retain_cache: bool = True
    progress_bars: bool = True

    def __post_init__(self):
        if self.subdataset_index < 1:
            raise ConfigError("mosaic.subdataset_index", "subdataset index is 1-based")
        if self.gdal_cache_max_mb < 500:
            raise ConfigError("subsetting.gdal_cache_max_mb", "GDAL cache budget must be at least 500 MB")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ProcessingSettings":
        """
        Build settings from a loaded component configuration dictionary.

        Missing keys fall back to the dataclass defaults.
        """
        root = get_config_value(config, 'statistics.gistool_root')
        root = Path(root) if root else Path.cwd()

        def _resolve(value, fallback):
            path = Path(value) if value else fallback
            return path if path.is_absolute() else root / path

        defaults = cls()
        return cls(
            gdalbuildvrt=get_config_value(config, 'tools.gdalbuildvrt', defaults.gdalbuildvrt),
            gdalwarp=get_config_value(config, 'tools.gdalwarp', defaults.gdalwarp),
            gdal_translate=get_config_value(config, 'tools.gdal_translate', defaults.gdal_translate),
            gdalinfo=get_config_value(config, 'tools.gdalinfo', defaults.gdalinfo),
            rscript=get_config_value(config, 'tools.rscript', defaults.rscript),
            tool_timeout=float(get_config_value(config, 'tools.timeout_seconds', defaults.tool_timeout)),
            required_driver=get_config_value(config, 'tools.required_driver', defaults.required_driver),
            granule_pattern=get_config_value(config, 'mosaic.granule_pattern', defaults.granule_pattern),
            year_directory_format=get_config_value(
                config, 'mosaic.year_directory_format', defaults.year_directory_format
            ),
            subdataset_index=int(get_config_value(config, 'mosaic.subdataset_index', defaults.subdataset_index)),
            subdataset_name=get_config_value(config, 'mosaic.subdataset_name'),
            resolution=get_config_value(config, 'mosaic.resolution', defaults.resolution),
            gdal_cache_max_mb=int(
                get_config_value(config, 'subsetting.gdal_cache_max_mb', defaults.gdal_cache_max_mb)
            ),
            compress=get_config_value(config, 'subsetting.compress', defaults.compress),
            bigtiff=str(get_config_value(config, 'subsetting.bigtiff', defaults.bigtiff)),
            stats_script=_resolve(get_config_value(config, 'statistics.script_path'), defaults.stats_script),
            renv_lockfile=_resolve(get_config_value(config, 'statistics.renv_lockfile'), defaults.renv_lockfile),
            renv_version=str(get_config_value(config, 'statistics.renv_version', defaults.renv_version)),
            stats_timeout=float(get_config_value(config, 'statistics.timeout_seconds', defaults.stats_timeout)),
            retain_cache=bool(get_config_value(config, 'cache.retain', defaults.retain_cache)),
            progress_bars=bool(get_config_value(config, 'logging.progress_bars', defaults.progress_bars)),
        )

    def tool_commands(self, include_statistics: bool = False) -> List[str]:
        """Executables the workflow needs on PATH."""
        commands = [self.gdalinfo, self.gdalbuildvrt, self.gdalwarp, self.gdal_translate]
        if include_statistics:
            commands.append(self.rscript)
        return commands


def stats_argument(values: Sequence[Any]) -> str:
    """Join a statistics or quantile list the way the R routine expects it."""
    return ",".join(format_number(v) if isinstance(v, float) else str(v) for v in values)
