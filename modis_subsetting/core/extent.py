"""
Extent resolution for the MODIS subsetting workflow.

Derives the geographic bounding box (EPSG:4326) used to crop the mosaics,
either from explicit latitude/longitude limits or from the extent of a
boundary shapefile.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import geopandas as gpd
import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError

from shared_utils import get_logger

from .exceptions import ConfigError
from .run_config import RunConfig

GEOGRAPHIC_CRS = "EPSG:4326"
FALLBACK_SOURCE_CRS = "+proj=longlat +datum=WGS84 +no_defs"

logger = get_logger('modis_subsetting.extent')


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounding box with min <= max on both axes."""
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    def __post_init__(self):
        if self.lat_min > self.lat_max or self.lon_min > self.lon_max:
            raise ValueError(f"BoundingBox limits are not ordered: {self}")

    @classmethod
    def from_limits(cls, lat_limits: Tuple[float, float], lon_limits: Tuple[float, float]) -> "BoundingBox":
        """Build a box from two (unordered) limit pairs."""
        lat_min, lat_max = sorted(lat_limits)
        lon_min, lon_max = sorted(lon_limits)
        return cls(lat_min=lat_min, lat_max=lat_max, lon_min=lon_min, lon_max=lon_max)

    @property
    def projection_window(self) -> Tuple[float, float, float, float]:
        """
        Crop window in upper-left / lower-right corner order.

        Returns:
            tuple: (lon_min, lat_max, lon_max, lat_min), as expected by
            ``gdal_translate -projwin``
        """
        return self.lon_min, self.lat_max, self.lon_max, self.lat_min


def read_shapefile_extent(shapefile_path: Union[str, Path]) -> Tuple[Tuple[float, float, float, float], Optional[CRS]]:
    """
    Read the native extent and CRS of a vector boundary file.

    Args:
        shapefile_path: Path to the boundary file (any OGR-readable format)

    Returns:
        tuple: ((minx, miny, maxx, maxy), CRS or None when undetectable)

    Raises:
        ConfigError: If the file cannot be read or has an empty extent
    """
    shapefile_path = Path(shapefile_path)
    if not shapefile_path.exists():
        raise ConfigError("shape-file", f"boundary file not found: {shapefile_path}")

    try:
        boundary = gpd.read_file(shapefile_path)
    except Exception as e:
        raise ConfigError("shape-file", f"cannot read boundary file {shapefile_path}: {e}")

    bounds = boundary.total_bounds
    if boundary.empty or not np.all(np.isfinite(bounds)):
        raise ConfigError("shape-file", f"boundary file has an empty extent: {shapefile_path}")

    logger.debug(f"Loaded boundary with {len(boundary)} features, extent {tuple(bounds)}")
    return tuple(float(v) for v in bounds), boundary.crs


def transform_extent(
    bounds: Tuple[float, float, float, float],
    source_crs: Optional[Union[CRS, str]]
) -> BoundingBox:
    """
    Transform the lower-left and upper-right corners of an extent to EPSG:4326.

    Args:
        bounds: (minx, miny, maxx, maxy) in ``source_crs``
        source_crs: CRS of the extent; WGS84 geographic is assumed when None

    Returns:
        BoundingBox: Normalized geographic bounding box
    """
    if source_crs is None:
        logger.warning("Assuming WGS84 CRS for the input boundary file")
        source_crs = FALLBACK_SOURCE_CRS

    try:
        transformer = Transformer.from_crs(source_crs, GEOGRAPHIC_CRS, always_xy=True)
    except CRSError as e:
        raise ConfigError("shape-file", f"cannot transform boundary CRS to {GEOGRAPHIC_CRS}: {e}")

    minx, miny, maxx, maxy = bounds
    left_lon, bottom_lat = transformer.transform(minx, miny)
    right_lon, top_lat = transformer.transform(maxx, maxy)

    corners = np.array([left_lon, bottom_lat, right_lon, top_lat])
    if not np.all(np.isfinite(corners)):
        raise ConfigError("shape-file", f"boundary extent {bounds} has no valid geographic coordinates")

    return BoundingBox.from_limits(
        lat_limits=(bottom_lat, top_lat),
        lon_limits=(left_lon, right_lon)
    )


def resolve_bounding_box(run_config: RunConfig) -> BoundingBox:
    """
    Determine the geographic bounding box for a run.

    A boundary shapefile takes precedence over explicit latitude/longitude
    limits.

    Args:
        run_config: Run configuration

    Returns:
        BoundingBox: Normalized bounding box in EPSG:4326

    Raises:
        ConfigError: If neither a shapefile nor both limit pairs are available
    """
    if run_config.shapefile_path is not None:
        bounds, source_crs = read_shapefile_extent(run_config.shapefile_path)
        bbox = transform_extent(bounds, source_crs)
        if run_config.lat_limits or run_config.lon_limits:
            logger.info("Boundary file extent overrides the explicit lat/lon limits")
        logger.info(
            f"Extent from {run_config.shapefile_path.name}: "
            f"lat [{bbox.lat_min}, {bbox.lat_max}], lon [{bbox.lon_min}, {bbox.lon_max}]"
        )
        return bbox

    if run_config.lat_limits is None or run_config.lon_limits is None:
        raise ConfigError(
            "lat-lims/lon-lims",
            "both latitude and longitude limits are required when no shapefile is given"
        )

    bbox = BoundingBox.from_limits(run_config.lat_limits, run_config.lon_limits)
    logger.info(f"Extent from limits: lat [{bbox.lat_min}, {bbox.lat_max}], lon [{bbox.lon_min}, {bbox.lon_max}]")
    return bbox
