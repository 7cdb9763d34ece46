"""
Spatial subsetting of reprojected mosaics.

Crops a reprojected mosaic to the run's bounding box with
``gdal_translate -projwin`` and writes a DEFLATE-compressed BigTIFF. The
GeoTIFF goes to the output directory when final GeoTIFFs are requested and
to the cache directory otherwise. Files are written under a temporary name
and renamed into place once complete.
"""

from pathlib import Path

from shared_utils import get_logger, ensure_directory, is_writable_directory, atomic_destination

from .exceptions import OutputWriteError
from .extent import BoundingBox
from .mosaic import ReprojectedMosaic
from .run_config import RunConfig
from .toolchain import GdalToolchain

logger = get_logger('modis_subsetting.subsetting')


class SpatialSubsetter:
    """
    Crops reprojected mosaics to a bounding box.

    Args:
        run_config: Run configuration
        bbox: Geographic bounding box of the run
        toolchain: External toolchain
    """

    def __init__(self, run_config: RunConfig, bbox: BoundingBox, toolchain: GdalToolchain):
        self.run_config = run_config
        self.bbox = bbox
        self.toolchain = toolchain
        self.logger = logger

    def destination(self, variable: str, year: int) -> Path:
        return self.run_config.output_raster_path(variable, year)

    def subset(self, mosaic: ReprojectedMosaic) -> Path:
        """
        Crop one reprojected mosaic and write its GeoTIFF.

        Args:
            mosaic: Reprojected mosaic of a (variable, year) pair

        Returns:
            Path: Written GeoTIFF

        Raises:
            OutputWriteError: Destination directory or file not writable
            ToolInvocationError: gdal_translate failed
        """
        variable, year = mosaic.variable, mosaic.year
        destination = self.destination(variable, year)

        try:
            ensure_directory(destination.parent)
        except OSError as e:
            raise OutputWriteError(f"cannot create {destination.parent}: {e}", variable, year)
        if not is_writable_directory(destination.parent):
            raise OutputWriteError(f"cannot write to {destination.parent}", variable, year)

        window = self.bbox.projection_window
        self.logger.info(f"Subsetting {mosaic.path.name} to window {window} -> {destination}")

        try:
            with atomic_destination(destination) as temporary:
                self.toolchain.translate_window(
                    mosaic.path, temporary, window, variable=variable, year=year
                )
        except OSError as e:
            raise OutputWriteError(f"cannot write {destination}: {e}", variable, year)

        return destination
