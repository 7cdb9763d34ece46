"""
Annual virtual mosaics of MODIS granules.

For each (variable, year) pair the builder discovers the raw HDF granules,
selects one subdataset from each, assembles them into a virtual mosaic with
``gdalbuildvrt`` and reprojects the mosaic to the target CRS as a second
virtual raster with ``gdalwarp``.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from shared_utils import get_logger, ensure_directory, is_writable_directory

from .exceptions import DiscoveryWarning, OutputWriteError, ToolInvocationError
from .granules import GranuleSet, discover_granules, require_granules
from .run_config import ProcessingSettings, RunConfig
from .toolchain import GdalToolchain

logger = get_logger('modis_subsetting.mosaic')


@dataclass(frozen=True)
class MosaicArtifact:
    """Virtual mosaic of one subdataset per granule."""
    variable: str
    year: int
    path: Path
    n_sources: int


@dataclass(frozen=True)
class ReprojectedMosaic:
    """Virtual mosaic warped to the target CRS."""
    variable: str
    year: int
    epsg: int
    path: Path
    source: MosaicArtifact


class MosaicBuilder:
    """
    Builds reprojected annual mosaics for (variable, year) pairs.

    Args:
        run_config: Run configuration
        settings: Ambient toolchain settings
        toolchain: External toolchain used for every raster operation
    """

    def __init__(self, run_config: RunConfig, settings: ProcessingSettings, toolchain: GdalToolchain):
        self.run_config = run_config
        self.settings = settings
        self.toolchain = toolchain
        self.logger = logger

    def discover(self, variable: str, year: int) -> GranuleSet:
        """Discover the readable granules of a pair, raising when there are none."""
        granules = discover_granules(
            self.run_config.input_dir,
            variable,
            year,
            pattern=self.settings.granule_pattern,
            year_format=self.settings.year_directory_format
        )
        return require_granules(granules)

    def select_subdataset(
        self,
        granule: Path,
        variable: Optional[str] = None,
        year: Optional[int] = None
    ) -> Optional[str]:
        """
        Select the configured subdataset of one granule.

        The index is 1-based and follows the driver's SUBDATASET_<n>_NAME
        numbering.

        Args:
            granule: Path to a multi-layer granule
            variable: Variable being processed, for error context
            year: Year being processed, for error context

        Returns:
            str or None: Subdataset name, None when the granule is unusable
        """
        index = self.settings.subdataset_index
        try:
            subdatasets = self.toolchain.list_subdatasets(granule, variable=variable, year=year)
        except ToolInvocationError as e:
            self.logger.warning(f"Cannot open granule {granule.name}, excluding it: {e}")
            return None

        if len(subdatasets) < index:
            self.logger.warning(
                f"Granule {granule.name} has {len(subdatasets)} subdatasets, "
                f"SUBDATASET_{index} unavailable, excluding it"
            )
            return None

        subdataset = subdatasets[index - 1].strip()
        expected = self.settings.subdataset_name
        if expected and expected not in subdataset:
            self.logger.warning(
                f"SUBDATASET_{index} of {granule.name} is '{subdataset}', "
                f"expected a name containing '{expected}', excluding it"
            )
            return None

        self.logger.debug(f"Selected {subdataset}")
        return subdataset

    def select_subdatasets(self, granules: GranuleSet) -> List[str]:
        """
        Select one subdataset per granule.

        Raises:
            DiscoveryWarning: If no granule yields a usable subdataset
        """
        subdatasets = []
        for granule in granules.files:
            subdataset = self.select_subdataset(granule, granules.variable, granules.year)
            if subdataset is not None:
                subdatasets.append(subdataset)

        if not subdatasets:
            raise DiscoveryWarning(
                f"no usable SUBDATASET_{self.settings.subdataset_index} in "
                f"{len(granules)} granules of {granules.directory}",
                granules.variable,
                granules.year
            )

        self.logger.info(f"Using {len(subdatasets)} of {len(granules)} granules for {granules.variable} {granules.year}")
        return subdatasets

    def build(self, variable: str, year: int) -> ReprojectedMosaic:
        """
        Build the reprojected mosaic of one (variable, year) pair.

        Args:
            variable: Variable name
            year: Year

        Returns:
            ReprojectedMosaic: Warped virtual mosaic in the target CRS

        Raises:
            DiscoveryWarning: No granules or subdatasets for the pair
            OutputWriteError: Cache directory not writable
            ToolInvocationError: gdalbuildvrt or gdalwarp failed
        """
        granules = self.discover(variable, year)
        subdatasets = self.select_subdatasets(granules)

        cache_dir = self.run_config.cache_dir / variable
        try:
            ensure_directory(cache_dir)
        except OSError as e:
            raise OutputWriteError(f"cannot create cache directory {cache_dir}: {e}", variable, year)
        if not is_writable_directory(cache_dir):
            raise OutputWriteError(f"cannot write to cache directory {cache_dir}", variable, year)

        vrt_path = self.run_config.mosaic_path(variable, year)
        self.logger.info(f"Building {vrt_path} from {len(subdatasets)} subdatasets")
        self.toolchain.build_vrt(subdatasets, vrt_path, variable=variable, year=year)
        mosaic = MosaicArtifact(variable=variable, year=year, path=vrt_path, n_sources=len(subdatasets))

        epsg = self.run_config.target_crs
        warped_path = self.run_config.reprojected_mosaic_path(variable, year)
        self.logger.info(f"Reprojecting {vrt_path.name} to EPSG:{epsg}")
        self.toolchain.warp_to_vrt(vrt_path, warped_path, epsg, variable=variable, year=year)

        self.logger.info(f"✅ .vrt file for {variable} in {year} is created under {warped_path}")
        return ReprojectedMosaic(variable=variable, year=year, epsg=epsg, path=warped_path, source=mosaic)
