"""
MODIS Subsetting Component

Subsets annual MODIS HDF granules into per-variable, per-year GeoTIFFs and
optionally extracts zonal statistics against a boundary shapefile.

This component provides:
- Discovery of annual granules under <dataset>/<variable>/<year>.01.01/
- Virtual mosaics (gdalbuildvrt) of one subdataset per granule
- Reprojection to a target EPSG code (gdalwarp, VRT output)
- Cropping to a lat/lon box or a shapefile extent (gdal_translate)
- Zonal statistics through the gistool R routine (exactextractr + renv)

Key Features:
- Preflight check of the GDAL tools and HDF4 driver before any work
- Per (variable, year) error isolation, failures are reported at the end
- DEFLATE-compressed BigTIFF outputs written atomically
"""

from .core.pipeline import ModisSubsettingPipeline, PipelineReport
from .core.run_config import RunConfig, ProcessingSettings, build_run_config
from .core.extent import BoundingBox

__version__ = "1.0.0"
__component__ = "modis_subsetting"

__all__ = [
    "ModisSubsettingPipeline",
    "PipelineReport",
    "RunConfig",
    "ProcessingSettings",
    "build_run_config",
    "BoundingBox",

    # Component metadata
    "__version__",
    "__component__"
]

# Component configuration
DEFAULT_CONFIG_PATH = "config.yaml"
COMPONENT_NAME = "modis_subsetting"

# Supported data formats
SUPPORTED_INPUT_FORMATS = ['.hdf']   # MODIS HDF4-EOS granules
SUPPORTED_OUTPUT_FORMATS = ['.tif']  # DEFLATE-compressed GeoTIFF
REQUIRED_SYSTEM_DEPENDENCIES = ['gdalbuildvrt', 'gdalwarp', 'gdal_translate']
OPTIONAL_SYSTEM_DEPENDENCIES = ['Rscript']
