"""
MODIS Subsetting Core Modules

Core functionality of the MODIS subsetting workflow.

Modules:
    run_config: Command-line configuration record and toolchain settings
    extent: Bounding box from explicit limits or a boundary shapefile
    granules: Discovery of annual HDF granules
    mosaic: Virtual mosaic building and reprojection
    subsetting: Cropping of reprojected mosaics to GeoTIFF
    statistics: Zonal statistics through the external R routine
    toolchain: External tool invocation and preflight check
    pipeline: Workflow driver
"""

from .exceptions import (
    ModisSubsettingError,
    ConfigError,
    ToolchainError,
    StageError,
    DiscoveryWarning,
    ToolInvocationError,
    OutputWriteError
)
from .run_config import (
    RunConfig,
    ProcessingSettings,
    build_run_config,
    sort_comma_delimited,
    split_comma_delimited
)
from .extent import BoundingBox, resolve_bounding_box
from .granules import GranuleSet, discover_granules
from .mosaic import MosaicBuilder, MosaicArtifact, ReprojectedMosaic
from .subsetting import SpatialSubsetter
from .statistics import StatisticsRunner
from .toolchain import GdalToolchain, CapabilityReport
from .pipeline import ModisSubsettingPipeline, PipelineReport, StageFailure

__all__ = [
    # Errors
    "ModisSubsettingError",
    "ConfigError",
    "ToolchainError",
    "StageError",
    "DiscoveryWarning",
    "ToolInvocationError",
    "OutputWriteError",

    # Configuration
    "RunConfig",
    "ProcessingSettings",
    "build_run_config",
    "sort_comma_delimited",
    "split_comma_delimited",

    # Components
    "BoundingBox",
    "resolve_bounding_box",
    "GranuleSet",
    "discover_granules",
    "MosaicBuilder",
    "MosaicArtifact",
    "ReprojectedMosaic",
    "SpatialSubsetter",
    "StatisticsRunner",
    "GdalToolchain",
    "CapabilityReport",

    # Workflow driver
    "ModisSubsettingPipeline",
    "PipelineReport",
    "StageFailure"
]
