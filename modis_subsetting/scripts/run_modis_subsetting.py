#!/usr/bin/env python3
"""
MODIS Subsetting Script

Command-line interface for subsetting annual MODIS HDF granules into
per-variable, per-year GeoTIFFs, with optional zonal statistics against a
boundary shapefile.

Usage Examples:
    # Subset LST for 2015-2017 over a lat/lon box, keeping final GeoTIFFs
    python -m modis_subsetting.scripts.run_modis_subsetting \\
        -i /data/MODIS -o ./out -c ./cache -L ./r-libs \\
        -v MOD11A2.061 -r 4326 -s 2015 -e 2017 \\
        -l 49,60 -n -120,-98 -t true -u false

    # Derive the extent from a shapefile and compute zonal statistics
    modis-subset -i /data/MODIS -o ./out -c ./cache -L ./r-libs \\
        -v MCD12Q1.061 -r 4326 -f basin.shp -t true -u true \\
        -a mean,frac -q 0.1,0.9 --config my_config.yaml
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from shared_utils import setup_logging, load_config, validate_config, get_config_value

from modis_subsetting.core.exceptions import ConfigError, ToolchainError
from modis_subsetting.core.pipeline import ModisSubsettingPipeline
from modis_subsetting.core.run_config import ProcessingSettings, build_run_config

COMPONENT_DIR = Path(__file__).resolve().parent.parent
REQUIRED_SECTIONS = ['logging', 'tools', 'mosaic', 'subsetting']

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class UsageArgumentParser(argparse.ArgumentParser):
    """Argument parser exiting with status 1 and the short usage on errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: ERROR! {message}\n")


def build_parser() -> argparse.ArgumentParser:
    """
    Build the command-line parser.

    Returns:
        argparse.ArgumentParser: Parser for the workflow flags
    """
    parser = UsageArgumentParser(
        prog="modis-subset",
        description="Subset MODIS HDF granules into annual GeoTIFFs and optional zonal statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('-i', '--dataset-dir', help='Directory of the raw MODIS granules (required)')
    parser.add_argument('-o', '--output-dir', help='Directory of the final outputs (required)')
    parser.add_argument('-v', '--variable', help='Comma-delimited variables, e.g. MOD11A2.061 (required)')
    parser.add_argument('-r', '--crs', help='Target EPSG code, e.g. 4326 (required)')
    parser.add_argument('-s', '--start-date', help='Start date, e.g. 2015 or 2015-01-01')
    parser.add_argument('-e', '--end-date', help='End date, e.g. 2017 or 2017-12-31')
    parser.add_argument('-l', '--lat-lims', help='Comma-delimited latitude limits')
    parser.add_argument('-n', '--lon-lims', help='Comma-delimited longitude limits')
    parser.add_argument('-f', '--shape-file', help='Boundary shapefile, overrides the lat/lon limits')
    parser.add_argument('-F', '--fid', help='Feature id column passed to the statistics routine')
    parser.add_argument('-t', '--print-geotiff', help='Write final GeoTIFFs to the output directory (true/false, required)')
    parser.add_argument('-a', '--stat', help='Comma-delimited zonal statistics, e.g. mean,majority')
    parser.add_argument('-u', '--include-na', help='Include NA pixels in the statistics (true/false, required)')
    parser.add_argument('-q', '--quantile', help='Comma-delimited quantiles in [0, 1]')
    parser.add_argument('-p', '--prefix', help='Output file name prefix (default: modis_)')
    parser.add_argument('-c', '--cache', help='Cache directory for intermediate files (required)')
    parser.add_argument('-L', '--lib-path', help='R library cache path (required)')

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration file (default: uses component default)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: from configuration)'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the MODIS subsetting script.

    Args:
        argv: Command-line arguments, ``sys.argv[1:]`` when None

    Returns:
        int: Exit code (0 for success, 1 for failure, 130 when cancelled)
    """
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()

    if not argv:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: ERROR! arguments missing", file=sys.stderr)
        return EXIT_FAILURE

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, component_dir=COMPONENT_DIR)
        validate_config(config, REQUIRED_SECTIONS)
    except (FileNotFoundError, ValueError) as e:
        print(f"{parser.prog}: ERROR! {e}", file=sys.stderr)
        return EXIT_FAILURE

    logger = setup_logging(
        level=args.log_level or get_config_value(config, 'logging.level', 'INFO'),
        component_name=get_config_value(config, 'logging.component_name', 'modis_subsetting'),
        log_file=get_config_value(config, 'logging.log_file'),
        format_style=get_config_value(config, 'logging.format_style', 'standard')
    )

    try:
        settings = ProcessingSettings.from_config(config)
        defaults = dict(config.get('defaults') or {})
        defaults['renv_version'] = settings.renv_version
        run_config = build_run_config(vars(args), defaults)
    except ConfigError as e:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: ERROR! {e}", file=sys.stderr)
        return EXIT_FAILURE

    pipeline = ModisSubsettingPipeline(run_config, settings)
    try:
        pipeline.run_full_pipeline()
    except (ConfigError, ToolchainError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_CANCELLED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
