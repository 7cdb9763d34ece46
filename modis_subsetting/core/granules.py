"""
Granule discovery for annual MODIS HDF folders.

Granules for a variable and year live under
``<input_dir>/<variable>/<year>.01.01/``. Discovery tries a direct pattern
match in that folder first and falls back to a recursive search below it.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from shared_utils import get_logger, find_files, is_readable_file

from .exceptions import DiscoveryWarning

DIRECT_MATCH = "direct"
RECURSIVE_MATCH = "recursive"

logger = get_logger('modis_subsetting.granules')


@dataclass(frozen=True)
class GranuleSet:
    """Discovered raw granules for one (variable, year) pair."""
    variable: str
    year: int
    directory: Path
    files: Tuple[Path, ...] = ()
    unreadable: Tuple[Path, ...] = ()
    strategy: str = DIRECT_MATCH

    @property
    def is_empty(self) -> bool:
        return not self.files

    def __len__(self) -> int:
        return len(self.files)


def granule_directory(input_dir: Path, variable: str, year: int, year_format: str = "{year}.01.01") -> Path:
    """Expected folder of the annual granules of ``variable``."""
    return Path(input_dir) / variable / year_format.format(year=year)


def discover_granules(
    input_dir: Path,
    variable: str,
    year: int,
    pattern: str = "*.hdf",
    year_format: str = "{year}.01.01"
) -> GranuleSet:
    """
    Discover the readable granules of one variable and year.

    Args:
        input_dir: Dataset root directory
        variable: Variable (product) subdirectory name
        year: Year to discover
        pattern: Glob pattern of granule files
        year_format: Folder name template of an annual granule folder

    Returns:
        GranuleSet: Readable granules, possibly empty, with unreadable files
        listed separately
    """
    directory = granule_directory(input_dir, variable, year, year_format)

    strategy = DIRECT_MATCH
    candidates = find_files(directory, pattern, recursive=False)
    if not candidates:
        strategy = RECURSIVE_MATCH
        candidates = find_files(directory, pattern, recursive=True)

    readable = []
    unreadable = []
    for candidate in candidates:
        if is_readable_file(candidate):
            readable.append(candidate)
        else:
            logger.warning(f"Cannot read granule, excluding it: {candidate}")
            unreadable.append(candidate)

    logger.debug(
        f"{variable}/{year}: {len(readable)} readable of {len(candidates)} granules "
        f"in {directory} ({strategy} search)"
    )

    return GranuleSet(
        variable=variable,
        year=year,
        directory=directory,
        files=tuple(readable),
        unreadable=tuple(unreadable),
        strategy=strategy
    )


def require_granules(granules: GranuleSet) -> GranuleSet:
    """
    Return ``granules`` unchanged, or raise when no readable granule exists.

    Raises:
        DiscoveryWarning: If the set is empty
    """
    if granules.is_empty:
        if granules.unreadable:
            reason = f"none of the {len(granules.unreadable)} granules in {granules.directory} is readable"
        else:
            reason = f"no granules found in {granules.directory}"
        raise DiscoveryWarning(reason, granules.variable, granules.year)
    return granules
