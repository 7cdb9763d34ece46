"""
Path utilities for the gistool MODIS workflow.

This module provides consistent path handling, file discovery, and directory
management across all workflow components.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union
import logging


def ensure_directory(path: Union[str, Path], parents: bool = True) -> Path:
    """
    Ensure directory exists, creating it if necessary.

    Args:
        path: Directory path to create
        parents: Whether to create parent directories

    Returns:
        Path: Created directory path

    Examples:
        >>> output_dir = ensure_directory("results/LST/2015")
    """
    path = Path(path)
    path.mkdir(parents=parents, exist_ok=True)
    return path


def find_files(
    directory: Union[str, Path],
    pattern: str = "*",
    recursive: bool = True,
    file_types: Optional[List[str]] = None
) -> List[Path]:
    """
    Find files matching pattern in directory.

    Args:
        directory: Directory to search in
        pattern: Glob pattern to match
        recursive: Whether to search recursively
        file_types: List of file extensions to filter by (e.g., ['.hdf'])

    Returns:
        List[Path]: Sorted list of matching file paths

    Examples:
        >>> hdf_files = find_files("MOD11A2/2015.01.01", "*.hdf", recursive=False)
        >>> raster_files = find_files("rasters", "*", file_types=['.tif', '.vrt'])
    """
    directory = Path(directory)

    if not directory.exists():
        logging.getLogger(__name__).debug(f"Directory does not exist: {directory}")
        return []

    if recursive:
        files = list(directory.rglob(pattern))
    else:
        files = list(directory.glob(pattern))

    if file_types:
        file_types = [ext.lower() for ext in file_types]
        files = [f for f in files if f.suffix.lower() in file_types]

    # Return only files (not directories)
    files = [f for f in files if f.is_file()]

    return sorted(files)


def is_writable_directory(path: Union[str, Path]) -> bool:
    """
    Check that a directory exists and the current user may create files in it.

    Args:
        path: Directory to check

    Returns:
        bool: True if files can be written to the directory
    """
    path = Path(path)
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def is_readable_file(path: Union[str, Path]) -> bool:
    """Return True if ``path`` is a regular file the current user can read."""
    path = Path(path)
    return path.is_file() and os.access(path, os.R_OK)


@contextmanager
def atomic_destination(destination: Union[str, Path]) -> Iterator[Path]:
    """
    Yield a temporary sibling path for ``destination`` and move it into place
    once the block exits cleanly.

    The temporary file lives in the destination directory, so the final
    ``os.replace`` is a rename on the same filesystem. On any exception the
    temporary file is removed and the destination is left untouched.

    Args:
        destination: Final file path

    Yields:
        Path: Temporary path to write to

    Examples:
        >>> with atomic_destination("out/LST/modis_2015.tif") as tmp:
        ...     write_raster(tmp)
    """
    destination = Path(destination)
    temporary = destination.with_name(f".{destination.stem}.partial{destination.suffix}")

    try:
        yield temporary
        if not temporary.exists():
            raise FileNotFoundError(f"Expected output was not written: {temporary}")
        os.replace(temporary, destination)
    finally:
        if temporary.exists():
            temporary.unlink()
