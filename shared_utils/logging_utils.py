"""
Logging setup shared by the gistool MODIS workflow.

All component loggers hang below the ``gistool`` root, so one call to
``setup_logging`` from a script configures every module of the run. The
banner helpers give each pipeline the same start, section and end markers
in the log.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Union

LOGGER_ROOT = 'gistool'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
BANNER_WIDTH = 80

FORMATS = {
    'standard': '(%(asctime)s) %(name)s - %(levelname)s - %(message)s',
    'detailed': '(%(asctime)s) %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    'simple': '%(levelname)s: %(message)s',
}


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: Union[str, int] = 'INFO',
    component_name: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    format_style: str = 'standard'
) -> logging.Logger:
    """
    Configure the root logger for a workflow run.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output. Records go to stdout and, when ``log_file`` is set,
    to that file as well (its parent directory is created).

    Args:
        level: Level name (``'DEBUG'``, ``'INFO'``, ...) or numeric level
        component_name: Component whose logger is returned
        log_file: Optional file receiving a copy of every record
        format_style: One of ``standard``, ``detailed`` or ``simple``;
            unknown styles fall back to ``standard``

    Returns:
        logging.Logger: ``gistool.<component_name>``, or the ``gistool``
        root logger when no component is given

    Examples:
        >>> logger = setup_logging('DEBUG', 'modis_subsetting', 'logs/modis.log')
    """
    numeric_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown logging level: {level}")

    formatter = logging.Formatter(FORMATS.get(format_style, FORMATS['standard']), datefmt=DATE_FORMAT)

    handlers = [_handler(logging.StreamHandler(sys.stdout), numeric_level, formatter)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(_handler(logging.FileHandler(log_path), numeric_level, formatter))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(numeric_level)
    for handler in handlers:
        root.addHandler(handler)

    return get_logger(component_name) if component_name else logging.getLogger(LOGGER_ROOT)


def get_logger(component_name: str) -> logging.Logger:
    """Logger ``gistool.<component_name>``, e.g. ``gistool.modis_subsetting.mosaic``."""
    return logging.getLogger(f'{LOGGER_ROOT}.{component_name}')


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def log_pipeline_start(logger: logging.Logger, pipeline_name: str, parameters: Optional[Mapping[str, Any]] = None) -> None:
    """
    Log the opening banner of a pipeline and its run parameters.

    Keys starting with ``_`` are internal and are not echoed. Nested
    mappings are summarized by their size.
    """
    logger.info("=" * BANNER_WIDTH)
    logger.info(f"STARTING PIPELINE: {pipeline_name.upper()}")
    logger.info("=" * BANNER_WIDTH)

    visible = {key: value for key, value in (parameters or {}).items() if not key.startswith('_')}
    if not visible:
        return

    logger.info("Run parameters:")
    for key, value in visible.items():
        if isinstance(value, Mapping):
            value = f"{len(value)} entries"
        logger.info(f"  {key}: {value}")


def log_pipeline_end(
    logger: logging.Logger,
    pipeline_name: str,
    success: bool = True,
    elapsed_time: Optional[float] = None
) -> None:
    """Log the closing banner of a pipeline with its status and wall time."""
    status = "✅ PIPELINE COMPLETED" if success else "❌ PIPELINE FAILED"
    logger.info("=" * BANNER_WIDTH)
    logger.info(f"{status}: {pipeline_name.upper()}")
    if elapsed_time:
        logger.info(f"Total execution time: {_format_elapsed(elapsed_time)}")
    logger.info("=" * BANNER_WIDTH)


def log_section(logger: logging.Logger, section_name: str) -> None:
    """Log a stage header such as ``==== BUILDING VIRTUAL MOSAICS ====``."""
    logger.info(f"{'=' * 20} {section_name.upper()} {'=' * 20}")
