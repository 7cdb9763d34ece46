import logging
from pathlib import Path

import pytest

from shared_utils import (
    atomic_destination,
    find_files,
    get_config_value,
    get_logger,
    load_config,
    log_pipeline_end,
    log_pipeline_start,
    setup_logging,
    validate_config,
)
from shared_utils.config_utils import CONFIG_ENV_VAR

COMPONENT_DIR = Path(__file__).resolve().parents[1] / "modis_subsetting"


def test_component_config_is_found() -> None:
    config = load_config(component_dir=COMPONENT_DIR)

    assert get_config_value(config, 'tools.required_driver') == "HDF4"
    assert get_config_value(config, 'subsetting.gdal_cache_max_mb') == 500
    assert config['_meta']['config_file'].endswith("config.yaml")
    assert validate_config(config, ['logging', 'tools', 'mosaic', 'subsetting'])


def test_config_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_file = tmp_path / "site.yaml"
    config_file.write_text("cache:\n  retain: false\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))

    config = load_config()

    assert get_config_value(config, 'cache.retain') is False


def test_config_must_be_a_mapping(tmp_path: Path) -> None:
    config_file = tmp_path / "list.yaml"
    config_file.write_text("- a\n- b\n")

    with pytest.raises(ValueError):
        load_config(config_file)


def test_validate_config_reports_missing_sections() -> None:
    with pytest.raises(ValueError, match="subsetting"):
        validate_config({'tools': {}}, ['tools', 'subsetting'])


def test_get_config_value_default() -> None:
    assert get_config_value({'a': {'b': 1}}, 'a.c', "x") == "x"
    assert get_config_value({'a': None}, 'a.b', 2) == 2


def test_find_files_sorted_and_filtered(tmp_path: Path) -> None:
    (tmp_path / "nested").mkdir()
    for name in ("b.hdf", "a.HDF", "c.txt", "nested/d.hdf"):
        (tmp_path / name).write_text("")

    assert [f.name for f in find_files(tmp_path, file_types=['.hdf'])] == ["a.HDF", "b.hdf", "d.hdf"]
    assert [f.name for f in find_files(tmp_path, "*.hdf", recursive=False)] == ["b.hdf"]
    assert find_files(tmp_path / "missing") == []


def test_atomic_destination_moves_complete_file(tmp_path: Path) -> None:
    destination = tmp_path / "modis_2015.tif"

    with atomic_destination(destination) as temporary:
        assert temporary.parent == tmp_path
        temporary.write_text("raster")

    assert destination.read_text() == "raster"
    assert not temporary.exists()


def test_atomic_destination_discards_on_error(tmp_path: Path) -> None:
    destination = tmp_path / "modis_2015.tif"
    destination.write_text("previous")

    with pytest.raises(RuntimeError):
        with atomic_destination(destination) as temporary:
            temporary.write_text("half")
            raise RuntimeError("interrupted")

    assert destination.read_text() == "previous"
    assert list(tmp_path.iterdir()) == [destination]


def test_component_loggers_share_root() -> None:
    assert get_logger('modis_subsetting.mosaic').name == "gistool.modis_subsetting.mosaic"


def test_setup_logging_writes_component_records_to_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "level", root.level)
    log_file = tmp_path / "logs" / "modis.log"

    logger = setup_logging('debug', 'modis_subsetting', log_file, format_style='simple')
    logger.debug("mosaic built")
    for handler in root.handlers:
        handler.close()

    assert logger.name == "gistool.modis_subsetting"
    assert len(root.handlers) == 2
    assert log_file.read_text().splitlines() == ["DEBUG: mosaic built"]


def test_setup_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="VERBOSE"):
        setup_logging('VERBOSE')


def test_pipeline_banners(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    logger = get_logger('modis_subsetting')

    log_pipeline_start(logger, "MODIS Subsetting", {'variables': "MOD11A2.061", '_meta': {}, 'paths': {'a': 1, 'b': 2}})
    log_pipeline_end(logger, "MODIS Subsetting", success=False, elapsed_time=3725.4)

    messages = [record.getMessage() for record in caplog.records]
    assert "STARTING PIPELINE: MODIS SUBSETTING" in messages
    assert "  variables: MOD11A2.061" in messages
    assert "  paths: 2 entries" in messages
    assert not any("_meta" in message for message in messages)
    assert "❌ PIPELINE FAILED: MODIS SUBSETTING" in messages
    assert "Total execution time: 01:02:05" in messages
