"""
Tests for the logging helpers.
"""

import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relu_regions.utils.logger import (
    ROOT_LOGGER_NAME,
    LogLevel,
    get_log_path,
    get_logger,
    log_model_event,
    log_training_metrics,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(force=True)


class TestLogger:

    def test_level_from_name(self):
        assert LogLevel.from_name('debug') is LogLevel.DEBUG
        with pytest.raises(ValueError):
            LogLevel.from_name('loud')

    def test_namespaced(self):
        assert get_logger('relu_regions.geometry.sampled').name == 'relu_regions.geometry.sampled'
        assert get_logger('main').name == f'{ROOT_LOGGER_NAME}.main'

    def test_file_output(self, tmp_path):
        setup_logging(log_dir=str(tmp_path), level=LogLevel.DEBUG, console_output=False,
                      file_output=True, log_filename='run.log', force=True)
        log_model_event('save', 'models/a.pth', epoch=3)
        path = get_log_path()
        assert path == tmp_path / 'run.log'
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        assert 'SAVE | models/a.pth | epoch=3' in path.read_text(encoding='utf-8')

    def test_training_metrics_format(self, caplog):
        setup_logging(console_output=False, force=True)
        logging.getLogger(ROOT_LOGGER_NAME).propagate = True
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER_NAME):
            log_training_metrics(5, 0.125, 0.9, sample_loss=0.1, duration=0.002)
        assert 'epoch=5 | loss=0.125000 | acc=90.0% | sample_loss=0.100000 | time=2.0ms' in caplog.text

    def test_training_metrics_with_regions(self, caplog):
        setup_logging(console_output=False, force=True)
        logging.getLogger(ROOT_LOGGER_NAME).propagate = True
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER_NAME):
            log_training_metrics(1, 0.5, 0.25, regions=3)
        assert 'epoch=1 | loss=0.500000 | acc=25.0% | regions=3' in caplog.text
