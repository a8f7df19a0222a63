"""
Pytest configuration for the test suite.

This file is automatically loaded by pytest and applies configuration
to all tests in the tests/ directory.
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from relu_regions.nn.network import DenseNetwork


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


@pytest.fixture
def quadrant_network():
    """
    One hidden layer of 2 neurons whose boundaries are x=0 and y=0.

    Neuron 0 (w_row=0, w_col=1, b=-0.5) is active for x > 0,
    neuron 1 (w_row=1, w_col=0, b=-0.5) is active for y < 0.
    """
    weights = [
        np.array([[0.0, 1.0],
                  [1.0, 0.0]]),
        np.array([[1.0], [1.0]]),
    ]
    biases = [np.array([-0.5, -0.5]), np.array([0.0])]
    return DenseNetwork.from_parameters(weights, biases, learning_rate=0.1)


@pytest.fixture
def small_config(tmp_path):
    """Fast settings for session/web tests."""
    return Config(
        HIDDEN_LAYERS=[4],
        EPOCHS=3,
        BATCH_SIZE=5,
        UPDATE_INTERVAL=1,
        GRID_WIDTH=6,
        GRID_HEIGHT=6,
        DATA_PATTERN='stripes_fifty_fifty',
        SAMPLE_RESOLUTION=20,
        ANALYTIC_RESOLUTION=10,
        MODEL_DIR=str(tmp_path / 'models'),
        SEED=7,
    )
