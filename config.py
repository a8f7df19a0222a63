"""
Configuration file for the ReLU Region Explorer
===============================================

All network, training, data and geometry settings are centralized here.
Modify these values to experiment with different architectures and datasets.

Usage:
    from config import Config
    cfg = Config()
    print(cfg.LEARNING_RATE)
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Config:
    """
    Central configuration for the entire project.

    Sections:
    1. Neural Network - Architecture configuration
    2. Training - Learning hyperparameters and scheduling
    3. Data - Training grid generation
    4. Geometry - Region analysis domain and resolution
    5. System - Logging, paths, web dashboard
    """

    # =========================================================================
    # NEURAL NETWORK ARCHITECTURE
    # =========================================================================

    # Input is a normalized (row, col) grid coordinate
    INPUT_SIZE: int = 2

    # Hidden layer widths (all ReLU). Keep these small: every hidden neuron
    # adds a bit to the activation pattern and the number of regions grows fast.
    HIDDEN_LAYERS: List[int] = field(default_factory=lambda: [8])

    # Single sigmoid output: probability that a cell is labelled 1
    OUTPUT_SIZE: int = 1

    # =========================================================================
    # TRAINING HYPERPARAMETERS
    # =========================================================================

    # Learning rate for per-sample gradient steps
    # Too high: regions jitter and the loss oscillates
    # Too low: boundaries barely move between epochs
    LEARNING_RATE: float = 0.05

    # Number of epochs a training run lasts (0 = unlimited, train until stopped)
    EPOCHS: int = 100

    # Samples trained between yield points. Queued weight edits are applied
    # and the sample-loss history is appended once per batch.
    BATCH_SIZE: int = 10

    # Recompute predictions/accuracy every N epochs
    UPDATE_INTERVAL: int = 10

    # Number of per-batch sample losses kept for charting
    SAMPLE_LOSS_HISTORY: int = 1000

    # Number of session events buffered for polling clients
    EVENT_QUEUE_SIZE: int = 500

    # =========================================================================
    # DATA GENERATION
    # =========================================================================

    GRID_WIDTH: int = 10
    GRID_HEIGHT: int = 10

    # Options: 'random', 'checkerboard', 'stripes_fifty_fifty',
    # 'stripes_vertical', 'circle', 'corners'
    DATA_PATTERN: str = 'circle'

    # Shuffle samples at the start of every epoch
    SHUFFLE_SAMPLES: bool = True

    # =========================================================================
    # GEOMETRY
    # =========================================================================

    # World coordinates span [-HALF_RANGE, HALF_RANGE] on both axes.
    # 3.0 matches a 10x10 grid of 0.5 cells with 0.1 spacing.
    HALF_RANGE: float = 3.0

    # Grid resolution of the sampled region engine (cells per axis)
    SAMPLE_RESOLUTION: int = 80

    # Grid resolution used to discover first-layer patterns for the
    # analytical solver
    ANALYTIC_RESOLUTION: int = 20

    # Largest resolution a region request may ask for
    MAX_RESOLUTION: int = 400

    # A cell counts as correct when |prediction - label| <= tolerance
    ACCURACY_TOLERANCE: float = 0.2

    # =========================================================================
    # SYSTEM SETTINGS
    # =========================================================================

    # Paths
    MODEL_DIR: str = 'models'
    LOG_DIR: str = 'logs'

    # 'DEBUG', 'INFO', 'WARNING', 'ERROR'
    LOG_LEVEL: str = 'INFO'
    LOG_TO_FILE: bool = False

    # Web dashboard
    WEB_HOST: str = '0.0.0.0'
    WEB_PORT: int = 5000

    # Random seed for reproducibility (None for random)
    SEED: Optional[int] = None

    @property
    def LAYER_SIZES(self) -> List[int]:
        """Full layer width list: input, hidden..., output."""
        return [self.INPUT_SIZE] + list(self.HIDDEN_LAYERS) + [self.OUTPUT_SIZE]

    def __post_init__(self):
        """Validation."""
        assert self.INPUT_SIZE == 2, "Region analysis requires a 2-D input"
        assert self.OUTPUT_SIZE == 1, "Output must be a single sigmoid unit"
        assert len(self.HIDDEN_LAYERS) > 0, "At least one hidden layer is required"
        assert all(h > 0 for h in self.HIDDEN_LAYERS), "Hidden layer widths must be positive"
        assert self.LEARNING_RATE > 0, "Learning rate must be positive"
        assert self.BATCH_SIZE > 0, "Batch size must be positive"
        assert self.EPOCHS >= 0, "Epochs must be non-negative"
        assert self.UPDATE_INTERVAL > 0, "Update interval must be positive"
        assert self.GRID_WIDTH > 0 and self.GRID_HEIGHT > 0, "Grid must be non-empty"
        assert self.HALF_RANGE > 0, "Half-range must be positive"
        assert self.SAMPLE_RESOLUTION > 0, "Sample resolution must be positive"
        assert self.ANALYTIC_RESOLUTION > 0, "Analytic resolution must be positive"
        assert max(self.SAMPLE_RESOLUTION, self.ANALYTIC_RESOLUTION) <= self.MAX_RESOLUTION, \
            "Region resolutions must not exceed MAX_RESOLUTION"
        assert 0 <= self.ACCURACY_TOLERANCE < 1, "Accuracy tolerance must be in [0, 1)"


# Global config instance for easy importing
config = Config()


if __name__ == "__main__":
    # Print configuration summary
    cfg = Config()
    print("=" * 60)
    print("ReLU Region Explorer - Configuration Summary")
    print("=" * 60)
    print("\nNeural Network:")
    print(f"   Layers: {cfg.LAYER_SIZES}")
    print(f"   Learning rate: {cfg.LEARNING_RATE}")
    print("\nTraining:")
    print(f"   Epochs: {cfg.EPOCHS}")
    print(f"   Batch size: {cfg.BATCH_SIZE}")
    print("\nData:")
    print(f"   Grid: {cfg.GRID_WIDTH}x{cfg.GRID_HEIGHT} ({cfg.DATA_PATTERN})")
    print("\nGeometry:")
    print(f"   Domain: [-{cfg.HALF_RANGE}, {cfg.HALF_RANGE}]^2")
    print(f"   Sample resolution: {cfg.SAMPLE_RESOLUTION}")
    print("=" * 60)
