"""
Data Module
===========

Label grids and the training samples derived from them.

Classes:
    DataManager    - Holds the current label grid
    TrainingSample - One grid cell as (input, target)
    PatternType    - Built-in label patterns
"""

from .generator import (
    DataManager,
    PatternType,
    TrainingSample,
    generate_pattern,
    grid_to_samples,
    list_patterns,
)

__all__ = [
    'DataManager',
    'PatternType',
    'TrainingSample',
    'generate_pattern',
    'grid_to_samples',
    'list_patterns',
]
