"""
Neural Network Module
=====================

Dense ReLU network engine and the session that trains it.

Classes:
    DenseNetwork    - Feed-forward ReLU network with sigmoid output
    TrainingSession - Owns the live network; training, edits, checkpoints
                      (import from relu_regions.nn.trainer; it depends on
                      the geometry package, which depends on this one)
"""

from .network import DenseNetwork, ForwardPass, NetworkInfo

__all__ = ['DenseNetwork', 'ForwardPass', 'NetworkInfo']
