"""
ReLU Region Explorer - Source Package
=====================================

Trains a tiny ReLU network on a 2-D label grid and reconstructs the
piecewise-linear regions it carves out of its input plane.

Modules:
    nn/       - Dense network engine and training session
    geometry/ - Sampled and analytical region engines, boundary lines
    data/     - Label grid generation
    web/      - Flask/SocketIO dashboard
    utils/    - Logging
"""

__version__ = "1.0.0"
