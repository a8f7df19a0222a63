#!/usr/bin/env python3
"""
ReLU Region Explorer - Main Entry Point
=======================================

Trains a small ReLU network on a 2-D label grid and reports the linear
regions it carves out of the input plane.

Usage:
    # Train headless with the defaults from config.py
    python main.py

    # Custom architecture and data
    python main.py --hidden 8 4 --pattern checkerboard --epochs 500

    # Export regions, boundary lines and metrics as JSON
    python main.py --epochs 200 --export results.json

    # Serve the web dashboard (training is started from the browser)
    python main.py --web --port 5001

    # Resume from / save to a checkpoint
    python main.py --model models/regions.pth --save models/regions.pth

    # Continue from the network stored in an --export file
    python main.py --model results.json

    # Inspect a checkpoint
    python main.py --inspect models/regions.pth
"""

import argparse
import dataclasses
import json
import os
import sys
import time
from typing import Any, Dict, List, Optional

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import Config
from relu_regions.data.generator import list_patterns
from relu_regions.nn.network import DenseNetwork
from relu_regions.nn.trainer import TrainingSession, inspect_checkpoint
from relu_regions.utils.logger import LogLevel, get_logger, setup_logging
from relu_regions.web.server import WebDashboard, _make_json_safe

_logger = get_logger('main')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="ReLU Region Explorer - watch a ReLU network partition its input plane",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
EXAMPLES
========

    python main.py --epochs 300                       Headless training
    python main.py --hidden 6 6 --pattern circle      Two hidden layers
    python main.py --export results.json              Write regions/lines as JSON
    python main.py --web                              Dashboard at localhost:5000
    python main.py --inspect models/regions.pth       Show checkpoint metadata

AVAILABLE PATTERNS: {', '.join(list_patterns())}
        """
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        '--web', action='store_true',
        help='Serve the web dashboard instead of training in the terminal'
    )
    mode_group.add_argument(
        '--inspect', type=str, metavar='MODEL_PATH',
        help='Inspect a checkpoint file and show its metadata'
    )

    # Network / training
    parser.add_argument('--hidden', type=int, nargs='+', default=None,
                        help='Hidden layer widths (default: from config)')
    parser.add_argument('--lr', type=float, default=None, help='Learning rate')
    parser.add_argument('--epochs', type=int, default=None,
                        help='Number of training epochs (0 = until stopped)')
    parser.add_argument('--batch-size', type=int, default=None,
                        help='Samples trained between edit/yield points')

    # Data
    parser.add_argument('--pattern', type=str, default=None, choices=list_patterns(),
                        help='Training label pattern')
    parser.add_argument('--grid', type=int, nargs=2, default=None, metavar=('WIDTH', 'HEIGHT'),
                        help='Training grid size')

    # Geometry
    parser.add_argument('--half-range', type=float, default=None,
                        help='Domain half-width R; regions cover [-R, R]^2')
    parser.add_argument('--resolution', type=int, default=None,
                        help='Sampling resolution of the region engine')

    # Checkpoints / output
    parser.add_argument('--model', type=str, default=None,
                        help='Checkpoint (.pth) or --export file (.json) to load before training')
    parser.add_argument('--save', type=str, default=None, help='Write a checkpoint after training')
    parser.add_argument('--export', type=str, default=None, metavar='PATH',
                        help='Write regions, boundary lines and metrics as JSON')

    # Web dashboard
    parser.add_argument('--port', type=int, default=None, help='Port for the web dashboard')

    # Other options
    parser.add_argument('--seed', type=int, default=None, help='Random seed for reproducibility')
    parser.add_argument('--log-level', type=str, default=None,
                        choices=[level.name for level in LogLevel], help='Console log level')
    parser.add_argument('--log-file', action='store_true', help='Also write logs to LOG_DIR')

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, base: Optional[Config] = None) -> Config:
    """Apply CLI overrides to a config (validated again on construction)."""
    base = base or Config()
    overrides: Dict[str, Any] = {}
    if args.hidden:
        overrides['HIDDEN_LAYERS'] = list(args.hidden)
    if args.lr is not None:
        overrides['LEARNING_RATE'] = args.lr
    if args.epochs is not None:
        overrides['EPOCHS'] = args.epochs
    if args.batch_size is not None:
        overrides['BATCH_SIZE'] = args.batch_size
    if args.pattern:
        overrides['DATA_PATTERN'] = args.pattern
    if args.grid:
        overrides['GRID_WIDTH'], overrides['GRID_HEIGHT'] = args.grid
    if args.half_range is not None:
        overrides['HALF_RANGE'] = args.half_range
    if args.resolution is not None:
        overrides['SAMPLE_RESOLUTION'] = args.resolution
    if args.port is not None:
        overrides['WEB_PORT'] = args.port
    if args.seed is not None:
        overrides['SEED'] = args.seed
    if args.log_level:
        overrides['LOG_LEVEL'] = args.log_level
    if args.log_file:
        overrides['LOG_TO_FILE'] = True
    return dataclasses.replace(base, **overrides)


def export_results(session: TrainingSession, filepath: str) -> Dict[str, Any]:
    """Write regions, boundary lines and metrics of the session as JSON."""
    results = {
        'config': {
            'layers': session.network.layer_sizes,
            'learning_rate': session.network.learning_rate,
            'half_range': session.config.HALF_RANGE,
            'sample_resolution': session.config.SAMPLE_RESOLUTION,
            'analytic_resolution': session.config.ANALYTIC_RESOLUTION,
        },
        'state': session.state.to_dict(),
        'summary': session.summary().to_dict(),
        'sampled_regions': [r.to_dict() for r in session.sampled_regions()],
        'analytic_regions': [r.to_dict() for r in session.analytic_regions()],
        'boundary_lines': [s.to_dict() for s in session.boundary_lines()],
        'predictions': session.predictions(),
        'network': session.snapshot().to_dict(),
    }
    results = _make_json_safe(results)

    dir_path = os.path.dirname(filepath)
    if dir_path:
        os.makedirs(dir_path, exist_ok=True)
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(results, f, indent=2)
    _logger.info(f"Exported results to {filepath}")
    return results


def load_model(session: TrainingSession, filepath: str) -> bool:
    """
    Load a .pth checkpoint, or the network stored in an --export JSON file.

    Returns:
        False if the file could not be used
    """
    if not filepath.endswith('.json'):
        return session.load_checkpoint(filepath) is not None

    try:
        with open(filepath, encoding='utf-8') as f:
            network = DenseNetwork.from_dict(json.load(f)['network'])
        session.replace_network(network)
    except (OSError, KeyError, TypeError, ValueError) as e:
        _logger.error(f"Failed to load network from {filepath}: {e}")
        return False
    _logger.info(f"Loaded network from {filepath}")
    return True


def inspect_model(filepath: str) -> bool:
    """Print a checkpoint's metadata. Returns False if it could not be read."""
    info = inspect_checkpoint(filepath)
    if not info:
        return False

    print("\n" + "=" * 60)
    print(f"Model Inspection: {info['filename']}")
    print("=" * 60)
    print(f"   File Size: {info['file_size_mb']:.3f} MB")
    print(f"   Modified:  {info['file_modified']}")
    print(f"   Layers:    {info['input_size']} -> {info['hidden_sizes']} -> {info['output_size']}")
    print(f"   Epoch:     {info['epoch']}")

    meta = info.get('metadata')
    if meta:
        print("\n   Training Metadata:")
        print(f"   Save Reason:    {meta.get('save_reason', 'unknown')}")
        print(f"   Loss:           {meta.get('loss', 0.0):.6f}")
        print(f"   Accuracy:       {meta.get('accuracy', 0.0) * 100:.1f}%")
        print(f"   Learning Rate:  {meta.get('learning_rate', 'unknown')}")
        print(f"   Data Pattern:   {meta.get('data_pattern', 'unknown')}")
    print("=" * 60 + "\n")
    return True


def run_headless(session: TrainingSession, args: argparse.Namespace) -> None:
    """Train in the terminal, then optionally save and export."""
    config = session.config
    _logger.info(
        f"Training {session.network.layer_sizes} on '{session.data.pattern.value}' "
        f"({session.data.width}x{session.data.height}) for "
        f"{config.EPOCHS or 'unlimited'} epochs"
    )
    start = time.time()
    try:
        session.run()
    except KeyboardInterrupt:
        _logger.warning("Training interrupted by user")
        if args.save:
            session.save_checkpoint(args.save, save_reason='interrupted')
        raise

    summary = session.summary()
    _logger.info(
        f"Finished in {time.time() - start:.1f}s | loss={session.state.loss:.6f} | "
        f"acc={session.state.accuracy * 100:.1f}% | sampled regions={summary.sampled_regions} | "
        f"analytic regions={summary.analytic_regions} | coverage={summary.coverage * 100:.1f}%"
    )

    if args.save:
        session.save_checkpoint(args.save, save_reason='final')
    if args.export:
        export_results(session, args.export)


def run_web(session: TrainingSession) -> None:
    """Serve the dashboard until interrupted."""
    dashboard = WebDashboard(session, port=session.config.WEB_PORT, host=session.config.WEB_HOST)
    dashboard.start()
    try:
        while True:
            time.sleep(1.0)
    finally:
        dashboard.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.inspect:
        return 0 if inspect_model(args.inspect) else 1

    try:
        config = build_config(args)
    except AssertionError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(
        log_dir=config.LOG_DIR,
        level=LogLevel.from_name(config.LOG_LEVEL),
        file_output=config.LOG_TO_FILE,
        force=True,
    )

    session = TrainingSession(config)
    if args.model and not load_model(session, args.model):
        _logger.warning(f"Starting fresh: could not load {args.model}")

    try:
        if args.web:
            run_web(session)
        else:
            run_headless(session, args)
    except KeyboardInterrupt:
        print("\nStopped.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
