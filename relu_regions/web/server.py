"""
Web Dashboard Server
====================

Flask + SocketIO server exposing a TrainingSession to a browser.

Features:
    - REST API for status, network view, predictions, regions and lines
    - POST endpoints for weight/bias edits, data and architecture changes
    - SocketIO 'control' events (start, pause, reset, step, save, load)
    - 'state_update' broadcasts whenever the session reports changes
    - Runs in a background thread alongside training

Usage:
    >>> from relu_regions.web import WebDashboard
    >>> dashboard = WebDashboard(session, port=5000)
    >>> dashboard.start()
    >>> # ... training runs in the session ...
    >>> dashboard.stop()
"""

import base64
import logging
import os
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import numpy as np
from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from config import Config
from relu_regions.data.generator import list_patterns
from relu_regions.nn.trainer import TrainingActiveError, TrainingSession
from relu_regions.utils.logger import get_logger

# Module logger
_logger = get_logger(__name__)

# Keep werkzeug request logging out of the training console
logging.getLogger('werkzeug').setLevel(logging.ERROR)


def _make_json_safe(obj: Any) -> Any:
    """
    Convert NumPy types to native Python types for JSON serialization.

    Recursively processes dictionaries, lists and tuples.

    Args:
        obj: Object to convert (can be NumPy type, dict, list, or primitive)

    Returns:
        JSON-serializable version of the object
    """
    if isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {k: _make_json_safe(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_make_json_safe(item) for item in obj]
    return obj


class BadRequest(ValueError):
    """Malformed request body or query parameter."""


def _require(data: Dict[str, Any], *keys: str) -> List[Any]:
    missing = [k for k in keys if k not in data]
    if missing:
        raise BadRequest(f"Missing field(s): {', '.join(missing)}")
    return [data[k] for k in keys]


def _int_arg(name: str, minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
    value = request.args.get(name)
    if value is None:
        return None
    try:
        number = int(value)
    except ValueError:
        raise BadRequest(f"Query parameter {name!r} must be an integer") from None
    if (minimum is not None and number < minimum) or (maximum is not None and number > maximum):
        raise BadRequest(f"Query parameter {name!r} must be in [{minimum}, {maximum}], got {number}")
    return number


class WebDashboard:
    """
    Flask web dashboard for a training session.

    Training runs in its own thread (started by the 'start' control);
    the server thread only talks to the session.

    Example:
        >>> session = TrainingSession(Config())
        >>> dashboard = WebDashboard(session, port=5000)
        >>> dashboard.start()
    """

    def __init__(
        self,
        session: TrainingSession,
        config: Optional[Config] = None,
        port: int = 5000,
        host: str = '0.0.0.0',
        event_history: int = 500,
    ):
        """
        Initialize the web dashboard.

        Args:
            session: Session whose network and data are served
            config: Configuration object (defaults to the session's)
            port: Port to run the server on
            host: Host address (0.0.0.0 for all interfaces)
            event_history: Number of recent session events kept for /api/events
        """
        self.session = session
        self.config = config or session.config
        self.port = port
        self.host = host

        self.app = Flask(__name__)
        self.app.config['SECRET_KEY'] = base64.b64encode(os.urandom(24)).decode('utf-8')
        self.socketio = SocketIO(self.app, cors_allowed_origins="*", async_mode='threading')

        self._events: Deque[Dict[str, Any]] = deque(maxlen=event_history)
        self._events_lock = threading.Lock()

        self._register_routes()
        self._register_error_handlers()
        self._register_socket_events()

        self._server_thread: Optional[threading.Thread] = None
        self._pump_thread: Optional[threading.Thread] = None
        self._train_thread: Optional[threading.Thread] = None
        self._running = False

    # =========================================================================
    # SESSION PLUMBING
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        """Current training state plus a few derived fields."""
        data = self.session.state.to_dict()
        data['pending_edits'] = self.session.pending_edits
        data['network'] = self.session.network.info().to_dict()
        return _make_json_safe(data)

    def pump_events(self) -> List[Dict[str, Any]]:
        """
        Move new session events into the dashboard history.

        Broadcasts one 'state_update' if anything changed.

        Returns:
            The newly drained events
        """
        new_events = [_make_json_safe(e.to_dict()) for e in self.session.poll_events()]
        if new_events:
            with self._events_lock:
                self._events.extend(new_events)
            self.socketio.emit('state_update', {'state': self.snapshot(), 'events': new_events})
        return new_events

    def recent_events(self, since: float = 0.0) -> List[Dict[str, Any]]:
        with self._events_lock:
            return [e for e in self._events if e['timestamp'] > since]

    def start_training(self) -> bool:
        """Run the session in a background thread. False if already running."""
        if self.session.is_training or (self._train_thread and self._train_thread.is_alive()):
            return False
        self._train_thread = threading.Thread(target=self.session.run, daemon=True)
        self._train_thread.start()
        return True

    def wait_for_training(self, timeout: Optional[float] = None) -> None:
        if self._train_thread is not None:
            self._train_thread.join(timeout)

    def _model_path(self, name: str) -> str:
        if os.path.isabs(name) or os.path.dirname(name):
            return name
        return os.path.join(self.config.MODEL_DIR, name)

    # =========================================================================
    # ROUTES
    # =========================================================================

    def _register_routes(self) -> None:
        """Register Flask routes."""

        @self.app.route('/')
        def index():
            return jsonify({
                'name': 'ReLU Region Explorer',
                'endpoints': sorted(
                    str(rule) for rule in self.app.url_map.iter_rules() if str(rule).startswith('/api/')
                ),
            })

        @self.app.route('/api/status')
        def api_status():
            return jsonify(self.snapshot())

        @self.app.route('/api/config')
        def api_config():
            info = self.session.network.info()
            return jsonify({
                'input_size': info.input_size,
                'hidden_layers': list(info.hidden_sizes),
                'output_size': info.output_size,
                'learning_rate': info.learning_rate,
                'batch_size': self.config.BATCH_SIZE,
                'epochs': self.config.EPOCHS,
                'half_range': self.config.HALF_RANGE,
                'sample_resolution': self.config.SAMPLE_RESOLUTION,
                'analytic_resolution': self.config.ANALYTIC_RESOLUTION,
                'max_resolution': self.config.MAX_RESOLUTION,
                'grid_width': self.session.data.width,
                'grid_height': self.session.data.height,
                'patterns': list_patterns(),
            })

        @self.app.route('/api/network')
        def api_network():
            row = request.args.get('row', type=float, default=0.5)
            col = request.args.get('col', type=float, default=0.5)
            return jsonify(_make_json_safe(self.session.network_view([row, col])))

        @self.app.route('/api/predictions')
        def api_predictions():
            return jsonify({
                'predictions': _make_json_safe(self.session.predictions()),
                'labels': _make_json_safe(self.session.data.current_data()),
                'accuracy': self.session.accuracy(),
            })

        @self.app.route('/api/regions/sampled')
        def api_sampled_regions():
            regions = self.session.sampled_regions(_int_arg('resolution', 1, self.config.MAX_RESOLUTION))
            return jsonify({'regions': [r.to_dict() for r in regions]})

        @self.app.route('/api/regions/analytic')
        def api_analytic_regions():
            regions = self.session.analytic_regions(_int_arg('resolution', 1, self.config.MAX_RESOLUTION))
            return jsonify({'regions': [r.to_dict() for r in regions]})

        @self.app.route('/api/lines')
        def api_lines():
            return jsonify({'lines': [s.to_dict() for s in self.session.boundary_lines()]})

        @self.app.route('/api/summary')
        def api_summary():
            return jsonify(self.session.summary().to_dict())

        @self.app.route('/api/events')
        def api_events():
            self.pump_events()
            since = request.args.get('since', type=float, default=0.0)
            return jsonify({'events': self.recent_events(since)})

        @self.app.route('/api/weights', methods=['POST'])
        def api_set_weight():
            data = request.get_json(silent=True) or {}
            layer, from_node, to_node, value = _require(data, 'layer', 'from', 'to', 'value')
            applied = self.session.edit_weight(int(layer), int(from_node), int(to_node), float(value))
            return jsonify({'applied': applied, 'queued': not applied})

        @self.app.route('/api/biases', methods=['POST'])
        def api_set_bias():
            data = request.get_json(silent=True) or {}
            layer, node, value = _require(data, 'layer', 'node', 'value')
            applied = self.session.edit_bias(int(layer), int(node), float(value))
            return jsonify({'applied': applied, 'queued': not applied})

        @self.app.route('/api/data', methods=['POST'])
        def api_set_data():
            data = request.get_json(silent=True) or {}
            if 'grid' in data:
                grid = self.session.set_custom_data(data['grid'])
            else:
                (pattern,) = _require(data, 'pattern')
                grid = self.session.regenerate_data(
                    int(data.get('width', self.session.data.width)),
                    int(data.get('height', self.session.data.height)),
                    pattern,
                )
            return jsonify({'grid': _make_json_safe(grid)})

        @self.app.route('/api/architecture', methods=['POST'])
        def api_set_architecture():
            data = request.get_json(silent=True) or {}
            hidden = data.get('hidden_layers')
            lr = data.get('learning_rate')
            network = self.session.reconfigure(
                hidden_sizes=[int(h) for h in hidden] if hidden is not None else None,
                learning_rate=float(lr) if lr is not None else None,
            )
            return jsonify(network.info().to_dict())

    def _register_error_handlers(self) -> None:
        """Map session errors to JSON error responses."""

        @self.app.errorhandler(TrainingActiveError)
        def handle_training_active(e):
            return jsonify({'error': str(e)}), 409

        @self.app.errorhandler(IndexError)
        def handle_index_error(e):
            return jsonify({'error': str(e)}), 400

        @self.app.errorhandler(ValueError)
        def handle_value_error(e):
            # Includes BadRequest
            return jsonify({'error': str(e)}), 400

        @self.app.errorhandler(TypeError)
        def handle_type_error(e):
            return jsonify({'error': f"Bad request: {e}"}), 400

    # =========================================================================
    # SOCKET EVENTS
    # =========================================================================

    def _register_socket_events(self) -> None:
        """Register SocketIO events."""

        @self.socketio.on('connect')
        def handle_connect():
            emit('state_update', {'state': self.snapshot(), 'events': []})

        @self.socketio.on('control')
        def handle_control(data):
            data = data or {}
            action = data.get('action')

            try:
                if action == 'start':
                    self.start_training()
                elif action == 'pause':
                    self.session.stop()
                elif action == 'reset':
                    self.session.reset()
                elif action == 'step':
                    if self.session.is_training:
                        raise TrainingActiveError("Cannot step while training is running")
                    self.session.train_epoch()
                elif action == 'save':
                    path = self._model_path(data.get('filename', 'regions.pth'))
                    if self.session.save_checkpoint(path) is None:
                        raise ValueError(f"Save failed: {path}")
                elif action == 'load_model':
                    path = self._model_path(data.get('path', ''))
                    if self.session.load_checkpoint(path) is None:
                        raise ValueError(f"Could not load model: {path}")
                else:
                    raise ValueError(f"Unknown action: {action!r}")
            except (RuntimeError, ValueError) as e:
                _logger.warning(f"Control '{action}' failed: {e}")
                emit('control_error', {'action': action, 'error': str(e)})
                return

            self.pump_events()
            emit('state_update', {'state': self.snapshot(), 'events': []})

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def _pump_loop(self, interval: float = 0.25) -> None:
        while self._running:
            self.pump_events()
            time.sleep(interval)

    def start(self) -> None:
        """Start the web server (and the event pump) in background threads."""
        if self._running:
            return
        self._running = True

        def run_server():
            _logger.info(f"Web Dashboard running at http://localhost:{self.port}")
            try:
                self.socketio.run(
                    self.app,
                    host=self.host,
                    port=self.port,
                    debug=False,
                    use_reloader=False,
                    log_output=False,
                    allow_unsafe_werkzeug=True,
                )
            except (OSError, RuntimeError) as e:
                _logger.error(f"Failed to start web dashboard on port {self.port}: {type(e).__name__}: {e}")
                _logger.error(f"Port {self.port} may already be in use. Try a different port with --port")

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()
        self._pump_thread = threading.Thread(target=self._pump_loop, daemon=True)
        self._pump_thread.start()

    def stop(self) -> None:
        """Stop training and the web server."""
        self._running = False
        self.session.stop()
        try:
            self.socketio.stop()
        except RuntimeError as e:
            # Raised when called outside a running server context
            _logger.debug(f"Server stop (best effort): {e}")
