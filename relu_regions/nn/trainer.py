"""
Training Session
================

Owns the live network and everything that touches it:
    1. Run training epochs in small batches
    2. Apply interactive weight/bias edits safely
    3. Track loss and accuracy metrics
    4. Produce region/line snapshots for the presentation layer
    5. Save and load checkpoints

Thread model:
    Training may run in a background thread (the web dashboard does this).
    Every read or write of the network goes through the session lock.
    Edits issued while training runs are queued and applied between
    batches; architecture changes require training to be paused.

Presentation code never subscribes to anything. It calls the session
(request/response) and drains ``poll_events()`` to learn what changed.
"""

import math
import os
import pickle
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Sequence

import numpy as np
import torch

from config import Config
from relu_regions.data.generator import DataManager
from relu_regions.geometry.analytic import solve_regions
from relu_regions.geometry.lines import extract_lines
from relu_regions.geometry.sampled import sample_regions
from relu_regions.geometry.summary import PartitionSummary, summarize_partition
from relu_regions.geometry.types import LineSegment, Polytope
from relu_regions.nn.network import DenseNetwork
from relu_regions.utils.logger import get_logger, log_model_event, log_training_metrics

_logger = get_logger(__name__)

# Session status strings
STATUS_READY = 'Ready'
STATUS_TRAINING = 'Training...'
STATUS_PAUSED = 'Paused'
STATUS_COMPLETE = 'Complete'
STATUS_RESET = 'Reset'
STATUS_ERROR = 'Error'

# Event kinds
EVENT_EPOCH = 'epoch'
EVENT_WEIGHTS_CHANGED = 'weights_changed'
EVENT_DATA_CHANGED = 'data_changed'
EVENT_NETWORK_REPLACED = 'network_replaced'
EVENT_STATUS = 'status'


class TrainingActiveError(RuntimeError):
    """Raised for operations that need training to be paused."""


@dataclass
class SessionState:
    """Everything the presentation layer shows about training progress."""
    epoch: int = 0
    target_epochs: int = 0
    is_training: bool = False
    status: str = STATUS_READY
    loss: float = 0.0
    accuracy: float = 0.0
    region_count: int = 0
    loss_history: List[float] = field(default_factory=list)
    sample_loss_history: Deque[float] = field(default_factory=lambda: deque(maxlen=1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'epoch': self.epoch,
            'target_epochs': self.target_epochs,
            'is_training': self.is_training,
            'status': self.status,
            'loss': self.loss,
            'accuracy': self.accuracy,
            'region_count': self.region_count,
            'loss_history': list(self.loss_history),
            'sample_loss_history': list(self.sample_loss_history),
        }


@dataclass
class SessionEvent:
    """Something that changed; drained by ``TrainingSession.poll_events``."""
    kind: str
    epoch: int
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingEdit:
    """A weight or bias edit waiting for the current batch to finish."""
    kind: str  # 'weight' or 'bias'
    layer: int
    index: Sequence[int]
    value: float


@dataclass
class SaveMetadata:
    """Metadata stored with each checkpoint."""
    # Timing
    timestamp: str
    save_reason: str  # 'manual', 'final', 'interrupted'
    total_training_time_seconds: float

    # Training progress
    epoch: int
    loss: float
    accuracy: float

    # Config snapshot
    learning_rate: float
    batch_size: int
    hidden_layers: List[int]
    half_range: float
    data_pattern: str
    grid_width: int
    grid_height: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SaveMetadata':
        return cls(**data)


class TrainingSession:
    """
    Single owner of the live network.

    Example:
        >>> session = TrainingSession(Config(EPOCHS=50))
        >>> session.run()
        >>> regions = session.sampled_regions()
        >>> for event in session.poll_events():
        ...     print(event.kind, event.epoch)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        data_manager: Optional[DataManager] = None,
        network: Optional[DenseNetwork] = None,
    ):
        """
        Initialize the session.

        Args:
            config: Configuration object
            data_manager: Source of training samples (built from config if None)
            network: Starting network (built from config if None)
        """
        self.config = config or Config()
        self.data = data_manager or DataManager(
            width=self.config.GRID_WIDTH,
            height=self.config.GRID_HEIGHT,
            pattern=self.config.DATA_PATTERN,
            seed=self.config.SEED,
        )
        self._rng = np.random.default_rng(self.config.SEED)

        # _epoch_lock is always taken before _lock
        self._lock = threading.RLock()
        self._epoch_lock = threading.RLock()

        self.network = network or self._build_network(self.config.HIDDEN_LAYERS, self.config.LEARNING_RATE)
        self.state = self._fresh_state(STATUS_READY)

        self._pending: Deque[PendingEdit] = deque()
        self._events: Deque[SessionEvent] = deque(maxlen=self.config.EVENT_QUEUE_SIZE)
        self._start_time: Optional[float] = None

    def _build_network(self, hidden_sizes: Sequence[int], learning_rate: float) -> DenseNetwork:
        return DenseNetwork(
            self.config.INPUT_SIZE,
            list(hidden_sizes),
            self.config.OUTPUT_SIZE,
            learning_rate=learning_rate,
            rng=self._rng,
        )

    def _fresh_state(self, status: str) -> SessionState:
        return SessionState(
            target_epochs=self.config.EPOCHS,
            status=status,
            sample_loss_history=deque(maxlen=self.config.SAMPLE_LOSS_HISTORY),
        )

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _emit(self, kind: str, /, **payload) -> None:
        self._events.append(SessionEvent(kind=kind, epoch=self.state.epoch, payload=payload))

    def poll_events(self) -> List[SessionEvent]:
        """Drain and return all queued events, oldest first."""
        events = []
        while True:
            try:
                events.append(self._events.popleft())
            except IndexError:
                return events

    def _set_status(self, status: str, is_training: bool) -> None:
        self.state.status = status
        self.state.is_training = is_training
        self._emit(EVENT_STATUS, status=status, is_training=is_training)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_training(self) -> bool:
        return self.state.is_training

    def _require_paused(self, action: str) -> None:
        if self.state.is_training:
            raise TrainingActiveError(f"Cannot {action} while training is running; pause first")

    def start(self) -> None:
        """Mark training as running (``run`` does the actual work)."""
        with self._lock:
            if self.state.is_training:
                return
            if self._start_time is None:
                self._start_time = time.time()
            self._set_status(STATUS_TRAINING, True)
        _logger.info(f"Training started at epoch {self.state.epoch}")

    def stop(self) -> None:
        """Pause training after the current epoch and flush queued edits."""
        with self._lock:
            if self.state.is_training:
                self._set_status(STATUS_PAUSED, False)
                _logger.info(f"Training paused at epoch {self.state.epoch}")
            self._apply_pending_edits()

    def reset(self) -> None:
        """Stop training and start over with a fresh network of the same shape."""
        self.stop()
        with self._epoch_lock, self._lock:
            info = self.network.info()
            self.network = self._build_network(info.hidden_sizes, info.learning_rate)
            self._pending.clear()
            self.state = self._fresh_state(STATUS_RESET)
            self._start_time = None
            self._emit(EVENT_STATUS, status=STATUS_RESET, is_training=False)
            self._emit(EVENT_NETWORK_REPLACED, **info.to_dict())
        _logger.info("Session reset")

    def reconfigure(
        self,
        hidden_sizes: Optional[Sequence[int]] = None,
        learning_rate: Optional[float] = None,
    ) -> DenseNetwork:
        """
        Replace the network with a new architecture and/or learning rate.

        Raises:
            TrainingActiveError: If training is running
            ValueError: If the new architecture is invalid
        """
        with self._epoch_lock, self._lock:
            self._require_paused('change the architecture')
            info = self.network.info()
            hidden = list(hidden_sizes) if hidden_sizes is not None else list(info.hidden_sizes)
            lr = learning_rate if learning_rate is not None else info.learning_rate
            self.network = self._build_network(hidden, lr)
            self._pending.clear()
            self.state = self._fresh_state(STATUS_READY)
            self._start_time = None
            self._emit(EVENT_NETWORK_REPLACED, **self.network.info().to_dict())
        _logger.info(f"Network reconfigured: layers={self.network.layer_sizes}, lr={lr}")
        return self.network

    # =========================================================================
    # TRAINING
    # =========================================================================

    def train_epoch(self) -> float:
        """
        One pass over the (shuffled) training samples.

        Samples are trained in batches of BATCH_SIZE; after each batch the
        batch-mean sample loss is recorded and queued edits are applied.

        Returns:
            Mean loss over all samples after the epoch
        """
        with self._epoch_lock:
            start = time.time()
            samples = self.data.samples(shuffle=self.config.SHUFFLE_SAMPLES)
            batch_size = self.config.BATCH_SIZE

            for offset in range(0, len(samples), batch_size):
                with self._lock:
                    losses = [self.network.train(s.input, s.target) for s in samples[offset:offset + batch_size]]
                    valid = [l for l in losses if l is not None]
                    if valid:
                        self.state.sample_loss_history.append(float(np.mean(valid)))
                    self._apply_pending_edits()

            with self._lock:
                loss = self.network.calculate_loss(samples)
                self.state.epoch += 1
                self.state.loss = loss
                self.state.loss_history.append(loss)
                epoch = self.state.epoch
                if epoch == 1 or epoch % self.config.UPDATE_INTERVAL == 0:
                    self.state.accuracy = self.accuracy()
                    self.state.region_count = len(sample_regions(
                        self.network.copy(), self.config.HALF_RANGE, self.config.SAMPLE_RESOLUTION
                    ))
                    log_training_metrics(
                        epoch,
                        loss,
                        self.state.accuracy,
                        sample_loss=self.state.sample_loss_history[-1] if self.state.sample_loss_history else None,
                        regions=self.state.region_count,
                        duration=time.time() - start,
                    )
                self._emit(EVENT_EPOCH, loss=loss, accuracy=self.state.accuracy,
                           regions=self.state.region_count)
        return loss

    def run(self, epochs: Optional[int] = None) -> SessionState:
        """
        Train until stopped or complete.

        Args:
            epochs: Train this many more epochs (<= 0 trains nothing).
                Defaults to training up to the target epoch count
                (target 0 = until stopped).

        Returns:
            The session state when the loop exits

        Raises:
            Whatever ``train_epoch`` raised; the session is left in the
            Error status with training stopped
        """
        if epochs is not None and epochs <= 0:
            return self.state
        goal = self.state.epoch + epochs if epochs is not None else self.state.target_epochs
        if goal and self.state.epoch >= goal:
            self._complete()
            return self.state

        self.start()
        try:
            while True:
                with self._epoch_lock:
                    if not self.state.is_training:
                        break
                    self.train_epoch()
                    if goal and self.state.epoch >= goal:
                        self._complete()
        except KeyboardInterrupt:
            self.stop()
            raise
        except Exception as e:
            _logger.error(f"Training failed at epoch {self.state.epoch}: {type(e).__name__}: {e}")
            with self._lock:
                self._set_status(STATUS_ERROR, False)
            raise
        return self.state

    def _complete(self) -> None:
        with self._lock:
            self.state.accuracy = self.accuracy()
            self._set_status(STATUS_COMPLETE, False)
            self._apply_pending_edits()
        _logger.info(
            f"Training complete: epoch={self.state.epoch}, loss={self.state.loss:.6f}, "
            f"accuracy={self.state.accuracy * 100:.1f}%"
        )

    # =========================================================================
    # EDITING
    # =========================================================================

    def edit_weight(self, layer: int, from_node: int, to_node: int, value: float) -> bool:
        """
        Set one weight. Applied now when paused, else after the current batch.

        Returns:
            True if applied immediately, False if queued

        Raises:
            IndexError: If the indices are out of range
            ValueError: If value is not finite
        """
        return self._edit(PendingEdit('weight', layer, (from_node, to_node), value))

    def edit_bias(self, layer: int, node: int, value: float) -> bool:
        """Set one bias; same queueing rules as ``edit_weight``."""
        return self._edit(PendingEdit('bias', layer, (node,), value))

    def _edit(self, edit: PendingEdit) -> bool:
        with self._lock:
            # Validate now so bad edits fail at the call site, not mid-epoch
            if edit.kind == 'weight':
                self.network.get_weight(edit.layer, *edit.index)
            else:
                self.network.get_bias(edit.layer, *edit.index)
            edit.value = float(edit.value)
            if not math.isfinite(edit.value):
                raise ValueError(f"Parameter value must be finite, got {edit.value}")

            if self.state.is_training:
                self._pending.append(edit)
                return False
            self._apply_edit(edit)
            return True

    def _apply_edit(self, edit: PendingEdit) -> None:
        if edit.kind == 'weight':
            self.network.set_weight(edit.layer, edit.index[0], edit.index[1], edit.value)
            self._emit(EVENT_WEIGHTS_CHANGED, param='weight', layer=edit.layer,
                       from_node=edit.index[0], to_node=edit.index[1], value=edit.value)
        else:
            self.network.set_bias(edit.layer, edit.index[0], edit.value)
            self._emit(EVENT_WEIGHTS_CHANGED, param='bias', layer=edit.layer,
                       node=edit.index[0], value=edit.value)

    def _apply_pending_edits(self) -> int:
        applied = 0
        while self._pending:
            self._apply_edit(self._pending.popleft())
            applied += 1
        if applied:
            _logger.debug(f"Applied {applied} queued edits")
        return applied

    @property
    def pending_edits(self) -> int:
        return len(self._pending)

    # =========================================================================
    # DATA
    # =========================================================================

    def regenerate_data(self, width: int, height: int, pattern: Any) -> np.ndarray:
        with self._lock:
            grid = self.data.regenerate(width, height, pattern)
            self._emit(EVENT_DATA_CHANGED, width=self.data.width, height=self.data.height,
                       pattern=self.data.pattern.value)
        return grid

    def set_custom_data(self, grid: Sequence[Sequence[float]]) -> np.ndarray:
        with self._lock:
            result = self.data.set_custom_data(grid)
            self._emit(EVENT_DATA_CHANGED, width=self.data.width, height=self.data.height,
                       pattern='custom')
        return result

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def snapshot(self) -> DenseNetwork:
        """Deep copy of the network, taken under the session lock."""
        with self._lock:
            return self.network.copy()

    def predictions(self) -> np.ndarray:
        """(height, width) grid of network outputs at every data cell."""
        with self._lock:
            height, width = self.data.grid.shape
            i, j = np.indices((height, width))
            inputs = np.column_stack([(i / height).reshape(-1), (j / width).reshape(-1)])
            output = self.network.forward_batch(inputs).output
        return output[:, 0].reshape(height, width)

    def accuracy(self) -> float:
        """Fraction of cells whose prediction is within tolerance of the label."""
        preds = self.predictions()
        labels = self.data.current_data()
        correct = np.abs(preds - labels) <= self.config.ACCURACY_TOLERANCE
        return float(np.mean(correct))

    def sampled_regions(self, resolution: Optional[int] = None) -> List[Polytope]:
        return sample_regions(self.snapshot(), self.config.HALF_RANGE,
                              resolution or self.config.SAMPLE_RESOLUTION)

    def analytic_regions(self, resolution: Optional[int] = None) -> List[Polytope]:
        return solve_regions(self.snapshot(), self.config.HALF_RANGE,
                             resolution or self.config.ANALYTIC_RESOLUTION)

    def boundary_lines(self) -> List[LineSegment]:
        return extract_lines(self.snapshot(), self.config.HALF_RANGE)

    def summary(self) -> PartitionSummary:
        return summarize_partition(self.snapshot(), self.config.HALF_RANGE,
                                   self.config.SAMPLE_RESOLUTION, self.config.ANALYTIC_RESOLUTION)

    def network_view(self, inputs: Optional[Sequence[float]] = None) -> Dict[str, Any]:
        """Per-node activations and per-edge weights for the renderer."""
        snapshot = self.snapshot()
        view = snapshot.describe(inputs if inputs is not None else [0.5] * snapshot.input_size)
        view['info'] = snapshot.info().to_dict()
        return view

    # =========================================================================
    # CHECKPOINTS
    # =========================================================================

    def save_checkpoint(self, filepath: str, save_reason: str = 'manual') -> Optional[SaveMetadata]:
        """
        Save network parameters and training progress to a .pth file.

        Returns:
            SaveMetadata if the save succeeded, None on failure
        """
        dir_path = os.path.dirname(filepath)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)

        with self._lock:
            snapshot = self.network.copy()
            metadata = SaveMetadata(
                timestamp=datetime.now().isoformat(),
                save_reason=save_reason,
                total_training_time_seconds=time.time() - self._start_time if self._start_time else 0.0,
                epoch=self.state.epoch,
                loss=self.state.loss,
                accuracy=self.state.accuracy,
                learning_rate=snapshot.learning_rate,
                batch_size=self.config.BATCH_SIZE,
                hidden_layers=list(snapshot.hidden_sizes),
                half_range=self.config.HALF_RANGE,
                data_pattern=self.data.pattern.value,
                grid_width=self.data.width,
                grid_height=self.data.height,
            )
            loss_history = list(self.state.loss_history)

        checkpoint = {
            'weights': [torch.from_numpy(w) for w in snapshot.weights],
            'biases': [torch.from_numpy(b) for b in snapshot.biases],
            'input_size': snapshot.input_size,
            'hidden_sizes': list(snapshot.hidden_sizes),
            'output_size': snapshot.output_size,
            'learning_rate': snapshot.learning_rate,
            'epoch': metadata.epoch,
            'loss_history': loss_history,
            'metadata': metadata.to_dict(),
        }

        try:
            torch.save(checkpoint, filepath)
        except (OSError, RuntimeError) as e:
            _logger.error(f"Save failed: {filepath}: {e}")
            return None

        log_model_event('save', filepath, epoch=metadata.epoch, reason=save_reason)
        return metadata

    def load_checkpoint(self, filepath: str) -> Optional[SaveMetadata]:
        """
        Replace the network with one loaded from a .pth file.

        Returns:
            SaveMetadata of the checkpoint, or None if the file is missing,
            unreadable, or built for a different input/output size

        Raises:
            TrainingActiveError: If training is running
        """
        self._require_paused('load a checkpoint')
        if not os.path.exists(filepath):
            _logger.warning(f"Model file not found: {filepath}")
            return None

        try:
            checkpoint = torch.load(filepath, map_location='cpu', weights_only=True)
        except (OSError, RuntimeError, EOFError, ValueError, pickle.UnpicklingError) as e:
            _logger.error(f"Failed to load model: {filepath}: {e}")
            return None

        if not isinstance(checkpoint, dict):
            _logger.error(f"Not a checkpoint file: {filepath}")
            return None

        saved_input = checkpoint.get('input_size')
        saved_output = checkpoint.get('output_size')
        if saved_input != self.config.INPUT_SIZE or saved_output != self.config.OUTPUT_SIZE:
            _logger.warning(
                f"Model incompatible: sizes (input={saved_input}, output={saved_output}) "
                f"do not match (input={self.config.INPUT_SIZE}, output={self.config.OUTPUT_SIZE})"
            )
            return None

        try:
            network = DenseNetwork.from_parameters(
                [w.cpu().numpy() for w in checkpoint['weights']],
                [b.cpu().numpy() for b in checkpoint['biases']],
                learning_rate=checkpoint['learning_rate'],
            )
            metadata = SaveMetadata.from_dict(checkpoint['metadata'])
        except (KeyError, TypeError, ValueError) as e:
            _logger.error(f"Corrupt checkpoint: {filepath}: {e}")
            return None

        with self._epoch_lock, self._lock:
            self.replace_network(network)
            self.state.epoch = int(checkpoint.get('epoch', metadata.epoch))
            self.state.loss_history = [float(v) for v in checkpoint.get('loss_history', [])]
            self.state.loss = metadata.loss

        log_model_event('load', filepath, epoch=self.state.epoch)
        return metadata

    def replace_network(self, network: DenseNetwork) -> None:
        """
        Swap in an externally built network (paused only).

        Training progress starts over at epoch 0 in the Paused status.

        Raises:
            TrainingActiveError: If training is running
            ValueError: If the input/output sizes differ from the config
        """
        if network.input_size != self.config.INPUT_SIZE or network.output_size != self.config.OUTPUT_SIZE:
            raise ValueError(
                f"Network sizes (input={network.input_size}, output={network.output_size}) do not match "
                f"(input={self.config.INPUT_SIZE}, output={self.config.OUTPUT_SIZE})"
            )
        with self._epoch_lock, self._lock:
            self._require_paused('replace the network')
            self.network = network
            self._pending.clear()
            self.state = self._fresh_state(STATUS_PAUSED)
            self.state.accuracy = self.accuracy()
            self._emit(EVENT_NETWORK_REPLACED, **network.info().to_dict())
        _logger.info(f"Network replaced: layers={network.layer_sizes}")


def inspect_checkpoint(filepath: str) -> Optional[Dict[str, Any]]:
    """
    Read a checkpoint's metadata without building a session.

    Returns:
        Dict with file info, architecture and metadata, or None if the file
        is missing or unreadable
    """
    if not os.path.exists(filepath):
        _logger.warning(f"Model file not found: {filepath}")
        return None
    try:
        checkpoint = torch.load(filepath, map_location='cpu', weights_only=True)
    except (OSError, RuntimeError, EOFError, ValueError, pickle.UnpicklingError) as e:
        _logger.error(f"Failed to read model: {filepath}: {e}")
        return None
    if not isinstance(checkpoint, dict):
        _logger.error(f"Not a checkpoint file: {filepath}")
        return None

    stat = os.stat(filepath)
    return {
        'filename': os.path.basename(filepath),
        'file_size_mb': stat.st_size / (1024 * 1024),
        'file_modified': datetime.fromtimestamp(stat.st_mtime).isoformat(),
        'input_size': checkpoint.get('input_size'),
        'hidden_sizes': checkpoint.get('hidden_sizes'),
        'output_size': checkpoint.get('output_size'),
        'epoch': checkpoint.get('epoch'),
        'metadata': checkpoint.get('metadata'),
    }
