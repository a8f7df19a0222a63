"""
Dense ReLU Network
==================

A small fully-connected network trained one sample at a time with plain
backpropagation. Its parameters are read directly by the region engines,
so everything is kept as plain numpy arrays with a fixed layout.

Theory:
    Every hidden neuron computes  a = ReLU(W·x + b). For a fixed on/off
    pattern of the hidden neurons the whole network is affine in its input,
    so the input plane is cut into convex pieces ("linear regions") by the
    zero-level lines of the neurons.

    Input:  (row, col) grid coordinate normalized to [0, 1]
    Output: sigmoid probability that the cell is labelled 1

The network learns by minimizing the squared error of the sigmoid output:
    Loss = mean((target - output)²)

Key Features:
    - He-scaled uniform initialization, zero biases
    - Sigmoid input clamped to [-20, 20]
    - Invalid inputs produce zero activations instead of raising
    - Non-finite parameter updates are skipped individually
    - Direct weight/bias access for interactive editing

Layout:
    weights[k] has shape (inputs, outputs): rows are the inputs of layer k
    biases[k]  has shape (outputs,)
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from relu_regions.utils.logger import get_logger

# Module logger
_logger = get_logger(__name__)

# Sigmoid inputs are clamped to this magnitude before exponentiation
SIGMOID_CLAMP = 20.0


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


def sigmoid(x: np.ndarray) -> np.ndarray:
    """Logistic function with clamped input (no overflow in exp)."""
    clipped = np.clip(x, -SIGMOID_CLAMP, SIGMOID_CLAMP)
    return 1.0 / (1.0 + np.exp(-clipped))


class ForwardPass(NamedTuple):
    """Result of a forward pass: per-hidden-layer activations and the output."""
    hidden: List[np.ndarray]
    output: np.ndarray


@dataclass(frozen=True)
class NetworkInfo:
    """Architecture summary of a network."""
    input_size: int
    hidden_sizes: Tuple[int, ...]
    output_size: int
    learning_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'input_size': self.input_size,
            'hidden_sizes': list(self.hidden_sizes),
            'output_size': self.output_size,
            'learning_rate': self.learning_rate,
        }


class DenseNetwork:
    """
    Feed-forward network with ReLU hidden layers and a sigmoid output.

    Architecture:
        Input (2) → Hidden (ReLU) ... → Output (sigmoid)

    The network is not thread-safe. Exactly one owner mutates it; readers
    that may run concurrently with edits should work on ``copy()``.

    Attributes:
        weights (List[np.ndarray]): One (inputs, outputs) matrix per layer
        biases (List[np.ndarray]): One bias vector per layer
        learning_rate (float): Step size used by ``train``

    Example:
        >>> net = DenseNetwork(2, [8], 1, learning_rate=0.05, seed=0)
        >>> hidden, output = net.forward([0.3, 0.7])
        >>> loss = net.train([0.3, 0.7], [1.0])
    """

    def __init__(
        self,
        input_size: int,
        hidden_sizes: Sequence[int],
        output_size: int,
        learning_rate: float = 0.05,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize the network.

        Args:
            input_size: Width of the input vector
            hidden_sizes: Widths of the hidden (ReLU) layers, in order
            output_size: Width of the sigmoid output layer
            learning_rate: Gradient step size
            seed: Seed for weight initialization (ignored if rng is given)
            rng: Explicit random generator for weight initialization
        """
        sizes = [input_size] + list(hidden_sizes) + [output_size]
        if any(int(s) != s or s <= 0 for s in sizes):
            raise ValueError(f"Layer sizes must be positive integers, got {sizes}")
        self._check_learning_rate(learning_rate)

        self.input_size = int(input_size)
        self.hidden_sizes: Tuple[int, ...] = tuple(int(h) for h in hidden_sizes)
        self.output_size = int(output_size)
        self.learning_rate = float(learning_rate)

        self.weights: List[np.ndarray] = []
        self.biases: List[np.ndarray] = []
        self._init_weights(rng if rng is not None else np.random.default_rng(seed))

    @staticmethod
    def _check_learning_rate(learning_rate: float) -> None:
        if not math.isfinite(learning_rate) or learning_rate <= 0:
            raise ValueError(f"Learning rate must be positive and finite, got {learning_rate}")

    def _init_weights(self, rng: np.random.Generator) -> None:
        """
        He initialization: uniform in [-s, s] with s = sqrt(2 / fan_in).
        Keeps ReLU activations from shrinking or exploding layer to layer.
        """
        sizes = self.layer_sizes
        for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
            scale = math.sqrt(2.0 / fan_in)
            self.weights.append(rng.uniform(-scale, scale, size=(fan_in, fan_out)))
            self.biases.append(np.zeros(fan_out))

    # =========================================================================
    # ARCHITECTURE
    # =========================================================================

    @property
    def layer_sizes(self) -> List[int]:
        return [self.input_size] + list(self.hidden_sizes) + [self.output_size]

    @property
    def num_layers(self) -> int:
        """Number of weight layers (hidden layers + output layer)."""
        return len(self.hidden_sizes) + 1

    @property
    def pattern_length(self) -> int:
        """Number of bits in a full activation pattern."""
        return sum(self.hidden_sizes)

    def info(self) -> NetworkInfo:
        return NetworkInfo(
            input_size=self.input_size,
            hidden_sizes=self.hidden_sizes,
            output_size=self.output_size,
            learning_rate=self.learning_rate,
        )

    def get_layer_info(self) -> List[Dict[str, Any]]:
        """
        Get information about each layer for visualization.

        Returns:
            List of dicts with layer metadata
        """
        info = [{'name': 'Input', 'neurons': self.input_size, 'type': 'input'}]
        for i, width in enumerate(self.hidden_sizes):
            info.append({'name': f'Hidden {i + 1}', 'neurons': width, 'type': 'hidden'})
        info.append({'name': 'Output', 'neurons': self.output_size, 'type': 'output'})
        return info

    def count_parameters(self) -> int:
        """Return total number of trainable parameters."""
        return sum(w.size + b.size for w, b in zip(self.weights, self.biases))

    # =========================================================================
    # FORWARD PASS
    # =========================================================================

    def _as_input(self, values: Any, size: int) -> Optional[np.ndarray]:
        """Convert to a finite 1-D float vector of the given size, or None."""
        try:
            arr = np.asarray(values, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError):
            return None
        if arr.size == 0 or arr.size != size or not np.all(np.isfinite(arr)):
            return None
        return arr

    def _propagate(self, x: np.ndarray) -> Tuple[List[np.ndarray], List[np.ndarray], np.ndarray]:
        """Pre-activations and activations of every hidden layer, plus the output.

        Works on a single vector or on a (batch, inputs) matrix.
        """
        pre_activations: List[np.ndarray] = []
        activations: List[np.ndarray] = []
        a = x
        with np.errstate(over='ignore', invalid='ignore'):
            for W, b in zip(self.weights[:-1], self.biases[:-1]):
                z = a @ W + b
                a = relu(z)
                pre_activations.append(z)
                activations.append(a)
            output = sigmoid(a @ self.weights[-1] + self.biases[-1])
        return pre_activations, activations, output

    def _zero_pass(self) -> ForwardPass:
        return ForwardPass(
            hidden=[np.zeros(h) for h in self.hidden_sizes],
            output=np.zeros(self.output_size),
        )

    def forward(self, inputs: Any) -> ForwardPass:
        """
        Forward pass through the network.

        Invalid input (empty, wrong length, NaN/Inf) yields all-zero
        activations and output; the interactive loop keeps running.

        Args:
            inputs: Input vector of length input_size

        Returns:
            ForwardPass(hidden=[activations per hidden layer], output=sigmoid output)
        """
        x = self._as_input(inputs, self.input_size)
        if x is None:
            _logger.debug(f"Invalid input in forward pass: {inputs!r}")
            return self._zero_pass()

        _, activations, output = self._propagate(x)
        if not np.all(np.isfinite(output)) or not all(np.all(np.isfinite(a)) for a in activations):
            _logger.debug("Non-finite activations in forward pass, returning zeros")
            return self._zero_pass()
        return ForwardPass(hidden=activations, output=output)

    def forward_batch(self, inputs: Any) -> ForwardPass:
        """
        Vectorized forward pass over a (batch, input_size) matrix.

        Row i of every returned array equals ``forward(inputs[i])``; invalid
        rows come back as zeros.

        Raises:
            ValueError: If inputs is not a 2-D array with input_size columns
        """
        arr = np.asarray(inputs, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[1] != self.input_size:
            raise ValueError(
                f"Expected a (batch, {self.input_size}) array, got shape {arr.shape}"
            )

        valid = np.all(np.isfinite(arr), axis=1)
        safe = np.where(valid[:, None], arr, 0.0)
        _, activations, output = self._propagate(safe)

        for a in activations:
            valid &= np.all(np.isfinite(a), axis=1)
        valid &= np.all(np.isfinite(output), axis=1)
        if not np.all(valid):
            _logger.debug(f"Zeroing {int(np.sum(~valid))} invalid rows in batch forward pass")
            activations = [np.where(valid[:, None], a, 0.0) for a in activations]
            output = np.where(valid[:, None], output, 0.0)
        return ForwardPass(hidden=activations, output=output)

    def predict(self, inputs: Any) -> float:
        """Return the first output unit for a single input."""
        return float(self.forward(inputs).output[0])

    # =========================================================================
    # TRAINING
    # =========================================================================

    def sample_loss(self, inputs: Any, target: Any) -> float:
        """
        Squared error of one sample: mean((target - output)²).

        Raises:
            ValueError: If the input or target is empty, mis-sized or non-finite
        """
        x = self._as_input(inputs, self.input_size)
        t = self._as_input(target, self.output_size)
        if x is None or t is None:
            raise ValueError(f"Invalid sample: input={inputs!r}, target={target!r}")
        _, _, output = self._propagate(x)
        loss = float(np.mean((t - output) ** 2))
        if not math.isfinite(loss):
            raise ValueError("Non-finite loss")
        return loss

    def train(self, inputs: Any, target: Any) -> Optional[float]:
        """
        One gradient step on a single sample.

        Output delta uses the sigmoid derivative by value, o·(1 − o). Hidden
        deltas flow back through the transposed weights and are gated by the
        ReLU derivative (1 where the pre-activation was > 0). All deltas are
        computed before any parameter changes.

        Any individual weight or bias update that is not finite is skipped,
        leaving that parameter untouched.

        Args:
            inputs: Input vector
            target: Target vector

        Returns:
            Loss of the sample before the update, or None if the sample was invalid
        """
        x = self._as_input(inputs, self.input_size)
        t = self._as_input(target, self.output_size)
        if x is None or t is None:
            _logger.debug(f"Skipping invalid training sample: input={inputs!r}, target={target!r}")
            return None

        pre_activations, activations, output = self._propagate(x)
        if not np.all(np.isfinite(output)):
            _logger.debug("Skipping training step with non-finite output")
            return None
        loss = float(np.mean((t - output) ** 2))

        with np.errstate(over='ignore', invalid='ignore'):
            deltas: List[np.ndarray] = [np.empty(0)] * self.num_layers
            deltas[-1] = (t - output) * output * (1.0 - output)
            for k in range(self.num_layers - 2, -1, -1):
                # Transposed access: W[k+1] is (inputs, outputs), so W @ delta
                # sums over the downstream neurons
                downstream = self.weights[k + 1] @ deltas[k + 1]
                deltas[k] = downstream * (pre_activations[k] > 0)

            upstream = [x] + activations
            skipped = 0
            for k in range(self.num_layers):
                skipped += self._apply_update(
                    self.weights[k], self.learning_rate * np.outer(upstream[k], deltas[k])
                )
                skipped += self._apply_update(self.biases[k], self.learning_rate * deltas[k])

        if skipped:
            _logger.debug(f"Skipped {skipped} non-finite parameter updates")
        return loss

    @staticmethod
    def _apply_update(param: np.ndarray, update: np.ndarray) -> int:
        """Add update to param in place wherever the result stays finite."""
        with np.errstate(over='ignore', invalid='ignore'):
            updated = param + update
        ok = np.isfinite(update) & np.isfinite(updated)
        param[ok] = updated[ok]
        return int(ok.size - np.count_nonzero(ok))

    def calculate_loss(self, samples: Sequence[Any]) -> float:
        """
        Mean loss over samples.

        Each sample must expose ``input`` and ``target``. Samples that
        cannot be evaluated are left out of the average.

        Returns:
            Mean of the per-sample losses, or 0.0 if no sample was usable
        """
        total = 0.0
        count = 0
        for sample in samples:
            try:
                total += self.sample_loss(sample.input, sample.target)
            except ValueError as e:
                _logger.debug(f"Excluding sample from loss: {e}")
                continue
            count += 1
        return total / count if count else 0.0

    # =========================================================================
    # PARAMETER ACCESS
    # =========================================================================

    def _check_layer(self, layer: int) -> None:
        if not 0 <= layer < self.num_layers:
            raise IndexError(f"Layer {layer} out of range [0, {self.num_layers})")

    @staticmethod
    def _check_index(kind: str, index: int, size: int) -> None:
        if not 0 <= index < size:
            raise IndexError(f"{kind} {index} out of range [0, {size})")

    @staticmethod
    def _check_value(value: float) -> float:
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"Parameter value must be finite, got {value}")
        return value

    def get_weight(self, layer: int, from_node: int, to_node: int) -> float:
        """Weight from node `from_node` of layer input to node `to_node` of layer output."""
        self._check_layer(layer)
        rows, cols = self.weights[layer].shape
        self._check_index('From node', from_node, rows)
        self._check_index('To node', to_node, cols)
        return float(self.weights[layer][from_node, to_node])

    def set_weight(self, layer: int, from_node: int, to_node: int, value: float) -> None:
        self._check_layer(layer)
        rows, cols = self.weights[layer].shape
        self._check_index('From node', from_node, rows)
        self._check_index('To node', to_node, cols)
        self.weights[layer][from_node, to_node] = self._check_value(value)

    def get_bias(self, layer: int, node: int) -> float:
        self._check_layer(layer)
        self._check_index('Node', node, self.biases[layer].size)
        return float(self.biases[layer][node])

    def set_bias(self, layer: int, node: int, value: float) -> None:
        self._check_layer(layer)
        self._check_index('Node', node, self.biases[layer].size)
        self.biases[layer][node] = self._check_value(value)

    def layer_weights(self, layer: int) -> np.ndarray:
        """Copy of the (inputs, outputs) weight matrix of a layer."""
        self._check_layer(layer)
        return self.weights[layer].copy()

    def layer_biases(self, layer: int) -> np.ndarray:
        """Copy of the bias vector of a layer."""
        self._check_layer(layer)
        return self.biases[layer].copy()

    def first_layer(self) -> Tuple[np.ndarray, np.ndarray]:
        """Copies of the first hidden layer's weights and biases."""
        return self.layer_weights(0), self.layer_biases(0)

    def get_weights(self) -> List[np.ndarray]:
        """
        Get all weight matrices as numpy arrays.

        Returns:
            List of weight matrix copies (for visualization)
        """
        return [w.copy() for w in self.weights]

    def describe(self, inputs: Any) -> Dict[str, Any]:
        """
        Per-node activations and per-edge weights for one input.

        Returns:
            Dict with 'layers' (name, type, activations, biases) and
            'edges' (layer, from, to, weight) entries
        """
        hidden, output = self.forward(inputs)
        x = self._as_input(inputs, self.input_size)
        input_values = x if x is not None else np.zeros(self.input_size)

        layers = []
        values = [input_values] + list(hidden) + [output]
        for k, (meta, acts) in enumerate(zip(self.get_layer_info(), values)):
            entry = dict(meta)
            entry['activations'] = [float(v) for v in acts]
            entry['biases'] = [float(v) for v in self.biases[k - 1]] if k > 0 else []
            layers.append(entry)

        edges = []
        for k, W in enumerate(self.weights):
            for i in range(W.shape[0]):
                for j in range(W.shape[1]):
                    edges.append({'layer': k, 'from': i, 'to': j, 'weight': float(W[i, j])})

        return {'layers': layers, 'edges': edges}

    # =========================================================================
    # SNAPSHOTS & SERIALIZATION
    # =========================================================================

    @classmethod
    def from_parameters(
        cls,
        weights: Sequence[Any],
        biases: Sequence[Any],
        learning_rate: float = 0.05,
    ) -> 'DenseNetwork':
        """
        Build a network from explicit parameters.

        Raises:
            ValueError: If shapes are inconsistent or values are not finite
        """
        if len(weights) == 0 or len(weights) != len(biases):
            raise ValueError("Need one bias vector per weight matrix and at least one layer")
        w_arrays = [np.array(w, dtype=np.float64, ndmin=2) for w in weights]
        b_arrays = [np.array(b, dtype=np.float64).reshape(-1) for b in biases]
        for k, (W, b) in enumerate(zip(w_arrays, b_arrays)):
            if W.ndim != 2 or W.shape[1] != b.size:
                raise ValueError(f"Layer {k}: weight shape {W.shape} does not match {b.size} biases")
            if k > 0 and W.shape[0] != w_arrays[k - 1].shape[1]:
                raise ValueError(f"Layer {k}: expects {W.shape[0]} inputs, previous layer has "
                                 f"{w_arrays[k - 1].shape[1]} outputs")
            if not (np.all(np.isfinite(W)) and np.all(np.isfinite(b))):
                raise ValueError(f"Layer {k}: parameters must be finite")

        net = cls(
            input_size=w_arrays[0].shape[0],
            hidden_sizes=[W.shape[1] for W in w_arrays[:-1]],
            output_size=w_arrays[-1].shape[1],
            learning_rate=learning_rate,
            seed=0,
        )
        net.weights = w_arrays
        net.biases = b_arrays
        return net

    def copy(self) -> 'DenseNetwork':
        """Deep snapshot of the network (parameters are not shared)."""
        return DenseNetwork.from_parameters(
            [w.copy() for w in self.weights],
            [b.copy() for b in self.biases],
            learning_rate=self.learning_rate,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.info().to_dict()
        data['weights'] = [w.tolist() for w in self.weights]
        data['biases'] = [b.tolist() for b in self.biases]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DenseNetwork':
        """
        Rebuild a network saved with ``to_dict``.

        Raises:
            ValueError: If the stored architecture does not match the parameters
        """
        try:
            net = cls.from_parameters(data['weights'], data['biases'], data['learning_rate'])
        except KeyError as e:
            raise ValueError(f"Missing field in network data: {e}") from None
        expected = (data.get('input_size'), tuple(data.get('hidden_sizes', ())), data.get('output_size'))
        actual = (net.input_size, net.hidden_sizes, net.output_size)
        if expected != actual:
            raise ValueError(f"Stored architecture {expected} does not match parameters {actual}")
        return net


# Testing
if __name__ == "__main__":
    net = DenseNetwork(2, [8, 4], 1, learning_rate=0.05, seed=0)

    print("=" * 60)
    print("Dense ReLU Network")
    print("=" * 60)
    for i, info in enumerate(net.get_layer_info()):
        print(f"Layer {i}: {info['name']} - {info['neurons']} neurons ({info['type']})")
    print(f"\nTotal parameters: {net.count_parameters():,}")

    sample, target = [0.25, 0.75], [1.0]
    before = net.sample_loss(sample, target)
    net.train(sample, target)
    after = net.sample_loss(sample, target)
    print(f"\nSingle step: loss {before:.6f} -> {after:.6f}")
    print("=" * 60)
