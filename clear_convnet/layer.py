import numpy as np
from typing import Optional, Tuple, Union
import logging

from .activations import Activation, get_activation
from .tensor import ArrayLike, ShapeError


def momentum_step(
    param: np.ndarray,
    gradient: np.ndarray,
    prev_update: np.ndarray,
    eta: float,
    mu: float,
    lam: float = 0.0,
) -> None:
    """Applies one momentum / weight-decay step in place.

    Δ(t) = -eta * g + mu * Δ(t-1) - eta * lam * param
    param += Δ(t)

    The new Δ(t) is stored in ``prev_update`` and ``gradient`` is cleared.
    """
    update = -eta * gradient + mu * prev_update - eta * lam * param
    param += update
    prev_update[...] = update
    gradient[...] = 0.0


def clamp_probability(drop_prob: float, name: str = "") -> float:
    """Returns ``drop_prob`` if it lies in [0, 1], otherwise 0.5 with a warning."""
    if not 0.0 <= drop_prob <= 1.0:
        logging.warning(
            f"Layer '{name}': drop probability {drop_prob} is outside [0, 1], using 0.5 instead."
        )
        return 0.5
    return float(drop_prob)


class Layer:
    """
    Base class of every layer in a feed-forward chain.

    A layer receives a flat input vector through ``set_inputs``, computes its
    pre-activation state in ``forward``, and exposes two views of its output:
    ``outputs`` (training time, may be masked) and ``predict_outputs``
    (inference time). ``backward`` accumulates parameter gradients and returns
    the signal for the previous layer. ``update`` applies and clears the
    accumulated gradients.

    Key Attributes:
        name (str): Free-form label, used in weight file names and log messages.
        input_size (int): Length of the flat input vector.
        output_size (int): Length of the flat output vector.
        stride (int): Window stride for spatial layers, -1 otherwise.
        inputs (np.ndarray): The most recent input received by ``set_inputs``.
        gradients (np.ndarray): Accumulated weight gradients (None without weights).
        bias_gradients (np.ndarray): Accumulated bias gradients (None without biases).
        prev_update (np.ndarray): Previous weight update Δw(t-1), used for momentum.
        prev_bias_update (np.ndarray): Previous bias update Δb(t-1).
    """

    layer_type = "Layer"

    def __init__(self, name: str = ""):
        self.name = name
        self.input_size = -1
        self.output_size = -1
        self.stride = -1
        self.inputs: Optional[np.ndarray] = None
        self.gradients: Optional[np.ndarray] = None
        self.bias_gradients: Optional[np.ndarray] = None
        self.prev_update: Optional[np.ndarray] = None
        self.prev_bias_update: Optional[np.ndarray] = None

    @property
    def generic_type(self) -> str:
        """Name of the activation/pooling/merge strategy the layer is running."""
        return ""

    @staticmethod
    def _check_length(values: ArrayLike, expected: int, what: str, name: str = "") -> np.ndarray:
        values = np.asarray(values, dtype=float).reshape(-1)
        if values.size != expected:
            raise ShapeError(
                f"Layer '{name}': size of {what} is different "
                f"(expected {expected}, got {values.size})"
            )
        return values

    def set_inputs(self, inputs: ArrayLike) -> None:
        """Stores a copy of the flat input vector.

        Raises:
            ShapeError: If the input length differs from ``input_size``.
        """
        self.inputs = self._check_length(inputs, self.input_size, "inputs", self.name).copy()

    def forward(self) -> None:
        """Computes the pre-activation state from the stored inputs."""
        raise NotImplementedError

    @property
    def outputs(self) -> np.ndarray:
        """Training-time flat output."""
        raise NotImplementedError

    @property
    def predict_outputs(self) -> np.ndarray:
        """Inference-time flat output. Equal to ``outputs`` unless the layer is stochastic."""
        return self.outputs

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        """Accumulates gradients and returns the signal for the previous layer.

        Args:
            next_delta: Gradient of the error with respect to this layer's
                        ``outputs``, length ``output_size``.

        Returns:
            A new array of length ``input_size``.
        """
        raise NotImplementedError

    def update(self, eta: float, mu: float, lam: float) -> None:
        """Applies the accumulated gradients. Layers without parameters do nothing."""

    def generate_weights(self, lower: float = -0.1, upper: float = 0.1) -> None:
        """Re-initialises the weights from a uniform distribution on [lower, upper)."""

    def get_weights(self) -> Optional[np.ndarray]:
        """Flat copy of the weights, or None for layers without weights."""
        return None

    def set_weights(self, weights: ArrayLike) -> None:
        raise ShapeError(f"Layer '{self.name}' ({self.layer_type}) has no weights")

    def get_biases(self) -> Optional[np.ndarray]:
        """Flat copy of the biases, or None for layers without biases."""
        return None

    def set_biases(self, biases: ArrayLike) -> None:
        raise ShapeError(f"Layer '{self.name}' ({self.layer_type}) has no biases")

    def weight_block(self) -> Optional[Tuple[str, np.ndarray]]:
        """Tag and shaped weight array for the text weight format."""
        return None

    def bias_block(self) -> Optional[Tuple[str, np.ndarray]]:
        """Tag and shaped bias array for the text weight format."""
        return None

    def check_size(self, prev_output_size: int) -> bool:
        """True if a previous layer with ``prev_output_size`` outputs can feed this one."""
        return prev_output_size == self.input_size

    def zero_grad(self) -> None:
        """Resets the gradient accumulators to zero."""
        if self.gradients is not None:
            self.gradients.fill(0.0)
        if self.bias_gradients is not None:
            self.bias_gradients.fill(0.0)

    def describe(self) -> str:
        """One-line shape summary."""
        return f"Inputs:{self.input_size}, Outputs:{self.output_size}"

    def __repr__(self) -> str:
        label = f" '{self.name}'" if self.name else ""
        return f"<{self.layer_type}{label} [{self.generic_type}] {self.describe()}>"


class FullyConnectedLayer(Layer):
    """
    Dense layer: pre = Wᵀx + b, output = activation(pre).

    Weights are stored as an (input_size, output_size) matrix so that row i
    holds every connection leaving input i.
    """

    layer_type = "FullyConnectedLayer"

    def __init__(
        self,
        input_size: int,
        output_size: int,
        activation: Union[str, Activation, None] = 'identity',
        name: str = "",
        weights: Optional[ArrayLike] = None,
        biases: Optional[ArrayLike] = None,
    ):
        """
        Args:
            input_size: Number of inputs.
            output_size: Number of units.
            activation: Activation name or instance. Defaults to identity.
            name: Layer name.
            weights: Optional flat initial weights of length input_size * output_size
                     (row-major over (input, output)). Ignored with a warning if the
                     length is wrong; the default is uniform on [-1/input_size, 1/input_size).
            biases: Optional flat initial biases of length output_size. Defaults to zeros.
        """
        super().__init__(name)
        self.input_size = input_size
        self.output_size = output_size
        self.activation = get_activation(activation)

        self.inputs = np.zeros(input_size)
        self.pre_activation = np.zeros(output_size)

        if weights is not None and np.size(weights) == input_size * output_size:
            self.weights = np.asarray(weights, dtype=float).reshape(input_size, output_size).copy()
            logging.debug(f"Layer '{name}': using provided initial weights.")
        else:
            if weights is not None:
                logging.warning(
                    f"Layer '{name}': ignoring initial weights of length {np.size(weights)}, "
                    f"expected {input_size * output_size}."
                )
            self.generate_weights(-1.0 / input_size, 1.0 / input_size)

        self.biases = self._initial_biases(biases)

        self.gradients = np.zeros_like(self.weights)
        self.bias_gradients = np.zeros_like(self.biases)
        self.prev_update = np.zeros_like(self.weights)
        self.prev_bias_update = np.zeros_like(self.biases)

        logging.debug(
            f"{self.layer_type} '{name}' created: input_size={input_size}, "
            f"output_size={output_size}, activation={self.activation.name}, "
            f"weight_shape={self.weights.shape}, bias_shape={self.biases.shape}"
        )

    def _initial_biases(self, biases: Optional[ArrayLike]) -> np.ndarray:
        if biases is not None and np.size(biases) == self.output_size:
            return np.asarray(biases, dtype=float).reshape(-1).copy()
        if biases is not None:
            logging.warning(
                f"Layer '{self.name}': ignoring initial biases of length {np.size(biases)}, "
                f"expected {self.output_size}."
            )
        return np.zeros(self.output_size)

    @property
    def generic_type(self) -> str:
        return self.activation.name

    def _effective_weights(self) -> np.ndarray:
        return self.weights

    def forward(self) -> None:
        self.pre_activation = self._effective_weights().T @ self.inputs + self.biases

    @property
    def outputs(self) -> np.ndarray:
        return self.activation.forward(self.pre_activation)

    def _local_delta(self, next_delta: ArrayLike) -> np.ndarray:
        """δ = upstream * f'(pre), on a private copy of the upstream signal."""
        delta = self._check_length(next_delta, self.output_size, "delta", self.name).copy()
        delta *= self.activation.backward(self.pre_activation)
        return delta

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        delta = self._local_delta(next_delta)
        self.bias_gradients += delta
        self.gradients += np.outer(self.inputs, delta)
        return self._effective_weights() @ delta

    def update(self, eta: float, mu: float, lam: float) -> None:
        """Δw(t) = -η∂E/∂w + μΔw(t-1) - ηλw(t) for weights; biases get the same step without decay."""
        momentum_step(self.weights, self.gradients, self.prev_update, eta, mu, lam)
        momentum_step(self.biases, self.bias_gradients, self.prev_bias_update, eta, mu)

    def generate_weights(self, lower: float = -0.1, upper: float = 0.1) -> None:
        self.weights = np.random.uniform(lower, upper, (self.input_size, self.output_size))
        logging.debug(f"Layer '{self.name}': weights drawn from U[{lower:.4f}, {upper:.4f}).")

    def get_weights(self) -> np.ndarray:
        return self.weights.reshape(-1).copy()

    def set_weights(self, weights: ArrayLike) -> None:
        weights = self._check_length(weights, self.weights.size, "weights", self.name)
        self.weights = weights.reshape(self.weights.shape).copy()

    def get_biases(self) -> np.ndarray:
        return self.biases.reshape(-1).copy()

    def set_biases(self, biases: ArrayLike) -> None:
        biases = self._check_length(biases, self.biases.size, "biases", self.name)
        self.biases = biases.reshape(self.biases.shape).copy()

    def weight_block(self) -> Tuple[str, np.ndarray]:
        return "#Weights", self.weights

    def bias_block(self) -> Tuple[str, np.ndarray]:
        return "#Biases", self.biases

    def describe(self) -> str:
        return (
            f"Inputs:{self.input_size}, Outputs:{self.output_size}, "
            f"Weights:{self.input_size}x{self.output_size}, Biases:{self.biases.size}"
        )


class DropOutLayer(FullyConnectedLayer):
    """
    Fully connected layer whose units are randomly silenced during training.

    A unit is dropped with probability ``drop_prob``. The mask is drawn at
    construction and redrawn after every ``update``, so all samples of a
    mini-batch share it. At inference every unit is kept and the output is
    scaled by (1 - drop_prob).
    """

    layer_type = "DropOutLayer"

    def __init__(
        self,
        input_size: int,
        output_size: int,
        drop_prob: float = 0.5,
        activation: Union[str, Activation, None] = 'identity',
        name: str = "",
        weights: Optional[ArrayLike] = None,
        biases: Optional[ArrayLike] = None,
    ):
        super().__init__(input_size, output_size, activation, name, weights, biases)
        self.drop_prob = clamp_probability(drop_prob, name)
        self.mask = self._sample_mask()

    def _sample_mask(self) -> np.ndarray:
        # 0 with probability drop_prob, 1 otherwise
        return (np.random.random(self.output_size) >= self.drop_prob).astype(float)

    @property
    def outputs(self) -> np.ndarray:
        return self.activation.forward(self.pre_activation) * self.mask

    @property
    def predict_outputs(self) -> np.ndarray:
        return self.activation.forward(self.pre_activation) * (1.0 - self.drop_prob)

    def _local_delta(self, next_delta: ArrayLike) -> np.ndarray:
        return super()._local_delta(next_delta) * self.mask

    def update(self, eta: float, mu: float, lam: float) -> None:
        super().update(eta, mu, lam)
        self.mask = self._sample_mask()

    def describe(self) -> str:
        return f"{super().describe()}, DropOutProb:{self.drop_prob}"


class DropConnectLayer(FullyConnectedLayer):
    """
    Fully connected layer whose individual connections are randomly dropped.

    Training forward uses (M ⊙ W)ᵀx + b with a binary (input, output) mask M.
    Gradients and the returned signal are masked the same way. Inference uses
    the unmasked weights and scales the activated output by (1 - drop_prob).
    """

    layer_type = "DropConnectLayer"

    def __init__(
        self,
        input_size: int,
        output_size: int,
        drop_prob: float = 0.5,
        activation: Union[str, Activation, None] = 'identity',
        name: str = "",
        weights: Optional[ArrayLike] = None,
        biases: Optional[ArrayLike] = None,
    ):
        super().__init__(input_size, output_size, activation, name, weights, biases)
        self.drop_prob = clamp_probability(drop_prob, name)
        self.mask = self._sample_mask()
        self.predict_pre_activation = np.zeros(output_size)

    def _sample_mask(self) -> np.ndarray:
        return (np.random.random((self.input_size, self.output_size)) >= self.drop_prob).astype(float)

    def _effective_weights(self) -> np.ndarray:
        return self.weights * self.mask

    def forward(self) -> None:
        super().forward()
        self.predict_pre_activation = self.weights.T @ self.inputs + self.biases

    @property
    def predict_outputs(self) -> np.ndarray:
        return self.activation.forward(self.predict_pre_activation) * (1.0 - self.drop_prob)

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        delta = self._local_delta(next_delta)
        self.bias_gradients += delta
        self.gradients += np.outer(self.inputs, delta) * self.mask
        return self._effective_weights() @ delta

    def update(self, eta: float, mu: float, lam: float) -> None:
        super().update(eta, mu, lam)
        self.mask = self._sample_mask()

    def describe(self) -> str:
        return f"{super().describe()}, DropConnectProb:{self.drop_prob}"


class SoftmaxLayer(FullyConnectedLayer):
    """
    Fully connected layer followed by a softmax over its units.

    ``backward`` multiplies the upstream signal by the diagonal term y(1 - y)
    only. Paired with ``MultiCrossEntropy`` (whose gradient y - t is already
    taken with respect to the softmax input) this is the classic
    softmax/cross-entropy output stage; the pairing is not checked.
    """

    layer_type = "SoftmaxLayer"

    # Lower bound for exponentials before normalisation
    MIN_EXP = 1e-10

    def __init__(
        self,
        input_size: int,
        output_size: int,
        name: str = "",
        weights: Optional[ArrayLike] = None,
        biases: Optional[ArrayLike] = None,
    ):
        super().__init__(input_size, output_size, 'identity', name, weights, biases)
        self.probabilities = np.full(output_size, 1.0 / output_size)

    @property
    def generic_type(self) -> str:
        return "Softmax"

    def forward(self) -> None:
        super().forward()
        exp_z = np.exp(self.pre_activation - np.max(self.pre_activation))
        exp_z = np.maximum(exp_z, self.MIN_EXP)
        self.probabilities = exp_z / np.sum(exp_z)

    @property
    def outputs(self) -> np.ndarray:
        return self.probabilities.copy()

    def _local_delta(self, next_delta: ArrayLike) -> np.ndarray:
        delta = self._check_length(next_delta, self.output_size, "delta", self.name).copy()
        delta *= self.probabilities * (1.0 - self.probabilities)
        return delta


class MaxoutLayer(FullyConnectedLayer):
    """
    Maxout unit in fully connected form.

    Every (input i, output o) pair has its own weight and bias:
    P[i, o] = W[i, o] * x[i] + B[i, o], and output o is max_i P[i, o].
    The gradient of output o flows only through the first arg-max row.
    """

    layer_type = "MaxoutLayer Ver.FCL"

    def __init__(
        self,
        input_size: int,
        output_size: int,
        name: str = "",
        weights: Optional[ArrayLike] = None,
        biases: Optional[ArrayLike] = None,
    ):
        super().__init__(input_size, output_size, 'identity', name, weights, biases)
        self.pre_activation = np.zeros((input_size, output_size))

    def _initial_biases(self, biases: Optional[ArrayLike]) -> np.ndarray:
        # one bias per (input, output) pair
        shape = (self.input_size, self.output_size)
        if biases is not None and np.size(biases) == self.input_size * self.output_size:
            return np.asarray(biases, dtype=float).reshape(shape).copy()
        if biases is not None:
            logging.warning(
                f"Layer '{self.name}': ignoring initial biases of length {np.size(biases)}, "
                f"expected {self.input_size * self.output_size}."
            )
        return np.zeros(shape)

    @property
    def generic_type(self) -> str:
        return "Maxout"

    def forward(self) -> None:
        self.pre_activation = self.weights * self.inputs[:, np.newaxis] + self.biases

    @property
    def outputs(self) -> np.ndarray:
        return self.pre_activation.max(axis=0)

    def backward(self, next_delta: ArrayLike) -> np.ndarray:
        next_delta = self._check_length(next_delta, self.output_size, "delta", self.name)
        routed = np.zeros((self.input_size, self.output_size))
        winners = self.pre_activation.argmax(axis=0)
        routed[winners, np.arange(self.output_size)] = next_delta
        self.bias_gradients += routed
        self.gradients += routed * self.inputs[:, np.newaxis]
        return (routed * self.weights).sum(axis=1)

    def describe(self) -> str:
        return (
            f"Inputs:{self.input_size}, Outputs:{self.output_size}, "
            f"Weights:{self.input_size}x{self.output_size}, "
            f"Biases:{self.input_size}x{self.output_size}"
        )
